import argparse

from rkflash.cli.rkflash_cli import RkflashCommandRunsOnDevice, RkflashEnvironment
from rkflash.device import LOADER_CODE_DDR, LOADER_CODE_USBPLUG
from rkflash.error import TransferIOError
from rkflash.transfer import BlockTransferEngine

LOADER_CODES = {
    "ddr": LOADER_CODE_DDR,
    "usbplug": LOADER_CODE_USBPLUG,
}


class LoadCommand(RkflashCommandRunsOnDevice):
    probe_device = False

    def create_parser(self, parser: argparse._SubParsersAction):
        subparser = parser.add_parser(
            "load",
            help="Upload a loader stage to a device in mask ROM mode",
            description="Upload the DDR init or the usbplug stage of a loader to a device in mask "
            "ROM mode. The DDR init stage goes first.",
        )
        subparser.add_argument("stage", choices=sorted(LOADER_CODES), help="Loader stage")
        subparser.add_argument("file", help="Raw stage image")
        self.add_device_arguments(subparser)
        return subparser

    def run_on_device(
        self, engine: BlockTransferEngine, rkflash_env: RkflashEnvironment, args: argparse.Namespace
    ):
        try:
            with open(args.file, "rb") as f:
                data = f.read()
        except OSError as e:
            raise TransferIOError(f"{args.file}: {e}") from e
        engine.device.load_loader(data, LOADER_CODES[args.stage])
