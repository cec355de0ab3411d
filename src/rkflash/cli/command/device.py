import argparse

from rkflash.cli.rkflash_cli import RkflashCommandRunsOnDevice, RkflashEnvironment, c_integer
from rkflash.device import format_chip_version
from rkflash.transfer import BlockTransferEngine


class RebootCommand(RkflashCommandRunsOnDevice):
    def create_parser(self, parser: argparse._SubParsersAction):
        subparser = parser.add_parser(
            "reboot",
            help="Reboot the device",
            description="Send RESET_DEVICE. The optional flag selects the reset sub-command; "
            "0 reboots normally.",
        )
        subparser.add_argument("flag", nargs="?", type=c_integer, default=0, help="Reset flag")
        self.add_device_arguments(subparser)
        return subparser

    def run_on_device(
        self, engine: BlockTransferEngine, rkflash_env: RkflashEnvironment, args: argparse.Namespace
    ):
        engine.device.reset(args.flag)


class InfoCommand(RkflashCommandRunsOnDevice):
    def create_parser(self, parser: argparse._SubParsersAction):
        subparser = parser.add_parser(
            "info",
            help="Print flash and chip information",
            description="Query the flash ID, the NAND geometry and the chip version.",
        )
        self.add_device_arguments(subparser)
        return subparser

    def run_on_device(
        self, engine: BlockTransferEngine, rkflash_env: RkflashEnvironment, args: argparse.Namespace
    ):
        device = engine.device
        flash_id = device.read_flash_id()
        rkflash_env.print("Flash ID: " + " ".join(f"{byte:02x}" for byte in flash_id))
        rkflash_env.print(device.read_flash_info().describe())
        rkflash_env.print(f"Chip version: {format_chip_version(device.read_chip_info())}")


class ExecCommand(RkflashCommandRunsOnDevice):
    def create_parser(self, parser: argparse._SubParsersAction):
        subparser = parser.add_parser(
            "exec",
            help="Jump to code loaded in SDRAM",
            description="Run the code at KERNEL_ADDRESS, passing it the parameter block at "
            "PARAMETER_ADDRESS. Both are absolute SDRAM addresses.",
        )
        subparser.add_argument("kernel_address", type=c_integer, metavar="KERNEL_ADDRESS")
        subparser.add_argument("parameter_address", type=c_integer, metavar="PARAMETER_ADDRESS")
        self.add_device_arguments(subparser)
        return subparser

    def run_on_device(
        self, engine: BlockTransferEngine, rkflash_env: RkflashEnvironment, args: argparse.Namespace
    ):
        engine.device.execute_sdram(args.kernel_address, args.parameter_address)
