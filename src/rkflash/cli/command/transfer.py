import argparse
import contextlib
import logging
from typing import BinaryIO, ContextManager, Optional, Tuple

from rkflash.cli.rkflash_cli import RkflashCommandRunsOnDevice, RkflashEnvironment, c_integer
from rkflash.error import InvalidUsageError, TransferIOError
from rkflash.partition import find_partition
from rkflash.transfer import BlockTransferEngine, Region, TransferRequest

LOGGER = logging.getLogger(__name__)

_REGION_ARGUMENTS = {
    Region.FLASH: ("OFFSET", "SIZE", "sectors"),
    Region.IDB: ("OFFSET", "SIZE", "IDB blocks"),
    Region.SDRAM: ("ADDRESS", "SIZE", "bytes"),
}


def open_stream(
    rkflash_env: RkflashEnvironment, path: Optional[str], mode: str
) -> ContextManager[BinaryIO]:
    """
    Open `path`, or fall back to stdin (reading) or stdout (writing) when it is not given.
    """
    if path is None:
        return contextlib.nullcontext(rkflash_env.stdin if "r" in mode else rkflash_env.stdout)
    try:
        return open(path, mode)
    except OSError as e:
        raise TransferIOError(f"{path}: {e}") from e


class RegionCommand(RkflashCommandRunsOnDevice):
    """
    Base for the commands moving a range of one device region. Flash commands may name a
    partition instead of giving an explicit range.
    """

    summary = ""

    def __init__(self, command_name: str, region: Region):
        self.command_name = command_name
        self.region = region

    def create_parser(self, parser: argparse._SubParsersAction):
        offset_name, size_name, unit = _REGION_ARGUMENTS[self.region]
        subparser = parser.add_parser(
            self.command_name,
            help=f"{self.summary} {self.region.value} memory",
            description=f"{self.summary} {size_name} {unit} of {self.region.value} memory, "
            f"starting at {offset_name}.",
        )
        subparser.add_argument("offset", nargs="?", type=c_integer, metavar=offset_name)
        subparser.add_argument("size", nargs="?", type=c_integer, metavar=size_name)
        if self.region is Region.FLASH:
            subparser.add_argument(
                "-p",
                "--partition",
                help="Work on the named partition of the mtdparts table instead of OFFSET/SIZE",
            )
        self.add_stream_arguments(subparser)
        self.add_device_arguments(subparser)
        return subparser

    def add_stream_arguments(self, subparser):
        pass

    def request(self, engine: BlockTransferEngine, args: argparse.Namespace) -> TransferRequest:
        partition = getattr(args, "partition", None)
        if partition is not None:
            if args.offset is not None or args.size is not None:
                raise InvalidUsageError("Give either a partition or OFFSET and SIZE, not both")
            spec = find_partition(engine, partition)
            return TransferRequest(self.region, spec.offset, spec.size)
        if args.offset is None or args.size is None:
            raise InvalidUsageError(f"{self.command_name} needs an offset and a size")
        return TransferRequest(self.region, args.offset, args.size)


class ReadCommand(RegionCommand):
    summary = "Read"

    def add_stream_arguments(self, subparser):
        subparser.add_argument("-f", "--file", help="Output file (default: stdout)")

    def run_on_device(
        self, engine: BlockTransferEngine, rkflash_env: RkflashEnvironment, args: argparse.Namespace
    ):
        request = self.request(engine, args)
        with open_stream(rkflash_env, args.file, "wb") as sink:
            engine.read(request, sink)
            sink.flush()


class WriteCommand(RegionCommand):
    summary = "Write"

    def add_stream_arguments(self, subparser):
        subparser.add_argument("-f", "--file", help="Input file (default: stdin)")

    def run_on_device(
        self, engine: BlockTransferEngine, rkflash_env: RkflashEnvironment, args: argparse.Namespace
    ):
        request = self.request(engine, args)
        with open_stream(rkflash_env, args.file, "rb") as source:
            result = engine.write(request, source)
        if not result.complete:
            LOGGER.info("wrote %#x of %#x units", result.units, request.length)


class EraseCommand(RegionCommand):
    summary = "Erase"

    def run_on_device(
        self, engine: BlockTransferEngine, rkflash_env: RkflashEnvironment, args: argparse.Namespace
    ):
        engine.erase(self.request(engine, args))


def region_commands() -> Tuple[RegionCommand, ...]:
    return (
        ReadCommand("read", Region.FLASH),
        WriteCommand("write", Region.FLASH),
        EraseCommand("erase", Region.FLASH),
        ReadCommand("read-idb", Region.IDB),
        WriteCommand("write-idb", Region.IDB),
        EraseCommand("erase-idb", Region.IDB),
        ReadCommand("read-ram", Region.SDRAM),
        WriteCommand("write-ram", Region.SDRAM),
    )
