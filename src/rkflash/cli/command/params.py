import argparse

from rkflash.cli.command.transfer import open_stream
from rkflash.cli.rkflash_cli import RkflashCommandRunsOnDevice, RkflashEnvironment
from rkflash.parameter import read_parameters, write_parameters
from rkflash.partition import list_partitions, read_partition_text
from rkflash.transfer import BlockTransferEngine


class ReadParamsCommand(RkflashCommandRunsOnDevice):
    def create_parser(self, parser: argparse._SubParsersAction):
        subparser = parser.add_parser(
            "read-params",
            help="Read the parameter block",
            description="Read the first copy of the parameter block from flash and output its "
            "payload.",
        )
        subparser.add_argument("-f", "--file", help="Output file (default: stdout)")
        subparser.add_argument(
            "--no-verify-crc",
            help="Output the payload even if its CRC does not match",
            action="store_true",
        )
        self.add_device_arguments(subparser)
        return subparser

    def run_on_device(
        self, engine: BlockTransferEngine, rkflash_env: RkflashEnvironment, args: argparse.Namespace
    ):
        payload = read_parameters(engine, verify_crc=not args.no_verify_crc)
        with open_stream(rkflash_env, args.file, "wb") as sink:
            sink.write(payload)
            sink.flush()


class WriteParamsCommand(RkflashCommandRunsOnDevice):
    def create_parser(self, parser: argparse._SubParsersAction):
        subparser = parser.add_parser(
            "write-params",
            help="Write the parameter block",
            description="Frame the input as a parameter block and write it to every copy "
            "location on flash.",
        )
        subparser.add_argument("-f", "--file", help="Input file (default: stdin)")
        self.add_device_arguments(subparser)
        return subparser

    def run_on_device(
        self, engine: BlockTransferEngine, rkflash_env: RkflashEnvironment, args: argparse.Namespace
    ):
        with open_stream(rkflash_env, args.file, "rb") as source:
            payload = source.read()
        write_parameters(engine, payload)


class PartitionsCommand(RkflashCommandRunsOnDevice):
    def create_parser(self, parser: argparse._SubParsersAction):
        subparser = parser.add_parser(
            "partitions",
            help="List the partitions of the mtdparts table",
            description="Read the parameter block and list the partitions of its mtdparts "
            "table, with offsets and sizes in sectors.",
        )
        self.add_device_arguments(subparser)
        return subparser

    def run_on_device(
        self, engine: BlockTransferEngine, rkflash_env: RkflashEnvironment, args: argparse.Namespace
    ):
        for partition in list_partitions(read_partition_text(engine)):
            size = "-" if partition.size is None else f"{partition.size:#010x}"
            rkflash_env.print(f"{partition.offset:#010x} {size:>10} {partition.name}")
