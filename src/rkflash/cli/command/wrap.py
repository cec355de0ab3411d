import argparse

from rkflash.cli.rkflash_cli import RkflashCommand, RkflashEnvironment, configure_logging
from rkflash.error import TransferIOError
from rkflash.image import ImageKind, wrap_image


class WrapCommand(RkflashCommand):
    def create_parser(self, parser: argparse._SubParsersAction):
        subparser = parser.add_parser(
            "wrap",
            help="Add the flash header and CRC to a kernel or parameter image",
            description="Append the CRC32 of INPUT, preceded by a KRNL or PARM header when "
            "requested, and write the result to OUTPUT.",
        )
        kind = subparser.add_mutually_exclusive_group()
        kind.add_argument(
            "-k",
            "--kernel",
            help="Prepend a KRNL header",
            dest="kind",
            action="store_const",
            const=ImageKind.KERNEL,
            default=ImageKind.RAW,
        )
        kind.add_argument(
            "-p",
            "--parameter",
            help="Prepend a PARM header",
            dest="kind",
            action="store_const",
            const=ImageKind.PARAMETER,
        )
        subparser.add_argument("input", help="Raw image")
        subparser.add_argument("output", help="Wrapped image")
        self.add_logging_arguments(subparser)
        return subparser

    def run(self, rkflash_env: RkflashEnvironment, args: argparse.Namespace):
        configure_logging(args.logging_level)
        try:
            with open(args.input, "rb") as f:
                data = f.read()
            with open(args.output, "wb") as f:
                f.write(wrap_image(data, args.kind))
        except OSError as e:
            raise TransferIOError(str(e)) from e
