import argparse

from rkflash.cli.rkflash_cli import RkflashCommand, RkflashEnvironment, configure_logging
from rkflash.container import UnpackConfig, unpack_file


class UnpackCommand(RkflashCommand):
    def create_parser(self, parser: argparse._SubParsersAction):
        subparser = parser.add_parser(
            "unpack",
            help="Unpack an RKAF, RKFW or RKFP firmware image",
            description="Identify the format of a firmware image from its magic and extract "
            "every payload it bundles. Entry paths may contain directories, which are created as "
            "needed. An RKFW image is split into its bootloader bundle (`BOOT`) and its update "
            "image (`embedded-update.img`).",
        )
        subparser.add_argument("filename", help="Image to unpack")
        subparser.add_argument(
            "-o",
            "--output_directory",
            help="Directory to extract the payloads to (default: the current directory)",
            default=".",
        )
        subparser.add_argument(
            "--verify-crc",
            help="Check the image checksum before extracting anything (RKAF only)",
            action="store_true",
        )
        subparser.add_argument(
            "--recursive",
            help="Also unpack the update image embedded in an RKFW image",
            action="store_true",
        )
        subparser.add_argument(
            "--manifest",
            help="Write a JSON description of the image and its entries, __rkflash_info__.json",
            action="store_true",
        )
        self.add_logging_arguments(subparser)
        return subparser

    def run(self, rkflash_env: RkflashEnvironment, args: argparse.Namespace):
        configure_logging(args.logging_level)
        config = UnpackConfig(
            output_dir=args.output_directory,
            verify_crc=args.verify_crc,
            recursive=args.recursive,
            write_manifest=args.manifest,
        )
        entries = unpack_file(args.filename, config)
        rkflash_env.print(f"unpacked {len(entries)} entries to {args.output_directory}")
