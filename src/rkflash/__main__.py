import sys
from typing import List

from rkflash.cli.command.device import ExecCommand, InfoCommand, RebootCommand
from rkflash.cli.command.load import LoadCommand
from rkflash.cli.command.params import PartitionsCommand, ReadParamsCommand, WriteParamsCommand
from rkflash.cli.command.transfer import region_commands
from rkflash.cli.command.unpack import UnpackCommand
from rkflash.cli.command.wrap import WrapCommand
from rkflash.cli.rkflash_cli import RkflashCommand, RkflashCommandLineInterface


def all_commands() -> List[RkflashCommand]:
    commands: List[RkflashCommand] = [RebootCommand(), InfoCommand()]
    commands.extend(region_commands())
    commands.extend(
        (
            ExecCommand(),
            ReadParamsCommand(),
            WriteParamsCommand(),
            PartitionsCommand(),
            LoadCommand(),
            UnpackCommand(),
            WrapCommand(),
        )
    )
    return commands


def main():  # pragma: no cover
    rkflash_cli = RkflashCommandLineInterface(all_commands())
    rkflash_cli.parse_and_run(sys.argv[1:])


if __name__ == "__main__":
    main()
