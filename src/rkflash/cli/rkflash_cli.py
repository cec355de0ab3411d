import argparse
import functools
import logging
import sys
from abc import ABC, abstractmethod
from argparse import ArgumentParser, Namespace, _SubParsersAction
from typing import BinaryIO, Callable, Iterable, Optional, Sequence

from rkflash.command import BulkChannel
from rkflash.device import RockchipDevice
from rkflash.error import RkflashError
from rkflash.transfer import BlockTransferEngine
from rkflash.usb_channel import ROCKCHIP_VENDOR_ID, UsbBulkChannel, UsbChannelConfig

LOGGER = logging.getLogger(__name__)

DEFAULT_LOG_LEVEL = "INFO"
LOG_FORMAT = "[%(filename)15s:%(lineno)5s] %(message)s"


def c_integer(text: str) -> int:
    """
    argparse type accepting C integer syntax: `0x` prefix for hexadecimal, a leading `0` for
    octal, decimal otherwise.
    """
    value = text.strip()
    try:
        if value[:2] in ("0x", "0X"):
            return int(value[2:], 16)
        if len(value) > 1 and value[0] == "0":
            return int(value[1:], 8)
        return int(value, 10)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {text!r}")


def configure_logging(logging_level) -> None:
    if type(logging_level) is int:
        level = logging_level
    else:
        level = getattr(logging, logging_level.upper())
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("rkflash").setLevel(level)


class RkflashEnvironment:
    """
    What the commands touch outside of their arguments: how a device channel is opened, and the
    binary streams standing in for stdin and stdout.
    """

    def __init__(
        self,
        channel_factory: Optional[Callable[[UsbChannelConfig], BulkChannel]] = None,
        stdin: Optional[BinaryIO] = None,
        stdout: Optional[BinaryIO] = None,
    ):
        self._channel_factory = channel_factory
        self._stdin = stdin
        self._stdout = stdout

    def open_channel(self, config: UsbChannelConfig) -> BulkChannel:
        if self._channel_factory is None:
            return UsbBulkChannel.open(config)
        return self._channel_factory(config)

    @property
    def stdin(self) -> BinaryIO:
        if self._stdin is None:
            return sys.stdin.buffer
        return self._stdin

    @property
    def stdout(self) -> BinaryIO:
        if self._stdout is None:
            return sys.stdout.buffer
        return self._stdout

    def print(self, line: str) -> None:
        self.stdout.write(line.encode() + b"\n")
        self.stdout.flush()


class RkflashCommand(ABC):
    @abstractmethod
    def create_parser(self, rkflash_subparser: _SubParsersAction):
        raise NotImplementedError()

    @abstractmethod
    def run(self, rkflash_env: RkflashEnvironment, args: Namespace):
        raise NotImplementedError()

    @staticmethod
    def add_logging_arguments(command_subparser):
        command_subparser.add_argument(
            "--logging-level",
            "-l",
            help="Minimum level of messages to print",
            choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            default=DEFAULT_LOG_LEVEL,
        )


class RkflashCommandRunsOnDevice(RkflashCommand, ABC):
    """
    A command talking to a device in bootloader mode. Has the scaffolding to find the device, open
    the channel, probe the device with TEST_UNIT_READY and close the channel on the way out.
    """

    # mask ROM devices only accept control transfers, so they cannot be probed
    probe_device = True

    @staticmethod
    def add_device_arguments(command_subparser):
        RkflashCommand.add_logging_arguments(command_subparser)
        command_subparser.add_argument(
            "--vendor-id",
            help="USB vendor ID of the device",
            type=c_integer,
            default=ROCKCHIP_VENDOR_ID,
        )
        command_subparser.add_argument(
            "--product-id",
            help="USB product ID of the device. By default, every known Rockchip product ID is "
            "tried in turn.",
            type=c_integer,
            default=None,
        )
        command_subparser.add_argument(
            "--timeout",
            help="Timeout of every USB transfer, in milliseconds",
            type=int,
            default=UsbChannelConfig.timeout_ms,
        )

    @staticmethod
    def channel_config(args: Namespace) -> UsbChannelConfig:
        config = UsbChannelConfig(vendor_id=args.vendor_id, timeout_ms=args.timeout)
        if args.product_id is not None:
            chip_name = config.product_ids.get(args.product_id, f"device {args.product_id:#06x}")
            config.product_ids = {args.product_id: chip_name}
        return config

    def run(self, rkflash_env: RkflashEnvironment, args: Namespace):
        configure_logging(args.logging_level)
        with rkflash_env.open_channel(self.channel_config(args)) as channel:
            device = RockchipDevice(channel)
            if self.probe_device:
                device.test_unit_ready()
            self.run_on_device(BlockTransferEngine(device), rkflash_env, args)

    @abstractmethod
    def run_on_device(
        self, engine: BlockTransferEngine, rkflash_env: RkflashEnvironment, args: Namespace
    ):
        raise NotImplementedError()


class RkflashCommandLineInterface:
    def __init__(
        self,
        subcommands: Iterable[RkflashCommand],
        rkflash_env: Optional[RkflashEnvironment] = None,
    ):
        if rkflash_env is None:
            rkflash_env = RkflashEnvironment()
        self.rkflash_parser = ArgumentParser(prog="rkflash")
        rkflash_subparsers = self.rkflash_parser.add_subparsers(
            help="Talk to Rockchip devices in bootloader mode, or work on their firmware images"
        )

        for rkflash_subcommand in subcommands:
            subparser = rkflash_subcommand.create_parser(rkflash_subparsers)
            subparser.set_defaults(run=functools.partial(rkflash_subcommand.run, rkflash_env))

    def parse_and_run(self, args: Sequence[str]):
        parsed = self.rkflash_parser.parse_args(args)
        if not hasattr(parsed, "run"):
            self.rkflash_parser.print_help()
            sys.exit(1)
        try:
            parsed.run(parsed)
        except RkflashError as e:
            LOGGER.error("%s: %s", type(e).__name__, e)
            sys.exit(1)
