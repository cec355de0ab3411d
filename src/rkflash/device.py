import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from rkflash.checksum import frame_loader
from rkflash.command import (
    BulkChannel,
    Opcode,
    STATUS_LENGTH,
    StatusPacket,
    decode_status,
    encode_command,
    encode_execute,
)
from rkflash.error import ProtocolError, StatusFailedError, TransportError
from rkflash.io.deserializer import BinaryDeserializer

LOGGER = logging.getLogger(__name__)

FLASH_ID_LENGTH = 5
FLASH_INFO_LENGTH = 512
NAND_INFO_LENGTH = 11
CHIP_INFO_LENGTH = 16

# time the bootloader needs after TEST_UNIT_READY before it accepts commands
SETTLE_DELAY = 0.02

LOADER_CODE_DDR = 0x471
LOADER_CODE_USBPLUG = 0x472

NAND_MANUFACTURERS = (
    "Samsung",
    "Toshiba",
    "Hynix",
    "Infineon",
    "Micron",
    "Renesas",
    "ST",
    "Intel",
)


@dataclass
class NandInfo:
    """
    Decoded reply to `READ_FLASH_INFO`.

    Offset  Size    Value
    0       4       Flash size, in 512-byte sectors
    4       2       Block size, in sectors
    6       1       Page size, in sectors
    7       1       ECC bits
    8       1       Access time
    9       1       Manufacturer ID
    10      1       Chip select bitmap
    """

    flash_size: int
    block_size: int
    page_size: int
    ecc_bits: int
    access_time: int
    manufacturer_id: int
    chip_select: int

    @classmethod
    def from_bytes(cls, data: bytes) -> "NandInfo":
        deserializer = BinaryDeserializer.from_bytes(data)
        return cls(
            flash_size=deserializer.unpack_uint(),
            block_size=deserializer.unpack_ushort(),
            page_size=deserializer.unpack_ubyte(),
            ecc_bits=deserializer.unpack_ubyte(),
            access_time=deserializer.unpack_ubyte(),
            manufacturer_id=deserializer.unpack_ubyte(),
            chip_select=deserializer.unpack_ubyte(),
        )

    @property
    def manufacturer(self) -> str:
        if self.manufacturer_id < len(NAND_MANUFACTURERS):
            return NAND_MANUFACTURERS[self.manufacturer_id]
        return "Unknown"

    def chip_selects(self) -> List[int]:
        return [bit for bit in range(4) if self.chip_select & (1 << bit)]

    def describe(self) -> str:
        return "\n".join(
            (
                f"Manufacturer: {self.manufacturer} ({self.manufacturer_id})",
                f"Flash Size: {self.flash_size >> 11}MB",
                f"Block Size: {self.block_size >> 1}KB",
                f"Page Size: {self.page_size >> 1}KB",
                f"ECC Bits: {self.ecc_bits}",
                f"Access Time: {self.access_time}",
                "Flash CS: " + "".join(f"<{cs}>" for cs in self.chip_selects()),
            )
        )


def format_chip_version(chip_info: bytes) -> str:
    """
    The chip info reply holds ASCII groups of four characters, each stored reversed, followed by
    zero padding.
    """
    chip_info = bytes(chip_info).rstrip(b"\x00")
    groups = [chip_info[i : i + 4][::-1] for i in range(0, len(chip_info), 4)]
    return "-".join(group.decode("ascii", errors="replace") for group in groups)


class RockchipDevice:
    """
    A device in bootloader mode, reached through a [BulkChannel][rkflash.command.BulkChannel].

    All traffic goes through [exchange][rkflash.device.RockchipDevice.exchange]: one command, at
    most one payload, one status. Nothing is pipelined and nothing is retried.
    """

    def __init__(self, channel: BulkChannel):
        self.channel = channel

    def exchange(
        self,
        packet: bytes,
        payload_out: Optional[bytes] = None,
        payload_in_length: int = 0,
        minimum_length: Optional[int] = None,
    ) -> bytes:
        """
        Run one protocol exchange.

        :param packet: Encoded command packet
        :param payload_out: Data sent to the device after the command, if any
        :param payload_in_length: Number of bytes expected back from the device, if any
        :param minimum_length: Accept a reply shorter than `payload_in_length`, down to this many
            bytes. Without it the reply must be exactly `payload_in_length` bytes.

        :return: The payload received from the device (empty when none was requested)

        :raises ProtocolError: if the device returns a short payload
        :raises StatusFailedError: if the status packet is missing or malformed
        """
        if payload_out is not None and payload_in_length:
            raise ValueError("An exchange carries a payload in one direction only")

        self.channel.send(packet)
        payload_in = b""
        if payload_out is not None:
            self.channel.send(payload_out)
        elif payload_in_length:
            payload_in = self.channel.receive(payload_in_length)
            if minimum_length is None and len(payload_in) != payload_in_length:
                raise ProtocolError(
                    f"Expected {payload_in_length} bytes from the device, got {len(payload_in)}"
                )
            if minimum_length is not None and len(payload_in) < minimum_length:
                raise ProtocolError(
                    f"Expected at least {minimum_length} bytes from the device, "
                    f"got {len(payload_in)}"
                )
        self._receive_status()
        return payload_in

    def _receive_status(self) -> StatusPacket:
        try:
            data = self.channel.receive(STATUS_LENGTH)
        except TransportError as e:
            raise StatusFailedError(f"No status packet received: {e}") from e
        return decode_status(data)

    def test_unit_ready(self) -> None:
        self.exchange(encode_command(Opcode.TEST_UNIT_READY))
        time.sleep(SETTLE_DELAY)

    def read_flash_id(self) -> bytes:
        return self.exchange(
            encode_command(Opcode.READ_FLASH_ID), payload_in_length=FLASH_ID_LENGTH
        )

    def read_flash_info(self) -> NandInfo:
        data = self.exchange(
            encode_command(Opcode.READ_FLASH_INFO),
            payload_in_length=FLASH_INFO_LENGTH,
            minimum_length=NAND_INFO_LENGTH,
        )
        return NandInfo.from_bytes(data)

    def read_chip_info(self) -> bytes:
        return self.exchange(
            encode_command(Opcode.READ_CHIP_INFO),
            payload_in_length=CHIP_INFO_LENGTH,
            minimum_length=0,
        )

    def reset(self, flag: int = 0) -> None:
        LOGGER.info("rebooting device...")
        self.exchange(encode_command(Opcode.RESET_DEVICE, flag=flag))

    def execute_sdram(self, kernel_address: int, parameter_address: int) -> None:
        LOGGER.info(
            "executing code at %#010x with parameters at %#010x", kernel_address, parameter_address
        )
        self.exchange(encode_execute(kernel_address, parameter_address))

    def load_loader(self, data: bytes, code: int = LOADER_CODE_DDR) -> int:
        """
        Upload a DDR init (`LOADER_CODE_DDR`) or usbplug (`LOADER_CODE_USBPLUG`) image to a device
        in mask ROM mode.

        :return: Number of chunks transferred
        """
        chunks = 0
        for chunk in frame_loader(data):
            self.channel.control_write(code, chunk)
            chunks += 1
        LOGGER.info("loaded %d bytes in %d chunks (code %#x)", len(data), chunks, code)
        return chunks
