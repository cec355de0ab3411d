"""
Framing of the Rockchip bootloader USB protocol.

Every operation is a three step exchange on the bulk endpoints: a 31-byte command packet, an
optional payload in either direction, then a 13-byte status packet. The command packet is a USB
mass-storage style CBW:

```
Offset  Size    Value
0       4       Signature "USBC"
4       4       Transaction tag, random, big endian
8       4       Unused
12      4       Opcode, big endian
16      1       Flag (reset sub-command)
17      4       Offset (sector, block or byte address depending on the opcode), big endian
21      1       Unused
22      2       Count (sectors, blocks or bytes), big endian
24      7       Unused
```

Execute-SDRAM packets carry two 32-bit addresses at 17 and 22 instead of offset and count.
"""
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from types import TracebackType
from typing import Optional, Type

from beartype import beartype

from rkflash.error import InvalidUsageError, StatusFailedError
from rkflash.io import Endianness
from rkflash.io.serializer import BinarySerializer

COMMAND_SIGNATURE = b"USBC"
COMMAND_LENGTH = 31
STATUS_LENGTH = 13

TAG_OFFSET = 4
OPCODE_OFFSET = 12
FLAG_OFFSET = 16
ADDRESS_OFFSET = 17
COUNT_OFFSET = 22


class Opcode(IntEnum):
    TEST_UNIT_READY = 0x80000600
    READ_FLASH_ID = 0x80000601
    READ_FLASH_INFO = 0x8000061A
    READ_CHIP_INFO = 0x8000061B
    RESET_DEVICE = 0x000006FF

    READ_SECTOR = 0x80000A04
    READ_LBA = 0x80000A14
    READ_SDRAM = 0x80000A17

    WRITE_SECTOR = 0x00000A05
    WRITE_LBA = 0x00000A15
    WRITE_SDRAM = 0x00000A18
    EXECUTE_SDRAM = 0x00000A19


def _new_tag() -> int:
    return random.getrandbits(32)


def _new_packet(opcode: int, tag: Optional[int]) -> BinarySerializer:
    packet = BinarySerializer.zero_filled(COMMAND_LENGTH, Endianness.BIG_ENDIAN)
    packet.write(COMMAND_SIGNATURE)
    if tag is None:
        tag = _new_tag()
    # the device accepts the zero fill for any field that is numerically zero
    if tag:
        packet.seek(TAG_OFFSET)
        packet.pack_uint(tag)
    if opcode:
        packet.seek(OPCODE_OFFSET)
        packet.pack_uint(opcode)
    return packet


@beartype
def encode_command(
    opcode: int, offset: int = 0, count: int = 0, flag: int = 0, tag: Optional[int] = None
) -> bytes:
    """
    Build a command packet.

    :param opcode: One of [Opcode][rkflash.command.Opcode]
    :param offset: Start sector, block or byte address
    :param count: Number of sectors, blocks or bytes
    :param flag: Flag byte, only meaningful for `RESET_DEVICE`
    :param tag: Transaction tag; a random one is drawn if not given

    :raises InvalidUsageError: if a field does not fit its width
    """
    if not 0 <= offset <= 0xFFFFFFFF:
        raise InvalidUsageError(f"Offset {offset:#x} does not fit in 32 bits")
    if not 0 <= count <= 0xFFFF:
        raise InvalidUsageError(f"Count {count:#x} does not fit in 16 bits")
    if not 0 <= flag <= 0xFF:
        raise InvalidUsageError(f"Flag {flag:#x} does not fit in 8 bits")

    packet = _new_packet(opcode, tag)
    if flag:
        packet.seek(FLAG_OFFSET)
        packet.pack_ubyte(flag)
    if offset:
        packet.seek(ADDRESS_OFFSET)
        packet.pack_uint(offset)
    if count:
        packet.seek(COUNT_OFFSET)
        packet.pack_ushort(count)
    return packet.getvalue()


@beartype
def encode_execute(kernel_address: int, parameter_address: int, tag: Optional[int] = None) -> bytes:
    """
    Build an `EXECUTE_SDRAM` packet, which jumps to `kernel_address` with the parameter block at
    `parameter_address`.
    """
    for address in (kernel_address, parameter_address):
        if not 0 <= address <= 0xFFFFFFFF:
            raise InvalidUsageError(f"Address {address:#x} does not fit in 32 bits")

    packet = _new_packet(Opcode.EXECUTE_SDRAM, tag)
    if kernel_address:
        packet.seek(ADDRESS_OFFSET)
        packet.pack_uint(kernel_address)
    if parameter_address:
        packet.seek(COUNT_OFFSET)
        packet.pack_uint(parameter_address)
    return packet.getvalue()


@dataclass(frozen=True)
class StatusPacket:
    """
    The 13-byte reply to every command. Its content is not interpreted; arriving with the right
    length is the whole contract.
    """

    raw: bytes


def decode_status(data: bytes) -> StatusPacket:
    if len(data) != STATUS_LENGTH:
        raise StatusFailedError(
            f"Expected a {STATUS_LENGTH} byte status packet, received {len(data)} bytes"
        )
    return StatusPacket(bytes(data))


class BulkChannel(ABC):
    """
    A pair of bulk endpoints to the device. Implementations raise
    [TransportError][rkflash.error.TransportError] when a transfer fails.
    """

    @abstractmethod
    def send(self, data: bytes) -> None:
        raise NotImplementedError()

    @abstractmethod
    def receive(self, max_length: int) -> bytes:
        raise NotImplementedError()

    def control_write(self, index: int, data: bytes) -> None:
        """
        Vendor control transfer used to upload a loader to a device in mask ROM mode. Only
        channels backed by a real USB device support it.
        """
        raise InvalidUsageError(f"{type(self).__name__} does not support control transfers")

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(
        self,
        exception_type: Optional[Type[BaseException]],
        exception_value: Optional[BaseException],
        exception_traceback: Optional[TracebackType],
    ) -> None:
        self.close()
