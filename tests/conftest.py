import struct
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import pytest

from rkflash.command import BulkChannel, COMMAND_LENGTH, COMMAND_SIGNATURE, Opcode
from rkflash.device import RockchipDevice
from rkflash.error import TransportError
from rkflash.transfer import (
    BlockTransferEngine,
    IDB_BLOCK_SIZE,
    SDRAM_BASE_ADDRESS,
    SECTOR_SIZE,
)

FLASH_SECTORS = 0x8000
IDB_BLOCKS = 0x100
SDRAM_SIZE = 0x10000

FLASH_ID = bytes([0x2C, 0x44, 0x44, 0x4B, 0xA9])
CHIP_INFO = b"8233V100".ljust(16, b"\x00")


@dataclass
class ReceivedCommand:
    opcode: int
    tag: int
    flag: int
    offset: int
    count: int
    raw: bytes
    payload: Optional[bytes] = None


@dataclass
class LoaderUpload:
    index: int
    data: bytes


@dataclass
class FakeChannel(BulkChannel):
    """
    Emulates a device in bootloader mode on the other end of the bulk endpoints: flash, IDB and
    SDRAM memories, the single-shot queries, and one status packet per command.

    :ivar short_reply: Answer read commands with that many bytes fewer than requested
    :ivar bad_status_length: Send status packets of that length instead of 13 bytes
    :ivar flash_info_length: Length of the READ_FLASH_INFO reply; real boot loaders send 11 bytes
    """

    flash: bytearray = field(default_factory=lambda: bytearray(FLASH_SECTORS * SECTOR_SIZE))
    idb: bytearray = field(default_factory=lambda: bytearray(IDB_BLOCKS * IDB_BLOCK_SIZE))
    sdram: bytearray = field(default_factory=lambda: bytearray(SDRAM_SIZE))
    short_reply: int = 0
    bad_status_length: Optional[int] = None
    flash_info_length: int = 512

    commands: List[ReceivedCommand] = field(default_factory=list)
    uploads: List[LoaderUpload] = field(default_factory=list)
    executed: List[Tuple[int, int]] = field(default_factory=list)
    resets: List[int] = field(default_factory=list)
    closed: bool = False

    _pending_write: Optional[ReceivedCommand] = None
    _pending_reply: Optional[bytes] = None
    _pending_status: Optional[bytes] = None

    def flash_info(self) -> bytes:
        info = struct.pack("<IHBBBBB", FLASH_SECTORS, 0x100, 8, 40, 32, 2, 0x1)
        return info.ljust(self.flash_info_length, b"\x00")

    def send(self, data: bytes) -> None:
        data = bytes(data)
        if self._pending_write is not None:
            self._store(self._pending_write, data)
            self._pending_write = None
            return
        if len(data) != COMMAND_LENGTH or data[:4] != COMMAND_SIGNATURE:
            raise TransportError(f"Unexpected {len(data)} byte transfer")
        command = ReceivedCommand(
            opcode=struct.unpack(">I", data[12:16])[0],
            tag=struct.unpack(">I", data[4:8])[0],
            flag=data[16],
            offset=struct.unpack(">I", data[17:21])[0],
            count=struct.unpack(">H", data[22:24])[0],
            raw=data,
        )
        self.commands.append(command)
        self._pending_status = b"USBS" + data[4:8] + b"\x00" * 5
        self._dispatch(command)

    def _dispatch(self, command: ReceivedCommand) -> None:
        opcode = command.opcode
        if opcode == Opcode.READ_FLASH_ID:
            self._pending_reply = FLASH_ID
        elif opcode == Opcode.READ_FLASH_INFO:
            self._pending_reply = self.flash_info()
        elif opcode == Opcode.READ_CHIP_INFO:
            self._pending_reply = CHIP_INFO
        elif opcode == Opcode.RESET_DEVICE:
            self.resets.append(command.flag)
        elif opcode == Opcode.EXECUTE_SDRAM:
            self.executed.append(
                (command.offset, struct.unpack(">I", command.raw[22:26])[0])
            )
        elif opcode in (Opcode.READ_LBA, Opcode.READ_SECTOR, Opcode.READ_SDRAM):
            memory, start, end = self._memory_range(command)
            self._pending_reply = bytes(memory[start:end])
        elif opcode in (Opcode.WRITE_LBA, Opcode.WRITE_SECTOR, Opcode.WRITE_SDRAM):
            self._pending_write = command
        elif opcode != Opcode.TEST_UNIT_READY:
            raise TransportError(f"Unknown opcode {opcode:#x}")

    def _memory_range(self, command: ReceivedCommand) -> Tuple[bytearray, int, int]:
        if command.opcode in (Opcode.READ_LBA, Opcode.WRITE_LBA):
            return (
                self.flash,
                command.offset * SECTOR_SIZE,
                (command.offset + command.count) * SECTOR_SIZE,
            )
        if command.opcode in (Opcode.READ_SECTOR, Opcode.WRITE_SECTOR):
            return (
                self.idb,
                command.offset * IDB_BLOCK_SIZE,
                (command.offset + command.count) * IDB_BLOCK_SIZE,
            )
        return self.sdram, command.offset, command.offset + command.count

    def _store(self, command: ReceivedCommand, data: bytes) -> None:
        memory, start, end = self._memory_range(command)
        if len(data) != end - start:
            raise TransportError(f"Expected {end - start} payload bytes, got {len(data)}")
        command.payload = data
        memory[start:end] = data

    def receive(self, max_length: int) -> bytes:
        if self._pending_reply is not None:
            reply = self._pending_reply[: max_length - self.short_reply]
            self._pending_reply = None
            return reply
        if self._pending_status is not None:
            status = self._pending_status
            self._pending_status = None
            if self.bad_status_length is not None:
                return status.ljust(self.bad_status_length, b"\x00")[: self.bad_status_length]
            return status[:max_length]
        raise TransportError("Bulk read timed out")

    def control_write(self, index: int, data: bytes) -> None:
        self.uploads.append(LoaderUpload(index, bytes(data)))

    def close(self) -> None:
        self.closed = True

    def commands_with(self, opcode: int) -> List[ReceivedCommand]:
        return [command for command in self.commands if command.opcode == opcode]


@pytest.fixture
def fake_channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def device(fake_channel: FakeChannel) -> RockchipDevice:
    return RockchipDevice(fake_channel)


@pytest.fixture
def engine(device: RockchipDevice) -> BlockTransferEngine:
    return BlockTransferEngine(device)


@pytest.fixture
def sdram_base() -> int:
    return SDRAM_BASE_ADDRESS
