"""
Chunked block transfers between the host and the three device regions.

Lengths and offsets are expressed in region units: 512-byte sectors for flash, bytes for SDRAM
and 0x210-byte blocks for the IDB. Each loop issues one command per chunk and never overlaps
the command, payload and status phases of consecutive chunks.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, Iterator

from rkflash.command import Opcode, encode_command
from rkflash.device import RockchipDevice
from rkflash.error import InvalidUsageError, TransferIOError

LOGGER = logging.getLogger(__name__)

SECTOR_SIZE = 512
FLASH_CHUNK_SIZE = 0x4000
IDB_BLOCK_SIZE = 0x210
IDB_CHUNK_BLOCKS = 0x20
SDRAM_BASE_ADDRESS = 0x60000000

FILL_BYTE = 0xFF
PROGRESS_INTERVAL = 0x100


@dataclass(frozen=True)
class RegionLayout:
    """
    :ivar unit_size: Size of one addressing unit, in bytes
    :ivar chunk_units: Number of units moved by one command
    :ivar read_opcode: Opcode reading from the region
    :ivar write_opcode: Opcode writing to the region
    :ivar byte_granular: Whether the final chunk of a transfer may be short
    :ivar base_address: Subtracted from offsets before they are sent to the device
    """

    unit_size: int
    chunk_units: int
    read_opcode: Opcode
    write_opcode: Opcode
    byte_granular: bool = False
    base_address: int = 0

    @property
    def chunk_size(self) -> int:
        return self.unit_size * self.chunk_units


class Region(Enum):
    FLASH = "flash"
    SDRAM = "sdram"
    IDB = "idb"

    @property
    def layout(self) -> RegionLayout:
        return _REGION_LAYOUTS[self]


_REGION_LAYOUTS = {
    Region.FLASH: RegionLayout(
        SECTOR_SIZE, FLASH_CHUNK_SIZE // SECTOR_SIZE, Opcode.READ_LBA, Opcode.WRITE_LBA
    ),
    Region.SDRAM: RegionLayout(
        1,
        FLASH_CHUNK_SIZE,
        Opcode.READ_SDRAM,
        Opcode.WRITE_SDRAM,
        byte_granular=True,
        base_address=SDRAM_BASE_ADDRESS,
    ),
    Region.IDB: RegionLayout(
        IDB_BLOCK_SIZE, IDB_CHUNK_BLOCKS, Opcode.READ_SECTOR, Opcode.WRITE_SECTOR
    ),
}


@dataclass(frozen=True)
class TransferRequest:
    """
    :ivar region: Target region
    :ivar offset: First unit; an absolute address for SDRAM
    :ivar length: Number of units to move
    """

    region: Region
    offset: int
    length: int

    def __post_init__(self):
        layout = self.region.layout
        if self.length < 0:
            raise InvalidUsageError(f"Transfer length must not be negative, got {self.length}")
        if self.offset < layout.base_address:
            raise InvalidUsageError(
                f"{self.region.value} offsets start at {layout.base_address:#010x}, "
                f"got {self.offset:#010x}"
            )
        if not layout.byte_granular and self.length % layout.chunk_units != 0:
            raise InvalidUsageError(
                f"{self.region.value} transfers must be a multiple of {layout.chunk_units:#x} "
                f"units, got {self.length:#x}"
            )


@dataclass(frozen=True)
class Chunk:
    """
    :ivar offset: First unit of the chunk, as given in the request
    :ivar device_offset: First unit of the chunk, as sent to the device
    :ivar count: Number of units in the chunk
    :ivar size: Size of the chunk payload, in bytes
    """

    offset: int
    device_offset: int
    count: int
    size: int


@dataclass
class TransferResult:
    """
    :ivar request: The request that was served
    :ivar units: Number of units sent to or received from the device
    :ivar end_of_input: Whether a write stopped early because its source ran dry
    """

    request: TransferRequest
    units: int = 0
    end_of_input: bool = False

    @property
    def complete(self) -> bool:
        return self.units >= self.request.length


def chunk_plan(request: TransferRequest) -> Iterator[Chunk]:
    """
    The sequence of chunks moving `request`. Counts add up to `request.length` exactly; only the
    last chunk of a byte-granular region may be smaller than a full chunk.
    """
    layout = request.region.layout
    offset = request.offset
    remaining = request.length
    while remaining > 0:
        count = min(remaining, layout.chunk_units)
        yield Chunk(offset, offset - layout.base_address, count, count * layout.unit_size)
        offset += count
        remaining -= count


def _log_progress(verb: str, request: TransferRequest, chunk: Chunk) -> None:
    if chunk.offset % PROGRESS_INTERVAL == 0:
        LOGGER.info("%s %s memory at offset %#010x", verb, request.region.value, chunk.offset)
    else:
        LOGGER.debug("%s %s memory at offset %#010x", verb, request.region.value, chunk.offset)


def _read_chunk(source: BinaryIO, size: int) -> bytes:
    """
    Read up to `size` bytes, retrying short reads until the source reports end of input.
    """
    data = bytearray()
    while len(data) < size:
        try:
            part = source.read(size - len(data))
        except OSError as e:
            raise TransferIOError(f"Error reading input: {e}") from e
        if not part:
            break
        data += part
    return bytes(data)


class BlockTransferEngine:
    def __init__(self, device: RockchipDevice):
        self.device = device

    def read(self, request: TransferRequest, sink: BinaryIO) -> TransferResult:
        """
        Read `request` from the device into `sink`.

        :raises TransferIOError: if writing to `sink` fails (disk full, closed pipe, ...)
        """
        layout = request.region.layout
        result = TransferResult(request)
        for chunk in chunk_plan(request):
            _log_progress("reading", request, chunk)
            data = self.device.exchange(
                encode_command(layout.read_opcode, chunk.device_offset, chunk.count),
                payload_in_length=chunk.size,
            )
            try:
                sink.write(data)
            except OSError as e:
                raise TransferIOError(f"Error writing buffer to output: {e}") from e
            result.units += chunk.count
        return result

    def write(self, request: TransferRequest, source: BinaryIO) -> TransferResult:
        """
        Write `request` to the device from `source`.

        Running out of input before `request.length` is not an error: the loop stops and the
        result reports how much was written. On flash and IDB the last partial chunk is zero
        padded, as those regions only take whole chunks; on SDRAM it is sent as is.
        """
        layout = request.region.layout
        result = TransferResult(request)
        for chunk in chunk_plan(request):
            data = _read_chunk(source, chunk.size)
            if not data:
                LOGGER.info("premature end-of-file reached")
                result.end_of_input = True
                break

            count = chunk.count
            short = len(data) < chunk.size
            if short:
                if layout.byte_granular:
                    count = len(data)
                else:
                    data += b"\x00" * (chunk.size - len(data))

            _log_progress("writing", request, chunk)
            self.device.exchange(
                encode_command(layout.write_opcode, chunk.device_offset, count),
                payload_out=data,
            )
            result.units += count
            if short:
                LOGGER.info("premature end-of-file reached")
                result.end_of_input = True
                break
        return result

    def erase(self, request: TransferRequest) -> TransferResult:
        """
        Overwrite `request` with `FILL_BYTE`.
        """
        layout = request.region.layout
        result = TransferResult(request)
        fill = bytes([FILL_BYTE]) * layout.chunk_size
        for chunk in chunk_plan(request):
            _log_progress("erasing", request, chunk)
            self.device.exchange(
                encode_command(layout.write_opcode, chunk.device_offset, chunk.count),
                payload_out=fill[: chunk.size],
            )
            result.units += chunk.count
        return result
