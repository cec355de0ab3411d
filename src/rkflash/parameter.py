"""
The parameter block: the device's flash-resident configuration text (including the kernel
command line with its `mtdparts=` partition table), framed as

```
Offset      Size    Value
0           4       Tag "PARM"
4           4       Payload length, little endian
8           length  Payload
8+length    4       CRC32 of the payload, little endian
```

and zero padded to whole flash chunks. The block is stored eight times, 0x400 sectors apart, so
a damaged first copy can be recovered from another one.
"""
import io
import logging
import struct

from rkflash.checksum import crc32
from rkflash.error import FormatError, InvalidUsageError
from rkflash.io.deserializer import BinaryDeserializer
from rkflash.io.serializer import BinarySerializer
from rkflash.transfer import (
    BlockTransferEngine,
    FLASH_CHUNK_SIZE,
    Region,
    SECTOR_SIZE,
    TransferRequest,
)

LOGGER = logging.getLogger(__name__)

PARAMETER_TAG = b"PARM"
PARAMETER_HEADER_LENGTH = 8
PARAMETER_OVERHEAD = PARAMETER_HEADER_LENGTH + 4
MAX_PARAM_LENGTH = 128 * SECTOR_SIZE - PARAMETER_OVERHEAD

PARAMETER_BASE_OFFSET = 0
PARAMETER_COPIES = 8
PARAMETER_COPY_STRIDE = 0x400

_CHUNK_SECTORS = FLASH_CHUNK_SIZE // SECTOR_SIZE


def _padded_size(payload_length: int) -> int:
    total = payload_length + PARAMETER_OVERHEAD
    return -(-total // FLASH_CHUNK_SIZE) * FLASH_CHUNK_SIZE


def encode_parameter_block(payload: bytes) -> bytes:
    """
    Frame `payload` as a parameter block padded to whole flash chunks.

    :raises InvalidUsageError: if the payload is longer than `MAX_PARAM_LENGTH`
    """
    if len(payload) > MAX_PARAM_LENGTH:
        raise InvalidUsageError(
            f"Parameter payload is {len(payload)} bytes, at most {MAX_PARAM_LENGTH} fit"
        )
    serializer = BinarySerializer.zero_filled(_padded_size(len(payload)))
    serializer.write(PARAMETER_TAG)
    serializer.pack_uint(len(payload))
    serializer.write(payload)
    serializer.pack_uint(crc32(0, payload))
    return serializer.getvalue()


def stated_length(block: bytes) -> int:
    """
    The payload length recorded in a parameter block header.

    :raises FormatError: if it exceeds `MAX_PARAM_LENGTH`
    """
    deserializer = BinaryDeserializer.from_bytes(block[:PARAMETER_HEADER_LENGTH])
    deserializer.seek(4)
    length = deserializer.unpack_uint()
    if length > MAX_PARAM_LENGTH:
        raise FormatError(f"Bad parameter length! ({length:#x})")
    return length


def decode_parameter_block(block: bytes, verify_crc: bool = True) -> bytes:
    """
    Extract the payload of a parameter block.

    :param block: The block, as read from flash
    :param verify_crc: Check the CRC32 trailer

    :raises FormatError: if the length is out of bounds, runs past `block`, or the CRC does not
    match
    """
    length = stated_length(block)
    if PARAMETER_OVERHEAD + length > len(block):
        raise FormatError(
            f"Bad parameter length! ({length:#x} bytes do not fit in a {len(block):#x} byte block)"
        )
    payload = bytes(block[PARAMETER_HEADER_LENGTH : PARAMETER_HEADER_LENGTH + length])
    if verify_crc:
        (stored_crc,) = struct.unpack(
            "<I", block[PARAMETER_HEADER_LENGTH + length : PARAMETER_OVERHEAD + length]
        )
        computed_crc = crc32(0, payload)
        if stored_crc != computed_crc:
            raise FormatError(f"bad CRC! ({stored_crc:#x}, should be {computed_crc:#x})")
    return payload


def read_parameter_block(engine: BlockTransferEngine) -> bytes:
    """
    Read the raw first copy of the parameter block: one flash chunk, plus more only if the stated
    length needs them.
    """
    sink = io.BytesIO()
    engine.read(TransferRequest(Region.FLASH, PARAMETER_BASE_OFFSET, _CHUNK_SECTORS), sink)
    block = sink.getvalue()
    length = stated_length(block)
    LOGGER.info("size:  %#010x", length)

    padded_size = _padded_size(length)
    if padded_size > len(block):
        engine.read(
            TransferRequest(
                Region.FLASH,
                PARAMETER_BASE_OFFSET + _CHUNK_SECTORS,
                (padded_size - len(block)) // SECTOR_SIZE,
            ),
            sink,
        )
        block = sink.getvalue()
    return block


def read_parameters(engine: BlockTransferEngine, verify_crc: bool = True) -> bytes:
    return decode_parameter_block(read_parameter_block(engine), verify_crc)


def write_parameters(engine: BlockTransferEngine, payload: bytes) -> int:
    """
    Write `payload` as a parameter block to all `PARAMETER_COPIES` copy locations.

    :return: Number of copies written
    """
    block = encode_parameter_block(payload)
    sectors = len(block) // SECTOR_SIZE
    for copy in range(PARAMETER_COPIES):
        offset = PARAMETER_BASE_OFFSET + copy * PARAMETER_COPY_STRIDE
        LOGGER.info("writing flash memory at offset %#010x", offset)
        engine.write(TransferRequest(Region.FLASH, offset, sectors), io.BytesIO(block))
    return PARAMETER_COPIES
