"""
Checksums used by the Rockchip boot ROM and tools.

Both algorithms are the plain MSB-first, non-reflected, bit-serial form with no final XOR. The
seed makes them restartable, so a stream can be checksummed chunk by chunk:

```python
crc = crc32(0, first_chunk)
crc = crc32(crc, second_chunk)
```

Note the trailers are stored with different byte orders: CRC16 (loader upload) is appended big
endian, CRC32 (parameter blocks and wrapped images) little endian.
"""
import struct
from typing import Iterator

CRC16_POLYNOMIAL = 0x1021
CRC32_POLYNOMIAL = 0x04C10DB7

LOADER_CHUNK_SIZE = 4096
LOADER_CRC16_SEED = 0xFFFF


def crc16(seed: int, data: bytes) -> int:
    crc = seed & 0xFFFF
    for byte in data:
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ CRC16_POLYNOMIAL) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return crc


def crc32(seed: int, data: bytes) -> int:
    crc = seed & 0xFFFFFFFF
    for byte in data:
        crc ^= byte << 24
        for _ in range(8):
            if crc & 0x80000000:
                crc = ((crc << 1) ^ CRC32_POLYNOMIAL) & 0xFFFFFFFF
            else:
                crc = (crc << 1) & 0xFFFFFFFF
    return crc


def frame_loader(data: bytes, chunk_size: int = LOADER_CHUNK_SIZE) -> Iterator[bytes]:
    """
    Split a DDR init or usbplug image into the chunks the boot ROM expects, with the CRC16 of the
    whole image appended big endian after the last data byte.

    :param data: Raw loader image
    :param chunk_size: Size of every chunk except the last one

    :return: The chunks, in transfer order
    """
    framed = bytearray(data)
    # the two trailer bytes may not straddle a chunk boundary
    if len(framed) % chunk_size == chunk_size - 1:
        framed.append(0)
    framed += struct.pack(">H", crc16(LOADER_CRC16_SEED, framed))
    # a short chunk marks the end of the transfer
    if len(framed) % chunk_size == 0:
        framed.append(0)
    for i in range(0, len(framed), chunk_size):
        yield bytes(framed[i : i + chunk_size])
