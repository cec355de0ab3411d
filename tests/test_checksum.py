"""
Test the CRC16 and CRC32 primitives and the loader framing built on CRC16.
"""
import struct

from hypothesis import given, settings
from hypothesis.strategies import binary, integers

from rkflash.checksum import (
    CRC16_POLYNOMIAL,
    CRC32_POLYNOMIAL,
    LOADER_CHUNK_SIZE,
    LOADER_CRC16_SEED,
    crc16,
    crc32,
    frame_loader,
)


class TestCrc:
    def test_known_values(self):
        """
        Test the CRCs against hand-computed and published check values.

        This test verifies that:
        - A single 0x01 byte yields the polynomial itself
        - CRC16 seeded with 0xFFFF matches the CRC-16/CCITT-FALSE check value
        - An empty input returns the seed unchanged
        """
        assert crc16(0, b"\x01") == CRC16_POLYNOMIAL
        assert crc32(0, b"\x01") == CRC32_POLYNOMIAL
        assert crc16(0xFFFF, b"123456789") == 0x29B1
        assert crc16(0x1234, b"") == 0x1234
        assert crc32(0xDEADBEEF, b"") == 0xDEADBEEF

    def test_zero_input(self):
        assert crc32(0, bytes(64)) == 0
        assert crc16(0, bytes(64)) == 0

    @given(binary(), binary(), integers(0, 0xFFFFFFFF))
    def test_crc32_restartable(self, first: bytes, second: bytes, seed: int):
        """
        Checksumming a stream chunk by chunk gives the same result as checksumming it whole.
        """
        assert crc32(crc32(seed, first), second) == crc32(seed, first + second)

    @given(binary(), binary(), integers(0, 0xFFFF))
    def test_crc16_restartable(self, first: bytes, second: bytes, seed: int):
        assert crc16(crc16(seed, first), second) == crc16(seed, first + second)

    def test_accepts_memoryview(self):
        data = bytes(range(256))
        assert crc32(0, memoryview(data)[16:32]) == crc32(0, data[16:32])


class TestFrameLoader:
    def test_short_image(self):
        """
        Test framing an image smaller than one chunk.

        This test verifies that:
        - A single chunk is produced
        - It ends with the big endian CRC16 of the image, seeded with 0xFFFF
        """
        data = bytes(range(100))
        chunks = list(frame_loader(data))
        assert len(chunks) == 1
        assert chunks[0][:100] == data
        assert chunks[0][100:] == struct.pack(">H", crc16(LOADER_CRC16_SEED, data))

    def test_trailer_does_not_straddle_chunks(self):
        """
        An image one byte short of a chunk is zero padded so the CRC starts the next chunk.
        """
        data = b"\xAA" * (LOADER_CHUNK_SIZE - 1)
        chunks = list(frame_loader(data))
        assert [len(chunk) for chunk in chunks] == [LOADER_CHUNK_SIZE, 2]
        assert chunks[0] == data + b"\x00"
        assert chunks[1] == struct.pack(">H", crc16(LOADER_CRC16_SEED, data + b"\x00"))

    def test_full_chunk_gets_terminator(self):
        """
        When image and CRC fill whole chunks, a zero byte is appended so the last chunk is short.
        """
        data = b"\x55" * (LOADER_CHUNK_SIZE - 2)
        chunks = list(frame_loader(data))
        assert [len(chunk) for chunk in chunks] == [LOADER_CHUNK_SIZE, 1]
        assert chunks[1] == b"\x00"

    @settings(deadline=None)
    @given(binary(max_size=3 * LOADER_CHUNK_SIZE))
    def test_chunk_sizes(self, data: bytes):
        """
        This test verifies that:
        - The concatenated chunks start with the image
        - Every chunk but the last one is full
        - The last chunk is short, marking the end of the transfer
        """
        chunks = list(frame_loader(data))
        assert b"".join(chunks).startswith(data)
        assert all(len(chunk) == LOADER_CHUNK_SIZE for chunk in chunks[:-1])
        assert 0 < len(chunks[-1]) < LOADER_CHUNK_SIZE
