"""
Test parameter block framing and its storage on flash.
"""
import struct

import pytest
from hypothesis import given, settings
from hypothesis.strategies import binary

from rkflash.checksum import crc32
from rkflash.error import FormatError, InvalidUsageError
from rkflash.parameter import (
    MAX_PARAM_LENGTH,
    PARAMETER_COPIES,
    PARAMETER_COPY_STRIDE,
    decode_parameter_block,
    encode_parameter_block,
    read_parameters,
    write_parameters,
)
from rkflash.transfer import BlockTransferEngine, FLASH_CHUNK_SIZE, SECTOR_SIZE

from conftest import FakeChannel

PARAMETERS = (
    b"FIRMWARE_VER:4.4.4\n"
    b"MACHINE_MODEL:rk3188\n"
    b"CMDLINE:console=ttyFIQ0 androidboot.console=ttyFIQ0 init=/init "
    b"mtdparts=rk29xxnand:0x00002000@0x00002000(misc),0x00004000@0x00004000(kernel),"
    b"-@0x00008000(user)\n"
)


class TestEncodeParameterBlock:
    def test_layout(self):
        """
        Test the framing of a parameter block.

        This test verifies that:
        - The block starts with "PARM" and the little endian payload length
        - The payload is followed by its little endian CRC32
        - The block is zero padded to a whole flash chunk
        """
        block = encode_parameter_block(PARAMETERS)
        assert len(block) == FLASH_CHUNK_SIZE
        assert block[:4] == b"PARM"
        assert struct.unpack("<I", block[4:8])[0] == len(PARAMETERS)
        assert block[8 : 8 + len(PARAMETERS)] == PARAMETERS
        crc_offset = 8 + len(PARAMETERS)
        assert struct.unpack("<I", block[crc_offset : crc_offset + 4])[0] == crc32(0, PARAMETERS)
        assert block[crc_offset + 4 :] == bytes(len(block) - crc_offset - 4)

    def test_too_large(self):
        with pytest.raises(InvalidUsageError):
            encode_parameter_block(bytes(MAX_PARAM_LENGTH + 1))

    def test_largest_payload(self):
        block = encode_parameter_block(b"\x01" * MAX_PARAM_LENGTH)
        assert len(block) % FLASH_CHUNK_SIZE == 0
        assert decode_parameter_block(block) == b"\x01" * MAX_PARAM_LENGTH

    @settings(max_examples=25, deadline=None)
    @given(binary(max_size=MAX_PARAM_LENGTH))
    def test_round_trip(self, payload: bytes):
        """
        Any payload up to the maximum, NUL bytes included, decodes back to itself.
        """
        assert decode_parameter_block(encode_parameter_block(payload)) == payload


class TestDecodeParameterBlock:
    def test_bad_crc(self):
        block = bytearray(encode_parameter_block(PARAMETERS))
        block[8] ^= 0xFF
        with pytest.raises(FormatError, match="bad CRC"):
            decode_parameter_block(bytes(block))
        assert decode_parameter_block(bytes(block), verify_crc=False)[1:] == PARAMETERS[1:]

    def test_length_above_maximum(self):
        block = b"PARM" + struct.pack("<I", MAX_PARAM_LENGTH + 1) + bytes(FLASH_CHUNK_SIZE - 8)
        with pytest.raises(FormatError, match="Bad parameter length"):
            decode_parameter_block(block, verify_crc=False)

    def test_length_past_block(self):
        block = b"PARM" + struct.pack("<I", FLASH_CHUNK_SIZE) + bytes(FLASH_CHUNK_SIZE - 8)
        with pytest.raises(FormatError):
            decode_parameter_block(block, verify_crc=False)


class TestParametersOnFlash:
    def test_write_copies(self, engine: BlockTransferEngine, fake_channel: FakeChannel):
        """
        Test writing the parameter block.

        This test verifies that:
        - Eight identical copies are written
        - The copies are 0x400 sectors apart, starting at sector 0
        """
        assert write_parameters(engine, PARAMETERS) == PARAMETER_COPIES
        block = encode_parameter_block(PARAMETERS)
        for copy in range(PARAMETER_COPIES):
            start = copy * PARAMETER_COPY_STRIDE * SECTOR_SIZE
            assert fake_channel.flash[start : start + len(block)] == block

    def test_read_back(self, engine: BlockTransferEngine):
        write_parameters(engine, PARAMETERS)
        assert read_parameters(engine) == PARAMETERS

    def test_read_back_large(self, engine: BlockTransferEngine):
        """
        A payload spanning several flash chunks is read back whole.
        """
        payload = b"\x00\xFF" * (MAX_PARAM_LENGTH // 2)
        write_parameters(engine, payload)
        assert read_parameters(engine) == payload

    def test_read_corrupted(self, engine: BlockTransferEngine, fake_channel: FakeChannel):
        write_parameters(engine, PARAMETERS)
        fake_channel.flash[10] ^= 0xFF
        with pytest.raises(FormatError, match="bad CRC"):
            read_parameters(engine)
