"""
Test the single-shot device commands and the exchange discipline.
"""
import pytest

from rkflash.checksum import LOADER_CHUNK_SIZE
from rkflash.command import Opcode, encode_command
from rkflash.device import LOADER_CODE_USBPLUG, NandInfo, RockchipDevice, format_chip_version
from rkflash.error import ProtocolError, StatusFailedError, TransportError

from conftest import FLASH_ID, FLASH_SECTORS, FakeChannel


def test_test_unit_ready(device: RockchipDevice, fake_channel: FakeChannel):
    device.test_unit_ready()
    assert [command.opcode for command in fake_channel.commands] == [Opcode.TEST_UNIT_READY]


def test_read_flash_id(device: RockchipDevice):
    assert device.read_flash_id() == FLASH_ID


def test_read_flash_info(device: RockchipDevice):
    """
    Test decoding the flash info reply.

    This test verifies that:
    - The flash size is reported in sectors
    - The manufacturer ID is mapped to a name
    - The chip select bitmap is expanded
    """
    info = device.read_flash_info()
    assert info.flash_size == FLASH_SECTORS
    assert info.manufacturer == "Hynix"
    assert info.chip_selects() == [0]
    description = info.describe()
    assert "Flash Size: 16MB" in description
    assert "Flash CS: <0>" in description


def test_read_flash_info_short_reply(fake_channel: FakeChannel):
    """
    Boot loaders answer READ_FLASH_INFO with only the 11 bytes they fill in.
    """
    fake_channel.flash_info_length = 11
    info = RockchipDevice(fake_channel).read_flash_info()
    assert info.flash_size == FLASH_SECTORS
    assert info.chip_select == 0x1


def test_read_flash_info_too_short(fake_channel: FakeChannel):
    fake_channel.flash_info_length = 10
    with pytest.raises(ProtocolError, match="at least 11"):
        RockchipDevice(fake_channel).read_flash_info()


def test_unknown_manufacturer():
    info = NandInfo(0, 0, 0, 0, 0, 0x42, 0b1010)
    assert info.manufacturer == "Unknown"
    assert info.chip_selects() == [1, 3]


def test_read_chip_info(device: RockchipDevice):
    assert format_chip_version(device.read_chip_info()) == "3328-001V"


def test_reset(device: RockchipDevice, fake_channel: FakeChannel):
    device.reset(2)
    assert fake_channel.resets == [2]


def test_execute_sdram(device: RockchipDevice, fake_channel: FakeChannel):
    device.execute_sdram(0x60408000, 0x60088000)
    assert fake_channel.executed == [(0x60408000, 0x60088000)]


def test_short_payload(fake_channel: FakeChannel):
    """
    A reply shorter than requested is a protocol error, raised before the status is read.
    """
    fake_channel.short_reply = 1
    with pytest.raises(ProtocolError):
        RockchipDevice(fake_channel).read_flash_id()


@pytest.mark.parametrize("length", [0, 4, 31])
def test_bad_status(fake_channel: FakeChannel, length: int):
    fake_channel.bad_status_length = length
    with pytest.raises(StatusFailedError):
        RockchipDevice(fake_channel).test_unit_ready()


def test_missing_status():
    """
    A channel error while waiting for the status packet is reported as a failed status.
    """

    class SilentChannel(FakeChannel):
        def receive(self, max_length: int) -> bytes:
            raise TransportError("timeout")

    with pytest.raises(StatusFailedError):
        RockchipDevice(SilentChannel()).test_unit_ready()


def test_exchange_is_one_directional(device: RockchipDevice):
    with pytest.raises(ValueError):
        device.exchange(encode_command(Opcode.WRITE_LBA), payload_out=b"x", payload_in_length=1)


def test_load_loader(device: RockchipDevice, fake_channel: FakeChannel):
    """
    Test uploading a loader stage with control transfers.

    This test verifies that:
    - The framed chunks are sent in order, with the stage code as index
    - No bulk command is issued
    """
    data = bytes(LOADER_CHUNK_SIZE + 10)
    chunks = device.load_loader(data, LOADER_CODE_USBPLUG)
    assert chunks == 2
    assert [upload.index for upload in fake_channel.uploads] == [LOADER_CODE_USBPLUG] * 2
    assert b"".join(upload.data for upload in fake_channel.uploads)[: len(data)] == data
    assert fake_channel.commands == []
