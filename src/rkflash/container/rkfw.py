import logging
import os
from typing import Iterator, List

from rkflash.container.abstract import (
    ContainerEntry,
    ContainerUnpacker,
    UnpackConfig,
    checked_range,
    header_deserializer,
)
from rkflash.container.rkaf import RKAF_MAGIC, RkafUnpacker
from rkflash.error import FormatError

LOGGER = logging.getLogger(__name__)

RKFW_MAGIC = b"RKFW"
BOOT_MAGIC = b"BOOT"

RKFW_HEADER_LENGTH = 0x29

BOOT_PATH = "BOOT"
EMBEDDED_UPDATE_PATH = "embedded-update.img"
EMBEDDED_UPDATE_DIR = "embedded-update"

CHIP_FAMILIES = {
    0x50: "rk29xx",
    0x60: "rk30xx",
    0x70: "rk31xx",
    0x80: "rk32xx",
    0x41: "rk3368",
}


class RkfwUnpacker(ContainerUnpacker):
    """
    Unpacker for RKFW firmware images: a bootloader bundle followed by a whole RKAF update image.

    Offset  Size    Value
    0       4       Magic "RKFW"
    4       2       Header length
    6       4       Version: byte 9 major, byte 8 minor, bytes 6-7 build
    0x0A    4       Unused
    0x0E    2       Release year
    0x10    1       Month
    0x11    1       Day
    0x12    1       Hour
    0x13    1       Minute
    0x14    1       Second
    0x15    1       Chip family
    0x16    3       Unused
    0x19    4       Offset of the bootloader bundle, which starts with "BOOT"
    0x1D    4       Length of the bootloader bundle
    0x21    4       Offset of the embedded update image, which starts with "RKAF"
    0x25    4       Length of the embedded update image

    The bundle is extracted to `BOOT` and the update image to `embedded-update.img`. With
    `UnpackConfig.recursive`, the update image is unpacked into `embedded-update/` as well;
    nesting stops there.
    """

    MAGIC = RKFW_MAGIC
    FORMAT = "RKFW"

    def entries(self) -> Iterator[ContainerEntry]:
        deserializer = header_deserializer(self.data, 0, RKFW_HEADER_LENGTH, "RKFW header")
        deserializer.seek(6)
        build = deserializer.unpack_ushort()
        minor = deserializer.unpack_ubyte()
        major = deserializer.unpack_ubyte()
        deserializer.unpack_uint()
        year = deserializer.unpack_ushort()
        month, day, hour, minute, second, chip = deserializer.unpack_multiple("6B")
        deserializer.seek(0x19)
        boot_offset, boot_length, update_offset, update_length = deserializer.unpack_multiple(
            "4I"
        )

        version = f"{major}.{minor}.{build}"
        date = f"{year}-{month:02d}-{day:02d} {hour:02d}:{minute:02d}:{second:02d}"
        LOGGER.info("version: %s", version)
        LOGGER.info("date: %s", date)
        if chip in CHIP_FAMILIES:
            LOGGER.info("family: %s", CHIP_FAMILIES[chip])
        else:
            LOGGER.info("unknown family: %#04x", chip)
        self.info = {
            "version": version,
            "date": date,
            "family": CHIP_FAMILIES.get(chip, f"{chip:#04x}"),
        }

        # both payloads are checked before either one is yielded
        self._check_tag(boot_offset, boot_length, BOOT_MAGIC)
        self._check_tag(update_offset, update_length, RKAF_MAGIC)
        LOGGER.info("%08x-%08x %s", boot_offset, boot_offset + boot_length - 1, BOOT_PATH)
        LOGGER.info(
            "%08x-%08x %s", update_offset, update_offset + update_length - 1, EMBEDDED_UPDATE_PATH
        )

        yield ContainerEntry(BOOT_PATH, BOOT_PATH, boot_offset, boot_length, boot_length)
        yield ContainerEntry(
            "embedded-update", EMBEDDED_UPDATE_PATH, update_offset, update_length, update_length
        )

    def _check_tag(self, offset: int, length: int, tag: bytes) -> None:
        checked_range(self.data, offset, length, f"{tag.decode()} payload")
        if length < len(tag) or bytes(self.data[offset : offset + len(tag)]) != tag:
            raise FormatError(f"cannot find {tag.decode()} signature")

    def unpack(self, config: UnpackConfig) -> List[ContainerEntry]:
        entries = super().unpack(config)
        if config.recursive:
            update = entries[-1]
            LOGGER.info("unpacking %s", update.path)
            RkafUnpacker(self.extract(update)).unpack(
                UnpackConfig(
                    output_dir=os.path.join(config.output_dir, EMBEDDED_UPDATE_DIR),
                    verify_crc=config.verify_crc,
                    recursive=False,
                    write_manifest=config.write_manifest,
                )
            )
        return entries
