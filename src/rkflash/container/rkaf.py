import logging
from typing import Iterator, List, Optional

from rkflash.checksum import crc32
from rkflash.container.abstract import (
    ContainerEntry,
    ContainerUnpacker,
    UnpackConfig,
    checked_range,
    header_deserializer,
)
from rkflash.error import FormatError
from rkflash.parameter import PARAMETER_HEADER_LENGTH, PARAMETER_OVERHEAD

LOGGER = logging.getLogger(__name__)

RKAF_MAGIC = b"RKAF"

RKAF_HEADER_LENGTH = 0x8C
RKAF_ENTRY_LENGTH = 0x70
RKAF_CRC_LENGTH = 4

NAND_OFFSET_NONE = 0xFFFFFFFF
SELF_PATH = b"SELF"
PARAMETER_NAME_PREFIX = "parameter"


def format_version(version: int) -> str:
    return f"{version >> 24}.{(version >> 16) & 0xFF}.{version & 0xFFFF}"


class RkafUnpacker(ContainerUnpacker):
    """
    Unpacker for RKAF update images, the archive of partition images flashed by the update tools.

    Header:

    Offset  Size    Value
    0       4       Magic "RKAF"
    4       4       Image size, excluding the magic (optionally followed by a CRC32 of the image)
    8       34      Model, zero terminated
    0x2A    30      ID, zero terminated
    0x48    56      Manufacturer, zero terminated
    0x80    4       Unused
    0x84    4       Version
    0x88    4       Number of entries
    0x8C            Entry table

    Each entry of the table:

    Offset  Size    Value
    0       32      Name, zero terminated
    0x20    60      Output path, zero terminated
    0x5C    4       Space reserved on flash, in sectors
    0x60    4       Offset of the payload in the image
    0x64    4       Flash offset, in sectors, 0xFFFFFFFF if not flashed
    0x68    4       Space reserved for the payload in the image
    0x6C    4       Payload length

    Entries with path "SELF" describe the image itself and are skipped. Entries whose name starts
    with "parameter" hold a whole parameter block, which is stripped down to its payload.
    """

    MAGIC = RKAF_MAGIC
    FORMAT = "RKAF"

    def entries(self) -> Iterator[ContainerEntry]:
        deserializer = header_deserializer(self.data, 0, RKAF_HEADER_LENGTH, "RKAF header")
        deserializer.seek(4)
        image_size = deserializer.unpack_uint()
        model = deserializer.unpack_string(34)
        image_id = deserializer.unpack_string(30)
        manufacturer = deserializer.unpack_string(56)
        deserializer.unpack_uint()
        version = deserializer.unpack_uint()
        count = deserializer.unpack_uint()

        file_size = image_size + 4
        if file_size != len(self.data):
            LOGGER.info("invalid file size (should be %d bytes)", file_size)
        else:
            LOGGER.info("file size matches (%d bytes)", file_size)
        LOGGER.info("manufacturer: %s", manufacturer)
        LOGGER.info("model: %s", model)
        LOGGER.info("version: %s", format_version(version))
        LOGGER.info("number of files: %d", count)
        self.info = {
            "model": model,
            "id": image_id,
            "manufacturer": manufacturer,
            "version": format_version(version),
            "size": file_size,
        }

        checked_range(
            self.data, RKAF_HEADER_LENGTH, count * RKAF_ENTRY_LENGTH, "RKAF entry table"
        )
        for index in range(count):
            entry = self._parse_entry(RKAF_HEADER_LENGTH + index * RKAF_ENTRY_LENGTH)
            if entry is not None:
                yield entry

    def _parse_entry(self, offset: int) -> Optional[ContainerEntry]:
        deserializer = header_deserializer(self.data, offset, RKAF_ENTRY_LENGTH, "RKAF entry")
        name = deserializer.unpack_string(32)
        raw_path = deserializer.read(60)
        deserializer.unpack_uint()
        source_offset = deserializer.unpack_uint()
        nand_offset = deserializer.unpack_uint()
        source_length = deserializer.unpack_uint()
        stated_length = deserializer.unpack_uint()

        if raw_path[: len(SELF_PATH)] == SELF_PATH:
            LOGGER.info("skipping SELF entry")
            return None

        path = raw_path.split(b"\x00", 1)[0].decode("latin-1")
        LOGGER.info(
            "%08x-%08x %-24s (fsize: %d)",
            source_offset,
            source_offset + source_length - 1,
            path,
            stated_length,
        )

        if name.startswith(PARAMETER_NAME_PREFIX):
            if stated_length < PARAMETER_OVERHEAD:
                raise FormatError(
                    f"Parameter entry {name!r} is {stated_length} bytes, too short to strip"
                )
            source_offset += PARAMETER_HEADER_LENGTH
            stated_length -= PARAMETER_OVERHEAD

        return ContainerEntry(
            name=name,
            path=path,
            source_offset=source_offset,
            source_length=source_length,
            stated_length=stated_length,
            nand_offset=None if nand_offset == NAND_OFFSET_NONE else nand_offset,
        )

    def verify_crc(self) -> None:
        """
        Check the CRC32 stored right after the image.

        :raises FormatError: if the trailer is missing or does not match
        """
        deserializer = header_deserializer(self.data, 4, 4, "RKAF header")
        length = deserializer.unpack_uint()
        stored_crc = header_deserializer(
            self.data, length, RKAF_CRC_LENGTH, "RKAF CRC"
        ).unpack_uint()
        computed_crc = crc32(0, self.data[:length])
        if stored_crc != computed_crc:
            raise FormatError(f"bad CRC! ({stored_crc:#x}, should be {computed_crc:#x})")
        LOGGER.info("CRC matches (%#010x)", computed_crc)

    def unpack(self, config: UnpackConfig) -> List[ContainerEntry]:
        if config.verify_crc:
            self.verify_crc()
        return super().unpack(config)
