import logging
from typing import Iterator

from rkflash.container.abstract import (
    ContainerEntry,
    ContainerUnpacker,
    checked_range,
    header_deserializer,
)
from rkflash.error import FormatError

LOGGER = logging.getLogger(__name__)

RKFP_MAGIC = b"RKFP"

RKFP_HEADER_LENGTH = 512
RKFP_MIN_ENTRY_LENGTH = 0x34
ENTRY_CRC_OFFSET = 0x1F8


class RkfpUnpacker(ContainerUnpacker):
    """
    Unpacker for RKFP partition images: a partition table followed by the partitions it lists.

    Header, one 512-byte sector:

    Offset  Size    Value
    0       4       Magic "RKFP"
    4       2       Release year
    6       1       Month
    7       1       Day
    8       1       Hour
    9       1       Minute
    0x0A    1       Second
    0x0C    4       Firmware version
    0x10    4       Sector size, in bytes
    0x14    4       Offset of the entry table, in sectors
    0x18    4       Offset of the backup entry table, in sectors
    0x1C    4       Size of one entry, in bytes
    0x20    4       Number of entries
    0x24    4       Firmware size
    0x1F8   4       CRC of the entry table
    0x1FC   4       CRC of the header

    Each entry of the table:

    Offset  Size    Value
    0       32      Name, zero terminated; also the output path
    0x20    4       Type
    0x24    4       Offset of the payload, in sectors
    0x28    4       Space reserved for the payload, in sectors
    0x2C    4       Payload length, in bytes
    0x30    4       Property

    The CRCs, type and property are reported but not checked.
    """

    MAGIC = RKFP_MAGIC
    FORMAT = "RKFP"

    def entries(self) -> Iterator[ContainerEntry]:
        deserializer = header_deserializer(self.data, 0, RKFP_HEADER_LENGTH, "RKFP header")
        deserializer.seek(4)
        year = deserializer.unpack_ushort()
        month, day, hour, minute, second = deserializer.unpack_multiple("5B")
        deserializer.seek(0x0C)
        (
            version,
            sector_size,
            entry_offset,
            backup_offset,
            entry_size,
            count,
            firmware_size,
        ) = deserializer.unpack_multiple("7I")
        deserializer.seek(ENTRY_CRC_OFFSET)
        entry_crc, header_crc = deserializer.unpack_multiple("2I")

        date = f"{year}-{month:02d}-{day:02d} {hour:02d}:{minute:02d}:{second:02d}"
        LOGGER.info("date: %s", date)
        LOGGER.info("version: %#010x", version)
        LOGGER.info("sector size: %d, firmware size: %#x", sector_size, firmware_size)
        LOGGER.info(
            "entry table at sector %#x (backup at %#x), %d entries of %d bytes",
            entry_offset,
            backup_offset,
            count,
            entry_size,
        )
        LOGGER.info("entry CRC: %#010x, header CRC: %#010x", entry_crc, header_crc)
        self.info = {
            "date": date,
            "version": version,
            "sector_size": sector_size,
            "firmware_size": firmware_size,
            "entry_crc": entry_crc,
            "header_crc": header_crc,
        }

        if sector_size == 0:
            raise FormatError("RKFP sector size is zero")
        if entry_size < RKFP_MIN_ENTRY_LENGTH:
            raise FormatError(
                f"RKFP entries are {entry_size:#x} bytes, at least {RKFP_MIN_ENTRY_LENGTH:#x} "
                f"are needed"
            )

        table_offset = sector_size * entry_offset
        checked_range(self.data, table_offset, count * entry_size, "RKFP entry table")
        for index in range(count):
            yield self._parse_entry(table_offset + index * entry_size, sector_size)

    def _parse_entry(self, offset: int, sector_size: int) -> ContainerEntry:
        deserializer = header_deserializer(
            self.data, offset, RKFP_MIN_ENTRY_LENGTH, "RKFP entry"
        )
        name = deserializer.unpack_string(32)
        entry_type, start, size, length, entry_property = deserializer.unpack_multiple("5I")

        source_offset = start * sector_size
        source_length = size * sector_size
        LOGGER.info(
            "%08x-%08x %-24s (type: %#x, property: %#x, fsize: %d)",
            source_offset,
            source_offset + source_length - 1,
            name,
            entry_type,
            entry_property,
            length,
        )
        if length > source_length:
            raise FormatError(
                f"Entry {name!r} states {length:#x} bytes but only {source_length:#x} are reserved"
            )
        return ContainerEntry(
            name=name,
            path=name,
            source_offset=source_offset,
            source_length=source_length,
            stated_length=length,
            entry_type=entry_type,
            entry_property=entry_property,
        )
