"""
Builders for small RKAF, RKFW and RKFP images used by the container tests.
"""
import struct
from dataclasses import dataclass
from typing import List, Optional, Sequence

from rkflash.checksum import crc32

RKAF_ALIGNMENT = 0x800
SELF = None


@dataclass
class RkafFile:
    name: str
    path: str
    data: Optional[bytes] = SELF
    nand_offset: int = 0xFFFFFFFF


def _align(value: int, alignment: int) -> int:
    return -(-value // alignment) * alignment


def build_rkaf(
    files: Sequence[RkafFile],
    with_crc: bool = True,
    model: str = "rk3188",
    manufacturer: str = "rockchip",
    version: int = 0x04040004,
) -> bytes:
    data_offset = _align(0x8C + 0x70 * len(files), RKAF_ALIGNMENT)
    payloads = bytearray()
    placements = []
    for file in files:
        if file.data is None:
            placements.append(None)
            continue
        placements.append((data_offset + len(payloads), len(file.data)))
        payloads += file.data
        payloads += bytes(_align(len(file.data), RKAF_ALIGNMENT) - len(file.data))
    content_length = data_offset + len(payloads)

    image = bytearray(
        struct.pack(
            "<4sI34s30s56sIII",
            b"RKAF",
            content_length,
            model.encode(),
            b"RK31",
            manufacturer.encode(),
            0,
            version,
            len(files),
        )
    )
    for file, placement in zip(files, placements):
        if placement is None:
            offset, length = 0, content_length
        else:
            offset, length = placement
        image += struct.pack(
            "<32s60sIIIII",
            file.name.encode(),
            file.path.encode(),
            _align(length, 512) // 512,
            offset,
            file.nand_offset,
            _align(length, RKAF_ALIGNMENT),
            length,
        )
    image += bytes(data_offset - len(image))
    image += payloads
    if with_crc:
        image += struct.pack("<I", crc32(0, bytes(image)))
    return bytes(image)


RKFW_BOOT_OFFSET = 0x66


def build_rkfw(boot: bytes, update: bytes, chip: int = 0x60) -> bytes:
    update_offset = RKFW_BOOT_OFFSET + len(boot)
    header = struct.pack(
        "<4sHIIH6B3x4I",
        b"RKFW",
        RKFW_BOOT_OFFSET,
        0x04020013,
        0,
        2014,
        3,
        14,
        15,
        9,
        26,
        chip,
        RKFW_BOOT_OFFSET,
        len(boot),
        update_offset,
        len(update),
    )
    return header + bytes(RKFW_BOOT_OFFSET - len(header)) + boot + update


@dataclass
class RkfpPartition:
    name: str
    data: bytes
    reserved_sectors: int
    entry_type: int = 1
    entry_property: int = 0


def build_rkfp(
    partitions: List[RkfpPartition],
    sector_size: int = 512,
    entry_offset: int = 1,
    entry_size: int = 0x40,
) -> bytes:
    table_sectors = _align(entry_size * len(partitions), sector_size) // sector_size
    next_sector = entry_offset + table_sectors
    table = bytearray()
    body = bytearray()
    for partition in partitions:
        table += struct.pack(
            "<32s5I",
            partition.name.encode(),
            partition.entry_type,
            next_sector,
            partition.reserved_sectors,
            len(partition.data),
            partition.entry_property,
        ).ljust(entry_size, b"\x00")
        reserved = partition.reserved_sectors * sector_size
        body += partition.data + bytes(reserved - len(partition.data))
        next_sector += partition.reserved_sectors

    header = bytearray(
        struct.pack(
            "<4sH5Bx7I",
            b"RKFP",
            2021,
            6,
            1,
            12,
            0,
            0,
            0x01000000,
            sector_size,
            entry_offset,
            0,
            entry_size,
            len(partitions),
            next_sector * sector_size,
        )
    ).ljust(0x1F8, b"\x00")
    header += struct.pack("<II", crc32(0, bytes(table)), 0)
    image = bytes(header).ljust(entry_offset * sector_size, b"\x00")
    image += bytes(table).ljust(table_sectors * sector_size, b"\x00")
    return image + bytes(body)
