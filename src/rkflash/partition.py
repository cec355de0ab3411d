"""
Resolve partition names against the `mtdparts=` table of the kernel command line stored in the
parameter block:

```
mtdparts=rk29xxnand:0x00002000@0x00002000(misc),0x00004000@0x00004000(kernel),-@0x0008a000(user)
```

Each descriptor is `size@offset(name)`, in sectors; the last one may use `-` as its size,
meaning "up to the end of the flash". Descriptors share their delimiters, so the boundaries of a
partition are always the nearest ones found scanning backwards from its `(name)` token.
"""
import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional

from rkflash.error import PartitionNotFoundError, PartitionSyntaxError
from rkflash.parameter import decode_parameter_block, read_parameter_block
from rkflash.transfer import BlockTransferEngine

LOGGER = logging.getLogger(__name__)

MTDPARTS_KEY = "mtdparts="

_C_INTEGER = re.compile(r"\s*(0[xX][0-9a-fA-F]+|0[0-7]*|[1-9][0-9]*)")
_DESCRIPTOR = re.compile(r"(?P<size>-|\w+)(?:@(?P<offset>\w+))?\((?P<name>[^)]*)\)")


@dataclass
class PartitionSpec:
    """
    :ivar name: Partition name
    :ivar offset: First sector
    :ivar size: Number of sectors, or None for a last partition whose size was not resolved
    :ivar to_end: Whether the partition extends up to the end of the flash
    """

    name: str
    offset: int
    size: Optional[int]
    to_end: bool = False


def parse_c_integer(text: str) -> int:
    """
    Parse the integer at the start of `text` the way `strtoul(text, NULL, 0)` does: `0x` prefix
    for hexadecimal, a leading `0` for octal, decimal otherwise. Trailing characters are ignored.

    :raises PartitionSyntaxError: if `text` does not start with a number
    """
    match = _C_INTEGER.match(text)
    if match is None:
        raise PartitionSyntaxError(f"Expected a number, found {text[:16]!r}")
    digits = match.group(1)
    if digits[:2] in ("0x", "0X"):
        return int(digits, 16)
    if len(digits) > 1 and digits[0] == "0":
        return int(digits, 8)
    return int(digits, 10)


def _mtdparts(text: str) -> str:
    start = text.find(MTDPARTS_KEY)
    if start < 0:
        raise PartitionNotFoundError("'mtdparts' not found in command line.")
    return text[start:]


def resolve_partition(
    text: str, name: str, flash_size_provider: Callable[[], int]
) -> PartitionSpec:
    """
    Find the offset and size of partition `name` in the parameter text.

    :param text: Parameter block payload
    :param name: Partition to look up
    :param flash_size_provider: Returns the flash size in sectors; only called when `name` is
    the last partition

    :raises PartitionNotFoundError: if there is no mtdparts table or no such partition
    :raises PartitionSyntaxError: if the descriptor of `name` cannot be parsed
    """
    mtdparts = _mtdparts(text)

    name_position = mtdparts.find(f"({name})")
    if name_position < 0:
        raise PartitionNotFoundError(f"Partition '{name}' not found.")
    before_name = mtdparts[:name_position]

    at_position = before_name.rfind("@")
    if at_position < 0:
        raise PartitionSyntaxError("Bad syntax in mtdparts.")
    offset = parse_c_integer(before_name[at_position + 1 :])
    LOGGER.info("found offset: %#010x", offset)
    before_offset = before_name[:at_position]

    if before_name.endswith("-") or before_offset.endswith("-"):
        size = flash_size_provider() - offset
        LOGGER.info("partition extends up to the end of NAND (size: %#010x).", size)
        return PartitionSpec(name, offset, size, to_end=True)

    comma_position = before_offset.rfind(",")
    if comma_position >= 0:
        size = parse_c_integer(before_offset[comma_position + 1 :])
        LOGGER.info("found size: %#010x", size)
        return PartitionSpec(name, offset, size)

    colon_position = before_offset.rfind(":")
    if colon_position >= 0:
        size = parse_c_integer(before_offset[colon_position + 1 :])
        LOGGER.info("found size: %#010x", size)
        return PartitionSpec(name, offset, size)

    raise PartitionSyntaxError("Bad syntax for partition size.")


def list_partitions(text: str) -> List[PartitionSpec]:
    """
    Enumerate every partition of the mtdparts table. A descriptor without an explicit offset
    starts where the previous one ended.
    """
    fields = _mtdparts(text)[len(MTDPARTS_KEY) :].split(None, 1)
    _, _, descriptors = (fields[0] if fields else "").partition(":")

    partitions = []
    next_offset = 0
    for match in _DESCRIPTOR.finditer(descriptors):
        if match.group("offset") is not None:
            offset = parse_c_integer(match.group("offset"))
        else:
            offset = next_offset
        if match.group("size") == "-":
            partitions.append(PartitionSpec(match.group("name"), offset, None, to_end=True))
            break
        size = parse_c_integer(match.group("size"))
        partitions.append(PartitionSpec(match.group("name"), offset, size))
        next_offset = offset + size
    return partitions


def read_partition_text(engine: BlockTransferEngine) -> str:
    """
    Read the parameter text from flash. Only the length bound of the block is enforced; the CRC
    is not checked.
    """
    block = read_parameter_block(engine)
    return decode_parameter_block(block, verify_crc=False).decode("latin-1")


def find_partition(engine: BlockTransferEngine, name: str) -> PartitionSpec:
    LOGGER.info("working with partition: %s", name)
    return resolve_partition(
        read_partition_text(engine),
        name,
        lambda: engine.device.read_flash_info().flash_size,
    )
