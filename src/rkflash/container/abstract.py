import logging
import os
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from pathlib import PurePosixPath
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Tuple, Union

import orjson

from rkflash.error import FormatError, TransferIOError
from rkflash.io.deserializer import BinaryDeserializer
from rkflash.range import Range

LOGGER = logging.getLogger(__name__)

MAGIC_LENGTH = 4
MANIFEST_NAME = "__rkflash_info__.json"
DIRECTORY_MODE = 0o755

Buffer = Union[bytes, bytearray, memoryview]


@dataclass
class UnpackConfig:
    """
    :ivar output_dir: Directory the entries are extracted into
    :ivar verify_crc: Check container checksums where the format has one
    :ivar recursive: Also unpack containers nested inside the container
    :ivar write_manifest: Write a JSON description of the extracted entries
    """

    output_dir: str = "."
    verify_crc: bool = False
    recursive: bool = False
    write_manifest: bool = False


@dataclass
class ContainerEntry:
    """
    One payload of a firmware container.

    :ivar name: Logical name of the entry
    :ivar path: Output path, relative to the output directory
    :ivar source_offset: Offset of the payload in the container
    :ivar source_length: Space reserved for the payload in the container
    :ivar stated_length: Number of bytes actually extracted
    :ivar nand_offset: Where the payload goes on flash, if the format says so
    :ivar entry_type: Format specific type tag, informational only
    :ivar entry_property: Format specific property tag, informational only
    """

    name: str
    path: str
    source_offset: int
    source_length: int
    stated_length: int
    nand_offset: Optional[int] = None
    entry_type: Optional[int] = None
    entry_property: Optional[int] = None


def checked_range(data: Buffer, start: int, size: int, what: str) -> Range:
    """
    The range `[start, start + size)`, after checking it lies within `data`.

    :raises FormatError: if the range runs past the end of `data`
    """
    if start < 0 or size < 0:
        raise FormatError(f"{what} has a negative offset or size ({start:#x}, {size:#x})")
    bounds = Range.from_size(start, size)
    if not bounds.within(Range(0, len(data))):
        raise FormatError(f"{what} {bounds} runs past the end of the {len(data):#x} byte image")
    return bounds


def header_deserializer(data: Buffer, start: int, size: int, what: str) -> BinaryDeserializer:
    """
    A deserializer over the `size` bytes at `start`. Only that slice is copied.
    """
    bounds = checked_range(data, start, size, what)
    return BinaryDeserializer.from_bytes(bytes(memoryview(data)[bounds.as_slice()]))


def safe_path_parts(path: str) -> Tuple[str, ...]:
    """
    :raises FormatError: if `path` names no file, is absolute, or climbs out of the directory
        it is relative to
    """
    relative_path = PurePosixPath(path)
    if not relative_path.parts or relative_path.is_absolute() or ".." in relative_path.parts:
        raise FormatError(f"Refusing to extract entry to unsafe path {path!r}")
    return relative_path.parts


def write_entry(output_dir: str, path: str, data: Buffer) -> str:
    """
    Write `data` to `path` under `output_dir`, creating the intermediate directories (mode 0755)
    that do not exist yet. An existing file is overwritten.

    :return: The path of the written file

    :raises FormatError: if `path` is empty, absolute, or climbs out of `output_dir`
    :raises TransferIOError: if a directory or the file cannot be written
    """
    destination = os.path.join(output_dir, *safe_path_parts(path))
    directory = os.path.dirname(destination)
    try:
        if directory:
            os.makedirs(directory, mode=DIRECTORY_MODE, exist_ok=True)
        with open(destination, "wb") as f:
            f.write(data)
    except OSError as e:
        raise TransferIOError(f"{destination}: {e}") from e
    return destination


def write_manifest(
    output_dir: str, container_format: str, info: Dict[str, Any], entries: List[ContainerEntry]
) -> str:
    """
    Describe the container and its extracted entries in `MANIFEST_NAME`, as JSON.
    """
    manifest = {
        "format": container_format,
        "info": info,
        "entries": [asdict(entry) for entry in entries],
    }
    destination = os.path.join(output_dir, MANIFEST_NAME)
    try:
        os.makedirs(output_dir, mode=DIRECTORY_MODE, exist_ok=True)
        with open(destination, "wb") as f:
            f.write(orjson.dumps(manifest, option=orjson.OPT_INDENT_2))
    except OSError as e:
        raise TransferIOError(f"{destination}: {e}") from e
    return destination


class ContainerUnpacker(ABC):
    """
    Extracts the payloads of one firmware container format.

    Subclasses parse their header in `entries`, which must validate everything it yields; `unpack`
    then writes each entry. Headers are decoded from small slices of the image, while payloads
    are written straight from a `memoryview` of it.
    """

    MAGIC: ClassVar[bytes]
    FORMAT: ClassVar[str]

    def __init__(self, data: Buffer):
        self.data = memoryview(data)
        if bytes(self.data[:MAGIC_LENGTH]) != self.MAGIC:
            raise FormatError(f"Not a {self.FORMAT} image")
        self.info: Dict[str, Any] = {}

    @abstractmethod
    def entries(self) -> Iterator[ContainerEntry]:
        raise NotImplementedError()

    def extract(self, entry: ContainerEntry) -> memoryview:
        bounds = checked_range(
            self.data, entry.source_offset, entry.stated_length, f"Entry {entry.name!r}"
        )
        return self.data[bounds.as_slice()]

    def unpack(self, config: UnpackConfig) -> List[ContainerEntry]:
        LOGGER.info("%s signature detected", self.FORMAT)
        # parse the whole table first, so a malformed entry aborts before anything is written
        entries = list(self.entries())
        payloads = [self.extract(entry) for entry in entries]
        for entry in entries:
            safe_path_parts(entry.path)
        for entry, payload in zip(entries, payloads):
            write_entry(config.output_dir, entry.path, payload)
        if config.write_manifest:
            write_manifest(config.output_dir, self.FORMAT, self.info, entries)
        return entries
