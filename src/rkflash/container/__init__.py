"""
Decoders for the Rockchip firmware container formats. The format of an image is picked from its
4-byte magic; the matching unpacker extracts every payload it bundles into an output directory.
"""
from typing import List, Optional, Tuple, Type

from rkflash.container.abstract import (
    Buffer,
    ContainerEntry,
    ContainerUnpacker,
    MAGIC_LENGTH,
    UnpackConfig,
    write_entry,
)
from rkflash.container.rkaf import RkafUnpacker
from rkflash.container.rkfp import RkfpUnpacker
from rkflash.container.rkfw import RkfwUnpacker
from rkflash.error import FormatError, TransferIOError

CONTAINER_UNPACKERS: Tuple[Type[ContainerUnpacker], ...] = (
    RkafUnpacker,
    RkfwUnpacker,
    RkfpUnpacker,
)


def identify_container(data: Buffer) -> Type[ContainerUnpacker]:
    """
    :raises FormatError: if the magic of `data` matches none of the known formats
    """
    magic = bytes(memoryview(data)[:MAGIC_LENGTH])
    for unpacker_type in CONTAINER_UNPACKERS:
        if magic == unpacker_type.MAGIC:
            return unpacker_type
    raise FormatError("invalid signature")


def unpack_container(data: Buffer, config: Optional[UnpackConfig] = None) -> List[ContainerEntry]:
    if config is None:
        config = UnpackConfig()
    return identify_container(data)(data).unpack(config)


def unpack_file(path: str, config: Optional[UnpackConfig] = None) -> List[ContainerEntry]:
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise TransferIOError(f"{path}: {e}") from e
    try:
        return unpack_container(data, config)
    except FormatError as e:
        raise FormatError(f"{path}: {e}") from e


__all__ = [
    "CONTAINER_UNPACKERS",
    "ContainerEntry",
    "ContainerUnpacker",
    "RkafUnpacker",
    "RkfpUnpacker",
    "RkfwUnpacker",
    "UnpackConfig",
    "identify_container",
    "unpack_container",
    "unpack_file",
    "write_entry",
]
