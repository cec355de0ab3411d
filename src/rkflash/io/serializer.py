import io
import struct
from typing import BinaryIO, Union, Optional

from rkflash.io import Endianness


class SerializationError(Exception):
    pass


class BinarySerializer:
    """
    Write fixed-layout fields into a binary stream. Fields may be written out of order by seeking
    first, which is how the zero-filled command packets and parameter blocks are built.
    """

    def __init__(
        self,
        writer: Optional[BinaryIO] = None,
        endianness: Endianness = Endianness.LITTLE_ENDIAN,
    ):
        self._writer = writer
        self._endianness = endianness
        self._initial_position = 0 if writer is None else writer.tell()

    @classmethod
    def zero_filled(
        cls, size: int, endianness: Endianness = Endianness.LITTLE_ENDIAN
    ) -> "BinarySerializer":
        return cls(io.BytesIO(bytes(size)), endianness)

    def seek(self, position: int) -> int:
        if self._writer is None:
            raise SerializationError("writer is not set")
        return self._writer.seek(self._initial_position + position)

    def write(self, data: bytes) -> int:
        if self._writer is None:
            raise SerializationError("writer is not set")
        length = self._writer.write(data)
        if len(data) != length:
            raise SerializationError(f"Could not write {len(data)} bytes")
        return length

    def getvalue(self) -> bytes:
        if not isinstance(self._writer, io.BytesIO):
            raise SerializationError("writer is not an in-memory buffer")
        return self._writer.getvalue()

    def _pack(self, char: str, value: Union[int, float]) -> None:
        char = self._endianness.get_struct_flag() + char
        self.write(struct.pack(char, value))

    def pack_ubyte(self, value: int) -> None:
        self._pack("B", value)

    def pack_ushort(self, value: int) -> None:
        self._pack("H", value)

    def pack_uint(self, value: int) -> None:
        self._pack("I", value)
