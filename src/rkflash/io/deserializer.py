import io
import struct
from typing import cast, Union, Tuple, BinaryIO, Optional

from rkflash.error import FormatError
from rkflash.io import Endianness


class DeserializationError(FormatError):
    pass


class BinaryDeserializer:
    """
    Read fixed-layout fields out of a binary stream. Every read is checked against the data
    actually available, so a truncated or malformed buffer raises `DeserializationError` rather
    than yielding garbage.
    """

    def __init__(
        self,
        reader: Optional[BinaryIO] = None,
        endianness: Endianness = Endianness.LITTLE_ENDIAN,
    ):
        self._reader = reader
        self._endianness = endianness
        self._initial_position = 0 if reader is None else reader.tell()

    @classmethod
    def from_bytes(
        cls, data: Union[bytes, bytearray, memoryview], endianness: Endianness = Endianness.LITTLE_ENDIAN
    ) -> "BinaryDeserializer":
        return cls(io.BytesIO(data), endianness)

    def seek(self, position: int) -> int:
        if self._reader is None:
            raise DeserializationError("reader is not set")
        if position < 0:
            raise DeserializationError(f"Cannot seek to negative position {position}")
        return self._reader.seek(self._initial_position + position)

    def read(self, length: int) -> bytes:
        if self._reader is None:
            raise DeserializationError("reader is not set")
        data = self._reader.read(length)
        if len(data) != length:
            raise DeserializationError(f"Could not read {length} bytes, data len is {len(data)}")
        return data

    def unpack_multiple(self, char: str, length: int = -1) -> Tuple:
        char = self._endianness.get_struct_flag() + char
        if length <= 0:
            length = struct.calcsize(char)
        return struct.unpack(char, self.read(length))

    def _unpack(self, char: str, length: int) -> Union[int, float]:
        char = self._endianness.get_struct_flag() + char
        (result,) = struct.unpack(char, self.read(length))
        return result

    def unpack_ubyte(self) -> int:
        return cast(int, self._unpack("B", 1))

    def unpack_ushort(self) -> int:
        return cast(int, self._unpack("H", 2))

    def unpack_uint(self) -> int:
        return cast(int, self._unpack("I", 4))

    def unpack_string(self, length: int) -> str:
        """
        Read a zero-terminated string stored in a fixed-width field of `length` bytes. Bytes
        after the first NUL are ignored, and the whole field is consumed either way.
        """
        raw = self.read(length)
        end = raw.find(b"\x00")
        if end >= 0:
            raw = raw[:end]
        return raw.decode("latin-1")
