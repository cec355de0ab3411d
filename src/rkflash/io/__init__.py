from enum import Enum


__all__ = ["Endianness"]


class Endianness(Enum):
    """
    The order in which the bytes of a multi-byte field are stored.

    Rockchip containers and parameter blocks are little endian; the USB command packets are big
    endian.
    """

    BIG_ENDIAN = "big"
    LITTLE_ENDIAN = "little"

    def get_struct_flag(self) -> str:
        if self is Endianness.BIG_ENDIAN:
            return ">"
        else:
            return "<"
