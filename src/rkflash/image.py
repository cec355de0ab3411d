"""
Wrap raw kernel and parameter images in the framing the bootloader expects on flash:

```
Offset      Size    Value
0           4       Tag, "KRNL" or "PARM" (absent for raw images)
4           4       Data length, little endian (absent for raw images)
8           length  Data
8+length    4       CRC32 of the data, little endian
```
"""
from enum import Enum
from typing import Optional

from rkflash.checksum import crc32
from rkflash.io.serializer import BinarySerializer


class ImageKind(Enum):
    KERNEL = b"KRNL"
    PARAMETER = b"PARM"
    RAW = None

    @property
    def tag(self) -> Optional[bytes]:
        return self.value


def wrap_image(data: bytes, kind: ImageKind = ImageKind.RAW) -> bytes:
    header_length = 0 if kind.tag is None else 8
    serializer = BinarySerializer.zero_filled(header_length + len(data) + 4)
    if kind.tag is not None:
        serializer.write(kind.tag)
        serializer.pack_uint(len(data))
    serializer.write(data)
    serializer.pack_uint(crc32(0, data))
    return serializer.getvalue()
