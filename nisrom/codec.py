"""
Integer access with SH (big-endian) byte order.

These do no bounds checking of their own: an access outside the buffer is a
caller bug and raises.
"""

import struct
from typing import Iterator, Tuple

U32_MASK = 0xFFFFFFFF

_U32 = struct.Struct('>I')
_U16 = struct.Struct('>H')


def _check_offset(offset: int) -> None:
    # struct accepts negative offsets (counted from the end); we never want that
    if offset < 0:
        raise IndexError(f"negative offset {offset}")


def read_u32(buf, offset: int) -> int:
    """Read 32-bit value at offset"""
    _check_offset(offset)
    return _U32.unpack_from(buf, offset)[0]


def read_u16(buf, offset: int) -> int:
    """Read 16-bit value at offset"""
    _check_offset(offset)
    return _U16.unpack_from(buf, offset)[0]


def write_u32(value: int, buf: bytearray, offset: int) -> None:
    """Write 32-bit value at offset"""
    _check_offset(offset)
    _U32.pack_into(buf, offset, value & U32_MASK)


def iter_u32(buf, start: int = 0, end: int = None) -> Iterator[Tuple[int, int]]:
    """
    Yield (offset, value) for every complete 32-bit word in [start, end).

    A trailing partial word is ignored.
    """
    if end is None or end > len(buf):
        end = len(buf)
    _check_offset(start)
    count = max(0, (end - start) // 4)
    view = memoryview(buf)[start:start + count * 4]
    for idx, (value,) in enumerate(_U32.iter_unpack(view)):
        yield start + idx * 4, value
