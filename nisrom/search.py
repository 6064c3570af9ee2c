"""
Pattern search over ROM buffers.

Word searches only look at naturally aligned positions (relative to the
search start) and compare decoded values, so a match straddling two words is
never reported. All searches return the first match; callers that care about
duplicates use find_u32_all().
"""

from typing import List, Optional

from .codec import iter_u32, read_u16, read_u32


def find_bytes(buf, needle: bytes, start: int = 0) -> Optional[int]:
    """
    Find first occurrence of needle at or after start.

    Args:
        buf: bytes or bytearray to search
        needle: byte sequence to look for
        start: first offset to consider

    Returns:
        Offset of the match, or None
    """
    if not needle:
        return None
    pos = buf.find(needle, start)
    return pos if pos >= 0 else None


def find_bytes_reverse(buf, needle: bytes, start: Optional[int] = None) -> Optional[int]:
    """Find last occurrence of needle beginning at or before start"""
    if not needle:
        return None
    if start is None:
        start = len(buf) - len(needle)
    pos = buf.rfind(needle, 0, start + len(needle))
    return pos if pos >= 0 else None


def find_u32_aligned(buf, value: int, start: int = 0, end: Optional[int] = None) -> Optional[int]:
    """
    First offset in [start, end) holding value, stepping 4 bytes from start.

    Alignment is counted from start: with an aligned start (the usual
    case) every match is 4-byte aligned in the buffer; an unaligned start
    gives matches at start + 4*n.
    """
    for offset, word in iter_u32(buf, start, end):
        if word == value:
            return offset
    return None


def find_u32_all(buf, value: int, start: int = 0, end: Optional[int] = None) -> List[int]:
    """All offsets in [start, end) holding value, stepping 4 bytes from start"""
    return [offset for offset, word in iter_u32(buf, start, end) if word == value]


def find_u16_aligned(buf, value: int, start: int = 0, end: Optional[int] = None) -> Optional[int]:
    """First offset in [start, end) holding value, stepping 2 bytes from start"""
    if end is None or end > len(buf):
        end = len(buf)
    for offset in range(start, end - 1, 2):
        if read_u16(buf, offset) == value:
            return offset
    return None


def find_u32_aligned_reverse(buf, start: int, value: int) -> Optional[int]:
    """
    Search backwards for value, from offset start down to 0.

    The stride is 4 bytes counted from start, so start sets the alignment.
    """
    offset = min(start, len(buf) - 4)
    offset -= (start - offset) % 4
    while offset >= 0:
        if read_u32(buf, offset) == value:
            return offset
        offset -= 4
    return None


def find_u16_aligned_reverse(buf, start: int, value: int) -> Optional[int]:
    """Same as find_u32_aligned_reverse() with a 2-byte stride"""
    offset = min(start, len(buf) - 2)
    offset -= (start - offset) % 2
    while offset >= 0:
        if read_u16(buf, offset) == value:
            return offset
        offset -= 2
    return None
