"""
Sum/xor checksum detection, validation and correction.

All three schemes used by these ROMs accumulate 32-bit words two ways: a
mod 2^32 sum and a running xor. They differ only in the region covered and in
which words are left out of the totals:

- standard: whole ROM, the sum and xor words themselves are excluded
- alt: a region given by the RAMF / ECUREC bounds, stored values lie outside
- alt2: from ECUREC to the end of ROM, with extra skipped locations

The standard checksum can be found without knowing where it is stored.
Xoring every word, including the two checksum words, gives
xor_others ^ cks ^ ckx = ckx ^ cks ^ ckx = cks. Summing every word gives
sum_others + cks + ckx = 2*cks + ckx, so ckx = sumt - 2*xort. Both values
are then searched for in the ROM.
"""

import enum
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from .codec import U32_MASK, iter_u32, read_u32, write_u32
from .diag import NULL_DIAG, Diagnostics
from .search import find_u32_all


class ChecksumState(enum.Enum):
    UNATTEMPTED = "unattempted"
    LOCATED = "located"
    VALIDATED = "validated"
    FAILED = "failed"


@dataclass
class ChecksumResult:
    """Outcome of one checksum scheme"""
    state: ChecksumState = ChecksumState.UNATTEMPTED
    sum_offset: Optional[int] = None
    xor_offset: Optional[int] = None
    sum_value: Optional[int] = None
    xor_value: Optional[int] = None
    ambiguous: bool = False

    @property
    def ok(self) -> bool:
        return self.state in (ChecksumState.LOCATED, ChecksumState.VALIDATED)


class RepairStatus(enum.Enum):
    OK = "ok"
    BAD_ARGS = "bad arguments"
    INFEASIBLE = "no solution"
    INCONSISTENT = "repair inconsistent"


@dataclass
class RepairResult:
    status: RepairStatus
    a: Optional[int] = None
    b: Optional[int] = None
    mangle: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status is RepairStatus.OK


def sum32(buf, start: int = 0, size: Optional[int] = None,
          skip: Iterable[int] = ()) -> Tuple[int, int]:
    """
    Sum and xor all 32-bit words of buf[start:start+size].

    Args:
        buf: ROM data
        start: offset of first word
        size: bytes to cover; clipped to the complete words inside buf
        skip: absolute offsets of words left out of both totals

    Returns:
        (sum, xor) tuple
    """
    end = len(buf) if size is None else min(len(buf), start + size)
    skip = frozenset(skip)
    total = 0
    xort = 0
    for offset, word in iter_u32(buf, start, end):
        if offset in skip:
            continue
        total += word
        xort ^= word
    return total & U32_MASK, xort


def _find_pair(buf, cks: int, ckx: int, start: int, end: Optional[int],
               label: str, diag: Diagnostics, require_both: bool = False) -> ChecksumResult:
    """
    Search for a sum/xor value pair, keeping the first hit of each.

    Finding only one of the two values still counts as located, with the
    other offset left unknown, unless require_both is set.
    """
    result = ChecksumResult(sum_value=cks, xor_value=ckx)
    sum_hits = find_u32_all(buf, cks, start, end)
    xor_hits = find_u32_all(buf, ckx, start, end)

    if sum_hits:
        result.sum_offset = sum_hits[0]
    if xor_hits:
        result.xor_offset = xor_hits[0]

    if len(sum_hits) > 1 or len(xor_hits) > 1:
        result.ambiguous = True
        diag.emit(f"warning : more than one set of {label} checksums found "
                  f"({len(sum_hits)} sum, {len(xor_hits)} xor) ! "
                  "the real checksums should be close to each other.")

    if not sum_hits and not xor_hits:
        diag.emit(f"warning : no {label} checksum found !")
        result.state = ChecksumState.FAILED
    elif not sum_hits or not xor_hits:
        diag.emit(f"warning : only one of the {label} checksum values found "
                  f"(sum=0x{cks:08X}, xor=0x{ckx:08X})")
        result.state = ChecksumState.FAILED if require_both else ChecksumState.LOCATED
    else:
        result.state = ChecksumState.LOCATED
    return result


def locate_standard(buf, diag: Diagnostics = NULL_DIAG) -> ChecksumResult:
    """
    Calculate the standard checksum and find where it is stored.

    Returns:
        ChecksumResult; LOCATED with at least one offset, or FAILED
    """
    sumt, xort = sum32(buf)
    cks = xort
    ckx = (sumt - 2 * xort) & U32_MASK
    diag.emit(f"std cks: sumt=0x{sumt:08X}, cks=0x{cks:08X}, ckx=0x{ckx:08X}")
    return _find_pair(buf, cks, ckx, 0, None, "std", diag)


def validate_alt(buf, start: Optional[int], end: Optional[int],
                 diag: Diagnostics = NULL_DIAG) -> ChecksumResult:
    """
    Validate the alt checksum of the block [start, end].

    start is always word aligned but end usually is not (it tends to sit 2
    bytes before the FID struct), so the covered size is rounded to include
    the word holding end, plus one. On some ROMs this pulls the first word of
    the FID struct into the block.

    The sum and xor are stored outside the block, so they are searched for
    across the whole ROM.
    """
    if start is None or end is None or start >= end or end >= len(buf):
        return ChecksumResult(state=ChecksumState.FAILED)

    bsize = (((end + 1) - start) & ~0x03) + 4
    acs, acx = sum32(buf, start, bsize)
    diag.emit(f"alt cks block 0x{start:06X} - 0x{end:06X}: "
              f"sumt=0x{acs:08X}, xort=0x{acx:08X}")

    result = _find_pair(buf, acs, acx, 0, None, "alt", diag, require_both=True)
    if not result.ok:
        diag.emit("altcks values not found in ROM, possibly unskipped vals or bad algo")
        return result

    result.state = ChecksumState.VALIDATED
    diag.emit(f"confirmed altcks values found : acs @ 0x{result.sum_offset:X}, "
              f"acx @ 0x{result.xor_offset:X}")
    return result


def locate_alt2(buf, start: int, skips: Iterable[int] = (),
                diag: Diagnostics = NULL_DIAG) -> ChecksumResult:
    """
    Calculate the alt2 checksum over [start, end of ROM) and locate it.

    Same algorithm as the standard checksum, except the words at the
    absolute offsets in skips are left out of the totals. The values are
    only searched for inside the block, aligned on start.
    """
    sumt, xort = sum32(buf, start, skip=skips)
    cks = xort
    ckx = (sumt - 2 * xort) & U32_MASK
    diag.emit(f"alt2 cks from 0x{start:06X}: cks=0x{cks:08X}, ckx=0x{ckx:08X}")
    return _find_pair(buf, cks, ckx, start, None, "alt2", diag)


def solve_add_xor(ds: int, dx: int) -> Optional[Tuple[int, int]]:
    """
    Find a, b such that (a + b) mod 2^32 == ds and a ^ b == dx.

    Solved one bit at a time from the MSB down. `carry` is the carry that
    bit n has to send to bit n+1; nothing is required out of bit 31 since
    it is discarded.

    - dx bit 1: (a,b) bits are (1,0). The sum bit is then the inverted
      incoming carry, and the outgoing carry equals the incoming one.
    - dx bit 0: (a,b) bits are (0,0) or (1,1), whichever produces the
      required outgoing carry. The incoming carry equals the sum bit.

    Nothing carries into bit 0, so a carry still required there means no
    solution.

    Returns:
        (a, b), or None if the system has no solution
    """
    ds &= U32_MASK
    dx &= U32_MASK
    a = 0
    b = 0
    carry = 0
    for bit in range(31, -1, -1):
        xn = (dx >> bit) & 1
        sn = (ds >> bit) & 1
        if xn:
            carry_in = sn ^ 1
            if bit != 31 and carry != carry_in:
                return None
            a |= 1 << bit
        else:
            carry_in = sn
            if carry:
                a |= 1 << bit
                b |= 1 << bit
        carry = carry_in

    if carry:
        return None
    return a, b


def repair(buf: bytearray, p_cks: int, p_ckx: int, p_a: int, p_b: int, p_mangle: int,
           diag: Diagnostics = NULL_DIAG) -> RepairResult:
    """
    Set three correction words so the ROM matches a known standard checksum.

    The words at p_cks and p_ckx must already hold the desired sum and xor
    (typically copied from the unmodified ROM). The three correction words
    are zeroed before anything else, so buf is modified even on failure.

    Steps:
    1. read desired cks, ckx
    2. zero the correction words
    3. sum and xor every word except the ones at p_cks and p_ckx
    4. the corrections must then satisfy a + b + mangle = ds and
       a ^ b ^ mangle = dx; picking mangle = dx leaves a + b = ds - dx and
       a ^ b = 0
    5. solve bit by bit (solve_add_xor)
    6. write the words and re-run locate_standard() to verify

    Args:
        buf: mutable ROM data, size a multiple of 4
        p_cks: location of the sum to be matched
        p_ckx: location of the xor to be matched
        p_a: location of first correction word
        p_b: location of second correction word
        p_mangle: location of third correction word

    Returns:
        RepairResult; status INFEASIBLE if no bit assignment exists for this
        mangle value, INCONSISTENT if verification failed
    """
    siz = len(buf)
    offsets = (p_cks, p_ckx, p_a, p_b, p_mangle)
    if (not siz or (siz & 3) or
            any(p < 0 or p >= siz or (p & 3) for p in offsets) or
            len(set(offsets)) != len(offsets)):
        diag.emit("checksum repair: bad size or correction offsets")
        return RepairResult(RepairStatus.BAD_ARGS)

    cks = read_u32(buf, p_cks)
    ckx = read_u32(buf, p_ckx)
    diag.emit(f"desired cks=0x{cks:08X}, ckx=0x{ckx:08X}")

    for p in (p_a, p_b, p_mangle):
        write_u32(0, buf, p)

    actual_s, actual_x = sum32(buf, skip=(p_cks, p_ckx))
    diag.emit(f"actual s=0x{actual_s:08X}, x=0x{actual_x:08X}")

    ds = (cks - actual_s) & U32_MASK
    dx = ckx ^ actual_x
    diag.emit(f"corrections ds=0x{ds:08X}, dx=0x{dx:08X}")
    mangle = dx
    ds = (ds - mangle) & U32_MASK
    dx ^= mangle

    solution = solve_add_xor(ds, dx)
    if solution is None:
        diag.emit(f"no solution with mangle=0x{mangle:08X}")
        return RepairResult(RepairStatus.INFEASIBLE, mangle=mangle)
    a, b = solution

    write_u32(a, buf, p_a)
    write_u32(b, buf, p_b)
    write_u32(mangle, buf, p_mangle)

    check = locate_standard(buf, diag)
    if not check.ok or check.sum_value != cks or check.xor_value != ckx:
        diag.emit("could not fix checksum !!")
        return RepairResult(RepairStatus.INCONSISTENT, a, b, mangle)

    diag.emit(f"found correction vals a=0x{a:08X}, b=0x{b:08X}, mangle=0x{mangle:08X}")
    return RepairResult(RepairStatus.OK, a, b, mangle)
