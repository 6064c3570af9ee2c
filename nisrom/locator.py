"""
Heuristic discovery of the LOADER, FID, RAMF and ECUREC structs.

Each find_* step fills its own RomDescriptor fields and must run in order:
find_loader(), find_fid(), find_ramf(). Only find_fid() can fail hard.
"""

import re
from typing import Optional

from .checksum import locate_alt2, validate_alt
from .codec import read_u32
from .diag import NULL_DIAG, Diagnostics
from .errors import SignatureNotFound, UnknownVariant
from .rom import RomDescriptor, RomImage
from .romdefs import (DATABASE_MARKER, FID_CPU_LEN, FID_CPU_OFS, FID_DATABASE_OFS,
                      FID_FID_LEN, FID_FID_OFS, FID_MAXSIZE, IVT2_SP_TYPICAL, IVT_MINSIZE,
                      LOADER_CPU_OFS, LOADER_DATABASE_OFS, LOADER_MARKER, LOADER_MARKER_OFS,
                      LOADER_SIZE, RIPEMD160_MAGIC, Features, get_variant)
from .search import find_bytes, find_u32_aligned

_VERSION_RE = re.compile(rb"\s*([+-]?\d+)")

IVT_PC_LIMIT = 0x01000000  # PC must be in the bottom 16MB
IVT_SP_FLOOR = 0xFFFE0000  # SP must be in the top 128kB (RAM)


def check_ivt(buf, offset: int = 0) -> bool:
    """
    Check if a vector table (IVT) at offset looks sane.

    Uses very basic heuristics :
    - the power-on and manual resets have the same values for PC and SP
    - PC points in bottom 16MB, aligned on 2-byte boundary
    - SP points in RAM (top 128kB), aligned on 4-byte boundary

    Example of a valid IVT : 0000 0104, ffff 7ffc, 0000 0104, ffff 7ffc
    """
    if offset < 0 or (offset & 3) or (len(buf) - offset) < IVT_MINSIZE:
        return False
    if buf[offset:offset + 8] != buf[offset + 8:offset + 16]:
        return False
    pc = read_u32(buf, offset)
    sp = read_u32(buf, offset + 4)
    if pc >= IVT_PC_LIMIT or (pc & 1):
        return False
    if sp < IVT_SP_FLOOR or (sp & 3):
        return False
    return True


def find_ivt(buf, start: int = 0) -> Optional[int]:
    """
    Find the first likely vector table at or after start.

    Returns:
        Offset of the IVT, or None
    """
    offset = (start + 3) & ~3
    last = len(buf) - IVT_MINSIZE
    while offset <= last:
        if check_ivt(buf, offset):
            return offset
        offset += 4
    return None


class StructureLocator:
    """Fill a RomDescriptor from signature searches and the variant table"""

    def __init__(self, image: RomImage, descriptor: RomDescriptor,
                 diag: Diagnostics = NULL_DIAG):
        self.buf = image.data
        self.siz = len(image)
        self.desc = descriptor
        self.diag = diag

    def _read_field(self, base: int, rel: Optional[int], what: str) -> Optional[int]:
        """Read a u32 struct member at base + rel, None if absent or out of the ROM"""
        if rel is None:
            return None
        offset = base + rel
        if offset < 0 or offset + 4 > self.siz:
            self.diag.emit(f"{what} field @ 0x{offset:X} is outside the ROM")
            return None
        return read_u32(self.buf, offset)

    def find_loader(self) -> Optional[int]:
        """
        Find the LOADER struct by its marker string.

        A missing or unparsable version number leaves loader_version unknown
        but still counts as found.

        Returns:
            File offset of the struct, or None if not found
        """
        desc = self.desc
        pos = find_bytes(self.buf, LOADER_MARKER)
        if pos is None:
            self.diag.emit("LOADER not found !")
            return None

        start = pos - LOADER_MARKER_OFS
        if start < 0:
            self.diag.emit(f"LOADER marker @ 0x{pos:X} too close to start of ROM")
            return None

        tail = self.buf[pos + len(LOADER_MARKER):pos + len(LOADER_MARKER) + 16]
        match = _VERSION_RE.match(tail)
        if match:
            desc.loader_version = int(match.group(1))
        else:
            self.diag.emit(f"LOADER @ 0x{start:X} : no version number")

        desc.loader_offset = start
        desc.loader_cpu = bytes(self.buf[start + LOADER_CPU_OFS:start + LOADER_CPU_OFS + FID_CPU_LEN])
        return start

    def find_fid(self) -> int:
        """
        Find the FID struct and select the matching variant.

        The first "DATAB" hit may be the one inside the LOADER struct; in that
        case search again past the LOADER struct.

        Returns:
            File offset of the struct

        Raises:
            SignatureNotFound: no usable FID struct
            UnknownVariant: FID CPU string not in the variant table
        """
        desc = self.desc
        buf = self.buf

        sf = find_bytes(buf, DATABASE_MARKER)
        if sf is None:
            raise SignatureNotFound("no DATABASE found !?")

        probe = sf - LOADER_DATABASE_OFS + LOADER_MARKER_OFS
        if probe >= 0 and buf[probe:probe + 4] == LOADER_MARKER[:4]:
            loader_start = sf - LOADER_DATABASE_OFS
            self.diag.emit(f"skipping LOADER DATABASE @ 0x{sf:X}")
            sf = find_bytes(buf, DATABASE_MARKER, loader_start + LOADER_SIZE)
            if sf is None:
                raise SignatureNotFound("no FID DATABASE found !")

        fid_offset = sf - FID_DATABASE_OFS
        if fid_offset < 0 or (fid_offset + FID_MAXSIZE) >= self.siz:
            raise SignatureNotFound("Possibly incomplete / bad dump ? "
                                    "FID too close to start or end of ROM")

        desc.fid_offset = fid_offset
        desc.fid = bytes(buf[fid_offset + FID_FID_OFS:fid_offset + FID_FID_OFS + FID_FID_LEN])
        desc.fid_cpu = bytes(buf[fid_offset + FID_CPU_OFS:fid_offset + FID_CPU_OFS + FID_CPU_LEN])

        variant = get_variant(desc.fid_cpu)
        if variant is None:
            raise UnknownVariant(desc.fid_cpu)
        desc.variant = variant

        if self.siz != variant.rom_size:
            self.diag.emit(f"Warning : ROM size {self.siz // 1024} k, expected "
                           f"{variant.rom_size // 1024} k; possibly incomplete dump")
        return fid_offset

    def find_ecurec(self) -> bool:
        """
        Locate the ECUREC struct near the end of ROM, for variants with no RAMF.

        Every aligned occurrence of the expected IVT2 address is taken as a
        candidate &IVT2 member; the candidate is confirmed when the ROMEND
        member of the same struct holds (ROM size - 1).

        Returns:
            True if found; ivt2_offset, alt bounds and ecurec_offset are set
        """
        desc = self.desc
        ft = desc.variant
        if ft is None or not ft.has(Features.ECUREC):
            return False
        if ft.ivt2 is None or ft.romend is None or ft.ivt2_expected is None:
            return False

        base = None
        start = 0
        while start < self.siz - 100:
            hit = find_u32_aligned(self.buf, ft.ivt2_expected, start)
            if hit is None:
                break
            start = hit + 4
            candidate = hit - ft.ivt2
            p_romend = candidate + ft.romend
            if candidate < 0 or p_romend < 0 or p_romend >= self.siz - 4:
                continue
            if read_u32(self.buf, p_romend) + 1 != self.siz:
                # IVT2/ROMEND field mismatch
                continue
            base = candidate
            break

        if base is None:
            self.diag.emit("IVT2/ROMEND not found")
            return False

        self.diag.emit(f"ECUREC struct @ 0x{base:X}")
        desc.ivt2_offset = ft.ivt2_expected
        desc.alt_start = self._read_field(base, ft.altcks_start, "ECUREC alt cks start")
        desc.alt_end = self._read_field(base, ft.altcks_end, "ECUREC alt cks end")
        desc.ecurec_offset = self._read_field(base, ft.ecurec, "ECUREC")
        return True

    def _search_ramf(self, expected: int) -> int:
        """
        Find the RAMF header value around its expected location.

        Tries +4, -4, +8, -8 ... while the distance is below the variant's
        limit. Returns the adjustment that matched, or 0 if none did.
        """
        ft = self.desc.variant
        testval = self._read_field(expected, 0, "RAMF header")
        if testval == ft.ramf_header:
            return 0

        if testval is not None:
            self.diag.emit(f"Unlikely contents for struct ramf; got 0x{testval:X}.")
        for dist in range(4, ft.ramf_maxdist, 4):
            for adj in (dist, -dist):
                offset = expected + adj
                if offset < 0 or offset + 4 > self.siz:
                    continue
                if read_u32(self.buf, offset) == ft.ramf_header:
                    self.diag.emit(f"probable RAMF found @ delta = {adj:+d}")
                    return adj
        self.diag.emit("RAMF header not found, using expected location")
        return 0

    def parse_ramf(self, base: Optional[int]) -> None:
        """
        Read RAMjump, alt cks bounds and &IVT2 from the RAMF struct at base.

        Alt cks bounds and &IVT2 are left alone if find_ecurec() already
        filled them in.
        """
        desc = self.desc
        ft = desc.variant

        if base is not None:
            desc.ram_jump = self._read_field(base, ft.ram_jump, "RAMjump")
            desc.ram_dlamax = self._read_field(base, ft.ram_dlamax, "RAM_DLAmax")

        if ft.has(Features.ALT_CKS):
            if base is not None and desc.alt_start is None and desc.alt_end is None:
                desc.alt_start = self._read_field(base, ft.altcks_start, "alt cks start")
                desc.alt_end = self._read_field(base, ft.altcks_end, "alt cks end")
        else:
            desc.alt_start = None
            desc.alt_end = None

        if ft.ivt2 is not None:
            if base is not None and desc.ivt2_offset is None:
                desc.ivt2_offset = self._read_field(base, ft.ivt2, "IVT2")
        else:
            desc.ivt2_offset = None

    def _check_alt_bounds(self) -> None:
        desc = self.desc
        if desc.alt_start is None and desc.alt_end is None:
            return
        if (desc.alt_start is None or desc.alt_end is None or
                desc.alt_start >= self.siz or desc.alt_end >= self.siz or
                desc.alt_start >= desc.alt_end):
            self.diag.emit(f"bad alt cks bounds; {desc.alt_start} - {desc.alt_end}")
            desc.alt_start = None
            desc.alt_end = None

    def _check_ivt2(self) -> None:
        desc = self.desc
        ft = desc.variant
        p_ivt2 = desc.ivt2_offset
        if p_ivt2 is None:
            return

        if p_ivt2 >= self.siz - IVT_MINSIZE:
            self.diag.emit("warning : IVT2 value out of bound, probably due to unusual RAMF structure.")
            desc.ivt2_offset = None
            return

        if p_ivt2 != ft.ivt2_expected:
            self.diag.emit(f"Unexpected IVT2 0x{p_ivt2:X} ! Please report this")
        if not check_ivt(self.buf, p_ivt2):
            words = " ".join(f"{read_u32(self.buf, p_ivt2 + i):08X}" for i in range(0, 16, 4))
            self.diag.emit(f"Unlikely IVT2 location 0x{p_ivt2:06X} :")
            self.diag.emit(f"{words}...")
            # leave it to the brute force IVT2 search
            desc.ivt2_offset = None

    def _check_ecurec(self) -> None:
        desc = self.desc
        pecurec = desc.ecurec_offset
        if pecurec is None:
            return
        if pecurec + 6 >= self.siz:
            self.diag.emit(f"unlikely pecurec = 0x{pecurec:X}")
            desc.ecurec_offset = None
            return
        # skip leading '1'
        ecuid = self.buf[pecurec + 1:pecurec + 6].decode("ascii", errors="replace")
        self.diag.emit(f"probable ECUID @ 0x{pecurec:X}: {ecuid}")

    def find_ramf(self) -> Optional[int]:
        """
        Find and parse the RAMF struct (or ECUREC), then everything hanging off it.

        RAMF is right after the FID struct, give or take a few bytes. After
        parsing, bounds are checked, the alt cks validated, &IVT2 sanity
        checked, and alt2 cks located from ECUREC.

        Returns:
            File offset of RAMF, or None if this variant has none
        """
        desc = self.desc
        ft = desc.variant
        if ft is None or desc.fid_offset is None:
            return None

        expected = desc.fid_offset + ft.fid_size
        if ft.ramf_header is None:
            found = ft.has(Features.ECUREC) and self.find_ecurec()
            if not found:
                self.diag.emit("not trying to find RAMF.")
                return None
            self.parse_ramf(None)
        else:
            desc.ramf_adjust = self._search_ramf(expected)
            desc.ramf_offset = expected + desc.ramf_adjust
            self.parse_ramf(desc.ramf_offset)
            if not ft.has(Features.ECUREC):
                # variants that have an ECUREC but point at it from RAMF
                desc.ecurec_offset = self._read_field(desc.ramf_offset, ft.ecurec, "ECUREC")

        if ft.has(Features.ALT_CKS):
            self._check_alt_bounds()
            if desc.alt_start is not None:
                result = validate_alt(self.buf, desc.alt_start, desc.alt_end, self.diag)
                if result.ok:
                    desc.alt_cks_good = True
                    desc.alt_sum_offset = result.sum_offset
                    desc.alt_xor_offset = result.xor_offset

        self._check_ivt2()
        self._check_ecurec()

        desc.has_ripemd160 = all(find_u32_aligned(self.buf, magic) is not None
                                 for magic in RIPEMD160_MAGIC)

        # alt2 cks starts at ECUREC and skips the word just before IVT2
        if (ft.has(Features.ALT2_CKS) and desc.ecurec_offset is not None and
                desc.ivt2_offset is not None):
            desc.alt2_start = desc.ecurec_offset
            result = locate_alt2(self.buf, desc.ecurec_offset,
                                 skips=(desc.ivt2_offset - 4,), diag=self.diag)
            if result.ok:
                desc.alt2_cks_good = True
                desc.alt2_sum_offset = result.sum_offset
                desc.alt2_xor_offset = result.xor_offset
            else:
                self.diag.emit("alt2 checksum not found ?? Bad algo, bad skip, or other problem...")

        return desc.ramf_offset

    def guess_ivt2(self) -> None:
        """
        Brute force &IVT2 when it could not be derived.

        Confidence is 99 when &IVT2 came from RAMF/ECUREC, 75 for a table
        whose SP is the usual 0xFFFF7FFC, 50 for any other plausible table,
        0 if nothing was found.
        """
        desc = self.desc
        if desc.ivt2_offset is not None:
            desc.ivt2_confidence = 99
            return

        self.diag.emit("no IVT2 ?? Last resort, brute force technique:")
        offset = 0x100  # skip power-on IVT
        while offset + 0x400 < self.siz:
            found = find_ivt(self.buf, offset)
            if found is None:
                break
            self.diag.emit(f"\tPossible IVT @ 0x{found:X}")
            if desc.ivt2_guess is None:
                desc.ivt2_guess = found
                desc.ivt2_confidence = 50
            if read_u32(self.buf, found + 4) == IVT2_SP_TYPICAL:
                self.diag.emit("\t\tProbable IVT !")
                desc.ivt2_guess = found
                desc.ivt2_confidence = 75
                return
            offset = found + 4
        if desc.ivt2_guess is None:
            self.diag.emit("\t no IVT2 found.")
