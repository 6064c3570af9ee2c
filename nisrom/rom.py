"""
ROM image container and the analysis result record.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from .diag import NULL_DIAG, Diagnostics
from .errors import MalformedInput
from .romdefs import CPU_LEN, CPUCODE_LEN, MAX_ROMSIZE, MIN_ROMSIZE, Features, VariantDescriptor

ECUID_LEN = 5


@dataclass(frozen=True)
class RomImage:
    """Whole ROM dump, loaded once and never modified during analysis"""
    data: bytes
    name: str = ""

    def __len__(self) -> int:
        return len(self.data)

    @classmethod
    def from_bytes(cls, data: bytes, name: str = "", force: bool = False,
                   diag: Diagnostics = NULL_DIAG) -> "RomImage":
        """
        Wrap raw ROM contents after a size sanity check.

        Args:
            data: ROM contents
            name: file name, used for the ECUID guess
            force: accept unlikely sizes with a warning instead of failing

        Raises:
            MalformedInput: size outside [MIN_ROMSIZE, MAX_ROMSIZE] and not forced
        """
        siz = len(data)
        if not siz or siz > MAX_ROMSIZE or siz < MIN_ROMSIZE:
            message = f"unlikely file size {siz}"
            if not force:
                raise MalformedInput(message)
            diag.emit(f"warning : {message}, parsing anyway")
        return cls(bytes(data), name)

    @classmethod
    def load(cls, path, force: bool = False, diag: Diagnostics = NULL_DIAG) -> "RomImage":
        """Load ROM file into memory"""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"ROM file not found: {path}")
        try:
            data = path.read_bytes()
        except OSError as e:
            raise MalformedInput(f"trouble reading {path}: {e}") from e
        return cls.from_bytes(data, str(path), force, diag)


def ecuid_from_filename(filename: str) -> Optional[str]:
    """
    Guess the ECUID from a ROM file name.

    The first token of the base name (split on '-', '_', '.', ' ') is taken
    if it is 5 alphanumeric chars, or 6 starting with '1' (e.g. 18U92A).

    Returns:
        Uppercase 5-char ECUID, or None
    """
    base = re.split(r"[\\/]", filename)[-1]
    token = re.split(r"[-_. ]", base, maxsplit=1)[0]
    if not token.isascii() or not token.isalnum():
        return None
    token = token.upper()
    if len(token) == ECUID_LEN + 1 and token[0] == "1":
        return token[1:]
    if len(token) == ECUID_LEN:
        return token
    return None


def _ascii(raw: Optional[bytes]) -> str:
    if raw is None:
        return ""
    return raw.decode("ascii", errors="replace").rstrip("\x00 ")


def _hex(value: Optional[int], width: int = 0) -> str:
    if value is None:
        return ""
    return f"0x{value:0{width}X}"


def _flag(value: bool) -> str:
    return "1" if value else "0"


@dataclass
class RomDescriptor:
    """
    Everything found out about one ROM.

    Offsets are file offsets; None means not determined and must not be
    used.
    """
    size: int = 0
    filename: str = ""
    ecuid: Optional[str] = None

    loader_offset: Optional[int] = None
    loader_version: Optional[int] = None
    loader_cpu: Optional[bytes] = None

    fid_offset: Optional[int] = None
    fid: Optional[bytes] = None
    fid_cpu: Optional[bytes] = None
    variant: Optional[VariantDescriptor] = None

    ramf_offset: Optional[int] = None
    ramf_adjust: int = 0  # RAMF wasn't where expected when != 0
    ram_jump: Optional[int] = None
    ram_dlamax: Optional[int] = None

    ivt2_offset: Optional[int] = None
    ivt2_guess: Optional[int] = None  # brute force result, only if ivt2_offset is unknown
    ivt2_confidence: int = 0
    ecurec_offset: Optional[int] = None

    std_sum_offset: Optional[int] = None
    std_xor_offset: Optional[int] = None
    std_cks_good: bool = False
    std_ambiguous: bool = False

    alt_sum_offset: Optional[int] = None
    alt_xor_offset: Optional[int] = None
    alt_start: Optional[int] = None
    alt_end: Optional[int] = None
    alt_cks_good: bool = False

    alt2_sum_offset: Optional[int] = None
    alt2_xor_offset: Optional[int] = None
    alt2_start: Optional[int] = None
    alt2_cks_good: bool = False

    has_ripemd160: bool = False

    keyset_quality: int = 0
    s27k: Optional[int] = None
    s36k: Optional[int] = None

    eep_read: Optional[int] = None
    eep_port: Optional[int] = None

    digest: Optional[str] = None

    # fields holding file offsets; the ones that must be 4-byte aligned
    OFFSET_FIELDS = ("loader_offset", "fid_offset", "ramf_offset", "ivt2_offset",
                     "ivt2_guess", "ecurec_offset", "std_sum_offset", "std_xor_offset",
                     "alt_sum_offset", "alt_xor_offset", "alt_start", "alt_end",
                     "alt2_sum_offset", "alt2_xor_offset", "alt2_start")
    ALIGNED_FIELDS = ("ivt2_offset", "ivt2_guess", "std_sum_offset", "std_xor_offset",
                      "alt_sum_offset", "alt_xor_offset")

    def has(self, feature: Features) -> bool:
        return self.variant is not None and self.variant.has(feature)

    def offsets(self) -> List[Tuple[str, Optional[int]]]:
        return [(name, getattr(self, name)) for name in self.OFFSET_FIELDS]

    def report_fields(self) -> List[Tuple[str, str]]:
        """
        Flatten the descriptor into (name, value) pairs in report order.

        Every field is always present; values that don't apply to this ROM
        or were not found are empty strings.
        """
        has_ramf = self.ramf_offset is not None and not self.has(Features.ECUREC)
        has_ivt2 = self.has(Features.IVT2)
        has_std = self.has(Features.STD_CKS)
        has_alt = self.has(Features.ALT_CKS)
        has_alt2 = self.has(Features.ALT2_CKS)
        loader_cpu = _ascii(self.loader_cpu)
        fid_cpu = _ascii(self.fid_cpu)
        ivt2 = self.ivt2_offset if self.ivt2_offset is not None else self.ivt2_guess

        props = [
            ("ECUID", self.ecuid or ""),
            ("file", self.filename),
            ("size", f"{self.size // 1024}k"),
            ("LOADER ##", f"{self.loader_version:02d}" if self.loader_version is not None else ""),
            ("LOADER ofs", _hex(self.loader_offset)),
            ("LOADER CPU", loader_cpu[:CPU_LEN]),
            ("LOADER CPUcode", loader_cpu[CPU_LEN:CPU_LEN + CPUCODE_LEN]),
            ("FID", _ascii(self.fid)),
            ("&FID", _hex(self.fid_offset)),
            ("FID CPU", fid_cpu),
            ("FID CPUcode", fid_cpu[CPU_LEN:CPU_LEN + CPUCODE_LEN]),
            ("RAMF_weird", f"{self.ramf_adjust:+d}" if has_ramf else ""),
            ("RAMjump_entry", _hex(self.ram_jump, 8) if has_ramf else ""),
            ("IVT2", _hex(ivt2) if has_ivt2 else ""),
            ("IVT2 confidence", f"{self.ivt2_confidence:02d}" if has_ivt2 else ""),
            ("std cks?", _flag(self.std_cks_good) if has_std else ""),
            ("&std_s", _hex(self.std_sum_offset) if has_std else ""),
            ("&std_x", _hex(self.std_xor_offset) if has_std else ""),
            ("alt cks?", _flag(self.alt_cks_good) if has_alt else ""),
            ("&alt_s", _hex(self.alt_sum_offset) if has_alt else ""),
            ("&alt_x", _hex(self.alt_xor_offset) if has_alt else ""),
            ("alt_start", _hex(self.alt_start) if has_alt else ""),
            ("alt_end", _hex(self.alt_end) if has_alt else ""),
            ("alt2 cks?", _flag(self.alt2_cks_good) if has_alt2 else ""),
            ("&alt2_s", _hex(self.alt2_sum_offset) if has_alt2 else ""),
            ("&alt2_x", _hex(self.alt2_xor_offset) if has_alt2 else ""),
            ("alt2_start", _hex(self.alt2_start) if has_alt2 else ""),
            ("RIPEMD160", _flag(self.has_ripemd160) if has_alt2 else ""),
            ("keyset quality", str(self.keyset_quality)),
            ("s27k", _hex(self.s27k, 8)),
            ("s36k1", _hex(self.s36k, 8)),
            ("&EEPROM_read()", _hex(self.eep_read)),
            ("EEPROM PORT", _hex(self.eep_port, 8)),
            ("MD5", self.digest or ""),
        ]
        return props


REPORT_FIELD_NAMES = tuple(name for name, _ in RomDescriptor().report_fields())
