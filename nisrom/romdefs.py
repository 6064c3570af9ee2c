"""
Static ROM layout data: struct offsets and the table of known firmware
variants, keyed by the CPU string found in the FID struct.

Variant offsets are relative to the RAMF struct, or to the ECUREC struct on
variants flagged ECUREC. None means the field does not exist on that
variant; 0 is a real offset.
"""

import enum
from dataclasses import dataclass
from typing import Dict, Optional

MIN_ROMSIZE = 128 * 1024  # smallest known ROM is SH7050, 128kB
MAX_ROMSIZE = 2048 * 1024

# struct loader, near the start of ROM:
# +0x00 cpu[8]       "SH705415" : 6-char CPU then 2-char code
# +0x10 loader[8]    "LOADER##" : ## is the decimal loader version
# +0x20 database[8]  "DATABASE" (not present on all ROMs)
LOADER_MARKER = b"LOADER"
LOADER_CPU_OFS = 0x00
LOADER_MARKER_OFS = 0x10
LOADER_DATABASE_OFS = 0x20
LOADER_SIZE = 0x60

# struct fid_base: same shape, FID string where the loader has its marker.
# The DATABASE member is at the same offset for every variant.
# +0x00 cpu[8]       "SH705828"
# +0x10 fid[8]       firmware ID, e.g. "1KA7A03N"
# +0x20 database[8]  "DATABASE"
DATABASE_MARKER = b"DATAB"
FID_CPU_OFS = 0x00
FID_FID_OFS = 0x10
FID_DATABASE_OFS = 0x20
FID_CPU_LEN = 8
FID_FID_LEN = 8
FID_MAXSIZE = 0x200  # no FID struct + RAMF is larger than this

CPU_LEN = 6
CPUCODE_LEN = 2

IVT_MINSIZE = 0x100  # absolute minimum for a trimmed IVT on 705x
IVT2_SP_TYPICAL = 0xFFFF7FFC

# RIPEMD-160 initialisation constants
RIPEMD160_MAGIC = (0x67452301, 0x98BADCFE)


class Features(enum.IntFlag):
    STD_CKS = 0x01
    ALT_CKS = 0x02
    ALT2_CKS = 0x04
    IVT2 = 0x08
    ECUREC = 0x10


@dataclass(frozen=True)
class VariantDescriptor:
    """One known firmware family"""
    cpu: bytes
    rom_size: int
    fid_size: int  # sizeof(struct fid_base), i.e. where RAMF starts
    features: Features
    ivt2_expected: Optional[int] = None
    ramf_header: Optional[int] = None  # first RAMF member; None if no RAMF
    ramf_maxdist: int = 0x20  # zigzag search limit around the expected RAMF
    ram_jump: Optional[int] = None
    ram_dlamax: Optional[int] = None
    ivt2: Optional[int] = None
    altcks_start: Optional[int] = None
    altcks_end: Optional[int] = None
    ecurec: Optional[int] = None
    romend: Optional[int] = None  # ECUREC variants only

    def has(self, feature: Features) -> bool:
        return bool(self.features & feature)


_F = Features

VARIANTS = (
    VariantDescriptor(
        cpu=b"SH705101", rom_size=256 * 1024, fid_size=0x60,
        features=_F.STD_CKS,
        ramf_header=0xFFFF8000, ram_jump=0x04, ram_dlamax=0x08,
    ),
    VariantDescriptor(
        cpu=b"SH705415", rom_size=512 * 1024, fid_size=0x60,
        features=_F.STD_CKS | _F.ALT_CKS | _F.IVT2, ivt2_expected=0x1000,
        ramf_header=0xFFFF8000, ram_jump=0x04, ram_dlamax=0x08,
        ivt2=0x30, altcks_start=0x34, altcks_end=0x38,
    ),
    VariantDescriptor(
        cpu=b"SH705507", rom_size=512 * 1024, fid_size=0x64,
        features=_F.STD_CKS | _F.ALT_CKS | _F.IVT2, ivt2_expected=0x1000,
        ramf_header=0xFFFF8000, ram_jump=0x04, ram_dlamax=0x08,
        ivt2=0x30, altcks_start=0x34, altcks_end=0x38,
    ),
    VariantDescriptor(
        cpu=b"SH705513", rom_size=512 * 1024, fid_size=0x64,
        features=_F.STD_CKS | _F.ALT_CKS | _F.IVT2, ivt2_expected=0x1000,
        ramf_header=0xFFFF8000, ram_jump=0x04, ram_dlamax=0x08,
        ivt2=0x38, altcks_start=0x3C, altcks_end=0x40,
    ),
    VariantDescriptor(
        cpu=b"SH705520", rom_size=512 * 1024, fid_size=0x64,
        features=_F.STD_CKS | _F.ALT_CKS | _F.IVT2, ivt2_expected=0x1000,
        ramf_header=0xFFFF8000, ramf_maxdist=0x30, ram_jump=0x04, ram_dlamax=0x08,
        ivt2=0x38, altcks_start=0x3C, altcks_end=0x40,
    ),
    VariantDescriptor(
        cpu=b"SH705821", rom_size=1024 * 1024, fid_size=0x70,
        features=_F.STD_CKS | _F.ALT_CKS | _F.IVT2, ivt2_expected=0x10000,
        ramf_header=0xFFFF8000, ramf_maxdist=0x30, ram_jump=0x04, ram_dlamax=0x08,
        ivt2=0x40, altcks_start=0x44, altcks_end=0x48,
    ),
    # has an ECUREC struct but still uses a RAMF to point at it
    VariantDescriptor(
        cpu=b"SH705822", rom_size=1024 * 1024, fid_size=0x70,
        features=_F.STD_CKS | _F.ALT_CKS | _F.ALT2_CKS | _F.IVT2,
        ivt2_expected=0x10000,
        ramf_header=0xFFFF8000, ramf_maxdist=0x30, ram_jump=0x04, ram_dlamax=0x08,
        ivt2=0x40, altcks_start=0x44, altcks_end=0x48, ecurec=0x4C,
    ),
    VariantDescriptor(
        cpu=b"SH705828", rom_size=1024 * 1024, fid_size=0x70,
        features=_F.ALT_CKS | _F.ALT2_CKS | _F.IVT2 | _F.ECUREC,
        ivt2_expected=0x10000,
        ivt2=0x0C, altcks_start=0x04, altcks_end=0x08, ecurec=0x00, romend=0x10,
    ),
    VariantDescriptor(
        cpu=b"SH72531\x00", rom_size=1280 * 1024, fid_size=0x80,
        features=_F.ALT_CKS | _F.ALT2_CKS | _F.IVT2 | _F.ECUREC,
        ivt2_expected=0x20000,
        ivt2=0x0C, altcks_start=0x04, altcks_end=0x08, ecurec=0x00, romend=0x10,
    ),
    VariantDescriptor(
        cpu=b"SH72543\x00", rom_size=2048 * 1024, fid_size=0x80,
        features=_F.ALT_CKS | _F.ALT2_CKS | _F.IVT2 | _F.ECUREC,
        ivt2_expected=0x20000,
        ivt2=0x0C, altcks_start=0x04, altcks_end=0x08, ecurec=0x00, romend=0x10,
    ),
)

VARIANTS_BY_CPU: Dict[bytes, VariantDescriptor] = {v.cpu: v for v in VARIANTS}


def get_variant(cpu: bytes) -> Optional[VariantDescriptor]:
    """Match an 8-byte FID CPU field against the known variants"""
    return VARIANTS_BY_CPU.get(bytes(cpu[:FID_CPU_LEN]))
