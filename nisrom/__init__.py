"""
nisrom: gather information about a Nissan ECU ROM dump from metadata and
heuristics, and repair its checksums.
"""

__version__ = "1.0.0"

from .analyzer import RomAnalyzer
from .checksum import (ChecksumResult, ChecksumState, RepairResult, RepairStatus,
                       locate_alt2, locate_standard, repair, solve_add_xor, sum32,
                       validate_alt)
from .diag import ConsoleDiagnostics, Diagnostics
from .errors import MalformedInput, RomError, SignatureNotFound, UnknownVariant
from .rom import RomDescriptor, RomImage

__all__ = [
    "RomAnalyzer", "RomDescriptor", "RomImage",
    "ChecksumResult", "ChecksumState", "RepairResult", "RepairStatus",
    "locate_standard", "locate_alt2", "validate_alt", "repair", "solve_add_xor", "sum32",
    "Diagnostics", "ConsoleDiagnostics",
    "RomError", "MalformedInput", "SignatureNotFound", "UnknownVariant",
]
