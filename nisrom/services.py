"""
Collaborators the analysis calls once the ROM structure is known:
whole-ROM digest, known keyset lookup, EEPROM routine finder.
"""

import csv
import enum
import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .search import find_u32_aligned


def digest_hex(buf) -> str:
    """MD5 of the whole ROM, as lowercase hex"""
    return hashlib.md5(bytes(buf)).hexdigest()


class KeyQuality(enum.IntEnum):
    UNKNOWN = 0
    PARTIAL = 1  # only the SID27 key was found in ROM
    GOOD = 2  # SID27 and SID36 keys both found


@dataclass(frozen=True)
class Keyset:
    s27k: int
    s36k1: int
    s36k2: int = 0


class KeysetDatabase:
    """Known keysets, usually loaded from keysets.csv"""

    def __init__(self, keysets: Optional[List[Keyset]] = None):
        self.keysets: List[Keyset] = list(keysets or [])

    def __len__(self) -> int:
        return len(self.keysets)

    @classmethod
    def from_csv(cls, path) -> "KeysetDatabase":
        """
        Load keysets from a CSV file with s27k, s36k1, s36k2 columns.

        Values are hex, with or without 0x prefix. Rows without a usable
        s27k are skipped; other columns are ignored.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Keyset file not found: {path}")

        keysets = []
        with open(path, newline='') as f:
            for row in csv.DictReader(f):
                try:
                    s27k = int(row.get('s27k') or '', 16)
                except ValueError:
                    continue
                s36k1 = _parse_hex(row.get('s36k1'))
                s36k2 = _parse_hex(row.get('s36k2'))
                keysets.append(Keyset(s27k, s36k1, s36k2))
        return cls(keysets)


def _parse_hex(text: Optional[str]) -> int:
    try:
        return int(text or '', 16)
    except ValueError:
        return 0


def find_keys_bruteforce(db: KeysetDatabase, buf) -> Tuple[KeyQuality, Optional[Keyset]]:
    """
    Look for every known keyset's values in the ROM.

    Keys are stored as aligned u32 constants. A keyset whose SID27 and
    SID36 keys are both present wins immediately; otherwise the first one
    with only the SID27 key is returned.

    Returns:
        (quality, keyset); keyset is None when quality is UNKNOWN
    """
    partial = None
    for keyset in db.keysets:
        if not keyset.s27k or find_u32_aligned(buf, keyset.s27k) is None:
            continue
        if keyset.s36k1 and find_u32_aligned(buf, keyset.s36k1) is not None:
            return KeyQuality.GOOD, keyset
        if partial is None:
            partial = keyset
    if partial is not None:
        return KeyQuality.PARTIAL, partial
    return KeyQuality.UNKNOWN, None


# (ROM) -> (address of eeprom_read(), PORT register) or None
EepromFinder = Callable[[bytes], Optional[Tuple[int, int]]]


def no_eeprom_finder(buf) -> Optional[Tuple[int, int]]:
    """Default EEPROM finder; locating the routine needs code analysis"""
    return None
