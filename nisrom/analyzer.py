"""
Run every analysis step over one ROM, in dependency order.
"""

from typing import List, Optional, Tuple

from .checksum import ChecksumResult, locate_standard
from .diag import NULL_DIAG, Diagnostics
from .errors import RomError
from .locator import StructureLocator
from .rom import RomDescriptor, RomImage, ecuid_from_filename
from .romdefs import Features
from .services import (EepromFinder, KeyQuality, KeysetDatabase, digest_hex,
                       find_keys_bruteforce, no_eeprom_finder)


class RomAnalyzer:
    """Owns the RomDescriptor of one ROM and fills it in"""

    def __init__(self, image: RomImage, diag: Diagnostics = NULL_DIAG,
                 keysets: Optional[KeysetDatabase] = None,
                 eeprom_finder: EepromFinder = no_eeprom_finder):
        self.image = image
        self.diag = diag
        self.keysets = keysets or KeysetDatabase()
        self.eeprom_finder = eeprom_finder
        self.descriptor = RomDescriptor(size=len(image), filename=image.name)
        self.std_checksum = ChecksumResult()

    def find_std_checksum(self) -> ChecksumResult:
        """Locate the standard checksum and record it in the descriptor"""
        desc = self.descriptor
        result = locate_standard(self.image.data, self.diag)
        self.std_checksum = result
        desc.std_cks_good = result.ok
        desc.std_ambiguous = result.ambiguous
        if result.ok:
            desc.std_sum_offset = result.sum_offset
            desc.std_xor_offset = result.xor_offset
        return result

    def find_keys(self) -> None:
        desc = self.descriptor
        if not len(self.keysets):
            return
        quality, keyset = find_keys_bruteforce(self.keysets, self.image.data)
        desc.keyset_quality = int(quality)
        if quality > KeyQuality.UNKNOWN:
            desc.s27k = keyset.s27k
            desc.s36k = keyset.s36k1
            self.diag.emit(f"keyset found (quality {int(quality)}): s27k=0x{keyset.s27k:08X}")

    def find_eeprom(self) -> None:
        found = self.eeprom_finder(self.image.data)
        if found:
            self.descriptor.eep_read, self.descriptor.eep_port = found

    def parse(self) -> RomDescriptor:
        """
        Main analysis routine.

        Order: LOADER, FID, RAMF (alt/alt2 cks, IVT2), IVT2 fallback,
        std cks, keys, EEPROM, digest.

        Raises:
            SignatureNotFound, UnknownVariant: no FID struct to work from;
                the descriptor keeps whatever was found before the failure
        """
        desc = self.descriptor
        self.diag.emit(f"\n********************\n**** Started analyzing {self.image.name}")
        desc.ecuid = ecuid_from_filename(self.image.name)

        locator = StructureLocator(self.image, desc, self.diag)
        locator.find_loader()
        try:
            locator.find_fid()
        except RomError as e:
            self.diag.emit(f"error: {e}. Cannot continue.")
            raise

        ramf = locator.find_ramf()
        if ramf is None and not desc.has(Features.ECUREC):
            self.diag.emit("no RAMF for this ROM")

        if desc.has(Features.IVT2):
            locator.guess_ivt2()

        if desc.has(Features.STD_CKS):
            self.find_std_checksum()

        self.find_keys()
        self.find_eeprom()

        desc.digest = digest_hex(self.image.data)
        self.diag.emit(f"MD5: {desc.digest}")
        return desc

    def report_fields(self) -> List[Tuple[str, str]]:
        return self.descriptor.report_fields()
