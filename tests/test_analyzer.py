import hashlib

import pytest

from conftest import build_ramf_rom
from nisrom.analyzer import RomAnalyzer
from nisrom.codec import write_u32
from nisrom.errors import MalformedInput, SignatureNotFound, UnknownVariant
from nisrom.rom import REPORT_FIELD_NAMES, RomDescriptor, RomImage, ecuid_from_filename
from nisrom.services import KeyQuality, Keyset, KeysetDatabase, find_keys_bruteforce


def analyze(data, name="18U92A_stock.bin", diag=None, **kwargs):
    image = RomImage(bytes(data), name)
    analyzer = RomAnalyzer(image, diag, **kwargs) if diag else RomAnalyzer(image, **kwargs)
    analyzer.parse()
    return analyzer


def test_image_size_check(diag):
    with pytest.raises(MalformedInput, match="unlikely file size 65536"):
        RomImage.from_bytes(bytes(0x10000))
    with pytest.raises(MalformedInput):
        RomImage.from_bytes(bytes(4 * 1024 * 1024))
    with pytest.raises(MalformedInput):
        RomImage.from_bytes(b"")

    image = RomImage.from_bytes(bytes(0x10000), "small.bin", force=True, diag=diag)
    assert len(image) == 0x10000
    assert "unlikely file size 65536" in diag


def test_image_load(tmp_path):
    path = tmp_path / "8U92A.bin"
    path.write_bytes(bytes(128 * 1024))
    image = RomImage.load(path)
    assert len(image) == 128 * 1024
    assert image.name == str(path)

    with pytest.raises(FileNotFoundError):
        RomImage.load(tmp_path / "missing.bin")


@pytest.mark.parametrize("filename, ecuid", [
    ("8U92A.bin", "8U92A"),
    ("18u92a-stock.bin", "8U92A"),
    ("/dumps/JA56A_mod.bin", "JA56A"),
    ("CF43B 2005.bin", "CF43B"),
    ("rom.bin", None),
    ("28U92A.bin", None),
    ("8U9-2A.bin", None),
    ("", None),
])
def test_ecuid_from_filename(filename, ecuid):
    assert ecuid_from_filename(filename) == ecuid


def test_report_names_stable():
    names = [name for name, _ in RomDescriptor().report_fields()]
    assert tuple(names) == REPORT_FIELD_NAMES
    assert len(names) == 34
    assert names[:3] == ["ECUID", "file", "size"]
    assert names[-1] == "MD5"
    assert len(set(names)) == len(names)


def test_report_unknown_values_empty():
    props = dict(RomDescriptor(size=256 * 1024).report_fields())
    assert props["size"] == "256k"
    assert props["LOADER ofs"] == ""
    assert props["IVT2"] == ""
    assert props["std cks?"] == ""
    assert props["keyset quality"] == "0"


def test_parse_ramf_rom(ramf_rom, check_descriptor):
    analyzer = analyze(ramf_rom.data)
    desc = analyzer.descriptor
    assert desc.ecuid == "8U92A"
    assert analyzer.std_checksum.ok
    assert desc.std_cks_good and not desc.std_ambiguous
    assert desc.digest == hashlib.md5(ramf_rom.data).hexdigest()
    check_descriptor(desc)

    props = dict(analyzer.report_fields())
    assert props["size"] == "512k"
    assert props["LOADER ##"] == "60"
    assert props["LOADER ofs"] == "0x400"
    assert props["LOADER CPU"] == "SH7054"
    assert props["LOADER CPUcode"] == "15"
    assert props["FID"] == "1AB23C45"
    assert props["&FID"] == "0x8000"
    assert props["FID CPU"] == "SH705415"
    assert props["FID CPUcode"] == "15"
    assert props["RAMF_weird"] == "+0"
    assert props["RAMjump_entry"] == "0xFFFF8420"
    assert props["IVT2"] == "0x1000"
    assert props["IVT2 confidence"] == "99"
    assert props["std cks?"] == "1"
    assert props["&std_s"] == "0x7FFF0"
    assert props["&std_x"] == "0x7FFF4"
    assert props["alt cks?"] == "1"
    assert props["&alt_s"] == "0x7F000"
    assert props["alt_start"] == "0x2000"
    assert props["alt_end"] == "0x7FFD"
    # no alt2 on this variant
    assert props["alt2 cks?"] == ""
    assert props["RIPEMD160"] == ""
    assert props["MD5"] == desc.digest


def test_parse_ecurec_rom(ecurec_rom, check_descriptor):
    analyzer = analyze(ecurec_rom.data, "1KA7A03N.bin")
    desc = analyzer.descriptor
    check_descriptor(desc)
    assert desc.ecuid is None
    assert not analyzer.std_checksum.ok  # not attempted on this variant

    props = dict(analyzer.report_fields())
    assert props["RAMF_weird"] == ""
    assert props["RAMjump_entry"] == ""
    assert props["IVT2"] == "0x10000"
    assert props["std cks?"] == ""
    assert props["alt cks?"] == "1"
    assert props["alt2 cks?"] == "1"
    assert props["&alt2_s"] == "0xFFFF0"
    assert props["alt2_start"] == "0xFFE00"
    assert props["RIPEMD160"] == "1"


def test_parse_stops_without_fid(diag):
    image = RomImage.from_bytes(bytes(0x10000), "zeros.bin", force=True, diag=diag)
    analyzer = RomAnalyzer(image, diag)
    with pytest.raises(SignatureNotFound):
        analyzer.parse()
    desc = analyzer.descriptor
    assert desc.size == 0x10000
    assert desc.loader_offset is None
    assert desc.fid_offset is None
    assert desc.digest is None
    assert "Cannot continue" in diag


def test_parse_unknown_variant_keeps_fid(ramf_rom):
    buf = bytearray(ramf_rom.data)
    buf[0x8000:0x8008] = b"SH999999"
    analyzer = RomAnalyzer(RomImage(bytes(buf), "x.bin"))
    with pytest.raises(UnknownVariant):
        analyzer.parse()
    desc = analyzer.descriptor
    assert desc.loader_offset == 0x400
    assert desc.fid_offset == 0x8000
    assert desc.fid_cpu == b"SH999999"
    assert desc.variant is None


def test_parse_guesses_ivt2():
    rom = build_ramf_rom(ivt2=0x3000, seed=4)
    desc = analyze(rom.data).descriptor
    assert desc.ivt2_offset is None
    assert (desc.ivt2_guess, desc.ivt2_confidence) == (0x1000, 75)


def test_find_keys_bruteforce():
    buf = bytearray(0x1000)
    write_u32(0x11223344, buf, 0x100)
    write_u32(0x55667788, buf, 0x200)
    write_u32(0xAABBCCDD, buf, 0x300)

    db = KeysetDatabase([Keyset(0xDEADBEEF, 0x1), Keyset(0xAABBCCDD, 0x2),
                         Keyset(0x11223344, 0x55667788)])
    quality, keyset = find_keys_bruteforce(db, buf)
    assert quality is KeyQuality.GOOD
    assert keyset.s27k == 0x11223344

    quality, keyset = find_keys_bruteforce(KeysetDatabase(db.keysets[:2]), buf)
    assert quality is KeyQuality.PARTIAL
    assert keyset.s27k == 0xAABBCCDD

    assert find_keys_bruteforce(KeysetDatabase(), buf) == (KeyQuality.UNKNOWN, None)


def test_keyset_csv(tmp_path, ramf_rom):
    path = tmp_path / "keysets.csv"
    path.write_text("s27k,s36k1,s36k2,comment\n"
                    "0x11223344,55667788,0,good one\n"
                    "junk,1,2,skipped\n"
                    "CAFEBABE,,,no s36k\n")
    db = KeysetDatabase.from_csv(path)
    assert len(db) == 2
    assert db.keysets[0] == Keyset(0x11223344, 0x55667788, 0)
    assert db.keysets[1].s36k1 == 0

    buf = bytearray(ramf_rom.data)
    write_u32(0x11223344, buf, 0x30000)
    write_u32(0x55667788, buf, 0x30004)
    props = dict(analyze(buf, keysets=db).report_fields())
    assert props["keyset quality"] == str(int(KeyQuality.GOOD))
    assert props["s27k"] == "0x11223344"
    assert props["s36k1"] == "0x55667788"

    with pytest.raises(FileNotFoundError):
        KeysetDatabase.from_csv(tmp_path / "none.csv")


def test_eeprom_finder_injected(ramf_rom):
    calls = []

    def finder(buf):
        calls.append(len(buf))
        return 0x1234, 0xFFFFF000

    props = dict(analyze(ramf_rom.data, eeprom_finder=finder).report_fields())
    assert calls == [len(ramf_rom.data)]
    assert props["&EEPROM_read()"] == "0x1234"
    assert props["EEPROM PORT"] == "0xFFFFF000"
