import random
from dataclasses import dataclass, field
from typing import Dict

import pytest

from nisrom.checksum import sum32
from nisrom.codec import write_u32
from nisrom.diag import Diagnostics
from nisrom.romdefs import VARIANTS_BY_CPU


class RecordingDiagnostics(Diagnostics):
    def __init__(self):
        self.messages = []

    def emit(self, message: str) -> None:
        self.messages.append(message)

    def __contains__(self, text):
        return any(text in m for m in self.messages)


@dataclass
class BuiltRom:
    data: bytes
    cpu: bytes
    where: Dict[str, int] = field(default_factory=dict)


def random_bytes(size: int, seed: int = 1) -> bytearray:
    rng = random.Random(seed)
    return bytearray(rng.getrandbits(size * 8).to_bytes(size, 'big'))


def put(buf: bytearray, offset: int, raw: bytes):
    buf[offset:offset + len(raw)] = raw


def put_ivt(buf: bytearray, offset: int, pc: int = 0x00001104, sp: int = 0xFFFF7FFC):
    for i in (0, 8):
        write_u32(pc, buf, offset + i)
        write_u32(sp, buf, offset + i + 4)


def put_std_checksum(buf: bytearray, p_s: int, p_x: int):
    """Store a valid standard checksum (sum/xor of every other word)"""
    write_u32(0, buf, p_s)
    write_u32(0, buf, p_x)
    s, x = sum32(buf, skip=(p_s, p_x))
    write_u32(s, buf, p_s)
    write_u32(x, buf, p_x)


def put_alt2_checksum(buf: bytearray, start: int, p_s: int, p_x: int, skips=()):
    write_u32(0, buf, p_s)
    write_u32(0, buf, p_x)
    s, x = sum32(buf, start, skip=(p_s, p_x) + tuple(skips))
    write_u32(s, buf, p_s)
    write_u32(x, buf, p_x)


def put_alt_checksum(buf: bytearray, start: int, end: int, p_s: int, p_x: int):
    bsize = (((end + 1) - start) & ~3) + 4
    s, x = sum32(buf, start, bsize)
    write_u32(s, buf, p_s)
    write_u32(x, buf, p_x)


def build_ramf_rom(cpu=b"SH705415", ramf_shift=0, alt_bounds=(0x2000, 0x7FFD),
                   ivt2=0x1000, seed=1) -> BuiltRom:
    """
    512k ROM with LOADER (including its own DATABASE), FID, RAMF, IVT2,
    alt cks and std cks.
    """
    variant = VARIANTS_BY_CPU[cpu]
    buf = random_bytes(variant.rom_size, seed)
    where = {}

    put_ivt(buf, 0, pc=0x00000104)
    put_ivt(buf, 0x1000)

    where['loader'] = 0x400
    put(buf, 0x400, cpu)
    put(buf, 0x410, b"LOADER60" + bytes(8))
    put(buf, 0x420, b"DATABASE")

    where['fid'] = 0x8000
    put(buf, 0x8000, cpu)
    put(buf, 0x8010, b"1AB23C45")
    put(buf, 0x8020, b"DATABASE")

    ramf = 0x8000 + variant.fid_size + ramf_shift
    where['ramf'] = ramf
    write_u32(variant.ramf_header, buf, ramf)
    write_u32(0xFFFF8420, buf, ramf + variant.ram_jump)
    write_u32(0xFFFF9000, buf, ramf + variant.ram_dlamax)
    if variant.ivt2 is not None:
        write_u32(ivt2, buf, ramf + variant.ivt2)
    if variant.altcks_start is not None:
        write_u32(alt_bounds[0], buf, ramf + variant.altcks_start)
        write_u32(alt_bounds[1], buf, ramf + variant.altcks_end)

    where['alt_s'] = 0x7F000
    where['alt_x'] = 0x7F004
    start, end = alt_bounds
    if start < end < len(buf):
        put_alt_checksum(buf, start, end, where['alt_s'], where['alt_x'])

    where['std_s'] = 0x7FFF0
    where['std_x'] = 0x7FFF4
    put_std_checksum(buf, where['std_s'], where['std_x'])
    return BuiltRom(bytes(buf), cpu, where)


def build_ecurec_rom(seed=2) -> BuiltRom:
    """1M SH705828 ROM: no RAMF, ECUREC struct near the end"""
    cpu = b"SH705828"
    variant = VARIANTS_BY_CPU[cpu]
    size = variant.rom_size
    buf = random_bytes(size, seed)
    where = {}

    put_ivt(buf, 0, pc=0x00000104)
    put(buf, 0x400, cpu)
    put(buf, 0x410, b"LOADER80" + bytes(8))
    put(buf, 0x8000, cpu)
    put(buf, 0x8010, b"1KA7A03N")
    put(buf, 0x8020, b"DATABASE")

    put_ivt(buf, variant.ivt2_expected)
    write_u32(0x67452301, buf, 0x60000)
    write_u32(0x98BADCFE, buf, 0x60004)

    ecurec = 0xFFE00
    base = 0xFFF00
    where.update(ecurec=ecurec, ecurec_struct=base, alt_start=0x20000, alt_end=0x3FFFF)
    put(buf, ecurec, b"18U92A\x00\x00")
    write_u32(ecurec, buf, base + variant.ecurec)
    write_u32(where['alt_start'], buf, base + variant.altcks_start)
    write_u32(where['alt_end'], buf, base + variant.altcks_end)
    write_u32(variant.ivt2_expected, buf, base + variant.ivt2)
    write_u32(size - 1, buf, base + variant.romend)

    where['alt_s'] = 0x50000
    where['alt_x'] = 0x50004
    put_alt_checksum(buf, where['alt_start'], where['alt_end'], where['alt_s'], where['alt_x'])

    where['alt2_s'] = 0xFFFF0
    where['alt2_x'] = 0xFFFF4
    put_alt2_checksum(buf, ecurec, where['alt2_s'], where['alt2_x'],
                      skips=(variant.ivt2_expected - 4,))
    return BuiltRom(bytes(buf), cpu, where)


@pytest.fixture
def diag():
    return RecordingDiagnostics()


@pytest.fixture(scope="session")
def ramf_rom():
    return build_ramf_rom()


@pytest.fixture(scope="session")
def ecurec_rom():
    return build_ecurec_rom()


@pytest.fixture
def rom_factory():
    return build_ramf_rom


def assert_descriptor_sane(desc):
    """Every offset is unknown or inside the ROM; aligned ones are aligned"""
    for name, value in desc.offsets():
        if value is not None:
            assert 0 <= value < desc.size, name
    for name in desc.ALIGNED_FIELDS:
        value = getattr(desc, name)
        if value is not None:
            assert value % 4 == 0, name
    if desc.alt_start is not None and desc.alt_end is not None:
        assert desc.alt_start < desc.alt_end


@pytest.fixture
def check_descriptor():
    return assert_descriptor_sane
