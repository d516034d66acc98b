#!/usr/bin/env python3
"""
Wonder Project J2 (N64) sprite tables.

Locates everything the sprite exporter needs inside the big-endian ROM image:

  - object infos         16 bytes each
  - object definitions   20 bytes each, pointing into the frame table
  - frames               14 bytes each:
        u16 record_index (bit 15 = special, not a sprite), u8 kind, u8 id,
        u8 delay, u8 u2, s16 x, s16 y, u16 u5, u8 u6, u8 u7
  - SPI offset table     8 byte stride, u32 offset relative to the SPI data
                         base. Odd offsets are not records; the entry after
                         them is used instead.
  - master palettes      0x60 x 256 RGBA5551 words, addressed in RDRAM

All offsets live in RomLayout so another dump/revision can be described
without touching code.

Usage:
    python rom_tables.py rom.z64 [--objdef N]
"""

import argparse, struct
from dataclasses import dataclass, field
from enum import IntFlag
from typing import List, Optional

from spi_errors import SpiError, InvalidRecordBoundsError
from spi_record import SpiRecord, parse_record
from spi_palette import MasterPalette, parse_palette

# -------------------------------------------------------------------
# CONFIG: Wonder Project J2 offsets
# -------------------------------------------------------------------

@dataclass
class RomLayout:
    objinfo_offset: int = 0x000F27E0
    objinfo_count: int = 0x9B4
    objinfo_size: int = 0x10

    objdef_offset: int = 0x000FD180
    objdef_count: int = 1645
    objdef_size: int = 0x14

    frames_base: int = 0x00105220
    frame_size: int = 0x0E

    spi_table_offset: int = 0x00133AC0
    spi_table_stride: int = 8
    spi_count: int = 0xF81
    spi_base: int = 0x0013D2E0

    palette_rom_base: int = 0x000F27E0
    palette_ram_base: int = 0x80400000
    palette_ram_addr: int = 0x8078D1C0
    palette_count: int = 0x60
    palette_size: int = 0x200

    def palette_offset(self, i: int) -> int:
        return self.palette_rom_base + (self.palette_ram_addr + i * self.palette_size - self.palette_ram_base)


DEFAULT_LAYOUT = RomLayout()


# -------------------------------------------------------------------
# Bounds-checked big-endian reads
# -------------------------------------------------------------------

def _read(fmt: str, b: bytes, o: int):
    if o < 0 or o + struct.calcsize(fmt) > len(b):
        raise InvalidRecordBoundsError(f"read of {struct.calcsize(fmt)} bytes at 0x{o:X} is outside the {len(b)} byte ROM")
    return struct.unpack_from(fmt, b, o)[0]

def be8(b, o):  return _read(">B", b, o)
def be16(b, o): return _read(">H", b, o)
def be32(b, o): return _read(">I", b, o)
def se16(b, o): return _read(">h", b, o)


# -------------------------------------------------------------------
# Table structs
# -------------------------------------------------------------------

class ObjInfoFlags(IntFlag):
    EMPTY    = 0
    HASEXTRA = 1 << 0
    LOOP     = 1 << 1
    UNK3     = 1 << 2
    UNK4     = 1 << 3
    BG2FG    = 1 << 4
    UNK6     = 1 << 5
    UNK8     = 1 << 6
    FG2BG    = 1 << 7
    UNK10    = 1 << 8
    UNK12    = 1 << 9
    UNK13    = 1 << 10
    UNK14    = 1 << 11
    UNK15    = 1 << 12
    UNK16    = 1 << 13
    UNK17    = 1 << 14
    UNK18    = 1 << 15


@dataclass
class ObjInfo:
    offset1: int
    offset2: int
    u1: int
    flags: ObjInfoFlags
    u2: int
    u3: int
    obj_count: int
    extra_obj_count: int


@dataclass
class Frame:
    record_index: int
    kind: int
    id: int
    delay: int
    u2: int
    x: int
    y: int
    u5: int
    u6: int
    u7: int

    @property
    def is_special(self) -> bool:
        return bool(self.record_index & 0x8000)


@dataclass
class ObjDef:
    frames_offset: int
    u1: int
    u2: int
    u3: int
    u4: int
    u5: int
    frame_count: int
    frames: List[Frame] = field(default_factory=list)


@dataclass
class RecordEntry:
    index: int
    offset: int                      # relative to layout.spi_base
    record: Optional[SpiRecord] = None
    error: Optional[SpiError] = None


@dataclass
class RomTables:
    objinfos: List[ObjInfo]
    objdefs: List[ObjDef]
    records: List[RecordEntry]
    palettes: List[MasterPalette]
    layout: RomLayout = field(default_factory=lambda: DEFAULT_LAYOUT)

    def record_list(self) -> List[Optional[SpiRecord]]:
        return [e.record for e in self.records]


# -------------------------------------------------------------------
# Parsers
# -------------------------------------------------------------------

def parse_objinfos(buf: bytes, layout: RomLayout = DEFAULT_LAYOUT) -> List[ObjInfo]:
    out: List[ObjInfo] = []
    for i in range(layout.objinfo_count):
        o = layout.objinfo_offset + i * layout.objinfo_size
        out.append(ObjInfo(
            offset1         = be16(buf, o),
            offset2         = be16(buf, o+2),
            u1              = be32(buf, o+4),
            flags           = ObjInfoFlags(be16(buf, o+8)),
            u2              = be16(buf, o+10),
            u3              = be16(buf, o+12),
            obj_count       = be8(buf, o+14),
            extra_obj_count = be8(buf, o+15),
        ))
    return out


def parse_frame(buf: bytes, o: int) -> Frame:
    return Frame(
        record_index = be16(buf, o),
        kind         = be8(buf, o+2),
        id           = be8(buf, o+3),
        delay        = be8(buf, o+4),
        u2           = be8(buf, o+5),
        x            = se16(buf, o+6),
        y            = se16(buf, o+8),
        u5           = be16(buf, o+10),
        u6           = be8(buf, o+12),
        u7           = be8(buf, o+13),
    )


def parse_objdefs(buf: bytes, layout: RomLayout = DEFAULT_LAYOUT) -> List[ObjDef]:
    out: List[ObjDef] = []
    for i in range(layout.objdef_count):
        o = layout.objdef_offset + i * layout.objdef_size
        d = ObjDef(
            frames_offset = be32(buf, o),
            u1            = be16(buf, o+4),
            u2            = be16(buf, o+6),
            u3            = be16(buf, o+8),
            u4            = be16(buf, o+10),
            u5            = be32(buf, o+12),
            frame_count   = be8(buf, o+16),
        )
        base = layout.frames_base + d.frames_offset
        d.frames = [parse_frame(buf, base + j * layout.frame_size) for j in range(d.frame_count)]
        out.append(d)
    return out


def spi_offset(buf: bytes, index: int, layout: RomLayout = DEFAULT_LAYOUT) -> int:
    """First even offset at or after table entry `index`."""
    skip = 0
    while True:
        value = be32(buf, layout.spi_table_offset + (index + skip) * layout.spi_table_stride)
        if value & 1 == 0:
            return value
        skip += 1


def locate_spi_records(buf: bytes, layout: RomLayout = DEFAULT_LAYOUT) -> List[RecordEntry]:
    """One entry per SPI index; a record that fails to parse keeps its error instead."""
    entries: List[RecordEntry] = []
    for i in range(layout.spi_count):
        entry = RecordEntry(i, -1)
        try:
            entry.offset = spi_offset(buf, i, layout)
            entry.record = parse_record(buf, layout.spi_base + entry.offset)
        except SpiError as e:
            entry.error = e
        entries.append(entry)
    return entries


def parse_master_palettes(buf: bytes, layout: RomLayout = DEFAULT_LAYOUT) -> List[MasterPalette]:
    return [parse_palette(buf, layout.palette_offset(i), index=i) for i in range(layout.palette_count)]


def load_rom(buf: bytes, layout: RomLayout = DEFAULT_LAYOUT) -> RomTables:
    return RomTables(
        objinfos = parse_objinfos(buf, layout),
        objdefs  = parse_objdefs(buf, layout),
        records  = locate_spi_records(buf, layout),
        palettes = parse_master_palettes(buf, layout),
        layout   = layout,
    )


def main():
    ap = argparse.ArgumentParser(formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    ap.add_argument("rom", help="Path to Wonder Project J2 ROM (.z64)")
    ap.add_argument("--objdef", type=int, default=None, help="Print the frames of one object definition")
    args = ap.parse_args()

    with open(args.rom, "rb") as f:
        data = f.read()

    tables = load_rom(data)
    ok = sum(1 for e in tables.records if e.record is not None)
    print(f"objinfos={len(tables.objinfos)} objdefs={len(tables.objdefs)} "
          f"records={ok}/{len(tables.records)} palettes={len(tables.palettes)}")

    if args.objdef is not None:
        d = tables.objdefs[args.objdef]
        print(f"OBJ {args.objdef}: {d.frames_offset:08x}, {d.frame_count}")
        for fr in d.frames:
            print(f"\t{fr.record_index:0>8} {fr.kind:08x} {fr.id:08x} {fr.x} {fr.y} {fr.delay} {fr.u2} {fr.u5} {fr.u6} {fr.u7}")


if __name__ == "__main__":
    main()
