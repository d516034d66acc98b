#!/usr/bin/env python3
"""
SPI record container.

Every compressed sprite in the ROM is stored as a small record:

    magic         4 bytes   "SPI0" or "SPI1"
    target_length u32 BE    size of the decompressed stream
    len_control   u32 BE    length of the control bitstream
    len_side      u32 BE    length of the packed 4-bit palette index buffer
    len_literal   u32 BE    length of the literal / back-reference buffer

followed by the three buffers back to back, in that same order:

    [control][side][literal]

Running it directly dumps the header of a record at a given offset:

    python spi_record.py rom.z64 0x13D2E0
"""

import argparse, struct
from dataclasses import dataclass
from typing import Tuple

from spi_errors import UnrecognizedMagicError, InvalidRecordBoundsError

MAGIC_SPI0 = b"SPI0"
MAGIC_SPI1 = b"SPI1"
KNOWN_MAGICS = (MAGIC_SPI0, MAGIC_SPI1)

HEADER_FMT  = ">4sIIII"
HEADER_SIZE = struct.calcsize(HEADER_FMT)   # 20


@dataclass
class SpiHeader:
    magic: bytes
    target_length: int
    len_control: int
    len_side: int
    len_literal: int

    @property
    def payload_length(self) -> int:
        return self.len_control + self.len_side + self.len_literal

    def to_bytes(self) -> bytes:
        return struct.pack(HEADER_FMT, self.magic, self.target_length,
                           self.len_control, self.len_side, self.len_literal)


@dataclass
class SpiRecord:
    header: SpiHeader
    data: bytes

    @property
    def magic(self) -> bytes:
        return self.header.magic

    def slices(self) -> Tuple[bytes, bytes, bytes]:
        """Return (control, side, literal) views of the payload."""
        h = self.header
        a = h.len_control
        b = a + h.len_side
        c = b + h.len_literal
        return self.data[0:a], self.data[a:b], self.data[b:c]

    @property
    def byte_size(self) -> int:
        return HEADER_SIZE + len(self.data)

    def to_bytes(self) -> bytes:
        return self.header.to_bytes() + bytes(self.data)


def parse_header(buf: bytes, offset: int = 0) -> SpiHeader:
    if offset < 0 or offset + HEADER_SIZE > len(buf):
        raise InvalidRecordBoundsError(
            f"record header at 0x{offset:X} needs {HEADER_SIZE} bytes, only {max(0, len(buf) - offset)} available")
    magic, target, la, lb, lc = struct.unpack_from(HEADER_FMT, buf, offset)
    if magic not in KNOWN_MAGICS:
        raise UnrecognizedMagicError(f"unknown record tag {magic!r} at 0x{offset:X}")
    return SpiHeader(magic, target, la, lb, lc)


def parse_record(buf: bytes, offset: int = 0) -> SpiRecord:
    header = parse_header(buf, offset)
    start = offset + HEADER_SIZE
    end = start + header.payload_length
    if end > len(buf):
        raise InvalidRecordBoundsError(
            f"record at 0x{offset:X} declares {header.payload_length} payload bytes "
            f"({header.len_control}+{header.len_side}+{header.len_literal}), only {len(buf) - start} available")
    return SpiRecord(header, bytes(buf[start:end]))


def pack_record(magic: bytes, target_length: int, control: bytes, side: bytes, literal: bytes) -> SpiRecord:
    """Assemble a record from already-encoded buffers (no compression happens here)."""
    if magic not in KNOWN_MAGICS:
        raise UnrecognizedMagicError(f"unknown record tag {magic!r}")
    header = SpiHeader(magic, target_length, len(control), len(side), len(literal))
    return SpiRecord(header, bytes(control) + bytes(side) + bytes(literal))


def main():
    ap = argparse.ArgumentParser(formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    ap.add_argument("bin", help="Path to ROM image")
    ap.add_argument("offset", help="Record offset (hex accepted with 0x prefix)")
    args = ap.parse_args()

    with open(args.bin, "rb") as f:
        data = f.read()

    rec = parse_record(data, int(args.offset, 0))
    h = rec.header
    print(f"{h.magic.decode('ascii')} target=0x{h.target_length:X} "
          f"control={h.len_control} side={h.len_side} literal={h.len_literal} "
          f"size={rec.byte_size}")


if __name__ == "__main__":
    main()
