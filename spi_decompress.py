#!/usr/bin/env python3
"""
SPI0 / SPI1 sprite decompressor.

A record carries three buffers (see spi_record.py):

  - control: a bitstream read one bit at a time, most significant bit first
    (0x80, 0x40 ... 0x01). When the last byte is used up, decoding ends even if
    fewer than target_length bytes came out.
  - side:    palette indexes packed two per byte, high nibble first.
  - literal: raw bytes and back-reference descriptors.

SPI1 commands, selected by control bits:

    1 1   palette load: take one literal byte, store it in the 16-entry working
          palette at slot (cursor & 0xF), advance the cursor (starts at 16),
          and output the byte
    1 0   palette index: take the next nibble from the side buffer, output
          working_palette[nibble]
    0     back-reference: two literal bytes b0 b1

              count    = b0 >> 4
              distance = b1 + (b0 & 0xF) * 0x100 + 1

          count == 15 is extended by following literal bytes: each 0xFF adds
          255, the first non-0xFF byte is added and ends the count. Then
          count + 3 bytes are copied from output[len - distance], one at a time,
          so a short distance repeats freshly written bytes.

SPI0 is the older variant without the palette: a 1 bit outputs one literal
byte, a 0 bit is the same back-reference.

Usage:
    python spi_decompress.py rom.z64 0x13D2E0 out.bin
"""

import argparse
from enum import Enum
from typing import List

from spi_errors import TruncatedError, InvalidBackReferenceError, UnrecognizedMagicError
from spi_record import SpiRecord, MAGIC_SPI0, MAGIC_SPI1, parse_record

PALETTE_SLOTS = 16
PALETTE_CURSOR_SEED = 0x10
RUN_BIAS = 3
RUN_ESCAPE = 0xF


class ControlBit(Enum):
    SET = 1
    CLEAR = 0
    EXHAUSTED = -1


class BitCursor:
    """MSB-first reader over the control buffer."""

    def __init__(self, data: bytes):
        self.data = data
        self.byte_offset = 0
        self.bit_offset = 0

    def next_bit(self) -> ControlBit:
        if self.byte_offset >= len(self.data):
            return ControlBit.EXHAUSTED
        if self.bit_offset == 8:
            self.bit_offset = 0
            self.byte_offset += 1
            if self.byte_offset >= len(self.data):
                return ControlBit.EXHAUSTED
        bit = (self.data[self.byte_offset] >> (7 - self.bit_offset)) & 1
        self.bit_offset += 1
        return ControlBit.SET if bit else ControlBit.CLEAR


class NibbleCursor:
    """Two-phase reader over the side buffer: high nibble, then low nibble of the same byte."""

    AWAITING_HIGH = "high"
    AWAITING_LOW = "low"

    def __init__(self, data: bytes):
        self.data = data
        self.position = 0
        self.phase = self.AWAITING_HIGH

    def next_nibble(self) -> int:
        if self.position >= len(self.data):
            raise TruncatedError("side", self.position, len(self.data))
        byte = self.data[self.position]
        if self.phase == self.AWAITING_HIGH:
            self.phase = self.AWAITING_LOW
            return byte >> 4
        self.phase = self.AWAITING_HIGH
        self.position += 1
        return byte & 0xF


class ByteCursor:
    def __init__(self, data: bytes, name: str = "literal"):
        self.data = data
        self.name = name
        self.position = 0

    def read_u8(self) -> int:
        if self.position >= len(self.data):
            raise TruncatedError(self.name, self.position, len(self.data))
        b = self.data[self.position]
        self.position += 1
        return b


class WorkingPalette:
    """16-slot palette rebuilt while an SPI1 record decodes."""

    def __init__(self):
        self.slots: List[int] = list(range(PALETTE_SLOTS))
        self.write_cursor = PALETTE_CURSOR_SEED

    def load(self, value: int) -> int:
        slot = self.write_cursor & 0xF
        self.slots[slot] = value
        self.write_cursor += 1
        return slot

    def __getitem__(self, index: int) -> int:
        return self.slots[index]


def copy_back_reference(literal: ByteCursor, output: bytearray) -> int:
    """Decode one back-reference from the literal buffer and expand it into output."""
    b0 = literal.read_u8()
    b1 = literal.read_u8()
    count = b0 >> 4
    distance = b1 + (b0 & 0xF) * 0x100 + 1
    if count == RUN_ESCAPE:
        while True:
            ext = literal.read_u8()
            count += ext
            if ext != 0xFF:
                break
    run = count + RUN_BIAS

    pos = len(output) - distance
    if pos < 0:
        raise InvalidBackReferenceError(distance, len(output))
    for _ in range(run):
        output.append(output[pos])
        pos += 1
    return run


def decompress_spi1(record: SpiRecord) -> bytearray:
    if record.magic != MAGIC_SPI1:
        raise UnrecognizedMagicError(f"expected {MAGIC_SPI1!r} record, got {record.magic!r}")

    control, side, literal_buf = record.slices()
    bits = BitCursor(control)
    nibbles = NibbleCursor(side)
    literal = ByteCursor(literal_buf)
    palette = WorkingPalette()

    target = record.header.target_length
    output = bytearray()
    while len(output) < target:
        bit = bits.next_bit()
        if bit is ControlBit.EXHAUSTED:
            break

        if bit is ControlBit.SET:
            sub = bits.next_bit()
            if sub is ControlBit.EXHAUSTED:
                break
            if sub is ControlBit.SET:
                value = literal.read_u8()
                palette.load(value)
                output.append(value)
            else:
                output.append(palette[nibbles.next_nibble()])
        else:
            copy_back_reference(literal, output)

    return output


def decompress_spi0(record: SpiRecord) -> bytearray:
    if record.magic != MAGIC_SPI0:
        raise UnrecognizedMagicError(f"expected {MAGIC_SPI0!r} record, got {record.magic!r}")

    control, _, literal_buf = record.slices()
    bits = BitCursor(control)
    literal = ByteCursor(literal_buf)

    target = record.header.target_length
    output = bytearray()
    while len(output) < target:
        bit = bits.next_bit()
        if bit is ControlBit.EXHAUSTED:
            break
        if bit is ControlBit.SET:
            output.append(literal.read_u8())
        else:
            copy_back_reference(literal, output)

    return output


DECODERS = {
    MAGIC_SPI0: decompress_spi0,
    MAGIC_SPI1: decompress_spi1,
}


def decompress(record: SpiRecord) -> bytearray:
    decoder = DECODERS.get(record.magic)
    if decoder is None:
        raise UnrecognizedMagicError(f"no decoder for {record.magic!r}")
    return decoder(record)


def main():
    ap = argparse.ArgumentParser(formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    ap.add_argument("bin", help="Path to ROM image")
    ap.add_argument("offset", help="Record offset (hex accepted with 0x prefix)")
    ap.add_argument("out", help="Where to write the decompressed stream")
    args = ap.parse_args()

    with open(args.bin, "rb") as f:
        data = f.read()

    rec = parse_record(data, int(args.offset, 0))
    out = decompress(rec)
    with open(args.out, "wb") as f:
        f.write(out)
    print(f"[OK] {rec.magic.decode('ascii')}: {len(out)} of {rec.header.target_length} bytes -> {args.out}")


if __name__ == "__main__":
    main()
