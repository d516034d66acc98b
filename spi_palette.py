#!/usr/bin/env python3
"""
Master palettes.

Each palette is 256 big-endian RGBA5551 words:

    bit 15..11  red
    bit 10..6   green
    bit  5..1   blue
    bit  0      alpha (1 = opaque)

Channels are widened to 8 bits with rounding: (c5 * 255 + 15) // 31.
"""

import struct
from dataclasses import dataclass, field
from typing import List, Tuple

import numpy as np
from PIL import Image

from spi_errors import InvalidRecordBoundsError

PALETTE_COLORS = 256
PREVIEW_COLORS = 16

RGBA = Tuple[int, int, int, int]


def be16(b, o): return struct.unpack_from(">H", b, o)[0]

def expand5(c): return (c * 255 + 15) // 31

def rgba5551_to_rgba(word: int) -> RGBA:
    r = expand5((word >> 11) & 0x1F)
    g = expand5((word >> 6)  & 0x1F)
    b = expand5((word >> 1)  & 0x1F)
    a = (word & 0x1) * 255
    return (r, g, b, a)


@dataclass
class MasterPalette:
    index: int
    colors: List[RGBA] = field(default_factory=list)

    def as_array(self) -> np.ndarray:
        """(256, 4) uint8 lookup table; missing entries are transparent black."""
        table = np.zeros((PALETTE_COLORS, 4), dtype=np.uint8)
        if self.colors:
            n = min(len(self.colors), PALETTE_COLORS)
            table[:n] = np.asarray(self.colors[:n], dtype=np.uint8)
        return table


def parse_palette(buf: bytes, offset: int, index: int = 0, count: int = PALETTE_COLORS) -> MasterPalette:
    if offset < 0 or offset + count * 2 > len(buf):
        raise InvalidRecordBoundsError(
            f"palette {index} at 0x{offset:X} needs {count * 2} bytes, buffer is {len(buf)} bytes")
    colors = [rgba5551_to_rgba(be16(buf, offset + 2*i)) for i in range(count)]
    return MasterPalette(index, colors)


def preview_colors(palette: MasterPalette, count: int = PREVIEW_COLORS) -> List[RGBA]:
    return list(palette.colors[:count])


def palette_image(colors: List[RGBA]) -> Image.Image:
    """One pixel per colour, laid out in a single row."""
    img = Image.new("RGBA", (max(1, len(colors)), 1), (0, 0, 0, 0))
    px = img.load()
    for x, col in enumerate(colors):
        px[x, 0] = tuple(col)
    return img
