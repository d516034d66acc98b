#!/usr/bin/env python3
"""
Tile compositing for decompressed SPI streams.

A decompressed stream is a list of tiles, each one

    u16 BE offset_x, u16 BE offset_y, u16 BE width, u16 BE height
    width*height palette indexes, row-major

read until two or fewer bytes are left. Tiles are drawn onto an RGBA canvas
sized to the union of their rectangles.

Background heuristic: a tile with offset_x above BACKGROUND_THRESHOLD has only
been seen on background records, which are laid out differently. Such a
record is not drawn; the layout is flagged so callers can list it for review.
Pass background_threshold=None to turn the check off.
"""

import struct
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image

from spi_errors import SpiError, TruncatedError
from spi_decompress import decompress
from spi_palette import MasterPalette

TILE_HEADER_FMT  = ">HHHH"
TILE_HEADER_SIZE = struct.calcsize(TILE_HEADER_FMT)
BACKGROUND_THRESHOLD = 256
SPECIAL_FRAME_BIT = 0x8000


@dataclass
class Tile:
    offset_x: int
    offset_y: int
    width: int
    height: int
    pixels: bytes


@dataclass
class TileLayout:
    tiles: List[Tile] = field(default_factory=list)
    width: int = 0
    height: int = 0
    background: bool = False
    background_tile: Optional[Tuple[int, int, int, int]] = None   # (x, y, w, h) of the tile that tripped it

    @property
    def empty(self) -> bool:
        return self.width == 0 or self.height == 0


@dataclass
class RenderResult:
    image: Optional[Image.Image]
    layout: TileLayout


def scan_tiles(stream: bytes, background_threshold: Optional[int] = BACKGROUND_THRESHOLD) -> TileLayout:
    """Parse every tile header and compute the canvas bounds, without drawing."""
    layout = TileLayout()
    pos = 0
    total = len(stream)
    while total - pos > 2:
        if pos + TILE_HEADER_SIZE > total:
            raise TruncatedError("tile header", pos, total)
        ox, oy, w, h = struct.unpack_from(TILE_HEADER_FMT, stream, pos)

        if background_threshold is not None and ox > background_threshold:
            layout.background = True
            layout.background_tile = (ox, oy, w, h)
            break

        start = pos + TILE_HEADER_SIZE
        end = start + w * h
        if end > total:
            raise TruncatedError("tile pixel", end, total)
        layout.tiles.append(Tile(ox, oy, w, h, bytes(stream[start:end])))
        layout.width = max(layout.width, ox + w)
        layout.height = max(layout.height, oy + h)
        pos = end
    return layout


def new_canvas(width: int, height: int) -> np.ndarray:
    return np.zeros((height, width, 4), dtype=np.uint8)


def blit_tiles(tiles: Sequence[Tile], table: np.ndarray, canvas: np.ndarray, origin: Tuple[int, int] = (0, 0)):
    ox0, oy0 = origin
    ch, cw = canvas.shape[:2]
    for t in tiles:
        if t.width == 0 or t.height == 0:
            continue
        x0 = ox0 + t.offset_x
        y0 = oy0 + t.offset_y
        if x0 + t.width > cw or y0 + t.height > ch:
            raise ValueError(f"tile {t.width}x{t.height} at ({x0},{y0}) does not fit a {cw}x{ch} canvas")
        idx = np.frombuffer(t.pixels, dtype=np.uint8).reshape(t.height, t.width)
        canvas[y0:y0 + t.height, x0:x0 + t.width] = table[idx]


def composite(stream: bytes,
              palette: MasterPalette,
              canvas: np.ndarray,
              origin: Tuple[int, int] = (0, 0),
              background_threshold: Optional[int] = BACKGROUND_THRESHOLD) -> TileLayout:
    layout = scan_tiles(stream, background_threshold)
    if not layout.background:
        blit_tiles(layout.tiles, palette.as_array(), canvas, origin)
    return layout


def canvas_to_image(canvas: np.ndarray) -> Image.Image:
    return Image.fromarray(canvas)


def render_record(stream: bytes,
                  palette: MasterPalette,
                  background_threshold: Optional[int] = BACKGROUND_THRESHOLD) -> RenderResult:
    layout = scan_tiles(stream, background_threshold)
    if layout.background or layout.empty:
        return RenderResult(None, layout)
    canvas = new_canvas(layout.width, layout.height)
    blit_tiles(layout.tiles, palette.as_array(), canvas)
    return RenderResult(canvas_to_image(canvas), layout)


# ------------------ animation strips ------------------

@dataclass
class FramePlacement:
    frame_index: int
    record_index: int
    origin: Tuple[int, int]
    layout: TileLayout


SKIP_SPECIAL    = "special"
SKIP_MISSING    = "missing"
SKIP_ERROR      = "error"
SKIP_BACKGROUND = "background"


@dataclass
class SkippedFrame:
    frame_index: int
    kind: str
    reason: str


@dataclass
class AnimationStrip:
    image: Optional[Image.Image]
    placements: List[FramePlacement] = field(default_factory=list)
    skipped: List[SkippedFrame] = field(default_factory=list)

    def skipped_of(self, kind: str) -> List[SkippedFrame]:
        return [s for s in self.skipped if s.kind == kind]


def measure_record(record,
                   decoder=decompress,
                   background_threshold: Optional[int] = BACKGROUND_THRESHOLD,
                   cache: Optional[Dict[int, object]] = None,
                   index: Optional[int] = None) -> TileLayout:
    """
    Decode a record and scan its tiles. With a cache, the layout (or the
    SpiError it raised) is stored under index and reused on the next call.
    """
    if cache is not None and index in cache:
        hit = cache[index]
        if isinstance(hit, SpiError):
            raise hit
        return hit
    try:
        layout = scan_tiles(decoder(record), background_threshold)
    except SpiError as e:
        if cache is not None:
            cache[index] = e
        raise
    if cache is not None:
        cache[index] = layout
    return layout


def assemble_animation(frames,
                       records: Sequence,
                       palette: MasterPalette,
                       decoder=decompress,
                       background_threshold: Optional[int] = BACKGROUND_THRESHOLD,
                       cache: Optional[Dict[int, object]] = None) -> AnimationStrip:
    """
    Lay the frames of one animation out left to right.

    frames:  objects with record_index, x and y (rom_tables.Frame)
    records: record list indexed by record_index; None marks a record that
             could not be located
    cache:   record index -> TileLayout or SpiError, shared between calls

    Every frame is moved down so its y offset lines up with the largest y of
    the non-special frames, whether or not they decode. After a frame, the
    pen advances by its width plus |x|.
    """
    strip = AnimationStrip(None)
    baseline = max((f.y for f in frames if not f.record_index & SPECIAL_FRAME_BIT), default=0)
    measured = []
    for i, frame in enumerate(frames):
        idx = frame.record_index
        if idx & SPECIAL_FRAME_BIT:
            strip.skipped.append(SkippedFrame(i, SKIP_SPECIAL, f"special frame 0x{idx:04X}"))
            continue
        if idx >= len(records) or records[idx] is None:
            strip.skipped.append(SkippedFrame(i, SKIP_MISSING, f"record {idx} unavailable"))
            continue
        try:
            layout = measure_record(records[idx], decoder, background_threshold, cache, idx)
        except SpiError as e:
            strip.skipped.append(SkippedFrame(i, SKIP_ERROR, f"record {idx}: {e}"))
            continue
        if layout.background:
            x, y, w, h = layout.background_tile
            strip.skipped.append(SkippedFrame(i, SKIP_BACKGROUND, f"record {idx}: background marker, tile {w}x{h} at ({x},{y})"))
            continue
        measured.append((i, frame, layout))

    if not measured:
        return strip

    pen_x = 0
    width = height = 0
    for i, frame, layout in measured:
        origin = (pen_x, baseline - frame.y)
        strip.placements.append(FramePlacement(i, frame.record_index, origin, layout))
        width = max(width, origin[0] + layout.width)
        height = max(height, origin[1] + layout.height)
        pen_x += layout.width + abs(frame.x)

    if width == 0 or height == 0:
        return strip

    canvas = new_canvas(width, height)
    table = palette.as_array()
    for p in strip.placements:
        blit_tiles(p.layout.tiles, table, canvas, p.origin)
    strip.image = canvas_to_image(canvas)
    return strip
