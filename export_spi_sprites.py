#!/usr/bin/env python3
"""
Wonder Project J2 sprite extractor

Reads the ROM tables (rom_tables.py), decompresses the SPI sprite records
(spi_decompress.py) and writes PNGs:

    OUT/palette/palette_NN.png     256x1 strip per master palette
    OUT/spi1/spi_NNNNNNNN.png      one image per SPI1 record
    OUT/anim/anim_NNNN.png         frames of each object definition, side by side

A record that fails to decode is reported and skipped; the run carries on and
prints every failure at the end. Records whose first tile sits past the
background threshold are not drawn and are listed for manual review.

Usage:
    python export_spi_sprites.py rom.z64 out --palette 3
    python export_spi_sprites.py rom.z64 out --no-anim --start 100 --end 200 --debug

Dependencies: Pillow, numpy
"""

import argparse, os
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Tuple

from PIL import Image

from spi_errors import SpiError
from spi_record import MAGIC_SPI0, MAGIC_SPI1
from spi_decompress import decompress
from spi_palette import MasterPalette, palette_image
from spi_tiles import (BACKGROUND_THRESHOLD, SKIP_BACKGROUND, SKIP_ERROR,
                       render_record, assemble_animation)
from rom_tables import RomLayout, RomTables, DEFAULT_LAYOUT, load_rom

Key = Tuple[str, int]


@dataclass
class ExportReport:
    written: int = 0
    skipped: int = 0
    failures: Dict[Key, str] = field(default_factory=dict)
    review: Dict[Key, str] = field(default_factory=dict)

    def summary(self) -> str:
        return (f"{self.written} written, {self.skipped} skipped, "
                f"{len(self.failures)} failed, {len(self.review)} flagged for review")


def _threshold_arg(s: str) -> Optional[int]:
    if s.lower() == "none":
        return None
    return int(s, 0)


def read_tables(rom_path: str, layout: RomLayout = DEFAULT_LAYOUT) -> RomTables:
    if not os.path.isfile(rom_path):
        raise SystemExit(f"ROM not found: {rom_path}")
    with open(rom_path, "rb") as f:
        data = f.read()
    return load_rom(data, layout)


def pick_palette(tables: RomTables, palette_index: int) -> MasterPalette:
    if not (0 <= palette_index < len(tables.palettes)):
        raise SystemExit(f"palette {palette_index} out of range 0..{len(tables.palettes)-1}")
    return tables.palettes[palette_index]


def render_range(tables: RomTables,
                 palette: MasterPalette,
                 report: ExportReport,
                 start: int = 0,
                 end: Optional[int] = None,
                 include_spi0: bool = False,
                 background_threshold: Optional[int] = BACKGROUND_THRESHOLD,
                 cache: Optional[Dict[int, object]] = None,
                 raw_dir: Optional[str] = None,
                 debug: bool = False,
                 on_step=None) -> Iterator[Tuple[int, Image.Image]]:
    """
    Decode and draw the records in [start, end), yielding (index, image) for
    each one that produced a picture. Failures, review flags and skips go
    into report. The caller counts what it keeps.

    cache:   filled with each record's TileLayout (or SpiError) for
             assemble_animation
    raw_dir: also write NAME.spi (record) and NAME.bin (stream) here
    on_step: called with a message once per index
    """
    wanted = {MAGIC_SPI1} | ({MAGIC_SPI0} if include_spi0 else set())
    end = len(tables.records) if end is None else min(end, len(tables.records))
    start = max(0, min(start, end))

    for entry in tables.records[start:end]:
        i = entry.index
        key = ("spi", i)
        msg = f"spi {i} rendered"
        if entry.error is not None:
            report.failures[key] = str(entry.error)
            print(f"[FAIL] spi {i}: {entry.error}")
            msg = f"spi {i} failed"
        elif entry.record.magic not in wanted:
            report.skipped += 1
            msg = f"spi {i} skipped"
        else:
            rec = entry.record
            if debug:
                print(f"spi {i}: {rec.magic.decode('ascii', 'replace')} {rec.header.target_length:04x} @ 0x{tables.layout.spi_base + entry.offset:X}")
            try:
                stream = decompress(rec)
                if raw_dir is not None:
                    base = os.path.join(raw_dir, f"spi_{i:0>8}")
                    with open(base + ".spi", "wb") as f:
                        f.write(rec.to_bytes())
                    with open(base + ".bin", "wb") as f:
                        f.write(stream)
                result = render_record(stream, palette, background_threshold)
            except SpiError as e:
                if cache is not None:
                    cache[i] = e
                report.failures[key] = str(e)
                print(f"[FAIL] spi {i}: {e}")
                msg = f"spi {i} failed"
            else:
                if cache is not None:
                    cache[i] = result.layout
                if result.layout.background:
                    x, y, w, h = result.layout.background_tile
                    report.review[key] = f"background marker: tile {w}x{h} at ({x},{y})"
                    print(f"[REVIEW] spi {i}: background marker, tile {w}x{h} at ({x},{y})")
                    msg = f"spi {i} flagged"
                elif result.image is None:
                    report.skipped += 1
                    if debug:
                        print(f"[SKIP] spi {i}: no tiles")
                    msg = f"spi {i} empty"
                else:
                    yield i, result.image
        if on_step:
            on_step(msg)


def export_all(rom_path: str,
               out_dir: str,
               palette_index: int = 0,
               start: int = 0,
               end: Optional[int] = None,
               spi1: bool = True,
               include_spi0: bool = False,
               anim: bool = True,
               palettes: bool = True,
               background_threshold: Optional[int] = BACKGROUND_THRESHOLD,
               dump_raw: bool = False,
               debug: bool = False,
               layout: RomLayout = DEFAULT_LAYOUT,
               progress_cb=None) -> ExportReport:
    """
    Callable form of main(), shared with the GUI.

    progress_cb(fraction, message), fraction in 0.0 .. 1.0
    """
    tables = read_tables(rom_path, layout)
    palette = pick_palette(tables, palette_index)

    for sub in ("palette", "spi1", "anim"):
        os.makedirs(os.path.join(out_dir, sub), exist_ok=True)

    report = ExportReport()
    # record index -> TileLayout / SpiError, so animations reuse the single-record pass
    layouts: Dict[int, object] = {}
    end = len(tables.records) if end is None else min(end, len(tables.records))
    start = max(0, min(start, end))

    total_steps = ((len(tables.palettes) if palettes else 0)
                   + ((end - start) if spi1 else 0)
                   + (len(tables.objdefs) if anim else 0))
    done_steps = 0

    def step(msg):
        nonlocal done_steps
        done_steps += 1
        if progress_cb and total_steps > 0:
            progress_cb(done_steps / total_steps, msg)

    # palettes
    if palettes:
        for pal in tables.palettes:
            name = f"palette_{pal.index:02}.png"
            palette_image(pal.colors).save(os.path.join(out_dir, "palette", name))
            step(f"Exported {name}")

    # single records
    if spi1:
        spi_dir = os.path.join(out_dir, "spi1")
        for i, image in render_range(tables, palette, report, start, end,
                                     include_spi0=include_spi0,
                                     background_threshold=background_threshold,
                                     cache=layouts,
                                     raw_dir=spi_dir if dump_raw else None,
                                     debug=debug,
                                     on_step=step):
            image.save(os.path.join(spi_dir, f"spi_{i:0>8}.png"))
            report.written += 1

    # animation strips
    if anim:
        records = tables.record_list()
        for i, d in enumerate(tables.objdefs):
            key = ("anim", i)
            if debug:
                print(f"OBJ {i}: {d.frames_offset:08x}, {d.frame_count}")
                for fr in d.frames:
                    print(f"\t{fr.record_index:0>8} {fr.kind:08x} {fr.id:08x} {fr.x} {fr.y} {fr.delay} {fr.u2} {fr.u5} {fr.u6} {fr.u7}")

            strip = assemble_animation(d.frames, records, palette,
                                       decoder=decompress,
                                       background_threshold=background_threshold,
                                       cache=layouts)
            if debug:
                for s in strip.skipped:
                    print(f"[SKIP] anim {i} frame {s.frame_index}: {s.reason}")
            errors = strip.skipped_of(SKIP_ERROR)
            if errors:
                report.failures[key] = "; ".join(f"frame {s.frame_index}: {s.reason}" for s in errors)
                print(f"[FAIL] anim {i}: {len(errors)} frame(s) failed to decode")
            backgrounds = strip.skipped_of(SKIP_BACKGROUND)
            if backgrounds:
                report.review[key] = "; ".join(f"frame {s.frame_index}: {s.reason}" for s in backgrounds)
                print(f"[REVIEW] anim {i}: {len(backgrounds)} background frame(s)")

            if strip.image is None:
                report.skipped += 1
                step(f"anim {i} empty")
                continue

            strip.image.save(os.path.join(out_dir, "anim", f"anim_{i:04}.png"))
            report.written += 1
            step(f"Exported anim_{i:04}.png")

    if progress_cb:
        progress_cb(1.0, f"Done: {report.summary()}")
    return report


def main():
    ap = argparse.ArgumentParser(formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    ap.add_argument("rom", help="Path to Wonder Project J2 ROM (.z64)")
    ap.add_argument("out", help="Output directory")
    ap.add_argument("-p", "--palette", type=int, default=0, help="Palette to use when exporting")
    ap.add_argument("-d", "--debug", action="store_true", help="Print debugging information")
    ap.add_argument("-n", "--no-spi1", action="store_true", help="Don't output SPI1 images")
    ap.add_argument("--include-spi0", action="store_true", help="Also output SPI0 records")
    ap.add_argument("--no-anim", action="store_true", help="Don't output animation strips")
    ap.add_argument("--no-palettes", action="store_true", help="Don't output palette strips")
    ap.add_argument("--start", type=int, default=0, help="First SPI index (inclusive)")
    ap.add_argument("--end", type=int, default=None, help="Last SPI index (exclusive). Default = all")
    ap.add_argument("--background-threshold", type=_threshold_arg, default=BACKGROUND_THRESHOLD,
                    help="Tiles with offset_x above this mark a background record ('none' to draw everything)")
    ap.add_argument("--dump-raw", action="store_true", help="Also write raw .spi records and decompressed .bin streams")
    args = ap.parse_args()

    try:
        report = export_all(args.rom, args.out,
                            palette_index=args.palette,
                            start=args.start, end=args.end,
                            spi1=not args.no_spi1,
                            include_spi0=args.include_spi0,
                            anim=not args.no_anim,
                            palettes=not args.no_palettes,
                            background_threshold=args.background_threshold,
                            dump_raw=args.dump_raw,
                            debug=args.debug)
    except SpiError as e:
        raise SystemExit(f"Unable to read ROM tables: {e}")

    if report.failures:
        print(f"Failures ({len(report.failures)}):")
        for (kind, idx), msg in sorted(report.failures.items()):
            print(f"  {kind} {idx}: {msg}")
    if report.review:
        print(f"Flagged for review ({len(report.review)}):")
        for (kind, idx), msg in sorted(report.review.items()):
            print(f"  {kind} {idx}: {msg}")
    print(f"[DONE] {report.summary()}. Wrote: {args.out}")


if __name__ == "__main__":
    main()
