#!/usr/bin/env python3
"""
Wonder Project J2 sprite browser

Open a ROM, pick a master palette and a run of SPI indexes, and the records
are decoded straight into a thumbnail list. Anything that failed to decode
or tripped the background check is listed under the thumbnails with the
reason. Export writes the same PNGs as export_spi_sprites.py to a folder
of your choice.

Usage:
    python spi_tool_gui.py [rom.z64]

Dependencies: PyQt5, Pillow, numpy
"""

import sys
from typing import List, Optional

from PIL import Image
from PyQt5 import QtCore, QtGui, QtWidgets

import export_spi_sprites as ex
from rom_tables import RomTables
from spi_errors import SpiError
from spi_palette import palette_image, preview_colors

THUMB = 72
SWATCH_CELL = 16
DEFAULT_COUNT = 60


def to_pixmap(img: Image.Image) -> QtGui.QPixmap:
    rgba = img.convert("RGBA")
    qimg = QtGui.QImage(rgba.tobytes("raw", "RGBA"), rgba.width, rgba.height,
                        4 * rgba.width, QtGui.QImage.Format_RGBA8888)
    # the QImage only borrows the bytes
    return QtGui.QPixmap.fromImage(qimg.copy())


def report_lines(report: ex.ExportReport) -> List[str]:
    lines = [f"FAIL    {kind} {idx}: {msg}" for (kind, idx), msg in sorted(report.failures.items())]
    lines += [f"REVIEW  {kind} {idx}: {msg}" for (kind, idx), msg in sorted(report.review.items())]
    return lines


# ----------------- workers (run on a QThread) -----------------

class PreviewWorker(QtCore.QObject):
    # ok, message, [(index, PIL image)], ExportReport
    finished = QtCore.pyqtSignal(bool, str, object, object)

    def __init__(self, tables: RomTables, palette_index: int, start: int, end: int, parent=None):
        super().__init__(parent)
        self.tables = tables
        self.palette_index = palette_index
        self.start = start
        self.end = end

    @QtCore.pyqtSlot()
    def run(self):
        report = ex.ExportReport()
        try:
            palette = ex.pick_palette(self.tables, self.palette_index)
            images = list(ex.render_range(self.tables, palette, report, self.start, self.end))
        except (SystemExit, Exception) as e:
            self.finished.emit(False, f"Preview failed: {e}", [], report)
            return
        self.finished.emit(True, f"spi {self.start}-{self.end - 1}: {len(images)} drawn, "
                                 f"{len(report.failures)} failed, {len(report.review)} flagged",
                           images, report)


class ExportWorker(QtCore.QObject):
    progress = QtCore.pyqtSignal(int, str)
    # ok, message, ExportReport or None
    finished = QtCore.pyqtSignal(bool, str, object)

    def __init__(self, rom_path: str, out_dir: str, palette_index: int,
                 start: int = 0, end: Optional[int] = None, everything: bool = False, parent=None):
        super().__init__(parent)
        self.rom_path = rom_path
        self.out_dir = out_dir
        self.palette_index = palette_index
        self.start = start
        self.end = end
        self.everything = everything

    @QtCore.pyqtSlot()
    def run(self):
        def cb(frac, msg):
            self.progress.emit(int(frac * 100), msg)

        try:
            report = ex.export_all(self.rom_path, self.out_dir,
                                   palette_index=self.palette_index,
                                   start=self.start, end=self.end,
                                   anim=self.everything, palettes=self.everything,
                                   progress_cb=cb)
        except (SystemExit, Exception) as e:
            self.finished.emit(False, f"Export failed: {e}", None)
            return
        self.finished.emit(True, f"Exported to {self.out_dir}: {report.summary()}", report)


# ----------------- main window -----------------

class SpriteBrowser(QtWidgets.QMainWindow):
    def __init__(self):
        super().__init__()
        self.setWindowTitle("Wonder Project J2 Sprite Browser")
        self.resize(960, 720)

        self.rom_path: Optional[str] = None
        self.tables: Optional[RomTables] = None
        self._job = None                 # (thread, worker) while one runs
        self._progress: Optional[QtWidgets.QProgressDialog] = None

        central = QtWidgets.QWidget()
        self.setCentralWidget(central)
        root = QtWidgets.QVBoxLayout(central)

        rom_row = QtWidgets.QHBoxLayout()
        self.rom_edit = QtWidgets.QLineEdit()
        self.rom_edit.setReadOnly(True)
        self.rom_edit.setPlaceholderText("No ROM loaded")
        open_btn = QtWidgets.QPushButton("Open ROM...")
        open_btn.clicked.connect(self.on_open_rom)
        rom_row.addWidget(self.rom_edit, 1)
        rom_row.addWidget(open_btn)
        root.addLayout(rom_row)

        form = QtWidgets.QHBoxLayout()
        self.palette_spin = QtWidgets.QSpinBox()
        self.start_spin = QtWidgets.QSpinBox()
        self.count_spin = QtWidgets.QSpinBox()
        self.count_spin.setRange(1, 500)
        self.count_spin.setValue(DEFAULT_COUNT)
        self.render_btn = QtWidgets.QPushButton("Render")
        self.export_range_btn = QtWidgets.QPushButton("Export range...")
        self.export_all_btn = QtWidgets.QPushButton("Export everything...")
        for label, w in (("Palette", self.palette_spin), ("First SPI", self.start_spin), ("Count", self.count_spin)):
            form.addWidget(QtWidgets.QLabel(label))
            form.addWidget(w)
        form.addWidget(self.render_btn)
        form.addStretch(1)
        form.addWidget(self.export_range_btn)
        form.addWidget(self.export_all_btn)
        root.addLayout(form)

        self.swatch = QtWidgets.QLabel()
        self.swatch.setFixedHeight(SWATCH_CELL)
        root.addWidget(self.swatch)

        self.thumbs = QtWidgets.QListWidget()
        self.thumbs.setViewMode(QtWidgets.QListView.IconMode)
        self.thumbs.setIconSize(QtCore.QSize(THUMB, THUMB))
        self.thumbs.setResizeMode(QtWidgets.QListView.Adjust)
        self.thumbs.setMovement(QtWidgets.QListView.Static)
        self.thumbs.setSpacing(6)
        root.addWidget(self.thumbs, 1)

        root.addWidget(QtWidgets.QLabel("Failures and records flagged for review"))
        self.problems = QtWidgets.QListWidget()
        self.problems.setMaximumHeight(140)
        self.problems.setFont(QtGui.QFontDatabase.systemFont(QtGui.QFontDatabase.FixedFont))
        root.addWidget(self.problems)

        self.render_btn.clicked.connect(self.render_preview)
        self.export_range_btn.clicked.connect(self.on_export_range)
        self.export_all_btn.clicked.connect(self.on_export_all)
        self.palette_spin.valueChanged.connect(self.update_swatch)

        self._set_busy(False)
        self.statusBar().showMessage("Open a ROM to start.")

    # --- state ---

    def _set_busy(self, busy: bool):
        loaded = self.tables is not None
        for w in (self.render_btn, self.export_range_btn, self.export_all_btn):
            w.setEnabled(loaded and not busy)

    def _range(self):
        start = self.start_spin.value()
        return start, start + self.count_spin.value()

    def update_swatch(self, *_):
        if self.tables is None:
            self.swatch.clear()
            return
        strip = palette_image(preview_colors(self.tables.palettes[self.palette_spin.value()]))
        strip = strip.resize((strip.width * SWATCH_CELL, SWATCH_CELL), Image.NEAREST)
        self.swatch.setPixmap(to_pixmap(strip))

    def show_report(self, report: Optional[ex.ExportReport]):
        self.problems.clear()
        if report is not None:
            self.problems.addItems(report_lines(report))

    # --- ROM ---

    def on_open_rom(self):
        path, _ = QtWidgets.QFileDialog.getOpenFileName(self, "Open ROM", "", "N64 ROM (*.z64);;All files (*)")
        if path:
            self.open_rom(path)

    def open_rom(self, path: str):
        QtWidgets.QApplication.setOverrideCursor(QtCore.Qt.WaitCursor)
        try:
            tables = ex.read_tables(path)
        except (SystemExit, SpiError, OSError) as e:
            QtWidgets.QMessageBox.critical(self, "ROM error", f"Unable to read the ROM tables: {e}")
            return
        finally:
            QtWidgets.QApplication.restoreOverrideCursor()

        self.rom_path = path
        self.tables = tables
        self.rom_edit.setText(path)
        self.palette_spin.setRange(0, len(tables.palettes) - 1)
        self.start_spin.setRange(0, max(0, len(tables.records) - 1))
        self.update_swatch()
        self._set_busy(False)
        self.statusBar().showMessage(f"{len(tables.records)} SPI records, {len(tables.objdefs)} animations, "
                                     f"{len(tables.palettes)} palettes")
        self.render_preview()

    # --- jobs ---

    def _start(self, worker: QtCore.QObject, on_done):
        thread = QtCore.QThread(self)
        worker.moveToThread(thread)
        thread.started.connect(worker.run)
        worker.finished.connect(on_done)
        self._job = (thread, worker)
        self._set_busy(True)
        thread.start()

    def _end_job(self):
        thread, _ = self._job
        thread.quit()
        thread.wait()
        self._job = None
        self._set_busy(False)

    def render_preview(self):
        if self.tables is None or self._job is not None:
            return
        start, end = self._range()
        self.statusBar().showMessage(f"Rendering spi {start}-{end - 1}...")
        self._start(PreviewWorker(self.tables, self.palette_spin.value(), start, end), self._on_rendered)

    def _on_rendered(self, ok: bool, msg: str, images, report):
        self._end_job()
        self.thumbs.clear()
        for i, img in images:
            pix = to_pixmap(img).scaled(THUMB, THUMB, QtCore.Qt.KeepAspectRatio, QtCore.Qt.FastTransformation)
            item = QtWidgets.QListWidgetItem(QtGui.QIcon(pix), str(i))
            item.setToolTip(f"spi {i}: {img.width}x{img.height}")
            self.thumbs.addItem(item)
        self.show_report(report)
        self.statusBar().showMessage(msg)
        if not ok:
            QtWidgets.QMessageBox.critical(self, "Preview error", msg)

    def _export(self, title: str, start: int, end: Optional[int], everything: bool):
        out_dir = QtWidgets.QFileDialog.getExistingDirectory(self, "Export to")
        if not out_dir:
            return
        self._progress = QtWidgets.QProgressDialog(title, "", 0, 100, self)
        self._progress.setCancelButton(None)
        self._progress.setWindowModality(QtCore.Qt.WindowModal)
        self._progress.setMinimumDuration(0)
        self._progress.show()

        worker = ExportWorker(self.rom_path, out_dir, self.palette_spin.value(), start, end, everything)
        worker.progress.connect(self._on_progress)
        self._start(worker, self._on_exported)

    def on_export_range(self):
        start, end = self._range()
        self._export(f"Exporting spi {start}-{end - 1}", start, end, everything=False)

    def on_export_all(self):
        res = QtWidgets.QMessageBox.question(
            self, "Export everything?",
            "This writes every palette, SPI record and animation strip. Continue?")
        if res == QtWidgets.QMessageBox.Yes:
            self._export("Exporting everything", 0, None, everything=True)

    def _on_progress(self, percent: int, msg: str):
        if self._progress is not None:
            self._progress.setValue(percent)
            self._progress.setLabelText(msg)

    def _on_exported(self, ok: bool, msg: str, report):
        self._end_job()
        if self._progress is not None:
            self._progress.close()
            self._progress = None
        self.show_report(report)
        self.statusBar().showMessage(msg)
        if ok:
            QtWidgets.QMessageBox.information(self, "Export finished", msg)
        else:
            QtWidgets.QMessageBox.critical(self, "Export error", msg)


def main():
    app = QtWidgets.QApplication(sys.argv)
    app.setStyle("Fusion")
    win = SpriteBrowser()
    win.show()
    if len(sys.argv) > 1:
        win.open_rom(sys.argv[1])
    sys.exit(app.exec_())


if __name__ == "__main__":
    main()
