from __future__ import annotations

import logging
import sys
import traceback
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image
from PySide6 import QtCore, QtGui, QtWidgets

from cine_grade.controls import ControlSpec, controls_in, groups
from cine_grade.params import DEFAULT_PARAMS, GradingParameters
from cine_grade.pipeline import (
    GradingError,
    bake,
    bake_batch,
    load_image,
    preview_source,
    quick_look,
    save_image,
)
from cine_grade.presets import (
    FilterPreset,
    PresetFormatError,
    PresetLibrary,
    apply_preset,
    load_preset,
    preset_from_params,
    presets,
    save_preset,
)


log = logging.getLogger(__name__)

# Preview grain is seeded so slider drags do not make the noise crawl.
PREVIEW_SEED = 0

IMAGE_FILTER = "Images (*.png *.jpg *.jpeg *.tif *.tiff *.bmp *.webp);;All Files (*)"
PRESET_FILTER = "Preset JSON (*.json);;All Files (*)"

GROUP_TITLES = {
    "PRIMARY": "Primary",
    "LGG": "Log Wheels",
    "COLOR": "Color",
    "MIXER": "Channel Mixer",
    "HSL": "HSL Vectors",
    "SPLIT": "Split Tone / Selective",
    "FILM": "Film",
    "LENS": "Lens",
    "DETAIL": "Detail",
    "GEOMETRY": "Geometry",
}
CATEGORY_ORDER = ["General", "Film Stock", "Look", "User"]


class _RenderSignals(QtCore.QObject):
    finished = QtCore.Signal(int, object)  # generation, RGBA PIL image
    failed = QtCore.Signal(int, str)


class _RenderTask(QtCore.QRunnable):
    def __init__(self, generation: int, job: "PreviewJob") -> None:
        super().__init__()
        self.generation = generation
        self.job = job
        self.signals = _RenderSignals()

    def run(self) -> None:
        try:
            img = self.job.render()
        except Exception:
            self.signals.failed.emit(self.generation, traceback.format_exc())
            return
        self.signals.finished.emit(self.generation, img)


@dataclass(frozen=True)
class PreviewJob:
    source: Image.Image
    params: GradingParameters
    radius_scale: float
    quick: bool

    def render(self) -> Image.Image:
        if self.quick:
            return quick_look(self.source, self.params)
        return bake(self.source, self.params, seed=PREVIEW_SEED, radius_scale=self.radius_scale)


@dataclass
class LoadedImage:
    path: Path
    original: Image.Image
    preview: Image.Image
    radius_scale: float


def image_to_qimage(img: Image.Image) -> QtGui.QImage:
    rgba = np.ascontiguousarray(np.asarray(img.convert("RGBA"), dtype=np.uint8))
    h, w, _ = rgba.shape
    # Copy out of the NumPy buffer before it is freed.
    return QtGui.QImage(rgba.tobytes(), w, h, 4 * w, QtGui.QImage.Format.Format_RGBA8888).copy()


class PresetPanel(QtWidgets.QWidget):
    """Preset tree: built-ins, presets loaded this session and a user folder."""

    presetChosen = QtCore.Signal(object)  # FilterPreset

    def __init__(self, settings: QtCore.QSettings, parent: QtWidgets.QWidget | None = None) -> None:
        super().__init__(parent)
        self._settings = settings
        self._builtin = presets()
        self._session: list[FilterPreset] = []
        self._library: PresetLibrary | None = None
        self._shown: list[FilterPreset] = []

        self.folder_edit = QtWidgets.QLineEdit(str(settings.value("userPresetsDir", "")))
        self.folder_edit.setPlaceholderText("User presets folder (optional)")
        browse = QtWidgets.QToolButton(text="…")
        folder_row = QtWidgets.QHBoxLayout()
        folder_row.setSpacing(6)
        folder_row.addWidget(self.folder_edit, 1)
        folder_row.addWidget(browse)

        self.tree = QtWidgets.QTreeWidget()
        self.tree.setHeaderHidden(True)
        self.tree.setMinimumWidth(220)
        self.tree.setUniformRowHeights(True)

        self.reset_first = QtWidgets.QCheckBox("Reset before applying")

        lay = QtWidgets.QVBoxLayout(self)
        lay.setContentsMargins(0, 0, 0, 0)
        lay.addWidget(QtWidgets.QLabel("Presets"))
        lay.addWidget(self.tree, 1)
        lay.addWidget(self.reset_first)
        lay.addLayout(folder_row)

        browse.clicked.connect(self._browse_folder)
        self.folder_edit.editingFinished.connect(lambda: self.set_folder(self.folder_edit.text().strip()))
        self.tree.itemActivated.connect(self._emit_item)
        self.tree.itemClicked.connect(self._emit_item)

        self.set_folder(self.folder_edit.text().strip(), persist=False)

    @property
    def library(self) -> PresetLibrary | None:
        return self._library

    def set_folder(self, folder: str, persist: bool = True) -> None:
        if persist:
            self._settings.setValue("userPresetsDir", folder)
        self._library = PresetLibrary(folder) if folder else None
        self.refresh()

    def add_session_preset(self, preset: FilterPreset) -> None:
        self._session = [p for p in self._session if p.name != preset.name] + [preset]
        self.refresh(select=preset.name)

    def refresh(self, select: str | None = None) -> None:
        from_folder = self._library.reload() if self._library is not None else []
        seen: set[str] = set()
        self._shown = []
        for p in [*self._builtin, *self._session, *from_folder]:
            if p.name not in seen:
                seen.add(p.name)
                self._shown.append(p)

        self.tree.clear()
        by_cat: dict[str, list[int]] = {}
        for i, p in enumerate(self._shown):
            by_cat.setdefault(p.category, []).append(i)
        extra = sorted(c for c in by_cat if c not in CATEGORY_ORDER)
        for cat in [c for c in CATEGORY_ORDER if c in by_cat] + extra:
            top = QtWidgets.QTreeWidgetItem([cat])
            top.setFlags(top.flags() & ~QtCore.Qt.ItemFlag.ItemIsSelectable)
            self.tree.addTopLevelItem(top)
            for i in by_cat[cat]:
                leaf = QtWidgets.QTreeWidgetItem(top, [self._shown[i].name])
                leaf.setData(0, QtCore.Qt.ItemDataRole.UserRole, i)
                if self._shown[i].name == select:
                    self.tree.setCurrentItem(leaf)
            top.setExpanded(True)

    def _browse_folder(self) -> None:
        folder = QtWidgets.QFileDialog.getExistingDirectory(
            self, "User Presets Folder", self.folder_edit.text() or str(Path.home())
        )
        if folder:
            self.folder_edit.setText(folder)
            self.set_folder(folder)

    def _emit_item(self, item: QtWidgets.QTreeWidgetItem, _column: int = 0) -> None:
        i = item.data(0, QtCore.Qt.ItemDataRole.UserRole)
        if i is not None and 0 <= int(i) < len(self._shown):
            self.presetChosen.emit(self._shown[int(i)])


class AdjustPanel(QtWidgets.QScrollArea):
    """Sliders for every entry of the controls table, one foldable box per group."""

    edited = QtCore.Signal(str, object)  # field name, new value

    def __init__(self, parent: QtWidgets.QWidget | None = None) -> None:
        super().__init__(parent)
        self.setWidgetResizable(True)
        self.setFrameShape(QtWidgets.QFrame.Shape.NoFrame)
        self.setMinimumWidth(340)
        self._rows: dict[str, tuple[ControlSpec, QtWidgets.QSlider, QtWidgets.QLabel]] = {}

        body = QtWidgets.QWidget()
        column = QtWidgets.QVBoxLayout(body)
        column.setContentsMargins(0, 0, 0, 0)
        column.setSpacing(8)
        for group in groups():
            column.addWidget(self._group_box(group))
        column.addStretch(1)
        self.setWidget(body)

    def _group_box(self, group: str) -> QtWidgets.QGroupBox:
        box = QtWidgets.QGroupBox(GROUP_TITLES.get(group, group.title()))
        box.setCheckable(True)
        inner = QtWidgets.QWidget()
        form = QtWidgets.QFormLayout(inner)
        form.setFieldGrowthPolicy(QtWidgets.QFormLayout.FieldGrowthPolicy.AllNonFixedFieldsGrow)
        form.setContentsMargins(6, 6, 6, 6)
        form.setVerticalSpacing(4)
        for spec in controls_in(group):
            form.addRow(spec.label, self._slider_row(spec))
        if group == "FILM":
            self.grain_color = QtWidgets.QCheckBox("Colour grain")
            self.grain_color.toggled.connect(lambda on: self.edited.emit("grain_color", on))
            form.addRow("", self.grain_color)

        outer = QtWidgets.QVBoxLayout(box)
        outer.setContentsMargins(0, 0, 0, 0)
        outer.addWidget(inner)
        # Folding a box only hides it; its values still apply.
        box.toggled.connect(inner.setVisible)
        box.setChecked(group in ("PRIMARY", "COLOR"))
        inner.setVisible(box.isChecked())
        return box

    def _slider_row(self, spec: ControlSpec) -> QtWidgets.QWidget:
        slider = QtWidgets.QSlider(QtCore.Qt.Orientation.Horizontal)
        slider.setRange(0, spec.steps)
        readout = QtWidgets.QLabel()
        readout.setMinimumWidth(52)
        readout.setAlignment(QtCore.Qt.AlignmentFlag.AlignRight | QtCore.Qt.AlignmentFlag.AlignVCenter)
        self._rows[spec.key] = (spec, slider, readout)
        slider.valueChanged.connect(lambda pos, key=spec.key: self._moved(key, pos))

        row = QtWidgets.QWidget()
        h = QtWidgets.QHBoxLayout(row)
        h.setContentsMargins(0, 0, 0, 0)
        h.addWidget(slider, 1)
        h.addWidget(readout)
        return row

    def _moved(self, key: str, position: int) -> None:
        spec, _, readout = self._rows[key]
        value = spec.slider_to_value(position)
        readout.setText(f"{value:g}")
        self.edited.emit(key, value)

    def show_params(self, params: GradingParameters) -> None:
        for key, (spec, slider, readout) in self._rows.items():
            value = getattr(params, key)
            with QtCore.QSignalBlocker(slider):
                slider.setValue(spec.value_to_slider(value))
            readout.setText(f"{value:g}")
        with QtCore.QSignalBlocker(self.grain_color):
            self.grain_color.setChecked(params.grain_color)


class MainWindow(QtWidgets.QMainWindow):
    def __init__(self) -> None:
        super().__init__()
        self.setWindowTitle("Cine Grade")

        self._loaded: LoadedImage | None = None
        self._params: GradingParameters = DEFAULT_PARAMS
        self._pixmap: QtGui.QPixmap | None = None

        self._debounce = QtCore.QTimer(self, singleShot=True, interval=25)
        self._debounce.timeout.connect(self._render)

        self._pool = QtCore.QThreadPool.globalInstance()
        # One worker; stale generations are dropped on arrival.
        self._pool.setMaxThreadCount(1)
        self._generation = 0

        settings = QtCore.QSettings("CineGrade", "Cine Grade")
        self.preset_panel = PresetPanel(settings)
        self.adjust_panel = AdjustPanel()

        self.canvas = QtWidgets.QLabel("Open an image to start grading")
        self.canvas.setAlignment(QtCore.Qt.AlignmentFlag.AlignCenter)
        self.canvas.setMinimumSize(640, 480)
        self.viewer = QtWidgets.QScrollArea(widgetResizable=True)
        self.viewer.setWidget(self.canvas)

        split = QtWidgets.QSplitter(QtCore.Qt.Orientation.Horizontal)
        split.addWidget(self.preset_panel)
        split.addWidget(self.viewer)
        split.addWidget(self.adjust_panel)
        split.setStretchFactor(1, 1)
        self.setCentralWidget(split)

        self._build_toolbar()

        self.preset_panel.presetChosen.connect(self._on_preset_chosen)
        self.adjust_panel.edited.connect(self._on_edited)
        self.adjust_panel.show_params(self._params)
        self._render()

    def _build_toolbar(self) -> None:
        bar = self.addToolBar("File")
        bar.setMovable(False)

        def action(text: str, slot, shortcut: QtGui.QKeySequence | str | None = None) -> QtGui.QAction:
            act = QtGui.QAction(text, self)
            if shortcut is not None:
                act.setShortcut(shortcut)
            act.triggered.connect(slot)
            bar.addAction(act)
            return act

        action("Open Image…", self._on_open, QtGui.QKeySequence.StandardKey.Open)
        self.bake_action = action("Bake As…", self._on_bake, QtGui.QKeySequence.StandardKey.Save)
        self.bake_action.setEnabled(False)
        action("Batch Bake…", self._on_batch)
        bar.addSeparator()
        action("Load Preset…", self._on_load_preset)
        action("Save Preset…", self._on_save_preset)
        action("Reset", self._on_reset)
        bar.addSeparator()
        self.quick_action = action("Quick Look", lambda _on: self._schedule())
        self.quick_action.setCheckable(True)

    # Files

    def _on_open(self) -> None:
        fn, _ = QtWidgets.QFileDialog.getOpenFileName(self, "Open Image", str(Path.home()), IMAGE_FILTER)
        if not fn:
            return
        try:
            original = load_image(fn)
        except GradingError as e:
            QtWidgets.QMessageBox.critical(self, "Cannot open image", str(e))
            return

        small, scale = preview_source(original)
        self._loaded = LoadedImage(Path(fn), original, small, scale)
        self.bake_action.setEnabled(True)
        self.statusBar().showMessage(f"{Path(fn).name}: {original.width}x{original.height}")
        self._render()

    def _on_bake(self) -> None:
        if self._loaded is None:
            return
        src = self._loaded.path
        fn, _ = QtWidgets.QFileDialog.getSaveFileName(
            self,
            "Bake Image As",
            str(src.with_name(f"{src.stem}_graded.png")),
            "PNG (*.png);;JPEG (*.jpg *.jpeg);;TIFF (*.tif *.tiff);;WEBP (*.webp);;BMP (*.bmp)",
        )
        if not fn:
            return

        QtWidgets.QApplication.setOverrideCursor(QtCore.Qt.CursorShape.WaitCursor)
        try:
            save_image(bake(self._loaded.original, self._params), fn)
        except (GradingError, OSError, ValueError) as e:
            log.exception("Bake to %s failed", fn)
            QtWidgets.QMessageBox.critical(self, "Bake failed", str(e))
            return
        finally:
            QtWidgets.QApplication.restoreOverrideCursor()
        self.statusBar().showMessage(f"Baked {Path(fn).name}", 5000)

    def _on_batch(self) -> None:
        files, _ = QtWidgets.QFileDialog.getOpenFileNames(self, "Images to Bake", str(Path.home()), IMAGE_FILTER)
        if not files:
            return
        out_dir = QtWidgets.QFileDialog.getExistingDirectory(self, "Output Folder", str(Path(files[0]).parent))
        if not out_dir:
            return

        QtWidgets.QApplication.setOverrideCursor(QtCore.Qt.CursorShape.WaitCursor)
        try:
            results = bake_batch(files, self._params, out_dir)
        finally:
            QtWidgets.QApplication.restoreOverrideCursor()

        failed = [r for r in results if not r.ok]
        text = f"Baked {len(results) - len(failed)} of {len(results)} images."
        if failed:
            text += "\n\n" + "\n".join(f"{r.path.name}: {r.error}" for r in failed)
        QtWidgets.QMessageBox.information(self, "Batch Bake", text)

    # Presets

    def _on_save_preset(self) -> None:
        name, ok = QtWidgets.QInputDialog.getText(self, "Save Preset", "Preset name:")
        name = name.strip()
        if not ok or not name:
            return
        preset = preset_from_params(name, self._params)

        library = self.preset_panel.library
        if library is not None:
            path = library.save(preset)
            log.info("Saved preset %r to %s", name, path)
            self.preset_panel.refresh(select=name)
            return

        fn, _ = QtWidgets.QFileDialog.getSaveFileName(
            self, "Save Preset", str(Path.home() / f"{name}.json"), "Preset JSON (*.json)"
        )
        if fn:
            save_preset(fn, preset)
            self.preset_panel.add_session_preset(preset)

    def _on_load_preset(self) -> None:
        fn, _ = QtWidgets.QFileDialog.getOpenFileName(self, "Load Preset", str(Path.home()), PRESET_FILTER)
        if not fn:
            return
        try:
            preset = load_preset(fn)
        except (OSError, PresetFormatError) as e:
            QtWidgets.QMessageBox.critical(self, "Invalid preset", str(e))
            return
        self.preset_panel.add_session_preset(preset)
        self._on_preset_chosen(preset)

    def _on_preset_chosen(self, preset: FilterPreset) -> None:
        self._set_params(apply_preset(self._params, preset, reset=self.preset_panel.reset_first.isChecked()))
        log.debug("Applied preset %s", preset.name)

    def _on_reset(self) -> None:
        self._set_params(DEFAULT_PARAMS)

    # Parameters and rendering

    def _set_params(self, params: GradingParameters) -> None:
        self._params = params
        self.adjust_panel.show_params(params)
        self._schedule()

    def _on_edited(self, key: str, value: object) -> None:
        self._params = self._params.with_changes(**{key: value})
        self._schedule()

    def _schedule(self) -> None:
        self._debounce.start()

    def _render(self) -> None:
        if self._loaded is None:
            return

        self._generation += 1
        job = PreviewJob(
            source=self._loaded.preview,
            params=self._params,
            radius_scale=self._loaded.radius_scale,
            quick=self.quick_action.isChecked(),
        )
        task = _RenderTask(self._generation, job)
        task.signals.finished.connect(self._on_rendered)
        task.signals.failed.connect(self._on_render_failed)
        self._pool.start(task)

    def _on_rendered(self, generation: int, img: object) -> None:
        if generation == self._generation:
            self._pixmap = QtGui.QPixmap.fromImage(image_to_qimage(img))
            self._fit_canvas()

    def _on_render_failed(self, generation: int, err: str) -> None:
        log.error("Preview render %d failed:\n%s", generation, err)
        if generation == self._generation:
            QtWidgets.QMessageBox.critical(self, "Render Error", err)

    def resizeEvent(self, event: QtGui.QResizeEvent) -> None:
        super().resizeEvent(event)
        self._fit_canvas()

    def _fit_canvas(self) -> None:
        if self._pixmap is None or self._pixmap.isNull():
            return
        room = self.viewer.viewport().size()
        if min(room.width(), room.height()) <= 10:
            return
        self.canvas.setPixmap(
            self._pixmap.scaled(
                room,
                QtCore.Qt.AspectRatioMode.KeepAspectRatio,
                QtCore.Qt.TransformationMode.SmoothTransformation,
            )
        )


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app = QtWidgets.QApplication(sys.argv)
    w = MainWindow()
    w.resize(1400, 860)
    w.show()
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
