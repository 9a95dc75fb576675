# SPDX-License-Identifier: MIT
# Copyright (c) 2024-2025 VueOSD — https://github.com/wkumik/Digital-FPV-OSD-Tool
"""
preview.py  –  Step through rendered overlay frames in a PyQt6 window.

Each frame is composited on demand with the same OverlayGenerator used for
export and shown over a dark checkerboard so transparent areas are visible.
"""

from __future__ import annotations
import logging
import sys
from typing import Sequence

import numpy as np
from PIL import Image
from PyQt6.QtCore import Qt
from PyQt6.QtGui import QColor, QImage, QPixmap
from PyQt6.QtWidgets import QApplication, QLabel, QSlider, QVBoxLayout, QWidget

from errors     import OsdToolError
from osd_parser import Frame

logger = logging.getLogger(__name__)

_CHECKER_CELL   = 16
_CHECKER_DARK   = (30, 30, 36, 255)
_CHECKER_LIGHT  = (46, 46, 54, 255)
_BG             = "#1e1e24"


def checkerboard_composite(canvas: np.ndarray, cell: int = _CHECKER_CELL) -> Image.Image:
    """Alpha-composite an RGBA canvas over a checkerboard."""
    h, w   = canvas.shape[:2]
    yy, xx = np.indices((h, w))
    light  = ((yy // cell + xx // cell) % 2).astype(bool)
    bg     = np.empty((h, w, 4), dtype=np.uint8)
    bg[:]       = _CHECKER_DARK
    bg[light]   = _CHECKER_LIGHT
    return Image.alpha_composite(Image.fromarray(bg), Image.fromarray(canvas))


class PreviewPanel(QLabel):
    def __init__(self, parent=None):
        super().__init__(parent)
        self.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.setMinimumSize(320, 180)
        self.setStyleSheet(f"background:{_BG};")
        self._pil_img = None

    def show_frame(self, img: Image.Image):
        self._pil_img = img.convert("RGBA")
        self._repaint()

    def _repaint(self):
        """Render PIL image scaled to fit current widget, maintaining aspect ratio."""
        if self._pil_img is None:
            return
        w = max(self.width(),  320)
        h = max(self.height(), 180)
        # thumbnail() only scales down
        tmp = self._pil_img.copy()
        tmp.thumbnail((w, h), Image.LANCZOS)
        data = tmp.tobytes("raw", "RGBA")
        qi   = QImage(data, tmp.width, tmp.height, tmp.width * 4, QImage.Format.Format_RGBA8888)
        # copy() detaches the QImage from the Python bytes buffer
        super().setPixmap(QPixmap.fromImage(qi.copy()))

    def resizeEvent(self, e):
        super().resizeEvent(e)
        self._repaint()


class OverlayPreview(QWidget):
    """Slider over the selected frames + the composited overlay."""

    def __init__(self, generator, frames: Sequence[Frame], parent=None):
        super().__init__(parent)
        self.generator = generator
        self.frames    = list(frames)

        lay = QVBoxLayout(self)
        self.panel = PreviewPanel()
        lay.addWidget(self.panel, 1)

        self.slider = QSlider(Qt.Orientation.Horizontal)
        self.slider.setRange(0, max(0, len(self.frames) - 1))
        self.slider.setEnabled(len(self.frames) > 1)
        self.slider.valueChanged.connect(self.show_position)
        lay.addWidget(self.slider)

        self.info = QLabel()
        pal = self.info.palette()
        pal.setColor(self.info.foregroundRole(), QColor("#c8c8d0"))
        self.info.setPalette(pal)
        lay.addWidget(self.info)

        if self.frames:
            self.show_position(0)
        else:
            self.info.setText("No OSD frames in the selected range")

    def show_position(self, pos: int):
        frame = self.frames[pos]
        try:
            canvas = self.generator.draw_frame_overlay(frame)
        except OsdToolError as e:
            logger.error("%s", e)
            self.info.setText(f"⚠ {e}")
            return
        self.panel.show_frame(checkerboard_composite(canvas))
        self.info.setText(f"OSD frame {pos + 1}/{len(self.frames)}  ·  video frame {frame.index}"
                          f"  ·  {frame.grid.non_empty_count()} tiles")


def run_preview(generator, frames: Sequence[Frame]) -> int:
    app = QApplication.instance() or QApplication(sys.argv[:1])
    win = OverlayPreview(generator, frames)
    win.setWindowTitle("DJI FPV OSD overlay preview")
    w, h = generator.scaling.canvas_resolution
    win.resize(min(w, 1600), min(h, 900) + 60)
    win.show()
    return app.exec()
