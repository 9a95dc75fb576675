# SPDX-License-Identifier: MIT
# Copyright (c) 2024-2025 VueOSD — https://github.com/wkumik/Digital-FPV-OSD-Tool
"""
font_loader.py  –  Load DJI / msp-osd bitmap font sheets from a font directory.

Font directory layout (same names as the fpv.wtf msp-osd font packs):

  font.png          generic, SD tiles     font_hd.png         generic, HD tiles
  font_bf.png       Betaflight, SD        font_bf_hd.png      Betaflight, HD
  font_inav.png     INAV, SD              font_inav_hd.png    INAV, HD
  font_ardu.png     ArduPilot, SD         font_ardu_hd.png    ArduPilot, HD
  font_ultra.png    KISS Ultra, SD        font_ultra_hd.png   KISS Ultra, HD

  → font[_<ident>][_hd].png, where ident defaults to the font variant's ident.

Font sheet formats (tile_h = image height / 256):

  SD: 36 × 54 px per tile      HD: 24 × 36 px per tile

Multi-column sheets: each sheet row contains N_COLS glyphs of base_tile_w × tile_h.
  char_code → col = code // 256, row = code % 256
  pixel_x   = col * base_tile_w
  pixel_y   = row * tile_h
A code whose column is past the last one has no glyph.
"""

from __future__ import annotations
import logging
from pathlib import Path
from typing import Dict, Optional, Tuple

from PIL import Image

from errors     import FontLoadError
from osd_parser import TileKind

logger = logging.getLogger(__name__)

NUM_CHARS = 256   # rows in every font sheet


class OsdFont:
    """
    Wraps a font sheet image. Supports both single-column (256 chars)
    and multi-column (e.g. 2 × 256 = 512 chars) layouts.

    tile_w / tile_h: the pixel dimensions of one glyph.
    n_cols: how many glyph columns the sheet has.
    """

    def __init__(self, image: Image.Image,
                 tile_w: int, tile_h: int,
                 n_cols: int = 1,
                 name: str = ""):
        self.image  = image.convert("RGBA")
        self.tile_w = tile_w
        self.tile_h = tile_h
        self.n_cols = n_cols
        self.name   = name

    @property
    def glyph_count(self) -> int:
        return self.n_cols * NUM_CHARS

    def get_char(self, code: int) -> Optional[Image.Image]:
        """Return the RGBA glyph image for char code, or None if the sheet has none."""
        if code < 0:
            return None
        col = code // NUM_CHARS   # which column group (0 = chars 0-255)
        row = code % NUM_CHARS    # which row
        if col >= self.n_cols:
            return None
        x = col * self.tile_w
        y = row * self.tile_h
        if y + self.tile_h > self.image.height:
            return None
        if x + self.tile_w > self.image.width:
            return None
        return self.image.crop((x, y, x + self.tile_w, y + self.tile_h))

    def __repr__(self):
        return (f"OsdFont({self.name!r}, tile={self.tile_w}×{self.tile_h}, "
                f"n_cols={self.n_cols})")


def _detect_layout(img: Image.Image) -> Tuple[int, int, int]:
    """
    Return (tile_w, tile_h, n_cols) from image dimensions.

    tile_h = image.height // 256  (always 256 rows in every font sheet).

    base_tile_w is derived from tile_h to match the 2:3 glyph aspect ratio:
      tile_h=36  → base_w=24   (HD)
      tile_h=54  → base_w=36   (SD)

    n_cols = image.width // base_tile_w
    """
    tile_h = img.height // NUM_CHARS
    if tile_h == 0:
        raise ValueError(f"font sheet {img.width}x{img.height} is shorter than {NUM_CHARS} rows")

    _BASE_W: dict[int, int] = {36: 24, 54: 36, 72: 48, 108: 72}
    base_w = _BASE_W.get(tile_h)

    if base_w and img.width % base_w == 0:
        return base_w, tile_h, img.width // base_w

    # Fallback for non-standard tile heights
    for bw in (24, 36, 48, 72):
        if img.width % bw == 0:
            return bw, tile_h, img.width // bw

    return img.width, tile_h, 1


def load_font_from_file(path) -> OsdFont:
    path = Path(path)
    try:
        with Image.open(path) as img:
            img.load()
            tw, th, nc = _detect_layout(img)
            return OsdFont(img, tw, th, n_cols=nc, name=path.stem)
    except (OSError, ValueError) as e:
        raise FontLoadError(f"failed to load font {path}: {e}") from e


# ── Font directory ────────────────────────────────────────────────────────────

class FontDir:
    """Font sheets of one directory, loaded on first use and cached."""

    def __init__(self, path):
        self.path = Path(path)
        self._fonts: Dict[Tuple[TileKind, str], OsdFont] = {}

    @staticmethod
    def file_name(tile_kind: TileKind, ident: str = "") -> str:
        name = f"font_{ident}" if ident else "font"
        if tile_kind is TileKind.HD:
            name += "_hd"
        return name + ".png"

    def font_path(self, tile_kind: TileKind, ident: str = "") -> Path:
        return self.path / self.file_name(tile_kind, ident)

    def load(self, tile_kind: TileKind, ident: str = "") -> OsdFont:
        key = (tile_kind, ident)
        if key not in self._fonts:
            path = self.font_path(tile_kind, ident)
            if not path.is_file():
                raise FontLoadError(f"font file not found: {path}")
            font = load_font_from_file(path)
            if (font.tile_w, font.tile_h) != tile_kind.dimensions:
                logger.warning("%s: %dx%d glyphs, expected %dx%d for %s tiles",
                               path, font.tile_w, font.tile_h,
                               *tile_kind.dimensions, tile_kind.name)
            logger.debug("loaded %r from %s", font, path)
            self._fonts[key] = font
        return self._fonts[key]

    def resolve(self, ident: str, tile_kind: TileKind, tile_index: int) -> Optional[Image.Image]:
        return self.load(tile_kind, ident).get_char(tile_index)
