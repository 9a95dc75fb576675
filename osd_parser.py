# SPDX-License-Identifier: MIT
# Copyright (c) 2024-2025 VueOSD — https://github.com/wkumik/Digital-FPV-OSD-Tool
"""
osd_parser.py  –  Parse DJI FPV (fpv.wtf msp-osd) .osd recordings.

FORMAT (little-endian, written by msp-osd on the air unit / goggles):

  Header (18 bytes, once):
    bytes 0-6:   magic "MSPOSD\\0"
    bytes 7-8:   u16 format version
    byte  9-10:  u8 OSD width, u8 OSD height        (tiles)
    byte  11-12: u8 tile width, u8 tile height      (px)
    bytes 13-16: u16 x offset, u16 y offset         (px, where the grid sits on video)
    byte  17:    u8 font variant id                 (0 generic, 1 BF, 2 INAV, 3 ARDU, 4 KISS Ultra)

  Each OSD frame (written only when the OSD changed):
    bytes 0-3:   u32 video frame index
    bytes 4-7:   u32 tile count  (always 1320 = 60 × 22)
    bytes 8-...: tile count × u16 tile indices (column-major, 0 = empty)

  Video frame indices increase but skip frames where the OSD did not change:
  the grid shown at video frame N is the latest OSD frame with index ≤ N.
"""

from __future__ import annotations
import logging
import struct
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple

from errors    import RecordingLoadError, RecordingOpenError
from osd_items import FontVariant
from tile_grid import ItemLayout, Region, TileGrid, TILES_PER_FRAME

logger = logging.getLogger(__name__)

HEADER_MAGIC     = b"MSPOSD\x00"
_HEADER          = struct.Struct("<7sH4B2HB")
_FRAME_HEADER    = struct.Struct("<II")
HEADER_SIZE      = _HEADER.size         # 18
FRAME_DATA_SIZE  = TILES_PER_FRAME * 2  # 2640
KNOWN_VERSIONS   = (1,)

VIDEO_FRAME_RATE = 60   # DJI FPV recordings


# ── Layout kinds ──────────────────────────────────────────────────────────────

class TileKind(Enum):
    """Native glyph sizes of DJI OSD fonts."""
    SD = (36, 54)
    HD = (24, 36)

    @property
    def dimensions(self) -> Tuple[int, int]:
        return self.value

    def __str__(self) -> str:
        return f"{self.name} ({self.value[0]}x{self.value[1]} px)"


class OsdKind(Enum):
    SD      = ("SD",     30, 16, TileKind.SD)
    FAKE_HD = ("FakeHD", 60, 22, TileKind.HD)
    HD      = ("HD",     50, 18, TileKind.HD)

    def __init__(self, label: str, width: int, height: int, tile_kind: TileKind):
        self.label     = label
        self.tile_kind = tile_kind
        self.dimensions_tiles = (width, height)

    def footprint(self, tile_kind: TileKind) -> Tuple[int, int]:
        """Pixel size of the whole OSD drawn unscaled with the given tiles."""
        w, h   = self.dimensions_tiles
        tw, th = tile_kind.dimensions
        return w * tw, h * th

    @classmethod
    def from_dimensions(cls, width: int, height: int) -> Optional["OsdKind"]:
        for kind in cls:
            if kind.dimensions_tiles == (width, height):
                return kind
        # early msp-osd builds recorded SD as 30×15
        if (width, height) == (30, 15):
            return cls.SD
        return None

    def __str__(self) -> str:
        return self.label


# ── Data model ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class OsdFileHeader:
    format_version:  int
    osd_dimensions:  Tuple[int, int]   # tiles
    tile_dimensions: Tuple[int, int]   # px
    offset:          Tuple[int, int]   # px
    font_variant_id: int

    @property
    def font_variant(self) -> FontVariant:
        return FontVariant.from_id(self.font_variant_id)

    @property
    def osd_kind(self) -> OsdKind:
        return OsdKind.from_dimensions(*self.osd_dimensions)


@dataclass(frozen=True)
class Frame:
    """One OSD snapshot and the video frame it first appears on."""
    index: int
    grid:  TileGrid

    def shifted(self, frame_shift: int) -> "Frame":
        return replace(self, index=self.index + frame_shift) if frame_shift else self

    def erased(self,
               regions: Iterable[Region] = (),
               layout: Optional[ItemLayout] = None,
               item_names: Iterable[str] = ()) -> "Frame":
        """Return a copy with regions / named items erased; self is untouched."""
        grid = self.grid.copy()
        grid.erase_regions(regions)
        item_names = list(item_names)
        if item_names:
            grid.erase_items(layout, item_names)
        return Frame(self.index, grid)


@dataclass
class OsdFile:
    header: OsdFileHeader
    frames: List[Frame] = field(default_factory=list)

    @property
    def frame_count(self) -> int:
        return len(self.frames)

    @property
    def last_frame_index(self) -> Optional[int]:
        return self.frames[-1].index if self.frames else None

    @property
    def refresh_interval_frames(self) -> Optional[float]:
        """Average number of video frames between OSD updates."""
        if not self.frames or not self.last_frame_index:
            return None
        return self.last_frame_index / self.frame_count

    @property
    def update_percent(self) -> Optional[float]:
        interval = self.refresh_interval_frames
        return 100.0 / interval if interval else None

    @property
    def refresh_rate_hz(self) -> Optional[float]:
        interval = self.refresh_interval_frames
        return VIDEO_FRAME_RATE / interval if interval else None


# ── Reader ────────────────────────────────────────────────────────────────────

def _parse_header(raw: bytes, path) -> OsdFileHeader:
    if len(raw) < HEADER_SIZE:
        raise RecordingOpenError(f"{path}: file too small to be an OSD file")
    (magic, version, osd_w, osd_h, tile_w, tile_h,
     x_off, y_off, variant_id) = _HEADER.unpack_from(raw, 0)
    if magic != HEADER_MAGIC:
        raise RecordingOpenError(f"{path}: not an MSPOSD recording (magic {magic!r})")
    if version not in KNOWN_VERSIONS:
        logger.warning("%s: unknown OSD format version %d, trying anyway", path, version)
    if OsdKind.from_dimensions(osd_w, osd_h) is None:
        raise RecordingOpenError(f"{path}: unsupported OSD dimensions {osd_w}x{osd_h} tiles")
    return OsdFileHeader(
        format_version  = version,
        osd_dimensions  = (osd_w, osd_h),
        tile_dimensions = (tile_w, tile_h),
        offset          = (x_off, y_off),
        font_variant_id = variant_id,
    )


class OsdFileReader:
    """
    Reader for one .osd recording.

    open() reads the whole file in one go and validates the header; frames are
    decoded on demand by iter_frames() or all at once (and cached) by frames().
    """

    def __init__(self, path, header: OsdFileHeader, raw: bytes):
        self.path    = Path(path)
        self._header = header
        self._raw    = raw
        self._frames: Optional[List[Frame]] = None

    @classmethod
    def open(cls, path) -> "OsdFileReader":
        try:
            with open(path, "rb") as f:
                raw = f.read()
        except OSError as e:
            raise RecordingOpenError(f"failed to open OSD file {path}: {e}") from e
        header = _parse_header(raw, path)
        logger.debug("opened %s: %s OSD, font variant %s",
                     path, header.osd_kind, header.font_variant)
        return cls(path, header, raw)

    @property
    def header(self) -> OsdFileHeader:
        return self._header

    def iter_frames(self) -> Iterator[Frame]:
        raw, off, end = self._raw, HEADER_SIZE, len(self._raw)
        while off < end:
            if off + _FRAME_HEADER.size > end:
                raise RecordingLoadError(
                    f"{self.path}: truncated frame header at byte {off}")
            index, count = _FRAME_HEADER.unpack_from(raw, off)
            if count != TILES_PER_FRAME:
                raise RecordingLoadError(
                    f"{self.path}: frame {index} has {count} tiles, expected {TILES_PER_FRAME}")
            data_start = off + _FRAME_HEADER.size
            data_end   = data_start + FRAME_DATA_SIZE
            if data_end > end:
                raise RecordingLoadError(
                    f"{self.path}: frame {index} truncated ({end - data_start} of "
                    f"{FRAME_DATA_SIZE} bytes)")
            yield Frame(index, TileGrid.from_bytes(raw[data_start:data_end]))
            off = data_end

    def frames(self) -> List[Frame]:
        if self._frames is None:
            self._frames = list(self.iter_frames())
            logger.debug("%s: decoded %d OSD frames", self.path, len(self._frames))
        return self._frames

    def osd_file(self) -> OsdFile:
        return OsdFile(self._header, self.frames())


def parse_osd(path) -> OsdFile:
    return OsdFileReader.open(path).osd_file()
