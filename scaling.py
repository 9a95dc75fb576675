# SPDX-License-Identifier: MIT
# Copyright (c) 2024-2025 VueOSD — https://github.com/wkumik/Digital-FPV-OSD-Tool
"""
scaling.py  –  Pick tile kind and scale factor for a target video resolution.

Two glyph sizes exist (TileKind.SD 36×54, TileKind.HD 24×36).  Unscaled
glyphs are always the sharpest, so:

  no target      → native tiles of the recorded OSD kind, canvas = OSD size
  AUTO           → largest unscaled footprint that fits (native on ties);
                   otherwise scale, preferring the factor closest to 1
  YES            → always scale to fill the target (factor closest to 1 wins)
  NO             → native tiles unscaled, must fit

Worked example, FakeHD (60×22 tiles) on 1920×1080:
  SD tiles 2160×1188  → too big
  HD tiles 1440×792   → fits → HD, unscaled, drawn at (240, 144)
On 1280×720 neither fits; HD needs ×0.889, SD ×0.593 → HD ×0.889.

The result only depends on the arguments.
"""

from __future__ import annotations
import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from errors     import NoAcceptableScalingError
from osd_parser import OsdKind, TileKind

logger = logging.getLogger(__name__)

MIN_SCALED_TILE_HEIGHT = 18   # px, half an HD glyph

_RESOLUTION_RE = re.compile(r"^\s*(\d+)\s*[xX]\s*(\d+)\s*$")


class ScalingMode(Enum):
    AUTO = "auto"
    YES  = "yes"
    NO   = "no"


@dataclass(frozen=True)
class Scaling:
    tile_kind:         TileKind
    factor:            Optional[float]   # None = unscaled
    tile_dimensions:   Tuple[int, int]   # px per drawn tile, after scaling
    canvas_resolution: Tuple[int, int]
    origin:            Tuple[int, int]   # top-left of the OSD on the canvas

    def describe(self) -> str:
        s = f"{self.tile_kind.name} tiles"
        if self.factor is not None:
            s += f" scaled ×{self.factor:.3f} to {self.tile_dimensions[0]}x{self.tile_dimensions[1]} px"
        w, h = self.canvas_resolution
        return f"{s}, {w}x{h} canvas, OSD at {self.origin}"


def parse_resolution(text: str) -> Tuple[int, int]:
    """Parse ``WxH`` (e.g. ``1920x1080``)."""
    m = _RESOLUTION_RE.match(text)
    if not m:
        raise ValueError(f"invalid resolution {text!r}, expected WxH")
    w, h = int(m.group(1)), int(m.group(2))
    if w <= 0 or h <= 0:
        raise ValueError(f"invalid resolution {text!r}")
    return w, h


def resolve_target_resolution(target_resolution: Optional[Tuple[int, int]] = None,
                              target_video_file: Optional[str] = None
                              ) -> Optional[Tuple[int, int]]:
    """Explicit resolution wins; otherwise probe the video file, if any."""
    if target_resolution is not None:
        return target_resolution
    if target_video_file:
        from video_processor import video_resolution
        resolution = video_resolution(target_video_file)
        logger.info("target video %s is %dx%d", target_video_file, *resolution)
        return resolution
    return None


# ── Selection ─────────────────────────────────────────────────────────────────

def _candidates(osd_kind: OsdKind) -> List[TileKind]:
    native = osd_kind.tile_kind
    return [native] + [k for k in TileKind if k is not native]


def _fits(size: Tuple[int, int], available: Tuple[int, int]) -> bool:
    return size[0] <= available[0] and size[1] <= available[1]


def _placed(osd_kind: OsdKind, tile_kind: TileKind, factor: Optional[float],
            tile: Tuple[int, int], canvas: Tuple[int, int]) -> Scaling:
    cols, rows = osd_kind.dimensions_tiles
    w, h = cols * tile[0], rows * tile[1]
    return Scaling(tile_kind, factor, tile, canvas,
                   ((canvas[0] - w) // 2, (canvas[1] - h) // 2))


def select_scaling(osd_kind: OsdKind,
                   target_resolution: Optional[Tuple[int, int]] = None,
                   mode: ScalingMode = ScalingMode.AUTO,
                   min_margins: Tuple[int, int] = (0, 0),
                   min_tile_height: int = MIN_SCALED_TILE_HEIGHT) -> Scaling:
    if target_resolution is None:
        if mode is ScalingMode.YES:
            raise NoAcceptableScalingError("scaling requires a target resolution")
        kind = osd_kind.tile_kind
        return Scaling(kind, None, kind.dimensions, osd_kind.footprint(kind), (0, 0))

    target    = tuple(target_resolution)
    available = (target[0] - 2 * min_margins[0], target[1] - 2 * min_margins[1])
    if available[0] <= 0 or available[1] <= 0:
        raise NoAcceptableScalingError(
            f"margins {min_margins} leave no room in {target[0]}x{target[1]}")

    candidates = _candidates(osd_kind)

    if mode is ScalingMode.NO:
        kind = candidates[0]
        if not _fits(osd_kind.footprint(kind), available):
            fw, fh = osd_kind.footprint(kind)
            raise NoAcceptableScalingError(
                f"unscaled {osd_kind} OSD ({fw}x{fh}) does not fit in "
                f"{available[0]}x{available[1]}")
        return _placed(osd_kind, kind, None, kind.dimensions, target)

    if mode is ScalingMode.AUTO:
        unscaled = [k for k in candidates if _fits(osd_kind.footprint(k), available)]
        if unscaled:
            # max() keeps the first of equal keys, i.e. the native kind
            kind = max(unscaled, key=lambda k: osd_kind.footprint(k)[0] * osd_kind.footprint(k)[1])
            return _placed(osd_kind, kind, None, kind.dimensions, target)

    scaled = []
    for kind in candidates:
        fw, fh = osd_kind.footprint(kind)
        factor = min(available[0] / fw, available[1] / fh)
        tw, th = kind.dimensions
        # epsilon keeps exact ratios such as 36 × 8/9 from flooring to 31
        tile   = (max(1, int(tw * factor + 1e-9)), max(1, int(th * factor + 1e-9)))
        if tile[1] >= min_tile_height:
            scaled.append((kind, factor, tile))
        else:
            logger.debug("%s tiles rejected: ×%.3f gives %dpx high glyphs", kind.name, factor, tile[1])

    if not scaled:
        raise NoAcceptableScalingError(
            f"no tile kind can draw the {osd_kind} OSD in {available[0]}x{available[1]} "
            f"with glyphs at least {min_tile_height}px high")

    kind, factor, tile = min(scaled, key=lambda c: abs(math.log(c[1])))
    return _placed(osd_kind, kind, factor, tile, target)
