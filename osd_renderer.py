# SPDX-License-Identifier: MIT
# Copyright (c) 2024-2025 VueOSD — https://github.com/wkumik/Digital-FPV-OSD-Tool
"""
osd_renderer.py  –  Render OSD frames into transparent RGBA overlay canvases.

Pipeline (one OverlayGenerator per command run):

  frames ──select_frames(start, end, shift)──▶ frames in range, shifted indices
         ──draw_frame_overlay()──────────────▶ H×W×4 uint8 canvas per frame
         ──sink──▶ numbered PNGs in a directory
                   or a WebM with alpha via FFmpeg

Frame shift moves OSD frames in video-frame space (compensates OSD / video
desync); start / end are compared against the shifted indices.

Composition runs on a thread pool.  Results are consumed strictly in frame
order and at most max_in_flight canvases are pending at any time, so memory
stays bounded on long recordings.

Glyphs are resized once per render job and cached as numpy arrays:
  FontDir.resolve() → PIL crop → resize (LANCZOS, only when scaled) → np.array
"""

from __future__ import annotations
import bisect
import logging
import os
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from contextlib import closing
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image

from errors          import DrawOverlayError, SaveFramesToDirError, UnknownOSDItemError
from font_loader     import FontDir
from osd_items       import FontVariant, layout_for
from osd_parser      import Frame, VIDEO_FRAME_RATE
from scaling         import Scaling
from tile_grid       import Region
from video_processor import OverlayVideoCodec, OverlayVideoEncoder

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]


def select_frames(frames: Iterable[Frame], start: int = 0, end: Optional[int] = None,
                  frame_shift: int = 0) -> List[Frame]:
    """Frames whose shifted index is within [start, end], re-indexed to the shifted index."""
    selected = []
    for frame in frames:
        index = frame.index + frame_shift
        if index < start or (end is not None and index > end):
            continue
        selected.append(frame.shifted(frame_shift))
    return selected


def video_frame_spans(frames: Sequence[Frame], start: int = 0, end: Optional[int] = None,
                      frame_shift: int = 0) -> List[Tuple[Optional[Frame], int]]:
    """
    Cover every video frame from start to end (inclusive) with OSD frames.

    Returns [(frame, repeat_count), ...] in order.  Each video frame shows the
    latest OSD frame at or before it, so gaps repeat the previous frame; video
    frames before the first OSD frame get None (blank overlay).
    """
    shifted = [f.shifted(frame_shift) for f in frames]
    indices = [f.index for f in shifted]
    if end is None:
        end = max(indices[-1], start) if indices else start
    if end < start:
        raise ValueError(f"end frame {end} is before start frame {start}")

    j       = bisect.bisect_right(indices, start)
    current = shifted[j - 1] if j > 0 else None
    spans: List[Tuple[Optional[Frame], int]] = []
    pos = start
    while pos <= end:
        nxt  = indices[j] if j < len(indices) else end + 1
        stop = min(max(nxt, pos), end + 1)
        if stop > pos:
            spans.append((current, stop - pos))
            pos = stop
        if j < len(indices) and indices[j] <= pos:
            current = shifted[j]
            j += 1
    return spans


class OverlayGenerator:
    """
    Built once per render job from decoded frames, a font directory and a
    scaling decision.  The font for the chosen tile kind is loaded here, so a
    missing font fails before any work is done.
    """

    def __init__(self, frames: Iterable[Frame], font_dir: FontDir, scaling: Scaling,
                 font_variant: FontVariant = FontVariant.GENERIC,
                 font_ident: Optional[str] = None,
                 hide_regions: Iterable[Region] = (),
                 hide_items: Iterable[str] = (),
                 workers: Optional[int] = None,
                 max_in_flight: Optional[int] = None):
        self.frames       = list(frames)
        self.scaling      = scaling
        self.font_variant = font_variant
        self.font_ident   = font_variant.font_ident if font_ident is None else font_ident
        self.font_dir     = font_dir
        self.font         = font_dir.load(scaling.tile_kind, self.font_ident)
        self.layout       = layout_for(font_variant)
        self.hide_regions = list(hide_regions)
        self.hide_items   = list(hide_items)
        for name in self.hide_items:
            if self.layout.find_item(name) is None:
                raise UnknownOSDItemError(name)
        self.workers       = workers
        self.max_in_flight = max_in_flight or 4 * (workers or os.cpu_count() or 1)

        # Glyph cache: code → rgba uint8 th×tw×4, already at drawn size
        self._glyphs: Dict[int, np.ndarray] = {}

        logger.info("rendering with %r, %s", self.font, scaling.describe())

    # ── Glyph lookup ──────────────────────────────────────────────────────────

    def _get_glyph(self, code: int) -> Optional[np.ndarray]:
        if code not in self._glyphs:
            g = self.font_dir.resolve(self.font_ident, self.scaling.tile_kind, code)
            if g is None:
                return None
            tw, th = self.scaling.tile_dimensions
            if g.size != (tw, th):
                g = g.resize((tw, th), Image.LANCZOS)
            self._glyphs[code] = np.array(g, dtype=np.uint8)
        return self._glyphs[code]

    # ── Frame selection ───────────────────────────────────────────────────────

    def select_frames(self, start: int = 0, end: Optional[int] = None,
                      frame_shift: int = 0) -> List[Frame]:
        return select_frames(self.frames, start, end, frame_shift)

    # ── Composition ───────────────────────────────────────────────────────────

    def blank_canvas(self) -> np.ndarray:
        w, h = self.scaling.canvas_resolution
        return np.zeros((h, w, 4), dtype=np.uint8)

    def draw_frame_overlay(self, frame: Frame) -> np.ndarray:
        """
        Composite one frame onto a fresh transparent canvas.

        Hidden regions / items are erased on a copy of the grid.  Raises
        DrawOverlayError if any tile has no glyph in the font; nothing is
        returned for that frame.
        """
        grid = frame.grid
        if self.hide_regions or self.hide_items:
            grid = frame.erased(self.hide_regions, self.layout, self.hide_items).grid

        canvas = self.blank_canvas()
        h, w   = canvas.shape[:2]
        tw, th = self.scaling.tile_dimensions
        x0, y0 = self.scaling.origin

        for (x, y), code in grid.enumerate():
            glyph = self._get_glyph(code)
            if glyph is None:
                raise DrawOverlayError(
                    f"frame {frame.index}: no glyph for tile index {code} at ({x}, {y}) "
                    f"in font {self.font.name!r} ({self.font.glyph_count} glyphs)")
            px = x0 + x * tw
            py = y0 + y * th
            if px >= w or py >= h or px + tw <= 0 or py + th <= 0:
                continue
            # Clamp to canvas bounds, glyph may be partially off-canvas
            py0 = max(py, 0);  py1 = min(py + th, h)
            px0 = max(px, 0);  px1 = min(px + tw, w)
            gy0 = py0 - py;    gx0 = px0 - px
            # tiles never overlap and the canvas starts transparent: plain copy == "over"
            canvas[py0:py1, px0:px1] = glyph[gy0:gy0 + (py1 - py0), gx0:gx0 + (px1 - px0)]
        return canvas

    def iter_overlays(self, frames: Iterable[Frame]) -> Iterator[Tuple[Frame, np.ndarray]]:
        """Yield (frame, canvas) in input order; composition runs in parallel."""
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            pending: deque = deque()
            try:
                for frame in frames:
                    pending.append((frame, pool.submit(self.draw_frame_overlay, frame)))
                    if len(pending) >= self.max_in_flight:
                        done, future = pending.popleft()
                        yield done, future.result()
                while pending:
                    done, future = pending.popleft()
                    yield done, future.result()
            finally:
                for _, future in pending:
                    future.cancel()

    # ── Sinks ─────────────────────────────────────────────────────────────────

    def save_frames_to_dir(self, start: int = 0, end: Optional[int] = None,
                           output_dir=".", frame_shift: int = 0,
                           progress_callback: Optional[ProgressCallback] = None) -> int:
        """
        Write one PNG per selected frame, named after its (shifted) video frame
        index: 0000000042.png.  Files written before a failure stay on disk.
        """
        frames     = self.select_frames(start, end, frame_shift)
        output_dir = Path(output_dir)
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SaveFramesToDirError(f"cannot create output directory {output_dir}: {e}") from e

        total        = len(frames)
        report_every = max(1, total // 50)
        if progress_callback:
            progress_callback(0, f"{total} OSD frames → {output_dir}")

        with closing(self.iter_overlays(frames)) as overlays:
            for n, (frame, canvas) in enumerate(overlays, 1):
                path = output_dir / f"{frame.index:010d}.png"
                try:
                    Image.fromarray(canvas).save(path)
                except OSError as e:
                    raise SaveFramesToDirError(f"failed to write {path}: {e}") from e
                if progress_callback and (n % report_every == 0 or n == total):
                    progress_callback(int(n * 100 / total), f"Frame {n}/{total}  ({path.name})")

        logger.info("wrote %d overlay frames to %s", total, output_dir)
        return total

    def generate_overlay_video(self, codec: OverlayVideoCodec = OverlayVideoCodec.VP8,
                               start: int = 0, end: Optional[int] = None,
                               output_file="osd.webm", frame_shift: int = 0,
                               overwrite: bool = False,
                               progress_callback: Optional[ProgressCallback] = None,
                               fps: float = VIDEO_FRAME_RATE,
                               encoder_factory=OverlayVideoEncoder) -> int:
        """
        Encode one overlay video frame per video frame index from start to end.

        Each distinct OSD frame is composited once and repeated for every
        video frame it stays on screen.  Returns the number of video frames.
        """
        spans   = video_frame_spans(self.frames, start, end, frame_shift)
        total   = sum(count for _, count in spans)
        encoder = encoder_factory(output_file, self.scaling.canvas_resolution,
                                  fps=fps, codec=codec, overwrite=overwrite)
        blank   = self.blank_canvas()
        to_draw = [frame for frame, _ in spans if frame is not None]

        report_every = max(1, total // 50)
        written      = 0
        if progress_callback:
            progress_callback(0, f"{total} video frames · {len(to_draw)} OSD frames · {codec.value}")

        with encoder, closing(self.iter_overlays(to_draw)) as overlays:
            for frame, count in spans:
                canvas = blank if frame is None else next(overlays)[1]
                for _ in range(count):
                    encoder.write_frame(canvas)
                    written += 1
                    if progress_callback and (written % report_every == 0 or written == total):
                        progress_callback(min(int(written * 100 / total), 99),
                                          f"Frame {written}/{total}")

        if progress_callback:
            progress_callback(100, f"✓ Done  [{output_file}]")
        logger.info("encoded %d overlay video frames to %s", written, output_file)
        return written
