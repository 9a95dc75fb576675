"""
Overlay rendering tests

- frame selection with range and shift
- video frame spans (gap filling, blank lead-in)
- canvas composition: glyph placement, hiding, missing glyphs
- PNG directory sink and video sink (with a fake encoder)
"""

import sys
from functools import partial

import numpy as np
import pytest
from PIL import Image

from conftest import glyph_colour, make_tiles
from errors import (
    DrawOverlayError, EncodeError, FontLoadError, OutputExistsError, SaveFramesToDirError,
    UnknownOSDItemError,
)
from font_loader import FontDir
from osd_items import FontVariant, layout_for
from osd_parser import Frame, OsdFileReader, OsdKind
from osd_renderer import OverlayGenerator, select_frames, video_frame_spans
from scaling import select_scaling
from tile_grid import Region, TileGrid
from video_processor import OverlayVideoCodec, OverlayVideoEncoder


def _frames(*indices):
    return [Frame(i, TileGrid(make_tiles({(0, 0): 65 + n}))) for n, i in enumerate(indices)]


@pytest.fixture
def frames(osd_path):
    return OsdFileReader.open(osd_path).frames()


@pytest.fixture
def generator(frames, font_dir):
    return OverlayGenerator(frames, FontDir(font_dir), select_scaling(OsdKind.FAKE_HD),
                            font_variant=FontVariant.BETAFLIGHT, workers=2)


class FakeEncoder:
    """Stands in for OverlayVideoEncoder; records frames instead of piping to ffmpeg."""
    instances = []

    def __init__(self, output_file, resolution, fps=60, codec=None, overwrite=False):
        self.output_file = output_file
        self.resolution  = resolution
        self.fps, self.codec = fps, codec
        self.frames = []
        self.closed = False
        FakeEncoder.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.closed = exc_type is None
        return False

    def write_frame(self, frame):
        self.frames.append(frame.copy())


class TestSelection:
    def test_range_and_shift(self):
        selected = select_frames(_frames(0, 5, 12), start=5, end=14, frame_shift=2)
        assert [f.index for f in selected] == [7, 14]

    def test_open_end(self):
        assert [f.index for f in select_frames(_frames(0, 5, 12), start=1)] == [5, 12]

    def test_negative_shift_drops_frames_before_start(self):
        assert [f.index for f in select_frames(_frames(0, 5), frame_shift=-3)] == [2]


class TestSpans:
    def test_gaps_repeat_previous_frame(self):
        f = _frames(0, 5, 12)
        assert video_frame_spans(f) == [(f[0], 5), (f[1], 7), (f[2], 1)]

    def test_blank_before_first_frame(self):
        f = _frames(3)
        assert video_frame_spans(f, 0, 4) == [(None, 3), (f[0], 2)]

    def test_start_inside_a_span(self):
        f = _frames(0, 5, 12)
        assert video_frame_spans(f, 2, 6) == [(f[0], 3), (f[1], 2)]

    def test_shift(self):
        spans = video_frame_spans(_frames(0, 5), 0, 5, frame_shift=2)
        assert [(s[0].index if s[0] else None, s[1]) for s in spans] == [(None, 2), (2, 4)]
        assert sum(count for _, count in spans) == 6

    def test_total_covers_range(self):
        spans = video_frame_spans(_frames(0, 5, 12), 0, 20)
        assert sum(count for _, count in spans) == 21
        assert spans[-1][0].index == 12

    def test_no_frames(self):
        assert video_frame_spans([], 0, 3) == [(None, 4)]

    def test_end_before_start(self):
        with pytest.raises(ValueError):
            video_frame_spans(_frames(0), 5, 4)


class TestComposition:
    def test_canvas_geometry(self, generator):
        canvas = generator.draw_frame_overlay(Frame(0, TileGrid.empty()))
        assert canvas.shape == (792, 1440, 4)
        assert canvas.dtype == np.uint8
        assert not canvas.any()

    def test_glyph_placement(self, generator, frames):
        canvas = generator.draw_frame_overlay(frames[1])
        assert tuple(canvas[108, 48]) == glyph_colour(67)           # (2, 3) → 48, 108
        assert tuple(canvas[108 + 35, 48 + 23]) == glyph_colour(67)
        assert tuple(canvas[0, 0]) == glyph_colour(66)
        assert canvas[108 + 36, 48, 3] == 0
        assert canvas[50, 200, 3] == 0

    def test_bottom_right_tile(self, generator, frames):
        canvas = generator.draw_frame_overlay(frames[2])
        assert tuple(canvas[791, 1439]) == glyph_colour(68)

    def test_origin_offsets_glyphs(self, frames, font_dir):
        g = OverlayGenerator(frames, FontDir(font_dir), select_scaling(OsdKind.FAKE_HD, (1920, 1080)),
                             font_variant=FontVariant.BETAFLIGHT)
        canvas = g.draw_frame_overlay(frames[0])
        assert canvas.shape == (1080, 1920, 4)
        assert tuple(canvas[144, 240]) == glyph_colour(65)
        assert canvas[143, 239, 3] == 0

    def test_scaled_glyphs(self, frames, font_dir):
        g = OverlayGenerator(frames, FontDir(font_dir), select_scaling(OsdKind.FAKE_HD, (1280, 720)),
                             font_variant=FontVariant.BETAFLIGHT)
        x0, y0 = g.scaling.origin
        canvas = g.draw_frame_overlay(frames[1])
        assert tuple(canvas[y0 + 3 * 32 + 16, x0 + 2 * 21 + 10]) == glyph_colour(67)

    def test_missing_glyph(self, generator):
        frame = Frame(9, TileGrid(make_tiles({(1, 1): 300})))
        with pytest.raises(DrawOverlayError, match="300"):
            generator.draw_frame_overlay(frame)

    def test_hide_regions(self, frames, font_dir):
        g = OverlayGenerator(frames, FontDir(font_dir), select_scaling(OsdKind.FAKE_HD),
                             font_variant=FontVariant.BETAFLIGHT, hide_regions=[Region(2, 3, 1, 1)])
        canvas = g.draw_frame_overlay(frames[1])
        assert canvas[108, 48, 3] == 0
        assert tuple(canvas[0, 0]) == glyph_colour(66)
        assert frames[1].grid[2, 3] == 67

    def test_hide_items(self, font_dir):
        lat   = layout_for(FontVariant.BETAFLIGHT).find_item("gps-lat")
        cells = {(0, 5): lat.marker_tile_indices[0], (1, 5): 0x31, (20, 5): 0x32}
        frame = Frame(0, TileGrid(make_tiles(cells)))
        g = OverlayGenerator([frame], FontDir(font_dir), select_scaling(OsdKind.FAKE_HD),
                             font_variant=FontVariant.BETAFLIGHT, hide_items=["gps-lat"])
        canvas = g.draw_frame_overlay(frame)
        assert canvas[5 * 36, 0, 3] == 0
        assert canvas[5 * 36, 24, 3] == 0
        assert tuple(canvas[5 * 36, 20 * 24]) == glyph_colour(0x32)

    def test_unknown_hide_item_rejected_up_front(self, frames, font_dir):
        with pytest.raises(UnknownOSDItemError):
            OverlayGenerator(frames, FontDir(font_dir), select_scaling(OsdKind.FAKE_HD),
                             font_variant=FontVariant.BETAFLIGHT, hide_items=["warp-speed"])

    def test_missing_font_fails_at_construction(self, frames, font_dir):
        with pytest.raises(FontLoadError):
            OverlayGenerator(frames, FontDir(font_dir), select_scaling(OsdKind.FAKE_HD),
                             font_variant=FontVariant.INAV)

    def test_font_ident_override(self, frames, font_dir):
        g = OverlayGenerator(frames, FontDir(font_dir), select_scaling(OsdKind.FAKE_HD),
                             font_variant=FontVariant.BETAFLIGHT, font_ident="")
        assert g.font.name == "font_hd"

    def test_iter_overlays_keeps_order(self, font_dir):
        many = _frames(*range(0, 40, 2))
        g = OverlayGenerator(many, FontDir(font_dir), select_scaling(OsdKind.FAKE_HD),
                             font_variant=FontVariant.BETAFLIGHT, workers=4, max_in_flight=3)
        out = list(g.iter_overlays(many))
        assert [f.index for f, _ in out] == list(range(0, 40, 2))
        for n, (_, canvas) in enumerate(out):
            assert tuple(canvas[0, 0]) == glyph_colour(65 + n)


class TestFrameDir:
    def test_writes_numbered_pngs(self, generator, tmp_path):
        out = tmp_path / "frames"
        n = generator.save_frames_to_dir(0, None, out, frame_shift=3)
        assert n == 3
        assert sorted(p.name for p in out.iterdir()) == [
            "0000000003.png", "0000000008.png", "0000000015.png"]
        with Image.open(out / "0000000008.png") as img:
            assert img.mode == "RGBA"
            assert img.size == (1440, 792)
            assert img.getpixel((48, 108)) == glyph_colour(67)

    def test_range(self, generator, tmp_path):
        out = tmp_path / "out"
        assert generator.save_frames_to_dir(1, 11, out) == 1
        assert [p.name for p in out.iterdir()] == ["0000000005.png"]

    def test_progress_reported(self, generator, tmp_path):
        calls = []
        generator.save_frames_to_dir(output_dir=tmp_path, progress_callback=lambda p, m: calls.append(p))
        assert calls[0] == 0 and calls[-1] == 100

    def test_output_dir_is_a_file(self, generator, tmp_path):
        blocker = tmp_path / "taken"
        blocker.write_text("x")
        with pytest.raises(SaveFramesToDirError):
            generator.save_frames_to_dir(output_dir=blocker / "frames")

    def test_png_write_failure_keeps_earlier_files(self, generator, tmp_path):
        out = tmp_path / "frames"
        (out / "0000000005.png").mkdir(parents=True)
        with pytest.raises(SaveFramesToDirError, match="0000000005.png"):
            generator.save_frames_to_dir(output_dir=out)
        assert (out / "0000000000.png").is_file()
        assert not (out / "0000000012.png").exists()

    def test_draw_error_keeps_earlier_files(self, frames, font_dir, tmp_path):
        bad = frames + [Frame(20, TileGrid(make_tiles({(0, 0): 999})))]
        g = OverlayGenerator(bad, FontDir(font_dir), select_scaling(OsdKind.FAKE_HD),
                             font_variant=FontVariant.BETAFLIGHT, workers=1, max_in_flight=1)
        with pytest.raises(DrawOverlayError):
            g.save_frames_to_dir(output_dir=tmp_path)
        assert (tmp_path / "0000000012.png").exists()
        assert not (tmp_path / "0000000020.png").exists()


class TestVideo:
    def setup_method(self):
        FakeEncoder.instances.clear()

    def test_frames_repeated_across_gaps(self, generator, tmp_path):
        n = generator.generate_overlay_video(OverlayVideoCodec.VP9, 0, None, tmp_path / "o.webm",
                                             encoder_factory=FakeEncoder)
        enc = FakeEncoder.instances[0]
        assert n == 13 == len(enc.frames)
        assert enc.closed
        assert enc.resolution == (1440, 792)
        assert enc.codec is OverlayVideoCodec.VP9
        assert all(tuple(f[0, 0]) == glyph_colour(65) for f in enc.frames[:5])
        assert all(tuple(f[0, 0]) == glyph_colour(66) for f in enc.frames[5:12])
        assert tuple(enc.frames[12][791, 1439]) == glyph_colour(68)

    def test_blank_lead_in_with_shift(self, generator, tmp_path):
        generator.generate_overlay_video(start=0, end=4, output_file=tmp_path / "o.webm",
                                         frame_shift=2, encoder_factory=FakeEncoder)
        enc = FakeEncoder.instances[0]
        assert len(enc.frames) == 5
        assert not enc.frames[0].any() and not enc.frames[1].any()
        assert tuple(enc.frames[2][0, 0]) == glyph_colour(65)

    def test_existing_output_refused(self, generator, tmp_path):
        out = tmp_path / "o.webm"
        out.write_bytes(b"")
        with pytest.raises(OutputExistsError):
            generator.generate_overlay_video(output_file=out, encoder_factory=OverlayVideoEncoder)
        assert out.read_bytes() == b""

    @pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell script")
    def test_dead_encoder_stops_composition(self, font_dir, tmp_path):
        fake = tmp_path / "ffmpeg"
        fake.write_text("#!/bin/sh\nexit 1\n")
        fake.chmod(0o755)
        many = [Frame(i, TileGrid(make_tiles({(0, 0): 65}))) for i in range(200)]
        g = OverlayGenerator(many, FontDir(font_dir), select_scaling(OsdKind.FAKE_HD),
                             font_variant=FontVariant.BETAFLIGHT, workers=1, max_in_flight=2)
        drawn = []
        draw  = g.draw_frame_overlay

        def counting_draw(frame):
            drawn.append(frame.index)
            return draw(frame)

        g.draw_frame_overlay = counting_draw
        with pytest.raises(EncodeError):
            g.generate_overlay_video(output_file=tmp_path / "o.webm",
                                     encoder_factory=partial(OverlayVideoEncoder, ffmpeg=str(fake)))
        assert len(drawn) < 10
