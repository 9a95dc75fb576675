# SPDX-License-Identifier: MIT
# Copyright (c) 2024-2025 VueOSD — https://github.com/wkumik/Digital-FPV-OSD-Tool
"""
DJI FPV OSD Tool
Decode fpv.wtf msp-osd .osd recordings and render transparent OSD overlays.

Examples:
    dji-osd-tool dofi DJIG0007.osd
    dji-osd-tool gof --target-video-file DJIG0007.mp4 DJIG0007.osd frames/
    dji-osd-tool gov --hide-items gps-lat gps-lon -c vp9 DJIG0007.osd DJIG0007_osd.webm
    dji-osd-tool po --start 600 --end 1800 DJIG0007.osd
"""

from __future__ import annotations
import argparse
import logging
import sys
from typing import List, Optional, Tuple

from errors          import OsdToolError
from font_loader     import FontDir
from osd_parser      import OsdFile, OsdFileReader
from osd_renderer    import OverlayGenerator
from scaling         import ScalingMode, parse_resolution, resolve_target_resolution, select_scaling
from settings        import Settings, load_settings, resolve_font_dir
from tile_grid       import Region
from video_processor import OverlayVideoCodec

logger = logging.getLogger(__name__)

VERSION = "1.0"

_LOG_LEVELS = ["debug", "info", "warning", "error"]


def _setup_logging(log_level: str) -> None:
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s - %(message)s"))
    logging.basicConfig(level=numeric_level, handlers=[handler], force=True)


def _progress(pct: int, msg: str) -> None:
    logger.info("[%3d%%] %s", pct, msg)


# ── Argument types ────────────────────────────────────────────────────────────

def _resolution_arg(text: str) -> Tuple[int, int]:
    try:
        return parse_resolution(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def _margins_arg(text: str) -> Tuple[int, int]:
    try:
        h, v = text.lower().split("x")
        margins = int(h), int(v)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid margins {text!r}, expected HxV")
    if min(margins) < 0:
        raise argparse.ArgumentTypeError(f"margins must not be negative: {text!r}")
    return margins


def _positive_int_arg(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number {text!r}")
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1: {text!r}")
    return value


def _region_arg(text: str) -> Region:
    try:
        return Region.parse(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


# ── Commands ──────────────────────────────────────────────────────────────────

def format_osd_file_info(osd_file: OsdFile) -> List[str]:
    header = osd_file.header
    ow, oh = header.osd_dimensions
    tw, th = header.tile_dimensions
    xo, yo = header.offset
    lines = [
        f"Format version: {header.format_version}",
        f"OSD size: {ow}x{oh} tiles ({header.osd_kind})",
        f"OSD tiles dimension: {tw}x{th} px",
        f"OSD video offset: {xo}x{yo} px",
        f"OSD Font variant: {header.font_variant_id} ({header.font_variant})",
        f"Number of OSD frames: {osd_file.frame_count}",
    ]
    if osd_file.frames:
        lines.append(f"Highest video frame index: {osd_file.last_frame_index}")
        interval = osd_file.refresh_interval_frames
        if interval is None:
            lines.append("OSD update rate: n/a")
        else:
            every = round(interval)
            every_str = "every frame" if every <= 1 else f"every {every} frames"
            lines.append(f"OSD update rate: {osd_file.update_percent:.0f}% of the video frames "
                         f"({osd_file.refresh_rate_hz:.1f}Hz or approximately {every_str})")
    return lines


def display_osd_file_info_command(args, settings: Settings) -> int:
    osd_file = OsdFileReader.open(args.osd_file).osd_file()
    print()
    for line in format_osd_file_info(osd_file):
        print(line)
    return 0


def prepare_generator(args, settings: Settings) -> OverlayGenerator:
    reader  = OsdFileReader.open(args.osd_file)
    header  = reader.header
    target  = resolve_target_resolution(args.target_resolution, args.target_video_file)
    scaling = select_scaling(header.osd_kind, target, ScalingMode(args.scaling), args.min_margins)
    font_dir = FontDir(resolve_font_dir(args.font_dir, settings))
    return OverlayGenerator(
        reader.frames(), font_dir, scaling,
        font_variant = header.font_variant,
        font_ident   = args.font_ident,
        hide_regions = args.hide_regions or (),
        hide_items   = args.hide_items or (),
        workers      = args.workers,
    )


def generate_overlay_frames_command(args, settings: Settings) -> int:
    generator = prepare_generator(args, settings)
    generator.save_frames_to_dir(args.start, args.end, args.output_dir, args.frame_shift,
                                 progress_callback=_progress)
    return 0


def generate_overlay_video_command(args, settings: Settings) -> int:
    generator = prepare_generator(args, settings)
    generator.generate_overlay_video(OverlayVideoCodec(args.codec), args.start, args.end,
                                     args.video_file, args.frame_shift, args.overwrite,
                                     progress_callback=_progress, fps=settings.frame_rate)
    return 0


def preview_overlay_command(args, settings: Settings) -> int:
    from preview import run_preview
    generator = prepare_generator(args, settings)
    return run_preview(generator, generator.select_frames(args.start, args.end, args.frame_shift))


# ── Parser ────────────────────────────────────────────────────────────────────

def _add_overlay_args(p: argparse.ArgumentParser, settings: Settings) -> None:
    p.add_argument("osd_file", help="FPV.WTF .osd file")

    fonts = p.add_argument_group("fonts")
    fonts.add_argument("--font-dir",
                       help="font directory (default: $FONTS_DIR, settings.json, then ./fonts)")
    fonts.add_argument("--font-ident",
                       help="font identifier, e.g. 'bf' for font_bf.png; '' for the generic "
                            "font (default: from the recording's font variant)")

    sc = p.add_argument_group("scaling")
    target = sc.add_mutually_exclusive_group()
    target.add_argument("--target-resolution", type=_resolution_arg, metavar="WxH",
                        help="resolution of the video the overlay is made for")
    target.add_argument("--target-video-file",
                        help="read the target resolution from this video")
    sc.add_argument("--scaling", choices=[m.value for m in ScalingMode], default="auto",
                    help="auto: scale only when no tile kind fits unscaled (default)")
    sc.add_argument("--min-margins", type=_margins_arg, default=(0, 0), metavar="HxV",
                    help="minimum horizontal x vertical margins in px")

    hide = p.add_argument_group("hiding")
    hide.add_argument("--hide-regions", type=_region_arg, nargs="+", metavar="X,Y:WxH",
                      help="tile regions to erase from every frame")
    hide.add_argument("--hide-items", nargs="+", metavar="NAME",
                      help="OSD items to erase, e.g. gps-lat gps-lon altitude home-distance")

    rng = p.add_argument_group("frame range")
    rng.add_argument("--start", type=int, default=0, help="first video frame (default 0)")
    rng.add_argument("--end", type=int, help="last video frame (default: last OSD frame)")
    rng.add_argument("--frame-shift", type=int, default=0,
                     help="shift OSD frames by this many video frames")

    p.add_argument("--workers", type=_positive_int_arg, default=settings.workers,
                   help="render threads (default: CPU count)")


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dji-osd-tool",
        description="Render DJI FPV (fpv.wtf) OSD recordings as transparent overlays.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("-l", "--log-level", choices=_LOG_LEVELS,
                        default=settings.log_level if settings.log_level in _LOG_LEVELS else "info")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("display-osd-file-info", aliases=["dofi"],
                       help="display information about an OSD file")
    p.add_argument("osd_file")
    p.set_defaults(func=display_osd_file_info_command)

    p = sub.add_parser("generate-overlay-frames", aliases=["gof"],
                       help="write numbered OSD overlay PNG frames into a directory")
    _add_overlay_args(p, settings)
    p.add_argument("output_dir", help="directory in which the OSD frames will be written")
    p.set_defaults(func=generate_overlay_frames_command)

    p = sub.add_parser("generate-overlay-video", aliases=["gov"],
                       help="encode a transparent WebM OSD overlay video")
    _add_overlay_args(p, settings)
    p.add_argument("-c", "--codec", choices=[c.value for c in OverlayVideoCodec],
                   default=settings.codec if settings.codec in ("vp8", "vp9") else "vp8",
                   help="vp9 files are smaller but encode roughly twice as slow")
    p.add_argument("-y", "--overwrite", action="store_true",
                   help="overwrite output file if it exists")
    p.add_argument("video_file", help="path of the video file to generate")
    p.set_defaults(func=generate_overlay_video_command)

    p = sub.add_parser("preview-overlay", aliases=["po"],
                       help="step through rendered OSD frames in a window")
    _add_overlay_args(p, settings)
    p.set_defaults(func=preview_overlay_command)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    settings = load_settings()
    parser   = build_parser(settings)
    args     = parser.parse_args(argv)
    _setup_logging(args.log_level)

    if getattr(args, "start", 0) < 0:
        parser.error("--start must not be negative")
    if getattr(args, "end", None) is not None and args.end < args.start:
        parser.error("--end must not be before --start")

    try:
        return args.func(args, settings)
    except (OsdToolError, FileNotFoundError) as e:
        logger.error("%s", e)
        return 1
    except KeyboardInterrupt:
        logger.error("interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
