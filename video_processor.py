# SPDX-License-Identifier: MIT
# Copyright (c) 2024-2025 VueOSD — https://github.com/wkumik/Digital-FPV-OSD-Tool
"""
video_processor.py  –  FFmpeg side of the overlay pipeline.

  ffprobe  → resolution of a target video (picks tile kind / scaling)
  ffmpeg   → transparent overlay video encoder

Encoder architecture:
──────────────────────────────────────────────────────────────────
Python renders the OSD overlay canvases → raw RGBA frames on FFmpeg stdin.
FFmpeg encodes them with libvpx into a WebM with an alpha channel, which
players can stack on top of the original DVR video (no burn-in needed).

  vp8  (libvpx)      faster, bigger files
  vp9  (libvpx-vp9)  roughly half the size, roughly twice as slow

FFmpeg stderr is drained on a daemon thread (prevents pipe deadlock, capped).
"""

import json
import logging
import os
import shutil
import subprocess
import sys
import threading
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np

from errors import EncodeError, OutputExistsError, VideoProbeError

logger = logging.getLogger(__name__)


# Suppress console window on Windows for ALL subprocess calls.
# Use STARTUPINFO (more reliable than creationflags alone).
def _hidden_popen(*args, **kwargs):
    if sys.platform == "win32":
        si = subprocess.STARTUPINFO()
        si.dwFlags |= subprocess.STARTF_USESHOWWINDOW
        si.wShowWindow = subprocess.SW_HIDE
        kwargs.setdefault("startupinfo", si)
        kwargs.setdefault("creationflags", 0x08000000)
    return subprocess.Popen(*args, **kwargs)

def _hidden_run(*args, **kwargs):
    if sys.platform == "win32":
        si = subprocess.STARTUPINFO()
        si.dwFlags |= subprocess.STARTF_USESHOWWINDOW
        si.wShowWindow = subprocess.SW_HIDE
        kwargs.setdefault("startupinfo", si)
        kwargs.setdefault("creationflags", 0x08000000)
    return subprocess.run(*args, **kwargs)


class OverlayVideoCodec(Enum):
    VP8 = "vp8"
    VP9 = "vp9"

    @property
    def encoder_args(self) -> List[str]:
        if self is OverlayVideoCodec.VP8:
            # alt-ref frames are not supported together with alpha in libvpx
            return ["-c:v", "libvpx", "-auto-alt-ref", "0", "-crf", "10", "-b:v", "4M"]
        return ["-c:v", "libvpx-vp9", "-crf", "30", "-b:v", "0", "-row-mt", "1"]


# ── Tool discovery / probing ─────────────────────────────────────────────────

def find_ffmpeg() -> Optional[str]:
    ffmpeg = shutil.which("ffmpeg")
    if ffmpeg:
        return ffmpeg
    script_dir = os.path.dirname(os.path.abspath(__file__))
    for name in ["ffmpeg.exe", "ffmpeg"]:
        candidate = os.path.join(script_dir, name)
        if os.path.isfile(candidate):
            return candidate
    return None


def find_ffprobe() -> Optional[str]:
    ffprobe = shutil.which("ffprobe")
    if ffprobe:
        return ffprobe
    ff = find_ffmpeg()
    if ff:
        candidate = ff.replace("ffmpeg", "ffprobe")
        if os.path.exists(candidate):
            return candidate
    return None


def get_video_info(video_path: str) -> dict:
    ffprobe = find_ffprobe()
    if not ffprobe:
        return {"error": "ffprobe not found"}
    cmd = [ffprobe, "-v", "quiet", "-print_format", "json",
           "-select_streams", "v:0", "-show_entries", "stream=width,height", str(video_path)]
    try:
        result = _hidden_run(cmd, capture_output=True, text=True, timeout=30)
        data   = json.loads(result.stdout)
        info   = {}
        for stream in data.get("streams", []):
            info["width"]  = stream.get("width", 0)
            info["height"] = stream.get("height", 0)
            break
        return info
    except (OSError, ValueError, subprocess.SubprocessError) as e:
        return {"error": str(e)}


def video_resolution(video_path: str) -> Tuple[int, int]:
    info = get_video_info(video_path)
    if "error" in info or not info.get("width") or not info.get("height"):
        raise VideoProbeError(
            f"cannot read resolution of {video_path}: {info.get('error', 'no video stream')}")
    return info["width"], info["height"]


_STDERR_CAP = 32 * 1024   # keep last 32 KB of ffmpeg stderr

def _drain(pipe, store: list):
    """Drain a pipe to a list[0] string, capped to avoid unbounded RAM use."""
    chunks = []
    total  = 0
    try:
        for chunk in iter(lambda: pipe.read(4096), b""):
            chunks.append(chunk)
            total += len(chunk)
            # Drop oldest chunks once we exceed the cap
            while total > _STDERR_CAP and chunks:
                dropped = chunks.pop(0)
                total  -= len(dropped)
    except (OSError, ValueError):
        pass   # pipe closed under us; whatever was read is kept
    store[0] = b"".join(chunks).decode("utf-8", errors="replace")


# ── Encoder ───────────────────────────────────────────────────────────────────

class OverlayVideoEncoder:
    """
    Context manager around an ffmpeg process encoding RGBA frames to WebM.

        with OverlayVideoEncoder("osd.webm", (1920, 1080)) as enc:
            enc.write_frame(canvas)          # H×W×4 uint8 array or raw bytes

    Leaving the block normally closes stdin and waits for ffmpeg; leaving it
    with an exception kills ffmpeg (the partial file is left behind).  If
    ffmpeg dies mid-run, the next write_frame() raises EncodeError at once.
    """

    def __init__(self, output_file, resolution: Tuple[int, int], fps: float = 60,
                 codec: OverlayVideoCodec = OverlayVideoCodec.VP8,
                 overwrite: bool = False, ffmpeg: Optional[str] = None):
        self.output_file = Path(output_file)
        self.width, self.height = resolution
        self.fps       = fps
        self.codec     = codec
        self.overwrite = overwrite
        self._ffmpeg   = ffmpeg
        self._proc     = None
        self._stderr   = [""]
        self._drainer: Optional[threading.Thread] = None
        self.frames_written = 0
        if self.output_file.exists() and not overwrite:
            raise OutputExistsError(self.output_file)

    def command(self, ffmpeg: str) -> List[str]:
        return ([ffmpeg, "-y" if self.overwrite else "-n", "-hide_banner"]
                + ["-f", "rawvideo", "-pix_fmt", "rgba",
                   "-s", f"{self.width}x{self.height}",
                   "-r", str(self.fps),
                   "-i", "pipe:0"]
                + self.codec.encoder_args
                + ["-pix_fmt", "yuva420p", "-an", str(self.output_file)])

    def start(self) -> None:
        ffmpeg = self._ffmpeg or find_ffmpeg()
        if not ffmpeg:
            raise FileNotFoundError("FFmpeg not found!\nGet from https://ffmpeg.org/download.html")
        cmd = self.command(ffmpeg)
        logger.debug("running %s", " ".join(cmd))
        self._proc = _hidden_popen(cmd, stdin=subprocess.PIPE, stdout=subprocess.DEVNULL,
                                   stderr=subprocess.PIPE, bufsize=0)
        self._drainer = threading.Thread(target=_drain, args=(self._proc.stderr, self._stderr),
                                         daemon=True)
        self._drainer.start()

    def write_frame(self, frame) -> None:
        if isinstance(frame, np.ndarray):
            if frame.shape != (self.height, self.width, 4):
                raise ValueError(f"frame shape {frame.shape} does not match "
                                 f"{self.width}x{self.height} RGBA")
            frame = np.ascontiguousarray(frame, dtype=np.uint8)
        data = memoryview(frame).cast("B")   # buffer protocol, no copy
        try:
            while data:
                data = data[self._proc.stdin.write(data):]
        except OSError as e:
            rc, err = self._reap()
            raise EncodeError(f"FFmpeg stopped accepting frames after {self.frames_written} "
                              f"(exit {rc}):\n{err[-2000:]}") from e
        self.frames_written += 1

    def _reap(self) -> Tuple[int, str]:
        """Close stdin, wait for ffmpeg and return (exit code, stderr tail)."""
        try:
            self._proc.stdin.close()
        except OSError:
            pass   # already broken
        self._proc.wait()
        if self._drainer is not None:
            self._drainer.join(timeout=5)
        rc, self._proc = self._proc.returncode, None
        return rc, self._stderr[0]

    def close(self) -> None:
        if self._proc is None:
            return
        rc, err = self._reap()
        if rc != 0:
            raise EncodeError(f"Encode failed (exit {rc}):\n{err[-2000:]}")

    def kill(self) -> None:
        if self._proc is None:
            return
        self._proc.kill()
        self._proc.wait()
        self._proc = None

    def __enter__(self) -> "OverlayVideoEncoder":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            self.close()
        else:
            self.kill()
        return False
