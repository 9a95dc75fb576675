# SPDX-License-Identifier: MIT
# Copyright (c) 2024-2025 VueOSD — https://github.com/wkumik/Digital-FPV-OSD-Tool
"""
errors.py  –  Exception types raised by the OSD decode / render pipeline.

Everything derives from OsdToolError so the CLI can log and exit on a single
except clause.  Nothing here is retried internally: a corrupt recording or a
missing glyph will not fix itself.
"""

from __future__ import annotations


class OsdToolError(Exception):
    """Base class for all errors surfaced by the tool."""


class RecordingOpenError(OsdToolError):
    """The .osd file could not be read or its header is not an MSPOSD header."""


class RecordingLoadError(OsdToolError):
    """Frame data is truncated or does not have the fixed tile count."""


class UnknownOSDItemError(OsdToolError):

    def __init__(self, item_name: str):
        super().__init__(f"unknown OSD item: {item_name}")
        self.item_name = item_name


class DrawOverlayError(OsdToolError):
    """A tile index has no glyph in the loaded font."""


class SaveFramesToDirError(OsdToolError):
    pass


class NoAcceptableScalingError(OsdToolError):
    """No tile kind / scale factor fits inside the target resolution."""


class OutputExistsError(OsdToolError):

    def __init__(self, path):
        super().__init__(f"output file exists (use overwrite to replace it): {path}")
        self.path = path


class FontLoadError(OsdToolError):
    pass


class VideoProbeError(OsdToolError):
    pass


class EncodeError(OsdToolError):
    """FFmpeg exited with an error while encoding the overlay video."""
