# SPDX-License-Identifier: MIT
# Copyright (c) 2024-2025 VueOSD — https://github.com/wkumik/Digital-FPV-OSD-Tool
"""
osd_items.py  –  Font variants and OSD item location data.

The recording header names the flight controller firmware that drew the OSD
(the msp-osd "font variant").  Each firmware uses its own symbol glyphs, so
"where is the altitude readout" is answered per variant:

  marker tile  → the symbol glyph printed in front of the value
  width/height → how many tiles the whole readout occupies

Marker codes (ArduPilot / INAV) match the ones used by osd-dump-tools for
hiding GPS data; Betaflight codes come from its symbols.h.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from tile_grid import Coordinates, Region


class FontVariant(Enum):
    GENERIC    = (0,  "Generic",    "")
    BETAFLIGHT = (1,  "Betaflight", "bf")
    INAV       = (2,  "INAV",       "inav")
    ARDUPILOT  = (3,  "ArduPilot",  "ardu")
    KISS_ULTRA = (4,  "KISS Ultra", "ultra")
    UNKNOWN    = (-1, "Unknown",    "")

    def __init__(self, variant_id: int, display_name: str, font_ident: str):
        self.variant_id   = variant_id
        self.display_name = display_name
        self.font_ident   = font_ident

    @classmethod
    def from_id(cls, variant_id: int) -> "FontVariant":
        for v in cls:
            if v.variant_id == variant_id:
                return v
        return cls.UNKNOWN

    def __str__(self) -> str:
        return self.display_name


@dataclass(frozen=True)
class ItemLocationData:
    name:                str
    marker_tile_indices: Tuple[int, ...]
    width:               int
    height:              int = 1
    marker_offset:       int = 0   # columns between the region start and the marker

    def region(self, coordinates: Coordinates) -> Region:
        x, y = coordinates
        return Region(max(0, x - self.marker_offset), y, self.width, self.height)


class OsdItemLayout:
    """Named OSD items of one font variant."""

    def __init__(self, items: List[ItemLocationData] = ()):
        self._items: Dict[str, ItemLocationData] = {i.name: i for i in items}

    def find_item(self, name: str) -> Optional[ItemLocationData]:
        return self._items.get(name)

    @property
    def item_names(self) -> List[str]:
        return sorted(self._items)

    def __len__(self) -> int:
        return len(self._items)


# ── Built-in layouts ──────────────────────────────────────────────────────────

_BETAFLIGHT = [
    ItemLocationData("gps-lat",       (0x89,),  12),
    ItemLocationData("gps-lon",       (0x98,),  12),
    ItemLocationData("altitude",      (0x7F,),   7),
    ItemLocationData("home-distance", (0x11,),   7),
]

_INAV = [
    ItemLocationData("gps-lat",       (3,),     10),
    ItemLocationData("gps-lon",       (4,),     10),
    # SYM_ALT_M / SYM_ALT_FT follow the digits
    ItemLocationData("altitude",      (118, 120), 5, marker_offset=4),
    ItemLocationData("home-distance", (16,),     6),
]

_ARDUPILOT = [
    ItemLocationData("gps-lat",       (167,),   13),
    ItemLocationData("gps-lon",       (166,),   13),
    ItemLocationData("altitude",      (177,),    5),
    ItemLocationData("home-distance", (191,),    7),
]

_LAYOUTS: Dict[FontVariant, OsdItemLayout] = {
    FontVariant.BETAFLIGHT: OsdItemLayout(_BETAFLIGHT),
    FontVariant.INAV:       OsdItemLayout(_INAV),
    FontVariant.ARDUPILOT:  OsdItemLayout(_ARDUPILOT),
}

_EMPTY = OsdItemLayout()


def layout_for(font_variant: FontVariant) -> OsdItemLayout:
    return _LAYOUTS.get(font_variant, _EMPTY)
