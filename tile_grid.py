# SPDX-License-Identifier: MIT
# Copyright (c) 2024-2025 VueOSD — https://github.com/wkumik/Digital-FPV-OSD-Tool
"""
tile_grid.py  –  Tile index grid of one OSD frame, plus region erasure.

GEOMETRY:
  Every frame payload in a DJI .osd recording is 60 × 22 = 1320 u16 tile
  indices, whatever the logical OSD layout (SD 30×16 and HD 50×18 only use
  the top-left part).  This is the FakeHD layout.

  Storage is column-major:
    linear index = y + x * GRID_HEIGHT      (x = column, y = row)

  tile_index == 0  → empty cell (nothing drawn)
  tile_index != 0  → glyph code in the font sheet

The grid is stored densely in a numpy uint16 array; enumerate() walks only the
non-zero cells, which is what both erasure and rendering want.
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Iterable, Iterator, List, NamedTuple, Optional, Protocol, Tuple

import numpy as np

from errors import UnknownOSDItemError

GRID_WIDTH      = 60
GRID_HEIGHT     = 22
TILES_PER_FRAME = GRID_WIDTH * GRID_HEIGHT   # 1320


class Coordinates(NamedTuple):
    x: int   # column
    y: int   # row


def coordinates_to_index(x: int, y: int) -> int:
    if not (0 <= x < GRID_WIDTH and 0 <= y < GRID_HEIGHT):
        raise IndexError(f"coordinates ({x}, {y}) outside {GRID_WIDTH}x{GRID_HEIGHT} grid")
    return y + x * GRID_HEIGHT


def index_to_coordinates(index: int) -> Coordinates:
    if not 0 <= index < TILES_PER_FRAME:
        raise IndexError(f"tile index position {index} outside grid of {TILES_PER_FRAME}")
    return Coordinates(index // GRID_HEIGHT, index % GRID_HEIGHT)


# ── Regions ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CoordinatesRange:
    """Inclusive rectangle of grid coordinates."""
    start: Coordinates
    end:   Coordinates

    def contains(self, coordinates: Tuple[int, int]) -> bool:
        x, y = coordinates
        return self.start.x <= x <= self.end.x and self.start.y <= y <= self.end.y

    __contains__ = contains


_REGION_RE = re.compile(r"^\s*(\d+)\s*,\s*(\d+)\s*:\s*(\d+)\s*[xX]\s*(\d+)\s*$")


@dataclass(frozen=True)
class Region:
    x:      int
    y:      int
    width:  int
    height: int

    def __post_init__(self):
        if self.x < 0 or self.y < 0:
            raise ValueError(f"region origin must not be negative: {self}")
        if self.width < 1 or self.height < 1:
            raise ValueError(f"region must be at least 1x1 tiles: {self}")

    def to_coordinates_range(self) -> CoordinatesRange:
        return CoordinatesRange(
            Coordinates(self.x, self.y),
            Coordinates(self.x + self.width - 1, self.y + self.height - 1))

    @classmethod
    def parse(cls, text: str) -> "Region":
        """Parse the CLI form ``X,Y:WxH`` (e.g. ``3,5:10x2``)."""
        m = _REGION_RE.match(text)
        if not m:
            raise ValueError(f"invalid region {text!r}, expected X,Y:WxH")
        return cls(*(int(g) for g in m.groups()))

    def __str__(self) -> str:
        return f"{self.x},{self.y}:{self.width}x{self.height}"


class ItemLocation(Protocol):
    marker_tile_indices: Tuple[int, ...]

    def region(self, coordinates: Coordinates) -> Region: ...


class ItemLayout(Protocol):
    def find_item(self, name: str) -> Optional[ItemLocation]: ...


# ── Grid ──────────────────────────────────────────────────────────────────────

class TileGrid:
    """
    Fixed 60×22 grid of u16 tile indices.

    grid[x, y]    → tile index at column x / row y (0 if empty)
    enumerate()   → lazy (Coordinates, tile_index) pairs for non-zero cells
    erase_*()     → zero cells in place; use copy() first to keep the original
    """

    __slots__ = ("_tiles",)

    def __init__(self, tiles: Iterable[int]):
        arr = np.array(tiles, dtype=np.uint16)
        if arr.ndim != 1 or arr.size != TILES_PER_FRAME:
            raise ValueError(
                f"tile grid must hold exactly {TILES_PER_FRAME} tile indices, got {arr.size}")
        self._tiles = arr

    @classmethod
    def empty(cls) -> "TileGrid":
        return cls(np.zeros(TILES_PER_FRAME, dtype=np.uint16))

    @classmethod
    def from_bytes(cls, data: bytes) -> "TileGrid":
        """Build from little-endian u16 payload bytes (as stored in .osd files)."""
        return cls(np.frombuffer(data, dtype="<u2"))

    @property
    def tiles(self) -> np.ndarray:
        """Read-only view of the flat column-major buffer."""
        view = self._tiles.view()
        view.flags.writeable = False
        return view

    def __len__(self) -> int:
        return TILES_PER_FRAME

    def __getitem__(self, xy: Tuple[int, int]) -> int:
        x, y = xy
        return int(self._tiles[coordinates_to_index(x, y)])

    def __eq__(self, other) -> bool:
        if not isinstance(other, TileGrid):
            return NotImplemented
        return bool(np.array_equal(self._tiles, other._tiles))

    __hash__ = None

    def __repr__(self) -> str:
        return f"TileGrid(non_empty={self.non_empty_count()})"

    def copy(self) -> "TileGrid":
        return TileGrid(self._tiles)

    def non_empty_count(self) -> int:
        return int(np.count_nonzero(self._tiles))

    def enumerate(self) -> Iterator[Tuple[Coordinates, int]]:
        tiles = self._tiles
        for i in np.flatnonzero(tiles):
            yield index_to_coordinates(int(i)), int(tiles[i])

    # ── Erasure ───────────────────────────────────────────────────────────────

    def _columns(self) -> np.ndarray:
        # [x, y] view onto the same buffer
        return self._tiles.reshape(GRID_WIDTH, GRID_HEIGHT)

    def erase_region(self, region: Region) -> None:
        r = region.to_coordinates_range()
        # slicing clips regions that run past the right / bottom edge
        self._columns()[r.start.x:r.end.x + 1, r.start.y:r.end.y + 1] = 0

    def erase_regions(self, regions: Iterable[Region]) -> None:
        for region in regions:
            self.erase_region(region)

    def erase_item(self, layout: ItemLayout, item_name: str) -> List[Region]:
        """
        Erase every instance of a named OSD item.

        Instances are found by their marker tiles; the layout maps each
        marker position to the full region of that instance.  Returns the
        regions that were erased.
        """
        item = layout.find_item(item_name)
        if item is None:
            raise UnknownOSDItemError(item_name)
        markers = set(item.marker_tile_indices)
        regions = [item.region(coordinates)
                   for coordinates, tile_index in self.enumerate()
                   if tile_index in markers]
        self.erase_regions(regions)
        return regions

    def erase_items(self, layout: ItemLayout, item_names: Iterable[str]) -> None:
        for item_name in item_names:
            self.erase_item(layout, item_name)
