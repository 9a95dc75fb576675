"""Shared fixtures: synthetic .osd recordings, font sheets and a fake item layout."""

import struct
from typing import Dict, Iterable, Optional, Tuple

import numpy as np
import pytest
from PIL import Image

from osd_parser import HEADER_MAGIC
from tile_grid import Region, TILES_PER_FRAME, TileGrid, coordinates_to_index


# =============================================================================
# Builders
# =============================================================================

def make_tiles(cells: Dict[Tuple[int, int], int]) -> list:
    """Flat tile list with the given {(x, y): tile_index} cells set."""
    tiles = [0] * TILES_PER_FRAME
    for (x, y), code in cells.items():
        tiles[coordinates_to_index(x, y)] = code
    return tiles


def make_grid(cells: Dict[Tuple[int, int], int]) -> TileGrid:
    return TileGrid(make_tiles(cells))


def write_osd_file(path, frames: Iterable[Tuple[int, list]],
                   osd_dimensions=(60, 22), tile_dimensions=(24, 36),
                   offset=(0, 0), font_variant=1, version=1,
                   magic=HEADER_MAGIC, tile_count: Optional[int] = None):
    with open(path, "wb") as f:
        f.write(struct.pack("<7sH4B2HB", magic, version, *osd_dimensions,
                            *tile_dimensions, *offset, font_variant))
        for index, tiles in frames:
            tiles = list(tiles)
            count = len(tiles) if tile_count is None else tile_count
            f.write(struct.pack("<II", index, count))
            f.write(struct.pack(f"<{len(tiles)}H", *tiles))
    return path


def glyph_colour(code: int) -> Tuple[int, int, int, int]:
    """Colour every test glyph is filled with: (row, column, 200, 255)."""
    return code % 256, code // 256, 200, 255


def write_font_sheet(path, tile=(24, 36), n_cols=1):
    tw, th = tile
    arr = np.zeros((256 * th, n_cols * tw, 4), dtype=np.uint8)
    for col in range(n_cols):
        for row in range(256):
            arr[row * th:(row + 1) * th, col * tw:(col + 1) * tw] = glyph_colour(col * 256 + row)
    Image.fromarray(arr).save(path)
    return path


class FakeItem:
    def __init__(self, markers, width, height=1):
        self.marker_tile_indices = tuple(markers)
        self.width  = width
        self.height = height

    def region(self, coordinates):
        return Region(coordinates.x, coordinates.y, self.width, self.height)


class FakeLayout:
    def __init__(self, items):
        self.items = items

    def find_item(self, name):
        return self.items.get(name)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def fake_layout():
    return FakeLayout({
        "speed":    FakeItem([10, 11], width=3),
        "altitude": FakeItem([20], width=2, height=2),
    })


@pytest.fixture
def font_dir(tmp_path):
    """Font directory with generic and Betaflight sheets in both tile sizes."""
    d = tmp_path / "fonts"
    d.mkdir()
    write_font_sheet(d / "font_bf_hd.png", tile=(24, 36))
    write_font_sheet(d / "font_bf.png",    tile=(36, 54))
    write_font_sheet(d / "font_hd.png",    tile=(24, 36), n_cols=2)
    return d


@pytest.fixture
def osd_path(tmp_path):
    """FakeHD Betaflight recording with OSD frames at video frames 0, 5 and 12."""
    frames = [
        (0,  make_tiles({(0, 0): 65})),
        (5,  make_tiles({(0, 0): 66, (2, 3): 67})),
        (12, make_tiles({(59, 21): 68})),
    ]
    return write_osd_file(tmp_path / "DJIG0001.osd", frames)
