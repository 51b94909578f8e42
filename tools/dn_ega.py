"""
Planar EGA/VGA tile decoding for both Duke Nukem generations.

Current capabilities:
- Decode 8x8 generation-2 tiles in the masked, solid-global, CZONE
  interleaved and solid-local layouts, plus 320x200 full-screen planes.
- Decode generation-1 16x16 (and 8x8 font) tiles with 4- or 5-byte chunks.
- Convert the 48-byte fade palettes and 768-byte VGA palettes to 8-bit RGB.
- Split CZONE tilesets and compose tile lists into sheets.

Every decoder returns ``None`` instead of reading past the supplied slice.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image

from dn_common import TruncatedInput, UnsupportedVariant

logger = logging.getLogger(__name__)

Rgb = Tuple[int, int, int]
Palette = Tuple[Rgb, ...]

TILE_SIZE = 8
PLANE_SIZE = 8000
SCREEN_WIDTH = 320
SCREEN_HEIGHT = 200
SCREEN_BYTES = 32000
SCREEN_BYTES_WITH_PALETTE = 32048
MAX_ATLAS_TILES = 20

CZONE_ATTR_SIZE = 3600
CZONE_SOLID_COUNT = 1000
CZONE_MASKED_COUNT = 160
CZONE_SOLID_SIZE = CZONE_SOLID_COUNT * 32
CZONE_MASKED_SIZE = CZONE_MASKED_COUNT * 40
CZONE_MIN_SIZE = CZONE_ATTR_SIZE + CZONE_SOLID_SIZE + CZONE_MASKED_SIZE

GEN1_HEADER_SIZE = 3

DEBUG_PLACEHOLDER = (255, 0, 255, 255)

EGA_PALETTE: Palette = (
    (0, 0, 0),
    (0, 0, 170),
    (0, 170, 0),
    (0, 170, 170),
    (170, 0, 0),
    (170, 0, 170),
    (170, 85, 0),
    (170, 170, 170),
    (85, 85, 85),
    (85, 85, 255),
    (85, 255, 85),
    (85, 255, 255),
    (255, 85, 85),
    (255, 85, 255),
    (255, 255, 85),
    (255, 255, 255),
)

# Generation-2 default until a .PAL file is loaded.
GREY_PALETTE: Palette = tuple((i * 16, i * 16, i * 16) for i in range(16))


class TileLayoutMode(enum.Enum):
    MASKED = "masked"
    SOLID_GLOBAL = "solid_global"
    SOLID_CZONE_INTERLEAVED = "solid_czone"
    SOLID_LOCAL = "solid_local"
    FULL_SCREEN_PLANAR = "full_screen"


@dataclasses.dataclass
class DecodedTile:
    rgba: np.ndarray

    @property
    def width(self) -> int:
        return int(self.rgba.shape[1])

    @property
    def height(self) -> int:
        return int(self.rgba.shape[0])

    def opaque(self) -> "DecodedTile":
        out = self.rgba.copy()
        out[:, :, 3] = 255
        return DecodedTile(out)

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.rgba)


# --- palettes ---------------------------------------------------------------


def fade_to_rgb(v: int) -> int:
    # 0..68 fade scale -> 6-bit VGA -> 8-bit.
    return min(255, ((v * 15) // 16) * 256 // 63)


def vga_to_rgb(v: int) -> int:
    return ((v & 0x3F) * 255) // 63


def load_fade_palette(data: bytes) -> Palette:
    if len(data) < 48:
        raise TruncatedInput(f"Fade palette needs 48 bytes, got {len(data)}")
    return tuple(
        (fade_to_rgb(data[i * 3]), fade_to_rgb(data[i * 3 + 1]), fade_to_rgb(data[i * 3 + 2]))
        for i in range(16)
    )


def load_vga_palette(data: bytes) -> Palette:
    if len(data) < 768:
        raise TruncatedInput(f"VGA palette needs 768 bytes, got {len(data)}")
    return tuple(
        (vga_to_rgb(data[i * 3]), vga_to_rgb(data[i * 3 + 1]), vga_to_rgb(data[i * 3 + 2]))
        for i in range(256)
    )


def load_palette(data: bytes) -> Palette:
    """Pick the palette encoding from the file size (48, 768 or 64768 bytes)."""
    if len(data) == 48:
        return load_fade_palette(data)
    if len(data) in (768, 64768):
        return load_vga_palette(data[:768])
    raise UnsupportedVariant(f"Unrecognized palette size {len(data)}")


def _screen_palette(data: bytes) -> Palette:
    # Trailing palette of 32048-byte screens uses the plain 6-bit scale.
    return tuple(
        (
            min(255, data[i * 3] * 255 // 63),
            min(255, data[i * 3 + 1] * 255 // 63),
            min(255, data[i * 3 + 2] * 255 // 63),
        )
        for i in range(16)
    )


def _palette_array(palette: Sequence[Rgb]) -> np.ndarray:
    pal = np.zeros((max(16, len(palette)), 3), dtype=np.uint8)
    if len(palette):
        pal[: len(palette)] = np.asarray(palette, dtype=np.uint8)
    return pal


# --- plane assembly ---------------------------------------------------------


def _planes_to_indices(blue: np.ndarray, green: np.ndarray, red: np.ndarray, inten: np.ndarray) -> np.ndarray:
    # Each plane is (rows, bytes_per_row); unpackbits yields MSB-first pixels.
    b = np.unpackbits(blue, axis=1)
    g = np.unpackbits(green, axis=1)
    r = np.unpackbits(red, axis=1)
    i = np.unpackbits(inten, axis=1)
    return (i << 3) | (r << 2) | (g << 1) | b


def indices_to_rgba(indices: np.ndarray, palette: Sequence[Rgb], transparent: Optional[np.ndarray] = None) -> np.ndarray:
    pal = _palette_array(palette)
    h, w = indices.shape
    out = np.empty((h, w, 4), dtype=np.uint8)
    out[:, :, :3] = pal[indices]
    out[:, :, 3] = 255
    if transparent is not None:
        out[transparent] = 0
    return out


def _view(buffer: bytes, start: int, size: int) -> np.ndarray:
    return np.frombuffer(buffer, dtype=np.uint8, count=size, offset=start)


def _decode_masked(buffer: bytes, tile_index: int, palette: Sequence[Rgb]) -> Optional[DecodedTile]:
    off = tile_index * 40
    if off + 40 > len(buffer):
        return None
    rows = _view(buffer, off, 40).reshape(8, 5)
    mask = np.unpackbits(rows[:, 0:1], axis=1).astype(bool)  # 1 = transparent
    idx = _planes_to_indices(rows[:, 1:2], rows[:, 2:3], rows[:, 3:4], rows[:, 4:5])
    return DecodedTile(indices_to_rgba(idx, palette, transparent=mask))


def _decode_solid_global(buffer: bytes, tile_index: int, palette: Sequence[Rgb]) -> Optional[DecodedTile]:
    # Past 1000 tiles the stride would run into the next plane.
    if tile_index >= PLANE_SIZE // 8:
        return None
    base = tile_index * 8
    if (PLANE_SIZE * 3) + base + 8 > len(buffer):
        return None
    planes = [_view(buffer, p * PLANE_SIZE + base, 8).reshape(8, 1) for p in range(4)]
    idx = _planes_to_indices(*planes)
    return DecodedTile(indices_to_rgba(idx, palette))


def _decode_scanline_planar(buffer: bytes, tile_index: int, palette: Sequence[Rgb]) -> Optional[DecodedTile]:
    # 4 bytes per scanline, B,G,R,I.
    off = tile_index * 32
    if off + 32 > len(buffer):
        return None
    rows = _view(buffer, off, 32).reshape(8, 4)
    idx = _planes_to_indices(rows[:, 0:1], rows[:, 1:2], rows[:, 2:3], rows[:, 3:4])
    return DecodedTile(indices_to_rgba(idx, palette))


def _decode_solid_czone(buffer: bytes, tile_index: int, palette: Sequence[Rgb]) -> Optional[DecodedTile]:
    return _decode_scanline_planar(buffer, tile_index, palette)


def _decode_solid_local(buffer: bytes, tile_index: int, palette: Sequence[Rgb]) -> Optional[DecodedTile]:
    return _decode_scanline_planar(buffer, tile_index, palette)


def _decode_full_screen(buffer: bytes, tile_index: int, palette: Sequence[Rgb]) -> Optional[DecodedTile]:
    off = tile_index * SCREEN_BYTES
    if off + SCREEN_BYTES > len(buffer):
        return None
    planes = [_view(buffer, off + p * PLANE_SIZE, PLANE_SIZE).reshape(SCREEN_HEIGHT, 40) for p in range(4)]
    idx = _planes_to_indices(*planes)
    return DecodedTile(indices_to_rgba(idx, palette))


_DECODERS = {
    TileLayoutMode.MASKED: _decode_masked,
    TileLayoutMode.SOLID_GLOBAL: _decode_solid_global,
    TileLayoutMode.SOLID_CZONE_INTERLEAVED: _decode_solid_czone,
    TileLayoutMode.SOLID_LOCAL: _decode_solid_local,
    TileLayoutMode.FULL_SCREEN_PLANAR: _decode_full_screen,
}
assert set(_DECODERS) == set(TileLayoutMode)

# Bytes consumed per tile index step (SOLID_GLOBAL strides 8 bytes inside 4 planes).
TILE_SPAN: Dict[TileLayoutMode, int] = {
    TileLayoutMode.MASKED: 40,
    TileLayoutMode.SOLID_GLOBAL: 8,
    TileLayoutMode.SOLID_CZONE_INTERLEAVED: 32,
    TileLayoutMode.SOLID_LOCAL: 32,
    TileLayoutMode.FULL_SCREEN_PLANAR: SCREEN_BYTES,
}


def tile_span(mode: TileLayoutMode) -> int:
    return TILE_SPAN[mode]


def required_size(mode: TileLayoutMode, tile_index: int = 0) -> int:
    """Smallest buffer length that can hold ``tile_index`` under ``mode``."""
    if mode is TileLayoutMode.SOLID_GLOBAL:
        return PLANE_SIZE * 3 + tile_index * 8 + 8
    return (tile_index + 1) * TILE_SPAN[mode]


def decode_tile(
    buffer: bytes,
    tile_index: int,
    mode: TileLayoutMode,
    palette: Sequence[Rgb] = GREY_PALETTE,
) -> Optional[DecodedTile]:
    if not isinstance(mode, TileLayoutMode):
        raise UnsupportedVariant(f"Unknown tile layout mode: {mode!r}")
    if tile_index < 0:
        return None
    return _DECODERS[mode](buffer, tile_index, palette)


def decode_tiles(
    buffer: bytes,
    mode: TileLayoutMode,
    count: Optional[int] = None,
    palette: Sequence[Rgb] = GREY_PALETTE,
) -> List[Optional[DecodedTile]]:
    data = bytes(buffer)
    if count is None:
        if mode is TileLayoutMode.SOLID_GLOBAL:
            count = max(0, min(PLANE_SIZE, len(data) - PLANE_SIZE * 3) // 8)
        else:
            count = len(data) // tile_span(mode)
    return [_DECODERS[mode](data, i, palette) for i in range(count)]


def frame_dims_ok(width_tiles: int, height_tiles: int) -> bool:
    """Reject atlas frame sizes that would request pathological rasters."""
    return 0 < width_tiles <= MAX_ATLAS_TILES and 0 < height_tiles <= MAX_ATLAS_TILES


def decode_fullscreen(data: bytes, palette: Optional[Sequence[Rgb]] = None) -> Optional[DecodedTile]:
    """Decode a 320x200 screen; a 32048-byte file carries its own palette."""
    if len(data) < SCREEN_BYTES:
        return None
    if len(data) == SCREEN_BYTES_WITH_PALETTE:
        palette = _screen_palette(data[SCREEN_BYTES:SCREEN_BYTES_WITH_PALETTE])
    elif palette is None:
        palette = EGA_PALETTE
    return _decode_full_screen(bytes(data), 0, palette)


# --- generation 1 -----------------------------------------------------------


def decode_ega_tile(
    data: bytes,
    width: int = 16,
    height: int = 16,
    has_mask: bool = True,
    palette: Sequence[Rgb] = EGA_PALETTE,
) -> Optional[DecodedTile]:
    """
    Decode one generation-1 tile. Each scanline holds width/8 chunks of
    5 bytes (mask, B, G, R, I; mask bit set = opaque) or 4 bytes without a mask.
    """
    if width <= 0 or height <= 0 or width % 8:
        return None
    chunks = width // 8
    per_chunk = 5 if has_mask else 4
    need = height * chunks * per_chunk
    if len(data) < need:
        return None
    raw = np.frombuffer(bytes(data), dtype=np.uint8, count=need).reshape(height, chunks, per_chunk)
    planes = raw[:, :, 1:] if has_mask else raw
    idx = _planes_to_indices(planes[:, :, 0], planes[:, :, 1], planes[:, :, 2], planes[:, :, 3])
    transparent = None
    if has_mask:
        transparent = np.unpackbits(raw[:, :, 0], axis=1) == 0
    return DecodedTile(indices_to_rgba(idx, palette, transparent=transparent))


def gen1_tile_geometry(name: str) -> Tuple[int, int]:
    if name.upper().startswith("FONT"):
        return 8, 8
    return 16, 16


def load_gen1_tileset(name: str, data: bytes, palette: Sequence[Rgb] = EGA_PALETTE) -> List[DecodedTile]:
    width, height = gen1_tile_geometry(name)
    tile_size = (width * height // 8) * 5
    header = GEN1_HEADER_SIZE if len(data) >= GEN1_HEADER_SIZE else 0
    count = (len(data) - header) // tile_size
    force_opaque = name.upper().startswith(("SOLID", "BACK"))
    tiles: List[DecodedTile] = []
    for i in range(count):
        off = header + i * tile_size
        tile = decode_ega_tile(data[off : off + tile_size], width, height, True, palette)
        if tile is None:
            break
        tiles.append(tile.opaque() if force_opaque else tile)
    logger.debug("%s: %d tiles (%dx%d)", name, len(tiles), width, height)
    return tiles


# --- CZONE ------------------------------------------------------------------


@dataclasses.dataclass
class CZoneTileset:
    attributes: bytes
    solid: List[Optional[DecodedTile]]
    masked: List[Optional[DecodedTile]]


def load_czone(
    data: bytes,
    palette: Sequence[Rgb] = GREY_PALETTE,
    solid_mode: TileLayoutMode = TileLayoutMode.SOLID_LOCAL,
) -> CZoneTileset:
    if len(data) < CZONE_MIN_SIZE:
        raise TruncatedInput(f"CZONE needs {CZONE_MIN_SIZE} bytes, got {len(data)}")
    if solid_mode not in (TileLayoutMode.SOLID_LOCAL, TileLayoutMode.SOLID_CZONE_INTERLEAVED):
        raise UnsupportedVariant(f"CZONE solid tiles cannot use {solid_mode.name}")
    data = bytes(data)
    solid_data = data[CZONE_ATTR_SIZE : CZONE_ATTR_SIZE + CZONE_SOLID_SIZE]
    masked_start = CZONE_ATTR_SIZE + CZONE_SOLID_SIZE
    masked_data = data[masked_start : masked_start + CZONE_MASKED_SIZE]
    return CZoneTileset(
        attributes=data[:CZONE_ATTR_SIZE],
        solid=decode_tiles(solid_data, solid_mode, CZONE_SOLID_COUNT, palette),
        masked=decode_tiles(masked_data, TileLayoutMode.MASKED, CZONE_MASKED_COUNT, palette),
    )


# --- composition ------------------------------------------------------------


def blit(dst: np.ndarray, src: np.ndarray, x: int, y: int) -> None:
    """Draw ``src`` over ``dst`` at (x, y); transparent source pixels are skipped."""
    dh, dw = dst.shape[:2]
    sh, sw = src.shape[:2]
    x0, y0 = max(0, x), max(0, y)
    x1, y1 = min(dw, x + sw), min(dh, y + sh)
    if x0 >= x1 or y0 >= y1:
        return
    part = src[y0 - y : y1 - y, x0 - x : x1 - x]
    region = dst[y0:y1, x0:x1]
    opaque = part[:, :, 3] > 0
    region[opaque] = part[opaque]


def build_sheet(
    tiles: Sequence[Optional[DecodedTile]],
    columns: int = 16,
    tile_w: int = TILE_SIZE,
    tile_h: int = TILE_SIZE,
    placeholder: Optional[Tuple[int, int, int, int]] = None,
) -> np.ndarray:
    columns = max(1, columns)
    rows = max(1, (len(tiles) + columns - 1) // columns)
    sheet = np.zeros((rows * tile_h, columns * tile_w, 4), dtype=np.uint8)
    for i, tile in enumerate(tiles):
        x = (i % columns) * tile_w
        y = (i // columns) * tile_h
        if tile is None:
            if placeholder is not None:
                sheet[y : y + tile_h, x : x + tile_w] = placeholder
            continue
        blit(sheet, tile.rgba, x, y)
    return sheet


def build_czone_sheet(czone: CZoneTileset, columns: int = 40) -> np.ndarray:
    # Solid block, one blank row, then the masked block.
    solid = build_sheet(czone.solid, columns)
    masked = build_sheet(czone.masked, columns)
    gap = np.zeros((TILE_SIZE, solid.shape[1], 4), dtype=np.uint8)
    return np.concatenate([solid, gap, masked], axis=0)


def save_png(rgba: np.ndarray, path) -> None:
    Image.fromarray(rgba).save(path)
