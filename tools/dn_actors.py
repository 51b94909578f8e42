"""
Actor sprite assembly.

Generation 2 actors live in ACTORS.MNI as runs of 8x8 masked tiles; an
atlas (JSON/YAML list of records) gives each actor's frames and an optional
metaframe that stacks several frames into one preview image. Rasters are
memoized per (actor, frame) in a lock-guarded cache that is cleared
wholesale whenever graphics, atlas or palettes change.

Generation 1 sprites are built from the 16x16 tilesets: a single tile, a
grid of tiles, or a crate box with its contents drawn on top.
"""

from __future__ import annotations

import collections
import dataclasses
import enum
import logging
import pathlib
import threading
from typing import Any, Dict, Hashable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from PIL import Image

from dn_common import AssetError, load_records, to_int
from dn_ega import (
    GREY_PALETTE,
    TILE_SIZE,
    DecodedTile,
    Palette,
    TileLayoutMode,
    blit,
    decode_tile,
    frame_dims_ok,
)

logger = logging.getLogger(__name__)

MASKED_TILE_BYTES = 40
GEN1_TILE = 16


@dataclasses.dataclass(frozen=True)
class SpriteFrame:
    hotspot_x: int
    hotspot_y: int
    width_tiles: int
    height_tiles: int
    data_offset: int

    @property
    def byte_size(self) -> int:
        return self.width_tiles * self.height_tiles * MASKED_TILE_BYTES


@dataclasses.dataclass(frozen=True)
class MetaframeLayer:
    frame_index: int
    offset_x: int
    offset_y: int


@dataclasses.dataclass(frozen=True)
class Metaframe:
    source_actor: Optional[int]
    hotspot_x: int
    hotspot_y: int
    layers: Tuple[MetaframeLayer, ...]


@dataclasses.dataclass(frozen=True)
class SpriteAtlasEntry:
    actor_num: int
    name: str
    type: str
    palette: int
    frames: Tuple[SpriteFrame, ...]
    metaframe: Optional[Metaframe] = None


@dataclasses.dataclass
class CompositeRaster:
    rgba: np.ndarray
    hotspot_x: int = 0
    hotspot_y: int = 0

    @property
    def width(self) -> int:
        return int(self.rgba.shape[1])

    @property
    def height(self) -> int:
        return int(self.rgba.shape[0])

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.rgba)


# --- atlas ------------------------------------------------------------------


def _opt_int(rec: Mapping[str, Any], key: str, default: int = 0) -> int:
    v = rec.get(key)
    if v is None:
        return default
    return to_int(v)


def _frame_from_record(rec: Mapping[str, Any]) -> SpriteFrame:
    return SpriteFrame(
        hotspot_x=_opt_int(rec, "hotspotX"),
        hotspot_y=_opt_int(rec, "hotspotY"),
        width_tiles=_opt_int(rec, "widthTiles"),
        height_tiles=_opt_int(rec, "heightTiles"),
        data_offset=_opt_int(rec, "dataOffset"),
    )


def _metaframe_from_record(rec: Mapping[str, Any]) -> Metaframe:
    source = rec.get("sourceActorNum")
    layers = tuple(
        MetaframeLayer(
            frame_index=_opt_int(layer, "frameIndex"),
            offset_x=_opt_int(layer, "offsetX"),
            offset_y=_opt_int(layer, "offsetY"),
        )
        for layer in rec.get("layers") or []
    )
    return Metaframe(
        source_actor=None if source is None else to_int(source),
        hotspot_x=_opt_int(rec, "hotspotX"),
        hotspot_y=_opt_int(rec, "hotspotY"),
        layers=layers,
    )


class ActorAtlas:
    """Actor records indexed by actor number."""

    def __init__(self, entries: Sequence[SpriteAtlasEntry]):
        self.entries: List[SpriteAtlasEntry] = list(entries)
        self._by_num: Dict[int, SpriteAtlasEntry] = {}
        for e in self.entries:
            # First record wins, like a linear search would.
            self._by_num.setdefault(e.actor_num, e)

    @classmethod
    def from_records(cls, records: Any) -> "ActorAtlas":
        if not isinstance(records, list):
            raise AssetError("Actor atlas root must be a list of actor records")
        entries: List[SpriteAtlasEntry] = []
        for i, rec in enumerate(records):
            if not isinstance(rec, dict) or "actorNum" not in rec:
                raise AssetError(f"Actor atlas record {i} has no actorNum")
            meta = rec.get("metaframe")
            palette = rec.get("palette")
            try:
                palette_id = to_int(palette) if palette is not None else 0
            except ValueError:
                palette_id = 0
            entries.append(
                SpriteAtlasEntry(
                    actor_num=to_int(rec["actorNum"]),
                    name=str(rec.get("name", "")),
                    type=str(rec.get("type") or "unknown"),
                    palette=palette_id,
                    frames=tuple(_frame_from_record(f) for f in rec.get("frames") or []),
                    metaframe=_metaframe_from_record(meta) if isinstance(meta, dict) else None,
                )
            )
        return cls(entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[SpriteAtlasEntry]:
        return iter(self.entries)

    def get(self, actor_num: int) -> Optional[SpriteAtlasEntry]:
        return self._by_num.get(actor_num)

    def type_of(self, actor_num: int) -> Optional[str]:
        e = self.get(actor_num)
        return e.type if e is not None else None

    def sorted(self, mode: str = "default") -> List[SpriteAtlasEntry]:
        if mode == "name":
            return sorted(self.entries, key=lambda e: e.name)
        if mode == "type":
            return sorted(self.entries, key=lambda e: (e.type, e.name))
        if mode == "size":

            def area(e: SpriteAtlasEntry) -> int:
                return e.frames[0].width_tiles * e.frames[0].height_tiles if e.frames else 0

            return sorted(self.entries, key=area, reverse=True)
        if mode != "default":
            raise ValueError(f"Unknown sort mode: {mode}")
        return sorted(self.entries, key=lambda e: e.actor_num)


def load_atlas(path: pathlib.Path) -> ActorAtlas:
    return ActorAtlas.from_records(load_records(path))


# --- cache ------------------------------------------------------------------


class RasterCache:
    """
    Thread-safe raster memo. Entries are never mutated, only dropped by
    ``clear()`` or, with ``max_entries`` set, evicted least recently used.
    """

    def __init__(self, max_entries: Optional[int] = None):
        if max_entries is not None and max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._lock = threading.Lock()
        self._entries: "collections.OrderedDict[Hashable, CompositeRaster]" = collections.OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Optional[CompositeRaster]:
        with self._lock:
            value = self._entries.get(key)
            if value is None:
                self.misses += 1
                return None
            self.hits += 1
            self._entries.move_to_end(key)
            return value

    def put(self, key: Hashable, value: CompositeRaster) -> None:
        with self._lock:
            self._entries[key] = value
            self._entries.move_to_end(key)
            if self.max_entries is not None:
                while len(self._entries) > self.max_entries:
                    self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            n = len(self._entries)
            self._entries.clear()
        logger.debug("Raster cache cleared (%d entries)", n)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries


# --- composition ------------------------------------------------------------


def composite_layers(layers: Sequence[Tuple[np.ndarray, int, int]]) -> Optional[np.ndarray]:
    """
    Stack ``(rgba, offset_x, offset_y)`` layers in order. The canvas spans
    min(0, offsets) to max(offset + size); each layer lands at offset - min.
    """
    if not layers:
        return None
    min_x = min([0] + [ox for _, ox, _ in layers])
    min_y = min([0] + [oy for _, _, oy in layers])
    max_x = max([0] + [ox + img.shape[1] for img, ox, _ in layers])
    max_y = max([0] + [oy + img.shape[0] for img, _, oy in layers])
    canvas = np.zeros((max_y - min_y, max_x - min_x, 4), dtype=np.uint8)
    for img, ox, oy in layers:
        blit(canvas, img, ox - min_x, oy - min_y)
    return canvas


class SpriteCompositor:
    def __init__(
        self,
        graphics: bytes = b"",
        atlas: Optional[ActorAtlas] = None,
        palettes: Sequence[Palette] = (),
        max_entries: Optional[int] = None,
    ):
        self.graphics = bytes(graphics)
        self.atlas = atlas
        self.palettes: List[Palette] = list(palettes)
        self.cache = RasterCache(max_entries)

    def load_graphics(self, graphics: bytes) -> None:
        self.graphics = bytes(graphics)
        self.cache.clear()

    def load_atlas(self, atlas: ActorAtlas) -> None:
        self.atlas = atlas
        self.cache.clear()

    def set_palettes(self, palettes: Sequence[Palette]) -> None:
        self.palettes = list(palettes)
        self.cache.clear()

    def palette_for(self, entry: SpriteAtlasEntry) -> Palette:
        if 0 <= entry.palette < len(self.palettes):
            return self.palettes[entry.palette]
        if self.palettes:
            return self.palettes[0]
        return GREY_PALETTE

    def _entry(self, actor: int) -> Optional[SpriteAtlasEntry]:
        if self.atlas is None:
            return None
        return self.atlas.get(actor)

    def get_frame(self, actor: int, frame_index: int = 0) -> Optional[CompositeRaster]:
        key = ("frame", actor, frame_index)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        entry = self._entry(actor)
        if entry is None or not self.graphics:
            return None
        if frame_index < 0 or frame_index >= len(entry.frames):
            return None
        frame = entry.frames[frame_index]
        if not frame_dims_ok(frame.width_tiles, frame.height_tiles):
            return None
        end = frame.data_offset + frame.byte_size
        if frame.data_offset < 0 or end > len(self.graphics):
            return None

        palette = self.palette_for(entry)
        chunk = self.graphics[frame.data_offset : end]
        canvas = np.zeros((frame.height_tiles * TILE_SIZE, frame.width_tiles * TILE_SIZE, 4), dtype=np.uint8)
        idx = 0
        for ty in range(frame.height_tiles):
            for tx in range(frame.width_tiles):
                tile = decode_tile(chunk, idx, TileLayoutMode.MASKED, palette)
                if tile is not None:
                    blit(canvas, tile.rgba, tx * TILE_SIZE, ty * TILE_SIZE)
                idx += 1
        canvas.setflags(write=False)
        raster = CompositeRaster(canvas, frame.hotspot_x, frame.hotspot_y)
        self.cache.put(key, raster)
        return raster

    def get_metaframe(self, actor: int) -> Optional[CompositeRaster]:
        key = ("meta", actor)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        entry = self._entry(actor)
        if entry is None:
            return None
        meta = entry.metaframe
        if meta is None or not meta.layers:
            return self.get_frame(actor, 0)

        source = meta.source_actor if meta.source_actor is not None else actor
        layers: List[Tuple[np.ndarray, int, int]] = []
        for layer in meta.layers:
            raster = self.get_frame(source, layer.frame_index)
            if raster is not None:
                layers.append((raster.rgba, layer.offset_x, layer.offset_y))
        canvas = composite_layers(layers)
        if canvas is None:
            return None
        canvas.setflags(write=False)
        raster = CompositeRaster(canvas, meta.hotspot_x, meta.hotspot_y)
        self.cache.put(key, raster)
        return raster


# --- generation 1 sprites ---------------------------------------------------


class CrateColor(enum.Enum):
    GREY = "grey"
    BLUE = "blue"
    RED = "red"


CRATE_ART: Dict[CrateColor, Tuple[str, int]] = {
    CrateColor.GREY: ("OBJECT0", 0),
    CrateColor.BLUE: ("OBJECT2", 0),
    CrateColor.RED: ("OBJECT2", 1),
}
CRATE_CONTENT_BOX = (2, 4, 12, 12)


@dataclasses.dataclass(frozen=True)
class SimpleSprite:
    type: str
    name: str
    file: str
    index: int
    force_opaque: bool = False


@dataclasses.dataclass(frozen=True)
class CompositeSprite:
    type: str
    name: str
    file: str
    index: int
    width: int
    height: int
    indices: Tuple[int, ...]
    force_opaque: bool = False


@dataclasses.dataclass(frozen=True)
class CrateSprite:
    type: str
    name: str
    color: CrateColor
    content_file: Optional[str] = None
    content_index: Optional[int] = None


SpriteDefinition = Union[SimpleSprite, CompositeSprite, CrateSprite]


def sprite_from_record(rec: Mapping[str, Any]) -> SpriteDefinition:
    stype = str(rec.get("type", "decorative"))
    name = str(rec.get("name", ""))
    if rec.get("crate"):
        content = rec.get("content") or {}
        return CrateSprite(
            type=stype,
            name=name,
            color=CrateColor(str(rec["crate"]).lower()),
            content_file=content.get("file"),
            content_index=to_int(content["index"]) if "index" in content else None,
        )
    if "file" not in rec:
        raise AssetError(f"Sprite '{name}' has neither file nor crate")
    comp = rec.get("composition")
    if comp:
        if to_int(comp["width"]) <= 0 or to_int(comp["height"]) <= 0:
            raise AssetError(f"Sprite '{name}' has an empty composition")
        return CompositeSprite(
            type=stype,
            name=name,
            file=str(rec["file"]),
            index=to_int(rec.get("index", 0)),
            width=to_int(comp["width"]),
            height=to_int(comp["height"]),
            indices=tuple(to_int(i) for i in comp["indices"]),
            force_opaque=bool(rec.get("forceOpaque", False)),
        )
    return SimpleSprite(
        type=stype,
        name=name,
        file=str(rec["file"]),
        index=to_int(rec.get("index", 0)),
        force_opaque=bool(rec.get("forceOpaque", False)),
    )


def load_sprite_map(path: pathlib.Path) -> Dict[int, SpriteDefinition]:
    """Sprite map keyed by hex tile id strings ("3000") or integers."""
    raw = load_records(path)
    if not isinstance(raw, dict):
        raise AssetError("Sprite map root must be a mapping of sprite ids")
    out: Dict[int, SpriteDefinition] = {}
    for key, rec in raw.items():
        sid = int(key, 16) if isinstance(key, str) else to_int(key)
        out[sid] = sprite_from_record(rec)
    return out


def sprite_files(defn: SpriteDefinition) -> List[str]:
    if isinstance(defn, CrateSprite):
        files = [CRATE_ART[defn.color][0]]
        if defn.content_file:
            files.append(defn.content_file)
        return files
    return [defn.file]


def _tile_at(tilesets: Mapping[str, Sequence[DecodedTile]], file: Optional[str], index: Optional[int]) -> Optional[DecodedTile]:
    if file is None or index is None:
        return None
    tiles = tilesets.get(file)
    if tiles is None or index < 0 or index >= len(tiles):
        return None
    return tiles[index]


def _opaque(rgba: np.ndarray) -> np.ndarray:
    out = rgba.copy()
    out[:, :, 3] = 255
    return out


def build_sprite(
    defn: SpriteDefinition,
    tilesets: Mapping[str, Sequence[DecodedTile]],
) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """Return ``(icon, full)`` RGBA arrays, or None when the source tiles are missing."""
    if isinstance(defn, CrateSprite):
        base_file, base_index = CRATE_ART[defn.color]
        base = _tile_at(tilesets, base_file, base_index)
        content = _tile_at(tilesets, defn.content_file, defn.content_index)
        if base is None and content is None:
            return None
        canvas = np.zeros((GEN1_TILE, GEN1_TILE, 4), dtype=np.uint8)
        if base is not None:
            blit(canvas, base.rgba, 0, 0)
        if content is not None:
            x, y, w, h = CRATE_CONTENT_BOX
            small = np.asarray(content.to_image().resize((w, h), Image.NEAREST))
            blit(canvas, small, x, y)
        return canvas, canvas

    icon_tile = _tile_at(tilesets, defn.file, defn.index)
    if icon_tile is None:
        return None
    icon = icon_tile.rgba
    full = icon
    if isinstance(defn, CompositeSprite):
        full = np.zeros((defn.height * GEN1_TILE, defn.width * GEN1_TILE, 4), dtype=np.uint8)
        for i, tile_index in enumerate(defn.indices):
            tile = _tile_at(tilesets, defn.file, tile_index)
            if tile is not None:
                blit(full, tile.rgba, (i % defn.width) * GEN1_TILE, (i // defn.width) * GEN1_TILE)
    if defn.force_opaque:
        icon = _opaque(icon)
        full = _opaque(full)
    return icon, full
