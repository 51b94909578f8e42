"""
Level parsing for both Duke Nukem generations.

Generation 2 (*.MNI maps):
- 47-byte header (data offset, CZONE name, actor word count), actor table.
- 32750 u16 cells at the data offset, then an RLE-packed array of the
  2-bit extensions for foreground tile indices.

Generation 1 (WORLDAL*.DN*): fixed 128x90 u16 grid at the end of the file.
"""

from __future__ import annotations

import collections
import dataclasses
import logging
import struct
from typing import Callable, Counter, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from dn_common import TruncatedInput, le_s8, le_u16, read_cstring

logger = logging.getLogger(__name__)

MAP_CELLS = 32750
HEADER_SIZE = 47
ACTOR_SIZE = 6
CZONE_NAME_OFFSET = 2
CZONE_NAME_SIZE = 13
ACTOR_WORDS_OFFSET = 45

GEN1_WIDTH = 128
GEN1_HEIGHT = 90
GEN1_GRID_BYTES = GEN1_WIDTH * GEN1_HEIGHT * 2
GEN1_SPRITE_BASE = 0x3000

DIFFICULTY_EASY = 0
DIFFICULTY_MEDIUM = 1
DIFFICULTY_HARD = 2

META_HARD_ONLY = 83
META_MEDIUM_HARD_ONLY = 82

REQUIRED_ITEMS: Tuple[Tuple[int, str], ...] = (
    (37, "Circuit Card"),
    (114, "Cloaking Device"),
    (121, "Blue Key"),
)
OPTIONAL_ITEMS: Tuple[Tuple[int, str], ...] = (
    (20, "Flamethrower"),
    (28, "Health Molecule"),
    (23, "Laser"),
    (22, "Normal Weapon"),
    (53, "Rapid Fire"),
    (19, "Rocket Launcher"),
)
# Dict order is display priority.
OBJECTIVE_TRIGGERS: Dict[str, Tuple[int, ...]] = {
    "Defeat Rigelatin Boss": (200, 101, 265, 279),
    "Breach Super Forcefield": (93,),
    "Destroy Radar Dishes": (236,),
    "Locate Teleporter": (50, 51),
}
BOSS_OBJECTIVE = "Defeat Rigelatin Boss"
EXIT_OBJECTIVE = "Reach the Exit"
ACTOR_TYPES = ("enemy", "hazard", "bonus", "powerup", "keyitem", "tech")

GEN1_REQUIRED_ITEMS: Tuple[Tuple[int, str], ...] = (
    (0x3044, "Red Key"),
    (0x3045, "Green Key"),
    (0x3046, "Blue Key"),
    (0x3047, "Purple Key"),
    (0x3033, "Access Card"),
    (0x3020, "Robohand"),
    (0x3006, "Shoes"),
    (0x3008, "Claws"),
)
GEN1_OPTIONAL_ITEMS: Tuple[Tuple[int, str], ...] = ((0x300F, "Raygun Ammo"),)
GEN1_OBJECTIVES: Dict[int, str] = {
    0x3043: "Confront Dr. Proton",
    0x3042: "Confront Dr. Proton",
    0x302B: "Destroy Reactor",
    0x3011: "Reach the Exit",
    0x302F: "Locate Teleporter",
}


@dataclasses.dataclass(frozen=True)
class Cell:
    bg: Optional[int]
    fg: Optional[int]


@dataclasses.dataclass(frozen=True)
class ActorPlacement:
    id: int
    x: int
    y: int


@dataclasses.dataclass
class LevelDocument:
    czone: str
    width: int
    height: int
    cells: List[Cell]
    actors: List[ActorPlacement]
    extra: List[int]

    def cell(self, x: int, y: int) -> Optional[Cell]:
        if x < 0 or y < 0 or x >= self.width or y >= self.height:
            return None
        idx = y * self.width + x
        if idx >= len(self.cells):
            return None
        return self.cells[idx]

    def tile_usage(self) -> Dict[str, Counter[int]]:
        bg: Counter[int] = collections.Counter()
        fg: Counter[int] = collections.Counter()
        for c in self.cells:
            if c.bg is not None:
                bg[c.bg] += 1
            if c.fg is not None:
                fg[c.fg] += 1
        return {"bg": bg, "fg": fg}

    def actor_histogram(self) -> Counter[int]:
        return collections.Counter(a.id for a in self.actors)


@dataclasses.dataclass
class Gen1Level:
    header_size: int
    grid: List[int]
    width: int = GEN1_WIDTH
    height: int = GEN1_HEIGHT

    def cell(self, x: int, y: int) -> Optional[int]:
        if not (0 <= x < self.width and 0 <= y < self.height):
            return None
        return self.grid[y * self.width + x]

    def sprite_ids(self) -> List[int]:
        return [v for v in self.grid if v >= GEN1_SPRITE_BASE]


@dataclasses.dataclass
class LevelSummary:
    width: int
    height: int
    counts: Dict[str, int]
    required: List[str]
    optional: List[str]
    objectives: List[str]

    def to_json(self) -> Dict:
        return dataclasses.asdict(self)


# --- auxiliary RLE ----------------------------------------------------------


def _apply_cluster(out: List[int], start: int, byte_val: int) -> None:
    # One byte packs four 2-bit values, least significant pair first.
    for k in range(4):
        if start + k < len(out):
            out[start + k] = (byte_val >> (k * 2)) & 0x03


def expand_rle(data: bytes, cell_count: int = MAP_CELLS) -> List[int]:
    """
    Expand the auxiliary stream into exactly ``cell_count`` 2-bit values.

    Command byte N (signed): N > 0 repeats the next byte N times, N < 0
    copies |N| literal bytes. Stops at the cell count or the end of input;
    the remainder stays zero.
    """
    out = [0] * cell_count
    pos = 0
    cell = 0
    end = len(data)
    while pos < end and cell < cell_count:
        count = le_s8(data, pos)
        pos += 1
        if count > 0:
            if pos >= end:
                logger.debug("RLE repeat command at end of input")
                break
            val = data[pos]
            pos += 1
            for _ in range(count):
                _apply_cluster(out, cell, val)
                cell += 4
        elif count < 0:
            for _ in range(-count):
                if pos >= end:
                    break
                _apply_cluster(out, cell, data[pos])
                pos += 1
                cell += 4
        else:
            logger.debug("RLE zero command @0x%X ignored", pos - 1)
    return out


def _pack_clusters(values: Sequence[int]) -> bytes:
    packed = bytearray()
    for i in range(0, len(values), 4):
        b = 0
        for k, v in enumerate(values[i : i + 4]):
            b |= (v & 0x03) << (k * 2)
        packed.append(b)
    return bytes(packed)


def compress_rle(values: Sequence[int]) -> bytes:
    """Encode 2-bit values with the same command stream ``expand_rle`` reads."""
    packed = _pack_clusters(values)
    out = bytearray()
    literal = bytearray()

    def flush_literal() -> None:
        while literal:
            chunk = literal[:128]
            del literal[:128]
            out.append((256 - len(chunk)) & 0xFF)
            out.extend(chunk)

    i = 0
    while i < len(packed):
        run = 1
        while i + run < len(packed) and run < 127 and packed[i + run] == packed[i]:
            run += 1
        if run >= 3:
            flush_literal()
            out.append(run)
            out.append(packed[i])
            i += run
        else:
            literal.append(packed[i])
            i += 1
    flush_literal()
    return bytes(out)


# --- generation 2 -----------------------------------------------------------


def classify_cell(value: int, extra: int = 0) -> Cell:
    if value & 0x8000:
        return Cell(bg=value & 0x3FF, fg=((value >> 10) & 0x1F) + extra * 32)
    if value < 8000:
        return Cell(bg=value // 8, fg=None)
    return Cell(bg=None, fg=(value - 8000) // 40)


def _parse_actors(data: bytes, data_offset: int, num_actor_words: int) -> List[ActorPlacement]:
    actors: List[ActorPlacement] = []
    num_actors = num_actor_words // 3
    for i in range(num_actors):
        off = HEADER_SIZE + i * ACTOR_SIZE
        if off + ACTOR_SIZE > data_offset or off + ACTOR_SIZE > len(data):
            logger.warning("Actor %d of %d exceeds the data offset; stopping", i, num_actors)
            break
        actor_id = le_u16(data, off)
        if actor_id == 0:
            continue
        actors.append(ActorPlacement(actor_id, le_u16(data, off + 2), le_u16(data, off + 4)))
    logger.debug("Parsed %d actors (%d slots)", len(actors), num_actors)
    return actors


def parse_level(buffer: bytes) -> LevelDocument:
    data = bytes(buffer)
    if len(data) < HEADER_SIZE:
        raise TruncatedInput(f"Level header needs {HEADER_SIZE} bytes, got {len(data)}")
    data_offset = le_u16(data, 0)
    czone = read_cstring(data, CZONE_NAME_OFFSET, CZONE_NAME_SIZE).strip().upper()
    num_actor_words = le_u16(data, ACTOR_WORDS_OFFSET)
    actors = _parse_actors(data, data_offset, num_actor_words)

    grid_start = data_offset + 2
    aux_len_off = grid_start + MAP_CELLS * 2
    if aux_len_off + 2 > len(data):
        raise TruncatedInput(
            f"Level grid needs {aux_len_off + 2} bytes, got {len(data)} (data offset 0x{data_offset:X})"
        )
    width = le_u16(data, data_offset)
    if width == 0:
        raise TruncatedInput("Level width is zero")
    height = MAP_CELLS // width

    aux_len = le_u16(data, aux_len_off)
    aux_start = aux_len_off + 2
    available = len(data) - aux_start
    if aux_len > available:
        logger.warning("Auxiliary stream declares %d bytes, only %d available", aux_len, available)
        aux_len = available
    extra = expand_rle(data[aux_start : aux_start + aux_len], MAP_CELLS)

    raw = struct.unpack_from(f"<{MAP_CELLS}H", data, grid_start)
    cells = [classify_cell(raw[i], extra[i]) for i in range(MAP_CELLS)]
    return LevelDocument(czone=czone, width=width, height=height, cells=cells, actors=actors, extra=extra)


def _difficulty_hidden(actor: ActorPlacement, markers: Iterable[ActorPlacement], difficulty: int) -> bool:
    hard_only = False
    medium_hard_only = False
    for m in markers:
        if m.x == actor.x and m.y == actor.y:
            continue
        if abs(m.x - actor.x) > 1 or abs(m.y - actor.y) > 1:
            continue
        if m.id == META_HARD_ONLY:
            hard_only = True
        elif m.id == META_MEDIUM_HARD_ONLY:
            medium_hard_only = True
    if hard_only and difficulty != DIFFICULTY_HARD:
        return True
    return medium_hard_only and difficulty == DIFFICULTY_EASY


def summarize_actors(
    level: LevelDocument,
    type_of: Callable[[int], Optional[str]],
    difficulty: int = DIFFICULTY_EASY,
) -> LevelSummary:
    """Census of the actors visible at ``difficulty`` (0 easy, 1 medium, 2 hard)."""
    counts = {t: 0 for t in ACTOR_TYPES}
    found_required = set()
    found_optional = set()
    found_objectives = set()
    markers = [a for a in level.actors if a.id in (META_HARD_ONLY, META_MEDIUM_HARD_ONLY)]
    required_ids = dict(REQUIRED_ITEMS)
    optional_ids = dict(OPTIONAL_ITEMS)

    for actor in level.actors:
        actor_type = type_of(actor.id)
        if actor_type == "meta":
            continue
        if _difficulty_hidden(actor, markers, difficulty):
            continue
        if actor_type in counts:
            counts[actor_type] += 1
        if actor.id in required_ids:
            found_required.add(actor.id)
        if actor.id in optional_ids:
            found_optional.add(actor.id)
        for objective, triggers in OBJECTIVE_TRIGGERS.items():
            if actor.id in triggers:
                found_objectives.add(objective)

    if BOSS_OBJECTIVE not in found_objectives:
        found_objectives.add(EXIT_OBJECTIVE)
    order = list(OBJECTIVE_TRIGGERS) + [EXIT_OBJECTIVE]
    return LevelSummary(
        width=level.width,
        height=level.height,
        counts=counts,
        required=[name for aid, name in REQUIRED_ITEMS if aid in found_required],
        optional=[name for aid, name in OPTIONAL_ITEMS if aid in found_optional],
        objectives=[o for o in order if o in found_objectives],
    )


# --- generation 1 -----------------------------------------------------------


def decode_gen1_value(value: int) -> int:
    # Tiles are stored as video memory offsets (32 bytes per tile); sprites verbatim.
    if value >= GEN1_SPRITE_BASE:
        return value
    return value // 32


def parse_level_gen1(buffer: bytes) -> Gen1Level:
    data = bytes(buffer)
    if len(data) < GEN1_GRID_BYTES:
        raise TruncatedInput(f"Generation-1 level needs {GEN1_GRID_BYTES} bytes, got {len(data)}")
    header = len(data) - GEN1_GRID_BYTES
    raw = struct.unpack_from(f"<{GEN1_WIDTH * GEN1_HEIGHT}H", data, header)
    return Gen1Level(header_size=header, grid=[decode_gen1_value(v) for v in raw])


def _is_health_item(name: str) -> bool:
    n = name.upper()
    return "SODA" in n or "TURKEY" in n or "MOLECULE" in n


def summarize_gen1(level: Gen1Level, sprites: Mapping[int, Tuple[str, str]]) -> LevelSummary:
    """``sprites`` maps sprite id to (type, name)."""
    counts = {"enemy": 0, "hazard": 0, "bonus": 0, "health": 0, "interactive": 0}
    found_required = set()
    found_optional = set()
    found_objectives = set()
    required_ids = dict(GEN1_REQUIRED_ITEMS)
    optional_ids = dict(GEN1_OPTIONAL_ITEMS)

    for sid in level.sprite_ids():
        if sid in required_ids:
            found_required.add(sid)
        elif sid in optional_ids:
            found_optional.add(sid)
        if sid in GEN1_OBJECTIVES:
            found_objectives.add(GEN1_OBJECTIVES[sid])
        entry = sprites.get(sid)
        if entry is None:
            continue
        sprite_type, name = entry
        if sprite_type == "bonus":
            counts["health" if _is_health_item(name) else "bonus"] += 1
        elif sprite_type in counts:
            counts[sprite_type] += 1

    order = []
    for objective in GEN1_OBJECTIVES.values():
        if objective in found_objectives and objective not in order:
            order.append(objective)
    return LevelSummary(
        width=level.width,
        height=level.height,
        counts=counts,
        required=[name for sid, name in GEN1_REQUIRED_ITEMS if sid in found_required],
        optional=[name for sid, name in GEN1_OPTIONAL_ITEMS if sid in found_optional],
        objectives=order,
    )
