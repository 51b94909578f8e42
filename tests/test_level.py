import logging
import struct

import pytest

from conftest import build_level
from dn_common import TruncatedInput
from dn_level import (
    DIFFICULTY_EASY,
    DIFFICULTY_HARD,
    DIFFICULTY_MEDIUM,
    MAP_CELLS,
    ActorPlacement,
    Cell,
    LevelDocument,
    classify_cell,
    compress_rle,
    decode_gen1_value,
    expand_rle,
    parse_level,
    parse_level_gen1,
    summarize_actors,
    summarize_gen1,
)


def test_composite_cell_uses_aux_extension():
    value = 0x8000 | 5 | (3 << 10)
    level = parse_level(build_level(cells=[value], aux=bytes([0xFF, 0x02])))
    assert level.cells[0] == Cell(bg=5, fg=67)
    assert level.extra[:4] == [2, 0, 0, 0]


def test_simple_cell_classification():
    assert classify_cell(16) == Cell(bg=2, fg=None)
    assert classify_cell(7999) == Cell(bg=999, fg=None)
    assert classify_cell(8080) == Cell(bg=None, fg=2)
    assert classify_cell(8003) == Cell(bg=None, fg=0)
    assert classify_cell(0x8000 | 0x3FF | (0x1F << 10), 3) == Cell(bg=1023, fg=127)


def test_header_fields_and_dimensions():
    level = parse_level(build_level(width=64))
    assert level.czone == "CZONE1.MNI"
    assert level.width == 64
    assert level.height == 511
    assert len(level.cells) == MAP_CELLS
    assert level.cell(0, 0) == Cell(bg=0, fg=None)
    assert level.cell(64, 0) is None
    assert level.cell(0, 512) is None
    assert level.cell(0, 511) is None
    assert level.cell(63, 510) is not None


def test_actor_table_skips_empty_slots():
    level = parse_level(build_level(actors=[(0, 1, 1), (10, 5, 6), (83, 4, 6)]))
    assert level.actors == [ActorPlacement(10, 5, 6), ActorPlacement(83, 4, 6)]
    assert level.actor_histogram()[10] == 1


def test_actor_table_past_data_offset_stops_with_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="dn_level"):
        level = parse_level(build_level(actors=[(10, 1, 2)], actor_words=9))
    assert level.actors == [ActorPlacement(10, 1, 2)]
    assert "exceeds the data offset" in caplog.text


def test_truncated_levels_raise():
    with pytest.raises(TruncatedInput):
        parse_level(bytes(46))
    with pytest.raises(TruncatedInput):
        parse_level(build_level()[:-1])
    with pytest.raises(TruncatedInput):
        parse_level(build_level(width=0))


def test_aux_length_past_end_is_clamped(caplog):
    with caplog.at_level(logging.WARNING, logger="dn_level"):
        level = parse_level(build_level(aux=bytes([1, 0xFF]), aux_len=10))
    assert level.extra[:4] == [3, 3, 3, 3]
    assert level.extra[4] == 0
    assert "declares 10 bytes" in caplog.text


def test_tile_usage_counts_both_layers():
    cells = [16, 16, 8040, 0x8000 | 7 | (1 << 10)]
    level = parse_level(build_level(cells=cells))
    usage = level.tile_usage()
    assert usage["bg"][2] == 2
    assert usage["bg"][7] == 1
    assert usage["fg"][1] == 2


def test_rle_repeat_expands_packed_pairs():
    assert expand_rle(bytes([3, 0xE4]), 16) == [0, 1, 2, 3] * 3 + [0] * 4


def test_rle_literal_run():
    assert expand_rle(bytes([0xFE, 1, 2]), 10) == [1, 0, 0, 0, 2, 0, 0, 0, 0, 0]


def test_rle_zero_command_is_skipped():
    assert expand_rle(bytes([0, 1, 3]), 8) == [3, 0, 0, 0, 0, 0, 0, 0]


def test_rle_stops_at_cell_count_mid_cluster():
    assert expand_rle(bytes([2, 0xFF]), 6) == [3] * 6


def test_rle_truncated_commands_leave_zeros():
    assert expand_rle(bytes([5]), 8) == [0] * 8
    assert expand_rle(bytes([0xFC, 0xFF]), 8) == [3, 3, 3, 3, 0, 0, 0, 0]
    assert expand_rle(b"", 4) == [0] * 4


def test_compress_rle_reads_back():
    values = [0, 1, 2, 3] * 50 + [3] * 17 + [1, 2] * 9 + [0] * 3
    packed = compress_rle(values)
    assert expand_rle(packed, len(values)) == values
    assert len(packed) < len(values) // 4


def _level(actors):
    return LevelDocument(czone="CZONE1.MNI", width=64, height=511, cells=[], actors=actors, extra=[])


TYPES = {37: "keyitem", 20: "powerup", 100: "enemy", 83: "meta", 82: "meta", 200: "enemy"}


def test_summary_hard_only_marker():
    level = _level(
        [
            ActorPlacement(37, 10, 10),
            ActorPlacement(83, 11, 10),
            ActorPlacement(20, 0, 0),
            ActorPlacement(100, 50, 50),
        ]
    )
    easy = summarize_actors(level, TYPES.get, DIFFICULTY_EASY)
    assert easy.counts["keyitem"] == 0
    assert easy.counts["powerup"] == 1
    assert easy.counts["enemy"] == 1
    assert easy.required == []
    assert easy.optional == ["Flamethrower"]
    assert easy.objectives == ["Reach the Exit"]

    hard = summarize_actors(level, TYPES.get, DIFFICULTY_HARD)
    assert hard.counts["keyitem"] == 1
    assert hard.required == ["Circuit Card"]


def test_summary_medium_hard_marker_and_same_cell():
    level = _level([ActorPlacement(100, 5, 5), ActorPlacement(82, 6, 6), ActorPlacement(83, 20, 20), ActorPlacement(100, 20, 20)])
    assert summarize_actors(level, TYPES.get, DIFFICULTY_EASY).counts["enemy"] == 1
    assert summarize_actors(level, TYPES.get, DIFFICULTY_MEDIUM).counts["enemy"] == 2


def test_summary_boss_replaces_exit():
    summary = summarize_actors(_level([ActorPlacement(200, 1, 1)]), TYPES.get)
    assert summary.objectives == ["Defeat Rigelatin Boss"]
    assert summary.to_json()["width"] == 64


def test_gen1_value_decoding():
    assert decode_gen1_value(6144) == 192
    assert decode_gen1_value(0x3030) == 0x3030
    assert decode_gen1_value(31) == 0


def _gen1_bytes(values, header=5):
    grid = list(values) + [0] * (128 * 90 - len(values))
    return bytes(header) + struct.pack("<11520H", *grid)


def test_gen1_grid_and_header():
    level = parse_level_gen1(_gen1_bytes([6144, 0x3030]))
    assert level.header_size == 5
    assert level.cell(0, 0) == 192
    assert level.cell(1, 0) == 0x3030
    assert level.cell(128, 0) is None
    assert level.sprite_ids() == [0x3030]
    with pytest.raises(TruncatedInput):
        parse_level_gen1(bytes(128 * 90 * 2 - 1))


def test_gen1_summary():
    level = parse_level_gen1(_gen1_bytes([0x3030, 0x3044, 0x3011, 0x300F, 0x3099]))
    sprites = {0x3030: ("bonus", "SODA CAN"), 0x3099: ("enemy", "TECHBOT")}
    summary = summarize_gen1(level, sprites)
    assert summary.counts["health"] == 1
    assert summary.counts["enemy"] == 1
    assert summary.counts["bonus"] == 0
    assert summary.required == ["Red Key"]
    assert summary.optional == ["Raygun Ammo"]
    assert summary.objectives == ["Reach the Exit"]
