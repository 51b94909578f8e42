import logging

import numpy as np
import pytest
from PIL import Image

from conftest import build_animation
from dn_common import TruncatedInput, UnsupportedVariant
from dn_anim import (
    DEFAULT_FPS,
    frame_duration_ms,
    frame_indices,
    iter_frames,
    parse_animation,
    render_frame,
    save_gif,
)

BASE_ROWS = [
    bytes([1, 4, 5]),  # repeat 5 x4
    bytes([2, 0xFE, 1, 2, 2, 3]),  # literal 1 2, repeat 3 x2
    bytes([1, 0xFC, 7, 8, 9, 10]),
]
FRAMES = [
    (1, 1, [bytes([1, 1, 0xFE, 0x0C])]),  # skip 1, repeat 12 x2
    (2, 2, [bytes([1, 0, 0x01, 0x20]), bytes([1, 0, 0xFF, 0x21])]),  # second row is below the image
]


@pytest.fixture
def anim():
    return parse_animation(build_animation(4, 3, BASE_ROWS, FRAMES))


def test_header_palette_and_base_image(anim):
    assert (anim.width, anim.height) == (4, 3)
    assert len(anim.palette) == 256
    assert anim.palette[5] == (20, 20, 20)
    assert anim.palette[63] == (255, 255, 255)
    assert anim.main_image.tolist() == [[5, 5, 5, 5], [1, 2, 3, 3], [7, 8, 9, 10]]
    assert anim.frame_count == 3


def test_frame_deltas(anim):
    first, second = anim.frames
    assert (first.y_offset, first.num_rows) == (1, 1)
    assert first.mask.tolist() == [[False, True, True, False]]
    assert first.changed_pixels == 2
    assert second.indices[1, 0] == 0x21


def test_deltas_accumulate_and_clip_to_height(anim):
    assert frame_indices(anim, 0).tolist() == [[5, 5, 5, 5], [1, 12, 12, 3], [7, 8, 9, 10]]
    assert frame_indices(anim, 1).tolist() == [[5, 5, 5, 5], [1, 12, 12, 3], [32, 8, 9, 10]]
    # Rendering never mutates the decoded base image.
    assert anim.main_image[1, 1] == 2


def test_frame_index_clamps(anim):
    assert np.array_equal(render_frame(anim, -7), render_frame(anim, -1))
    assert np.array_equal(render_frame(anim, 99), render_frame(anim, 1))
    rgba = render_frame(anim, -1)
    assert rgba.shape == (3, 4, 4)
    assert tuple(rgba[0, 0]) == (20, 20, 20, 255)


def test_iter_frames_matches_render(anim):
    frames = list(iter_frames(anim))
    assert len(frames) == anim.frame_count
    for i, rgba in enumerate(frames):
        assert np.array_equal(rgba, render_frame(anim, i - 1))


def test_skip_past_row_end_lands_on_next_row():
    rows = [bytes([1, 4, 0]), bytes([1, 4, 0])]
    anim = parse_animation(build_animation(4, 2, rows, [(0, 2, [bytes([1, 5, 0xFF, 9]), bytes([0])])]))
    assert frame_indices(anim, 0).tolist() == [[0, 0, 0, 0], [0, 9, 0, 0]]


def test_palette_is_not_masked_to_six_bits():
    palette = bytes([0xFF, 0, 63]) + bytes(765)
    anim = parse_animation(build_animation(1, 1, [bytes([1, 1, 0])], palette=palette))
    assert anim.palette[0] == (255, 0, 255)


def test_short_base_image_is_padded(caplog):
    rows = [bytes([1, 4, 5]), bytes([0]), bytes([0])]
    with caplog.at_level(logging.WARNING, logger="dn_anim"):
        anim = parse_animation(build_animation(4, 3, rows))
    assert anim.main_image.tolist() == [[5, 5, 5, 5], [0, 0, 0, 0], [0, 0, 0, 0]]
    assert "expected 12" in caplog.text


def test_format_errors():
    with pytest.raises(UnsupportedVariant):
        parse_animation(build_animation(4, 3, BASE_ROWS, marker=0x1234))
    with pytest.raises(UnsupportedVariant):
        parse_animation(build_animation(4, 3, BASE_ROWS, palette_size=777))

    bad_frame = bytearray(build_animation(4, 3, BASE_ROWS, FRAMES[:1]))
    bad_frame[-4 - 10 - 16 + 6] = 2  # frame chunk claims two sub-chunks
    with pytest.raises(UnsupportedVariant):
        parse_animation(bytes(bad_frame))


def test_truncated_input():
    with pytest.raises(TruncatedInput):
        parse_animation(bytes(100))
    data = build_animation(4, 3, BASE_ROWS, FRAMES)
    with pytest.raises(TruncatedInput):
        parse_animation(data[:-3])
    with pytest.raises(TruncatedInput):
        parse_animation(data[:500])


def test_frame_duration():
    assert frame_duration_ms(DEFAULT_FPS) == 100
    with pytest.raises(ValueError):
        frame_duration_ms(0)


def test_save_gif(anim, tmp_path):
    path = tmp_path / "anim.gif"
    save_gif(list(iter_frames(anim)), path)
    with Image.open(path) as img:
        assert img.n_frames == 3
        assert img.size == (4, 3)
