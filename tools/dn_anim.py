"""
Generation-2 cutscene animations (*.A?) to RGBA frames.

Layout:
- 128-byte header: u32 file size, u16 marker 0xAF11, u16 frame count,
  u16 width, u16 height.
- Main chunk (type 0xF1FA, two sub-chunks): a 778-byte 6-bit palette
  chunk, then the base image as per-row RLE.
- One chunk per frame (type 0xF1FA, one sub-chunk of type 0x0C) holding a
  row-range delta against the previous frame.

Deltas are cumulative: frame N is the base image with deltas 0..N applied.
"""

from __future__ import annotations

import dataclasses
import logging
import pathlib
from typing import Iterator, List, Sequence, Tuple, Union

import numpy as np
from PIL import Image

from dn_common import BoundsViolation, TruncatedInput, UnsupportedVariant, le_s8, le_u8, le_u16, le_u32
from dn_ega import Palette, indices_to_rgba

logger = logging.getLogger(__name__)

HEADER_SIZE = 128
ANIM_MARKER = 0xAF11
FRAME_CHUNK = 0xF1FA
CHUNK_HEADER_SIZE = 16
PALETTE_CHUNK = 0x0B
PALETTE_CHUNK_SIZE = 778
IMAGE_CHUNK = 0x0F
DELTA_CHUNK = 0x0C
DEFAULT_FPS = 10

BASE_FRAME = -1


@dataclasses.dataclass
class AnimFrame:
    y_offset: int
    num_rows: int
    indices: np.ndarray  # (num_rows, width) uint8
    mask: np.ndarray  # True where the delta writes a pixel

    @property
    def changed_pixels(self) -> int:
        return int(self.mask.sum())


@dataclasses.dataclass
class Animation:
    width: int
    height: int
    palette: Palette
    main_image: np.ndarray  # (height, width) uint8
    frames: List[AnimFrame]

    @property
    def frame_count(self) -> int:
        """Frames including the base image."""
        return len(self.frames) + 1

    def clamp_index(self, index: int) -> int:
        return max(BASE_FRAME, min(index, len(self.frames) - 1))


def _expand_run(data: bytes, off: int, marker: int) -> Tuple[bytes, int]:
    # >0 repeats the next byte, <0 copies |marker| literal bytes, 0 is empty.
    if marker > 0:
        return bytes([le_u8(data, off)]) * marker, off + 1
    if marker < 0:
        end = off - marker
        if end > len(data):
            raise BoundsViolation(f"Literal run of {-marker} bytes @0x{off:X} runs past end")
        return data[off:end], end
    return b"", off


def _check_chunk(data: bytes, off: int, subchunks: int, what: str) -> None:
    kind = le_u16(data, off + 4)
    count = le_u16(data, off + 6)
    if kind != FRAME_CHUNK or count != subchunks:
        raise UnsupportedVariant(f"Invalid {what} chunk @0x{off:X} (type 0x{kind:04X}, {count} sub-chunks)")


def _read_palette(data: bytes, off: int) -> Palette:
    if off + 768 > len(data):
        raise TruncatedInput(f"Animation palette @0x{off:X} runs past the {len(data)}-byte file")
    raw = data[off : off + 768]
    return tuple(
        (
            min(255, raw[i * 3] * 255 // 63),
            min(255, raw[i * 3 + 1] * 255 // 63),
            min(255, raw[i * 3 + 2] * 255 // 63),
        )
        for i in range(256)
    )


def _read_base_image(data: bytes, off: int, width: int, height: int) -> np.ndarray:
    pixels = bytearray()
    for _ in range(height):
        runs = le_u8(data, off)
        off += 1
        for _ in range(runs):
            run, off = _expand_run(data, off + 1, le_s8(data, off))
            pixels += run
    need = width * height
    if len(pixels) != need:
        logger.warning("Base image decoded %d pixels, expected %d", len(pixels), need)
        pixels = pixels[:need].ljust(need, b"\x00")
    return np.frombuffer(bytes(pixels), dtype=np.uint8).reshape(height, width).copy()


def _read_delta(data: bytes, off: int, width: int, num_rows: int) -> Tuple[np.ndarray, np.ndarray]:
    flat = np.zeros(width * num_rows, dtype=np.uint8)
    mask = np.zeros(width * num_rows, dtype=bool)
    for row in range(num_rows):
        col = row * width
        words = le_u8(data, off)
        off += 1
        for _ in range(words):
            col += le_u8(data, off)
            # Frame markers are stored negated.
            run, off = _expand_run(data, off + 2, -le_s8(data, off + 1))
            end = min(col + len(run), flat.size)
            if end > col:
                flat[col:end] = np.frombuffer(run, dtype=np.uint8, count=end - col)
                mask[col:end] = True
            col += len(run)
    return flat.reshape(num_rows, width), mask.reshape(num_rows, width)


def parse_animation(buffer: bytes) -> Animation:
    """
    Decode the header, palette, base image and every frame delta.

    Raises UnsupportedVariant on a wrong marker, chunk type or palette size,
    and TruncatedInput (or BoundsViolation) when a read runs off the buffer.
    """
    data = bytes(buffer)
    if len(data) < HEADER_SIZE:
        raise TruncatedInput(f"Animation header needs {HEADER_SIZE} bytes, got {len(data)}")
    marker = le_u16(data, 4)
    if marker != ANIM_MARKER:
        raise UnsupportedVariant(f"Bad animation marker 0x{marker:04X}")
    num_frames = le_u16(data, 6)
    width = le_u16(data, 8)
    height = le_u16(data, 10)

    off = HEADER_SIZE
    _check_chunk(data, off, 2, "main")
    off += CHUNK_HEADER_SIZE

    pal_size = le_u32(data, off)
    pal_type = le_u16(data, off + 4)
    if pal_type != PALETTE_CHUNK or pal_size != PALETTE_CHUNK_SIZE:
        raise UnsupportedVariant(f"Invalid palette chunk (type 0x{pal_type:02X}, size {pal_size})")
    off += 10
    palette = _read_palette(data, off)
    off += 768

    image_start = off
    image_size = le_u32(data, off)
    image_type = le_u16(data, off + 4)
    if image_type != IMAGE_CHUNK:
        raise UnsupportedVariant(f"Invalid base image chunk type 0x{image_type:02X}")
    main_image = _read_base_image(data, off + 6, width, height)
    off = image_start + image_size

    frames: List[AnimFrame] = []
    for n in range(num_frames):
        _check_chunk(data, off, 1, f"frame {n}")
        off += CHUNK_HEADER_SIZE
        sub_start = off
        sub_size = le_u32(data, off)
        sub_type = le_u16(data, off + 4)
        if sub_type != DELTA_CHUNK:
            raise UnsupportedVariant(f"Invalid frame {n} sub-chunk type 0x{sub_type:02X}")
        y_offset = le_u16(data, off + 6)
        num_rows = le_u16(data, off + 8)
        indices, mask = _read_delta(data, off + 10, width, num_rows)
        frames.append(AnimFrame(y_offset, num_rows, indices, mask))
        off = sub_start + sub_size

    logger.debug("Animation %dx%d with %d frames", width, height, num_frames)
    return Animation(width, height, palette, main_image, frames)


def _apply_delta(indices: np.ndarray, frame: AnimFrame) -> None:
    rows = min(frame.num_rows, indices.shape[0] - frame.y_offset)
    if rows <= 0:
        return
    target = indices[frame.y_offset : frame.y_offset + rows]
    np.copyto(target, frame.indices[:rows], where=frame.mask[:rows])


def frame_indices(anim: Animation, index: int) -> np.ndarray:
    """Palette indices for ``index`` (clamped; -1 is the base image)."""
    index = anim.clamp_index(index)
    indices = anim.main_image.copy()
    for frame in anim.frames[: index + 1]:
        _apply_delta(indices, frame)
    return indices


def render_frame(anim: Animation, index: int) -> np.ndarray:
    return indices_to_rgba(frame_indices(anim, index), anim.palette)


def iter_frames(anim: Animation) -> Iterator[np.ndarray]:
    """Yield the base image, then every frame with its deltas accumulated."""
    indices = anim.main_image.copy()
    yield indices_to_rgba(indices, anim.palette)
    for frame in anim.frames:
        _apply_delta(indices, frame)
        yield indices_to_rgba(indices, anim.palette)


def frame_duration_ms(fps: float = DEFAULT_FPS) -> int:
    if fps <= 0:
        raise ValueError(f"fps must be positive, got {fps}")
    return int(round(1000 / fps))


def save_gif(frames: Sequence[np.ndarray], path: Union[str, pathlib.Path], fps: float = DEFAULT_FPS) -> None:
    if not frames:
        raise ValueError("No frames to write")
    images = [Image.fromarray(f).convert("RGB") for f in frames]
    images[0].save(
        path,
        save_all=True,
        append_images=images[1:],
        duration=frame_duration_ms(fps),
        loop=0,
    )
