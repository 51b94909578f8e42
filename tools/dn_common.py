"""
Shared helpers for the Duke Nukem asset decoders.

- Error taxonomy used by every decoder.
- Bounds-checked little-endian readers.
- JSON/YAML config loading for the CLI and actor atlases.
"""

from __future__ import annotations

import json
import pathlib
import struct
from typing import Any, Dict

import yaml


class AssetError(ValueError):
    """Base class for malformed or unsupported asset data."""


class TruncatedInput(AssetError):
    """Buffer is shorter than a format-mandated fixed size."""


class BoundsViolation(TruncatedInput):
    """A computed read would run past the end of the buffer."""


class UnsupportedVariant(AssetError):
    """Unknown codec id, tile mode, block type or palette size."""


def le_u8(data: bytes, off: int) -> int:
    if off < 0 or off >= len(data):
        raise BoundsViolation(f"Out-of-range u8 read @0x{off:X}")
    return data[off]


def le_s8(data: bytes, off: int) -> int:
    if off < 0 or off >= len(data):
        raise BoundsViolation(f"Out-of-range s8 read @0x{off:X}")
    return struct.unpack_from("<b", data, off)[0]


def le_u16(data: bytes, off: int) -> int:
    if off < 0 or (off + 2) > len(data):
        raise BoundsViolation(f"Out-of-range u16 read @0x{off:X}")
    return struct.unpack_from("<H", data, off)[0]


def le_u24(data: bytes, off: int) -> int:
    if off < 0 or (off + 3) > len(data):
        raise BoundsViolation(f"Out-of-range u24 read @0x{off:X}")
    return data[off] | (data[off + 1] << 8) | (data[off + 2] << 16)


def le_u32(data: bytes, off: int) -> int:
    if off < 0 or (off + 4) > len(data):
        raise BoundsViolation(f"Out-of-range u32 read @0x{off:X}")
    return struct.unpack_from("<I", data, off)[0]


def read_cstring(data: bytes, off: int, size: int) -> str:
    """Read a NUL-terminated ASCII field of at most ``size`` bytes."""
    if off < 0 or (off + size) > len(data):
        raise BoundsViolation(f"Out-of-range string read @0x{off:X}")
    raw = bytes(data[off : off + size])
    end = raw.find(b"\x00")
    if end >= 0:
        raw = raw[:end]
    return raw.decode("ascii", errors="replace")


def load_config(path: pathlib.Path) -> Dict[str, Any]:
    ext = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    if ext == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ValueError("Config root must be a mapping/object")
    return data


def load_records(path: pathlib.Path) -> Any:
    """Load a JSON/YAML document without constraining its root type."""
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        return json.loads(text)
    return yaml.safe_load(text)


def to_int(v: Any) -> int:
    if isinstance(v, bool):
        raise ValueError("Expected int-like value, got: bool")
    if isinstance(v, int):
        return int(v)
    if isinstance(v, str):
        return int(v, 0)
    raise ValueError(f"Expected int-like value, got: {type(v).__name__}")
