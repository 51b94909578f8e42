"""
Small generation-1 data files.

- KEYS.DN*: six keyboard scan codes, one per action.
- HIGHS.DN*: plain-text high score table, one "<score><name>" entry per line.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from typing import Dict, List, Optional

from dn_common import TruncatedInput

logger = logging.getLogger(__name__)

KEY_ACTIONS = ("Move Up", "Move Down", "Move Left", "Move Right", "Jump", "Fire")
MAX_HIGH_SCORES = 10
UNKNOWN_KEY = "Unknown"

# Set 1 scan codes for the keys the setup program offers.
SCAN_CODES: Dict[int, str] = {
    0x01: "Esc",
    0x0E: "Backspace",
    0x0F: "Tab",
    0x1A: "[",
    0x1B: "]",
    0x1C: "Enter",
    0x1D: "Ctrl",
    0x27: ";",
    0x28: "'",
    0x29: "`",
    0x2A: "LShift",
    0x2B: "\\",
    0x33: ",",
    0x34: ".",
    0x35: "/",
    0x36: "RShift",
    0x37: "PrtSc",
    0x38: "Alt",
    0x39: "Space",
    0x3A: "CapsLock",
    0x45: "NumLock",
    0x46: "ScrollLock",
    0x47: "Home",
    0x48: "Up",
    0x49: "PgUp",
    0x4A: "-",
    0x4B: "Left",
    0x4C: "Center",
    0x4D: "Right",
    0x4E: "+",
    0x4F: "End",
    0x50: "Down",
    0x51: "PgDn",
    0x52: "Ins",
    0x53: "Del",
}
SCAN_CODES.update({0x02 + i: ch for i, ch in enumerate("1234567890-=")})
SCAN_CODES.update({0x10 + i: ch for i, ch in enumerate("QWERTYUIOP")})
SCAN_CODES.update({0x1E + i: ch for i, ch in enumerate("ASDFGHJKL")})
SCAN_CODES.update({0x2C + i: ch for i, ch in enumerate("ZXCVBNM")})
SCAN_CODES.update({0x3B + i: f"F{i + 1}" for i in range(10)})

_SCORE_LINE = re.compile(r"^(\d+)(.*)$")


@dataclasses.dataclass(frozen=True)
class KeyBinding:
    action: str
    code: int
    key: str

    @property
    def hex(self) -> str:
        return f"0x{self.code:02X}"


@dataclasses.dataclass(frozen=True)
class HighScore:
    rank: int
    score: int
    name: str


def key_name(code: int) -> str:
    return SCAN_CODES.get(code, UNKNOWN_KEY)


def parse_keys(data: bytes) -> List[KeyBinding]:
    if len(data) < len(KEY_ACTIONS):
        raise TruncatedInput(f"KEYS file needs {len(KEY_ACTIONS)} bytes, got {len(data)}")
    if len(data) > len(KEY_ACTIONS):
        logger.debug("KEYS file: ignoring %d trailing bytes", len(data) - len(KEY_ACTIONS))
    return [KeyBinding(action, data[i], key_name(data[i])) for i, action in enumerate(KEY_ACTIONS)]


def parse_highscores(data: bytes) -> List[HighScore]:
    """
    Read up to ten entries. Blank lines are dropped first; a line that does
    not start with digits is skipped but still takes its rank.
    """
    text = data.decode("latin-1")
    lines = [line for line in re.split(r"\r\n|\n", text) if line.strip()]
    scores: List[HighScore] = []
    for index, line in enumerate(lines[:MAX_HIGH_SCORES]):
        m = _SCORE_LINE.match(line)
        if m is None:
            logger.debug("HIGHS line %d has no score: %r", index + 1, line)
            continue
        scores.append(HighScore(index + 1, int(m.group(1)), m.group(2) or "-"))
    return scores


def data_kind(name: str) -> Optional[str]:
    """'keys' or 'highs' from the file name prefix, else None."""
    upper = name.upper()
    if upper.startswith("KEYS"):
        return "keys"
    if upper.startswith("HIGHS"):
        return "highs"
    return None
