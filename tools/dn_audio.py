"""
Audio decoding for Duke Nukem sound assets.

Current capabilities:
- Demux Creative VOC files into typed blocks (types 1, 2, 3, 8, 9).
- Decode the Creative 4-bit, 2.6-bit and 2-bit ADPCM variants with an
  explicit decoder state carried between continuation blocks.
- Convert AudioT AdLib sound effects to IMF register command streams and
  wrap raw music IMF with the size prefix and waveform enable.
- Synthesize PC speaker effects (AudioT and generation-1 SND banks) as
  unsigned 8-bit PCM.
- Index AUDIOHED/AUDIOT clips and write 8-bit mono WAV files.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import pathlib
import struct
import wave
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from dn_common import TruncatedInput, UnsupportedVariant, le_u8, le_u16, le_u24, le_u32

logger = logging.getLogger(__name__)

VOC_SIGNATURE = b"Creative Voice File"
VOC_HEADER_SIZE = 26

CODEC_PCM8 = 0x00
CODEC_ADPCM4 = 0x01
CODEC_ADPCM3 = 0x02
CODEC_ADPCM2 = 0x03

DEFAULT_SAMPLE_RATE = 11025
SILENCE = 0x80

PIT_CLOCK = 1193181
GEN1_PIT_CLOCK = 1193180
PC_SPEAKER_RATE = 140
PC_SPEAKER_MULTIPLIER = 60
OUTPUT_RATE = 22050
SQUARE_AMPLITUDE = 48
AUDIBLE_MIN_HZ = 100
AUDIBLE_MAX_HZ = 10000

ADLIB_TICKS_PER_NOTE = 2
SND_DIRECTORY_OFFSET = 0x10
SND_ENTRY_SIZE = 16


@dataclasses.dataclass(frozen=True)
class ADPCMState:
    reference: int = 0x80
    step: int = 1


@dataclasses.dataclass
class VocBlock:
    block_type: int
    offset: int
    length: int
    sample_rate: int = 0
    codec: int = CODEC_PCM8
    channels: int = 1
    bits: int = 8
    data: bytes = b""
    has_reference: bool = False
    silence_samples: int = 0
    supported: bool = True


@dataclasses.dataclass
class PcmBuffer:
    samples: bytes
    sample_rate: int


@dataclasses.dataclass(frozen=True)
class ImfCommand:
    reg: int
    value: int
    delay: int


@dataclasses.dataclass(frozen=True)
class SoundClip:
    id: int
    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start


@dataclasses.dataclass
class PcSound:
    length: int
    priority: int
    data: bytes


@dataclasses.dataclass
class SndEntry:
    name: str
    offset: int
    length: int
    divisors: List[int]


class SoundKind(enum.Enum):
    PC_SPEAKER = "pc_speaker"
    ADLIB = "adlib"


# --- ADPCM ------------------------------------------------------------------


def _clamp_u8(v: int) -> int:
    if v < 0:
        return 0
    if v > 255:
        return 255
    return v


def _step_4bit(code: int, reference: int, step: int) -> Tuple[int, int]:
    mag = code & 0x07
    delta = ((mag * step) & 0xFF) + step // 2
    reference = _clamp_u8(reference - delta if code & 0x08 else reference + delta)
    if mag == 0:
        step = max(step // 2, 1)
    elif mag >= 5:
        step *= 2
        if step == 0x10:
            step = 8
    return reference, step


def _step_3bit(code: int, reference: int, step: int) -> Tuple[int, int]:
    mag = code & 0x03
    delta = ((mag * step) & 0xFF) + step // 2
    reference = _clamp_u8(reference - delta if code & 0x04 else reference + delta)
    if mag == 0:
        step = max(step // 2, 1)
    elif mag == 0x03 and step != 0x10:
        step *= 2
    return reference, step


def _step_2bit(code: int, reference: int, step: int) -> Tuple[int, int]:
    negative = bool(code & 0x02)
    if code & 0x01:
        delta = step + step // 2
        reference = _clamp_u8(reference - delta if negative else reference + delta)
        if step != 0x20:
            step *= 2
        return reference, step
    step //= 2
    if step == 0:
        # Reference holds.
        return reference, 1
    reference = _clamp_u8(reference - step if negative else reference + step)
    return reference, step


def _units_4bit(b: int) -> Tuple[int, ...]:
    return (b >> 4, b & 0x0F)


def _units_3bit(b: int) -> Tuple[int, ...]:
    return ((b >> 5) & 0x07, (b >> 2) & 0x07, ((b & 0x02) << 1) | (b & 0x01))


def _units_2bit(b: int) -> Tuple[int, ...]:
    return ((b >> 6) & 0x03, (b >> 4) & 0x03, (b >> 2) & 0x03, b & 0x03)


_ADPCM_VARIANTS: Dict[int, Tuple[Callable[[int], Tuple[int, ...]], Callable[[int, int, int], Tuple[int, int]]]] = {
    CODEC_ADPCM4: (_units_4bit, _step_4bit),
    CODEC_ADPCM3: (_units_3bit, _step_3bit),
    CODEC_ADPCM2: (_units_2bit, _step_2bit),
}


def decode_adpcm(
    data: bytes,
    codec: int,
    has_reference_byte: bool,
    state: Optional[ADPCMState] = None,
) -> Tuple[Optional[bytes], ADPCMState]:
    """
    Decode one block of Creative ADPCM to unsigned 8-bit samples.

    With ``has_reference_byte`` the first byte is emitted verbatim, becomes the
    reference, and resets the step to 1. Otherwise decoding continues from
    ``state``. Returns ``(None, state)`` for an unknown codec.
    """
    if state is None:
        state = ADPCMState()
    if codec == CODEC_PCM8:
        return bytes(data), state
    variant = _ADPCM_VARIANTS.get(codec)
    if variant is None:
        return None, state
    units_of, step_fn = variant

    reference, step = state.reference, state.step
    out = bytearray()
    start = 0
    if has_reference_byte and len(data) > 0:
        reference = data[0]
        step = 1
        out.append(reference)
        start = 1
    for i in range(start, len(data)):
        for code in units_of(data[i]):
            reference, step = step_fn(code, reference, step)
            out.append(reference)
    return bytes(out), ADPCMState(reference, step)


# --- VOC --------------------------------------------------------------------


def _block1(data: bytes, off: int, length: int) -> VocBlock:
    blk = VocBlock(block_type=1, offset=off, length=length)
    if length < 2:
        blk.supported = False
        return blk
    tc = le_u8(data, off)
    blk.codec = le_u8(data, off + 1)
    blk.sample_rate = 1000000 // (256 - tc)
    blk.data = data[off + 2 : off + length]
    blk.has_reference = blk.codec in _ADPCM_VARIANTS
    return blk


def _block3(data: bytes, off: int, length: int) -> VocBlock:
    blk = VocBlock(block_type=3, offset=off, length=length)
    if length < 3:
        blk.supported = False
        return blk
    blk.silence_samples = le_u16(data, off) + 1
    blk.sample_rate = 1000000 // (256 - le_u8(data, off + 2))
    return blk


def _block8(data: bytes, off: int, length: int) -> VocBlock:
    blk = VocBlock(block_type=8, offset=off, length=length)
    if length < 4:
        blk.supported = False
        return blk
    freq_div = le_u16(data, off)
    blk.codec = le_u8(data, off + 2)
    blk.channels = le_u8(data, off + 3) + 1
    blk.sample_rate = 256000000 // (blk.channels * (65536 - freq_div))
    return blk


def _block9(data: bytes, off: int, length: int) -> VocBlock:
    blk = VocBlock(block_type=9, offset=off, length=length)
    if length < 12:
        blk.supported = False
        return blk
    blk.sample_rate = le_u32(data, off)
    blk.bits = le_u8(data, off + 4)
    blk.channels = le_u8(data, off + 5)
    blk.codec = le_u16(data, off + 6)
    blk.data = data[off + 12 : off + length]
    blk.supported = blk.codec == CODEC_PCM8 and blk.bits == 8 and blk.channels == 1
    if not blk.supported:
        logger.warning(
            "VOC block 9 @0x%X: unsupported %d-bit, %d channel, codec %d",
            off,
            blk.bits,
            blk.channels,
            blk.codec,
        )
    return blk


def parse_voc(buffer: bytes) -> List[VocBlock]:
    data = bytes(buffer)
    if not data.startswith(VOC_SIGNATURE):
        if len(data) < len(VOC_SIGNATURE):
            raise TruncatedInput(f"VOC header needs {len(VOC_SIGNATURE)} bytes, got {len(data)}")
        raise UnsupportedVariant("Missing 'Creative Voice File' signature")
    off = le_u16(data, 20)
    if off < VOC_HEADER_SIZE:
        raise UnsupportedVariant(f"VOC header size {off} is smaller than {VOC_HEADER_SIZE}")
    if off > len(data):
        raise TruncatedInput(f"VOC header size {off} runs past the {len(data)}-byte file")

    blocks: List[VocBlock] = []
    last_rate = DEFAULT_SAMPLE_RATE
    last_codec = CODEC_PCM8
    last_channels = 1
    while off < len(data):
        block_type = data[off]
        off += 1
        if block_type == 0:
            break
        if off + 3 > len(data):
            break
        length = le_u24(data, off)
        off += 3
        if off + length > len(data):
            logger.warning("VOC block %d @0x%X runs past end of file; stopping", block_type, off - 4)
            break

        if block_type == 1:
            blocks.append(_block1(data, off, length))
        elif block_type == 2:
            blocks.append(
                VocBlock(
                    block_type=2,
                    offset=off,
                    length=length,
                    sample_rate=last_rate,
                    codec=last_codec,
                    channels=last_channels,
                    data=data[off : off + length],
                )
            )
        elif block_type == 3:
            blocks.append(_block3(data, off, length))
        elif block_type == 8:
            blk = _block8(data, off, length)
            if blk.supported:
                last_rate, last_codec, last_channels = blk.sample_rate, blk.codec, blk.channels
            blocks.append(blk)
        elif block_type == 9:
            blocks.append(_block9(data, off, length))
        else:
            logger.warning("Skipping unknown VOC block type %d, length %d", block_type, length)
        off += length
    return blocks


def decode_voc(buffer: bytes) -> List[PcmBuffer]:
    """Decode every playable block; ADPCM state runs across the whole file."""
    state = ADPCMState()
    out: List[PcmBuffer] = []
    for blk in parse_voc(buffer):
        if not blk.supported:
            continue
        if blk.block_type in (1, 2):
            samples, state = decode_adpcm(blk.data, blk.codec, blk.has_reference, state)
            if samples is None:
                logger.warning("VOC block %d @0x%X: unsupported codec %d", blk.block_type, blk.offset, blk.codec)
                continue
            out.append(PcmBuffer(samples, blk.sample_rate))
        elif blk.block_type == 3:
            out.append(PcmBuffer(bytes([SILENCE]) * blk.silence_samples, blk.sample_rate))
        elif blk.block_type == 9:
            out.append(PcmBuffer(bytes(blk.data), blk.sample_rate))
    return out


def join_pcm(buffers: Sequence[PcmBuffer]) -> PcmBuffer:
    """Concatenate decoded blocks; the first block's rate wins."""
    if not buffers:
        return PcmBuffer(b"", DEFAULT_SAMPLE_RATE)
    return PcmBuffer(b"".join(b.samples for b in buffers), buffers[0].sample_rate)


# --- AdLib ------------------------------------------------------------------


def convert_adlib_effect(data: bytes) -> List[ImfCommand]:
    if len(data) < 23:
        raise TruncatedInput(f"AdLib effect header needs 23 bytes, got {len(data)}")
    length = le_u32(data, 0)
    inst = data[6:22]
    octave = data[22]
    notes = data[23 : 23 + length]

    cmds = [
        ImfCommand(0x20, inst[0], 0),
        ImfCommand(0x40, inst[2], 0),
        ImfCommand(0x60, inst[4], 0),
        ImfCommand(0x80, inst[6], 0),
        ImfCommand(0xE0, inst[8], 0),
        ImfCommand(0x23, inst[1], 0),
        ImfCommand(0x43, inst[3], 0),
        ImfCommand(0x63, inst[5], 0),
        ImfCommand(0x83, inst[7], 0),
        ImfCommand(0xE3, inst[9], 0),
        ImfCommand(0xC0, 0x00, 0),
        ImfCommand(0xB0, 0x00, 0),
    ]
    block = 0x20 | ((octave & 7) << 2)
    for note in notes:
        if note == 0:
            cmds.append(ImfCommand(0xB0, 0x00, ADLIB_TICKS_PER_NOTE))
        else:
            cmds.append(ImfCommand(0xA0, note, 0))
            cmds.append(ImfCommand(0xB0, block, ADLIB_TICKS_PER_NOTE))
    cmds.append(ImfCommand(0xB0, 0x00, 0))
    cmds.append(ImfCommand(0x00, 0x00, 0xFFFF))
    logger.debug("AdLib effect: %d notes -> %d commands", len(notes), len(cmds))
    return cmds


def imf_bytes(commands: Iterable[ImfCommand], with_header: bool = True) -> bytes:
    """
    Serialize IMF commands (reg, value, u16 delay). With ``with_header`` the
    stream gets a waveform-select enable command and a u16 byte-size prefix.
    """
    body = bytearray()
    if with_header:
        body += struct.pack("<BBH", 0x01, 0x20, 0)
    for c in commands:
        body += struct.pack("<BBH", c.reg & 0xFF, c.value & 0xFF, c.delay & 0xFFFF)
    if not with_header:
        return bytes(body)
    return struct.pack("<H", len(body) & 0xFFFF) + bytes(body)


def parse_imf_commands(data: bytes) -> List[ImfCommand]:
    """Split a raw IMF stream into commands; a trailing partial command is dropped."""
    count = len(data) // 4
    if len(data) % 4:
        logger.debug("IMF stream: dropping %d trailing bytes", len(data) % 4)
    return [ImfCommand(*struct.unpack_from("<BBH", data, i * 4)) for i in range(count)]


def patch_music_imf(data: bytes) -> bytes:
    """Wrap raw music IMF as a type-1 file: waveform enable first, u16 size prefix."""
    return imf_bytes(parse_imf_commands(data))


# --- PC speaker -------------------------------------------------------------


def _square_wave(half_periods: Iterable[Optional[float]], samples_per_unit: int, amplitude: int) -> bytes:
    # None = silence; silence also restarts the waveform phase.
    high = _clamp_u8(SILENCE + amplitude)
    low = _clamp_u8(SILENCE - amplitude)
    out = bytearray()
    phase = 0
    positive = True
    for half in half_periods:
        if half is None:
            out += bytes([SILENCE]) * samples_per_unit
            phase = 0
            positive = True
            continue
        for _ in range(samples_per_unit):
            out.append(high if positive else low)
            phase += 1
            if phase >= half:
                positive = not positive
                phase = 0
    return bytes(out)


def pc_speaker_tone(
    divisors: Sequence[int],
    sample_rate: int = OUTPUT_RATE,
    rate: int = PC_SPEAKER_RATE,
    multiplier: int = PC_SPEAKER_MULTIPLIER,
    amplitude: int = SQUARE_AMPLITUDE,
) -> bytes:
    """Render AudioT PC speaker bytes (one inverse frequency per tick) to u8 PCM."""
    samples_per_unit = sample_rate // rate
    halves = ((sample_rate * d * multiplier) / (2 * PIT_CLOCK) if d else None for d in divisors)
    return _square_wave(halves, samples_per_unit, amplitude)


def divisor_to_frequency(divisor: int) -> float:
    if divisor == 0:
        return 0.0
    freq = GEN1_PIT_CLOCK / divisor
    if freq < AUDIBLE_MIN_HZ or freq > AUDIBLE_MAX_HZ:
        return 0.0
    return freq


def snd_tone(
    divisors: Sequence[int],
    sample_rate: int = OUTPUT_RATE,
    rate: int = PC_SPEAKER_RATE,
    amplitude: int = SQUARE_AMPLITUDE,
) -> bytes:
    """Render generation-1 SND divisors to u8 PCM; inaudible divisors are silence."""
    samples_per_unit = sample_rate // rate
    halves = []
    for d in divisors:
        freq = divisor_to_frequency(d)
        halves.append(sample_rate / (2 * freq) if freq > 0 else None)
    return _square_wave(halves, samples_per_unit, amplitude)


# --- AUDIOHED / AUDIOT ------------------------------------------------------


def parse_audio_header(audiohed: bytes, audiot: bytes) -> List[SoundClip]:
    count = len(audiohed) // 4
    offsets = struct.unpack_from(f"<{count}I", audiohed, 0)
    clips: List[SoundClip] = []
    for i in range(count - 1):
        start, end = offsets[i], offsets[i + 1]
        if end > start and start < len(audiot) and end <= len(audiot):
            clips.append(SoundClip(i, start, end))
    logger.debug("AUDIOHED: %d offsets, %d clips", count, len(clips))
    return clips


def sound_kind(index: int) -> SoundKind:
    if 34 <= index < 68:
        return SoundKind.ADLIB
    return SoundKind.PC_SPEAKER


def parse_pc_sound(data: bytes) -> PcSound:
    length = le_u32(data, 0)
    priority = le_u16(data, 4)
    return PcSound(length=length, priority=priority, data=bytes(data[6 : 6 + length]))


def parse_snd_bank(data: bytes) -> List[SndEntry]:
    data = bytes(data)
    entries: List[SndEntry] = []
    off = SND_DIRECTORY_OFFSET
    while off + SND_ENTRY_SIZE <= len(data):
        snd_off = le_u16(data, off)
        snd_len = le_u16(data, off + 2)
        if snd_off == 0 and snd_len == 0:
            break
        name = data[off + 4 : off + 16].replace(b"\x00", b"").decode("ascii", errors="replace")
        divisors: List[int] = []
        end = min(snd_off + snd_len, len(data))
        pos = snd_off
        while pos + 2 <= end:
            d = le_u16(data, pos)
            if d in (0, 0xFFFF):
                break
            divisors.append(d)
            pos += 2
        if name.strip() and divisors:
            entries.append(SndEntry(name=name, offset=snd_off, length=snd_len, divisors=divisors))
        off += SND_ENTRY_SIZE
    return entries


# --- WAV --------------------------------------------------------------------


def write_pcm8_wav(path: pathlib.Path, samples: bytes, sample_rate: int) -> None:
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(1)
        wf.setframerate(max(1, int(sample_rate)))
        wf.writeframes(bytes(samples))
