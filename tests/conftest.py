import struct

import pytest

VOC_HEADER = b"Creative Voice File\x1a" + struct.pack("<HHH", 26, 0x010A, 0x1129)


def masked_tile(b=0, g=0, r=0, i=0, mask=0x00):
    """One 8x8 masked tile with the same bytes on every scanline."""
    return bytes([mask, b, g, r, i] * 8)


def voc_block(block_type, payload):
    n = len(payload)
    return bytes([block_type, n & 0xFF, (n >> 8) & 0xFF, (n >> 16) & 0xFF]) + payload


def build_level(width=64, actors=(), cells=None, aux=b"", czone=b"czone1.mni", actor_words=None, aux_len=None):
    actor_bytes = b"".join(struct.pack("<HHH", *a) for a in actors)
    header = bytearray(47)
    data_offset = 47 + len(actor_bytes)
    struct.pack_into("<H", header, 0, data_offset)
    header[2 : 2 + len(czone)] = czone
    struct.pack_into("<H", header, 45, len(actors) * 3 if actor_words is None else actor_words)
    grid = list(cells or [])
    grid += [0] * (32750 - len(grid))
    body = struct.pack("<H", width) + struct.pack("<32750H", *grid)
    body += struct.pack("<H", len(aux) if aux_len is None else aux_len) + aux
    return bytes(header) + actor_bytes + body


@pytest.fixture
def level_factory():
    return build_level


@pytest.fixture
def voc_factory():
    def make(*blocks, terminate=True):
        data = VOC_HEADER + b"".join(blocks)
        if terminate:
            data += b"\x00"
        return data

    return make


def build_animation(width, height, image_rows, frames=(), palette=None, marker=0xAF11, palette_size=778):
    """Animation file from pre-encoded RLE rows; frames are (y_offset, num_rows, rows)."""
    header = bytearray(128)
    struct.pack_into("<IHHHH", header, 0, 0, marker, len(frames), width, height)
    if palette is None:
        palette = bytes(v for k in range(256) for v in (k % 64,) * 3)
    pal_chunk = struct.pack("<IH", palette_size, 0x0B) + bytes(4) + bytes(palette)
    image = b"".join(image_rows)
    img_chunk = struct.pack("<IH", 6 + len(image), 0x0F) + image
    body = pal_chunk + img_chunk
    out = bytes(header) + struct.pack("<IHH", 16 + len(body), 0xF1FA, 2) + bytes(8) + body
    for y_offset, num_rows, rows in frames:
        payload = b"".join(rows)
        sub = struct.pack("<IHHH", 10 + len(payload), 0x0C, y_offset, num_rows) + payload
        out += struct.pack("<IHH", 16 + len(sub), 0xF1FA, 1) + bytes(8) + sub
    return out
