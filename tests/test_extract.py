import json
import struct

import pytest
from PIL import Image

from conftest import VOC_HEADER, build_animation, build_level, masked_tile, voc_block
from dn_common import UnsupportedVariant
from dn_extract import _job_argv, build_parser, main


def _run(capsys, *argv):
    rc = main([str(a) for a in argv])
    return rc, json.loads(capsys.readouterr().out)


def test_palette_info_with_swatch(tmp_path, capsys):
    pal = tmp_path / "GAME.PAL"
    pal.write_bytes(bytes([63, 0, 0]) + bytes(45))
    swatch = tmp_path / "swatch.png"
    rc, report = _run(capsys, "palette-info", "--input", pal, "--swatch", swatch)
    assert rc == 0
    assert report["entries"] == 16
    assert report["colors"][0] == "#ef0000"
    assert report["swatch"]["written"] is True
    assert Image.open(swatch).size == (256, 16)


def test_tile_sheet_masked(tmp_path, capsys):
    src = tmp_path / "ACTORS.MNI"
    src.write_bytes(masked_tile(b=0xFF) * 3 + b"\x00" * 7)
    out = tmp_path / "sheet.png"
    rc, report = _run(capsys, "tile-sheet", "--input", src, "--out", out, "--mode", "masked")
    assert rc == 0
    assert report["tiles"] == 3
    assert report["failed"] == 0
    assert report["tile_span"] == 40
    assert Image.open(out).size == (256, 8)


def test_tile_sheet_offset_outside_input(tmp_path, capsys):
    src = tmp_path / "tiles.bin"
    src.write_bytes(bytes(40))
    with pytest.raises(ValueError):
        main(["tile-sheet", "--input", str(src), "--out", str(tmp_path / "x.png"), "--offset", "0x100"])


def test_fullscreen_too_short_fails(tmp_path, capsys):
    src = tmp_path / "SCREEN.MNI"
    src.write_bytes(bytes(100))
    rc, report = _run(capsys, "fullscreen", "--input", src, "--out", tmp_path / "s.png")
    assert rc == 1
    assert report["written"] is False
    assert report["reason"] == "decode_failed"


def test_fullscreen_local_palette(tmp_path, capsys):
    src = tmp_path / "TITLE.MNI"
    src.write_bytes(bytes(32048))
    out = tmp_path / "title.png"
    rc, report = _run(capsys, "fullscreen", "--input", src, "--out", out)
    assert rc == 0
    assert report["local_palette"] is True
    assert Image.open(out).size == (320, 200)


def test_gen1_tileset(tmp_path, capsys):
    src = tmp_path / "FONT1.DN1"
    src.write_bytes(bytes(3) + bytes(40) * 4)
    out = tmp_path / "font.png"
    rc, report = _run(capsys, "gen1-tileset", "--input", src, "--out", out, "--columns", 2)
    assert rc == 0
    assert report["tiles"] == 4
    assert (report["tile_width"], report["tile_height"]) == (8, 8)
    assert Image.open(out).size == (16, 16)


def test_level_info_gen2_with_atlas(tmp_path, capsys):
    level = tmp_path / "E1L1.MNI"
    level.write_bytes(build_level(actors=[(37, 2, 2), (20, 9, 9)], cells=[16, 16, 8040]))
    atlas = tmp_path / "atlas.json"
    atlas.write_text(json.dumps([{"actorNum": 37, "type": "keyitem"}, {"actorNum": 20, "type": "powerup"}]))
    rc, report = _run(capsys, "level-info", "--input", level, "--atlas", atlas)
    assert rc == 0
    assert report["generation"] == 2
    assert report["czone"] == "CZONE1.MNI"
    assert (report["width"], report["height"]) == (64, 511)
    assert report["actor_count"] == 2
    assert report["stats"]["required"] == ["Circuit Card"]
    assert report["stats"]["counts"]["powerup"] == 1


def test_level_info_gen1(tmp_path, capsys):
    grid = [0x3011] + [0] * (128 * 90 - 1)
    level = tmp_path / "WORLDAL1.DN1"
    level.write_bytes(bytes(10) + struct.pack("<11520H", *grid))
    rc, report = _run(capsys, "level-info", "--input", level)
    assert rc == 0
    assert report["generation"] == 1
    assert report["header_size"] == 10
    assert report["sprite_histogram"] == {"3011": 1}


def test_voc_to_wav_split(tmp_path, capsys):
    src = tmp_path / "SFX.VOC"
    src.write_bytes(VOC_HEADER + voc_block(1, bytes([156, 0, 1, 2, 3])) + voc_block(3, struct.pack("<HB", 1, 156)) + b"\x00")
    out = tmp_path / "sfx.wav"
    rc, report = _run(capsys, "voc-to-wav", "--input", src, "--out", out, "--split")
    assert rc == 0
    assert [b["type"] for b in report["blocks"]] == [1, 3]
    assert (tmp_path / "sfx_00.wav").exists()
    assert (tmp_path / "sfx_01.wav").exists()


def test_audiot_export_records_bad_clip(tmp_path, capsys):
    pc = struct.pack("<IH", 3, 1) + bytes([0, 10, 0])
    audiot = tmp_path / "AUDIOT.MNI"
    audiot.write_bytes(pc + b"\x01\x02\x03")
    hed = tmp_path / "AUDIOHED.MNI"
    hed.write_bytes(struct.pack("<3I", 0, 9, 12))
    outdir = tmp_path / "sounds"
    rc, report = _run(capsys, "audiot-export", "--audiohed", hed, "--audiot", audiot, "--outdir", outdir)
    assert rc == 0
    assert report["sounds"] == 2
    manifest = json.loads((outdir / "manifest.json").read_text())
    ok, bad = manifest["files"]
    assert ok["written"] is True
    assert ok["kind"] == "pc_speaker"
    assert ok["priority"] == 1
    assert (outdir / "SOUND_000.wav").exists()
    assert bad["written"] is False
    assert "error" in bad


def test_snd_bank_export(tmp_path, capsys):
    data = bytearray(0x48)
    struct.pack_into("<HH12s", data, 0x10, 0x40, 8, b"JUMP")
    struct.pack_into("<4H", data, 0x40, 1193, 2000, 0, 0)
    src = tmp_path / "DUKE1.DN1"
    src.write_bytes(bytes(data))
    outdir = tmp_path / "snd"
    rc, report = _run(capsys, "snd-bank-export", "--input", src, "--outdir", outdir)
    assert rc == 0
    assert report["sounds"] == 1
    assert (outdir / "00_JUMP.wav").exists()


def test_actor_frames(tmp_path, capsys):
    graphics = tmp_path / "ACTORS.MNI"
    graphics.write_bytes(masked_tile(0xFF, 0xFF, 0xFF, 0xFF) * 4)
    atlas = tmp_path / "atlas.yaml"
    atlas.write_text(
        "- actorNum: 3\n"
        "  name: Drone\n"
        "  frames:\n"
        "    - {widthTiles: 2, heightTiles: 1, dataOffset: 0}\n"
        "    - {widthTiles: 9, heightTiles: 9, dataOffset: 0}\n",
        encoding="utf-8",
    )
    outdir = tmp_path / "actors"
    rc, report = _run(capsys, "actor-frames", "--graphics", graphics, "--atlas", atlas, "--outdir", outdir, "--all-frames")
    assert rc == 0
    assert report["actors"] == 1
    assert Image.open(outdir / "ACTOR_003.png").size == (16, 8)
    manifest = json.loads((outdir / "manifest.json").read_text())
    frames = manifest["actors"][0]["frames"]
    assert frames[0]["written"] is True
    assert frames[1] == {"path": str(outdir / "ACTOR_003_F01.png"), "written": False, "reason": "decode_failed"}


def test_gen1_sprites(tmp_path, capsys):
    srcdir = tmp_path / "dn1"
    srcdir.mkdir()
    (srcdir / "OBJECT1.DN1").write_bytes(bytes(3) + bytes(160))
    sprites = tmp_path / "sprites.json"
    sprites.write_text(
        json.dumps(
            {
                "3010": {"type": "bonus", "name": "Box", "file": "OBJECT1", "index": 0, "forceOpaque": True},
                "3020": {"type": "enemy", "name": "Ghost", "file": "ANIM9", "index": 0},
            }
        )
    )
    outdir = tmp_path / "out"
    rc, report = _run(capsys, "gen1-sprites", "--sprites", sprites, "--srcdir", srcdir, "--outdir", outdir)
    assert rc == 0
    assert report["sprites"] == 2
    manifest = json.loads((outdir / "manifest.json").read_text())
    assert manifest["tilesets"] == ["OBJECT1"]
    box, ghost = manifest["sprites"]
    assert box["written"] is True
    assert ghost["reason"] == "missing_tiles"


def test_anim_frames_pngs_and_gif(tmp_path, capsys):
    src = tmp_path / "NUKEM2.F1"
    rows = [bytes([1, 4, 5]), bytes([1, 4, 6])]
    src.write_bytes(build_animation(4, 2, rows, [(0, 1, [bytes([1, 0, 0xFF, 63])])]))
    outdir = tmp_path / "frames"
    gif = tmp_path / "anim.gif"
    rc, report = _run(capsys, "anim-frames", "--input", src, "--outdir", outdir, "--gif", gif, "--fps", 20)
    assert rc == 0
    assert report["frames"] == 2
    manifest = json.loads((outdir / "manifest.json").read_text())
    assert (manifest["width"], manifest["height"], manifest["frames"]) == (4, 2, 1)
    assert manifest["gif"]["duration_ms"] == 50
    with Image.open(outdir / "FRAME_001.png") as img:
        assert img.getpixel((0, 0)) == (255, 255, 255, 255)
        assert img.getpixel((1, 0)) == (20, 20, 20, 255)
    with Image.open(gif) as img:
        assert img.n_frames == 2


def test_music_to_imf(tmp_path, capsys):
    src = tmp_path / "MUSIC.RAW"
    src.write_bytes(struct.pack("<BBH", 0xA0, 0x41, 3) + b"\x07")
    out = tmp_path / "song.imf"
    rc, report = _run(capsys, "music-to-imf", "--input", src, "--out", out)
    assert rc == 0
    assert report["commands"] == 2
    data = out.read_bytes()
    assert data == struct.pack("<H", 8) + bytes([0x01, 0x20, 0x00, 0x00]) + struct.pack("<BBH", 0xA0, 0x41, 3)


def test_data_info_keys_and_highs(tmp_path, capsys):
    keys = tmp_path / "KEYS.DN1"
    keys.write_bytes(bytes([0x48, 0x50, 0x4B, 0x4D, 0x1D, 0x38]))
    rc, report = _run(capsys, "data-info", "--input", keys)
    assert rc == 0
    assert report["kind"] == "keys"
    assert report["keys"][4] == {"action": "Jump", "key": "Ctrl", "code": "0x1D"}

    highs = tmp_path / "HIGHS.DN1"
    highs.write_bytes(b"1000Duke\r\n500\r\n")
    rc, report = _run(capsys, "data-info", "--input", highs)
    assert report["scores"] == [{"rank": 1, "score": 1000, "name": "Duke"}, {"rank": 2, "score": 500, "name": "-"}]

    other = tmp_path / "SAVED.DN1"
    other.write_bytes(b"1000Duke")
    with pytest.raises(UnsupportedVariant):
        main(["data-info", "--input", str(other)])
    rc, report = _run(capsys, "data-info", "--input", other, "--kind", "highs")
    assert report["scores"][0]["score"] == 1000


def test_batch_runs_jobs_and_reports_failures(tmp_path, capsys):
    pal = tmp_path / "GAME.PAL"
    pal.write_bytes(bytes(768))
    summary = tmp_path / "summary.json"
    config = tmp_path / "jobs.yaml"
    config.write_text(
        "jobs:\n"
        f"  - {{cmd: palette-info, input: '{pal}'}}\n"
        f"  - {{cmd: palette-info, input: '{tmp_path / 'missing.pal'}'}}\n"
        "  - {cmd: batch, config: other.yaml}\n"
        "  - {cmd: tile-sheet}\n"
        "  - just a string\n",
        encoding="utf-8",
    )
    rc = main(["batch", "--config", str(config), "--json", str(summary)])
    assert rc == 1
    result = json.loads(summary.read_text())
    assert result["count"] == 5
    assert result["failures"] == 4
    ok, missing, nested, bad_args, not_a_job = result["jobs"]
    assert ok["ok"] is True
    assert missing["ok"] is False
    assert "nested" in nested["error"]
    assert "invalid job arguments" in bad_args["error"]
    assert not_a_job["ok"] is False


def test_job_argv_flags():
    argv = _job_argv({"cmd": "actor-frames", "all_frames": True, "split": False, "palette": ["a.pal", "b.pal"], "limit": 3})
    assert argv == ["actor-frames", "--all-frames", "--palette", "a.pal", "--palette", "b.pal", "--limit", "3"]
    args = build_parser().parse_args(["-v", "palette-info", "--input", "x.pal"])
    assert args.verbose is True
    assert args.cmd == "palette-info"
