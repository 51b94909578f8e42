#!/usr/bin/env python3
"""
Duke Nukem 1/2 asset extraction helper.

Current capabilities:
- Palette inspection (48-byte fade, 768/64768-byte VGA) with swatch PNGs.
- Tile sheets for every planar layout, CZONE tilesets, full-screen images
  and generation-1 tilesets -> PNG.
- Level summaries (grid size, CZONE, actors, tile usage, optional census).
- VOC -> WAV, AUDIOHED/AUDIOT effects -> WAV (PC speaker) or IMF (AdLib),
  generation-1 SND banks -> WAV, raw music -> type-1 IMF.
- Cutscene animations -> PNG frames or an animated GIF.
- KEYS and HIGHS data files -> JSON.
- Actor frames and metaframes from ACTORS.MNI + an atlas -> PNG.
- Config-driven batches (JSON/YAML) of any of the above.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import pathlib
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from dn_actors import SpriteCompositor, build_sprite, load_atlas, load_sprite_map, sprite_files
from dn_anim import DEFAULT_FPS, frame_duration_ms, iter_frames, parse_animation, save_gif
from dn_audio import (
    OUTPUT_RATE,
    SoundKind,
    convert_adlib_effect,
    decode_voc,
    imf_bytes,
    join_pcm,
    parse_audio_header,
    parse_imf_commands,
    parse_pc_sound,
    parse_snd_bank,
    parse_voc,
    patch_music_imf,
    pc_speaker_tone,
    snd_tone,
    sound_kind,
    write_pcm8_wav,
)
from dn_common import AssetError, UnsupportedVariant, load_config, to_int
from dn_data import data_kind, parse_highscores, parse_keys
from dn_ega import (
    DEBUG_PLACEHOLDER,
    EGA_PALETTE,
    GREY_PALETTE,
    Palette,
    TileLayoutMode,
    build_czone_sheet,
    build_sheet,
    decode_fullscreen,
    decode_tiles,
    gen1_tile_geometry,
    load_czone,
    load_gen1_tileset,
    load_palette,
    save_png,
    tile_span,
)
from dn_level import parse_level, parse_level_gen1, summarize_actors, summarize_gen1

logger = logging.getLogger(__name__)

SWATCH = 16


def _write_manifest(out_dir: pathlib.Path, report: Dict[str, Any]) -> pathlib.Path:
    out_manifest = out_dir / "manifest.json"
    out_manifest.write_text(json.dumps(report, indent=2), encoding="utf-8")
    return out_manifest


def _palette_arg(path: Optional[str], default: Palette) -> Palette:
    if not path:
        return default
    return load_palette(pathlib.Path(path).read_bytes())


def _export_png(out_path: pathlib.Path, rgba: Optional[np.ndarray]) -> Dict[str, object]:
    rec: Dict[str, object] = {"path": str(out_path), "written": False}
    if rgba is None:
        rec["reason"] = "decode_failed"
        return rec
    if rgba.size == 0:
        rec["reason"] = "empty_raster"
        return rec
    out_path.parent.mkdir(parents=True, exist_ok=True)
    save_png(rgba, out_path)
    rec["width"] = int(rgba.shape[1])
    rec["height"] = int(rgba.shape[0])
    rec["written"] = True
    return rec


def _export_wav(out_path: pathlib.Path, samples: bytes, sample_rate: int) -> Dict[str, object]:
    rec: Dict[str, object] = {
        "path": str(out_path),
        "sample_rate": int(sample_rate),
        "sample_count": len(samples),
        "written": False,
    }
    if not samples:
        rec["reason"] = "empty_pcm"
        return rec
    out_path.parent.mkdir(parents=True, exist_ok=True)
    write_pcm8_wav(out_path, samples, sample_rate)
    rec["written"] = True
    return rec


def _palette_swatch(palette: Palette, columns: int = 16) -> np.ndarray:
    rows = (len(palette) + columns - 1) // columns
    img = np.zeros((rows * SWATCH, columns * SWATCH, 4), dtype=np.uint8)
    for i, (r, g, b) in enumerate(palette):
        x = (i % columns) * SWATCH
        y = (i // columns) * SWATCH
        img[y : y + SWATCH, x : x + SWATCH] = (r, g, b, 255)
    return img


# --- graphics ---------------------------------------------------------------


def cmd_palette_info(args: argparse.Namespace) -> int:
    raw = pathlib.Path(args.input).read_bytes()
    palette = load_palette(raw)
    report: Dict[str, Any] = {
        "input": args.input,
        "size": len(raw),
        "entries": len(palette),
        "colors": [f"#{r:02x}{g:02x}{b:02x}" for r, g, b in palette],
    }
    if args.swatch:
        report["swatch"] = _export_png(pathlib.Path(args.swatch), _palette_swatch(palette))
    if args.json:
        pathlib.Path(args.json).write_text(json.dumps(report, indent=2), encoding="utf-8")
    print(json.dumps(report, indent=2))
    return 0


def cmd_tile_sheet(args: argparse.Namespace) -> int:
    raw = pathlib.Path(args.input).read_bytes()
    mode = TileLayoutMode(args.mode)
    palette = _palette_arg(args.palette, GREY_PALETTE)
    offset = to_int(args.offset)
    if offset < 0 or offset > len(raw):
        raise ValueError(f"Offset 0x{offset:X} outside input of {len(raw)} bytes")
    tiles = decode_tiles(raw[offset:], mode, args.count, palette)
    if mode is TileLayoutMode.FULL_SCREEN_PLANAR:
        sheet = build_sheet(tiles, 1, 320, 200, DEBUG_PLACEHOLDER)
    else:
        sheet = build_sheet(tiles, args.columns, placeholder=DEBUG_PLACEHOLDER)
    rec = _export_png(pathlib.Path(args.out), sheet)
    rec.update(
        {
            "input": args.input,
            "mode": mode.value,
            "offset": offset,
            "tile_span": tile_span(mode),
            "tiles": len(tiles),
            "failed": sum(1 for t in tiles if t is None),
        }
    )
    print(json.dumps(rec, indent=2))
    return 0


def cmd_czone_sheet(args: argparse.Namespace) -> int:
    raw = pathlib.Path(args.input).read_bytes()
    palette = _palette_arg(args.palette, GREY_PALETTE)
    czone = load_czone(raw, palette, TileLayoutMode(args.mode))
    rec = _export_png(pathlib.Path(args.out), build_czone_sheet(czone, args.columns))
    rec.update(
        {
            "input": args.input,
            "solid_tiles": sum(1 for t in czone.solid if t is not None),
            "masked_tiles": sum(1 for t in czone.masked if t is not None),
        }
    )
    print(json.dumps(rec, indent=2))
    return 0


def cmd_fullscreen(args: argparse.Namespace) -> int:
    raw = pathlib.Path(args.input).read_bytes()
    palette = _palette_arg(args.palette, EGA_PALETTE) if args.palette else None
    img = decode_fullscreen(raw, palette)
    rec = _export_png(pathlib.Path(args.out), img.rgba if img is not None else None)
    rec.update({"input": args.input, "size": len(raw), "local_palette": len(raw) == 32048})
    print(json.dumps(rec, indent=2))
    return 0 if rec["written"] else 1


def cmd_gen1_tileset(args: argparse.Namespace) -> int:
    path = pathlib.Path(args.input)
    palette = _palette_arg(args.palette, EGA_PALETTE)
    tiles = load_gen1_tileset(path.stem, path.read_bytes(), palette)
    w, h = gen1_tile_geometry(path.stem)
    rec = _export_png(pathlib.Path(args.out), build_sheet(tiles, args.columns, w, h))
    rec.update({"input": args.input, "tiles": len(tiles), "tile_width": w, "tile_height": h})
    print(json.dumps(rec, indent=2))
    return 0


# --- levels -----------------------------------------------------------------


def _detect_generation(path: pathlib.Path, forced: Optional[int]) -> int:
    if forced:
        return forced
    return 2 if path.suffix.lower() == ".mni" else 1


def cmd_level_info(args: argparse.Namespace) -> int:
    path = pathlib.Path(args.input)
    raw = path.read_bytes()
    gen = _detect_generation(path, args.gen)
    report: Dict[str, Any] = {"input": args.input, "generation": gen, "size": len(raw)}
    if gen == 2:
        level = parse_level(raw)
        usage = level.tile_usage()
        report.update(
            {
                "czone": level.czone,
                "width": level.width,
                "height": level.height,
                "actor_count": len(level.actors),
                "actor_histogram": {str(k): v for k, v in sorted(level.actor_histogram().items())},
                "distinct_bg_tiles": len(usage["bg"]),
                "distinct_fg_tiles": len(usage["fg"]),
            }
        )
        if args.atlas:
            atlas = load_atlas(pathlib.Path(args.atlas))
            report["stats"] = summarize_actors(level, atlas.type_of, args.difficulty).to_json()
    else:
        level1 = parse_level_gen1(raw)
        sprite_ids = level1.sprite_ids()
        report.update(
            {
                "width": level1.width,
                "height": level1.height,
                "header_size": level1.header_size,
                "sprite_count": len(sprite_ids),
                "sprite_histogram": {f"{k:04X}": sprite_ids.count(k) for k in sorted(set(sprite_ids))},
            }
        )
        if args.sprites:
            sprite_map = load_sprite_map(pathlib.Path(args.sprites))
            meta = {sid: (d.type, d.name) for sid, d in sprite_map.items()}
            report["stats"] = summarize_gen1(level1, meta).to_json()
    if args.json:
        pathlib.Path(args.json).write_text(json.dumps(report, indent=2), encoding="utf-8")
    print(json.dumps(report, indent=2))
    return 0


# --- audio ------------------------------------------------------------------


def cmd_voc_to_wav(args: argparse.Namespace) -> int:
    raw = pathlib.Path(args.input).read_bytes()
    blocks = parse_voc(raw)
    buffers = decode_voc(raw)
    out = pathlib.Path(args.out)
    recs: List[Dict[str, object]] = []
    if args.split:
        for i, buf in enumerate(buffers):
            recs.append(_export_wav(out.with_name(f"{out.stem}_{i:02d}.wav"), buf.samples, buf.sample_rate))
    else:
        joined = join_pcm(buffers)
        recs.append(_export_wav(out, joined.samples, joined.sample_rate))
    report = {
        "input": args.input,
        "blocks": [
            {
                "type": b.block_type,
                "offset": b.offset,
                "length": b.length,
                "sample_rate": b.sample_rate,
                "codec": b.codec,
                "supported": b.supported,
            }
            for b in blocks
        ],
        "files": recs,
    }
    print(json.dumps(report, indent=2))
    return 0


def _export_audiot_clip(out_dir: pathlib.Path, clip_id: int, data: bytes) -> Dict[str, object]:
    kind = sound_kind(clip_id)
    rec: Dict[str, object]
    try:
        if kind is SoundKind.ADLIB:
            out_path = out_dir / f"SOUND_{clip_id:03d}.imf"
            out_path.write_bytes(imf_bytes(convert_adlib_effect(data)))
            rec = {"path": str(out_path), "written": True}
        else:
            snd = parse_pc_sound(data)
            rec = _export_wav(out_dir / f"SOUND_{clip_id:03d}.wav", pc_speaker_tone(snd.data), OUTPUT_RATE)
            rec["priority"] = snd.priority
    except AssetError as exc:
        rec = {"written": False, "error": str(exc)}
    rec["id"] = clip_id
    rec["kind"] = kind.value
    return rec


def cmd_audiot_export(args: argparse.Namespace) -> int:
    hed = pathlib.Path(args.audiohed).read_bytes()
    audiot = pathlib.Path(args.audiot).read_bytes()
    out_dir = pathlib.Path(args.outdir)
    out_dir.mkdir(parents=True, exist_ok=True)
    clips = parse_audio_header(hed, audiot)
    if args.limit is not None:
        clips = clips[: int(args.limit)]
    files = [_export_audiot_clip(out_dir, c.id, audiot[c.start : c.end]) for c in clips]
    report = {
        "audiohed": args.audiohed,
        "audiot": args.audiot,
        "outdir": str(out_dir),
        "files": files,
        "count": len(files),
    }
    out_manifest = _write_manifest(out_dir, report)
    print(json.dumps({"manifest": str(out_manifest), "sounds": len(files)}, indent=2))
    return 0


def cmd_snd_bank_export(args: argparse.Namespace) -> int:
    raw = pathlib.Path(args.input).read_bytes()
    out_dir = pathlib.Path(args.outdir)
    out_dir.mkdir(parents=True, exist_ok=True)
    files: List[Dict[str, object]] = []
    for i, entry in enumerate(parse_snd_bank(raw)):
        safe = "".join(ch if ch.isalnum() else "_" for ch in entry.name.strip()) or f"SND{i}"
        rec = _export_wav(out_dir / f"{i:02d}_{safe}.wav", snd_tone(entry.divisors), OUTPUT_RATE)
        rec.update({"name": entry.name, "offset": entry.offset, "divisors": len(entry.divisors)})
        files.append(rec)
    report = {"input": args.input, "outdir": str(out_dir), "files": files, "count": len(files)}
    out_manifest = _write_manifest(out_dir, report)
    print(json.dumps({"manifest": str(out_manifest), "sounds": len(files)}, indent=2))
    return 0


def cmd_music_to_imf(args: argparse.Namespace) -> int:
    raw = pathlib.Path(args.input).read_bytes()
    out = pathlib.Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    patched = patch_music_imf(raw)
    out.write_bytes(patched)
    report = {
        "input": args.input,
        "path": str(out),
        "commands": len(parse_imf_commands(raw)) + 1,
        "size": len(patched),
    }
    print(json.dumps(report, indent=2))
    return 0


# --- sprites ----------------------------------------------------------------


def cmd_actor_frames(args: argparse.Namespace) -> int:
    graphics = pathlib.Path(args.graphics).read_bytes()
    atlas = load_atlas(pathlib.Path(args.atlas))
    palettes = [load_palette(pathlib.Path(p).read_bytes()) for p in (args.palette or [])]
    comp = SpriteCompositor(graphics, atlas, palettes)
    out_dir = pathlib.Path(args.outdir)
    out_dir.mkdir(parents=True, exist_ok=True)

    actors: List[Dict[str, object]] = []
    for entry in atlas.sorted(args.sort):
        meta = comp.get_metaframe(entry.actor_num)
        rec: Dict[str, object] = {
            "actor": entry.actor_num,
            "name": entry.name,
            "type": entry.type,
            "palette": entry.palette,
            "metaframe": _export_png(
                out_dir / f"ACTOR_{entry.actor_num:03d}.png", meta.rgba if meta is not None else None
            ),
        }
        if meta is not None:
            rec["hotspot"] = [meta.hotspot_x, meta.hotspot_y]
        if args.all_frames:
            frames = []
            for fi in range(len(entry.frames)):
                raster = comp.get_frame(entry.actor_num, fi)
                frames.append(
                    _export_png(
                        out_dir / f"ACTOR_{entry.actor_num:03d}_F{fi:02d}.png",
                        raster.rgba if raster is not None else None,
                    )
                )
            rec["frames"] = frames
        actors.append(rec)
    report = {
        "graphics": args.graphics,
        "atlas": args.atlas,
        "outdir": str(out_dir),
        "actors": actors,
        "count": len(actors),
        "cache_entries": len(comp.cache),
    }
    out_manifest = _write_manifest(out_dir, report)
    print(json.dumps({"manifest": str(out_manifest), "actors": len(actors)}, indent=2))
    return 0


def cmd_gen1_sprites(args: argparse.Namespace) -> int:
    sprite_map = load_sprite_map(pathlib.Path(args.sprites))
    src_dir = pathlib.Path(args.srcdir)
    ext = args.ext if args.ext.startswith(".") else "." + args.ext
    palette = _palette_arg(args.palette, EGA_PALETTE)
    out_dir = pathlib.Path(args.outdir)
    out_dir.mkdir(parents=True, exist_ok=True)

    needed = sorted({f for d in sprite_map.values() for f in sprite_files(d)})
    tilesets = {}
    for name in needed:
        path = src_dir / f"{name}{ext}"
        if not path.exists():
            logger.warning("Sprite source %s not found", path)
            continue
        tilesets[name] = load_gen1_tileset(name, path.read_bytes(), palette)

    sprites: List[Dict[str, object]] = []
    for sid, defn in sorted(sprite_map.items()):
        built = build_sprite(defn, tilesets)
        rec: Dict[str, object] = {"id": f"{sid:04X}", "name": defn.name, "type": defn.type}
        if built is None:
            rec.update({"written": False, "reason": "missing_tiles"})
        else:
            rec.update(_export_png(out_dir / f"SPRITE_{sid:04X}.png", built[1]))
        sprites.append(rec)
    report = {"sprites": sprites, "count": len(sprites), "tilesets": sorted(tilesets)}
    out_manifest = _write_manifest(out_dir, report)
    print(json.dumps({"manifest": str(out_manifest), "sprites": len(sprites)}, indent=2))
    return 0


# --- animations and data files ----------------------------------------------


def cmd_anim_frames(args: argparse.Namespace) -> int:
    anim = parse_animation(pathlib.Path(args.input).read_bytes())
    out_dir = pathlib.Path(args.outdir)
    out_dir.mkdir(parents=True, exist_ok=True)
    frames = list(iter_frames(anim))
    if args.limit is not None:
        frames = frames[: int(args.limit)]
    files = [_export_png(out_dir / f"FRAME_{i:03d}.png", rgba) for i, rgba in enumerate(frames)]
    report: Dict[str, Any] = {
        "input": args.input,
        "outdir": str(out_dir),
        "width": anim.width,
        "height": anim.height,
        "frames": len(anim.frames),
        "files": files,
        "count": len(files),
    }
    if args.gif:
        save_gif(frames, args.gif, args.fps)
        report["gif"] = {"path": args.gif, "fps": args.fps, "duration_ms": frame_duration_ms(args.fps)}
    out_manifest = _write_manifest(out_dir, report)
    print(json.dumps({"manifest": str(out_manifest), "frames": len(files)}, indent=2))
    return 0


def cmd_data_info(args: argparse.Namespace) -> int:
    path = pathlib.Path(args.input)
    kind = args.kind or data_kind(path.name)
    if kind is None:
        raise UnsupportedVariant(f"Unknown data file {path.name}; pass --kind")
    raw = path.read_bytes()
    report: Dict[str, Any] = {"input": args.input, "kind": kind}
    if kind == "keys":
        report["keys"] = [{"action": k.action, "key": k.key, "code": k.hex} for k in parse_keys(raw)]
    else:
        report["scores"] = [dataclasses.asdict(s) for s in parse_highscores(raw)]
    if args.json:
        pathlib.Path(args.json).write_text(json.dumps(report, indent=2), encoding="utf-8")
    print(json.dumps(report, indent=2))
    return 0


# --- batch ------------------------------------------------------------------


def _job_argv(job: Dict[str, Any]) -> List[str]:
    argv = [str(job["cmd"])]
    for key, value in job.items():
        if key == "cmd" or value is None or value is False:
            continue
        flag = "--" + key.replace("_", "-")
        if value is True:
            argv.append(flag)
        elif isinstance(value, list):
            for v in value:
                argv.extend([flag, str(v)])
        else:
            argv.extend([flag, str(value)])
    return argv


def cmd_batch(args: argparse.Namespace) -> int:
    cfg = load_config(pathlib.Path(args.config))
    jobs = cfg.get("jobs", [])
    if not isinstance(jobs, list):
        raise ValueError("Config 'jobs' must be a list")
    parser = build_parser()
    results: List[Dict[str, Any]] = []
    failures = 0
    for i, job in enumerate(jobs):
        if not isinstance(job, dict) or "cmd" not in job:
            results.append({"index": i, "ok": False, "error": "job must be a mapping with 'cmd'"})
            failures += 1
            continue
        if job["cmd"] == "batch":
            results.append({"index": i, "cmd": "batch", "ok": False, "error": "nested batch jobs are not allowed"})
            failures += 1
            continue
        rec: Dict[str, Any] = {"index": i, "cmd": job["cmd"]}
        try:
            sub_args = parser.parse_args(_job_argv(job))
        except SystemExit as exc:
            results.append({**rec, "ok": False, "error": f"invalid job arguments (exit {exc.code})"})
            failures += 1
            continue
        try:
            rc = int(sub_args.func(sub_args))
            rec["ok"] = rc == 0
            rec["exit_code"] = rc
        except (AssetError, OSError, ValueError) as exc:
            logger.warning("Batch job %d (%s) failed: %s", i, job["cmd"], exc)
            rec["ok"] = False
            rec["error"] = str(exc)
        if not rec["ok"]:
            failures += 1
        results.append(rec)
    summary = {"config": args.config, "jobs": results, "count": len(results), "failures": failures}
    if args.json:
        pathlib.Path(args.json).write_text(json.dumps(summary, indent=2), encoding="utf-8")
    print(json.dumps({"jobs": len(results), "failures": failures}, indent=2))
    return 0 if failures == 0 else 1


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Duke Nukem 1/2 asset extraction helper")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    mode_choices = [m.value for m in TileLayoutMode]

    ppi = sub.add_parser("palette-info", help="Decode a .PAL file (48/768/64768 bytes) and list its colors")
    ppi.add_argument("--input", required=True, help="Palette file")
    ppi.add_argument("--swatch", help="Optional PNG swatch output path")
    ppi.add_argument("--json", help="Optional output JSON path")
    ppi.set_defaults(func=cmd_palette_info)

    pts = sub.add_parser("tile-sheet", help="Decode planar tiles from any file into a PNG sheet")
    pts.add_argument("--input", required=True, help="Graphics file (e.g. ACTORS.MNI, DROP*.MNI)")
    pts.add_argument("--out", required=True, help="Output PNG path")
    pts.add_argument("--mode", default=TileLayoutMode.MASKED.value, choices=mode_choices, help="Tile layout")
    pts.add_argument("--offset", default="0", help="Start offset in bytes (hex or int)")
    pts.add_argument("--count", type=int, help="Number of tiles (default: as many as fit)")
    pts.add_argument("--columns", type=int, default=32, help="Tiles per sheet row (default: 32)")
    pts.add_argument("--palette", help="Optional .PAL file (default: grey ramp)")
    pts.set_defaults(func=cmd_tile_sheet)

    pcz = sub.add_parser("czone-sheet", help="Render a CZONE tileset (solid + masked) to PNG")
    pcz.add_argument("--input", required=True, help="CZONE*.MNI file")
    pcz.add_argument("--out", required=True, help="Output PNG path")
    pcz.add_argument("--palette", help="Optional .PAL file (default: grey ramp)")
    pcz.add_argument(
        "--mode",
        default=TileLayoutMode.SOLID_CZONE_INTERLEAVED.value,
        choices=[TileLayoutMode.SOLID_CZONE_INTERLEAVED.value, TileLayoutMode.SOLID_LOCAL.value],
        help="Solid tile layout",
    )
    pcz.add_argument("--columns", type=int, default=40, help="Tiles per sheet row (default: 40)")
    pcz.set_defaults(func=cmd_czone_sheet)

    pfs = sub.add_parser("fullscreen", help="Render a 320x200 planar screen to PNG")
    pfs.add_argument("--input", required=True, help="Screen file (32000 or 32048 bytes)")
    pfs.add_argument("--out", required=True, help="Output PNG path")
    pfs.add_argument("--palette", help="Optional .PAL file when the screen has no local palette")
    pfs.set_defaults(func=cmd_fullscreen)

    pg1 = sub.add_parser("gen1-tileset", help="Render a generation-1 tileset (SOLID/BACK/OBJECT/ANIM/FONT..) to PNG")
    pg1.add_argument("--input", required=True, help="Tileset file, e.g. SOLID0.DN1")
    pg1.add_argument("--out", required=True, help="Output PNG path")
    pg1.add_argument("--columns", type=int, default=16, help="Tiles per sheet row (default: 16)")
    pg1.add_argument("--palette", help="Optional .PAL file (default: standard EGA)")
    pg1.set_defaults(func=cmd_gen1_tileset)

    pli = sub.add_parser("level-info", help="Summarize a level file")
    pli.add_argument("--input", required=True, help="Level file (*.MNI or WORLDAL*.DN*)")
    pli.add_argument("--gen", type=int, choices=[1, 2], help="Force generation (default: by extension)")
    pli.add_argument("--atlas", help="Actor atlas JSON/YAML for the generation-2 census")
    pli.add_argument("--sprites", help="Sprite map JSON/YAML for the generation-1 census")
    pli.add_argument("--difficulty", type=int, default=0, choices=[0, 1, 2], help="0 easy, 1 medium, 2 hard")
    pli.add_argument("--json", help="Optional output JSON path")
    pli.set_defaults(func=cmd_level_info)

    pvw = sub.add_parser("voc-to-wav", help="Decode a Creative VOC file (PCM/ADPCM) to WAV")
    pvw.add_argument("--input", required=True, help="VOC file")
    pvw.add_argument("--out", required=True, help="Output WAV path")
    pvw.add_argument("--split", action="store_true", help="Write one WAV per sound block")
    pvw.set_defaults(func=cmd_voc_to_wav)

    pae = sub.add_parser("audiot-export", help="Export AUDIOT sound effects (PC speaker -> WAV, AdLib -> IMF)")
    pae.add_argument("--audiohed", required=True, help="AUDIOHED.MNI")
    pae.add_argument("--audiot", required=True, help="AUDIOT.MNI")
    pae.add_argument("--outdir", required=True, help="Output folder")
    pae.add_argument("--limit", type=int, help="Optional max clips")
    pae.set_defaults(func=cmd_audiot_export)

    psb = sub.add_parser("snd-bank-export", help="Export a generation-1 SND bank to WAV files")
    psb.add_argument("--input", required=True, help="SND bank, e.g. DUKE1.DN1")
    psb.add_argument("--outdir", required=True, help="Output folder")
    psb.set_defaults(func=cmd_snd_bank_export)

    paf = sub.add_parser("actor-frames", help="Render actor metaframes (and optionally all frames) to PNG")
    paf.add_argument("--graphics", required=True, help="ACTORS.MNI")
    paf.add_argument("--atlas", required=True, help="Actor atlas JSON/YAML")
    paf.add_argument("--palette", action="append", help="Palette file; repeat in palette-id order")
    paf.add_argument("--outdir", required=True, help="Output folder")
    paf.add_argument("--sort", default="default", choices=["default", "name", "type", "size"], help="Actor order")
    paf.add_argument("--all-frames", action="store_true", help="Also write every individual frame")
    paf.set_defaults(func=cmd_actor_frames)

    pgs = sub.add_parser("gen1-sprites", help="Render generation-1 sprites from a sprite map to PNG")
    pgs.add_argument("--sprites", required=True, help="Sprite map JSON/YAML (hex id -> definition)")
    pgs.add_argument("--srcdir", required=True, help="Folder holding the episode tilesets")
    pgs.add_argument("--ext", default=".DN1", help="Episode extension (default: .DN1)")
    pgs.add_argument("--palette", help="Optional .PAL file (default: standard EGA)")
    pgs.add_argument("--outdir", required=True, help="Output folder")
    pgs.set_defaults(func=cmd_gen1_sprites)

    pmi = sub.add_parser("music-to-imf", help="Wrap raw music IMF as a playable type-1 IMF")
    pmi.add_argument("--input", required=True, help="Raw music file, e.g. from MUSIC*.MNI")
    pmi.add_argument("--out", required=True, help="Output IMF path")
    pmi.set_defaults(func=cmd_music_to_imf)

    pan = sub.add_parser("anim-frames", help="Render a cutscene animation to PNG frames (and optionally a GIF)")
    pan.add_argument("--input", required=True, help="Animation file, e.g. NUKEM2.F1")
    pan.add_argument("--outdir", required=True, help="Output folder")
    pan.add_argument("--limit", type=int, help="Optional max frames, base image included")
    pan.add_argument("--gif", help="Optional animated GIF output path")
    pan.add_argument("--fps", type=float, default=DEFAULT_FPS, help=f"GIF frame rate (default: {DEFAULT_FPS})")
    pan.set_defaults(func=cmd_anim_frames)

    pdi = sub.add_parser("data-info", help="Decode a KEYS.DN* or HIGHS.DN* file")
    pdi.add_argument("--input", required=True, help="Data file")
    pdi.add_argument("--kind", choices=["keys", "highs"], help="Force file kind (default: by file name)")
    pdi.add_argument("--json", help="Optional output JSON path")
    pdi.set_defaults(func=cmd_data_info)

    pb = sub.add_parser("batch", help="Run a list of jobs from a JSON/YAML config")
    pb.add_argument("--config", required=True, help="Config file (.json/.yaml/.yml) with a 'jobs' list")
    pb.add_argument("--json", help="Optional output JSON summary path")
    pb.set_defaults(func=cmd_batch)

    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
