#!/usr/bin/env python
"""Minimal BeepBox JSON -> Rust converter (WASM-4 tone API).

Stage 1: JSON loading + validation (BeepBox 2.3 export).
Stage 2: Timing (BeepBox ticks -> 60 fps frames) + pitch/wave tables.
Stage 3: Per-channel translation into dispatcher/pattern routines.
Stage 4: Emit Rust (optional driver preamble), MIDI preview, trace.
"""

import sys
import argparse
import json

import mido

FRAMES_PER_MINUTE = 3600  # WASM-4 runs at 60 fps
SILENCE = 0  # sequence entry for an empty bar
PITCH_FALLBACK_INDEX = 18  # F#1, middle of the table
PREVIEW_BPM = 60
PREVIEW_TICKS_PER_BEAT = 60  # 1 MIDI tick == 1 frame at 60 BPM
MIDI_DRUM_CHANNEL = 9

# BeepBox scale "expert", key "C": (pitch index, name, WASM-4 frequency).
# Names use "+" for the flat of the following letter (D+0 == Db0).
PITCH_TABLE = [
    (36, "C0", 130), (37, "D+0", 140), (38, "D0", 150), (39, "E+0", 160),
    (40, "E0", 170), (41, "F0", 180), (42, "F#0", 190), (43, "G0", 200),
    (44, "A+0", 210), (45, "A0", 220), (46, "B+0", 230), (47, "B0", 250),
    (48, "C1", 260), (49, "D+1", 280), (50, "D1", 290), (51, "E+1", 310),
    (52, "E1", 330), (53, "F1", 350), (54, "F#1", 370), (55, "G1", 390),
    (56, "A+1", 410), (57, "A1", 440), (58, "B+1", 460), (59, "B1", 490),
    (60, "C2", 520), (61, "D+2", 550), (62, "D2", 600), (63, "E+2", 620),
    (64, "E2", 660), (65, "F2", 700), (66, "F#2", 750), (67, "G2", 780),
    (68, "A+2", 840), (69, "A2", 880), (70, "B+2", 940), (71, "B2", 980),
    (72, "C3", 1000),
]

# BeepBox chip waves -> WASM-4 tone flags. Index 0 is the fallback.
WAVE_TABLE = [
    ("triangle", "TONE_TRIANGLE | TONE_MODE1"),
    ("square", "TONE_PULSE2 | TONE_MODE3"),
    ("pulse wide", "TONE_PULSE2 | TONE_MODE4"),
    ("pulse narrow", "TONE_PULSE2 | TONE_MODE2"),
    ("sawtooth", "TONE_PULSE2 | TONE_MODE1"),
]

DEFAULT_DRIVER = """\
// WASM-4 tone driver.
pub const TONE_PULSE1: u32 = 0;
pub const TONE_PULSE2: u32 = 1;
pub const TONE_TRIANGLE: u32 = 2;
pub const TONE_NOISE: u32 = 3;
pub const TONE_MODE1: u32 = 0;
pub const TONE_MODE2: u32 = 4;
pub const TONE_MODE3: u32 = 8;
pub const TONE_MODE4: u32 = 12;

extern "C" {
    #[link_name = "tone"]
    fn extern_tone(frequency: u32, duration: u32, volume: u32, flags: u32);
}

pub fn tone(frequency: u32, duration: u32, volume: u32, flags: u32) {
    unsafe { extern_tone(frequency, duration, volume, flags) }
}
"""

USAGE_NOTES = """\
notes:
  * Scale must be "expert", key must be "C".
  * Only the very first instrument of each channel is converted.
  * Only the loop region (introBars .. introBars + loopBars) is kept.
  * Only BeepBox 2.3 exports are supported.
"""


class SongError(ValueError):
    """Malformed or unsupported BeepBox document."""


class InvalidTimingError(SongError):
    pass


def _check_object(value, where: str) -> dict:
    if not isinstance(value, dict):
        raise SongError(f"{where}: expected an object")
    return value


def _require_int(obj: dict, key: str, where: str) -> int:
    if key not in obj:
        raise SongError(f"{where}.{key}: missing")
    value = obj[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SongError(f"{where}.{key}: expected a number, got {value!r}")
    if isinstance(value, float) and not value.is_integer():
        raise SongError(f"{where}.{key}: expected an integer, got {value!r}")
    return int(value)


def _require_range(obj: dict, key: str, where: str, low: int, high: int | None = None) -> int:
    value = _require_int(obj, key, where)
    if value < low or (high is not None and value > high):
        bounds = f"{low}..{high}" if high is not None else f">= {low}"
        raise SongError(f"{where}.{key}: must be {bounds}, got {value}")
    return value


def _require_list(obj: dict, key: str, where: str) -> list:
    if key not in obj:
        raise SongError(f"{where}.{key}: missing")
    value = obj[key]
    if not isinstance(value, list):
        raise SongError(f"{where}.{key}: expected a list")
    return value


def _int_item(value, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SongError(f"{where}: expected a number, got {value!r}")
    if isinstance(value, float) and not value.is_integer():
        raise SongError(f"{where}: expected an integer, got {value!r}")
    return int(value)


def _parse_instrument(raw, where: str) -> dict:
    raw = _check_object(raw, where)
    # Non-chip instruments (fm, noise, ...) carry no wave; they fall back to triangle.
    wave = raw.get("wave", "")
    if not isinstance(wave, str):
        raise SongError(f"{where}.wave: expected a string, got {wave!r}")
    return {"wave": wave, "volume": _require_range(raw, "volume", where, 0, 100)}


def _parse_note(raw, where: str) -> dict:
    raw = _check_object(raw, where)
    points = []
    raw_points = _require_list(raw, "points", where)
    if len(raw_points) < 2:
        raise SongError(f"{where}.points: need at least 2 points, got {len(raw_points)}")
    for i, raw_point in enumerate(raw_points):
        point_where = f"{where}.points[{i}]"
        raw_point = _check_object(raw_point, point_where)
        points.append(
            {
                "tick": _require_range(raw_point, "tick", point_where, 0),
                "volume": _require_range(raw_point, "volume", point_where, 0, 100),
            }
        )
    pitches = {
        _int_item(p, f"{where}.pitches[{i}]")
        for i, p in enumerate(_require_list(raw, "pitches", where))
    }
    return {"points": points, "pitches": sorted(pitches)}


def _parse_channel(raw, where: str) -> dict:
    raw = _check_object(raw, where)
    patterns = []
    for i, raw_pattern in enumerate(_require_list(raw, "patterns", where)):
        pattern_where = f"{where}.patterns[{i}]"
        raw_pattern = _check_object(raw_pattern, pattern_where)
        notes = [
            _parse_note(raw_note, f"{pattern_where}.notes[{j}]")
            for j, raw_note in enumerate(_require_list(raw_pattern, "notes", pattern_where))
        ]
        patterns.append({"notes": notes})
    sequence = [
        _int_item(n, f"{where}.sequence[{i}]")
        for i, n in enumerate(_require_list(raw, "sequence", where))
    ]
    instruments = _require_list(raw, "instruments", where)
    if not instruments and any(p["notes"] for p in patterns):
        raise SongError(f"{where}.instruments: channel has notes but no instrument")
    parsed_instruments = [
        _parse_instrument(inst, f"{where}.instruments[{i}]") for i, inst in enumerate(instruments)
    ]
    return {"instruments": parsed_instruments, "patterns": patterns, "sequence": sequence}


def parse_song(data) -> dict:
    data = _check_object(data, "song")
    song = {}
    for key in ("ticksPerBeat", "beatsPerMinute", "beatsPerBar", "introBars", "loopBars"):
        song[key] = _require_int(data, key, "song")
    for key in ("introBars", "loopBars"):
        if song[key] < 0:
            raise SongError(f"song.{key}: must be >= 0, got {song[key]}")
    song["channels"] = [
        _parse_channel(raw, f"song.channels[{i}]")
        for i, raw in enumerate(_require_list(data, "channels", "song"))
    ]
    return song


def load_song(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as exc:
            raise SongError(f"{path}: invalid JSON ({exc})") from exc
    return parse_song(data)


def compute_timing(song: dict) -> dict:
    tpb = song["ticksPerBeat"]
    bpm = song["beatsPerMinute"]
    bpb = song["beatsPerBar"]
    for name, value in (("ticksPerBeat", tpb), ("beatsPerMinute", bpm), ("beatsPerBar", bpb)):
        if value <= 0:
            raise InvalidTimingError(f"{name} must be > 0, got {value}")
    ticks_per_minute = tpb * bpm
    # round(3600 / ticks_per_minute), halves rounded up
    tick_duration = (2 * FRAMES_PER_MINUTE + ticks_per_minute) // (2 * ticks_per_minute)
    if tick_duration <= 0:
        raise InvalidTimingError(
            f"tempo too fast: {ticks_per_minute} ticks/min is shorter than one frame per tick"
        )
    return {
        "ticks_per_minute": ticks_per_minute,
        "tick_duration": tick_duration,
        "pattern_duration": bpb * tpb * tick_duration,
    }


def _pitch_index(pitch: int) -> int | None:
    for i, (value, _name, _freq) in enumerate(PITCH_TABLE):
        if value == pitch:
            return i
    return None


def lookup_frequency(pitch: int) -> int:
    idx = _pitch_index(pitch)
    if idx is None:
        idx = PITCH_FALLBACK_INDEX
    return PITCH_TABLE[idx][2]


def pitch_name(pitch: int) -> str:
    idx = _pitch_index(pitch)
    if idx is None:
        return f"#{pitch}"
    return PITCH_TABLE[idx][1]


def _wave_index(name: str, table: list[tuple[str, str]]) -> int | None:
    for i, (wave, _flags) in enumerate(table):
        if wave == name:
            return i
    return None


def lookup_flags(name: str, table: list[tuple[str, str]] = WAVE_TABLE) -> str:
    idx = _wave_index(name, table)
    if idx is None:
        idx = 0
    return table[idx][1]


def load_wave_map(path: str) -> list[tuple[str, str]]:
    """Read {"waves": {name: flags}} and merge it over WAVE_TABLE."""
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as exc:
            raise SongError(f"{path}: invalid JSON ({exc})") from exc
    waves = _check_object(data, path).get("waves", {})
    _check_object(waves, f"{path}: waves")
    table = list(WAVE_TABLE)
    for name, flags in waves.items():
        if not isinstance(flags, str) or not flags.strip():
            raise SongError(f"{path}: waves.{name}: expected a flag expression string")
        idx = _wave_index(name, table)
        if idx is None:
            table.append((name, flags.strip()))
        else:
            table[idx] = (name, flags.strip())
    return table


def _loop_sequence(sequence: list[int], intro_bars: int, loop_bars: int) -> tuple[list[int], int]:
    window = sequence[intro_bars:intro_bars + loop_bars]
    padded = loop_bars - len(window)
    return window + [SILENCE] * padded, padded


def _build_triggers(pattern: dict, instrument: dict, tick_duration: int, stats: dict) -> list[dict]:
    triggers = []
    frames = set()
    for note in pattern["notes"]:
        points = note["points"]
        if len(points) > 2:
            stats["ornaments"] += 1
        start = points[0]["tick"] * tick_duration
        end = points[1]["tick"] * tick_duration
        scaled = points[0]["volume"] * instrument["volume"]
        volume = scaled // 100 if scaled < 100 * 100 else None
        # Chord members are staggered one frame apart on the single tone channel.
        for rank, pitch in enumerate(note["pitches"]):
            frame = start + rank
            # A match arm per frame: only the first trigger at a frame can ever fire.
            if frame in frames:
                stats["collisions"] += 1
                continue
            frames.add(frame)
            sustain = end - frame
            if sustain < 0:
                stats["clamped"] += 1
                sustain = 0
            if _pitch_index(pitch) is None:
                stats["pitch_fallbacks"] += 1
            triggers.append(
                {
                    "frame": frame,
                    "pitch": pitch,
                    "frequency": lookup_frequency(pitch),
                    "sustain": sustain,
                    "volume": volume,
                }
            )
    return triggers


def translate_channel(
    channel: dict,
    track: int,
    song: dict,
    timing: dict,
    wave_table: list[tuple[str, str]],
    stats: dict,
) -> dict | None:
    used = [(n + 1, p) for n, p in enumerate(channel["patterns"]) if p["notes"]]
    if not used:
        return None
    instrument = channel["instruments"][0]
    if len(channel["instruments"]) > 1:
        stats["warnings"].append(
            f"track {track}: {len(channel['instruments']) - 1} extra instrument(s) ignored"
        )
    if _wave_index(instrument["wave"], wave_table) is None:
        stats["warnings"].append(
            f"track {track}: unknown wave {instrument['wave']!r} -> {wave_table[0][0]}"
        )
    sequence, padded = _loop_sequence(channel["sequence"], song["introBars"], song["loopBars"])
    if padded:
        stats["warnings"].append(
            f"track {track}: loop window runs {padded} bar(s) past the sequence, padded with silence"
        )
    return {
        "track": track,
        "qualify": len(song["channels"]) > 1,
        "flags": lookup_flags(instrument["wave"], wave_table),
        "sequence": sequence,
        "patterns": [
            {"number": number, "triggers": _build_triggers(p, instrument, timing["tick_duration"], stats)}
            for number, p in used
        ],
    }


def translate_song(
    song: dict,
    timing: dict,
    wave_table: list[tuple[str, str]] | None = None,
) -> tuple[list[dict], list[str]]:
    if wave_table is None:
        wave_table = WAVE_TABLE
    stats = {"warnings": [], "ornaments": 0, "clamped": 0, "collisions": 0, "pitch_fallbacks": 0}
    ir = []
    for offset, channel in enumerate(song["channels"]):
        fragment = translate_channel(channel, offset + 1, song, timing, wave_table, stats)
        if fragment is not None:
            ir.append(fragment)
    warnings = stats["warnings"]
    if stats["pitch_fallbacks"]:
        fallback = PITCH_TABLE[PITCH_FALLBACK_INDEX]
        warnings.append(
            f"{stats['pitch_fallbacks']} pitch(es) outside the pitch table -> {fallback[1]} ({fallback[2]} Hz)"
        )
    if stats["ornaments"]:
        warnings.append(f"{stats['ornaments']} note(s) with more than 2 points, extra points ignored")
    if stats["clamped"]:
        warnings.append(f"{stats['clamped']} chord trigger(s) longer than their note, sustain clamped to 0")
    if stats["collisions"]:
        warnings.append(f"{stats['collisions']} trigger(s) on an already used frame dropped")
    return ir, warnings


def _dispatcher_name(identifier: str, fragment: dict) -> str:
    name = f"play_{identifier}"
    if fragment["qualify"]:
        name += f"_track_{fragment['track']}"
    return name


def _pattern_name(identifier: str, track: int, number: int) -> str:
    return f"play_{identifier}_track_{track}_pattern_{number}"


def _format_tone(trigger: dict, flags: str) -> str:
    volume = "volume"
    if trigger["volume"] is not None:
        volume += f" * {trigger['volume']} / 100"
    return f"tone({trigger['frequency']}, {trigger['sustain']} << 8, {volume}, {flags});"


def _format_dispatcher(identifier: str, fragment: dict, pattern_duration: int) -> str:
    lines = [f"pub fn {_dispatcher_name(identifier, fragment)}(t: usize, volume: u32) {{"]
    sequence = fragment["sequence"]
    if sequence:
        lines.append(f"    let sequence = [{', '.join(str(n) for n in sequence)}];")
        lines.append(f"    match sequence[(t / {pattern_duration}) % sequence.len()] {{")
        for pattern in fragment["patterns"]:
            name = _pattern_name(identifier, fragment["track"], pattern["number"])
            lines.append(f"        {pattern['number']} => {name}(t, volume),")
        lines.append("        _ => (),")
        lines.append("    }")
    lines.append("}")
    return "\n".join(lines) + "\n\n"


def _format_pattern(identifier: str, fragment: dict, pattern: dict, pattern_duration: int) -> str:
    name = _pattern_name(identifier, fragment["track"], pattern["number"])
    lines = [
        f"fn {name}(t: usize, volume: u32) {{",
        f"    let tt = t % {pattern_duration};",
        "    match tt {",
    ]
    for trigger in pattern["triggers"]:
        lines.append(f"        {trigger['frame']} => {{")
        lines.append(f"            {_format_tone(trigger, fragment['flags'])}")
        lines.append("        }")
    lines.append("        _ => (),")
    lines.append("    }")
    lines.append("}")
    return "\n".join(lines) + "\n\n"


def render(identifier: str, ir: list[dict], timing: dict, driver: str | None = None) -> str:
    parts = []
    if driver:
        parts.append(driver)
    parts.append(f"\n/// Soundtrack: *{identifier}*\n")
    pattern_duration = timing["pattern_duration"]
    for fragment in ir:
        parts.append(_format_dispatcher(identifier, fragment, pattern_duration))
        for pattern in fragment["patterns"]:
            parts.append(_format_pattern(identifier, fragment, pattern, pattern_duration))
    return "".join(parts)


def _preview_channel(track: int) -> int:
    ch = (track - 1) % 15
    if ch >= MIDI_DRUM_CHANNEL:
        ch += 1
    return ch


def _preview_velocity(volume: int | None) -> int:
    if volume is None:
        return 127
    return max(1, min(127, int(round(127 * volume / 100))))


def _preview_notes(fragment: dict, pattern_duration: int, loops: int) -> list[list[int]]:
    by_number = {p["number"]: p["triggers"] for p in fragment["patterns"]}
    sequence = fragment["sequence"]
    notes = []
    for loop in range(loops):
        for bar, number in enumerate(sequence):
            base = (loop * len(sequence) + bar) * pattern_duration
            for trig in by_number.get(number, []):
                # tt never reaches pattern_duration, so later triggers never fire
                if trig["sustain"] <= 0 or trig["frame"] >= pattern_duration:
                    continue
                start = base + trig["frame"]
                notes.append(
                    [
                        start,
                        start + trig["sustain"],
                        max(0, min(127, trig["pitch"])),
                        _preview_velocity(trig["volume"]),
                    ]
                )
    notes.sort(key=lambda n: n[0])
    # One tone channel: a new trigger cuts whatever is still sounding.
    for prev, cur in zip(notes, notes[1:]):
        if prev[1] > cur[0]:
            prev[1] = cur[0]
    return [n for n in notes if n[1] > n[0]]


def build_preview_midi(ir: list[dict], timing: dict, loops: int = 1) -> mido.MidiFile:
    mid = mido.MidiFile(type=1, ticks_per_beat=PREVIEW_TICKS_PER_BEAT)
    conductor = mido.MidiTrack()
    conductor.append(mido.MetaMessage("set_tempo", tempo=mido.bpm2tempo(PREVIEW_BPM), time=0))
    mid.tracks.append(conductor)
    for fragment in ir:
        track = mido.MidiTrack()
        track.append(mido.MetaMessage("track_name", name=f"track {fragment['track']}", time=0))
        channel = _preview_channel(fragment["track"])
        events = []
        for start, end, note, velocity in _preview_notes(fragment, timing["pattern_duration"], loops):
            events.append((start, 1, mido.Message("note_on", note=note, velocity=velocity, channel=channel)))
            events.append((end, 0, mido.Message("note_off", note=note, velocity=0, channel=channel)))
        events.sort(key=lambda e: (e[0], e[1]))
        cursor = 0
        for frame, _order, msg in events:
            track.append(msg.copy(time=frame - cursor))
            cursor = frame
        mid.tracks.append(track)
    return mid


def write_preview_midi(path: str, ir: list[dict], timing: dict, loops: int = 1) -> None:
    build_preview_midi(ir, timing, loops).save(path)


def write_trace(path: str, header_lines: list[str], ir: list[dict]) -> None:
    if not path:
        return
    lines = []
    lines.extend(header_lines)
    lines.append("")
    for fragment in ir:
        sequence = " ".join(str(n) for n in fragment["sequence"])
        lines.append(f"[TRACK {fragment['track']}] flags={fragment['flags']} sequence={sequence}")
        for pattern in fragment["patterns"]:
            lines.append(f"pattern {pattern['number']}:")
            for trig in pattern["triggers"]:
                vol = "full" if trig["volume"] is None else trig["volume"]
                lines.append(
                    f"  frame={trig['frame']} dur={trig['sustain']} note={pitch_name(trig['pitch'])} "
                    f"freq={trig['frequency']} vol={vol}"
                )
        lines.append("")
    with open(path, "w", encoding="ascii", errors="ignore") as f:
        f.write("\n".join(lines) + "\n")


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="beepbox_to_wasm4",
        description="BeepBox 2.3 JSON -> Rust sound routines for WASM-4",
        epilog=USAGE_NOTES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("path", help="Path to BeepBox's JSON file")
    parser.add_argument("resname", help="Resource name (used in the generated function names)")
    parser.add_argument("incdriver", help='Use "true" to include the driver')
    parser.add_argument("-o", "--output", type=str, default="", help="Write Rust here instead of stdout")
    parser.add_argument(
        "--driver-template",
        type=str,
        default="",
        help="Driver preamble file (default: built-in WASM-4 tone driver)",
    )
    parser.add_argument(
        "--wave-map",
        type=str,
        default="",
        help='JSON wave map {"waves": {name: flags}} merged over the built-in table',
    )
    parser.add_argument("--preview-midi", type=str, default="", help="Also write a MIDI preview of the loop")
    parser.add_argument("--preview-loops", type=int, default=1, help="Loop repetitions in the MIDI preview")
    parser.add_argument(
        "--trace-output",
        type=str,
        default="",
        help="Write a trace log (per-pattern triggers) to this file",
    )
    return parser.parse_args(argv[1:])


def main(argv: list[str]) -> int:
    args = _parse_args(argv)
    identifier = args.resname.strip()
    include_driver = args.incdriver.strip().lower() == "true"

    if not identifier:
        print("Error: resource name must not be empty.", file=sys.stderr)
        return 2
    if args.preview_loops <= 0:
        print("Error: --preview-loops must be > 0.", file=sys.stderr)
        return 2

    try:
        wave_table = load_wave_map(args.wave_map) if args.wave_map else WAVE_TABLE
        song = load_song(args.path)
        timing = compute_timing(song)
        ir, warnings = translate_song(song, timing, wave_table)
        driver = None
        if include_driver:
            driver = _read_text(args.driver_template) if args.driver_template else DEFAULT_DRIVER
        output = render(identifier, ir, timing, driver)
    except (SongError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    # Side files before the generated code, so a failed write emits nothing.
    try:
        if args.preview_midi:
            write_preview_midi(args.preview_midi, ir, timing, args.preview_loops)
        if args.trace_output:
            header_lines = [
                f"input={args.path}",
                f"resname={identifier}",
                f"ticks_per_minute={timing['ticks_per_minute']}",
                f"tick_duration={timing['tick_duration']}",
                f"pattern_duration={timing['pattern_duration']}",
                f"intro_bars={song['introBars']}",
                f"loop_bars={song['loopBars']}",
            ]
            write_trace(args.trace_output, header_lines, ir)
        if args.output:
            with open(args.output, "w", encoding="utf-8") as f:
                f.write(output + "\n")
        else:
            print(output)
    except OSError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    for w in warnings:
        print(f"Warning: {w}", file=sys.stderr)
    return 0


def run() -> None:
    raise SystemExit(main(sys.argv))


if __name__ == "__main__":
    run()
