import mido

from beepbox_to_wasm4 import (
    build_preview_midi,
    compute_timing,
    parse_song,
    translate_song,
    write_preview_midi,
    write_trace,
)


def _ir(raw):
    parsed = parse_song(raw)
    timing = compute_timing(parsed)
    ir, _ = translate_song(parsed, timing)
    return ir, timing


def _notes(track):
    return [(m.type, m.note, m.velocity, m.channel, m.time) for m in track if not m.is_meta]


def test_preview_uses_one_tick_per_frame(song, channel, note) -> None:
    ir, timing = _ir(song([channel([[note([48], 0, 2)]], [1])]))
    mid = build_preview_midi(ir, timing)
    assert mid.type == 1
    assert mid.ticks_per_beat == 60
    (tempo,) = [m for m in mid.tracks[0] if m.type == "set_tempo"]
    assert tempo.tempo == mido.bpm2tempo(60)
    assert len(mid.tracks) == 2
    assert _notes(mid.tracks[1]) == [("note_on", 48, 127, 0, 0), ("note_off", 48, 0, 0, 12)]


def test_preview_loops_and_cuts_overlapping_notes(song, channel, note) -> None:
    ir, timing = _ir(song([channel([[note([48], 0, 2), note([50], 1, 3, volume=60)]], [1, 0])]))
    track = build_preview_midi(ir, timing, loops=2).tracks[1]
    assert [(t, n, d) for t, n, _v, _c, d in _notes(track)] == [
        ("note_on", 48, 0),
        ("note_off", 48, 6),
        ("note_on", 50, 0),
        ("note_off", 50, 12),
        ("note_on", 48, 174),
        ("note_off", 48, 6),
        ("note_on", 50, 0),
        ("note_off", 50, 12),
    ]
    assert [v for t, _n, v, _c, _d in _notes(track) if t == "note_on"] == [127, 76, 127, 76]


def test_preview_channels_skip_drum_channel(song, channel, note) -> None:
    channels = [channel([[note([48], 0, 2)]], [1]) for _ in range(11)]
    ir, timing = _ir(song(channels))
    mid = build_preview_midi(ir, timing)
    used = [_notes(track)[0][3] for track in mid.tracks[1:]]
    assert used == [0, 1, 2, 3, 4, 5, 6, 7, 8, 10, 11]


def test_preview_skips_triggers_that_never_fire(song, channel, note) -> None:
    # 5 beats worth of ticks in a 4 beat bar: the note starts past the bar end
    ir, timing = _ir(song([channel([[note([48], 0, 1), note([50], 16, 18)]], [1])]))
    assert [n for _t, n, _v, _c, _d in _notes(build_preview_midi(ir, timing).tracks[1])] == [48, 48]


def test_write_preview_midi_roundtrips_through_mido(tmp_path, song, channel, note) -> None:
    ir, timing = _ir(song([channel([[note([57], 0, 4)]], [1, 1])]))
    path = tmp_path / "preview.mid"
    write_preview_midi(str(path), ir, timing)
    loaded = mido.MidiFile(str(path))
    assert loaded.ticks_per_beat == 60
    ons = [m for m in loaded.tracks[1] if m.type == "note_on"]
    assert [m.note for m in ons] == [57, 57]
    assert abs(loaded.length - (96 + 24) / 60) < 1e-6


def test_write_trace_lists_triggers(tmp_path, song, channel, note) -> None:
    ir, _ = _ir(song([channel([[note([48, 54], 0, 2, volume=50)]], [1, 0])]))
    path = tmp_path / "trace.txt"
    write_trace(str(path), ["input=song.json"], ir)
    lines = path.read_text(encoding="ascii").splitlines()
    assert lines[0] == "input=song.json"
    assert "[TRACK 1] flags=TONE_PULSE2 | TONE_MODE3 sequence=1 0" in lines
    assert "  frame=0 dur=12 note=C1 freq=260 vol=50" in lines
    assert "  frame=1 dur=11 note=F#1 freq=370 vol=50" in lines


def test_write_trace_without_path_is_noop(tmp_path) -> None:
    write_trace("", ["x"], [])
    assert list(tmp_path.iterdir()) == []


def test_preview_plays_first_trigger_at_a_frame(song, channel, note) -> None:
    ir, timing = _ir(song([channel([[note([48, 52], 0, 1), note([55], 1, 3)]], [1])], tpb=24, bpm=300))
    track = build_preview_midi(ir, timing).tracks[1]
    assert [n for t, n, _v, _c, _d in _notes(track) if t == "note_on"] == [48]
