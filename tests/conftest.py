import pytest


def _note(pitches, start, end, volume=100, extra_points=0):
    points = [
        {"tick": start, "pitchBend": 0, "volume": volume},
        {"tick": end, "pitchBend": 0, "volume": volume},
    ]
    for i in range(extra_points):
        points.append({"tick": end + i + 1, "pitchBend": 0, "volume": 0})
    return {"pitches": list(pitches), "points": points}


def _channel(patterns, sequence, wave="square", volume=100, extra_instruments=0):
    instruments = [{"type": "chip", "wave": wave, "volume": volume}]
    instruments += [{"type": "chip", "wave": "sawtooth", "volume": 40} for _ in range(extra_instruments)]
    return {
        "type": "pitch",
        "instruments": instruments,
        "patterns": [{"instrument": 1, "notes": notes} for notes in patterns],
        "sequence": list(sequence),
    }


def _song(channels, intro=0, loop=None, tpb=4, bpm=140, bpb=4):
    if loop is None:
        loop = len(channels[0]["sequence"]) if channels else 0
    return {
        "format": "BeepBox",
        "version": 8,
        "scale": "expert",
        "key": "C",
        "introBars": intro,
        "loopBars": loop,
        "beatsPerBar": bpb,
        "ticksPerBeat": tpb,
        "beatsPerMinute": bpm,
        "channels": channels,
    }


@pytest.fixture
def note():
    return _note


@pytest.fixture
def channel():
    return _channel


@pytest.fixture
def song():
    return _song
