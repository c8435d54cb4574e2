"""Simple MIDI composing from note strings, MIDI-to-text and an ear-training game."""

from __future__ import annotations

import io
import math
import os
import random
import re
import subprocess
from collections.abc import Iterator
from dataclasses import dataclass, field

import mido

TICKS_PER_QUARTER = 960
TEMPO_BPM = 72
DEFAULT_TIMBRE = 40
VELOCITY = 120

NOTE_MAP = {
    "C": 60,
    "Db": 61,
    "D": 62,
    "Eb": 63,
    "E": 64,
    "F": 65,
    "Gb": 66,
    "G": 67,
    "Ab": 68,
    "A": 69,
    "Bb": 70,
    "B": 71,
}

ANSWER_PATTERN = re.compile(r"^[A-G][b|#]?\d{0,2}$")


class MidiParseError(ValueError):
    """Raised when a note string cannot be turned into MIDI."""


def _byte(value: int) -> int:
    return value & 0xFF


def octave(base: int, level: int) -> int:
    """Note number of pitch class ``base`` in octave ``level`` (byte arithmetic)."""
    level = min(level, 10)
    if level == 0:
        return base
    result = _byte(base + 12 * level)
    if result > 127:
        result -= 12
    return result


def note_name(note: int) -> str:
    """Name of the note's pitch class, with flats for accidentals."""
    for name, value in NOTE_MAP.items():
        if value % 12 == note % 12:
            return name
    return ""


def process_one(note: str) -> int:
    """Note number of a single note such as ``C#6``; unknown characters are ignored."""
    base = level = 0
    for char in note.replace(" ", ""):
        if "A" <= char <= "G":
            base = NOTE_MAP[char] % 12
        elif char == "b":
            base = _byte(base - 1)
        elif char == "#":
            base = _byte(base + 1)
        elif "0" <= char <= "9":
            level = _byte(level * 10 + int(char))
    if level == 0:
        level = 5
    return octave(base, level)


def _atoi(text: str) -> int:
    try:
        return int(text)
    except ValueError:
        return 0


def _ticks(length: int) -> int:
    if length >= 0:
        return TICKS_PER_QUARTER * (1 << length)
    return TICKS_PER_QUARTER // (1 << -length)


def _tokens(text: str) -> Iterator[tuple[bool, int, int, int]]:
    """Yield (is_rest, base, level, length) for each note or rest."""
    k = text.replace(" ", "")
    size = len(k)
    i = 0
    while i < size:
        base = level = 0
        rest = False
        length_chars: list[str] = []
        while True:
            char = k[i]
            if char == "R":
                rest = True
                i += 1
            elif "A" <= char <= "G":
                base = NOTE_MAP[char] % 12
                i += 1
            elif char == "b":
                base = _byte(base - 1)
                i += 1
            elif char == "#":
                base = _byte(base + 1)
                i += 1
            elif "0" <= char <= "9":
                level = _byte(level * 10 + int(char))
                i += 1
            elif char == "<":
                i += 1
                while i < size and (k[i] == "-" or "0" <= k[i] <= "9"):
                    length_chars.append(k[i])
                    i += 1
            else:
                raise MidiParseError(f"无法解析第{i}个位置的{char}字符")
            if i >= size or "A" <= k[i] <= "G" or k[i] == "R":
                break
        yield rest, base, level, _atoi("".join(length_chars))


def make_midi(text: str, timbre: int = DEFAULT_TIMBRE) -> mido.MidiFile:
    """Build a one-track MIDI file from a note string like ``CCGGAAGR FFEEDDCR``.

    A note is a letter A-G, optional ``b``/``#``, an optional octave (default 5)
    and an optional ``<n`` length exponent (quarter note times 2**n). ``R`` is a rest.
    """
    check_timbre(timbre)
    track = mido.MidiTrack()
    track.append(mido.MetaMessage("time_signature", numerator=4, denominator=4, time=0))
    track.append(mido.MetaMessage("set_tempo", tempo=mido.bpm2tempo(TEMPO_BPM), time=0))
    track.append(mido.MetaMessage("instrument_name", name="Violin", time=0))
    track.append(mido.Message("program_change", channel=0, program=timbre, time=0))

    delay = 0
    for rest, base, level, length in _tokens(text):
        if rest:
            delay = _ticks(length)
            continue
        if level == 0:
            level = 5
        note = octave(base, level)
        if not 0 <= note <= 127:
            raise MidiParseError(f"音符超出范围: {note}")
        track.append(mido.Message("note_on", channel=0, note=note, velocity=VELOCITY, time=delay))
        track.append(mido.Message("note_off", channel=0, note=note, velocity=0, time=_ticks(length)))
        delay = 0
    track.append(mido.MetaMessage("end_of_track", time=0))

    midi = mido.MidiFile(type=1, ticks_per_beat=TICKS_PER_QUARTER)
    midi.tracks.append(track)
    return midi


def write_midi(path: str, text: str, timbre: int = DEFAULT_TIMBRE) -> str:
    """Write the MIDI for ``text`` to ``path`` unless that file already exists."""
    if os.path.exists(path):
        return path
    midi = make_midi(text, timbre)
    midi.save(path)
    return path


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def _pow2(length: float) -> int | None:
    if length <= 0:
        return None
    return _round_half_away(math.log2(length))


def midi_to_text(data: bytes, track_no: int) -> str:
    """Turn one track of a MIDI file back into the note-string notation."""
    midi = mido.MidiFile(file=io.BytesIO(data))
    if not 0 <= track_no < len(midi.tracks):
        return ""
    metric = float(TICKS_PER_QUARTER)
    abs_start = abs_end = 0.0
    start_note = end_note = 0
    parts: list[str] = []
    ticks = 0
    for msg in midi.tracks[track_no]:
        ticks += msg.time
        if msg.is_meta or msg.type not in ("note_on", "note_off"):
            continue
        sounding = msg.type == "note_on" and msg.velocity > 0
        if sounding:
            abs_start = float(ticks)
            start_note = msg.note
        if msg.type == "note_off" or (msg.type == "note_on" and msg.velocity == 0):
            abs_end = float(ticks)
            end_note = msg.note
            if start_note == end_note:
                parts.append(note_name(msg.note))
                level = msg.note // 12
                if level != 5:
                    parts.append(str(level))
                power = _pow2((abs_end - abs_start) / metric)
                if power is not None and power >= -4 and power != 0:
                    parts.append(f"<{power}")
                start_note = end_note = 0
        if sounding and abs_start > abs_end:
            power = _pow2((abs_start - abs_end) / metric)
            if power == 0:
                parts.append("R")
            elif power is not None and power >= -4:
                parts.append(f"R<{power}")
    return "".join(parts)


def render_wav(midi_path: str, wav_path: str) -> str:
    """Render a MIDI file to WAV with timidity; returns the WAV path."""
    subprocess.run(
        ["timidity", midi_path, "-Ow", "-o", wav_path],
        check=True,
        capture_output=True,
    )
    return wav_path


def check_timbre(timbre: int) -> int:
    """Validate a General MIDI program number."""
    if timbre < 0 or timbre > 127:
        raise ValueError("音色应该在0~127之间")
    return timbre


@dataclass
class AnswerResult:
    """What happened after one answer in the ear-training game."""

    correct: bool
    expected: str
    error_count: int
    round_over: bool
    finished: bool


@dataclass
class EarTrainingGame:
    """Five rounds of naming a played note; personal or team mode."""

    team: bool
    rng: random.Random = field(default_factory=random.Random)
    max_round: int = 6

    def __post_init__(self) -> None:
        self.max_errors = 10 if self.team else 3
        self.scores: dict[int, float] = {}
        self.round = 1
        self.error_count = 0
        self._new_target()

    def _new_target(self) -> None:
        self.target = 55 + self.rng.randrange(34)
        self.expected = note_name(self.target) + str(self.target // 12)

    def finished(self) -> bool:
        return self.round == self.max_round

    def answer(self, user_id: int, note: str) -> AnswerResult:
        """Judge ``note`` from ``user_id`` and advance the game."""
        if self.finished():
            raise RuntimeError("game is over")
        if not ANSWER_PATTERN.match(note):
            raise ValueError(f"not a note: {note!r}")
        guessed = process_one(note)
        correct = guessed == self.target
        if not correct:
            self.error_count += 1
        expected = self.expected
        errors = self.error_count
        round_over = correct or self.error_count == self.max_errors
        if round_over:
            if self.team:
                if self.error_count != self.max_errors:
                    self.scores[user_id] = self.scores.get(user_id, 0.0) + 1.0
            else:
                gain = {0: 1.0, 1: 0.5, 2: 0.2}.get(self.error_count)
                if gain is not None:
                    self.scores[user_id] = self.scores.get(user_id, 0.0) + gain
            self.round += 1
            if not self.finished():
                self.error_count = 0
                self._new_target()
        return AnswerResult(correct, expected, errors, round_over, self.finished())