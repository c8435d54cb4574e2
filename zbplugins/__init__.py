"""Chat-bot plugin logic: reminder timers, MIDI, song guessing, group management and more."""

__version__ = "0.1.0"