"""Wording of image classification results."""

from __future__ import annotations

from dataclasses import dataclass

HSO_IMAGE = "https://gchat.qpic.cn/gchatpic_new//--4234EDEC5F147A4C319A41149D7E0EA9/0"
THRESHOLD = 0.3


@dataclass(frozen=True)
class Classification:
    """Class probabilities of one picture."""

    drawings: float = 0.0
    hentai: float = 0.0
    neutral: float = 0.0
    porn: float = 0.0
    sexy: float = 0.0


def _flags(picture: Classification) -> list[str]:
    flags = []
    if picture.hentai > THRESHOLD:
        flags.append("hentai")
    if picture.porn > THRESHOLD:
        flags.append("porn")
    if picture.sexy > THRESHOLD:
        flags.append("hso")
    return flags


def judge(picture: Classification) -> str:
    """Verdict for an explicitly requested rating."""
    if picture.neutral > THRESHOLD:
        return "普通哦"
    if picture.drawings > THRESHOLD or picture.neutral < THRESHOLD:
        label = "二次元"
    else:
        label = "三次元"
    return "".join([label, *(" " + flag for flag in _flags(picture))])


def auto_judge(picture: Classification) -> str | None:
    """Verdict for automatic rating, or None when nothing is worth saying."""
    if picture.neutral > THRESHOLD:
        return None
    label = "二次元" if picture.drawings > THRESHOLD else "三次元"
    flags = _flags(picture)
    if not flags:
        return None
    return "".join([label, *(" " + flag for flag in flags)])