"""Ogura Hyakunin Isshu: the hundred poems and their pictures."""

from __future__ import annotations

import csv
from dataclasses import astuple, dataclass

BED = "https://gitcode.net/u011570312/OguraHyakuninIsshu/-/raw/master/"
CSV_URL = BED + "小倉百人一首.csv"
POEM_COUNT = 100

_LABELS = (
    ("●", "番号"),
    ("◉", "歌人"),
    ("○", "上の句"),
    ("○", "下の句"),
    ("◎", "上の句ひらがな"),
    ("◎", "下の句ひらがな"),
)


@dataclass(frozen=True)
class Poem:
    """One poem of the collection."""

    number: str
    poet: str
    upper: str
    lower: str
    upper_kana: str
    lower_kana: str

    def __str__(self) -> str:
        return "".join(
            f"{mark}{label}：{value}\n"
            for (mark, label), value in zip(_LABELS, astuple(self))
        )


def load_poems(path: str) -> list[Poem]:
    """Read the hundred poems from a CSV file with a header row."""
    with open(path, encoding="utf-8-sig", newline="") as handle:
        records = list(csv.reader(handle))[1:]
    if len(records) != POEM_COUNT:
        raise ValueError("invalid csvfile")
    poems = []
    for index, record in enumerate(records, 1):
        if len(record) != len(_LABELS):
            raise ValueError("invalid csvfile")
        if int(record[0]) != index:
            raise ValueError("invalid csvfile")
        poems.append(Poem(*record))
    return poems


def image_urls(number: int) -> tuple[str, str]:
    """URLs of the card picture and the calligraphy picture of poem ``number``."""
    if number < 1 or number > POEM_COUNT:
        raise ValueError("超出范围")
    return f"{BED}img/{number:03d}.jpg", f"{BED}img/{number:03d}.png"