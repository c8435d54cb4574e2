"""Local picture library: classes are folders, pictures are keyed by difference hash."""

from __future__ import annotations

import io
import logging
import os
import random
import sqlite3
import threading
from collections.abc import Iterator
from dataclasses import dataclass

from PIL import Image

log = logging.getLogger(__name__)

IMAGE_SUFFIXES = (".jpg", ".jpeg", ".png", ".gif", ".webp")
SUMMARY_TITLE = "所有本地setu分类"

_HASH_WIDTH = 9
_HASH_HEIGHT = 8


def difference_hash(image: Image.Image) -> int:
    """64-bit difference hash of ``image`` as a signed integer.

    The picture is shrunk to 9x8 grey pixels; each bit tells whether a pixel is
    darker than its right-hand neighbour, the first comparison being the top bit.
    """
    if image is None:
        raise ValueError("image can not be None")
    small = image.convert("RGB").resize((_HASH_WIDTH, _HASH_HEIGHT), Image.BILINEAR)
    pixels = small.load()
    value = 0
    index = 0
    for y in range(_HASH_HEIGHT):
        row = [
            0.299 * r + 0.587 * g + 0.114 * b
            for r, g, b in (pixels[x, y] for x in range(_HASH_WIDTH))
        ]
        for left, right in zip(row, row[1:]):
            if left < right:
                value |= 1 << (63 - index)
            index += 1
    return value - (1 << 64) if value >= 1 << 63 else value


@dataclass(frozen=True)
class SetuEntry:
    """One picture of a class: its hash, file name and path relative to the root."""

    imgid: int
    name: str
    path: str


def _quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _is_image(name: str) -> bool:
    return name.lower().endswith(IMAGE_SUFFIXES)


def _walk_dirs(root: str, rel: str = "") -> Iterator[tuple[str, str]]:
    """Yield (relative path, folder name) of every folder below ``root``, in lexical order."""
    current = os.path.join(root, rel) if rel else root
    for entry in sorted(os.scandir(current), key=lambda e: e.name):
        if entry.is_dir():
            sub = f"{rel}/{entry.name}" if rel else entry.name
            yield sub, entry.name
            yield from _walk_dirs(root, sub)


class SetuLibrary:
    """SQLite index of local pictures, one table per class."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.RLock()
        self._db = sqlite3.connect(db_path, check_same_thread=False)

    def _create(self, name: str) -> None:
        with self._db:
            self._db.execute(
                f"CREATE TABLE IF NOT EXISTS {_quote(name)} "
                "(imgid INTEGER PRIMARY KEY, name TEXT, path TEXT)"
            )

    def scan_all(self, root: str) -> None:
        """Rebuild the whole index from the folders below ``root``."""
        with self._lock:
            self._db.close()
            if self.db_path != ":memory:" and os.path.exists(self.db_path):
                os.remove(self.db_path)
            self._db = sqlite3.connect(self.db_path, check_same_thread=False)
        for rel, name in _walk_dirs(root):
            with self._lock:
                self._create(name)
            try:
                self.scan_class(root, rel, name)
            except Exception:
                log.exception("[nsetu] scan %s failed", rel)
                raise

    def scan_class(self, root: str, path: str, name: str) -> None:
        """Rebuild class ``name`` from the pictures directly inside ``root/path``."""
        folder = os.path.join(root, path)
        entries = sorted(os.scandir(folder), key=lambda e: e.name)
        with self._lock, self._db:
            self._db.execute(f"DROP TABLE IF EXISTS {_quote(name)}")
        with self._lock:
            self._create(name)
        for entry in entries:
            if entry.is_dir() or not _is_image(entry.name):
                continue
            relpath = f"{path}/{entry.name}"
            log.debug("[nsetu] read %s", relpath)
            with open(entry.path, "rb") as handle:
                data = handle.read()
            with Image.open(io.BytesIO(data)) as image:
                image.load()
                imgid = difference_hash(image)
            log.debug("[nsetu] insert %s with id %d into %s", entry.name, imgid, name)
            with self._lock, self._db:
                self._db.execute(
                    f"REPLACE INTO {_quote(name)} (imgid, name, path) VALUES (?, ?, ?)",
                    (imgid, entry.name, relpath),
                )

    def classes(self) -> list[str]:
        """Names of all classes, sorted."""
        with self._lock:
            rows = self._db.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
            ).fetchall()
        return [row[0] for row in rows]

    def _check(self, name: str) -> None:
        if name not in self.classes():
            raise KeyError(name)

    def count(self, name: str) -> int:
        """Number of pictures in class ``name``."""
        self._check(name)
        with self._lock:
            return self._db.execute(f"SELECT COUNT(*) FROM {_quote(name)}").fetchone()[0]

    def pick(self, name: str, rng: random.Random | None = None) -> SetuEntry:
        """A random picture of class ``name``."""
        self._check(name)
        with self._lock:
            rows = self._db.execute(
                f"SELECT imgid, name, path FROM {_quote(name)} ORDER BY rowid"
            ).fetchall()
        if not rows:
            raise LookupError(f"class {name!r} is empty")
        rng = rng or random.Random()
        return SetuEntry(*rows[rng.randrange(len(rows))])

    def summary(self) -> str:
        """Numbered list of the classes with their picture counts."""
        text = SUMMARY_TITLE
        for index, name in enumerate(self.classes()):
            try:
                text += f"\n{index:02d}. {name}({self.count(name)})"
            except (sqlite3.Error, KeyError):
                log.exception("[nsetu] count %s failed", name)
                text += f"\n{index:02d}. {name}(error)"
        return text

    def close(self) -> None:
        with self._lock:
            self._db.close()

    def __enter__(self) -> SetuLibrary:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()