"""Group management helpers: greetings, bans, member picking and gist-verified joins."""

from __future__ import annotations

import hashlib
import logging
import random
import re
import sqlite3
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

log = logging.getLogger(__name__)

GIST_RAW = "https://gist.githubusercontent.com/{user}/{hash}/raw/{file}"
MAX_BAN_MINUTES = 43199  # a ban may last at most just under thirty days
GIST_WINDOW_SECONDS = 600
ANSWER_MARKER = "答案："

_HOUR_UNITS = {"小时", "hour", "hours", "h"}
_DAY_UNITS = {"天", "day", "days", "d"}
_ENABLE_WORDS = {"开启", "打开", "启用"}
_DISABLE_WORDS = {"关闭", "关掉", "禁用"}
_INT64_MASK = 0x7FFFFFFF_FFFFFFFF
_TIMESTAMP = re.compile(r"[+-]?[0-9]+")

Fetch = Callable[[str], "bytes | str"]


class ManagerStore:
    """SQLite storage of welcome and farewell messages and verified members."""

    def __init__(self, db_path: str):
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        with self._db:
            for table in ("welcome", "farewell"):
                self._db.execute(
                    f"CREATE TABLE IF NOT EXISTS {table} (gid INTEGER PRIMARY KEY, msg TEXT)"
                )
            self._db.execute(
                "CREATE TABLE IF NOT EXISTS member (qq INTEGER PRIMARY KEY, ghun TEXT)"
            )

    def _set(self, table: str, group_id: int, text: str) -> None:
        with self._db:
            self._db.execute(
                f"REPLACE INTO {table} (gid, msg) VALUES (?, ?)", (group_id, text)
            )

    def _get(self, table: str, group_id: int) -> str | None:
        row = self._db.execute(
            f"SELECT msg FROM {table} WHERE gid = ?", (group_id,)
        ).fetchone()
        return None if row is None else row[0]

    def set_welcome(self, group_id: int, text: str) -> None:
        self._set("welcome", group_id, text)

    def get_welcome(self, group_id: int) -> str | None:
        return self._get("welcome", group_id)

    def set_farewell(self, group_id: int, text: str) -> None:
        self._set("farewell", group_id, text)

    def get_farewell(self, group_id: int) -> str | None:
        return self._get("farewell", group_id)

    def has_member(self, github_user: str) -> bool:
        row = self._db.execute(
            "SELECT 1 FROM member WHERE ghun = ?", (github_user,)
        ).fetchone()
        return row is not None

    def add_member(self, qq: int, github_user: str) -> None:
        with self._db:
            self._db.execute(
                "REPLACE INTO member (qq, ghun) VALUES (?, ?)", (qq, github_user)
            )

    def close(self) -> None:
        self._db.close()

    def __enter__(self) -> ManagerStore:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def ban_minutes(amount: int, unit: str) -> int:
    """Ban length in minutes for ``amount`` of ``unit``, capped at the platform maximum.

    Unknown units count as minutes.
    """
    minutes = int(amount)
    if unit in _HOUR_UNITS:
        minutes *= 60
    elif unit in _DAY_UNITS:
        minutes *= 60 * 24
    return min(minutes, MAX_BAN_MINUTES)


def welcome_to_cq(
    template: str, user_id: int, nickname: str, group_id: int, group_name: str
) -> str:
    """Expand the ``{at}``, ``{nickname}``, ``{avatar}``, ``{uid}``, ``{gid}`` and
    ``{groupname}`` placeholders into CQ-coded text."""
    uid = str(user_id)
    replacements = (
        ("{at}", f"[CQ:at,qq={uid}]"),
        ("{nickname}", nickname),
        ("{avatar}", f"[CQ:image,file=http://q4.qlogo.cn/g?b=qq&nk={uid}&s=640]"),
        ("{uid}", uid),
        ("{gid}", str(group_id)),
        ("{groupname}", group_name),
    )
    text = template
    for placeholder, value in replacements:
        text = text.replace(placeholder, value)
    return text


def unescape_brackets(text: str) -> str:
    """Undo the escaping of square brackets so forwarded CQ codes work again."""
    return text.replace("&#91;", "[").replace("&#93;", "]")


def pick_lucky(
    members: Sequence[Mapping[str, Any]], rng: random.Random | None = None
) -> Mapping[str, Any]:
    """Pick one of the ten members who spoke most recently."""
    if not members:
        raise ValueError("no members to pick from")
    rng = rng or random.Random()
    ordered = sorted(members, key=lambda m: int(m.get("last_sent_time", 0)))
    recent = ordered[-10:]
    return recent[rng.randrange(len(recent))]


def toggle_option(data: int, option: str, bit: int) -> int | None:
    """Set or clear ``bit`` in ``data`` by a Chinese on/off word; None if not understood."""
    if option in _ENABLE_WORDS:
        return data | bit
    if option in _DISABLE_WORDS:
        return data & ~bit & _INT64_MASK
    return None


def parse_join_comment(comment: str) -> tuple[str, str]:
    """Split the answer of a join request into (github user, gist hash)."""
    index = comment.find(ANSWER_MARKER)
    if index < 0:
        raise ValueError("格式错误!")
    answer = comment[index + len(ANSWER_MARKER):]
    divider = answer.find("/")
    if divider <= 0:
        raise ValueError("格式错误!")
    return answer[:divider], answer[divider + 1:]


def gist_url(github_user: str, gist_hash: str, group_id: int) -> str:
    """Raw URL of the gist file named by the MD5 of the group number."""
    file_name = hashlib.md5(str(group_id).encode("ascii")).hexdigest()
    return GIST_RAW.format(user=github_user, hash=gist_hash, file=file_name)


def _default_fetch(url: str) -> bytes:
    import requests

    response = requests.get(url, timeout=30)
    response.raise_for_status()
    return response.content


def check_new_user(
    store: ManagerStore,
    qq: int,
    group_id: int,
    github_user: str,
    gist_hash: str,
    fetch: Fetch | None = None,
    now: float | None = None,
) -> tuple[bool, str]:
    """Verify a join request against a gist holding a recent Unix timestamp.

    Returns (accepted, reason); an accepted user is recorded in ``store``.
    """
    if store.has_member(github_user):
        return False, "该github用户已入群"
    fetch = fetch or _default_fetch
    now = time.time() if now is None else now
    url = gist_url(github_user, gist_hash, group_id)
    log.debug("[gist]visit url: %s", url)
    try:
        data = fetch(url)
    except Exception as exc:  # any transport failure is reported to the applicant
        return False, "无法连接到gist: " + str(exc)
    text = data.decode("utf-8", "replace") if isinstance(data, bytes) else data
    log.debug("[gist]get data: %s", text)
    if not _TIMESTAMP.fullmatch(text):
        return False, "时间戳格式错误: " + text
    stamp = int(text)
    if abs(int(now) - stamp) < GIST_WINDOW_SECONDS:
        store.add_member(qq, github_user)
        return True, ""
    return False, "时间戳超时"