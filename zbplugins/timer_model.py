"""Group reminder timers: packed schedule fields and parsing of Chinese dates."""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass

log = logging.getLogger(__name__)

ENABLED_BIT = 0x800000
_ALL_BITS = 0xFFFFFF

# (shift, mask) of each packed field; an all-ones field means "every".
_MONTH = (19, 0xF)
_DAY = (14, 0x1F)
_WEEK = (11, 0x7)
_HOUR = (6, 0x1F)
_MINUTE = (0, 0x3F)

_DIGITS = "零一二三四五六七八九十"
_ASCII_INT = re.compile(r"[+-]?[0-9]+")


def _read(packed: int, field: tuple[int, int]) -> int:
    shift, mask = field
    value = (packed >> shift) & mask
    return -1 if value == mask else value


def _write(packed: int, field: tuple[int, int], value: int) -> int:
    shift, mask = field
    return (packed & ~(mask << shift) & _ALL_BITS) | ((value & mask) << shift)


@dataclass
class Timer:
    """A reminder, either a packed month/day/week/hour/minute schedule or a cron spec.

    Weekdays count from Sunday as 0. A field value of -1 means "every".
    """

    id: int = 0
    packed: int = 0
    self_id: int = 0
    group_id: int = 0
    alert: str = ""
    cron: str = ""
    url: str = ""

    def enabled(self) -> bool:
        return bool(self.packed & ENABLED_BIT)

    def month(self) -> int:
        return _read(self.packed, _MONTH)

    def day(self) -> int:
        return _read(self.packed, _DAY)

    def week(self) -> int:
        return _read(self.packed, _WEEK)

    def hour(self) -> int:
        return _read(self.packed, _HOUR)

    def minute(self) -> int:
        return _read(self.packed, _MINUTE)

    def info(self) -> str:
        """Canonical description used for identity and listing."""
        if self.cron:
            return f"[{self.group_id}]{self.cron}"
        return (
            f"[{self.group_id}]{self.month()}月{self.day()}日{self.week()}周"
            f"{self.hour()}:{self.minute()}"
        )

    def timer_id(self) -> int:
        """Little-endian 32-bit prefix of the MD5 of :meth:`info`."""
        digest = hashlib.md5(self.info().encode("utf-8")).digest()
        return int.from_bytes(digest[:4], "little")


def get_filled_cron_timer(
    cron: str, alert: str, image_url: str, bot_id: int, group_id: int
) -> Timer:
    return Timer(self_id=bot_id, group_id=group_id, alert=alert, cron=cron, url=image_url)


def get_filled_timer(
    date_strs: list[str], bot_id: int, group_id: int, match_date_only: bool
) -> Timer:
    """Build a timer from regex groups (month, day/week, hour, minute, url, alert).

    On invalid input the returned timer is disabled and ``alert`` says why.
    """
    month_s, day_week, hour_s, minute_s = date_strs[1:5]
    timer = Timer()

    mon = chinese_num_to_int(month_s)
    if (mon != -1 and mon <= 0) or mon > 12:
        timer.alert = "月份非法！"
        return timer
    timer.packed = _write(timer.packed, _MONTH, mon)

    if len(day_week) == 4:  # includes the trailing 日; drop the middle 十
        d = chinese_num_to_int(day_week[0] + day_week[2])
        if (d != -1 and d <= 0) or d > 31:
            timer.alert = "日期非法1！"
            return timer
        timer.packed = _write(timer.packed, _DAY, d)
    elif day_week[-1] == "日":
        d = chinese_num_to_int(day_week[:-1])
        if (d != -1 and d <= 0) or d > 31:
            timer.alert = "日期非法2！"
            return timer
        timer.packed = _write(timer.packed, _DAY, d)
    elif day_week[0] == "每":
        timer.packed = _write(timer.packed, _WEEK, -1)
    else:
        w = chinese_num_to_int(day_week[1:])
        if w == 7:
            w = 0
        if w < 0 or w > 6:
            timer.alert = "星期非法！"
            return timer
        timer.packed = _write(timer.packed, _WEEK, w)

    if len(hour_s) == 3:
        hour_s = hour_s[0] + hour_s[2]
    h = chinese_num_to_int(hour_s)
    if h < -1 or h > 23:
        timer.alert = "小时非法！"
        return timer
    timer.packed = _write(timer.packed, _HOUR, h)

    if len(minute_s) == 3:
        minute_s = minute_s[0] + minute_s[2]
    mn = chinese_num_to_int(minute_s)
    if mn < -1 or mn > 59:
        timer.alert = "分钟非法！"
        return timer
    timer.packed = _write(timer.packed, _MINUTE, mn)

    if not match_date_only:
        url_s = date_strs[5]
        if url_s:
            # drop the leading "用" (three bytes in UTF-8)
            timer.url = url_s.encode("utf-8")[3:].decode("utf-8", "replace")
            log.debug("[群管]%s", timer.url)
            if not timer.url.startswith("http"):
                timer.url = "illegal"
                log.debug("[群管]url非法！")
                return timer
        timer.alert = date_strs[6]
        timer.packed |= ENABLED_BIT
    timer.self_id = bot_id
    timer.group_id = group_id
    return timer


def chinese_num_to_int(text: str) -> int:
    """Convert a one- or two-character Chinese or ASCII number.

    "每" alone is -1 and "每二" is -2; unparsable digits give 0.
    """
    if not text:
        raise ValueError("empty number")
    if text[0].isdecimal():
        return int(text) if _ASCII_INT.fullmatch(text) else 0
    if text[0] == "每":
        return -chinese_char_to_int(text[1]) if len(text) == 2 else -1
    if len(text) == 1:
        return chinese_char_to_int(text)
    ten = chinese_char_to_int(text[0])
    if ten != 10:
        ten *= 10
    ones = chinese_char_to_int(text[1])
    if ones == 10:
        ones = 0
    return ten + ones


def chinese_char_to_int(char: str) -> int:
    """Map one Chinese numeral to 0..10; 日 and 天 (Sunday) are 7, others 0."""
    if char in ("日", "天"):
        return 7
    index = _DIGITS.find(char)
    return index if index >= 0 else 0