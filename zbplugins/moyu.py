"""Slacker's reminder: days left until the weekend and the public holidays."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta

log = logging.getLogger(__name__)

HOLIDAY_NAMES = ("元旦", "春节", "清明节", "劳动节", "端午节", "中秋节", "国庆节")

GREETING = (
    "上午好，摸鱼人！\n工作再累，一定不要忘记摸鱼哦！有事没事起身去茶水间，去厕所，"
    "去廊道走走别老在工位上坐着，钱是老板的,但命是自己的。\n"
)
CLOSING = "上班是帮老板赚钱，摸鱼是赚老板的钱！最后，祝愿天下所有摸鱼人，都能愉快的渡过每一天…"

_HOLIDAY_VALUE = re.compile(r"\s*(-?\d+)_(-?\d+)_(-?\d+)_(-?\d+)")


@dataclass(frozen=True)
class Holiday:
    """A holiday starting at midnight of ``date`` and lasting ``duration``."""

    name: str
    date: datetime
    duration: timedelta

    def describe(self, now: datetime) -> str:
        """How far away the holiday is, or whether it is on or over."""
        remaining = self.date - now
        if remaining >= timedelta(0):
            days = remaining.total_seconds() / 86400.0
            return f"距离{self.name}还有: {days:.2f}天！"
        if remaining + self.duration >= timedelta(0):
            return f"好好享受 {self.name} 假期吧!"
        return f"今年 {self.name} 假期已过"


def parse_holiday(name: str, value: str) -> Holiday:
    """Parse a stored ``days_year_month_day`` value into a :class:`Holiday`."""
    match = _HOLIDAY_VALUE.match(value)
    if match is None:
        raise ValueError(f"invalid holiday value {value!r}")
    days, year, month, day = (int(part) for part in match.groups())
    log.debug("[moyu]获取节日: %s %d %d %d %d", name, days, year, month, day)
    return Holiday(name, datetime(year, month, day), timedelta(days=days))


def weekend(today: date) -> str:
    """Weekend greeting, or the number of days until Saturday."""
    weekday = today.weekday()  # Monday is 0
    if weekday >= 5:
        return "好好享受周末吧！"
    return f"距离周末还有:{4 - weekday}天！"


def moyu_message(today: datetime, holidays: Iterable[Holiday]) -> str:
    """The full reminder text for ``today``."""
    lines = [weekend(today)]
    lines.extend(holiday.describe(today) for holiday in holidays)
    lines.append(CLOSING)
    return today.strftime("%Y-%m-%d") + GREETING + "\n".join(lines)