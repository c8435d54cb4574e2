"""Running and persisting group reminder timers."""

from __future__ import annotations

import logging
import re
import sqlite3
import threading
from collections.abc import Callable
from datetime import datetime, timedelta

from .timer_model import ENABLED_BIT, Timer
from .wake import is_due, next_wake_time

log = logging.getLogger(__name__)

Sender = Callable[[int, int, str], None]

_DESCRIPTORS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}
_MONTH_NAMES = {n: i for i, n in enumerate(
    ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"], 1)}
_DOW_NAMES = {n: i for i, n in enumerate(["sun", "mon", "tue", "wed", "thu", "fri", "sat"])}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_UNIT_SECONDS = {"ns": 1e-9, "us": 1e-6, "µs": 1e-6, "ms": 1e-3, "s": 1, "m": 60, "h": 3600}
_SEARCH_YEARS = 5


def _parse_value(text: str, names: dict[str, int]) -> int:
    lowered = text.lower()
    if lowered in names:
        return names[lowered]
    if not text.isascii() or not text.isdigit():
        raise ValueError(f"failed to parse int from {text!r}")
    return int(text)


def _parse_field(text: str, low: int, high: int, names: dict[str, int]) -> tuple[frozenset[int], bool]:
    values: set[int] = set()
    star = False
    for part in text.split(","):
        span, has_step, step_text = part.partition("/")
        step = _parse_value(step_text, {}) if has_step else 1
        if has_step and step <= 0:
            raise ValueError(f"step of range should be a positive number: {part}")
        if span in ("*", "?"):
            start, end = low, high
            star = star or step == 1
        else:
            first, dash, last = span.partition("-")
            start = _parse_value(first, names)
            if dash:
                end = _parse_value(last, names)
            else:
                end = high if has_step else start
        if start < low or end > high or start > end:
            raise ValueError(f"value out of range ({low}-{high}): {part}")
        values.update(range(start, end + 1, step))
    return frozenset(values), star


def _parse_duration(text: str) -> timedelta:
    if not text or _DURATION_PART.sub("", text):
        raise ValueError(f"invalid duration {text!r}")
    seconds = sum(float(n) * _UNIT_SECONDS[u] for n, u in _DURATION_PART.findall(text))
    return timedelta(seconds=max(1, int(seconds)))


class CronSchedule:
    """A five-field cron specification, a ``@`` descriptor or ``@every <duration>``."""

    def __init__(self, spec: str):
        self.spec = spec
        self._every: timedelta | None = None
        text = spec.strip()
        if text.startswith("@every "):
            self._every = _parse_duration(text[len("@every "):].strip())
            return
        if text.startswith("@"):
            if text not in _DESCRIPTORS:
                raise ValueError(f"unrecognized descriptor: {text}")
            text = _DESCRIPTORS[text]
        fields = text.split()
        if len(fields) != 5:
            raise ValueError(f"expected exactly 5 fields, found {len(fields)}: {spec}")
        self._minutes, _ = _parse_field(fields[0], 0, 59, {})
        self._hours, _ = _parse_field(fields[1], 0, 23, {})
        self._days, self._days_star = _parse_field(fields[2], 1, 31, {})
        self._months, _ = _parse_field(fields[3], 1, 12, _MONTH_NAMES)
        self._weekdays, self._weekdays_star = _parse_field(fields[4], 0, 6, _DOW_NAMES)

    def _day_matches(self, moment: datetime) -> bool:
        dom = moment.day in self._days
        dow = (moment.weekday() + 1) % 7 in self._weekdays
        if self._days_star or self._weekdays_star:
            return dom and dow
        return dom or dow

    def next_after(self, moment: datetime) -> datetime | None:
        """First activation strictly after ``moment``, or None if none within five years."""
        if self._every is not None:
            return moment.replace(microsecond=0) + self._every
        limit = moment.year + _SEARCH_YEARS
        t = moment.replace(second=0, microsecond=0) + timedelta(minutes=1)
        while t.year <= limit:
            if t.month not in self._months:
                year, month = (t.year + 1, 1) if t.month == 12 else (t.year, t.month + 1)
                t = t.replace(year=year, month=month, day=1, hour=0, minute=0)
            elif not self._day_matches(t):
                t = (t + timedelta(days=1)).replace(hour=0, minute=0)
            elif t.hour not in self._hours:
                t = t.replace(minute=0) + timedelta(hours=1)
            elif t.minute not in self._minutes:
                t += timedelta(minutes=1)
            else:
                return t
        return None


def _escape_text(text: str) -> str:
    return text.replace("&", "&amp;").replace("[", "&#91;").replace("]", "&#93;")


def _escape_param(text: str) -> str:
    return _escape_text(text).replace(",", "&#44;")


def render_alert(timer: Timer) -> str:
    """CQ-coded message: at-all, the alert text and the uncached image if any."""
    message = "[CQ:at,qq=all]" + _escape_text(timer.alert)
    if timer.url:
        message += f"[CQ:image,file={_escape_param(timer.url)},cache=0]"
    return message


class Clock:
    """Keeps timers in SQLite and runs each one on a background thread."""

    def __init__(self, db_path: str, sender: Sender):
        self._sender = sender
        self._lock = threading.RLock()
        self._timers: dict[int, Timer] = {}
        self._stops: dict[int, threading.Event] = {}
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        with self._lock, self._db:
            self._db.execute(
                "CREATE TABLE IF NOT EXISTS timer (id INTEGER PRIMARY KEY, emdwhm INTEGER, "
                "sid INTEGER, gid INTEGER, alert TEXT, cron TEXT, url TEXT)"
            )
            rows = self._db.execute(
                "SELECT id, emdwhm, sid, gid, alert, cron, url FROM timer ORDER BY rowid"
            ).fetchall()
        for row in rows:
            self.register_timer(Timer(*row), False, True)

    def register_timer(self, timer: Timer, save: bool, isinit: bool) -> bool:
        """Start running ``timer``; with ``save`` it gets its ID and is stored.

        Returns whether the timer is now scheduled. An invalid cron spec leaves
        the error text in ``timer.alert``.
        """
        if save:
            timer.id = timer.timer_id()
        key = timer.id
        existing = self.get_timer(key)
        if existing is not None and existing is not timer:
            existing.packed &= ~ENABLED_BIT
        log.info("[群管]%s计时器 %d", "恢复" if isinit else "注册", key)

        if timer.cron:
            try:
                schedule = CronSchedule(timer.cron)
            except ValueError as exc:
                timer.alert = str(exc)
                return False
            try:
                if save:
                    self.add_timer_into_db(timer)
                self.add_timer_into_map(timer)
            except sqlite3.Error:
                log.exception("[群管]保存计时器失败")
                return False
            self._start(key, self._run_cron, timer, schedule)
            return True

        try:
            if save:
                self.add_timer_into_db(timer)
        except sqlite3.Error:
            log.exception("[群管]保存计时器失败")
        self.add_timer_into_map(timer)
        if not timer.enabled():
            return False
        self._start(key, self._run_dated, timer)
        return True

    def _start(self, key: int, target, *args) -> None:
        stop = threading.Event()
        with self._lock:
            previous = self._stops.get(key)
            if previous is not None:
                previous.set()
            self._stops[key] = stop
        threading.Thread(target=target, args=(*args, stop), daemon=True, name=f"timer-{key:08x}").start()

    def _send(self, timer: Timer) -> None:
        try:
            self._sender(timer.self_id, timer.group_id, render_alert(timer))
        except Exception:
            log.exception("[群管]发送提醒失败")

    def _run_cron(self, timer: Timer, schedule: CronSchedule, stop: threading.Event) -> None:
        while True:
            now = datetime.now()
            wake = schedule.next_after(now)
            if wake is None or stop.wait((wake - now).total_seconds()):
                return
            self._send(timer)

    def _run_dated(self, timer: Timer, stop: threading.Event) -> None:
        while timer.enabled() and not stop.is_set():
            now = datetime.now()
            wake = next_wake_time(timer, now)
            log.info("[群管]计时器%08x将睡眠%ds", timer.id, int((wake - now).total_seconds()))
            if stop.wait((wake - now).total_seconds()):
                return
            if timer.enabled() and is_due(timer, datetime.now()):
                self._send(timer)

    def cancel_timer(self, key: int) -> bool:
        """Stop and forget a timer; False if there is no such timer."""
        timer = self.get_timer(key)
        if timer is None:
            return False
        if not timer.cron:
            timer.packed &= ~ENABLED_BIT
        with self._lock:
            stop = self._stops.pop(key, None)
            if stop is not None:
                stop.set()
            self._timers.pop(key, None)
            try:
                with self._db:
                    self._db.execute("DELETE FROM timer WHERE id = ?", (key,))
            except sqlite3.Error:
                log.exception("[群管]删除计时器失败")
                return False
        return True

    def list_timers(self, group_id: int) -> list[str]:
        """Human-readable schedules of the group's timers, one line each."""
        lines = []
        with self._lock:
            timers = list(self._timers.values())
        for timer in timers:
            if timer.group_id != group_id:
                continue
            info = timer.info()
            text = (info[info.index("]") + 1:] + "\n").replace("-1", "每")
            text = text.replace("月0日0周", "月周天").replace("月0日", "月").replace("日0周", "日")
            lines.append(text)
        return lines

    def get_timer(self, key: int) -> Timer | None:
        with self._lock:
            return self._timers.get(key)

    def add_timer_into_db(self, timer: Timer) -> None:
        with self._lock, self._db:
            self._db.execute(
                "REPLACE INTO timer (id, emdwhm, sid, gid, alert, cron, url) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (timer.id, timer.packed, timer.self_id, timer.group_id, timer.alert, timer.cron, timer.url),
            )

    def add_timer_into_map(self, timer: Timer) -> None:
        with self._lock:
            self._timers[timer.id] = timer

    def close(self) -> None:
        """Stop every running timer and close the database."""
        with self._lock:
            for stop in self._stops.values():
                stop.set()
            self._stops.clear()
            self._db.close()

    def __enter__(self) -> Clock:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()