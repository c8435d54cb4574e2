"""Computing when a packed-schedule timer should next wake up."""

from __future__ import annotations

from datetime import datetime, timedelta

from .timer_model import Timer

_MINUTE = timedelta(minutes=1)
_HOUR = timedelta(hours=1)
_DAY = timedelta(days=1)


def _weekday(date: datetime) -> int:
    """Weekday counted from Sunday as 0."""
    return (date.weekday() + 1) % 7


def _make_date(year, month, day, hour, minute, second, micro, tzinfo) -> datetime:
    """Build a datetime, normalising out-of-range month, day and hour values."""
    carry, month0 = divmod(month - 1, 12)
    base = datetime(year + carry, month0 + 1, 1, tzinfo=tzinfo)
    return base + timedelta(
        days=day - 1, hours=hour, minutes=minute, seconds=second, microseconds=micro
    )


def _add_date(date: datetime, years: int, months: int, days: int) -> datetime:
    return _make_date(
        date.year + years,
        date.month + months,
        date.day + days,
        date.hour,
        date.minute,
        date.second,
        date.microsecond,
        date.tzinfo,
    )


def first_week(date: datetime, week: int) -> datetime:
    """First day of ``date``'s month falling on ``week`` (Sunday 0), same time of day."""
    if not 0 <= week <= 6:
        raise ValueError(f"invalid weekday {week}")
    day = _add_date(date, 0, 0, 1 - date.day)
    while _weekday(day) != week:
        day = _add_date(day, 0, 0, 1)
    return day


def next_wake_time(timer: Timer, now: datetime) -> datetime:
    """Next moment after ``now`` at which ``timer`` should be checked."""
    m, d, h, mn, w = timer.month(), timer.day(), timer.hour(), timer.minute(), timer.week()
    unit = timedelta(0)
    if mn >= 0:
        if h < 0:
            unit = _HOUR
        elif d < 0 or w < 0:
            unit = _DAY
        elif d == 0 and w >= 0:
            delta = _DAY * (w - _weekday(now))
            if delta < timedelta(0):
                delta = _DAY * 7
            unit += delta
    else:
        unit = _MINUTE

    stable = 0
    if mn < 0:
        mn = now.minute
    if h < 0:
        h = now.hour
    else:
        stable |= 0x8
    if d < 0:
        d = now.day
    elif d > 0:
        stable |= 0x4
    else:
        d = now.day
        if w >= 0:
            stable |= 0x2
    if m < 0:
        m = now.month
    else:
        stable |= 0x1

    if stable == 0b0101:
        if timer.day() != now.day or timer.month() != now.month:
            h = 0
    elif stable == 0b1001:
        if timer.month() != now.month:
            d = 0
    elif stable == 0b0001:
        if timer.month() != now.month:
            d = 0
            h = 0

    date = _make_date(now.year, m, d, h, mn, now.second, now.microsecond, now.tzinfo)
    if unit > timedelta(0):
        date += unit

    if date <= now:
        if timer.month() < 0:
            if timer.day() > 0 or (timer.day() == 0 and timer.week() >= 0):
                date = _add_date(date, 0, 1, 0)
            elif timer.day() < 0 or timer.week() < 0:
                if timer.hour() > 0:
                    date = _add_date(date, 0, 0, 1)
                elif timer.minute() > 0:
                    date += _HOUR
        else:
            date = _add_date(date, 1, 0, 0)

    if stable & 0x8 and date.hour != h:
        if not stable & 0x4:
            date = _add_date(date, 0, 0, 1) - _HOUR
        elif not stable & 0x2:
            date = _add_date(date, 0, 0, 7) - _HOUR
        elif stable == 0:
            date = _add_date(date, 0, 1, 0) - _HOUR
        else:
            date = _add_date(date, 1, 0, 0) - _HOUR

    if stable & 0x4 and date.day != d:
        date = _add_date(date, 0, 1, -1) if stable == 0 else _add_date(date, 1, 0, -1)

    if stable & 0x2 and _weekday(date) != w:
        date = _add_date(date, 0, 1, 0) if stable == 0 else _add_date(date, 1, 0, 0)
        date = first_week(date, w)

    if date <= now:
        date = now + _MINUTE
    return date


def is_due(timer: Timer, now: datetime) -> bool:
    """Whether a woken timer matches ``now`` and should send its alert."""
    month, day = timer.month(), timer.day()
    if not (month < 0 or month == now.month):
        return False
    if day < 0 or day == now.day:
        pass
    elif day == 0:
        if not (timer.week() < 0 or timer.week() == _weekday(now)):
            return False
    else:
        return False
    hour, minute = timer.hour(), timer.minute()
    return (hour < 0 or hour == now.hour) and (minute < 0 or minute == now.minute)