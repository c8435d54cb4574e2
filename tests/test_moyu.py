from datetime import date, datetime, timedelta

import pytest

from zbplugins.moyu import Holiday, moyu_message, parse_holiday, weekend

SOURCE_VALUES = [
    ("元旦", "1_2023_1_1", datetime(2023, 1, 1), 1),
    ("春节", "7_2023_1_21", datetime(2023, 1, 21), 7),
    ("清明节", "1_2023_4_5", datetime(2023, 4, 5), 1),
    ("劳动节", "1_2023_5_1", datetime(2023, 5, 1), 1),
    ("端午节", "1_2023_6_22", datetime(2023, 6, 22), 1),
    ("中秋节", "1_2022_9_10", datetime(2022, 9, 10), 1),
    ("国庆节", "7_2022_10_1", datetime(2022, 10, 1), 7),
]


@pytest.mark.parametrize("name,value,start,days", SOURCE_VALUES)
def test_parse_holiday_values(name, value, start, days):
    holiday = parse_holiday(name, value)
    assert holiday.name == name
    assert holiday.date == start
    assert holiday.duration == timedelta(days=days)


def test_parse_holiday_rejects_garbage():
    with pytest.raises(ValueError):
        parse_holiday("元旦", "not a date")


def test_parse_holiday_rejects_impossible_date():
    with pytest.raises(ValueError):
        parse_holiday("元旦", "1_2023_13_40")


def test_describe_before():
    holiday = parse_holiday("元旦", "1_2023_1_1")
    assert holiday.describe(datetime(2022, 12, 31)) == "距离元旦还有: 1.00天！"


def test_describe_during():
    holiday = parse_holiday("春节", "7_2023_1_21")
    assert holiday.describe(datetime(2023, 1, 25)) == "好好享受 春节 假期吧!"


def test_describe_after():
    holiday = parse_holiday("元旦", "1_2023_1_1")
    assert holiday.describe(datetime(2023, 1, 3)) == "今年 元旦 假期已过"


def test_weekend_weekdays():
    assert weekend(date(2022, 7, 4)) == "距离周末还有:4天！"
    assert weekend(date(2022, 7, 8)) == "距离周末还有:0天！"


def test_weekend_days_off():
    assert weekend(date(2022, 7, 9)) == "好好享受周末吧！"
    assert weekend(date(2022, 7, 10)) == "好好享受周末吧！"


def test_moyu_message_layout():
    today = datetime(2022, 7, 4, 10, 0)
    holidays = [parse_holiday(n, v) for n, v, _, _ in SOURCE_VALUES]
    text = moyu_message(today, holidays)
    assert text.startswith("2022-07-04上午好，摸鱼人！")
    assert text.endswith("愉快的渡过每一天…")
    lines = text.split("\n")
    for holiday in holidays:
        assert holiday.describe(today) in lines
    assert weekend(today) in lines


def test_moyu_message_without_holidays():
    today = datetime(2022, 7, 9, 10, 0)
    text = moyu_message(today, [Holiday("x", datetime(2022, 1, 1), timedelta(days=1))])
    assert "好好享受周末吧！\n今年 x 假期已过\n" in text