import threading
from datetime import datetime

import pytest

from zbplugins.clock import Clock, CronSchedule, render_alert
from zbplugins.timer_model import Timer, get_filled_cron_timer, get_filled_timer


def source_timer():
    return get_filled_timer(["", "12", "-1", "12", "0", "", "test"], 0, 0, False)


def test_source_clock_db_only_then_map(tmp_path):
    with Clock(str(tmp_path / "t.db"), lambda *a: None) as clock:
        timer = source_timer()
        clock.add_timer_into_db(timer)
        assert clock.list_timers(0) == []
        clock.add_timer_into_map(timer)
        assert clock.list_timers(0) == ["12月1周12:0\n"]


def test_reload_from_db(tmp_path):
    path = str(tmp_path / "t.db")
    with Clock(path, lambda *a: None) as clock:
        clock.add_timer_into_db(source_timer())
    with Clock(path, lambda *a: None) as clock:
        assert clock.list_timers(0) == ["12月1周12:0\n"]
        assert clock.get_timer(0).alert == "test"


def test_cron_register_list_cancel(tmp_path):
    path = str(tmp_path / "t.db")
    with Clock(path, lambda *a: None) as clock:
        timer = get_filled_cron_timer("30 8 * * *", "早安", "", 1, 100)
        assert clock.register_timer(timer, True, False) is True
        assert timer.id == timer.timer_id()
        assert clock.get_timer(timer.id) is timer
        assert clock.list_timers(100) == ["30 8 * * *\n"]
        assert clock.list_timers(5) == []
    with Clock(path, lambda *a: None) as clock:
        assert clock.get_timer(timer.id).cron == "30 8 * * *"
        assert clock.cancel_timer(timer.id) is True
        assert clock.cancel_timer(timer.id) is False
        assert clock.list_timers(100) == []


def test_invalid_cron(tmp_path):
    with Clock(str(tmp_path / "t.db"), lambda *a: None) as clock:
        timer = get_filled_cron_timer("bad spec", "x", "", 1, 1)
        assert clock.register_timer(timer, True, False) is False
        assert "expected exactly 5 fields" in timer.alert
        assert clock.get_timer(timer.id) is None


def test_dated_timer_register_and_cancel(tmp_path):
    with Clock(str(tmp_path / "t.db"), lambda *a: None) as clock:
        timer = get_filled_timer(["", "每", "周六", "16", "30", "", "x"], 0, 3, False)
        assert clock.register_timer(timer, True, False) is True
        assert clock.list_timers(3) == ["每月6周16:30\n"]
        assert clock.cancel_timer(timer.id) is True
        assert not timer.enabled()


def test_every_sends(tmp_path):
    received = []
    done = threading.Event()

    def sender(self_id, group_id, message):
        received.append((self_id, group_id, message))
        done.set()

    with Clock(str(tmp_path / "t.db"), sender) as clock:
        timer = get_filled_cron_timer("@every 1s", "hi", "", 2, 9)
        registered = clock.register_timer(timer, True, False)
        assert registered is True
        assert clock.get_timer(timer.id) is timer
        assert done.wait(5)
    assert received[0] == (2, 9, "[CQ:at,qq=all]hi")


def test_render_alert():
    assert render_alert(Timer(alert="a[b]")) == "[CQ:at,qq=all]a&#91;b&#93;"
    assert (
        render_alert(Timer(alert="x", url="http://example.com/a.png"))
        == "[CQ:at,qq=all]x[CQ:image,file=http://example.com/a.png,cache=0]"
    )


@pytest.mark.parametrize(
    "spec, moment, expected",
    [
        ("30 8 * * *", datetime(2022, 7, 6, 9, 0), datetime(2022, 7, 7, 8, 30)),
        ("0 10 * * 1-5", datetime(2022, 7, 9, 12, 0), datetime(2022, 7, 11, 10, 0)),
        ("*/15 * * * *", datetime(2022, 7, 6, 10, 7, 30), datetime(2022, 7, 6, 10, 15)),
        ("0 0 13 * 5", datetime(2022, 7, 6, 0, 0), datetime(2022, 7, 8, 0, 0)),
        ("0 9 * * sun", datetime(2022, 7, 9, 10, 0), datetime(2022, 7, 10, 9, 0)),
        ("@hourly", datetime(2022, 7, 6, 10, 0), datetime(2022, 7, 6, 11, 0)),
        ("@every 1h30m", datetime(2022, 7, 6, 10, 0, 20, 500000), datetime(2022, 7, 6, 11, 30, 20)),
    ],
)
def test_cron_next_after(spec, moment, expected):
    assert CronSchedule(spec).next_after(moment) == expected


def test_cron_never():
    assert CronSchedule("0 0 31 2 *").next_after(datetime(2022, 7, 6)) is None


@pytest.mark.parametrize("spec", ["bad", "61 * * * *", "@sometimes", "*/0 * * * *", "@every x"])
def test_cron_invalid(spec):
    with pytest.raises(ValueError):
        CronSchedule(spec)