import random

import pytest

from zbplugins.manager import (
    ManagerStore,
    ban_minutes,
    check_new_user,
    gist_url,
    parse_join_comment,
    pick_lucky,
    toggle_option,
    unescape_brackets,
    welcome_to_cq,
)


@pytest.fixture
def store(tmp_path):
    s = ManagerStore(str(tmp_path / "config.db"))
    yield s
    s.close()


def test_welcome_round_trip(store):
    assert store.get_welcome(1) is None
    store.set_welcome(1, "hello {at}")
    store.set_welcome(1, "hi {nickname}")
    assert store.get_welcome(1) == "hi {nickname}"
    assert store.get_farewell(1) is None


def test_farewell_round_trip(store):
    store.set_farewell(5, "bye")
    assert store.get_farewell(5) == "bye"
    assert store.get_welcome(5) is None


def test_members(store):
    assert not store.has_member("octo")
    store.add_member(100, "octo")
    assert store.has_member("octo")


def test_ban_minutes_units():
    assert ban_minutes(5, "分钟") == 5
    assert ban_minutes(2, "小时") == 120
    assert ban_minutes(2, "h") == 120
    assert ban_minutes(1, "天") == 1440
    assert ban_minutes(7, "whatever") == 7


def test_ban_minutes_cap():
    assert ban_minutes(30, "天") == 43199
    assert ban_minutes(43200, "分钟") == 43199


def test_welcome_to_cq():
    text = welcome_to_cq("{at}{nickname}{uid}/{gid}/{groupname}{avatar}", 123, "Bob", 456, "G")
    assert text == (
        "[CQ:at,qq=123]Bob123/456/G"
        "[CQ:image,file=http://q4.qlogo.cn/g?b=qq&nk=123&s=640]"
    )


def test_unescape_brackets():
    assert unescape_brackets("&#91;CQ:face,id=1&#93;") == "[CQ:face,id=1]"


def test_pick_lucky_from_recent():
    members = [{"user_id": i, "last_sent_time": i} for i in range(30)]
    rng = random.Random(3)
    for _ in range(50):
        assert pick_lucky(members, rng)["user_id"] >= 20


def test_pick_lucky_empty():
    with pytest.raises(ValueError):
        pick_lucky([])


def test_toggle_option():
    assert toggle_option(0, "开启", 1) == 1
    assert toggle_option(3, "关闭", 1) == 2
    assert toggle_option(0, "启用", 0x10) == 0x10
    assert toggle_option(0x11, "禁用", 0x10) == 1
    assert toggle_option(5, "maybe", 1) is None


def test_parse_join_comment():
    assert parse_join_comment("问题：x\n答案：octo/abc") == ("octo", "abc")
    with pytest.raises(ValueError):
        parse_join_comment("答案：/abc")
    with pytest.raises(ValueError):
        parse_join_comment("nothing")


def test_gist_url_shape():
    url = gist_url("octo", "abc", 42)
    prefix = "https://gist.githubusercontent.com/octo/abc/raw/"
    assert url.startswith(prefix)
    name = url[len(prefix):]
    assert len(name) == 32 and all(c in "0123456789abcdef" for c in name)
    assert gist_url("octo", "abc", 43) != url


def test_check_new_user_accepts(store):
    seen = []

    def fetch(url):
        seen.append(url)
        return b"1000000"

    ok, reason = check_new_user(store, 7, 42, "octo", "abc", fetch, 1000100)
    assert (ok, reason) == (True, "")
    assert seen == [gist_url("octo", "abc", 42)]
    assert store.has_member("octo")
    ok, reason = check_new_user(store, 8, 42, "octo", "abc", fetch, 1000100)
    assert (ok, reason) == (False, "该github用户已入群")


def test_check_new_user_timeout(store):
    ok, reason = check_new_user(store, 7, 42, "octo", "abc", lambda u: "1000000", 1000600)
    assert (ok, reason) == (False, "时间戳超时")
    assert not store.has_member("octo")


def test_check_new_user_bad_format(store):
    ok, reason = check_new_user(store, 7, 42, "octo", "abc", lambda u: "abc", 0)
    assert (ok, reason) == (False, "时间戳格式错误: abc")


def test_check_new_user_fetch_error(store):
    def fetch(url):
        raise OSError("down")

    ok, reason = check_new_user(store, 7, 42, "octo", "abc", fetch, 0)
    assert not ok
    assert reason == "无法连接到gist: down"