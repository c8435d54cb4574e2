"""Song guessing game: picking a song, cutting clips and judging answers."""

from __future__ import annotations

import json
import logging
import os
import random
import subprocess
from dataclasses import asdict, dataclass, field
from urllib.parse import quote_plus

import requests

log = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/87.0.4280.88 Safari/537.36 Edg/87.0.664.66"
)
CUT_TIMES = ("00:00:05", "00:00:30", "00:01:00")
CLIP_SECONDS = "10"
MODES = ("", "-动漫", "-动漫2")
MAX_CLIP = 2
MAX_WRONG_ANSWERS = 6

_MODE_DIRS = {"-动漫": "动漫", "-动漫2": "动漫2"}
_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}
_TIMEOUT = 30


class MusicError(Exception):
    """Raised when a song cannot be chosen, downloaded or cut."""


def _parse_bool(value: str) -> bool:
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"invalid boolean {value!r}")


def _default_music_path() -> str:
    return os.getcwd().replace("\\", "/") + "/data/guessmusic/music/"


@dataclass
class GuessConfig:
    """Where the song library lives and which sources may be used."""

    music_path: str = field(default_factory=_default_music_path)
    local: bool = True
    api: bool = True

    @classmethod
    def load(cls, path: str) -> GuessConfig:
        """Read the config at ``path``; write the defaults there if it is missing."""
        config = cls()
        if not os.path.exists(path):
            config.save(path)
            return config
        with open(path, encoding="utf-8") as handle:
            data = json.load(handle)
        config.music_path = data.get("musicPath", config.music_path)
        config.local = bool(data.get("local", config.local))
        config.api = bool(data.get("api", config.api))
        return config

    def save(self, path: str) -> None:
        data = asdict(self)
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(
                {"musicPath": data["music_path"], "local": data["local"], "api": data["api"]},
                handle,
                ensure_ascii=False,
            )
            handle.write("\n")

    def apply(self, option: str, value: str) -> None:
        """Change one setting by its command name: 缓存歌库路径, 本地 or Api."""
        if option == "缓存歌库路径":
            if not value:
                raise ValueError("请输入正确的路径!")
            path = value.replace("\\", "/")
            if not path.endswith("/"):
                path += "/"
            self.music_path = path
        elif option == "本地":
            self.local = _parse_bool(value)
        elif option == "Api":
            self.api = _parse_bool(value)
        else:
            raise ValueError(f"unknown option {option!r}")


@dataclass
class GuessReply:
    """The game's reaction: text to send, a clip index to play and whether it ended."""

    text: str
    clip: int | None = None
    finished: bool = False


class GuessGame:
    """One round of guessing a song named ``title - artist[ - anime]``."""

    def __init__(self, music_name: str, mode: str, starter_id: int):
        if mode not in MODES:
            raise ValueError(f"unknown mode {mode!r}")
        parts = music_name.split(" - ")
        needed = 3 if mode == "-动漫2" else 2
        if len(parts) < needed:
            raise MusicError(f"歌曲命名不规范: {music_name}")
        self.mode = mode
        self.starter_id = starter_id
        self.title = parts[0]
        self.artist = parts[1]
        self.anime = parts[2] if len(parts) > 2 else ""
        self.music_count = 0
        self.answer_count = 0
        self.finished = False

    def _reveal(self) -> str:
        text = "\n歌名:" + self.title + "\n歌手:" + self.artist
        if self.mode == "-动漫2":
            text += "\n歌曲出自:" + self.anime
        return text

    def _end(self, text: str) -> GuessReply:
        self.finished = True
        return GuessReply(text, finished=True)

    def _check_running(self) -> None:
        if self.finished:
            raise RuntimeError("game is over")

    def expire(self) -> GuessReply:
        """End the game because nobody answered in time."""
        self._check_running()
        return self._end("猜歌超时，游戏结束\n答案是:" + self._reveal())

    def timeout_clip(self) -> GuessReply | None:
        """Play the next clip after a silent wait; None once all clips are used."""
        self._check_running()
        self.music_count += 1
        if self.music_count > MAX_CLIP:
            return None
        return GuessReply("好像有些难度呢，再听这段音频，要仔细听哦", clip=self.music_count)

    def hint(self) -> GuessReply:
        """Play the next clip on request."""
        self._check_running()
        self.music_count += 1
        if self.music_count > MAX_CLIP:
            return GuessReply("已经没有提示了哦")
        return GuessReply("再听这段音频，要仔细听哦", clip=self.music_count)

    @staticmethod
    def _matches(expected: str, answer: str) -> bool:
        return answer in expected or expected.casefold() == answer.casefold()

    def answer(self, user_id: int, text: str) -> GuessReply:
        """Judge a ``-answer`` message from ``user_id``."""
        self._check_running()
        answer = text.replace("-", "", 1)
        if answer == "取消":
            if user_id == self.starter_id:
                return self._end("游戏已取消，猜歌答案是" + self._reveal())
            return GuessReply("你无权限取消")
        if answer == "提示":
            return self.hint()
        if self._matches(self.title, answer):
            return self._end("太棒了，你猜对歌曲名了！答案是" + self._reveal())
        if self.artist == "未知" and answer == "未知":
            return GuessReply("该模式禁止回答“未知”")
        if self._matches(self.artist, answer):
            return self._end("太棒了，你猜对歌手名了！答案是" + self._reveal())
        if self.mode == "-动漫2" and self._matches(self.anime, answer):
            return self._end("太棒了，你猜对番剧名了！答案是:" + self._reveal())
        self.music_count += 1
        if self.music_count > MAX_CLIP:
            if self.answer_count < MAX_WRONG_ANSWERS:
                self.answer_count += 1
                return GuessReply("答案不对哦，加油啊~")
            return self._end("次数到了，你没能猜出来。\n答案是:" + self._reveal())
        self.answer_count += 1
        return GuessReply("答案不对，再听这段音频，要仔细听哦", clip=self.music_count)


def pick_local(names: list[str], rng: random.Random | None = None) -> str:
    """Pick one local file and drop its ``.mp3`` extension."""
    if not names:
        raise MusicError("[本地数据为0]")
    if len(names) > 1:
        rng = rng or random.Random()
        chosen = names[rng.randrange(len(names))]
    else:
        chosen = names[0]
    return chosen.replace(".mp3", "", 1)


_FETCH_ERRORS = (MusicError, OSError, ValueError, KeyError, IndexError, TypeError)


def music_lottery(mode, music_path, config, fetch_api=None, rng=None) -> tuple[str, str]:
    """Choose a song for ``mode``; returns (song name, directory holding it).

    ``fetch_api(mode, directory)`` downloads a song and returns its name.
    """
    rng = rng or random.Random()
    fetch_api = fetch_api or fetch_api_music
    directory = os.path.join(music_path, _MODE_DIRS.get(mode, "歌榜")) + "/"
    try:
        os.makedirs(directory, exist_ok=True)
    except OSError as exc:
        raise MusicError(f"[生成文件夹错误]ERROR:{exc}") from exc
    try:
        names = sorted(os.listdir(directory))
    except OSError as exc:
        raise MusicError(f"[读取本地列表错误]ERROR:{exc}") from exc

    if config.local and config.api:
        if not names:
            try:
                return fetch_api(mode, directory), directory
            except _FETCH_ERRORS as exc:
                raise MusicError(f"[本地数据为0，歌曲下载错误]ERROR:{exc}") from exc
        if rng.randrange(2) == 0:
            return pick_local(names, rng), directory
        try:
            return fetch_api(mode, directory), directory
        except _FETCH_ERRORS as exc:
            log.debug("[guessmusic] api failed, falling back to local: %s", exc)
            return pick_local(names, rng), directory
    if config.local:
        if not names:
            raise MusicError("[本地数据为0，未开启API数据]")
        return pick_local(names, rng), directory
    if config.api:
        try:
            return fetch_api(mode, directory), directory
        except _FETCH_ERRORS as exc:
            raise MusicError(f"[获取API失败，未开启本地数据] ERROR:{exc}") from exc
    raise MusicError("[未开启API以及本地数据]")


def fetch_api_music(mode, music_path, session=None) -> str:
    """Download a song from the API that serves ``mode``; returns its name."""
    if mode == "-动漫":
        return fetch_paugram(music_path, session)
    if mode == "-动漫2":
        return fetch_anime(music_path, session)
    return fetch_netease(music_path, session)


def _get(session, url: str, referer: str | None = None) -> bytes:
    headers = {"User-Agent": USER_AGENT}
    if referer:
        headers["Referer"] = referer
    response = session.get(url, headers=headers, timeout=_TIMEOUT)
    response.raise_for_status()
    return response.content


def _check_reachable(session, url: str) -> None:
    try:
        response = session.head(url, allow_redirects=True, timeout=_TIMEOUT)
    except requests.RequestException as exc:
        raise MusicError(f"下载音乐失败, ERROR: {exc}") from exc
    if response.status_code != 200:
        raise MusicError(f"下载音乐失败, Status Code: {response.status_code}")


def _download(session, url: str, target: str) -> None:
    if not os.path.exists(target):
        data = _get(session, url)
        with open(target, "wb") as handle:
            handle.write(data)


def fetch_paugram(music_path, session=None) -> str:
    """Download a random anime song from the paugram API."""
    session = session or requests.Session()
    data = json.loads(_get(session, "https://api.paugram.com/acgm/?list=1",
                           "https://api.paugram.com/"))
    name = data.get("title", "")
    artist = data.get("artist", "")
    link = data.get("link", "")
    if not name or not artist:
        raise MusicError("无法获API取歌曲信息")
    music_name = f"{name} - {artist}"
    _check_reachable(session, link)
    _download(session, link, os.path.join(music_path, music_name + ".mp3"))
    return music_name


def fetch_anime(music_path, session=None) -> str:
    """Download a random anime song, resolved through a NetEase search."""
    session = session or requests.Session()
    data = json.loads(_get(session, "https://anime-music.jijidown.com/api/v2/music",
                           "https://anime-music.jijidown.com/"))
    res = data.get("res") or {}
    name = res.get("title", "")
    artist = res.get("author", "")
    anime = (res.get("anime_info") or {}).get("title", "")
    if not name or not artist:
        raise MusicError("无法获API取歌曲信息")
    keywords = f"{anime} {name}" if artist == "未知" else f"{name} {artist}"
    search = "https://music.cyrilstudio.top/search?keywords=" + quote_plus(keywords) + "&limit=1"
    try:
        found = json.loads(_get(session, search))
    except requests.RequestException as exc:
        raise MusicError(f"API歌曲查询失败, ERROR: {exc}") from exc
    code = found.get("code", 0)
    if code != 200:
        raise MusicError(f"下载音乐失败, Status Code: {code}")
    songs = (found.get("result") or {}).get("songs") or []
    if not songs:
        raise MusicError("API歌曲查询失败, ERROR: 没有找到歌曲")
    song = songs[0]
    if artist == "未知":
        artist = song["artists"][0]["name"].replace(" - ", "-")
    music_name = f"{name} - {artist} - {anime}"
    url = f"http://music.163.com/song/media/outer/url?id={song['id']}"
    _check_reachable(session, url)
    _download(session, url, os.path.join(music_path, music_name + ".mp3"))
    return music_name


def fetch_netease(music_path, session=None) -> str:
    """Download a random song from the NetEase hot chart."""
    session = session or requests.Session()
    data = json.loads(_get(
        session,
        "https://api.uomg.com/api/rand.music?sort=%E7%83%AD%E6%AD%8C%E6%A6%9C&format=json",
        "https://api.uomg.com/api/rand.music",
    ))
    info = data.get("data") or {}
    name = info.get("name", "")
    url = info.get("url", "")
    artist = info.get("artistsname", "")
    if not name or not artist:
        raise MusicError("无法获API取歌曲信息")
    music_name = f"{name} - {artist}"
    _download(session, url, os.path.join(music_path, music_name + ".mp3"))
    return music_name


def cut_music(music_file, output_dir) -> list[str]:
    """Cut three ten-second WAV clips from ``music_file`` with ffmpeg."""
    try:
        os.makedirs(output_dir, exist_ok=True)
    except OSError as exc:
        raise MusicError(f"[生成歌曲目录错误]ERROR:{exc}") from exc
    base = os.path.abspath(output_dir)
    clips = [os.path.join(base, f"{i}.wav") for i in range(len(CUT_TIMES))]
    args = ["ffmpeg", "-y", "-i", music_file]
    for start, clip in zip(CUT_TIMES, clips):
        args += ["-ss", start, "-t", CLIP_SECONDS, clip]
    args.append("-hide_banner")
    try:
        result = subprocess.run(args, capture_output=True, text=True)
    except OSError as exc:
        raise MusicError(f"[生成歌曲错误]ERROR:{exc}") from exc
    if result.returncode != 0:
        raise MusicError(f"[生成歌曲错误]ERROR:{result.stderr}")
    return clips