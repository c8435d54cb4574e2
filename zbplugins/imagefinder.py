"""Keyword image search and description of the found illustrations."""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from typing import Any
from urllib.parse import quote_plus

import requests

SEARCH_URL = "https://api.pixivel.moe/v2/pixiv/illust/search/{keyword}?page=0"
REFERER = "https://pixivel.moe/"
USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/94.0.4606.61 Safari/537.36"
)

_HREF = re.compile(r'<a href=".*">')


def format_tags(tags: Iterable[Mapping[str, Any]]) -> str:
    """Each tag on its own line as ``#name`` with its translation in brackets."""
    parts = []
    for tag in tags:
        parts.append("\n#" + str(tag.get("name", "")))
        translation = tag.get("translation") or ""
        if translation:
            parts.append(f" ({translation})")
    return "".join(parts)


def clean_description(text: str) -> str:
    """Turn line breaks into newlines and strip link tags."""
    text = text.replace("<br />", "\n").replace("</a>", "")
    return _HREF.sub("", text)


def parse_search(data: bytes | str) -> list[dict[str, Any]]:
    """Illustrations of a search response; raises ValueError with the API's message."""
    result = json.loads(data)
    if result.get("error"):
        raise ValueError(result.get("message", ""))
    return list((result.get("data") or {}).get("illusts") or [])


def search_illusts(keyword: str, session: requests.Session | None = None) -> list[dict[str, Any]]:
    """Search illustrations by keyword."""
    session = session or requests.Session()
    response = session.get(
        SEARCH_URL.format(keyword=quote_plus(keyword)),
        headers={"Referer": REFERER, "User-Agent": USER_AGENT},
        timeout=30,
    )
    response.raise_for_status()
    return parse_search(response.content)


def format_illust(illust: Mapping[str, Any], user_name: str, user_id: Any) -> str:
    """Text sent alongside a found illustration."""
    return (
        f"{illust.get('width', 0)}x{illust.get('height', 0)}\n"
        f"标题: {illust.get('title', '')}\n"
        f"副标题: {illust.get('altTitle', '')}\n"
        f"ID: {illust.get('id', 0)}\n"
        f"画师: {user_name} ({user_id})\n"
        f"分级:{illust.get('sanity', 0)}\n"
        + clean_description(illust.get("description", ""))
        + format_tags(illust.get("tags") or [])
    )