"""Web tool handlers: Brave search and URL fetching.

Both use ``requests`` in a worker thread so the event loop never blocks.
"""

from __future__ import annotations

import asyncio
import html
import re
from typing import TYPE_CHECKING

import requests

from attache.tool_registry import failure
from attache.turn_limits import get_limit

if TYPE_CHECKING:
    from attache.tool_registry import ToolContext

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
DEFAULT_MAX_LENGTH = 50_000
USER_AGENT = "Attache/1.0"

_SCRIPT_RE = re.compile(r"<script[\s\S]*?</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style[\s\S]*?</style>", re.IGNORECASE)
_BLOCK_END_RE = re.compile(r"</(p|div|h[1-6]|li|tr|br|hr)[^>]*>", re.IGNORECASE)
_BR_RE = re.compile(r"<br[^>]*/?>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")


def html_to_text(raw: str) -> str:
    """Strip scripts, styles and tags; keep block boundaries as newlines."""
    text = _SCRIPT_RE.sub("", raw)
    text = _STYLE_RE.sub("", text)
    text = _BLOCK_END_RE.sub("\n", text)
    text = _BR_RE.sub("\n", text)
    text = _TAG_RE.sub("", text)
    text = html.unescape(text).replace("\xa0", " ")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _clamp_count(value) -> int:
    try:
        count = int(value or 5)
    except (TypeError, ValueError):
        count = 5
    return min(max(count, 1), 20)


async def handle_brave_search(ctx: "ToolContext", tool_args: dict) -> dict:
    api_key = ctx.settings.brave_search_api_key
    if not api_key:
        return failure("Brave Search API key not configured. Set tools.brave_search_api_key in config.json.")
    query = str(tool_args.get("query") or "").strip()
    if not query:
        return failure("query is required")
    count = _clamp_count(tool_args.get("count"))

    resp = await asyncio.to_thread(
        requests.get,
        BRAVE_SEARCH_URL,
        params={"q": query, "count": count},
        headers={
            "Accept": "application/json",
            "Accept-Encoding": "gzip",
            "X-Subscription-Token": api_key,
        },
        timeout=get_limit("web.search_timeout"),
    )
    if not resp.ok:
        return failure(f"Brave API error: {resp.status_code} {resp.reason}")
    data = resp.json()
    results = [
        {"title": r.get("title"), "url": r.get("url"), "description": r.get("description")}
        for r in (data.get("web") or {}).get("results", [])
    ]
    return {"success": True, "query": query, "results": results}


async def handle_web_fetch(ctx: "ToolContext", tool_args: dict) -> dict:
    url = str(tool_args.get("url") or "").strip()
    if not url:
        return failure("url is required")
    max_length = int(tool_args.get("max_length") or DEFAULT_MAX_LENGTH)

    resp = await asyncio.to_thread(
        requests.get,
        url,
        headers={
            "User-Agent": USER_AGENT,
            "Accept": "text/html,application/json,text/plain,*/*",
        },
        timeout=get_limit("web.fetch_timeout"),
        allow_redirects=True,
    )
    if not resp.ok:
        return failure(f"HTTP {resp.status_code} {resp.reason}")

    content_type = resp.headers.get("content-type", "")
    text = resp.text
    if "text/html" in content_type:
        text = html_to_text(text)
    if len(text) > max_length:
        text = text[:max_length] + "\n...[truncated]"
    return {"success": True, "url": url, "contentType": content_type, "content": text}
