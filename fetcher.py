"""
fetcher.py
─────────────────────────────────────────────────────────────────────────────
Source page fetching and chunking for EXPLORE mode.

Transport failures never abort a cycle: fetch_source_text() returns ""
and the caller sees zero leads.
─────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import logging
import re
from typing import Iterator

import httpx
from bs4 import BeautifulSoup

from config import MAX_CHUNK_CHARS

logger = logging.getLogger(__name__)

USER_AGENT = "careers-scout/0.1"

# Maximum response body accepted from a source page (10 MB)
MAX_PAGE_BYTES: int = 10 * 1024 * 1024


def html_to_text(html: str) -> str:
    """Visible text of an HTML document, one block per line."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript", "template", "svg"]):
        tag.decompose()
    text = soup.get_text(separator="\n")
    lines = (re.sub(r"[ \t\r\f\v]+", " ", line).strip() for line in text.splitlines())
    return "\n".join(line for line in lines if line)


async def fetch_source_text(client: httpx.AsyncClient, url: str) -> str:
    """
    Fetch a seed URL and return its text content.
    Returns "" on any transport or HTTP error, on a malformed URL, or when
    the body exceeds MAX_PAGE_BYTES.
    """
    body = bytearray()
    try:
        async with client.stream(
            "GET",
            url,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        ) as response:
            response.raise_for_status()
            async for piece in response.aiter_bytes():
                body.extend(piece)
                if len(body) > MAX_PAGE_BYTES:
                    logger.warning(f"Source too large for {url}: over {MAX_PAGE_BYTES} bytes")
                    return ""
            encoding = response.encoding or "utf-8"
            content_type = response.headers.get("content-type", "")
    except httpx.HTTPStatusError as exc:
        logger.warning(f"Source fetch failed for {url}: HTTP {exc.response.status_code}")
        return ""
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        logger.warning(f"Source fetch failed for {url}: {exc!r}")
        return ""

    text = body.decode(encoding, errors="replace")
    if "html" in content_type or text.lstrip()[:1] == "<":
        return html_to_text(text)
    return text


def chunk_text(text: str, max_chars: int = MAX_CHUNK_CHARS) -> Iterator[str]:
    """
    Split text into ordered chunks of at most max_chars characters.

    Lines are accumulated into a buffer; a chunk is emitted each time the
    buffer reaches max_chars. A remainder holding only whitespace is dropped;
    any other remainder is emitted last.
    """
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")

    buffer = ""
    for line in text.splitlines(keepends=True):
        buffer += line
        while len(buffer) >= max_chars:
            yield buffer[:max_chars]
            buffer = buffer[max_chars:]
    if buffer.strip():
        yield buffer


__all__ = ["chunk_text", "fetch_source_text", "html_to_text"]
