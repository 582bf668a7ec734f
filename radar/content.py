"""Content store: turns an entry's stored content into text usable for scoring.

Text entries are used as-is.  File and image entries hold a reference into the
uploads directory; links are fetched over HTTP and reduced to readable text.
Resolution never raises: any failure becomes a placeholder string so an
evaluation can always proceed.
"""
from __future__ import annotations

import logging
from pathlib import Path

import httpx
from lxml import etree, html as lxml_html

log = logging.getLogger(__name__)

_USER_AGENT = "HackRadarBot/1.0 (+https://hackradar.local)"
_TIMEOUT = 15.0
_MAX_TEXT = 15_000

_TEXT_SUFFIXES = {".txt", ".md", ".markdown", ".rst", ".csv", ".json", ".html", ".htm"}


def placeholder(entry_type: str, ref: str) -> str:
    return f"[{entry_type} content unavailable: {ref[:200]}]"


class ContentStore:
    """Default content resolver backed by a local uploads directory and httpx."""

    def __init__(self, uploads_dir: str | Path, timeout: float = _TIMEOUT):
        self.uploads_dir = Path(uploads_dir)
        self.timeout = timeout

    async def resolve(self, entry_type: str, ref: str) -> str:
        try:
            if entry_type == "text":
                return ref
            if entry_type == "link":
                return await self._resolve_link(ref)
            if entry_type in ("file", "image"):
                return self._resolve_file(entry_type, ref)
        except Exception as exc:
            log.warning("Content resolution failed for %s %r: %s", entry_type, ref[:120], exc)
            return placeholder(entry_type, ref)
        return placeholder(entry_type, ref)

    async def _resolve_link(self, url: str) -> str:
        if not url.startswith(("http://", "https://")):
            url = "https://" + url
        raw_html = await _fetch_url(url, self.timeout)
        text = extract_text(raw_html)
        if not text.strip():
            return placeholder("link", url)
        return f"LINK: {url}\n{text}"

    def _resolve_file(self, entry_type: str, ref: str) -> str:
        path = (self.uploads_dir / ref).resolve()
        if self.uploads_dir.resolve() not in path.parents:
            raise ValueError(f"reference escapes uploads directory: {ref}")
        if entry_type == "image" or path.suffix.lower() not in _TEXT_SUFFIXES:
            # Binary content is described, not read
            size = path.stat().st_size
            return f"{entry_type.upper()}: {path.name} ({size} bytes)"
        text = path.read_text(encoding="utf-8", errors="replace")
        if path.suffix.lower() in (".html", ".htm"):
            text = extract_text(text)
        return f"FILE: {path.name}\n{text[:_MAX_TEXT]}"


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


async def _fetch_url(url: str, timeout: float = _TIMEOUT) -> str:
    async with httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(timeout),
        headers={"User-Agent": _USER_AGENT},
    ) as client:
        resp = await client.get(url)
        resp.raise_for_status()
        return resp.text


def extract_text(raw_html: str) -> str:
    """Extract readable text from HTML using lxml."""
    try:
        tree = lxml_html.fromstring(raw_html)
    except (etree.ParserError, etree.XMLSyntaxError, ValueError):
        return ""
    title = " ".join(tree.xpath("//title//text()")).strip()
    meta = " ".join(tree.xpath("//meta[@name='description']/@content")).strip()
    headings = " ".join(tree.xpath("//h1//text() | //h2//text() | //h3//text()")).strip()
    paragraphs = " ".join(tree.xpath("//p//text()")).strip()

    parts = []
    if title:
        parts.append(f"TITLE: {title}")
    if meta:
        parts.append(f"META: {meta}")
    if headings:
        parts.append(f"HEADINGS: {headings}")
    if paragraphs:
        parts.append(f"CONTENT: {paragraphs}")
    return "\n".join(parts)[:_MAX_TEXT]
