"""Validation and persistence of one scanner batch.

A batch becomes one ``Visit`` row plus one ``TrackedLink`` row per link that
survives sanitization. The Visit is committed first; each link is then
committed on its own so that a bad row cannot take the others down with it.
Nothing is rolled back once the Visit exists.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Any, Iterable
from urllib.parse import quote, urlsplit

import crud
import models
from exceptions import ClientValidationError, EmptyResultError, PersistenceError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from user_agents import browser_label

logger = logging.getLogger(__name__)

# Protocols a stored link may use; mirrors the host platform's allowed-protocols list
ALLOWED_URL_SCHEMES = frozenset({
    "http", "https", "ftp", "ftps", "mailto", "news", "irc", "irc6", "ircs", "gopher",
    "nntp", "feed", "telnet", "mms", "rtsp", "sms", "svn", "tel", "fax", "xmpp", "webcal", "urn",
})
# Reserved and unreserved URL characters left untouched; everything else is percent-encoded
_URL_SAFE_CHARS = "-~+_.?#=!&;,/:%@$|*'()[]"
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_HOSTNAME = re.compile(r"^[A-Za-z0-9._:-]+$")
_HOST_REQUIRED_SCHEMES = frozenset({"http", "https", "ftp", "ftps"})


@dataclass
class IngestResult:
    visit_id: int
    saved: int
    submitted: int

    @property
    def message(self) -> str:
        noun = "link" if self.saved == 1 else "links"
        return f"{self.saved} {noun} processed and saved."


class _TextExtractor(HTMLParser):
    """Collects character data, dropping every tag and script/style bodies."""

    _SKIP_TAGS: frozenset[str] = frozenset({"script", "style"})

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._chunks: list[str] = []
        self._skip_depth: int = 0

    def handle_starttag(self, tag: str, attrs: list) -> None:  # type: ignore[override]
        if tag.lower() in self._SKIP_TAGS:
            self._skip_depth += 1

    def handle_endtag(self, tag: str) -> None:
        if tag.lower() in self._SKIP_TAGS and self._skip_depth > 0:
            self._skip_depth -= 1

    def handle_data(self, data: str) -> None:
        if not self._skip_depth:
            self._chunks.append(data)

    def text(self) -> str:
        return "".join(self._chunks)


def absint(value: Any) -> int:
    """Coerce to a non-negative integer; anything unparseable is 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return abs(value)
    match = _LEADING_INT.match(str(value))
    return abs(int(match.group(1))) if match else 0


def sanitize_url(raw: Any) -> str | None:
    """Escape a URL for storage; ``None`` if it is not a valid absolute URL."""
    if not isinstance(raw, str):
        return None
    url = _CONTROL_CHARS.sub("", raw).strip()
    if not url:
        return None
    url = quote(url, safe=_URL_SAFE_CHARS)
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
        parts.port  # raises on a malformed port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_URL_SCHEMES:
        return None
    if parts.netloc or scheme in _HOST_REQUIRED_SCHEMES:
        if not hostname or not _HOSTNAME.match(hostname):
            return None
    elif not parts.path:
        # Opaque URLs such as mailto:/urn: need something after the colon
        return None
    return url[:models.MAX_URL_LENGTH]


def sanitize_text(raw: Any) -> str | None:
    """Strip markup and control characters; newlines survive."""
    if not isinstance(raw, str):
        return None
    parser = _TextExtractor()
    parser.feed(raw)
    parser.close()
    text = _CONTROL_CHARS.sub("", parser.text()).strip()
    return text[:models.MAX_TEXT_LENGTH]


def clean_links(raw_links: Iterable[Any]) -> list[tuple[str, str]]:
    cleaned = []
    for item in raw_links:
        if not isinstance(item, dict) or "url" not in item or "text" not in item:
            continue
        url = sanitize_url(item["url"])
        text = sanitize_text(item["text"])
        if url is None or text is None:
            continue
        cleaned.append((url, text))
    return cleaned


class IngestionService:
    """Turns one validated batch into a Visit and its TrackedLinks.

    Built per request around the caller's session; holds no other state.
    """

    def __init__(self, db: Session):
        self.db = db

    def ingest(self, screen_width: Any, screen_height: Any, links: Any,
               user_agent: str | None = None) -> IngestResult:
        if not links or not isinstance(links, list):
            raise ClientValidationError("No link data provided in the request.")

        width, height = absint(screen_width), absint(screen_height)
        if not width or not height:
            raise ClientValidationError(
                f"Missing or invalid screen dimensions. Width: {width}, Height: {height}"
            )

        cleaned = clean_links(links)
        if len(cleaned) < len(links):
            logger.debug("Dropped %d of %d links during validation", len(links) - len(cleaned), len(links))

        try:
            visit = crud.insert_visit(self.db, width, height, browser_label(user_agent))
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to insert visit (%dx%d)", width, height)
            raise PersistenceError("Failed to save visit data to the database.")

        saved = 0
        for url, text in cleaned:
            try:
                crud.insert_link(self.db, visit.id, url, text)
            except SQLAlchemyError:
                self.db.rollback()
                logger.exception("Failed to insert link for visit %s: %s", visit.id, url)
                continue
            saved += 1

        if not saved:
            raise EmptyResultError(
                "Visit data saved, but no valid links were processed or saved from the "
                "submitted data. Ensure links have valid URLs.",
                visit_id=visit.id,
            )

        result = IngestResult(visit_id=visit.id, saved=saved, submitted=len(links))
        logger.info("Visit %s: saved %d/%d links", visit.id, saved, len(links))
        return result
