"""Above-the-fold link scanner.

Decides which anchors on a freshly loaded page are visible without
scrolling and reports them, in document order, to the tracking endpoint.

The browser only measures: one script gathers a geometry/style snapshot of
every ``a[href]`` once the page has fired ``load`` (images and fonts settle
the final layout). All classification happens here in Python over those
snapshots:

1. anchors inside admin/debug chrome or notice banners are dropped;
2. empty, ``javascript:``, ``#fragment``, ``tel:`` and ``mailto:`` hrefs are
   dropped (a bare ``#`` is kept);
3. the anchor must be rendered (not ``display:none``, not hidden, opacity
   above zero, non-zero size) and its bounding box must overlap the initial
   viewport on both axes.

Submission is fire-and-forget: network or parse failures are logged and
never retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

import httpx
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, async_playwright

logger = logging.getLogger(__name__)

CHROME_SELECTORS: tuple[str, ...] = ("#wpadminbar", "#query-monitor")
NOTICE_SELECTORS: tuple[str, ...] = (
    ".notice", ".error", ".warning", ".updated",
    ".notice-error", ".notice-warning", ".notice-info", ".notice-success",
    ".xdebug-error", ".php-error",
)
NO_TEXT = "[No discernible text]"
MAX_TEXT_LENGTH = 500
_SKIPPED_SCHEMES = ("javascript:", "tel:", "mailto:")

# Runs in the page; returns raw measurements only, no decisions.
COLLECT_SCRIPT = """
() => {
    const anchors = Array.from(document.querySelectorAll('a[href]'));
    return {
        viewport: {
            inner_width: window.innerWidth || 0,
            inner_height: window.innerHeight || 0,
            client_width: document.documentElement.clientWidth || 0,
            client_height: document.documentElement.clientHeight || 0,
        },
        screen: {width: window.screen.width, height: window.screen.height},
        anchors: anchors.map((a) => {
            const style = window.getComputedStyle(a);
            const rect = a.getBoundingClientRect();
            const ancestors = [];
            for (let node = a; node && node.nodeType === 1; node = node.parentElement) {
                ancestors.push({id: node.id || '', classes: Array.from(node.classList)});
            }
            const img = a.querySelector('img[alt]');
            return {
                href_attr: a.getAttribute('href'),
                url: a.href,
                ancestors: ancestors,
                display: style.display,
                visibility: style.visibility,
                opacity: style.opacity,
                rect: {top: rect.top, bottom: rect.bottom, left: rect.left,
                       right: rect.right, width: rect.width, height: rect.height},
                text: a.innerText || a.textContent || '',
                img_alt: img ? img.alt : '',
                aria_label: a.getAttribute('aria-label') || '',
            };
        }),
    };
}
"""


@dataclass(frozen=True)
class Rect:
    top: float
    bottom: float
    left: float
    right: float
    width: float
    height: float


@dataclass(frozen=True)
class NodeIdent:
    id: str = ""
    classes: tuple[str, ...] = ()

    def matches(self, selector: str) -> bool:
        if selector.startswith("#"):
            return bool(self.id) and self.id == selector[1:]
        if selector.startswith("."):
            return selector[1:] in self.classes
        return False


@dataclass(frozen=True)
class Viewport:
    width: float
    height: float

    @classmethod
    def from_dimensions(cls, inner_width: float, inner_height: float,
                        client_width: float = 0, client_height: float = 0) -> "Viewport":
        return cls(width=inner_width or client_width, height=inner_height or client_height)


@dataclass(frozen=True)
class AnchorSnapshot:
    """Everything the classifier needs to know about one anchor.

    ``ancestors`` starts with the anchor itself, mirroring ``Element.closest``.
    """

    href_attr: str | None
    url: str
    rect: Rect
    ancestors: tuple[NodeIdent, ...] = ()
    display: str = "inline"
    visibility: str = "visible"
    opacity: str = "1"
    text: str = ""
    img_alt: str = ""
    aria_label: str = ""


@dataclass(frozen=True)
class LinkCandidate:
    url: str
    text: str


@dataclass
class ScanResult:
    links: list[LinkCandidate] = field(default_factory=list)
    screen_width: int = 0
    screen_height: int = 0


def within(snapshot: AnchorSnapshot, selectors: Iterable[str]) -> bool:
    selectors = tuple(selectors)
    return any(node.matches(sel) for node in snapshot.ancestors for sel in selectors)


def is_trackable_href(href: str | None) -> bool:
    if href is None:
        return False
    href = href.strip()
    if not href:
        return False
    lowered = href.lower()
    if lowered.startswith(_SKIPPED_SCHEMES):
        return False
    # Same-page fragments are noise, the bare "#" placeholder is not
    if href.startswith("#") and len(href) > 1:
        return False
    return True


def _opacity(value: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 1.0


def is_rendered(snapshot: AnchorSnapshot) -> bool:
    return (
        snapshot.display != "none"
        and snapshot.visibility != "hidden"
        and _opacity(snapshot.opacity) > 0
        and snapshot.rect.width > 0
        and snapshot.rect.height > 0
    )


def intersects_viewport(rect: Rect, viewport: Viewport) -> bool:
    vertical = rect.top < viewport.height and rect.bottom > 0
    horizontal = rect.left < viewport.width and rect.right > 0
    return vertical and horizontal


def is_above_the_fold(snapshot: AnchorSnapshot, viewport: Viewport) -> bool:
    return is_rendered(snapshot) and intersects_viewport(snapshot.rect, viewport)


def extract_text(snapshot: AnchorSnapshot) -> str:
    text = (snapshot.text or "").strip()
    if not text and (snapshot.img_alt or "").strip():
        text = f"Image: {snapshot.img_alt.strip()}"
    if not text:
        text = (snapshot.aria_label or "").strip()
    if not text:
        text = NO_TEXT
    return text[:MAX_TEXT_LENGTH]


def classify(snapshot: AnchorSnapshot, viewport: Viewport) -> LinkCandidate | None:
    if within(snapshot, CHROME_SELECTORS):
        return None
    if within(snapshot, NOTICE_SELECTORS):
        return None
    if not is_trackable_href(snapshot.href_attr):
        return None
    if not is_above_the_fold(snapshot, viewport):
        return None
    return LinkCandidate(url=snapshot.url, text=extract_text(snapshot))


def select_links(snapshots: Iterable[AnchorSnapshot], viewport: Viewport) -> list[LinkCandidate]:
    """Classify in document order; duplicate URLs are kept."""
    links = []
    for snapshot in snapshots:
        candidate = classify(snapshot, viewport)
        if candidate is not None:
            links.append(candidate)
    return links


def snapshot_from_dict(raw: dict[str, Any]) -> AnchorSnapshot:
    rect = raw.get("rect") or {}
    return AnchorSnapshot(
        href_attr=raw.get("href_attr"),
        url=raw.get("url") or "",
        rect=Rect(**{k: float(rect.get(k) or 0) for k in ("top", "bottom", "left", "right", "width", "height")}),
        ancestors=tuple(
            NodeIdent(id=node.get("id") or "", classes=tuple(node.get("classes") or ()))
            for node in raw.get("ancestors") or ()
        ),
        display=raw.get("display") or "",
        visibility=raw.get("visibility") or "",
        opacity=str(raw.get("opacity", "1")),
        text=raw.get("text") or "",
        img_alt=raw.get("img_alt") or "",
        aria_label=raw.get("aria_label") or "",
    )


async def collect_snapshots(page: Page) -> tuple[list[AnchorSnapshot], Viewport, dict[str, int]]:
    payload = await page.evaluate(COLLECT_SCRIPT)
    vp = payload.get("viewport") or {}
    viewport = Viewport.from_dimensions(
        vp.get("inner_width", 0), vp.get("inner_height", 0),
        vp.get("client_width", 0), vp.get("client_height", 0),
    )
    snapshots = [snapshot_from_dict(raw) for raw in payload.get("anchors") or ()]
    return snapshots, viewport, payload.get("screen") or {}


async def scan_page(page: Page) -> ScanResult:
    """Scan a page that has already reached the ``load`` state."""
    snapshots, viewport, screen = await collect_snapshots(page)
    links = select_links(snapshots, viewport)
    logger.info("Scanned %d anchors, %d above the fold", len(snapshots), len(links))
    return ScanResult(
        links=links,
        screen_width=int(screen.get("width") or 0),
        screen_height=int(screen.get("height") or 0),
    )


def build_form(config: dict[str, str], result: ScanResult) -> dict[str, str]:
    form = {
        "action": config["action"],
        "nonce": config["nonce"],
        "screen_width": str(result.screen_width),
        "screen_height": str(result.screen_height),
    }
    for index, link in enumerate(result.links):
        form[f"links[{index}][url]"] = link.url
        form[f"links[{index}][text]"] = link.text
    return form


async def submit_batch(client: httpx.AsyncClient, config: dict[str, str], result: ScanResult) -> bool:
    """Post one batch; returns whether the server accepted it.

    Nothing is sent for an empty batch. Failures are logged, never raised.
    """
    if not result.links:
        return False
    try:
        response = await client.post(config["ajax_url"], data=build_form(config, result))
        body = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Tracking request failed: %s", exc)
        return False

    data = body.get("data") if isinstance(body, dict) else None
    message = data.get("message") if isinstance(data, dict) else None
    if isinstance(body, dict) and body.get("success"):
        logger.info("Links tracked: %s", message)
        return True
    logger.warning("Tracking error (%s): %s", response.status_code, message or "Unknown error.")
    return False


async def track_page(url: str, base_url: str, *, timeout: int = 30) -> ScanResult | None:
    """Load ``url`` in headless Chromium, scan it and report to ``base_url``."""
    async with httpx.AsyncClient(timeout=timeout) as client:
        try:
            response = await client.get(f"{base_url.rstrip('/')}/tracker/config")
            response.raise_for_status()
            config = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Could not fetch tracker config from %s: %s", base_url, exc)
            return None

        try:
            async with async_playwright() as p:
                browser = await p.chromium.launch(headless=True)
                try:
                    page = await browser.new_page()
                    await page.goto(url, timeout=timeout * 1000, wait_until="load")
                    result = await scan_page(page)
                finally:
                    await browser.close()
        except PlaywrightError as exc:
            logger.warning("Scan of %s failed: %s", url, exc)
            return None

        await submit_batch(client, config, result)
        return result
