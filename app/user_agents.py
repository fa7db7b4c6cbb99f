"""Best-effort browser family label derived from a User-Agent header.

Signatures overlap (Chrome's UA also says "Safari", Edge's also says
"Chrome"), so families are tried in a fixed priority order and the first
match wins.
"""

from __future__ import annotations

from models import UNKNOWN_CONTEXT

BROWSER_SIGNATURES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Edge", ("Edg/", "Edge/", "EdgA/", "EdgiOS/")),
    ("Opera", ("OPR/", "Opera")),
    ("Chrome", ("Chrome/", "CriOS/", "Chromium/")),
    ("Firefox", ("Firefox/", "FxiOS/")),
    ("Internet Explorer", ("MSIE ", "Trident/")),
    ("Safari", ("Safari/",)),
)


def browser_label(user_agent: str | None) -> str:
    if not user_agent:
        return UNKNOWN_CONTEXT
    for label, signatures in BROWSER_SIGNATURES:
        if any(sig in user_agent for sig in signatures):
            return label
    return UNKNOWN_CONTEXT
