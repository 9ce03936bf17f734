"""Request-scoped locale used for ``Accept-Language`` forwarding."""

from contextvars import ContextVar
from typing import Optional

_current_locale: ContextVar[Optional[str]] = ContextVar("sso_current_locale", default=None)


def set_current_locale(locale: Optional[str]) -> None:
    """Set the locale for the current request context."""
    _current_locale.set(locale)


def get_current_locale(default: str = "en") -> str:
    """Locale of the current request, or ``default`` outside a request."""
    return _current_locale.get() or default


def parse_accept_language(header: Optional[str]) -> Optional[str]:
    """
    Pick the highest-weighted language tag from an ``Accept-Language`` header.

    >>> parse_accept_language("ja,en-US;q=0.8,en;q=0.5")
    'ja'
    """
    if not header:
        return None

    best: Optional[str] = None
    best_q = -1.0
    for part in header.split(","):
        piece = part.strip()
        if not piece:
            continue
        tag, _, params = piece.partition(";")
        tag = tag.strip()
        if not tag or tag == "*":
            continue
        q = 1.0
        params = params.strip()
        if params.startswith("q="):
            try:
                q = float(params[2:])
            except ValueError:
                continue
        if q > best_q:
            best, best_q = tag, q
    return best
