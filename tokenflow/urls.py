"""URL helpers for the implicit grant.

Builds authorization URLs and parses the fragment the provider
redirects back with.
"""

from __future__ import annotations

import time

from urllib.parse import parse_qsl, quote, urlencode


def epoch() -> int:
    """Return the current time in whole seconds since 1970."""
    return round(time.time())


def build_url(base: str, params: dict[str, str]) -> str:
    """Append query parameters to a URL.

    Values are percent-encoded exactly once (spaces become ``%20``). If
    ``base`` already carries a query string the parameters are appended
    with ``&``.

    Parameters
    ----------
    base : str
        The endpoint URL.
    params : dict[str, str]
        Query parameters, emitted in insertion order.

    Returns
    -------
    str
        The full URL.
    """
    if not params:
        return base
    separator = "&" if "?" in base else "?"
    return f"{base}{separator}{urlencode(params, quote_via=quote)}"


def extract_fragment(location: str | None) -> str | None:
    """Return the fragment of a location without the leading ``#``.

    A value without ``#`` and without a scheme is taken to be a bare
    fragment. Returns ``None`` when there is nothing to parse.
    """
    if not location:
        return None
    if "#" in location:
        fragment = location[location.index("#") + 1 :]
    elif "://" in location:
        return None
    else:
        fragment = location
    return fragment or None


def parse_fragment(fragment: str) -> dict[str, str]:
    """Decode an ``application/x-www-form-urlencoded`` fragment.

    ``+`` decodes to a space. When a key repeats, the last value wins.
    """
    return dict(parse_qsl(fragment.lstrip("#"), keep_blank_values=True))


def strip_fragment(location: str) -> str:
    """Return ``location`` with its fragment removed."""
    return location.split("#", 1)[0]
