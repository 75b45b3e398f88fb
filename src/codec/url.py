from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


logger = logging.getLogger(__name__)

DEFAULT_PARAM = "s"
# Practical ceiling for links that must survive browsers, proxies and chat apps
URL_LENGTH_BUDGET = 2000


def build_url(base_url: str, token: str, *, param: str = DEFAULT_PARAM) -> str:
    """
    Return `base_url` with `token` in query parameter `param`.

    Other query parameters and the fragment are preserved; an existing `param`
    is replaced. Logs a warning when the result exceeds URL_LENGTH_BUDGET.
    """
    parts = urlsplit(base_url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != param]
    query.append((param, token))
    url = urlunsplit(parts._replace(query=urlencode(query)))
    if len(url) > URL_LENGTH_BUDGET:
        logger.warning("shareable URL is %d chars, above the %d char budget", len(url), URL_LENGTH_BUDGET)
    return url


def token_from_url(url: str, *, param: str = DEFAULT_PARAM) -> Optional[str]:
    """Extract the token carried in `param`, or None when absent/empty."""
    for k, v in parse_qsl(urlsplit(url).query, keep_blank_values=True):
        if k == param:
            return v or None
    return None


def fits_in_url(token: str, *, base_length: int = 0) -> bool:
    return base_length + len(token) <= URL_LENGTH_BUDGET


__all__ = ["DEFAULT_PARAM", "URL_LENGTH_BUDGET", "build_url", "token_from_url", "fits_in_url"]
