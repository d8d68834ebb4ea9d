"""
URL Validation Utilities

This module provides target validation and the URL normalization policy used
to derive stable resource identifiers from archived URLs.
"""

import re
from urllib.parse import unquote_to_bytes, urlparse
from typing import Iterable, Optional, Tuple

from waymirror.utils.tidy_bytes import tidy_text


SCHEME_AND_PATH_RE = re.compile(r'^https?://[^/]*/', re.IGNORECASE)


def _query_key(pair: str) -> str:
    """Decoded, byte-repaired key of a raw "key=value" pair."""
    key = pair.partition('=')[0].replace('+', ' ')
    return tidy_text(unquote_to_bytes(key))


def normalize_url(url: str,
                  ignore_params: bool = False,
                  keep_params: Optional[Iterable[str]] = None) -> str:
    """
    Apply the query-string normalization policy to a resource path.

    Args:
        url: Resource path, possibly with a query string (e.g. "page.html?a=1")
        ignore_params: Drop the whole query string
        keep_params: Keep only these parameters, serialized in sorted key order

    Returns:
        The normalized path. A trailing bare "?" is always removed.
    """
    if '?' not in url:
        return url

    path, _, query = url.partition('?')

    if ignore_params:
        return path

    if keep_params:
        allowed = set(keep_params)
        kept = []
        for pair in query.split('&'):
            if not pair:
                continue
            key = _query_key(pair)
            if key in allowed:
                kept.append((key, pair))
        if not kept:
            return path
        # pairs stay percent-encoded; decoding happens once, on the whole id
        kept.sort(key=lambda item: item[0])
        return f"{path}?{'&'.join(pair for _, pair in kept)}"

    if not query:
        return path
    return url


def index_query_url(base_url: str, exact_url: bool = False) -> str:
    """
    Build the url parameter for the capture index.

    Targets without a path after the host get "/*" appended, which works around
    the index returning nothing for some bare domains. Exact mode leaves the
    target alone.
    """
    if base_url and not exact_url and not SCHEME_AND_PATH_RE.match(base_url):
        return f"{base_url}/*"
    return base_url


def backup_name(base_url: str) -> str:
    """Host part of the target, used for the default output directory."""
    if '//' in base_url:
        return base_url.split('/')[2]
    return base_url.split('/')[0]


def validate_url(url: str) -> Tuple[bool, str, str]:
    """
    Validate a mirror target.

    Returns:
        Tuple of (is_valid, normalized_url, error_message)
    """
    if not url or not isinstance(url, str):
        return False, "", "Base URL is required"

    url = url.strip()
    check = url if '//' in url else 'https://' + url
    try:
        parsed = urlparse(check)
    except ValueError as e:
        return False, "", f"URL validation error: {e}"

    if parsed.scheme not in ('http', 'https'):
        return False, "", "URL must use HTTP or HTTPS protocol"
    if not parsed.netloc:
        return False, "", "URL must have a valid domain"

    return True, url, ""
