"""
URL filter compilation.

Include/exclude filters are given as plain strings. A string wrapped in
regular-expression delimiters ("/pattern/flags" or "%r{pattern}flags") is
compiled to a regex; anything else is a case-insensitive substring test.
"""

import re
from typing import Callable, Optional


UrlPredicate = Callable[[str], bool]

INLINE_FLAGS = {
    'i': re.IGNORECASE,
    'm': re.DOTALL,
    'x': re.VERBOSE,
}

DELIMITED_RE = [
    re.compile(r'\A/(?P<body>.*)/(?P<flags>[imxnesu]*)\Z', re.DOTALL | re.IGNORECASE),
    re.compile(r'\A%r\{(?P<body>.*)\}(?P<flags>[imxnesu]*)\Z', re.DOTALL | re.IGNORECASE),
]


def to_regex(text: str) -> Optional["re.Pattern[str]"]:
    """Compile a delimited pattern, or return None if the text is a literal."""
    for delimited in DELIMITED_RE:
        match = delimited.match(text)
        if not match:
            continue
        body = match.group('body').replace('\\/', '/')
        flags = 0
        for flag in match.group('flags').lower():
            flags |= INLINE_FLAGS.get(flag, 0)
        return re.compile(body, flags)
    return None


def compile_filter(text: Optional[str]) -> Optional[UrlPredicate]:
    """
    Turn a filter string into a predicate over URLs.

    Returns None when no filter was given so callers can apply their own
    default (include everything / exclude nothing).
    """
    if not text:
        return None

    pattern = to_regex(text)
    if pattern is not None:
        return lambda url: pattern.search(url) is not None

    needle = text.lower()
    return lambda url: needle in url.lower()
