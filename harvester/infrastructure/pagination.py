from __future__ import annotations

import re
from typing import Mapping

import httpx

# <https://api.github.com/...?page=2>; rel="next"
LINK_RE = re.compile(r'<([^>]*)>\s*;\s*rel="([^"]*)"')


def next_url(headers: httpx.Headers | Mapping[str, str]) -> str | None:
    """
    Return the rel="next" target of a response's Link headers, or None
    when the sequence is exhausted.

    GitHub packs several entries into one header (next, last, first, prev)
    and a single entry may carry more than one space-separated rel name.
    """
    if isinstance(headers, httpx.Headers):
        values = headers.get_list("link")
    else:
        values = [v for k, v in headers.items() if k.lower() == "link"]

    for value in values:
        for entry in value.split(","):
            match = LINK_RE.search(entry)
            if match and "next" in match.group(2).split():
                return match.group(1)
    return None
