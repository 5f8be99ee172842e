from __future__ import annotations

import re

_WHITESPACE_RUN = re.compile(r"\s+", flags=re.UNICODE)


def normalize_value(raw: str) -> str:
    """Trim and collapse internal whitespace runs to one space.

    Two answers with the same normalized form are the same category for
    aggregation and merge. Case is kept as typed.
    """
    return _WHITESPACE_RUN.sub(" ", raw.strip())
