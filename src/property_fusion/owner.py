"""Owner-name heuristics.

Sources disagree on format ("First Last" from listing sites, "Last, First M."
from record feeds). When equally trusted sources tie, the fusion step asks
`choose_owner_name` which spelling to keep. The heuristic lives here on its own
so it can be tuned without touching the rest of fusion. When nothing usable is
offered the answer is None; fusion then leaves the field alone.

The heuristic only arbitrates candidates within one fusion call. A name
already held on the canonical record is kept against an equal-priority
newcomer, so "Smith, John A." stored earlier stays even when a later batch
offers "John Smith", while the same two names arriving together yield
"John Smith".
"""

from __future__ import annotations

import re
from typing import FrozenSet, Iterable, Optional, Tuple


_TOKEN_RE = re.compile(r"[^\W\d_]+", re.UNICODE)


def clean_owner_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = " ".join(str(value).split()).strip(" ,;")
    if not _TOKEN_RE.search(text):
        return None
    return text


def owner_name_form_score(name: str) -> Tuple[int, int, int]:
    """Rank a spelling; a larger tuple is the preferred form.

    Fewer commas/periods first, then fewer single-letter initials, then length.
    """

    punctuation = name.count(",") + name.count(".")
    tokens = _TOKEN_RE.findall(name)
    initials = sum(1 for t in tokens if len(t) == 1)
    letters = sum(len(t) for t in tokens)
    return (-punctuation, -initials, letters)


def choose_owner_name(candidates: Iterable[Optional[str]]) -> Optional[str]:
    """Pick the preferred spelling; on equal scores the earlier candidate wins."""

    best: Optional[str] = None
    best_score: Optional[Tuple[int, int, int]] = None
    for candidate in candidates:
        cleaned = clean_owner_name(candidate)
        if cleaned is None:
            continue
        score = owner_name_form_score(cleaned)
        if best_score is None or score > best_score:
            best, best_score = cleaned, score
    return best


def owner_name_tokens(name: Optional[str]) -> FrozenSet[str]:
    return frozenset(t.casefold() for t in _TOKEN_RE.findall(name or "") if len(t) > 1)


def same_owner(a: Optional[str], b: Optional[str]) -> bool:
    """True when two spellings plausibly name the same person.

    "Smith, John A." and "John Smith" share every multi-letter token.
    """

    left = owner_name_tokens(a)
    right = owner_name_tokens(b)
    if not left or not right:
        return False
    if left == right:
        return True
    smaller, larger = (left, right) if len(left) <= len(right) else (right, left)
    return len(smaller) >= 2 and smaller <= larger
