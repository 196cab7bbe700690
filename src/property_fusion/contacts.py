from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional, Tuple

from .models import Contact, ContactType, parse_iso


_NON_DIGIT_RE = re.compile(r"\D")


def normalize_contact_value(contact_type: str, value: str) -> str:
    text = (value or "").strip()
    if contact_type == ContactType.PHONE:
        digits = _NON_DIGIT_RE.sub("", text)
        if len(digits) == 11 and digits.startswith("1"):
            digits = digits[1:]
        return digits
    if contact_type == ContactType.EMAIL:
        return text.casefold()
    return " ".join(text.casefold().split())


def contact_key(contact: Contact) -> Optional[Tuple[str, str]]:
    value = normalize_contact_value(contact.type, contact.value)
    if not contact.type or not value:
        return None
    return contact.type, value


def _better(candidate: Contact, current: Contact) -> bool:
    if candidate.confidence != current.confidence:
        return candidate.confidence > current.confidence
    return parse_iso(candidate.captured_at) > parse_iso(current.captured_at)


def merge_contacts(existing: Iterable[Contact], incoming: Iterable[Contact]) -> List[Contact]:
    """Deduplicate by normalized (type, value).

    The entry with the higher confidence is kept; on an exact tie the more
    recently captured one. Output is ordered by confidence, then recency, then
    key so repeated merges produce the same sequence.
    """

    best: Dict[Tuple[str, str], Contact] = {}
    for contact in list(existing) + list(incoming):
        key = contact_key(contact)
        if key is None:
            continue
        current = best.get(key)
        if current is None or _better(contact, current):
            best[key] = contact
    ordered = sorted(
        best.items(),
        key=lambda item: (-item[1].confidence, -parse_iso(item[1].captured_at).timestamp(), item[0]),
    )
    return [contact for _, contact in ordered]
