"""
Content fingerprints used for change detection and derived identity.

entries_hash() decides whether a day's analysis is stale; entry_ids_hash() whether
the recent-entries window changed since alerts were generated; alert_key() gives
alerts a stable identity across independent generations.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from hashlib import sha256
from typing import Any

from clarity.config import ALERT_KEY_TEXT_PREFIX, ENTRY_HASH_TEXT_PREFIX

# Record separator: never produced by entry ids or typed text.
_DELIMITER = "\x1e"


def _field(entry: Any, name: str) -> Any:
    if isinstance(entry, Mapping):
        return entry.get(name)
    return getattr(entry, name, None)


def _digest(parts: Iterable[str]) -> str:
    return sha256(_DELIMITER.join(sorted(parts)).encode("utf-8")).hexdigest()


def entry_token(entry: Any) -> str:
    """`id:text_prefix` token for one entry (JournalEntry or mapping)."""
    text = _field(entry, "text") or ""
    return f"{_field(entry, 'id')}:{text[:ENTRY_HASH_TEXT_PREFIX]}"


def entries_hash(entries: Iterable[Any]) -> str:
    """
    Order-independent fingerprint of an entry set.

    Changes when an entry is added or removed, or when the first
    ENTRY_HASH_TEXT_PREFIX characters of any entry's text change.

    Side Effects:
        None (pure function)
    """
    return _digest(entry_token(e) for e in entries)


def entry_ids_hash(entries_or_ids: Iterable[Any]) -> str:
    """Order-independent fingerprint of membership only (bare ids)."""
    ids = (
        str(item) if isinstance(item, (str, int)) else str(_field(item, "id"))
        for item in entries_or_ids
    )
    return _digest(ids)


def normalize_text(text: str | None) -> str:
    """Normalization shared by alert keys and imported-text dedup."""
    return (text or "").strip().lower()


def alert_key(text: str | None, source_date: str | None, prefix: str = "alert") -> str:
    """
    Stable derived key for an alert: normalized text prefix plus first source date.

    Side Effects:
        None (pure function)
    """
    basis = f"{normalize_text(text)[:ALERT_KEY_TEXT_PREFIX]}|{source_date or ''}"
    return f"{prefix}-{sha256(basis.encode('utf-8')).hexdigest()[:12]}"
