"""
Incremental merge of alert batches by derived key.

The same merge applies to incremental generations and gap scans. Dismissals are
an overlay of keys; after a full regeneration, keys that no longer match any
alert are pruned so a later reappearance starts out active.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from clarity.journal.models import Alert
from clarity.observability.telemetry import counter, log_event


def merge_alerts(existing: Sequence[Alert], new: Sequence[Alert]) -> list[Alert]:
    """
    Append the alerts of `new` whose key is absent from `existing`.

    Existing order is preserved; survivors keep their relative order.

    Side Effects:
        - Increments alerts.merged / alerts.duplicates_skipped counters
    """
    known = {alert.key for alert in existing}
    survivors = [alert for alert in new if alert.key not in known]

    skipped = len(new) - len(survivors)
    if skipped:
        counter("alerts.duplicates_skipped", skipped)
    counter("alerts.merged", len(survivors))
    log_event("alerts.merged", existing=len(existing), added=len(survivors), skipped=skipped)
    return [*existing, *survivors]


def prune_dismissed(dismissed: Iterable[str], alerts: Sequence[Alert]) -> set[str]:
    """Keep only dismissed keys that still identify an alert in `alerts`."""
    dismissed = set(dismissed)
    current = {alert.key for alert in alerts}
    kept = dismissed & current
    pruned = len(dismissed) - len(kept)
    if pruned:
        counter("alerts.dismissed_pruned", pruned)
        log_event("alerts.dismissed_pruned", pruned=pruned)
    return kept
