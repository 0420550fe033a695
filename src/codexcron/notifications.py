from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from codexcron.models import NotificationEntry


@dataclass(frozen=True)
class NotifyDecision:
    should_notify: bool
    updated_record: dict[int, NotificationEntry]


def should_notify(
    record: Mapping[int, NotificationEntry],
    pr_number: int,
    head_sha: str,
    latest_activity: str,
    *,
    now: str,
) -> NotifyDecision:
    """Decide whether a ready transition is new for this PR.

    A PR is reported once per distinct (head_sha, latest_activity) pair. A new
    commit or new reviewer activity makes it eligible again. The input record
    is never mutated.
    """
    existing = record.get(pr_number)
    if (
        existing is not None
        and existing.head_sha == head_sha
        and existing.latest_activity == latest_activity
    ):
        return NotifyDecision(should_notify=False, updated_record=dict(record))

    updated = dict(record)
    updated[pr_number] = NotificationEntry(
        head_sha=head_sha,
        latest_activity=latest_activity,
        notified_at=now,
    )
    return NotifyDecision(should_notify=True, updated_record=updated)
