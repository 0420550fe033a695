from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


CursorStatus = Literal["FIRST_RUN", "NO_CHANGE", "GAP", "OK"]
ActionableReason = Literal["event", "sweep", "unresolved_threads"]


@dataclass(frozen=True)
class Cursor:
    last_event_id: str | None
    timestamp: str | None


@dataclass(frozen=True)
class Event:
    event_id: str
    type: str
    payload: dict[str, object]
    actor: str
    created_at: str


@dataclass(frozen=True)
class IssueSnapshot:
    number: int
    title: str
    body: str
    html_url: str
    labels: tuple[str, ...]
    updated_at: str
    author_login: str


@dataclass(frozen=True)
class TrackedIssue:
    number: int
    title: str
    url: str
    labels: tuple[str, ...]
    checkbox_checked: bool
    updated_at: str
    action: str | None = None
    author: str = ""


@dataclass(frozen=True)
class PullRequestSnapshot:
    number: int
    title: str
    html_url: str
    head_sha: str


@dataclass(frozen=True)
class ActivityRecord:
    author_login: str
    at: str


@dataclass(frozen=True)
class ReviewThread:
    is_resolved: bool
    is_outdated: bool
    author_logins: tuple[str, ...]


@dataclass(frozen=True)
class ReviewThreadPage:
    threads: tuple[ReviewThread, ...]
    has_next_page: bool
    end_cursor: str | None


@dataclass(frozen=True)
class ReviewCandidate:
    number: int
    title: str
    url: str
    head_sha: str
    latest_bot_activity: str
    unresolved_threads: int


@dataclass(frozen=True)
class ActionableItem:
    key: str
    reason: ActionableReason
    payload: TrackedIssue | ReviewCandidate


@dataclass(frozen=True)
class NotificationEntry:
    head_sha: str
    latest_activity: str
    notified_at: str


@dataclass(frozen=True)
class RunResult:
    unit_key: str
    exit_code: int
    signal: str | None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.exit_code != 0


def issue_key(number: int) -> str:
    return f"issue:{number}"


def pr_key(number: int) -> str:
    return f"pr:{number}"
