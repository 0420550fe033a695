from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
import contextvars
from dataclasses import dataclass, replace
from datetime import datetime, timezone
import logging
from typing import TypeVar

from codexcron.agent_invoker import render_run
from codexcron.config import PrReviewConfig
from codexcron.cursor import EventCursorTracker
from codexcron.events import (
    CheckRunActivity,
    CheckSuiteActivity,
    DeploymentStatusActivity,
    RepoActivity,
    ReviewActivity,
    parse_event,
)
from codexcron.github_gateway import GitHubGateway, GitHubPollingError
from codexcron.models import (
    ActionableItem,
    ActivityRecord,
    CursorStatus,
    Event,
    ReviewCandidate,
    RunResult,
    pr_key,
)
from codexcron.notifications import should_notify
from codexcron.observability import log_event
from codexcron.prompts import compact_title
from codexcron.shell import CommandError
from codexcron.state import JsonStateStore, ReconcilerState, utc_now_iso8601


LOGGER = logging.getLogger("codexcron.pr_review")

FAILED_CHECK_CONCLUSIONS = frozenset(
    {"FAILURE", "CANCELLED", "TIMED_OUT", "ACTION_REQUIRED", "STARTUP_FAILURE"}
)
FAILED_DEPLOYMENT_STATES = frozenset({"ERROR", "FAILURE", "INACTIVE"})
_ACTIVITY_FETCH_WORKERS = 3

_T = TypeVar("_T")


def is_bot_login(login: str, pattern: str) -> bool:
    needle = pattern.strip().lower()
    return bool(needle) and needle in login.lower()


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def latest_bot_activity(records: Sequence[ActivityRecord], pattern: str) -> str | None:
    latest: tuple[datetime, str] | None = None
    for record in records:
        if not record.at or not is_bot_login(record.author_login, pattern):
            continue
        at = parse_timestamp(record.at)
        if latest is None or at > latest[0]:
            latest = (at, record.at)
    return latest[1] if latest is not None else None


def _check_is_failing(status: str, conclusion: str) -> bool:
    if conclusion:
        return conclusion in FAILED_CHECK_CONCLUSIONS
    # No conclusion yet: anything short of completed is still worth a look.
    return status != "COMPLETED"


def urgent_line(activity: RepoActivity) -> str | None:
    if isinstance(activity, CheckRunActivity | CheckSuiteActivity):
        if not _check_is_failing(activity.status, activity.conclusion):
            return None
        pr_label = activity.pr_number if activity.pr_number is not None else "?"
        status = activity.status or "STATUS"
        state = f"{status}/{activity.conclusion}" if activity.conclusion else status
        if isinstance(activity, CheckRunActivity):
            check = f"CHECK {activity.name} ({activity.app})"
        else:
            check = f"CHECK SUITE ({activity.app})"
        return f"PR #{pr_label} - {check} - {state} - {activity.url}".strip()

    if isinstance(activity, DeploymentStatusActivity):
        if activity.state not in FAILED_DEPLOYMENT_STATES:
            return None
        pr_label = activity.pr_number if activity.pr_number is not None else "?"
        return (
            f"PR #{pr_label} - DEPLOYMENT {activity.environment} - {activity.state} - "
            f"{activity.url}"
        ).strip()
    return None


def collect_signals(events: Sequence[Event]) -> tuple[list[str], list[int]]:
    """Return urgent alert lines and the PRs touched by review, comment or check events."""
    urgent: list[str] = []
    candidates: dict[int, None] = {}
    for event in events:
        activity = parse_event(event)
        if activity is None:
            continue
        line = urgent_line(activity)
        if line is not None:
            urgent.append(line)
            log_event(LOGGER, "urgent_signal", event_id=event.event_id, line=line)
        if isinstance(
            activity, ReviewActivity | CheckRunActivity | CheckSuiteActivity
        ) and activity.pr_number is not None:
            candidates[activity.pr_number] = None
    return urgent, list(candidates)


@dataclass(frozen=True)
class _Evaluation:
    candidate: ReviewCandidate
    head_commit_at: str


@dataclass(frozen=True)
class PrReviewCycle:
    status: CursorStatus
    newest_event_id: str | None
    urgent: tuple[str, ...]
    actionable: tuple[ActionableItem, ...]
    ready: tuple[ReviewCandidate, ...]
    state: ReconcilerState

    @property
    def initialized(self) -> bool:
        return self.status == "FIRST_RUN"

    @property
    def reset(self) -> bool:
        return self.status == "GAP"


class PrReviewReconciler:
    def __init__(
        self,
        *,
        config: PrReviewConfig,
        github: GitHubGateway,
        store: JsonStateStore,
        clock: Callable[[], str] = utc_now_iso8601,
    ) -> None:
        self._config = config
        self._github = github
        self._store = store
        self._clock = clock
        self._tracker = EventCursorTracker(store, clock=clock)

    def reconcile(self) -> PrReviewCycle:
        state = self._store.load()
        events = self._github.list_repo_events()
        advance, state = self._tracker.advance(events, state, persist=False)
        newest_event_id = advance.new_cursor.last_event_id

        if not events or advance.status in ("FIRST_RUN", "GAP"):
            return PrReviewCycle(
                status=advance.status,
                newest_event_id=newest_event_id,
                urgent=(),
                actionable=(),
                ready=(),
                state=state,
            )

        urgent, candidates = collect_signals(advance.newer_events)
        if not candidates:
            candidates = self._recent_open_pull_requests()

        actionable: list[ActionableItem] = []
        ready: list[ReviewCandidate] = []
        notified = dict(state.notified)
        with ThreadPoolExecutor(
            max_workers=_ACTIVITY_FETCH_WORKERS, thread_name_prefix="codexcron-activity"
        ) as pool:
            for pr_number in candidates:
                evaluation = self._evaluate(pr_number, pool)
                if evaluation is None:
                    continue
                candidate = evaluation.candidate
                if candidate.unresolved_threads > 0:
                    actionable.append(
                        ActionableItem(
                            key=pr_key(pr_number),
                            reason="unresolved_threads",
                            payload=candidate,
                        )
                    )
                    log_event(
                        LOGGER,
                        "pr_actionable",
                        pr_number=pr_number,
                        unresolved_threads=candidate.unresolved_threads,
                    )
                    continue
                if parse_timestamp(evaluation.head_commit_at) <= parse_timestamp(
                    candidate.latest_bot_activity
                ):
                    continue
                decision = should_notify(
                    notified,
                    pr_number,
                    candidate.head_sha,
                    candidate.latest_bot_activity,
                    now=self._clock(),
                )
                if not decision.should_notify:
                    log_event(LOGGER, "pr_ready_already_notified", pr_number=pr_number)
                    continue
                notified = decision.updated_record
                ready.append(candidate)
                log_event(LOGGER, "pr_ready", pr_number=pr_number, head_sha=candidate.head_sha)

        # Cursor and notification map land in one write.
        state = replace(state, notified=notified)
        self._store.save_atomic(state)

        return PrReviewCycle(
            status=advance.status,
            newest_event_id=newest_event_id,
            urgent=tuple(urgent),
            actionable=tuple(actionable),
            ready=tuple(ready),
            state=state,
        )

    def _recent_open_pull_requests(self) -> list[int]:
        try:
            numbers = self._github.list_open_pull_request_numbers(
                limit=self._config.fallback_pr_limit
            )
        except GitHubPollingError as exc:
            log_event(
                LOGGER,
                "open_pr_listing_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return []
        log_event(LOGGER, "pr_fallback_candidates", count=len(numbers))
        return numbers

    def _evaluate(self, pr_number: int, pool: ThreadPoolExecutor) -> _Evaluation | None:
        pattern = self._config.review_bot_pattern
        try:
            reviews = _submit(pool, self._github.list_pull_request_reviews, pr_number)
            issue_comments = _submit(pool, self._github.list_issue_comments, pr_number)
            review_comments = _submit(
                pool, self._github.list_pull_request_review_comments, pr_number
            )
            records = [*reviews.result(), *issue_comments.result(), *review_comments.result()]
            latest = latest_bot_activity(records, pattern)
            if latest is None:
                log_event(LOGGER, "pr_skipped", pr_number=pr_number, reason="no_bot_activity")
                return None

            pull_request = self._github.get_pull_request(pr_number)
            unresolved = self._count_unresolved_bot_threads(pr_number)
            head_commit_at = self._github.get_commit_timestamp(pull_request.head_sha)
            if not head_commit_at:
                log_event(LOGGER, "pr_skipped", pr_number=pr_number, reason="no_head_commit_time")
                return None
            parse_timestamp(head_commit_at)
        except (GitHubPollingError, CommandError, ValueError) as exc:
            log_event(
                LOGGER,
                "pr_skipped",
                pr_number=pr_number,
                reason="lookup_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return None

        return _Evaluation(
            candidate=ReviewCandidate(
                number=pr_number,
                title=compact_title(pull_request.title),
                url=pull_request.html_url,
                head_sha=pull_request.head_sha,
                latest_bot_activity=latest,
                unresolved_threads=unresolved,
            ),
            head_commit_at=head_commit_at,
        )

    def _count_unresolved_bot_threads(self, pr_number: int) -> int:
        pattern = self._config.review_bot_pattern
        unresolved = 0
        after: str | None = None
        while True:
            page = self._github.get_review_thread_page(pr_number, after=after)
            for thread in page.threads:
                if thread.is_resolved or thread.is_outdated:
                    continue
                if any(is_bot_login(login, pattern) for login in thread.author_logins):
                    unresolved += 1
            if not page.has_next_page or page.end_cursor is None:
                return unresolved
            after = page.end_cursor


def _submit(pool: ThreadPoolExecutor, fn: Callable[[int], _T], pr_number: int) -> Future[_T]:
    # Workers log under the caller's job context.
    return pool.submit(contextvars.copy_context().run, fn, pr_number)

def render_summary(
    *,
    repo_full_name: str,
    state_path: str,
    cycle: PrReviewCycle,
    runs: Sequence[RunResult],
    error: str | None = None,
) -> dict[str, object]:
    summary: dict[str, object] = {
        "job": "pr-review",
        "repo": repo_full_name,
        "state_path": state_path,
        "status": cycle.status,
        "newest_event_id": cycle.newest_event_id,
        "initialized": cycle.initialized,
        "reset": cycle.reset,
        "urgent": list(cycle.urgent),
        "actionable": [
            {"key": item.key, **_render_candidate(item.payload)}
            for item in cycle.actionable
            if isinstance(item.payload, ReviewCandidate)
        ],
        "ready": [_render_candidate(candidate) for candidate in cycle.ready],
        "agent_runs": [render_run(run) for run in runs],
    }
    if error is not None:
        summary["error"] = error
    return summary


def _render_candidate(candidate: ReviewCandidate) -> dict[str, object]:
    return {
        "number": candidate.number,
        "title": candidate.title,
        "url": candidate.url,
        "head_sha": candidate.head_sha,
        "unresolved": candidate.unresolved_threads,
        "bot_last_activity": candidate.latest_bot_activity,
    }
