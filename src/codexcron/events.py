"""Typed views over the loosely-typed payloads of the repository event feed.

Each supported event kind has one extraction function. Extractors fail closed:
a payload missing the fields a kind needs yields ``None`` rather than raising,
so one odd event never aborts a reconciliation cycle.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal, cast

from codexcron.models import Event, IssueSnapshot


ReviewActivityKind = Literal["review", "review_comment", "issue_comment"]


@dataclass(frozen=True)
class IssueActivity:
    event_id: str
    action: str | None
    issue: IssueSnapshot


@dataclass(frozen=True)
class CheckRunActivity:
    event_id: str
    pr_number: int | None
    name: str
    app: str
    status: str
    conclusion: str
    url: str


@dataclass(frozen=True)
class CheckSuiteActivity:
    event_id: str
    pr_number: int | None
    app: str
    status: str
    conclusion: str
    url: str


@dataclass(frozen=True)
class DeploymentStatusActivity:
    event_id: str
    pr_number: int | None
    environment: str
    state: str
    url: str


@dataclass(frozen=True)
class ReviewActivity:
    event_id: str
    kind: ReviewActivityKind
    pr_number: int


RepoActivity = (
    IssueActivity
    | CheckRunActivity
    | CheckSuiteActivity
    | DeploymentStatusActivity
    | ReviewActivity
)


def parse_event(event: Event) -> RepoActivity | None:
    extractor = _EXTRACTORS.get(event.type)
    if extractor is None:
        return None
    return extractor(event)


def pr_number_from_payload(payload: dict[str, object]) -> int | None:
    pull_request = _as_object_dict(payload.get("pull_request"))
    if pull_request is not None:
        number = _as_optional_int(pull_request.get("number"))
        if number is not None:
            return number

    issue = _as_object_dict(payload.get("issue"))
    if issue is not None and issue.get("pull_request"):
        number = _as_optional_int(issue.get("number"))
        if number is not None:
            return number

    for container_key in ("check_run", "check_suite"):
        container = _as_object_dict(payload.get(container_key))
        if container is None:
            continue
        linked = container.get("pull_requests")
        if not isinstance(linked, list) or not linked:
            continue
        first = _as_object_dict(linked[0])
        if first is None:
            continue
        number = _as_optional_int(first.get("number"))
        if number is not None:
            return number
    return None


def issue_snapshot_from_payload(issue: dict[str, object]) -> IssueSnapshot | None:
    number = _as_optional_int(issue.get("number"))
    if number is None:
        return None
    user = _as_object_dict(issue.get("user"))
    return IssueSnapshot(
        number=number,
        title=_as_str(issue.get("title")),
        body=_as_str(issue.get("body")),
        html_url=_as_str(issue.get("html_url")),
        labels=label_names(issue.get("labels")),
        updated_at=_as_str(issue.get("updated_at")),
        author_login=_as_str(user.get("login")) if user else "",
    )


def label_names(value: object) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    names: list[str] = []
    for entry in value:
        if isinstance(entry, str):
            name: object = entry
        else:
            entry_obj = _as_object_dict(entry)
            name = entry_obj.get("name") if entry_obj else None
        if isinstance(name, str) and name:
            names.append(name)
    return tuple(names)


def _issue_activity(event: Event) -> IssueActivity | None:
    issue = _as_object_dict(event.payload.get("issue"))
    if issue is None:
        return None
    snapshot = issue_snapshot_from_payload(issue)
    if snapshot is None:
        return None
    return IssueActivity(
        event_id=event.event_id,
        action=_as_optional_str(event.payload.get("action")),
        issue=snapshot,
    )


def _check_run_activity(event: Event) -> CheckRunActivity | None:
    check_run = _as_object_dict(event.payload.get("check_run"))
    if check_run is None:
        return None
    return CheckRunActivity(
        event_id=event.event_id,
        pr_number=pr_number_from_payload(event.payload),
        name=_as_str(check_run.get("name")) or _as_str(check_run.get("external_id")) or "check",
        app=_app_name(check_run.get("app")),
        status=_as_str(check_run.get("status")).upper(),
        conclusion=_as_str(check_run.get("conclusion")).upper(),
        url=_as_str(check_run.get("html_url")) or _as_str(check_run.get("details_url")),
    )


def _check_suite_activity(event: Event) -> CheckSuiteActivity | None:
    check_suite = _as_object_dict(event.payload.get("check_suite"))
    if check_suite is None:
        return None
    return CheckSuiteActivity(
        event_id=event.event_id,
        pr_number=pr_number_from_payload(event.payload),
        app=_app_name(check_suite.get("app")),
        status=_as_str(check_suite.get("status")).upper(),
        conclusion=_as_str(check_suite.get("conclusion")).upper(),
        url=_as_str(check_suite.get("html_url")),
    )


def _deployment_status_activity(event: Event) -> DeploymentStatusActivity | None:
    deployment_status = _as_object_dict(event.payload.get("deployment_status"))
    if deployment_status is None:
        return None
    return DeploymentStatusActivity(
        event_id=event.event_id,
        pr_number=pr_number_from_payload(event.payload),
        environment=_as_str(deployment_status.get("environment")) or "deployment",
        state=_as_str(deployment_status.get("state")).upper(),
        url=(
            _as_str(deployment_status.get("target_url"))
            or _as_str(deployment_status.get("environment_url"))
            or _as_str(deployment_status.get("url"))
        ),
    )


def _review_activity(kind: ReviewActivityKind) -> Callable[[Event], ReviewActivity | None]:
    def extract(event: Event) -> ReviewActivity | None:
        if kind == "issue_comment":
            issue = _as_object_dict(event.payload.get("issue"))
            # Plain issue comments are not review activity.
            if issue is None or not issue.get("pull_request"):
                return None
        pr_number = pr_number_from_payload(event.payload)
        if pr_number is None:
            return None
        return ReviewActivity(event_id=event.event_id, kind=kind, pr_number=pr_number)

    return extract


_EXTRACTORS: dict[str, Callable[[Event], RepoActivity | None]] = {
    "IssuesEvent": _issue_activity,
    "CheckRunEvent": _check_run_activity,
    "CheckSuiteEvent": _check_suite_activity,
    "DeploymentStatusEvent": _deployment_status_activity,
    "PullRequestReviewEvent": _review_activity("review"),
    "PullRequestReviewCommentEvent": _review_activity("review_comment"),
    "IssueCommentEvent": _review_activity("issue_comment"),
}


def _app_name(value: object) -> str:
    app = _as_object_dict(value)
    if app is None:
        return "checks"
    return _as_str(app.get("slug")) or _as_str(app.get("name")) or "checks"


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_str(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_optional_str(value: object) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def _as_optional_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None
