from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
import os
import re
from typing import cast
from urllib.parse import urlencode

from codexcron.models import (
    ActivityRecord,
    Event,
    IssueSnapshot,
    PullRequestSnapshot,
    ReviewThread,
    ReviewThreadPage,
)
from codexcron.events import issue_snapshot_from_payload
from codexcron.observability import log_event
from codexcron.shell import CommandError, run


LOGGER = logging.getLogger("codexcron.github_gateway")

_REVIEW_THREADS_QUERY = """
query($owner:String!, $name:String!, $number:Int!, $after:String) {
  repository(owner:$owner, name:$name) {
    pullRequest(number:$number) {
      reviewThreads(first:100, after:$after) {
        pageInfo { hasNextPage endCursor }
        nodes {
          isResolved
          isOutdated
          comments(first:50) { nodes { author { login } } }
        }
      }
    }
  }
}
"""


class GitHubPollingError(RuntimeError):
    """GitHub read failed; callers decide whether that is fatal for the cycle."""


@dataclass(frozen=True)
class GitHubGateway:
    owner: str
    name: str
    token: str = field(repr=False)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def list_repo_events(self, *, per_page: int = 100) -> list[Event]:
        path = f"/repos/{self.owner}/{self.name}/events?{urlencode({'per_page': per_page})}"
        payload = self._api_json("GET", path)
        if not isinstance(payload, list):
            raise GitHubPollingError("Unexpected GitHub response: expected list for events")

        events: list[Event] = []
        for item in payload:
            item_obj = _as_object_dict(item)
            if item_obj is None or item_obj.get("id") is None:
                continue
            actor = _as_object_dict(item_obj.get("actor"))
            events.append(
                Event(
                    event_id=_as_string(item_obj.get("id")),
                    type=_as_string(item_obj.get("type")),
                    payload=_as_object_dict(item_obj.get("payload")) or {},
                    actor=_as_string(actor.get("login")) if actor else "",
                    created_at=_as_string(item_obj.get("created_at")),
                )
            )
        log_event(
            LOGGER,
            "github_read",
            endpoint="events",
            count=len(events),
            newest_event_id=events[0].event_id if events else None,
        )
        return events

    def has_open_pr_for_issue(self, issue_number: int) -> bool:
        query = f'repo:{self.full_name} type:pr state:open "Fixes #{issue_number}" in:body'
        path = f"/search/issues?{urlencode({'q': query, 'per_page': 20})}"
        payload_obj = _as_object_dict(self._api_json("GET", path))
        if payload_obj is None:
            raise GitHubPollingError("Unexpected GitHub response: expected object for search")
        items = payload_obj.get("items")
        if not isinstance(items, list):
            raise GitHubPollingError("Unexpected GitHub response: expected items list")

        # Search is token based, so confirm the literal reference ("#4" must not match "#42").
        reference = re.compile(rf"(?i)\bfixes #{issue_number}(?!\d)")
        matching = [
            item_obj.get("number")
            for item in items
            if (item_obj := _as_object_dict(item)) is not None
            and reference.search(_as_string(item_obj.get("body")))
        ]
        log_event(
            LOGGER,
            "github_read",
            endpoint="search_open_pr_for_issue",
            issue_number=issue_number,
            search_count=len(items),
            found=bool(matching),
        )
        return bool(matching)

    def list_open_issues(self, *, max_pages: int) -> list[IssueSnapshot]:
        issues: list[IssueSnapshot] = []
        for page in range(1, max_pages + 1):
            query = urlencode(
                {
                    "state": "open",
                    "sort": "updated",
                    "direction": "desc",
                    "per_page": 100,
                    "page": page,
                }
            )
            payload = self._api_json("GET", f"/repos/{self.owner}/{self.name}/issues?{query}")
            if not isinstance(payload, list):
                raise GitHubPollingError("Unexpected GitHub response: expected list for issues")
            for item in payload:
                item_obj = _as_object_dict(item)
                if item_obj is None:
                    continue
                # GitHub returns pull requests in the issues endpoint; ignore those.
                if "pull_request" in item_obj:
                    continue
                snapshot = issue_snapshot_from_payload(item_obj)
                if snapshot is not None:
                    issues.append(snapshot)
            if len(payload) < 100:
                break
        log_event(LOGGER, "github_read", endpoint="open_issues", count=len(issues))
        return issues

    def list_open_pull_request_numbers(self, *, limit: int) -> list[int]:
        query = urlencode(
            {"state": "open", "sort": "updated", "direction": "desc", "per_page": limit}
        )
        payload = self._api_json("GET", f"/repos/{self.owner}/{self.name}/pulls?{query}")
        if not isinstance(payload, list):
            raise GitHubPollingError("Unexpected GitHub response: expected list for pulls")
        numbers: list[int] = []
        for item in payload:
            item_obj = _as_object_dict(item)
            if item_obj is None:
                continue
            number = item_obj.get("number")
            if isinstance(number, int) and not isinstance(number, bool):
                numbers.append(number)
        log_event(LOGGER, "github_read", endpoint="open_pull_requests", count=len(numbers))
        return numbers

    def get_pull_request(self, pr_number: int) -> PullRequestSnapshot:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}"
        payload_obj = _as_object_dict(self._api_json("GET", path))
        if payload_obj is None:
            raise GitHubPollingError("Unexpected GitHub response: expected object for pull request")
        head = _as_object_dict(payload_obj.get("head"))
        head_sha = _as_string(head.get("sha")) if head else ""
        if not head_sha:
            raise GitHubPollingError(f"Pull request #{pr_number} has no head sha")
        log_event(LOGGER, "github_read", endpoint="pull_request", pr_number=pr_number)
        return PullRequestSnapshot(
            number=pr_number,
            title=_as_string(payload_obj.get("title")),
            html_url=_as_string(payload_obj.get("html_url")),
            head_sha=head_sha,
        )

    def list_pull_request_reviews(self, pr_number: int) -> list[ActivityRecord]:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/reviews?per_page=100"
        return self._list_activity(path, timestamp_field="submitted_at", endpoint="reviews")

    def list_issue_comments(self, issue_number: int) -> list[ActivityRecord]:
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}/comments?per_page=100"
        return self._list_activity(path, timestamp_field="created_at", endpoint="issue_comments")

    def list_pull_request_review_comments(self, pr_number: int) -> list[ActivityRecord]:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/comments?per_page=100"
        return self._list_activity(path, timestamp_field="created_at", endpoint="review_comments")

    def get_commit_timestamp(self, sha: str) -> str | None:
        path = f"/repos/{self.owner}/{self.name}/commits/{sha}"
        payload_obj = _as_object_dict(self._api_json("GET", path))
        if payload_obj is None:
            raise GitHubPollingError("Unexpected GitHub response: expected object for commit")
        commit = _as_object_dict(payload_obj.get("commit")) or {}
        for role in ("committer", "author"):
            person = _as_object_dict(commit.get(role))
            date = _as_string(person.get("date")) if person else ""
            if date:
                return date
        return None

    def get_review_thread_page(self, pr_number: int, *, after: str | None) -> ReviewThreadPage:
        variables: dict[str, object] = {
            "owner": self.owner,
            "name": self.name,
            "number": pr_number,
        }
        if after is not None:
            variables["after"] = after
        data = self._graphql(_REVIEW_THREADS_QUERY, variables)

        repository = _as_object_dict(data.get("repository"))
        pull_request = _as_object_dict(repository.get("pullRequest")) if repository else None
        review_threads = (
            _as_object_dict(pull_request.get("reviewThreads")) if pull_request else None
        )
        if review_threads is None:
            raise GitHubPollingError(f"GraphQL result has no review threads for #{pr_number}")
        nodes = review_threads.get("nodes")
        page_info = _as_object_dict(review_threads.get("pageInfo")) or {}

        threads: list[ReviewThread] = []
        for node in nodes if isinstance(nodes, list) else []:
            node_obj = _as_object_dict(node)
            if node_obj is None:
                continue
            comments = _as_object_dict(node_obj.get("comments")) or {}
            comment_nodes = comments.get("nodes")
            authors: list[str] = []
            for comment in comment_nodes if isinstance(comment_nodes, list) else []:
                comment_obj = _as_object_dict(comment)
                author = _as_object_dict(comment_obj.get("author")) if comment_obj else None
                login = _as_string(author.get("login")) if author else ""
                if login:
                    authors.append(login)
            threads.append(
                ReviewThread(
                    is_resolved=node_obj.get("isResolved") is True,
                    is_outdated=node_obj.get("isOutdated") is True,
                    author_logins=tuple(authors),
                )
            )

        end_cursor = page_info.get("endCursor")
        return ReviewThreadPage(
            threads=tuple(threads),
            has_next_page=page_info.get("hasNextPage") is True,
            end_cursor=end_cursor if isinstance(end_cursor, str) else None,
        )

    def _list_activity(
        self, path: str, *, timestamp_field: str, endpoint: str
    ) -> list[ActivityRecord]:
        payload = self._api_json("GET", path)
        if not isinstance(payload, list):
            raise GitHubPollingError(f"Unexpected GitHub response: expected list for {endpoint}")
        records: list[ActivityRecord] = []
        for item in payload:
            item_obj = _as_object_dict(item)
            if item_obj is None:
                continue
            user_obj = _as_object_dict(item_obj.get("user"))
            records.append(
                ActivityRecord(
                    author_login=_as_string(user_obj.get("login")) if user_obj else "",
                    at=_as_string(item_obj.get(timestamp_field)),
                )
            )
        log_event(LOGGER, "github_read", endpoint=endpoint, count=len(records))
        return records

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        env["GH_TOKEN"] = self.token
        return env

    def _graphql(self, query: str, variables: dict[str, object]) -> dict[str, object]:
        cmd = ["gh", "api", "graphql", "-f", f"query={query}"]
        for key, value in variables.items():
            flag = "-F" if isinstance(value, int) else "-f"
            cmd.extend([flag, f"{key}={value}"])
        try:
            raw = run(cmd, env=self._env())
            payload_obj = _as_object_dict(json.loads(raw))
            if payload_obj is None:
                raise RuntimeError("Unexpected GraphQL response: expected object")
            errors = payload_obj.get("errors")
            if isinstance(errors, list) and errors:
                first = _as_object_dict(errors[0]) or {}
                raise RuntimeError(f"GraphQL error: {_as_string(first.get('message'))}")
            data = _as_object_dict(payload_obj.get("data"))
            if data is None:
                raise RuntimeError("Unexpected GraphQL response: missing data")
            return data
        except (CommandError, RuntimeError, ValueError) as exc:
            log_event(
                LOGGER,
                "github_graphql_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise GitHubPollingError(f"GitHub GraphQL request failed: {exc}") from exc

    def _api_json(self, method: str, path: str) -> object:
        cmd = ["gh", "api", "--method", method.upper(), "--include", path]
        raw = run(cmd, env=self._env(), check=False)
        try:
            status_code, _headers, body = _parse_http_response(raw)
            if status_code < 200 or status_code >= 300:
                message = body.strip() or "<empty>"
                raise RuntimeError(
                    f"GitHub API request failed with status {status_code}: {message}"
                )
            return json.loads(body)
        except Exception as exc:
            log_event(
                LOGGER,
                "github_poll_get_failed",
                path=path,
                error_type=type(exc).__name__,
                error=str(exc),
                raw_preview=_preview_for_log(raw),
            )
            raise GitHubPollingError(f"GitHub polling GET failed for path {path}: {exc}") from exc


def _parse_http_response(raw: str) -> tuple[int, dict[str, str], str]:
    normalized = raw.replace("\r\n", "\n")
    lines = normalized.split("\n")

    status_line_index = -1
    for index, line in enumerate(lines):
        if line.startswith("HTTP/"):
            status_line_index = index

    if status_line_index < 0:
        raise RuntimeError("Unexpected GitHub response: missing HTTP status line")

    status_line = lines[status_line_index]
    status_parts = status_line.split(" ", 2)
    if len(status_parts) < 2:
        raise RuntimeError(f"Unexpected GitHub response status line: {status_line!r}")

    try:
        status_code = int(status_parts[1])
    except ValueError as exc:
        raise RuntimeError(f"Unexpected GitHub response status line: {status_line!r}") from exc

    headers: dict[str, str] = {}
    body_start = len(lines)
    for index in range(status_line_index + 1, len(lines)):
        line = lines[index]
        if line == "":
            body_start = index + 1
            break
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        headers[key.strip().lower()] = value.strip()

    body = "\n".join(lines[body_start:])
    return status_code, headers, body


def _preview_for_log(text: str, *, limit: int = 240) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)
