from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import logging
import os
from pathlib import Path
from typing import cast

from codexcron.models import Cursor, NotificationEntry
from codexcron.observability import log_event


LOGGER = logging.getLogger("codexcron.state")
_STATE_FILE_MODE = 0o600


@dataclass(frozen=True)
class ReconcilerState:
    cursor: Cursor = Cursor(last_event_id=None, timestamp=None)
    gap: bool = False
    notified: dict[int, NotificationEntry] = field(default_factory=dict)
    triggered_issues: dict[int, str] = field(default_factory=dict)


class JsonStateStore:
    """Single-file JSON state owned by one reconciler job.

    The file is read once per cycle and replaced whole on every save, so a
    killed process leaves either the previous document or the new one.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> ReconcilerState:
        try:
            raw = self._path.read_bytes()
        except FileNotFoundError:
            return ReconcilerState()
        except OSError as exc:
            log_event(
                LOGGER,
                "state_load_failed",
                path=str(self._path),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return ReconcilerState()

        try:
            return _parse_state(json.loads(raw.decode("utf-8")))
        except (ValueError, TypeError) as exc:
            log_event(
                LOGGER,
                "state_load_failed",
                path=str(self._path),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return ReconcilerState()

    def save_atomic(self, state: ReconcilerState) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(f"{self._path.name}.tmp")
        document = json.dumps(_render_state(state), indent=2, sort_keys=True) + "\n"
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, _STATE_FILE_MODE)
        try:
            os.write(fd, document.encode("utf-8"))
            os.fsync(fd)
        finally:
            os.close(fd)
        os.chmod(tmp_path, _STATE_FILE_MODE)
        os.replace(tmp_path, self._path)
        log_event(
            LOGGER,
            "state_saved",
            path=str(self._path),
            last_event_id=state.cursor.last_event_id,
            gap=state.gap,
            notified_count=len(state.notified),
        )


def utc_now_iso8601() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _render_state(state: ReconcilerState) -> dict[str, object]:
    document: dict[str, object] = {
        "last_event_id": state.cursor.last_event_id,
        "ts": state.cursor.timestamp,
        "gap": state.gap,
    }
    if state.notified:
        document["notified"] = {
            str(pr_number): {
                "head_sha": entry.head_sha,
                "latest_activity": entry.latest_activity,
                "notified_at": entry.notified_at,
            }
            for pr_number, entry in sorted(state.notified.items())
        }
    if state.triggered_issues:
        document["triggered_issues"] = {
            str(issue_number): updated_at
            for issue_number, updated_at in sorted(state.triggered_issues.items())
        }
    return document


def _parse_state(payload: object) -> ReconcilerState:
    document = _require_object(payload, "state document")

    last_event_id = document.get("last_event_id")
    if last_event_id is not None and not isinstance(last_event_id, str | int):
        raise ValueError("last_event_id must be a string or null")
    timestamp = document.get("ts")
    if timestamp is not None and not isinstance(timestamp, str):
        raise ValueError("ts must be a string or null")

    notified: dict[int, NotificationEntry] = {}
    raw_notified = document.get("notified")
    if raw_notified is not None:
        for key, raw_entry in _require_object(raw_notified, "notified").items():
            entry = _require_object(raw_entry, f"notified[{key}]")
            notified[_parse_number_key(key)] = NotificationEntry(
                head_sha=_require_str(entry, "head_sha"),
                latest_activity=_require_str(entry, "latest_activity"),
                notified_at=_require_str(entry, "notified_at"),
            )

    triggered_issues: dict[int, str] = {}
    raw_triggered = document.get("triggered_issues")
    if raw_triggered is not None:
        for key, updated_at in _require_object(raw_triggered, "triggered_issues").items():
            if not isinstance(updated_at, str):
                raise ValueError(f"triggered_issues[{key}] must be a string")
            triggered_issues[_parse_number_key(key)] = updated_at

    return ReconcilerState(
        cursor=Cursor(
            last_event_id=str(last_event_id) if last_event_id is not None else None,
            timestamp=timestamp,
        ),
        gap=document.get("gap") is True,
        notified=notified,
        triggered_issues=triggered_issues,
    )


def _require_object(value: object, label: str) -> dict[str, object]:
    if not isinstance(value, dict):
        raise ValueError(f"{label} must be a JSON object")
    return cast(dict[str, object], value)


def _require_str(data: dict[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value


def _parse_number_key(key: str) -> int:
    if not key.isdigit():
        raise ValueError(f"Expected a numeric key, got {key!r}")
    return int(key)
