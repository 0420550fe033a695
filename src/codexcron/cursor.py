from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
import logging

from codexcron.models import Cursor, CursorStatus, Event
from codexcron.observability import log_event
from codexcron.state import JsonStateStore, ReconcilerState, utc_now_iso8601


LOGGER = logging.getLogger("codexcron.cursor")


@dataclass(frozen=True)
class CursorAdvance:
    newer_events: tuple[Event, ...]
    new_cursor: Cursor
    status: CursorStatus

    @property
    def gap(self) -> bool:
        return self.status == "GAP"


def advance_cursor(events: Sequence[Event], cursor: Cursor, *, now: str) -> CursorAdvance:
    """Split a newest-first event window at the stored cursor.

    Returns the events newer than the cursor in chronological order. When there
    is no cursor yet, or the cursor fell out of the window, no events are
    returned and the cursor jumps to the newest event.
    """
    if not events:
        return CursorAdvance(newer_events=(), new_cursor=cursor, status="NO_CHANGE")

    newest_id = str(events[0].event_id)
    moved = Cursor(last_event_id=newest_id, timestamp=now)

    if cursor.last_event_id is None:
        return CursorAdvance(newer_events=(), new_cursor=moved, status="FIRST_RUN")

    last_id = str(cursor.last_event_id)
    if newest_id == last_id:
        return CursorAdvance(newer_events=(), new_cursor=cursor, status="NO_CHANGE")

    for index, event in enumerate(events):
        if str(event.event_id) == last_id:
            newer = tuple(reversed(events[:index]))
            return CursorAdvance(newer_events=newer, new_cursor=moved, status="OK")

    return CursorAdvance(newer_events=(), new_cursor=moved, status="GAP")


class EventCursorTracker:
    def __init__(
        self,
        store: JsonStateStore,
        *,
        clock: Callable[[], str] = utc_now_iso8601,
    ) -> None:
        self._store = store
        self._clock = clock

    def advance(
        self,
        events: Sequence[Event],
        state: ReconcilerState,
        *,
        persist: bool = True,
    ) -> tuple[CursorAdvance, ReconcilerState]:
        result = advance_cursor(events, state.cursor, now=self._clock())
        next_state = state
        if result.status != "NO_CHANGE":
            next_state = replace(state, cursor=result.new_cursor, gap=result.gap)

        log_event(
            LOGGER,
            "cursor_advanced",
            status=result.status,
            previous_event_id=state.cursor.last_event_id,
            newest_event_id=result.new_cursor.last_event_id,
            new_event_count=len(result.newer_events),
            window_size=len(events),
        )
        if result.gap:
            LOGGER.warning(
                "event=cursor_gap_detected previous_event_id=%s newest_event_id=%s window_size=%s",
                state.cursor.last_event_id,
                result.new_cursor.last_event_id,
                len(events),
            )

        # First-run and gap cursors are saved immediately even when persistence is deferred.
        if result.status in ("FIRST_RUN", "GAP") or (persist and result.status == "OK"):
            self._store.save_atomic(next_state)
        return result, next_state
