"""Input/timer/result events → new view state plus tasks to run.

:func:`update` is pure: it never performs I/O. Whatever needs doing in the
background is returned as task objects, and :func:`run_task` turns each task
into exactly one follow-up event for the loop to feed back in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Union

from wgdash.state import (
    ErrorBanner,
    ErrorKind,
    Mode,
    ViewState,
    reconcile,
    selected_row,
    visible_rows,
    with_clamped_cursor,
)
from wgdash.wg import Snapshot, SnapshotSource, SourceUnavailable, Status, ToggleFailed, fetch_snapshot

logger = logging.getLogger(__name__)

QUIT_KEYS = {"q", "Q", "f10"}
HELP_KEYS = {"?", "f1"}
THEME_KEYS = {"t", "f2"}
REFRESH_KEYS = {"r", "f5"}
UP_KEYS = {"up", "k"}
DOWN_KEYS = {"down", "j"}


# ── Events ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Key:
    """A key press, normalised: a single printable character or a name
    such as ``up``, ``enter``, ``escape``, ``backspace``, ``space``, ``f1``."""

    name: str


@dataclass(frozen=True)
class Tick:
    pass


@dataclass(frozen=True)
class SnapshotLoaded:
    request_id: int
    snapshot: Snapshot


@dataclass(frozen=True)
class SnapshotFailed:
    request_id: int
    message: str


@dataclass(frozen=True)
class ToggleFinished:
    name: str
    up: bool
    error: str | None = None


Event = Union[Key, Tick, SnapshotLoaded, SnapshotFailed, ToggleFinished]


# ── Tasks ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FetchSnapshot:
    request_id: int


@dataclass(frozen=True)
class ToggleInterface:
    name: str
    up: bool


@dataclass(frozen=True)
class Quit:
    pass


Task = Union[FetchSnapshot, ToggleInterface, Quit]
Transition = tuple[ViewState, list[Task]]


# ── Transitions ────────────────────────────────────────────────────────────


def _fetch(state: ViewState) -> Transition:
    task = FetchSnapshot(state.next_request_id)
    return replace(state, next_request_id=state.next_request_id + 1), [task]


def _move(state: ViewState, delta: int) -> ViewState:
    count = len(visible_rows(state))
    cursor = max(0, min(state.cursor + delta, count - 1))
    return replace(state, cursor=cursor)


def _toggle_expanded(state: ViewState) -> ViewState:
    row = selected_row(state)
    if row is None:
        return state
    name = row.interface.name
    expanded = dict(state.expanded)
    if row.is_peer:
        # Collapse the parent and park the cursor on it
        expanded[name] = False
        collapsed = replace(state, expanded=expanded)
        for i, r in enumerate(visible_rows(collapsed)):
            if not r.is_peer and r.interface.name == name:
                return replace(collapsed, cursor=i)
        return with_clamped_cursor(collapsed)
    expanded[name] = not expanded.get(name, False)
    return with_clamped_cursor(replace(state, expanded=expanded))


def _filter_key(state: ViewState, key: str) -> Transition:
    if key in ("enter", "escape"):
        return replace(state, mode=Mode.NORMAL), []
    if key == "backspace":
        text = state.filter_text[:-1]
    elif key == "space":
        text = state.filter_text + " "
    elif len(key) == 1 and key.isprintable():
        text = state.filter_text + key
    else:
        return state, []
    return with_clamped_cursor(replace(state, filter_text=text)), []


def _normal_key(state: ViewState, key: str, palette_size: int) -> Transition:
    if state.last_error is not None:
        state = replace(state, last_error=None)

    if key in QUIT_KEYS:
        return state, [Quit()]
    if key in UP_KEYS:
        return _move(state, -1), []
    if key in DOWN_KEYS:
        return _move(state, 1), []
    if key in HELP_KEYS:
        return replace(state, mode=Mode.HELP), []
    if key == "/":
        return replace(state, mode=Mode.FILTER), []
    if key == "escape":
        if state.filter_text:
            return with_clamped_cursor(replace(state, filter_text="")), []
        return state, []
    if key in THEME_KEYS:
        return replace(state, theme_index=(state.theme_index + 1) % max(1, palette_size)), []
    if key in REFRESH_KEYS:
        return _fetch(state)
    if key == "enter":
        return _toggle_expanded(state), []
    if key == "space":
        row = selected_row(state)
        if row is None or row.is_peer:
            return state, []
        iface = row.interface
        return state, [ToggleInterface(iface.name, iface.status is not Status.UP)]
    return state, []


def update(state: ViewState, event: Event, palette_size: int = 1) -> Transition:
    """Apply one event. Returns the new state and the tasks to dispatch."""
    if isinstance(event, Key):
        if state.mode is Mode.HELP:
            return replace(state, mode=Mode.NORMAL), []
        if state.mode is Mode.FILTER:
            return _filter_key(state, event.name)
        return _normal_key(state, event.name, palette_size)

    if isinstance(event, Tick):
        return _fetch(state)

    if isinstance(event, SnapshotLoaded):
        if event.request_id < state.applied_request_id:
            logger.debug(
                "discarding stale snapshot %d (already applied %d)",
                event.request_id, state.applied_request_id,
            )
            return state, []
        new = reconcile(state, event.snapshot.interfaces, event.snapshot.peers)
        error = new.last_error
        if error is not None and error.kind is ErrorKind.SOURCE:
            error = None
        return replace(new, applied_request_id=event.request_id, last_error=error), []

    if isinstance(event, SnapshotFailed):
        if event.request_id < state.applied_request_id:
            return state, []
        return replace(
            state,
            applied_request_id=event.request_id,
            last_error=ErrorBanner(ErrorKind.SOURCE, event.message),
        ), []

    if isinstance(event, ToggleFinished):
        if event.error is not None:
            state = replace(state, last_error=ErrorBanner(ErrorKind.TOGGLE, event.error))
        return _fetch(state)

    raise TypeError(f"unknown event: {event!r}")


# ── Task execution ─────────────────────────────────────────────────────────


def run_task(source: SnapshotSource, task: FetchSnapshot | ToggleInterface) -> Event:
    """Run *task* against *source* and describe the outcome as an event.

    Meant to be called from a worker thread. Every outcome, including an
    unexpected exception, becomes exactly one event.
    """
    if isinstance(task, FetchSnapshot):
        try:
            snapshot = fetch_snapshot(source)
        except SourceUnavailable as e:
            logger.warning("snapshot %d failed: %s", task.request_id, e)
            return SnapshotFailed(task.request_id, str(e))
        except Exception as e:
            logger.exception("snapshot %d crashed", task.request_id)
            return SnapshotFailed(task.request_id, f"snapshot failed: {e}")
        return SnapshotLoaded(task.request_id, snapshot)

    try:
        source.toggle_interface(task.name, task.up)
    except ToggleFailed as e:
        logger.warning("toggle %s failed: %s", task.name, e)
        return ToggleFinished(task.name, task.up, str(e))
    except Exception as e:
        logger.exception("toggle %s crashed", task.name)
        return ToggleFinished(task.name, task.up, f"toggle {task.name} failed: {e}")
    logger.info("interface %s is now %s", task.name, "up" if task.up else "down")
    return ToggleFinished(task.name, task.up)
