"""Tests for wgdash.controller: key handling, async results and task running."""

from __future__ import annotations

from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from wgdash.controller import (
    FetchSnapshot,
    Key,
    Quit,
    SnapshotFailed,
    SnapshotLoaded,
    Tick,
    ToggleFinished,
    ToggleInterface,
    run_task,
    update,
)
from wgdash.state import ErrorBanner, ErrorKind, Mode, ViewState, reconcile, selected_row
from wgdash.wg import Interface, Peer, Snapshot, SourceUnavailable, Status, ToggleFailed

IFACES = [
    Interface("wg0", "K0", 51820, 0, Status.UP),
    Interface("wg1", "K1", 51821, 0, Status.DOWN),
    Interface("office", "K2", 0, 0, Status.DOWN),
]
PEERS = {"wg0": [Peer("PA"), Peer("PB")]}


def _loaded(**kwargs: object) -> ViewState:
    return replace(reconcile(ViewState(), IFACES, PEERS), **kwargs)


def _keys(state: ViewState, *names: str) -> ViewState:
    for name in names:
        state, _ = update(state, Key(name), 5)
    return state


# ── Normal mode ────────────────────────────────────────────────────────────


class TestNavigation:
    def test_down_and_up(self) -> None:
        state = _keys(_loaded(), "down", "j")
        assert state.cursor == 2
        state = _keys(state, "up")
        assert state.cursor == 1

    def test_no_wraparound(self) -> None:
        state = _keys(_loaded(), "up", "k")
        assert state.cursor == 0
        state = _keys(_loaded(), *["down"] * 20)
        assert state.cursor == 4  # wg0, PA, PB, wg1, office

    def test_moves_over_filtered_rows(self) -> None:
        state = _keys(_loaded(filter_text="wg"), *["down"] * 10)
        assert state.cursor == 3
        assert selected_row(state).interface.name == "wg1"

    def test_empty_list(self) -> None:
        state = _keys(ViewState(), "down", "up")
        assert state.cursor == 0


class TestToggle:
    def test_toggle_up_interface_scenario(self) -> None:
        state, tasks = update(_loaded(), Key("space"))
        assert tasks == [ToggleInterface("wg0", False)]

        for error in (None, "wg-quick down wg0 failed"):
            after, follow = update(state, ToggleFinished("wg0", False, error))
            assert len(follow) == 1
            assert isinstance(follow[0], FetchSnapshot)

    def test_toggle_down_interface_requests_up(self) -> None:
        state = _loaded(cursor=3)
        _, tasks = update(state, Key("space"))
        assert tasks == [ToggleInterface("wg1", True)]

    def test_space_on_peer_row_does_nothing(self) -> None:
        _, tasks = update(_loaded(cursor=1), Key("space"))
        assert tasks == []

    def test_failure_sets_error_without_touching_data(self) -> None:
        state = _loaded()
        after, _ = update(state, ToggleFinished("wg0", False, "permission denied"))
        assert after.last_error == ErrorBanner(ErrorKind.TOGGLE, "permission denied")
        assert after.interfaces == state.interfaces

    def test_success_leaves_error_empty(self) -> None:
        after, _ = update(_loaded(), ToggleFinished("wg0", False))
        assert after.last_error is None


class TestOtherKeys:
    def test_quit(self) -> None:
        for key in ("q", "f10"):
            _, tasks = update(_loaded(), Key(key))
            assert tasks == [Quit()]

    def test_theme_cycles_modulo_palette(self) -> None:
        state = _loaded(theme_index=4)
        state, _ = update(state, Key("t"), 5)
        assert state.theme_index == 0
        state, _ = update(state, Key("f2"), 5)
        assert state.theme_index == 1

    def test_refresh_key_fetches(self) -> None:
        state, tasks = update(_loaded(), Key("r"))
        assert tasks == [FetchSnapshot(1)]
        assert state.next_request_id == 2

    def test_enter_collapses_and_expands(self) -> None:
        state = _keys(_loaded(), "enter")
        assert state.expanded["wg0"] is False
        state = _keys(state, "enter")
        assert state.expanded["wg0"] is True

    def test_enter_on_peer_collapses_parent(self) -> None:
        state = _keys(_loaded(cursor=2), "enter")
        assert state.expanded["wg0"] is False
        assert state.cursor == 0

    def test_key_dismisses_error(self) -> None:
        state = _loaded(last_error=ErrorBanner(ErrorKind.SOURCE, "x"))
        state = _keys(state, "down")
        assert state.last_error is None

    def test_escape_clears_filter(self) -> None:
        state = _keys(_loaded(filter_text="wg"), "escape")
        assert state.filter_text == ""


# ── Modes ──────────────────────────────────────────────────────────────────


class TestFilterMode:
    def test_typing_builds_filter(self) -> None:
        state = _keys(_loaded(), "/", "o", "f", "f")
        assert state.mode is Mode.FILTER
        assert state.filter_text == "off"

    def test_backspace(self) -> None:
        state = _keys(_loaded(), "/", "w", "g", "backspace")
        assert state.filter_text == "w"
        state = _keys(state, "backspace", "backspace")
        assert state.filter_text == ""

    @pytest.mark.parametrize("key", ["enter", "escape"])
    def test_commit_returns_to_normal(self, key: str) -> None:
        state = _keys(_loaded(), "/", "w", key)
        assert state.mode is Mode.NORMAL
        assert state.filter_text == "w"

    def test_keys_are_text_while_filtering(self) -> None:
        state, tasks = update(_keys(_loaded(), "/"), Key("q"))
        assert tasks == []
        assert state.filter_text == "q"

    def test_cursor_clamped_as_filter_narrows(self) -> None:
        state = _keys(_loaded(cursor=4), "/", "o")
        assert state.cursor == 0


class TestHelpMode:
    def test_any_key_returns(self) -> None:
        state = _keys(_loaded(), "?")
        assert state.mode is Mode.HELP
        after, tasks = update(state, Key("q"))
        assert after.mode is Mode.NORMAL
        assert tasks == []
        assert after.cursor == state.cursor


# ── Snapshot results ───────────────────────────────────────────────────────


class TestSnapshots:
    def test_tick_fetches_with_increasing_ids(self) -> None:
        state, first = update(ViewState(), Tick())
        state, second = update(state, Tick())
        assert first == [FetchSnapshot(1)]
        assert second == [FetchSnapshot(2)]

    def test_loaded_reconciles(self) -> None:
        state, _ = update(ViewState(), Tick())
        state, tasks = update(state, SnapshotLoaded(1, Snapshot(IFACES, PEERS)))
        assert tasks == []
        assert [i.name for i in state.interfaces] == ["wg0", "wg1", "office"]
        assert state.applied_request_id == 1

    def test_stale_result_discarded(self) -> None:
        state = ViewState()
        state, _ = update(state, SnapshotLoaded(2, Snapshot(IFACES, PEERS)))
        state, _ = update(state, SnapshotLoaded(1, Snapshot([], {})))
        assert len(state.interfaces) == 3

    def test_failure_keeps_previous_data(self) -> None:
        state = _loaded(applied_request_id=1)
        after, _ = update(state, SnapshotFailed(2, "wg not found"))
        assert after.interfaces == state.interfaces
        assert after.peers == state.peers
        assert after.last_error == ErrorBanner(ErrorKind.SOURCE, "wg not found")

    def test_success_clears_source_error_only(self) -> None:
        state = _loaded(last_error=ErrorBanner(ErrorKind.SOURCE, "x"))
        after, _ = update(state, SnapshotLoaded(5, Snapshot(IFACES, PEERS)))
        assert after.last_error is None

        state = _loaded(last_error=ErrorBanner(ErrorKind.TOGGLE, "y"))
        after, _ = update(state, SnapshotLoaded(5, Snapshot(IFACES, PEERS)))
        assert after.last_error == ErrorBanner(ErrorKind.TOGGLE, "y")

    def test_snapshot_preserves_filter_and_mode(self) -> None:
        state = _keys(_loaded(), "/", "w")
        after, _ = update(state, SnapshotLoaded(9, Snapshot(IFACES, PEERS)))
        assert after.mode is Mode.FILTER
        assert after.filter_text == "w"


# ── run_task ───────────────────────────────────────────────────────────────


class TestRunTask:
    def test_fetch_success(self) -> None:
        source = MagicMock()
        source.list_interfaces.return_value = IFACES
        source.list_peers.return_value = PEERS["wg0"]
        event = run_task(source, FetchSnapshot(3))
        assert isinstance(event, SnapshotLoaded)
        assert event.request_id == 3
        source.list_peers.assert_called_once_with("wg0")

    def test_fetch_failure(self) -> None:
        source = MagicMock()
        source.list_interfaces.side_effect = SourceUnavailable("wg not found")
        assert run_task(source, FetchSnapshot(4)) == SnapshotFailed(4, "wg not found")

    def test_toggle_success(self) -> None:
        source = MagicMock()
        assert run_task(source, ToggleInterface("wg0", False)) == ToggleFinished("wg0", False)
        source.toggle_interface.assert_called_once_with("wg0", False)

    def test_toggle_failure(self) -> None:
        source = MagicMock()
        source.toggle_interface.side_effect = ToggleFailed("denied")
        assert run_task(source, ToggleInterface("wg0", True)) == ToggleFinished("wg0", True, "denied")

    def test_unexpected_fetch_error_becomes_failure(self) -> None:
        source = MagicMock()
        source.list_interfaces.side_effect = UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")
        event = run_task(source, FetchSnapshot(6))
        assert isinstance(event, SnapshotFailed)
        assert event.request_id == 6
        assert "invalid start byte" in event.message

    def test_unexpected_toggle_error_becomes_failure(self) -> None:
        source = MagicMock()
        source.toggle_interface.side_effect = PermissionError(13, "Permission denied")
        event = run_task(source, ToggleInterface("wg0", False))
        assert event.name == "wg0"
        assert event.up is False
        assert "Permission denied" in event.error

    def test_crashed_toggle_still_refreshes(self) -> None:
        source = MagicMock()
        source.toggle_interface.side_effect = RuntimeError("boom")
        state, tasks = update(_loaded(), Key("space"))
        state, follow = update(state, run_task(source, tasks[0]))
        assert state.last_error.kind is ErrorKind.TOGGLE
        assert len(follow) == 1
        assert isinstance(follow[0], FetchSnapshot)

    def test_toggle_then_exactly_one_fetch(self) -> None:
        source = MagicMock()
        source.toggle_interface.side_effect = ToggleFailed("denied")
        state, tasks = update(_loaded(), Key("space"))
        event = run_task(source, tasks[0])
        state, follow = update(state, event)
        source.toggle_interface.assert_called_once_with("wg0", False)
        assert follow == [FetchSnapshot(state.next_request_id - 1)]
