"""Tests for the curses runtime helpers (no real terminal needed)."""

from __future__ import annotations

import curses
import random
from unittest.mock import MagicMock, patch

import pytest

from wgdash.controller import (
    FetchSnapshot,
    Key,
    Quit,
    SnapshotFailed,
    SnapshotLoaded,
    ToggleFinished,
    ToggleInterface,
    update,
)
from wgdash.dashboard import ColorPairs, TaskRunner, _draw_frame, _fold_color, key_name
from wgdash.layout import Segment, Style
from wgdash.state import ViewState
from wgdash.themes import THEMES, theme_at, theme_index
from wgdash.wg import MockSource

# ── key_name ───────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("key", "expected"),
    [
        (curses.KEY_UP, "up"),
        (curses.KEY_DOWN, "down"),
        (curses.KEY_ENTER, "enter"),
        (curses.KEY_BACKSPACE, "backspace"),
        (curses.KEY_F1, "f1"),
        (curses.KEY_F10, "f10"),
        (ord("q"), "q"),
        (curses.KEY_NPAGE, None),
        (1, None),
        ("\n", "enter"),
        ("\r", "enter"),
        ("\x1b", "escape"),
        ("\x7f", "backspace"),
        ("\x08", "backspace"),
        (" ", "space"),
        ("q", "q"),
        ("/", "/"),
        ("é", "é"),
        ("隧", "隧"),
        ("\t", None),
        ("\x01", None),
    ],
)
def test_key_name(key: int | str, expected: str | None) -> None:
    assert key_name(key) == expected


def test_multibyte_input_types_one_character() -> None:
    state = ViewState()
    for key in ("/", "c", "a", "f", "é", "\n"):
        state, _ = update(state, Key(key_name(key)))
    assert state.filter_text == "café"


# ── Colours ────────────────────────────────────────────────────────────────


def test_fold_color() -> None:
    assert _fold_color(None, 256) == -1
    assert _fold_color(62, 256) == 62
    assert _fold_color(62, 8) == 62 % 8
    assert _fold_color(3, 8) == 3


@patch("wgdash.dashboard.curses")
def test_color_pairs_allocated_once(mock_curses: MagicMock) -> None:
    mock_curses.A_BOLD = 0x200000
    mock_curses.color_pair.side_effect = lambda n: n << 8
    pairs = ColorPairs(256, 64)

    a = pairs.attr(Style(fg=2, bg=0))
    b = pairs.attr(Style(fg=2, bg=0, bold=True))
    c = pairs.attr(Style(fg=6))

    assert mock_curses.init_pair.call_count == 2
    mock_curses.init_pair.assert_any_call(1, 2, 0)
    mock_curses.init_pair.assert_any_call(2, 6, -1)
    assert b == a | 0x200000
    assert c == 2 << 8


@patch("wgdash.dashboard.curses")
def test_color_pairs_exhausted_fall_back(mock_curses: MagicMock) -> None:
    mock_curses.color_pair.side_effect = lambda n: n
    pairs = ColorPairs(256, 2)
    pairs.attr(Style(fg=1))
    assert pairs.attr(Style(fg=2)) == 0


# ── Drawing ────────────────────────────────────────────────────────────────


def test_draw_frame_positions_segments() -> None:
    win = MagicMock()
    pairs = MagicMock()
    pairs.attr.return_value = 0
    frame = [
        [Segment("ab", Style()), Segment("隧", Style()), Segment("c", Style())],
        [Segment("xyz", Style())],
    ]
    _draw_frame(win, frame, pairs)
    calls = [c.args[:3] for c in win.addstr.call_args_list]
    assert calls == [(0, 0, "ab"), (0, 2, "隧"), (0, 4, "c"), (1, 0, "xyz")]
    win.refresh.assert_called_once()


def test_draw_frame_swallows_edge_errors() -> None:
    win = MagicMock()
    win.addstr.side_effect = curses.error
    pairs = MagicMock()
    pairs.attr.return_value = 0
    _draw_frame(win, [[Segment("x", Style())]], pairs)
    win.refresh.assert_called_once()


# ── TaskRunner ─────────────────────────────────────────────────────────────


class TestTaskRunner:
    def test_each_task_posts_one_event(self) -> None:
        runner = TaskRunner(MockSource(random.Random(3)))
        assert runner.dispatch([FetchSnapshot(1), ToggleInterface("wg2", True)]) is True
        events = [runner.events.get(timeout=5) for _ in range(2)]
        kinds = {type(e) for e in events}
        assert kinds == {SnapshotLoaded, ToggleFinished}
        assert runner.pending() == []

    def test_crashing_source_still_posts_events(self) -> None:
        source = MagicMock()
        source.list_interfaces.side_effect = PermissionError(13, "Permission denied")
        source.toggle_interface.side_effect = OSError("exec format error")
        runner = TaskRunner(source)
        runner.dispatch([FetchSnapshot(2), ToggleInterface("wg0", True)])
        events = [runner.events.get(timeout=5) for _ in range(2)]
        failed = next(e for e in events if isinstance(e, SnapshotFailed))
        toggled = next(e for e in events if isinstance(e, ToggleFinished))
        assert failed.request_id == 2
        assert "exec format error" in toggled.error

    def test_quit_stops_dispatch(self) -> None:
        source = MagicMock()
        runner = TaskRunner(source)
        assert runner.dispatch([Quit(), ToggleInterface("wg0", False)]) is False
        source.toggle_interface.assert_not_called()


# ── Themes ─────────────────────────────────────────────────────────────────


def test_theme_lookup() -> None:
    assert theme_index("nord") == 3
    assert theme_index("no such theme") == 0
    assert theme_at(len(THEMES) + 1) == THEMES[1]
