"""Interactive terminal dashboard for WireGuard interfaces.

Shows every tunnel with its peers, transfer counters and handshake ages,
refreshes on a timer, and brings interfaces up or down with ``wg-quick``.

Usage:
    uv run wgdash
    uv run wgdash --mock
    uv run wgdash --interval 2 --config path/to/config.toml
"""

from __future__ import annotations

import argparse
import curses
import logging
import os
import queue
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from wgdash.config import dump_default_config, load_config, setup_logging
from wgdash.controller import (
    Event,
    Key,
    Quit,
    Task,
    Tick,
    run_task,
    update,
)
from wgdash.layout import Line, Style, display_width, render, scroll_offset
from wgdash.state import ViewState
from wgdash.themes import THEMES, theme_at, theme_index
from wgdash.wg import SnapshotSource, make_source

logger = logging.getLogger(__name__)

# ── Key normalisation ──────────────────────────────────────────────────────

_KEY_NAMES: dict[int, str] = {
    curses.KEY_UP: "up",
    curses.KEY_DOWN: "down",
    curses.KEY_ENTER: "enter",
    10: "enter",
    13: "enter",
    27: "escape",
    curses.KEY_BACKSPACE: "backspace",
    127: "backspace",
    8: "backspace",
    32: "space",
    curses.KEY_F1: "f1",
    curses.KEY_F2: "f2",
    curses.KEY_F5: "f5",
    curses.KEY_F10: "f10",
}


def key_name(key: int | str) -> str | None:
    """Map a ``get_wch`` result to the name the controller understands.

    Characters arrive as ``str`` and special keys as ``int`` key codes.
    """
    if isinstance(key, str):
        if len(key) != 1:
            return None
        if ord(key) < 128 and ord(key) in _KEY_NAMES:
            return _KEY_NAMES[ord(key)]
        return key if key.isprintable() else None
    if key in _KEY_NAMES:
        return _KEY_NAMES[key]
    if 32 < key < 127:
        return chr(key)
    return None


# ── Colour handling ────────────────────────────────────────────────────────


def _fold_color(color: int | None, available: int) -> int:
    """Clamp an xterm-256 colour to what the terminal offers (-1 = default)."""
    if color is None:
        return -1
    if color < available:
        return color
    return color % 8


class ColorPairs:
    """Allocates curses colour pairs on first use of each fg/bg combination."""

    def __init__(self, colors: int, max_pairs: int) -> None:
        self.colors = colors
        self.max_pairs = max_pairs
        self._pairs: dict[tuple[int, int], int] = {}

    def attr(self, style: Style) -> int:
        key = (_fold_color(style.fg, self.colors), _fold_color(style.bg, self.colors))
        pair = self._pairs.get(key)
        if pair is None:
            pair = len(self._pairs) + 1
            if pair >= self.max_pairs:
                pair = 0
            else:
                curses.init_pair(pair, key[0], key[1])
            self._pairs[key] = pair
        attr = curses.color_pair(pair)
        if style.bold:
            attr |= curses.A_BOLD
        return attr


def _init_colors() -> ColorPairs:
    curses.start_color()
    curses.use_default_colors()
    return ColorPairs(curses.COLORS, curses.COLOR_PAIRS)


# ── Drawing ────────────────────────────────────────────────────────────────


def _safe(win: curses.window, *args: Any) -> None:
    """addstr wrapper that swallows out-of-bounds errors."""
    try:
        win.addstr(*args)
    except curses.error:
        pass


def _draw_frame(win: curses.window, frame: list[Line], pairs: ColorPairs) -> None:
    win.erase()
    for y, line in enumerate(frame):
        x = 0
        for seg in line:
            _safe(win, y, x, seg.text, pairs.attr(seg.style))
            x += display_width(seg.text)
    win.refresh()


# ── Task dispatch ──────────────────────────────────────────────────────────


class TaskRunner:
    """Runs tasks on daemon threads; each posts one event back to the loop.

    Daemon threads keep a hung ``wg-quick`` from holding up quit.
    """

    def __init__(self, source: SnapshotSource) -> None:
        self.source = source
        self.events: queue.Queue[Event] = queue.Queue()

    def _work(self, task: Any) -> None:
        self.events.put(run_task(self.source, task))

    def dispatch(self, tasks: list[Task]) -> bool:
        """Start *tasks*. Returns False once a quit has been requested."""
        for task in tasks:
            if isinstance(task, Quit):
                return False
            logger.debug("dispatching %s", task)
            threading.Thread(target=self._work, args=(task,), daemon=True).start()
        return True

    def pending(self) -> list[Event]:
        out: list[Event] = []
        while True:
            try:
                out.append(self.events.get_nowait())
            except queue.Empty:
                return out


# ── Main loop ──────────────────────────────────────────────────────────────


def _dashboard_loop(
    stdscr: curses.window,
    source: SnapshotSource,
    config: dict[str, Any],
    interval: float,
    start_theme: int,
) -> None:
    pairs = _init_colors()
    try:
        curses.curs_set(0)
    except curses.error:
        pass
    stdscr.keypad(True)
    stdscr.timeout(int(float(config.get("frame_interval", 0.2)) * 1000))

    runner = TaskRunner(source)
    state = ViewState(theme_index=start_theme)

    def apply(event: Event) -> bool:
        nonlocal state
        state, tasks = update(state, event, len(THEMES))
        return runner.dispatch(tasks)

    apply(Tick())
    next_refresh = time.monotonic() + interval
    scroll = 0

    while True:
        for event in runner.pending():
            if not apply(event):
                return

        if time.monotonic() >= next_refresh:
            apply(Tick())
            next_refresh = time.monotonic() + interval

        max_y, max_x = stdscr.getmaxyx()
        scroll = scroll_offset(state, max_y, scroll)
        frame = render(
            state,
            max_x,
            max_y,
            theme_at(state.theme_index),
            datetime.now(timezone.utc),
            scroll,
        )
        _draw_frame(stdscr, frame, pairs)

        try:
            key = stdscr.get_wch()
        except curses.error:
            continue  # timed out
        if key == curses.KEY_RESIZE:
            stdscr.clear()
            continue
        name = key_name(key)
        if name is not None and not apply(Key(name)):
            return


# ── CLI entry point ────────────────────────────────────────────────────────


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Interactive WireGuard dashboard.",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between refreshes (default: 1.0)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help="Path to TOML config file",
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use built-in demo data instead of wg/wg-quick",
    )
    parser.add_argument(
        "--theme",
        default=None,
        help=f"Initial theme ({', '.join(t.name for t in THEMES)})",
    )
    parser.add_argument(
        "--dump-config",
        action="store_true",
        help="Print the default configuration as TOML and exit",
    )
    args = parser.parse_args()

    if args.dump_config:
        print(dump_default_config(), end="")
        return

    config = load_config(args.config)
    setup_logging(config)
    interval = args.interval if args.interval is not None else float(config["refresh_interval"])
    start_theme = theme_index(args.theme or str(config.get("theme", "")))
    source = make_source(config, mock=args.mock)
    logger.info("starting with %s, refresh every %gs", type(source).__name__, interval)

    os.environ.setdefault("ESCDELAY", "25")
    try:
        curses.wrapper(_dashboard_loop, source, config, interval, start_theme)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
