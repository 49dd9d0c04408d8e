"""Frame layout: turns a view state into width-exact lines of styled text.

Nothing in here touches curses. A frame is a list of lines, a line is a list
of :class:`Segment` s, and every line spans exactly the requested number of
terminal columns. The curses runtime only has to paint them.
"""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass
from datetime import datetime
from typing import NamedTuple

from wgdash.state import Mode, Row, ViewState, visible_rows
from wgdash.themes import Theme
from wgdash.wg import Interface, Peer, Status

# ── Constants ──────────────────────────────────────────────────────────────

ELLIPSIS = "..."
HARD_CUT_WIDTH = 3  # at or below this, truncate without an ellipsis

MIN_NAME = 20
MIN_ENDPOINT = 20
MIN_TRANSFER = 15
MIN_HANDSHAKE = 12
NAME_SHARE = 0.3
ENDPOINT_SHARE = 0.4
TRANSFER_SHARE = 0.2

DETAILS_HEIGHT = 10
MIN_LIST_HEIGHT = 4

BYTE_UNITS = "KMGTPE"

MASCOT_SLEEP = [
    " ( -.-) Zzz ",
    " ( -.-) zZz ",
]
MASCOT_ACTIVE = [
    " (/^▽^)/ ",
    " \\(^▽^\\) ",
]
MASCOT_FRAME_MS = 200
MASCOT_SLEEP_EVERY = 5  # sleeping frames advance every 5th tick


# ── Styled text ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Style:
    fg: int | None = None
    bg: int | None = None
    bold: bool = False


class Segment(NamedTuple):
    text: str
    style: Style


Line = list[Segment]


class Columns(NamedTuple):
    name: int
    endpoint: int
    transfer: int
    handshake: int


# ── Width helpers ──────────────────────────────────────────────────────────


def char_width(ch: str) -> int:
    """Terminal columns taken by a single character."""
    if unicodedata.combining(ch):
        return 0
    if unicodedata.category(ch) in ("Cc", "Cf", "Me", "Mn"):
        return 0
    if unicodedata.east_asian_width(ch) in ("W", "F"):
        return 2
    return 1


def display_width(text: str) -> int:
    return sum(char_width(ch) for ch in text)


def _cut(text: str, max_width: int) -> tuple[int, int]:
    """Longest prefix fitting in *max_width* columns: (char count, width)."""
    used = 0
    for i, ch in enumerate(text):
        w = char_width(ch)
        if used + w > max_width:
            return i, used
        used += w
    return len(text), used


def truncate(text: str, max_width: int) -> str:
    """Shorten *text* to at most *max_width* columns.

    Text that already fits is returned unchanged. Otherwise it is cut and
    ends in an ellipsis, except for widths of three columns or fewer, which
    get a plain cut.
    """
    if max_width <= 0:
        return ""
    if display_width(text) <= max_width:
        return text
    if max_width <= HARD_CUT_WIDTH:
        end, _ = _cut(text, max_width)
        return text[:end]
    end, _ = _cut(text, max_width - display_width(ELLIPSIS))
    return text[:end] + ELLIPSIS


def pad(text: str, width: int) -> str:
    return text + " " * max(0, width - display_width(text))


def fit_line(segments: list[Segment], width: int, fill: Style) -> Line:
    """Hard-clip *segments* to *width* columns and pad the rest with *fill*."""
    out: Line = []
    used = 0
    for seg in segments:
        if used >= width:
            break
        w = display_width(seg.text)
        if used + w <= width:
            if seg.text:
                out.append(seg)
            used += w
            continue
        end, w = _cut(seg.text, width - used)
        if end:
            out.append(Segment(seg.text[:end], seg.style))
        used += w
        break
    if used < width:
        out.append(Segment(" " * (width - used), fill))
    return out


def line_text(line: Line) -> str:
    return "".join(seg.text for seg in line)


def _cell(text: str, width: int, style: Style) -> Segment:
    """A column cell: truncated to leave a one-column gap, then padded."""
    if width <= 0:
        return Segment("", style)
    return Segment(pad(truncate(text, width - 1), width), style)


# ── Sizing and scrolling ───────────────────────────────────────────────────


def column_widths(width: int) -> Columns:
    """Split *width* between the four table columns.

    Each column gets its minimum, then the spare width is shared 30/40/20 and
    the handshake column takes what is left. On terminals narrower than the
    minimums the table is simply wider than the screen.
    """
    spare = max(0, width - (MIN_NAME + MIN_ENDPOINT + MIN_TRANSFER + MIN_HANDSHAKE))
    name = MIN_NAME + int(spare * NAME_SHARE)
    endpoint = MIN_ENDPOINT + int(spare * ENDPOINT_SHARE)
    transfer = MIN_TRANSFER + int(spare * TRANSFER_SHARE)
    handshake = max(MIN_HANDSHAKE, width - name - endpoint - transfer)
    return Columns(name, endpoint, transfer, handshake)


def window_start(cursor: int, visible: int, start: int = 0, total: int | None = None) -> int:
    """First row of the scroll window that keeps *cursor* on screen.

    The window only moves when the cursor leaves it, and then by exactly
    the distance needed. With ``start=0`` this is the smallest valid start.
    """
    cursor = max(0, cursor)
    if visible <= 0:
        return cursor
    start = max(0, start)
    if total is not None:
        start = min(start, max(0, total - visible))
    if cursor < start:
        return cursor
    if cursor >= start + visible:
        return cursor - visible + 1
    return start


def _extra_lines(state: ViewState) -> int:
    extra = 0
    if state.last_error is not None:
        extra += 1
    if state.mode is Mode.FILTER or state.filter_text:
        extra += 1
    return extra


def body_heights(state: ViewState, height: int) -> tuple[int, int]:
    """(list rows, details panel rows) for a terminal *height* lines tall."""
    avail = height - 3 - _extra_lines(state)  # header, column header, footer
    if avail - DETAILS_HEIGHT >= MIN_LIST_HEIGHT:
        details = DETAILS_HEIGHT
    else:
        details = max(0, min(DETAILS_HEIGHT, avail - MIN_LIST_HEIGHT))
        if details < 3:
            details = 0
    return max(1, avail - details), details


def scroll_offset(state: ViewState, height: int, previous: int = 0) -> int:
    """Window start for *state* on a terminal *height* lines tall.

    *previous* is the start used for the last frame; the caller keeps it.
    """
    list_h, _ = body_heights(state, height)
    rows = visible_rows(state)
    return window_start(state.cursor, list_h, previous, len(rows))


# ── Formatting ─────────────────────────────────────────────────────────────


def format_bytes(n: int | float) -> str:
    """Binary-prefixed size with one decimal, e.g. ``1.5K``; plain under 1 KiB."""
    if n < 1024:
        return f"{int(n)}B"
    value = float(n)
    unit = ""
    for unit in BYTE_UNITS:
        value /= 1024
        if round(value, 1) < 1024:  # as printed
            break
    return f"{value:.1f}{unit}"


def format_duration(seconds: float) -> str:
    """``45s``, ``3m12s`` under an hour, ``2h5m`` beyond."""
    total = max(0, int(seconds))
    if total < 60:
        return f"{total}s"
    if total < 3600:
        return f"{total // 60}m{total % 60}s"
    return f"{total // 3600}h{total % 3600 // 60}m"


def format_handshake(ts: datetime | None, now: datetime) -> str:
    if ts is None:
        return "never"
    return format_duration((now - ts).total_seconds())


def format_fwmark(mark: int) -> str:
    return f"0x{mark:x}" if mark else "off"


def mascot_frame(now: datetime, active: bool) -> str:
    tick = int(now.timestamp() * 1000) // MASCOT_FRAME_MS
    if not active:
        return MASCOT_SLEEP[(tick // MASCOT_SLEEP_EVERY) % len(MASCOT_SLEEP)]
    return MASCOT_ACTIVE[tick % len(MASCOT_ACTIVE)]


MASCOT_WIDTH = max(display_width(f) for f in MASCOT_SLEEP + MASCOT_ACTIVE)


# ── Aggregates ─────────────────────────────────────────────────────────────


def interface_totals(peers: list[Peer]) -> tuple[int, int, datetime | None]:
    """Summed Rx/Tx and the most recent handshake across *peers*."""
    rx = sum(p.transfer_rx for p in peers)
    tx = sum(p.transfer_tx for p in peers)
    stamps = [p.latest_handshake for p in peers if p.latest_handshake is not None]
    return rx, tx, max(stamps) if stamps else None


def _transfer(rx: int, tx: int) -> str:
    return f"{format_bytes(rx)}/{format_bytes(tx)}"


# ── Sections ───────────────────────────────────────────────────────────────


def _header(width: int, theme: Theme, now: datetime) -> Line:
    style = Style(theme.header_fg, theme.header_bg, bold=True)
    title = f" WireGuard Dashboard ({theme.name}) "
    clock = f" {now.astimezone().strftime('%H:%M:%S')} "
    room = width - display_width(clock)
    if room < display_width(title):
        return fit_line([Segment(truncate(title, width), style)], width, style)
    return fit_line(
        [Segment(pad(title, room), style), Segment(clock, style)], width, style
    )


def _column_header(width: int, cols: Columns, theme: Theme) -> Line:
    style = Style(theme.column_header_fg, theme.column_header_bg, bold=True)
    cells = [
        _cell("Name/Key", cols.name, style),
        _cell("Endpoint", cols.endpoint, style),
        _cell("Transfer", cols.transfer, style),
        _cell("Handshake", cols.handshake, style),
    ]
    return fit_line(cells, width, style)


def _banner(message: str, width: int, theme: Theme) -> Line:
    style = Style(theme.error_fg, theme.error_bg, bold=True)
    return fit_line([Segment(truncate(f" ! {message}", width), style)], width, style)


def _filter_line(state: ViewState, width: int, theme: Theme) -> Line:
    style = Style(theme.normal_fg)
    if state.mode is Mode.FILTER:
        text = f" Filter: {state.filter_text}_"
        hint = "  (Enter/Esc to apply)"
    else:
        text = f" Filter: {state.filter_text}"
        hint = "  (Esc to clear)"
    return fit_line(
        [Segment(truncate(text, width), Style(theme.key_bg, bold=True)),
         Segment(hint, Style(theme.dim_fg))],
        width,
        style,
    )


def _name_cell(row: Row, state: ViewState, width: int, base: Style, theme: Theme) -> list[Segment]:
    iface = row.interface
    if row.peer is not None:
        return [_cell(f"  |- {row.peer.public_key}", width, base)]

    if iface.status is Status.DOWN:
        marker = "[x]"
    elif state.expanded.get(iface.name, False):
        marker = "[-]"
    else:
        marker = "[+]"
    up = iface.status is Status.UP
    switch = "[ON ]" if up else "[OFF]"
    switch_style = Style(theme.up_fg if up else theme.down_fg, base.bg, bold=True)

    prefix = f"{marker} "
    budget = width - 1 - display_width(prefix) - 1 - display_width(switch)
    if budget < 1:
        return [_cell(f"{prefix}{iface.name} {switch}", width, base)]
    name = truncate(iface.name, budget)
    used = display_width(prefix) + display_width(name) + 1 + display_width(switch)
    return [
        Segment(f"{prefix}{name} ", base),
        Segment(switch, switch_style),
        Segment(" " * (width - used), base),
    ]


def _row_line(
    row: Row,
    state: ViewState,
    cols: Columns,
    width: int,
    theme: Theme,
    selected: bool,
    now: datetime,
) -> Line:
    if selected:
        base = Style(theme.selected_fg, theme.selected_bg)
    elif row.is_peer:
        base = Style(theme.normal_fg)
    else:
        base = Style(theme.column_header_fg, theme.column_header_bg, bold=True)

    if row.peer is not None:
        peer = row.peer
        endpoint = peer.endpoint
        transfer = _transfer(peer.transfer_rx, peer.transfer_tx)
        handshake = format_handshake(peer.latest_handshake, now)
    else:
        iface = row.interface
        endpoint = iface.public_key or "-"
        if iface.status is Status.UP:
            rx, tx, latest = interface_totals(state.peers.get(iface.name, []))
            transfer = _transfer(rx, tx)
            handshake = format_handshake(latest, now)
        else:
            transfer = handshake = ""

    segments = _name_cell(row, state, cols.name, base, theme)
    segments += [
        _cell(endpoint, cols.endpoint, base),
        _cell(transfer, cols.transfer, base),
        _cell(handshake, cols.handshake, base),
    ]
    return fit_line(segments, width, base)


def _list_lines(
    state: ViewState,
    rows: list[Row],
    width: int,
    list_h: int,
    theme: Theme,
    now: datetime,
    scroll: int = 0,
) -> list[Line]:
    normal = Style(theme.normal_fg)
    lines: list[Line] = []
    if not rows:
        if not state.loaded:
            msg = " Loading..."
        elif state.filter_text:
            msg = f" No interfaces match '{state.filter_text}'"
        else:
            msg = " No WireGuard interfaces found"
        lines.append(fit_line([Segment(truncate(msg, width), Style(theme.dim_fg))], width, normal))
    else:
        cols = column_widths(width)
        start = window_start(state.cursor, list_h, scroll, len(rows))
        for i in range(start, min(len(rows), start + list_h)):
            lines.append(_row_line(rows[i], state, cols, width, theme, i == state.cursor, now))
    while len(lines) < list_h:
        lines.append(fit_line([], width, normal))
    return lines[:list_h]


def details_entries(row: Row | None, state: ViewState, now: datetime) -> list[tuple[str, str]]:
    """Label/value pairs describing the row under the cursor."""
    if row is None:
        return [("", "No selection")]

    if row.peer is not None:
        peer = row.peer
        keepalive = f"every {peer.persistent_keepalive}s" if peer.persistent_keepalive else "off"
        handshake = format_handshake(peer.latest_handshake, now)
        if peer.latest_handshake is not None:
            handshake += " ago"
        return [
            ("Peer", peer.public_key),
            ("Interface", row.interface.name),
            ("Endpoint", peer.endpoint),
            ("Allowed IPs", ", ".join(peer.allowed_ips) or "(none)"),
            ("Transfer", f"Rx {format_bytes(peer.transfer_rx)} / Tx {format_bytes(peer.transfer_tx)}"),
            ("Handshake", handshake),
            ("Keepalive", keepalive),
        ]

    iface: Interface = row.interface
    peers = state.peers.get(iface.name, [])
    rx, tx, latest = interface_totals(peers)
    handshake = format_handshake(latest, now)
    if latest is not None:
        handshake += " ago"
    port = str(iface.listen_port) if iface.listen_port else "-"
    mtu = str(iface.mtu) if iface.mtu else "-"
    return [
        ("Interface", iface.name),
        ("Status", iface.status.value),
        ("Public Key", iface.public_key or "-"),
        ("Port", f"{port}   FwMark: {format_fwmark(iface.firewall_mark)}   MTU: {mtu}"),
        ("Peers", str(len(peers))),
        ("Transfer", f"Rx {format_bytes(rx)} / Tx {format_bytes(tx)}"),
        ("Handshake", handshake),
    ]


def _details_panel(
    state: ViewState,
    rows: list[Row],
    width: int,
    height: int,
    theme: Theme,
    now: datetime,
) -> list[Line]:
    if height <= 0:
        return []
    border = Style(theme.column_header_fg)
    normal = Style(theme.normal_fg)
    label_style = Style(theme.column_header_fg, bold=True)
    if width < 4 or height < 3:
        return [fit_line([], width, normal) for _ in range(height)]

    inner = width - 4
    title = truncate(" Details ", width - 4)
    top = "╭─" + title + "─" * (width - 3 - display_width(title)) + "╮"
    bottom = "╰" + "─" * (width - 2) + "╯"

    row = rows[state.cursor] if rows and state.cursor < len(rows) else None
    entries = details_entries(row, state, now)
    label_w = max(display_width(label) for label, _ in entries) + 2

    content: list[list[Segment]] = []
    for label, value in entries[: height - 2]:
        if label:
            label_text = truncate(pad(f"{label}:", label_w), inner)
            value_text = truncate(value, inner - display_width(label_text))
            content.append([Segment(label_text, label_style), Segment(value_text, normal)])
        else:
            content.append([Segment(truncate(value, inner), normal)])
    while len(content) < height - 2:
        content.append([])

    if inner > MASCOT_WIDTH:
        active = any(i.status is Status.UP for i in state.interfaces)
        frame = pad(mascot_frame(now, active), MASCOT_WIDTH)
        last = fit_line(content[-1], inner - MASCOT_WIDTH, normal)
        content[-1] = last + [Segment(frame, Style(theme.column_header_fg, bold=True))]

    lines = [fit_line([Segment(top, border)], width, normal)]
    for segs in content:
        body = fit_line(segs, inner, normal)
        lines.append(fit_line([Segment("│ ", border), *body, Segment(" │", border)], width, normal))
    lines.append(fit_line([Segment(bottom, border)], width, normal))
    return lines


HELP_TEXT = [
    ("Up/k, Down/j", "Move the cursor"),
    ("Space", "Bring the selected interface up or down"),
    ("Enter", "Expand or collapse an interface's peers"),
    ("/", "Filter interfaces by name"),
    ("Esc", "Clear the filter"),
    ("r, F5", "Refresh now"),
    ("t, F2", "Next colour theme"),
    ("?, F1", "This help"),
    ("q, F10", "Quit"),
]


def _help_lines(width: int, height: int, theme: Theme) -> list[Line]:
    normal = Style(theme.normal_fg)
    key_style = Style(theme.column_header_fg, bold=True)
    lines = [
        fit_line([Segment(" Keys", Style(theme.header_bg, bold=True))], width, normal),
        fit_line([], width, normal),
    ]
    for key, desc in HELP_TEXT:
        lines.append(fit_line([Segment(f"   {key:<14s}", key_style), Segment(desc, normal)], width, normal))
    lines.append(fit_line([], width, normal))
    lines.append(fit_line([Segment("   Press any key to return", Style(theme.dim_fg))], width, normal))
    while len(lines) < height:
        lines.append(fit_line([], width, normal))
    return lines[:height]


def _footer(width: int, theme: Theme) -> Line:
    key_style = Style(theme.key_fg, theme.key_bg, bold=True)
    desc_style = Style(theme.desc_fg, theme.desc_bg)
    segments: list[Segment] = []
    for key, desc in (
        ("F1", "Help"), ("F2", "Theme"), ("Space", "Toggle"), ("Enter", "Expand"),
        ("/", "Filter"), ("F10", "Quit"),
    ):
        segments.append(Segment(f" {key} ", key_style))
        segments.append(Segment(f" {desc} ", desc_style))
    return fit_line(segments, width, Style(bg=theme.desc_bg))


# ── Entry point ────────────────────────────────────────────────────────────


def render(
    state: ViewState,
    width: int,
    height: int,
    theme: Theme,
    now: datetime,
    scroll: int = 0,
) -> list[Line]:
    """Lay out one frame: *height* lines, each exactly *width* columns wide.

    *scroll* is the list window start of the previous frame. The window only
    moves as far as needed to keep the cursor row in view.
    """
    if width <= 0 or height <= 0:
        return []

    list_h, details_h = body_heights(state, height)
    rows = visible_rows(state)

    lines = [_header(width, theme, now), _column_header(width, column_widths(width), theme)]
    if state.last_error is not None:
        lines.append(_banner(state.last_error.message, width, theme))
    if state.mode is Mode.FILTER or state.filter_text:
        lines.append(_filter_line(state, width, theme))

    if state.mode is Mode.HELP:
        lines += _help_lines(width, list_h + details_h, theme)
    else:
        lines += _list_lines(state, rows, width, list_h, theme, now, scroll)
        lines += _details_panel(state, rows, width, details_h, theme, now)

    lines.append(_footer(width, theme))
    return lines[:height]
