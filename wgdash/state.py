"""View state and snapshot reconciliation.

The view state is treated as a value: the reconciler and the controller return
new :class:`ViewState` objects instead of mutating the one they were given.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace

from wgdash.wg import Interface, Peer, Status


class Mode(enum.Enum):
    NORMAL = "normal"
    HELP = "help"
    FILTER = "filter"


class ErrorKind(enum.Enum):
    SOURCE = "source"
    TOGGLE = "toggle"


@dataclass(frozen=True)
class ErrorBanner:
    kind: ErrorKind
    message: str


@dataclass(frozen=True)
class Row:
    """One addressable list line: an interface, or one of its peers."""

    interface: Interface
    peer: Peer | None = None

    @property
    def is_peer(self) -> bool:
        return self.peer is not None


@dataclass
class ViewState:
    interfaces: list[Interface] = field(default_factory=lambda: list[Interface]())
    peers: dict[str, list[Peer]] = field(default_factory=lambda: dict[str, list[Peer]]())
    cursor: int = 0
    expanded: dict[str, bool] = field(default_factory=lambda: dict[str, bool]())
    filter_text: str = ""
    theme_index: int = 0
    mode: Mode = Mode.NORMAL
    last_error: ErrorBanner | None = None
    next_request_id: int = 1
    applied_request_id: int = 0
    loaded: bool = False


# ── Row model ──────────────────────────────────────────────────────────────


def matches_filter(name: str, filter_text: str) -> bool:
    return filter_text.lower() in name.lower()


def filtered_interfaces(state: ViewState) -> list[Interface]:
    if not state.filter_text:
        return list(state.interfaces)
    return [i for i in state.interfaces if matches_filter(i.name, state.filter_text)]


def visible_rows(state: ViewState) -> list[Row]:
    """Interfaces passing the filter, each followed by its peers when expanded."""
    rows: list[Row] = []
    for iface in filtered_interfaces(state):
        rows.append(Row(iface))
        if state.expanded.get(iface.name, False):
            rows.extend(Row(iface, peer) for peer in state.peers.get(iface.name, []))
    return rows


def clamp_cursor(cursor: int, row_count: int) -> int:
    if row_count <= 0 or cursor < 0:
        return 0
    return min(cursor, row_count - 1)


def selected_row(state: ViewState) -> Row | None:
    rows = visible_rows(state)
    if not rows:
        return None
    return rows[clamp_cursor(state.cursor, len(rows))]


def with_clamped_cursor(state: ViewState) -> ViewState:
    cursor = clamp_cursor(state.cursor, len(visible_rows(state)))
    if cursor == state.cursor:
        return state
    return replace(state, cursor=cursor)


# ── Reconciliation ─────────────────────────────────────────────────────────


def reconcile(
    prev: ViewState,
    interfaces: list[Interface],
    peers: dict[str, list[Peer]],
) -> ViewState:
    """Fold a fresh snapshot into *prev* without losing the user's context.

    Interfaces and peers are replaced wholesale. Peers are kept only for
    interfaces that are in the snapshot and up. Expansion flags survive for
    known names; new names start expanded when up. Entries for names that
    vanished stay in the map untouched. Filter, theme and mode are not
    touched here.
    """
    names = {iface.name for iface in interfaces}
    up = {iface.name for iface in interfaces if iface.status is Status.UP}
    new_peers = {
        name: list(plist) for name, plist in peers.items() if name in names and name in up
    }

    expanded = dict(prev.expanded)
    for iface in interfaces:
        if iface.name not in expanded:
            expanded[iface.name] = iface.status is Status.UP

    state = replace(
        prev,
        interfaces=list(interfaces),
        peers=new_peers,
        expanded=expanded,
        loaded=True,
    )
    return with_clamped_cursor(state)
