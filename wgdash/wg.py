"""WireGuard data model, dump parsing and snapshot sources.

Two sources exist: :class:`LinuxSource` shells out to ``wg``/``wg-quick`` and
:class:`MockSource` serves canned demo data. One is chosen at startup with
:func:`make_source`.
"""

from __future__ import annotations

import enum
import logging
import random
import shlex
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Protocol

import psutil

logger = logging.getLogger(__name__)

INTERFACE_FIELDS = 5
PEER_MIN_FIELDS = 9
UNKNOWN_ENDPOINT = "unknown"


# ── Errors ─────────────────────────────────────────────────────────────────


class WgError(Exception):
    """Base class for failures talking to WireGuard."""


class SourceUnavailable(WgError):
    """The status dump could not be obtained at all."""


class ToggleFailed(WgError):
    """Bringing an interface up or down failed."""


# ── Data types ─────────────────────────────────────────────────────────────


class Status(enum.Enum):
    UP = "UP"
    DOWN = "DOWN"


@dataclass
class Interface:
    name: str
    public_key: str = ""
    listen_port: int = 0
    firewall_mark: int = 0
    status: Status = Status.DOWN
    mtu: int = 0


@dataclass
class Peer:
    public_key: str
    endpoint: str = UNKNOWN_ENDPOINT
    allowed_ips: list[str] = field(default_factory=lambda: list[str]())
    latest_handshake: datetime | None = None  # None = never
    transfer_rx: int = 0
    transfer_tx: int = 0
    persistent_keepalive: int = 0


@dataclass
class Snapshot:
    """Everything one refresh produced."""

    interfaces: list[Interface]
    peers: dict[str, list[Peer]]


# ── Dump parsing ───────────────────────────────────────────────────────────


def _to_int(raw: str, base: int = 10) -> int:
    """Parse a non-negative integer field; anything unparseable becomes 0."""
    try:
        return max(0, int(raw, base))
    except ValueError:
        return 0


def _to_handshake(raw: str) -> datetime | None:
    epoch = _to_int(raw)
    if epoch == 0:
        return None
    try:
        return datetime.fromtimestamp(epoch, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_interfaces(text: str) -> list[Interface]:
    """Return interfaces in dump order, first occurrence of each name winning.

    A name only seen on peer lines still yields a bare record.
    """
    interfaces: list[Interface] = []
    seen: set[str] = set()

    for line in text.splitlines():
        parts = line.split()
        if not parts:
            continue
        name = parts[0]
        if name in seen:
            continue
        if len(parts) == INTERFACE_FIELDS:
            interfaces.append(Interface(
                name=name,
                public_key=parts[2],
                listen_port=_to_int(parts[3]),
                firewall_mark=_to_int(parts[4], 0),  # "off" or hex
            ))
            seen.add(name)
        elif len(parts) >= PEER_MIN_FIELDS:
            interfaces.append(Interface(name=name))
            seen.add(name)

    return interfaces


def parse_peers(text: str, interface_name: str) -> list[Peer]:
    """Return the peers of *interface_name* in the order the dump lists them."""
    peers: list[Peer] = []
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < PEER_MIN_FIELDS or parts[0] != interface_name:
            continue

        endpoint = parts[3] if parts[3] != "(none)" else UNKNOWN_ENDPOINT
        allowed = [] if parts[4] == "(none)" else [ip for ip in parts[4].split(",") if ip]
        peers.append(Peer(
            public_key=parts[1],
            endpoint=endpoint,
            allowed_ips=allowed,
            latest_handshake=_to_handshake(parts[5]),
            transfer_rx=_to_int(parts[6]),
            transfer_tx=_to_int(parts[7]),
            persistent_keepalive=_to_int(parts[8]),
        ))
    return peers


# ── Sources ────────────────────────────────────────────────────────────────


class SnapshotSource(Protocol):
    def list_interfaces(self) -> list[Interface]: ...

    def list_peers(self, interface_name: str) -> list[Peer]: ...

    def toggle_interface(self, name: str, up: bool) -> None: ...


def _link_mtus() -> dict[str, int]:
    try:
        return {name: st.mtu for name, st in psutil.net_if_stats().items()}
    except (OSError, RuntimeError):
        return {}


class LinuxSource:
    """Reads state with ``wg show all dump`` and toggles with ``wg-quick``."""

    def __init__(
        self,
        wg_command: str = "wg",
        quick_command: str = "wg-quick",
        config_dir: Path | str = "/etc/wireguard",
        dump_timeout: float = 5.0,
        use_sudo: bool = False,
    ) -> None:
        self.wg_command = shlex.split(wg_command)
        self.quick_command = shlex.split(quick_command)
        self.config_dir = Path(config_dir)
        self.dump_timeout = dump_timeout
        self.use_sudo = use_sudo

    def _privileged(self, cmd: list[str]) -> list[str]:
        return ["sudo", "-n", *cmd] if self.use_sudo else cmd

    def dump(self) -> str:
        cmd = self._privileged([*self.wg_command, "show", "all", "dump"])
        logger.debug("running %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.dump_timeout,
            )
        except FileNotFoundError as e:
            raise SourceUnavailable(f"{cmd[0]} not found") from e
        except subprocess.TimeoutExpired as e:
            raise SourceUnavailable(
                f"wg show timed out after {self.dump_timeout:g}s"
            ) from e
        except OSError as e:
            raise SourceUnavailable(f"cannot run {cmd[0]}: {e.strerror or e}") from e
        if result.returncode != 0:
            detail = result.stderr.strip() or f"exit status {result.returncode}"
            raise SourceUnavailable(f"failed to run wg show: {detail}")
        return result.stdout

    def _configured_names(self) -> list[str]:
        try:
            return sorted(p.stem for p in self.config_dir.glob("*.conf"))
        except OSError:
            return []

    def list_interfaces(self) -> list[Interface]:
        active = parse_interfaces(self.dump())
        mtus = _link_mtus()
        seen: set[str] = set()
        for iface in active:
            # Anything wg reports on is running
            iface.status = Status.UP
            iface.mtu = mtus.get(iface.name, 0)
            seen.add(iface.name)

        inactive = [
            Interface(name=name) for name in self._configured_names() if name not in seen
        ]
        return active + inactive

    def list_peers(self, interface_name: str) -> list[Peer]:
        return parse_peers(self.dump(), interface_name)

    def toggle_interface(self, name: str, up: bool) -> None:
        cmd = self._privileged([*self.quick_command, "up" if up else "down", name])
        logger.info("running %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
            )
        except FileNotFoundError as e:
            raise ToggleFailed(f"{cmd[0]} not found") from e
        except OSError as e:
            raise ToggleFailed(f"cannot run {cmd[0]}: {e.strerror or e}") from e
        if result.returncode != 0:
            output = " ".join(result.stdout.split())
            raise ToggleFailed(
                f"wg-quick {'up' if up else 'down'} {name} failed "
                f"(exit {result.returncode}): {output}"
            )


def _demo_peers(subnet: str, now: datetime) -> list[Peer]:
    return [
        Peer(
            public_key="PeEr1xq0KlR3mN8bYvTz2cW5eHjU4oAsDfGh6iJk7Lm=",
            endpoint="192.168.1.10:51820",
            allowed_ips=[f"{subnet}.2/32"],
            latest_handshake=now - timedelta(seconds=49),
            transfer_rx=896_432,
            transfer_tx=408_123,
            persistent_keepalive=25,
        ),
        Peer(
            public_key="PeEr2Wm4nBv7cXz1aSd3fGh5jKl8qWe0rTy9uIo2pAs=",
            endpoint="203.0.113.5:12345",
            allowed_ips=[f"{subnet}.3/32", "fd00::3/128"],
            latest_handshake=now - timedelta(minutes=2),
            transfer_rx=78_902,
            transfer_tx=3_242_634,
            persistent_keepalive=25,
        ),
        Peer(
            public_key="PeEr3Zx9cVb8nMq7wEr6tYu5iOp4aSd3fGh2jKl1zXc=",
            endpoint=UNKNOWN_ENDPOINT,
            allowed_ips=[f"{subnet}.4/32"],
            latest_handshake=None,
            transfer_rx=0,
            transfer_tx=0,
        ),
    ]


class MockSource:
    """In-memory demo data; counters creep upward on every read."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self.rng = rng or random.Random()
        now = datetime.now(timezone.utc)
        self.interfaces = [
            Interface("wg0", "OHkMwM9QyK9fJd2Lw0sXq1nB8vCz7aRt5eYu3iOp6Hk=", 51820, 0, Status.UP, 1420),
            Interface("wg1", "AbCmK1239xYz8wVu7tSr6qPo5nMl4kJi3hGf2eDc1bA=", 51821, 0x1234, Status.UP, 1420),
            Interface("wg2", "InAcTiVe0aBc1dEf2gHi3jKl4mNo5pQr6sTu7vWx8yZ=", 0, 0, Status.DOWN, 0),
        ]
        self.peers: dict[str, list[Peer]] = {
            "wg0": _demo_peers("10.0.0", now),
            "wg1": _demo_peers("192.168.2", now),
        }

    def list_interfaces(self) -> list[Interface]:
        return [Interface(**vars(iface)) for iface in self.interfaces]

    def list_peers(self, interface_name: str) -> list[Peer]:
        now = datetime.now(timezone.utc)
        peers = self.peers.get(interface_name, [])
        for peer in peers:
            if peer.latest_handshake is None:
                continue
            peer.transfer_rx += self.rng.randint(0, 1024)
            peer.transfer_tx += self.rng.randint(0, 1024)
            if self.rng.randint(0, 9) > 8:
                peer.latest_handshake = now
        return [Peer(**{**vars(p), "allowed_ips": list(p.allowed_ips)}) for p in peers]

    def toggle_interface(self, name: str, up: bool) -> None:
        for iface in self.interfaces:
            if iface.name == name:
                iface.status = Status.UP if up else Status.DOWN
                return
        raise ToggleFailed(f"interface not found: {name}")


def make_source(config: dict[str, Any], mock: bool = False) -> SnapshotSource:
    """Pick the source once at startup."""
    if mock or config.get("mock", False):
        return MockSource()
    backend: dict[str, Any] = config.get("backend", {})
    return LinuxSource(
        wg_command=str(backend.get("wg_command", "wg")),
        quick_command=str(backend.get("quick_command", "wg-quick")),
        config_dir=str(backend.get("config_dir", "/etc/wireguard")),
        dump_timeout=float(backend.get("dump_timeout", 5)),
        use_sudo=bool(backend.get("use_sudo", False)),
    )


def fetch_snapshot(source: SnapshotSource) -> Snapshot:
    """List interfaces, then the peers of every interface that is up.

    Any :class:`SourceUnavailable` aborts the whole snapshot.
    """
    interfaces = source.list_interfaces()
    peers: dict[str, list[Peer]] = {}
    for iface in interfaces:
        if iface.status is Status.UP:
            peers[iface.name] = source.list_peers(iface.name)
    return Snapshot(interfaces=interfaces, peers=peers)
