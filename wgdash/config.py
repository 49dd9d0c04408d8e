"""Configuration loading for wgdash.

Loads settings from TOML config files with sensible defaults.
Search order: explicit --config path → ~/.config/wgdash/config.toml → defaults only.
"""

from __future__ import annotations

import logging
import sys
import tomllib
from pathlib import Path
from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {
    "refresh_interval": 1.0,
    "frame_interval": 0.2,
    "theme": "Htop Classic",
    "mock": False,
    "log_file": "",
    "log_level": "INFO",
    "backend": {
        "wg_command": "wg",
        "quick_command": "wg-quick",
        "config_dir": "/etc/wireguard",
        "dump_timeout": 5.0,
        "use_sudo": False,
    },
}

_DEFAULT_PATH = Path.home() / ".config" / "wgdash" / "config.toml"


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Merge overlay into base. Nested dicts are merged at the first level only."""
    merged = dict(base)
    for key, value in overlay.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration, merging user TOML over defaults.

    Args:
        path: Explicit config file path (from --config). If None, tries the
              default location ~/.config/wgdash/config.toml.

    Returns:
        Merged configuration dict.

    Raises:
        SystemExit: If an explicit path doesn't exist or can't be parsed.
    """
    if path is not None:
        if not path.is_file():
            print(f"wgdash: config file not found: {path}", file=sys.stderr)
            raise SystemExit(1)
        try:
            user_config = tomllib.loads(path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as e:
            print(f"wgdash: invalid TOML in {path}: {e}", file=sys.stderr)
            raise SystemExit(1) from e
        return _deep_merge(DEFAULT_CONFIG, user_config)

    if _DEFAULT_PATH.is_file():
        try:
            user_config = tomllib.loads(_DEFAULT_PATH.read_text(encoding="utf-8"))
            return _deep_merge(DEFAULT_CONFIG, user_config)
        except tomllib.TOMLDecodeError:
            print(
                f"wgdash: warning: ignoring invalid TOML in {_DEFAULT_PATH}",
                file=sys.stderr,
            )

    return _deep_merge(DEFAULT_CONFIG, {})


def setup_logging(config: dict[str, Any]) -> None:
    """Send log records to ``log_file`` if set; curses owns the terminal otherwise."""
    root = logging.getLogger("wgdash")
    log_file = str(config.get("log_file", ""))
    if not log_file:
        root.addHandler(logging.NullHandler())
        return
    handler = logging.FileHandler(Path(log_file).expanduser(), encoding="utf-8")
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    root.addHandler(handler)
    root.setLevel(str(config.get("log_level", "INFO")).upper())


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return f'"{value}"'
    return str(value)


def dump_default_config() -> str:
    """Return the default configuration as a TOML string."""
    lines = [
        "# wgdash configuration",
        "# Place this file at ~/.config/wgdash/config.toml",
        "",
    ]
    for key, value in DEFAULT_CONFIG.items():
        if not isinstance(value, dict):
            lines.append(f"{key} = {_toml_value(value)}")
    lines.append("")

    lines.append("[backend]")
    for key, value in DEFAULT_CONFIG["backend"].items():
        lines.append(f"{key} = {_toml_value(value)}")

    return "\n".join(lines) + "\n"
