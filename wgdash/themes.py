"""Colour palettes. Colours are xterm-256 indices."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Theme:
    name: str
    header_bg: int
    header_fg: int
    column_header_bg: int
    column_header_fg: int
    selected_bg: int
    selected_fg: int
    normal_fg: int
    dim_fg: int
    key_bg: int
    key_fg: int
    desc_bg: int
    desc_fg: int
    up_fg: int = 2
    down_fg: int = 1
    error_bg: int = 1
    error_fg: int = 15


THEMES: list[Theme] = [
    Theme("Htop Classic", 2, 0, 0, 6, 6, 0, 15, 240, 1, 0, 2, 0),
    Theme("Dracula", 62, 255, 236, 86, 44, 235, 252, 60, 215, 235, 62, 255),
    Theme("Solarized Light", 136, 230, 254, 64, 33, 255, 240, 245, 166, 255, 136, 230,
          up_fg=64, down_fg=160, error_bg=160, error_fg=230),
    Theme("Nord", 81, 232, 237, 81, 88, 232, 255, 243, 81, 232, 237, 255),
    Theme("Tokyo Night", 111, 232, 236, 176, 176, 232, 253, 240, 111, 232, 236, 176,
          up_fg=114, down_fg=203),
]


def theme_index(name: str) -> int:
    """Index of the theme called *name* (case-insensitive), 0 if unknown."""
    for i, theme in enumerate(THEMES):
        if theme.name.lower() == name.lower():
            return i
    return 0


def theme_at(index: int) -> Theme:
    return THEMES[index % len(THEMES)]
