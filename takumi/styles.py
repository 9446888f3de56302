"""Styled terminal output helpers using the Takumi colour palette."""

from __future__ import annotations

import os
import re
import sys
import unicodedata
from dataclasses import dataclass

COLOR_PRIMARY = "#E8A87C"
COLOR_SECONDARY = "#95DAC1"
COLOR_ACCENT = "#C49BBB"
COLOR_SUCCESS = "#73D2A0"
COLOR_WARNING = "#F4C95D"
COLOR_ERROR = "#E76F51"
COLOR_MUTED = "#7C7C7C"
COLOR_BRIGHT = "#FAFAFA"

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")
_RESET = "\x1b[0m"


def colors_enabled() -> bool:
    """Report whether ANSI colours should be emitted."""
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    stream = sys.stdout
    return bool(stream is not None and hasattr(stream, "isatty") and stream.isatty())


def _display_width(text: str) -> int:
    plain = _ANSI_RE.sub("", text)
    return sum(2 if unicodedata.east_asian_width(ch) in ("W", "F") else 1 for ch in plain)


def _sgr(foreground: str | None, bold: bool, italic: bool) -> str:
    codes: list[str] = []
    if bold:
        codes.append("1")
    if italic:
        codes.append("3")
    if foreground:
        value = foreground.lstrip("#")
        r, g, b = (int(value[i : i + 2], 16) for i in (0, 2, 4))
        codes.append(f"38;2;{r};{g};{b}")
    return f"\x1b[{';'.join(codes)}m" if codes else ""


@dataclass(frozen=True)
class Style:
    """A terminal text style: colour, emphasis, margins and an optional box."""

    foreground: str | None = None
    bold: bool = False
    italic: bool = False
    margin_top: int = 0
    margin_bottom: int = 0
    border: bool = False
    border_foreground: str | None = None
    padding_vertical: int = 0
    padding_horizontal: int = 0

    def _paint(self, text: str, start: str) -> str:
        if not start or not text:
            return text
        return f"{start}{text}{_RESET}"

    def render(self, text: str) -> str:
        """Apply the style to ``text`` and return the resulting string."""
        color = colors_enabled()
        start = _sgr(self.foreground, self.bold, self.italic) if color else ""
        lines = [self._paint(line, start) for line in text.split("\n")]

        if self.border or self.padding_vertical or self.padding_horizontal:
            lines = self._box(lines, color)

        lines = [""] * self.margin_top + lines + [""] * self.margin_bottom
        return "\n".join(lines)

    def _box(self, lines: list[str], color: bool) -> list[str]:
        width = max((_display_width(line) for line in lines), default=0)
        pad = " " * self.padding_horizontal
        inner_width = width + 2 * self.padding_horizontal
        blank = " " * inner_width
        body = (
            [blank] * self.padding_vertical
            + [f"{pad}{line}{' ' * (width - _display_width(line))}{pad}" for line in lines]
            + [blank] * self.padding_vertical
        )
        if not self.border:
            return body

        edge_start = _sgr(self.border_foreground, False, False) if color else ""

        def edge(s: str) -> str:
            return self._paint(s, edge_start)

        top = edge("╭" + "─" * inner_width + "╮")
        bottom = edge("╰" + "─" * inner_width + "╯")
        side = edge("│")
        return [top, *(f"{side}{line}{side}" for line in body), bottom]


BOLD = Style(foreground=COLOR_BRIGHT, bold=True)
MUTED = Style(foreground=COLOR_MUTED)
PRIMARY = Style(foreground=COLOR_PRIMARY)
SUCCESS = Style(foreground=COLOR_SUCCESS)
WARNING = Style(foreground=COLOR_WARNING)
ERROR = Style(foreground=COLOR_ERROR)
ACCENT = Style(foreground=COLOR_ACCENT)

BANNER = Style(foreground=COLOR_PRIMARY, bold=True, margin_bottom=1)
SECTION_HEADER = Style(foreground=COLOR_SECONDARY, bold=True, margin_top=1)
BULLET_STYLE = Style(foreground=COLOR_ACCENT)
FILE_PATH_STYLE = Style(foreground=COLOR_PRIMARY, italic=True)
COMMAND_STYLE = Style(foreground=COLOR_SECONDARY, bold=True)
BOX_STYLE = Style(
    border=True,
    border_foreground=COLOR_PRIMARY,
    padding_vertical=1,
    padding_horizontal=2,
)


def check(msg: str) -> str:
    """Render a success checkmark followed by ``msg``."""
    return SUCCESS.render("✓") + " " + msg


def cross(msg: str) -> str:
    """Render a failure mark followed by ``msg``."""
    return ERROR.render("✗") + " " + msg


def warn(msg: str) -> str:
    """Render a warning mark followed by ``msg``."""
    return WARNING.render("!") + " " + msg


def bullet(msg: str) -> str:
    """Render a bullet arrow followed by ``msg``."""
    return BULLET_STYLE.render("→") + " " + msg


def file_path(path: str) -> str:
    """Render a highlighted file path."""
    return FILE_PATH_STYLE.render(path)


def command(cmd: str) -> str:
    """Render a highlighted command."""
    return COMMAND_STYLE.render(cmd)


def header() -> str:
    """Render the Takumi banner."""
    return BANNER.render("匠 Takumi")


def step_done(msg: str) -> str:
    """Render an indented completed step."""
    return "  " + check(msg)


def step_info(msg: str) -> str:
    """Render an indented informational step."""
    return "  " + bullet(msg)


def summary(title: str, body: str) -> str:
    """Render a boxed summary with a bold title."""
    return BOX_STYLE.render(BOLD.render(title) + "\n" + body)


def divider() -> str:
    """Render a subtle horizontal line."""
    return MUTED.render("─────────────────────────────────────")


def format_count(n: int, singular: str, plural: str) -> str:
    """Render a count with its unit, e.g. ``3 packages``."""
    return f"{n} {singular if n == 1 else plural}"