"""
Rich Output Utilities
=====================

Terminal output for the safetygate CLI and server using the Rich library.
Provides the themed console, status messages, gate tables and the logging
handler used by every entry point.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.theme import Theme


# =============================================================================
# Color Scheme & Theme
# =============================================================================

@dataclass(frozen=True)
class GateColors:
    """Palette for gate output (hex, truecolor terminals)."""
    ink: str = "#E6E6E6"       # primary text
    dim: str = "#9AA4B2"       # muted text
    accent: str = "#F59E0B"    # headings
    info: str = "#22D3EE"      # informational
    steel: str = "#94A3B8"     # keys
    ok: str = "#22C55E"        # gate passed
    warn: str = "#FBBF24"      # advisory
    err: str = "#EF4444"       # blocked


def gate_theme(colors: GateColors = GateColors()) -> Theme:
    """
    Rich Theme for safetygate output.

    Style names are semantic:
      console.print("...", style="sg.ok")
    """
    return Theme(
        {
            "sg.accent": f"bold {colors.accent}",
            "sg.border": f"{colors.info}",
            "sg.muted": f"{colors.dim}",
            "sg.text": f"{colors.ink}",

            "sg.ok": f"bold {colors.ok}",
            "sg.warn": f"bold {colors.warn}",
            "sg.err": f"bold {colors.err}",
            "sg.info": f"{colors.info}",

            "sg.key": f"{colors.steel}",
            "sg.value": f"{colors.ink}",
            "sg.number": f"bold {colors.accent}",

            "sg.table.header": f"bold {colors.info}",
            "sg.gate.pass": f"bold {colors.ok}",
            "sg.gate.open": f"{colors.warn}",
        }
    )


# =============================================================================
# Unicode / ASCII Fallbacks
# =============================================================================

def _can_use_unicode() -> bool:
    """Check if the terminal can encode the status glyphs."""
    if os.name != "nt":
        return True
    try:
        "✓✗•".encode(sys.stdout.encoding or "utf-8")
        return True
    except (UnicodeEncodeError, LookupError, AttributeError):
        return False


_UNICODE_ICONS = {
    "check": "✓",
    "cross": "✗",
    "blocked": "⛔",
    "warning": "⚠️",
    "info": "ℹ",
    "bullet": "•",
    "arrow_right": "→",
    "lock": "\U0001F512",
}

_ASCII_ICONS = {
    "check": "[OK]",
    "cross": "[X]",
    "blocked": "[BLOCKED]",
    "warning": "[!]",
    "info": "[i]",
    "bullet": "-",
    "arrow_right": "->",
    "lock": "[L]",
}

_ICONS = _UNICODE_ICONS if _can_use_unicode() else _ASCII_ICONS


def icon(name: str) -> str:
    """Get an icon by name, using ASCII fallback if needed."""
    return _ICONS.get(name, "")


# =============================================================================
# Global Console Instance
# =============================================================================

console = Console(theme=gate_theme())


# =============================================================================
# Basic Message Functions
# =============================================================================

def print_success(message: str) -> None:
    """Print a success message with checkmark."""
    console.print(f"[sg.ok]{icon('check')} {message}[/]")


def print_error(message: str) -> None:
    """Print an error message with X."""
    console.print(f"[sg.err]{icon('cross')} {message}[/]")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[sg.warn]{icon('warning')} {message}[/]")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[sg.info]{icon('info')} {message}[/]")


def print_muted(message: str) -> None:
    console.print(f"[sg.muted]{message}[/]")


# =============================================================================
# Data Display Functions
# =============================================================================

def print_key_value(key: str, value: Any, *, indent: int = 0) -> None:
    """Print a key-value pair."""
    prefix = "  " * indent
    console.print(f"{prefix}[sg.key]{key}:[/] [sg.value]{value}[/]")


def print_list(items: Sequence[str], *, numbered: bool = False) -> None:
    """Print a bulleted or numbered list."""
    for i, item in enumerate(items, 1):
        marker = f"{i}." if numbered else icon("bullet")
        console.print(f"  [sg.accent]{marker}[/] [sg.text]{item}[/]")


def print_json_data(data: Any, *, title: Optional[str] = None) -> None:
    """Print JSON data with syntax highlighting."""
    syntax = Syntax(json.dumps(data, indent=2, default=str), "json", theme="monokai")
    if title:
        console.print(Panel(syntax, title=f"[bold]{title}[/]", border_style="sg.border"))
    else:
        console.print(syntax)


def create_table(*, title: Optional[str] = None, columns: Optional[List[str]] = None) -> Table:
    """Create a styled Rich Table."""
    table = Table(
        title=title,
        header_style="sg.table.header",
        border_style="sg.border",
        title_style="sg.accent",
    )
    for col in columns or []:
        table.add_column(col)
    return table


def print_table(table: Table) -> None:
    console.print(table)


def print_gate_table(gates: Mapping[str, bool], *, title: str = "Safety Gates") -> None:
    """Print a gate -> passed table."""
    table = create_table(title=title, columns=["Gate", "Status"])
    for name, passed in gates.items():
        status = (
            f"[sg.gate.pass]{icon('check')} passed[/]" if passed
            else f"[sg.gate.open]{icon('cross')} open[/]"
        )
        table.add_row(name, status)
    print_table(table)


def print_issues(issues: Sequence[Dict[str, Any]]) -> None:
    """Print validation issues, errors first."""
    ordered = sorted(issues, key=lambda i: 0 if i.get("severity") == "error" else 1)
    for issue in ordered:
        line = f"{issue.get('type')}: {issue.get('message')}"
        if issue.get("severity") == "error":
            print_error(line)
        else:
            print_warning(line)


# =============================================================================
# Logging Integration
# =============================================================================

def setup_rich_logging(level: int = logging.INFO) -> None:
    """
    Configure Python logging to use Rich.

    Usage:
        setup_rich_logging()
        logging.getLogger(__name__).info("gate passed")
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(
            console=console,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )],
    )
