"""
Rich Output Utilities
=====================

Terminal output for the CodeForge agent CLI using the Rich library.
Provides a themed console, message helpers, approval prompts and
logging setup.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from rich.console import Console
from rich.json import JSON
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.rule import Rule
from rich.syntax import Syntax
from rich.table import Table
from rich.theme import Theme


# =============================================================================
# Color Scheme & Theme
# =============================================================================

@dataclass(frozen=True)
class ForgeColors:
    """CodeForge palette using hex for truecolor terminal support."""
    ink: str = "#E6E6E6"
    dim: str = "#9AA4B2"
    accent: str = "#8B5CF6"
    cyan: str = "#22D3EE"
    steel: str = "#94A3B8"
    ok: str = "#22C55E"
    warn: str = "#FBBF24"
    err: str = "#EF4444"


def forge_theme(colors: ForgeColors = ForgeColors()) -> Theme:
    """
    Rich Theme for the CodeForge CLI.

    Style names are semantic:
      console.print("...", style="cf.ok")
    """
    return Theme(
        {
            "cf.banner": f"bold {colors.cyan}",
            "cf.border": f"{colors.cyan}",
            "cf.accent": f"bold {colors.accent}",
            "cf.muted": f"{colors.dim}",
            "cf.text": f"{colors.ink}",

            "cf.ok": f"bold {colors.ok}",
            "cf.warn": f"bold {colors.warn}",
            "cf.err": f"bold {colors.err}",
            "cf.info": f"{colors.cyan}",

            "cf.key": f"{colors.steel}",
            "cf.value": f"{colors.ink}",
            "cf.path": f"{colors.cyan}",

            # Risk levels
            "cf.risk.auto": f"{colors.ok}",
            "cf.risk.notify": f"{colors.warn}",
            "cf.risk.confirm": f"bold {colors.err}",

            # OODA phases
            "cf.phase.observe": f"bold {colors.cyan}",
            "cf.phase.orient": f"bold {colors.steel}",
            "cf.phase.decide": f"bold {colors.accent}",
            "cf.phase.act": f"bold {colors.warn}",
            "cf.phase.verify": f"bold {colors.ok}",

            "cf.table.header": f"bold {colors.cyan}",
        }
    )


console = Console(theme=forge_theme(), highlight=False)


# =============================================================================
# Basic Message Functions
# =============================================================================

def print_success(message: str) -> None:
    """Print a success message with checkmark."""
    console.print(f"[cf.ok]✓ {message}[/]")


def print_error(message: str) -> None:
    console.print(f"[cf.err]✗ {message}[/]")


def print_warning(message: str) -> None:
    console.print(f"[cf.warn]! {message}[/]")


def print_info(message: str) -> None:
    console.print(f"[cf.info]i {message}[/]")


def print_muted(message: str) -> None:
    console.print(f"[cf.muted]{message}[/]")


def print_header(title: str, style: str = "cf.accent") -> None:
    """Print a prominent section header with a rule line."""
    console.print()
    console.print(Rule(f"[{style}]{title}[/]", style="cf.border"))


def print_markdown(text: str) -> None:
    """Render assistant output as markdown."""
    console.print(Markdown(text))


def print_json_data(data: Any, title: Optional[str] = None) -> None:
    """Pretty-print JSON-serializable data."""
    rendered = JSON(json.dumps(data, default=str, ensure_ascii=False))
    if title:
        console.print(Panel(rendered, title=f"[bold]{title}[/]", border_style="cf.border"))
    else:
        console.print(rendered)


def print_diff(diff_text: str, *, title: Optional[str] = None) -> None:
    """Print a unified diff with syntax highlighting."""
    syntax = Syntax(diff_text, "diff", theme="monokai", line_numbers=False)
    if title:
        console.print(Panel(syntax, title=f"[bold]{title}[/]", border_style="cf.border"))
    else:
        console.print(syntax)


def create_table(columns: list[str], title: Optional[str] = None) -> Table:
    table = Table(title=title, header_style="cf.table.header", border_style="cf.border")
    for column in columns:
        table.add_column(column)
    return table


def print_notification(message: str, level: str = "info") -> None:
    """Render a fire-and-forget notification from the agent."""
    printer = {
        "success": print_success,
        "warning": print_warning,
        "error": print_error,
    }.get(level, print_info)
    printer(message)


def print_phase(phase: str, message: str) -> None:
    """Print an OODA phase progress line."""
    style = f"cf.phase.{phase}" if phase else "cf.muted"
    label = phase.upper() if phase else "OODA"
    console.print(f"[{style}]{label:<8}[/] {message}")


# =============================================================================
# Interactive Prompts
# =============================================================================

def confirm(message: str, *, default: bool = False) -> bool:
    """
    Ask for yes/no confirmation.

    Returns True for yes, False for no.
    """
    return Confirm.ask(f"[cf.accent]{message}[/]", default=default, console=console)


def prompt(message: str, *, default: Optional[str] = None) -> str:
    return Prompt.ask(f"[cf.accent]{message}[/]", default=default, console=console)


# =============================================================================
# Logging Integration
# =============================================================================

def setup_rich_logging(level: int = logging.INFO) -> None:
    """
    Configure Python logging to use Rich for log output.

    Usage:
        setup_rich_logging()
        logging.getLogger(__name__).info("ready")
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
