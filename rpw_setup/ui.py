"""
Console presentation and logging setup.

Nord-themed Rich console, a Pyfiglet header panel, message helpers and the
final status table. Logging goes to the console through RichHandler and to a
log file through a plain FileHandler.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import List, Optional, Tuple, Union

import pyfiglet
from rich.align import Align
from rich.box import ROUNDED
from rich.console import Console, Group
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.style import Style
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from rpw_setup import __version__

APP_NAME = "rpw setup"
APP_SUBTITLE = "SSH Access & Shell Provisioning"
LOGGER_NAME = "rpw_setup"


# ----------------------------------------------------------------
# Nord-Themed Colors and Rich Console
# ----------------------------------------------------------------
class NordColors:
    """Nord color palette for consistent theming throughout the application."""

    # Polar Night (dark background)
    POLAR_NIGHT_4: str = "#4C566A"

    # Snow Storm (light text)
    SNOW_STORM_1: str = "#D8DEE9"
    SNOW_STORM_2: str = "#E5E9F0"

    # Frost (blue accents)
    FROST_1: str = "#8FBCBB"
    FROST_2: str = "#88C0D0"
    FROST_3: str = "#81A1C1"
    FROST_4: str = "#5E81AC"

    # Aurora (other accents)
    RED: str = "#BF616A"
    YELLOW: str = "#EBCB8B"
    GREEN: str = "#A3BE8C"
    PURPLE: str = "#B48EAD"

    @classmethod
    def get_frost_gradient(cls, text_lines: List[str]) -> List[Tuple[str, str]]:
        """
        Create a gradient using Frost colors.

        Args:
            text_lines: List of text lines to apply gradient to

        Returns:
            List of (text, color) tuples
        """
        colors = [cls.FROST_1, cls.FROST_2, cls.FROST_3, cls.FROST_4]
        return [(line, colors[i % len(colors)]) for i, line in enumerate(text_lines)]


console = Console(
    theme=Theme(
        {
            "info": f"bold {NordColors.FROST_2}",
            "warning": f"bold {NordColors.YELLOW}",
            "error": f"bold {NordColors.RED}",
            "success": f"bold {NordColors.GREEN}",
            "step": f"{NordColors.FROST_2}",
            "prompt": f"bold {NordColors.PURPLE}",
            "path": f"italic {NordColors.FROST_1}",
        }
    )
)


# ----------------------------------------------------------------
# Logging
# ----------------------------------------------------------------
def setup_logging(
    log_file: Optional[Union[str, Path]] = None, debug: bool = False
) -> logging.Logger:
    """
    Configure the package logger with a Rich console handler and a log file.

    If the log file cannot be opened (no permission, read-only filesystem) the
    logger keeps the console handler only and says so.

    Args:
        log_file: Path of the log file, or None for console-only logging
        debug: Show DEBUG records on the console

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    for h in logger.handlers[:]:
        logger.removeHandler(h)
        h.close()

    console_handler = RichHandler(console=console, rich_tracebacks=True, markup=False)
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path)
        except OSError as e:
            logger.warning(f"Could not open log file {log_path}: {e}; logging to console only")
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s | %(levelname)s | %(message)s", "%Y-%m-%d %H:%M:%S"
                )
            )
            logger.addHandler(file_handler)
            try:
                os.chmod(log_path, 0o600)
            except OSError as e:
                logger.warning(f"Could not set permissions on log file {log_path}: {e}")
            logger.debug(f"Logging initialized: {log_path}")
    return logger


logger = logging.getLogger(LOGGER_NAME)


# ----------------------------------------------------------------
# Banner and Message Helpers
# ----------------------------------------------------------------
def create_header(title: str = APP_NAME) -> Panel:
    """
    Create an ASCII art header using Pyfiglet with a Nord-themed gradient.

    Returns:
        Panel: A Rich Panel containing the styled header.
    """
    term_width = shutil.get_terminal_size((80, 24)).columns
    adjusted_width = min(term_width - 10, 80)

    ascii_art = ""
    for font in ("slant", "small", "standard"):
        try:
            ascii_art = pyfiglet.Figlet(font=font, width=adjusted_width).renderText(title)
        except pyfiglet.FontNotFound:
            continue
        if ascii_art.strip():
            break
    if not ascii_art.strip():
        ascii_art = f"=== {title} ===\n"

    lines = [line for line in ascii_art.splitlines() if line.strip()]
    styled = Text()
    for line, color in NordColors.get_frost_gradient(lines):
        styled.append(line + "\n", style=f"bold {color}")

    return Panel(
        styled,
        border_style=Style(color=NordColors.FROST_1),
        padding=(1, 2),
        box=ROUNDED,
        title=f"[bold {NordColors.SNOW_STORM_2}]v{__version__}[/]",
        title_align="right",
        subtitle=f"[bold {NordColors.SNOW_STORM_1}]{APP_SUBTITLE}[/]",
        subtitle_align="center",
    )


def print_message(text: str, style: str = NordColors.FROST_2, prefix: str = "•") -> None:
    console.print(f"[{style}]{prefix} {escape(text)}[/{style}]")
    logger.debug(text)


def print_step(text: str) -> None:
    print_message(text, NordColors.FROST_3, "➜")


def print_success(text: str) -> None:
    print_message(text, NordColors.GREEN, "✓")


def print_warning(text: str) -> None:
    print_message(text, NordColors.YELLOW, "⚠")


def print_error(text: str) -> None:
    print_message(text, NordColors.RED, "✗")


def print_section(title: str) -> None:
    """Print a section header with a decorative separator."""
    console.print()
    console.print(f"[bold {NordColors.FROST_1}]== {title.upper()} ==[/]")
    console.print(f"[{NordColors.FROST_3}]{'─' * 60}[/]")
    logger.debug(f"--- {title} ---")


# ----------------------------------------------------------------
# Status Report
# ----------------------------------------------------------------
STATUS_ICONS = {"success": "✓", "skipped": "•", "warning": "⚠", "failed": "✗"}
STATUS_STYLES = {"success": "success", "skipped": "step", "warning": "warning", "failed": "error"}


def status_report(steps, title: str = "Provisioning Status") -> None:
    """
    Display a table reporting the status of every step.

    Args:
        steps: Iterable of objects with ``name``, ``status`` and ``message``
        title: Table title
    """
    table = Table(
        show_header=True,
        header_style=f"bold {NordColors.FROST_1}",
        border_style=NordColors.FROST_3,
        box=ROUNDED,
        title=f"[bold {NordColors.FROST_2}]{title}[/]",
        title_justify="center",
        expand=True,
    )
    table.add_column("Step", style=f"bold {NordColors.FROST_2}")
    table.add_column("Status", justify="center")
    table.add_column("Message", style=NordColors.SNOW_STORM_1, ratio=3)

    counts = {status: 0 for status in STATUS_ICONS}
    for step in steps:
        counts[step.status] = counts.get(step.status, 0) + 1
        style = STATUS_STYLES.get(step.status, "step")
        icon = STATUS_ICONS.get(step.status, "?")
        table.add_row(
            step.name.replace("_", " ").title(),
            f"[{style}]{icon} {step.status.upper()}[/]",
            escape(step.message),
        )

    summary = Text()
    summary.append("Status Summary: ", style=f"bold {NordColors.FROST_3}")
    summary.append(f"{counts['success']} Succeeded", style=f"bold {NordColors.GREEN}")
    summary.append(" | ")
    summary.append(f"{counts['skipped']} Skipped", style=f"bold {NordColors.POLAR_NIGHT_4}")
    summary.append(" | ")
    summary.append(f"{counts['warning']} Warnings", style=f"bold {NordColors.YELLOW}")
    summary.append(" | ")
    summary.append(f"{counts['failed']} Failed", style=f"bold {NordColors.RED}")

    console.print(
        Panel(
            Group(table, Align.center(summary)),
            border_style=Style(color=NordColors.FROST_4),
            padding=(0, 1),
            box=ROUNDED,
        )
    )
