"""Logging utilities for Cohort agent pools.

Provides color-coded output to distinguish deterministic steps, LLM calls,
and failures. Routine per-cycle traces are only printed when COHORT_VERBOSE
is set; errors always print.
"""

import os
from enum import Enum


class Color(Enum):
    """ANSI color codes for terminal output."""

    # Colors for operation types
    BLUE = "\033[94m"      # Deterministic operations (routing, delivery, memory)
    YELLOW = "\033[93m"    # LLM calls (generation, embedding)
    RED = "\033[91m"       # Errors and dropped work
    GREEN = "\033[92m"     # Success/completion
    CYAN = "\033[96m"      # Info/metadata

    # Formatting
    BOLD = "\033[1m"
    RESET = "\033[0m"


# Markers for operation types (color-blind accessible)
LOG_TAG_DETERMINISTIC = "[•]"
LOG_TAG_LLM = "[AI]"
LOG_TAG_ERROR = "[!]"
LOG_TAG_SUCCESS = "[✓]"
LOG_TAG_INFO = "[i]"


def colored(text: str, color: Color, bold: bool = False) -> str:
    """Wrap text in ANSI color codes if colors are enabled.

    Args:
        text: Text to colorize
        color: Color to apply
        bold: Whether to make text bold

    Returns:
        Colorized text if COHORT_NO_COLOR is not set, otherwise plain text
    """
    if os.getenv("COHORT_NO_COLOR"):
        return text

    prefix = color.value
    if bold:
        prefix = Color.BOLD.value + prefix

    return f"{prefix}{text}{Color.RESET.value}"


def verbose_enabled() -> bool:
    """Return True when per-cycle trace output was requested."""
    return os.getenv("COHORT_VERBOSE", "").lower() in ("1", "true", "yes")


def log_deterministic(message: str) -> None:
    """Log a deterministic operation (blue). Verbose only."""
    if verbose_enabled():
        print(colored(f"  {LOG_TAG_DETERMINISTIC} {message}", Color.BLUE))


def log_llm(message: str) -> None:
    """Log an LLM operation (yellow). Verbose only."""
    if verbose_enabled():
        print(colored(f"  {LOG_TAG_LLM} {message}", Color.YELLOW))


def log_error(message: str) -> None:
    """Log an error or dropped work item (red)."""
    print(colored(f"  {LOG_TAG_ERROR} {message}", Color.RED))


def log_success(message: str) -> None:
    """Log a success (green). Verbose only."""
    if verbose_enabled():
        print(colored(f"  {LOG_TAG_SUCCESS} {message}", Color.GREEN))


def log_info(message: str) -> None:
    """Log metadata/info (cyan). Verbose only."""
    if verbose_enabled():
        print(colored(f"  {LOG_TAG_INFO} {message}", Color.CYAN))
