"""Common utility functions for the project."""

from enum import Enum
from typing import Any

LAMPORTS_PER_SOL = 1_000_000_000


class AnsiColors(Enum):
    """
    ANSI color codes for terminal output.
    """

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[33m"
    BLUE = "\033[94m"
    GREY = "\033[90m"


def colored_print(text: str, color: AnsiColors, *args: Any, **kwargs: Any) -> None:
    """
    Print text in color.

    Args:
        text: The text to print
        color: The color to use (AnsiColors enum)
        args: Additional positional arguments for print
        kwargs: Additional keyword arguments for print
    """
    print(f"{color.value}{text}\033[0m", *args, **kwargs)  # ANSI reset at the end


def sol_to_lamports(amount: float) -> int:
    """Convert a SOL amount to lamports, rounding to the nearest lamport."""
    return round(amount * LAMPORTS_PER_SOL)


def lamports_to_sol(lamports: int) -> float:
    """Convert lamports to SOL."""
    return lamports / LAMPORTS_PER_SOL


def shorten_address(address: str, keep: int = 8) -> str:
    """Abbreviate a base58 address or signature as ``head...tail``."""
    if len(address) <= keep * 2:
        return address
    return f"{address[:keep]}...{address[-keep:]}"
