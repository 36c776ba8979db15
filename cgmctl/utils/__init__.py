"""Utility functions for cgmctl."""

from .output import (
    console,
    handle_error,
    print_error,
    print_json,
)

__all__ = [
    "console",
    "handle_error",
    "print_error",
    "print_json",
]
