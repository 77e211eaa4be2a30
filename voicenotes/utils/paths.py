"""Utility functions for portable path handling."""

import sys
from pathlib import Path


def get_base_path() -> Path:
    """
    Get the base path for the application.

    When running as a frozen executable, returns the directory containing the executable.
    When running as a Python script, returns the project root if one is found above
    the working directory, otherwise the working directory itself.

    Returns:
        Path object pointing to the base directory
    """
    if getattr(sys, 'frozen', False):
        return Path(sys.executable).parent

    cwd = Path.cwd()
    current = cwd
    for _ in range(5):  # Max 5 levels up
        if (current / "voicenotes").is_dir() or (current / ".env.example").exists():
            return current
        parent = current.parent
        if parent == current:  # Reached filesystem root
            break
        current = parent
    return cwd


def resolve_path(value: str, base_path: Path) -> str:
    """Make a relative configured path absolute against the base path."""
    path = Path(value).expanduser()
    if path.is_absolute():
        return str(path)
    return str(base_path / path)
