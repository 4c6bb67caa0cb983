"""Environment helper utilities.

Loads a ``.env`` file from the project root so that engine settings such
as ``MIN_LISTING_PRICE`` or ``OPENAI_API_KEY`` become visible through
``os.getenv``. Values already present in the process environment win.
"""

from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv

__all__ = ["find_project_root", "load_project_dotenv"]

_MAX_DEPTH = 10


def find_project_root(start: Path | None = None) -> Path:
    """Walk upwards to the first directory holding a ``pyproject.toml``."""
    current = start or Path(__file__).resolve().parent
    for _ in range(_MAX_DEPTH):
        if (current / "pyproject.toml").exists():
            return current
        if current.parent == current:
            break
        current = current.parent
    return Path(__file__).resolve().parent.parent


def load_project_dotenv(start: Path | None = None) -> bool:
    """Load the project-level ``.env``; returns True if a file was found."""
    dotenv_path = find_project_root(start) / ".env"
    if not dotenv_path.exists():
        return False
    load_dotenv(dotenv_path=dotenv_path, override=False)
    return True
