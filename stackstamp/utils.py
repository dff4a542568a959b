"""Shared utility functions for stackstamp.

Provides atomic file writes, JSON I/O, content hashing, and the Rich-based
console helpers every command uses for its user-facing output.  Filesystem
helpers are synchronous; async callers run them through ``asyncio.to_thread``.
"""

from __future__ import annotations

import hashlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.rule import Rule
from rich.table import Table

console = Console()

# ---------------------------------------------------------------------------
# Atomic writes
# ---------------------------------------------------------------------------


def atomic_write_text(path: str | Path, content: str) -> Path:
    """Write *content* to *path* so readers never observe a partial file.

    The content goes to a temporary file in the destination directory first,
    is flushed to disk, and is then moved over the destination with
    ``os.replace`` (atomic on POSIX and Windows).  On any failure the
    temporary file is removed and the destination is left untouched.

    Args:
        path: Destination file.  Parent directories are created.
        content: Text to write (UTF-8, newlines preserved as given).

    Returns:
        The destination path.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent)
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        if target.exists():
            # keep the permissions of the file being replaced
            os.chmod(tmp_name, target.stat().st_mode & 0o7777)
        else:
            # mkstemp creates 0600 files
            os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return target


# ---------------------------------------------------------------------------
# JSON I/O
# ---------------------------------------------------------------------------


def load_json(path: str | Path) -> dict[str, Any]:
    """Load and parse a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
    """
    raw = Path(path).read_text(encoding="utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        return {"_root": data}
    return data


def dump_json(data: Any) -> str:
    """Serialise *data* as stable, pretty-printed JSON with a trailing newline."""
    return json.dumps(data, indent=2, ensure_ascii=False, sort_keys=True) + "\n"


# ---------------------------------------------------------------------------
# Hashing / paths
# ---------------------------------------------------------------------------


def content_hash(text: str) -> str:
    """Return the SHA-256 hex digest of *text* (UTF-8)."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def is_within(root: Path, candidate: Path) -> bool:
    """Return ``True`` if *candidate* resolves to a path inside *root*."""
    try:
        candidate.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Examples::

        format_duration(0.42)  -> "0.42s"
        format_duration(65.2)  -> "1m 5s"
    """
    if seconds < 0:
        return "0.00s"
    minutes = int(seconds // 60)
    secs = seconds % 60
    if minutes > 0:
        return f"{minutes}m {int(secs)}s"
    return f"{secs:.2f}s"


# ---------------------------------------------------------------------------
# Rich output helpers
# ---------------------------------------------------------------------------


STATE_COLORS: dict[str, str] = {
    "Validating": "bright_cyan",
    "Rendering": "bright_green",
    "Materializing": "bright_yellow",
    "Inserting": "bright_magenta",
    "Done": "bright_blue",
    "Aborted": "bright_red",
}


def print_state_header(state: str) -> None:
    """Print a full-width rule announcing a run state."""
    color = STATE_COLORS.get(state, "white")
    console.print(Rule(f"[bold {color}] {state} [/bold {color}]", style=color))


def print_summary_table(data: dict[str, str], title: str = "Summary") -> None:
    """Print a two-column key/value summary table.

    Args:
        data: Mapping of label -> value.
        title: Table title.
    """
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Item", style="dim", no_wrap=True)
    table.add_column("Value")

    for key, value in data.items():
        table.add_row(key, str(value))

    console.print(table)


def print_success(message: str) -> None:
    """Print a green success message."""
    console.print(f"[bold green]{message}[/bold green]")


def print_error(message: str) -> None:
    """Print a red error message."""
    console.print(f"[bold red]{message}[/bold red]")


def print_warning(message: str) -> None:
    """Print a yellow warning message."""
    console.print(f"[bold yellow]{message}[/bold yellow]")
