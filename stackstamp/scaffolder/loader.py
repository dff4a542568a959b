"""Template tree loading.

Walks a template root and produces one immutable ``TemplateNode`` per file
and directory, in lexical order of their relative POSIX paths so every run
sees the corpus in the same order.  Placeholders embedded in path segments
are recorded verbatim here and resolved later by the substitution engine.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from stackstamp.errors import TemplateLoadError

IGNORED_NAMES: frozenset[str] = frozenset({"__pycache__", ".DS_Store"})


class TemplateNode(BaseModel):
    """A single entry of the template corpus."""

    model_config = ConfigDict(frozen=True)

    path: str
    content: str | None = None
    is_dir: bool = False
    source: str = ""


def _entries(root: Path) -> list[tuple[str, Path]]:
    if not root.is_dir():
        raise TemplateLoadError(str(root), "template root does not exist")
    entries: list[tuple[str, Path]] = []
    for path in root.rglob("*"):
        rel = path.relative_to(root)
        if any(part in IGNORED_NAMES for part in rel.parts):
            continue
        entries.append((rel.as_posix(), path))
    entries.sort(key=lambda item: item[0])
    return entries


def _read(rel: str, path: Path) -> TemplateNode:
    if path.is_dir():
        return TemplateNode(path=rel, is_dir=True, source=str(path))
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise TemplateLoadError(str(path), str(exc)) from exc
    return TemplateNode(path=rel, content=content, source=str(path))


def load_tree(root: str | Path) -> list[TemplateNode]:
    """Load every file and directory under *root*.

    Raises:
        TemplateLoadError: If *root* is missing or a file cannot be read or
            decoded as UTF-8.
    """
    return [_read(rel, path) for rel, path in _entries(Path(root))]


async def load_tree_async(root: str | Path, max_workers: int = 8) -> list[TemplateNode]:
    """Concurrent variant of :func:`load_tree` with the same output order.

    File reads run in worker threads, at most *max_workers* at a time.
    """
    entries = await asyncio.to_thread(_entries, Path(root))
    semaphore = asyncio.Semaphore(max_workers)

    async def _load(rel: str, path: Path) -> TemplateNode:
        async with semaphore:
            return await asyncio.to_thread(_read, rel, path)

    return list(await asyncio.gather(*(_load(rel, path) for rel, path in entries)))
