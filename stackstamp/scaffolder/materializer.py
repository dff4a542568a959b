"""Writes rendered template output to a destination tree.

Materialisation is split in two steps:

1. :func:`plan` compares every rendered file with what is already on disk
   and classifies it as ``create``, ``unchanged`` or ``conflict``.  Planning
   performs no writes, so a run with conflicts can abort before touching
   anything.
2. :meth:`Materializer.apply` creates directories (idempotently) and writes
   each file atomically (temp file in the same directory, then rename).
   Writes run concurrently, bounded by a semaphore, and are serialised per
   destination path through a lock table.

Re-applying a plan computed against the engine's own previous output is a
byte-for-byte no-op.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from stackstamp.errors import (
    FileConflictError,
    PartialWriteError,
    StackstampIOError,
    TemplateRenderError,
)
from stackstamp.scaffolder.templates import RenderedNode
from stackstamp.utils import atomic_write_text, is_within


class FileStatus(str, Enum):
    CREATE = "create"
    UNCHANGED = "unchanged"
    CONFLICT = "conflict"


class PlannedWrite(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    content: str
    status: FileStatus


class MaterializePlan(BaseModel):
    """The full set of writes for one run, computed before any write."""

    root: Path
    directories: list[str] = []
    writes: list[PlannedWrite] = []

    def _paths(self, status: FileStatus) -> list[str]:
        return [w.path for w in self.writes if w.status is status]

    @property
    def to_create(self) -> list[str]:
        return self._paths(FileStatus.CREATE)

    @property
    def unchanged(self) -> list[str]:
        return self._paths(FileStatus.UNCHANGED)

    @property
    def conflicts(self) -> list[str]:
        return self._paths(FileStatus.CONFLICT)


class MaterializeResult(BaseModel):
    created: list[str] = []
    overwritten: list[str] = []
    unchanged: list[str] = []


# ---------------------------------------------------------------------------
# Path locks
# ---------------------------------------------------------------------------


class PathLocks:
    """One ``asyncio.Lock`` per absolute destination path."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def __call__(self, path: Path) -> asyncio.Lock:
        key = str(Path(path).resolve())
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


def plan(rendered: list[RenderedNode], dest: str | Path) -> MaterializePlan:
    """Classify every rendered node against the destination tree.

    Raises:
        TemplateRenderError: If any rendered path escapes *dest*.
        StackstampIOError: If an existing destination file cannot be read.
    """
    root = Path(dest)
    escaping = [
        r.path
        for r in rendered
        if not r.path or Path(r.path).is_absolute() or not is_within(root, root / r.path)
    ]
    if escaping:
        raise TemplateRenderError([f"{p!r}: resolves outside the destination" for p in escaping])

    directories: list[str] = []
    writes: list[PlannedWrite] = []
    for node in rendered:
        target = root / node.path
        if node.is_dir:
            directories.append(node.path)
            continue
        content = node.content or ""
        if target.is_dir():
            status = FileStatus.CONFLICT
        elif not target.exists():
            status = FileStatus.CREATE
        else:
            try:
                existing = target.read_bytes()
            except OSError as exc:
                raise StackstampIOError(str(target), str(exc)) from exc
            same = existing == content.encode("utf-8")
            status = FileStatus.UNCHANGED if same else FileStatus.CONFLICT
        writes.append(PlannedWrite(path=node.path, content=content, status=status))
    return MaterializePlan(root=root, directories=directories, writes=writes)


# ---------------------------------------------------------------------------
# Materializer
# ---------------------------------------------------------------------------


class Materializer:
    """Applies a :class:`MaterializePlan` to disk."""

    def __init__(self, max_workers: int = 8, locks: PathLocks | None = None) -> None:
        self.max_workers = max_workers
        self.locks = locks or PathLocks()

    async def apply(self, write_plan: MaterializePlan, *, force: bool = False) -> MaterializeResult:
        """Create directories and write files.

        Without *force*, any conflict aborts the whole run before a single
        write and is reported with every conflicting path.  With *force*,
        conflicting files are overwritten and the rest proceed normally.

        Raises:
            FileConflictError: Conflicts exist and *force* is not set.
            StackstampIOError: A directory could not be created.
            PartialWriteError: One or more files could not be written.  Files
                already committed are left intact and listed on the error.
        """
        conflicts = write_plan.conflicts
        if conflicts and not force:
            raise FileConflictError(conflicts)

        root = write_plan.root
        await asyncio.to_thread(_make_dirs, root, write_plan.directories)

        semaphore = asyncio.Semaphore(self.max_workers)
        failed = asyncio.Event()
        result = MaterializeResult(unchanged=write_plan.unchanged)

        async def _write(item: PlannedWrite) -> None:
            target = root / item.path
            async with semaphore, self.locks(target):
                if failed.is_set():
                    return
                try:
                    await asyncio.to_thread(atomic_write_text, target, item.content)
                except OSError as exc:
                    failed.set()
                    raise StackstampIOError(str(target), str(exc)) from exc
            if item.status is FileStatus.CREATE:
                result.created.append(item.path)
            else:
                result.overwritten.append(item.path)

        pending = [w for w in write_plan.writes if w.status is not FileStatus.UNCHANGED]
        outcomes = await asyncio.gather(*(_write(w) for w in pending), return_exceptions=True)
        result.created.sort()
        result.overwritten.sort()

        failures: list[StackstampIOError] = []
        for outcome in outcomes:
            if isinstance(outcome, StackstampIOError):
                failures.append(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
        if failures:
            raise PartialWriteError(failures, result.created, result.overwritten)
        return result


def _make_dirs(root: Path, directories: list[str]) -> None:
    try:
        root.mkdir(parents=True, exist_ok=True)
        for rel in directories:
            (root / rel).mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StackstampIOError(str(root), str(exc)) from exc


async def materialize(
    write_plan: MaterializePlan, *, force: bool = False, max_workers: int = 8
) -> MaterializeResult:
    """Apply *write_plan* with a one-off :class:`Materializer`."""
    return await Materializer(max_workers=max_workers).apply(write_plan, force=force)
