"""Anchor-based insertion into existing project files.

Generators extend aggregator files (router tables, document registries, ...)
that developers may since have edited by hand.  Insertion is purely textual:
a unique anchor marker is located in the target file and the fragment is
placed before it, after it, or appended to the list delimited by a start and
end marker.  The fragment is re-indented to match the line it is inserted
against.

Every applied fragment is recorded by hash, together with its strategy and
anchors, in the project's ``GenerationRecord`` so a second run with the same
fragment is a no-op.  The record is only appended to after the file write has
committed, and both happen inside the same worker-thread call so a cancelled
run can never record an insertion that did not happen.
"""

from __future__ import annotations

import asyncio
import threading
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, model_validator

from stackstamp.errors import InsertionAnchorNotFoundError, StackstampIOError
from stackstamp.utils import atomic_write_text, content_hash, dump_json, load_json

RECORD_VERSION = 1


class InsertionStrategy(str, Enum):
    BEFORE_ANCHOR = "before-anchor"
    AFTER_ANCHOR = "after-anchor"
    APPEND_TO_LIST = "append-to-list-between-markers"


class InsertionPoint(BaseModel):
    """Where and how a generator edits an existing file."""

    model_config = ConfigDict(frozen=True)

    target: str
    anchor: str
    strategy: InsertionStrategy
    fragment: str
    end_anchor: str | None = None
    when: str | None = None

    @model_validator(mode="after")
    def _check_markers(self) -> "InsertionPoint":
        if self.strategy is InsertionStrategy.APPEND_TO_LIST and not self.end_anchor:
            raise ValueError(f"{self.strategy.value} requires end_anchor")
        if not self.anchor.strip():
            raise ValueError("anchor must not be blank")
        return self


class InsertionStatus(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    WARNED = "warned"


class InsertionOutcome(BaseModel):
    target: str
    status: InsertionStatus
    detail: str = ""
    fragment: str = ""


# ---------------------------------------------------------------------------
# GenerationRecord
# ---------------------------------------------------------------------------


class GenerationRecord:
    """Append-only ledger of applied fragment hashes, keyed by target file."""

    def __init__(self, path: Path, applied: dict[str, list[str]] | None = None) -> None:
        self.path = Path(path)
        self.applied: dict[str, list[str]] = {k: list(v) for k, v in (applied or {}).items()}
        self._lock = threading.Lock()

    @classmethod
    def load(cls, path: Path) -> "GenerationRecord":
        """Load the ledger, or start an empty one if the file does not exist.

        Raises:
            StackstampIOError: If the file exists but is unreadable or corrupt.
                A corrupt ledger is never silently discarded; deleting the
                file is the explicit way to reset it.
        """
        path = Path(path)
        if not path.exists():
            return cls(path)
        try:
            data = load_json(path)
        except (OSError, ValueError) as exc:
            raise StackstampIOError(str(path), f"corrupt generation record: {exc}") from exc
        applied = data.get("applied", {})
        if not isinstance(applied, dict) or not all(
            isinstance(v, list) and all(isinstance(h, str) for h in v) for v in applied.values()
        ):
            raise StackstampIOError(str(path), "corrupt generation record: bad 'applied' table")
        return cls(path, applied)

    def has(self, target: str, digest: str) -> bool:
        with self._lock:
            return digest in self.applied.get(target, [])

    def add(self, target: str, digest: str) -> None:
        """Append *digest* for *target* and persist the ledger atomically."""
        with self._lock:
            hashes = self.applied.setdefault(target, [])
            if digest in hashes:
                return
            hashes.append(digest)
            atomic_write_text(
                self.path, dump_json({"version": RECORD_VERSION, "applied": self.applied})
            )


# ---------------------------------------------------------------------------
# Pure text splicing
# ---------------------------------------------------------------------------


def _indent_of(line: str) -> str:
    return line[: len(line) - len(line.lstrip(" \t"))]


def _block(fragment: str, indent: str) -> list[str]:
    return [
        f"{indent}{line}\n" if line.strip() else "\n"
        for line in fragment.strip("\n").split("\n")
    ]


def _find_unique(lines: list[str], marker: str, target: str, start: int = 0) -> int:
    hits = [i for i in range(start, len(lines)) if marker in lines[i]]
    total = sum(line.count(marker) for line in lines[start:])
    if not hits:
        raise InsertionAnchorNotFoundError(target, marker)
    if total > 1:
        raise InsertionAnchorNotFoundError(target, marker, f"is not unique ({total} occurrences)")
    return hits[0]


def splice(content: str, point: InsertionPoint, fragment: str) -> str | None:
    """Return *content* with *fragment* inserted per *point*.

    Returns ``None`` when the list strategy finds every fragment line already
    present between the markers.

    Raises:
        InsertionAnchorNotFoundError: If a marker is missing or not unique.
    """
    lines = content.splitlines(keepends=True)
    if lines and not lines[-1].endswith("\n"):
        lines[-1] += "\n"
        trailing_newline = False
    else:
        trailing_newline = True

    start = _find_unique(lines, point.anchor, point.target)

    if point.strategy is InsertionStrategy.BEFORE_ANCHOR:
        lines[start:start] = _block(fragment, _indent_of(lines[start]))
    elif point.strategy is InsertionStrategy.AFTER_ANCHOR:
        lines[start + 1 : start + 1] = _block(fragment, _indent_of(lines[start]))
    else:
        end = _find_unique(lines, point.end_anchor, point.target, start + 1)
        wanted = {line.strip() for line in fragment.split("\n") if line.strip()}
        present = {line.strip() for line in lines[start + 1 : end]}
        if wanted <= present:
            return None
        lines[end:end] = _block(fragment, _indent_of(lines[end]))

    result = "".join(lines)
    if not trailing_newline:
        result = result[:-1]
    return result


# ---------------------------------------------------------------------------
# Applying
# ---------------------------------------------------------------------------


def insertion_digest(point: InsertionPoint, fragment: str) -> str:
    """Ledger key for *fragment* placed at *point*.

    The same fragment text under a different strategy or anchor is a
    different insertion.
    """
    parts = (point.strategy.value, point.anchor, point.end_anchor or "", fragment)
    return content_hash("\0".join(parts))


def apply_insertion(
    project_root: Path, point: InsertionPoint, fragment: str, record: GenerationRecord
) -> InsertionOutcome:
    """Apply one (already substituted) insertion to its target file.

    Runs synchronously; callers dispatch it to a worker thread.

    Raises:
        InsertionAnchorNotFoundError: Target file or marker missing/ambiguous.
        StackstampIOError: The target file could not be read or written.
    """
    path = Path(project_root) / point.target
    digest = insertion_digest(point, fragment)
    if record.has(point.target, digest):
        return InsertionOutcome(
            target=point.target, status=InsertionStatus.SKIPPED, detail="already applied"
        )
    if not path.is_file():
        raise InsertionAnchorNotFoundError(point.target, point.anchor, "not found (file missing)")
    try:
        content = path.read_text(encoding="utf-8")
        updated = splice(content, point, fragment)
        if updated is None:
            record.add(point.target, digest)
            return InsertionOutcome(
                target=point.target, status=InsertionStatus.SKIPPED, detail="already present"
            )
        atomic_write_text(path, updated)
        record.add(point.target, digest)
    except (OSError, UnicodeDecodeError) as exc:
        raise StackstampIOError(str(path), str(exc)) from exc
    return InsertionOutcome(
        target=point.target, status=InsertionStatus.APPLIED, detail=point.strategy.value
    )


async def apply_insertions(
    project_root: Path,
    planned: list[tuple[InsertionPoint, str]],
    record: GenerationRecord,
    *,
    max_workers: int = 8,
) -> list[InsertionOutcome]:
    """Apply insertions: sequential per target file, concurrent across files.

    Missing or ambiguous anchors are downgraded to ``warned`` outcomes that
    carry the fragment for manual application.  Outcomes are returned in the
    order of *planned*.
    """
    by_target: dict[str, list[int]] = {}
    for index, (point, _) in enumerate(planned):
        by_target.setdefault(point.target, []).append(index)

    outcomes: list[InsertionOutcome | None] = [None] * len(planned)
    semaphore = asyncio.Semaphore(max_workers)

    async def _apply_target(indices: list[int]) -> None:
        async with semaphore:
            for index in indices:
                point, fragment = planned[index]
                try:
                    outcomes[index] = await asyncio.to_thread(
                        apply_insertion, project_root, point, fragment, record
                    )
                except InsertionAnchorNotFoundError as exc:
                    outcomes[index] = InsertionOutcome(
                        target=point.target,
                        status=InsertionStatus.WARNED,
                        detail=str(exc),
                        fragment=fragment,
                    )

    await asyncio.gather(*(_apply_target(indices) for indices in by_target.values()))
    return [o for o in outcomes if o is not None]
