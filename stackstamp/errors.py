"""Error taxonomy for stackstamp.

Every error the engine raises on purpose derives from ``StackstampError`` and
carries the process exit code the CLI should use for it.  Validation-class
errors hold the *complete* list of offending items so a single run reports
everything that is wrong, not just the first problem found.
"""

from __future__ import annotations


class StackstampError(Exception):
    """Base class for all engine errors."""

    exit_code: int = 3

    def __init__(self, message: str, items: list[str] | None = None) -> None:
        self.items: list[str] = list(items or [])
        super().__init__(message)

    def details(self) -> list[str]:
        """Return the offending items (one line each) for reporting."""
        return self.items


# ---------------------------------------------------------------------------
# Validation class (detected in the dry pass, before any write)
# ---------------------------------------------------------------------------


class ConfigValidationError(StackstampError):
    """One or more configuration options are unknown or out of domain."""

    exit_code = 1

    def __init__(self, issues: list[str]) -> None:
        super().__init__(
            f"Invalid configuration ({len(issues)} issue(s))", items=issues
        )


class UnknownGeneratorError(ConfigValidationError):
    """The requested generator is not in the registry."""

    def __init__(self, name: str, available: list[str]) -> None:
        super().__init__(
            [f"unknown generator {name!r}; available: {', '.join(available)}"]
        )
        self.name = name


class MissingConfigError(StackstampError):
    """The target directory is not a previously scaffolded project."""

    exit_code = 1

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        super().__init__(f"No usable project configuration at {path}: {reason}")


class TemplateLoadError(StackstampError):
    """The template root is missing or a template file cannot be read."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        super().__init__(f"Cannot load template {path}: {reason}", items=[path])


class TemplateRenderError(StackstampError):
    """A conditional directive or placeholder expression is malformed."""

    def __init__(self, problems: list[str]) -> None:
        super().__init__(
            f"Template corpus has {len(problems)} render problem(s)", items=problems
        )


class UnresolvedPlaceholderError(StackstampError):
    """A placeholder token has no matching substitution value."""

    def __init__(self, tokens: list[str]) -> None:
        super().__init__(
            f"{len(tokens)} unresolved placeholder(s) in template corpus",
            items=tokens,
        )


# ---------------------------------------------------------------------------
# Write class
# ---------------------------------------------------------------------------


class FileConflictError(StackstampError):
    """Destination files exist with different content."""

    exit_code = 2

    def __init__(self, paths: list[str]) -> None:
        super().__init__(
            f"{len(paths)} file(s) already exist with different content "
            "(re-run with --force to overwrite)",
            items=paths,
        )


class StackstampIOError(StackstampError):
    """A filesystem operation failed."""

    exit_code = 3

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"I/O failure on {path}: {reason}", items=[path])


class PartialWriteError(StackstampIOError):
    """Some writes failed after other files were already committed.

    The committed files are intact and listed so the run report can show them.
    """

    def __init__(
        self,
        failures: list[StackstampIOError],
        created: list[str],
        overwritten: list[str],
    ) -> None:
        super().__init__(failures[0].path, failures[0].reason)
        self.items = [f"{f.path}: {f.reason}" for f in failures]
        self.created = list(created)
        self.overwritten = list(overwritten)


# ---------------------------------------------------------------------------
# Downgraded to a warning by the generator runner
# ---------------------------------------------------------------------------


class InsertionAnchorNotFoundError(StackstampError):
    """An insertion anchor is missing (or ambiguous) in its target file."""

    exit_code = 4

    def __init__(self, target: str, anchor: str, reason: str = "not found") -> None:
        self.target = target
        self.anchor = anchor
        self.reason = reason
        super().__init__(f"Anchor {anchor!r} {reason} in {target}", items=[target])
