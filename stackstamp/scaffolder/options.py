"""Configuration resolution for scaffolded projects.

Merges the option defaults, answers collected interactively, and CLI flags
(in that order of precedence) into an immutable, validated ``ConfigContext``.
Validation is a dry pass: it reports every offending option together with its
allowed domain and never touches the filesystem.

The resolved context is persisted in the project root at scaffold time and
reloaded read-only by every later generator run.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from stackstamp.errors import ConfigValidationError, MissingConfigError, TemplateRenderError
from stackstamp.scaffolder.conditions import ExpressionSyntaxError, parse_expression
from stackstamp.utils import dump_json

CONFIG_VERSION = 1

APP_NAME_RE = re.compile(r"^[a-z][a-z0-9]*(?:-[a-z0-9]+)*$")


# ---------------------------------------------------------------------------
# Domain table
# ---------------------------------------------------------------------------


class OptionSpec(BaseModel):
    """One configurable dimension of a scaffolded project."""

    model_config = ConfigDict(frozen=True)

    name: str
    choices: tuple[str, ...]
    default: str
    description: str = ""
    requires: str | None = Field(
        default=None,
        description="Condition over other options that must hold for this option to apply",
    )


OPTION_TABLE: dict[str, OptionSpec] = {
    spec.name: spec
    for spec in (
        OptionSpec(
            name="host",
            choices=("vercel", "heroku"),
            default="vercel",
            description="Hosting provider for the deployed app",
        ),
        OptionSpec(
            name="apiStyle",
            choices=("trpc", "graphql"),
            default="trpc",
            description="API layer between the pages and the server",
        ),
        OptionSpec(
            name="database",
            choices=("postgres",),
            default="postgres",
            description="Database behind the Prisma schema",
        ),
        OptionSpec(
            name="vercelAnalytics",
            choices=("on", "off"),
            default="off",
            description="Enable Vercel Web Analytics",
            requires='host == "vercel"',
        ),
    )
}


def _domain(spec: OptionSpec) -> str:
    return "{" + ", ".join(spec.choices) + "}"


# ---------------------------------------------------------------------------
# ConfigContext
# ---------------------------------------------------------------------------


class ConfigContext(BaseModel):
    """Immutable project configuration, threaded through every stage."""

    model_config = ConfigDict(frozen=True)

    version: int = CONFIG_VERSION
    app_name: str
    package_scope: str
    options: dict[str, str | None]

    @field_validator("app_name")
    @classmethod
    def _check_app_name(cls, value: str) -> str:
        if not APP_NAME_RE.match(value):
            raise ValueError("must be a lowercase slug such as 'my-app'")
        return value

    def variables(self) -> dict[str, Any]:
        """Scalar substitution values available to every template."""
        return {
            "appName": self.app_name,
            "packageScope": self.package_scope,
            **{k: v for k, v in self.options.items() if v is not None},
        }

    def to_json(self) -> str:
        return dump_json(self.model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def resolve_config(
    app_name: str,
    flags: Mapping[str, str | None] | None = None,
    answers: Mapping[str, str | None] | None = None,
    *,
    package_scope: str | None = None,
    table: Mapping[str, OptionSpec] = OPTION_TABLE,
) -> ConfigContext:
    """Merge defaults < answers < flags and validate the result.

    ``None`` values in *flags* or *answers* mean "not supplied".

    Raises:
        ConfigValidationError: Listing every unknown option, out-of-domain
            value, option supplied where its ``requires`` condition is false,
            and an invalid app name or package scope.
    """
    issues: list[str] = []
    explicit: dict[str, str] = {}
    for source in (answers or {}, flags or {}):
        for key, value in source.items():
            if value is None:
                continue
            if key not in table:
                issues.append(
                    f"{key}: unknown option (known: {', '.join(sorted(table))})"
                )
                continue
            explicit[key] = value

    values: dict[str, str] = {}
    for name, spec in table.items():
        value = explicit.get(name, spec.default)
        if value not in spec.choices:
            issues.append(f"{name}: {value!r} is not one of {_domain(spec)}")
            value = spec.default
        values[name] = value

    options: dict[str, str | None] = {}
    for name, spec in table.items():
        applies = True
        if spec.requires:
            applies = parse_expression(spec.requires).evaluate(values)
        if applies:
            options[name] = values[name]
        elif name in explicit:
            issues.append(
                f"{name}: only valid when {spec.requires} "
                f"(allowed domain {_domain(spec)})"
            )
            options[name] = None
        else:
            options[name] = None

    if not APP_NAME_RE.match(app_name or ""):
        issues.append(f"appName: {app_name!r} must be a lowercase slug such as 'my-app'")
    scope = package_scope or f"@{app_name}"
    if not re.match(r"^@[a-z0-9][a-z0-9._-]*$", scope):
        issues.append(f"packageScope: {scope!r} must look like '@my-scope'")

    if issues:
        raise ConfigValidationError(issues)
    return ConfigContext(app_name=app_name, package_scope=scope, options=options)


def validate_option_table(table: Mapping[str, OptionSpec] = OPTION_TABLE) -> None:
    """Check that every ``requires`` expression parses and names known options."""
    problems: list[str] = []
    for spec in table.values():
        if not spec.requires:
            continue
        try:
            referenced = parse_expression(spec.requires).options()
        except ExpressionSyntaxError as exc:
            problems.append(f"{spec.name}.requires: {exc}")
            continue
        problems.extend(
            f"{spec.name}.requires: unknown option {ref!r}"
            for ref in sorted(referenced - set(table))
        )
    if problems:
        raise TemplateRenderError(problems)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def load_config(path: Path, table: Mapping[str, OptionSpec] = OPTION_TABLE) -> ConfigContext:
    """Load a previously persisted configuration.

    Options added to *table* after the project was scaffolded resolve to
    ``None`` (not applicable); options unknown to *table* are rejected.

    Raises:
        MissingConfigError: If the file is absent, unreadable, or not a valid
            configuration document.
    """
    path = Path(path)
    if not path.is_file():
        raise MissingConfigError(str(path), "file not found (is this a scaffolded project?)")
    try:
        raw = path.read_text(encoding="utf-8")
        ctx = ConfigContext.model_validate_json(raw)
    except (OSError, UnicodeDecodeError) as exc:
        raise MissingConfigError(str(path), str(exc)) from exc
    except ValidationError as exc:
        raise MissingConfigError(str(path), f"unparsable: {exc.error_count()} error(s)") from exc

    problems = [
        f"{name}={value!r}"
        for name, value in sorted(ctx.options.items())
        if name not in table or (value is not None and value not in table[name].choices)
    ]
    if problems:
        raise MissingConfigError(str(path), f"invalid options: {', '.join(problems)}")
    options = {name: ctx.options.get(name) for name in table}
    return ctx.model_copy(update={"options": options})
