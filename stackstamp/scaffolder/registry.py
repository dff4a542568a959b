"""Generator registry.

The generator table is declared in ``templates/generators.yaml`` next to the
bundles it refers to, and validated into frozen pydantic models on load.
Each generator names one or more template bundles (directories under
``templates/generators/``), the directory pattern the bundle is rendered
into, and the insertion points it applies to existing aggregator files.

:class:`GeneratorRunner` renders a single generator invocation in memory:
the bundle files (through the same conditional + substitution pipeline as a
full scaffold) and the substituted insertion fragments.  Writing is left to
the pipeline so every validation error surfaces before the first write.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from stackstamp.config import EngineSettings
from stackstamp.errors import (
    ConfigValidationError,
    TemplateLoadError,
    TemplateRenderError,
    UnknownGeneratorError,
    UnresolvedPlaceholderError,
)
from stackstamp.scaffolder.conditions import ExpressionSyntaxError, parse_expression
from stackstamp.scaffolder.insertion import InsertionPoint
from stackstamp.scaffolder.loader import TemplateNode, load_tree_async
from stackstamp.scaffolder.naming import subject_variants
from stackstamp.scaffolder.options import ConfigContext
from stackstamp.scaffolder.templates import RenderedNode, TemplateRenderer, path_to_template


class GeneratorSpec(BaseModel):
    """One entry of the generator table."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    bundles: tuple[str, ...]
    target: str = ""
    insertions: tuple[InsertionPoint, ...] = ()
    when: str | None = None

    @field_validator("bundles")
    @classmethod
    def _non_empty(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            raise ValueError("a generator needs at least one template bundle")
        return value

    def is_available(self, options: dict[str, str | None]) -> bool:
        """Whether the project configuration allows this generator."""
        return self.when is None or parse_expression(self.when).evaluate(options)


class GeneratorRegistry:
    """Name -> :class:`GeneratorSpec` lookup."""

    def __init__(self, specs: list[GeneratorSpec]) -> None:
        self._specs: dict[str, GeneratorSpec] = {}
        for spec in specs:
            if spec.name in self._specs:
                raise TemplateLoadError(spec.name, "duplicate generator name")
            self._specs[spec.name] = spec

    def __contains__(self, name: str) -> bool:
        return name in self._specs

    def __iter__(self):
        return iter(self._specs.values())

    def names(self) -> list[str]:
        return sorted(self._specs)

    def get(self, name: str) -> GeneratorSpec:
        """Return the spec for *name*.

        Raises:
            UnknownGeneratorError: If no generator has that name.
        """
        try:
            return self._specs[name]
        except KeyError:
            raise UnknownGeneratorError(name, self.names()) from None

    def check_expressions(self, option_names: set[str]) -> None:
        """Dry-validate every ``when`` expression in the table.

        Raises:
            TemplateRenderError: Listing every malformed expression and every
                reference to an option outside *option_names*.
        """
        problems: list[str] = []
        for spec in self:
            expressions = [(f"{spec.name}.when", spec.when)] + [
                (f"{spec.name}.insertions[{i}].when", point.when)
                for i, point in enumerate(spec.insertions)
            ]
            for where, text in expressions:
                if text is None:
                    continue
                try:
                    referenced = parse_expression(text).options()
                except ExpressionSyntaxError as exc:
                    problems.append(f"{where}: {exc}")
                    continue
                problems.extend(
                    f"{where}: unknown option {name!r}"
                    for name in sorted(referenced - option_names)
                )
        if problems:
            raise TemplateRenderError(problems)


def load_registry(path: str | Path) -> GeneratorRegistry:
    """Load and validate the generator table from YAML.

    Raises:
        TemplateLoadError: If the file is missing, is not valid YAML, or does
            not describe valid generator specs.
    """
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise TemplateLoadError(str(path), str(exc)) from exc
    except yaml.YAMLError as exc:
        raise TemplateLoadError(str(path), f"invalid YAML: {exc}") from exc

    entries = (raw or {}).get("generators") if isinstance(raw, dict) else None
    if not isinstance(entries, list):
        raise TemplateLoadError(str(path), "expected a top-level 'generators' list")
    try:
        specs = [GeneratorSpec.model_validate(entry) for entry in entries]
    except ValidationError as exc:
        raise TemplateLoadError(str(path), str(exc)) from exc
    return GeneratorRegistry(specs)


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class GeneratorRunner:
    """Renders one generator invocation against a loaded project config."""

    def __init__(
        self,
        spec: GeneratorSpec,
        config: ConfigContext,
        settings: EngineSettings,
        renderer: TemplateRenderer | None = None,
    ) -> None:
        self.spec = spec
        self.config = config
        self.settings = settings
        self.renderer = renderer or TemplateRenderer()

    def check_available(self) -> None:
        """Raise ``ConfigValidationError`` if the project config excludes this generator."""
        if not self.spec.is_available(self.config.options):
            raise ConfigValidationError(
                [f"generator {self.spec.name!r} requires {self.spec.when}"]
            )

    def build_context(self, subject: str) -> dict[str, Any]:
        """Template variables for this invocation.

        Raises:
            ConfigValidationError: If *subject* has no identifier characters.
        """
        try:
            variants = subject_variants(subject)
        except ValueError as exc:
            raise ConfigValidationError([f"subject: {exc}"]) from exc
        return {**self.config.variables(), "subject": variants}

    async def render_bundle(self, context: dict[str, Any]) -> list[RenderedNode]:
        """Load and render every bundle, rooted at the spec's target pattern."""
        nodes: list[TemplateNode] = []
        for bundle in self.spec.bundles:
            bundle_nodes = await load_tree_async(
                self.settings.generators_dir / bundle, self.settings.max_workers
            )
            prefix = self.spec.target.strip("/")
            nodes.extend(
                node.model_copy(update={"path": f"{prefix}/{node.path}" if prefix else node.path})
                for node in bundle_nodes
            )
        return await self.renderer.render_tree(
            nodes, context, self.config.options, max_workers=self.settings.max_workers
        )

    def render_insertions(self, context: dict[str, Any]) -> list[tuple[InsertionPoint, str]]:
        """Substitute targets and fragments of the applicable insertion points.

        Raises:
            TemplateRenderError: Listing every unsupported placeholder
                expression across all insertion points.
            UnresolvedPlaceholderError: Listing every unresolved token across
                all insertion points.
        """
        planned: list[tuple[InsertionPoint, str]] = []
        problems: list[str] = []
        missing: list[str] = []
        for index, point in enumerate(self.spec.insertions):
            if point.when and not parse_expression(point.when).evaluate(self.config.options):
                continue
            origin = f"{self.spec.name}.insertions[{index}]"
            target_source = path_to_template(point.target)
            point_missing: list[str] = []
            for source, where in ((point.fragment, origin), (target_source, f"{origin}.target")):
                try:
                    point_missing += self.renderer.unresolved(source, context, where)
                except TemplateRenderError as exc:
                    problems.extend(exc.items)
            if problems or point_missing:
                missing.extend(point_missing)
                continue
            target = self.renderer.render_string(target_source, context)
            fragment = self.renderer.render_string(point.fragment, context)
            planned.append((point.model_copy(update={"target": target}), fragment))
        if problems:
            raise TemplateRenderError(problems)
        if missing:
            raise UnresolvedPlaceholderError(missing)
        return planned

    async def render(
        self, context: dict[str, Any]
    ) -> tuple[list[RenderedNode], list[tuple[InsertionPoint, str]]]:
        """Dry-render the bundle files and the insertion fragments together.

        Problems from both halves are merged, so one run reports every
        render problem first, and otherwise every unresolved token.
        """
        problems: list[str] = []
        missing: list[str] = []
        rendered: list[RenderedNode] = []
        planned: list[tuple[InsertionPoint, str]] = []
        try:
            rendered = await self.render_bundle(context)
        except TemplateRenderError as exc:
            problems.extend(exc.items)
        except UnresolvedPlaceholderError as exc:
            missing.extend(exc.items)
        try:
            planned = self.render_insertions(context)
        except TemplateRenderError as exc:
            problems.extend(exc.items)
        except UnresolvedPlaceholderError as exc:
            missing.extend(exc.items)
        if problems:
            raise TemplateRenderError(problems)
        if missing:
            raise UnresolvedPlaceholderError(missing)
        return rendered, planned
