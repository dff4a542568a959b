"""Jinja2-backed substitution engine.

Resolves placeholder tokens in file content and in path segments:

* content placeholders are written ``<%= subject.pascal %>`` or
  ``<%= appName %>`` (optionally with a case filter: ``<%= appName|pascal %>``);
* path placeholders are written ``%subject.pascal%`` so they stay legal in
  file names on every platform, and are converted to the content syntax
  before rendering.

The Jinja2 environment uses non-default delimiters so JSX/TS braces in the
payload pass through untouched, and ``StrictUndefined`` so nothing renders
silently empty.  Placeholders are restricted to names, dotted lookups and the
registered case filters; every unresolved token in the whole corpus is
collected in one dry pass before anything is written.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Mapping
from typing import Any, Iterable

from jinja2 import Environment, StrictUndefined, TemplateSyntaxError, nodes
from jinja2.exceptions import UndefinedError
from pydantic import BaseModel, ConfigDict

from stackstamp.errors import TemplateRenderError, UnresolvedPlaceholderError
from stackstamp.scaffolder.conditions import render_conditionals, scan_references
from stackstamp.scaffolder.loader import TemplateNode
from stackstamp.scaffolder.naming import CASE_FILTERS

TEMPLATE_SUFFIX = ".j2"

PATH_PLACEHOLDER_RE = re.compile(
    r"%(?P<token>[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*(?:\|[a-z]+)?)%"
)

_ALLOWED_NODES = (
    nodes.Template,
    nodes.Output,
    nodes.TemplateData,
    nodes.Name,
    nodes.Getattr,
    nodes.Filter,
)


class RenderedNode(BaseModel):
    """A template entry after conditional evaluation and substitution."""

    model_config = ConfigDict(frozen=True)

    path: str
    content: str | None = None
    is_dir: bool = False


# ---------------------------------------------------------------------------
# TemplateRenderer
# ---------------------------------------------------------------------------


class TemplateRenderer:
    """Renders placeholder tokens with a restricted Jinja2 environment."""

    def __init__(self) -> None:
        self.env = Environment(
            variable_start_string="<%=",
            variable_end_string="%>",
            # Blocks and comments are not part of the corpus syntax; these
            # delimiters only have to stay clear of the payload languages.
            block_start_string="<%{",
            block_end_string="}%>",
            comment_start_string="<%--",
            comment_end_string="--%>",
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )
        for name, func in CASE_FILTERS.items():
            self.env.filters[name] = func

    # -- Static analysis ---------------------------------------------------

    def placeholders(self, source: str, origin: str = "<string>") -> list[nodes.Expr]:
        """Return every placeholder expression in *source*.

        Raises:
            TemplateRenderError: On template syntax errors or on expressions
                outside the allowed subset (names, lookups, case filters).
        """
        try:
            ast = self.env.parse(source)
        except TemplateSyntaxError as exc:
            raise TemplateRenderError([f"{origin}:{exc.lineno}: {exc.message}"]) from exc

        problems: list[str] = []
        found: list[nodes.Expr] = []
        pending: list[nodes.Node] = [ast]
        while pending:
            node = pending.pop()
            if not isinstance(node, _ALLOWED_NODES) or (
                isinstance(node, nodes.Filter)
                and (node.name not in CASE_FILTERS or node.args or node.kwargs)
            ):
                problems.append(
                    f"{origin}:{node.lineno}: unsupported placeholder expression "
                    f"({type(node).__name__})"
                )
                continue
            if isinstance(node, nodes.Output):
                found.extend(n for n in node.nodes if not isinstance(n, nodes.TemplateData))
            pending.extend(node.iter_child_nodes())
        if problems:
            raise TemplateRenderError(sorted(problems))
        return found

    def unresolved(
        self, source: str, context: Mapping[str, Any], origin: str = "<string>"
    ) -> list[str]:
        """Return the tokens in *source* that *context* cannot resolve."""
        missing: list[str] = []
        for expr in self.placeholders(source, origin):
            token, value = _resolve(expr, context)
            if value is None:
                missing.append(f"{origin}: {token}")
        return missing

    # -- Rendering ---------------------------------------------------------

    def render_string(self, template_string: str, context: Mapping[str, Any]) -> str:
        """Render an inline template string with the provided context."""
        template = self.env.from_string(template_string)
        return template.render(**context)

    def render_path(self, path: str, context: Mapping[str, Any]) -> str:
        """Resolve path placeholders and drop the ``.j2`` template suffix."""
        rendered = self.render_string(path_to_template(path), context)
        if rendered.endswith(TEMPLATE_SUFFIX):
            rendered = rendered[: -len(TEMPLATE_SUFFIX)]
        return rendered

    def render_node(
        self,
        node: TemplateNode,
        context: Mapping[str, Any],
        options: Mapping[str, str | None],
    ) -> tuple[RenderedNode | None, list[str]]:
        """Render one node; returns ``(node_or_None, unresolved_tokens)``.

        ``None`` means the node was dropped by its file-scope directive.  The
        node is only rendered when no token is unresolved.
        """
        path_source = path_to_template(node.path)
        missing = self.unresolved(path_source, context, f"path {node.path}")
        if node.is_dir:
            if missing:
                return None, missing
            return RenderedNode(path=self.render_path(node.path, context), is_dir=True), []

        content = render_conditionals(node, options)
        if content is None:
            return None, []
        missing += self.unresolved(content, context, node.path)
        if missing:
            return None, missing
        try:
            rendered = RenderedNode(
                path=self.render_path(node.path, context),
                content=self.render_string(content, context),
            )
        except UndefinedError as exc:
            return None, [f"{node.path}: {exc.message}"]
        return rendered, []

    async def render_tree(
        self,
        template_nodes: list[TemplateNode],
        context: Mapping[str, Any],
        options: Mapping[str, str | None],
        *,
        max_workers: int = 8,
    ) -> list[RenderedNode]:
        """Dry-render a whole corpus in memory.

        Every node is evaluated (concurrently, at most *max_workers* at a
        time) and every problem is accumulated before raising, so one run
        reports the complete list of defects.

        Raises:
            TemplateRenderError: Malformed directives or placeholders, unknown
                options referenced by directives, or two surviving files
                rendering to the same path.
            UnresolvedPlaceholderError: Tokens without a substitution value.
        """
        references, problems = scan_references(template_nodes)
        problems += [
            f"{path}: unknown option {option!r}"
            for option, paths in sorted(references.items())
            if option not in options
            for path in sorted(paths)
        ]

        semaphore = asyncio.Semaphore(max_workers)

        async def _render(node: TemplateNode) -> tuple[RenderedNode | None, list[str], list[str]]:
            async with semaphore:
                try:
                    rendered, missing = await asyncio.to_thread(
                        self.render_node, node, context, options
                    )
                except TemplateRenderError as exc:
                    return None, [], exc.items
                return rendered, missing, []

        results = await asyncio.gather(*(_render(n) for n in template_nodes))

        problems += [p for _, _, issues in results for p in issues]
        if problems:
            # files with malformed directives report them again when rendered
            raise TemplateRenderError(list(dict.fromkeys(problems)))
        missing = [m for _, tokens, _ in results for m in tokens]
        if missing:
            raise UnresolvedPlaceholderError(missing)

        pairs = [
            (node, rendered)
            for node, (rendered, _, _) in zip(template_nodes, results)
            if rendered is not None
        ]
        return _prune(pairs, template_nodes)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def path_to_template(path: str) -> str:
    """Convert ``%token%`` path placeholders into content placeholder syntax."""
    return PATH_PLACEHOLDER_RE.sub(lambda m: f"<%= {m.group('token')} %>", path)


def _resolve(expr: nodes.Expr, context: Mapping[str, Any]) -> tuple[str, Any]:
    """Resolve a placeholder expression by hand; ``None`` means unresolved."""
    if isinstance(expr, nodes.Name):
        return expr.name, context.get(expr.name)
    if isinstance(expr, nodes.Getattr):
        token, value = _resolve(expr.node, context)
        token = f"{token}.{expr.attr}"
        if isinstance(value, Mapping):
            return token, value.get(expr.attr)
        return token, None
    if isinstance(expr, nodes.Filter):
        token, value = _resolve(expr.node, context)
        return f"{token}|{expr.name}", value
    return type(expr).__name__, None


def _ancestors(path: str) -> Iterable[str]:
    parts = path.split("/")
    for i in range(1, len(parts)):
        yield "/".join(parts[:i])


def _prune(
    pairs: list[tuple[TemplateNode, RenderedNode]],
    template_nodes: list[TemplateNode],
) -> list[RenderedNode]:
    """Drop directories left empty by conditional exclusion; reject duplicates.

    Directories that were already empty in the corpus are kept.
    """
    template_parents = {a for n in template_nodes for a in _ancestors(n.path)}

    files = [r for _, r in pairs if not r.is_dir]
    seen: dict[str, int] = {}
    for r in files:
        seen[r.path] = seen.get(r.path, 0) + 1
    duplicates = sorted(p for p, count in seen.items() if count > 1)
    if duplicates:
        raise TemplateRenderError([f"{p}: rendered by more than one template" for p in duplicates])

    live = {a for r in files for a in _ancestors(r.path)}
    for source, r in pairs:
        if r.is_dir and source.path not in template_parents:
            live.add(r.path)
            live.update(_ancestors(r.path))

    kept_dirs: dict[str, RenderedNode] = {}
    for _, r in pairs:
        if r.is_dir and r.path in live:
            kept_dirs.setdefault(r.path, r)

    return sorted([*kept_dirs.values(), *files], key=lambda r: r.path)
