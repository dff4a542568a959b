"""Full-application scaffolding.

Takes a validated ``ConfigContext`` and renders the whole ``app/`` template
corpus in memory: a Next.js + Prisma application whose API layer (tRPC or
GraphQL) and hosting files (Vercel or Heroku) follow the configuration.  The
persisted project configuration is appended as one more rendered file so it
goes through the same conflict detection and atomic writes as the rest of the
tree.
"""

from __future__ import annotations

from typing import Any

from stackstamp.config import EngineSettings
from stackstamp.errors import TemplateRenderError
from stackstamp.scaffolder.loader import load_tree_async
from stackstamp.scaffolder.options import ConfigContext
from stackstamp.scaffolder.templates import RenderedNode, TemplateRenderer


class ProjectGenerator:
    """Renders the scaffold corpus for one project configuration."""

    def __init__(
        self,
        config: ConfigContext,
        settings: EngineSettings | None = None,
        renderer: TemplateRenderer | None = None,
    ) -> None:
        self.config = config
        self.settings = settings or EngineSettings()
        self.renderer = renderer or TemplateRenderer()

    def build_context(self) -> dict[str, Any]:
        """Template variables for a scaffold run (no subject name)."""
        return self.config.variables()

    async def render(self) -> list[RenderedNode]:
        """Load and render the scaffold corpus plus the project config file.

        Raises:
            TemplateLoadError: The corpus cannot be read.
            TemplateRenderError: Malformed directives, unknown options, or a
                template that renders onto the config file path.
            UnresolvedPlaceholderError: Tokens without a value.
        """
        nodes = await load_tree_async(
            self.settings.app_template_dir, self.settings.max_workers
        )
        rendered = await self.renderer.render_tree(
            nodes,
            self.build_context(),
            self.config.options,
            max_workers=self.settings.max_workers,
        )
        config_file = self.settings.config_filename
        if any(node.path == config_file for node in rendered):
            raise TemplateRenderError(
                [f"{config_file}: reserved for the project configuration"]
            )
        rendered.append(RenderedNode(path=config_file, content=self.config.to_json()))
        return sorted(rendered, key=lambda node: node.path)
