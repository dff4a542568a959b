"""Shared pytest fixtures for the stackstamp test suite.

Provides reusable fixtures for:
- A tiny template corpus (app tree, one bundle, generator table) in tmp_path
- Engine settings pointing at the tiny corpus or at the packaged one
- Resolved project configurations
- An already scaffolded project
"""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from stackstamp.config import EngineSettings
from stackstamp.pipeline import Pipeline
from stackstamp.scaffolder.options import ConfigContext, resolve_config


def write(root: Path, rel: str, content: str) -> Path:
    """Write dedented *content* to ``root/rel``, creating parents."""
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(content).lstrip("\n"), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Corpus
# ---------------------------------------------------------------------------

MINI_GENERATORS_YAML = """
generators:
  - name: widget
    description: A widget module registered in src/registry.ts
    bundles: [widget]
    target: src/widgets
    insertions:
      - target: src/registry.ts
        strategy: before-anchor
        anchor: "// @stackstamp:imports"
        fragment: "import { <%= subject.camel %> } from './widgets/<%= subject.pascal %>';"
      - target: src/registry.ts
        strategy: append-to-list-between-markers
        anchor: "// @stackstamp:widgets:start"
        end_anchor: "// @stackstamp:widgets:end"
        fragment: "<%= subject.camel %>,"

  - name: heroku-widget
    description: Only available on heroku
    when: host == "heroku"
    bundles: [widget]
    target: src/heroku

  - name: orphan
    description: Inserts into a file the app corpus never creates
    bundles: [widget]
    target: src/orphans
    insertions:
      - target: src/missing.ts
        strategy: after-anchor
        anchor: "// @stackstamp:nowhere"
        fragment: "export * from './orphans/<%= subject.pascal %>';"
"""


@pytest.fixture
def mini_corpus(tmp_path: Path) -> Path:
    """A minimal template directory exercising guards, regions and anchors."""
    root = tmp_path / "corpus"
    app = root / "app"
    write(app, "README.md.j2", """
        # <%= appName|pascal %>
        <%? if host == "heroku" %>
        Deployed on heroku.
        <%? endif %>
        Scope: <%= packageScope %>
    """)
    write(app, "vercel.json.j2", """
        <%# if host == "vercel" %>
        {"name": "<%= appName %>"}
        <%# endif %>
    """)
    write(app, "heroku/Procfile.j2", """
        <%# if host == "heroku" %>
        web: npm start
        <%# endif %>
    """)
    write(app, "src/registry.ts.j2", """
        // @stackstamp:imports

        export const widgets = [
          // @stackstamp:widgets:start
          // @stackstamp:widgets:end
        ];
    """)
    (app / "public").mkdir(parents=True)
    write(root, "generators/widget/%subject.pascal%.ts.j2", """
        export const <%= subject.camel %> = '<%= appName %>';
    """)
    write(root, "generators.yaml", MINI_GENERATORS_YAML)
    return root


@pytest.fixture
def mini_settings(mini_corpus: Path) -> EngineSettings:
    """Settings using the tiny corpus."""
    return EngineSettings(template_dir=mini_corpus, max_workers=4)


@pytest.fixture
def packaged_settings() -> EngineSettings:
    """Settings using the templates shipped with the package."""
    return EngineSettings(max_workers=4)


# ---------------------------------------------------------------------------
# Configurations & projects
# ---------------------------------------------------------------------------


@pytest.fixture
def vercel_config() -> ConfigContext:
    return resolve_config("demo-app", flags={"host": "vercel", "apiStyle": "trpc"})


@pytest.fixture
def heroku_config() -> ConfigContext:
    return resolve_config("demo-app", flags={"host": "heroku", "apiStyle": "graphql"})


@pytest.fixture
async def mini_project(tmp_path: Path, mini_settings: EngineSettings) -> Path:
    """A project scaffolded from the tiny corpus with default options."""
    dest = tmp_path / "demo-app"
    report = await Pipeline(mini_settings).scaffold(
        "demo-app", dest, {"host": "vercel"}
    )
    assert report.success, report.error_items
    return dest
