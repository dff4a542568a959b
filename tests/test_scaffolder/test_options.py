"""Tests for configuration resolution and persistence.

Covers:
- Precedence (defaults < answers < flags)
- Domain validation with every issue reported at once
- Dependent options (requires) resolving to None or failing when explicit
- Option-table validation
- load_config against missing, corrupt and out-of-domain documents
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from stackstamp.errors import ConfigValidationError, MissingConfigError, TemplateRenderError
from stackstamp.scaffolder.options import (
    OPTION_TABLE,
    ConfigContext,
    OptionSpec,
    load_config,
    resolve_config,
    validate_option_table,
)

pytestmark = pytest.mark.unit


class TestResolveConfig:
    def test_defaults(self):
        ctx = resolve_config("my-app")
        assert ctx.options == {
            "host": "vercel",
            "apiStyle": "trpc",
            "database": "postgres",
            "vercelAnalytics": "off",
        }
        assert ctx.package_scope == "@my-app"
        assert ctx.version == 1

    def test_flags_override_answers(self):
        ctx = resolve_config(
            "my-app",
            flags={"apiStyle": "graphql"},
            answers={"apiStyle": "trpc", "host": "heroku"},
        )
        assert ctx.options["apiStyle"] == "graphql"
        assert ctx.options["host"] == "heroku"

    def test_none_means_not_supplied(self):
        ctx = resolve_config("my-app", flags={"host": None}, answers={"host": "heroku"})
        assert ctx.options["host"] == "heroku"

    def test_dependent_option_not_applicable_is_none(self):
        ctx = resolve_config("my-app", flags={"host": "heroku"})
        assert ctx.options["vercelAnalytics"] is None
        assert "vercelAnalytics" not in ctx.variables()

    def test_dependent_option_applies(self):
        ctx = resolve_config("my-app", flags={"vercelAnalytics": "on"})
        assert ctx.options["vercelAnalytics"] == "on"

    def test_explicit_dependent_option_that_does_not_apply(self):
        with pytest.raises(ConfigValidationError) as excinfo:
            resolve_config("my-app", flags={"host": "heroku", "vercelAnalytics": "on"})
        assert excinfo.value.items == [
            'vercelAnalytics: only valid when host == "vercel" (allowed domain {on, off})'
        ]

    def test_every_issue_reported(self):
        with pytest.raises(ConfigValidationError) as excinfo:
            resolve_config(
                "My App",
                flags={"host": "aws", "apiStyle": "rest", "colour": "red"},
                package_scope="nope",
            )
        items = excinfo.value.items
        assert len(items) == 5
        assert any(i.startswith("colour: unknown option") for i in items)
        assert "host: 'aws' is not one of {vercel, heroku}" in items
        assert "apiStyle: 'rest' is not one of {trpc, graphql}" in items
        assert any(i.startswith("appName:") for i in items)
        assert any(i.startswith("packageScope:") for i in items)
        assert excinfo.value.exit_code == 1

    def test_custom_package_scope(self):
        assert resolve_config("my-app", package_scope="@acme").package_scope == "@acme"

    def test_variables(self):
        ctx = resolve_config("my-app", flags={"host": "heroku"})
        assert ctx.variables() == {
            "appName": "my-app",
            "packageScope": "@my-app",
            "host": "heroku",
            "apiStyle": "trpc",
            "database": "postgres",
        }

    def test_context_is_frozen(self):
        ctx = resolve_config("my-app")
        with pytest.raises(Exception):
            ctx.app_name = "other"


class TestValidateOptionTable:
    def test_packaged_table_is_valid(self):
        validate_option_table(OPTION_TABLE)

    def test_bad_requires(self):
        table = {
            "a": OptionSpec(name="a", choices=("x",), default="x", requires="b == 'x'"),
            "c": OptionSpec(name="c", choices=("x",), default="x", requires="a =="),
        }
        with pytest.raises(TemplateRenderError) as excinfo:
            validate_option_table(table)
        assert len(excinfo.value.items) == 2


class TestLoadConfig:
    def test_round_trip(self, tmp_path: Path):
        ctx = resolve_config("my-app", flags={"host": "heroku"})
        path = tmp_path / "stackstamp.json"
        path.write_text(ctx.to_json(), encoding="utf-8")
        assert load_config(path) == ctx

    def test_json_is_stable(self):
        ctx = resolve_config("my-app")
        data = json.loads(ctx.to_json())
        assert data["app_name"] == "my-app"
        assert ctx.to_json().endswith("}\n")

    def test_missing(self, tmp_path: Path):
        with pytest.raises(MissingConfigError, match="file not found"):
            load_config(tmp_path / "stackstamp.json")

    def test_corrupt(self, tmp_path: Path):
        path = tmp_path / "stackstamp.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(MissingConfigError, match="unparsable"):
            load_config(path)

    def test_out_of_domain_value(self, tmp_path: Path):
        ctx = resolve_config("my-app")
        data = json.loads(ctx.to_json())
        data["options"]["host"] = "aws"
        path = tmp_path / "stackstamp.json"
        path.write_text(json.dumps(data), encoding="utf-8")
        with pytest.raises(MissingConfigError, match="host='aws'"):
            load_config(path)

    def test_options_added_later_resolve_to_none(self, tmp_path: Path):
        data = {
            "version": 1,
            "app_name": "my-app",
            "package_scope": "@my-app",
            "options": {"host": "heroku", "apiStyle": "trpc", "database": "postgres"},
        }
        path = tmp_path / "stackstamp.json"
        path.write_text(json.dumps(data), encoding="utf-8")
        ctx = load_config(path)
        assert ctx.options["vercelAnalytics"] is None
        assert isinstance(ctx, ConfigContext)
