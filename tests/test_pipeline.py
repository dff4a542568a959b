"""Tests for the run orchestrator, run reports and the CLI.

Covers:
- scaffold: fresh run, idempotent re-run, conflicts, validation failures
- generate: files + insertions, idempotent re-run, availability, anchors
- RunReport states and exit-code mapping
- main(): exit codes for every outcome class
"""

from __future__ import annotations

from pathlib import Path

import pytest

from stackstamp.config import EngineSettings
from stackstamp.errors import FileConflictError, PartialWriteError, StackstampIOError
from stackstamp.pipeline import Pipeline, main, run_generator
from stackstamp.report import RunReport, render_report
from stackstamp.scaffolder.insertion import InsertionOutcome, InsertionStatus

from conftest import write


# ---------------------------------------------------------------------------
# scaffold
# ---------------------------------------------------------------------------


class TestScaffold:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fresh_scaffold(self, tmp_path: Path, mini_settings: EngineSettings):
        dest = tmp_path / "demo-app"
        report = await Pipeline(mini_settings).scaffold("demo-app", dest, {"host": "vercel"})

        assert report.success and report.state == "Done"
        assert report.created == [
            "README.md",
            "src/registry.ts",
            "stackstamp.json",
            "vercel.json",
        ]
        assert report.options["host"] == "vercel"
        assert (dest / "public").is_dir()
        assert not (dest / "heroku").exists()
        readme = (dest / "README.md").read_text(encoding="utf-8")
        assert readme == "# DemoApp\nScope: @demo-app\n"
        assert report.exit_code() == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_heroku_variant(self, tmp_path: Path, mini_settings: EngineSettings):
        dest = tmp_path / "demo-app"
        report = await Pipeline(mini_settings).scaffold("demo-app", dest, {"host": "heroku"})

        assert report.success
        assert "heroku/Procfile" in report.created
        assert "vercel.json" not in report.created
        assert "Deployed on heroku." in (dest / "README.md").read_text(encoding="utf-8")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, mini_project: Path, mini_settings: EngineSettings):
        report = await Pipeline(mini_settings).scaffold(
            "demo-app", mini_project, {"host": "vercel"}
        )
        assert report.success
        assert report.created == [] and report.overwritten == []
        assert "stackstamp.json" in report.unchanged

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_conflicting_rerun_aborts(self, mini_project: Path, mini_settings: EngineSettings):
        before = (mini_project / "README.md").read_text(encoding="utf-8")
        report = await Pipeline(mini_settings).scaffold(
            "demo-app", mini_project, {"host": "heroku"}
        )
        assert report.state == "Aborted"
        assert report.failed_state == "Materializing"
        assert report.error_type == FileConflictError.__name__
        assert report.conflicts == ["README.md", "stackstamp.json"]
        assert report.exit_code() == 2
        assert not (mini_project / "heroku").exists()
        assert (mini_project / "README.md").read_text(encoding="utf-8") == before

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_force_overwrites(self, mini_project: Path, mini_settings: EngineSettings):
        report = await Pipeline(mini_settings).scaffold(
            "demo-app", mini_project, {"host": "heroku"}, force=True
        )
        assert report.success
        assert report.overwritten == ["README.md", "stackstamp.json"]
        assert (mini_project / "heroku" / "Procfile").is_file()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_invalid_options_write_nothing(self, tmp_path: Path, mini_settings):
        dest = tmp_path / "demo-app"
        report = await Pipeline(mini_settings).scaffold(
            "demo-app", dest, {"host": "aws", "apiStyle": "soap"}
        )
        assert report.state == "Aborted" and report.failed_state == "Validating"
        assert len(report.error_items) == 2
        assert report.exit_code() == 1
        assert not dest.exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_option_in_corpus(self, tmp_path: Path, mini_corpus, mini_settings):
        write(mini_corpus / "app", "bad.txt", """
            <%? if colour == "red" %>
            red
            <%? endif %>
        """)
        dest = tmp_path / "demo-app"
        report = await Pipeline(mini_settings).scaffold("demo-app", dest)
        assert report.failed_state == "Rendering"
        assert report.error_items == ["bad.txt: unknown option 'colour'"]
        assert report.exit_code() == 3
        assert not dest.exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unresolved_placeholders_reported_together(
        self, tmp_path: Path, mini_corpus, mini_settings
    ):
        write(mini_corpus / "app", "a.txt", "<%= nope %>\n")
        write(mini_corpus / "app", "b/%alsoNope%.txt", "x\n")
        dest = tmp_path / "demo-app"
        report = await Pipeline(mini_settings).scaffold("demo-app", dest)
        assert report.error_type == "UnresolvedPlaceholderError"
        assert len(report.error_items) == 2
        assert not dest.exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_corpus(self, tmp_path: Path):
        settings = EngineSettings(template_dir=tmp_path / "nowhere")
        report = await Pipeline(settings).scaffold("demo-app", tmp_path / "demo-app")
        assert report.error_type == "TemplateLoadError"
        assert report.exit_code() == 3


# ---------------------------------------------------------------------------
# generate
# ---------------------------------------------------------------------------


class TestGenerate:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_files_and_insertions(self, mini_project: Path, mini_settings):
        report = await Pipeline(mini_settings).generate("widget", "lineItem", mini_project)

        assert report.success and report.state == "Done"
        assert report.created == ["src/widgets/LineItem.ts"]
        assert [o.status for o in report.insertions] == [InsertionStatus.APPLIED] * 2
        registry = (mini_project / "src" / "registry.ts").read_text(encoding="utf-8")
        assert registry == (
            "import { lineItem } from './widgets/LineItem';\n"
            "// @stackstamp:imports\n"
            "\n"
            "export const widgets = [\n"
            "  // @stackstamp:widgets:start\n"
            "  lineItem,\n"
            "  // @stackstamp:widgets:end\n"
            "];\n"
        )
        assert (mini_project / ".stackstamp" / "generation-record.json").is_file()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rerun_is_a_no_op(self, mini_project: Path, mini_settings):
        pipeline = Pipeline(mini_settings)
        await pipeline.generate("widget", "lineItem", mini_project)
        registry = (mini_project / "src" / "registry.ts").read_text(encoding="utf-8")

        report = await pipeline.generate("widget", "lineItem", mini_project)
        assert report.success
        assert report.unchanged == ["src/widgets/LineItem.ts"]
        assert [o.status for o in report.insertions] == [InsertionStatus.SKIPPED] * 2
        assert (mini_project / "src" / "registry.ts").read_text(encoding="utf-8") == registry

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_second_subject_appends(self, mini_project: Path, mini_settings):
        pipeline = Pipeline(mini_settings)
        await pipeline.generate("widget", "lineItem", mini_project)
        await pipeline.generate("widget", "invoice", mini_project)
        registry = (mini_project / "src" / "registry.ts").read_text(encoding="utf-8")
        assert "  lineItem,\n  invoice,\n  // @stackstamp:widgets:end" in registry

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_generator(self, mini_project: Path, mini_settings):
        report = await Pipeline(mini_settings).generate("gizmo", "x", mini_project)
        assert report.error_type == "UnknownGeneratorError"
        assert report.exit_code() == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_not_a_project(self, tmp_path: Path, mini_settings):
        report = await Pipeline(mini_settings).generate("widget", "x", tmp_path)
        assert report.error_type == "MissingConfigError"
        assert report.failed_state == "Validating"
        assert report.exit_code() == 1
        assert list(tmp_path.iterdir()) == [tmp_path / "corpus"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unavailable_generator(self, mini_project: Path, mini_settings):
        report = await Pipeline(mini_settings).generate("heroku-widget", "x", mini_project)
        assert report.error_type == "ConfigValidationError"
        assert not (mini_project / "src" / "heroku").exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_conflict_blocks_insertions(self, mini_project: Path, mini_settings):
        write(mini_project, "src/widgets/LineItem.ts", "// hand written\n")
        registry = (mini_project / "src" / "registry.ts").read_text(encoding="utf-8")

        report = await Pipeline(mini_settings).generate("widget", "lineItem", mini_project)
        assert report.exit_code() == 2
        assert report.conflicts == ["src/widgets/LineItem.ts"]
        assert report.insertions == []
        assert (mini_project / "src" / "registry.ts").read_text(encoding="utf-8") == registry

        forced = await Pipeline(mini_settings).generate(
            "widget", "lineItem", mini_project, force=True
        )
        assert forced.overwritten == ["src/widgets/LineItem.ts"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_anchor_is_a_warning(self, mini_project: Path, mini_settings):
        report = await run_generator(
            "orphan", "stray", mini_project, settings=mini_settings
        )
        assert report.success
        assert report.created == ["src/orphans/Stray.ts"]
        assert len(report.warnings) == 1
        assert report.warnings[0].fragment == "export * from './orphans/Stray';"
        assert report.exit_code() == 0
        assert report.exit_code(strict_anchors=True) == 4

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_corrupt_record(self, mini_project: Path, mini_settings):
        write(mini_project, ".stackstamp/generation-record.json", "{broken")
        report = await Pipeline(mini_settings).generate("widget", "lineItem", mini_project)
        assert report.error_type == "StackstampIOError"
        assert not (mini_project / "src" / "widgets").exists()


# ---------------------------------------------------------------------------
# RunReport
# ---------------------------------------------------------------------------


class TestRunReport:
    @pytest.mark.unit
    def test_record_error(self):
        report = RunReport(command="scaffold", state="Materializing")
        report.record_error(FileConflictError(["a", "b"]))
        assert report.state == "Aborted"
        assert report.failed_state == "Materializing"
        assert report.conflicts == ["a", "b"]
        assert report.exit_code(strict_anchors=True) == 2

    @pytest.mark.unit
    def test_record_partial_write_keeps_committed_files(self):
        report = RunReport(command="scaffold", state="Materializing")
        failure = StackstampIOError("out/b.txt", "disk full")
        report.record_error(PartialWriteError([failure], ["a.txt"], ["c.txt"]))
        assert report.state == "Aborted"
        assert report.created == ["a.txt"]
        assert report.overwritten == ["c.txt"]
        assert report.error_items == ["out/b.txt: disk full"]
        assert report.exit_code() == 3

    @pytest.mark.unit
    def test_render_report_handles_markup_in_paths(self):
        report = RunReport(
            command="generate",
            subject="page invoice",
            created=["src/pages/invoices/[id].tsx"],
            insertions=[
                InsertionOutcome(
                    target="src/[x].ts",
                    status=InsertionStatus.WARNED,
                    detail="Anchor '[a]' not found",
                    fragment="[b]",
                )
            ],
        )
        render_report(report)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def run_cli(*argv: str) -> int:
    with pytest.raises(SystemExit) as excinfo:
        main(list(argv))
    return excinfo.value.code


class TestCLI:
    @pytest.mark.integration
    def test_exit_codes(self, tmp_path: Path, mini_corpus: Path):
        templates = ("--templates", str(mini_corpus))
        dest = str(tmp_path / "demo-app")

        assert run_cli(*templates, "scaffold", "demo-app", "--dest", dest, "--non-interactive") == 0
        assert run_cli(*templates, "scaffold", "demo-app", "--dest", dest, "--non-interactive") == 0
        assert (
            run_cli(
                *templates, "scaffold", "demo-app", "--dest", dest,
                "--host", "heroku", "--non-interactive",
            )
            == 2
        )
        assert (
            run_cli(
                *templates, "scaffold", "demo-app", "--dest", dest,
                "--host", "heroku", "--vercel-analytics", "on", "--non-interactive",
            )
            == 1
        )
        assert run_cli(*templates, "generate", "widget", "invoice", "--project", dest) == 0
        assert run_cli(*templates, "generate", "gizmo", "invoice", "--project", dest) == 1
        assert run_cli(*templates, "generate", "orphan", "stray", "--project", dest) == 0
        assert (
            run_cli(
                *templates, "generate", "orphan", "stray", "--project", dest, "--strict-anchors"
            )
            == 4
        )
        assert run_cli(*templates, "list") == 0

    @pytest.mark.integration
    def test_broken_registry(self, tmp_path: Path, mini_corpus: Path):
        (mini_corpus / "generators.yaml").write_text("generators: [\n", encoding="utf-8")
        assert run_cli("--templates", str(mini_corpus), "list") == 3

    @pytest.mark.unit
    def test_invalid_settings(self, monkeypatch):
        monkeypatch.setenv("STACKSTAMP_MAX_WORKERS", "0")
        assert run_cli("list") == 1
