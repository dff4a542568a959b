"""stackstamp run orchestrator and command-line entry point.

Drives the two run state machines:

scaffold:  Validating -> Rendering -> Materializing -> Done
generate:  Validating -> Rendering -> Materializing -> Inserting -> Done

Any stage may end the run in ``Aborted``.  Everything up to and including
Rendering is a dry pass over in-memory data; the first filesystem write
happens in Materializing, so validation failures never leave side effects.

Usage::

    stackstamp scaffold my-app --host heroku --api graphql
    stackstamp generate api-router invoice --project ./my-app
    stackstamp list
"""

from __future__ import annotations

import asyncio
import sys
import time
from collections.abc import Mapping
from pathlib import Path

from pydantic import ValidationError
from rich.markup import escape
from rich.table import Table

from stackstamp.config import EngineSettings
from stackstamp.errors import StackstampError, TemplateRenderError
from stackstamp.prompts import ask_options, should_prompt
from stackstamp.report import RunReport, render_report
from stackstamp.scaffolder.generator import ProjectGenerator
from stackstamp.scaffolder.insertion import GenerationRecord, apply_insertions
from stackstamp.scaffolder.materializer import Materializer, plan
from stackstamp.scaffolder.options import (
    OPTION_TABLE,
    load_config,
    resolve_config,
    validate_option_table,
)
from stackstamp.scaffolder.registry import GeneratorRunner, load_registry
from stackstamp.scaffolder.templates import TemplateRenderer
from stackstamp.utils import (
    console,
    is_within,
    print_error,
    print_state_header,
    print_success,
    print_warning,
)

# CLI flag -> option name
OPTION_FLAGS: dict[str, str] = {
    "host": "host",
    "api": "apiStyle",
    "database": "database",
    "vercel_analytics": "vercelAnalytics",
}


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class Pipeline:
    """Runs scaffold and generate commands and reports their outcome.

    Every engine error is caught here and recorded on the returned
    :class:`RunReport`; callers never see a ``StackstampError``.

    Attributes:
        settings: Engine settings shared by every stage.
        renderer: Substitution engine shared by every stage.
    """

    def __init__(self, settings: EngineSettings | None = None) -> None:
        self.settings = settings or EngineSettings()
        self.renderer = TemplateRenderer()

    def _enter(self, report: RunReport, state: str) -> None:
        report.state = state
        if self.settings.verbose:
            print_state_header(state)

    def _abort(self, report: RunReport, exc: StackstampError) -> None:
        report.record_error(exc)
        if self.settings.verbose:
            print_state_header("Aborted")

    # ------------------------------------------------------------------
    # scaffold
    # ------------------------------------------------------------------

    async def scaffold(
        self,
        app_name: str,
        dest: str | Path | None = None,
        flags: Mapping[str, str | None] | None = None,
        answers: Mapping[str, str | None] | None = None,
        *,
        force: bool = False,
        package_scope: str | None = None,
    ) -> RunReport:
        """Create a new project from the ``app/`` corpus.

        Args:
            app_name: Project slug; also the default destination directory.
            dest: Destination directory (default ``./<app_name>``).
            flags: Option values from the command line.
            answers: Option values collected interactively.
            force: Overwrite conflicting files instead of aborting.
            package_scope: npm scope (default ``@<app_name>``).
        """
        root = Path(dest) if dest else Path.cwd() / app_name
        report = RunReport(command="scaffold", subject=app_name, destination=str(root))
        start = time.monotonic()
        try:
            self._enter(report, "Validating")
            validate_option_table(OPTION_TABLE)
            config = resolve_config(
                app_name, flags, answers, package_scope=package_scope
            )
            report.options = dict(config.options)

            self._enter(report, "Rendering")
            rendered = await ProjectGenerator(config, self.settings, self.renderer).render()
            write_plan = await asyncio.to_thread(plan, rendered, root)

            self._enter(report, "Materializing")
            result = await Materializer(self.settings.max_workers).apply(
                write_plan, force=force
            )
            report.record_materialized(result)

            self._enter(report, "Done")
        except StackstampError as exc:
            self._abort(report, exc)
        finally:
            report.duration = time.monotonic() - start
        return report

    # ------------------------------------------------------------------
    # generate
    # ------------------------------------------------------------------

    async def generate(
        self,
        name: str,
        subject: str,
        project_root: str | Path = ".",
        *,
        force: bool = False,
    ) -> RunReport:
        """Run generator *name* for *subject* inside an existing project.

        Missing or ambiguous insertion anchors do not abort the run; they are
        reported as warnings carrying the fragment to apply by hand.
        """
        root = Path(project_root)
        report = RunReport(
            command="generate", subject=f"{name} {subject}", destination=str(root)
        )
        start = time.monotonic()
        try:
            self._enter(report, "Validating")
            registry = load_registry(self.settings.registry_path)
            registry.check_expressions(set(OPTION_TABLE))
            spec = registry.get(name)
            config = load_config(self.settings.config_path(root))
            report.options = dict(config.options)
            runner = GeneratorRunner(spec, config, self.settings, self.renderer)
            runner.check_available()
            context = runner.build_context(subject)
            record = await asyncio.to_thread(
                GenerationRecord.load, self.settings.record_path(root)
            )

            self._enter(report, "Rendering")
            rendered, planned = await runner.render(context)
            escaping = [
                point.target
                for point, _ in planned
                if Path(point.target).is_absolute() or not is_within(root, root / point.target)
            ]
            if escaping:
                raise TemplateRenderError(
                    [f"{t!r}: insertion target resolves outside the project" for t in escaping]
                )
            write_plan = await asyncio.to_thread(plan, rendered, root)

            self._enter(report, "Materializing")
            result = await Materializer(self.settings.max_workers).apply(
                write_plan, force=force
            )
            report.record_materialized(result)

            self._enter(report, "Inserting")
            report.insertions = await apply_insertions(
                root, planned, record, max_workers=self.settings.max_workers
            )

            self._enter(report, "Done")
        except StackstampError as exc:
            self._abort(report, exc)
        finally:
            report.duration = time.monotonic() - start
        return report


async def run_generator(
    name: str,
    subject: str,
    project_root: str | Path,
    *,
    force: bool = False,
    settings: EngineSettings | None = None,
) -> RunReport:
    """Convenience wrapper around :meth:`Pipeline.generate`."""
    return await Pipeline(settings).generate(name, subject, project_root, force=force)


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def _list_generators(settings: EngineSettings) -> int:
    try:
        registry = load_registry(settings.registry_path)
    except StackstampError as exc:
        print_error(escape(str(exc)))
        return exc.exit_code

    table = Table(title="Generators", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="bold", no_wrap=True)
    table.add_column("Description")
    table.add_column("Requires", style="dim")
    table.add_column("Insertions", justify="right")
    for spec in registry:
        table.add_row(
            spec.name,
            spec.description,
            spec.when or "-",
            str(len(spec.insertions)),
        )
    console.print(table)
    return 0


def _build_parser():
    import argparse

    parser = argparse.ArgumentParser(
        prog="stackstamp",
        description="stackstamp -- full-stack project scaffolder and code generators",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  stackstamp scaffold my-app --host heroku --api graphql\n"
            "  stackstamp generate page invoice --project ./my-app\n"
            "  stackstamp list\n"
        ),
    )
    parser.add_argument(
        "--templates",
        default=None,
        help="Template corpus directory (default: the packaged templates)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        default=None,
        help="Print a header for every run state",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    scaffold = sub.add_parser("scaffold", help="Create a new project")
    scaffold.add_argument("app_name", help="Project slug, e.g. my-app")
    scaffold.add_argument(
        "--dest", "-o",
        default=None,
        help="Destination directory (default: ./<app-name>)",
    )
    for flag, option in OPTION_FLAGS.items():
        spec = OPTION_TABLE[option]
        scaffold.add_argument(
            f"--{flag.replace('_', '-')}",
            dest=flag,
            default=None,
            help=f"{spec.description} ({'|'.join(spec.choices)}; default: {spec.default})",
        )
    scaffold.add_argument(
        "--package-scope",
        default=None,
        help="npm package scope (default: @<app-name>)",
    )
    scaffold.add_argument(
        "--non-interactive",
        action="store_true",
        help="Never prompt; unspecified options take their defaults",
    )
    scaffold.add_argument(
        "--force", action="store_true", help="Overwrite conflicting files"
    )

    generate = sub.add_parser("generate", help="Run a generator in an existing project")
    generate.add_argument("generator", help="Generator name (see 'stackstamp list')")
    generate.add_argument("subject", help="Subject name, e.g. invoice or LineItem")
    generate.add_argument(
        "--project", "-p",
        default=".",
        help="Project root (default: current directory)",
    )
    generate.add_argument(
        "--force", action="store_true", help="Overwrite conflicting files"
    )
    generate.add_argument(
        "--strict-anchors",
        action="store_true",
        help="Exit with status 4 when an insertion anchor is missing",
    )

    sub.add_parser("list", help="Show the available generators")
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the ``stackstamp`` console script."""
    args = _build_parser().parse_args(argv)

    try:
        settings = EngineSettings.from_env(
            template_dir=Path(args.templates) if args.templates else None,
            verbose=args.verbose,
        )
    except (ValidationError, ValueError) as exc:
        print_error(f"Error: invalid engine settings: {escape(str(exc))}")
        sys.exit(1)

    if args.command == "list":
        sys.exit(_list_generators(settings))

    pipeline = Pipeline(settings)
    strict = False
    if args.command == "scaffold":
        flags = {option: getattr(args, flag) for flag, option in OPTION_FLAGS.items()}
        answers: dict[str, str] = {}
        if should_prompt(args.non_interactive):
            answers = ask_options(OPTION_TABLE, flags)
        report = asyncio.run(
            pipeline.scaffold(
                args.app_name,
                args.dest,
                flags,
                answers,
                force=args.force,
                package_scope=args.package_scope,
            )
        )
    else:
        strict = args.strict_anchors
        report = asyncio.run(
            pipeline.generate(
                args.generator, args.subject, args.project, force=args.force
            )
        )

    render_report(report)
    code = report.exit_code(strict_anchors=strict)
    if code == 0:
        print_success(f"{args.command} completed successfully!")
    elif report.success:
        print_warning("Completed with insertion warnings.")
    else:
        print_error(f"{args.command} failed.")
    sys.exit(code)


if __name__ == "__main__":
    main()
