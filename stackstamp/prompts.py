"""Interactive option prompts for ``stackstamp scaffold``."""

from __future__ import annotations

import sys
from collections.abc import Mapping

from rich.prompt import Prompt

from stackstamp.scaffolder.conditions import parse_expression
from stackstamp.scaffolder.options import OptionSpec
from stackstamp.utils import console


def should_prompt(non_interactive: bool) -> bool:
    """Prompts run only on a terminal and only when not disabled."""
    return not non_interactive and sys.stdin.isatty()


def ask_options(
    table: Mapping[str, OptionSpec],
    preset: Mapping[str, str | None] | None = None,
) -> dict[str, str]:
    """Ask for every option that was not preset on the command line.

    Options with a single choice are never asked.  Dependent options are
    only asked when their ``requires`` condition holds for the values known
    so far (preset flags, earlier answers, then defaults).
    """
    preset = {k: v for k, v in (preset or {}).items() if v is not None}
    answers: dict[str, str] = {}
    for name, spec in table.items():
        if name in preset or len(spec.choices) < 2:
            continue
        if spec.requires:
            known = {n: s.default for n, s in table.items()}
            known.update(answers)
            known.update(preset)
            if not parse_expression(spec.requires).evaluate(known):
                continue
        label = f"[bold]{name}[/bold]"
        if spec.description:
            label += f" [dim]({spec.description})[/dim]"
        answers[name] = Prompt.ask(
            label, choices=list(spec.choices), default=spec.default, console=console
        )
    return answers
