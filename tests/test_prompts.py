"""Unit tests for interactive option prompts (stackstamp.prompts)."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from stackstamp.prompts import ask_options, should_prompt
from stackstamp.scaffolder.options import OPTION_TABLE


def scripted(answers: dict[str, str]) -> MagicMock:
    """A ``Prompt.ask`` replacement answering by option name."""

    def _ask(label, choices, default, console):
        for name, value in answers.items():
            if label.startswith(f"[bold]{name}[/bold]"):
                assert value in choices
                return value
        return default

    return MagicMock(side_effect=_ask)


def asked(mock: MagicMock) -> list[str]:
    return [c.args[0].split("[/bold]")[0].removeprefix("[bold]") for c in mock.call_args_list]


class TestShouldPrompt:
    @pytest.mark.unit
    def test_non_interactive_never_prompts(self):
        with patch("stackstamp.prompts.sys.stdin") as stdin:
            stdin.isatty.return_value = True
            assert should_prompt(True) is False

    @pytest.mark.unit
    def test_terminal_prompts(self):
        with patch("stackstamp.prompts.sys.stdin") as stdin:
            stdin.isatty.return_value = True
            assert should_prompt(False) is True

    @pytest.mark.unit
    def test_pipe_does_not_prompt(self):
        with patch("stackstamp.prompts.sys.stdin") as stdin:
            stdin.isatty.return_value = False
            assert should_prompt(False) is False


class TestAskOptions:
    @pytest.mark.unit
    def test_asks_every_multi_choice_option(self):
        ask = scripted({"host": "vercel", "apiStyle": "graphql", "vercelAnalytics": "on"})
        with patch("stackstamp.prompts.Prompt.ask", ask):
            answers = ask_options(OPTION_TABLE)
        assert answers == {"host": "vercel", "apiStyle": "graphql", "vercelAnalytics": "on"}
        # single-choice options are never asked
        assert asked(ask) == ["host", "apiStyle", "vercelAnalytics"]

    @pytest.mark.unit
    def test_dependent_option_skipped_after_answer(self):
        ask = scripted({"host": "heroku"})
        with patch("stackstamp.prompts.Prompt.ask", ask):
            answers = ask_options(OPTION_TABLE)
        assert answers == {"host": "heroku", "apiStyle": "trpc"}
        assert "vercelAnalytics" not in asked(ask)

    @pytest.mark.unit
    def test_preset_options_not_asked(self):
        ask = scripted({})
        with patch("stackstamp.prompts.Prompt.ask", ask):
            answers = ask_options(OPTION_TABLE, {"host": "heroku", "apiStyle": None})
        assert answers == {"apiStyle": "trpc"}
        assert asked(ask) == ["apiStyle"]

    @pytest.mark.unit
    def test_defaults_offered(self):
        ask = scripted({})
        with patch("stackstamp.prompts.Prompt.ask", ask):
            ask_options(OPTION_TABLE, {"apiStyle": "trpc"})
        defaults = {c.kwargs["default"] for c in ask.call_args_list}
        assert defaults == {"vercel", "off"}
