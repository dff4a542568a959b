"""Conditional rendering of template files.

Templates carry two levels of inclusion directive:

* **File scope** -- the first line of a file is ``<%# if EXPR %>`` and the
  last non-empty line is ``<%# endif %>``.  When ``EXPR`` is false the whole
  file is dropped.
* **Region scope** -- standalone lines ``<%? if EXPR %>`` ... ``<%? endif %>``
  guard a span of lines.  Regions nest.  When ``EXPR`` is false the span is
  stripped.

Guard lines themselves never appear in rendered output.

``EXPR`` is a tiny declarative language over the project options::

    expr   := term ("or" term)*
    term   := factor ("and" factor)*
    factor := "(" expr ")"
            | IDENT ("==" | "!=") STRING
            | IDENT ["not"] "in" "[" STRING ("," STRING)* "]"

Expressions are parsed into frozen dataclasses and evaluated by a pure
function; nothing is ever executed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Mapping, Union

from stackstamp.errors import TemplateRenderError
from stackstamp.scaffolder.loader import TemplateNode

FILE_OPEN_RE = re.compile(r"^\s*<%#\s*if\s+(?P<expr>.+?)\s*%>\s*$")
FILE_CLOSE_RE = re.compile(r"^\s*<%#\s*endif\s*%>\s*$")
REGION_OPEN_RE = re.compile(r"^\s*<%\?\s*if\s+(?P<expr>.+?)\s*%>\s*$")
REGION_CLOSE_RE = re.compile(r"^\s*<%\?\s*endif\s*%>\s*$")

OptionValues = Mapping[str, Union[str, None]]


# ---------------------------------------------------------------------------
# Expression AST
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Compare:
    """``option == "value"`` or ``option != "value"``."""

    option: str
    value: str
    negate: bool = False

    def evaluate(self, options: OptionValues) -> bool:
        result = options.get(self.option) == self.value
        return not result if self.negate else result

    def options(self) -> set[str]:
        return {self.option}


@dataclass(frozen=True)
class Member:
    """``option in ["a", "b"]`` or ``option not in [...]``."""

    option: str
    values: tuple[str, ...]
    negate: bool = False

    def evaluate(self, options: OptionValues) -> bool:
        result = options.get(self.option) in self.values
        return not result if self.negate else result

    def options(self) -> set[str]:
        return {self.option}


@dataclass(frozen=True)
class And:
    operands: tuple["Expr", ...]

    def evaluate(self, options: OptionValues) -> bool:
        return all(op.evaluate(options) for op in self.operands)

    def options(self) -> set[str]:
        return set().union(*(op.options() for op in self.operands))


@dataclass(frozen=True)
class Or:
    operands: tuple["Expr", ...]

    def evaluate(self, options: OptionValues) -> bool:
        return any(op.evaluate(options) for op in self.operands)

    def options(self) -> set[str]:
        return set().union(*(op.options() for op in self.operands))


Expr = Union[Compare, Member, And, Or]


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


_TOKEN_RE = re.compile(
    r"""\s*(?:
        (?P<string>"[^"]*"|'[^']*')
      | (?P<op>==|!=|\(|\)|\[|\]|,)
      | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
    )""",
    re.VERBOSE,
)

_KEYWORDS = {"and", "or", "not", "in"}


class ExpressionSyntaxError(ValueError):
    """Raised by :func:`parse_expression`; converted to TemplateRenderError."""


def _tokenize(text: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None or match.end() == pos:
            raise ExpressionSyntaxError(f"unexpected character at {pos}: {text[pos:]!r}")
        pos = match.end()
        if match.group("string") is not None:
            tokens.append(("string", match.group("string")[1:-1]))
        elif match.group("op") is not None:
            tokens.append(("op", match.group("op")))
        else:
            word = match.group("ident")
            tokens.append(("kw" if word in _KEYWORDS else "ident", word))
    return tokens


class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    def peek(self) -> tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self, kind: str, value: str | None = None) -> str:
        token = self.peek()
        if token is None or token[0] != kind or (value is not None and token[1] != value):
            wanted = value or kind
            found = token[1] if token else "end of expression"
            raise ExpressionSyntaxError(f"expected {wanted!r}, found {found!r}")
        self.pos += 1
        return token[1]

    def accept(self, kind: str, value: str) -> bool:
        if self.peek() == (kind, value):
            self.pos += 1
            return True
        return False

    def parse(self) -> Expr:
        if not self.tokens:
            raise ExpressionSyntaxError("empty expression")
        expr = self.expr()
        if self.peek() is not None:
            raise ExpressionSyntaxError(f"unexpected trailing token {self.peek()[1]!r}")
        return expr

    def expr(self) -> Expr:
        operands = [self.term()]
        while self.accept("kw", "or"):
            operands.append(self.term())
        return operands[0] if len(operands) == 1 else Or(tuple(operands))

    def term(self) -> Expr:
        operands = [self.factor()]
        while self.accept("kw", "and"):
            operands.append(self.factor())
        return operands[0] if len(operands) == 1 else And(tuple(operands))

    def factor(self) -> Expr:
        if self.accept("op", "("):
            inner = self.expr()
            self.take("op", ")")
            return inner

        option = self.take("ident")
        if self.accept("op", "=="):
            return Compare(option, self.take("string"))
        if self.accept("op", "!="):
            return Compare(option, self.take("string"), negate=True)

        negate = self.accept("kw", "not")
        self.take("kw", "in")
        self.take("op", "[")
        values = [self.take("string")]
        while self.accept("op", ","):
            values.append(self.take("string"))
        self.take("op", "]")
        return Member(option, tuple(values), negate=negate)


def parse_expression(text: str) -> Expr:
    """Parse a condition expression.

    Raises:
        ExpressionSyntaxError: If *text* does not match the grammar.
    """
    return _Parser(text).parse()


# ---------------------------------------------------------------------------
# Directive scanning
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Directive:
    line: int
    kind: str  # "file-open" | "file-close" | "region-open" | "region-close"
    expr: Expr | None = None


def _scan(path: str, content: str) -> tuple[list[str], list[_Directive]]:
    """Split *content* into lines and locate every directive line.

    Raises TemplateRenderError listing every malformed expression and every
    structural problem (misplaced file guards, unbalanced regions).
    """
    lines = content.splitlines(keepends=True)
    directives: list[_Directive] = []
    problems: list[str] = []

    for index, line in enumerate(lines):
        for kind, regex in (
            ("file-open", FILE_OPEN_RE),
            ("region-open", REGION_OPEN_RE),
        ):
            match = regex.match(line)
            if match:
                try:
                    expr = parse_expression(match.group("expr"))
                except ExpressionSyntaxError as exc:
                    problems.append(f"{path}:{index + 1}: {exc}")
                    expr = None
                directives.append(_Directive(index, kind, expr))
                break
        else:
            if FILE_CLOSE_RE.match(line):
                directives.append(_Directive(index, "file-close"))
            elif REGION_CLOSE_RE.match(line):
                directives.append(_Directive(index, "region-close"))

    file_opens = [d for d in directives if d.kind == "file-open"]
    file_closes = [d for d in directives if d.kind == "file-close"]
    last_content_line = max(
        (i for i, line in enumerate(lines) if line.strip()), default=-1
    )
    if len(file_opens) > 1 or len(file_closes) > 1 or len(file_opens) != len(file_closes):
        problems.append(f"{path}: file-scope guard must appear exactly once with a matching endif")
    elif file_opens:
        if file_opens[0].line != 0:
            problems.append(f"{path}:{file_opens[0].line + 1}: file-scope guard must be the first line")
        if file_closes[0].line != last_content_line:
            problems.append(f"{path}:{file_closes[0].line + 1}: file-scope endif must be the last line")

    depth = 0
    for directive in directives:
        if directive.kind == "region-open":
            depth += 1
        elif directive.kind == "region-close":
            depth -= 1
            if depth < 0:
                problems.append(f"{path}:{directive.line + 1}: endif without matching if")
                depth = 0
    if depth > 0:
        problems.append(f"{path}: {depth} unclosed region guard(s)")

    if problems:
        raise TemplateRenderError(problems)
    return lines, directives


def scan_references(
    nodes: Iterable[TemplateNode],
) -> tuple[dict[str, set[str]], list[str]]:
    """Return ``({option: {paths referencing it}}, problems)`` for a corpus.

    Files with malformed directives contribute their problems and no
    references; every other file is still scanned.
    """
    references: dict[str, set[str]] = {}
    problems: list[str] = []
    for node in nodes:
        if node.is_dir or node.content is None:
            continue
        try:
            _, directives = _scan(node.path, node.content)
        except TemplateRenderError as exc:
            problems.extend(exc.items)
            continue
        for directive in directives:
            if directive.expr is None:
                continue
            for option in directive.expr.options():
                references.setdefault(option, set()).add(node.path)
    return references, problems


def collect_references(nodes: Iterable[TemplateNode]) -> dict[str, set[str]]:
    """Return ``{option: {paths referencing it}}`` for every directive.

    Problems in any file are accumulated and raised together as one
    ``TemplateRenderError`` so the dry pass reports the whole corpus.
    """
    references, problems = scan_references(nodes)
    if problems:
        raise TemplateRenderError(problems)
    return references


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def render_conditionals(node: TemplateNode, options: OptionValues) -> str | None:
    """Apply file and region directives of *node* against *options*.

    Returns:
        The content with guarded regions resolved and guard lines removed, or
        ``None`` if the file-scope directive evaluates false.

    Raises:
        TemplateRenderError: On malformed or unbalanced directives.
    """
    if node.content is None:
        return None
    lines, directives = _scan(node.path, node.content)
    by_line = {d.line: d for d in directives}

    file_open = next((d for d in directives if d.kind == "file-open"), None)
    if file_open is not None and not file_open.expr.evaluate(options):
        return None

    output: list[str] = []
    # Each entry is whether the enclosing region is active.
    stack: list[bool] = []
    for index, line in enumerate(lines):
        directive = by_line.get(index)
        if directive is None:
            if all(stack):
                output.append(line)
            continue
        if directive.kind == "region-open":
            stack.append(all(stack) and directive.expr.evaluate(options))
        elif directive.kind == "region-close":
            stack.pop()
        # file-open / file-close lines are dropped
    return "".join(output)
