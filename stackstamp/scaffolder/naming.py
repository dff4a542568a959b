"""Naming-convention derivation for subject names.

A generator is invoked with a *subject name* ("organization",
"createOrganization", "user-profile", ...).  Templates never derive casing
themselves; they address one of the variants produced by
:func:`subject_variants`.  Pluralisation is driven by the declared rule
tables below (first matching rule wins), with explicit irregular and
uncountable overrides, so every inflection the engine can produce is visible
and testable here.
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Inflection tables
# ---------------------------------------------------------------------------

UNCOUNTABLE: frozenset[str] = frozenset(
    {
        "data",
        "equipment",
        "feedback",
        "fish",
        "information",
        "jeans",
        "metadata",
        "money",
        "news",
        "police",
        "rice",
        "series",
        "sheep",
        "species",
    }
)

# singular -> plural
IRREGULAR: dict[str, str] = {
    "child": "children",
    "foot": "feet",
    "goose": "geese",
    "man": "men",
    "mouse": "mice",
    "move": "moves",
    "ox": "oxen",
    "person": "people",
    "sex": "sexes",
    "tooth": "teeth",
    "woman": "women",
}

_IRREGULAR_SINGULAR: dict[str, str] = {v: k for k, v in IRREGULAR.items()}

PLURAL_RULES: tuple[tuple[str, str], ...] = (
    (r"(quiz)$", r"\1zes"),
    (r"(matr|vert|ind)(?:ix|ex)$", r"\1ices"),
    (r"(octop|vir)us$", r"\1i"),
    (r"(alias|status)$", r"\1es"),
    (r"(bu)s$", r"\1ses"),
    (r"(ax|test)is$", r"\1es"),
    (r"sis$", "ses"),
    (r"(x|ch|ss|sh|zz)$", r"\1es"),
    (r"([^aeiouy]|qu)y$", r"\1ies"),
    (r"(?:([^f])fe|([lr])f)$", r"\1\2ves"),
    (r"s$", "s"),
    (r"$", "s"),
)

SINGULAR_RULES: tuple[tuple[str, str], ...] = (
    (r"(database)s$", r"\1"),
    (r"(quiz)zes$", r"\1"),
    (r"(matr)ices$", r"\1ix"),
    (r"(vert|ind)ices$", r"\1ex"),
    (r"(alias|status)(es)?$", r"\1"),
    (r"(octop|vir)(us|i)$", r"\1us"),
    (r"^(a)x[ie]s$", r"\1xis"),
    (r"(cris|test)(is|es)$", r"\1is"),
    (r"(shoe)s$", r"\1"),
    (r"(o)es$", r"\1"),
    (r"(bus)(es)?$", r"\1"),
    (r"(x|ch|ss|sh|zz)es$", r"\1"),
    (r"(m)ovies$", r"\1ovie"),
    (r"([^aeiouy]|qu)ies$", r"\1y"),
    (r"([lr])ves$", r"\1f"),
    (r"(tive)s$", r"\1"),
    (r"(hive)s$", r"\1"),
    (r"([^f])ves$", r"\1fe"),
    (r"(analy|ba|diagno|parenthe|progno|synop|the)(sis|ses)$", r"\1sis"),
    (r"(ss)$", r"\1"),
    (r"s$", ""),
)

_WORD_RE = re.compile(r"[A-Z]+(?![a-z])|[A-Z]?[a-z]+|\d+")


# ---------------------------------------------------------------------------
# Word-level inflection
# ---------------------------------------------------------------------------


def _inflect(word: str, overrides: dict[str, str], rules: tuple[tuple[str, str], ...]) -> str:
    lower = word.lower()
    if not lower or lower in UNCOUNTABLE:
        return lower
    if lower in overrides:
        return overrides[lower]
    for pattern, replacement in rules:
        if re.search(pattern, lower):
            return re.sub(pattern, replacement, lower, count=1)
    return lower


def pluralize_word(word: str) -> str:
    """Pluralise a single lowercase word."""
    if word.lower() in _IRREGULAR_SINGULAR:
        return word.lower()
    return _inflect(word, IRREGULAR, PLURAL_RULES)


def singularize_word(word: str) -> str:
    """Singularise a single lowercase word."""
    if word.lower() in IRREGULAR:
        return word.lower()
    return _inflect(word, _IRREGULAR_SINGULAR, SINGULAR_RULES)


# ---------------------------------------------------------------------------
# Case conversion
# ---------------------------------------------------------------------------


def split_words(value: str) -> list[str]:
    """Split an identifier in any common casing into lowercase words.

    ``"createOrganization"`` -> ``["create", "organization"]``,
    ``"user-profile"`` -> ``["user", "profile"]``,
    ``"HTTPServer"`` -> ``["http", "server"]``.
    """
    return [w.lower() for w in _WORD_RE.findall(value)]


def _pascal(words: list[str]) -> str:
    return "".join(w[:1].upper() + w[1:] for w in words)


def _camel(words: list[str]) -> str:
    pascal = _pascal(words)
    return pascal[:1].lower() + pascal[1:]


def pascal_case(value: str) -> str:
    """``some-thing`` / ``some_thing`` / ``someThing`` -> ``SomeThing``."""
    return _pascal(split_words(value))


def camel_case(value: str) -> str:
    """``some-thing`` / ``SomeThing`` -> ``someThing``."""
    return _camel(split_words(value))


def kebab_case(value: str) -> str:
    """``SomeThing`` -> ``some-thing``."""
    return "-".join(split_words(value))


def snake_case(value: str) -> str:
    """``SomeThing`` -> ``some_thing``."""
    return "_".join(split_words(value))


def constant_case(value: str) -> str:
    """``someThing`` -> ``SOME_THING``."""
    return snake_case(value).upper()


def pluralize(value: str) -> str:
    """Pluralise the last word of an identifier, returned in camelCase."""
    words = split_words(value)
    if not words:
        return ""
    return _camel(words[:-1] + [pluralize_word(words[-1])])


def singularize(value: str) -> str:
    """Singularise the last word of an identifier, returned in camelCase."""
    words = split_words(value)
    if not words:
        return ""
    return _camel(words[:-1] + [singularize_word(words[-1])])


CASE_FILTERS = {
    "pascal": pascal_case,
    "camel": camel_case,
    "kebab": kebab_case,
    "snake": snake_case,
    "constant": constant_case,
    "plural": pluralize,
    "singular": singularize,
}


# ---------------------------------------------------------------------------
# Subject variants
# ---------------------------------------------------------------------------


def subject_variants(name: str) -> dict[str, str]:
    """Expand a subject name into every case variant templates may address.

    The subject is used as given for the singular forms (a generator invoked
    with ``"users"`` produces ``Users``); ``plural*`` variants inflect the last
    word and ``singular*`` variants un-inflect it.

    Raises:
        ValueError: If *name* contains no identifier characters.
    """
    words = split_words(name)
    if not words:
        raise ValueError(f"subject name {name!r} contains no identifier characters")

    plural_words = words[:-1] + [pluralize_word(words[-1])]
    singular_words = words[:-1] + [singularize_word(words[-1])]

    return {
        "raw": name,
        "pascal": _pascal(words),
        "camel": _camel(words),
        "kebab": "-".join(words),
        "snake": "_".join(words),
        "constant": "_".join(words).upper(),
        "plural": _camel(plural_words),
        "pluralPascal": _pascal(plural_words),
        "pluralKebab": "-".join(plural_words),
        "pluralSnake": "_".join(plural_words),
        "singular": _camel(singular_words),
        "singularPascal": _pascal(singular_words),
    }
