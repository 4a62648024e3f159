"""Translate SCIM filter expressions (RFC 7644 §3.4.2.2) into IDM ``_queryFilter``.

The filter is parsed into a small immutable AST and rendered in the
backend's syntax:

    name.familyName co "Smith" and active eq true
    -> (sn co "Smith" and accountStatus eq "active")

Grouping rules:
    - a sub-expression wrapped in one balanced pair of parentheses is
      parsed from its interior
    - outside parentheses and string literals, the first ``and``/``or``
      found scanning left to right splits the expression; there is no
      precedence between the two, so ``a pr or b pr and c pr`` groups as
      ``a pr or (b pr and c pr)``
    - a leading ``not`` negates the rest of the expression

Any syntax problem raises FilterTranslationError naming the fragment that
could not be parsed. Nothing is ever defaulted to match-all or match-none
except an empty filter.
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Mapping, Optional, Union

MATCH_ALL = "true"

OPERATORS = frozenset({"eq", "ne", "co", "sw", "ew", "gt", "ge", "lt", "le", "pr"})

ACTIVE_ATTRIBUTE = "active"
ACTIVE_VALUES = {"true": '"active"', "false": '"inactive"'}

_COMPARISON_RE = re.compile(
    r"^(?P<path>[A-Za-z_$][\w.:$-]*)\s+(?P<op>[A-Za-z]+)(?:\s+(?P<value>.+))?$",
    re.DOTALL,
)
_NOT_RE = re.compile(r"^not(?:\s+|(?=\())", re.IGNORECASE)
_NUMBER_RE = re.compile(r"^-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?$")
_QUOTED_RE = re.compile(r'^"(?:[^"\\]|\\.)*"$', re.DOTALL)
_LITERALS = frozenset({"true", "false", "null"})


class FilterTranslationError(ValueError):
    """Filter could not be parsed.

    Attributes:
        fragment: The part of the filter that failed to parse
        reason: Why it failed
    """

    def __init__(self, fragment: str, reason: str):
        self.fragment = fragment
        self.reason = reason
        super().__init__(f"{reason}: '{fragment}'")


# ─────────────────────────────────────────────────────────────────────────────
# AST
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Comparison:
    attribute_path: str
    operator: str
    value: Optional[str] = None


@dataclass(frozen=True)
class And:
    left: "FilterExpression"
    right: "FilterExpression"


@dataclass(frozen=True)
class Or:
    left: "FilterExpression"
    right: "FilterExpression"


@dataclass(frozen=True)
class Not:
    inner: "FilterExpression"


FilterExpression = Union[Comparison, And, Or, Not]


# ─────────────────────────────────────────────────────────────────────────────
# Parsing
# ─────────────────────────────────────────────────────────────────────────────

def _check_balanced(text: str) -> None:
    depth = 0
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise FilterTranslationError(text, "Unbalanced parentheses")
    if in_string:
        raise FilterTranslationError(text, "Unterminated string literal")
    if depth != 0:
        raise FilterTranslationError(text, "Unbalanced parentheses")


def _find_logical_operator(text: str) -> Optional[tuple[int, str]]:
    """Position and name of the first top-level ``and``/``or``, if any."""
    depth = 0
    in_string = False
    escaped = False
    lowered = text.lower()
    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        elif depth == 0 and index > 0 and (text[index - 1].isspace() or text[index - 1] == ")"):
            for word in ("and", "or"):
                end = index + len(word)
                if lowered.startswith(word, index) and end < len(text) and (text[end].isspace() or text[end] == "("):
                    return index, word
    return None


def _closing_paren(text: str, start: int) -> int:
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                return index
    return -1


def _parse_comparison(text: str) -> Comparison:
    match = _COMPARISON_RE.match(text)
    if not match:
        raise FilterTranslationError(text, "Invalid filter syntax")

    path = match.group("path")
    operator = match.group("op").lower()
    value = match.group("value")
    value = value.strip() if value is not None else None

    if operator not in OPERATORS:
        raise FilterTranslationError(text, f"Unsupported operator '{match.group('op')}'")
    if operator == "pr":
        if value:
            raise FilterTranslationError(text, "Operator 'pr' does not take a value")
        return Comparison(path, operator)
    if not value:
        raise FilterTranslationError(text, f"Operator '{operator}' requires a value")
    if value.startswith('"') and not _QUOTED_RE.match(value):
        raise FilterTranslationError(text, "Malformed string literal")
    return Comparison(path, operator, value)


def _parse_term(text: str) -> FilterExpression:
    """Parse an expression with no top-level ``and``/``or``."""
    expr = text.strip()
    while expr.startswith("(") and _closing_paren(expr, 0) == len(expr) - 1:
        expr = expr[1:-1].strip()
        if not expr:
            raise FilterTranslationError(text, "Empty expression")
        if _find_logical_operator(expr) is not None:
            return _parse(expr)

    match = _NOT_RE.match(expr)
    if match:
        return Not(_parse(expr[match.end():]))

    return _parse_comparison(expr)


def _parse(text: str) -> FilterExpression:
    expr = text.strip()
    if not expr:
        raise FilterTranslationError(text, "Empty expression")

    # a and b or c -> And(a, Or(b, c)); chains are walked, not recursed
    terms = []
    words = []
    split = _find_logical_operator(expr)
    while split is not None:
        index, word = split
        left, right = expr[:index], expr[index + len(word):]
        if not left.strip() or not right.strip():
            raise FilterTranslationError(expr, f"Missing operand for '{word}'")
        terms.append(_parse_term(left))
        words.append(word)
        expr = right.strip()
        split = _find_logical_operator(expr)

    node = _parse_term(expr)
    for term, word in zip(reversed(terms), reversed(words)):
        node = And(term, node) if word == "and" else Or(term, node)
    return node


def parse_filter(filter_string: str) -> FilterExpression:
    """Parse a non-empty SCIM filter into an AST.

    Chains of ``and``/``or`` and redundant parentheses are handled
    iteratively. Nesting that still exceeds the interpreter's recursion
    limit (roughly ``sys.getrecursionlimit() // 2`` levels of ``not`` or of
    groups containing ``and``/``or``) is rejected.

    Raises:
        FilterTranslationError: On any syntax error
    """
    if filter_string is None or not filter_string.strip():
        raise FilterTranslationError(filter_string or "", "Empty expression")
    _check_balanced(filter_string)
    try:
        return _parse(filter_string)
    except RecursionError:
        raise FilterTranslationError(_excerpt(filter_string), "Filter nested too deeply") from None


def _excerpt(text: str, limit: int = 60) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


# ─────────────────────────────────────────────────────────────────────────────
# Rendering
# ─────────────────────────────────────────────────────────────────────────────

def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def render_value(attribute_path: str, value: str) -> str:
    """Backend literal for a comparison value."""
    if attribute_path == ACTIVE_ATTRIBUTE and value.lower() in ACTIVE_VALUES:
        return ACTIVE_VALUES[value.lower()]
    if value.lower() in _LITERALS:
        return value.lower()
    if _NUMBER_RE.match(value):
        return value
    if _QUOTED_RE.match(value):
        return value
    return _quote(value)


def _render_comparison(node: Comparison, table: Mapping[str, str]) -> str:
    attribute = table.get(node.attribute_path, node.attribute_path)
    if node.operator == "pr":
        return f"{attribute} pr"
    return f"{attribute} {node.operator} {render_value(node.attribute_path, node.value)}"


def render_filter(node: FilterExpression, rewrite_table: Optional[Mapping[str, str]] = None) -> str:
    """Render an AST in IDM ``_queryFilter`` syntax."""
    table = rewrite_table or {}
    parts = []
    # Work stack of nodes and literal text, popped in output order
    pending: list = [node]
    while pending:
        item = pending.pop()
        if isinstance(item, str):
            parts.append(item)
        elif isinstance(item, Comparison):
            parts.append(_render_comparison(item, table))
        elif isinstance(item, (And, Or)):
            word = " and " if isinstance(item, And) else " or "
            pending.extend((")", item.right, word, item.left, "("))
        elif isinstance(item, Not):
            # And/Or already render their own parentheses
            if isinstance(item.inner, (And, Or)):
                pending.extend((item.inner, "!"))
            else:
                pending.extend((")", item.inner, "!("))
        else:
            raise TypeError(f"Unknown filter node: {item!r}")
    return "".join(parts)


def translate(filter_string: Optional[str], rewrite_table: Optional[Mapping[str, str]] = None) -> str:
    """Translate a SCIM filter to an IDM query filter.

    Args:
        filter_string: SCIM filter; empty or None matches everything
        rewrite_table: SCIM attribute path → IDM attribute name

    Returns:
        IDM ``_queryFilter`` expression

    Raises:
        FilterTranslationError: If the filter cannot be parsed
    """
    if filter_string is None or not filter_string.strip():
        return MATCH_ALL
    return render_filter(parse_filter(filter_string), rewrite_table)


class FilterTranslator:
    """Translator bound to one resource type's rewrite table. Holds no other state."""

    def __init__(self, rewrite_table: Optional[Mapping[str, str]] = None):
        self.rewrite_table = rewrite_table or {}

    def translate(self, filter_string: Optional[str]) -> str:
        return translate(filter_string, self.rewrite_table)
