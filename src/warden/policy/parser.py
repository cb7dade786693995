"""
Condition expression parser.

Turns a single-line textual expression into structured FieldCondition
objects:

    actor.type == "user"
    resource.attributes.complexity >= 7 && actor.type == "agent"
    actor.id in ["alice", "bob"]

Grammar (no precedence, no grouping):

    expression  := condition (("and" | "&&") condition)*
    condition   := path operator literal
    operator    := "==" | "!=" | ">" | ">=" | "<" | "<=" | "in" | "contains"
    literal     := string | number | "true" | "false" | "[" literal ("," literal)* "]"

Grouping and disjunction are expressed structurally through nested rule
groups, never textually. Conjunctions are split on lexer tokens, so an
"and" inside a quoted string is never mistaken for a separator.
"""

import re
from dataclasses import dataclass
from typing import Any

from warden.errors import ConditionParseError
from warden.schema import ConditionOperator, FieldCondition


# Token kinds
IDENT = "ident"
STRING = "string"
NUMBER = "number"
BOOL = "bool"
OPERATOR = "operator"
AND = "and"
LBRACKET = "["
RBRACKET = "]"
COMMA = ","

_SYMBOL_OPERATORS = (
    ("==", ConditionOperator.EQ),
    ("!=", ConditionOperator.NE),
    (">=", ConditionOperator.GTE),
    ("<=", ConditionOperator.LTE),
    (">", ConditionOperator.GT),
    ("<", ConditionOperator.LT),
)
_WORD_OPERATORS = {
    "in": ConditionOperator.IN,
    "contains": ConditionOperator.CONTAINS,
}
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", '"': '"', "'": "'"}

_NUMBER_RE = re.compile(r"-?\d+(\.\d+)?([eE][+-]?\d+)?")
_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_.\-]*")
_SYMBOL_RUN_RE = re.compile(r"[=!<>~|&^%*+/?:;@#$]+")


@dataclass(frozen=True)
class Token:
    """A lexical token with its source offset."""

    kind: str
    value: Any
    text: str
    position: int


# =============================================================================
# Lexer
# =============================================================================


def tokenize(expression: str) -> list[Token]:
    """
    Split an expression into tokens.

    Raises:
        ConditionParseError: On an unterminated string or unknown symbol
    """
    tokens: list[Token] = []
    i = 0
    length = len(expression)

    while i < length:
        char = expression[i]

        if char.isspace():
            i += 1
            continue

        if char in ("'", '"'):
            token, i = _read_string(expression, i)
            tokens.append(token)
            continue

        if expression.startswith("&&", i):
            tokens.append(Token(AND, "and", "&&", i))
            i += 2
            continue

        symbol = _match_symbol(expression, i)
        if symbol is not None:
            text, operator = symbol
            tokens.append(Token(OPERATOR, operator, text, i))
            i += len(text)
            continue

        if char in "[],":
            tokens.append(Token(char, char, char, i))
            i += 1
            continue

        number = _NUMBER_RE.match(expression, i)
        if number and (char.isdigit() or char == "-"):
            text = number.group(0)
            value: Any = float(text) if (number.group(1) or number.group(2)) else int(text)
            tokens.append(Token(NUMBER, value, text, i))
            i = number.end()
            continue

        ident = _IDENT_RE.match(expression, i)
        if ident:
            text = ident.group(0)
            tokens.append(_classify_word(text, i, expression))
            i = ident.end()
            continue

        run = _SYMBOL_RUN_RE.match(expression, i)
        text = run.group(0) if run else char
        raise ConditionParseError(
            message=f"Unknown operator {text!r} at position {i}",
            expression=expression,
            token=text,
            position=i,
        )

    return tokens


def _read_string(expression: str, start: int) -> tuple[Token, int]:
    quote = expression[start]
    chars: list[str] = []
    i = start + 1
    while i < len(expression):
        char = expression[i]
        if char == "\\" and i + 1 < len(expression):
            chars.append(_ESCAPES.get(expression[i + 1], expression[i + 1]))
            i += 2
            continue
        if char == quote:
            return Token(STRING, "".join(chars), expression[start:i + 1], start), i + 1
        chars.append(char)
        i += 1

    raise ConditionParseError(
        message=f"Unterminated string literal starting at position {start}",
        expression=expression,
        token=expression[start:],
        position=start,
        suggestion=f"Close the string with a matching {quote} quote",
    )


def _match_symbol(expression: str, i: int) -> tuple[str, ConditionOperator] | None:
    for text, operator in _SYMBOL_OPERATORS:
        if expression.startswith(text, i):
            # "=>", "<>", "===" and friends are not operators
            follow = expression[i + len(text):i + len(text) + 1]
            if follow and follow in "=<>!~":
                return None
            return text, operator
    return None


def _classify_word(text: str, position: int, expression: str) -> Token:
    lowered = text.lower()
    if lowered == "and":
        return Token(AND, "and", text, position)
    if lowered in ("true", "false"):
        return Token(BOOL, lowered == "true", text, position)
    if lowered in _WORD_OPERATORS:
        return Token(OPERATOR, _WORD_OPERATORS[lowered], text, position)
    if lowered == "or":
        raise ConditionParseError(
            message=f"Disjunction {text!r} at position {position} is not supported in expressions",
            expression=expression,
            token=text,
            position=position,
            suggestion="Express alternatives with a nested rule group using operator: or",
        )
    return Token(IDENT, text, text, position)


# =============================================================================
# Parser
# =============================================================================


def parse_expression(expression: str) -> list[FieldCondition]:
    """
    Parse a conjunction of conditions.

    Args:
        expression: Text such as 'actor.type == "user" and resource.id != "x"'

    Returns:
        One FieldCondition per conjunct, in source order

    Raises:
        ConditionParseError: Identifying the offending token and position
    """
    tokens = tokenize(expression)
    if not tokens:
        raise ConditionParseError(
            message="Empty expression",
            expression=expression,
            token="",
            position=0,
        )

    conditions = []
    segment: list[Token] = []
    for token in tokens:
        if token.kind == AND:
            if not segment:
                raise _error(expression, token, f"Missing condition before {token.text!r}")
            conditions.append(_parse_segment(expression, segment))
            segment = []
            continue
        segment.append(token)

    if not segment:
        last = tokens[-1]
        raise _error(expression, last, f"Missing condition after {last.text!r}")
    conditions.append(_parse_segment(expression, segment))
    return conditions


def parse_condition(expression: str) -> FieldCondition:
    """Parse exactly one condition (no conjunctions)."""
    conditions = parse_expression(expression)
    if len(conditions) != 1:
        msg = f"Expected a single condition, found {len(conditions)}"
        raise ConditionParseError(message=msg, expression=expression, token="and", position=0)
    return conditions[0]


def _parse_segment(expression: str, tokens: list[Token]) -> FieldCondition:
    field_token = tokens[0]
    if field_token.kind != IDENT:
        raise _error(expression, field_token, f"Expected a field path, found {field_token.text!r}")

    if len(tokens) < 2:
        raise _error(
            expression,
            field_token,
            f"Missing operator after {field_token.text!r}",
            position=field_token.position + len(field_token.text),
        )

    op_token = tokens[1]
    if op_token.kind != OPERATOR:
        raise _error(expression, op_token, f"Unknown operator {op_token.text!r}")

    if len(tokens) < 3:
        raise _error(
            expression,
            op_token,
            f"Missing value after operator {op_token.text!r}",
            position=op_token.position + len(op_token.text),
        )

    value, consumed = _parse_value(expression, tokens, 2)
    if 2 + consumed < len(tokens):
        extra = tokens[2 + consumed]
        raise _error(expression, extra, f"Unexpected token {extra.text!r}")

    operator: ConditionOperator = op_token.value
    if operator == ConditionOperator.IN and not isinstance(value, list):
        raise _error(
            expression,
            tokens[2],
            f"Operator 'in' requires a list literal, found {tokens[2].text!r}",
        )

    return FieldCondition(field=field_token.value, operator=operator, value=value)


def _parse_value(expression: str, tokens: list[Token], index: int) -> tuple[Any, int]:
    """Parse a literal at tokens[index]; return (value, tokens consumed)."""
    token = tokens[index]
    if token.kind in (STRING, NUMBER, BOOL):
        return token.value, 1

    if token.kind == LBRACKET:
        items: list[Any] = []
        i = index + 1
        expect_item = True
        while i < len(tokens):
            current = tokens[i]
            if current.kind == RBRACKET and (not expect_item or not items):
                return items, i - index + 1
            if expect_item:
                if current.kind not in (STRING, NUMBER, BOOL):
                    raise _error(expression, current, f"Expected a literal, found {current.text!r}")
                items.append(current.value)
                expect_item = False
            elif current.kind == COMMA:
                expect_item = True
            else:
                raise _error(expression, current, f"Expected ',' or ']', found {current.text!r}")
            i += 1
        raise _error(expression, token, "Unterminated list literal")

    if token.kind == IDENT:
        raise _error(
            expression,
            token,
            f"Unquoted value {token.text!r}",
            suggestion=f'Quote string values, e.g. "{token.text}"',
        )
    raise _error(expression, token, f"Expected a value, found {token.text!r}")


def _error(
    expression: str,
    token: Token,
    message: str,
    position: int | None = None,
    suggestion: str | None = None,
) -> ConditionParseError:
    pos = token.position if position is None else position
    return ConditionParseError(
        message=f"{message} at position {pos}",
        expression=expression,
        token=token.text,
        position=pos,
        suggestion=suggestion,
    )
