"""Expression parser.

Templates embed expressions ARM-style: a string value wrapped in square
brackets (``"[env == 'Production']"``) is an expression, any other string is
a literal, and a leading ``[[`` escapes a literal that starts with ``[``.
The expression syntax itself is Bicep-like::

    env == 'Production' ? audit.properties.primaryEndpoints.blob : ''
    concat('st', toLower(prefix), 'audit')
    !deployAudit && length(regions) > 1

Precedence, lowest first: ``?:``, ``||``, ``&&``, ``== != =~ !~``,
``< <= > >=``, ``+ -``, ``* / %``, unary ``! -``, postfix ``. [] ()``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from az_condplan.errors import InvalidExpression
from az_condplan.expressions.ast import (
    ArrayLiteral,
    Binary,
    Call,
    Expression,
    Identifier,
    Index,
    Literal,
    Member,
    Ternary,
    Unary,
)

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<number>\d+(?:\.\d+)?)
  | (?P<string>'(?:[^'\\]|\\.)*')
  | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<op>==|!=|=~|!~|<=|>=|&&|\|\||[<>!+\-*/%?:.,()\[\]])
    """,
    re.VERBOSE,
)

_KEYWORDS: dict[str, Any] = {"true": True, "false": False, "null": None}

_EQUALITY_OPS = ("==", "!=", "=~", "!~")
_COMPARISON_OPS = ("<", "<=", ">", ">=")
_ADDITIVE_OPS = ("+", "-")
_MULTIPLICATIVE_OPS = ("*", "/", "%")


@dataclass(frozen=True)
class Token:
    kind: str  # "number", "string", "ident", "op" or "eof"
    text: str
    column: int


def tokenize(source: str) -> list[Token]:
    """Split *source* into tokens, ending with an ``eof`` token."""
    tokens: list[Token] = []
    pos = 0
    while pos < len(source):
        match = _TOKEN_RE.match(source, pos)
        if match is None:
            raise InvalidExpression(
                f"Unexpected character {source[pos]!r}", column=pos, expression=source
            )
        kind = match.lastgroup or ""
        if kind != "ws":
            tokens.append(Token(kind, match.group(), pos))
        pos = match.end()
    tokens.append(Token("eof", "", len(source)))
    return tokens


def _unescape(raw: str) -> str:
    body = raw[1:-1]
    return re.sub(r"\\(.)", lambda m: {"n": "\n", "t": "\t"}.get(m.group(1), m.group(1)), body)


class _Parser:
    def __init__(self, source: str) -> None:
        self.source = source
        self.tokens = tokenize(source)
        self.pos = 0

    # -- token helpers ------------------------------------------------------

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def _error(self, message: str, token: Token | None = None) -> InvalidExpression:
        tok = token or self.current
        return InvalidExpression(message, column=tok.column, expression=self.source)

    def _advance(self) -> Token:
        tok = self.tokens[self.pos]
        self.pos += 1
        return tok

    def _check(self, *ops: str) -> bool:
        return self.current.kind == "op" and self.current.text in ops

    def _expect(self, op: str) -> Token:
        if not self._check(op):
            found = self.current.text or "end of expression"
            raise self._error(f"Expected '{op}' but found '{found}'")
        return self._advance()

    # -- grammar ------------------------------------------------------------

    def parse(self) -> Expression:
        if self.current.kind == "eof":
            raise self._error("Empty expression")
        expr = self._ternary()
        if self.current.kind != "eof":
            raise self._error(f"Unexpected token '{self.current.text}'")
        return expr

    def _ternary(self) -> Expression:
        test = self._binary(0)
        if self._check("?"):
            tok = self._advance()
            if_true = self._ternary()
            self._expect(":")
            if_false = self._ternary()
            return Ternary(test, if_true, if_false, column=tok.column)
        return test

    _LEVELS: tuple[tuple[str, ...], ...] = (
        ("||",),
        ("&&",),
        _EQUALITY_OPS,
        _COMPARISON_OPS,
        _ADDITIVE_OPS,
        _MULTIPLICATIVE_OPS,
    )

    def _binary(self, level: int) -> Expression:
        if level == len(self._LEVELS):
            return self._unary()
        left = self._binary(level + 1)
        while self._check(*self._LEVELS[level]):
            tok = self._advance()
            right = self._binary(level + 1)
            left = Binary(tok.text, left, right, column=tok.column)
        return left

    def _unary(self) -> Expression:
        if self._check("!", "-"):
            tok = self._advance()
            return Unary(tok.text, self._unary(), column=tok.column)
        return self._postfix(self._primary())

    def _postfix(self, expr: Expression) -> Expression:
        while True:
            if self._check("."):
                self._advance()
                tok = self.current
                if tok.kind != "ident":
                    raise self._error("Expected property name after '.'")
                self._advance()
                expr = Member(expr, tok.text, column=tok.column)
            elif self._check("["):
                tok = self._advance()
                index = self._ternary()
                self._expect("]")
                expr = Index(expr, index, column=tok.column)
            else:
                return expr

    def _primary(self) -> Expression:
        tok = self.current
        if tok.kind == "number":
            self._advance()
            value: Any = float(tok.text) if "." in tok.text else int(tok.text)
            return Literal(value, column=tok.column)
        if tok.kind == "string":
            self._advance()
            return Literal(_unescape(tok.text), column=tok.column)
        if tok.kind == "ident":
            self._advance()
            if tok.text in _KEYWORDS:
                return Literal(_KEYWORDS[tok.text], column=tok.column)
            if self._check("("):
                return Call(tok.text, self._arguments(")"), column=tok.column)
            return Identifier(tok.text, column=tok.column)
        if self._check("("):
            self._advance()
            expr = self._ternary()
            self._expect(")")
            return expr
        if self._check("["):
            return ArrayLiteral(self._arguments("]"), column=tok.column)
        if tok.kind == "eof":
            raise self._error("Unexpected end of expression")
        raise self._error(f"Unexpected token '{tok.text}'")

    def _arguments(self, closing: str) -> tuple[Expression, ...]:
        self._advance()  # opening bracket
        args: list[Expression] = []
        if not self._check(closing):
            args.append(self._ternary())
            while self._check(","):
                self._advance()
                args.append(self._ternary())
        self._expect(closing)
        return tuple(args)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_expression(source: str) -> Expression:
    """Parse a bare expression (no surrounding brackets)."""
    return _Parser(source).parse()


def is_expression_string(value: Any) -> bool:
    """Return True if *value* is an ARM-style ``"[...]"`` expression string."""
    return (
        isinstance(value, str)
        and value.startswith("[")
        and not value.startswith("[[")
        and value.endswith("]")
    )


def parse_template_value(value: Any) -> Expression:
    """Turn a template scalar into an expression.

    ``"[expr]"`` strings are parsed, ``"[[text"`` becomes the literal
    ``"[text"`` and any other value is wrapped in a :class:`Literal`.
    """
    if is_expression_string(value):
        return parse_expression(value[1:-1])
    if isinstance(value, str) and value.startswith("[["):
        return Literal(value[1:])
    return Literal(value)
