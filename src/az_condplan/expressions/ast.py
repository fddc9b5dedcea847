"""Expression tree.

Nodes are frozen dataclasses.  Source columns are excluded from equality so
two expressions compare equal when they have the same structure, wherever
they were written in the template.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Expression:
    column: int = field(default=0, compare=False, kw_only=True)


@dataclass(frozen=True)
class Literal(Expression):
    value: Any
    # Compared too, so Literal(True) != Literal(1)
    value_type: str = field(init=False, repr=False, default="")

    def __post_init__(self) -> None:
        object.__setattr__(self, "value_type", type(self.value).__name__)


@dataclass(frozen=True)
class ArrayLiteral(Expression):
    items: tuple[Expression, ...]


@dataclass(frozen=True)
class Identifier(Expression):
    name: str


@dataclass(frozen=True)
class Member(Expression):
    target: Expression
    name: str


@dataclass(frozen=True)
class Index(Expression):
    target: Expression
    index: Expression


@dataclass(frozen=True)
class Call(Expression):
    name: str
    args: tuple[Expression, ...]


@dataclass(frozen=True)
class Unary(Expression):
    op: str
    operand: Expression


@dataclass(frozen=True)
class Binary(Expression):
    op: str
    left: Expression
    right: Expression


@dataclass(frozen=True)
class Ternary(Expression):
    test: Expression
    if_true: Expression
    if_false: Expression


TRUE = Literal(True)


# ---------------------------------------------------------------------------
# Traversal helpers
# ---------------------------------------------------------------------------


def children(expr: Expression) -> tuple[Expression, ...]:
    """Return the direct sub-expressions of *expr*."""
    if isinstance(expr, ArrayLiteral):
        return expr.items
    if isinstance(expr, Member):
        return (expr.target,)
    if isinstance(expr, Index):
        return (expr.target, expr.index)
    if isinstance(expr, Call):
        return expr.args
    if isinstance(expr, Unary):
        return (expr.operand,)
    if isinstance(expr, Binary):
        return (expr.left, expr.right)
    if isinstance(expr, Ternary):
        return (expr.test, expr.if_true, expr.if_false)
    return ()


def walk(expr: Expression) -> Iterator[Expression]:
    """Yield *expr* and all of its descendants, depth first."""
    stack = [expr]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(children(current)))


def identifiers(expr: Expression) -> set[str]:
    """Return every identifier name read by *expr*."""
    return {e.name for e in walk(expr) if isinstance(e, Identifier)}


def negate(expr: Expression) -> Expression:
    """Return the logical negation of *expr*, unwrapping a leading ``!``."""
    if isinstance(expr, Unary) and expr.op == "!":
        return expr.operand
    return Unary("!", expr)


def conjuncts(expr: Expression) -> list[Expression]:
    """Flatten a chain of ``&&`` into its operands."""
    if isinstance(expr, Binary) and expr.op == "&&":
        return conjuncts(expr.left) + conjuncts(expr.right)
    return [expr]


def conjoin(left: Expression, right: Expression) -> Expression:
    """Return ``left && right``, dropping literal ``true`` operands."""
    if left == TRUE:
        return right
    if right == TRUE:
        return left
    return Binary("&&", left, right)


def render(expr: Expression) -> str:
    """Render *expr* back to expression syntax (fully parenthesised)."""
    if isinstance(expr, Literal):
        if isinstance(expr.value, str):
            escaped = expr.value.replace("\\", "\\\\").replace("'", "\\'")
            return f"'{escaped}'"
        if expr.value is None:
            return "null"
        if isinstance(expr.value, bool):
            return "true" if expr.value else "false"
        return str(expr.value)
    if isinstance(expr, ArrayLiteral):
        return "[" + ", ".join(render(i) for i in expr.items) + "]"
    if isinstance(expr, Identifier):
        return expr.name
    if isinstance(expr, Member):
        return f"{render(expr.target)}.{expr.name}"
    if isinstance(expr, Index):
        return f"{render(expr.target)}[{render(expr.index)}]"
    if isinstance(expr, Call):
        return f"{expr.name}(" + ", ".join(render(a) for a in expr.args) + ")"
    if isinstance(expr, Unary):
        return f"{expr.op}{render(expr.operand)}"
    if isinstance(expr, Binary):
        return f"({render(expr.left)} {expr.op} {render(expr.right)})"
    if isinstance(expr, Ternary):
        return f"({render(expr.test)} ? {render(expr.if_true)} : {render(expr.if_false)})"
    raise TypeError(f"Unknown expression node: {type(expr).__name__}")
