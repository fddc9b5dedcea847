"""Static proof that two conditions can never both be true.

The prover is deliberately small and only answers ``True`` when it is
certain; ``False`` means "not proven", not "overlapping".  Recognised forms:

    a            vs  !a
    x == 'a'     vs  x == 'b'
    x == 'a'     vs  x != 'a'
    false        vs  anything
    p && q       vs  r          (disjoint if any conjunct pair is)
"""

from __future__ import annotations

from typing import Any

from az_condplan.expressions.ast import (
    Binary,
    Expression,
    Identifier,
    Index,
    Literal,
    Member,
    conjuncts,
    negate,
    render,
)

FALSE = Literal(False)


def _is_reference(expr: Expression) -> bool:
    """True for ``name``, ``name.prop`` or ``name['key']`` chains without calls."""
    while isinstance(expr, Member | Index):
        if isinstance(expr, Index) and not isinstance(expr.index, Literal):
            return False
        expr = expr.target
    return isinstance(expr, Identifier)


def _comparison(expr: Expression) -> tuple[str, str, Any] | None:
    """Split ``ref == literal`` (either order) into ``(ref, op, literal)``."""
    if not (isinstance(expr, Binary) and expr.op in ("==", "!=")):
        return None
    left, right = expr.left, expr.right
    if isinstance(left, Literal) and _is_reference(right):
        left, right = right, left
    if _is_reference(left) and isinstance(right, Literal):
        return render(left), expr.op, right.value
    return None


def _same_value(a: Any, b: Any) -> bool:
    # Same rule as the evaluator: 1 == 1.0 but true != 1
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return bool(a == b)


def _atoms_disjoint(a: Expression, b: Expression) -> bool:
    if FALSE in (a, b):
        return True
    if a == negate(b) or negate(a) == b:
        return True
    ca, cb = _comparison(a), _comparison(b)
    if ca is None or cb is None or ca[0] != cb[0]:
        return False
    (_, op_a, lit_a), (_, op_b, lit_b) = ca, cb
    if op_a == "==" and op_b == "==":
        return not _same_value(lit_a, lit_b)
    if {op_a, op_b} == {"==", "!="}:
        return _same_value(lit_a, lit_b)
    return False


def provably_disjoint(a: Expression, b: Expression) -> bool:
    """Return True if *a* and *b* can never both evaluate to true."""
    if _atoms_disjoint(a, b):
        return True
    left, right = conjuncts(a), conjuncts(b)
    if len(left) == 1 and len(right) == 1:
        return False
    return any(_atoms_disjoint(x, y) for x in left for y in right)
