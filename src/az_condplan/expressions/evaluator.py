"""Expression evaluator.

Evaluates an expression tree against a read-only environment of parameters
and variables plus the state of the nodes evaluated so far.

Evaluation is eager, as in ARM deployments: both operands of ``&&``/``||``
and both branches of a ternary are evaluated, so reading a node that is
excluded from the deployment fails with :class:`ReferenceUnavailable` even
when the value would be discarded.  The one exception is a **guard**: a
ternary whose test checks the conditions gating every conditional node its
branches read.  A guard evaluates only the branch it takes::

    env == 'Production' ? auditStorageAccount.properties.endpoint : ''
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from az_condplan.errors import InvalidExpression, PlanningError, ReferenceUnavailable
from az_condplan.expressions.ast import (
    TRUE,
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
    children,
    identifiers,
    negate,
)
from az_condplan.expressions.functions import FunctionRegistry
from az_condplan.expressions.disjointness import provably_disjoint

logger = logging.getLogger(__name__)


@dataclass
class NodeState:
    """What expressions can see of a declared node.

    ``condition`` is the node's *effective* condition (a module member's own
    condition conjoined with its group's).  ``included`` stays ``None`` until
    the conditional evaluation pass has decided the node.
    """

    id: str
    condition: Expression = TRUE
    included: bool | None = None
    view: dict[str, Any] = field(default_factory=dict)

    @property
    def conditional(self) -> bool:
        return self.condition != TRUE


def guards(test: Expression, state: NodeState, *, branch: bool = True) -> bool:
    """Return True if a ternary testing *test* guards reads of *state*.

    The test must either be the node's condition (or its negation), or read
    every name the condition reads.  In the second case *branch* says which
    branch reads the node: a test that provably rules the node out on that
    branch is not a guard, e.g. ``env == 'Dev' ? audit.id : ''`` for a node
    gated by ``env == 'Prod'``.
    """
    cond = state.condition
    if test in (cond, negate(cond)) or negate(test) == cond:
        return True
    cond_names = identifiers(cond)
    if not cond_names or not cond_names <= identifiers(test):
        return False
    return not provably_disjoint(test if branch else negate(test), cond)


class Evaluator:
    """Evaluate expressions for one node (or for parameters and variables).

    *allow_external* is False while evaluating an excluded node: external
    functions then have their arguments evaluated but are not invoked.
    """

    def __init__(
        self,
        environment: Mapping[str, Any],
        nodes: Mapping[str, NodeState] | None = None,
        functions: FunctionRegistry | None = None,
        *,
        allow_external: bool = True,
    ) -> None:
        self.environment = environment
        self.nodes = nodes or {}
        self.functions = functions or FunctionRegistry()
        self.allow_external = allow_external
        self._source: str | None = None
        self._active_guards: list[set[str]] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def evaluate(self, expr: Expression, source: str | None = None) -> Any:
        """Evaluate *expr*; *source* is the expression text used in errors."""
        self._source = source
        self._active_guards = []
        return self._eval(expr)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _error(self, message: str, expr: Expression) -> InvalidExpression:
        return InvalidExpression(message, column=expr.column, expression=self._source)

    def _eval(self, expr: Expression) -> Any:
        if isinstance(expr, Literal):
            return expr.value
        if isinstance(expr, ArrayLiteral):
            return [self._eval(item) for item in expr.items]
        if isinstance(expr, Identifier):
            return self._lookup(expr)
        if isinstance(expr, Member):
            return self._member(self._eval(expr.target), expr.name, expr)
        if isinstance(expr, Index):
            return self._index(self._eval(expr.target), self._eval(expr.index), expr)
        if isinstance(expr, Call):
            return self._call(expr)
        if isinstance(expr, Unary):
            return self._unary(expr)
        if isinstance(expr, Binary):
            return self._binary(expr)
        if isinstance(expr, Ternary):
            return self._ternary(expr)
        raise self._error(f"Unsupported expression node {type(expr).__name__}", expr)

    def _lookup(self, expr: Identifier) -> Any:
        if expr.name in self.environment:
            return self.environment[expr.name]
        state = self.nodes.get(expr.name)
        if state is None:
            raise self._error(f"Unknown identifier '{expr.name}'", expr)
        if state.included is None:
            raise self._error(f"Node '{expr.name}' has not been evaluated yet", expr)
        if not state.included:
            guarded = any(expr.name in active for active in self._active_guards)
            raise ReferenceUnavailable(expr.name, guarded=guarded, expression=self._source)
        return state.view

    def _member(self, target: Any, name: str, expr: Expression) -> Any:
        if not isinstance(target, dict):
            raise self._error(f"Cannot read property '{name}' of {_type_name(target)}", expr)
        if name in target:
            return target[name]
        # ARM property names are case-insensitive
        for key, value in target.items():
            if key.lower() == name.lower():
                return value
        raise self._error(f"Property '{name}' does not exist", expr)

    def _index(self, target: Any, index: Any, expr: Expression) -> Any:
        if isinstance(target, dict) and isinstance(index, str):
            return self._member(target, index, expr)
        if isinstance(target, list) and isinstance(index, int) and not isinstance(index, bool):
            if -len(target) <= index < len(target):
                return target[index]
            raise self._error(f"Index {index} is out of range", expr)
        raise self._error(f"Cannot index {_type_name(target)} with {_type_name(index)}", expr)

    def _call(self, expr: Call) -> Any:
        try:
            fn = self.functions.get(expr.name)
        except InvalidExpression:
            raise self._error(f"Unknown function '{expr.name}'", expr) from None
        args = [self._eval(arg) for arg in expr.args]
        if self.functions.is_external(expr.name) and not self.allow_external:
            logger.debug("Not invoking external function %s for an excluded node", expr.name)
            return None
        try:
            return fn(*args)
        except PlanningError as exc:
            if isinstance(exc, InvalidExpression) and exc.column is None:
                exc.column = expr.column
                exc.expression = exc.expression or self._source
                exc.at()
            raise
        except Exception as exc:
            raise self._error(f"{expr.name}() failed: {exc}", expr) from exc

    def _unary(self, expr: Unary) -> Any:
        value = self._eval(expr.operand)
        if expr.op == "!":
            if not isinstance(value, bool):
                raise self._error(f"'!' expects a bool, got {_type_name(value)}", expr)
            return not value
        if not _is_number(value):
            raise self._error(f"'-' expects a number, got {_type_name(value)}", expr)
        return -value

    def _binary(self, expr: Binary) -> Any:
        left = self._eval(expr.left)
        right = self._eval(expr.right)
        op = expr.op
        if op in ("&&", "||"):
            if not (isinstance(left, bool) and isinstance(right, bool)):
                raise self._error(f"'{op}' expects bool operands", expr)
            return (left and right) if op == "&&" else (left or right)
        if op in ("==", "!="):
            equal = _equals(left, right)
            return equal if op == "==" else not equal
        if op in ("=~", "!~"):
            equal = _equals(_fold(left), _fold(right))
            return equal if op == "=~" else not equal
        if op in ("<", "<=", ">", ">="):
            return self._compare(op, left, right, expr)
        return self._arithmetic(op, left, right, expr)

    def _compare(self, op: str, left: Any, right: Any, expr: Expression) -> bool:
        comparable = (_is_number(left) and _is_number(right)) or (
            isinstance(left, str) and isinstance(right, str)
        )
        if not comparable:
            raise self._error(
                f"Cannot compare {_type_name(left)} with {_type_name(right)} using '{op}'", expr
            )
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        return left >= right

    def _arithmetic(self, op: str, left: Any, right: Any, expr: Expression) -> Any:
        if not (_is_number(left) and _is_number(right)):
            raise self._error(f"'{op}' expects numbers, use concat() for strings", expr)
        if op == "+":
            return left + right
        if op == "-":
            return left - right
        if op == "*":
            return left * right
        if right == 0:
            raise self._error("Division by zero", expr)
        if op == "/":
            if isinstance(left, int) and isinstance(right, int):
                return left // right
            return left / right
        return left % right

    def _ternary(self, expr: Ternary) -> Any:
        test = self._eval(expr.test)
        if not isinstance(test, bool):
            raise self._error(f"Ternary test must be a bool, got {_type_name(test)}", expr)

        guarded = self._guarded_nodes(expr)
        if guarded is not None:
            self._active_guards.append(guarded)
            try:
                return self._eval(expr.if_true if test else expr.if_false)
            finally:
                self._active_guards.pop()

        # No guard: both branches are evaluated before one is chosen.
        if_true = self._eval(expr.if_true)
        if_false = self._eval(expr.if_false)
        return if_true if test else if_false

    def _guarded_nodes(self, expr: Ternary) -> set[str] | None:
        """Return the nodes *expr* guards, or None if it must be evaluated eagerly.

        A ternary is lazy only when every conditional node read by either
        branch (outside a nested guard) is guarded by its test.
        """
        guarded: set[str] = set()
        for branch, body in ((True, expr.if_true), (False, expr.if_false)):
            for node_id in self._exposed_reads(body):
                if not guards(expr.test, self.nodes[node_id], branch=branch):
                    return None
                guarded.add(node_id)
        return guarded or None

    def _exposed_reads(self, expr: Expression) -> set[str]:
        """Return the conditional nodes *expr* reads outside any nested guard."""
        if isinstance(expr, Identifier):
            state = self.nodes.get(expr.name)
            if expr.name in self.environment or state is None or not state.conditional:
                return set()
            return {expr.name}
        if isinstance(expr, Ternary):
            reads = self._exposed_reads(expr.test)
            if self._guarded_nodes(expr) is not None:
                return reads
            return reads | self._exposed_reads(expr.if_true) | self._exposed_reads(expr.if_false)
        return set().union(*(self._exposed_reads(child) for child in children(expr)))


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _equals(left: Any, right: Any) -> bool:
    # Keep true != 1, unlike Python
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return bool(left == right)


def _fold(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if _is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__
