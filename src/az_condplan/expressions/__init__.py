"""Template expressions: tree, parser, functions and evaluator."""

from az_condplan.expressions.ast import Expression, render
from az_condplan.expressions.evaluator import Evaluator, NodeState
from az_condplan.expressions.functions import FunctionRegistry
from az_condplan.expressions.parser import parse_expression, parse_template_value

__all__ = [
    "Evaluator",
    "Expression",
    "FunctionRegistry",
    "NodeState",
    "parse_expression",
    "parse_template_value",
    "render",
]
