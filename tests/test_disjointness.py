"""Tests for the mutual-exclusion prover used by name-conflict checks."""

import pytest

from az_condplan.expressions.parser import parse_expression
from az_condplan.expressions.disjointness import provably_disjoint


@pytest.mark.parametrize(
    ("a", "b"),
    [
        ("deployA", "!deployA"),
        ("!deployA", "deployA"),
        ("env == 'Production'", "env == 'Development'"),
        ("'Production' == env", "env == 'Development'"),
        ("env == 'Production'", "env != 'Production'"),
        ("settings.tier == 'Premium'", "settings.tier == 'Basic'"),
        ("false", "deployA"),
        ("deployA && env == 'Production'", "env == 'Development'"),
        ("region == 'eu' && deployA", "!deployA && other"),
    ],
)
def test_disjoint(a: str, b: str) -> None:
    assert provably_disjoint(parse_expression(a), parse_expression(b))


@pytest.mark.parametrize(
    ("a", "b"),
    [
        ("deployA", "deployB"),
        ("deployA", "deployA"),
        ("env == 'Production'", "region == 'Development'"),
        ("env != 'Production'", "env != 'Development'"),
        ("env == 'Production'", "env =~ 'Development'"),
        ("true", "true"),
        ("deployA || deployB", "!deployA"),
        ("count == 1", "count == 1.0"),
        ("toLower(env) == 'a'", "toLower(env) == 'b'"),
    ],
)
def test_not_proven(a: str, b: str) -> None:
    assert not provably_disjoint(parse_expression(a), parse_expression(b))
