"""
Requirement expression evaluator.

An expression is a space-separated list of alternatives, any of which may
hold. Each alternative is a comma-separated list of terms which must all
hold. A term is ``<name><op><value>``, for example::

    cuda>=9.0 driver>=390,driver<400

Comparisons are dispatched by ``name`` to a rule table mapping rule names to
predicates ``predicate(data, comparator, value) -> bool``.
"""

import logging
import re
from enum import Enum
from typing import Any, Callable, Mapping

from .errors import ExpressionError


logger = logging.getLogger(__name__)


class Comparator(Enum):
    """Comparison operators accepted in requirement terms."""
    EQUAL = "="
    NOT_EQUAL = "!="
    LESS = "<"
    LESS_EQUAL = "<="
    GREATER = ">"
    GREATER_EQUAL = ">="

    def matches(self, ordering: int) -> bool:
        """Apply the comparator to a three-way comparison result."""
        if self is Comparator.EQUAL:
            return ordering == 0
        if self is Comparator.NOT_EQUAL:
            return ordering != 0
        if self is Comparator.LESS:
            return ordering < 0
        if self is Comparator.LESS_EQUAL:
            return ordering <= 0
        if self is Comparator.GREATER:
            return ordering > 0
        return ordering >= 0


Predicate = Callable[[Any, Comparator, str], bool]

# Two-character operators first so "<=" is not read as "<" followed by "=".
_TERM_RE = re.compile(r'^([a-z]+)(!=|<=|>=|=|<|>)(.+)$')


def evaluate(expression: str, data: Any, rules: Mapping[str, Predicate]) -> bool:
    """Evaluate a requirement expression against ``data``.

    Args:
        expression: Requirement expression
        data: Value handed to every predicate
        rules: Predicates keyed by rule name

    Returns:
        True if at least one alternative is satisfied (or there are no terms)

    Raises:
        ExpressionError: If a term is malformed or names an unknown rule
    """
    alternatives = [alt for alt in expression.split(' ') if alt]
    if not alternatives:
        return True

    for alternative in alternatives:
        if all(_evaluate_term(term, data, rules)
               for term in alternative.split(',') if term):
            return True

    logger.debug(f"Expression not satisfied: {expression}")
    return False


def _evaluate_term(term: str, data: Any, rules: Mapping[str, Predicate]) -> bool:
    match = _TERM_RE.match(term)
    if not match:
        raise ExpressionError(f"invalid expression: {term}")

    name, operator, value = match.groups()
    predicate = rules.get(name)
    if predicate is None:
        raise ExpressionError(f"invalid rule: {name}")

    result = predicate(data, Comparator(operator), value)
    logger.debug(f"Term {term} evaluated to {result}")
    return result
