"""
Condition Evaluator: operator semantics shared by fields, groups and sections.

Comparisons follow loose equality: ``"1" == 1`` holds, numeric strings compare
numerically and booleans compare by truthiness. All loose comparison goes
through :func:`loose_equals` so strict comparison can be swapped in at one place.
"""

from __future__ import annotations

from typing import Any

SEQUENCE_TYPES = (list, tuple, set, frozenset)

FIELD_OPERATORS = {'=', '!=', '>', '>=', '<', '<=', 'in', 'not_in',
                   'contains', 'not_contains', 'empty', 'not_empty'}

CONTAINER_OPERATORS = {'=', '!=', '>', '>=', '<', '<=', 'in', 'not_in'}


def _to_number(value: Any):
    """Return ``value`` as int/float when it is numeric or a numeric string."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            return None
    return None


def is_empty(value: Any) -> bool:
    """Emptiness as form payloads use it: None, False, 0, '', '0' or an empty collection."""
    if value is None or value is False:
        return True
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return value == 0
    if isinstance(value, str):
        return value == '' or value == '0'
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


def loose_equals(left: Any, right: Any) -> bool:
    if left is None and right is None:
        return True
    if left is None or right is None:
        other = right if left is None else left
        if isinstance(other, str):
            return other == ''
        return is_empty(other)
    if isinstance(left, bool) or isinstance(right, bool):
        return (not is_empty(left)) == (not is_empty(right))

    left_num = _to_number(left)
    right_num = _to_number(right)
    if left_num is not None and right_num is not None:
        return left_num == right_num

    if isinstance(left, (int, float)) and isinstance(right, str):
        return str(left) == right
    if isinstance(right, (int, float)) and isinstance(left, str):
        return str(right) == left
    return left == right


def _compare(left: Any, right: Any, operator: str) -> bool:
    left_num = _to_number(left)
    right_num = _to_number(right)
    if left_num is not None and right_num is not None:
        left, right = left_num, right_num
    try:
        if operator == '>':
            return left > right
        if operator == '>=':
            return left >= right
        if operator == '<':
            return left < right
        if operator == '<=':
            return left <= right
    except TypeError:
        return False
    return False


def _loose_in(needle: Any, haystack) -> bool:
    return any(loose_equals(needle, item) for item in haystack)


def compare(actual: Any, expected: Any, operator: str) -> bool:
    """Apply ``operator`` without the null short-circuit of :func:`evaluate`."""
    if operator == '=':
        return loose_equals(actual, expected)
    if operator == '!=':
        return not loose_equals(actual, expected)
    if operator in ('>', '>=', '<', '<='):
        if actual is None or expected is None:
            return _compare(actual if actual is not None else 0,
                            expected if expected is not None else 0, operator)
        return _compare(actual, expected, operator)
    if operator == 'in':
        return isinstance(expected, SEQUENCE_TYPES) and _loose_in(actual, expected)
    if operator == 'not_in':
        return isinstance(expected, SEQUENCE_TYPES) and not _loose_in(actual, expected)
    if operator == 'contains':
        return isinstance(actual, SEQUENCE_TYPES) and _loose_in(expected, actual)
    if operator == 'not_contains':
        return isinstance(actual, SEQUENCE_TYPES) and not _loose_in(expected, actual)
    if operator == 'empty':
        return is_empty(actual)
    if operator == 'not_empty':
        return not is_empty(actual)
    return False


def evaluate(actual: Any, expected: Any, operator: str = '=') -> bool:
    """Evaluate one comparison. Never raises; unknown operators are false.

    A null ``actual`` only matches a null ``expected``, whatever the operator.
    """
    if actual is None:
        return expected is None
    return compare(actual, expected, operator)


def evaluate_condition(form_data: dict, attribute: str, expected: Any,
                       operator: str = '=') -> bool:
    """Evaluate against ``form_data[attribute]``; an absent attribute is false."""
    if attribute not in form_data:
        return False
    return evaluate(form_data[attribute], expected, operator)


def evaluate_triple(form_data: dict, condition: dict) -> bool:
    """Evaluate an ``{attribute, value, operator}`` condition."""
    return evaluate_condition(form_data, condition['attribute'],
                              condition.get('value'),
                              condition.get('operator', '='))


def evaluate_structured(condition: dict, form_data: dict) -> bool:
    """Evaluate a comparison / and / or tree using ``field`` keyed comparisons."""
    kind = condition.get('type')
    if kind == 'comparison':
        return evaluate_condition(form_data, condition['field'],
                                  condition.get('value'),
                                  condition.get('operator', '='))
    if kind == 'and':
        return all(evaluate_structured(c, form_data)
                   for c in condition.get('conditions', []))
    if kind == 'or':
        return any(evaluate_structured(c, form_data)
                   for c in condition.get('conditions', []))
    return False


def evaluate_container(form_data: dict, condition: dict) -> bool:
    """One-shot check used by groups and sections.

    A missing attribute reads as None and is compared like any other value;
    only the plain comparison and membership operators are recognised.
    """
    operator = condition.get('operator', '=')
    if operator not in CONTAINER_OPERATORS:
        return False
    actual = form_data.get(condition['attribute'])
    return compare(actual, condition.get('value'), operator)


def referenced_attributes(condition: dict | None) -> list[str]:
    """Attributes a depends-on or structured condition reads, in declaration order."""
    if not condition or not isinstance(condition, dict):
        return []
    found: list[str] = []
    kind = condition.get('type')
    if kind in ('all', 'any'):
        for item in condition.get('conditions', []):
            found.extend(referenced_attributes(_as_triple(item)))
    elif kind in ('and', 'or'):
        for item in condition.get('conditions', []):
            found.extend(referenced_attributes(item))
    elif kind == 'comparison':
        found.append(condition['field'])
    elif 'attribute' in condition:
        found.append(condition['attribute'])
    return list(dict.fromkeys(found))


def _as_triple(item) -> dict:
    """Normalise a positional ``(attribute, value[, operator])`` condition."""
    if isinstance(item, dict):
        return item
    attribute, value, *rest = item
    return {'attribute': attribute, 'value': value,
            'operator': rest[0] if rest else '='}


def evaluate_group(form_data: dict, depends_on: dict) -> bool:
    """Evaluate a single depends-on condition or an ``all`` / ``any`` group of them."""
    kind = depends_on.get('type')
    if kind == 'all':
        return all(evaluate_triple(form_data, _as_triple(c))
                   for c in depends_on.get('conditions', []))
    if kind == 'any':
        return any(evaluate_triple(form_data, _as_triple(c))
                   for c in depends_on.get('conditions', []))
    return evaluate_triple(form_data, depends_on)
