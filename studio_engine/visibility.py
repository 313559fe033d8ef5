"""
Visibility resolution for fields.

Cycle detection uses an explicit evaluation stack threaded through the
recursion, so evaluation is reentrant and never touches shared state.
"""

from __future__ import annotations

import logging

from .conditions import (evaluate_group, evaluate_structured,
                         referenced_attributes)
from .exceptions import CircularDependencyError

logger = logging.getLogger(__name__)


def _structured(condition) -> dict | None:
    """Structured show/hide conditions; callback markers are excluded."""
    if isinstance(condition, dict) and condition.get('type') != 'callback':
        return condition
    return None


def visibility_dependencies(field) -> list[str]:
    """Attributes whose presence decides ``field``'s visibility."""
    found = []
    found.extend(referenced_attributes(field.depends_on_condition))
    found.extend(referenced_attributes(_structured(field.meta.get('showWhen'))))
    found.extend(referenced_attributes(_structured(field.meta.get('hideWhen'))))
    return list(dict.fromkeys(found))


def bind_siblings(fields) -> list:
    """Record ``fields`` on each member so a bare ``is_visible`` resolves against them."""
    fields = list(fields)
    for field in fields:
        if hasattr(field, 'siblings'):
            field.siblings = fields
    return fields


def resolve(field, form_data: dict, fields=None, stack: list | None = None) -> bool:
    """Return whether ``field`` is visible for ``form_data``.

    Fields referenced by the conditions are resolved first on the same stack;
    a hidden dependency's value is treated as absent. ``fields`` defaults to
    the field alone, so a self-reference is still caught. Raises
    CircularDependencyError when an attribute reappears on the stack.
    """
    if fields is None:
        fields = [field]
    by_attribute = {f.attribute: f for f in fields}
    return _resolve(field, form_data, by_attribute, [] if stack is None else stack, {})


def _resolve(field, form_data, by_attribute, stack, memo) -> bool:
    if field.attribute in stack:
        raise CircularDependencyError(stack + [field.attribute])
    if id(field) in memo:
        return memo[id(field)]

    stack.append(field.attribute)
    try:
        hidden = [attribute for attribute in visibility_dependencies(field)
                  if attribute in by_attribute
                  and not _resolve(by_attribute[attribute], form_data, by_attribute,
                                   stack, memo)]
        effective = form_data
        if hidden:
            logger.debug("Field '%s': hidden dependencies %s treated as absent",
                         field.attribute, hidden)
            effective = {k: v for k, v in form_data.items() if k not in hidden}
        visible = _evaluate(field, effective)
    finally:
        stack.pop()

    memo[id(field)] = visible
    return visible


def _evaluate(field, form_data: dict) -> bool:
    if field.depends_on_condition is not None:
        if not evaluate_group(form_data, field.depends_on_condition):
            return False

    if field.show_when_callback is not None:
        if not field.show_when_callback(form_data):
            return False

    show_when = _structured(field.meta.get('showWhen'))
    if show_when is not None and not evaluate_structured(show_when, form_data):
        return False

    if field.hide_when_callback is not None:
        if field.hide_when_callback(form_data):
            return False

    hide_when = _structured(field.meta.get('hideWhen'))
    if hide_when is not None and evaluate_structured(hide_when, form_data):
        return False

    return True


def visible_fields(fields, form_data: dict) -> list:
    """Filter ``fields`` to those visible for ``form_data``, checking cycles across them.

    Each field is resolved at most once per call.
    """
    fields = list(fields)
    by_attribute = {f.attribute: f for f in fields}
    memo: dict = {}
    return [f for f in fields if _resolve(f, form_data, by_attribute, [], memo)]
