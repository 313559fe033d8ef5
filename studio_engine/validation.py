"""
Validation: rule-string DSL checks for resource payloads.

Rules are written ``required|string|max:255|unique:users,email`` (or as a
list of tokens). Failures are collected per attribute and raised together as
a :class:`ValidationError`.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from datetime import date, datetime
from typing import Any

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ValidationError
from .store import quote

logger = logging.getLogger(__name__)

_email_adapter = TypeAdapter(EmailStr)

# Tokens that do not check the value itself.
MODIFIERS = {'required', 'nullable', 'sometimes', 'bail'}

MESSAGES = {
    'required': 'The {label} field is required.',
    'string': 'The {label} field must be a string.',
    'integer': 'The {label} field must be an integer.',
    'numeric': 'The {label} field must be a number.',
    'boolean': 'The {label} field must be true or false.',
    'array': 'The {label} field must be an array.',
    'email': 'The {label} field must be a valid email address.',
    'date': 'The {label} field must be a valid date.',
    'json': 'The {label} field must be a valid JSON string.',
    'min.string': 'The {label} field must be at least {arg} characters.',
    'min.numeric': 'The {label} field must be at least {arg}.',
    'min.array': 'The {label} field must have at least {arg} items.',
    'max.string': 'The {label} field must not be greater than {arg} characters.',
    'max.numeric': 'The {label} field must not be greater than {arg}.',
    'max.array': 'The {label} field must not have more than {arg} items.',
    'in': 'The selected {label} is invalid.',
    'not_in': 'The selected {label} is invalid.',
    'unique': 'The {label} has already been taken.',
    'exists': 'The selected {label} is invalid.',
}


def parse_rules(rules) -> list[str]:
    """Split a rule string into tokens; lists are copied, None is empty."""
    if rules is None:
        return []
    if isinstance(rules, str):
        return [r.strip() for r in rules.split('|') if r.strip()]
    return [str(r).strip() for r in rules if str(r).strip()]


def join_rules(tokens: list[str]) -> str:
    return '|'.join(tokens)


def strip_required(rules) -> list[str]:
    """Drop the bare ``required`` token (partial updates)."""
    return [t for t in parse_rules(rules) if t != 'required']


def ensure_required(rules) -> list[str]:
    tokens = parse_rules(rules)
    if 'required' not in tokens:
        tokens.insert(0, 'required')
    return tokens


def ignore_unique_for(rules, record_id, attribute: str) -> list[str]:
    """Rewrite ``unique:`` tokens so the row ``record_id`` is not counted.

    ``unique:table,column`` becomes ``unique:table,column,id`` and a bare
    ``unique:table`` becomes ``unique:table,attribute,id``.
    """
    rewritten = []
    for token in parse_rules(rules):
        if token.startswith('unique:'):
            args = token[len('unique:'):].split(',')
            if len(args) == 1:
                token = f"unique:{args[0]},{attribute},{record_id}"
            elif len(args) == 2:
                token = f"unique:{args[0]},{args[1]},{record_id}"
        rewritten.append(token)
    return rewritten


def _split(token: str) -> tuple[str, list[str]]:
    name, _, arg = token.partition(':')
    return name, ([a.strip() for a in arg.split(',')] if arg else [])


def _label(attribute: str) -> str:
    return attribute.replace('_', ' ')


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str):
        return re.fullmatch(r'\s*-?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?\s*', value) is not None
    return False


def _is_integer(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return value.is_integer()
    return isinstance(value, str) and re.fullmatch(r'\s*-?\d+\s*', value) is not None


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and value.strip() == '':
        return True
    return isinstance(value, (list, tuple, dict)) and len(value) == 0


class Validator:
    """Checks payloads against rule strings. ``conn`` backs ``unique`` / ``exists``."""

    def __init__(self, conn: sqlite3.Connection | None = None):
        self.conn = conn

    def validate(self, data: dict, rules: dict, messages: dict | None = None) -> dict:
        """Return the keys of ``data`` that have rules, or raise ValidationError."""
        messages = messages or {}
        errors: dict[str, list[str]] = {}

        for attribute, attribute_rules in rules.items():
            tokens = parse_rules(attribute_rules)
            failures = self._check_attribute(attribute, data, tokens)
            if failures:
                errors[attribute] = [
                    self._message(attribute, rule, arg, messages)
                    for rule, arg in failures
                ]

        if errors:
            logger.info("Validation failed for %s", sorted(errors))
            raise ValidationError(errors)

        return {k: v for k, v in data.items() if k in rules}

    def _message(self, attribute, rule, arg, messages) -> str:
        base = rule.split('.')[0]
        custom = messages.get(f"{attribute}.{base}")
        if custom:
            return custom
        template = MESSAGES.get(rule) or MESSAGES.get(base) or \
            'The {label} field is invalid.'
        return template.format(label=_label(attribute), arg=arg)

    def _check_attribute(self, attribute: str, data: dict, tokens: list[str]):
        names = [_split(t)[0] for t in tokens]
        present = attribute in data
        value = data.get(attribute)

        if 'required' in names and (not present or _is_missing(value)):
            return [('required', None)]
        if not present:
            return []
        if value is None and 'nullable' in names:
            return []
        if isinstance(value, str) and value == '' and 'required' not in names:
            return []

        failures = []
        kind = 'string'
        if 'array' in names or isinstance(value, (list, tuple)):
            kind = 'array'
        elif ('numeric' in names or 'integer' in names) and _is_number(value):
            kind = 'numeric'

        for token in tokens:
            name, args = _split(token)
            if name in MODIFIERS:
                continue
            check = getattr(self, f"_rule_{name}", None)
            if check is None:
                logger.warning("Unknown validation rule '%s' on %s", name, attribute)
                continue
            if not check(value, args, attribute, kind):
                if name in ('min', 'max'):
                    failures.append((f"{name}.{kind}", args[0] if args else ''))
                else:
                    failures.append((name, ','.join(args)))
        return failures

    # -- type rules -------------------------------------------------------

    def _rule_string(self, value, args, attribute, kind) -> bool:
        return isinstance(value, str)

    def _rule_integer(self, value, args, attribute, kind) -> bool:
        return _is_integer(value)

    def _rule_numeric(self, value, args, attribute, kind) -> bool:
        return _is_number(value)

    def _rule_boolean(self, value, args, attribute, kind) -> bool:
        return value in (True, False, 0, 1, '0', '1', 'true', 'false')

    def _rule_array(self, value, args, attribute, kind) -> bool:
        return isinstance(value, (list, tuple, dict))

    def _rule_email(self, value, args, attribute, kind) -> bool:
        if not isinstance(value, str):
            return False
        try:
            _email_adapter.validate_python(value)
        except PydanticValidationError:
            return False
        return True

    def _rule_date(self, value, args, attribute, kind) -> bool:
        if isinstance(value, (date, datetime)):
            return True
        if not isinstance(value, str):
            return False
        try:
            datetime.fromisoformat(value.strip())
        except ValueError:
            return False
        return True

    def _rule_json(self, value, args, attribute, kind) -> bool:
        if isinstance(value, (dict, list)):
            return True
        if not isinstance(value, str):
            return False
        try:
            json.loads(value)
        except ValueError:
            return False
        return True

    # -- size rules -------------------------------------------------------

    def _size(self, value, kind):
        if kind == 'array':
            return len(value) if hasattr(value, '__len__') else 0
        if kind == 'numeric':
            return float(value)
        return len(str(value))

    def _rule_min(self, value, args, attribute, kind) -> bool:
        return self._size(value, kind) >= float(args[0])

    def _rule_max(self, value, args, attribute, kind) -> bool:
        return self._size(value, kind) <= float(args[0])

    # -- membership rules -------------------------------------------------

    def _rule_in(self, value, args, attribute, kind) -> bool:
        values = value if isinstance(value, (list, tuple)) else [value]
        return all(str(v) in args for v in values)

    def _rule_not_in(self, value, args, attribute, kind) -> bool:
        values = value if isinstance(value, (list, tuple)) else [value]
        return not any(str(v) in args for v in values)

    # -- database rules ---------------------------------------------------

    def _rule_unique(self, value, args, attribute, kind) -> bool:
        """``unique:table[,column[,except_id[,id_column]]]``"""
        if self.conn is None:
            return True
        table = args[0]
        column = args[1] if len(args) > 1 and args[1] else attribute
        sql = f"SELECT 1 FROM {quote(table)} WHERE {quote(column)} = ?"
        params = [value]
        if len(args) > 2 and args[2] not in ('', 'NULL'):
            id_column = args[3] if len(args) > 3 else 'id'
            sql += f" AND {quote(id_column)} != ?"
            params.append(args[2])
        return self.conn.execute(sql + ' LIMIT 1', params).fetchone() is None

    def _rule_exists(self, value, args, attribute, kind) -> bool:
        """``exists:table[,column]``; every element must exist for array values."""
        if self.conn is None:
            return True
        table = args[0]
        column = args[1] if len(args) > 1 else 'id'
        values = value if isinstance(value, (list, tuple)) else [value]
        sql = f"SELECT 1 FROM {quote(table)} WHERE {quote(column)} = ? LIMIT 1"
        return all(self.conn.execute(sql, (v,)).fetchone() is not None
                   for v in values)


def has_rule(rules, name: str) -> bool:
    return any(_split(t)[0] == name for t in parse_rules(rules))
