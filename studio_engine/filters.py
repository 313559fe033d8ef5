"""Index filters. Each filter owns the query mutation for its key."""

from __future__ import annotations

from typing import Any

from .exceptions import StudioError
from .fields import options_dict, snake_case
from .store import Query


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


class Filter:
    kind = 'filter'

    def __init__(self, label: str, key: str | None = None):
        self.label = label
        self.key = key or snake_case(label)
        self.default = None
        self.meta: dict = {}
        self.column: str | None = None

    @classmethod
    def make(cls, label: str, key: str | None = None):
        return cls(label, key)

    def set_default(self, value):
        self.default = value
        return self

    def with_meta(self, values: dict | None = None, **kwargs):
        self.meta.update(values or {})
        self.meta.update(kwargs)
        return self

    def on_column(self, column: str):
        self.column = column
        return self

    @property
    def target_column(self) -> str:
        return self.column or self.key

    def apply(self, query: Query, value) -> Query:
        raise NotImplementedError

    def to_dict(self) -> dict:
        return {
            'type': self.kind,
            'key': self.key,
            'label': self.label,
            'default': self.default,
            'meta': self.meta,
        }


class _OptionsMixin:
    options: dict

    def set_options(self, options):
        self.options = options_dict(options)
        return self

    def _options_list(self) -> list[dict]:
        return [{'value': value, 'label': label} for value, label in self.options.items()]


class SelectFilter(_OptionsMixin, Filter):
    kind = 'select'

    def __init__(self, label: str, key: str | None = None):
        super().__init__(label, key)
        self.options = {}

    def apply(self, query: Query, value) -> Query:
        return query.where(self.target_column, value)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['options'] = self._options_list()
        return data


class BooleanFilter(Filter):
    kind = 'boolean'

    def true_label(self, label: str):
        return self.with_meta(trueLabel=label)

    def false_label(self, label: str):
        return self.with_meta(falseLabel=label)

    def apply(self, query: Query, value) -> Query:
        return query.where(self.target_column, 1 if _truthy(value) else 0)


class DateRangeFilter(Filter):
    """Inclusive ``{'from': ..., 'to': ...}`` bounds on a date/datetime column."""

    kind = 'date-range'

    def apply(self, query: Query, value) -> Query:
        if isinstance(value, dict):
            if value.get('from'):
                query.where_date(self.target_column, '>=', value['from'])
            if value.get('to'):
                query.where_date(self.target_column, '<=', value['to'])
        return query


class BelongsToManyFilter(_OptionsMixin, Filter):
    kind = 'select'

    def __init__(self, label: str, key: str | None = None):
        super().__init__(label, key)
        self.options = {}
        self.relationship: str | None = None

    def set_relationship(self, relationship: str):
        self.relationship = relationship
        return self

    def apply(self, query: Query, value) -> Query:
        if not self.relationship:
            raise StudioError('Relationship must be set for BelongsToManyFilter')
        return query.where_has_related(self.relationship, value)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['options'] = self._options_list()
        return data
