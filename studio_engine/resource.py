"""
Resource definitions and the registry that resolves them by key.

A resource ties a store model to three field lists (index, show, form) plus
filters, actions and the relations to eager-load. Instances are cheap and
built fresh per request; field objects are never shared across requests.
"""

from __future__ import annotations

import importlib
import logging
import re

from .containers import flatten
from .exceptions import ResourceNotRegisteredError
from .fields import ID, Date, Password
from .store import Model
from .visibility import bind_siblings, visible_fields

logger = logging.getLogger(__name__)


def pluralize(word: str) -> str:
    if re.search(r'[^aeiou]y$', word):
        return word[:-1] + 'ies'
    if re.search(r'(s|x|z|ch|sh)$', word):
        return word + 'es'
    return word + 's'


class Resource:
    model: Model = None
    label: str = ''
    singular_label: str = ''
    title: str = 'id'
    searchable: bool = True
    search: tuple = ()
    per_page: int = 15
    # Overrides the key derived from the class name.
    resource_key: str | None = None

    @classmethod
    def key(cls) -> str:
        """'UserResource' -> 'users' unless ``resource_key`` is set."""
        if cls.resource_key:
            return cls.resource_key
        return pluralize(cls.__name__.replace('Resource', '').lower())

    # -- declarations (override) -----------------------------------------

    def index_fields(self) -> list:
        return []

    def show_fields(self) -> list:
        return []

    def form_fields(self) -> list:
        return []

    def filters(self) -> list:
        return []

    def actions(self) -> list:
        return []

    def with_(self) -> list[str]:
        return []

    def messages(self) -> dict:
        return {}

    # -- assembled field lists -------------------------------------------

    def get_index_fields(self) -> list:
        return [ID(sortable=True)] + self.index_fields() + [Date('Created At', sortable=True)]

    def get_show_fields(self) -> list:
        return [ID()] + self.show_fields() + [Date('Created At'), Date('Updated At')]

    def get_form_fields(self) -> list:
        return self.form_fields()

    def flatten_fields(self, items) -> list:
        return bind_siblings(flatten(items))

    def get_visible_fields(self, form_data: dict) -> list:
        """Flattened form fields visible for this payload."""
        return visible_fields(self.flatten_fields(self.get_form_fields()), form_data)

    def rules(self, context: str = 'create') -> dict:
        """``{attribute: rules}`` for form fields; password fields use per-context rules."""
        rules = {}
        for field in self.flatten_fields(self.get_form_fields()):
            field_rules = field.rules_for(context) if isinstance(field, Password) else field.rules
            if field_rules:
                rules[field.attribute] = field_rules
        return rules

    def transform(self, record) -> dict:
        """Serialise ``record`` through the index fields' transforms."""
        data = record.to_dict()
        for field in self.flatten_fields(self.get_index_fields()):
            data[field.attribute] = field.transform_value(record.get(field.attribute), record)
        return data

    def check_dependencies(self) -> list[tuple[str, str]]:
        """``(field, attribute)`` pairs where a condition names an undeclared attribute."""
        known = set()
        for items in (self.get_index_fields(), self.get_show_fields(), self.get_form_fields()):
            known.update(f.attribute for f in self.flatten_fields(items))
        dangling = []
        for field in self.flatten_fields(self.get_form_fields()):
            for attribute in field.referenced_attributes():
                if attribute not in known:
                    dangling.append((field.attribute, attribute))
        for field_attr, attribute in dangling:
            logger.warning("%s.%s depends on undeclared attribute '%s'",
                           self.key(), field_attr, attribute)
        return dangling

    def to_meta(self, context: str = 'index') -> dict:
        fields = self.get_form_fields() if context == 'form' else self.get_index_fields()
        return {
            'key': self.key(),
            'model': self.model.table if self.model else None,
            'label': self.label,
            'singularLabel': self.singular_label,
            'title': self.title,
            'searchable': self.searchable,
            'search': list(self.search),
            'perPage': self.per_page,
            'fields': [f.to_dict() for f in fields],
            'filters': [f.to_dict() for f in self.filters()],
            'actions': [a.to_dict() for a in self.actions()],
        }


class ResourceRegistry:
    """Maps resource keys to Resource classes."""

    def __init__(self):
        self._resources: dict[str, type[Resource]] = {}

    def register(self, resource_cls: type[Resource]) -> type[Resource]:
        """Register a Resource class; usable as a class decorator."""
        self._resources[resource_cls.key()] = resource_cls
        logger.debug("Registered resource '%s'", resource_cls.key())
        return resource_cls

    def unregister(self, key: str) -> None:
        self._resources.pop(key, None)

    def clear(self) -> None:
        self._resources.clear()

    def keys(self) -> list[str]:
        return sorted(self._resources)

    def resolve(self, key: str) -> Resource:
        """Return a fresh instance of the resource registered under ``key``."""
        resource_cls = self._resources.get(key)
        if resource_cls is None:
            raise ResourceNotRegisteredError(key)
        return resource_cls()

    def load_module(self, module_path: str) -> None:
        """Import ``module_path`` and register its ``RESOURCES`` list, if any."""
        module = importlib.import_module(module_path)
        for resource_cls in getattr(module, 'RESOURCES', []):
            self.register(resource_cls)


registry = ResourceRegistry()
