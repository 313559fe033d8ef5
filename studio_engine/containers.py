"""
Layout containers for form fields.

Groups and sections carry their own one-shot visibility predicate. They do
not take part in field cycle detection and only understand a single
depends-on condition or a callable.
"""

from __future__ import annotations

from typing import Any, Callable

from .conditions import evaluate_container


class _Container:
    def __init__(self, fields=None):
        self.fields = list(fields or [])
        self.cols = 'col-span-12'
        self.gap = 'gap-4'
        self.depends_on_condition: dict | None = None
        self.show_when_callback: Callable | None = None

    def set_cols(self, cols: str):
        self.cols = cols
        return self

    def set_gap(self, gap: str):
        self.gap = gap
        return self

    def depends_on(self, attribute: str, value: Any, operator: str = '='):
        self.depends_on_condition = {'attribute': attribute, 'value': value,
                                     'operator': operator}
        return self

    def show_when(self, callback: Callable):
        self.show_when_callback = callback
        return self

    def is_visible(self, form_data: dict) -> bool:
        if self.depends_on_condition is not None:
            return evaluate_container(form_data, self.depends_on_condition)
        if self.show_when_callback is not None and callable(self.show_when_callback):
            return bool(self.show_when_callback(form_data))
        return True

    def _fields_dict(self) -> list[dict]:
        return [f.to_dict() for f in self.fields]


class Group(_Container):
    """A row of fields sharing one grid span."""

    def __init__(self, fields=None, label: str | None = None):
        super().__init__(fields)
        self.label = label

    @classmethod
    def make(cls, fields, label: str | None = None):
        return cls(fields, label)

    def set_label(self, label: str):
        self.label = label
        return self

    def to_dict(self) -> dict:
        return {
            'type': 'group',
            'label': self.label,
            'cols': self.cols,
            'gap': self.gap,
            'dependsOn': self.depends_on_condition,
            'fields': self._fields_dict(),
        }


class Section(_Container):
    """Titled, optionally collapsible block of fields and groups."""

    def __init__(self, title: str, fields=None):
        super().__init__(fields)
        self.title = title
        self.description = None
        self.icon = None
        self.collapsible = False
        self.collapsed = False
        self.container_classes = None

    @classmethod
    def make(cls, title: str, fields=None):
        return cls(title, fields)

    def set_fields(self, fields):
        self.fields = list(fields)
        return self

    def set_description(self, description: str):
        self.description = description
        return self

    def set_icon(self, icon: str):
        self.icon = icon
        return self

    def set_collapsible(self, collapsible: bool = True):
        self.collapsible = collapsible
        return self

    def set_collapsed(self, collapsed: bool = True):
        self.collapsed = collapsed
        return self

    def set_container_classes(self, classes: str):
        self.container_classes = classes
        return self

    def to_dict(self) -> dict:
        return {
            'type': 'section',
            'title': self.title,
            'description': self.description,
            'icon': self.icon,
            'collapsible': self.collapsible,
            'collapsed': self.collapsed,
            'cols': self.cols,
            'gap': self.gap,
            'containerClasses': self.container_classes,
            'dependsOn': self.depends_on_condition,
            'fields': self._fields_dict(),
        }


def flatten(items) -> list:
    """Expand sections and groups into their fields, preserving order."""
    flat = []
    for item in items:
        if isinstance(item, _Container):
            flat.extend(flatten(item.fields))
        else:
            flat.append(item)
    return flat
