"""
Field definitions: declarative descriptors for resource attributes.

Each variant is a thin subclass of :class:`Field` that adds builder options
(stored in ``meta``) and a kind string. Output formatting lives in the
``TRANSFORMERS`` table keyed by kind rather than in per-class overrides.
"""

from __future__ import annotations

import enum
import json
import os
import re
from datetime import date, datetime
from typing import Any, Callable

from . import visibility
from .conditions import evaluate_triple, referenced_attributes

TRANSFORMERS: dict[str, Callable] = {}


def transformer(*kinds: str):
    """Register a ``(field, value, record) -> value`` output transform for ``kinds``."""
    def decorator(func):
        for kind in kinds:
            TRANSFORMERS[kind] = func
        return func
    return decorator


def snake_case(label: str) -> str:
    """'Created At' -> 'created_at', 'firstName' -> 'first_name'."""
    text = re.sub(r'([a-z0-9])([A-Z])', r'\1_\2', label.strip())
    text = re.sub(r'[^0-9A-Za-z]+', '_', text)
    return text.strip('_').lower()


def options_dict(options) -> dict:
    """Accept a dict, an Enum class (value -> name) or a zero-argument callable."""
    if isinstance(options, type) and issubclass(options, enum.Enum):
        return {case.value: case.name for case in options}
    if callable(options) and not isinstance(options, dict):
        return dict(options())
    return dict(options)


def _condition(attribute: str, value: Any, operator: str) -> dict:
    return {'attribute': attribute, 'value': value, 'operator': operator}


class Field:
    """Base field. Subclasses set ``kind`` and add builder methods."""

    kind = 'field'

    def __init__(self, label: str, attribute: str | None = None, *,
                 rules=None, sortable: bool = False, searchable: bool = False,
                 nullable: bool = False, creatable: bool = False,
                 default: Any = None, cols: str = 'col-span-12',
                 container_classes: str | None = None):
        self.label = label
        self.attribute = attribute or snake_case(label)
        self.rules = None
        self.sortable = sortable
        self.searchable = searchable
        self.required = False
        self.nullable = nullable
        self.creatable = creatable
        self.default = default
        self.cols = cols
        self.container_classes = container_classes
        self.meta: dict = {}
        # Flattened field list this field was declared in; set by bind_siblings.
        self.siblings: list | None = None

        self.depends_on_condition: dict | None = None
        self.show_when_callback: Callable | None = None
        self.hide_when_callback: Callable | None = None
        self.required_when_condition: dict | None = None
        self.disabled_when_condition: dict | None = None

        if rules is not None:
            self.set_rules(rules)

    @classmethod
    def make(cls, label: str, attribute: str | None = None, **options):
        return cls(label, attribute, **options)

    def __repr__(self):
        return f"<{type(self).__name__} {self.attribute!r}>"

    # -- builders ---------------------------------------------------------

    def set_rules(self, rules):
        """Set the rule string/list; 'required' and 'nullable' tokens also set the flags."""
        self.rules = rules
        if isinstance(rules, str):
            if 'required' in rules:
                self.required = True
            if 'nullable' in rules:
                self.nullable = True
        return self

    def with_meta(self, values: dict | None = None, **kwargs):
        self.meta.update(values or {})
        self.meta.update(kwargs)
        return self

    def placeholder(self, text: str):
        return self.with_meta(placeholder=text)

    def help(self, text: str):
        return self.with_meta(helpText=text)

    # -- conditions -------------------------------------------------------

    def depends_on(self, attribute: str, value: Any, operator: str = '='):
        self.depends_on_condition = _condition(attribute, value, operator)
        return self.with_meta(dependsOn=self.depends_on_condition)

    def depends_on_all(self, conditions: list):
        self.depends_on_condition = {'type': 'all', 'conditions': list(conditions)}
        return self.with_meta(dependsOn=self.depends_on_condition)

    def depends_on_any(self, conditions: list):
        self.depends_on_condition = {'type': 'any', 'conditions': list(conditions)}
        return self.with_meta(dependsOn=self.depends_on_condition)

    def show_when(self, condition):
        """A callable is evaluated server-side only; a dict tree is also sent to clients."""
        if callable(condition):
            self.show_when_callback = condition
            self.meta['showWhen'] = {'type': 'callback', 'frontend': False}
        else:
            self.meta['showWhen'] = condition
        return self

    def hide_when(self, condition):
        if callable(condition):
            self.hide_when_callback = condition
            self.meta['hideWhen'] = {'type': 'callback', 'frontend': False}
        else:
            self.meta['hideWhen'] = condition
        return self

    def required_when(self, attribute: str, value: Any, operator: str = '='):
        self.required_when_condition = _condition(attribute, value, operator)
        return self.with_meta(requiredWhen=self.required_when_condition)

    def disabled_when(self, attribute: str, value: Any, operator: str = '='):
        self.disabled_when_condition = _condition(attribute, value, operator)
        return self.with_meta(disabledWhen=self.disabled_when_condition)

    # -- runtime state ----------------------------------------------------

    def is_visible(self, form_data: dict, fields=None, stack: list | None = None) -> bool:
        """Visible for ``form_data``; dependencies resolve against ``fields`` or the bound siblings."""
        if fields is None:
            fields = self.siblings
        return visibility.resolve(self, form_data, fields, stack)

    def is_required(self, form_data: dict) -> bool:
        if self.required_when_condition is not None:
            return evaluate_triple(form_data, self.required_when_condition)
        return self.required

    def is_disabled(self, form_data: dict) -> bool:
        if self.disabled_when_condition is not None:
            return evaluate_triple(form_data, self.disabled_when_condition)
        return False

    def referenced_attributes(self) -> list[str]:
        """Every attribute named by this field's conditions."""
        found = visibility.visibility_dependencies(self)
        found += referenced_attributes(self.required_when_condition)
        found += referenced_attributes(self.disabled_when_condition)
        return list(dict.fromkeys(found))

    def syncs_relation(self) -> bool:
        """True when the value is a collection of related ids synced through a pivot."""
        return False

    # -- output -----------------------------------------------------------

    def transform_value(self, value: Any, record=None) -> Any:
        return TRANSFORMERS.get(self.kind, _identity)(self, value, record)

    def extra_dict(self) -> dict:
        return {}

    def to_dict(self) -> dict:
        meta = dict(self.meta)
        for key in ('dependsOn', 'showWhen', 'hideWhen', 'requiredWhen', 'disabledWhen'):
            meta.setdefault(key, None)
        data = {
            'type': self.kind,
            'attribute': self.attribute,
            'label': self.label,
            'sortable': self.sortable,
            'searchable': self.searchable,
            'required': self.required,
            'nullable': self.nullable,
            'creatable': self.creatable,
            'default': self.default,
            'cols': self.cols,
            'containerClasses': self.container_classes,
            'meta': meta,
        }
        data.update(self.extra_dict())
        return data


# ---------------------------------------------------------------------------
# Scalar variants
# ---------------------------------------------------------------------------

class ID(Field):
    kind = 'id'

    def __init__(self, label: str = 'ID', attribute: str | None = 'id', **options):
        super().__init__(label, attribute or 'id', **options)


class Text(Field):
    kind = 'text'

    def max_length(self, length: int):
        return self.with_meta(maxLength=length)

    def min_length(self, length: int):
        return self.with_meta(minLength=length)


class Textarea(Field):
    kind = 'textarea'

    def rows(self, rows: int):
        return self.with_meta(rows=rows)

    def max_length(self, length: int):
        return self.with_meta(maxLength=length)


class Number(Field):
    kind = 'number'

    def min(self, value):
        return self.with_meta(min=value)

    def max(self, value):
        return self.with_meta(max=value)

    def step(self, value):
        return self.with_meta(step=value)


class Boolean(Field):
    kind = 'boolean'

    def true_label(self, label: str):
        return self.with_meta(trueLabel=label)

    def false_label(self, label: str):
        return self.with_meta(falseLabel=label)

    def toggleable(self, toggleable: bool = True):
        return self.with_meta(toggleable=toggleable)


class Date(Field):
    kind = 'date'

    def format(self, fmt: str):
        return self.with_meta(format=fmt)

    def min(self, value: str):
        return self.with_meta(min=value)

    def max(self, value: str):
        return self.with_meta(max=value)


class Email(Field):
    kind = 'email'


class Password(Field):
    kind = 'password'

    def __init__(self, label: str, attribute: str | None = None, **options):
        super().__init__(label, attribute, **options)
        self._required_on_create = True
        self._required_on_update = False

    def required_on_create(self, required: bool = True):
        self._required_on_create = required
        return self

    def required_on_update(self, required: bool = True):
        self._required_on_update = required
        return self

    def creation_rules(self, rules):
        return self.with_meta(creationRules=rules)

    def update_rules(self, rules):
        return self.with_meta(updateRules=rules)

    def creation_placeholder(self, text: str):
        return self.with_meta(creationPlaceholder=text)

    def update_placeholder(self, text: str):
        return self.with_meta(updatePlaceholder=text)

    def rules_for(self, context: str):
        """Context rules ('create' / 'update') falling back to the plain rules."""
        key = 'creationRules' if context == 'create' else 'updateRules'
        return self.meta.get(key) or self.rules

    def is_required_for(self, context: str) -> bool:
        return self._required_on_create if context == 'create' else self._required_on_update

    def extra_dict(self) -> dict:
        return {'requiredOnCreate': self._required_on_create,
                'requiredOnUpdate': self._required_on_update}


class Json(Field):
    kind = 'json'

    EXPECTED_TYPES = ('array', 'object')

    def rows(self, rows: int):
        return self.with_meta(rows=rows)

    def expected_type(self, kind: str):
        if kind not in self.EXPECTED_TYPES:
            raise ValueError('Expected type must be either "array" or "object"')
        return self.with_meta(expectedType=kind)

    def show_preview(self, show: bool = True):
        return self.with_meta(showPreview=show)

    def auto_format(self, enabled: bool = True):
        return self.with_meta(autoFormat=enabled)

    def show_format_button(self, show: bool = True):
        return self.with_meta(showFormatButton=show)

    def show_validate_button(self, show: bool = True):
        return self.with_meta(showValidateButton=show)

    def show_validation_icon(self, show: bool = True):
        return self.with_meta(showValidationIcon=show)


class TagInput(Field):
    kind = 'tag-input'

    def suggestions(self, suggestions: list):
        return self.with_meta(suggestions=list(suggestions))

    def allow_custom(self, allow: bool = True):
        return self.with_meta(allowCustom=allow)

    def max_tags(self, limit: int | None):
        return self.with_meta(maxTags=limit)

    def min_tags(self, limit: int | None):
        return self.with_meta(minTags=limit)

    def case_insensitive(self, enabled: bool = True):
        return self.with_meta(caseInsensitive=enabled)

    def delimiter(self, delimiter: str):
        return self.with_meta(delimiter=delimiter)


class MultiSelectServer(Field):
    kind = 'multi-select-server'

    def endpoint(self, url: str):
        return self.with_meta(endpoint=url)

    def label_key(self, key: str):
        return self.with_meta(labelKey=key)

    def value_key(self, key: str):
        return self.with_meta(valueKey=key)

    def search_box(self, enabled: bool = True):
        return self.with_meta(searchable=enabled)

    def max_selections(self, limit: int | None):
        return self.with_meta(maxSelections=limit)

    def min_selections(self, limit: int | None):
        return self.with_meta(minSelections=limit)

    def group_by(self, key: str):
        return self.with_meta(groupBy=key)

    def description_key(self, key: str):
        return self.with_meta(descriptionKey=key)

    def show_tags(self, show: bool = True):
        return self.with_meta(showTags=show)

    def headers(self, headers: dict):
        return self.with_meta(headers=dict(headers))


class IconPicker(Field):
    kind = 'icon-picker'

    DEFAULT_ICONS = (
        'dashboard', 'menu', 'close', 'search', 'home', 'settings', 'cog',
        'chevron-down', 'chevron-up', 'chevron-right', 'chevron-left',
        'arrow-left', 'arrow-right', 'arrow-up', 'arrow-down', 'arrow-path',
        'layout', 'grid', 'list', 'table', 'squares-2x2',
        'user', 'users', 'user-plus', 'user-minus', 'user-check', 'team', 'profile',
        'shield', 'lock', 'unlock', 'key', 'logout',
        'check', 'check-circle', 'x-circle', 'x-mark',
        'alert-circle', 'alert-triangle', 'info-circle', 'help-circle',
        'mail', 'messages', 'chat', 'bell', 'inbox', 'phone',
        'analytics', 'reports', 'tasks', 'clipboard', 'document-text',
        'file', 'folder', 'folder-open', 'archive',
        'edit', 'pencil', 'trash', 'plus', 'minus',
        'save', 'download', 'upload', 'copy', 'share', 'refresh',
        'image', 'video', 'camera', 'eye', 'eye-off', 'sun', 'moon',
        'shopping-cart', 'credit-card', 'tag', 'star', 'heart', 'bookmark', 'flag',
        'chart-bar', 'chart-line', 'chart-pie',
        'code', 'globe', 'server', 'database', 'link', 'external-link',
        'clock', 'calendar', 'filter', 'sort',
    )

    def icons(self, icons: list):
        return self.with_meta(icons=list(icons))

    def search_box(self, enabled: bool = True):
        return self.with_meta(searchable=enabled)

    def columns(self, columns: int):
        return self.with_meta(columns=columns)

    def preview_size(self, size: str):
        return self.with_meta(previewSize=size)

    @classmethod
    def default_icons(cls) -> list[str]:
        return list(dict.fromkeys(cls.DEFAULT_ICONS))


class Image(Field):
    kind = 'image'

    DISPLAY_TYPES = ('url', 'svg', 'base64')

    def __init__(self, label: str, attribute: str | None = None, **options):
        super().__init__(label, attribute, **options)
        self._display_type = 'url'
        self._width = None
        self._height = None
        self._rounded = False
        self._fallback = None

    def display_type(self, kind: str):
        if kind not in self.DISPLAY_TYPES:
            raise ValueError(f"Unknown image display type: {kind}")
        self._display_type = kind
        return self.with_meta(displayType=kind)

    def as_url(self):
        return self.display_type('url')

    def as_svg(self):
        return self.display_type('svg')

    def as_base64(self):
        return self.display_type('base64')

    def width(self, width: int):
        self._width = width
        return self.with_meta(width=width)

    def height(self, height: int):
        self._height = height
        return self.with_meta(height=height)

    def size(self, width: int, height: int):
        return self.width(width).height(height)

    def rounded(self, rounded: bool = True):
        self._rounded = rounded
        return self.with_meta(rounded=rounded)

    def fallback(self, url: str):
        self._fallback = url
        return self.with_meta(fallback=url)

    def alt(self, text: str):
        return self.with_meta(alt=text)

    def extra_dict(self) -> dict:
        return {
            'displayType': self._display_type,
            'width': self._width,
            'height': self._height,
            'rounded': self._rounded,
            'fallback': self._fallback,
        }


# ---------------------------------------------------------------------------
# Relationship variants
# ---------------------------------------------------------------------------

class Select(Field):
    kind = 'select'

    def options(self, options):
        return self.with_meta(options=options_dict(options))

    def multiple(self, multiple: bool = True):
        return self.with_meta(multiple=multiple)

    def search_box(self, enabled: bool = True):
        self.searchable = enabled
        return self.with_meta(searchable=enabled)

    def max_selections(self, limit: int | None):
        return self.with_meta(maxSelections=limit)

    def server_side(self, enabled: bool = True):
        return self.with_meta(serverSide=enabled)

    def resource(self, key: str):
        return self.with_meta(resource=key)

    def title_attribute(self, attribute: str):
        return self.with_meta(titleAttribute=attribute)

    def toggleable(self, toggleable: bool = True, true_value: str | None = None,
                   false_value: str | None = None):
        values = {'toggleable': toggleable}
        if toggleable and true_value is not None and false_value is not None:
            values['toggleTrueValue'] = true_value
            values['toggleFalseValue'] = false_value
        return self.with_meta(values)

    def is_multiple(self) -> bool:
        return bool(self.meta.get('multiple'))

    def syncs_relation(self) -> bool:
        return self.is_multiple() and bool(self.meta.get('resource'))

    def relation_name(self) -> str:
        return self.attribute


class BelongsTo(Field):
    kind = 'belongs-to'

    def __init__(self, label: str, attribute: str | None = None, **options):
        super().__init__(label, attribute, **options)
        self._relation = None

    def resource(self, key: str):
        return self.with_meta(resource=key)

    def title_attribute(self, attribute: str):
        return self.with_meta(titleAttribute=attribute)

    def search_box(self, enabled: bool = True):
        return self.with_meta(searchable=enabled)

    def relation(self, name: str):
        self._relation = name
        return self

    def relation_name(self) -> str:
        if self._relation:
            return self._relation
        return self.attribute.replace('_id', '')


class BelongsToMany(Field):
    kind = 'belongs-to-many'

    def resource(self, key: str):
        return self.with_meta(resource=key)

    def title_attribute(self, attribute: str):
        return self.with_meta(titleAttribute=attribute)

    def enforce_unique_related(self, enforce: bool = True):
        """Each related id may belong to at most one parent across the pivot table."""
        return self.with_meta(enforceUniqueRelated=enforce)

    def should_enforce_unique_related(self) -> bool:
        return bool(self.meta.get('enforceUniqueRelated', False))

    def syncs_relation(self) -> bool:
        return True

    def relation_name(self) -> str:
        return self.attribute


class HasMany(Field):
    kind = 'has-many'

    def resource(self, key: str):
        return self.with_meta(resource=key)

    def relation_name(self) -> str:
        return self.attribute


class Media(Field):
    """File attachments stored as media rows keyed by collection."""

    kind = 'media'

    DANGEROUS_EXTENSIONS = frozenset({
        'php', 'php3', 'php4', 'php5', 'php7', 'phtml', 'phar',
        'exe', 'bat', 'cmd', 'com', 'msi', 'dll', 'scr',
        'js', 'jse', 'vbs', 'vbe', 'wsf', 'wsh',
        'sh', 'bash', 'csh', 'ksh', 'pl', 'py', 'rb',
        'htaccess', 'htpasswd', 'ini', 'config',
        'asp', 'aspx', 'asa', 'asax', 'ascx', 'ashx', 'asmx',
        'jsp', 'jspx', 'cfm', 'cfc',
        'svg',
    })

    RELATION = 'media'

    def __init__(self, label: str, attribute: str | None = None, **options):
        super().__init__(label, attribute, **options)
        self._multiple = False
        self._collection = 'default'
        self._accepted_types = ['image/*']
        self._allowed_extensions: list[str] = []
        self._max_files = None
        self._max_file_size = None
        self._preview_width = None
        self._preview_height = None
        self._rounded = False
        self._disk = None
        self._editable = False
        self._editor_options: dict = {}

    def single(self):
        self._multiple = False
        self._max_files = 1
        return self.with_meta(multiple=False, maxFiles=1)

    def multiple(self, max_files: int | None = None):
        self._multiple = True
        self._max_files = max_files
        return self.with_meta(multiple=True, maxFiles=max_files)

    def collection(self, name: str):
        self._collection = name
        return self.with_meta(collection=name)

    def accepted_types(self, types: list):
        self._accepted_types = list(types)
        return self.with_meta(acceptedTypes=self._accepted_types)

    def images(self):
        self._allowed_extensions = ['jpg', 'jpeg', 'png', 'gif', 'webp']
        return self.accepted_types(['image/jpeg', 'image/png', 'image/gif', 'image/webp'])

    def images_with_svg(self):
        self._allowed_extensions = ['jpg', 'jpeg', 'png', 'gif', 'webp', 'svg']
        return self.accepted_types(['image/jpeg', 'image/png', 'image/gif',
                                    'image/webp', 'image/svg+xml'])

    def documents(self):
        self._allowed_extensions = ['pdf', 'doc', 'docx']
        return self.accepted_types([
            'application/pdf', 'application/msword',
            'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
        ])

    def allowed_extensions(self, extensions: list):
        """Whitelist extensions; dangerous ones are dropped silently."""
        self._allowed_extensions = [
            ext.lower() for ext in extensions
            if ext.lower() not in self.DANGEROUS_EXTENSIONS
        ]
        return self.with_meta(allowedExtensions=self._allowed_extensions)

    def is_extension_allowed(self, filename: str) -> bool:
        extension = os.path.splitext(filename)[1].lstrip('.').lower()
        if not extension and filename.startswith('.'):
            extension = filename.lstrip('.').lower()
        if extension in self.DANGEROUS_EXTENSIONS:
            return False
        if not self._allowed_extensions:
            return True
        return extension in self._allowed_extensions

    def max_file_size(self, megabytes: int):
        self._max_file_size = megabytes
        return self.with_meta(maxFileSize=megabytes)

    def preview_size(self, width: int, height: int):
        self._preview_width = width
        self._preview_height = height
        return self.with_meta(previewWidth=width, previewHeight=height)

    def rounded(self, rounded: bool = True):
        self._rounded = rounded
        return self.with_meta(rounded=rounded)

    def disk(self, name: str):
        self._disk = name
        return self.with_meta(disk=name)

    def editable(self, options: dict | None = None):
        self._editable = True
        self._editor_options = dict(options or {})
        return self.with_meta(editable=True, editorOptions=self._editor_options)

    @property
    def collection_name(self) -> str:
        return self._collection

    def is_multiple(self) -> bool:
        return self._multiple

    def extra_dict(self) -> dict:
        return {
            'multiple': self._multiple,
            'collection': self._collection,
            'acceptedTypes': self._accepted_types,
            'allowedExtensions': self._allowed_extensions,
            'maxFiles': self._max_files,
            'maxFileSize': self._max_file_size,
            'previewWidth': self._preview_width,
            'previewHeight': self._preview_height,
            'rounded': self._rounded,
            'disk': self._disk,
            'editable': self._editable,
            'editorOptions': self._editor_options,
        }


# ---------------------------------------------------------------------------
# Output transforms
# ---------------------------------------------------------------------------

def _identity(field, value, record):
    return value


def _display(field, related):
    title = field.meta.get('titleAttribute', 'name')
    shown = related.get(title)
    return {'id': related.id, 'display': shown if shown is not None else related.id}


def _loaded(record, name):
    if record is None or not record.relation_loaded(name):
        return None
    return record.get_relation(name)


@transformer('boolean')
def _transform_boolean(field, value, record):
    return bool(value)


@transformer('date')
def _transform_date(field, value, record):
    if not value:
        return None
    if isinstance(value, datetime):
        return value.strftime('%Y-%m-%d %H:%M:%S')
    if isinstance(value, date):
        return value.isoformat()
    return value


@transformer('password')
def _transform_password(field, value, record):
    return None


@transformer('tag-input', 'multi-select-server')
def _transform_list(field, value, record):
    if value is None:
        return []
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except ValueError:
            return [value]
        return decoded if isinstance(decoded, list) else [value]
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


@transformer('select')
def _transform_select(field, value, record):
    if not field.syncs_relation():
        return value
    related = _loaded(record, field.relation_name())
    if related is None:
        return []
    return [item.id for item in related]


@transformer('belongs-to')
def _transform_belongs_to(field, value, record):
    related = _loaded(record, field.relation_name())
    if related:
        return _display(field, related)
    return value


@transformer('belongs-to-many')
def _transform_belongs_to_many(field, value, record):
    related = _loaded(record, field.relation_name())
    if related is None:
        return []
    return [_display(field, item) for item in related]


@transformer('has-many')
def _transform_has_many(field, value, record):
    related = _loaded(record, field.relation_name())
    if related is None:
        return {'count': 0, 'items': []}
    return {'count': len(related), 'items': [item.to_dict() for item in related]}


def _media_item(item) -> dict:
    url = item.get('url')
    return {
        'id': item.id,
        'name': item.get('file_name'),
        'url': url,
        'thumbnail': item.get('thumbnail_url') or url,
        'size': item.get('size'),
        'mime_type': item.get('mime_type'),
    }


@transformer('media')
def _transform_media(field, value, record):
    media = _loaded(record, Media.RELATION)
    if media is None:
        return None
    items = [_media_item(m) for m in media
             if m.get('collection_name') == field.collection_name]
    if field.is_multiple():
        return items or None
    return items[0] if items else None
