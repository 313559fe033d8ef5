"""
Resource actions run against a selection of records.

``handle(records, data, service)`` receives records loaded with the same
relations as ``show`` and the service that loaded them.
"""

from __future__ import annotations

import csv
import io
import logging

from .exceptions import StudioError
from .fields import snake_case

logger = logging.getLogger(__name__)


class Action:
    kind = 'action'
    STYLES = ('default', 'danger', 'success')

    def __init__(self, label: str | None = None, key: str | None = None):
        self.label = label or 'Action'
        self.key = key or snake_case(self.label)
        self.style = 'default'
        self.confirmable = False
        self.confirm_message = 'Are you sure you want to perform this action?'
        self.meta: dict = {}

    @classmethod
    def make(cls, label: str | None = None, key: str | None = None):
        return cls(label, key)

    def require_confirmation(self, message: str | None = None):
        self.confirmable = True
        if message:
            self.confirm_message = message
        return self

    def set_style(self, style: str):
        if style not in self.STYLES:
            raise ValueError(f"Unknown action style: {style}")
        self.style = style
        return self

    def danger(self):
        return self.set_style('danger')

    def success(self):
        return self.set_style('success')

    def with_meta(self, values: dict | None = None, **kwargs):
        self.meta.update(values or {})
        self.meta.update(kwargs)
        return self

    def handle(self, records, data: dict, service):
        raise NotImplementedError

    def to_dict(self) -> dict:
        return {
            'type': self.kind,
            'key': self.key,
            'label': self.label,
            'style': self.style,
            'confirmable': self.confirmable,
            'confirmMessage': self.confirm_message,
            'meta': self.meta,
        }


class BulkDeleteAction(Action):
    kind = 'bulk-delete'

    def __init__(self, label: str | None = None, key: str | None = None):
        super().__init__(label or 'Delete Selected', key or 'bulk_delete')
        self.style = 'danger'
        self.confirmable = True
        self.confirm_message = 'Are you sure you want to delete the selected items?'

    def handle(self, records, data: dict, service) -> int:
        return service.bulk_destroy([r.id for r in records])


class BulkUpdateAction(Action):
    kind = 'bulk-update'

    def __init__(self, label: str | None = None, key: str | None = None):
        super().__init__(label or 'Update Selected', key or 'bulk_update')
        self.confirmable = True
        self.confirm_message = 'Are you sure you want to update the selected items?'
        self.update_fields: list = []

    def fields(self, fields: list):
        """Fields offered in the update dialog; only their attributes are written."""
        self.update_fields = list(fields)
        return self.with_meta(fields=[
            f.to_dict() if hasattr(f, 'to_dict') else f for f in self.update_fields
        ])

    def _allowed(self) -> set | None:
        if not self.update_fields:
            return None
        return {getattr(f, 'attribute', f) for f in self.update_fields}

    def handle(self, records, data: dict, service) -> int:
        allowed = self._allowed()
        if allowed is not None:
            data = {k: v for k, v in data.items() if k in allowed}
        return service.bulk_update([r.id for r in records], data)


class ExportAction(Action):
    kind = 'export'

    def __init__(self, label: str | None = None, key: str | None = None):
        super().__init__(label or 'Export', key or 'export')
        self.export_formats = ['csv']

    def formats(self, formats: list):
        self.export_formats = list(formats)
        return self.with_meta(formats=self.export_formats)

    def handle(self, records, data: dict, service) -> dict:
        """Export transformed records as CSV text."""
        fmt = data.get('format', 'csv')
        if fmt not in self.export_formats or fmt != 'csv':
            raise StudioError(f"Unsupported export format: {fmt}", 400)

        rows = [service.transform(r) for r in records]
        columns: list[str] = []
        for row in rows:
            for key in row:
                if key not in columns:
                    columns.append(key)

        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=columns, extrasaction='ignore')
        writer.writeheader()
        for row in rows:
            writer.writerow({k: _cell(v) for k, v in row.items()})
        logger.info("Exported %d %s rows", len(rows), service.resource.key())
        return {'format': 'csv', 'count': len(rows), 'content': buffer.getvalue()}


def _cell(value):
    if isinstance(value, dict):
        return value.get('display', value.get('id', ''))
    if isinstance(value, list):
        return ', '.join(str(_cell(v)) for v in value)
    return '' if value is None else value
