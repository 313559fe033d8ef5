"""
Store: SQLite models, records, query building and eager loading.

All SQL uses parameterized queries. Table and column names are validated
against an identifier pattern and bracket-quoted before inclusion in SQL
statements; written columns are further whitelisted against the live table.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .exceptions import NotFoundError, StudioError

logger = logging.getLogger(__name__)

IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

OPERATORS = {'=', '!=', '<', '<=', '>', '>=', 'LIKE'}

PIVOT_PARENT = '__pivot_parent'


def quote(name: str) -> str:
    """Bracket-quote a table/column name after validating it."""
    if not isinstance(name, str) or not IDENTIFIER.match(name):
        raise StudioError(f"Invalid identifier: {name!r}", 400)
    return f"[{name}]"


def timestamp() -> str:
    return datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')


def escape_like(term: str) -> str:
    """Escape LIKE wildcards; backslash first so it is not double-escaped."""
    return term.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


def _bindable(value: Any) -> Any:
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return value


# ---------------------------------------------------------------------------
# Model and relation declarations
# ---------------------------------------------------------------------------

@dataclass
class BelongsToRelation:
    table: str
    foreign_key: str
    owner_key: str = 'id'


@dataclass
class BelongsToManyRelation:
    table: str
    pivot: str
    foreign_pivot_key: str     # pivot column pointing at the parent
    related_pivot_key: str     # pivot column pointing at the related row
    related_key: str = 'id'


@dataclass
class HasManyRelation:
    table: str
    foreign_key: str
    local_key: str = 'id'


@dataclass
class MediaRelation:
    """Polymorphic media rows: ``model_type`` = parent table, ``model_id`` = parent id."""
    table: str = 'media'


@dataclass
class Model:
    table: str
    pk: str = 'id'
    relations: dict = field(default_factory=dict)
    timestamps: bool = True
    hidden: tuple = ('password',)

    def has_relation(self, name: str) -> bool:
        return name in self.relations

    def relation(self, name: str):
        try:
            return self.relations[name]
        except KeyError:
            raise StudioError(f"Relation not defined on {self.table}: {name}") from None

    def columns(self, conn: sqlite3.Connection) -> list[str]:
        cursor = conn.execute(f"PRAGMA table_info({quote(self.table)})")
        return [row[1] for row in cursor.fetchall()]


def _related_model(table: str) -> Model:
    return Model(table=table)


class Record:
    """A loaded row plus any eager-loaded relations."""

    def __init__(self, model: Model, attributes: dict, relations: dict | None = None):
        self.model = model
        self.attributes = dict(attributes)
        self.relations = dict(relations or {})

    def __repr__(self):
        return f"<Record {self.model.table}#{self.id}>"

    @property
    def id(self):
        return self.attributes.get(self.model.pk)

    def get(self, key: str, default=None):
        return self.attributes.get(key, default)

    def __getitem__(self, key: str):
        return self.attributes[key]

    def __contains__(self, key: str) -> bool:
        return key in self.attributes

    def relation_loaded(self, name: str) -> bool:
        return name in self.relations

    def get_relation(self, name: str):
        return self.relations.get(name)

    def set_relation(self, name: str, value) -> None:
        self.relations[name] = value

    def to_dict(self) -> dict:
        data = {k: v for k, v in self.attributes.items() if k not in self.model.hidden}
        for name, value in self.relations.items():
            if isinstance(value, Record):
                data[name] = value.to_dict()
            elif isinstance(value, list):
                data[name] = [item.to_dict() for item in value]
            else:
                data[name] = value
        return data


# ---------------------------------------------------------------------------
# Query builder
# ---------------------------------------------------------------------------

class Query:
    def __init__(self, conn: sqlite3.Connection, model: Model):
        self.conn = conn
        self.model = model
        self._wheres: list[tuple[str, list]] = []
        self._orders: list[str] = []
        self._with: list[str] = []

    def where(self, column: str, value: Any, operator: str = '='):
        if operator not in OPERATORS:
            raise StudioError(f"Unsupported operator: {operator}", 400)
        self._wheres.append((f"{quote(column)} {operator} ?", [_bindable(value)]))
        return self

    def where_in(self, column: str, values):
        values = list(values)
        if not values:
            self._wheres.append(('0 = 1', []))
            return self
        placeholders = ', '.join('?' * len(values))
        self._wheres.append((f"{quote(column)} IN ({placeholders})", values))
        return self

    def where_date(self, column: str, operator: str, value: str):
        if operator not in ('=', '<', '<=', '>', '>='):
            raise StudioError(f"Unsupported operator: {operator}", 400)
        self._wheres.append((f"date({quote(column)}) {operator} date(?)", [value]))
        return self

    def where_any_like(self, columns, term: str):
        """OR-chained ``LIKE %term%`` across ``columns`` with wildcards escaped."""
        columns = list(columns)
        if not columns:
            return self
        pattern = f"%{escape_like(term)}%"
        parts = [f"{quote(c)} LIKE ? ESCAPE '\\'" for c in columns]
        self._wheres.append((f"({' OR '.join(parts)})", [pattern] * len(columns)))
        return self

    def where_has_related(self, relation_name: str, related_id):
        """Rows linked to ``related_id`` through a belongs-to-many or has-many relation."""
        relation = self.model.relation(relation_name)
        parent_key = f"{quote(self.model.table)}.{quote(self.model.pk)}"
        if isinstance(relation, BelongsToManyRelation):
            sql = (f"EXISTS (SELECT 1 FROM {quote(relation.pivot)} p "
                   f"WHERE p.{quote(relation.foreign_pivot_key)} = {parent_key} "
                   f"AND p.{quote(relation.related_pivot_key)} = ?)")
        elif isinstance(relation, HasManyRelation):
            sql = (f"EXISTS (SELECT 1 FROM {quote(relation.table)} r "
                   f"WHERE r.{quote(relation.foreign_key)} = "
                   f"{quote(self.model.table)}.{quote(relation.local_key)} "
                   f"AND r.[id] = ?)")
        else:
            raise StudioError(f"Relation '{relation_name}' cannot be used for filtering")
        self._wheres.append((sql, [related_id]))
        return self

    def order_by(self, column: str, direction: str = 'asc'):
        direction = 'DESC' if str(direction).lower() == 'desc' else 'ASC'
        self._orders.append(f"{quote(column)} {direction}")
        return self

    def with_(self, relations):
        for name in relations:
            if name not in self._with:
                self._with.append(name)
        return self

    def _where_clause(self) -> tuple[str, list]:
        if not self._wheres:
            return '', []
        params = []
        for _, p in self._wheres:
            params.extend(p)
        return ' WHERE ' + ' AND '.join(sql for sql, _ in self._wheres), params

    def count(self) -> int:
        where, params = self._where_clause()
        sql = f"SELECT COUNT(*) FROM {quote(self.model.table)}{where}"
        return self.conn.execute(sql, params).fetchone()[0]

    def _select(self, limit: int | None = None, offset: int = 0) -> list[Record]:
        where, params = self._where_clause()
        sql = f"SELECT * FROM {quote(self.model.table)}{where}"
        if self._orders:
            sql += ' ORDER BY ' + ', '.join(self._orders)
        if limit is not None:
            sql += ' LIMIT ? OFFSET ?'
            params = params + [limit, offset]
        logger.debug("SQL: %s %s", sql, params)
        rows = self.conn.execute(sql, params).fetchall()
        records = [Record(self.model, dict(r)) for r in rows]
        if self._with:
            eager_load(self.conn, self.model, records, self._with)
        return records

    def get(self) -> list[Record]:
        return self._select()

    def first(self) -> Record | None:
        records = self._select(limit=1)
        return records[0] if records else None

    def find(self, pk_value) -> Record | None:
        return self.where(self.model.pk, pk_value).first()

    def find_or_fail(self, pk_value) -> Record:
        record = self.find(pk_value)
        if record is None:
            raise NotFoundError(f"{self.model.table} not found: {pk_value}")
        return record

    def paginate(self, per_page: int, page: int = 1) -> dict:
        """Return ``{rows, total, page, per_page, pages}`` with Record rows."""
        per_page = max(int(per_page), 1)
        page = max(int(page), 1)
        total = self.count()
        rows = self._select(limit=per_page, offset=(page - 1) * per_page)
        return {
            'rows': rows,
            'total': total,
            'page': page,
            'per_page': per_page,
            'pages': (total + per_page - 1) // per_page,
        }

    def update(self, values: dict) -> int:
        """Batched UPDATE of every matching row. Returns the affected count."""
        values = filter_columns(self.conn, self.model, values)
        if self.model.timestamps and 'updated_at' in self.model.columns(self.conn):
            values.setdefault('updated_at', timestamp())
        if not values:
            return 0
        set_parts = [f"{quote(k)} = ?" for k in values]
        where, params = self._where_clause()
        sql = f"UPDATE {quote(self.model.table)} SET {', '.join(set_parts)}{where}"
        cursor = self.conn.execute(sql, [_bindable(v) for v in values.values()] + params)
        return cursor.rowcount

    def delete(self) -> int:
        where, params = self._where_clause()
        sql = f"DELETE FROM {quote(self.model.table)}{where}"
        return self.conn.execute(sql, params).rowcount


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def filter_columns(conn: sqlite3.Connection, model: Model, values: dict) -> dict:
    """Keep only keys that are real, non-primary-key columns of the model's table."""
    columns = set(model.columns(conn)) - {model.pk}
    dropped = [k for k in values if k not in columns]
    if dropped:
        logger.debug("Ignoring non-column attributes for %s: %s", model.table, dropped)
    return {k: v for k, v in values.items() if k in columns}


def insert(conn: sqlite3.Connection, model: Model, values: dict):
    """INSERT a row and return its primary key."""
    values = filter_columns(conn, model, values)
    if model.timestamps:
        columns = model.columns(conn)
        now = timestamp()
        for col in ('created_at', 'updated_at'):
            if col in columns:
                values.setdefault(col, now)
    if values:
        cols = ', '.join(quote(k) for k in values)
        placeholders = ', '.join('?' * len(values))
        sql = f"INSERT INTO {quote(model.table)} ({cols}) VALUES ({placeholders})"
        cursor = conn.execute(sql, [_bindable(v) for v in values.values()])
    else:
        cursor = conn.execute(f"INSERT INTO {quote(model.table)} DEFAULT VALUES")
    return cursor.lastrowid


def update_row(conn: sqlite3.Connection, model: Model, pk_value, values: dict) -> int:
    return Query(conn, model).where(model.pk, pk_value).update(values)


# ---------------------------------------------------------------------------
# Pivot helpers
# ---------------------------------------------------------------------------

def related_ids(conn: sqlite3.Connection, relation: BelongsToManyRelation, parent_id) -> list:
    sql = (f"SELECT {quote(relation.related_pivot_key)} FROM {quote(relation.pivot)} "
           f"WHERE {quote(relation.foreign_pivot_key)} = ? "
           f"ORDER BY {quote(relation.related_pivot_key)}")
    return [row[0] for row in conn.execute(sql, (parent_id,)).fetchall()]


def attach(conn: sqlite3.Connection, relation: BelongsToManyRelation, parent_id, ids) -> None:
    sql = (f"INSERT INTO {quote(relation.pivot)} "
           f"({quote(relation.foreign_pivot_key)}, {quote(relation.related_pivot_key)}) "
           f"VALUES (?, ?)")
    conn.executemany(sql, [(parent_id, i) for i in ids])


def detach(conn: sqlite3.Connection, relation: BelongsToManyRelation, parent_id, ids) -> int:
    ids = list(ids)
    if not ids:
        return 0
    placeholders = ', '.join('?' * len(ids))
    sql = (f"DELETE FROM {quote(relation.pivot)} "
           f"WHERE {quote(relation.foreign_pivot_key)} = ? "
           f"AND {quote(relation.related_pivot_key)} IN ({placeholders})")
    return conn.execute(sql, [parent_id] + ids).rowcount


def detach_from_other_parents(conn: sqlite3.Connection, relation: BelongsToManyRelation,
                              parent_id, ids) -> int:
    """Delete pivot rows linking any of ``ids`` to a parent other than ``parent_id``."""
    ids = list(ids)
    if not ids:
        return 0
    placeholders = ', '.join('?' * len(ids))
    sql = (f"DELETE FROM {quote(relation.pivot)} "
           f"WHERE {quote(relation.related_pivot_key)} IN ({placeholders}) "
           f"AND {quote(relation.foreign_pivot_key)} != ?")
    return conn.execute(sql, ids + [parent_id]).rowcount


# ---------------------------------------------------------------------------
# Eager loading
# ---------------------------------------------------------------------------

def _in_clause(values) -> str:
    return ', '.join('?' * len(values))


def eager_load(conn: sqlite3.Connection, model: Model, records: list[Record],
               relations) -> None:
    """Load each named relation for all ``records`` with one query per relation."""
    if not records:
        return
    for name in relations:
        relation = model.relation(name)
        if isinstance(relation, BelongsToRelation):
            _load_belongs_to(conn, records, name, relation)
        elif isinstance(relation, BelongsToManyRelation):
            _load_belongs_to_many(conn, model, records, name, relation)
        elif isinstance(relation, HasManyRelation):
            _load_has_many(conn, records, name, relation)
        elif isinstance(relation, MediaRelation):
            _load_media(conn, model, records, name, relation)
        else:
            raise StudioError(f"Unsupported relation type for {name}")


def _load_belongs_to(conn, records, name, relation: BelongsToRelation):
    keys = list({r.get(relation.foreign_key) for r in records
                 if r.get(relation.foreign_key) is not None})
    related = {}
    if keys:
        sql = (f"SELECT * FROM {quote(relation.table)} "
               f"WHERE {quote(relation.owner_key)} IN ({_in_clause(keys)})")
        rel_model = _related_model(relation.table)
        for row in conn.execute(sql, keys).fetchall():
            related[row[relation.owner_key]] = Record(rel_model, dict(row))
    for record in records:
        record.set_relation(name, related.get(record.get(relation.foreign_key)))


def _load_belongs_to_many(conn, model, records, name, relation: BelongsToManyRelation):
    parent_ids = [r.id for r in records]
    sql = (f"SELECT r.*, p.{quote(relation.foreign_pivot_key)} AS {quote(PIVOT_PARENT)} "
           f"FROM {quote(relation.table)} r "
           f"JOIN {quote(relation.pivot)} p "
           f"ON p.{quote(relation.related_pivot_key)} = r.{quote(relation.related_key)} "
           f"WHERE p.{quote(relation.foreign_pivot_key)} IN ({_in_clause(parent_ids)}) "
           f"ORDER BY r.{quote(relation.related_key)}")
    grouped: dict = {pid: [] for pid in parent_ids}
    rel_model = Model(table=relation.table, pk=relation.related_key)
    for row in conn.execute(sql, parent_ids).fetchall():
        attributes = dict(row)
        parent = attributes.pop(PIVOT_PARENT)
        grouped.setdefault(parent, []).append(Record(rel_model, attributes))
    for record in records:
        record.set_relation(name, grouped.get(record.id, []))


def _load_has_many(conn, records, name, relation: HasManyRelation):
    keys = [r.get(relation.local_key) for r in records]
    sql = (f"SELECT * FROM {quote(relation.table)} "
           f"WHERE {quote(relation.foreign_key)} IN ({_in_clause(keys)}) "
           f"ORDER BY [id]")
    grouped: dict = {}
    rel_model = _related_model(relation.table)
    for row in conn.execute(sql, keys).fetchall():
        grouped.setdefault(row[relation.foreign_key], []).append(
            Record(rel_model, dict(row)))
    for record in records:
        record.set_relation(name, grouped.get(record.get(relation.local_key), []))


def _load_media(conn, model, records, name, relation: MediaRelation):
    parent_ids = [r.id for r in records]
    sql = (f"SELECT * FROM {quote(relation.table)} "
           f"WHERE [model_type] = ? AND [model_id] IN ({_in_clause(parent_ids)}) "
           f"ORDER BY [id]")
    grouped: dict = {}
    rel_model = _related_model(relation.table)
    for row in conn.execute(sql, [model.table] + parent_ids).fetchall():
        grouped.setdefault(row['model_id'], []).append(Record(rel_model, dict(row)))
    for record in records:
        record.set_relation(name, grouped.get(record.id, []))
