"""
Resource Service: index / show / store / update / patch / destroy / bulk
operations driven by a Resource definition.

Every write runs as one unit of work: the scalar write and the pivot syncs
commit together or roll back together.
"""

from __future__ import annotations

import logging
import sqlite3
from functools import cached_property

from . import store
from .config import Settings, settings as default_settings
from .exceptions import ActionNotFoundError, StudioError
from .fields import Media, Password
from .resource import Resource
from .security import hash_password
from .store import BelongsToManyRelation, Query, Record
from .validation import (Validator, ensure_required, ignore_unique_for,
                         parse_rules, strip_required)

logger = logging.getLogger(__name__)

ALWAYS_SORTABLE = ('id', 'created_at', 'updated_at')


def _normalize_ids(values) -> list:
    """Related ids from a payload: accepts scalars, numeric strings or ``{id: ...}`` items."""
    if values is None:
        return []
    if not isinstance(values, (list, tuple, set)):
        values = [values]
    ids = []
    for value in values:
        if isinstance(value, dict):
            value = value.get('id')
        if isinstance(value, str) and value.strip().lstrip('-').isdigit():
            value = int(value)
        if value is not None and value not in ids:
            ids.append(value)
    return ids


class ResourceService:
    def __init__(self, resource: Resource, conn: sqlite3.Connection,
                 settings: Settings | None = None):
        self.resource = resource
        self.conn = conn
        self.settings = settings or default_settings
        self.model = resource.model
        self.validator = Validator(conn)

    # -- cached field sets ------------------------------------------------

    @cached_property
    def index_fields(self) -> list:
        return self.resource.flatten_fields(self.resource.get_index_fields())

    @cached_property
    def form_fields(self) -> list:
        return self.resource.flatten_fields(self.resource.get_form_fields())

    def query(self) -> Query:
        return Query(self.conn, self.model)

    # -- reads ------------------------------------------------------------

    def index(self, params: dict | None = None) -> dict:
        """Search, filter, sort, eager-load, paginate and transform.

        Recognised params: search, filters (dict keyed by filter key), sort,
        direction, per_page, page.
        """
        params = params or {}
        query = self.query()

        search = params.get('search')
        if search and self.resource.searchable:
            self._apply_search(query, str(search))

        filters = params.get('filters')
        if filters and isinstance(filters, dict):
            self._apply_filters(query, filters)

        if params.get('sort'):
            self._apply_sort(query, str(params['sort']), params.get('direction') or 'asc')
        else:
            query.order_by(self.model.pk, 'desc')

        query.with_(self.index_relations())

        result = query.paginate(self._per_page(params.get('per_page')),
                                self._page(params.get('page')))
        result['rows'] = [self.transform(r) for r in result['rows']]
        return result

    def show(self, pk_value) -> Record:
        return self.query().with_(self.relations_to_load()).find_or_fail(pk_value)

    def search_related(self, term: str | None) -> dict:
        return self.index({'search': term, 'per_page': 20})

    def transform(self, record: Record) -> dict:
        return self.resource.transform(record)

    def _apply_search(self, query: Query, term: str) -> None:
        columns = list(self.resource.search)
        if columns:
            query.where_any_like(columns, term)

    def _apply_filters(self, query: Query, values: dict) -> None:
        declared = {f.key: f for f in self.resource.filters()}
        for key, value in values.items():
            if value is None or value == '':
                continue
            filter_ = declared.get(key)
            if filter_ is None:
                logger.debug("Ignoring undeclared filter '%s'", key)
                continue
            filter_.apply(query, value)

    def sortable_columns(self) -> list[str]:
        columns = list(ALWAYS_SORTABLE)
        columns += [f.attribute for f in self.index_fields if f.sortable]
        return list(dict.fromkeys(columns))

    def _apply_sort(self, query: Query, column: str, direction: str) -> None:
        if column not in self.sortable_columns() or \
                column not in self.model.columns(self.conn):
            logger.warning("Sort column '%s' not allowed on %s; using %s desc",
                           column, self.resource.key(), self.model.pk)
            query.order_by(self.model.pk, 'desc')
            return
        direction = 'desc' if str(direction).lower() == 'desc' else 'asc'
        query.order_by(column, direction)

    def index_relations(self) -> list[str]:
        """Declared ``with_()`` relations plus the model relations index fields read."""
        return self._relations_for(self.index_fields)

    def relations_to_load(self) -> list[str]:
        """Relations for single-record reads: index and form field relations."""
        return self._relations_for(self.index_fields + self.form_fields)

    def _relations_for(self, fields) -> list[str]:
        relations = list(self.resource.with_())
        for field in fields:
            if isinstance(field, Media):
                name = Media.RELATION
            else:
                name = getattr(field, 'relation_name', lambda: None)()
            if name and self.model.has_relation(name) and name not in relations:
                relations.append(name)
        return relations

    def _per_page(self, requested) -> int:
        default = self.resource.per_page or self.settings.per_page
        try:
            per_page = int(requested) if requested not in (None, '') else default
        except (TypeError, ValueError):
            per_page = default
        return max(1, min(per_page, self.settings.max_per_page))

    def _page(self, requested) -> int:
        try:
            return max(1, int(requested or 1))
        except (TypeError, ValueError):
            return 1

    # -- validation -------------------------------------------------------

    def filter_visible(self, data: dict, context: dict | None = None) -> dict:
        """Keep only attributes of form fields visible for the payload.

        ``context`` is the form state visibility is judged against; it
        defaults to ``data`` itself.
        """
        visible = self.resource.get_visible_fields(data if context is None else context)
        allowed = {f.attribute for f in visible}
        dropped = [k for k in data if k not in allowed]
        if dropped:
            logger.debug("Dropping hidden/unknown attributes for %s: %s",
                         self.resource.key(), dropped)
        return {k: v for k, v in data.items() if k in allowed}

    def validation_rules(self, data: dict, context: str = 'create', record_id=None) -> dict:
        """Rules of visible fields; ``required`` added where a field is required for ``data``."""
        rules = {}
        for field in self.resource.get_visible_fields(data):
            if isinstance(field, Password):
                tokens = strip_required(field.rules_for(context))
                required = field.is_required_for(context)
            else:
                tokens = parse_rules(field.rules)
                required = field.is_required(data)
            if required:
                tokens = ensure_required(tokens)
            if record_id is not None:
                tokens = ignore_unique_for(tokens, record_id, field.attribute)
            if tokens:
                rules[field.attribute] = tokens
        return rules

    def patch_rules(self, data: dict, record_id, form_state: dict) -> dict:
        """Update rules narrowed to the keys in ``data`` with ``required`` stripped.

        ``required`` comes back only where a required-when condition fires
        for ``form_state``.
        """
        all_rules = self.resource.rules('update')
        by_attribute = {f.attribute: f for f in self.form_fields}
        rules = {}
        for attribute in data:
            tokens = strip_required(ignore_unique_for(all_rules.get(attribute), record_id, attribute))
            field = by_attribute.get(attribute)
            if field is not None and field.required_when_condition is not None \
                    and field.is_required(form_state):
                tokens = ensure_required(tokens)
            if tokens:
                rules[attribute] = tokens
        return rules

    # -- writes -----------------------------------------------------------

    def store(self, data: dict) -> Record:
        data = self.filter_visible(data)
        self.validator.validate(data, self.validation_rules(data, 'create'),
                                self.resource.messages())
        with self.conn:
            pk_value = self._write(None, data)
        logger.info("Created %s #%s", self.resource.key(), pk_value)
        return self.show(pk_value)

    def update(self, pk_value, data: dict) -> Record:
        self.show(pk_value)
        data = self.filter_visible(data)
        self.validator.validate(data, self.validation_rules(data, 'update', pk_value),
                                self.resource.messages())
        with self.conn:
            self._write(pk_value, data)
        logger.info("Updated %s #%s", self.resource.key(), pk_value)
        return self.show(pk_value)

    def patch(self, pk_value, data: dict) -> Record:
        """Partial update: only the attributes sent are validated and written.

        Visibility is judged against the current record overlaid with the
        payload. An empty payload (after filtering) is a no-op.
        """
        record = self.show(pk_value)
        form_state = {**record.attributes, **data}
        data = self.filter_visible(data, form_state)
        if not data:
            return record
        self.validator.validate(data, self.patch_rules(data, pk_value, form_state),
                                self.resource.messages())
        with self.conn:
            self._write(pk_value, data)
        logger.info("Patched %s #%s: %s", self.resource.key(), pk_value, sorted(data))
        return self.show(pk_value)

    def destroy(self, pk_value) -> bool:
        self.show(pk_value)
        with self.conn:
            self.query().where(self.model.pk, pk_value).delete()
        logger.info("Deleted %s #%s", self.resource.key(), pk_value)
        return True

    def bulk_destroy(self, ids) -> int:
        ids = list(ids)
        if not ids:
            return 0
        with self.conn:
            count = self.query().where_in(self.model.pk, ids).delete()
        logger.info("Bulk deleted %d %s", count, self.resource.key())
        return count

    def bulk_update(self, ids, data: dict) -> int:
        """One UPDATE for all ``ids``; only scalar form-field attributes are written."""
        ids = list(ids)
        allowed = {f.attribute for f in self.form_fields
                   if not f.syncs_relation() and not isinstance(f, Password)}
        values = {k: v for k, v in data.items() if k in allowed}
        if not ids or not values:
            return 0
        with self.conn:
            count = self.query().where_in(self.model.pk, ids).update(values)
        logger.info("Bulk updated %d %s: %s", count, self.resource.key(), sorted(values))
        return count

    def run_action(self, action_key: str, ids, data: dict | None = None):
        action = next((a for a in self.resource.actions() if a.key == action_key), None)
        if action is None:
            raise ActionNotFoundError(action_key)
        records = (self.query().where_in(self.model.pk, list(ids))
                   .with_(self.relations_to_load()).get())
        logger.info("Running action '%s' on %d %s", action_key, len(records),
                    self.resource.key())
        return action.handle(records, data or {}, self)

    def _write(self, pk_value, data: dict):
        """Write scalar attributes then sync relations. Caller owns the transaction."""
        relationship_data = self.extract_relationship_data(data)
        scalar = {k: v for k, v in data.items() if k not in relationship_data}
        scalar = self._prepare_passwords(scalar)

        if pk_value is None:
            pk_value = store.insert(self.conn, self.model, scalar)
        elif scalar:
            store.update_row(self.conn, self.model, pk_value, scalar)

        self.sync_relationships(pk_value, relationship_data)
        return pk_value

    def _password_attributes(self) -> set:
        names = {f.attribute for f in self.form_fields if isinstance(f, Password)}
        names.add('password')
        return names

    def _prepare_passwords(self, values: dict) -> dict:
        """Hash non-empty password values; drop empty ones so they never overwrite."""
        values = dict(values)
        for attribute in self._password_attributes():
            if attribute not in values:
                continue
            if values[attribute]:
                values[attribute] = hash_password(str(values[attribute]))
            else:
                del values[attribute]
        return values

    # -- relationships ----------------------------------------------------

    def extract_relationship_data(self, data: dict) -> dict:
        return {f.attribute: data[f.attribute] for f in self.form_fields
                if f.syncs_relation() and data.get(f.attribute) is not None}

    def sync_relationships(self, pk_value, relationship_data: dict) -> None:
        for field in self.form_fields:
            if field.syncs_relation() and field.attribute in relationship_data:
                self.sync_belongs_to_many(pk_value, field.relation_name(),
                                          relationship_data[field.attribute], field)

    def sync_belongs_to_many(self, record, relation_name: str, related_ids,
                             field=None) -> dict:
        """Replace the pivot set of ``record`` for ``relation_name`` with ``related_ids``.

        When the field enforces unique related ids, pivot rows attaching any of
        ``related_ids`` to another parent are deleted first.
        """
        parent_id = record.id if isinstance(record, Record) else record
        relation = self.model.relation(relation_name)
        if not isinstance(relation, BelongsToManyRelation):
            raise StudioError(f"Relation '{relation_name}' is not belongs-to-many")
        ids = _normalize_ids(related_ids)

        if field is not None and getattr(field, 'should_enforce_unique_related', None) \
                and field.should_enforce_unique_related():
            moved = store.detach_from_other_parents(self.conn, relation, parent_id, ids)
            if moved:
                logger.info("Detached %d %s rows from other parents", moved, relation.pivot)

        current = store.related_ids(self.conn, relation, parent_id)
        detached = [i for i in current if i not in ids]
        attached = [i for i in ids if i not in current]
        store.detach(self.conn, relation, parent_id, detached)
        store.attach(self.conn, relation, parent_id, attached)
        logger.debug("Synced %s for #%s: +%s -%s", relation_name, parent_id,
                     attached, detached)
        return {'attached': attached, 'detached': detached}
