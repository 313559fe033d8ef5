"""
Tests for ResourceService: index pipeline, store/update/patch pipelines,
bulk operations, actions and transactional writes.
"""

import logging
import sqlite3

import pytest

from studio_engine.config import Settings
from studio_engine.exceptions import (ActionNotFoundError, CircularDependencyError,
                                      NotFoundError, ValidationError)
from studio_engine.fields import BelongsToMany, Text
from studio_engine.resource import Resource
from studio_engine.security import verify_password
from studio_engine.service import ResourceService
from studio_engine.store import BelongsToManyRelation, Model, Query

from sample_resources import UserResource


def _count(conn, table):
    return conn.execute(f'SELECT COUNT(*) FROM {table}').fetchone()[0]


def _role_ids(conn, user_id):
    rows = conn.execute('SELECT role_id FROM role_user WHERE user_id = ? ORDER BY role_id',
                        (user_id,)).fetchall()
    return [r[0] for r in rows]


# ═══════════════════════════════════════════════════════════════════════
# Index
# ═══════════════════════════════════════════════════════════════════════

def test_index_default_order_and_transform(user_service):
    """No sort: id desc; rows carry transformed index fields."""
    result = user_service.index()
    assert result['total'] == 3
    assert [r['id'] for r in result['rows']] == [3, 2, 1]
    alice = result['rows'][2]
    assert alice['is_active'] is True
    assert alice['roles'] == [{'id': 1, 'display': 'Admin'}, {'id': 2, 'display': 'Editor'}]
    assert alice['avatar']['name'] == 'alice.png'
    assert 'password' not in alice


def test_index_search(user_service):
    assert [r['name'] for r in user_service.index({'search': 'bob'})['rows']] == ['Bob']
    assert user_service.index({'search': '%'})['total'] == 0
    assert [r['id'] for r in user_service.index({'search': '_x'})['rows']] == [3]


def test_index_search_disabled(conn, settings):
    class QuietUserResource(UserResource):
        searchable = False

    service = ResourceService(QuietUserResource(), conn, settings)
    assert service.index({'search': 'bob'})['total'] == 3


def test_index_sort(user_service):
    rows = user_service.index({'sort': 'name', 'direction': 'asc'})['rows']
    assert [r['name'] for r in rows] == ['Alice', 'Bob', 'Carol']
    rows = user_service.index({'sort': 'name', 'direction': 'DESC'})['rows']
    assert [r['name'] for r in rows] == ['Carol', 'Bob', 'Alice']
    rows = user_service.index({'sort': 'name', 'direction': 'sideways'})['rows']
    assert [r['name'] for r in rows] == ['Alice', 'Bob', 'Carol']


def test_index_sort_fallback(user_service, caplog):
    """Sorting on a non-sortable column falls back to id desc."""
    with caplog.at_level(logging.WARNING, logger='studio_engine.service'):
        rows = user_service.index({'sort': 'password', 'direction': 'asc'})['rows']
    assert [r['id'] for r in rows] == [3, 2, 1]
    assert 'password' in caplog.text
    rows = user_service.index({'sort': 'name; DROP TABLE users'})['rows']
    assert [r['id'] for r in rows] == [3, 2, 1]


def test_index_filters(user_service):
    def ids(filters):
        return sorted(r['id'] for r in user_service.index({'filters': filters})['rows'])

    assert ids({'status': 'inactive'}) == [2]
    assert ids({'is_active': '1'}) == [1, 3]
    assert ids({'is_active': 'false'}) == [2]
    assert ids({'role': 3}) == [2]
    assert ids({'created': {'from': '2024-02-01'}}) == [2, 3]
    assert ids({'created': {'from': '2024-02-01', 'to': '2024-02-28'}}) == [2]
    assert ids({'status': '', 'role': None}) == [1, 2, 3]
    assert ids({'unknown': 'x'}) == [1, 2, 3]


def test_index_pagination(user_service):
    result = user_service.index({'per_page': 1, 'page': 2})
    assert result['per_page'] == 1
    assert result['pages'] == 3
    assert [r['id'] for r in result['rows']] == [2]


def test_index_per_page_capped(conn):
    service = ResourceService(UserResource(), conn, Settings(max_per_page=2))
    assert service.index({'per_page': 1000})['per_page'] == 2
    assert service.index({'per_page': 'abc'})['per_page'] == 2
    assert service.index({'per_page': 0})['per_page'] == 1


def test_relations_to_load(user_service, item_service):
    assert user_service.relations_to_load() == ['roles', 'media']
    assert item_service.relations_to_load() == ['category', 'tags']
    assert user_service.index_relations() == ['roles', 'media']


class AccountResource(Resource):
    """Roles are editable on the form but not listed on the index."""
    model = Model('users', relations={
        'roles': BelongsToManyRelation('roles', 'role_user', 'user_id', 'role_id'),
    })

    def index_fields(self):
        return [Text('Name')]

    def form_fields(self):
        return [Text('Name', rules='required|string'),
                BelongsToMany('Roles').resource('roles')]


def test_form_only_relation_not_in_index_rows(conn, settings):
    service = ResourceService(AccountResource(), conn, settings)
    assert service.index_relations() == []
    rows = service.index({})['rows']
    alice = next(r for r in rows if r['id'] == 1)
    assert 'roles' not in alice
    assert alice['name'] == 'Alice'

    record = service.show(1)
    assert [r.id for r in record.get_relation('roles')] == [1, 2]


def test_search_related(item_service):
    result = item_service.search_related('ham')
    assert result['per_page'] == 20
    assert [r['name'] for r in result['rows']] == ['Hammer']


# ═══════════════════════════════════════════════════════════════════════
# Show / transform
# ═══════════════════════════════════════════════════════════════════════

def test_show_not_found(user_service):
    with pytest.raises(NotFoundError):
        user_service.show(99)


def test_select_multiple_transform_ignores_insertion_order(item_service):
    """Item 1 was linked to tags 3 then 1; the transform lists ids in id order."""
    data = item_service.transform(item_service.show(1))
    assert data['tags'] == [1, 3]
    assert data['category_id'] == {'id': 1, 'display': 'Tools'}
    assert data['category']['name'] == 'Tools'


# ═══════════════════════════════════════════════════════════════════════
# Store
# ═══════════════════════════════════════════════════════════════════════

def test_store_filters_hidden_fields_and_syncs(user_service, conn):
    record = user_service.store({
        'name': 'Dave', 'email': 'dave@example.com', 'password': 'secret123',
        'role_type': 'individual', 'company': 'Ignored', 'roles': [3, '1'],
        'not_a_field': 'x',
    })
    assert record['name'] == 'Dave'
    assert record['company'] is None
    assert verify_password('secret123', record['password'])
    assert _role_ids(conn, record.id) == [1, 3]
    assert [r.id for r in record.get_relation('roles')] == [1, 3]


def test_store_keeps_visible_dependent_field(user_service):
    record = user_service.store({
        'name': 'Erin', 'email': 'erin@example.com', 'password': 'secret123',
        'role_type': 'business', 'company': 'Globex',
    })
    assert record['company'] == 'Globex'


def test_store_validation_errors(user_service, conn):
    with pytest.raises(ValidationError) as exc_info:
        user_service.store({'name': '', 'email': 'alice@example.com', 'password': 'short'})
    errors = exc_info.value.errors
    assert errors['name'] == ['The name field is required.']
    assert errors['email'] == ['That email address is already registered.']
    assert errors['password'] == ['The password field must be at least 8 characters.']
    assert _count(conn, 'users') == 3


def test_store_password_required_on_create(user_service):
    with pytest.raises(ValidationError) as exc_info:
        user_service.store({'name': 'Finn', 'email': 'finn@example.com'})
    assert 'password' in exc_info.value.errors


def test_store_hidden_field_not_validated(item_service):
    """A hidden field's rules are not applied."""
    with pytest.raises(ValidationError) as exc_info:
        item_service.store({'name': 'Saw', 'type': 'bogus', 'discount': -5})
    assert list(exc_info.value.errors) == ['type']


def test_store_required_when(item_service):
    """discount is required for percentage items only."""
    with pytest.raises(ValidationError) as exc_info:
        item_service.store({'name': 'Saw', 'type': 'percentage'})
    assert exc_info.value.errors == {'discount': ['The discount field is required.']}

    record = item_service.store({'name': 'Saw', 'type': 'fixed', 'category_id': 1,
                                 'tags': [2, 1]})
    assert record['discount'] is None
    assert item_service.transform(record)['tags'] == [1, 2]


def test_store_rolls_back_on_sync_failure(user_service, conn):
    """A failing pivot write rolls back the scalar insert too."""
    with pytest.raises(sqlite3.IntegrityError):
        user_service.store({'name': 'Gus', 'email': 'gus@example.com',
                            'password': 'secret123', 'roles': [1, 999]})
    assert _count(conn, 'users') == 3
    assert _count(conn, 'role_user') == 3


def test_store_with_circular_fields_raises(conn, settings):
    class LoopResource(Resource):
        model = Model('users')

        def form_fields(self):
            return [Text('Name', 'name').depends_on('email', 'x'),
                    Text('Email', 'email').depends_on('name', 'y')]

    service = ResourceService(LoopResource(), conn, settings)
    with pytest.raises(CircularDependencyError):
        service.store({'name': 'y', 'email': 'x'})


# ═══════════════════════════════════════════════════════════════════════
# Update / patch
# ═══════════════════════════════════════════════════════════════════════

def test_update_ignores_own_unique_value_and_empty_password(user_service, conn):
    conn.execute("UPDATE users SET password = 'old-hash' WHERE id = 1")
    conn.commit()
    record = user_service.update(1, {'name': 'Alicia', 'email': 'alice@example.com',
                                     'password': ''})
    assert record['name'] == 'Alicia'
    assert record['password'] == 'old-hash'
    assert _role_ids(conn, 1) == [1, 2]


def test_update_replaces_relations(user_service, conn):
    user_service.update(1, {'name': 'Alice', 'email': 'alice@example.com', 'roles': [3]})
    assert _role_ids(conn, 1) == [3]
    user_service.update(1, {'name': 'Alice', 'email': 'alice@example.com', 'roles': []})
    assert _role_ids(conn, 1) == []


def test_update_unique_conflict(user_service):
    with pytest.raises(ValidationError) as exc_info:
        user_service.update(1, {'name': 'Alice', 'email': 'bob@example.com'})
    assert list(exc_info.value.errors) == ['email']


def test_update_missing_record(user_service):
    with pytest.raises(NotFoundError):
        user_service.update(99, {'name': 'Nobody', 'email': 'n@example.com'})


def test_patch_partial_and_empty(user_service):
    """A required name validates when sent; an empty payload is a no-op."""
    assert user_service.patch(1, {'name': 'x'})['name'] == 'x'
    record = user_service.patch(1, {})
    assert record['name'] == 'x'
    assert record['email'] == 'alice@example.com'


def test_patch_still_validates_present_attributes(user_service):
    with pytest.raises(ValidationError) as exc_info:
        user_service.patch(1, {'email': 'bob@example.com'})
    assert exc_info.value.errors == {'email': ['That email address is already registered.']}
    assert user_service.patch(1, {'email': 'alice@example.com'})['email'] == \
        'alice@example.com'


def test_patch_visibility_uses_current_record(user_service):
    """company is patchable for a business user, dropped for an individual."""
    assert user_service.patch(2, {'company': 'Initech'})['company'] == 'Initech'
    assert user_service.patch(1, {'company': 'Initech'})['company'] is None


def test_patch_required_when_fires_from_record(item_service):
    with pytest.raises(ValidationError) as exc_info:
        item_service.patch(2, {'discount': ''})
    assert exc_info.value.errors == {'discount': ['The discount field is required.']}
    assert item_service.patch(1, {'discount': ''})['discount'] == ''


def test_patch_hashes_password(user_service):
    record = user_service.patch(3, {'password': 'another-secret'})
    assert verify_password('another-secret', record['password'])


# ═══════════════════════════════════════════════════════════════════════
# Destroy / bulk
# ═══════════════════════════════════════════════════════════════════════

def test_destroy(user_service, conn):
    assert user_service.destroy(1) is True
    assert _count(conn, 'users') == 2
    assert _role_ids(conn, 1) == []
    with pytest.raises(NotFoundError):
        user_service.destroy(1)


def test_bulk_destroy(user_service, conn):
    assert user_service.bulk_destroy([1, 3, 99]) == 2
    assert user_service.bulk_destroy([]) == 0
    assert _count(conn, 'users') == 1


def test_bulk_update_writes_scalar_form_columns(user_service, conn):
    affected = user_service.bulk_update([1, 2], {'status': 'archived', 'roles': [1],
                                                 'password': 'nope'})
    assert affected == 2
    rows = Query(conn, user_service.model).where_in('id', [1, 2]).get()
    assert {r['status'] for r in rows} == {'archived'}
    assert {r['password'] for r in rows} == {None}
    assert _role_ids(conn, 2) == [3]
    assert user_service.bulk_update([1], {'bogus': 1}) == 0


# ═══════════════════════════════════════════════════════════════════════
# Actions
# ═══════════════════════════════════════════════════════════════════════

def test_run_action_bulk_delete(user_service, conn):
    assert user_service.run_action('bulk_delete', [2, 3]) == 2
    assert _count(conn, 'users') == 1


def test_run_action_bulk_update_limited_to_fields(user_service, conn):
    assert user_service.run_action('bulk_update', [1], {'status': 'inactive',
                                                        'name': 'Hacked'}) == 1
    row = Query(conn, user_service.model).find(1)
    assert row['status'] == 'inactive'
    assert row['name'] == 'Alice'


def test_run_action_export(user_service):
    result = user_service.run_action('export', [1, 2], {'format': 'csv'})
    assert result['format'] == 'csv'
    assert result['count'] == 2
    lines = result['content'].strip().splitlines()
    assert lines[0].startswith('id,name,email')
    assert 'Admin, Editor' in result['content']


def test_run_action_unknown(user_service):
    with pytest.raises(ActionNotFoundError) as exc_info:
        user_service.run_action('nope', [1])
    assert str(exc_info.value) == 'Action not found: nope'
