"""
Sample resources over the fixture schema in conftest.py.

users  <-> roles      (role_user pivot)
teams  <-> users      (team_user pivot, a user is on at most one team)
items   -> categories (category_id), items <-> tags (item_tag pivot)
media rows attach to users by model_type / model_id
"""

from studio_engine.actions import BulkDeleteAction, BulkUpdateAction, ExportAction
from studio_engine.containers import Group, Section
from studio_engine.fields import (BelongsTo, BelongsToMany, Boolean, Email, HasMany,
                                  Media, Number, Password, Select, Text)
from studio_engine.filters import (BelongsToManyFilter, BooleanFilter,
                                   DateRangeFilter, SelectFilter)
from studio_engine.resource import Resource
from studio_engine.store import (BelongsToManyRelation, BelongsToRelation,
                                 HasManyRelation, MediaRelation, Model)

STATUSES = {'active': 'Active', 'inactive': 'Inactive', 'archived': 'Archived'}


class UserResource(Resource):
    model = Model('users', relations={
        'roles': BelongsToManyRelation('roles', 'role_user', 'user_id', 'role_id'),
        'media': MediaRelation(),
    })
    label = 'Users'
    singular_label = 'User'
    title = 'name'
    search = ('name', 'email')

    def index_fields(self):
        return [
            Text('Name', sortable=True),
            Email('Email', sortable=True),
            Select('Status').options(STATUSES),
            Boolean('Is Active'),
            BelongsToMany('Roles').resource('roles'),
            Media('Avatar').collection('avatar').images().single(),
        ]

    def form_fields(self):
        return [
            Section('Account', [
                Text('Name', rules='required|string|max:255'),
                Email('Email', rules='required|email|unique:users,email'),
                Password('Password', rules='string|min:8'),
            ]),
            Section('Profile', [
                Group([
                    Select('Role Type').options({'individual': 'Individual',
                                                 'business': 'Business'}),
                    Text('Company', rules='string|max:100').depends_on('role_type', 'business'),
                ]),
                Select('Status').options(STATUSES),
                Boolean('Is Active'),
                BelongsToMany('Roles').resource('roles'),
            ]).set_collapsible(),
        ]

    def filters(self):
        return [
            SelectFilter('Status').set_options(STATUSES),
            BooleanFilter('Is Active'),
            BelongsToManyFilter('Role').set_relationship('roles'),
            DateRangeFilter('Created', 'created').on_column('created_at'),
        ]

    def actions(self):
        return [
            BulkDeleteAction(),
            BulkUpdateAction().fields([Select('Status').options(STATUSES)]),
            ExportAction(),
        ]

    def messages(self):
        return {'email.unique': 'That email address is already registered.'}


class RoleResource(Resource):
    model = Model('roles')
    label = 'Roles'
    singular_label = 'Role'
    title = 'name'
    search = ('name',)

    def index_fields(self):
        return [Text('Name', sortable=True)]

    def form_fields(self):
        return [Text('Name', rules='required|string')]


class TeamResource(Resource):
    model = Model('teams', relations={
        'members': BelongsToManyRelation('users', 'team_user', 'team_id', 'user_id'),
    })
    label = 'Teams'
    singular_label = 'Team'
    title = 'name'
    search = ('name',)

    def index_fields(self):
        return [Text('Name'),
                BelongsToMany('Members').resource('users').title_attribute('name')]

    def form_fields(self):
        return [
            Text('Name', rules='required|string'),
            BelongsToMany('Members').resource('users').title_attribute('name')
            .enforce_unique_related(),
        ]


class CategoryResource(Resource):
    model = Model('categories', relations={
        'items': HasManyRelation('items', 'category_id'),
    })
    label = 'Categories'
    singular_label = 'Category'
    title = 'name'
    search = ('name',)

    def index_fields(self):
        return [Text('Name', sortable=True), HasMany('Items').resource('items')]

    def form_fields(self):
        return [Text('Name', rules='required|string')]


class ItemResource(Resource):
    model = Model('items', relations={
        'category': BelongsToRelation('categories', 'category_id'),
        'tags': BelongsToManyRelation('tags', 'item_tag', 'item_id', 'tag_id'),
    })
    label = 'Items'
    singular_label = 'Item'
    title = 'name'
    search = ('name',)

    def index_fields(self):
        return [
            Text('Name', sortable=True),
            BelongsTo('Category', 'category_id').resource('categories'),
            Select('Type'),
            Number('Price', sortable=True),
            Select('Tags').multiple().resource('tags'),
        ]

    def form_fields(self):
        return [
            Text('Name', rules='required|string|max:255'),
            BelongsTo('Category', 'category_id', rules='nullable|exists:categories,id'),
            Select('Type', rules='required|in:fixed,percentage').options(
                {'fixed': 'Fixed', 'percentage': 'Percentage'}),
            Number('Discount', rules='numeric|min:0')
            .depends_on('type', ['fixed', 'percentage'], 'in')
            .required_when('type', 'percentage'),
            Number('Price', rules='nullable|numeric'),
            Select('Tags').multiple().resource('tags'),
        ]

    def filters(self):
        return [SelectFilter('Type').set_options({'fixed': 'Fixed',
                                                  'percentage': 'Percentage'})]

    def actions(self):
        return [ExportAction()]


class TagResource(Resource):
    model = Model('tags')
    label = 'Tags'
    singular_label = 'Tag'
    title = 'name'
    search = ('name',)

    def index_fields(self):
        return [Text('Name')]

    def form_fields(self):
        return [Text('Name', rules='required|string')]


RESOURCES = [UserResource, RoleResource, TeamResource, CategoryResource,
             ItemResource, TagResource]
