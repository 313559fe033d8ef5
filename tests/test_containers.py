"""
Tests for Group / Section layout containers.
"""

from studio_engine.containers import Group, Section, flatten
from studio_engine.fields import Boolean, Select, Text


def test_group_descriptor():
    group = Group.make([Text('First Name'), Text('Last Name')], 'Name').set_cols('col-span-6')
    data = group.to_dict()
    assert data['type'] == 'group'
    assert data['label'] == 'Name'
    assert data['cols'] == 'col-span-6'
    assert data['gap'] == 'gap-4'
    assert data['dependsOn'] is None
    assert [f['attribute'] for f in data['fields']] == ['first_name', 'last_name']


def test_section_descriptor():
    section = (Section.make('Billing', [Text('Vat Number')])
               .set_description('Invoice details').set_icon('credit-card')
               .set_collapsible().set_container_classes('bg-white'))
    data = section.to_dict()
    assert data['type'] == 'section'
    assert data['title'] == 'Billing'
    assert data['description'] == 'Invoice details'
    assert data['icon'] == 'credit-card'
    assert data['collapsible'] is True
    assert data['collapsed'] is False
    assert data['containerClasses'] == 'bg-white'


def test_collapsed_does_not_imply_collapsible():
    data = Section('Advanced').set_collapsed().to_dict()
    assert data['collapsed'] is True
    assert data['collapsible'] is False


def test_container_visibility_depends_on():
    section = Section('Business', [Text('Company')]).depends_on('role_type', 'business')
    assert section.is_visible({'role_type': 'business'}) is True
    assert section.is_visible({'role_type': 'individual'}) is False
    assert section.is_visible({}) is False
    assert section.to_dict()['dependsOn'] == {
        'attribute': 'role_type', 'value': 'business', 'operator': '='}


def test_container_visibility_missing_reads_as_null():
    group = Group([Text('Note')]).depends_on('note_type', None)
    assert group.is_visible({}) is True


def test_container_visibility_callback_and_default():
    group = Group([Boolean('Vip')]).show_when(lambda data: data.get('tier') == 'gold')
    assert group.is_visible({'tier': 'gold'}) is True
    assert group.is_visible({'tier': 'silver'}) is False
    assert Group([]).is_visible({}) is True


def test_flatten_nested_containers():
    role_type = Select('Role Type')
    company = Text('Company')
    name = Text('Name')
    items = [name, Section('Profile', [Group([role_type, company]), Boolean('Active')])]
    flat = flatten(items)
    assert [f.attribute for f in flat] == ['name', 'role_type', 'company', 'active']
    assert flat[1] is role_type
