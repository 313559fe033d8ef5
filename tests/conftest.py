"""
Shared test fixtures for the Studio Engine test suite.

  - db_path: temporary SQLite file with users/roles/teams/items/... seeded
  - conn: sqlite3.Row connection to db_path (foreign keys on)
  - registered: the sample resources registered on the global registry
  - client: TestClient wired to db_path with the sample resources
  - user_service / item_service / team_service: ResourceService instances
"""

import sqlite3

import pytest
from fastapi.testclient import TestClient

from studio_engine.app import app
from studio_engine.config import Settings
from studio_engine.db import _reset_db_path, _set_db_path_for_testing
from studio_engine.resource import registry
from studio_engine.service import ResourceService

from sample_resources import RESOURCES, ItemResource, TeamResource, UserResource

SCHEMA = """
    CREATE TABLE users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        email TEXT UNIQUE,
        password TEXT,
        status TEXT DEFAULT 'active',
        is_active INTEGER DEFAULT 1,
        role_type TEXT,
        company TEXT,
        created_at TEXT,
        updated_at TEXT
    );
    CREATE TABLE roles (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        created_at TEXT,
        updated_at TEXT
    );
    CREATE TABLE role_user (
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        role_id INTEGER NOT NULL REFERENCES roles(id) ON DELETE CASCADE
    );
    CREATE TABLE teams (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        created_at TEXT,
        updated_at TEXT
    );
    CREATE TABLE team_user (
        team_id INTEGER NOT NULL REFERENCES teams(id) ON DELETE CASCADE,
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE
    );
    CREATE TABLE categories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        created_at TEXT,
        updated_at TEXT
    );
    CREATE TABLE items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        category_id INTEGER REFERENCES categories(id),
        type TEXT,
        discount REAL,
        price REAL,
        created_at TEXT,
        updated_at TEXT
    );
    CREATE TABLE tags (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        created_at TEXT,
        updated_at TEXT
    );
    CREATE TABLE item_tag (
        item_id INTEGER NOT NULL REFERENCES items(id) ON DELETE CASCADE,
        tag_id INTEGER NOT NULL REFERENCES tags(id) ON DELETE CASCADE
    );
    CREATE TABLE media (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        model_type TEXT NOT NULL,
        model_id INTEGER NOT NULL,
        collection_name TEXT DEFAULT 'default',
        file_name TEXT,
        url TEXT,
        thumbnail_url TEXT,
        size INTEGER,
        mime_type TEXT,
        created_at TEXT
    );
"""

SEED = """
    INSERT INTO users (id, name, email, status, is_active, role_type, company, created_at, updated_at)
    VALUES (1, 'Alice', 'alice@example.com', 'active', 1, 'individual', NULL,
            '2024-01-10 09:00:00', '2024-01-10 09:00:00');
    INSERT INTO users (id, name, email, status, is_active, role_type, company, created_at, updated_at)
    VALUES (2, 'Bob', 'bob@example.com', 'inactive', 0, 'business', 'Acme',
            '2024-02-15 12:30:00', '2024-02-15 12:30:00');
    INSERT INTO users (id, name, email, status, is_active, role_type, company, created_at, updated_at)
    VALUES (3, 'Carol', 'carol_x@example.com', 'active', 1, 'individual', NULL,
            '2024-03-20 17:45:00', '2024-03-20 17:45:00');

    INSERT INTO roles (id, name) VALUES (1, 'Admin');
    INSERT INTO roles (id, name) VALUES (2, 'Editor');
    INSERT INTO roles (id, name) VALUES (3, 'Viewer');
    INSERT INTO role_user (user_id, role_id) VALUES (1, 2);
    INSERT INTO role_user (user_id, role_id) VALUES (1, 1);
    INSERT INTO role_user (user_id, role_id) VALUES (2, 3);

    INSERT INTO teams (id, name) VALUES (1, 'Red');
    INSERT INTO teams (id, name) VALUES (2, 'Blue');
    INSERT INTO team_user (team_id, user_id) VALUES (1, 1);
    INSERT INTO team_user (team_id, user_id) VALUES (1, 2);
    INSERT INTO team_user (team_id, user_id) VALUES (2, 3);

    INSERT INTO categories (id, name) VALUES (1, 'Tools');
    INSERT INTO categories (id, name) VALUES (2, 'Books');

    INSERT INTO items (id, name, category_id, type, discount, price)
    VALUES (1, 'Hammer', 1, 'fixed', 5, 10.5);
    INSERT INTO items (id, name, category_id, type, discount, price)
    VALUES (2, 'Novel', 2, 'percentage', 10, 20);
    INSERT INTO items (id, name, category_id, type, discount, price)
    VALUES (3, 'Wrench', 1, 'fixed', NULL, 7);

    INSERT INTO tags (id, name) VALUES (1, 'sale');
    INSERT INTO tags (id, name) VALUES (2, 'new');
    INSERT INTO tags (id, name) VALUES (3, 'eco');
    INSERT INTO item_tag (item_id, tag_id) VALUES (1, 3);
    INSERT INTO item_tag (item_id, tag_id) VALUES (1, 1);

    INSERT INTO media (id, model_type, model_id, collection_name, file_name, url,
                       thumbnail_url, size, mime_type)
    VALUES (1, 'users', 1, 'avatar', 'alice.png', '/media/alice.png', NULL, 1234, 'image/png');
    INSERT INTO media (id, model_type, model_id, collection_name, file_name, url,
                       thumbnail_url, size, mime_type)
    VALUES (2, 'users', 1, 'documents', 'cv.pdf', '/media/cv.pdf', NULL, 5678,
            'application/pdf');
"""


@pytest.fixture
def db_path(tmp_path):
    """Create the fixture database and return its path."""
    path = str(tmp_path / "studio.db")
    conn = sqlite3.connect(path)
    conn.executescript(SCHEMA)
    conn.executescript(SEED)
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def conn(db_path):
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA foreign_keys = ON')
    yield conn
    conn.close()


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def registered():
    """Register the sample resources, clearing the registry afterwards."""
    registry.clear()
    for resource_cls in RESOURCES:
        registry.register(resource_cls)
    yield registry
    registry.clear()


@pytest.fixture
def client(db_path, registered):
    """TestClient serving the sample resources from db_path."""
    _set_db_path_for_testing(db_path)
    yield TestClient(app)
    _reset_db_path()


@pytest.fixture
def user_service(conn, settings):
    return ResourceService(UserResource(), conn, settings)


@pytest.fixture
def item_service(conn, settings):
    return ResourceService(ItemResource(), conn, settings)


@pytest.fixture
def team_service(conn, settings):
    return ResourceService(TeamResource(), conn, settings)
