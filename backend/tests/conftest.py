"""
Pytest fixtures for storefront backend tests.

Provides test database setup, a throwaway upload folder, catalog fixtures and
the test client.
"""

import os
import shutil

import pytest
from storefront import create_app
from storefront.extensions import db
from storefront.models import Category
from storefront.services import attributes_service
from storefront.storage import NewUpload


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    upload_folder = tmp_path_factory.mktemp("uploads")
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'UPLOAD_FOLDER': str(upload_folder),
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


def _clear_upload_folder(folder):
    for entry in os.listdir(folder):
        full = os.path.join(folder, entry)
        if os.path.isdir(full):
            shutil.rmtree(full)
        else:
            os.remove(full)


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database (and empty upload folder) for each test."""
    with app.app_context():
        # Clear all data but keep schema
        db.session.remove()
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        _clear_upload_folder(app.config['UPLOAD_FOLDER'])

        yield db.session

        # Cleanup after test
        db.session.rollback()
        db.session.remove()


@pytest.fixture(scope='function')
def stored_files(app):
    """Callable returning the set of relative paths currently in the upload folder."""
    def _files():
        root = app.config['UPLOAD_FOLDER']
        found = set()
        for dirpath, _dirnames, filenames in os.walk(root):
            for name in filenames:
                rel = os.path.relpath(os.path.join(dirpath, name), root)
                found.add(rel.replace(os.sep, '/'))
        return found
    return _files


@pytest.fixture(scope='function')
def make_upload():
    """Factory for in-memory image uploads."""
    def _make(filename='image.png', data=b'\x89PNG\r\n\x1a\nfake-image-bytes'):
        return NewUpload(data=data, filename=filename)
    return _make


@pytest.fixture(scope='function')
def category(db_session):
    """Create the Apparel category."""
    cat = Category(name="Apparel", slug="apparel")
    db_session.add(cat)
    db_session.commit()
    return cat


@pytest.fixture(scope='function')
def color(db_session):
    """Color attribute with Red, Blue (in that display order)."""
    return attributes_service.create_attribute(name="Color", values=["Red", "Blue"])


@pytest.fixture(scope='function')
def size(db_session):
    """Size attribute with S, M (in that display order)."""
    return attributes_service.create_attribute(name="Size", values=["S", "M"])


@pytest.fixture(scope='function')
def value_id():
    """Lookup helper: value_id(color, "Red") -> id of that attribute value."""
    def _lookup(attribute: dict, value: str) -> int:
        for v in attribute["values"]:
            if v["value"] == value:
                return v["id"]
        raise KeyError(value)
    return _lookup
