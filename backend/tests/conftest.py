"""
Pytest fixtures for salon ledger backend tests.

Provides test database setup, tenant fixtures, and test client.
"""

import os
import tempfile

import pytest
from salon_ledger import create_app
from salon_ledger.extensions import db
from salon_ledger.models import Tenant


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Create Tenant A (first salon)."""
    tenant = Tenant(
        name="Salon A - Peluquería Lola",
        code="LOLA",
        legal_name="Peluquería Lola SL",
        tax_id="B12345678",
        address="Calle Mayor 1",
        postal_code="28013",
        city="Madrid",
        province="Madrid",
        is_active=True,
    )
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Create Tenant B (second salon)."""
    tenant = Tenant(name="Salon B - Estética Bea", code="BEA", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def file_app():
    """
    Application on a temporary file database.

    Threads need a database they can all open; :memory: is per-connection.
    """
    fd, path = tempfile.mkstemp(suffix=".sqlite3")
    os.close(fd)
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{path}',
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30, 'check_same_thread': False}},
        'RETRY_ATTEMPTS': 25,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        tenant = Tenant(name="Concurrent Salon", code="CONC", is_active=True)
        db.session.add(tenant)
        db.session.commit()
        app.config['TEST_TENANT_ID'] = tenant.id
        db.session.remove()

    yield app

    with app.app_context():
        db.session.remove()
        db.engine.dispose()
    os.remove(path)


@pytest.fixture(scope='function')
def tenant_headers():
    """Helper to create tenant context headers."""
    def _headers(tenant, actor: str = "recepcion") -> dict:
        tenant_id = tenant if isinstance(tenant, int) else tenant.id
        return {'X-Tenant-Id': str(tenant_id), 'X-Actor': actor}
    return _headers
