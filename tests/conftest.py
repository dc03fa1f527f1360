import pytest
from decimal import Decimal

from almacen import create_app, database
from almacen.middleware import Actor
from almacen.models import Product


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing (in-memory SQLite)."""
    app = create_app('config.TestConfig')
    return app


@pytest.fixture(scope='function')
def app_context(app):
    with app.app_context():
        yield


@pytest.fixture(scope='function')
def session(app_context):
    """Fresh schema and database session for each test."""
    database.drop_tables()
    database.create_tables()
    session = database.get_session()
    yield session
    session.rollback()
    session.remove()


@pytest.fixture(scope='function')
def client(app, session):
    """Create test client sharing the test's app context and session."""
    return app.test_client()


@pytest.fixture
def actor():
    return Actor('user-1', 'Ana Pérez')


@pytest.fixture
def product(session):
    """Product with 50 units and a minimum of 20."""
    product = Product(
        code='P-001',
        description='Tornillo 1/4',
        unit='pza',
        department='ferreteria',
        current_quantity=Decimal('50'),
        min_quantity=Decimal('20'),
        max_quantity=Decimal('100'),
        total_movements=0,
        created_by='user-1',
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture
def empty_product(session):
    """Product with no stock and no thresholds."""
    product = Product(
        code='P-002',
        description='Cable UTP',
        unit='m',
        department='electronica',
        current_quantity=Decimal('0'),
        total_movements=0,
        created_by='user-1',
    )
    session.add(product)
    session.commit()
    return product


def make_product(session, code, description=None, current=0, minimum=None, maximum=None, department='otros'):
    """Helper for tests that need several products."""
    product = Product(
        code=code,
        description=description or f'Producto {code}',
        unit='pza',
        department=department,
        current_quantity=Decimal(str(current)),
        min_quantity=Decimal(str(minimum)) if minimum is not None else None,
        max_quantity=Decimal(str(maximum)) if maximum is not None else None,
        total_movements=0,
        created_by='user-1',
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture
def product_factory(session):
    def factory(code, **kwargs):
        return make_product(session, code, **kwargs)
    return factory
