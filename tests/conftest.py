import pytest
from decimal import Decimal
import uuid

from mrp_ledger import create_app
from mrp_ledger.database import Base, get_session, get_engine
from mrp_ledger.models import Product, ProductType
from mrp_ledger.services import stock_ledger_service


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing (in-memory SQLite, no Redis)."""
    app = create_app('config.TestConfig')
    return app


@pytest.fixture(scope='function')
def client(app, session):
    """Create test client on a fresh schema."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Database session on freshly created tables, dropped afterwards."""
    import mrp_ledger.models  # noqa: F401
    Base.metadata.create_all(bind=get_engine())
    session = get_session()
    yield session
    session.rollback()
    session.remove()
    Base.metadata.drop_all(bind=get_engine())


def make_product(session, name='Product', stock=0, cost='0', product_type=ProductType.RAW_MATERIAL,
                 category=None, reorder_level='0'):
    """Insert a product and book its starting stock through the ledger."""
    suffix = str(uuid.uuid4())[:8]
    product = Product(
        name=name,
        sku=f'SKU-{suffix}',
        product_type=product_type,
        category=category,
        cost_price=Decimal(str(cost)),
        current_stock=Decimal('0'),
        reorder_level=Decimal(str(reorder_level)),
        is_active=True,
    )
    session.add(product)
    session.commit()
    if Decimal(str(stock)) > 0:
        stock_ledger_service.record_movement(
            session, product.id, 'in', stock, reference_type='opening_balance'
        )
    return product


@pytest.fixture(scope='function')
def raw_material(session):
    """Raw material with stock 100 at cost 5."""
    return make_product(session, name='Steel Sheet', stock=100, cost=5, category='metals')


@pytest.fixture(scope='function')
def component(session):
    """Component with stock 50 at cost 3."""
    return make_product(session, name='Bolt M8', stock=50, cost=3, category='fasteners')


@pytest.fixture(scope='function')
def finished_good(session):
    """Finished good with no stock."""
    return make_product(
        session, name='Cabinet', cost=120, product_type=ProductType.FINISHED_GOOD, category='furniture'
    )


@pytest.fixture(scope='function')
def product_factory(session):
    """make_product bound to the test session."""
    def factory(**kwargs):
        return make_product(session, **kwargs)
    return factory
