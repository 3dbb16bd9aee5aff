import pytest
from datetime import datetime, timedelta
from decimal import Decimal
import os
import uuid

# Never talk to real SMTP/Redis from the test-suite
os.environ.setdefault('MAIL_SUPPRESS_SEND', 'true')
os.environ.setdefault('CACHE_ENABLED', 'false')

from sqlalchemy.orm import Session

from storefront import create_app
from storefront import database
from storefront.database import db_session, create_tables, drop_tables
from storefront.models import Customer, AdminUser, DiscountCode, DiscountType, CartLine
from storefront.services import loyalty_service


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    app = create_app('config.TestingConfig')
    return app


@pytest.fixture(autouse=True)
def fresh_database(app):
    """Recreate every table so each test starts from an empty database."""
    with app.app_context():
        db_session.remove()
        drop_tables()
        create_tables()
        yield
        db_session.remove()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """
    Session for test setup and assertions.

    Separate from the request-scoped db_session, which is removed at the end
    of every request.
    """
    session = Session(bind=database.engine)
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def settings():
    """Default loyalty settings (Bronze/Silver/Gold/Platinum)."""
    return loyalty_service.load_settings({
        'LOYALTY_ACTIVE': True,
        'LOYALTY_POINTS_PER_DOLLAR': '1',
        'LOYALTY_POINT_VALUE': '0.01',
    })


@pytest.fixture(scope='function')
def customer(session):
    """Create test customer."""
    suffix = str(uuid.uuid4())[:8]
    customer = Customer(email=f'customer-{suffix}@test.com', full_name='Test Customer', active=True)
    session.add(customer)
    session.commit()
    return customer


@pytest.fixture(scope='function')
def other_customer(session):
    suffix = str(uuid.uuid4())[:8]
    customer = Customer(email=f'other-{suffix}@test.com', full_name='Other Customer', active=True)
    session.add(customer)
    session.commit()
    return customer


@pytest.fixture(scope='function')
def admin(session):
    """Create test administrator."""
    suffix = str(uuid.uuid4())[:8]
    admin = AdminUser(email=f'admin-{suffix}@test.com', full_name='Test Admin', active=True)
    session.add(admin)
    session.commit()
    return admin


@pytest.fixture
def make_discount(session):
    """Factory inserting a discount code directly."""
    def _make(code='SAVE10', discount_type=DiscountType.PERCENTAGE, value='10', **kwargs):
        fields = dict(
            code=code,
            discount_type=discount_type,
            discount_value=Decimal(value),
            min_purchase_amount=Decimal('0'),
            start_date=datetime.now() - timedelta(days=1),
            end_date=datetime.now() + timedelta(days=30),
            is_active=True,
            usage_limit=None,
            usage_count=0,
            specific_products=[],
            specific_customers=[],
        )
        fields.update(kwargs)
        discount = DiscountCode(**fields)
        session.add(discount)
        session.commit()
        return discount
    return _make


@pytest.fixture(scope='function')
def discount(make_discount):
    """10% code, unlimited uses."""
    return make_discount()


@pytest.fixture(scope='function')
def fixed_discount(make_discount):
    """$10 off, limited to 5 uses."""
    return make_discount(code='TENOFF', discount_type=DiscountType.FIXED, value='10', usage_limit=5)


@pytest.fixture
def add_cart_line(session):
    """Factory inserting a cart line for a customer."""
    def _add(customer_id, product_id='P-1', quantity=1, price='50.00', variant_name='default'):
        line = CartLine(
            customer_id=customer_id,
            product_id=product_id,
            variant_name=variant_name,
            quantity=quantity,
            unit_price=Decimal(price),
        )
        session.add(line)
        session.commit()
        return line
    return _add


@pytest.fixture(scope='function')
def customer_client(client, customer):
    """Client signed in as the test customer."""
    with client.session_transaction() as sess:
        sess['user_id'] = customer.id
    return client


@pytest.fixture(scope='function')
def admin_client(client, admin):
    """Client signed in as the test administrator."""
    with client.session_transaction() as sess:
        sess['admin_user_id'] = admin.id
    return client
