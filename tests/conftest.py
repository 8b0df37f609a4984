import pytest

from app import create_app
from config import Config
from models import db, Customer, Inventory, Order, OrderItem, Product


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret-key'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    INVOICE_PREFIX = 'TEST'
    DEFAULT_SGST_PERCENT = 9.0
    DEFAULT_CGST_PERCENT = 9.0
    DEFAULT_CESS_PERCENT = 0.0
    DEFAULT_COMPANY_NAME = 'Acme Traders'
    DEFAULT_COMPANY_EMAIL = 'billing@acme.test'


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def _product(name, price, lot_size, stock):
    product = Product(name=name, price=price, lot_size=lot_size, lot_price=price * lot_size)
    product.inventory = Inventory(quantity=stock)
    db.session.add(product)
    return product


@pytest.fixture
def seeded(app):
    """One customer and two stocked products."""
    customer = Customer(name='Ravi Stores', address='12 Market Road', gst_number='29ABCDE1234F1Z5',
                        state='Karnataka')
    db.session.add(customer)
    soap = _product('Soap', 100.0, 10, 50)
    oil = _product('Oil', 50.0, 5, 20)
    db.session.commit()
    return {'customer': customer, 'soap': soap, 'oil': oil}


@pytest.fixture
def pending_order(seeded):
    order = Order(order_number='ORD001', customer_id=seeded['customer'].id)
    order.items.append(OrderItem(product_id=seeded['soap'].id, lots=2, units=0))
    order.items.append(OrderItem(product_id=seeded['oil'].id, lots=1, units=2))
    db.session.add(order)
    db.session.commit()
    return order
