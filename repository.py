"""Persistence layer used by the billing flow.

``BillingRepository`` is the interface the billing code depends on;
``SQLAlchemyRepository`` backs it with the Flask-SQLAlchemy models. Each
call commits on its own, so a multi-call submission is not atomic.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import date, datetime

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from billing import CatalogProduct, PersistenceError
from models import db, Bill, BillItem, Company, Customer, Inventory, Order, Product

logger = logging.getLogger(__name__)


class BillingRepository(ABC):

    @abstractmethod
    def fetch_catalog(self):
        """Return a dict of product id to ``CatalogProduct``."""

    @abstractmethod
    def fetch_customer(self, customer_id):
        pass

    @abstractmethod
    def fetch_seller(self):
        pass

    @abstractmethod
    def create_bill(self, request):
        """Persist a bill creation request and return the stored bill as a dict."""

    @abstractmethod
    def insert_bill_items(self, bill_id, lines):
        pass

    @abstractmethod
    def decrement_stock(self, product_id, quantity):
        pass

    @abstractmethod
    def update_balance(self, customer_id, amount):
        pass

    @abstractmethod
    def mark_order_fulfilled(self, order_id):
        pass

    @abstractmethod
    def fetch_order(self, order_id):
        pass

    @abstractmethod
    def get_bill(self, bill_id):
        pass

    @abstractmethod
    def get_bill_items(self, bill_id):
        pass

    @abstractmethod
    def list_bills(self, customer_id=None, status=None, gst=None):
        pass

    @abstractmethod
    def delete_bill(self, bill_id):
        pass


def _parse_bill_date(value):
    if not value:
        return date.today()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value)[:10], '%Y-%m-%d').date()
    except ValueError:
        raise PersistenceError('create_bill', f"Invalid date format: {value}. Use YYYY-MM-DD.")


class SQLAlchemyRepository(BillingRepository):
    """Repository over the application's SQLAlchemy session.

    Args:
        invoice_prefix: Prefix for generated invoice numbers
    """

    def __init__(self, invoice_prefix='BILL'):
        self.invoice_prefix = invoice_prefix

    @contextmanager
    def _step(self, name):
        try:
            yield
            db.session.commit()
        except PersistenceError:
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Database error in {name}: {e}")
            raise PersistenceError(name, str(e)) from e

    def fetch_catalog(self):
        try:
            products = Product.query.order_by(Product.name).all()
        except SQLAlchemyError as e:
            logger.error(f"Error fetching products: {e}")
            raise PersistenceError('fetch_catalog', str(e)) from e
        return {
            p.id: CatalogProduct(
                id=p.id,
                name=p.name,
                unit_price=p.price,
                lot_size=p.lot_size,
                lot_price=p.lot_price,
                available_stock=p.available_stock,
            )
            for p in products
        }

    def fetch_customer(self, customer_id):
        customer = db.session.get(Customer, customer_id) if customer_id else None
        return customer.to_dict() if customer else None

    def fetch_seller(self):
        company = Company.query.first()
        return company.to_dict() if company else None

    def _next_invoice_number(self):
        last_id = db.session.query(func.max(Bill.id)).scalar() or 0
        return f"{self.invoice_prefix}{last_id + 1:06d}"

    def create_bill(self, request):
        with self._step('create_bill'):
            if not db.session.get(Customer, request['customer_id']):
                raise PersistenceError('create_bill', f"Customer {request['customer_id']} not found")
            bill = Bill(
                invoice_number=self._next_invoice_number(),
                customer_id=request['customer_id'],
                date_of_bill=_parse_bill_date(request.get('date_of_bill')),
                status=request.get('status', 'outstanding'),
                comments=request.get('comments'),
                total_amount=request['total_amount'],
                discount=request.get('discount', 0.0),
                is_gst_bill=request.get('is_gst_bill', False),
                sgst_percentage=request.get('sgst_percent'),
                cgst_percentage=request.get('cgst_percent'),
                cess_percentage=request.get('cess_percent'),
                gst_amount=request.get('gst_amount', 0.0),
            )
            db.session.add(bill)
            db.session.flush()
        return bill.to_dict()

    def insert_bill_items(self, bill_id, lines):
        with self._step('insert_bill_items'):
            for line in lines:
                db.session.add(BillItem(
                    bill_id=bill_id,
                    product_id=line['product_id'],
                    quantity=line['quantity'],
                    price=line['price'],
                ))

    def decrement_stock(self, product_id, quantity):
        with self._step('decrement_stock'):
            inventory = Inventory.query.filter_by(product_id=product_id).first()
            if inventory is None:
                raise PersistenceError('decrement_stock', f"No inventory record for product {product_id}")
            inventory.quantity -= quantity

    def update_balance(self, customer_id, amount):
        with self._step('update_balance'):
            customer = db.session.get(Customer, customer_id)
            if customer is None:
                raise PersistenceError('update_balance', f"Customer {customer_id} not found")
            customer.outstanding_balance = (customer.outstanding_balance or 0.0) + amount

    def mark_order_fulfilled(self, order_id):
        with self._step('mark_order_fulfilled'):
            order = db.session.get(Order, order_id)
            if order is None:
                raise PersistenceError('mark_order_fulfilled', f"Order {order_id} not found")
            order.status = 'fulfilled'

    def fetch_order(self, order_id):
        order = db.session.get(Order, order_id)
        if order is None:
            return None
        return {
            'id': order.id,
            'customer_id': order.customer_id,
            'status': order.status,
            'lines': [(item.product_id, item.quantity) for item in order.items],
        }

    def get_bill(self, bill_id):
        bill = db.session.get(Bill, bill_id)
        return bill.to_dict() if bill else None

    def get_bill_items(self, bill_id):
        return [item.to_dict() for item in BillItem.query.filter_by(bill_id=bill_id).all()]

    def list_bills(self, customer_id=None, status=None, gst=None):
        query = Bill.query
        if customer_id:
            query = query.filter(Bill.customer_id == customer_id)
        if status:
            query = query.filter(Bill.status == status)
        if gst == 'gst':
            query = query.filter(Bill.is_gst_bill.is_(True))
        elif gst == 'non_gst':
            query = query.filter(Bill.is_gst_bill.is_(False))
        return [b.to_dict() for b in query.order_by(Bill.date_of_bill.desc(), Bill.id.desc()).all()]

    def delete_bill(self, bill_id):
        """Delete a bill and put back what it took.

        The customer's balance drops by the bill total and every line's
        quantity returns to inventory, all in one transaction.

        Returns:
            False if the bill does not exist, True otherwise
        """
        with self._step('delete_bill'):
            bill = db.session.get(Bill, bill_id)
            if bill is None:
                return False
            if bill.customer is not None:
                bill.customer.outstanding_balance = (bill.customer.outstanding_balance or 0.0) - bill.total_amount
            for item in bill.items:
                inventory = Inventory.query.filter_by(product_id=item.product_id).first()
                if inventory is not None:
                    inventory.quantity += item.quantity
            db.session.delete(bill)
        logger.info(f"Deleted bill {bill_id} and reverted stock and balance")
        return True
