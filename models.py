from flask_sqlalchemy import SQLAlchemy
from datetime import datetime

db = SQLAlchemy()


class Company(db.Model):
    """The seller shown on every invoice. Only one row is kept."""
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), nullable=True)
    contact_number = db.Column(db.String(20), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    gst_number = db.Column(db.String(20), nullable=True)
    state = db.Column(db.String(50), nullable=True)

    # Bank details for the invoice footer
    account_holder_name = db.Column(db.String(100), nullable=True)
    bank_name = db.Column(db.String(100), nullable=True)
    bank_account_number = db.Column(db.String(40), nullable=True)
    ifsc_code = db.Column(db.String(20), nullable=True)

    def to_dict(self):
        return {
            'name': self.name,
            'email': self.email,
            'contact_number': self.contact_number,
            'address': self.address,
            'gst_number': self.gst_number,
            'state': self.state,
            'account_holder_name': self.account_holder_name,
            'bank_name': self.bank_name,
            'bank_account_number': self.bank_account_number,
            'ifsc_code': self.ifsc_code,
        }


class Customer(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    primary_phone_number = db.Column(db.String(20), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    gst_number = db.Column(db.String(20), nullable=True)
    state = db.Column(db.String(50), nullable=True)
    comments = db.Column(db.Text, nullable=True)
    type = db.Column(db.String(10), default='customer', nullable=False)  # customer | vendor
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    outstanding_balance = db.Column(db.Float, default=0.0, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'primary_phone_number': self.primary_phone_number,
            'address': self.address,
            'gst_number': self.gst_number,
            'state': self.state,
            'comments': self.comments,
            'type': self.type,
            'is_active': self.is_active,
            'outstanding_balance': self.outstanding_balance,
        }


class Product(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    price = db.Column(db.Float, nullable=False)  # per unit
    lot_size = db.Column(db.Integer, default=1, nullable=False)
    lot_price = db.Column(db.Float, default=0.0, nullable=False)
    min_stock = db.Column(db.Integer, default=0)

    inventory = db.relationship('Inventory', backref='product', uselist=False,
                                cascade="all, delete-orphan")

    @property
    def available_stock(self):
        return self.inventory.quantity if self.inventory else 0

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'price': self.price,
            'lot_size': self.lot_size,
            'lot_price': self.lot_price,
            'available_stock': self.available_stock,
        }


class Inventory(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), unique=True, nullable=False)
    quantity = db.Column(db.Integer, default=0, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Bill(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(20), unique=True, nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey('customer.id'), nullable=True)
    customer = db.relationship('Customer', backref=db.backref('bills', lazy=True))
    date_of_bill = db.Column(db.Date, default=datetime.utcnow, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    status = db.Column(db.String(20), default='outstanding', nullable=False)  # outstanding | partial | paid
    comments = db.Column(db.Text, nullable=True)

    # Financial snapshot written through from the editor at submission
    total_amount = db.Column(db.Float, nullable=False)
    paid_amount = db.Column(db.Float, default=0.0)
    discount = db.Column(db.Float, default=0.0)
    is_gst_bill = db.Column(db.Boolean, default=False, nullable=False)
    sgst_percentage = db.Column(db.Float, nullable=True)
    cgst_percentage = db.Column(db.Float, nullable=True)
    cess_percentage = db.Column(db.Float, nullable=True)
    gst_amount = db.Column(db.Float, default=0.0)

    items = db.relationship('BillItem', backref='bill', lazy=True, cascade="all, delete-orphan")

    def to_dict(self):
        return {
            'id': self.id,
            'invoice_number': self.invoice_number,
            'customer_id': self.customer_id,
            'customer_name': self.customer.name if self.customer else None,
            'date_of_bill': self.date_of_bill.isoformat() if self.date_of_bill else None,
            'status': self.status,
            'comments': self.comments,
            'total_amount': self.total_amount,
            'paid_amount': self.paid_amount,
            'discount': self.discount,
            'is_gst_bill': self.is_gst_bill,
            'sgst_percent': self.sgst_percentage,
            'cgst_percent': self.cgst_percentage,
            'cess_percent': self.cess_percentage,
            'gst_amount': self.gst_amount,
        }


class BillItem(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    bill_id = db.Column(db.Integer, db.ForeignKey('bill.id'), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=True)
    product = db.relationship('Product')
    quantity = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Float, nullable=False)

    def to_dict(self):
        return {
            'product_id': self.product_id,
            'product_name': self.product.name if self.product else 'Unknown Product',
            'quantity': self.quantity,
            'price': self.price,
        }


class Order(db.Model):
    __tablename__ = 'orders'

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(20), unique=True, nullable=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customer.id'), nullable=True)
    customer = db.relationship('Customer', backref=db.backref('orders', lazy=True))
    status = db.Column(db.String(20), default='pending', nullable=False)  # pending | fulfilled
    comments = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    items = db.relationship('OrderItem', backref='order', lazy=True, cascade="all, delete-orphan")


class OrderItem(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=True)
    product = db.relationship('Product')
    lots = db.Column(db.Integer, default=0)
    units = db.Column(db.Integer, default=0)

    @property
    def quantity(self):
        lot_size = self.product.lot_size if self.product else 1
        return (self.lots or 0) * lot_size + (self.units or 0)
