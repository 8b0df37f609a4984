"""Bill calculation and line-item editing.

Everything in here is plain Python with no database access. The calculator
and the line-item reducer are pure functions; ``BillDraft`` holds the bill
being edited between requests and ``submit_bill`` drives a repository to
persist it.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

_INT_PREFIX = re.compile(r'^\s*([+-]?\d+)')
_FLOAT_PREFIX = re.compile(r'^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)')


class BillValidationError(ValueError):
    """Raised when a bill or one of its lines fails validation."""


class StockLimitError(BillValidationError):
    """Raised when a line would take more units than are in stock."""


class PersistenceError(Exception):
    """Raised when a call to the persistence layer fails.

    Attributes:
        step: Name of the operation that failed (e.g. ``decrement_stock``)
    """

    def __init__(self, step, message):
        super().__init__(message)
        self.step = step

    def __str__(self):
        return f"{self.step}: {self.args[0]}"


def parse_int(value):
    """Read the leading integer of ``value``; anything unreadable is 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    match = _INT_PREFIX.match(str(value or ''))
    return int(match.group(1)) if match else 0


def parse_float(value):
    """Read the leading decimal number of ``value``; anything unreadable is 0."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    match = _FLOAT_PREFIX.match(str(value or ''))
    return float(match.group(1)) if match else 0.0


def _percent(value):
    # Blank percentages count as zero so the rate never becomes NaN.
    if value is None or value == '':
        return 0.0
    return parse_float(value)


@dataclass
class TaxConfig:
    """Bill-level tax settings, fixed once the bill is created."""
    is_gst_bill: bool = False
    sgst_percent: Optional[float] = None
    cgst_percent: Optional[float] = None
    cess_percent: Optional[float] = None

    @property
    def sgst(self):
        return _percent(self.sgst_percent)

    @property
    def cgst(self):
        return _percent(self.cgst_percent)

    @property
    def cess(self):
        return _percent(self.cess_percent)

    @property
    def total_rate(self):
        return (self.sgst + self.cgst + self.cess) / 100

    def to_dict(self):
        return {
            'is_gst_bill': self.is_gst_bill,
            'sgst_percent': self.sgst_percent,
            'cgst_percent': self.cgst_percent,
            'cess_percent': self.cess_percent,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            is_gst_bill=bool(data.get('is_gst_bill', False)),
            sgst_percent=data.get('sgst_percent'),
            cgst_percent=data.get('cgst_percent'),
            cess_percent=data.get('cess_percent'),
        )


@dataclass(frozen=True)
class CatalogProduct:
    """A product as seen by the editor, with its current stock level."""
    id: int
    name: str
    unit_price: float
    lot_size: int
    lot_price: float
    available_stock: int = 0


@dataclass
class LineItem:
    """One product entry on a bill.

    Attributes:
        product_id: Catalog id, copied when the line is added
        product_name: Display name, copied when the line is added
        lot_size: Units per lot for this product
        lots: Lot count as typed; empty once the quantity is edited directly
        quantity: Authoritative unit count
        unit_price: Price per unit (tax-inclusive on GST bills)
        lot_price: ``unit_price * lot_size``
    """
    product_id: int
    product_name: str
    lot_size: int
    lots: str
    quantity: int
    unit_price: float
    lot_price: float

    @property
    def line_total(self):
        return self.quantity * self.unit_price

    def to_dict(self):
        return {
            'product_id': self.product_id,
            'product_name': self.product_name,
            'lot_size': self.lot_size,
            'lots': self.lots,
            'quantity': self.quantity,
            'unit_price': self.unit_price,
            'lot_price': self.lot_price,
            'line_total': self.line_total,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            product_id=data['product_id'],
            product_name=data.get('product_name', ''),
            lot_size=int(data.get('lot_size', 1)),
            lots=str(data.get('lots', '')),
            quantity=int(data.get('quantity', 0)),
            unit_price=float(data.get('unit_price', 0)),
            lot_price=float(data.get('lot_price', 0)),
        )


@dataclass(frozen=True)
class BillTotals:
    subtotal: float
    taxable_value: float
    sgst_amount: float
    cgst_amount: float
    cess_amount: float
    discount: float
    grand_total: float

    @property
    def gst_amount(self):
        return self.sgst_amount + self.cgst_amount + self.cess_amount

    def to_dict(self):
        return {
            'subtotal': self.subtotal,
            'taxable_value': self.taxable_value,
            'sgst_amount': self.sgst_amount,
            'cgst_amount': self.cgst_amount,
            'cess_amount': self.cess_amount,
            'gst_amount': self.gst_amount,
            'discount': self.discount,
            'grand_total': self.grand_total,
        }


def calculate_totals(items, discount=0.0, tax_config=None):
    """Derive the bill totals from its lines.

    Unit prices on a GST bill are tax-inclusive, so the taxable base of each
    line is recovered by dividing by ``1 + rate`` and every tax component is
    summed line by line. Nothing is rounded here; rounding belongs to the
    renderer.

    Args:
        items: Iterable of ``LineItem``
        discount: Flat amount taken off the grand total
        tax_config: ``TaxConfig``; ``None`` means a non-GST bill

    Returns:
        BillTotals
    """
    items = list(items)
    tax_config = tax_config or TaxConfig()
    discount = parse_float(discount)
    subtotal = sum((item.quantity * item.unit_price for item in items), 0.0)

    if not tax_config.is_gst_bill:
        return BillTotals(
            subtotal=subtotal,
            taxable_value=subtotal,
            sgst_amount=0.0,
            cgst_amount=0.0,
            cess_amount=0.0,
            discount=discount,
            grand_total=subtotal - discount,
        )

    rate = tax_config.total_rate
    taxable_value = sgst = cgst = cess = 0.0
    for item in items:
        base_price = (item.quantity * item.unit_price) / (1 + rate)
        taxable_value += base_price
        if rate > 0:
            sgst += base_price * (tax_config.sgst / 100)
            cgst += base_price * (tax_config.cgst / 100)
            cess += base_price * (tax_config.cess / 100)

    return BillTotals(
        subtotal=subtotal,
        taxable_value=taxable_value,
        sgst_amount=sgst,
        cgst_amount=cgst,
        cess_amount=cess,
        discount=discount,
        grand_total=taxable_value + sgst + cgst + cess - discount,
    )


class EditField(str, Enum):
    LOTS = 'lots'
    QUANTITY = 'quantity'
    UNIT_PRICE = 'unit_price'
    LOT_PRICE = 'lot_price'


def _check_stock(item, quantity, product):
    if product is not None and quantity > product.available_stock:
        raise StockLimitError(
            f"Cannot set quantity to {quantity} for {item.product_name}. "
            f"Available stock: {product.available_stock}."
        )


def _check_non_negative(label, value):
    if value < 0:
        raise BillValidationError(f"{label} cannot be negative")


def _edit_lots(item, value, product):
    # Typing a lot count discards any manual price override.
    quantity = parse_int(value) * item.lot_size
    _check_non_negative('Quantity', quantity)
    _check_stock(item, quantity, product)
    unit_price, lot_price = item.unit_price, item.lot_price
    if product is not None:
        unit_price, lot_price = product.unit_price, product.lot_price
    return replace(item, lots='' if value is None else str(value), quantity=quantity,
                   unit_price=unit_price, lot_price=lot_price)


def _edit_quantity(item, value, product):
    quantity = parse_int(value)
    _check_non_negative('Quantity', quantity)
    _check_stock(item, quantity, product)
    return replace(item, quantity=quantity, lots='')


def _edit_unit_price(item, value, product):
    unit_price = parse_float(value)
    _check_non_negative('Price', unit_price)
    return replace(item, unit_price=unit_price,
                   lot_price=unit_price * item.lot_size)


def _edit_lot_price(item, value, product):
    lot_price = parse_float(value)
    _check_non_negative('Lot price', lot_price)
    if item.lot_size > 0:
        return replace(item, lot_price=lot_price,
                       unit_price=lot_price / item.lot_size)
    return replace(item, lot_price=lot_price)


_EDIT_RULES = {
    EditField.LOTS: _edit_lots,
    EditField.QUANTITY: _edit_quantity,
    EditField.UNIT_PRICE: _edit_unit_price,
    EditField.LOT_PRICE: _edit_lot_price,
}


def apply_edit(item, edited_field, value, product=None):
    """Return a copy of ``item`` with one field edited and the rest re-derived.

    Args:
        item: The ``LineItem`` being edited (left untouched)
        edited_field: ``EditField`` or its string value
        value: Raw value as typed by the user
        product: Current ``CatalogProduct`` for the line, used for the
            price reset on a lots edit and for the stock check

    Returns:
        A new LineItem

    Raises:
        BillValidationError: Unknown field or negative value
        StockLimitError: The new quantity exceeds available stock
    """
    try:
        rule = _EDIT_RULES[EditField(edited_field)]
    except ValueError:
        raise BillValidationError(f"Unknown line item field: {edited_field}")
    return rule(item, value, product)


def _lots_text(quantity, lot_size):
    lots = quantity / (lot_size or 1)
    return str(int(lots)) if float(lots).is_integer() else str(lots)


@dataclass
class BillDraft:
    """The bill currently being edited."""
    customer_id: Optional[int] = None
    items: list = field(default_factory=list)
    discount: float = 0.0
    comments: str = ''
    date_of_bill: Optional[str] = None
    tax: TaxConfig = field(default_factory=TaxConfig)
    order_id: Optional[int] = None

    @classmethod
    def new(cls, sgst_percent=None, cgst_percent=None, cess_percent=None):
        return cls(
            date_of_bill=date.today().isoformat(),
            tax=TaxConfig(False, sgst_percent, cgst_percent, cess_percent),
        )

    @classmethod
    def from_order(cls, order_id, customer_id, order_lines, catalog, **defaults):
        """Seed a draft from an order.

        Args:
            order_lines: Iterable of ``(product_id, quantity)`` pairs
            catalog: Mapping of product id to ``CatalogProduct``
        """
        draft = cls.new(**defaults)
        draft.customer_id = customer_id
        draft.order_id = order_id
        for product_id, quantity in order_lines:
            product = catalog.get(product_id)
            if product is None:
                logger.warning(f"Order {order_id} references unknown product {product_id}")
                continue
            draft.items.append(LineItem(
                product_id=product.id,
                product_name=product.name,
                lot_size=product.lot_size,
                lots=_lots_text(quantity, product.lot_size),
                quantity=quantity,
                unit_price=product.unit_price,
                lot_price=product.lot_price,
            ))
        return draft

    def quantity_of(self, product_id):
        return sum(item.quantity for item in self.items if item.product_id == product_id)

    def add_item(self, product):
        """Append one lot of ``product``.

        Raises:
            BillValidationError: No product was selected
            StockLimitError: One more lot would exceed available stock
        """
        if product is None:
            raise BillValidationError("Please select a product")
        in_bill = self.quantity_of(product.id)
        if in_bill + product.lot_size > product.available_stock:
            raise StockLimitError(
                f"Cannot add {product.lot_size} of {product.name}. "
                f"Available stock: {product.available_stock}. "
                f"You already have {in_bill} in this bill."
            )
        item = LineItem(
            product_id=product.id,
            product_name=product.name,
            lot_size=product.lot_size,
            lots='1',
            quantity=product.lot_size,
            unit_price=product.unit_price,
            lot_price=product.lot_price,
        )
        self.items.append(item)
        return item

    def _check_index(self, index):
        if not 0 <= index < len(self.items):
            raise BillValidationError(f"No line item at position {index}")

    def remove_item(self, index):
        self._check_index(index)
        return self.items.pop(index)

    def edit_item(self, index, edited_field, value, product=None):
        self._check_index(index)
        self.items[index] = apply_edit(self.items[index], edited_field, value, product)
        return self.items[index]

    def totals(self):
        return calculate_totals(self.items, self.discount, self.tax)

    def validate_for_submit(self, catalog):
        """Check the draft can be persisted against the current stock levels.

        Raises:
            BillValidationError: Missing customer or no items
            StockLimitError: A line exceeds the stock it was checked against
        """
        if not self.customer_id or not self.items:
            raise BillValidationError("Please select a customer and add at least one item")
        if self.discount < 0:
            raise BillValidationError("Discount cannot be negative")
        for item in self.items:
            product = catalog.get(item.product_id)
            available = product.available_stock if product else 0
            if item.quantity > available:
                raise StockLimitError(
                    f"The quantity for {item.product_name} ({item.quantity}) exceeds "
                    f"the available stock ({available}). Please remove it or reduce the quantity."
                )

    def to_dict(self):
        return {
            'customer_id': self.customer_id,
            'items': [item.to_dict() for item in self.items],
            'discount': self.discount,
            'comments': self.comments,
            'date_of_bill': self.date_of_bill,
            'tax': self.tax.to_dict(),
            'order_id': self.order_id,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            customer_id=data.get('customer_id'),
            items=[LineItem.from_dict(i) for i in data.get('items', [])],
            discount=parse_float(data.get('discount', 0)),
            comments=data.get('comments') or '',
            date_of_bill=data.get('date_of_bill'),
            tax=TaxConfig.from_dict(data.get('tax', {})),
            order_id=data.get('order_id'),
        )


def build_bill_request(draft, totals):
    """Shape the bill creation request and its line records."""
    is_gst = draft.tax.is_gst_bill
    bill = {
        'customer_id': draft.customer_id,
        'total_amount': totals.grand_total,
        'status': 'outstanding',
        'discount': draft.discount,
        'comments': draft.comments,
        'date_of_bill': draft.date_of_bill,
        'is_gst_bill': is_gst,
        'sgst_percent': draft.tax.sgst if is_gst else None,
        'cgst_percent': draft.tax.cgst if is_gst else None,
        'cess_percent': draft.tax.cess if is_gst else None,
        'gst_amount': totals.gst_amount,
    }
    lines = [
        {'product_id': item.product_id, 'quantity': item.quantity, 'price': item.unit_price}
        for item in draft.items
    ]
    return bill, lines


@dataclass
class SubmissionResult:
    bill: dict
    totals: BillTotals
    errors: list = field(default_factory=list)

    @property
    def complete(self):
        return not self.errors


def submit_bill(repository, draft, catalog=None):
    """Persist ``draft`` through ``repository`` one call at a time.

    Creating the bill and inserting its lines must succeed or the submission
    stops with ``PersistenceError``. Stock, balance and order updates that
    fail afterwards are collected in ``SubmissionResult.errors``; steps that
    already succeeded are not undone.

    Raises:
        BillValidationError: The draft is not ready to submit
        PersistenceError: The bill or its lines could not be created
    """
    if catalog is None:
        catalog = repository.fetch_catalog()
    draft.validate_for_submit(catalog)

    totals = draft.totals()
    bill_request, lines = build_bill_request(draft, totals)

    bill = repository.create_bill(bill_request)
    logger.info(f"Created bill {bill['invoice_number']} for customer {draft.customer_id}")
    repository.insert_bill_items(bill['id'], lines)

    errors = []
    for line in lines:
        try:
            repository.decrement_stock(line['product_id'], line['quantity'])
        except PersistenceError as e:
            logger.error(f"Error updating stock for bill {bill['id']}: {e}")
            errors.append(e)

    try:
        repository.update_balance(draft.customer_id, totals.grand_total)
    except PersistenceError as e:
        logger.error(f"Error updating customer balance for bill {bill['id']}: {e}")
        errors.append(e)

    if draft.order_id:
        try:
            repository.mark_order_fulfilled(draft.order_id)
        except PersistenceError as e:
            logger.error(f"Error updating order {draft.order_id} status: {e}")
            errors.append(e)

    return SubmissionResult(bill=bill, totals=totals, errors=errors)
