"""Invoice and receipt rendering.

A bill is turned into a document view model by ``build_document`` and then
rendered to HTML (``render_document``) or PDF (``invoice_pdf.render_pdf``).
Both document kinds share the same helpers so their figures cannot drift.
"""

import logging
import math
from datetime import date, datetime
from enum import Enum

from flask import render_template

from billing import LineItem, TaxConfig, calculate_totals

logger = logging.getLogger(__name__)

PLACEHOLDER_COMPANY = 'YOUR COMPANY NAME'
PLACEHOLDER_EMAIL = 'contact@yourcompany.com'
PLACEHOLDER_BANK = 'YOUR BANK NAME'
PLACEHOLDER_IFSC = 'BANK0001234'

DECLARATION = ("We declare that this invoice shows the actual price of the goods "
               "described and that all particulars are true and correct.")

_UNITS = ["", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight",
          "Nine", "Ten", "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen",
          "Sixteen", "Seventeen", "Eighteen", "Nineteen"]
_TENS = ["", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy",
         "Eighty", "Ninety"]

# Indian numbering: Crore, Lakh, Thousand, then the last three digits.
_SCALES = [(10000000, "Crore"), (100000, "Lakh"), (1000, "Thousand")]


class DocumentKind(str, Enum):
    RECEIPT = 'receipt'
    INVOICE = 'invoice'


def _convert_chunk(n):
    if n < 20:
        return _UNITS[n]
    if n < 100:
        return _TENS[n // 10] + (" " + _UNITS[n % 10] if n % 10 else "")
    return _UNITS[n // 100] + " Hundred" + (" " + _convert_chunk(n % 100) if n % 100 else "")


def number_to_words(num):
    """Convert a non-negative number to Indian English words.

    Floats are rounded half-up to the nearest integer first. Amounts of a hundred
    crore and above are spelled recursively (e.g. "One Hundred Crore").

    Args:
        num: int or float, must not be negative

    Returns:
        e.g. ``123456`` -> "One Lakh Twenty Three Thousand Four Hundred Fifty Six"

    Raises:
        ValueError: ``num`` is negative
    """
    num = int(math.floor(num + 0.5))
    if num < 0:
        raise ValueError(f"Cannot spell a negative amount: {num}")
    if num == 0:
        return "Zero"

    parts = []
    for scale, label in _SCALES:
        if num >= scale:
            parts.append(f"{number_to_words(num // scale)} {label}")
            num %= scale
    if num > 0:
        parts.append(_convert_chunk(num))
    return " ".join(parts)


def amount_in_words(amount):
    """``"INR <words> Only"``; a discount larger than the bill gives "INR Minus ..."."""
    if amount < 0:
        words = number_to_words(-amount)
        return f"INR Minus {words} Only" if words != "Zero" else "INR Zero Only"
    return f"INR {number_to_words(amount)} Only"


def format_currency(value):
    """Two decimal places, applied only when a value is displayed."""
    return f"{(value or 0.0):.2f}"


def format_rate(value):
    return f"{(value or 0.0):g}"


def format_bill_date(value):
    if isinstance(value, (date, datetime)):
        return value.strftime('%d/%m/%Y')
    try:
        return datetime.strptime(str(value)[:10], '%Y-%m-%d').strftime('%d/%m/%Y')
    except (TypeError, ValueError):
        return str(value or '')


def tax_config_for_bill(bill):
    return TaxConfig(
        is_gst_bill=bool(bill.get('is_gst_bill')),
        sgst_percent=bill.get('sgst_percent'),
        cgst_percent=bill.get('cgst_percent'),
        cess_percent=bill.get('cess_percent'),
    )


def line_items_for_bill(items):
    """Stored bill lines as ``LineItem`` (lot details are not kept on a bill)."""
    return [
        LineItem(
            product_id=item['product_id'],
            product_name=item.get('product_name') or 'Unknown Product',
            lot_size=1,
            lots='',
            quantity=item['quantity'],
            unit_price=item['price'],
            lot_price=item['price'],
        )
        for item in items
    ]


def _seller_block(seller):
    seller = seller or {}
    company = seller.get('name') or PLACEHOLDER_COMPANY
    return {
        'name': company,
        'address': seller.get('address'),
        'gst_number': seller.get('gst_number'),
        'email': seller.get('email') or PLACEHOLDER_EMAIL,
        'contact_number': seller.get('contact_number'),
        'bank': {
            'account_holder_name': seller.get('account_holder_name') or company,
            'bank_name': seller.get('bank_name') or PLACEHOLDER_BANK,
            'account_number': seller.get('bank_account_number') or 'None',
            'ifsc_code': seller.get('ifsc_code') or PLACEHOLDER_IFSC,
        },
    }


def _buyer_block(customer):
    customer = customer or {}
    return {
        'name': customer.get('name') or '',
        'address': customer.get('address') or '',
        'gst_number': customer.get('gst_number'),
        'state': customer.get('state'),
    }


def _item_rows(kind, items, tax):
    rate = tax.total_rate if tax.is_gst_bill else 0.0
    rows = []
    for index, item in enumerate(items, start=1):
        unit_price = item.unit_price
        amount = item.line_total
        if kind is DocumentKind.INVOICE and tax.is_gst_bill:
            # Tax invoices list the tax-exclusive figures.
            unit_price = unit_price / (1 + rate)
            amount = amount / (1 + rate)
        rows.append({
            'sl': index,
            'description': item.product_name,
            'quantity': item.quantity,
            'rate': format_currency(unit_price),
            'amount': format_currency(amount),
        })
    return rows


def _tax_breakdown(tax, totals):
    components = [
        ('CGST', 'OUTPUT CGST', tax.cgst, totals.cgst_amount),
        ('SGST/UTGST', 'OUTPUT SGST', tax.sgst, totals.sgst_amount),
    ]
    if tax.cess > 0:
        components.append(('Cess', 'CESS', tax.cess, totals.cess_amount))
    return {
        'taxable_value': format_currency(totals.taxable_value),
        'components': [
            {'heading': heading, 'label': f"{label} @ {format_rate(rate)}%",
             'rate': f"{format_rate(rate)}%", 'amount': format_currency(amount)}
            for heading, label, rate, amount in components
        ],
        'total_tax': format_currency(totals.gst_amount),
    }


def build_document(kind, bill, items, customer, seller=None, totals=None):
    """Build the view model for a receipt or tax invoice.

    Args:
        kind: ``DocumentKind`` or its string value
        bill: Stored bill as a dict (see ``Bill.to_dict``)
        items: Stored bill lines as dicts with product_name, quantity, price
        customer: Buyer record (name, address, gst_number)
        seller: Seller record; placeholder text is used for missing fields
        totals: ``BillTotals``; recomputed from the bill when omitted

    Returns:
        dict consumed by ``templates/document.html`` and ``invoice_pdf``
    """
    kind = DocumentKind(kind)
    tax = tax_config_for_bill(bill)
    line_items = line_items_for_bill(items)
    if totals is None:
        totals = calculate_totals(line_items, bill.get('discount') or 0.0, tax)

    is_invoice = kind is DocumentKind.INVOICE
    show_tax = tax.is_gst_bill
    document = {
        'kind': kind.value,
        'title': 'Tax Invoice' if is_invoice else 'RECEIPT',
        'subtitle': '(ORIGINAL FOR RECIPIENT)' if is_invoice else None,
        'invoice_number': bill.get('invoice_number') or '',
        'date': format_bill_date(bill.get('date_of_bill')),
        'seller': _seller_block(seller),
        'buyer': _buyer_block(customer),
        'rows': _item_rows(kind, line_items, tax),
        'total_quantity': sum(item.quantity for item in line_items),
        'subtotal': format_currency(totals.subtotal),
        'discount': format_currency(totals.discount) if totals.discount > 0 else None,
        'tax_total': format_currency(totals.gst_amount) if show_tax and totals.gst_amount else None,
        'grand_total': format_currency(totals.grand_total),
        'comments': bill.get('comments') or None,
        'tax_breakdown': None,
        'amount_in_words': None,
        'tax_in_words': None,
        'declaration': None,
        'footer': 'This is a computer generated receipt',
    }
    if is_invoice:
        document.update({
            'amount_in_words': amount_in_words(totals.grand_total),
            'declaration': DECLARATION,
            'footer': 'This is a Computer Generated Invoice',
        })
        if show_tax:
            document['tax_breakdown'] = _tax_breakdown(tax, totals)
            document['tax_in_words'] = amount_in_words(totals.gst_amount)
    return document


def render_document(kind, bill, items, customer, seller=None, totals=None):
    """Render a bill as a printable A4 HTML page. Needs an app context."""
    document = build_document(kind, bill, items, customer, seller, totals)
    logger.info(f"Rendering {document['kind']} for bill {document['invoice_number']}")
    return render_template('document.html', doc=document)
