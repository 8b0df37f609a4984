"""A4 PDF output for invoices and receipts.

Draws the view model produced by ``invoice_render.build_document`` with the
reportlab canvas. Only the standard Helvetica fonts are used, so amounts are
prefixed with "INR" rather than the rupee sign.
"""

import io

from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

W, H = A4
MARGIN = 40
CONTENT_W = W - 2 * MARGIN
ROW_H = 16

BLACK = HexColor('#000000')
HEADER_FILL = HexColor('#F5F5F5')

# (heading, key, share of content width, alignment)
INVOICE_COLUMNS = [
    ('Sl No', 'sl', 0.08, 'center'),
    ('Description of Goods', 'description', 0.50, 'left'),
    ('Quantity', 'quantity', 0.12, 'center'),
    ('Rate', 'rate', 0.10, 'right'),
    ('per', 'per', 0.08, 'center'),
    ('Amount', 'amount', 0.12, 'right'),
]
RECEIPT_COLUMNS = [
    ('S.No', 'sl', 0.08, 'center'),
    ('Description', 'description', 0.42, 'left'),
    ('Quantity', 'quantity', 0.15, 'center'),
    ('Rate', 'rate', 0.15, 'right'),
    ('Amount', 'amount', 0.20, 'right'),
]


class DocumentPDF:

    def __init__(self, buffer, title):
        self.c = canvas.Canvas(buffer, pagesize=A4)
        self.c.setTitle(title)
        self.y = H - MARGIN

    def save(self):
        self.c.save()

    # ─── primitives ───

    def draw_text(self, text, x, y, size=9, bold=False, align='left', max_width=None):
        font = 'Helvetica-Bold' if bold else 'Helvetica'
        text = str(text)
        if max_width:
            while self.c.stringWidth(text, font, size) > max_width and len(text) > 3:
                text = text[:-4] + '...'
        self.c.setFont(font, size)
        self.c.setFillColor(BLACK)
        if align == 'center':
            self.c.drawCentredString(x, y, text)
        elif align == 'right':
            self.c.drawRightString(x, y, text)
        else:
            self.c.drawString(x, y, text)

    def draw_rect(self, x, y, w, h, fill=None):
        self.c.saveState()
        self.c.setStrokeColor(BLACK)
        self.c.setLineWidth(0.5)
        if fill:
            self.c.setFillColor(fill)
        self.c.rect(x, y, w, h, fill=1 if fill else 0, stroke=1)
        self.c.restoreState()

    def draw_wrapped_text(self, text, x, y, max_width, size=9, leading=12):
        """Draw text with word wrapping, return final y position"""
        words = str(text).split()
        line = ''
        for word in words:
            candidate = f"{line} {word}".strip()
            if self.c.stringWidth(candidate, 'Helvetica', size) <= max_width:
                line = candidate
                continue
            self.draw_text(line, x, y, size)
            y -= leading
            line = word
        if line:
            self.draw_text(line, x, y, size)
            y -= leading
        return y

    def ensure_space(self, needed):
        if self.y - needed < MARGIN:
            self.c.showPage()
            self.y = H - MARGIN

    # ─── blocks ───

    def draw_boxed_lines(self, blocks):
        """Side-by-side boxes. ``blocks`` is a list of (width share, lines);
        the first line of each box is bold."""
        height = max(len(lines) for _, lines in blocks) * 12 + 8
        self.ensure_space(height)
        x = MARGIN
        for share, lines in blocks:
            w = CONTENT_W * share
            self.draw_rect(x, self.y - height, w, height)
            ty = self.y - 12
            for i, line in enumerate(lines):
                self.draw_text(line, x + 4, ty, bold=(i == 0), max_width=w - 8)
                ty -= 12
            x += w
        self.y -= height

    def draw_row(self, columns, values, bold=False, fill=None):
        self.ensure_space(ROW_H)
        x = MARGIN
        for heading, key, share, align in columns:
            w = CONTENT_W * share
            self.draw_rect(x, self.y - ROW_H, w, ROW_H, fill=fill)
            value = values.get(key, '')
            if align == 'center':
                tx = x + w / 2
            elif align == 'right':
                tx = x + w - 4
            else:
                tx = x + 4
            self.draw_text(value, tx, self.y - 11, size=8, bold=bold, align=align, max_width=w - 8)
            x += w
        self.y -= ROW_H

    def draw_summary_row(self, label, value, bold=False):
        self.ensure_space(ROW_H)
        label_w = CONTENT_W * 0.8
        self.draw_rect(MARGIN, self.y - ROW_H, label_w, ROW_H)
        self.draw_rect(MARGIN + label_w, self.y - ROW_H, CONTENT_W - label_w, ROW_H)
        self.draw_text(label, MARGIN + label_w - 4, self.y - 11, size=8, bold=True, align='right')
        self.draw_text(value, MARGIN + CONTENT_W - 4, self.y - 11, size=8, bold=bold, align='right')
        self.y -= ROW_H

    def draw_full_width(self, text, bold=False):
        self.ensure_space(ROW_H)
        self.draw_rect(MARGIN, self.y - ROW_H, CONTENT_W, ROW_H)
        self.draw_text(text, MARGIN + 4, self.y - 11, size=8, bold=bold, max_width=CONTENT_W - 8)
        self.y -= ROW_H


def _seller_lines(doc, with_gst):
    seller = doc['seller']
    lines = [seller['name']]
    if seller['address']:
        lines.append(seller['address'])
    if with_gst and seller['gst_number']:
        lines.append(f"GSTIN/UIN: {seller['gst_number']}")
    lines.append(f"E-Mail: {seller['email']}")
    if seller['contact_number']:
        lines.append(f"Contact: {seller['contact_number']}")
    return lines


def _buyer_lines(doc, heading):
    buyer = doc['buyer']
    lines = [heading, buyer['name'], buyer['address']]
    lines.append(f"GSTIN/UIN: {buyer['gst_number'] or 'N/A'}")
    if buyer['state']:
        lines.append(f"State Name: {buyer['state']}")
    return lines


def _draw_invoice(pdf, doc):
    pdf.draw_boxed_lines([
        (0.6, _seller_lines(doc, with_gst=True)),
        (0.4, ['Invoice Details',
               f"Invoice No.: {doc['invoice_number']}",
               f"Dated: {doc['date']}",
               "Buyer's Order No.: -"]),
    ])
    pdf.draw_boxed_lines([
        (0.5, _buyer_lines(doc, 'Consignee (Ship to)')),
        (0.5, _buyer_lines(doc, 'Buyer (Bill to)')),
    ])

    pdf.draw_row(INVOICE_COLUMNS, {key: heading for heading, key, _, _ in INVOICE_COLUMNS},
                 bold=True, fill=HEADER_FILL)
    for row in doc['rows']:
        pdf.draw_row(INVOICE_COLUMNS, dict(row, quantity=f"{row['quantity']} Nos.", per='Nos.'))
    breakdown = doc['tax_breakdown']
    if breakdown:
        for component in breakdown['components']:
            pdf.draw_row(INVOICE_COLUMNS, {'description': component['label'],
                                           'rate': component['rate'],
                                           'amount': component['amount']})
    if doc['discount']:
        pdf.draw_summary_row('Discount', f"-{doc['discount']}")
    pdf.draw_row(INVOICE_COLUMNS, {'description': 'Total',
                                   'quantity': f"{doc['total_quantity']} Nos.",
                                   'amount': f"INR {doc['grand_total']}"}, bold=True)

    pdf.draw_full_width('Amount Chargeable (in words)', bold=True)
    pdf.draw_full_width(doc['amount_in_words'])

    if breakdown:
        pdf.draw_full_width(f"Taxable Value: {breakdown['taxable_value']}", bold=True)
        for component in breakdown['components']:
            pdf.draw_full_width(f"{component['heading']} @ {component['rate']}: {component['amount']}")
        pdf.draw_full_width(f"Total Tax Amount: {breakdown['total_tax']}", bold=True)
        pdf.draw_full_width(f"Tax Amount (in words): {doc['tax_in_words']}", bold=True)

    bank = doc['seller']['bank']
    pdf.draw_boxed_lines([
        (0.5, ["Company's Bank Details",
               f"A/c Holder's Name: {bank['account_holder_name']}",
               f"Bank Name: {bank['bank_name']}",
               f"A/c No.: {bank['account_number']}",
               f"Branch & IFS Code: {bank['ifsc_code']}"]),
        (0.5, [f"for {doc['seller']['name']}", '', '', '', 'Authorised Signatory']),
    ])
    pdf.ensure_space(40)
    pdf.draw_text('Declaration', MARGIN, pdf.y - 12, size=8, bold=True)
    pdf.y = pdf.draw_wrapped_text(doc['declaration'], MARGIN, pdf.y - 24,
                                  CONTENT_W, size=7, leading=9)


def _draw_receipt(pdf, doc):
    pdf.draw_text(f"Bill No: {doc['invoice_number']}", W / 2, pdf.y, align='center')
    pdf.draw_text(f"Date: {doc['date']}", W / 2, pdf.y - 12, align='center')
    pdf.y -= 24
    buyer = doc['buyer']
    buyer_lines = ['BILL TO:', buyer['name'], buyer['address']]
    if buyer['gst_number']:
        buyer_lines.append(f"GSTIN: {buyer['gst_number']}")
    pdf.draw_boxed_lines([(0.5, _seller_lines(doc, with_gst=False)), (0.5, buyer_lines)])

    pdf.draw_row(RECEIPT_COLUMNS, {key: heading for heading, key, _, _ in RECEIPT_COLUMNS},
                 bold=True, fill=HEADER_FILL)
    for row in doc['rows']:
        pdf.draw_row(RECEIPT_COLUMNS, dict(row, rate=f"INR {row['rate']}",
                                           amount=f"INR {row['amount']}"))
    pdf.draw_summary_row('Subtotal:', f"INR {doc['subtotal']}", bold=True)
    if doc['discount']:
        pdf.draw_summary_row('Discount:', f"-INR {doc['discount']}", bold=True)
    if doc['tax_total']:
        pdf.draw_summary_row('Tax:', f"INR {doc['tax_total']}", bold=True)
    pdf.draw_summary_row('TOTAL:', f"INR {doc['grand_total']}", bold=True)


def render_pdf(doc):
    """Render a document view model to PDF bytes."""
    buffer = io.BytesIO()
    pdf = DocumentPDF(buffer, f"{doc['title']} {doc['invoice_number']}")

    pdf.draw_text(doc['title'], W / 2, pdf.y, size=14, bold=True, align='center')
    pdf.y -= 14
    if doc['subtitle']:
        pdf.draw_text(doc['subtitle'], W / 2, pdf.y, size=9, align='center')
        pdf.y -= 14

    if doc['kind'] == 'invoice':
        _draw_invoice(pdf, doc)
    else:
        _draw_receipt(pdf, doc)

    pdf.ensure_space(40)
    pdf.y -= 14
    pdf.draw_text(doc['footer'], W / 2, pdf.y, size=8, align='center')
    if doc['comments']:
        pdf.y -= 14
        pdf.draw_text(f"Comments: {doc['comments']}", MARGIN, pdf.y, size=8, max_width=CONTENT_W)

    pdf.save()
    return buffer.getvalue()
