from flask import Blueprint, render_template, request, redirect, url_for, jsonify, flash, current_app, session, abort, send_file
from models import db, Company, Customer
from billing import BillDraft, BillValidationError, PersistenceError, parse_float, submit_bill
from invoice_render import DocumentKind, build_document, render_document
from invoice_pdf import render_pdf
from datetime import datetime
import io
import logging

logger = logging.getLogger(__name__)

main_bp = Blueprint('main', __name__)

DRAFT_SESSION_KEY = 'bill_draft'
BILL_STATUSES = ('outstanding', 'partial', 'paid')


def _repository():
    return current_app.extensions['billing_repository']


def _new_draft():
    return BillDraft.new(
        sgst_percent=current_app.config['DEFAULT_SGST_PERCENT'],
        cgst_percent=current_app.config['DEFAULT_CGST_PERCENT'],
        cess_percent=current_app.config['DEFAULT_CESS_PERCENT'],
    )


def _load_draft():
    data = session.get(DRAFT_SESSION_KEY)
    return BillDraft.from_dict(data) if data else _new_draft()


def _save_draft(draft):
    session[DRAFT_SESSION_KEY] = draft.to_dict()


def _parse_flag(value):
    if isinstance(value, str):
        return value.strip().lower() == 'true'
    return value is True


def _is_billable(customer):
    # Same filter as the customer picker on the editor page
    return bool(customer) and customer['type'] == 'customer' and customer['is_active']


def _draft_json(draft, error=None, status=200):
    payload = {
        'success': error is None,
        'draft': draft.to_dict(),
        'totals': draft.totals().to_dict(),
    }
    if error is not None:
        payload['error'] = error
    return jsonify(payload), status


@main_bp.route('/')
def dashboard():
    customer_filter = request.args.get('customer', type=int)
    status_filter = request.args.get('status', '').strip()
    gst_filter = request.args.get('gst', '').strip()
    if status_filter not in BILL_STATUSES:
        status_filter = None
    try:
        bills = _repository().list_bills(customer_id=customer_filter, status=status_filter,
                                         gst=gst_filter or None)
        customers = Customer.query.filter_by(type='customer').order_by(Customer.name).all()
        company = Company.query.first()
    except Exception as e:
        logger.error(f"Error loading dashboard: {e}")
        bills, customers, company = [], [], None
    return render_template('dashboard.html', bills=bills, customers=customers, company=company,
                           filters={'customer': customer_filter, 'status': status_filter, 'gst': gst_filter})


@main_bp.route('/company', methods=['GET', 'POST'])
def company_settings():
    company = Company.query.first()
    if not company:
        flash('Company record not found. Please contact admin.', 'error')
        return redirect(url_for('main.dashboard'))

    if request.method == 'POST':
        try:
            name = request.form.get('name', '').strip()
            email = request.form.get('email', '').strip()

            # Validate required fields
            if not name or not email:
                flash('Company name and e-mail are required.', 'error')
                return render_template('company_settings.html', company=company)

            company.name = name
            company.email = email
            for field in ('contact_number', 'address', 'gst_number', 'state', 'account_holder_name',
                          'bank_name', 'bank_account_number', 'ifsc_code'):
                setattr(company, field, request.form.get(field, '').strip() or None)
            db.session.commit()
            flash('Company settings updated successfully.', 'success')
            return redirect(url_for('main.dashboard'))
        except Exception as e:
            logger.error(f"Error updating company: {e}")
            db.session.rollback()
            flash('Error updating company settings.', 'error')
    return render_template('company_settings.html', company=company)


def _customer_form():
    return {
        'name': request.form.get('name', '').strip(),
        'primary_phone_number': request.form.get('primary_phone_number', '').strip(),
        'address': request.form.get('address', '').strip(),
        'gst_number': request.form.get('gst_number', '').strip(),
        'state': request.form.get('state', '').strip(),
        'comments': request.form.get('comments', '').strip(),
        'type': 'vendor' if request.form.get('type') == 'vendor' else 'customer',
    }


@main_bp.route('/customers', methods=['GET', 'POST'])
def customers():
    if request.method == 'POST':
        try:
            fields = _customer_form()
            if not fields['name']:
                flash('Customer name is required.', 'error')
                return redirect(url_for('main.customers'))

            customer = Customer(**fields)
            db.session.add(customer)
            db.session.commit()
            flash('Customer added successfully.', 'success')
            return redirect(url_for('main.customers'))
        except Exception as e:
            logger.error(f"Error adding customer: {e}")
            db.session.rollback()
            flash('Error adding customer.', 'error')

    customers = Customer.query.filter_by(is_active=True).order_by(Customer.name).all()
    company = Company.query.first()
    return render_template('customers.html', customers=customers, company=company)


@main_bp.route('/customers/edit/<int:id>', methods=['POST'])
def edit_customer(id):
    try:
        customer = Customer.query.get_or_404(id)

        fields = _customer_form()
        if not fields['name']:
            flash('Customer name is required.', 'error')
            return redirect(url_for('main.customers'))

        for key, value in fields.items():
            setattr(customer, key, value)
        db.session.commit()
        flash('Customer updated successfully.', 'success')
    except Exception as e:
        logger.error(f"Error updating customer {id}: {e}")
        db.session.rollback()
        flash('Error updating customer.', 'error')
    return redirect(url_for('main.customers'))


@main_bp.route('/customers/delete/<int:id>', methods=['POST'])
def delete_customer(id):
    try:
        customer = Customer.query.get_or_404(id)

        # Check if customer has existing bills
        if customer.bills:
            flash(f'Cannot delete customer "{customer.name}": they have {len(customer.bills)} linked bill(s). Delete those first.', 'error')
            return redirect(url_for('main.customers'))

        db.session.delete(customer)
        db.session.commit()
        flash('Customer deleted successfully.', 'success')
    except Exception as e:
        logger.error(f"Error deleting customer {id}: {e}")
        db.session.rollback()
        flash('Error deleting customer.', 'error')
    return redirect(url_for('main.customers'))


@main_bp.route('/api/customers')
def api_customers():
    try:
        query = request.args.get('q', '').strip()
        base = Customer.query.filter_by(is_active=True, type='customer')
        if query:
            customers = base.filter(Customer.name.ilike(f'%{query}%')).limit(10).all()
        else:
            customers = base.limit(20).all()

        return jsonify([c.to_dict() for c in customers])
    except Exception as e:
        logger.error(f"Error searching customers: {e}")
        return jsonify([]), 500


@main_bp.route('/api/products')
def api_products():
    try:
        catalog = _repository().fetch_catalog()
    except PersistenceError as e:
        return jsonify({'success': False, 'error': str(e)}), 500
    return jsonify([{
        'id': p.id,
        'name': p.name,
        'unit_price': p.unit_price,
        'lot_size': p.lot_size,
        'lot_price': p.lot_price,
        'available_stock': p.available_stock,
    } for p in catalog.values()])


@main_bp.route('/bill/new')
def create_bill():
    draft = _load_draft()
    repo = _repository()
    try:
        catalog = repo.fetch_catalog()
    except PersistenceError as e:
        flash(f'Error fetching products: {e}', 'error')
        catalog = {}
    customers = Customer.query.filter_by(is_active=True, type='customer').order_by(Customer.name).all()
    return render_template('create_bill.html', draft=draft, totals=draft.totals(),
                           products=list(catalog.values()), customers=customers,
                           selected_customer=repo.fetch_customer(draft.customer_id))


@main_bp.route('/bill/from-order/<int:order_id>')
def bill_from_order(order_id):
    repo = _repository()
    order = repo.fetch_order(order_id)
    if order is None:
        flash('Order not found.', 'error')
        return redirect(url_for('main.dashboard'))
    if order['status'] == 'fulfilled':
        flash('This order has already been billed.', 'error')
        return redirect(url_for('main.dashboard'))

    draft = BillDraft.from_order(
        order['id'], order['customer_id'], order['lines'], repo.fetch_catalog(),
        sgst_percent=current_app.config['DEFAULT_SGST_PERCENT'],
        cgst_percent=current_app.config['DEFAULT_CGST_PERCENT'],
        cess_percent=current_app.config['DEFAULT_CESS_PERCENT'],
    )
    _save_draft(draft)
    return redirect(url_for('main.create_bill'))


@main_bp.route('/api/bill/draft', methods=['GET', 'PUT'])
def bill_draft():
    draft = _load_draft()
    if request.method == 'GET':
        return _draft_json(draft)

    data = request.get_json(silent=True)
    if not data:
        return _draft_json(draft, 'Invalid request data', 400)

    try:
        if 'customer_id' in data:
            customer_id = int(data['customer_id']) if data['customer_id'] else None
            if customer_id and not _is_billable(_repository().fetch_customer(customer_id)):
                return _draft_json(draft, 'Customer not found', 404)
            draft.customer_id = customer_id

        if 'discount' in data:
            discount = parse_float(data['discount'])
            if discount < 0:
                raise BillValidationError('Discount cannot be negative')
            draft.discount = discount

        if 'comments' in data:
            draft.comments = (data['comments'] or '').strip()

        if 'date_of_bill' in data:
            date_str = data['date_of_bill'] or ''
            try:
                draft.date_of_bill = datetime.strptime(date_str, '%Y-%m-%d').date().isoformat()
            except ValueError:
                raise BillValidationError('Invalid date format. Use YYYY-MM-DD.')

        tax = data.get('tax') or {}
        if 'is_gst_bill' in tax:
            draft.tax.is_gst_bill = _parse_flag(tax['is_gst_bill'])
        for key in ('sgst_percent', 'cgst_percent', 'cess_percent'):
            if key in tax:
                value = None if tax[key] in (None, '') else parse_float(tax[key])
                if value is not None and value < 0:
                    raise BillValidationError('Tax percentages cannot be negative')
                setattr(draft.tax, key, value)
    except (ValueError, TypeError) as e:
        logger.error(f"Validation error updating bill draft: {e}")
        return _draft_json(_load_draft(), str(e), 400)

    _save_draft(draft)
    return _draft_json(draft)


@main_bp.route('/api/bill/draft/items', methods=['POST'])
def add_draft_item():
    draft = _load_draft()
    data = request.get_json(silent=True) or {}
    try:
        catalog = _repository().fetch_catalog()
        product_id = data.get('product_id')
        product = catalog.get(int(product_id)) if product_id else None
        draft.add_item(product)
    except (ValueError, TypeError) as e:
        return _draft_json(_load_draft(), str(e), 400)
    except PersistenceError as e:
        return _draft_json(_load_draft(), str(e), 500)

    _save_draft(draft)
    return _draft_json(draft, status=201)


@main_bp.route('/api/bill/draft/items/<int:index>', methods=['PATCH', 'DELETE'])
def change_draft_item(index):
    draft = _load_draft()
    try:
        if request.method == 'DELETE':
            draft.remove_item(index)
        else:
            data = request.get_json(silent=True) or {}
            if 'field' not in data or 'value' not in data:
                raise BillValidationError('Both field and value are required')
            catalog = _repository().fetch_catalog()
            product = None
            if 0 <= index < len(draft.items):
                product = catalog.get(draft.items[index].product_id)
                if product is None:
                    raise BillValidationError('Product no longer available')
            draft.edit_item(index, data['field'], data['value'], product)
    except ValueError as e:
        return _draft_json(_load_draft(), str(e), 400)
    except PersistenceError as e:
        return _draft_json(_load_draft(), str(e), 500)

    _save_draft(draft)
    return _draft_json(draft)


@main_bp.route('/api/bill/draft/reset', methods=['POST'])
def reset_draft():
    draft = _new_draft()
    _save_draft(draft)
    return _draft_json(draft)


@main_bp.route('/api/bill/draft/submit', methods=['POST'])
def submit_draft():
    draft = _load_draft()
    try:
        result = submit_bill(_repository(), draft)
    except BillValidationError as e:
        return _draft_json(draft, str(e), 400)
    except PersistenceError as e:
        logger.error(f"Error creating bill: {e}")
        return _draft_json(draft, str(e), 500)

    session.pop(DRAFT_SESSION_KEY, None)
    bill_id = result.bill['id']
    return jsonify({
        'success': True,
        'bill': result.bill,
        'totals': result.totals.to_dict(),
        'warnings': [str(e) for e in result.errors],
        'invoice_url': url_for('main.view_bill', id=bill_id, kind='invoice'),
        'receipt_url': url_for('main.view_bill', id=bill_id, kind='receipt'),
    }), 201


def _load_document(id):
    try:
        kind = DocumentKind(request.args.get('kind', DocumentKind.INVOICE.value))
    except ValueError:
        abort(400)
    repo = _repository()
    bill = repo.get_bill(id)
    if bill is None:
        abort(404)
    customer = repo.fetch_customer(bill['customer_id'])
    if customer is None:
        return kind, bill, None, None
    return kind, bill, customer, repo.get_bill_items(id)


@main_bp.route('/bill/<int:id>')
def view_bill(id):
    kind, bill, customer, items = _load_document(id)
    if customer is None:
        flash('Customer details not found for this bill.', 'error')
        return redirect(url_for('main.dashboard'))
    return render_document(kind, bill, items, customer, _repository().fetch_seller())


@main_bp.route('/bill/<int:id>/pdf')
def download_bill_pdf(id):
    kind, bill, customer, items = _load_document(id)
    if customer is None:
        flash('Customer details not found for this bill.', 'error')
        return redirect(url_for('main.dashboard'))
    document = build_document(kind, bill, items, customer, _repository().fetch_seller())
    return send_file(
        io.BytesIO(render_pdf(document)),
        mimetype='application/pdf',
        as_attachment=True,
        download_name=f"{kind.value}_{bill['invoice_number']}.pdf",
    )


@main_bp.route('/bill/delete/<int:id>', methods=['POST'])
def delete_bill(id):
    try:
        if _repository().delete_bill(id):
            flash('Bill deleted successfully.', 'success')
        else:
            flash('Bill not found.', 'error')
    except PersistenceError as e:
        logger.error(f"Error deleting bill {id}: {e}")
        flash(f'Error deleting bill: {e}', 'error')
    return redirect(url_for('main.dashboard'))
