import pytest

from models import db, Bill, Customer, Inventory, Order, Product


def stock_of(product_id):
    db.session.expire_all()
    return Inventory.query.filter_by(product_id=product_id).first().quantity


def balance_of(customer_id):
    db.session.expire_all()
    return db.session.get(Customer, customer_id).outstanding_balance


def build_gst_bill(client, seeded):
    """Two soap lots and one oil lot, GST at the configured 9/9/0, discount 50."""
    client.put('/api/bill/draft', json={'customer_id': seeded['customer'].id})
    client.post('/api/bill/draft/items', json={'product_id': seeded['soap'].id})
    client.post('/api/bill/draft/items', json={'product_id': seeded['oil'].id})
    client.patch('/api/bill/draft/items/0', json={'field': 'lots', 'value': '2'})
    return client.put('/api/bill/draft', json={'discount': 50, 'tax': {'is_gst_bill': True}})


@pytest.fixture
def submitted(client, seeded):
    build_gst_bill(client, seeded)
    response = client.post('/api/bill/draft/submit')
    assert response.status_code == 201
    return response.get_json()


class TestDraftApi:

    def test_new_draft_uses_configured_rates(self, client):
        data = client.get('/api/bill/draft').get_json()
        assert data['success'] is True
        assert data['draft']['items'] == []
        assert data['draft']['tax'] == {'is_gst_bill': False, 'sgst_percent': 9.0,
                                        'cgst_percent': 9.0, 'cess_percent': 0.0}

    def test_editing_flow_updates_totals(self, client, seeded):
        data = build_gst_bill(client, seeded).get_json()

        items = data['draft']['items']
        assert [(i['product_name'], i['lots'], i['quantity']) for i in items] == [
            ('Soap', '2', 20), ('Oil', '1', 5)]
        assert data['totals']['subtotal'] == 2250
        assert data['totals']['grand_total'] == pytest.approx(2200)
        assert data['totals']['sgst_amount'] == pytest.approx(2250 / 1.18 * 0.09)

    def test_add_item_returns_created(self, client, seeded):
        response = client.post('/api/bill/draft/items', json={'product_id': seeded['oil'].id})
        assert response.status_code == 201
        assert response.get_json()['draft']['items'][0]['quantity'] == 5

    def test_add_item_without_product(self, client, seeded):
        response = client.post('/api/bill/draft/items', json={})
        assert response.status_code == 400
        assert response.get_json()['error'] == 'Please select a product'

    def test_add_item_beyond_stock(self, client, seeded):
        for _ in range(4):
            assert client.post('/api/bill/draft/items', json={'product_id': seeded['oil'].id}).status_code == 201
        response = client.post('/api/bill/draft/items', json={'product_id': seeded['oil'].id})

        assert response.status_code == 400
        data = response.get_json()
        assert data['success'] is False
        assert 'Available stock: 20' in data['error']
        assert len(data['draft']['items']) == 4

    def test_edit_beyond_stock_keeps_previous_line(self, client, seeded):
        client.post('/api/bill/draft/items', json={'product_id': seeded['soap'].id})
        response = client.patch('/api/bill/draft/items/0', json={'field': 'quantity', 'value': '51'})
        assert response.status_code == 400
        assert response.get_json()['draft']['items'][0]['quantity'] == 10

    def test_edit_requires_field_and_value(self, client, seeded):
        client.post('/api/bill/draft/items', json={'product_id': seeded['soap'].id})
        response = client.patch('/api/bill/draft/items/0', json={'field': 'lots'})
        assert response.status_code == 400

    def test_remove_item(self, client, seeded):
        client.post('/api/bill/draft/items', json={'product_id': seeded['soap'].id})
        client.post('/api/bill/draft/items', json={'product_id': seeded['oil'].id})
        data = client.delete('/api/bill/draft/items/0').get_json()
        assert [i['product_name'] for i in data['draft']['items']] == ['Oil']
        assert client.delete('/api/bill/draft/items/3').status_code == 400

    def test_unknown_customer(self, client, seeded):
        response = client.put('/api/bill/draft', json={'customer_id': 999})
        assert response.status_code == 404

    @pytest.mark.parametrize('payload', [
        {'discount': -5},
        {'date_of_bill': '15/03/2024'},
        {'tax': {'sgst_percent': -1}},
    ])
    def test_invalid_bill_fields(self, client, seeded, payload):
        response = client.put('/api/bill/draft', json=payload)
        assert response.status_code == 400
        assert response.get_json()['success'] is False

    def test_reset(self, client, seeded):
        client.post('/api/bill/draft/items', json={'product_id': seeded['soap'].id})
        data = client.post('/api/bill/draft/reset').get_json()
        assert data['draft']['items'] == []

    def test_editor_page(self, client, seeded):
        client.post('/api/bill/draft/items', json={'product_id': seeded['soap'].id})
        response = client.get('/bill/new')
        assert response.status_code == 200
        assert b'Soap' in response.data


class TestSubmit:

    def test_submit_persists_bill(self, client, seeded, submitted):
        assert submitted['success'] is True
        assert submitted['warnings'] == []
        assert submitted['bill']['invoice_number'] == 'TEST000001'
        assert submitted['bill']['is_gst_bill'] is True
        assert submitted['bill']['sgst_percent'] == 9
        assert submitted['totals']['grand_total'] == pytest.approx(2200)

        assert stock_of(seeded['soap'].id) == 30
        assert stock_of(seeded['oil'].id) == 15
        assert balance_of(seeded['customer'].id) == pytest.approx(2200)

        bill = Bill.query.one()
        assert [(i.product_id, i.quantity, i.price) for i in bill.items] == [
            (seeded['soap'].id, 20, 100.0), (seeded['oil'].id, 5, 50.0)]

    def test_submit_clears_draft(self, client, seeded, submitted):
        assert client.get('/api/bill/draft').get_json()['draft']['items'] == []

    def test_invoice_numbers_increase(self, client, seeded, submitted):
        client.put('/api/bill/draft', json={'customer_id': seeded['customer'].id})
        client.post('/api/bill/draft/items', json={'product_id': seeded['oil'].id})
        response = client.post('/api/bill/draft/submit')
        assert response.get_json()['bill']['invoice_number'] == 'TEST000002'

    def test_submit_without_customer_keeps_draft(self, client, seeded):
        client.post('/api/bill/draft/items', json={'product_id': seeded['soap'].id})
        response = client.post('/api/bill/draft/submit')

        assert response.status_code == 400
        assert 'select a customer' in response.get_json()['error']
        assert len(client.get('/api/bill/draft').get_json()['draft']['items']) == 1
        assert Bill.query.count() == 0
        assert stock_of(seeded['soap'].id) == 50

    def test_submit_rechecks_stock(self, client, seeded):
        client.put('/api/bill/draft', json={'customer_id': seeded['customer'].id})
        client.post('/api/bill/draft/items', json={'product_id': seeded['soap'].id})
        inventory = Inventory.query.filter_by(product_id=seeded['soap'].id).first()
        inventory.quantity = 5
        db.session.commit()

        response = client.post('/api/bill/draft/submit')
        assert response.status_code == 400
        assert 'exceeds the available stock' in response.get_json()['error']
        assert Bill.query.count() == 0


class TestBillDocuments:

    def test_invoice_html(self, client, submitted):
        response = client.get(submitted['invoice_url'])
        assert response.status_code == 200
        assert b'Tax Invoice' in response.data
        assert b'TEST000001' in response.data
        assert b'INR Two Thousand Two Hundred Only' in response.data

    def test_receipt_html(self, client, submitted):
        response = client.get(submitted['receipt_url'])
        assert response.status_code == 200
        assert b'RECEIPT' in response.data
        assert b'Acme Traders' in response.data

    def test_pdf_download(self, client, submitted):
        bill_id = submitted['bill']['id']
        response = client.get(f'/bill/{bill_id}/pdf?kind=receipt')
        assert response.status_code == 200
        assert response.mimetype == 'application/pdf'
        assert response.data.startswith(b'%PDF')
        assert 'receipt_TEST000001.pdf' in response.headers['Content-Disposition']

    def test_unknown_kind(self, client, submitted):
        assert client.get(f"/bill/{submitted['bill']['id']}?kind=quote").status_code == 400

    def test_missing_bill(self, client, seeded):
        assert client.get('/bill/42').status_code == 404
        assert client.get('/bill/42/pdf').status_code == 404


class TestDashboardAndDelete:

    def test_dashboard_filters(self, client, seeded, submitted):
        assert b'TEST000001' in client.get('/').data
        assert b'TEST000001' in client.get('/?gst=gst').data
        assert b'TEST000001' not in client.get('/?gst=non_gst').data
        assert b'TEST000001' in client.get('/?status=outstanding').data
        assert b'TEST000001' not in client.get('/?status=paid').data

    def test_delete_bill_reverts_stock_and_balance(self, client, seeded, submitted):
        response = client.post(f"/bill/delete/{submitted['bill']['id']}")
        assert response.status_code == 302

        assert Bill.query.count() == 0
        assert stock_of(seeded['soap'].id) == 50
        assert stock_of(seeded['oil'].id) == 20
        assert balance_of(seeded['customer'].id) == pytest.approx(0)

    def test_customer_with_bills_cannot_be_deleted(self, client, seeded, submitted):
        customer_id = seeded['customer'].id
        client.post(f'/customers/delete/{customer_id}')
        db.session.expire_all()
        assert db.session.get(Customer, customer_id) is not None

    def test_customer_without_bills_can_be_deleted(self, client, seeded):
        customer_id = seeded['customer'].id
        client.post(f'/customers/delete/{customer_id}')
        db.session.expire_all()
        assert db.session.get(Customer, customer_id) is None


class TestBillFromOrder:

    def test_order_seeds_draft(self, client, seeded, pending_order):
        response = client.get(f'/bill/from-order/{pending_order.id}')
        assert response.status_code == 302
        assert response.headers['Location'].endswith('/bill/new')

        draft = client.get('/api/bill/draft').get_json()['draft']
        assert draft['order_id'] == pending_order.id
        assert draft['customer_id'] == seeded['customer'].id
        assert [(i['product_name'], i['quantity'], i['lots']) for i in draft['items']] == [
            ('Soap', 20, '2'), ('Oil', 7, '1.4')]

    def test_submitting_order_bill_fulfils_order(self, client, seeded, pending_order):
        order_id = pending_order.id
        client.get(f'/bill/from-order/{order_id}')
        assert client.post('/api/bill/draft/submit').status_code == 201

        db.session.expire_all()
        assert db.session.get(Order, order_id).status == 'fulfilled'
        assert stock_of(seeded['oil'].id) == 13

    def test_fulfilled_order_is_not_billed_again(self, client, seeded, pending_order):
        pending_order.status = 'fulfilled'
        db.session.commit()
        response = client.get(f'/bill/from-order/{pending_order.id}')
        assert response.headers['Location'].endswith('/')


class TestCustomersAndCompany:

    def test_add_and_search_customers(self, client, seeded):
        response = client.post('/customers', data={'name': 'Sharma & Sons', 'state': 'Delhi'})
        assert response.status_code == 302

        names = [c['name'] for c in client.get('/api/customers?q=sharma').get_json()]
        assert names == ['Sharma & Sons']
        assert len(client.get('/api/customers').get_json()) == 2

    def test_vendors_are_not_offered_for_billing(self, client, seeded):
        client.post('/customers', data={'name': 'Supplier Co', 'type': 'vendor'})
        names = [c['name'] for c in client.get('/api/customers').get_json()]
        assert 'Supplier Co' not in names

    def test_edit_customer(self, client, seeded):
        customer_id = seeded['customer'].id
        client.post(f'/customers/edit/{customer_id}', data={'name': 'Ravi Stores Ltd',
                                                          'address': '14 Market Road'})
        db.session.expire_all()
        customer = db.session.get(Customer, customer_id)
        assert customer.name == 'Ravi Stores Ltd'
        assert customer.address == '14 Market Road'

    def test_products_api_reports_stock(self, client, seeded):
        products = {p['name']: p for p in client.get('/api/products').get_json()}
        assert products['Soap']['available_stock'] == 50
        assert products['Oil']['lot_price'] == 250

    def test_company_settings_require_name_and_email(self, client):
        response = client.post('/company', data={'name': '', 'email': ''})
        assert response.status_code == 200
        assert b'Company name and e-mail are required.' in response.data

    def test_company_settings_update(self, client):
        response = client.post('/company', data={'name': 'Acme Wholesale', 'email': 'hi@acme.test',
                                                 'bank_name': 'State Bank'})
        assert response.status_code == 302
        assert b'Acme Wholesale' in client.get('/company').data


class TestDraftGuards:

    def test_discount_above_subtotal_bill_can_be_opened(self, client, seeded):
        client.put('/api/bill/draft', json={'customer_id': seeded['customer'].id, 'discount': 5000})
        client.post('/api/bill/draft/items', json={'product_id': seeded['soap'].id})
        submitted = client.post('/api/bill/draft/submit').get_json()
        bill_id = submitted['bill']['id']

        response = client.get(f'/bill/{bill_id}?kind=invoice')
        assert response.status_code == 200
        assert b'INR Minus Four Thousand Only' in response.data
        assert client.get(f'/bill/{bill_id}?kind=receipt').status_code == 200

        pdf = client.get(f'/bill/{bill_id}/pdf?kind=invoice')
        assert pdf.status_code == 200
        assert pdf.data.startswith(b'%PDF')

    def test_edit_line_whose_product_was_removed(self, client, seeded):
        client.post('/api/bill/draft/items', json={'product_id': seeded['soap'].id})
        client.patch('/api/bill/draft/items/0', json={'field': 'unit_price', 'value': '1'})
        db.session.delete(db.session.get(Product, seeded['soap'].id))
        db.session.commit()

        response = client.patch('/api/bill/draft/items/0', json={'field': 'lots', 'value': '999'})
        assert response.status_code == 400
        assert response.get_json()['error'] == 'Product no longer available'
        item = client.get('/api/bill/draft').get_json()['draft']['items'][0]
        assert (item['lots'], item['quantity'], item['unit_price']) == ('1', 10, 1.0)

    @pytest.mark.parametrize('flag, expected', [
        ('false', False), ('False', False), ('0', False), ('true', True), ('TRUE', True),
        (True, True), (False, False), (1, False), (None, False),
    ])
    def test_gst_flag_is_parsed_strictly(self, client, flag, expected):
        response = client.put('/api/bill/draft', json={'tax': {'is_gst_bill': flag}})
        assert response.status_code == 200
        assert response.get_json()['draft']['tax']['is_gst_bill'] is expected

    def test_vendor_cannot_be_billed(self, client, seeded):
        vendor = Customer(name='Supplier Co', type='vendor')
        db.session.add(vendor)
        db.session.commit()
        response = client.put('/api/bill/draft', json={'customer_id': vendor.id})
        assert response.status_code == 404
        assert response.get_json()['draft']['customer_id'] is None

    def test_inactive_customer_cannot_be_billed(self, client, seeded):
        customer = seeded['customer']
        customer.is_active = False
        db.session.commit()
        response = client.put('/api/bill/draft', json={'customer_id': customer.id})
        assert response.status_code == 404
