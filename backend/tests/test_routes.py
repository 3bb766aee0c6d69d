# Overview: Pytest coverage for the HTTP API: tenant context, error bodies and main flows.

"""
API Route Tests

Exercise the blueprints through the Flask test client: tenant header
handling, the structured error body and the cash/invoice flows end to end.
Another tenant's ids must read as "not found".
"""

import pytest


class TestTenantContext:
    def test_missing_tenant_header(self, client, db_session):
        response = client.get('/api/cash/sessions/current')
        assert response.status_code == 400
        assert response.json['error'] == 'validation_error'

    def test_malformed_tenant_header(self, client, db_session):
        response = client.get('/api/cash/sessions/current', headers={'X-Tenant-Id': 'abc'})
        assert response.status_code == 400

    def test_unknown_tenant(self, client, db_session, tenant_headers):
        response = client.get('/api/cash/sessions/current', headers=tenant_headers(9999))
        assert response.status_code == 404
        assert response.json['error'] == 'not_found'

    def test_inactive_tenant(self, client, db_session, tenant_a, tenant_headers):
        tenant_a.is_active = False
        db_session.commit()
        response = client.get('/api/invoices', headers=tenant_headers(tenant_a))
        assert response.status_code == 404


class TestSystem:
    def test_health(self, client, db_session, tenant_a):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.json['status'] == 'healthy'
        assert response.json['checks']['database']['details']['tenants'] == 1

    def test_version(self, client):
        assert client.get('/version').json['api_version'] == '1.0.0'


class TestCashRoutes:
    def test_full_day(self, client, db_session, tenant_a, tenant_headers):
        headers = tenant_headers(tenant_a)

        response = client.post('/api/cash/sessions/open', json={'initial_amount': '100.00'}, headers=headers)
        assert response.status_code == 201
        session = response.json['session']
        assert session['initial_amount'] == '100.00'
        assert session['opened_by'] == 'recepcion'

        response = client.post('/api/cash/movements', json={'type': 'sale', 'amount': 45.5}, headers=headers)
        assert response.status_code == 201
        assert response.json['movement']['amount'] == '45.50'

        response = client.post(
            '/api/cash/movements',
            json={'type': 'expense', 'amount': '12.00', 'category': 'materiales'},
            headers=headers,
        )
        assert response.json['movement']['amount'] == '-12.00'

        response = client.post('/api/cash/reconcile', json={'counted_cash': '133.50'}, headers=headers)
        assert response.status_code == 201
        assert response.json['reconciliation']['state'] == 'balanced'
        assert response.json['reconciliation']['difference'] == '0.00'

        current = client.get('/api/cash/sessions/current', headers=headers).json['session']
        assert current['expected_cash'] == '133.50'

        response = client.post('/api/cash/sessions/close', json={'final_amount': '133.50'}, headers=headers)
        assert response.status_code == 200
        assert response.json['session']['status'] == 'closed'
        assert response.json['session']['difference'] == '0.00'

        history = client.get('/api/cash/sessions/history', headers=headers).json
        assert len(history['sessions']) == 1

        detail = client.get(f"/api/cash/sessions/{session['id']}", headers=headers).json['session']
        assert len(detail['movements']) == 2
        assert len(detail['reconciliations']) == 2

        stats = client.get('/api/cash/statistics?period=day', headers=headers).json
        assert stats['total_sales'] == '45.50'

    def test_double_open_reports_conflict(self, client, db_session, tenant_a, tenant_headers):
        headers = tenant_headers(tenant_a)
        client.post('/api/cash/sessions/open', json={'initial_amount': '100.00'}, headers=headers)

        response = client.post('/api/cash/sessions/open', json={'initial_amount': '100.00'}, headers=headers)

        assert response.status_code == 409
        body = response.json
        assert body['error'] == 'session_already_open'
        assert 'already open' in body['message']
        assert 'opened_at' in body['details']

    def test_movement_without_open_session(self, client, db_session, tenant_a, tenant_headers):
        response = client.post(
            '/api/cash/movements', json={'type': 'sale', 'amount': '10.00'}, headers=tenant_headers(tenant_a),
        )
        assert response.status_code == 409
        assert response.json['error'] == 'session_not_open'

    def test_close_requires_final_amount(self, client, db_session, tenant_a, tenant_headers):
        headers = tenant_headers(tenant_a)
        client.post('/api/cash/sessions/open', json={'initial_amount': '0'}, headers=headers)
        response = client.post('/api/cash/sessions/close', json={}, headers=headers)
        assert response.status_code == 400
        assert response.json['details']['missing'] == ['final_amount']

    def test_invalid_amount(self, client, db_session, tenant_a, tenant_headers):
        response = client.post(
            '/api/cash/sessions/open', json={'initial_amount': 'lots'}, headers=tenant_headers(tenant_a),
        )
        assert response.status_code == 400
        assert response.json['error'] == 'invalid_amount'

    def test_other_tenant_session_not_visible(self, client, db_session, tenant_a, tenant_b, tenant_headers):
        opened = client.post(
            '/api/cash/sessions/open', json={'initial_amount': '10.00'}, headers=tenant_headers(tenant_a),
        ).json['session']

        response = client.get(f"/api/cash/sessions/{opened['id']}", headers=tenant_headers(tenant_b))
        assert response.status_code == 409
        assert client.get('/api/cash/sessions/current', headers=tenant_headers(tenant_b)).json['session'] is None

    def test_movement_with_other_tenant_invoice(self, client, db_session, tenant_a, tenant_b, tenant_headers):
        foreign = client.post('/api/invoices', json=INVOICE_BODY, headers=tenant_headers(tenant_b)).json['invoice']
        headers = tenant_headers(tenant_a)
        client.post('/api/cash/sessions/open', json={'initial_amount': '10.00'}, headers=headers)

        response = client.post(
            '/api/cash/movements',
            json={'type': 'sale', 'amount': '108.90', 'invoice_id': foreign['id']},
            headers=headers,
        )

        assert response.status_code == 404
        assert response.json['error'] == 'not_found'
        current = client.get('/api/cash/sessions/current', headers=headers).json['session']
        assert current['expected_cash'] == '10.00'

    def test_expense_categories(self, client, db_session, tenant_a, tenant_headers):
        categories = client.get('/api/cash/expense-categories', headers=tenant_headers(tenant_a)).json['categories']
        assert categories[0]['id'] == 'general'


INVOICE_BODY = {
    'customer': {'name': 'Ana López', 'tax_id': '12345678Z'},
    'lines': [{'description': 'Corte y peinado', 'quantity': 2, 'unit_price': '50.00', 'discount_pct': 10}],
    'tax_rate_code': 'general',
}


class TestInvoiceRoutes:
    def _create(self, client, headers):
        response = client.post('/api/invoices', json=INVOICE_BODY, headers=headers)
        assert response.status_code == 201
        return response.json['invoice']

    def test_create_pay_and_read(self, client, db_session, tenant_a, tenant_headers):
        headers = tenant_headers(tenant_a)
        invoice = self._create(client, headers)

        assert invoice['number'].startswith('FAC-')
        assert invoice['totals'] == {
            'subtotal': '90.00',
            'discount_amount': '0.00',
            'taxable_base': '90.00',
            'tax_amount': '18.90',
            'total': '108.90',
        }
        assert invoice['created_by'] == 'recepcion'

        response = client.post(f"/api/invoices/{invoice['id']}/payments", json={'amount': '60.00'}, headers=headers)
        assert response.status_code == 201
        assert response.json['invoice']['payment_status'] == 'partial'

        response = client.post(
            f"/api/invoices/{invoice['id']}/payments", json={'amount': '48.90', 'method': 'card'}, headers=headers,
        )
        assert response.json['invoice']['payment_status'] == 'paid'
        assert response.json['invoice']['status'] == 'paid'

        payments = client.get(f"/api/invoices/{invoice['id']}/payments", headers=headers).json['payments']
        assert [p['amount'] for p in payments] == ['60.00', '48.90']

        listed = client.get('/api/invoices?status=paid', headers=headers).json['invoices']
        assert [i['id'] for i in listed] == [invoice['id']]

    def test_overpayment_body(self, client, db_session, tenant_a, tenant_headers):
        headers = tenant_headers(tenant_a)
        invoice = self._create(client, headers)

        response = client.post(f"/api/invoices/{invoice['id']}/payments", json={'amount': '200.00'}, headers=headers)

        assert response.status_code == 409
        assert response.json['error'] == 'over_payment'
        assert response.json['details']['excess'] == '91.10'
        fresh = client.get(f"/api/invoices/{invoice['id']}", headers=headers).json['invoice']
        assert fresh['amount_paid'] == '0.00'

    def test_void_then_pay(self, client, db_session, tenant_a, tenant_headers):
        headers = tenant_headers(tenant_a)
        invoice = self._create(client, headers)

        response = client.post(f"/api/invoices/{invoice['id']}/void", json={'reason': 'Duplicated'}, headers=headers)
        assert response.status_code == 200
        assert response.json['invoice']['status'] == 'void'

        response = client.post(f"/api/invoices/{invoice['id']}/void", json={'reason': 'Again'}, headers=headers)
        assert response.status_code == 409
        assert response.json['error'] == 'already_void'

        response = client.post(f"/api/invoices/{invoice['id']}/payments", json={'amount': '1.00'}, headers=headers)
        assert response.json['error'] == 'invoice_void'

    def test_cross_tenant_invoice_is_not_found(self, client, db_session, tenant_a, tenant_b, tenant_headers):
        invoice = self._create(client, tenant_headers(tenant_a))
        other = tenant_headers(tenant_b)

        assert client.get(f"/api/invoices/{invoice['id']}", headers=other).status_code == 404
        assert client.post(
            f"/api/invoices/{invoice['id']}/payments", json={'amount': '1.00'}, headers=other,
        ).status_code == 404
        assert client.get(f"/api/invoices/{invoice['id']}/export/json", headers=other).status_code == 404
        assert client.get('/api/invoices', headers=other).json['invoices'] == []

    def test_validation_errors(self, client, db_session, tenant_a, tenant_headers):
        headers = tenant_headers(tenant_a)
        response = client.post('/api/invoices', json={'customer': {'name': 'Ana'}}, headers=headers)
        assert response.status_code == 400
        assert response.json['details']['missing'] == ['lines']

        body = dict(INVOICE_BODY, discount_pct=75)
        response = client.post('/api/invoices', json=body, headers=headers)
        assert response.status_code == 400

    def test_corrective_and_from_sale(self, client, db_session, tenant_a, tenant_headers):
        headers = tenant_headers(tenant_a)
        invoice = self._create(client, headers)

        response = client.post(
            f"/api/invoices/{invoice['id']}/corrective", json={'reason': 'Wrong price'}, headers=headers,
        )
        assert response.status_code == 201
        assert response.json['invoice']['number'].startswith('REC-')

        response = client.post('/api/invoices/from-sale', json={
            'sale': {'id': 77, 'items': [{'name': 'Tinte', 'price': '45.00'}]},
            'customer': {'name': 'Bea'},
        }, headers=headers)
        assert response.status_code == 201
        assert response.json['invoice']['source_reference'] == 'sale:77'

    def test_export_download(self, client, db_session, tenant_a, tenant_headers):
        headers = tenant_headers(tenant_a)
        invoice = self._create(client, headers)

        response = client.get(f"/api/invoices/{invoice['id']}/export/facturae", headers=headers)
        assert response.status_code == 200
        assert response.content_type.startswith('application/xml')
        assert f"{invoice['number']}.xsig.xml" in response.headers['Content-Disposition']

        response = client.get(f"/api/invoices/{invoice['id']}/export/pdf", headers=headers)
        assert response.status_code == 400

    def test_corrective_type_rejected_on_plain_create(self, client, db_session, tenant_a, tenant_headers):
        headers = tenant_headers(tenant_a)
        response = client.post('/api/invoices', json=dict(INVOICE_BODY, type='corrective'), headers=headers)

        assert response.status_code == 400
        assert response.json['details']['field'] == 'type'
        assert client.get('/api/invoices', headers=headers).json['invoices'] == []

    def test_issuer_config(self, client, db_session, tenant_a, tenant_b, tenant_headers):
        headers = tenant_headers(tenant_a)

        config = client.get('/api/invoices/config/issuer', headers=headers).json
        assert config['issuer']['tax_id'] == 'B12345678'
        assert config['currency'] == 'EUR'
        assert 'facturae' in config['export_formats']

        response = client.put(
            '/api/invoices/config/issuer', json={'legal_name': 'Lola Estilistas SL', 'city': 'Toledo'}, headers=headers,
        )
        assert response.status_code == 200
        assert response.json['issuer']['name'] == 'Lola Estilistas SL'
        assert response.json['issuer']['city'] == 'Toledo'

        response = client.put('/api/invoices/config/issuer', json={'currency': 'USD'}, headers=headers)
        assert response.status_code == 400
        assert response.json['details']['unknown'] == ['currency']

        other = client.get('/api/invoices/config/issuer', headers=tenant_headers(tenant_b)).json
        assert other['issuer']['name'] == 'Salon B - Estética Bea'
        assert other['tax_id_valid'] is False

    def test_lookup_endpoints(self, client, db_session, tenant_a, tenant_headers):
        headers = tenant_headers(tenant_a)
        rates = client.get('/api/invoices/tax-rates', headers=headers).json['tax_rates']
        assert {'code': 'general', 'rate': '21'} in rates

        response = client.post('/api/invoices/validate-tax-id', json={'tax_id': 'X1234567L'}, headers=headers)
        assert response.json['valid'] is True

        assert client.get('/api/invoices/overdue', headers=headers).json['invoices'] == []


class TestStatisticsRoutes:
    def test_dashboard(self, client, db_session, tenant_a, tenant_headers):
        headers = tenant_headers(tenant_a)
        client.post('/api/invoices', json=INVOICE_BODY, headers=headers)

        report = client.get('/api/statistics?period=year', headers=headers).json
        assert report['invoices']['counts']['total'] == 1
        assert report['invoices']['total_invoiced'] == '108.90'

        aging = client.get('/api/statistics/overdue-aging?as_of=2099-01-01', headers=headers).json
        assert aging['total_count'] == 1

    @pytest.mark.parametrize('url', ['/api/statistics?period=decade', '/api/statistics/invoices?start=yesterday'])
    def test_bad_arguments(self, client, db_session, tenant_a, tenant_headers, url):
        assert client.get(url, headers=tenant_headers(tenant_a)).status_code == 400
