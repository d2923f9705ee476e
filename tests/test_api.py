from datetime import date, timedelta

import pytest
import requests

from studio import db
from studio.models.package import ClientPackage
from studio.services.email_service import EmailService

from conftest import PASSWORD, login, make_client, sell_package


def test_health(app):
    response = app.test_client().get('/health')

    assert response.status_code == 200
    assert response.get_json()['status'] == 'ok'


def test_unknown_route(app):
    response = app.test_client().get('/nowhere')

    assert response.status_code == 404
    assert response.get_json()['error'] == 'not_found'


def test_validation_errors_are_400(admin_http):
    response = admin_http.post('/clients', json={})

    assert response.status_code == 400
    body = response.get_json()
    assert body['error'] == 'validation_error'
    assert 'first_name' in body['messages']


# ----------------------------------------------------------------------
# Client portal
# ----------------------------------------------------------------------

@pytest.fixture
def portal_http(app, admin_http, seeded):
    client_id = seeded['own_client_id']
    admin_http.put(f'/clients/{client_id}/portal-permissions', json={
        'can_book_sessions': True,
        'can_cancel_sessions': True
    })
    created = admin_http.post(f'/clients/{client_id}/portal-account', json={'password': PASSWORD})
    assert created.status_code == 201
    return login(app, 'own@studio.test')


def sell_over_http(admin_http, client_id, sessions=10):
    package = admin_http.post('/packages', json={
        'name': f'{sessions} Pack', 'price': '500.00', 'sessions_included': sessions, 'duration_days': 60
    }).get_json()
    assigned = admin_http.post('/packages/assign', json={'client_id': client_id, 'package_id': package['id']})
    return assigned.get_json()['client_package']


def test_portal_booking_and_cancellation(admin_http, portal_http, seeded):
    client_package = sell_over_http(admin_http, seeded['own_client_id'])

    packages = portal_http.get('/portal/packages?usable=true').get_json()
    assert [p['id'] for p in packages] == [client_package['id']]

    session_date = date.today() + timedelta(days=5)
    booked = portal_http.post('/portal/sessions', json={
        'client_package_id': client_package['id'],
        'date': session_date.isoformat(),
        'start_time': '10:00'
    })
    assert booked.status_code == 201
    session = booked.get_json()['sessions'][0]
    assert session['trainer_id'] == seeded['trainer_id']
    assert session['end_time'] == '11:00'

    upcoming = portal_http.get('/portal/sessions/next').get_json()
    assert upcoming['id'] == session['id']

    eligibility = portal_http.get(f"/portal/sessions/{session['id']}/cancellation").get_json()
    assert eligibility['eligible'] is True
    assert eligibility['window_hours'] == 24

    cancelled = portal_http.post(f"/portal/sessions/{session['id']}/cancel", json={'reason': 'Work trip'})
    assert cancelled.status_code == 200
    assert cancelled.get_json()['session']['cancelled_by'] == 'client'
    assert portal_http.get('/portal/sessions/next').get_json() is None

    balance = portal_http.get('/portal/balance').get_json()
    assert balance['balance'] == '500.00'
    assert len(portal_http.get('/portal/payments').get_json()) == 1


def test_portal_profile_update(portal_http, seeded):
    response = portal_http.put('/portal/profile', json={'phone': '+971500000000'})

    assert response.status_code == 200
    assert response.get_json()['client']['phone'] == '+971500000000'
    assert portal_http.get('/portal/me').get_json()['phone'] == '+971500000000'


def test_portal_booking_needs_permission(app, admin_http, seeded):
    client_package = sell_over_http(admin_http, seeded['own_client_id'])
    admin_http.post(f"/clients/{seeded['own_client_id']}/portal-account", json={'password': PASSWORD})
    portal = login(app, 'own@studio.test')

    response = portal.post('/portal/sessions', json={
        'client_package_id': client_package['id'],
        'date': (date.today() + timedelta(days=3)).isoformat(),
        'start_time': '10:00'
    })

    assert response.status_code == 403


def test_portal_cannot_book_on_another_clients_package(admin_http, portal_http, seeded):
    foreign = sell_over_http(admin_http, seeded['other_client_id'])

    response = portal_http.post('/portal/sessions', json={
        'client_package_id': foreign['id'],
        'date': (date.today() + timedelta(days=3)).isoformat(),
        'start_time': '10:00'
    })

    assert response.status_code == 404


def test_portal_cannot_book_in_the_past(admin_http, portal_http, seeded):
    client_package = sell_over_http(admin_http, seeded['own_client_id'])

    response = portal_http.post('/portal/sessions', json={
        'client_package_id': client_package['id'],
        'date': (date.today() - timedelta(days=1)).isoformat(),
        'start_time': '10:00'
    })

    assert response.status_code == 400
    assert 'date' in response.get_json()['messages']
    assert portal_http.get('/portal/sessions/next').get_json() is None


# ----------------------------------------------------------------------
# Invoices, expenses, reports, dashboard
# ----------------------------------------------------------------------

def test_invoice_lifecycle_over_http(admin_http, seeded):
    created = admin_http.post('/invoices', json={
        'client_id': seeded['other_client_id'],
        'line_items': [{'description': '10 Session Pack', 'quantity': 1, 'unit_price': '1000.00'}],
        'tax_amount': '50.00',
        'payment_terms': 14
    })
    assert created.status_code == 201
    invoice = created.get_json()['invoice']
    assert invoice['invoice_number'] == 'INV-0001'
    assert invoice['total_amount'] == '1050.00'

    pdf = admin_http.get(f"/invoices/{invoice['id']}/pdf")
    assert pdf.status_code == 200
    assert pdf.mimetype == 'application/pdf'
    assert pdf.data.startswith(b'%PDF')

    assert admin_http.patch(f"/invoices/{invoice['id']}/status", json={'status': 'paid'}).status_code == 409
    assert admin_http.patch(f"/invoices/{invoice['id']}/status", json={'status': 'sent'}).status_code == 200
    paid = admin_http.patch(f"/invoices/{invoice['id']}/status", json={'status': 'paid'})
    assert paid.get_json()['status'] == 'paid'

    assert admin_http.delete(f"/invoices/{invoice['id']}").status_code == 409


def test_expenses_over_http(admin_http):
    rent = admin_http.post('/expenses', json={
        'category': 'rent', 'amount': '8000.00', 'description': 'March rent',
        'is_recurring': True, 'recurring_frequency': 'monthly'
    })
    assert rent.status_code == 201
    admin_http.post('/expenses', json={'category': 'equipment', 'amount': '450.50', 'description': 'Kettlebells'})

    missing_frequency = admin_http.post('/expenses', json={
        'category': 'rent', 'amount': '1.00', 'description': 'x', 'is_recurring': True
    })
    assert missing_frequency.status_code == 400

    expense_id = rent.get_json()['id']
    updated = admin_http.put(f'/expenses/{expense_id}', json={'amount': '8200.00'})
    assert updated.get_json()['amount'] == '8200.00'

    assert admin_http.get('/expenses/summary').get_json() == {'equipment': '450.50', 'rent': '8200.00'}
    assert admin_http.delete(f'/expenses/{expense_id}').status_code == 200
    assert len(admin_http.get('/expenses').get_json()) == 1


@pytest.fixture
def ledger_activity(admin_http, seeded):
    sell_over_http(admin_http, seeded['other_client_id'])
    admin_http.post('/payments', json={
        'client_id': seeded['other_client_id'], 'amount': '200.00', 'payment_method': 'card'
    })


def test_ledger_report_display(admin_http, ledger_activity):
    response = admin_http.get('/reports?report_type=LEDGER')

    assert response.status_code == 200
    body = response.get_json()
    assert body['metadata']['report_type'] == 'LEDGER'
    assert body['metadata']['total_items'] == 2
    assert body['summary']['total_charges'] == '500.00'
    assert body['summary']['total_payments'] == '200.00'


@pytest.mark.parametrize('view_type, mimetype, magic', [
    ('CSV', 'text/csv', b'date,client'),
    ('EXCEL', 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet', b'PK'),
    ('PDF', 'application/pdf', b'%PDF'),
])
def test_report_downloads(admin_http, ledger_activity, view_type, mimetype, magic):
    response = admin_http.get(f'/reports?report_type=LEDGER&view_type={view_type}')

    assert response.status_code == 200
    assert response.mimetype == mimetype
    assert response.data.startswith(magic)
    assert 'attachment' in response.headers['Content-Disposition']


def test_profit_and_loss(admin_http, ledger_activity):
    admin_http.post('/expenses', json={'category': 'rent', 'amount': '50.00', 'description': 'Storage'})

    summary = admin_http.get('/reports?report_type=PROFIT_AND_LOSS').get_json()['summary']

    assert summary['total_revenue'] == '200.00'
    assert summary['total_expenses'] == '50.00'
    assert summary['net_profit'] == '150.00'


def test_unknown_report_type(admin_http):
    response = admin_http.get('/reports?report_type=INVENTORY')

    assert response.status_code == 400
    assert 'report_type' in response.get_json()['messages']


def test_dashboard_hides_money_from_trainers(admin_http, trainer_http):
    admin_stats = admin_http.get('/dashboard/stats').get_json()
    trainer_stats = trainer_http.get('/dashboard/stats').get_json()

    assert 'financial' in admin_stats
    assert 'financial' not in trainer_stats
    assert 'sessions' in trainer_stats


def test_delete_completed_session_over_http(admin_http, seeded):
    client_package = sell_over_http(admin_http, seeded['other_client_id'])
    booked = admin_http.post('/sessions', json={
        'client_id': seeded['other_client_id'],
        'date': (date.today() + timedelta(days=2)).isoformat(),
        'start_time': '07:30',
        'duration': 45,
        'client_package_id': client_package['id']
    })
    session_id = booked.get_json()['sessions'][0]['id']
    admin_http.patch(f'/sessions/{session_id}/status', json={'status': 'completed'})

    assert admin_http.delete(f'/sessions/{session_id}').status_code == 409
    assert admin_http.delete(f'/sessions/{session_id}?reverse_consumption=true').status_code == 200

    remaining = admin_http.get(f"/packages/client-packages/{client_package['id']}").get_json()
    assert remaining['sessions_remaining'] == 10


def test_consume_on_empty_package_reports_warning(admin_http, seeded):
    client_package = sell_over_http(admin_http, seeded['other_client_id'], sessions=2)
    booked = admin_http.post('/sessions', json={
        'client_id': seeded['other_client_id'],
        'date': (date.today() + timedelta(days=2)).isoformat(),
        'start_time': '07:30',
        'client_package_id': client_package['id'],
        'recurring_weeks': 2
    })
    assert booked.status_code == 201
    assert booked.get_json()['warnings'] == []
    first, second = [s['id'] for s in booked.get_json()['sessions']]

    adjusted = admin_http.post(f"/packages/client-packages/{client_package['id']}/adjust", json={
        'delta': -1, 'notes': 'Session used on the paper card'
    })
    assert adjusted.status_code == 200

    normal = admin_http.patch(f'/sessions/{first}/status', json={'status': 'completed'})
    assert normal.status_code == 200
    assert normal.get_json()['package_warning'] is None
    assert normal.get_json()['package_session_consumed'] is True

    empty = admin_http.patch(f'/sessions/{second}/status', json={'status': 'completed'})
    assert empty.status_code == 200
    body = empty.get_json()
    assert body['status'] == 'completed'
    assert body['package_session_consumed'] is False
    assert body['package_warning']


def test_overbooking_a_package_is_409(admin_http, seeded):
    client_package = sell_over_http(admin_http, seeded['other_client_id'], sessions=1)
    slot = {
        'client_id': seeded['other_client_id'],
        'start_time': '07:30',
        'client_package_id': client_package['id']
    }

    first = admin_http.post('/sessions', json={**slot, 'date': (date.today() + timedelta(days=2)).isoformat()})
    second = admin_http.post('/sessions', json={**slot, 'date': (date.today() + timedelta(days=3)).isoformat()})

    assert first.status_code == 201
    assert second.status_code == 409
    assert second.get_json()['error'] == 'insufficient_sessions'


def test_settled_payment_cannot_be_reopened_over_http(admin_http, seeded):
    paid = admin_http.post('/payments', json={
        'client_id': seeded['other_client_id'], 'amount': '200.00', 'payment_method': 'card'
    }).get_json()['payment']

    response = admin_http.patch(f"/payments/{paid['id']}/status", json={'status': 'pending'})

    assert response.status_code == 409
    assert response.get_json()['error'] == 'invalid_status_transition'


# ----------------------------------------------------------------------
# CLI and email
# ----------------------------------------------------------------------

def test_expire_packages_command(app):
    with app.app_context():
        client_package = sell_package(make_client())
        client_package.expiry_date = date.today() - timedelta(days=1)
        db.session.commit()
        client_package_id = client_package.id

    result = app.test_cli_runner().invoke(args=['studio', 'expire-packages'])

    assert result.exit_code == 0
    assert '1 package(s) expired' in result.output
    with app.app_context():
        assert db.session.get(ClientPackage, client_package_id).status == 'expired'


def test_send_reminders_command(app):
    with app.app_context():
        client_package = sell_package(make_client())
        client_package.expiry_date = date.today() + timedelta(days=3)
        db.session.commit()

    result = app.test_cli_runner().invoke(args=['studio', 'send-reminders', '--days', '7'])

    assert result.exit_code == 0
    assert '1 expiry reminder(s), 0 low-session reminder(s)' in result.output


class FakeResponse:
    def raise_for_status(self):
        return None


@pytest.fixture
def email_configured(ctx):
    ctx.config['EMAIL_API_URL'] = 'https://mail.example.com/send'
    ctx.config['EMAIL_API_KEY'] = 'test-key'
    return ctx


def test_email_is_skipped_when_not_configured(ctx, monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError('no request expected')

    monkeypatch.setattr(requests, 'post', fail)

    assert EmailService.send('a@example.com', 'Hi', '<p>Hi</p>') is False


def test_email_delivery(email_configured, monkeypatch):
    sent = []

    def fake_post(url, json=None, headers=None, timeout=None):
        sent.append((url, json, headers))
        return FakeResponse()

    monkeypatch.setattr(requests, 'post', fake_post)

    assert EmailService.send_welcome_email('new@example.com', 'Nour') is True
    url, payload, headers = sent[0]
    assert url == 'https://mail.example.com/send'
    assert payload['to'] == ['new@example.com']
    assert 'Nour' in payload['html']
    assert headers['Authorization'] == 'Bearer test-key'


def test_email_failure_is_reported_not_raised(email_configured, monkeypatch):
    def unreachable(*args, **kwargs):
        raise requests.exceptions.ConnectionError('down')

    monkeypatch.setattr(requests, 'post', unreachable)

    assert EmailService.send('a@example.com', 'Hi', '<p>Hi</p>') is False
