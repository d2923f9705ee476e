"""Full studio flow over HTTP: sell a package, take payment, run sessions."""
from datetime import date, timedelta


def test_package_sale_payment_and_sessions(admin_http):
    package = admin_http.post('/packages', json={
        'name': '10 Session Pack',
        'price': '1000.00',
        'sessions_included': 10,
        'duration_days': 90
    })
    assert package.status_code == 201
    package_id = package.get_json()['id']

    created = admin_http.post('/clients', json={
        'first_name': 'Maya',
        'last_name': 'Haddad',
        'email': 'maya@example.com',
        'status': 'active'
    })
    assert created.status_code == 201
    client_id = created.get_json()['client']['id']

    assigned = admin_http.post('/packages/assign', json={'client_id': client_id, 'package_id': package_id})
    assert assigned.status_code == 201
    client_package = assigned.get_json()['client_package']
    assert client_package['sessions_remaining'] == 10

    balance = admin_http.get(f'/clients/{client_id}/balance').get_json()
    assert balance['balance'] == '1000.00'

    paid = admin_http.post('/payments', json={
        'client_id': client_id,
        'amount': '1000.00',
        'payment_method': 'cash'
    })
    assert paid.status_code == 201
    assert paid.get_json()['balance']['balance'] == '0.00'

    booked = admin_http.post('/sessions', json={
        'client_id': client_id,
        'date': (date.today() + timedelta(days=7)).isoformat(),
        'start_time': '09:00',
        'duration': 60,
        'client_package_id': client_package['id'],
        'recurring_weeks': 3
    })
    assert booked.status_code == 201
    sessions = booked.get_json()['sessions']
    assert len(sessions) == 3

    for session in sessions:
        response = admin_http.patch(f"/sessions/{session['id']}/status", json={'status': 'completed'})
        assert response.status_code == 200
        assert response.get_json()['status'] == 'completed'

    # Completing again must not deduct a second time
    repeat = admin_http.patch(f"/sessions/{sessions[0]['id']}/status", json={'status': 'completed'})
    assert repeat.status_code == 200

    remaining = admin_http.get(f"/packages/client-packages/{client_package['id']}").get_json()
    assert remaining['sessions_remaining'] == 7

    balance = admin_http.get(f'/clients/{client_id}/balance').get_json()
    assert balance == {
        'client_id': client_id,
        'total_charges': '1000.00',
        'total_payments': '1000.00',
        'balance': '0.00',
        'outstanding': '0.00'
    }

    usage = admin_http.get(f"/packages/client-packages/{client_package['id']}/usage").get_json()
    assert [u['usage_type'] for u in usage] == ['consume'] * 3

    detail = admin_http.get(f'/clients/{client_id}').get_json()
    assert len(detail['packages']) == 1
    assert len(detail['sessions']) == 3
    assert len(detail['payments']) == 2
