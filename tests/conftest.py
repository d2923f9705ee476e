"""
Pytest configuration and fixtures.

Every test gets a fresh application on an in-memory SQLite database.
Service-level tests use the ``ctx`` fixture (an app context that stays
pushed for the whole test). HTTP tests use the per-role test clients,
which must not share a pushed app context: Flask-Login caches the
current user on ``g``.
"""
from datetime import date, time, timedelta

import pytest

from studio import create_app, db
from studio.services.auth_service import StaffService, AuthService
from studio.services.client_service import ClientService
from studio.services.package_service import PackageService
from studio.services.session_service import SessionService

PASSWORD = "Gr8!Coach#Studio"


@pytest.fixture
def app():
    app = create_app('testing')
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield app
        db.session.remove()


@pytest.fixture
def on_booking(app):
    app.config['PACKAGE_DEDUCTION_POLICY'] = 'on_booking'
    return app


# ----------------------------------------------------------------------
# Factories (call inside an app context)
# ----------------------------------------------------------------------

def make_staff(email='admin@studio.test', role='admin', permissions=None, first_name='Ada', last_name='Admin'):
    return StaffService.create_staff({
        'email': email,
        'password': PASSWORD,
        'first_name': first_name,
        'last_name': last_name,
        'role': role,
        'permissions': permissions
    })


def make_client(email='client@studio.test', actor=None, **extra):
    data = {'first_name': 'Sara', 'last_name': 'Ali', 'email': email, 'status': 'active'}
    data.update(extra)
    return ClientService.create_client(data, actor=actor)


def make_package(name='10 Session Pack', price='1000.00', sessions=10, days=90):
    return PackageService.create_package({
        'name': name,
        'price': price,
        'sessions_included': sessions,
        'duration_days': days
    })


def sell_package(client, package=None, **kwargs):
    package = package or make_package()
    return PackageService.assign_package(client.id, package.id, **kwargs)


def book(client, client_package=None, days_ahead=7, at=time(9, 0), actor=None, **extra):
    data = {
        'client_id': client.id,
        'date': date.today() + timedelta(days=days_ahead),
        'start_time': at,
        'duration': 60,
        'client_package_id': client_package.id if client_package is not None else None,
    }
    data.update(extra)
    return SessionService.book_session(data, actor=actor).sessions


def make_portal_user(client, password=PASSWORD):
    return AuthService.create_portal_account(client.id, password)


# ----------------------------------------------------------------------
# HTTP clients
# ----------------------------------------------------------------------

def login(app, email, password=PASSWORD):
    http = app.test_client()
    response = http.post('/auth/login', json={'email': email, 'password': password})
    assert response.status_code == 200, response.get_json()
    return http


@pytest.fixture
def seeded(app):
    """An admin, a trainer with one client, and a second unassigned client."""
    with app.app_context():
        admin = make_staff()
        trainer = make_staff('coach@studio.test', role='trainer', first_name='Omar', last_name='Coach')
        own = make_client('own@studio.test', actor=trainer)
        other = make_client('other@studio.test', actor=admin, first_name='Lina')
        ids = {
            'admin_id': admin.id,
            'trainer_id': trainer.id,
            'own_client_id': own.id,
            'other_client_id': other.id,
        }
    return ids


@pytest.fixture
def admin_http(app, seeded):
    return login(app, 'admin@studio.test')


@pytest.fixture
def trainer_http(app, seeded):
    return login(app, 'coach@studio.test')
