from datetime import date, timedelta
from decimal import Decimal

import pytest
from marshmallow import ValidationError

from studio.errors import InsufficientSessions, PackageInUse
from studio.models.package import PackageUsage
from studio.models.payment import Payment
from studio.services.ledger_service import LedgerService
from studio.services.package_service import PackageService
from studio.services.session_service import SessionService

from conftest import make_client, make_package, sell_package, book


def test_assign_unpaid_package_creates_pending_charge(ctx):
    client = make_client()
    package = make_package()

    client_package = PackageService.assign_package(client.id, package.id)

    assert client_package.sessions_remaining == 10
    assert client_package.status == 'active'
    assert client_package.expiry_date == date.today() + timedelta(days=90)
    entries = Payment.query.filter_by(client_package_id=client_package.id).all()
    assert [(e.amount, e.status) for e in entries] == [(Decimal('-1000.00'), 'pending')]
    assert LedgerService.get_client_balance(client.id).balance == Decimal('1000.00')


def test_assign_paid_package_settles_balance(ctx):
    client = make_client()

    client_package = sell_package(client, payment_status='paid', payment_method='card')

    entries = Payment.query.filter_by(client_package_id=client_package.id).order_by(Payment.id).all()
    assert [(e.amount, e.status) for e in entries] == [
        (Decimal('-1000.00'), 'completed'),
        (Decimal('1000.00'), 'completed'),
    ]
    assert LedgerService.get_client_balance(client.id).balance == Decimal('0.00')


def test_custom_price_overrides_catalog_price(ctx):
    client = make_client()

    sell_package(client, price=Decimal('850.00'))

    assert LedgerService.get_client_balance(client.id).total_charges == Decimal('850.00')


def test_free_package_writes_no_ledger_rows(ctx):
    client = make_client()

    sell_package(client, price=Decimal('0'))

    assert Payment.query.count() == 0


def test_paid_package_requires_a_method(ctx):
    client = make_client()
    package = make_package()

    with pytest.raises(ValidationError):
        PackageService.assign_package(client.id, package.id, payment_status='paid')

    assert client.client_packages.count() == 0
    assert Payment.query.count() == 0


def test_consume_stops_at_zero(ctx):
    client = make_client()
    client_package = sell_package(client, make_package('Duo', '200.00', sessions=2))
    first, second = book(client, client_package, recurring_weeks=2)
    PackageService.adjust_sessions(client_package.id, -1, notes='Used before the move to the new system')

    SessionService.update_status(first.id, 'completed')
    change = SessionService.update_status(second.id, 'completed')

    assert client_package.sessions_remaining == 0
    assert first.package_session_consumed
    assert not second.package_session_consumed
    assert change.session.status == 'completed'
    assert change.warning
    assert PackageUsage.query.filter_by(usage_type='consume').count() == 1


def test_consume_session_on_empty_package_is_not_applied(ctx):
    client = make_client()
    client_package = sell_package(client, make_package('Single', '100.00', sessions=1))
    session = book(client, client_package)[0]
    PackageService.adjust_sessions(client_package.id, -1, notes='Comped elsewhere')

    change = PackageService.consume_session(session)

    assert not change.applied
    assert change.new_remaining == 0
    assert change.warning
    assert not session.package_session_consumed


def test_refund_never_exceeds_sessions_included(ctx):
    client = make_client()
    client_package = sell_package(client, make_package('Duo', '200.00', sessions=2))
    session = book(client, client_package)[0]
    SessionService.update_status(session.id, 'completed')
    PackageService.adjust_sessions(client_package.id, 1, notes='Goodwill')
    assert client_package.sessions_remaining == 2

    change = PackageService.refund_session(session)

    assert not change.applied
    assert change.warning
    assert client_package.sessions_remaining == 2
    assert not session.package_session_consumed


def test_refund_without_consumption_is_a_no_op(ctx):
    client = make_client()
    client_package = sell_package(client)
    session = book(client, client_package)[0]

    change = PackageService.refund_session(session)

    assert not change.applied
    assert change.new_remaining == 10
    assert PackageUsage.query.count() == 0


def test_adjust_sessions_bounds(ctx):
    client = make_client()
    client_package = sell_package(client, make_package('Trio', '300.00', sessions=3))

    change = PackageService.adjust_sessions(client_package.id, -2, notes='Migrated usage')
    assert (change.previous_remaining, change.new_remaining) == (3, 1)

    with pytest.raises(InsufficientSessions):
        PackageService.adjust_sessions(client_package.id, -2)
    with pytest.raises(ValidationError):
        PackageService.adjust_sessions(client_package.id, 5)
    with pytest.raises(ValidationError):
        PackageService.adjust_sessions(client_package.id, 0)

    assert client_package.sessions_remaining == 1
    usages = PackageService.get_usage_history(client_package.id)
    assert [(u.usage_type, u.quantity, u.previous_remaining, u.new_remaining) for u in usages] == [
        ('adjustment', -2, 3, 1)
    ]


def test_package_in_use_cannot_be_deleted(ctx):
    client = make_client()
    package = make_package()
    sell_package(client, package)

    with pytest.raises(PackageInUse):
        PackageService.delete_package(package.id)

    unused = make_package('Unused', '10.00', sessions=1)
    PackageService.delete_package(unused.id)
    assert [p.name for p in PackageService.list_packages()] == [package.name]


def test_expire_packages(ctx):
    client = make_client()
    today = date.today()
    lapsed = sell_package(client, purchase_date=today - timedelta(days=40), expiry_date=today - timedelta(days=1))
    current = sell_package(client)

    assert PackageService.expire_packages(today) == 1

    assert lapsed.status == 'expired'
    assert current.status == 'active'
    assert PackageService.get_client_packages(client.id, usable_only=True) == [current]


def test_expiring_and_low_session_lookups(ctx):
    client = make_client()
    today = date.today()
    soon = sell_package(client, expiry_date=today + timedelta(days=5))
    later = sell_package(client, make_package('Long', '2000.00', sessions=20, days=365))
    PackageService.adjust_sessions(later.id, -18)

    assert PackageService.find_expiring_packages(today, within_days=14) == [soon]
    assert PackageService.find_low_session_packages(threshold=3) == [later]


def test_cancelled_package_cannot_be_booked(ctx):
    from studio.errors import PackageInactive

    client = make_client()
    client_package = sell_package(client)
    PackageService.cancel_client_package(client_package.id, notes='Refunded')

    with pytest.raises(PackageInactive):
        book(client, client_package)
