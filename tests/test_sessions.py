import threading
from datetime import date, time, timedelta
from decimal import Decimal

import pytest
from marshmallow import ValidationError

from studio import create_app, db
from studio.errors import (
    InsufficientSessions,
    InvalidStatusTransition,
    PackageExpired,
    SessionConsumed,
    Unauthorized,
    BusinessRuleViolation,
    ConcurrentModification
)
from studio.models.package import ClientPackage, PackageUsage
from studio.models.payment import Payment
from studio.models.training_session import TrainingSession
from studio.services.ledger_service import LedgerService
from studio.services.session_service import SessionService

from conftest import make_client, make_package, make_staff, sell_package, book


def test_booking_does_not_deduct_under_completion_policy(ctx):
    client = make_client()
    client_package = sell_package(client)

    session = book(client, client_package)[0]

    assert session.status == 'scheduled'
    assert session.end_time == time(10, 0)
    assert client_package.sessions_remaining == 10


def test_completing_deducts_exactly_once(ctx):
    client = make_client()
    client_package = sell_package(client)
    session = book(client, client_package)[0]

    SessionService.update_status(session.id, 'completed')
    SessionService.update_status(session.id, 'completed')

    assert client_package.sessions_remaining == 9
    assert session.completed_at is not None
    assert PackageUsage.query.filter_by(session_id=session.id, usage_type='consume').count() == 1


def test_terminal_status_cannot_change(ctx):
    client = make_client()
    session = book(client, sell_package(client))[0]
    SessionService.update_status(session.id, 'no_show')

    with pytest.raises(InvalidStatusTransition):
        SessionService.update_status(session.id, 'completed')
    with pytest.raises(InvalidStatusTransition):
        SessionService.update_status(session.id, 'scheduled')

    assert session.status == 'no_show'


def test_no_show_deducts_nothing_under_completion_policy(ctx):
    client = make_client()
    client_package = sell_package(client)
    session = book(client, client_package)[0]

    SessionService.update_status(session.id, 'no_show')

    assert client_package.sessions_remaining == 10


def test_booking_deducts_under_booking_policy(ctx, on_booking):
    client = make_client()
    client_package = sell_package(client)

    sessions = book(client, client_package, recurring_weeks=3)

    assert [s.date for s in sessions] == [
        date.today() + timedelta(days=7 + 7 * i) for i in range(3)
    ]
    assert all(s.package_session_consumed for s in sessions)
    assert client_package.sessions_remaining == 7

    SessionService.update_status(sessions[0].id, 'completed')
    assert client_package.sessions_remaining == 7


def test_staff_cancellation_refunds_under_booking_policy(ctx, on_booking):
    client = make_client()
    client_package = sell_package(client)
    refunded, kept = book(client, client_package, recurring_weeks=2)

    SessionService.update_status(refunded.id, 'cancelled', reason='Trainer ill')
    SessionService.update_status(kept.id, 'cancelled', reason='Late cancel', refund=False)

    assert client_package.sessions_remaining == 9
    assert refunded.cancelled_by == 'staff'
    assert not refunded.package_session_consumed
    assert kept.package_session_consumed


def test_no_show_keeps_booking_deduction(ctx, on_booking):
    client = make_client()
    client_package = sell_package(client)
    session = book(client, client_package)[0]

    SessionService.update_status(session.id, 'no_show')

    assert client_package.sessions_remaining == 9


def test_recurring_booking_needs_enough_sessions(ctx):
    client = make_client()
    client_package = sell_package(client, make_package('Duo', '200.00', sessions=2))

    with pytest.raises(InsufficientSessions):
        book(client, client_package, recurring_weeks=3)

    assert TrainingSession.query.count() == 0


def test_scheduled_sessions_hold_package_capacity(ctx):
    client = make_client()
    client_package = sell_package(client, make_package('Single', '100.00', sessions=1))
    first = book(client, client_package)[0]

    with pytest.raises(InsufficientSessions) as exc_info:
        book(client, client_package, days_ahead=8)
    assert exc_info.value.details['already_booked'] == 1

    SessionService.update_status(first.id, 'cancelled', reason='Moved')
    book(client, client_package, days_ahead=9)

    assert client_package.sessions_remaining == 1
    assert TrainingSession.query.filter_by(status='scheduled').count() == 1


def test_recurring_booking_counts_existing_bookings(ctx):
    client = make_client()
    client_package = sell_package(client, make_package('Trio', '300.00', sessions=3))
    book(client, client_package, recurring_weeks=2)

    with pytest.raises(InsufficientSessions):
        book(client, client_package, days_ahead=8, recurring_weeks=2)
    book(client, client_package, days_ahead=8)

    assert TrainingSession.query.count() == 3


def test_capacity_under_booking_policy(ctx, on_booking):
    client = make_client()
    client_package = sell_package(client, make_package('Duo', '200.00', sessions=2))
    book(client, client_package)

    book(client, client_package, days_ahead=8)
    with pytest.raises(InsufficientSessions):
        book(client, client_package, days_ahead=9)

    assert client_package.sessions_remaining == 0


def test_concurrent_completions_deduct_once(tmp_path):
    database = tmp_path / 'sessions.db'
    app = create_app('testing', {'SQLALCHEMY_DATABASE_URI': f'sqlite:///{database}'})
    with app.app_context():
        client = make_client()
        client_package = sell_package(client)
        session_id = book(client, client_package)[0].id
        client_package_id = client_package.id

    workers = 4
    barrier = threading.Barrier(workers)
    completed, errors = [], []

    def complete():
        with app.app_context():
            try:
                barrier.wait()
                change = SessionService.update_status(session_id, 'completed')
                completed.append(change.session.status)
            except Exception as e:  # collected and asserted below
                errors.append(e)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=complete) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert all(isinstance(e, ConcurrentModification) for e in errors), errors
    assert completed and all(status == 'completed' for status in completed)
    assert len(completed) + len(errors) == workers

    with app.app_context():
        assert db.session.get(ClientPackage, client_package_id).sessions_remaining == 9
        assert PackageUsage.query.filter_by(session_id=session_id, usage_type='consume').count() == 1
        assert db.session.get(TrainingSession, session_id).package_session_consumed
        db.drop_all()
        db.engine.dispose()


def test_booking_after_expiry_is_rejected(ctx):
    client = make_client()
    client_package = sell_package(client, expiry_date=date.today() + timedelta(days=10))

    book(client, client_package, days_ahead=10)
    with pytest.raises(PackageExpired):
        book(client, client_package, days_ahead=11)


def test_direct_price_booking_charges_each_session(ctx):
    client = make_client()

    sessions = book(client, price=Decimal('150.00'), recurring_weeks=2)

    charges = Payment.query.filter(Payment.client_id == client.id).order_by(Payment.id).all()
    assert [c.session_id for c in charges] == [s.id for s in sessions]
    assert all(c.amount == Decimal('-150.00') for c in charges)
    assert LedgerService.get_client_balance(client.id).balance == Decimal('300.00')


def test_inactive_client_cannot_be_booked(ctx):
    client = make_client(status='inactive')

    with pytest.raises(BusinessRuleViolation):
        book(client, price=Decimal('100.00'))


def test_status_cannot_be_changed_through_update(ctx):
    client = make_client()
    session = book(client, sell_package(client))[0]

    with pytest.raises(ValidationError):
        SessionService.update_session(session.id, {'status': 'completed'})

    assert session.status == 'scheduled'


def test_reschedule_only_while_scheduled(ctx):
    client = make_client()
    session = book(client, sell_package(client))[0]
    new_date = session.date + timedelta(days=1)

    SessionService.update_session(session.id, {'date': new_date, 'notes': 'Moved'})
    assert session.date == new_date

    SessionService.update_status(session.id, 'completed')
    with pytest.raises(BusinessRuleViolation):
        SessionService.update_session(session.id, {'date': new_date + timedelta(days=1)})
    SessionService.update_session(session.id, {'notes': 'Great session'})
    assert session.notes == 'Great session'


def test_delete_consumed_session_requires_reversal(ctx):
    client = make_client()
    client_package = sell_package(client)
    session = book(client, client_package)[0]
    session_id = session.id
    SessionService.update_status(session_id, 'completed')

    with pytest.raises(SessionConsumed):
        SessionService.delete_session(session_id)

    SessionService.delete_session(session_id, reverse_consumption=True)

    assert db.session.get(TrainingSession, session_id) is None
    assert client_package.sessions_remaining == 10
    assert PackageUsage.query.filter(PackageUsage.session_id.isnot(None)).count() == 0
    assert {u.usage_type for u in PackageUsage.query.all()} == {'consume', 'refund'}


def test_delete_unconsumed_session(ctx):
    client = make_client()
    session = book(client, price=Decimal('90.00'))[0]
    session_id = session.id

    SessionService.delete_session(session_id)

    assert TrainingSession.query.count() == 0
    charge = Payment.query.one()
    assert charge.session_id is None
    assert charge.amount == Decimal('-90.00')


def test_trainer_books_only_own_sessions(ctx):
    trainer = make_staff('coach@studio.test', role='trainer')
    colleague = make_staff('colleague@studio.test', role='trainer')
    client = make_client(actor=trainer)
    client_package = sell_package(client)

    session = book(client, client_package, actor=trainer)[0]
    assert session.trainer_id == trainer.id

    with pytest.raises(Unauthorized):
        book(client, client_package, actor=trainer, trainer_id=colleague.id)
    with pytest.raises(Unauthorized):
        SessionService.update_status(session.id, 'completed', actor=colleague)


def test_trainer_sees_only_own_sessions(ctx):
    trainer = make_staff('coach@studio.test', role='trainer')
    admin = make_staff()
    client = make_client()
    client_package = sell_package(client)
    mine = book(client, client_package, actor=trainer)[0]
    book(client, client_package, actor=admin, days_ahead=8)

    assert SessionService.list_sessions(actor=trainer) == [mine]
    assert len(SessionService.list_sessions(actor=admin)) == 2
    assert SessionService.get_session_stats(actor=trainer)['upcoming'] == 1


def test_upcoming_sessions_window(ctx):
    client = make_client()
    client_package = sell_package(client)
    near = book(client, client_package, days_ahead=2)[0]
    book(client, client_package, days_ahead=30)

    assert SessionService.get_upcoming_sessions(days=7) == [near]
    assert len(SessionService.get_upcoming_sessions(days=None, limit=None)) == 2
