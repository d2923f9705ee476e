from datetime import date, datetime, time, timedelta

import pytest

from studio.errors import CancellationWindowClosed, NotFound, Unauthorized, InvalidStatusTransition
from studio.models.training_session import TrainingSession
from studio.services.session_service import SessionService, cancellation_eligibility

from conftest import make_client, sell_package, book

START = datetime(2030, 6, 1, 9, 0)


def scheduled_at(starts_at):
    return TrainingSession(date=starts_at.date(), start_time=starts_at.time(), status='scheduled')


@pytest.mark.parametrize('lead_time, eligible', [
    (timedelta(hours=24, minutes=1), True),
    (timedelta(hours=48), True),
    (timedelta(hours=24), False),
    (timedelta(hours=23, minutes=59), False),
    (timedelta(minutes=-30), False),
])
def test_eligibility_boundary(ctx, lead_time, eligible):
    result = cancellation_eligibility(scheduled_at(START), now=START - lead_time)

    assert result.eligible is eligible
    assert result.window_hours == 24


def test_eligibility_reports_hours_until_start(ctx):
    result = cancellation_eligibility(scheduled_at(START), now=START - timedelta(hours=30))

    assert result.hours_until_start == 30.0


def test_window_is_configurable(ctx):
    ctx.config['CANCELLATION_WINDOW_HOURS'] = 12
    session = scheduled_at(START)

    assert cancellation_eligibility(session, now=START - timedelta(hours=13)).eligible
    assert not cancellation_eligibility(session, now=START - timedelta(hours=11)).eligible


def test_finished_sessions_are_never_eligible(ctx):
    session = scheduled_at(START)
    session.status = 'completed'

    assert not cancellation_eligibility(session, now=START - timedelta(days=3)).eligible


def portal_client(**extra):
    return make_client(can_cancel_sessions=True, can_book_sessions=True, **extra)


def test_client_cancels_in_time_and_gets_unit_back(ctx, on_booking):
    client = portal_client()
    client_package = sell_package(client)
    session = book(client, client_package, days_ahead=3, at=time(10, 0))[0]
    assert client_package.sessions_remaining == 9

    now = session.starts_at - timedelta(hours=24, minutes=1)
    SessionService.cancel_by_client(session.id, client, now=now, reason='Travelling')

    assert session.status == 'cancelled'
    assert session.cancelled_by == 'client'
    assert session.cancellation_reason == 'Travelling'
    assert client_package.sessions_remaining == 10


def test_client_cancellation_inside_window_is_refused(ctx, on_booking):
    client = portal_client()
    client_package = sell_package(client)
    session = book(client, client_package, days_ahead=3, at=time(10, 0))[0]

    with pytest.raises(CancellationWindowClosed):
        SessionService.cancel_by_client(session.id, client, now=session.starts_at - timedelta(hours=23, minutes=59))

    assert session.status == 'scheduled'
    assert client_package.sessions_remaining == 9


def test_client_cancellation_without_consumption(ctx):
    client = portal_client()
    client_package = sell_package(client)
    session = book(client, client_package, days_ahead=5)[0]

    SessionService.cancel_by_client(session.id, client, now=datetime.combine(date.today(), time(8, 0)))

    assert session.status == 'cancelled'
    assert client_package.sessions_remaining == 10


def test_client_needs_cancel_permission(ctx):
    client = make_client()
    session = book(client, sell_package(client), days_ahead=5)[0]

    with pytest.raises(Unauthorized):
        SessionService.cancel_by_client(session.id, client)


def test_client_cannot_cancel_someone_elses_session(ctx):
    owner = portal_client(email='owner@studio.test')
    intruder = portal_client(email='intruder@studio.test')
    session = book(owner, sell_package(owner), days_ahead=5)[0]

    with pytest.raises(NotFound):
        SessionService.cancel_by_client(session.id, intruder)
    with pytest.raises(NotFound):
        SessionService.get_cancellation_eligibility(session.id, intruder)


def test_client_cannot_cancel_twice(ctx):
    client = portal_client()
    session = book(client, sell_package(client), days_ahead=5)[0]
    SessionService.cancel_by_client(session.id, client)

    with pytest.raises(InvalidStatusTransition):
        SessionService.cancel_by_client(session.id, client)
