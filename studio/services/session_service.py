# services/session_service.py
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from flask import current_app
from marshmallow import ValidationError
from sqlalchemy import func

from .. import db, logger
from ..errors import (
    NotFound,
    Unauthorized,
    BusinessRuleViolation,
    InsufficientSessions,
    PackageExpired,
    PackageInactive,
    InvalidStatusTransition,
    CancellationWindowClosed,
    SessionConsumed
)
from ..models import transaction
from ..models.client import Client, ClientStatus
from ..models.package import ClientPackage, ClientPackageStatus, PackageUsage
from ..models.payment import Payment
from ..models.training_session import TrainingSession, SessionStatus, TERMINAL_STATUSES
from ..security import can_view_all_bookings, can_edit_booking, can_reconcile_booking
from .ledger_service import LedgerService, to_money
from .package_service import PackageService, PackageChange

ON_COMPLETION = 'on_completion'
ON_BOOKING = 'on_booking'

EDITABLE_FIELDS = ('date', 'start_time', 'end_time', 'duration', 'session_type',
                   'location', 'notes', 'trainer_id')


@dataclass
class CancellationEligibility:
    eligible: bool
    hours_until_start: float
    window_hours: int

    def to_dict(self):
        return {
            'eligible': self.eligible,
            'hours_until_start': self.hours_until_start,
            'window_hours': self.window_hours
        }


@dataclass
class Booking:
    """Sessions created by one booking request, plus package warnings raised while booking."""
    sessions: List[TrainingSession]
    warnings: List[str] = field(default_factory=list)


@dataclass
class StatusChange:
    session: TrainingSession
    package_change: Optional[PackageChange] = None

    @property
    def warning(self) -> Optional[str]:
        return self.package_change.warning if self.package_change is not None else None

    def to_dict(self):
        data = self.session.to_dict()
        data['package_warning'] = self.warning
        return data


def cancellation_eligibility(session, now=None, window_hours=None) -> CancellationEligibility:
    """
    A scheduled session can be cancelled with a refund while its start is
    strictly more than ``window_hours`` away. Times are studio-local.
    """
    now = now or datetime.now()
    if window_hours is None:
        window_hours = current_app.config.get('CANCELLATION_WINDOW_HOURS', 24)
    remaining = session.starts_at - now
    eligible = (
        session.status == SessionStatus.SCHEDULED.value
        and remaining > timedelta(hours=window_hours)
    )
    return CancellationEligibility(
        eligible=eligible,
        hours_until_start=round(remaining.total_seconds() / 3600, 2),
        window_hours=window_hours
    )


def deduction_policy():
    policy = current_app.config.get('PACKAGE_DEDUCTION_POLICY', ON_COMPLETION)
    if policy not in (ON_COMPLETION, ON_BOOKING):
        raise ValueError(f"Unknown PACKAGE_DEDUCTION_POLICY: {policy}")
    return policy


class SessionService:
    """
    Booking and status lifecycle of training sessions.

    Package deduction happens at exactly one point of the lifecycle, chosen by
    PACKAGE_DEDUCTION_POLICY, and every call path (staff, portal, bulk) goes
    through the same methods so the rule is applied uniformly.
    """

    @staticmethod
    def get_session(session_id: int) -> TrainingSession:
        session = db.session.get(TrainingSession, session_id)
        if session is None:
            raise NotFound('Session', session_id)
        return session

    @staticmethod
    def _lock(session_id: int) -> TrainingSession:
        session = TrainingSession.query \
            .filter(TrainingSession.id == session_id) \
            .with_for_update() \
            .populate_existing() \
            .one_or_none()
        if session is None:
            raise NotFound('Session', session_id)
        return session

    @staticmethod
    def _validate_times(start_time, end_time):
        if end_time <= start_time:
            raise ValidationError({'end_time': ['End time must be after start time']})

    @staticmethod
    def _resolve_end_time(data):
        if data.get('end_time'):
            return data['end_time']
        start = datetime.combine(date.today(), data['start_time'])
        return (start + timedelta(minutes=data.get('duration') or 60)).time()

    @staticmethod
    def _check_package(client, client_package_id, last_date, count) -> ClientPackage:
        client_package = db.session.get(ClientPackage, client_package_id)
        if client_package is None or client_package.client_id != client.id:
            raise NotFound('Client package', client_package_id)
        if client_package.status != ClientPackageStatus.ACTIVE.value:
            raise PackageInactive(f"Package is {client_package.status}")
        if client_package.is_expired(last_date):
            raise PackageExpired(
                f"Package expires on {client_package.expiry_date.isoformat()}",
                expiry_date=client_package.expiry_date.isoformat()
            )
        # Scheduled sessions that have not taken their unit yet already claim part of the balance
        already_booked = TrainingSession.query.filter(
            TrainingSession.client_package_id == client_package.id,
            TrainingSession.status == SessionStatus.SCHEDULED.value,
            TrainingSession.package_session_consumed.is_(False)
        ).count()
        available = client_package.sessions_remaining - already_booked
        if available < count:
            raise InsufficientSessions(
                f"Package has {max(available, 0)} unbooked sessions left, "
                f"{count} requested",
                sessions_remaining=client_package.sessions_remaining,
                already_booked=already_booked,
                requested=count
            )
        return client_package

    @staticmethod
    def book_session(data: Dict, actor=None) -> Booking:
        """
        Book one session, or a weekly series when ``recurring_weeks`` > 1.

        Package-paid bookings are checked against the package (active, not
        expired on the last session date, enough sessions left once the
        package's other scheduled sessions are counted). Directly priced
        bookings get a ledger charge per session at booking time. Returns the
        created sessions; nothing is written if any check fails.
        """
        client = db.session.get(Client, data['client_id'])
        if client is None:
            raise NotFound('Client', data['client_id'])
        if client.status == ClientStatus.INACTIVE.value:
            raise BusinessRuleViolation("Inactive clients cannot be booked")

        trainer_id = data.get('trainer_id')
        if actor is not None and actor.is_staff:
            if trainer_id is None and not can_edit_booking(actor, None):
                trainer_id = actor.id
            if not can_edit_booking(actor, trainer_id):
                raise Unauthorized("You can only book your own sessions")

        end_time = SessionService._resolve_end_time(data)
        SessionService._validate_times(data['start_time'], end_time)

        weeks = data.get('recurring_weeks') or 1
        dates = [data['date'] + timedelta(weeks=i) for i in range(weeks)]

        client_package_id = data.get('client_package_id')
        price = data.get('price')
        if client_package_id:
            SessionService._check_package(client, client_package_id, dates[-1], len(dates))
            price = None
        elif price is not None:
            price = to_money(price)
            if price < 0:
                raise ValidationError({'price': ['Price cannot be negative']})

        duration = data.get('duration') or int(
            (datetime.combine(date.today(), end_time)
             - datetime.combine(date.today(), data['start_time'])).total_seconds() // 60
        )
        policy = deduction_policy()
        sessions = []
        warnings = []

        with transaction():
            for session_date in dates:
                session = TrainingSession(
                    client_id=client.id,
                    trainer_id=trainer_id,
                    date=session_date,
                    start_time=data['start_time'],
                    end_time=end_time,
                    duration=duration,
                    session_type=data.get('session_type') or 'personal',
                    location=data.get('location'),
                    notes=data.get('notes'),
                    price=price,
                    client_package_id=client_package_id,
                    status=SessionStatus.SCHEDULED.value,
                    last_status_change=datetime.now()
                )
                db.session.add(session)
                db.session.flush()

                if client_package_id and policy == ON_BOOKING:
                    change = PackageService.consume_session(session, actor=actor)
                    if change.warning:
                        warnings.append(change.warning)
                elif price:
                    LedgerService.record_charge(
                        client.id, price,
                        payment_method='session_charge',
                        payment_date=session_date,
                        description=f"Session on {session_date.isoformat()}",
                        actor=actor,
                        session_id=session.id
                    )
                sessions.append(session)

        logger.info(f"Booked {len(sessions)} session(s) for client {client.id} starting {dates[0]}")
        return Booking(sessions, warnings)

    @staticmethod
    def update_session(session_id: int, data: Dict, actor=None) -> TrainingSession:
        """Edit scheduling details. Status changes go through update_status."""
        if 'status' in data:
            raise ValidationError({'status': ['Use the status endpoint to change session status']})

        session = SessionService.get_session(session_id)
        if actor is not None and not can_edit_booking(actor, session.trainer_id):
            raise Unauthorized("You can only edit your own sessions")

        scheduling = {'date', 'start_time', 'end_time', 'duration', 'trainer_id'} & set(data)
        if scheduling and session.status != SessionStatus.SCHEDULED.value:
            raise BusinessRuleViolation(f"Cannot reschedule a {session.status} session")

        with transaction():
            for field in EDITABLE_FIELDS:
                if field in data:
                    setattr(session, field, data[field])
            SessionService._validate_times(session.start_time, session.end_time)
            if session.client_package_id and 'date' in data and session.client_package.is_expired(session.date):
                raise PackageExpired(
                    f"Package expires on {session.client_package.expiry_date.isoformat()}"
                )
        return session

    @staticmethod
    def update_status(session_id: int, new_status: str, reason=None, actor=None,
                      now=None, refund=True) -> StatusChange:
        """
        Move a scheduled session to completed, cancelled or no_show.

        Terminal states never change. Asking for the status a session already
        has is a no-op, so completing twice deducts only once. With the
        on_completion policy the package unit is taken when the session
        completes; with on_booking a staff cancellation gives it back unless
        ``refund`` is False.

        The session row is re-read under lock before it changes, and its
        version column turns a lost race into ConcurrentModification. The
        result carries the package change, including the warning raised when
        a completion finds the package already empty.
        """
        now = now or datetime.now()
        session = SessionService.get_session(session_id)
        if actor is not None and not can_reconcile_booking(actor, session.trainer_id):
            raise Unauthorized("You can only update the status of your own sessions")

        if new_status not in TERMINAL_STATUSES:
            raise InvalidStatusTransition('session', session.status, new_status)

        policy = deduction_policy()
        package_change = None

        with transaction():
            session = SessionService._lock(session_id)
            if new_status == session.status:
                logger.info(f"Session {session.id} already {new_status}; nothing to do")
                return StatusChange(session)
            if session.is_terminal:
                raise InvalidStatusTransition('session', session.status, new_status)

            session.status = new_status
            session.last_status_change = now

            if new_status == SessionStatus.COMPLETED.value:
                session.completed_at = now
                if session.client_package_id and policy == ON_COMPLETION:
                    package_change = PackageService.consume_session(session, actor=actor)

            elif new_status == SessionStatus.CANCELLED.value:
                session.cancelled_at = now
                session.cancelled_by = 'staff'
                session.cancellation_reason = reason
                if refund:
                    package_change = PackageService.refund_session(session, actor=actor, notes=reason)

        logger.info(f"Session {session.id} marked {new_status}")
        return StatusChange(session, package_change)

    @staticmethod
    def cancel_by_client(session_id: int, client: Client, now=None, reason=None, actor=None) -> TrainingSession:
        """
        Portal cancellation. Only allowed while the session start is more than
        CANCELLATION_WINDOW_HOURS away; a consumed unit is refunded.
        """
        now = now or datetime.now()
        if not client.can_cancel_sessions:
            raise Unauthorized("Session cancellation is not enabled for your account")

        session = SessionService.get_session(session_id)
        if session.client_id != client.id:
            raise NotFound('Session', session_id)
        if session.status != SessionStatus.SCHEDULED.value:
            raise InvalidStatusTransition('session', session.status, SessionStatus.CANCELLED.value)

        eligibility = cancellation_eligibility(session, now)
        if not eligibility.eligible:
            raise CancellationWindowClosed(
                f"Sessions can only be cancelled more than {eligibility.window_hours} hours in advance",
                hours_until_start=eligibility.hours_until_start
            )

        with transaction():
            session = SessionService._lock(session_id)
            if session.status != SessionStatus.SCHEDULED.value:
                raise InvalidStatusTransition('session', session.status, SessionStatus.CANCELLED.value)

            session.status = SessionStatus.CANCELLED.value
            session.cancelled_at = now
            session.cancelled_by = 'client'
            session.cancellation_reason = reason
            session.last_status_change = now
            PackageService.refund_session(session, actor=actor, notes=reason or 'Cancelled by client')

        logger.info(f"Client {client.id} cancelled session {session.id}")
        return session

    @staticmethod
    def delete_session(session_id: int, reverse_consumption=False, actor=None):
        """
        Hard-delete a session. A session that consumed a package unit is kept
        unless ``reverse_consumption`` is set, in which case the unit is
        refunded first. Ledger rows linked to the session keep their amounts.
        """
        session = SessionService.get_session(session_id)
        if actor is not None and not can_edit_booking(actor, session.trainer_id):
            raise Unauthorized("You can only delete your own sessions")
        if session.package_session_consumed and not reverse_consumption:
            raise SessionConsumed(session_id=session.id, client_package_id=session.client_package_id)

        with transaction():
            if session.package_session_consumed:
                PackageService.refund_session(session, actor=actor, notes='Session deleted')
            db.session.flush()
            db.session.query(PackageUsage) \
                .filter(PackageUsage.session_id == session.id) \
                .update({PackageUsage.session_id: None}, synchronize_session=False)
            db.session.query(Payment) \
                .filter(Payment.session_id == session.id) \
                .update({Payment.session_id: None}, synchronize_session=False)
            db.session.delete(session)

        logger.info(f"Deleted session {session_id}")

    @staticmethod
    def _scoped_query(actor=None):
        query = TrainingSession.query
        if actor is not None and actor.is_staff and not can_view_all_bookings(actor):
            query = query.filter(TrainingSession.trainer_id == actor.id)
        return query

    @staticmethod
    def list_sessions(start_date=None, end_date=None, client_id=None, trainer_id=None,
                      status=None, actor=None) -> List[TrainingSession]:
        query = SessionService._scoped_query(actor)
        if start_date:
            query = query.filter(TrainingSession.date >= start_date)
        if end_date:
            query = query.filter(TrainingSession.date <= end_date)
        if client_id:
            query = query.filter(TrainingSession.client_id == client_id)
        if trainer_id:
            query = query.filter(TrainingSession.trainer_id == trainer_id)
        if status:
            query = query.filter(TrainingSession.status == status)
        return query.order_by(TrainingSession.date, TrainingSession.start_time).all()

    @staticmethod
    def get_upcoming_sessions(today=None, days=7, limit=5, actor=None, client_id=None) -> List[TrainingSession]:
        today = today or date.today()
        query = SessionService._scoped_query(actor).filter(
            TrainingSession.status == SessionStatus.SCHEDULED.value,
            TrainingSession.date >= today
        )
        if days is not None:
            query = query.filter(TrainingSession.date <= today + timedelta(days=days))
        if client_id:
            query = query.filter(TrainingSession.client_id == client_id)
        query = query.order_by(TrainingSession.date, TrainingSession.start_time)
        if limit:
            query = query.limit(limit)
        return query.all()

    @staticmethod
    def get_session_stats(today=None, actor=None, client_id=None) -> Dict[str, int]:
        today = today or date.today()
        query = SessionService._scoped_query(actor)
        if client_id:
            query = query.filter(TrainingSession.client_id == client_id)
        counts = dict(
            query.with_entities(TrainingSession.status, func.count(TrainingSession.id))
            .group_by(TrainingSession.status)
            .all()
        )
        upcoming = query.filter(
            TrainingSession.status == SessionStatus.SCHEDULED.value,
            TrainingSession.date >= today
        ).count()
        return {
            'total': sum(counts.values()),
            'upcoming': upcoming,
            'completed': counts.get(SessionStatus.COMPLETED.value, 0),
            'cancelled': counts.get(SessionStatus.CANCELLED.value, 0),
            'no_show': counts.get(SessionStatus.NO_SHOW.value, 0)
        }

    @staticmethod
    def get_cancellation_eligibility(session_id: int, client: Client, now=None) -> Optional[CancellationEligibility]:
        session = SessionService.get_session(session_id)
        if session.client_id != client.id:
            raise NotFound('Session', session_id)
        return cancellation_eligibility(session, now)
