# models/training_session.py
import enum
from datetime import datetime

from . import BaseModel
from .. import db


class SessionStatus(enum.Enum):
    """
    Session lifecycle. A session starts scheduled and moves once to one of
    the terminal states.
    """
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


TERMINAL_STATUSES = (
    SessionStatus.COMPLETED.value,
    SessionStatus.CANCELLED.value,
    SessionStatus.NO_SHOW.value,
)


class SessionType(enum.Enum):
    PERSONAL = "personal"
    GROUP = "group"
    CLASS = "class"


class TrainingSession(BaseModel):
    """
    A booked training session.

    Key Points:
    1. A session is paid either from a client package (client_package_id set,
       price empty) or directly (price set, charged to the ledger at booking).

    2. package_session_consumed records whether this session has taken a unit
       off its package, so completing twice or refunding twice is a no-op.

    3. cancelled_by tells staff cancellations apart from client-portal ones.

    4. version guards status changes: two requests finishing the same session
       at once cannot both win.
    """

    __tablename__ = 'sessions'

    client_id = db.Column(db.Integer, db.ForeignKey('clients.id'), nullable=False, index=True)
    trainer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)

    date = db.Column(db.Date, nullable=False, index=True)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    duration = db.Column(db.Integer, nullable=False, default=60, doc="Length in minutes.")
    session_type = db.Column(db.String(20), nullable=False, default=SessionType.PERSONAL.value)
    location = db.Column(db.String(200), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    price = db.Column(db.Numeric(12, 2), nullable=True)
    client_package_id = db.Column(db.Integer, db.ForeignKey('client_packages.id'), nullable=True, index=True)

    status = db.Column(db.String(20), nullable=False, default=SessionStatus.SCHEDULED.value, index=True)
    package_session_consumed = db.Column(db.Boolean, nullable=False, default=False)
    completed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)
    cancelled_by = db.Column(db.String(20), nullable=True)
    last_status_change = db.Column(db.DateTime, nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)

    client = db.relationship('Client', backref=db.backref('sessions', lazy='dynamic'))
    trainer = db.relationship('User', foreign_keys=[trainer_id])
    client_package = db.relationship('ClientPackage', backref=db.backref('sessions', lazy='dynamic'))

    __mapper_args__ = {'version_id_col': version}

    @property
    def starts_at(self):
        return datetime.combine(self.date, self.start_time)

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "client_id": self.client_id,
            "client_name": self.client.full_name if self.client else None,
            "trainer_id": self.trainer_id,
            "date": self.date.isoformat(),
            "start_time": self.start_time.strftime('%H:%M'),
            "end_time": self.end_time.strftime('%H:%M'),
            "duration": self.duration,
            "session_type": self.session_type,
            "location": self.location,
            "notes": self.notes,
            "price": str(self.price) if self.price is not None else None,
            "client_package_id": self.client_package_id,
            "status": self.status,
            "package_session_consumed": self.package_session_consumed,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "cancellation_reason": self.cancellation_reason,
            "cancelled_by": self.cancelled_by,
            "last_status_change": self.last_status_change.isoformat() if self.last_status_change else None,
            "version": self.version
        }

    def __repr__(self):
        return f"<TrainingSession {self.id} {self.date} {self.status}>"
