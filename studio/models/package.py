# models/package.py
import enum
from datetime import date

from . import BaseModel
from .. import db


class ClientPackageStatus(enum.Enum):
    ACTIVE = 'active'
    EXPIRED = 'expired'
    CANCELLED = 'cancelled'


class Package(BaseModel):
    """Catalog template a client package is sold from."""
    __tablename__ = 'packages'

    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    price = db.Column(db.Numeric(12, 2), nullable=False)
    sessions_included = db.Column(db.Integer, nullable=False)
    duration_days = db.Column(db.Integer, nullable=False)

    __table_args__ = (
        db.CheckConstraint('sessions_included > 0', name='ck_packages_sessions_included_positive'),
        db.CheckConstraint('duration_days > 0', name='ck_packages_duration_days_positive'),
    )

    def serialize(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'price': str(self.price),
            'sessions_included': self.sessions_included,
            'duration_days': self.duration_days,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }

    def __repr__(self):
        return f"<Package {self.name}>"


class ClientPackage(BaseModel):
    """
    A client's purchased instance of a Package.

    sessions_remaining is the shared counter that session consumption and
    refunds contend on. Writes go through PackageService, which locks the row
    and relies on the version column to detect lost updates.
    """
    __tablename__ = 'client_packages'

    client_id = db.Column(db.Integer, db.ForeignKey('clients.id'), nullable=False, index=True)
    package_id = db.Column(db.Integer, db.ForeignKey('packages.id'), nullable=False, index=True)
    sessions_remaining = db.Column(db.Integer, nullable=False)
    purchase_date = db.Column(db.Date, nullable=False, default=date.today)
    expiry_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=ClientPackageStatus.ACTIVE.value, index=True)
    notes = db.Column(db.Text, nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)

    client = db.relationship('Client', backref=db.backref('client_packages', lazy='dynamic'))
    package = db.relationship('Package', backref=db.backref('client_packages', lazy='dynamic'))

    __table_args__ = (
        db.CheckConstraint('sessions_remaining >= 0', name='ck_client_packages_remaining_non_negative'),
    )
    __mapper_args__ = {'version_id_col': version}

    @property
    def sessions_included(self):
        return self.package.sessions_included

    def is_expired(self, on_date=None):
        return self.expiry_date < (on_date or date.today())

    def is_usable(self, on_date=None):
        return (
            self.status == ClientPackageStatus.ACTIVE.value
            and not self.is_expired(on_date)
            and self.sessions_remaining > 0
        )

    def serialize(self):
        return {
            'id': self.id,
            'client_id': self.client_id,
            'package_id': self.package_id,
            'package_name': self.package.name if self.package else None,
            'sessions_included': self.package.sessions_included if self.package else None,
            'sessions_remaining': self.sessions_remaining,
            'purchase_date': self.purchase_date.isoformat() if self.purchase_date else None,
            'expiry_date': self.expiry_date.isoformat() if self.expiry_date else None,
            'status': self.status,
            'notes': self.notes,
            'version': self.version,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    def __repr__(self):
        return f"<ClientPackage {self.id} client={self.client_id} remaining={self.sessions_remaining}>"


class PackageUsage(BaseModel):
    """
    Audit trail of sessions_remaining changes. (session_id, usage_type) is
    unique, so a session can consume at most once and be refunded at most once.
    """
    __tablename__ = 'package_usages'

    USAGE_TYPES = ['consume', 'refund', 'adjustment']

    client_package_id = db.Column(db.Integer, db.ForeignKey('client_packages.id'), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey('sessions.id', ondelete='SET NULL'), nullable=True)
    usage_type = db.Column(db.String(20), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    previous_remaining = db.Column(db.Integer, nullable=False)
    new_remaining = db.Column(db.Integer, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    notes = db.Column(db.String(255))

    client_package = db.relationship('ClientPackage', backref=db.backref('usages', lazy='dynamic'))

    __table_args__ = (
        db.UniqueConstraint('session_id', 'usage_type', name='uq_package_usages_session_type'),
    )

    def serialize(self):
        return {
            'id': self.id,
            'client_package_id': self.client_package_id,
            'session_id': self.session_id,
            'usage_type': self.usage_type,
            'quantity': self.quantity,
            'previous_remaining': self.previous_remaining,
            'new_remaining': self.new_remaining,
            'user_id': self.user_id,
            'notes': self.notes,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }
