# models/payment.py
import enum
from datetime import date

from . import BaseModel
from .. import db


class PaymentStatus(enum.Enum):
    PENDING = 'pending'
    COMPLETED = 'completed'
    FAILED = 'failed'


class Payment(BaseModel):
    """
    Client ledger entry. Charges are stored as negative amounts and payments
    received as positive amounts in the same table.
    """
    __tablename__ = 'payments'

    client_id = db.Column(db.Integer, db.ForeignKey('clients.id'), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    payment_method = db.Column(db.String(50), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=PaymentStatus.COMPLETED.value)
    description = db.Column(db.String(255), nullable=True)
    payment_date = db.Column(db.Date, nullable=False, default=date.today)

    session_id = db.Column(db.Integer, db.ForeignKey('sessions.id', ondelete='SET NULL'), nullable=True)
    client_package_id = db.Column(db.Integer, db.ForeignKey('client_packages.id'), nullable=True)
    recorded_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    client = db.relationship('Client', backref=db.backref('payments', lazy='dynamic'))

    @property
    def is_charge(self):
        return self.amount < 0

    def serialize(self):
        return {
            'id': self.id,
            'client_id': self.client_id,
            'amount': str(self.amount),
            'entry_type': 'charge' if self.is_charge else 'payment',
            'payment_method': self.payment_method,
            'status': self.status,
            'description': self.description,
            'payment_date': self.payment_date.isoformat() if self.payment_date else None,
            'session_id': self.session_id,
            'client_package_id': self.client_package_id,
            'recorded_by': self.recorded_by,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    def __repr__(self):
        return f"<Payment {self.id} client={self.client_id} amount={self.amount}>"
