# models/invoice.py
import enum
from datetime import date

from . import BaseModel
from .. import db


class InvoiceStatus(enum.Enum):
    DRAFT = 'draft'
    SENT = 'sent'
    PAID = 'paid'
    OVERDUE = 'overdue'
    CANCELLED = 'cancelled'


class Invoice(BaseModel):
    """
    Invoice issued to a client. Kept separate from the payment ledger:
    marking an invoice paid does not write a ledger entry.
    """
    __tablename__ = 'invoices'

    client_id = db.Column(db.Integer, db.ForeignKey('clients.id'), nullable=False, index=True)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    invoice_number = db.Column(db.String(30), nullable=False, unique=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False)

    status = db.Column(db.String(20), nullable=False, default=InvoiceStatus.DRAFT.value, index=True)
    issue_date = db.Column(db.Date, nullable=False, default=date.today)
    due_date = db.Column(db.Date, nullable=False)
    payment_terms = db.Column(db.Integer, nullable=False, default=30)
    description = db.Column(db.Text, nullable=True)
    line_items = db.Column(db.JSON, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    paid_date = db.Column(db.Date, nullable=True)

    client = db.relationship('Client', backref=db.backref('invoices', lazy='dynamic'))

    def serialize(self):
        return {
            'id': self.id,
            'client_id': self.client_id,
            'client_name': self.client.full_name if self.client else None,
            'created_by': self.created_by,
            'invoice_number': self.invoice_number,
            'amount': str(self.amount),
            'tax_amount': str(self.tax_amount),
            'total_amount': str(self.total_amount),
            'status': self.status,
            'issue_date': self.issue_date.isoformat(),
            'due_date': self.due_date.isoformat(),
            'payment_terms': self.payment_terms,
            'description': self.description,
            'line_items': self.line_items or [],
            'notes': self.notes,
            'paid_date': self.paid_date.isoformat() if self.paid_date else None,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    def __repr__(self):
        return f"<Invoice {self.invoice_number}>"


class DocumentSequence(db.Model):
    """
    Named counter rows for human-readable document numbers. Incremented with
    a single UPDATE so concurrent writers serialize on the row.
    """
    __tablename__ = 'document_sequences'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False, unique=True)
    last_value = db.Column(db.Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<DocumentSequence {self.name}={self.last_value}>"
