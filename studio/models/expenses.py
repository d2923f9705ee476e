# models/expenses.py
import enum
from datetime import date

from sqlalchemy import Column, Integer, String, Numeric, Date, Boolean, ForeignKey, Text

from . import BaseModel


class ExpenseStatus(enum.Enum):
    PENDING = 'pending'
    COMPLETED = 'completed'
    REIMBURSED = 'reimbursed'


class Expense(BaseModel):
    __tablename__ = 'expenses'

    created_by = Column(Integer, ForeignKey('users.id'), nullable=True)
    category = Column(String(100), nullable=False, index=True)
    subcategory = Column(String(100), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(Text, nullable=False)
    vendor = Column(String(200), nullable=True)
    expense_date = Column(Date, nullable=False, default=date.today, index=True)
    payment_method = Column(String(50), nullable=True)
    receipt_url = Column(Text, nullable=True)
    is_recurring = Column(Boolean, nullable=False, default=False)
    recurring_frequency = Column(String(20), nullable=True)
    tax_deductible = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default=ExpenseStatus.COMPLETED.value)

    def serialize(self):
        return {
            'id': self.id,
            'created_by': self.created_by,
            'category': self.category,
            'subcategory': self.subcategory,
            'amount': str(self.amount),
            'description': self.description,
            'vendor': self.vendor,
            'expense_date': self.expense_date.isoformat() if self.expense_date else None,
            'payment_method': self.payment_method,
            'receipt_url': self.receipt_url,
            'is_recurring': self.is_recurring,
            'recurring_frequency': self.recurring_frequency,
            'tax_deductible': self.tax_deductible,
            'status': self.status,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat()
        }
