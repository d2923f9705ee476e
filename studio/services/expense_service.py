# services/expense_service.py
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func

from .. import db, logger
from ..errors import NotFound
from ..models import transaction
from ..models.expenses import Expense, ExpenseStatus
from .ledger_service import to_money

EXPENSE_FIELDS = ('category', 'subcategory', 'description', 'vendor', 'expense_date',
                  'payment_method', 'receipt_url', 'is_recurring', 'recurring_frequency',
                  'tax_deductible', 'status')


class ExpenseService:
    """Studio running costs. Expenses are not tied to clients."""

    @staticmethod
    def create_expense(data: Dict, actor=None) -> Expense:
        expense = Expense(**{field: data[field] for field in EXPENSE_FIELDS if data.get(field) is not None})
        expense.amount = to_money(data['amount'])
        expense.created_by = actor.id if actor is not None else None
        expense.save()
        logger.info(f"Recorded expense {expense.id}: {expense.category} {expense.amount}")
        return expense

    @staticmethod
    def get_expense(expense_id: int) -> Expense:
        expense = db.session.get(Expense, expense_id)
        if expense is None:
            raise NotFound('Expense', expense_id)
        return expense

    @staticmethod
    def update_expense(expense_id: int, data: Dict) -> Expense:
        expense = ExpenseService.get_expense(expense_id)
        with transaction():
            for field in EXPENSE_FIELDS:
                if field in data:
                    setattr(expense, field, data[field])
            if data.get('amount') is not None:
                expense.amount = to_money(data['amount'])
        return expense

    @staticmethod
    def delete_expense(expense_id: int):
        ExpenseService.get_expense(expense_id).delete()
        logger.info(f"Deleted expense {expense_id}")

    @staticmethod
    def list_expenses(start_date=None, end_date=None, category: Optional[str] = None,
                      status: Optional[str] = None) -> List[Expense]:
        query = Expense.query
        if start_date:
            query = query.filter(Expense.expense_date >= start_date)
        if end_date:
            query = query.filter(Expense.expense_date <= end_date)
        if category:
            query = query.filter(Expense.category == category)
        if status:
            query = query.filter(Expense.status == status)
        return query.order_by(Expense.expense_date.desc(), Expense.id.desc()).all()

    @staticmethod
    def totals_by_category(start_date=None, end_date=None) -> Dict[str, Decimal]:
        """Spent (completed or reimbursed) expenses summed per category."""
        query = db.session.query(Expense.category, func.sum(Expense.amount)).filter(
            Expense.status.in_([ExpenseStatus.COMPLETED.value, ExpenseStatus.REIMBURSED.value])
        )
        if start_date:
            query = query.filter(Expense.expense_date >= start_date)
        if end_date:
            query = query.filter(Expense.expense_date <= end_date)
        rows = query.group_by(Expense.category).order_by(Expense.category).all()
        return {category: to_money(total) for category, total in rows}
