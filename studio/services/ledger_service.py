# services/ledger_service.py
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional

from flask import current_app
from marshmallow import ValidationError
from sqlalchemy import and_, case, func

from .. import db, logger
from ..errors import InvalidStatusTransition, NotFound
from ..models import transaction
from ..models.client import Client
from ..models.expenses import Expense, ExpenseStatus
from ..models.payment import Payment, PaymentStatus

CENTS = Decimal('0.01')
ENTRY_SETTLED_STATUSES = (PaymentStatus.COMPLETED.value, PaymentStatus.FAILED.value)


def to_money(value) -> Decimal:
    if value is None:
        return Decimal('0.00')
    return Decimal(str(value)).quantize(CENTS)


@dataclass(frozen=True)
class ClientBalance:
    client_id: int
    total_charges: Decimal
    total_payments: Decimal

    @property
    def balance(self) -> Decimal:
        """Positive means the client owes money, negative means in credit."""
        return self.total_charges - self.total_payments

    @property
    def outstanding(self) -> Decimal:
        return max(self.balance, Decimal('0.00'))

    def to_dict(self):
        return {
            'client_id': self.client_id,
            'total_charges': str(self.total_charges),
            'total_payments': str(self.total_payments),
            'balance': str(self.balance),
            'outstanding': str(self.outstanding)
        }


class LedgerService:
    """
    Reads and writes the signed client ledger held in the payments table.

    Charges are negative rows, payments received are positive rows. The
    balance is recomputed from the rows on every read; nothing is cached.
    """

    @staticmethod
    def _charge_filter():
        """Which negative rows count as charges; pending ones only when configured to."""
        charge_filter = Payment.amount < 0
        if not current_app.config.get('LEDGER_COUNT_PENDING_CHARGES', True):
            charge_filter = and_(charge_filter, Payment.status == PaymentStatus.COMPLETED.value)
        return charge_filter

    @staticmethod
    def _aggregates():
        completed = Payment.status == PaymentStatus.COMPLETED.value
        charge_filter = LedgerService._charge_filter()

        total_charges = func.coalesce(
            func.sum(case((charge_filter, -Payment.amount), else_=0)), 0
        ).label('total_charges')
        total_payments = func.coalesce(
            func.sum(case((and_(Payment.amount > 0, completed), Payment.amount), else_=0)), 0
        ).label('total_payments')
        return total_charges, total_payments

    @staticmethod
    def get_client_balance(client_id: int) -> ClientBalance:
        """
        Balance for one client, computed in a single aggregate statement so the
        charge and payment totals come from the same snapshot.
        """
        if db.session.get(Client, client_id) is None:
            raise NotFound('Client', client_id)

        total_charges, total_payments = LedgerService._aggregates()
        row = db.session.query(total_charges, total_payments) \
            .filter(Payment.client_id == client_id) \
            .one()

        return ClientBalance(
            client_id=client_id,
            total_charges=to_money(row.total_charges),
            total_payments=to_money(row.total_payments)
        )

    @staticmethod
    def get_client_balances(client_ids: Optional[List[int]] = None) -> List[ClientBalance]:
        """Balances for every client (or the given ones), one grouped query."""
        total_charges, total_payments = LedgerService._aggregates()
        query = db.session.query(Client.id.label('client_id'), total_charges, total_payments) \
            .outerjoin(Payment, Payment.client_id == Client.id) \
            .group_by(Client.id) \
            .order_by(Client.id)
        if client_ids is not None:
            query = query.filter(Client.id.in_(client_ids))

        return [
            ClientBalance(
                client_id=row.client_id,
                total_charges=to_money(row.total_charges),
                total_payments=to_money(row.total_payments)
            )
            for row in query.all()
        ]

    @staticmethod
    def _add_entry(client_id, amount, payment_method, status, description=None,
                   payment_date=None, session_id=None, client_package_id=None, actor=None):
        entry = Payment(
            client_id=client_id,
            amount=amount,
            payment_method=payment_method,
            status=status,
            description=description,
            payment_date=payment_date or date.today(),
            session_id=session_id,
            client_package_id=client_package_id,
            recorded_by=actor.id if actor is not None else None
        )
        db.session.add(entry)
        return entry

    @staticmethod
    def record_payment(client_id: int, amount, payment_method: str, payment_date=None,
                       description=None, actor=None, status=PaymentStatus.COMPLETED.value,
                       client_package_id=None, session_id=None) -> Payment:
        """Insert a positive ledger entry (money received from the client)."""
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError({'amount': ['Payment amount must be greater than zero']})
        if db.session.get(Client, client_id) is None:
            raise NotFound('Client', client_id)

        with transaction():
            entry = LedgerService._add_entry(
                client_id, amount, payment_method, status,
                description=description or 'Payment received',
                payment_date=payment_date,
                session_id=session_id,
                client_package_id=client_package_id,
                actor=actor
            )
        logger.info(f"Recorded payment of {amount} for client {client_id}")
        return entry

    @staticmethod
    def record_charge(client_id: int, amount, payment_method: str = 'manual_charge', payment_date=None,
                      description=None, actor=None, status=PaymentStatus.COMPLETED.value,
                      client_package_id=None, session_id=None) -> Payment:
        """
        Insert a negative ledger entry. ``amount`` is the positive size of the
        charge; the sign is applied here.
        """
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError({'amount': ['Charge amount must be greater than zero']})
        if db.session.get(Client, client_id) is None:
            raise NotFound('Client', client_id)

        with transaction():
            entry = LedgerService._add_entry(
                client_id, -amount, payment_method, status,
                description=description or 'Charge',
                payment_date=payment_date,
                session_id=session_id,
                client_package_id=client_package_id,
                actor=actor
            )
        logger.info(f"Recorded charge of {amount} for client {client_id}")
        return entry

    @staticmethod
    def update_entry_status(entry_id: int, status: str) -> Payment:
        """
        Settle or fail a pending entry, e.g. an unpaid package charge.

        Only pending entries move, and only to completed or failed. Asking for
        the status an entry already has is a no-op.
        """
        entry = db.session.get(Payment, entry_id)
        if entry is None:
            raise NotFound('Payment', entry_id)
        if status == entry.status:
            return entry
        if entry.status != PaymentStatus.PENDING.value or status not in ENTRY_SETTLED_STATUSES:
            raise InvalidStatusTransition('payment', entry.status, status)

        with transaction():
            entry.status = status
        logger.info(f"Ledger entry {entry_id} marked {status}")
        return entry

    @staticmethod
    def list_entries(client_id: Optional[int] = None, start_date=None, end_date=None,
                     entry_type: Optional[str] = None) -> List[Payment]:
        query = Payment.query
        if client_id is not None:
            query = query.filter(Payment.client_id == client_id)
        if start_date:
            query = query.filter(Payment.payment_date >= start_date)
        if end_date:
            query = query.filter(Payment.payment_date <= end_date)
        if entry_type == 'charge':
            query = query.filter(Payment.amount < 0)
        elif entry_type == 'payment':
            query = query.filter(Payment.amount > 0)
        return query.order_by(Payment.payment_date.desc(), Payment.id.desc()).all()

    @staticmethod
    def get_financial_stats(start_date=None, end_date=None):
        """
        Studio-wide totals: revenue (completed payments), charges raised,
        outstanding client debt, expenses and net profit.
        """
        completed = Payment.status == PaymentStatus.COMPLETED.value
        query = db.session.query(
            func.coalesce(func.sum(case((and_(Payment.amount > 0, completed), Payment.amount), else_=0)), 0),
            func.coalesce(func.sum(case((LedgerService._charge_filter(), -Payment.amount), else_=0)), 0),
            func.coalesce(func.sum(case((and_(Payment.amount < 0,
                                              Payment.status == PaymentStatus.PENDING.value),
                                         -Payment.amount), else_=0)), 0)
        )
        expense_query = db.session.query(func.coalesce(func.sum(Expense.amount), 0)).filter(
            Expense.status.in_([ExpenseStatus.COMPLETED.value, ExpenseStatus.REIMBURSED.value])
        )
        if start_date:
            query = query.filter(Payment.payment_date >= start_date)
            expense_query = expense_query.filter(Expense.expense_date >= start_date)
        if end_date:
            query = query.filter(Payment.payment_date <= end_date)
            expense_query = expense_query.filter(Expense.expense_date <= end_date)

        revenue, charges, pending_charges = query.one()
        expenses = to_money(expense_query.scalar())
        revenue = to_money(revenue)

        outstanding = sum(
            (b.outstanding for b in LedgerService.get_client_balances()),
            Decimal('0.00')
        )

        return {
            'total_revenue': str(revenue),
            'total_charges': str(to_money(charges)),
            'pending_charges': str(to_money(pending_charges)),
            'outstanding': str(outstanding),
            'total_expenses': str(expenses),
            'net_profit': str(revenue - expenses),
            'currency': current_app.config.get('CURRENCY', 'AED')
        }
