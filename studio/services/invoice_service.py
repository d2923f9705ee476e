# services/invoice_service.py
from datetime import date, timedelta
from decimal import Decimal
from io import BytesIO
from typing import Dict, List, Optional
from xml.sax.saxutils import escape

from flask import current_app
from marshmallow import ValidationError
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from sqlalchemy import select, update

from .. import db, logger
from ..errors import NotFound, InvalidStatusTransition, BusinessRuleViolation
from ..models import transaction
from ..models.client import Client
from ..models.invoice import Invoice, InvoiceStatus, DocumentSequence
from .ledger_service import to_money

INVOICE_SEQUENCE = 'invoice'

# current status -> statuses it may move to
INVOICE_TRANSITIONS = {
    InvoiceStatus.DRAFT.value: {InvoiceStatus.SENT.value, InvoiceStatus.CANCELLED.value},
    InvoiceStatus.SENT.value: {InvoiceStatus.PAID.value, InvoiceStatus.OVERDUE.value,
                               InvoiceStatus.CANCELLED.value},
    InvoiceStatus.OVERDUE.value: {InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value},
    InvoiceStatus.PAID.value: set(),
    InvoiceStatus.CANCELLED.value: set(),
}


def ensure_sequence(name=INVOICE_SEQUENCE):
    """Create the counter row for ``name`` if it does not exist yet."""
    exists = db.session.execute(
        select(DocumentSequence.id).where(DocumentSequence.name == name)
    ).first()
    if exists is None:
        with transaction():
            db.session.add(DocumentSequence(name=name, last_value=0))
        logger.info(f"Created document sequence '{name}'")


def next_sequence_value(name=INVOICE_SEQUENCE) -> int:
    """
    Increment and return the named counter.

    Must run inside the transaction that uses the number. The UPDATE is the
    first write of that transaction, so the row stays locked (PostgreSQL) or
    the database write-locked (SQLite) until commit and concurrent callers
    queue behind it.
    """
    result = db.session.execute(
        update(DocumentSequence)
        .where(DocumentSequence.name == name)
        .values(last_value=DocumentSequence.last_value + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.session.add(DocumentSequence(name=name, last_value=1))
        db.session.flush()
        return 1
    return db.session.execute(
        select(DocumentSequence.last_value).where(DocumentSequence.name == name)
    ).scalar_one()


def format_invoice_number(value: int) -> str:
    prefix = current_app.config.get('INVOICE_PREFIX', 'INV-')
    width = current_app.config.get('INVOICE_NUMBER_WIDTH', 4)
    return f"{prefix}{value:0{width}d}"


class InvoiceService:
    """
    Client invoices. Invoices are documents only: changing an invoice status
    never writes to the payment ledger.
    """

    @staticmethod
    def get_invoice(invoice_id: int) -> Invoice:
        invoice = db.session.get(Invoice, invoice_id)
        if invoice is None:
            raise NotFound('Invoice', invoice_id)
        return invoice

    @staticmethod
    def list_invoices(client_id: Optional[int] = None, status: Optional[str] = None) -> List[Invoice]:
        query = Invoice.query
        if client_id:
            query = query.filter(Invoice.client_id == client_id)
        if status:
            query = query.filter(Invoice.status == status)
        return query.order_by(Invoice.issue_date.desc(), Invoice.id.desc()).all()

    @staticmethod
    def _line_items_total(line_items) -> Decimal:
        total = Decimal('0.00')
        for item in line_items:
            total += to_money(item.get('quantity', 1)) * to_money(item['unit_price'])
        return to_money(total)

    @staticmethod
    def _serialize_line_items(line_items):
        return [
            {
                'description': item['description'],
                'quantity': str(item.get('quantity', 1)),
                'unit_price': str(to_money(item['unit_price']))
            }
            for item in line_items
        ]

    @staticmethod
    def create_invoice(data: Dict, actor=None) -> Invoice:
        """
        Create an invoice with the next number from the invoice sequence.
        Number allocation and the insert commit together, so a failed insert
        does not burn a number.
        """
        client = db.session.get(Client, data['client_id'])
        if client is None:
            raise NotFound('Client', data['client_id'])

        line_items = data.get('line_items') or []
        if data.get('amount') is not None:
            amount = to_money(data['amount'])
        elif line_items:
            amount = InvoiceService._line_items_total(line_items)
        else:
            raise ValidationError({'amount': ['Provide an amount or line items']})
        tax_amount = to_money(data.get('tax_amount') or 0)
        if amount < 0 or tax_amount < 0:
            raise ValidationError({'amount': ['Amounts cannot be negative']})

        issue_date = data.get('issue_date') or date.today()
        payment_terms = data.get('payment_terms')
        if payment_terms is None:
            payment_terms = current_app.config.get('DEFAULT_PAYMENT_TERMS', 30)
        due_date = data.get('due_date') or issue_date + timedelta(days=payment_terms)
        if due_date < issue_date:
            raise ValidationError({'due_date': ['Due date cannot be before the issue date']})

        with transaction():
            number = format_invoice_number(next_sequence_value(INVOICE_SEQUENCE))
            invoice = Invoice(
                client_id=client.id,
                created_by=actor.id if actor is not None else None,
                invoice_number=number,
                amount=amount,
                tax_amount=tax_amount,
                total_amount=amount + tax_amount,
                status=InvoiceStatus.DRAFT.value,
                issue_date=issue_date,
                due_date=due_date,
                payment_terms=payment_terms,
                description=data.get('description'),
                line_items=InvoiceService._serialize_line_items(line_items),
                notes=data.get('notes')
            )
            db.session.add(invoice)

        logger.info(f"Created invoice {invoice.invoice_number} for client {client.id}")
        return invoice

    @staticmethod
    def update_invoice(invoice_id: int, data: Dict) -> Invoice:
        invoice = InvoiceService.get_invoice(invoice_id)
        if invoice.status in (InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value):
            raise BusinessRuleViolation(f"A {invoice.status} invoice cannot be edited")

        with transaction():
            money_fields = {'amount', 'tax_amount', 'line_items'} & set(data)
            if money_fields and invoice.status != InvoiceStatus.DRAFT.value:
                raise BusinessRuleViolation("Amounts can only be changed while the invoice is a draft")
            if 'line_items' in data:
                invoice.line_items = InvoiceService._serialize_line_items(data['line_items'] or [])
                if data.get('amount') is None and data['line_items']:
                    invoice.amount = InvoiceService._line_items_total(data['line_items'])
            if data.get('amount') is not None:
                invoice.amount = to_money(data['amount'])
            if data.get('tax_amount') is not None:
                invoice.tax_amount = to_money(data['tax_amount'])
            invoice.total_amount = to_money(invoice.amount) + to_money(invoice.tax_amount)

            for field in ('description', 'notes', 'issue_date', 'payment_terms'):
                if field in data:
                    setattr(invoice, field, data[field])
            if 'due_date' in data:
                invoice.due_date = data['due_date']
            elif 'issue_date' in data or 'payment_terms' in data:
                invoice.due_date = invoice.issue_date + timedelta(days=invoice.payment_terms)
            if invoice.due_date < invoice.issue_date:
                raise ValidationError({'due_date': ['Due date cannot be before the issue date']})
        return invoice

    @staticmethod
    def update_invoice_status(invoice_id: int, new_status: str, paid_date=None) -> Invoice:
        """
        Move an invoice along draft -> sent -> paid/overdue, or cancel it.
        Setting the status an invoice already has is a no-op.
        """
        invoice = InvoiceService.get_invoice(invoice_id)
        if new_status == invoice.status:
            return invoice
        if new_status not in INVOICE_TRANSITIONS.get(invoice.status, set()):
            raise InvalidStatusTransition('invoice', invoice.status, new_status)

        with transaction():
            invoice.status = new_status
            if new_status == InvoiceStatus.PAID.value:
                invoice.paid_date = paid_date or date.today()

        logger.info(f"Invoice {invoice.invoice_number} is now {new_status}")
        return invoice

    @staticmethod
    def mark_overdue_invoices(today=None) -> int:
        """Sent invoices past their due date become overdue."""
        today = today or date.today()
        with transaction():
            overdue = Invoice.query.filter(
                Invoice.status == InvoiceStatus.SENT.value,
                Invoice.due_date < today
            ).all()
            for invoice in overdue:
                invoice.status = InvoiceStatus.OVERDUE.value
        logger.info(f"Marked {len(overdue)} invoices overdue")
        return len(overdue)

    @staticmethod
    def delete_invoice(invoice_id: int):
        invoice = InvoiceService.get_invoice(invoice_id)
        if invoice.status != InvoiceStatus.DRAFT.value:
            raise BusinessRuleViolation("Only draft invoices can be deleted; cancel it instead")
        invoice.delete()

    @staticmethod
    def render_invoice_pdf(invoice: Invoice) -> BytesIO:
        """Render an invoice as a one-page PDF"""
        currency = current_app.config.get('CURRENCY', 'AED')
        buffer = BytesIO()
        doc = SimpleDocTemplate(buffer, pagesize=A4, title=invoice.invoice_number)
        styles = getSampleStyleSheet()
        elements = [
            Paragraph(escape(current_app.config.get('APP_NAME', 'Studio Manager')), styles['Title']),
            Paragraph(f"Invoice {invoice.invoice_number}", styles['Heading1']),
            Spacer(1, 12),
            Paragraph(escape(f"Bill to: {invoice.client.full_name} ({invoice.client.email})"), styles['Normal']),
            Paragraph(f"Issue date: {invoice.issue_date.isoformat()}", styles['Normal']),
            Paragraph(f"Due date: {invoice.due_date.isoformat()}", styles['Normal']),
            Paragraph(f"Status: {invoice.status.upper()}", styles['Normal']),
            Spacer(1, 12),
        ]
        if invoice.description:
            elements.append(Paragraph(escape(invoice.description), styles['Normal']))
            elements.append(Spacer(1, 12))

        table_data = [['Description', 'Qty', 'Unit price', 'Total']]
        for item in invoice.line_items or []:
            quantity = Decimal(item['quantity'])
            unit_price = Decimal(item['unit_price'])
            table_data.append([
                item['description'], str(quantity), f"{unit_price:.2f}", f"{quantity * unit_price:.2f}"
            ])
        if len(table_data) == 1:
            table_data.append([invoice.description or 'Services', '1',
                               f"{invoice.amount:.2f}", f"{invoice.amount:.2f}"])
        table_data.append(['', '', 'Subtotal', f"{invoice.amount:.2f}"])
        table_data.append(['', '', 'Tax', f"{invoice.tax_amount:.2f}"])
        table_data.append(['', '', f'Total ({currency})', f"{invoice.total_amount:.2f}"])

        table = Table(table_data, colWidths=[250, 50, 90, 90])
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.grey),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('ALIGN', (1, 0), (-1, -1), 'RIGHT'),
            ('GRID', (0, 0), (-1, -4), 0.5, colors.black),
            ('FONTNAME', (0, -1), (-1, -1), 'Helvetica-Bold'),
        ]))
        elements.append(table)

        if invoice.notes:
            elements.append(Spacer(1, 12))
            elements.append(Paragraph(escape(f"Notes: {invoice.notes}"), styles['Normal']))

        doc.build(elements)
        buffer.seek(0)
        return buffer
