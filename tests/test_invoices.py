import threading
from datetime import date, timedelta
from decimal import Decimal

import pytest
from marshmallow import ValidationError

from studio import create_app, db
from studio.errors import InvalidStatusTransition, BusinessRuleViolation
from studio.models.invoice import DocumentSequence
from studio.models.payment import Payment
from studio.services.invoice_service import InvoiceService

from conftest import make_client


def draft(client, **extra):
    data = {'client_id': client.id, 'amount': Decimal('500.00')}
    data.update(extra)
    return InvoiceService.create_invoice(data)


def test_invoice_numbers_are_sequential(ctx):
    client = make_client()

    numbers = [draft(client).invoice_number for _ in range(3)]

    assert numbers == ['INV-0001', 'INV-0002', 'INV-0003']
    assert DocumentSequence.query.filter_by(name='invoice').one().last_value == 3


def test_number_prefix_is_configurable(ctx):
    ctx.config['INVOICE_PREFIX'] = 'FIT-'
    ctx.config['INVOICE_NUMBER_WIDTH'] = 6

    assert draft(make_client()).invoice_number == 'FIT-000001'


def test_totals_from_line_items(ctx):
    client = make_client()

    invoice = InvoiceService.create_invoice({
        'client_id': client.id,
        'tax_amount': Decimal('25.00'),
        'line_items': [
            {'description': 'Personal training', 'quantity': Decimal('4'), 'unit_price': Decimal('100.00')},
            {'description': 'Nutrition plan', 'quantity': Decimal('1'), 'unit_price': Decimal('100.00')},
        ],
        'issue_date': date(2030, 1, 1),
        'payment_terms': 14
    })

    assert invoice.amount == Decimal('500.00')
    assert invoice.total_amount == Decimal('525.00')
    assert invoice.status == 'draft'
    assert invoice.due_date == date(2030, 1, 15)
    assert len(invoice.line_items) == 2


def test_due_date_cannot_precede_issue_date(ctx):
    with pytest.raises(ValidationError):
        draft(make_client(), issue_date=date(2030, 1, 10), due_date=date(2030, 1, 1))


def test_status_transitions(ctx):
    invoice = draft(make_client())

    InvoiceService.update_invoice_status(invoice.id, 'sent')
    InvoiceService.update_invoice_status(invoice.id, 'sent')
    InvoiceService.update_invoice_status(invoice.id, 'paid', paid_date=date(2030, 2, 1))

    assert invoice.status == 'paid'
    assert invoice.paid_date == date(2030, 2, 1)
    with pytest.raises(InvalidStatusTransition):
        InvoiceService.update_invoice_status(invoice.id, 'draft')
    with pytest.raises(InvalidStatusTransition):
        InvoiceService.update_invoice_status(invoice.id, 'cancelled')


def test_draft_cannot_jump_to_paid(ctx):
    invoice = draft(make_client())

    with pytest.raises(InvalidStatusTransition):
        InvoiceService.update_invoice_status(invoice.id, 'paid')


def test_paying_an_invoice_does_not_touch_the_ledger(ctx):
    invoice = draft(make_client())
    InvoiceService.update_invoice_status(invoice.id, 'sent')
    InvoiceService.update_invoice_status(invoice.id, 'paid')

    assert Payment.query.count() == 0


def test_amounts_locked_after_sending(ctx):
    invoice = draft(make_client())
    InvoiceService.update_invoice(invoice.id, {'tax_amount': Decimal('10.00'), 'notes': 'Thanks'})
    assert invoice.total_amount == Decimal('510.00')

    InvoiceService.update_invoice_status(invoice.id, 'sent')
    with pytest.raises(BusinessRuleViolation):
        InvoiceService.update_invoice(invoice.id, {'amount': Decimal('1.00')})
    InvoiceService.update_invoice(invoice.id, {'notes': 'Reminder sent'})

    assert invoice.amount == Decimal('500.00')
    assert invoice.notes == 'Reminder sent'


def test_only_drafts_can_be_deleted(ctx):
    client = make_client()
    kept = draft(client)
    removable = draft(client)
    InvoiceService.update_invoice_status(kept.id, 'sent')

    with pytest.raises(BusinessRuleViolation):
        InvoiceService.delete_invoice(kept.id)
    InvoiceService.delete_invoice(removable.id)

    assert [i.id for i in InvoiceService.list_invoices()] == [kept.id]


def test_mark_overdue(ctx):
    client = make_client()
    today = date.today()
    late = draft(client, issue_date=today - timedelta(days=40), payment_terms=30)
    on_time = draft(client)
    not_sent = draft(client, issue_date=today - timedelta(days=40), payment_terms=30)
    for invoice in (late, on_time):
        InvoiceService.update_invoice_status(invoice.id, 'sent')

    assert InvoiceService.mark_overdue_invoices(today) == 1

    assert (late.status, on_time.status, not_sent.status) == ('overdue', 'sent', 'draft')


def test_pdf_rendering(ctx):
    invoice = draft(make_client(), description='March training', line_items=[
        {'description': 'Personal training', 'quantity': Decimal('5'), 'unit_price': Decimal('100.00')}
    ])

    pdf = InvoiceService.render_invoice_pdf(invoice)

    assert pdf.getvalue().startswith(b'%PDF')


def test_concurrent_invoices_get_distinct_numbers(tmp_path):
    database = tmp_path / 'invoices.db'
    app = create_app('testing', {'SQLALCHEMY_DATABASE_URI': f'sqlite:///{database}'})
    with app.app_context():
        client_id = make_client().id

    workers = 8
    barrier = threading.Barrier(workers)
    numbers, errors = [], []

    def create():
        with app.app_context():
            try:
                barrier.wait()
                invoice = InvoiceService.create_invoice({'client_id': client_id, 'amount': Decimal('100.00')})
                numbers.append(invoice.invoice_number)
            except Exception as e:  # collected and asserted below
                errors.append(e)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=create) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert sorted(numbers) == [f'INV-{n:04d}' for n in range(1, workers + 1)]

    with app.app_context():
        db.drop_all()
        db.engine.dispose()
