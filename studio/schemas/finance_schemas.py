# schemas/finance_schemas.py
from marshmallow import Schema, fields, validate, validates_schema, ValidationError

PAYMENT_METHODS = ["cash", "card", "bank_transfer", "online", "cheque", "other"]


class PaymentCreateSchema(Schema):
    """Money received from a client (always a positive ledger entry)."""
    client_id = fields.Integer(required=True, validate=validate.Range(min=1))
    amount = fields.Decimal(required=True, places=2, validate=validate.Range(min=0, min_inclusive=False))
    payment_method = fields.String(required=True, validate=validate.OneOf(PAYMENT_METHODS))
    payment_date = fields.Date(allow_none=True)
    description = fields.String(allow_none=True, validate=validate.Length(max=255))
    client_package_id = fields.Integer(allow_none=True, validate=validate.Range(min=1))


class ChargeCreateSchema(Schema):
    """Manual charge; ``amount`` is the positive size of the charge."""
    client_id = fields.Integer(required=True, validate=validate.Range(min=1))
    amount = fields.Decimal(required=True, places=2, validate=validate.Range(min=0, min_inclusive=False))
    description = fields.String(required=True, validate=validate.Length(min=1, max=255))
    payment_date = fields.Date(allow_none=True)
    status = fields.String(load_default="completed", validate=validate.OneOf(["pending", "completed"]))


class EntryStatusSchema(Schema):
    status = fields.String(required=True, validate=validate.OneOf(["pending", "completed", "failed"]))


class LineItemSchema(Schema):
    description = fields.String(required=True, validate=validate.Length(min=1, max=255))
    quantity = fields.Decimal(load_default=1, places=2, validate=validate.Range(min=0, min_inclusive=False))
    unit_price = fields.Decimal(required=True, places=2, validate=validate.Range(min=0))


class InvoiceCreateSchema(Schema):
    """
    Schema for creating an invoice.
    - amount may be omitted when line_items are given (sum of quantity x unit_price)
    - due_date defaults to issue_date + payment_terms
    """
    client_id = fields.Integer(required=True, validate=validate.Range(min=1))
    amount = fields.Decimal(places=2, allow_none=True, validate=validate.Range(min=0))
    tax_amount = fields.Decimal(places=2, load_default=0, validate=validate.Range(min=0))
    issue_date = fields.Date(allow_none=True)
    due_date = fields.Date(allow_none=True)
    payment_terms = fields.Integer(allow_none=True, validate=validate.Range(min=0, max=365))
    description = fields.String(allow_none=True, validate=validate.Length(max=2000))
    line_items = fields.List(fields.Nested(LineItemSchema), load_default=list)
    notes = fields.String(allow_none=True, validate=validate.Length(max=2000))

    @validates_schema
    def validate_amount_source(self, data, **kwargs):
        if data.get('amount') is None and not data.get('line_items'):
            raise ValidationError("Provide an amount or at least one line item", "amount")


class InvoiceUpdateSchema(Schema):
    amount = fields.Decimal(places=2, validate=validate.Range(min=0))
    tax_amount = fields.Decimal(places=2, validate=validate.Range(min=0))
    issue_date = fields.Date()
    due_date = fields.Date()
    payment_terms = fields.Integer(validate=validate.Range(min=0, max=365))
    description = fields.String(allow_none=True, validate=validate.Length(max=2000))
    line_items = fields.List(fields.Nested(LineItemSchema))
    notes = fields.String(allow_none=True, validate=validate.Length(max=2000))


class InvoiceStatusSchema(Schema):
    status = fields.String(
        required=True,
        validate=validate.OneOf(["draft", "sent", "paid", "overdue", "cancelled"])
    )
    paid_date = fields.Date(allow_none=True)


class ExpenseSchema(Schema):
    """Studio expense (rent, equipment, marketing...)."""
    category = fields.String(required=True, validate=validate.Length(min=1, max=100))
    subcategory = fields.String(allow_none=True, validate=validate.Length(max=100))
    amount = fields.Decimal(required=True, places=2, validate=validate.Range(min=0, min_inclusive=False))
    description = fields.String(required=True, validate=validate.Length(min=1))
    vendor = fields.String(allow_none=True, validate=validate.Length(max=200))
    expense_date = fields.Date(allow_none=True)
    payment_method = fields.String(allow_none=True, validate=validate.Length(max=50))
    receipt_url = fields.URL(allow_none=True)
    is_recurring = fields.Boolean(load_default=False)
    recurring_frequency = fields.String(
        allow_none=True,
        validate=validate.OneOf(["weekly", "monthly", "quarterly", "yearly"])
    )
    tax_deductible = fields.Boolean(load_default=False)
    status = fields.String(load_default="completed", validate=validate.OneOf(["pending", "completed", "reimbursed"]))

    @validates_schema
    def validate_recurring(self, data, **kwargs):
        if data.get('is_recurring') and not data.get('recurring_frequency'):
            raise ValidationError("Recurring expenses need a frequency", "recurring_frequency")


class DateRangeSchema(Schema):
    start_date = fields.Date(load_default=None)
    end_date = fields.Date(load_default=None)
    client_id = fields.Integer(load_default=None)
    category = fields.String(load_default=None)
    status = fields.String(load_default=None)
    entry_type = fields.String(load_default=None, validate=validate.OneOf(["charge", "payment"]))

    @validates_schema
    def validate_range(self, data, **kwargs):
        if data.get('start_date') and data.get('end_date') and data['end_date'] < data['start_date']:
            raise ValidationError("End date must be after start date", "end_date")


class ReportRequestSchema(Schema):
    """Schema for report requests - both display and download"""
    view_type = fields.String(
        load_default="DISPLAY",
        validate=validate.OneOf([
            "DISPLAY",  # For frontend JSON data
            "PDF",  # For file downloads
            "CSV",
            "EXCEL"
        ]),
        metadata={'description': "How the report should be returned"}
    )
    report_type = fields.String(
        required=True,
        validate=validate.OneOf([
            "LEDGER",
            "PROFIT_AND_LOSS",
            "CLIENT_BALANCES",
            "SESSIONS"
        ])
    )
    start_date = fields.Date(load_default=None)
    end_date = fields.Date(load_default=None)

    @validates_schema
    def validate_range(self, data, **kwargs):
        if data.get('start_date') and data.get('end_date') and data['end_date'] < data['start_date']:
            raise ValidationError("End date must be after start date", "end_date")
