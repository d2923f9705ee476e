# schemas/session_schemas.py
from datetime import date

from marshmallow import Schema, fields, validate, validates_schema, ValidationError

SESSION_TYPES = ["personal", "group", "class"]


class SessionCreateSchema(Schema):
    """
    Schema for booking a session.
    - Either client_package_id (package-paid) or price (direct) may be given
    - recurring_weeks > 1 books the same slot weekly
    - end_time may be omitted and derived from duration
    """
    client_id = fields.Integer(required=True, validate=validate.Range(min=1))
    trainer_id = fields.Integer(allow_none=True, validate=validate.Range(min=1))
    date = fields.Date(required=True)
    start_time = fields.Time(required=True)
    end_time = fields.Time(allow_none=True)
    duration = fields.Integer(allow_none=True, validate=validate.Range(min=5, max=600))
    session_type = fields.String(load_default="personal", validate=validate.OneOf(SESSION_TYPES))
    location = fields.String(allow_none=True, validate=validate.Length(max=200))
    notes = fields.String(allow_none=True, validate=validate.Length(max=2000))
    price = fields.Decimal(places=2, allow_none=True, validate=validate.Range(min=0))
    client_package_id = fields.Integer(allow_none=True, validate=validate.Range(min=1))
    recurring_weeks = fields.Integer(load_default=1, validate=validate.Range(min=1, max=52))

    @validates_schema
    def validate_payment_source(self, data, **kwargs):
        if data.get('client_package_id') and data.get('price'):
            raise ValidationError("Use either a package or a direct price, not both", "price")
        if data.get('end_time') and data['end_time'] <= data['start_time']:
            raise ValidationError("End time must be after start time", "end_time")


class PortalBookingSchema(Schema):
    """Client portal booking: always against one of the client's own packages."""
    client_package_id = fields.Integer(required=True, validate=validate.Range(min=1))
    date = fields.Date(required=True)
    start_time = fields.Time(required=True)
    end_time = fields.Time(allow_none=True)
    duration = fields.Integer(allow_none=True, validate=validate.Range(min=5, max=600))
    session_type = fields.String(load_default="personal", validate=validate.OneOf(SESSION_TYPES))
    notes = fields.String(allow_none=True, validate=validate.Length(max=2000))

    @validates_schema
    def validate_date_not_past(self, data, **kwargs):
        if data.get('date') and data['date'] < date.today():
            raise ValidationError("Sessions cannot be booked in the past", "date")


class SessionUpdateSchema(Schema):
    date = fields.Date()
    start_time = fields.Time()
    end_time = fields.Time()
    duration = fields.Integer(validate=validate.Range(min=5, max=600))
    session_type = fields.String(validate=validate.OneOf(SESSION_TYPES))
    location = fields.String(allow_none=True, validate=validate.Length(max=200))
    notes = fields.String(allow_none=True, validate=validate.Length(max=2000))
    trainer_id = fields.Integer(allow_none=True, validate=validate.Range(min=1))
    status = fields.String()


class SessionStatusSchema(Schema):
    status = fields.String(
        required=True,
        validate=validate.OneOf(["completed", "cancelled", "no_show"])
    )
    reason = fields.String(allow_none=True, validate=validate.Length(max=500))
    refund = fields.Boolean(load_default=True)


class ClientCancellationSchema(Schema):
    reason = fields.String(allow_none=True, validate=validate.Length(max=500))


class SessionQuerySchema(Schema):
    start_date = fields.Date(load_default=None)
    end_date = fields.Date(load_default=None)
    client_id = fields.Integer(load_default=None)
    trainer_id = fields.Integer(load_default=None)
    status = fields.String(
        load_default=None,
        validate=validate.OneOf(["scheduled", "completed", "cancelled", "no_show"])
    )
