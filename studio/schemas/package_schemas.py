# schemas/package_schemas.py
from marshmallow import Schema, fields, validate, validates_schema, ValidationError


class PackageSchema(Schema):
    """Catalog package (template sold to clients)."""
    name = fields.String(required=True, validate=validate.Length(min=1, max=100))
    description = fields.String(allow_none=True)
    price = fields.Decimal(required=True, places=2, validate=validate.Range(min=0))
    sessions_included = fields.Integer(
        required=True,
        validate=validate.Range(min=1),
        metadata={'description': "Number of sessions the package grants"}
    )
    duration_days = fields.Integer(
        required=True,
        validate=validate.Range(min=1),
        metadata={'description': "Days from purchase until the package expires"}
    )


class PackageAssignSchema(Schema):
    """
    Selling a package to a client.
    - price defaults to the catalog price
    - expiry_date defaults to purchase date + duration_days
    - payment_method is required when payment_status is 'paid'
    """
    client_id = fields.Integer(required=True, validate=validate.Range(min=1))
    package_id = fields.Integer(required=True, validate=validate.Range(min=1))
    price = fields.Decimal(places=2, allow_none=True, validate=validate.Range(min=0))
    purchase_date = fields.Date(allow_none=True)
    expiry_date = fields.Date(allow_none=True)
    payment_status = fields.String(load_default="unpaid", validate=validate.OneOf(["paid", "unpaid"]))
    payment_method = fields.String(allow_none=True, validate=validate.Length(max=50))
    notes = fields.String(allow_none=True, validate=validate.Length(max=1000))

    @validates_schema
    def validate_payment(self, data, **kwargs):
        if data.get('payment_status') == 'paid' and not data.get('payment_method'):
            raise ValidationError("Payment method is required for paid packages", "payment_method")


class SessionAdjustmentSchema(Schema):
    delta = fields.Integer(required=True, validate=validate.Range(min=-1000, max=1000))
    notes = fields.String(allow_none=True, validate=validate.Length(max=255))
