# schemas/auth_schemas.py
from marshmallow import Schema, fields, validate

from ..models.user import Permission

PERMISSION_NAMES = [p.name.lower() for p in Permission if p]


class RegisterSchema(Schema):
    email = fields.Email(required=True)
    password = fields.String(required=True, load_only=True)
    first_name = fields.String(allow_none=True, validate=validate.Length(max=100))
    last_name = fields.String(allow_none=True, validate=validate.Length(max=100))
    phone = fields.String(allow_none=True, validate=validate.Length(max=50))


class LoginSchema(Schema):
    email = fields.Email(required=True)
    password = fields.String(required=True, load_only=True)
    remember = fields.Boolean(load_default=False)


class PasswordChangeSchema(Schema):
    current_password = fields.String(required=True, load_only=True)
    new_password = fields.String(required=True, load_only=True)


class StaffCreateSchema(Schema):
    """
    Admin creating a staff account.
    - role is 'trainer' unless stated
    - permissions overrides the role's default capability set
    """
    email = fields.Email(required=True)
    password = fields.String(required=True, load_only=True)
    first_name = fields.String(required=True, validate=validate.Length(min=1, max=100))
    last_name = fields.String(required=True, validate=validate.Length(min=1, max=100))
    phone = fields.String(allow_none=True, validate=validate.Length(max=50))
    role = fields.String(load_default="trainer", validate=validate.OneOf(["admin", "trainer"]))
    permissions = fields.List(
        fields.String(validate=validate.OneOf(PERMISSION_NAMES)),
        allow_none=True,
        load_default=None
    )


class StaffUpdateSchema(Schema):
    first_name = fields.String(validate=validate.Length(min=1, max=100))
    last_name = fields.String(validate=validate.Length(min=1, max=100))
    phone = fields.String(allow_none=True, validate=validate.Length(max=50))
    role = fields.String(validate=validate.OneOf(["admin", "trainer"]))
    permissions = fields.List(fields.String(validate=validate.OneOf(PERMISSION_NAMES)), allow_none=True)
    is_active = fields.Boolean()
