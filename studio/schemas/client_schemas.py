# schemas/client_schemas.py
from marshmallow import Schema, fields, validate

CLIENT_STATUSES = ["lead", "active", "inactive"]


class ClientCreateSchema(Schema):
    """
    Schema for creating a client record.
    - Only name and email are required
    - assigned_trainer_id defaults to the creating trainer
    """
    first_name = fields.String(required=True, validate=validate.Length(min=1, max=100))
    last_name = fields.String(required=True, validate=validate.Length(min=1, max=100))
    email = fields.Email(required=True)
    phone = fields.String(allow_none=True, validate=validate.Length(max=50))
    address = fields.String(allow_none=True, validate=validate.Length(max=255))
    date_of_birth = fields.Date(allow_none=True)
    emergency_contact_name = fields.String(allow_none=True, validate=validate.Length(max=100))
    emergency_contact_phone = fields.String(allow_none=True, validate=validate.Length(max=50))
    goals = fields.String(allow_none=True)
    medical_notes = fields.String(allow_none=True)
    lead_source = fields.String(allow_none=True, validate=validate.Length(max=100))
    tags = fields.List(fields.String(validate=validate.Length(min=1, max=50)), load_default=list)
    status = fields.String(load_default="lead", validate=validate.OneOf(CLIENT_STATUSES))
    assigned_trainer_id = fields.Integer(allow_none=True, validate=validate.Range(min=1))
    can_book_sessions = fields.Boolean(load_default=False)
    can_cancel_sessions = fields.Boolean(load_default=False)


class ClientUpdateSchema(Schema):
    first_name = fields.String(validate=validate.Length(min=1, max=100))
    last_name = fields.String(validate=validate.Length(min=1, max=100))
    email = fields.Email()
    phone = fields.String(allow_none=True, validate=validate.Length(max=50))
    address = fields.String(allow_none=True, validate=validate.Length(max=255))
    date_of_birth = fields.Date(allow_none=True)
    emergency_contact_name = fields.String(allow_none=True, validate=validate.Length(max=100))
    emergency_contact_phone = fields.String(allow_none=True, validate=validate.Length(max=50))
    goals = fields.String(allow_none=True)
    medical_notes = fields.String(allow_none=True)
    lead_source = fields.String(allow_none=True, validate=validate.Length(max=100))
    tags = fields.List(fields.String(validate=validate.Length(min=1, max=50)))


class ClientStatusSchema(Schema):
    status = fields.String(required=True, validate=validate.OneOf(CLIENT_STATUSES))


class TrainerAssignmentSchema(Schema):
    trainer_id = fields.Integer(required=True, allow_none=True, validate=validate.Range(min=1))


class PortalPermissionsSchema(Schema):
    can_book_sessions = fields.Boolean()
    can_cancel_sessions = fields.Boolean()


class PortalAccountSchema(Schema):
    password = fields.String(required=True, load_only=True)


class ClientNoteSchema(Schema):
    note_type = fields.String(
        load_default="general",
        validate=validate.OneOf(["general", "progress", "injury", "nutrition", "billing"])
    )
    title = fields.String(allow_none=True, validate=validate.Length(max=200))
    content = fields.String(required=True, validate=validate.Length(min=1, max=5000))
    is_private = fields.Boolean(load_default=False)


class ProfileUpdateSchema(Schema):
    """Client portal: edit own profile (mirrored onto the client record)."""
    first_name = fields.String(validate=validate.Length(min=1, max=100))
    last_name = fields.String(validate=validate.Length(min=1, max=100))
    phone = fields.String(allow_none=True, validate=validate.Length(max=50))
    address = fields.String(allow_none=True, validate=validate.Length(max=255))
    date_of_birth = fields.Date(allow_none=True)
    emergency_contact = fields.String(allow_none=True, validate=validate.Length(max=255))
    medical_notes = fields.String(allow_none=True)
    goals = fields.String(allow_none=True)
    avatar_url = fields.URL(allow_none=True)
