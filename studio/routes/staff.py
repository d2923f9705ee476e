# routes/staff.py
from flask import request, jsonify

from . import staff_bp
from ..models.user import Permission
from ..schemas.auth_schemas import StaffCreateSchema, StaffUpdateSchema
from ..security import current_actor, permission_required
from ..services.auth_service import StaffService


@staff_bp.route("", methods=["GET"])
@permission_required(Permission.MANAGE_STAFF)
def list_staff():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    staff = StaffService.list_staff(active_only=not include_inactive)
    return jsonify([u.serialize() for u in staff]), 200


@staff_bp.route("", methods=["POST"])
@permission_required(Permission.MANAGE_STAFF)
def create_staff():
    """
    Create a trainer or admin account.

    JSON Payload (example):
    {
      "email": "coach@example.com",
      "password": "Tr4iner!Start",
      "first_name": "Omar",
      "last_name": "Haddad",
      "role": "trainer",
      "permissions": ["bookings_view_all", "clients_view"]
    }
    """
    data = StaffCreateSchema().load(request.get_json() or {})
    user = StaffService.create_staff(data)
    return jsonify({"message": "Staff account created", "user": user.serialize()}), 201


@staff_bp.route("/<int:user_id>", methods=["GET"])
@permission_required(Permission.MANAGE_STAFF)
def get_staff(user_id):
    return jsonify(StaffService.get_staff(user_id).serialize()), 200


@staff_bp.route("/<int:user_id>", methods=["PUT"])
@permission_required(Permission.MANAGE_STAFF)
def update_staff(user_id):
    """Edit profile fields, role, permission overrides or deactivate the account."""
    data = StaffUpdateSchema().load(request.get_json() or {})
    user = StaffService.update_staff(user_id, data, actor=current_actor())
    return jsonify(user.serialize()), 200
