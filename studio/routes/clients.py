# routes/clients.py
from flask import request, jsonify

from . import client_bp
from ..models.user import Permission
from ..schemas.client_schemas import (
    ClientCreateSchema,
    ClientUpdateSchema,
    ClientStatusSchema,
    TrainerAssignmentSchema,
    PortalPermissionsSchema,
    PortalAccountSchema,
    ClientNoteSchema
)
from ..security import current_actor, permission_required, staff_required
from ..services.auth_service import AuthService
from ..services.client_service import ClientService
from ..services.ledger_service import LedgerService
from ..services.package_service import PackageService
from ..services.session_service import SessionService

VIEW_CLIENTS = (Permission.CLIENTS_VIEW, Permission.CLIENTS_VIEW_ALL)


@client_bp.route("", methods=["GET"])
@permission_required(*VIEW_CLIENTS)
def list_clients():
    """
    List clients visible to the caller.

    Query params: search, status, trainer_id
    """
    clients = ClientService.list_clients(
        search=request.args.get("search"),
        status=request.args.get("status"),
        trainer_id=request.args.get("trainer_id", type=int),
        actor=current_actor()
    )
    return jsonify([c.to_dict() for c in clients]), 200


@client_bp.route("", methods=["POST"])
@staff_required
def create_client():
    """
    Create a client record.

    JSON Payload (example):
    {
      "first_name": "Sara",
      "last_name": "Ali",
      "email": "sara@example.com",
      "phone": "+971500000000",
      "status": "lead",
      "lead_source": "instagram"
    }
    """
    data = ClientCreateSchema().load(request.get_json() or {})
    client = ClientService.create_client(data, actor=current_actor())
    return jsonify({"message": "Client created successfully!", "client": client.to_dict()}), 201


@client_bp.route("/stats", methods=["GET"])
@permission_required(*VIEW_CLIENTS)
def client_stats():
    return jsonify(ClientService.get_stats(current_actor())), 200


@client_bp.route("/<int:client_id>", methods=["GET"])
@permission_required(*VIEW_CLIENTS)
def get_client(client_id):
    """
    Client detail: record, packages, sessions and, for callers allowed to
    see financial information, the ledger and balance.
    """
    actor = current_actor()
    client = ClientService.get_client(client_id, actor)

    response = client.to_dict()
    response["packages"] = [cp.serialize() for cp in PackageService.get_client_packages(client.id)]
    response["sessions"] = [s.to_dict() for s in SessionService.list_sessions(client_id=client.id, actor=actor)]
    if actor.has_permission(Permission.CLIENTS_SHOW_FINANCIAL_INFO):
        response["payments"] = [p.serialize() for p in LedgerService.list_entries(client_id=client.id)]
        response["balance"] = LedgerService.get_client_balance(client.id).to_dict()
    return jsonify(response), 200


@client_bp.route("/<int:client_id>", methods=["PUT"])
@permission_required(*VIEW_CLIENTS)
def update_client(client_id):
    data = ClientUpdateSchema().load(request.get_json() or {})
    client = ClientService.update_client(client_id, data, actor=current_actor())
    return jsonify(client.to_dict()), 200


@client_bp.route("/<int:client_id>/status", methods=["PATCH"])
@permission_required(Permission.CLIENTS_CHANGE_STATUS)
def change_client_status(client_id):
    data = ClientStatusSchema().load(request.get_json() or {})
    client = ClientService.change_status(client_id, data["status"], actor=current_actor())
    return jsonify(client.to_dict()), 200


@client_bp.route("/<int:client_id>/trainer", methods=["PUT"])
@permission_required(Permission.CLIENTS_ASSIGN_SERVICES)
def assign_trainer(client_id):
    data = TrainerAssignmentSchema().load(request.get_json() or {})
    client = ClientService.assign_trainer(client_id, data["trainer_id"], actor=current_actor())
    return jsonify(client.to_dict()), 200


@client_bp.route("/<int:client_id>/portal-permissions", methods=["PUT"])
@permission_required(Permission.CLIENTS_CHANGE_STATUS)
def set_portal_permissions(client_id):
    """Toggle the client's self-service booking and cancellation."""
    data = PortalPermissionsSchema().load(request.get_json() or {})
    client = ClientService.set_portal_permissions(
        client_id,
        can_book_sessions=data.get("can_book_sessions"),
        can_cancel_sessions=data.get("can_cancel_sessions"),
        actor=current_actor()
    )
    return jsonify(client.to_dict()), 200


@client_bp.route("/<int:client_id>/portal-account", methods=["POST"])
@permission_required(Permission.CLIENTS_CHANGE_STATUS)
def create_portal_account(client_id):
    data = PortalAccountSchema().load(request.get_json() or {})
    ClientService.get_client(client_id, current_actor())
    user = AuthService.create_portal_account(client_id, data["password"])
    return jsonify({"message": "Portal account created", "user": user.serialize()}), 201


@client_bp.route("/<int:client_id>/balance", methods=["GET"])
@permission_required(Permission.CLIENTS_SHOW_FINANCIAL_INFO)
def client_balance(client_id):
    ClientService.get_client(client_id, current_actor())
    return jsonify(LedgerService.get_client_balance(client_id).to_dict()), 200


@client_bp.route("/<int:client_id>/packages", methods=["GET"])
@permission_required(*VIEW_CLIENTS)
def client_packages(client_id):
    ClientService.get_client(client_id, current_actor())
    usable_only = request.args.get("usable", "false").lower() == "true"
    packages = PackageService.get_client_packages(client_id, usable_only=usable_only)
    return jsonify([cp.serialize() for cp in packages]), 200


@client_bp.route("/<int:client_id>/notes", methods=["GET"])
@permission_required(*VIEW_CLIENTS)
def list_notes(client_id):
    notes = ClientService.list_notes(client_id, actor=current_actor())
    return jsonify([n.serialize() for n in notes]), 200


@client_bp.route("/<int:client_id>/notes", methods=["POST"])
@permission_required(*VIEW_CLIENTS)
def add_note(client_id):
    data = ClientNoteSchema().load(request.get_json() or {})
    note = ClientService.add_note(client_id, data, actor=current_actor())
    return jsonify(note.serialize()), 201


@client_bp.route("/<int:client_id>/notes/<int:note_id>", methods=["DELETE"])
@permission_required(*VIEW_CLIENTS)
def delete_note(client_id, note_id):
    ClientService.delete_note(client_id, note_id, actor=current_actor())
    return jsonify({"message": "Note deleted"}), 200
