# routes/portal.py
"""Client self-service endpoints. Every view works on the caller's own client record."""
from flask import request, jsonify

from . import portal_bp
from ..errors import Unauthorized
from ..models.user import Role
from ..schemas.client_schemas import ProfileUpdateSchema
from ..schemas.session_schemas import PortalBookingSchema, ClientCancellationSchema
from ..security import current_actor, roles_required, client_for_user
from ..services.client_service import ClientService
from ..services.ledger_service import LedgerService
from ..services.package_service import PackageService
from ..services.session_service import SessionService

PORTAL_ROLES = (Role.CLIENT.value, Role.LEAD.value)


@portal_bp.route("/me", methods=["GET"])
@roles_required(*PORTAL_ROLES)
def my_client_record():
    client = client_for_user(current_actor())
    return jsonify(client.to_dict()), 200


@portal_bp.route("/profile", methods=["PUT"])
@roles_required(*PORTAL_ROLES)
def update_profile():
    data = ProfileUpdateSchema().load(request.get_json() or {})
    user = current_actor()
    client = ClientService.update_own_profile(user, data)
    return jsonify({
        "user": user.serialize(),
        "client": client.to_dict() if client is not None else None
    }), 200


@portal_bp.route("/sessions", methods=["GET"])
@roles_required(*PORTAL_ROLES)
def my_sessions():
    client = client_for_user(current_actor())
    if request.args.get("upcoming", "false").lower() == "true":
        sessions = SessionService.get_upcoming_sessions(days=None, limit=None, client_id=client.id)
    else:
        sessions = SessionService.list_sessions(client_id=client.id)
    return jsonify([s.to_dict() for s in sessions]), 200


@portal_bp.route("/sessions/next", methods=["GET"])
@roles_required(*PORTAL_ROLES)
def next_session():
    client = client_for_user(current_actor())
    upcoming = SessionService.get_upcoming_sessions(days=None, limit=1, client_id=client.id)
    return jsonify(upcoming[0].to_dict() if upcoming else None), 200


@portal_bp.route("/sessions/stats", methods=["GET"])
@roles_required(*PORTAL_ROLES)
def my_session_stats():
    client = client_for_user(current_actor())
    return jsonify(SessionService.get_session_stats(client_id=client.id)), 200


@portal_bp.route("/sessions", methods=["POST"])
@roles_required(*PORTAL_ROLES)
def book_session():
    """
    Book a session against one of the caller's packages. Requires the
    studio to have enabled self-booking for the client.

    JSON Payload:
    {
      "client_package_id": 7,
      "date": "2025-03-10",
      "start_time": "09:00"
    }
    """
    actor = current_actor()
    client = client_for_user(actor)
    if not client.can_book_sessions:
        raise Unauthorized("Online booking is not enabled for your account")

    data = PortalBookingSchema().load(request.get_json() or {})
    data["client_id"] = client.id
    data["trainer_id"] = client.assigned_trainer_id
    booking = SessionService.book_session(data, actor=actor)
    return jsonify({
        "message": "Session booked successfully!",
        "sessions": [s.to_dict() for s in booking.sessions],
        "warnings": booking.warnings
    }), 201


@portal_bp.route("/sessions/<int:session_id>/cancellation", methods=["GET"])
@roles_required(*PORTAL_ROLES)
def cancellation_eligibility(session_id):
    """Whether the session can still be cancelled, and how long until it starts."""
    client = client_for_user(current_actor())
    eligibility = SessionService.get_cancellation_eligibility(session_id, client)
    return jsonify(eligibility.to_dict()), 200


@portal_bp.route("/sessions/<int:session_id>/cancel", methods=["POST"])
@roles_required(*PORTAL_ROLES)
def cancel_session(session_id):
    actor = current_actor()
    client = client_for_user(actor)
    data = ClientCancellationSchema().load(request.get_json(silent=True) or {})
    session = SessionService.cancel_by_client(session_id, client, reason=data.get("reason"), actor=actor)
    return jsonify({"message": "Session cancelled", "session": session.to_dict()}), 200


@portal_bp.route("/packages", methods=["GET"])
@roles_required(*PORTAL_ROLES)
def my_packages():
    client = client_for_user(current_actor())
    usable_only = request.args.get("usable", "false").lower() == "true"
    packages = PackageService.get_client_packages(client.id, usable_only=usable_only)
    return jsonify([cp.serialize() for cp in packages]), 200


@portal_bp.route("/balance", methods=["GET"])
@roles_required(*PORTAL_ROLES)
def my_balance():
    client = client_for_user(current_actor())
    return jsonify(LedgerService.get_client_balance(client.id).to_dict()), 200


@portal_bp.route("/payments", methods=["GET"])
@roles_required(*PORTAL_ROLES)
def my_payments():
    client = client_for_user(current_actor())
    return jsonify([p.serialize() for p in LedgerService.list_entries(client_id=client.id)]), 200
