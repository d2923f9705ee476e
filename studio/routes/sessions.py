# routes/sessions.py
from flask import request, jsonify

from . import sessions_bp
from ..errors import NotFound
from ..models.user import Permission
from ..schemas.session_schemas import (
    SessionCreateSchema,
    SessionUpdateSchema,
    SessionStatusSchema,
    SessionQuerySchema
)
from ..security import current_actor, permission_required, can_view_all_bookings
from ..services.session_service import SessionService

VIEW_BOOKINGS = (Permission.BOOKINGS_VIEW_OWN, Permission.BOOKINGS_VIEW_ALL)
EDIT_BOOKINGS = (Permission.BOOKINGS_CREATE_EDIT_OWN, Permission.BOOKINGS_CREATE_EDIT_ALL)
RECONCILE_BOOKINGS = (Permission.BOOKINGS_RECONCILE_OWN, Permission.BOOKINGS_RECONCILE_ALL)


@sessions_bp.route("", methods=["GET"])
@permission_required(*VIEW_BOOKINGS)
def list_sessions():
    """
    Sessions in a date range (calendar view).

    Query params: start_date, end_date, client_id, trainer_id, status
    """
    params = SessionQuerySchema().load(request.args)
    sessions = SessionService.list_sessions(actor=current_actor(), **params)
    return jsonify([s.to_dict() for s in sessions]), 200


@sessions_bp.route("", methods=["POST"])
@permission_required(*EDIT_BOOKINGS)
def book_session():
    """
    Book a session (or a weekly series).

    JSON Payload (example):
    {
      "client_id": 4,
      "trainer_id": 2,
      "date": "2025-03-10",
      "start_time": "09:00",
      "end_time": "10:00",
      "client_package_id": 7,
      "recurring_weeks": 4
    }

    Response:
      201 Created
      {
        "message": "Session booked successfully!",
        "sessions": [...],
        "warnings": []
      }
    """
    data = SessionCreateSchema().load(request.get_json() or {})
    booking = SessionService.book_session(data, actor=current_actor())
    return jsonify({
        "message": "Session booked successfully!",
        "sessions": [s.to_dict() for s in booking.sessions],
        "warnings": booking.warnings
    }), 201


@sessions_bp.route("/upcoming", methods=["GET"])
@permission_required(*VIEW_BOOKINGS)
def upcoming_sessions():
    sessions = SessionService.get_upcoming_sessions(
        days=request.args.get("days", 7, type=int),
        limit=request.args.get("limit", 5, type=int),
        actor=current_actor()
    )
    return jsonify([s.to_dict() for s in sessions]), 200


@sessions_bp.route("/stats", methods=["GET"])
@permission_required(*VIEW_BOOKINGS)
def session_stats():
    return jsonify(SessionService.get_session_stats(actor=current_actor())), 200


@sessions_bp.route("/<int:session_id>", methods=["GET"])
@permission_required(*VIEW_BOOKINGS)
def get_session(session_id):
    actor = current_actor()
    session = SessionService.get_session(session_id)
    if not can_view_all_bookings(actor) and session.trainer_id != actor.id:
        raise NotFound('Session', session_id)
    return jsonify(session.to_dict()), 200


@sessions_bp.route("/<int:session_id>", methods=["PUT"])
@permission_required(*EDIT_BOOKINGS)
def update_session(session_id):
    """Reschedule or edit details. The status cannot be changed here."""
    data = SessionUpdateSchema().load(request.get_json() or {})
    session = SessionService.update_session(session_id, data, actor=current_actor())
    return jsonify(session.to_dict()), 200


@sessions_bp.route("/<int:session_id>/status", methods=["PATCH"])
@permission_required(*RECONCILE_BOOKINGS)
def update_session_status(session_id):
    """
    Complete, cancel or mark a session as no-show.

    JSON Payload:
    {
      "status": "completed"
    }

    Completing a package session takes one session off the package (once,
    however many times the request is repeated). When the package is
    already empty nothing is deducted and "package_warning" says so.
    """
    data = SessionStatusSchema().load(request.get_json() or {})
    change = SessionService.update_status(
        session_id,
        data["status"],
        reason=data.get("reason"),
        actor=current_actor(),
        refund=data["refund"]
    )
    return jsonify(change.to_dict()), 200


@sessions_bp.route("/<int:session_id>", methods=["DELETE"])
@permission_required(*EDIT_BOOKINGS)
def delete_session(session_id):
    """
    Delete a session. Sessions that used a package credit need
    ?reverse_consumption=true, which gives the credit back first.
    """
    reverse = request.args.get("reverse_consumption", "false").lower() == "true"
    SessionService.delete_session(session_id, reverse_consumption=reverse, actor=current_actor())
    return jsonify({"message": "Session deleted"}), 200
