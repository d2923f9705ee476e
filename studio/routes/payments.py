# routes/payments.py
from flask import request, jsonify

from . import payments_bp
from ..models.user import Permission
from ..schemas.finance_schemas import (
    PaymentCreateSchema,
    ChargeCreateSchema,
    EntryStatusSchema,
    DateRangeSchema
)
from ..security import current_actor, permission_required
from ..services.ledger_service import LedgerService

FINANCE_VIEW = (Permission.MANAGE_FINANCES, Permission.CLIENTS_SHOW_FINANCIAL_INFO)


@payments_bp.route("", methods=["GET"])
@permission_required(*FINANCE_VIEW)
def list_entries():
    """
    Ledger entries, newest first.

    Query params: client_id, start_date, end_date, entry_type (charge|payment)
    """
    params = DateRangeSchema().load(request.args)
    entries = LedgerService.list_entries(
        client_id=params["client_id"],
        start_date=params["start_date"],
        end_date=params["end_date"],
        entry_type=params["entry_type"]
    )
    return jsonify([e.serialize() for e in entries]), 200


@payments_bp.route("", methods=["POST"])
@permission_required(Permission.MAKE_PAYMENTS)
def record_payment():
    """
    Record money received from a client.

    JSON Payload:
    {
      "client_id": 4,
      "amount": "500.00",
      "payment_method": "card"
    }
    """
    data = PaymentCreateSchema().load(request.get_json() or {})
    entry = LedgerService.record_payment(
        data["client_id"],
        data["amount"],
        data["payment_method"],
        payment_date=data.get("payment_date"),
        description=data.get("description"),
        actor=current_actor(),
        client_package_id=data.get("client_package_id")
    )
    return jsonify({
        "message": "Payment recorded",
        "payment": entry.serialize(),
        "balance": LedgerService.get_client_balance(entry.client_id).to_dict()
    }), 201


@payments_bp.route("/charges", methods=["POST"])
@permission_required(Permission.MAKE_PAYMENTS)
def record_charge():
    data = ChargeCreateSchema().load(request.get_json() or {})
    entry = LedgerService.record_charge(
        data["client_id"],
        data["amount"],
        payment_date=data.get("payment_date"),
        description=data["description"],
        actor=current_actor(),
        status=data["status"]
    )
    return jsonify({"message": "Charge recorded", "payment": entry.serialize()}), 201


@payments_bp.route("/<int:entry_id>/status", methods=["PATCH"])
@permission_required(Permission.MANAGE_FINANCES)
def update_entry_status(entry_id):
    data = EntryStatusSchema().load(request.get_json() or {})
    entry = LedgerService.update_entry_status(entry_id, data["status"])
    return jsonify(entry.serialize()), 200


@payments_bp.route("/balances", methods=["GET"])
@permission_required(Permission.CLIENTS_SHOW_FINANCIAL_INFO)
def client_balances():
    return jsonify([b.to_dict() for b in LedgerService.get_client_balances()]), 200


@payments_bp.route("/stats", methods=["GET"])
@permission_required(Permission.MANAGE_FINANCES)
def financial_stats():
    params = DateRangeSchema().load(request.args)
    return jsonify(LedgerService.get_financial_stats(params["start_date"], params["end_date"])), 200
