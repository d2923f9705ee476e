# routes/packages.py
from flask import request, jsonify, current_app

from . import packages_bp
from ..models.user import Permission
from ..schemas.package_schemas import PackageSchema, PackageAssignSchema, SessionAdjustmentSchema
from ..security import current_actor, permission_required, staff_required
from ..services.package_service import PackageService


@packages_bp.route("", methods=["GET"])
@staff_required
def list_packages():
    return jsonify([p.serialize() for p in PackageService.list_packages()]), 200


@packages_bp.route("", methods=["POST"])
@permission_required(Permission.MANAGE_PACKAGES)
def create_package():
    """
    Add a package to the catalog.

    JSON Payload:
    {
      "name": "10 Session Pack",
      "price": "1000.00",
      "sessions_included": 10,
      "duration_days": 90
    }
    """
    data = PackageSchema().load(request.get_json() or {})
    package = PackageService.create_package(data)
    return jsonify(package.serialize()), 201


@packages_bp.route("/<int:package_id>", methods=["GET"])
@staff_required
def get_package(package_id):
    return jsonify(PackageService.get_package(package_id).serialize()), 200


@packages_bp.route("/<int:package_id>", methods=["PUT"])
@permission_required(Permission.MANAGE_PACKAGES)
def update_package(package_id):
    data = PackageSchema(partial=True).load(request.get_json() or {})
    package = PackageService.update_package(package_id, data)
    return jsonify(package.serialize()), 200


@packages_bp.route("/<int:package_id>", methods=["DELETE"])
@permission_required(Permission.MANAGE_PACKAGES)
def delete_package(package_id):
    """Only packages never sold to a client can be deleted (409 otherwise)."""
    PackageService.delete_package(package_id)
    return jsonify({"message": "Package deleted"}), 200


@packages_bp.route("/assign", methods=["POST"])
@permission_required(Permission.CLIENTS_ASSIGN_SERVICES)
def assign_package():
    """
    Sell a package to a client. Creates the client package and the ledger
    charge (plus the payment when paid up front) atomically.

    JSON Payload (example):
    {
      "client_id": 4,
      "package_id": 2,
      "price": "900.00",
      "payment_status": "paid",
      "payment_method": "card"
    }
    """
    data = PackageAssignSchema().load(request.get_json() or {})
    client_package = PackageService.assign_package(
        data["client_id"],
        data["package_id"],
        price=data.get("price"),
        purchase_date=data.get("purchase_date"),
        expiry_date=data.get("expiry_date"),
        payment_status=data["payment_status"],
        payment_method=data.get("payment_method"),
        notes=data.get("notes"),
        actor=current_actor()
    )
    return jsonify({
        "message": "Package assigned successfully!",
        "client_package": client_package.serialize()
    }), 201


@packages_bp.route("/client-packages/<int:client_package_id>", methods=["GET"])
@staff_required
def get_client_package(client_package_id):
    client_package = PackageService.get_client_package(client_package_id)
    return jsonify(client_package.serialize()), 200


@packages_bp.route("/client-packages/<int:client_package_id>/usage", methods=["GET"])
@staff_required
def client_package_usage(client_package_id):
    usages = PackageService.get_usage_history(client_package_id)
    return jsonify([u.serialize() for u in usages]), 200


@packages_bp.route("/client-packages/<int:client_package_id>/adjust", methods=["POST"])
@permission_required(Permission.MANAGE_PACKAGES)
def adjust_client_package(client_package_id):
    data = SessionAdjustmentSchema().load(request.get_json() or {})
    change = PackageService.adjust_sessions(
        client_package_id, data["delta"], notes=data.get("notes"), actor=current_actor()
    )
    return jsonify(change.to_dict()), 200


@packages_bp.route("/client-packages/<int:client_package_id>/cancel", methods=["POST"])
@permission_required(Permission.MANAGE_PACKAGES)
def cancel_client_package(client_package_id):
    notes = (request.get_json(silent=True) or {}).get("notes")
    client_package = PackageService.cancel_client_package(client_package_id, notes=notes)
    return jsonify(client_package.serialize()), 200


@packages_bp.route("/expiring", methods=["GET"])
@staff_required
def expiring_packages():
    days = request.args.get("days", current_app.config["PACKAGE_EXPIRY_WARNING_DAYS"], type=int)
    packages = PackageService.find_expiring_packages(within_days=days)
    return jsonify([cp.serialize() for cp in packages]), 200


@packages_bp.route("/low-sessions", methods=["GET"])
@staff_required
def low_session_packages():
    threshold = request.args.get("threshold", current_app.config["LOW_SESSIONS_THRESHOLD"], type=int)
    packages = PackageService.find_low_session_packages(threshold=threshold)
    return jsonify([cp.serialize() for cp in packages]), 200
