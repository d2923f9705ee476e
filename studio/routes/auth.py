# routes/auth.py
from flask import request, jsonify
from flask_login import login_user, logout_user, login_required

from . import auth_bp
from .. import logger
from ..schemas.auth_schemas import RegisterSchema, LoginSchema, PasswordChangeSchema
from ..security import current_actor
from ..services.auth_service import AuthService, ensure_profile


@auth_bp.route("/register", methods=["POST"])
def register():
    """
    Self sign-up for the client portal.

    JSON Payload:
    {
      "email": "jane@example.com",
      "password": "Str0ng!Pass",
      "first_name": "Jane",
      "last_name": "Doe"
    }

    Response:
      201 Created with the new user (profile included)
    """
    data = RegisterSchema().load(request.get_json() or {})
    user = AuthService.register(data)
    login_user(user)
    return jsonify({"message": "Account created", "user": user.serialize()}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    data = LoginSchema().load(request.get_json() or {})
    user = AuthService.authenticate(data["email"], data["password"])
    if user is None:
        return jsonify({"error": "invalid_credentials", "message": "Invalid email or password"}), 401

    login_user(user, remember=data["remember"])
    logger.info(f"User {user.id} logged in")
    return jsonify({"message": "Logged in", "user": user.serialize()}), 200


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"message": "Logged out"}), 200


@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    """Current account with its profile and effective permissions."""
    user = current_actor()
    ensure_profile(user)
    return jsonify(user.serialize()), 200


@auth_bp.route("/password", methods=["POST"])
@login_required
def change_password():
    data = PasswordChangeSchema().load(request.get_json() or {})
    AuthService.change_password(current_actor(), data["current_password"], data["new_password"])
    return jsonify({"message": "Password updated"}), 200
