# security.py
"""
Access control helpers for the blueprints.

Routes resolve the logged-in account once and hand it to the services as an
explicit ``actor``; services never read ``current_user`` themselves.
"""
import re
from functools import wraps

from flask import current_app
from flask_login import current_user
from marshmallow import ValidationError

from . import login_manager
from .errors import Unauthorized, NotFound
from .models.user import Permission, Role, STAFF_ROLES

SPECIAL_CHARACTERS = re.compile(r"""[!@#$%^&*()_+\-=\[\]{};':"\\|,.<>/?]""")
COMMON_PATTERNS = [
    re.compile(r'123456'),
    re.compile(r'password', re.IGNORECASE),
    re.compile(r'qwerty', re.IGNORECASE),
    re.compile(r'abc123', re.IGNORECASE),
    re.compile(r'111111'),
    re.compile(r'000000'),
]


def password_policy_errors(password, min_length=8):
    """Return the list of policy rules the password breaks (empty when valid)."""
    errors = []
    if len(password) < min_length:
        errors.append(f'Password must be at least {min_length} characters long')
    if not re.search(r'[A-Z]', password):
        errors.append('Password must contain at least one uppercase letter')
    if not re.search(r'[a-z]', password):
        errors.append('Password must contain at least one lowercase letter')
    if not re.search(r'\d', password):
        errors.append('Password must contain at least one number')
    if not SPECIAL_CHARACTERS.search(password):
        errors.append('Password must contain at least one special character')
    if any(pattern.search(password) for pattern in COMMON_PATTERNS):
        errors.append('Password contains common patterns that are easily guessed')
    return errors


def validate_password_strength(password, field_name='password'):
    errors = password_policy_errors(password, current_app.config.get('PASSWORD_MIN_LENGTH', 8))
    if errors:
        raise ValidationError({field_name: errors})


def current_actor():
    """The logged-in User as a plain model instance."""
    return current_user._get_current_object()


def roles_required(*roles):
    """
    Allow the view only for accounts whose profile role is one of ``roles``.
    Anonymous callers get 401, everyone else outside the list gets 403.
    """
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                return login_manager.unauthorized()
            if current_user.role not in roles:
                raise Unauthorized(f"Requires role: {', '.join(roles)}")
            return view(*args, **kwargs)
        return wrapped
    return decorator


def staff_required(view):
    return roles_required(*STAFF_ROLES)(view)


def permission_required(*permissions):
    """Allow the view when the account holds any one of ``permissions``."""
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                return login_manager.unauthorized()
            if not any(current_user.has_permission(p) for p in permissions):
                names = ', '.join(p.name.lower() for p in permissions)
                raise Unauthorized(f"Missing permission: {names}")
            return view(*args, **kwargs)
        return wrapped
    return decorator


def require_permission(actor, permission):
    """Service-side check for an explicit actor."""
    if actor is None or not actor.has_permission(permission):
        raise Unauthorized(f"Missing permission: {permission.name.lower()}")


def can_view_all_bookings(actor):
    return actor.has_permission(Permission.BOOKINGS_VIEW_ALL)


def can_edit_booking(actor, trainer_id):
    if actor.has_permission(Permission.BOOKINGS_CREATE_EDIT_ALL):
        return True
    return actor.has_permission(Permission.BOOKINGS_CREATE_EDIT_OWN) and trainer_id == actor.id


def can_reconcile_booking(actor, trainer_id):
    if actor.has_permission(Permission.BOOKINGS_RECONCILE_ALL):
        return True
    return actor.has_permission(Permission.BOOKINGS_RECONCILE_OWN) and trainer_id == actor.id


def client_for_user(user):
    """Resolve the Client record linked to a portal account."""
    from .models.client import Client

    if user is None or user.role not in (Role.CLIENT.value, Role.LEAD.value):
        raise Unauthorized("Only client accounts have a client portal")
    client = Client.query.filter_by(user_id=user.id).first()
    if client is None:
        raise NotFound("Client record for this account")
    return client
