# services/auth_service.py
from datetime import datetime
from typing import Dict, List, Optional

from marshmallow import ValidationError
from sqlalchemy import func

from .. import db, logger
from ..errors import NotFound, Unauthorized
from ..models import transaction
from ..models.client import Client
from ..models.user import User, Profile, Role, Permission, STAFF_ROLES
from ..security import validate_password_strength
from .client_service import find_client_by_email
from .email_service import EmailService


def find_user_by_email(email) -> Optional[User]:
    return User.query.filter(func.lower(User.email) == email.strip().lower()).first()


def ensure_profile(user) -> Profile:
    """
    Return the user's profile, creating a default one if it is missing
    (accounts imported before profiles existed).
    """
    if user.profile is not None:
        return user.profile
    logger.warning(f"User {user.id} has no profile; creating one")
    with transaction():
        profile = Profile(user_id=user.id, role=Role.CLIENT.value)
        db.session.add(profile)
    db.session.refresh(user)
    return user.profile


def _create_account(email, password, first_name=None, last_name=None, phone=None,
                    role=Role.CLIENT.value, permissions=None) -> User:
    if find_user_by_email(email):
        raise ValidationError({'email': ['An account with this email already exists']})
    validate_password_strength(password)

    user = User(email=email.strip().lower())
    user.password = password
    # Read by the after_insert hook that creates the profile row
    user.signup_data = {
        'first_name': first_name,
        'last_name': last_name,
        'phone': phone,
        'role': role,
        'permissions': int(permissions) if permissions is not None else None,
    }
    db.session.add(user)
    db.session.flush()
    return user


class AuthService:

    @staticmethod
    def register(data: Dict) -> User:
        """
        Self sign-up. New accounts get the client role; an existing client
        record with the same email and no portal account is linked to it.
        """
        with transaction():
            user = _create_account(
                data['email'], data['password'],
                first_name=data.get('first_name'),
                last_name=data.get('last_name'),
                phone=data.get('phone'),
                role=Role.CLIENT.value
            )
            client = find_client_by_email(user.email)
            if client is not None and client.user_id is None:
                client.user_id = user.id
                logger.info(f"Linked new account {user.id} to client {client.id}")

        db.session.refresh(user)
        logger.info(f"Registered user {user.email}")
        EmailService.send_welcome_email(user.email, data.get('first_name'))
        return user

    @staticmethod
    def authenticate(email, password) -> Optional[User]:
        user = find_user_by_email(email)
        if user is None or not user.verify_password(password):
            logger.warning(f"Failed login for {email}")
            return None
        if not user.is_active:
            raise Unauthorized("This account has been deactivated")

        ensure_profile(user)
        with transaction():
            user.last_login = datetime.now()
        return user

    @staticmethod
    def change_password(user, current_password, new_password):
        if not user.verify_password(current_password):
            raise ValidationError({'current_password': ['Current password is incorrect']})
        validate_password_strength(new_password, field_name='new_password')
        with transaction():
            user.password = new_password
        logger.info(f"User {user.id} changed password")
        EmailService.send_password_change_notification(
            user.email, user.profile.first_name if user.profile else None
        )

    @staticmethod
    def create_portal_account(client_id: int, password: str) -> User:
        """Create a login for an existing client record (staff action)."""
        client = db.session.get(Client, client_id)
        if client is None:
            raise NotFound('Client', client_id)
        if client.user_id is not None:
            raise ValidationError({'client_id': ['Client already has a portal account']})

        with transaction():
            user = _create_account(
                client.email, password,
                first_name=client.first_name,
                last_name=client.last_name,
                phone=client.phone,
                role=Role.CLIENT.value
            )
            client.user_id = user.id

        db.session.refresh(user)
        EmailService.send_welcome_email(user.email, client.first_name)
        return user


class StaffService:
    """Admin-side management of staff and trainer accounts."""

    @staticmethod
    def create_staff(data: Dict) -> User:
        role = data.get('role') or Role.TRAINER.value
        if role not in STAFF_ROLES:
            raise ValidationError({'role': [f"Staff role must be one of: {', '.join(STAFF_ROLES)}"]})

        permissions = None
        if data.get('permissions') is not None:
            permissions = Permission.from_names(data['permissions'])

        with transaction():
            user = _create_account(
                data['email'], data['password'],
                first_name=data.get('first_name'),
                last_name=data.get('last_name'),
                phone=data.get('phone'),
                role=role,
                permissions=permissions
            )

        db.session.refresh(user)
        logger.info(f"Created {role} account {user.email}")
        EmailService.send_welcome_email(user.email, data.get('first_name'))
        return user

    @staticmethod
    def list_staff(active_only=True) -> List[User]:
        query = User.query.join(Profile).filter(Profile.role.in_(STAFF_ROLES))
        if active_only:
            query = query.filter(User.is_active.is_(True))
        return query.order_by(Profile.first_name, Profile.last_name).all()

    @staticmethod
    def get_staff(user_id: int) -> User:
        user = db.session.get(User, user_id)
        if user is None or user.role not in STAFF_ROLES:
            raise NotFound('Staff member', user_id)
        return user

    @staticmethod
    def update_staff(user_id: int, data: Dict, actor=None) -> User:
        user = StaffService.get_staff(user_id)
        if actor is not None and actor.id == user.id and data.get('is_active') is False:
            raise ValidationError({'is_active': ['You cannot deactivate your own account']})

        with transaction():
            profile = ensure_profile(user)
            for field in ('first_name', 'last_name', 'phone'):
                if field in data:
                    setattr(profile, field, data[field])
            if 'role' in data:
                if data['role'] not in STAFF_ROLES:
                    raise ValidationError({'role': [f"Staff role must be one of: {', '.join(STAFF_ROLES)}"]})
                profile.role = data['role']
            if 'permissions' in data:
                profile.permissions = (
                    int(Permission.from_names(data['permissions']))
                    if data['permissions'] is not None else None
                )
            if 'is_active' in data:
                user.is_active = data['is_active']
        return user
