# models/user.py
import enum
from datetime import datetime

from flask_login import UserMixin
from sqlalchemy import event, insert
from werkzeug.security import generate_password_hash, check_password_hash

from . import BaseModel
from .. import db


class Role(enum.Enum):
    ADMIN = 'admin'
    TRAINER = 'trainer'
    CLIENT = 'client'
    LEAD = 'lead'


STAFF_ROLES = (Role.ADMIN.value, Role.TRAINER.value)


class Permission(enum.IntFlag):
    """
    Capabilities a staff member can hold. Stored on the profile as an integer
    mask; roles carry a default set.
    """
    NONE = 0
    BOOKINGS_VIEW_OWN = enum.auto()
    BOOKINGS_CREATE_EDIT_OWN = enum.auto()
    BOOKINGS_RECONCILE_OWN = enum.auto()
    BOOKINGS_VIEW_ALL = enum.auto()
    BOOKINGS_CREATE_EDIT_ALL = enum.auto()
    BOOKINGS_RECONCILE_ALL = enum.auto()
    CLIENTS_VIEW = enum.auto()
    CLIENTS_VIEW_ALL = enum.auto()
    CLIENTS_SHOW_FINANCIAL_INFO = enum.auto()
    CLIENTS_ASSIGN_SERVICES = enum.auto()
    CLIENTS_CHANGE_STATUS = enum.auto()
    MAKE_PAYMENTS = enum.auto()
    MANAGE_PACKAGES = enum.auto()
    MANAGE_FINANCES = enum.auto()
    MANAGE_STAFF = enum.auto()

    @classmethod
    def all(cls):
        mask = cls.NONE
        for member in cls:
            mask |= member
        return mask

    @classmethod
    def from_names(cls, names):
        mask = cls.NONE
        for name in names:
            mask |= cls[name.upper()]
        return mask

    def names(self):
        return sorted(member.name.lower() for member in Permission if member and member in self)


ROLE_PERMISSIONS = {
    Role.ADMIN.value: Permission.all(),
    Role.TRAINER.value: (
        Permission.BOOKINGS_VIEW_OWN
        | Permission.BOOKINGS_CREATE_EDIT_OWN
        | Permission.BOOKINGS_RECONCILE_OWN
        | Permission.CLIENTS_VIEW
    ),
    Role.CLIENT.value: Permission.NONE,
    Role.LEAD.value: Permission.NONE,
}


class User(UserMixin, BaseModel):
    __tablename__ = 'users'

    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    last_login = db.Column(db.DateTime)

    profile = db.relationship('Profile', back_populates='user', uselist=False)

    @property
    def password(self):
        raise AttributeError('password is not a readable attribute')

    @password.setter
    def password(self, password):
        self.password_hash = generate_password_hash(password)

    def verify_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def role(self):
        return self.profile.role if self.profile else None

    @property
    def is_staff(self):
        return self.role in STAFF_ROLES

    def has_permission(self, permission):
        if not self.profile:
            return False
        return self.profile.has_permission(permission)

    def serialize(self):
        return {
            'id': self.id,
            'email': self.email,
            'is_active': self.is_active,
            'last_login': self.last_login.isoformat() if self.last_login else None,
            'profile': self.profile.serialize() if self.profile else None,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    def __repr__(self):
        return f'<User {self.email}>'


class Profile(BaseModel):
    __tablename__ = 'profiles'

    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False)
    user = db.relationship('User', back_populates='profile')

    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    phone = db.Column(db.String(50))
    address = db.Column(db.String(255))
    date_of_birth = db.Column(db.Date)
    emergency_contact = db.Column(db.String(255))
    medical_notes = db.Column(db.Text)
    goals = db.Column(db.Text)
    avatar_url = db.Column(db.String(500))

    role = db.Column(db.String(20), nullable=False, default=Role.CLIENT.value)
    # Explicit capability mask; NULL means "use the role default"
    permissions = db.Column(db.Integer, nullable=True)

    @property
    def permission_set(self):
        if self.permissions is not None:
            return Permission(self.permissions)
        return ROLE_PERMISSIONS.get(self.role, Permission.NONE)

    def has_permission(self, permission):
        if self.role == Role.ADMIN.value:
            return True
        return permission in self.permission_set

    @property
    def full_name(self):
        return ' '.join(part for part in (self.first_name, self.last_name) if part)

    def serialize(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'phone': self.phone,
            'address': self.address,
            'date_of_birth': self.date_of_birth.isoformat() if self.date_of_birth else None,
            'emergency_contact': self.emergency_contact,
            'medical_notes': self.medical_notes,
            'goals': self.goals,
            'avatar_url': self.avatar_url,
            'role': self.role,
            'permissions': self.permission_set.names()
        }

    def __repr__(self):
        return f'<Profile {self.user_id} {self.role}>'


@event.listens_for(User, 'after_insert')
def create_profile_for_user(mapper, connection, target):
    """Every new account gets a profile row in the same transaction."""
    signup = getattr(target, 'signup_data', None) or {}
    now = datetime.now()
    connection.execute(
        insert(Profile.__table__).values(
            user_id=target.id,
            first_name=signup.get('first_name'),
            last_name=signup.get('last_name'),
            phone=signup.get('phone'),
            role=signup.get('role', Role.CLIENT.value),
            permissions=signup.get('permissions'),
            created_at=now,
            updated_at=now
        )
    )
