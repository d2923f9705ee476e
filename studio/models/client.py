# models/client.py
import enum
from datetime import date

from .. import db
from . import BaseModel


class ClientStatus(enum.Enum):
    LEAD = 'lead'
    ACTIVE = 'active'
    INACTIVE = 'inactive'


class Client(BaseModel):
    __tablename__ = 'clients'

    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), nullable=False, index=True)
    phone = db.Column(db.String(50), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    date_of_birth = db.Column(db.Date, nullable=True)
    emergency_contact_name = db.Column(db.String(100), nullable=True)
    emergency_contact_phone = db.Column(db.String(50), nullable=True)
    goals = db.Column(db.Text, nullable=True)
    medical_notes = db.Column(db.Text, nullable=True)
    lead_source = db.Column(db.String(100), nullable=True)
    tags = db.Column(db.JSON, nullable=True)

    status = db.Column(db.String(20), nullable=False, default=ClientStatus.LEAD.value, index=True)
    join_date = db.Column(db.Date, nullable=False, default=date.today)

    # Staff member who entered the client
    owner_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    assigned_trainer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    # Portal account, if the client can log in
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, unique=True)

    # Client-portal permissions
    can_book_sessions = db.Column(db.Boolean, nullable=False, default=False)
    can_cancel_sessions = db.Column(db.Boolean, nullable=False, default=False)

    owner = db.relationship('User', foreign_keys=[owner_id])
    assigned_trainer = db.relationship('User', foreign_keys=[assigned_trainer_id])
    user = db.relationship('User', foreign_keys=[user_id])
    notes = db.relationship('ClientNote', backref='client', lazy='dynamic',
                            order_by='ClientNote.created_at.desc()')

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    def to_dict(self):
        return {
            'id': self.id,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'email': self.email,
            'phone': self.phone,
            'address': self.address,
            'date_of_birth': self.date_of_birth.isoformat() if self.date_of_birth else None,
            'emergency_contact_name': self.emergency_contact_name,
            'emergency_contact_phone': self.emergency_contact_phone,
            'goals': self.goals,
            'medical_notes': self.medical_notes,
            'lead_source': self.lead_source,
            'tags': self.tags or [],
            'status': self.status,
            'join_date': self.join_date.isoformat() if self.join_date else None,
            'owner_id': self.owner_id,
            'assigned_trainer_id': self.assigned_trainer_id,
            'user_id': self.user_id,
            'can_book_sessions': self.can_book_sessions,
            'can_cancel_sessions': self.can_cancel_sessions,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }

    def __repr__(self):
        return f"<Client {self.full_name} - {self.email}>"


class ClientNote(BaseModel):
    """
    Staff note about a client (progress remarks, injuries to watch, etc.).
    Private notes are only shown to their author and admins.
    """
    __tablename__ = 'client_notes'

    client_id = db.Column(db.Integer, db.ForeignKey('clients.id'), nullable=False, index=True)
    author_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    note_type = db.Column(db.String(30), nullable=False, default='general')
    title = db.Column(db.String(200), nullable=True)
    content = db.Column(db.Text, nullable=False)
    is_private = db.Column(db.Boolean, nullable=False, default=False)

    def serialize(self):
        return {
            'id': self.id,
            'client_id': self.client_id,
            'author_id': self.author_id,
            'note_type': self.note_type,
            'title': self.title,
            'content': self.content,
            'is_private': self.is_private,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }
