# services/client_service.py
from typing import Dict, List, Optional

from marshmallow import ValidationError
from sqlalchemy import func, or_

from .. import db, logger
from ..errors import NotFound, Unauthorized
from ..models import transaction
from ..models.client import Client, ClientNote, ClientStatus
from ..models.user import User, Permission, STAFF_ROLES

PROFILE_FIELDS = ('first_name', 'last_name', 'phone', 'address', 'date_of_birth',
                  'medical_notes', 'goals')

CLIENT_FIELDS = ('first_name', 'last_name', 'email', 'phone', 'address', 'date_of_birth',
                 'emergency_contact_name', 'emergency_contact_phone', 'goals',
                 'medical_notes', 'lead_source', 'tags')


def find_client_by_email(email):
    """
    Looks up a Client by email (case-insensitive). Returns None when the
    studio has no client with that address.
    """
    return Client.query.filter(func.lower(Client.email) == email.strip().lower()).first()


class ClientService:
    """
    Client records as seen by staff. Staff without the clients_view_all
    capability only see clients they own or are assigned to.
    """

    @staticmethod
    def _visible_to(actor, client) -> bool:
        if actor is None or actor.has_permission(Permission.CLIENTS_VIEW_ALL):
            return True
        return actor.id in (client.owner_id, client.assigned_trainer_id)

    @staticmethod
    def get_client(client_id: int, actor=None) -> Client:
        client = db.session.get(Client, client_id)
        if client is None or not ClientService._visible_to(actor, client):
            raise NotFound('Client', client_id)
        return client

    @staticmethod
    def list_clients(search: Optional[str] = None, status: Optional[str] = None,
                     trainer_id: Optional[int] = None, actor=None) -> List[Client]:
        query = Client.query
        if actor is not None and not actor.has_permission(Permission.CLIENTS_VIEW_ALL):
            query = query.filter(or_(Client.owner_id == actor.id, Client.assigned_trainer_id == actor.id))
        if status:
            query = query.filter(Client.status == status)
        if trainer_id:
            query = query.filter(Client.assigned_trainer_id == trainer_id)
        if search:
            term = f"%{search.strip()}%"
            query = query.filter(or_(
                Client.first_name.ilike(term),
                Client.last_name.ilike(term),
                Client.email.ilike(term),
                Client.phone.ilike(term)
            ))
        return query.order_by(Client.created_at.desc(), Client.id.desc()).all()

    @staticmethod
    def create_client(data: Dict, actor=None) -> Client:
        if find_client_by_email(data['email']):
            raise ValidationError({'email': ['A client with this email already exists']})

        client = Client(**{field: data[field] for field in CLIENT_FIELDS if field in data})
        client.email = data['email'].strip().lower()
        client.status = data.get('status') or ClientStatus.LEAD.value
        client.can_book_sessions = data.get('can_book_sessions', False)
        client.can_cancel_sessions = data.get('can_cancel_sessions', False)
        if actor is not None:
            client.owner_id = actor.id
        trainer_id = data.get('assigned_trainer_id')
        if trainer_id is None and actor is not None and actor.role == 'trainer':
            trainer_id = actor.id
        if trainer_id is not None:
            ClientService._require_staff(trainer_id)
        client.assigned_trainer_id = trainer_id

        client.save()
        logger.info(f"Created client {client.id} ({client.email})")
        return client

    @staticmethod
    def update_client(client_id: int, data: Dict, actor=None) -> Client:
        client = ClientService.get_client(client_id, actor)
        if 'email' in data:
            existing = find_client_by_email(data['email'])
            if existing and existing.id != client.id:
                raise ValidationError({'email': ['A client with this email already exists']})
            data = dict(data, email=data['email'].strip().lower())

        with transaction():
            for field in CLIENT_FIELDS:
                if field in data:
                    setattr(client, field, data[field])
        return client

    @staticmethod
    def change_status(client_id: int, status: str, actor=None) -> Client:
        if status not in [s.value for s in ClientStatus]:
            raise ValidationError({'status': [f"Unknown client status: {status}"]})
        client = ClientService.get_client(client_id, actor)
        with transaction():
            client.status = status
        logger.info(f"Client {client.id} status -> {status}")
        return client

    @staticmethod
    def _require_staff(user_id):
        trainer = db.session.get(User, user_id)
        if trainer is None or trainer.role not in STAFF_ROLES:
            raise ValidationError({'assigned_trainer_id': ['Trainer must be a staff account']})
        return trainer

    @staticmethod
    def assign_trainer(client_id: int, trainer_id: Optional[int], actor=None) -> Client:
        client = ClientService.get_client(client_id, actor)
        if trainer_id is not None:
            ClientService._require_staff(trainer_id)
        with transaction():
            client.assigned_trainer_id = trainer_id
        return client

    @staticmethod
    def set_portal_permissions(client_id: int, can_book_sessions=None, can_cancel_sessions=None,
                               actor=None) -> Client:
        client = ClientService.get_client(client_id, actor)
        with transaction():
            if can_book_sessions is not None:
                client.can_book_sessions = can_book_sessions
            if can_cancel_sessions is not None:
                client.can_cancel_sessions = can_cancel_sessions
        return client

    @staticmethod
    def get_stats(actor=None) -> Dict[str, int]:
        query = db.session.query(Client.status, func.count(Client.id))
        if actor is not None and not actor.has_permission(Permission.CLIENTS_VIEW_ALL):
            query = query.filter(or_(Client.owner_id == actor.id, Client.assigned_trainer_id == actor.id))
        counts = dict(query.group_by(Client.status).all())
        return {
            'total': sum(counts.values()),
            'active': counts.get(ClientStatus.ACTIVE.value, 0),
            'leads': counts.get(ClientStatus.LEAD.value, 0),
            'inactive': counts.get(ClientStatus.INACTIVE.value, 0)
        }

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    @staticmethod
    def add_note(client_id: int, data: Dict, actor=None) -> ClientNote:
        client = ClientService.get_client(client_id, actor)
        note = ClientNote(
            client_id=client.id,
            author_id=actor.id if actor is not None else None,
            note_type=data.get('note_type') or 'general',
            title=data.get('title'),
            content=data['content'],
            is_private=data.get('is_private', False)
        )
        return note.save()

    @staticmethod
    def list_notes(client_id: int, actor=None) -> List[ClientNote]:
        client = ClientService.get_client(client_id, actor)
        notes = client.notes.all()
        if actor is None or actor.role == 'admin':
            return notes
        return [n for n in notes if not n.is_private or n.author_id == actor.id]

    @staticmethod
    def delete_note(client_id: int, note_id: int, actor=None):
        note = db.session.get(ClientNote, note_id)
        if note is None or note.client_id != client_id:
            raise NotFound('Note', note_id)
        if actor is not None and actor.role != 'admin' and note.author_id != actor.id:
            raise Unauthorized("Only the author can delete this note")
        note.delete()

    # ------------------------------------------------------------------
    # Portal
    # ------------------------------------------------------------------

    @staticmethod
    def update_own_profile(user, data: Dict) -> Client:
        """
        Portal profile edit: writes the account's Profile and, when the account
        is linked to a client record, the same fields on the Client.
        """
        from .auth_service import ensure_profile

        client = Client.query.filter_by(user_id=user.id).first()
        profile = ensure_profile(user)
        with transaction():
            for field in PROFILE_FIELDS:
                if field in data:
                    setattr(profile, field, data[field])
            if 'emergency_contact' in data:
                profile.emergency_contact = data['emergency_contact']
            if 'avatar_url' in data:
                profile.avatar_url = data['avatar_url']

            if client is not None:
                for field in PROFILE_FIELDS:
                    if field in data:
                        setattr(client, field, data[field])
                if 'emergency_contact' in data:
                    client.emergency_contact_name = data['emergency_contact']
        return client
