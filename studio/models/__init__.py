# models/__init__.py
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy.orm.exc import StaleDataError

from .. import db
from ..errors import ConcurrentModification


@contextmanager
def transaction():
    """
    Run a block of work as one database transaction.

    Nested calls join the outermost transaction: only the outermost block
    commits, inner blocks just flush. Any exception rolls the whole unit back.
    """
    session = db.session
    depth = session.info.get('transaction_depth', 0)
    session.info['transaction_depth'] = depth + 1
    try:
        yield session
        if depth == 0:
            session.commit()
        else:
            session.flush()
    except StaleDataError as e:
        if depth == 0:
            session.rollback()
        raise ConcurrentModification() from e
    except Exception:
        if depth == 0:
            session.rollback()
        raise
    finally:
        session.info['transaction_depth'] = depth


class BaseModel(db.Model):
    """
    Base model with common fields for all models
    """
    __abstract__ = True

    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    def save(self):
        """
        Save the current model instance to the database.
        Joins the caller's transaction if one is open.
        """
        with transaction():
            db.session.add(self)
        return self

    def delete(self):
        """
        Delete the current model instance from the database
        """
        with transaction():
            db.session.delete(self)

    @classmethod
    def get_by_id(cls, id):
        """
        Retrieve a model instance by its ID

        Args:
            id (int): Primary key of the model instance

        Returns:
            Model instance or None
        """
        return db.session.get(cls, id)


# Import order matters
from .user import User, Profile, Role, Permission
from .client import Client, ClientNote
from .package import Package, ClientPackage, PackageUsage
from .training_session import TrainingSession
from .payment import Payment
from .invoice import Invoice, DocumentSequence
from .expenses import Expense
