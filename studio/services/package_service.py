# services/package_service.py
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, List, Optional

from marshmallow import ValidationError
from sqlalchemy.exc import IntegrityError

from .. import db, logger
from ..errors import NotFound, PackageInUse, InsufficientSessions
from ..models import transaction
from ..models.client import Client
from ..models.package import Package, ClientPackage, ClientPackageStatus, PackageUsage
from ..models.payment import PaymentStatus
from .ledger_service import LedgerService, to_money


@dataclass
class PackageChange:
    """Outcome of a consume/refund/adjust call on a client package."""
    client_package_id: int
    previous_remaining: int
    new_remaining: int
    applied: bool
    warning: Optional[str] = None

    def to_dict(self):
        return {
            'client_package_id': self.client_package_id,
            'previous_remaining': self.previous_remaining,
            'new_remaining': self.new_remaining,
            'applied': self.applied,
            'warning': self.warning
        }


class PackageService:
    """
    Package catalog plus the session counter on client packages.

    Every change to ClientPackage.sessions_remaining goes through this class.
    The row is re-read with SELECT ... FOR UPDATE inside the caller's
    transaction and carries a version column, so two writers racing on the
    same package either serialize on the lock or one of them fails with
    ConcurrentModification instead of silently losing an update.
    """

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    @staticmethod
    def create_package(data: Dict) -> Package:
        logger.info(f"Creating package: {data.get('name')}")
        package = Package(
            name=data['name'],
            description=data.get('description'),
            price=to_money(data['price']),
            sessions_included=data['sessions_included'],
            duration_days=data['duration_days']
        )
        return package.save()

    @staticmethod
    def get_package(package_id: int) -> Package:
        package = db.session.get(Package, package_id)
        if package is None:
            raise NotFound('Package', package_id)
        return package

    @staticmethod
    def list_packages() -> List[Package]:
        return Package.query.order_by(Package.price).all()

    @staticmethod
    def update_package(package_id: int, data: Dict) -> Package:
        package = PackageService.get_package(package_id)
        for field in ('name', 'description', 'sessions_included', 'duration_days'):
            if field in data:
                setattr(package, field, data[field])
        if 'price' in data:
            package.price = to_money(data['price'])
        return package.save()

    @staticmethod
    def delete_package(package_id: int):
        package = PackageService.get_package(package_id)
        if package.client_packages.count():
            raise PackageInUse(
                f"Package '{package.name}' has been assigned to clients and cannot be deleted"
            )
        try:
            package.delete()
        except IntegrityError:
            # A client package was assigned between the check and the delete
            raise PackageInUse()
        logger.info(f"Deleted package {package_id}")

    # ------------------------------------------------------------------
    # Client packages
    # ------------------------------------------------------------------

    @staticmethod
    def assign_package(client_id: int, package_id: int, price=None, purchase_date=None,
                       expiry_date=None, payment_status='unpaid', payment_method=None,
                       notes=None, actor=None) -> ClientPackage:
        """
        Sell a package to a client.

        Creates the client package, the matching ledger charge and, when the
        sale is paid up front, the payment entry. All three are written in one
        transaction; a failure in any of them leaves nothing behind.
        """
        client = db.session.get(Client, client_id)
        if client is None:
            raise NotFound('Client', client_id)
        package = PackageService.get_package(package_id)

        price = to_money(package.price if price is None else price)
        if price < 0:
            raise ValidationError({'price': ['Price cannot be negative']})
        purchase_date = purchase_date or date.today()
        expiry_date = expiry_date or purchase_date + timedelta(days=package.duration_days)
        if expiry_date < purchase_date:
            raise ValidationError({'expiry_date': ['Expiry date cannot be before the purchase date']})
        paid = payment_status == 'paid'
        if paid and not payment_method:
            raise ValidationError({'payment_method': ['Payment method is required for paid packages']})

        with transaction():
            client_package = ClientPackage(
                client_id=client.id,
                package_id=package.id,
                sessions_remaining=package.sessions_included,
                purchase_date=purchase_date,
                expiry_date=expiry_date,
                status=ClientPackageStatus.ACTIVE.value,
                notes=notes
            )
            db.session.add(client_package)
            db.session.flush()

            if price > 0:
                description = f"{package.name} Package Assignment"
                if notes:
                    description += f" - {notes}"
                LedgerService.record_charge(
                    client.id, price,
                    payment_method='package_assignment',
                    payment_date=purchase_date,
                    description=description[:255],
                    actor=actor,
                    status=PaymentStatus.COMPLETED.value if paid else PaymentStatus.PENDING.value,
                    client_package_id=client_package.id
                )
                if paid:
                    LedgerService.record_payment(
                        client.id, price,
                        payment_method=payment_method,
                        payment_date=purchase_date,
                        description=f"Payment for {package.name} Package",
                        actor=actor,
                        client_package_id=client_package.id
                    )

        logger.info(
            f"Assigned package {package.name} to client {client.id} "
            f"(price={price}, paid={paid}, expires={expiry_date})"
        )
        return client_package

    @staticmethod
    def get_client_package(client_package_id: int) -> ClientPackage:
        client_package = db.session.get(ClientPackage, client_package_id)
        if client_package is None:
            raise NotFound('Client package', client_package_id)
        return client_package

    @staticmethod
    def get_client_packages(client_id: int, usable_only=False, on_date=None) -> List[ClientPackage]:
        query = ClientPackage.query.filter(ClientPackage.client_id == client_id)
        if usable_only:
            query = query.filter(
                ClientPackage.status == ClientPackageStatus.ACTIVE.value,
                ClientPackage.sessions_remaining > 0,
                ClientPackage.expiry_date >= (on_date or date.today())
            )
        return query.order_by(ClientPackage.expiry_date).all()

    @staticmethod
    def _lock(client_package_id: int) -> ClientPackage:
        client_package = ClientPackage.query \
            .filter(ClientPackage.id == client_package_id) \
            .with_for_update() \
            .populate_existing() \
            .one_or_none()
        if client_package is None:
            raise NotFound('Client package', client_package_id)
        return client_package

    @staticmethod
    def _record_usage(client_package, usage_type, quantity, previous, session_id=None,
                      actor=None, notes=None):
        db.session.add(PackageUsage(
            client_package_id=client_package.id,
            session_id=session_id,
            usage_type=usage_type,
            quantity=quantity,
            previous_remaining=previous,
            new_remaining=client_package.sessions_remaining,
            user_id=actor.id if actor is not None else None,
            notes=notes
        ))

    @staticmethod
    def consume_session(session, actor=None) -> PackageChange:
        """
        Take one unit off the session's package for ``session``.

        Idempotent per session: once a session has consumed a unit, further
        calls change nothing. A package already at zero stays at zero and the
        call reports a warning instead of going negative.
        """
        if session.client_package_id is None:
            raise ValidationError({'client_package_id': ['Session is not paid from a package']})

        with transaction():
            client_package = PackageService._lock(session.client_package_id)
            previous = client_package.sessions_remaining

            if session.package_session_consumed:
                return PackageChange(client_package.id, previous, previous, applied=False)

            if previous <= 0:
                warning = f"Client package {client_package.id} has no sessions left; nothing deducted"
                logger.warning(f"{warning} (session {session.id})")
                return PackageChange(client_package.id, previous, previous, applied=False, warning=warning)

            if client_package.status != ClientPackageStatus.ACTIVE.value:
                logger.warning(
                    f"Deducting session {session.id} from {client_package.status} package {client_package.id}"
                )

            client_package.sessions_remaining = previous - 1
            session.package_session_consumed = True
            PackageService._record_usage(
                client_package, 'consume', 1, previous,
                session_id=session.id, actor=actor,
                notes=f"Session on {session.date.isoformat()}"
            )

        logger.info(
            f"Session {session.id} consumed from package {client_package.id}: "
            f"{previous} -> {client_package.sessions_remaining}"
        )
        return PackageChange(client_package.id, previous, client_package.sessions_remaining, applied=True)

    @staticmethod
    def refund_session(session, actor=None, notes=None) -> PackageChange:
        """
        Give back the unit ``session`` consumed. Does nothing when the session
        never consumed one. Never raises the counter above sessions_included.
        """
        if session.client_package_id is None:
            return PackageChange(None, 0, 0, applied=False)
        if not session.package_session_consumed:
            remaining = PackageService.get_client_package(session.client_package_id).sessions_remaining
            return PackageChange(session.client_package_id, remaining, remaining, applied=False)

        with transaction():
            client_package = PackageService._lock(session.client_package_id)
            previous = client_package.sessions_remaining
            ceiling = client_package.sessions_included
            warning = None

            if previous >= ceiling:
                warning = f"Client package {client_package.id} is already full; nothing refunded"
                logger.warning(f"{warning} (session {session.id})")
            else:
                client_package.sessions_remaining = previous + 1

            session.package_session_consumed = False
            PackageService._record_usage(
                client_package, 'refund', client_package.sessions_remaining - previous, previous,
                session_id=session.id, actor=actor,
                notes=notes or f"Refund for session on {session.date.isoformat()}"
            )

        logger.info(
            f"Session {session.id} refunded to package {client_package.id}: "
            f"{previous} -> {client_package.sessions_remaining}"
        )
        return PackageChange(
            client_package.id, previous, client_package.sessions_remaining,
            applied=warning is None, warning=warning
        )

    @staticmethod
    def adjust_sessions(client_package_id: int, delta: int, notes=None, actor=None) -> PackageChange:
        """Manual staff correction of the counter, bounded like consume/refund."""
        if delta == 0:
            raise ValidationError({'delta': ['Adjustment cannot be zero']})

        with transaction():
            client_package = PackageService._lock(client_package_id)
            previous = client_package.sessions_remaining
            new_remaining = previous + delta
            if new_remaining < 0:
                raise InsufficientSessions(
                    f"Cannot remove {-delta} sessions, only {previous} left",
                    sessions_remaining=previous
                )
            if new_remaining > client_package.sessions_included:
                raise ValidationError({
                    'delta': [f"Package allows at most {client_package.sessions_included} sessions"]
                })
            client_package.sessions_remaining = new_remaining
            PackageService._record_usage(
                client_package, 'adjustment', delta, previous, actor=actor, notes=notes
            )

        logger.info(f"Adjusted package {client_package_id} by {delta}: {previous} -> {new_remaining}")
        return PackageChange(client_package_id, previous, new_remaining, applied=True)

    @staticmethod
    def cancel_client_package(client_package_id: int, notes=None) -> ClientPackage:
        with transaction():
            client_package = PackageService._lock(client_package_id)
            client_package.status = ClientPackageStatus.CANCELLED.value
            if notes:
                client_package.notes = notes
        logger.info(f"Cancelled client package {client_package_id}")
        return client_package

    @staticmethod
    def expire_packages(today=None) -> int:
        """Mark active packages whose expiry date has passed as expired."""
        today = today or date.today()
        with transaction():
            expired = ClientPackage.query.filter(
                ClientPackage.status == ClientPackageStatus.ACTIVE.value,
                ClientPackage.expiry_date < today
            ).all()
            for client_package in expired:
                client_package.status = ClientPackageStatus.EXPIRED.value
        logger.info(f"Expired {len(expired)} client packages")
        return len(expired)

    @staticmethod
    def find_expiring_packages(today=None, within_days=14) -> List[ClientPackage]:
        """Active packages expiring after today and within ``within_days``."""
        today = today or date.today()
        return ClientPackage.query.filter(
            ClientPackage.status == ClientPackageStatus.ACTIVE.value,
            ClientPackage.expiry_date > today,
            ClientPackage.expiry_date <= today + timedelta(days=within_days)
        ).order_by(ClientPackage.expiry_date).all()

    @staticmethod
    def find_low_session_packages(threshold=3) -> List[ClientPackage]:
        return ClientPackage.query.filter(
            ClientPackage.status == ClientPackageStatus.ACTIVE.value,
            ClientPackage.sessions_remaining > 0,
            ClientPackage.sessions_remaining <= threshold
        ).order_by(ClientPackage.sessions_remaining).all()

    @staticmethod
    def get_usage_history(client_package_id: int) -> List[PackageUsage]:
        client_package = PackageService.get_client_package(client_package_id)
        return client_package.usages.order_by(PackageUsage.created_at.desc(), PackageUsage.id.desc()).all()
