# errors.py
"""
Error taxonomy shared by services and routes.

Services raise these; the application error handlers registered in
``create_app`` turn them into JSON responses. Marshmallow's
``ValidationError`` covers form-level validation and is handled alongside.
"""


class StudioError(Exception):
    status_code = 400
    code = 'bad_request'

    def __init__(self, message=None, **details):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code).strip()
        self.details = details

    def to_dict(self):
        payload = {'error': self.code, 'message': self.message}
        if self.details:
            payload['details'] = self.details
        return payload


class NotFound(StudioError):
    """Resource not found"""
    status_code = 404
    code = 'not_found'

    def __init__(self, resource, resource_id=None):
        message = f"{resource} not found" if resource_id is None else f"{resource} {resource_id} not found"
        super().__init__(message, resource=resource, id=resource_id)


class Unauthorized(StudioError):
    """You are not allowed to perform this action"""
    status_code = 403
    code = 'unauthorized'


class ConcurrentModification(StudioError):
    """The record was changed by another request, reload and try again"""
    status_code = 409
    code = 'concurrent_modification'


class BackendUnavailable(StudioError):
    """The database is temporarily unavailable"""
    status_code = 503
    code = 'backend_unavailable'


class BusinessRuleViolation(StudioError):
    """The request breaks a studio business rule"""
    status_code = 409
    code = 'business_rule_violation'


class InsufficientSessions(BusinessRuleViolation):
    """Not enough sessions left on the package"""
    code = 'insufficient_sessions'


class PackageExpired(BusinessRuleViolation):
    """The package has expired"""
    code = 'package_expired'


class PackageInactive(BusinessRuleViolation):
    """The package is not active"""
    code = 'package_inactive'


class PackageInUse(BusinessRuleViolation):
    """The package has been sold to clients and cannot be deleted"""
    code = 'package_in_use'


class InvalidStatusTransition(BusinessRuleViolation):
    """Status transition not allowed"""
    code = 'invalid_status_transition'

    def __init__(self, entity, current, requested):
        super().__init__(
            f"Invalid {entity} status transition from {current} to {requested}",
            current=current,
            requested=requested
        )


class CancellationWindowClosed(BusinessRuleViolation):
    """Sessions can only be cancelled before the cancellation window closes"""
    code = 'cancellation_window_closed'


class SessionConsumed(BusinessRuleViolation):
    """The session used a package credit; reverse it before deleting"""
    code = 'session_consumed'
