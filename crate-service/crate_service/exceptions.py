"""
Error taxonomy shared by the stores, lists and HTTP layer
"""


class CrateError(Exception):
    """Base class for every error surfaced to callers"""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CrateError):
    """Input rejected before any I/O"""

    status_code = 400
    code = "validation_error"


class SelfFollowError(ValidationError):
    code = "self_follow"

    def __init__(self, message: str = "You cannot follow yourself"):
        super().__init__(message)


class NotFoundError(CrateError):
    status_code = 404
    code = "not_found"


class RequestNotFoundError(NotFoundError):
    code = "follow_request_not_found"

    def __init__(self, message: str = "Follow request not found"):
        super().__init__(message)


class UserNotFoundError(NotFoundError):
    code = "user_not_found"

    def __init__(self, message: str = "User not found"):
        super().__init__(message)


class ForbiddenError(CrateError):
    status_code = 403
    code = "forbidden"


class OperationInFlightError(CrateError):
    """The same mutation is already running for this entity"""

    status_code = 409
    code = "operation_in_flight"


class TransientIOError(CrateError):
    """Network or backend failure; never retried automatically"""

    status_code = 503
    code = "backend_unavailable"


class SubscriptionError(CrateError):
    """A realtime subscription died; the caller must resubscribe"""

    status_code = 503
    code = "subscription_error"
