"""Domain-specific exceptions"""

from typing import Optional


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class BrokerAPIError(DomainException):
    """Broker venue returned an error or is unavailable.

    The message carries the venue prefix (AUTH_REQUIRED:, RATE_LIMITED:, ...)
    that the error taxonomy matches on.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, retry_after: Optional[float] = None):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class NotAuthenticatedError(DomainException):
    """No broker session available"""

    def __init__(self, message: str = "NOT_AUTHENTICATED: No broker session available"):
        super().__init__(message)


class TokenExpiredError(DomainException):
    """Broker session already expired, re-login required"""

    def __init__(self, message: str = "TOKEN_EXPIRED: Re-authentication required"):
        super().__init__(message)


class RepoFeeConfigError(DomainException):
    """Repo fee configuration file is malformed or missing required keys"""

    pass


class SyncInProgressError(DomainException):
    """Another sync session is already running"""

    pass
