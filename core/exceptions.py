"""
Exceptions for ESI access and the SRP pipeline.
"""

from typing import Optional


class SRPWireError(Exception):
    """Base exception for srpwire errors."""

    pass


class ESIError(SRPWireError):
    """Raised when ESI returns an error response."""

    def __init__(self, message: str, status_code: Optional[int] = None, endpoint: str = ''):
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)

    @property
    def is_transient(self) -> bool:
        """Server-side errors and missing status codes (network failures) are worth retrying."""
        return self.status_code is None or self.status_code >= 500


class ESIRateLimitError(ESIError):
    """
    Raised when ESI refuses a request because of rate limiting.

    Covers the error limit (420), the floating window limit (429) and the
    mail endpoint's MailStopSpamming response. `retry_after` is the server's
    hint in seconds, when one was given.
    """

    def __init__(self, message: str, retry_after: Optional[float] = None, status_code: Optional[int] = None,
                 endpoint: str = ''):
        self.retry_after = retry_after
        super().__init__(message, status_code=status_code, endpoint=endpoint)

    @property
    def is_transient(self) -> bool:
        return True


class TokenError(SRPWireError):
    """Raised when no usable access token can be obtained for the service identity."""

    pass


class EnrichmentError(SRPWireError):
    """Raised when a killmail cannot be resolved from any source."""

    def __init__(self, killmail_id: int, message: str, transient: bool = False):
        self.killmail_id = killmail_id
        self.transient = transient
        super().__init__(f'Killmail {killmail_id}: {message}')


class InvalidTransitionError(SRPWireError):
    """Raised when an SRP request status change breaks the request lifecycle."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f'Cannot move SRP request from {current} to {target}')
