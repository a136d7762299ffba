"""
Error taxonomy for the tender/bid engine.

Admission and state-machine violations are raised synchronously to the caller
with a specific kind; dispatch failures never leave the notification pass.
"""

from typing import Optional


class TenderMarketError(Exception):
    """Base class for all engine errors."""

    code = 'error'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {'error': self.code, 'message': self.message}


class ValidationError(TenderMarketError):
    """Malformed input."""

    code = 'validation_error'

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.field:
            data['field'] = self.field
        return data


class InvalidCoordinates(ValidationError):
    """GPS string that is not "latitude,longitude" within valid ranges."""

    code = 'invalid_coordinates'

    def __init__(self, raw: str, reason: str):
        super().__init__(f"Invalid coordinates {raw!r}: {reason}", field='gps_coordinates')
        self.raw = raw


class NotFoundError(TenderMarketError):
    code = 'not_found'


class ConflictError(TenderMarketError):
    """Duplicate bid, tender not open, bid not pending."""

    code = 'conflict'


class AuthorizationError(TenderMarketError):
    code = 'forbidden'


class UpstreamError(TenderMarketError):
    """Profile, rating or transport collaborator failure."""

    code = 'upstream_error'


__all__ = [
    'TenderMarketError',
    'ValidationError',
    'InvalidCoordinates',
    'NotFoundError',
    'ConflictError',
    'AuthorizationError',
    'UpstreamError',
]
