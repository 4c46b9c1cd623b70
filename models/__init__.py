from .coach_request import (
    UNAVAILABLE,
    ClientProfile,
    CoachProfile,
    CoachRequest,
    Display,
    InvalidTransitionError,
    InvariantError,
    Known,
    RequestStatus,
    Unavailable,
    apply_response,
)

__all__ = [
    'UNAVAILABLE',
    'ClientProfile',
    'CoachProfile',
    'CoachRequest',
    'Display',
    'InvalidTransitionError',
    'InvariantError',
    'Known',
    'RequestStatus',
    'Unavailable',
    'apply_response',
]
