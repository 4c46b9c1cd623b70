"""
Coach request domain model

A coach request is a client's proposal to start a coaching relationship.
It is created pending and answered exactly once by the coach. Display
data joined from profiles/coaches rides along but is never written back.
"""
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Generic, Optional, Tuple, TypeVar, Union

T = TypeVar('T')


class RequestStatus(Enum):
    """Lifecycle states of a coach request"""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not RequestStatus.PENDING


class InvalidTransitionError(ValueError):
    """Raised when a request is moved along an edge the lifecycle does not have"""


class InvariantError(ValueError):
    """Raised when a row breaks the responded_at/responded_by rule"""


# ============= DISPLAY DATA =============

@dataclass(frozen=True)
class Known(Generic[T]):
    """Display data that was joined successfully"""
    value: T

    @property
    def is_known(self) -> bool:
        return True

    def or_none(self) -> Optional[T]:
        return self.value


@dataclass(frozen=True)
class Unavailable:
    """Display data that could not be joined"""

    @property
    def is_known(self) -> bool:
        return False

    def or_none(self) -> None:
        return None


UNAVAILABLE = Unavailable()

Display = Union[Known, Unavailable]


@dataclass(frozen=True)
class ClientProfile:
    """Client fields shown on a coach's request card"""
    full_name: Optional[str] = None
    bio: Optional[str] = None
    fitness_level: Optional[str] = None
    goals: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict) -> 'ClientProfile':
        return cls(
            full_name=row.get('full_name'),
            bio=row.get('bio'),
            fitness_level=row.get('fitness_level'),
            goals=row.get('goals'),
        )


@dataclass(frozen=True)
class CoachProfile:
    """Coach fields shown on a client's request card"""
    full_name: str = ""
    specialization: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict) -> 'CoachProfile':
        return cls(
            full_name=row.get('full_name') or "",
            specialization=row.get('specialization'),
        )


# ============= REQUEST =============

@dataclass(frozen=True)
class CoachRequest:
    """
    One row of coach_requests plus its joined display data.

    Frozen so that snapshots taken before an optimistic update can be
    restored by value.
    """
    id: str
    client_user_id: str
    coach_id: str
    status: RequestStatus = RequestStatus.PENDING
    message: Optional[str] = None
    requested_at: Optional[str] = None
    responded_at: Optional[str] = None
    responded_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    client_profile: Display = UNAVAILABLE
    coach_profile: Display = UNAVAILABLE
    # Row broke the responder rule but is still shown as stored
    degraded: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.status, RequestStatus):
            object.__setattr__(self, 'status', RequestStatus(self.status))

        if self.degraded:
            return

        responded = self.responded_at is not None and self.responded_by is not None
        unanswered = self.responded_at is None and self.responded_by is None
        if self.status.is_terminal and not responded:
            raise InvariantError(f"Request {self.id} is {self.status.value} but has no responder")
        if not self.status.is_terminal and not unanswered:
            raise InvariantError(f"Request {self.id} is pending but already has a responder")

    @classmethod
    def from_row(cls, row: Dict,
                 client_profile: Display = UNAVAILABLE,
                 coach_profile: Display = UNAVAILABLE,
                 degraded: bool = False) -> 'CoachRequest':
        """Build from a coach_requests row as returned by the store"""
        return cls(
            id=row['id'],
            client_user_id=row['client_user_id'],
            coach_id=row['coach_id'],
            status=RequestStatus(row.get('status') or RequestStatus.PENDING.value),
            message=row.get('message'),
            requested_at=row.get('requested_at'),
            responded_at=row.get('responded_at'),
            responded_by=row.get('responded_by'),
            created_at=row.get('created_at'),
            updated_at=row.get('updated_at'),
            client_profile=client_profile,
            coach_profile=coach_profile,
            degraded=degraded,
        )

    def to_row(self) -> Dict:
        """Persisted columns only; display data is never written back"""
        return {
            'id': self.id,
            'client_user_id': self.client_user_id,
            'coach_id': self.coach_id,
            'status': self.status.value,
            'message': self.message,
            'requested_at': self.requested_at,
            'responded_at': self.responded_at,
            'responded_by': self.responded_by,
        }

    @property
    def is_pending(self) -> bool:
        return self.status is RequestStatus.PENDING

    def respond(self, status: RequestStatus, responded_by: str, responded_at: str) -> 'CoachRequest':
        """Return the request answered with `status`; the only legal transition"""
        if self.status.is_terminal:
            raise InvalidTransitionError(f"Request has already been {self.status.value}")
        if not status.is_terminal:
            raise InvalidTransitionError("A request can only be answered with accepted or rejected")

        return replace(self, status=status, responded_at=responded_at, responded_by=responded_by)


def apply_response(requests: Tuple[CoachRequest, ...], request_id: str, status: RequestStatus,
                   responded_by: str, responded_at: str) -> Tuple[CoachRequest, ...]:
    """
    Pure optimistic transition over a request list.

    The matching pending entry is answered; every other entry, and a
    matching entry that is already terminal, comes back unchanged.
    """
    return tuple(
        request.respond(status, responded_by, responded_at)
        if request.id == request_id and request.is_pending
        else request
        for request in requests
    )
