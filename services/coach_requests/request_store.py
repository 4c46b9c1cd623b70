"""
Coach Request Store - Request lifecycle operations
Sends, accepts and rejects coach requests and keeps the viewer's cached
list consistent with the remote store
"""
import asyncio
import time
from datetime import datetime
from typing import Awaitable, Callable, Dict, FrozenSet, List, Optional, Tuple

import pytz

from config import Config
from models.coach_request import (
    UNAVAILABLE, ClientProfile, CoachProfile, CoachRequest, Display, InvariantError,
    Known, RequestStatus, apply_response,
)
from utils.logger import log_info, log_error, log_warning, log_debug
from utils.retry import retry_operation
from utils.validators import Validators
from .errors import (
    ErrorKind, OperationResult, RecordNotFoundError, StoreError,
    TransientStoreError, UniqueViolationError,
)
from .request_cache import RequestCache

COACH_VIEW = 'coach'
CLIENT_VIEW = 'client'

ASSIGNMENT_NOTE = 'Assigned via coach request approval'
NETWORK_ERROR_MESSAGE = 'Network error. Please check your connection and try again.'

ACTION_VERBS = {
    RequestStatus.ACCEPTED: 'accept',
    RequestStatus.REJECTED: 'reject',
}


class CoachRequestStore:
    """
    Authoritative in-memory view of the current user's coach requests.

    All mutations go through this class. The remote row stays the source
    of truth; the cached list is refreshed on load and on invalidation.
    """

    def __init__(self, repository, identity, config=None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 now: Optional[Callable[[], str]] = None):
        self.repository = repository
        self.identity = identity
        self.config = config or Config
        self.validators = Validators(self.config)
        self.tz = pytz.timezone(getattr(self.config, 'TIMEZONE', 'UTC'))

        self.cache = RequestCache(self.config.COACH_REQUEST_CACHE_SECONDS, clock)
        self.max_retries = self.config.COACH_REQUEST_MAX_RETRIES
        self.retry_delay = self.config.COACH_REQUEST_RETRY_DELAY
        self.processed_limit = self.config.COACH_REQUEST_PROCESSED_LIMIT

        self._sleep = sleep
        self._now = now or (lambda: datetime.now(self.tz).isoformat())
        self._processing = set()
        self._viewer: Optional[Tuple[str, str]] = None
        self._error: Optional[str] = None

    # ============= STATE =============

    @property
    def requests(self) -> Tuple[CoachRequest, ...]:
        return self.cache.requests

    @property
    def loading(self) -> bool:
        return self.cache.loading

    @property
    def error(self) -> Optional[str]:
        """Message from the last failed load, None after a good one"""
        return self._error

    @property
    def processing(self) -> FrozenSet[str]:
        return frozenset(self._processing)

    @property
    def viewer(self) -> Optional[Tuple[str, str]]:
        return self._viewer

    def get_pending_count(self) -> int:
        """Number of pending requests, for badges"""
        return sum(1 for request in self.cache.requests if request.is_pending)

    def has_pending_with(self, coach_id: str) -> bool:
        """Check if the list holds a pending request with a specific coach"""
        return any(
            request.coach_id == coach_id and request.is_pending
            for request in self.cache.requests
        )

    def pending_requests(self) -> List[CoachRequest]:
        return [request for request in self.cache.requests if request.is_pending]

    def processed_requests(self, limit: Optional[int] = None) -> List[CoachRequest]:
        """Most recent answered requests"""
        limit = self.processed_limit if limit is None else limit
        return [request for request in self.cache.requests if not request.is_pending][:limit]

    def invalidate(self) -> None:
        """Mark the cached list stale so the next load goes to the store"""
        self.cache.invalidate()
        log_debug("Coach request cache invalidated")

    # ============= HELPERS =============

    async def _retry(self, operation, operation_name: str):
        return await retry_operation(
            operation,
            operation_name,
            retries=self.max_retries,
            base_delay=self.retry_delay,
            retry_on=(TransientStoreError,),
            sleep=self._sleep,
        )

    def _store_failure(self, error: StoreError, fallback: str) -> OperationResult:
        if isinstance(error, TransientStoreError):
            return OperationResult.fail(ErrorKind.TRANSIENT_NETWORK, NETWORK_ERROR_MESSAGE)
        if isinstance(error, RecordNotFoundError):
            return OperationResult.fail(ErrorKind.NOT_FOUND, 'Could not find the request')
        return OperationResult.fail(ErrorKind.UNKNOWN, fallback)

    # ============= SEND =============

    async def create_request(self, coach_id: str, message: Optional[str] = None) -> OperationResult:
        """Send a coach request from the current user"""
        user = self.identity.current_user()
        if not user:
            return OperationResult.fail(ErrorKind.UNAUTHENTICATED, 'You must be logged in to send a request')

        is_valid, error = self.validators.validate_identifier(coach_id, 'Coach ID')
        if not is_valid:
            return OperationResult.fail(ErrorKind.VALIDATION, error)

        is_valid, cleaned_message, error = self.validators.validate_request_message(message)
        if not is_valid:
            return OperationResult.fail(ErrorKind.VALIDATION, error)

        client_user_id = user['id']
        log_info(f"Sending coach request: client {client_user_id} -> coach {coach_id}")

        try:
            existing = await self._retry(
                lambda: self.repository.query_requests(client_user_id=client_user_id, coach_id=coach_id),
                'check_existing_requests',
            )
        except StoreError as e:
            log_error(f"Error checking existing requests: {str(e)}")
            return self._store_failure(e, 'Failed to send request. Please try again.')

        statuses = {row.get('status') for row in existing}
        if RequestStatus.PENDING.value in statuses:
            return OperationResult.fail(ErrorKind.DUPLICATE_PENDING, 'You already have a pending request with this coach')
        if RequestStatus.ACCEPTED.value in statuses:
            return OperationResult.fail(ErrorKind.ALREADY_ACCEPTED, 'This coach has already accepted your request')

        rejected_ids = [row['id'] for row in existing if row.get('status') == RequestStatus.REJECTED.value]
        if rejected_ids:
            try:
                await self._retry(lambda: self.repository.delete_requests(rejected_ids), 'delete_rejected_requests')
            except StoreError as e:
                log_warning(f"Could not delete rejected requests {rejected_ids}: {str(e)}")

        # Inserts are not retried: a lost response would come back as a duplicate
        try:
            row = await self.repository.insert_request({
                'client_user_id': client_user_id,
                'coach_id': coach_id,
                'message': cleaned_message,
                'status': RequestStatus.PENDING.value,
            })
        except UniqueViolationError as e:
            log_warning(f"Insert hit unique constraint: {str(e)}")
            return OperationResult.fail(ErrorKind.DUPLICATE_PENDING, 'You already have a pending request with this coach')
        except StoreError as e:
            log_error(f"Error sending coach request: {str(e)}")
            return self._store_failure(e, 'Failed to send request. Please try again.')

        try:
            created = CoachRequest.from_row(row)
        except (KeyError, ValueError) as e:
            log_error(f"Store returned a malformed request row {row}: {str(e)}")
            return OperationResult.fail(ErrorKind.UNKNOWN, 'Failed to send request. Please try again.')

        log_info(f"Coach request {created.id} sent successfully")
        return OperationResult.ok(created)

    # ============= RESPOND =============

    async def accept_request(self, request_id: str) -> OperationResult:
        """Accept a pending request and assign the client to the coach"""
        return await self._respond(request_id, RequestStatus.ACCEPTED)

    async def reject_request(self, request_id: str) -> OperationResult:
        """Reject a pending request"""
        return await self._respond(request_id, RequestStatus.REJECTED)

    async def _respond(self, request_id: str, target: RequestStatus) -> OperationResult:
        user = self.identity.current_user()
        coach = self.identity.current_coach()

        if target is RequestStatus.ACCEPTED and (not user or not coach):
            return OperationResult.fail(ErrorKind.UNAUTHENTICATED, 'Invalid coach data')
        if not user:
            return OperationResult.fail(ErrorKind.UNAUTHENTICATED, 'No user logged in')

        is_valid, error = self.validators.validate_identifier(request_id, 'Request ID')
        if not is_valid:
            return OperationResult.fail(ErrorKind.VALIDATION, error)

        # No await between the check and the add, so the guard is atomic on the loop
        if request_id in self._processing:
            log_info(f"Request already processing: {request_id}")
            return OperationResult.fail(ErrorKind.ALREADY_PROCESSING, 'Request is already being processed')

        self._processing.add(request_id)
        snapshot = self.cache.snapshot()

        try:
            responded_at = self._now()
            self.cache.replace(apply_response(snapshot, request_id, target, user['id'], responded_at))

            result = await self._resolve_remote(request_id, target, user, coach, responded_at)
            if not result.success:
                self.cache.restore_entry(snapshot, request_id)
                log_warning(f"Rolled back {target.value} of {request_id}: {result.error}")
            return result

        except asyncio.CancelledError:
            self.cache.restore_entry(snapshot, request_id)
            log_warning(f"Cancelled {target.value} of {request_id}, rolled back")
            raise

        except Exception as e:
            self.cache.restore_entry(snapshot, request_id)
            log_error(f"Error answering request {request_id}: {str(e)}", exc_info=True)
            return OperationResult.fail(ErrorKind.UNKNOWN, f'Failed to {ACTION_VERBS[target]} request. Please try again.')

        finally:
            self._processing.discard(request_id)

    async def _resolve_remote(self, request_id: str, target: RequestStatus, user: Dict,
                              coach: Optional[Dict], responded_at: str) -> OperationResult:
        try:
            current = await self._retry(
                lambda: self.repository.query_request_by_id(request_id), 'check_request_status'
            )
        except TransientStoreError as e:
            log_error(f"Error checking request {request_id}: {str(e)}")
            return OperationResult.fail(ErrorKind.TRANSIENT_NETWORK, NETWORK_ERROR_MESSAGE)
        except StoreError as e:
            log_error(f"Error checking request {request_id}: {str(e)}")
            return OperationResult.fail(ErrorKind.NOT_FOUND, 'Could not find the request')

        current_status = current.get('status')
        if current_status != RequestStatus.PENDING.value:
            log_info(f"Request {request_id} is no longer pending: {current_status}")
            return OperationResult.fail(
                ErrorKind.ALREADY_RESOLVED,
                f"Request has already been {current_status}",
                current_status=current_status,
            )

        if coach and current.get('coach_id') != coach['id']:
            return OperationResult.fail(ErrorKind.VALIDATION, 'This request was sent to a different coach')

        fields = {
            'status': target.value,
            'responded_at': responded_at,
            'responded_by': user['id'],
        }

        try:
            winner = await self._retry(self._compare_and_set(request_id, fields), 'update_request_status')
        except TransientStoreError as e:
            log_error(f"Error updating request {request_id}: {str(e)}")
            return OperationResult.fail(ErrorKind.TRANSIENT_NETWORK, NETWORK_ERROR_MESSAGE)
        except StoreError as e:
            log_error(f"Error updating request {request_id}: {str(e)}")
            return self._store_failure(e, f'Failed to {ACTION_VERBS[target]} request. Please try again.')

        if winner is not None:
            log_info(f"Request {request_id} was resolved elsewhere first: {winner}")
            return OperationResult.fail(
                ErrorKind.ALREADY_RESOLVED,
                f"Request has already been {winner}",
                current_status=winner,
            )

        log_info(f"Request {request_id} status updated to {target.value}")

        if target is RequestStatus.ACCEPTED:
            client_user_id = current['client_user_id']
            try:
                await self._retry(
                    lambda: self._ensure_assignment(coach['id'], client_user_id, user['id']),
                    'create_assignment',
                )
            except StoreError as e:
                log_error(f"Request {request_id} accepted but assignment failed: {str(e)}")
                return OperationResult.fail(
                    ErrorKind.ASSIGNMENT_FAILED,
                    'Request was accepted but the client could not be assigned. Please try again.',
                )

        return OperationResult.ok({'request_id': request_id, 'status': target.value})

    def _compare_and_set(self, request_id: str, fields: Dict) -> Callable[[], Awaitable[Optional[str]]]:
        """
        Build the retried conditional update.

        The returned operation resolves to None when our update is in place,
        or to the status that won. A retry that finds our own earlier write
        counts as success.
        """
        attempts = []

        async def operation() -> Optional[str]:
            attempts.append(1)
            affected = await self.repository.update_request_conditional(
                request_id, RequestStatus.PENDING.value, fields
            )
            if affected:
                return None

            row = await self.repository.query_request_by_id(request_id)
            # responded_at is stamped per call, so it tells our write apart
            # from another device signed in as the same coach
            if (len(attempts) > 1 and row.get('status') == fields['status']
                    and row.get('responded_by') == fields['responded_by']
                    and row.get('responded_at') == fields['responded_at']):
                log_info(f"Earlier attempt already updated {request_id}")
                return None
            return row.get('status') or 'resolved'

        return operation

    async def _ensure_assignment(self, coach_id: str, client_user_id: str, assigned_by: str) -> bool:
        """Create the coach-client assignment unless an active one exists; True if created"""
        existing = await self.repository.find_active_assignment(coach_id, client_user_id)
        if existing:
            log_info(f"Coach {coach_id} already assigned to client {client_user_id}")
            return False

        await self.repository.insert_assignment(
            coach_id, client_user_id, assigned_by=assigned_by, notes=ASSIGNMENT_NOTE
        )
        return True

    async def repair_missing_assignments(self) -> OperationResult:
        """Create assignments for accepted requests that never got one"""
        user = self.identity.current_user()
        coach = self.identity.current_coach()
        if not user or not coach:
            return OperationResult.fail(ErrorKind.UNAUTHENTICATED, 'Invalid coach data')

        try:
            rows = await self._retry(
                lambda: self.repository.query_requests(coach_id=coach['id']), 'load_accepted_requests'
            )
        except StoreError as e:
            log_error(f"Error loading requests for assignment sweep: {str(e)}")
            return self._store_failure(e, 'Failed to check assignments')

        repaired = 0
        for row in rows:
            if row.get('status') != RequestStatus.ACCEPTED.value:
                continue
            client_user_id = row['client_user_id']
            try:
                created = await self._retry(
                    lambda: self._ensure_assignment(coach['id'], client_user_id, user['id']),
                    'repair_assignment',
                )
            except StoreError as e:
                log_error(f"Could not repair assignment for client {client_user_id}: {str(e)}")
                return OperationResult.fail(ErrorKind.ASSIGNMENT_FAILED, f'Repaired {repaired} assignment(s) before failing')
            if created:
                repaired += 1

        if repaired:
            log_info(f"Repaired {repaired} missing assignment(s) for coach {coach['id']}")
        return OperationResult.ok(repaired)

    # ============= LOAD =============

    async def load_for_coach(self, coach_id: Optional[str] = None) -> OperationResult:
        """Load requests addressed to a coach"""
        if coach_id is None:
            coach_id = (self.identity.current_coach() or {}).get('id')
        if not coach_id:
            return OperationResult.fail(ErrorKind.UNAUTHENTICATED, 'Invalid coach data')
        return await self._load((COACH_VIEW, coach_id))

    async def load_for_client(self, user_id: Optional[str] = None) -> OperationResult:
        """Load requests sent by a client"""
        if user_id is None:
            user_id = (self.identity.current_user() or {}).get('id')
        if not user_id:
            return OperationResult.fail(ErrorKind.UNAUTHENTICATED, 'No user logged in')
        return await self._load((CLIENT_VIEW, user_id))

    async def refresh(self) -> OperationResult:
        """Reload the current viewer regardless of the cache window"""
        if self._viewer is None:
            return OperationResult.fail(ErrorKind.VALIDATION, 'Nothing loaded yet')
        self.invalidate()
        return await self._load(self._viewer)

    async def _load(self, viewer: Tuple[str, str]) -> OperationResult:
        if viewer != self._viewer:
            self._viewer = viewer
            self.cache.invalidate()

        if self.cache.loading:
            log_debug("Load already in flight, skipping")
            return OperationResult.ok(self.requests)

        if self.cache.is_fresh():
            log_debug("Using cached coach requests")
            return OperationResult.ok(self.requests)

        while True:
            role, viewer_id = self._viewer
            self.cache.begin_load()
            try:
                requests = await self._fetch(role, viewer_id)
            except StoreError as e:
                log_error(f"Error loading {role} requests for {viewer_id}: {str(e)}")
                self._error = e.message or 'Failed to load requests'
                if self.cache.fail_load():
                    continue
                return self._store_failure(e, self._error)
            except Exception as e:
                log_error(f"Unexpected error loading {role} requests for {viewer_id}: {str(e)}", exc_info=True)
                self._error = 'Failed to load requests'
                if self.cache.fail_load():
                    continue
                return OperationResult.fail(ErrorKind.UNKNOWN, self._error)
            else:
                self._error = None
                if not self.cache.finish_load(requests):
                    return OperationResult.ok(self.requests)
                log_info("Requests changed while loading, reloading")
            finally:
                # Still holding the slot here only if the fetch was cancelled
                self.cache.abort_load()

    async def _fetch(self, role: str, viewer_id: str) -> Tuple[CoachRequest, ...]:
        log_info(f"Loading requests for {role}: {viewer_id}")

        if role == COACH_VIEW:
            rows = await self._retry(
                lambda: self.repository.query_requests(coach_id=viewer_id), 'load_coach_requests'
            )
        else:
            rows = await self._retry(
                lambda: self.repository.query_requests(client_user_id=viewer_id), 'load_user_requests'
            )

        enriched = await asyncio.gather(*(self._enrich(row, role == COACH_VIEW) for row in rows))
        requests = tuple(request for request in enriched if request is not None)
        log_info(f"Loaded {len(requests)} request(s) for {role} {viewer_id}")
        return requests

    async def _enrich(self, row: Dict, include_client: bool) -> Optional[CoachRequest]:
        if not row.get('id') or not row.get('client_user_id') or not row.get('coach_id'):
            log_error(f"Skipping request row with missing keys: {row}")
            return None

        client_profile = UNAVAILABLE
        if include_client:
            client_profile = await self._join(
                self.repository.query_profile(row['client_user_id']), ClientProfile,
                f"profile for user {row['client_user_id']}",
            )
        coach_profile = await self._join(
            self.repository.query_coach(row['coach_id']), CoachProfile,
            f"coach {row['coach_id']}",
        )

        try:
            return CoachRequest.from_row(row, client_profile, coach_profile)
        except InvariantError as e:
            log_warning(f"Showing inconsistent request row {row['id']} as stored: {str(e)}")
            return CoachRequest.from_row(row, client_profile, coach_profile, degraded=True)
        except (KeyError, ValueError) as e:
            log_error(f"Skipping malformed request row {row.get('id')}: {str(e)}")
            return None

    async def _join(self, query: Awaitable[Optional[Dict]], model, label: str) -> Display:
        try:
            data = await query
        except StoreError as e:
            log_warning(f"Could not join {label}: {str(e)}")
            return UNAVAILABLE

        if not data:
            log_warning(f"No display data for {label}")
            return UNAVAILABLE
        return Known(model.from_row(data))
