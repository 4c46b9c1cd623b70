"""
Coach Request Repository - Remote store access
Row reads, writes and change subscriptions for coach_requests and the
tables it joins against, over the Supabase async client
"""
from typing import Any, Callable, Dict, List, Optional
from datetime import datetime

import httpx
import pytz
from postgrest.exceptions import APIError

from utils.logger import log_info, log_debug
from .errors import StoreError, UniqueViolationError, TransientStoreError, RecordNotFoundError

REQUESTS_TABLE = 'coach_requests'
ASSIGNMENTS_TABLE = 'coach_client_assignments'
PROFILES_TABLE = 'profiles'
COACHES_TABLE = 'coaches'

UNIQUE_VIOLATION_CODE = '23505'
NO_ROWS_CODE = 'PGRST116'


def map_store_error(error: Exception) -> StoreError:
    """Translate a client library failure into the store error taxonomy"""
    if isinstance(error, StoreError):
        return error

    if isinstance(error, APIError):
        code = getattr(error, 'code', None)
        message = getattr(error, 'message', None) or str(error)
        if code == UNIQUE_VIOLATION_CODE or 'duplicate key' in message or 'unique' in message.lower():
            return UniqueViolationError(message, code)
        if code == NO_ROWS_CODE:
            return RecordNotFoundError(message, code)
        return StoreError(message, code)

    if isinstance(error, (httpx.HTTPError, ConnectionError, TimeoutError)):
        return TransientStoreError(f"Network error: {error}")

    return StoreError(str(error))


class CoachRequestRepository:
    """Remote store operations used by the request store"""

    def __init__(self, supabase_client, timezone: str = 'UTC'):
        self.db = supabase_client
        self.tz = pytz.timezone(timezone)

    async def _execute(self, query) -> Any:
        try:
            return await query.execute()
        except Exception as e:
            raise map_store_error(e) from e

    # ============= REQUEST READS =============

    async def query_requests(self, client_user_id: Optional[str] = None,
                             coach_id: Optional[str] = None) -> List[Dict]:
        """Requests matching the given parties, newest first"""
        query = self.db.table(REQUESTS_TABLE).select('*')
        if client_user_id is not None:
            query = query.eq('client_user_id', client_user_id)
        if coach_id is not None:
            query = query.eq('coach_id', coach_id)

        result = await self._execute(query.order('requested_at', desc=True))
        return result.data or []

    async def query_request_by_id(self, request_id: str) -> Dict:
        """Single request row; raises RecordNotFoundError when it is gone"""
        result = await self._execute(
            self.db.table(REQUESTS_TABLE).select('*').eq('id', request_id).limit(1)
        )

        if not result.data:
            raise RecordNotFoundError(f"Request {request_id} not found", NO_ROWS_CODE)
        return result.data[0]

    # ============= REQUEST WRITES =============

    async def insert_request(self, row: Dict) -> Dict:
        """Insert a request and return the stored row"""
        result = await self._execute(self.db.table(REQUESTS_TABLE).insert(row))

        if not result.data:
            raise StoreError("Insert returned no row")
        log_info(f"Inserted coach request {result.data[0].get('id')}")
        return result.data[0]

    async def update_request_conditional(self, request_id: str, expected_status: str,
                                         fields: Dict) -> int:
        """
        Compare-and-swap update

        Only touches the row while its status still equals expected_status.

        Returns:
            Number of rows changed, 0 when someone else got there first
        """
        result = await self._execute(
            self.db.table(REQUESTS_TABLE)
            .update(fields)
            .eq('id', request_id)
            .eq('status', expected_status)
        )

        affected = len(result.data or [])
        log_debug(f"Conditional update of {request_id} ({expected_status} -> {fields.get('status')}): {affected} row(s)")
        return affected

    async def delete_requests(self, request_ids: List[str]) -> None:
        """Delete requests by id"""
        if not request_ids:
            return
        await self._execute(self.db.table(REQUESTS_TABLE).delete().in_('id', request_ids))
        log_info(f"Deleted {len(request_ids)} coach request(s)")

    # ============= ASSIGNMENTS =============

    async def find_active_assignment(self, coach_id: str, client_user_id: str) -> Optional[Dict]:
        """Active assignment linking coach and client, if one exists"""
        result = await self._execute(
            self.db.table(ASSIGNMENTS_TABLE)
            .select('*')
            .eq('coach_id', coach_id)
            .eq('client_user_id', client_user_id)
            .eq('is_active', True)
            .limit(1)
        )
        return result.data[0] if result.data else None

    async def insert_assignment(self, coach_id: str, client_user_id: str,
                                assigned_by: Optional[str] = None,
                                notes: Optional[str] = None) -> Dict:
        """Create an active coach-client assignment"""
        result = await self._execute(
            self.db.table(ASSIGNMENTS_TABLE).insert({
                'coach_id': coach_id,
                'client_user_id': client_user_id,
                'is_active': True,
                'assigned_by': assigned_by,
                'assigned_at': datetime.now(self.tz).isoformat(),
                'notes': notes,
            })
        )

        log_info(f"Created assignment: coach {coach_id} <-> client {client_user_id}")
        return result.data[0] if result.data else {}

    # ============= DISPLAY JOINS =============

    async def query_profile(self, user_id: str) -> Optional[Dict]:
        """Client profile fields, None when the user has no profile"""
        result = await self._execute(
            self.db.table(PROFILES_TABLE)
            .select('full_name, bio, fitness_level, goals')
            .eq('user_id', user_id)
            .limit(1)
        )
        return result.data[0] if result.data else None

    async def query_coach(self, coach_id: str) -> Optional[Dict]:
        """Coach display fields, None when the coach row is missing"""
        result = await self._execute(
            self.db.table(COACHES_TABLE)
            .select('full_name, specialization')
            .eq('id', coach_id)
            .limit(1)
        )
        return result.data[0] if result.data else None

    async def query_coach_by_user(self, user_id: str) -> Optional[Dict]:
        """Coach row owned by an auth user, None for non-coaches"""
        result = await self._execute(
            self.db.table(COACHES_TABLE).select('id, full_name').eq('user_id', user_id).limit(1)
        )
        return result.data[0] if result.data else None

    # ============= CHANGE SUBSCRIPTIONS =============

    async def subscribe(self, channel_name: str, row_filter: str,
                        on_event: Callable[[Dict], None]):
        """
        Listen for every insert/update/delete on coach_requests matching row_filter

        Returns:
            The channel, to be handed back to unsubscribe()
        """
        channel = self.db.channel(channel_name)
        channel.on_postgres_changes(
            event='*',
            schema='public',
            table=REQUESTS_TABLE,
            filter=row_filter,
            callback=on_event,
        )
        await channel.subscribe()

        log_info(f"Subscribed {channel_name} ({row_filter})")
        return channel

    async def unsubscribe(self, handle) -> None:
        await self.db.remove_channel(handle)
        log_info("Removed realtime channel")
