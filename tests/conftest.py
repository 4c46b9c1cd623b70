# tests/conftest.py
"""
Pytest configuration and shared fixtures for all tests
"""

import asyncio
import itertools
import os
import sys
import uuid
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.coach_requests.errors import (
    RecordNotFoundError,
    StoreError,
    TransientStoreError,
    UniqueViolationError,
)
from services.coach_requests.identity import SessionIdentity
from services.coach_requests.request_store import CoachRequestStore

CLIENT_USER_ID = 'client-user-1'
COACH_USER_ID = 'coach-user-1'
COACH_ID = 'coach-1'
OTHER_COACH_ID = 'coach-2'


def create_mock_supabase_response(data=None, count=None):
    """Create a properly structured Supabase response mock"""
    response = MagicMock()
    response.data = data if data is not None else []
    response.count = count
    return response


@pytest.fixture(scope="function")
def mock_db():
    """Async Supabase client mock whose query builder chains back to itself"""
    db = MagicMock()

    mock_query = MagicMock()
    for method in ('select', 'insert', 'update', 'delete', 'eq', 'neq',
                   'in_', 'order', 'limit', 'single'):
        getattr(mock_query, method).return_value = mock_query

    # Configure execute to return proper response structure
    mock_query.execute = AsyncMock(return_value=create_mock_supabase_response([]))

    db.table.return_value = mock_query
    db.remove_channel = AsyncMock()
    return db


class FakeClock:
    """Monotonic clock the tests move by hand"""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeCoachRequestRepository:
    """
    In-memory stand-in for CoachRequestRepository.

    Every call yields to the loop once before touching state, so concurrent
    operations interleave the way they would against a real store, while
    each write still lands atomically.
    """

    def __init__(self):
        self.requests = {}
        self.assignments = []
        self.profiles = {}
        self.coaches = {}
        self.broken_profiles = set()
        self.calls = []
        self.subscriptions = {}
        self._failures = {}
        self._clock = itertools.count(1)

    # ---- test helpers ----

    def fail_next(self, method, error, times=1):
        self._failures.setdefault(method, []).extend([error] * times)

    def add_request(self, client_user_id=CLIENT_USER_ID, coach_id=COACH_ID, status='pending',
                    message=None, responded_by=None, request_id=None):
        request_id = request_id or str(uuid.uuid4())
        row = {
            'id': request_id,
            'client_user_id': client_user_id,
            'coach_id': coach_id,
            'status': status,
            'message': message,
            'requested_at': self._timestamp(),
            'responded_at': self._timestamp() if status != 'pending' else None,
            'responded_by': (responded_by or COACH_USER_ID) if status != 'pending' else None,
        }
        self.requests[request_id] = row
        return row

    def rows_for(self, client_user_id, coach_id):
        return [row for row in self.requests.values()
                if row['client_user_id'] == client_user_id and row['coach_id'] == coach_id]

    def emit(self, channel_name, payload=None):
        for callback in list(self.subscriptions.get(channel_name, {}).values()):
            callback(payload or {'eventType': 'UPDATE'})

    def _timestamp(self):
        return f"2026-10-16T10:00:{next(self._clock):02d}+00:00"

    async def _enter(self, method):
        self.calls.append(method)
        await asyncio.sleep(0)
        pending = self._failures.get(method)
        if pending:
            raise pending.pop(0)

    # ---- repository interface ----

    async def query_requests(self, client_user_id=None, coach_id=None):
        await self._enter('query_requests')
        rows = [
            dict(row) for row in self.requests.values()
            if (client_user_id is None or row['client_user_id'] == client_user_id)
            and (coach_id is None or row['coach_id'] == coach_id)
        ]
        return sorted(rows, key=lambda row: row['requested_at'], reverse=True)

    async def query_request_by_id(self, request_id):
        await self._enter('query_request_by_id')
        if request_id not in self.requests:
            raise RecordNotFoundError(f"Request {request_id} not found", 'PGRST116')
        return dict(self.requests[request_id])

    async def insert_request(self, row):
        await self._enter('insert_request')
        for existing in self.requests.values():
            if (existing['client_user_id'], existing['coach_id'], existing['status']) == \
                    (row['client_user_id'], row['coach_id'], row['status']):
                raise UniqueViolationError('duplicate key value violates unique constraint', '23505')
        stored = dict(row, id=str(uuid.uuid4()), requested_at=self._timestamp(),
                      responded_at=None, responded_by=None)
        self.requests[stored['id']] = stored
        return dict(stored)

    async def update_request_conditional(self, request_id, expected_status, fields):
        await self._enter('update_request_conditional')
        row = self.requests.get(request_id)
        if row is None or row['status'] != expected_status:
            return 0
        row.update(fields)
        return 1

    async def delete_requests(self, request_ids):
        await self._enter('delete_requests')
        for request_id in request_ids:
            self.requests.pop(request_id, None)

    async def find_active_assignment(self, coach_id, client_user_id):
        await self._enter('find_active_assignment')
        for assignment in self.assignments:
            if (assignment['coach_id'] == coach_id and assignment['client_user_id'] == client_user_id
                    and assignment['is_active']):
                return dict(assignment)
        return None

    async def insert_assignment(self, coach_id, client_user_id, assigned_by=None, notes=None):
        await self._enter('insert_assignment')
        assignment = {
            'id': str(uuid.uuid4()),
            'coach_id': coach_id,
            'client_user_id': client_user_id,
            'is_active': True,
            'assigned_by': assigned_by,
            'notes': notes,
        }
        self.assignments.append(assignment)
        return dict(assignment)

    async def query_profile(self, user_id):
        await self._enter('query_profile')
        if user_id in self.broken_profiles:
            raise StoreError('permission denied for table profiles', '42501')
        return self.profiles.get(user_id)

    async def query_coach(self, coach_id):
        await self._enter('query_coach')
        return self.coaches.get(coach_id)

    async def subscribe(self, channel_name, row_filter, on_event):
        await self._enter('subscribe')
        handle = (channel_name, row_filter, uuid.uuid4().hex)
        self.subscriptions.setdefault(channel_name, {})[handle] = on_event
        return handle

    async def unsubscribe(self, handle):
        await self._enter('unsubscribe')
        self.subscriptions.get(handle[0], {}).pop(handle, None)


@pytest.fixture
def test_config():
    """Create a test configuration object"""
    config = Mock()
    config.TIMEZONE = 'UTC'
    config.COACH_REQUEST_CACHE_SECONDS = 5.0
    config.COACH_REQUEST_MAX_RETRIES = 3
    config.COACH_REQUEST_RETRY_DELAY = 1.0
    config.COACH_REQUEST_MESSAGE_MAX_LENGTH = 500
    config.COACH_REQUEST_PROCESSED_LIMIT = 10
    config.LOG_LEVEL = 'INFO'
    return config


@pytest.fixture
def fake_repo():
    repo = FakeCoachRequestRepository()
    repo.profiles[CLIENT_USER_ID] = {
        'full_name': 'Thandi Nkosi', 'bio': 'Training for a half marathon',
        'fitness_level': 'intermediate', 'goals': 'Run 21km under 2h',
    }
    repo.coaches[COACH_ID] = {'full_name': 'Sipho Dlamini', 'specialization': 'Endurance'}
    return repo


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    """Delays the retry wrapper asked for, in order"""
    return []


def _make_store(repo, identity, config, clock, sleeps, now='2026-10-16T12:00:00+00:00'):
    async def fake_sleep(delay):
        sleeps.append(delay)

    return CoachRequestStore(
        repo, identity, config,
        clock=clock,
        sleep=fake_sleep,
        now=lambda: now,
    )


@pytest.fixture
def client_identity():
    return SessionIdentity(user={'id': CLIENT_USER_ID})


@pytest.fixture
def coach_identity():
    return SessionIdentity(user={'id': COACH_USER_ID}, coach={'id': COACH_ID, 'full_name': 'Sipho Dlamini'})


@pytest.fixture
def client_store(fake_repo, client_identity, test_config, clock, sleeps):
    return _make_store(fake_repo, client_identity, test_config, clock, sleeps)


@pytest.fixture
def coach_store(fake_repo, coach_identity, test_config, clock, sleeps):
    return _make_store(fake_repo, coach_identity, test_config, clock, sleeps)


@pytest.fixture
def make_store(fake_repo, test_config, clock, sleeps):
    """Build extra stores on the same fake repository, e.g. a second device"""
    def factory(identity, **kwargs):
        return _make_store(fake_repo, identity, test_config, clock, sleeps, **kwargs)
    return factory


@pytest.fixture
def transient_error():
    return TransientStoreError('Network error: connection reset')
