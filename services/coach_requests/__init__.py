"""
Coach Request Services
Coach request lifecycle: sending, answering, caching and realtime resync
"""
from typing import Tuple

from supabase import AsyncClient, acreate_client

from config import Config
from utils.logger import log_info, log_error, setup_logger

from .errors import (
    ErrorKind,
    OperationResult,
    RecordNotFoundError,
    StoreError,
    TransientStoreError,
    UniqueViolationError,
)
from .repository import CoachRequestRepository
from .request_cache import RequestCache
from .request_store import CoachRequestStore
from .change_listener import CoachRequestChangeListener
from .identity import SessionIdentity


async def init_supabase(url: str, key: str) -> AsyncClient:
    """Initialize the async Supabase client"""
    try:
        if not url or not key:
            raise ValueError("Missing Supabase credentials")

        client = await acreate_client(url, key)
        log_info("Supabase client initialized successfully")
        return client

    except Exception as e:
        log_error(f"Failed to initialize Supabase: {str(e)}")
        raise


async def create_coach_request_services(config=Config, supabase_client=None
                                        ) -> Tuple[CoachRequestStore, CoachRequestChangeListener]:
    """Wire a request store and its change listener for the signed-in session"""
    setup_logger(level=config.LOG_LEVEL)
    if supabase_client is None:
        supabase_client = await init_supabase(config.SUPABASE_URL, config.SUPABASE_SERVICE_KEY)

    repository = CoachRequestRepository(supabase_client, config.TIMEZONE)
    identity = await SessionIdentity.from_supabase(supabase_client, repository)
    store = CoachRequestStore(repository, identity, config)
    listener = CoachRequestChangeListener(repository, store)
    await listener.sync_identity(identity)
    return store, listener


__all__ = [
    'CoachRequestChangeListener',
    'CoachRequestRepository',
    'CoachRequestStore',
    'ErrorKind',
    'OperationResult',
    'RecordNotFoundError',
    'RequestCache',
    'SessionIdentity',
    'StoreError',
    'TransientStoreError',
    'UniqueViolationError',
    'create_coach_request_services',
    'init_supabase',
]
