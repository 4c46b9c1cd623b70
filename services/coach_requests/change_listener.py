"""
Change Listener - Realtime invalidation for coach requests
Subscribes to coach_requests changes for the current client and coach
identities and resyncs the request store when anything changes
"""
import asyncio
from typing import Dict, Optional, Set, Tuple

from utils.logger import log_info, log_debug
from .request_store import CLIENT_VIEW, COACH_VIEW

CHANNELS = {
    CLIENT_VIEW: ('coach_requests_changes', 'client_user_id'),
    COACH_VIEW: ('coach_requests_coach_changes', 'coach_id'),
}


class CoachRequestChangeListener:
    """
    Turns realtime row events into store resyncs.

    Event payloads are raw rows without the joined display fields, so they
    are only used as a signal; the store reloads from the remote store.
    """

    def __init__(self, repository, store):
        self.repository = repository
        self.store = store
        self._subscriptions: Dict[str, Tuple[str, object]] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def active_streams(self) -> Dict[str, str]:
        """Stream name to the identity it is watching"""
        return {stream: identity_id for stream, (identity_id, _) in self._subscriptions.items()}

    async def watch_client(self, user_id: Optional[str]) -> None:
        """Follow requests sent by this client; None tears the stream down"""
        await self._watch(CLIENT_VIEW, user_id)

    async def watch_coach(self, coach_id: Optional[str]) -> None:
        """Follow requests addressed to this coach; None tears the stream down"""
        await self._watch(COACH_VIEW, coach_id)

    async def sync_identity(self, identity) -> None:
        """Match both streams to whoever the identity says is signed in"""
        user = identity.current_user()
        coach = identity.current_coach()
        await self.watch_client(user['id'] if user else None)
        await self.watch_coach(coach['id'] if coach else None)

    async def stop(self) -> None:
        """Tear down every subscription; resyncs already started still finish"""
        for stream in list(self._subscriptions):
            await self._unwatch(stream)

    async def drain(self) -> None:
        """Wait for resyncs triggered by events received so far"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def _watch(self, stream: str, identity_id: Optional[str]) -> None:
        current = self._subscriptions.get(stream)
        if current and current[0] == identity_id:
            return

        if current:
            await self._unwatch(stream)

        if not identity_id:
            return

        channel_name, column = CHANNELS[stream]
        log_info(f"Setting up real-time subscription for {stream}: {identity_id}")
        handle = await self.repository.subscribe(
            channel_name, f"{column}=eq.{identity_id}", self._handler(stream, identity_id)
        )
        self._subscriptions[stream] = (identity_id, handle)

    async def _unwatch(self, stream: str) -> None:
        identity_id, handle = self._subscriptions.pop(stream)
        log_info(f"Cleaning up real-time subscription for {stream}: {identity_id}")
        await self.repository.unsubscribe(handle)

    def _handler(self, stream: str, identity_id: str):
        def on_event(payload: Dict) -> None:
            log_info(f"Real-time update received for {stream} {identity_id}")
            log_debug(f"Payload: {payload}")
            self.store.invalidate()

            # A store showing another viewer picks the change up on its next load
            if self.store.viewer != (stream, identity_id):
                return
            self._schedule_resync(stream, identity_id)

        return on_event

    def _schedule_resync(self, stream: str, identity_id: str) -> None:
        if stream == COACH_VIEW:
            resync = self.store.load_for_coach(identity_id)
        else:
            resync = self.store.load_for_client(identity_id)

        task = asyncio.get_running_loop().create_task(resync)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
