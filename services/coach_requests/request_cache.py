"""
Request Cache - In-memory projection of the viewer's coach requests

Holds the list the view layer renders, plus the staleness policy that
decides whether a load should hit the store. The policy only trims
traffic; it never protects against races.
"""
import time
from typing import Callable, Optional, Tuple

from models.coach_request import CoachRequest


class RequestCache:
    """Viewer-scoped request list with a TTL and an in-flight flag"""

    def __init__(self, ttl_seconds: float = 5.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock

        self._requests: Tuple[CoachRequest, ...] = ()
        self._last_fetch: Optional[float] = None
        self._loading = False
        self._reload_requested = False

    @property
    def requests(self) -> Tuple[CoachRequest, ...]:
        return self._requests

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def reload_requested(self) -> bool:
        return self._reload_requested

    def is_fresh(self) -> bool:
        """True while the last fetch is inside the window and there is something to show"""
        if self._last_fetch is None or not self._requests:
            return False
        return self.clock() - self._last_fetch < self.ttl_seconds

    def begin_load(self) -> bool:
        """
        Claim the single load slot

        Returns:
            False if a load is already running
        """
        if self._loading:
            return False

        self._loading = True
        self._reload_requested = False
        self._last_fetch = self.clock()
        return True

    def finish_load(self, requests: Tuple[CoachRequest, ...]) -> bool:
        """
        Store a completed load and release the slot

        Returns:
            True if an invalidation arrived mid-load and another load is due
        """
        self._requests = tuple(requests)
        return self._release()

    def fail_load(self) -> bool:
        """Drop the list after a failed load and release the slot"""
        self._requests = ()
        return self._release()

    def abort_load(self) -> None:
        """Release the slot of a load that never finished; the list is kept but marked stale"""
        if not self._loading:
            return
        self._loading = False
        self._reload_requested = False
        self._last_fetch = None

    def _release(self) -> bool:
        self._loading = False
        if self._reload_requested:
            self._reload_requested = False
            self._last_fetch = None
            return True
        return False

    def invalidate(self) -> None:
        """Force the next load through; flags a follow-up if one is running now"""
        self._last_fetch = None
        if self._loading:
            self._reload_requested = True

    # ============= OPTIMISTIC UPDATES =============

    def snapshot(self) -> Tuple[CoachRequest, ...]:
        # Tuples of frozen dataclasses, so the value itself is the copy
        return self._requests

    def replace(self, requests: Tuple[CoachRequest, ...]) -> None:
        self._requests = tuple(requests)

    def restore_entry(self, snapshot: Tuple[CoachRequest, ...], request_id: str) -> None:
        """
        Put one request back the way the snapshot had it

        Other entries keep whatever concurrent operations did to them, so
        a failed accept of one request cannot undo another's optimistic
        update. With nothing interleaved the list ends up equal to the snapshot.
        """
        original = next((request for request in snapshot if request.id == request_id), None)
        if original is None:
            return

        self._requests = tuple(
            original if request.id == request_id else request
            for request in self._requests
        )
