"""
Match update subscriptions.

A SubscriptionManager is owned by one client session. Listeners are acquired
with ``async with manager.subscribe(match_id, callback)`` and released when
the block exits, on error paths included. ``close()`` releases everything the
session still holds, e.g. on logout.
"""

import asyncio
import itertools
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Dict, Optional

from tracker.database.models import Match
from tracker.utils.logger import setup_logger

logger = setup_logger(__name__)

MatchCallback = Callable[[Match], Awaitable[None]]


class Subscription:
    """Handle for one registered match listener."""

    def __init__(self, subscription_id: int, match_id: int, callback: MatchCallback):
        self.subscription_id = subscription_id
        self.match_id = match_id
        self.callback = callback
        self.active = True

    def __repr__(self):
        return f"<Subscription(id={self.subscription_id}, match_id={self.match_id}, active={self.active})>"


class SubscriptionManager:
    """Session-scoped registry of match update listeners."""

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id
        self._subscriptions: Dict[int, Subscription] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def active_count(self) -> int:
        return len(self._subscriptions)

    @asynccontextmanager
    async def subscribe(self, match_id: int, callback: MatchCallback):
        """Register a listener for one match for the duration of the block"""
        if self._closed:
            raise RuntimeError(f"Subscription manager for session {self.session_id} is closed")

        subscription = Subscription(next(self._ids), match_id, callback)
        async with self._lock:
            self._subscriptions[subscription.subscription_id] = subscription
        logger.debug(f"Registered {subscription}")

        try:
            yield subscription
        finally:
            await self._release(subscription)

    async def publish(self, match: Match) -> int:
        """
        Deliver an updated match to every listener registered for it.

        A failing listener is logged and does not affect the others.

        Returns:
            Number of listeners notified successfully
        """
        async with self._lock:
            listeners = [
                subscription for subscription in self._subscriptions.values()
                if subscription.match_id == match.id
            ]

        delivered = 0
        for subscription in listeners:
            try:
                await subscription.callback(match)
                delivered += 1
            except Exception as e:
                logger.error(f"Listener {subscription.subscription_id} failed for Match {match.id}: {e}", exc_info=True)
        return delivered

    async def close(self) -> None:
        """Release every listener still held by this session"""
        async with self._lock:
            remaining = list(self._subscriptions.values())
            self._subscriptions.clear()
            self._closed = True

        for subscription in remaining:
            subscription.active = False
        logger.debug(f"Released {len(remaining)} listeners for session {self.session_id}")

    async def _release(self, subscription: Subscription) -> None:
        async with self._lock:
            self._subscriptions.pop(subscription.subscription_id, None)
        subscription.active = False
        logger.debug(f"Released {subscription}")
