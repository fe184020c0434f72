"""
auth/activity.py -- Fire-and-forget audit trail.

dispatch() schedules the write as an independent asyncio task and returns
immediately; the caller's response never waits on it and never sees its
failure. The task reference is held in _pending until it finishes (the event
loop only keeps weak references to tasks) and its outcome is observed by a
done-callback purely for logging. drain() lets shutdown and tests wait for
outstanding writes.
"""

from __future__ import annotations

import asyncio
import logging

from auth.models import ActivityLog, ClientInfo
from auth.store import UserStore
from cache.store import CacheService, user_activities_key

logger = logging.getLogger("carterisland.activity")


class ActivityRecorder:
    def __init__(self, store: UserStore, cache: CacheService) -> None:
        self.store = store
        self.cache = cache
        self._pending: set[asyncio.Task] = set()

    async def record(
        self,
        user_id: int,
        action: str,
        description: str,
        client: ClientInfo | None = None,
    ) -> int:
        """Write one audit record and drop the user's cached activity list."""
        client = client or ClientInfo()
        entry = ActivityLog(
            user_id=user_id,
            action=action,
            description=description,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        log_id = await asyncio.to_thread(self.store.record_activity, entry)
        await self.cache.delete(user_activities_key(user_id))
        return log_id

    def dispatch(
        self,
        user_id: int,
        action: str,
        description: str,
        client: ClientInfo | None = None,
    ) -> asyncio.Task:
        """Schedule record() without awaiting it. Must be called from a running loop."""
        task = asyncio.create_task(self.record(user_id, action, description, client))
        self._pending.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.warning("Activity write cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Activity log error: %s", exc, exc_info=exc)

    async def drain(self) -> None:
        """Wait for every outstanding write. Failures were already logged."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
