from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

from .models import TrackedApp, TrackedKeyword
from .store import KeywordDeleted, KeywordUpserted, TrackedAppDeleted, TrackedAppUpserted


logger = logging.getLogger(__name__)


class SyncTarget(Protocol):
    async def upsert_keywords(self, keywords: List[TrackedKeyword]) -> bool: ...

    async def delete_keywords(self, keyword_ids: List[str]) -> bool: ...

    async def upsert_tracked_apps(self, apps: List[TrackedApp]) -> bool: ...

    async def delete_tracked_apps(self, app_ids: List[str]) -> bool: ...


class SyncOutbox:
    """
    EventBus subscriber that mirrors store changes to a remote target.

    Events are coalesced per entity (the latest event wins) and flushed in
    batches `debounce` seconds after the last event. A failed batch stays
    queued for the next flush unless a newer event replaced it meanwhile.
    """

    def __init__(self, target: SyncTarget, debounce: float = 2.0) -> None:
        self.target = target
        self.debounce = max(0.0, float(debounce))
        self._keywords: Dict[str, Any] = {}
        self._apps: Dict[str, Any] = {}
        self._timer: Optional[asyncio.TimerHandle] = None
        self._flush_task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> int:
        return len(self._keywords) + len(self._apps)

    def __call__(self, event: Any) -> None:
        if isinstance(event, KeywordUpserted):
            self._keywords[event.keyword.id] = event
        elif isinstance(event, KeywordDeleted):
            self._keywords[event.keyword_id] = event
        elif isinstance(event, TrackedAppUpserted):
            self._apps[event.tracked_app.id] = event
        elif isinstance(event, TrackedAppDeleted):
            self._apps[event.app_id] = event
        else:
            return
        self._schedule()

    def _schedule(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop (sync caller): leave it queued for an explicit flush()
            return
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self.debounce, self._start_flush)

    def _start_flush(self) -> None:
        self._timer = None
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = asyncio.ensure_future(self.flush())
        else:
            self._schedule()

    async def flush(self) -> bool:
        """Send everything queued. Returns False if any batch failed."""
        keywords, self._keywords = self._keywords, {}
        apps, self._apps = self._apps, {}
        ok = True

        upserts = [e.keyword for e in keywords.values() if isinstance(e, KeywordUpserted)]
        deletes = [k for k, e in keywords.items() if isinstance(e, KeywordDeleted)]
        app_upserts = [e.tracked_app for e in apps.values() if isinstance(e, TrackedAppUpserted)]
        app_deletes = [k for k, e in apps.items() if isinstance(e, TrackedAppDeleted)]

        if upserts and not await self._send("upsert_keywords", upserts):
            self._requeue(self._keywords, keywords, [k.id for k in upserts])
            ok = False
        if deletes and not await self._send("delete_keywords", deletes):
            self._requeue(self._keywords, keywords, deletes)
            ok = False
        if app_upserts and not await self._send("upsert_tracked_apps", app_upserts):
            self._requeue(self._apps, apps, [a.id for a in app_upserts])
            ok = False
        if app_deletes and not await self._send("delete_tracked_apps", app_deletes):
            self._requeue(self._apps, apps, app_deletes)
            ok = False
        return ok

    async def close(self) -> bool:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._flush_task is not None and not self._flush_task.done():
            await self._flush_task
        return await self.flush()

    async def _send(self, method: str, batch: List[Any]) -> bool:
        try:
            ok = await getattr(self.target, method)(batch)
        except Exception:
            logger.exception("sync %s failed for %d items", method, len(batch))
            return False
        if not ok:
            logger.warning("sync %s rejected %d items", method, len(batch))
        return bool(ok)

    @staticmethod
    def _requeue(queue: Dict[str, Any], sent: Dict[str, Any], ids: List[str]) -> None:
        for entity_id in ids:
            queue.setdefault(entity_id, sent[entity_id])
