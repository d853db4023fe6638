"""Supabase mirror of tracked keywords and tracked apps.

Rows are scoped per user; the user id comes from whoever owns auth, this
module only writes. The supabase client is synchronous, so every call runs
in a worker thread.
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

from supabase import Client, create_client

from .models import TrackedApp, TrackedKeyword


logger = logging.getLogger(__name__)

KEYWORDS_TABLE = "user_keywords"
TRACKED_APPS_TABLE = "user_tracked_apps"


def keyword_row(user_id: str, keyword: TrackedKeyword) -> Dict[str, Any]:
    data = keyword.model_dump(mode="json")
    return {
        "user_id": user_id,
        "keyword_id": data["id"],
        "app_id": data["app_id"],
        "keyword": data["keyword"],
        "source": data["source"],
        "position": data["position"],
        "previous_position": data["previous_position"],
        "position_change": data["position_change"],
        "last_checked": data["last_checked"],
        "notes": data["notes"],
        "popularity": data["popularity"],
        "difficulty": data["difficulty"],
        "apps_in_ranking": data["apps_in_ranking"],
        "total_apps_in_ranking": data["total_apps_in_ranking"],
        "history": data["history"],
        "created_at": data["created_at"],
    }


def tracked_app_row(user_id: str, tracked: TrackedApp) -> Dict[str, Any]:
    data = tracked.model_dump(mode="json")
    return {
        "user_id": user_id,
        "app_id": data["id"],
        "app_data": data["app"],
        "tracked_since": data["tracked_since"],
        "last_checked": data["last_checked"],
        "snapshots": data["snapshots"],
    }


class SupabaseSyncTarget:
    def __init__(self, client: Client, user_id: str) -> None:
        if not user_id:
            raise ValueError("user_id is required")
        self.client = client
        self.user_id = user_id

    @classmethod
    def from_env(cls, user_id: str, url: Optional[str] = None, key: Optional[str] = None) -> "SupabaseSyncTarget":
        """Build from SUPABASE_URL / SUPABASE_SECRET_KEY unless given explicitly."""
        url = url or os.environ["SUPABASE_URL"]
        key = key or os.environ["SUPABASE_SECRET_KEY"]
        return cls(create_client(url, key), user_id)

    def _upsert(self, table: str, rows: List[Dict[str, Any]], on_conflict: str) -> None:
        self.client.table(table).upsert(rows, on_conflict=on_conflict).execute()
        logger.info("%s: upserted %d rows", table, len(rows))

    def _delete(self, table: str, column: str, ids: List[str]) -> None:
        (
            self.client.table(table)
            .delete()
            .eq("user_id", self.user_id)
            .in_(column, ids)
            .execute()
        )
        logger.info("%s: deleted %d rows", table, len(ids))

    async def _run(self, fn, *args) -> bool:
        try:
            await asyncio.to_thread(fn, *args)
        except Exception as exc:
            logger.error("supabase sync failed: %s", exc)
            return False
        return True

    async def upsert_keywords(self, keywords: List[TrackedKeyword]) -> bool:
        if not keywords:
            return True
        rows = [keyword_row(self.user_id, k) for k in keywords]
        return await self._run(self._upsert, KEYWORDS_TABLE, rows, "user_id,keyword_id")

    async def delete_keywords(self, keyword_ids: List[str]) -> bool:
        if not keyword_ids:
            return True
        return await self._run(self._delete, KEYWORDS_TABLE, "keyword_id", keyword_ids)

    async def upsert_tracked_apps(self, apps: List[TrackedApp]) -> bool:
        if not apps:
            return True
        rows = [tracked_app_row(self.user_id, a) for a in apps]
        return await self._run(self._upsert, TRACKED_APPS_TABLE, rows, "user_id,app_id")

    async def delete_tracked_apps(self, app_ids: List[str]) -> bool:
        if not app_ids:
            return True
        return await self._run(self._delete, TRACKED_APPS_TABLE, "app_id", app_ids)
