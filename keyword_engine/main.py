# keyword_engine/main.py
from __future__ import annotations

import asyncio
import functools
import logging
import os
from contextlib import asynccontextmanager, suppress
from typing import Any, Dict, List, Optional

import httpx
from fastapi import FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, Field

from .config import load_config
from .discovery import (
    COMPETITOR_RANK_CUTOFF,
    check_all_keywords,
    check_tracked_keyword,
    discover_ranking_keywords,
    extract_competitor_keywords,
)
from .extraction import extract_candidates, generate_keyword_suggestions, generate_smart_recommendations
from .itunes_api import SEARCH_WINDOW, lookup_app, search_apps
from .models import AppRecord, KeywordSource
from .ranking import SearchFn, check_keyword_ranking
from .store import EventBus, JsonFileBackend, KeywordStore, MemoryBackend, TrackedAppStore
from .sync import SyncOutbox


logger = logging.getLogger(__name__)

TIMEOUT = float(os.getenv("APPSTORE_HTTP_TIMEOUT", "10"))
CONNECT_TIMEOUT = float(os.getenv("APPSTORE_CONNECT_TIMEOUT", "5"))
POOL_TIMEOUT = float(os.getenv("APPSTORE_POOL_TIMEOUT", "5"))
MAX_CONNECTIONS = int(os.getenv("APPSTORE_MAX_CONNECTIONS", "100"))
MAX_KEEPALIVE = int(os.getenv("APPSTORE_MAX_KEEPALIVE", "20"))
HTTP2_ENABLED = os.getenv("APPSTORE_HTTP2", "0").lower() in {"1", "true", "yes"}
STORE_PATH = os.getenv("KEYWORD_STORE_PATH", "")
SYNC_USER_ID = os.getenv("KEYWORD_SYNC_USER_ID", "")
SYNC_DEBOUNCE = float(os.getenv("KEYWORD_SYNC_DEBOUNCE", "2"))
DISCONNECT_POLL_INTERVAL = 0.5


def _build_outbox() -> Optional[SyncOutbox]:
    if not (SYNC_USER_ID and os.getenv("SUPABASE_URL")):
        return None
    from .supabase_sync import SupabaseSyncTarget

    return SyncOutbox(SupabaseSyncTarget.from_env(SYNC_USER_ID), debounce=SYNC_DEBOUNCE)


@asynccontextmanager
async def lifespan(app: FastAPI):
    timeout = httpx.Timeout(
        timeout=TIMEOUT,
        connect=CONNECT_TIMEOUT,
        read=TIMEOUT,
        write=TIMEOUT,
        pool=POOL_TIMEOUT,
    )
    limits = httpx.Limits(max_connections=MAX_CONNECTIONS, max_keepalive_connections=MAX_KEEPALIVE)
    config = load_config()
    backend = JsonFileBackend(STORE_PATH) if STORE_PATH else MemoryBackend()
    events = EventBus()
    outbox = _build_outbox()
    if outbox is not None:
        events.subscribe(outbox)

    async with httpx.AsyncClient(
        timeout=timeout,
        limits=limits,
        http2=HTTP2_ENABLED,
        follow_redirects=True,
    ) as client:
        app.state.http = client
        app.state.config = config
        app.state.keywords = KeywordStore(backend, config, events)
        app.state.tracked_apps = TrackedAppStore(backend, events)
        try:
            yield
        finally:
            if outbox is not None:
                await outbox.close()

app = FastAPI(title="App Store Keyword Engine", version="0.2.0", lifespan=lifespan)


def _search(request: Request, limit: int = SEARCH_WINDOW) -> SearchFn:
    return functools.partial(search_apps, request.app.state.http, limit=limit)


async def _watch_disconnect(request: Request, cancel: asyncio.Event) -> None:
    while not cancel.is_set():
        if await request.is_disconnected():
            logger.info("client disconnected, cancelling %s", request.url.path)
            cancel.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_INTERVAL)


class AppCountryBody(BaseModel):
    app: AppRecord
    country: str = Field("US", min_length=2, max_length=2)


class SuggestionsBody(BaseModel):
    app: AppRecord
    tags: List[str] = Field(default_factory=list)


class RecommendationsBody(BaseModel):
    keywords: List[str]
    limit: int = Field(20, ge=1, le=100)


class AddKeywordBody(BaseModel):
    keyword: str = Field(..., min_length=1, max_length=100)
    source: KeywordSource = KeywordSource.MANUAL


@app.get("/health")
async def health():
    return {"ok": True}


@app.get("/v1/itunes/search")
async def api_itunes_search(
    term: str = Query(..., min_length=1, max_length=200),
    country: str = Query("US", min_length=2, max_length=2),
    limit: int = Query(25, ge=1, le=200),
    fresh: bool = Query(False, description="Bypass cache"),
):
    try:
        results = await search_apps(
            app.state.http, term, country, limit=limit, use_cache=not fresh,
        )
        return {"term": term, "country": country.upper(), "results": results}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except httpx.HTTPStatusError as e:
        raise HTTPException(status_code=502, detail=f"Upstream error: {e.response.status_code}")
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/v1/itunes/lookup")
async def api_itunes_lookup(
    id: str = Query(..., min_length=1, max_length=32),
    country: str = Query("US", min_length=2, max_length=2),
    fresh: bool = Query(False, description="Bypass cache"),
):
    try:
        result = await lookup_app(app.state.http, id, country, use_cache=not fresh)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except httpx.HTTPStatusError as e:
        raise HTTPException(status_code=502, detail=f"Upstream error: {e.response.status_code}")
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    if result is None:
        raise HTTPException(status_code=404, detail=f"app {id} not found")
    return result


@app.get("/v1/keywords/rank")
async def api_keyword_rank(
    request: Request,
    app_id: str = Query(..., min_length=1, max_length=32),
    keyword: str = Query(..., min_length=1, max_length=100),
    country: str = Query("US", min_length=2, max_length=2),
    previous_position: Optional[int] = Query(None, ge=1),
):
    try:
        return await check_keyword_ranking(
            _search(request),
            app_id,
            keyword.strip(),
            country.upper(),
            previous_position,
            config=request.app.state.config,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/v1/keywords/candidates")
async def api_candidates(request: Request, body: AppCountryBody):
    return {"app_id": body.app.id, "candidates": extract_candidates(body.app, request.app.state.config)}


@app.post("/v1/keywords/discover")
async def api_discover(request: Request, body: AppCountryBody):
    cancel = asyncio.Event()
    watcher = asyncio.ensure_future(_watch_disconnect(request, cancel))
    try:
        items = await discover_ranking_keywords(
            _search(request), body.app, body.country.upper(),
            config=request.app.state.config, cancel=cancel,
        )
    finally:
        watcher.cancel()
        with suppress(asyncio.CancelledError):
            await watcher
    return {"app_id": body.app.id, "country": body.country.upper(), "items": items, "cancelled": cancel.is_set()}


@app.post("/v1/keywords/competitor")
async def api_competitor(request: Request, body: AppCountryBody):
    cancel = asyncio.Event()
    watcher = asyncio.ensure_future(_watch_disconnect(request, cancel))
    try:
        items = await extract_competitor_keywords(
            _search(request, limit=COMPETITOR_RANK_CUTOFF), body.app, body.country.upper(),
            config=request.app.state.config, cancel=cancel,
        )
    finally:
        watcher.cancel()
        with suppress(asyncio.CancelledError):
            await watcher
    return {"app_id": body.app.id, "country": body.country.upper(), "items": items, "cancelled": cancel.is_set()}


@app.post("/v1/keywords/suggestions")
async def api_suggestions(request: Request, body: SuggestionsBody):
    return {"items": generate_keyword_suggestions(body.app, body.tags, request.app.state.config)}


@app.post("/v1/keywords/recommendations")
async def api_recommendations(body: RecommendationsBody):
    return {"items": generate_smart_recommendations(body.keywords, limit=body.limit)}


@app.get("/v1/apps/{app_id}/keywords")
async def api_list_keywords(request: Request, app_id: str):
    return {"app_id": app_id, "items": request.app.state.keywords.list_keywords(app_id)}


@app.post("/v1/apps/{app_id}/keywords")
async def api_add_keyword(request: Request, app_id: str, body: AddKeywordBody):
    store: KeywordStore = request.app.state.keywords
    try:
        created = store.add_keyword(app_id, body.keyword, body.source)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if created is None:
        return {"created": False, "keyword": store.find_keyword(app_id, body.keyword)}
    return {"created": True, "keyword": created}


@app.post("/v1/apps/{app_id}/keywords/check")
async def api_check_all_keywords(
    request: Request,
    app_id: str,
    country: str = Query("US", min_length=2, max_length=2),
):
    cancel = asyncio.Event()
    watcher = asyncio.ensure_future(_watch_disconnect(request, cancel))
    try:
        items = await check_all_keywords(
            request.app.state.keywords, _search(request), app_id, country.upper(), cancel=cancel,
        )
    finally:
        watcher.cancel()
        with suppress(asyncio.CancelledError):
            await watcher
    return {"app_id": app_id, "items": items, "cancelled": cancel.is_set()}


@app.patch("/v1/keywords/{keyword_id}")
async def api_update_keyword(request: Request, keyword_id: str, updates: Dict[str, Any]):
    try:
        updated = request.app.state.keywords.update_keyword(keyword_id, updates)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if updated is None:
        raise HTTPException(status_code=404, detail=f"keyword {keyword_id} not found")
    return updated


@app.delete("/v1/keywords/{keyword_id}")
async def api_remove_keyword(request: Request, keyword_id: str):
    return {"removed": request.app.state.keywords.remove_keyword(keyword_id)}


@app.post("/v1/keywords/{keyword_id}/check")
async def api_check_keyword(
    request: Request,
    keyword_id: str,
    country: str = Query("US", min_length=2, max_length=2),
):
    updated = await check_tracked_keyword(
        request.app.state.keywords, _search(request), keyword_id, country.upper(),
    )
    if updated is None:
        raise HTTPException(status_code=404, detail=f"keyword {keyword_id} not found")
    return updated


@app.get("/v1/tracked-apps")
async def api_list_tracked_apps(request: Request):
    return {"items": request.app.state.tracked_apps.list_apps()}


@app.post("/v1/tracked-apps")
async def api_track_app(request: Request, body: AppRecord):
    store: TrackedAppStore = request.app.state.tracked_apps
    created = store.add_app(body)
    return {"created": created is not None, "tracked_app": created or store.get_app(body.id)}


@app.delete("/v1/tracked-apps/{app_id}")
async def api_untrack_app(request: Request, app_id: str):
    return {"removed": request.app.state.tracked_apps.remove_app(app_id)}


@app.post("/v1/tracked-apps/{app_id}/refresh")
async def api_refresh_tracked_app(
    request: Request,
    app_id: str,
    country: str = Query("US", min_length=2, max_length=2),
):
    store: TrackedAppStore = request.app.state.tracked_apps
    if store.get_app(app_id) is None:
        raise HTTPException(status_code=404, detail=f"app {app_id} is not tracked")
    try:
        fresh = await lookup_app(request.app.state.http, app_id, country, use_cache=False)
    except httpx.HTTPStatusError as e:
        raise HTTPException(status_code=502, detail=f"Upstream error: {e.response.status_code}")
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    if fresh is None:
        raise HTTPException(status_code=404, detail=f"app {app_id} not found upstream")
    return store.update_app(app_id, fresh)
