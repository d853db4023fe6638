from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

import httpx

from .cache import cache_from_env
from .models import AppRecord
from .utils import normalize_keyword


logger = logging.getLogger(__name__)

ITUNES_BASE = "https://itunes.apple.com"

# the storefront search window; ranks beyond it read as "unranked"
SEARCH_WINDOW = int(os.getenv("APPSTORE_SEARCH_WINDOW", "25"))

_SEARCH_CACHE = cache_from_env("APPSTORE_CACHE_TTL_ITUNES_SEARCH")
_LOOKUP_CACHE = cache_from_env("APPSTORE_CACHE_TTL_ITUNES_LOOKUP")

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}
_HTTP_RETRIES = int(os.getenv("APPSTORE_HTTP_RETRIES", "2"))
_HTTP_BACKOFF = float(os.getenv("APPSTORE_HTTP_BACKOFF", "0.3"))


async def _request_with_retries(
    client: httpx.AsyncClient,
    url: str,
    params: Dict[str, Any],
) -> httpx.Response:
    for attempt in range(_HTTP_RETRIES + 1):
        try:
            resp = await client.get(url, params=params)
            if resp.status_code in _RETRYABLE_STATUS:
                raise httpx.HTTPStatusError(
                    f"Retryable status {resp.status_code}", request=resp.request, response=resp
                )
            resp.raise_for_status()
            return resp
        except (httpx.TimeoutException, httpx.RequestError, httpx.HTTPStatusError) as exc:
            if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code not in _RETRYABLE_STATUS:
                raise
            if attempt >= _HTTP_RETRIES:
                raise
            delay = _HTTP_BACKOFF * (2 ** attempt)
            logger.warning("iTunes request failed (%s), retrying in %.1fs", exc, delay)
            await asyncio.sleep(delay)
    raise RuntimeError("request failed without exception")


def _normalize_country(country: str) -> str:
    return (country or "US").upper()


def _validate_limit(limit: int) -> int:
    limit = int(limit)
    if limit < 1 or limit > 200:
        raise ValueError("limit must be between 1 and 200")
    return limit


async def search_apps(
    client: httpx.AsyncClient,
    query: str,
    country: str = "US",
    *,
    limit: int = SEARCH_WINDOW,
    use_cache: bool = True,
) -> List[AppRecord]:
    """
    Relevance-ranked apps for a free-text query in one storefront.

    Matching is case-insensitive upstream, so the cache key is the
    normalized query. Raises on network / upstream errors after retries.
    """
    query = (query or "").strip()
    if not query:
        raise ValueError("query is required")
    limit = _validate_limit(limit)
    country = _normalize_country(country)
    cache_key = ("search", country, normalize_keyword(query), limit)

    async def _fetch() -> List[AppRecord]:
        params = {
            "term": query,
            "country": country,
            "entity": "software",
            "limit": limit,
        }
        resp = await _request_with_retries(client, f"{ITUNES_BASE}/search", params=params)
        results = resp.json().get("results", [])
        return [AppRecord.from_itunes(item) for item in results if item.get("trackId") is not None]

    if use_cache and _SEARCH_CACHE is not None:
        apps, _ = await _SEARCH_CACHE.get_or_set(cache_key, _fetch)
        return list(apps)
    return await _fetch()


async def lookup_app(
    client: httpx.AsyncClient,
    app_id: str,
    country: str = "US",
    *,
    use_cache: bool = True,
) -> Optional[AppRecord]:
    app_id = str(app_id or "").strip()
    if not app_id:
        raise ValueError("app_id is required")
    country = _normalize_country(country)
    cache_key = ("lookup", country, app_id)

    async def _fetch() -> Optional[AppRecord]:
        params = {"id": app_id, "country": country, "entity": "software"}
        resp = await _request_with_retries(client, f"{ITUNES_BASE}/lookup", params=params)
        for item in resp.json().get("results", []):
            if str(item.get("trackId")) == app_id:
                return AppRecord.from_itunes(item)
        return None

    if use_cache and _LOOKUP_CACHE is not None:
        app, _ = await _LOOKUP_CACHE.get_or_set(cache_key, _fetch)
        return app
    return await _fetch()
