from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence

from .config import DEFAULT_CONFIG, KeywordConfig
from .extraction import extract_candidates
from .models import AppRecord, DiscoveredKeyword, RankingProbeResult, TrackedKeyword
from .ranking import SearchFn, probe
from .store import KeywordStore
from .throttle import throttled_map


logger = logging.getLogger(__name__)

# competitors are usually well ranked already; look further down the list.
# Callers must search with a window at least this wide for the cutoff to bite.
COMPETITOR_RANK_CUTOFF = 50


async def _probe_candidates(
    search: SearchFn,
    target_app_id: str,
    candidates: Sequence[str],
    country: str,
    *,
    config: KeywordConfig,
    cancel: Optional[asyncio.Event],
    concurrency: int,
    max_position: Optional[int] = None,
) -> List[DiscoveredKeyword]:
    async def _check(keyword: str) -> RankingProbeResult:
        return await probe(search, target_app_id, keyword, country, config=config)

    found: List[DiscoveredKeyword] = []
    async for keyword, result in throttled_map(
        candidates,
        _check,
        delay=config.delay_seconds,
        concurrency=concurrency,
        cancel=cancel,
    ):
        if result.error is not None:
            logger.warning("skipping keyword %r for app %s: %s", keyword, target_app_id, result.error)
            continue
        if not result.ranked:
            continue
        if max_position is not None and result.position > max_position:
            continue
        found.append(DiscoveredKeyword(
            keyword=keyword,
            position=result.position,
            popularity=result.popularity,
            difficulty=result.difficulty,
            total_apps_in_ranking=result.total_results,
        ))

    found.sort(key=lambda d: d.position)
    return found


async def discover_ranking_keywords(
    search: SearchFn,
    app: AppRecord,
    country: str = "US",
    *,
    config: KeywordConfig = DEFAULT_CONFIG,
    cancel: Optional[asyncio.Event] = None,
    concurrency: int = 1,
) -> List[DiscoveredKeyword]:
    """
    Keywords from the app's own metadata that the app actually ranks for,
    best position first. Probes run one at a time with a fixed delay.
    """
    candidates = extract_candidates(app, config)[: config.max_keywords_to_check]
    logger.info("checking %d candidate keywords for app %s (%s)", len(candidates), app.id, country)
    found = await _probe_candidates(
        search, app.id, candidates, country,
        config=config, cancel=cancel, concurrency=concurrency,
    )
    logger.info("app %s ranks for %d/%d candidates", app.id, len(found), len(candidates))
    return found


async def extract_competitor_keywords(
    search: SearchFn,
    competitor_app: AppRecord,
    country: str = "US",
    *,
    config: KeywordConfig = DEFAULT_CONFIG,
    cancel: Optional[asyncio.Event] = None,
    concurrency: int = 1,
) -> List[DiscoveredKeyword]:
    candidates = extract_candidates(competitor_app, config)[: config.max_competitor_keywords]
    logger.info("checking %d candidate keywords for competitor %s", len(candidates), competitor_app.id)
    return await _probe_candidates(
        search, competitor_app.id, candidates, country,
        config=config, cancel=cancel, concurrency=concurrency,
        max_position=COMPETITOR_RANK_CUTOFF,
    )


async def check_tracked_keyword(
    store: KeywordStore,
    search: SearchFn,
    keyword_id: str,
    country: str = "US",
) -> Optional[TrackedKeyword]:
    """Re-probe one tracked keyword and persist the outcome."""
    tracked = store.get_keyword(keyword_id)
    if tracked is None:
        return None
    result = await probe(
        search, tracked.app_id, tracked.keyword, country, tracked.position, config=store.config,
    )
    return store.apply_probe_result(keyword_id, result)


async def check_all_keywords(
    store: KeywordStore,
    search: SearchFn,
    app_id: str,
    country: str = "US",
    *,
    cancel: Optional[asyncio.Event] = None,
) -> List[TrackedKeyword]:
    """
    Re-check every keyword tracked for `app_id`, persisting each result as
    soon as it arrives so a cancelled run keeps what it already checked.
    """
    keyword_ids = [k.id for k in store.list_keywords(app_id)]
    updated: List[TrackedKeyword] = []

    async def _check(keyword_id: str) -> Optional[TrackedKeyword]:
        return await check_tracked_keyword(store, search, keyword_id, country)

    async for _, result in throttled_map(
        keyword_ids,
        _check,
        delay=store.config.delay_seconds,
        cancel=cancel,
    ):
        if result is not None:
            updated.append(result)
    logger.info("checked %d/%d keywords for app %s", len(updated), len(keyword_ids), app_id)
    return updated
