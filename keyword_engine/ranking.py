from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional

from .config import DEFAULT_CONFIG, KeywordConfig
from .models import AppRecord, RankingProbeResult
from .scoring import calculate_difficulty, calculate_popularity


logger = logging.getLogger(__name__)

# search(query, country) -> relevance-ranked apps
SearchFn = Callable[[str, str], Awaitable[List[AppRecord]]]


def position_change(previous_position: Optional[int], new_position: Optional[int]) -> Optional[int]:
    """Positive when the app moved up (10 -> 4 gives 6). None unless both are known."""
    if previous_position is None or new_position is None:
        return None
    return previous_position - new_position


def neutral_result(keyword: str, error: Optional[str] = None) -> RankingProbeResult:
    return RankingProbeResult(keyword=keyword, error=error)


def _find_position(results: List[AppRecord], target_app_id: str) -> Optional[int]:
    for index, app in enumerate(results):
        if app.id == target_app_id:
            return index + 1
    return None


async def probe(
    search: SearchFn,
    target_app_id: str,
    keyword: str,
    country: str = "US",
    previous_position: Optional[int] = None,
    *,
    config: KeywordConfig = DEFAULT_CONFIG,
) -> RankingProbeResult:
    """
    Search `keyword` and report where `target_app_id` ranks.

    A search failure is not an error for the caller: it yields a neutral
    result (unranked, zero scores) with `error` set.
    """
    target_app_id = str(target_app_id or "").strip()
    if not target_app_id:
        raise ValueError("target_app_id is required")

    try:
        results = list(await search(keyword, country))
    except Exception as exc:
        logger.warning("ranking check failed for %r (%s): %s", keyword, country, exc)
        return neutral_result(keyword, error=str(exc) or exc.__class__.__name__)

    position = _find_position(results, target_app_id)
    competing = [app for app in results if app.id != target_app_id]
    competing = competing[: config.max_competing_apps_for_difficulty]

    return RankingProbeResult(
        keyword=keyword,
        position=position,
        position_change=position_change(previous_position, position),
        popularity=calculate_popularity(len(results)),
        difficulty=calculate_difficulty(competing),
        competing_apps=competing,
        apps_in_ranking=competing[: config.max_apps_in_ranking_display],
        total_results=len(results),
    )


async def check_keyword_ranking(
    search: SearchFn,
    app_id: str,
    keyword: str,
    country: str = "US",
    previous_position: Optional[int] = None,
    *,
    config: KeywordConfig = DEFAULT_CONFIG,
) -> RankingProbeResult:
    return await probe(search, app_id, keyword, country, previous_position, config=config)
