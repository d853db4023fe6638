"""AI collaborators, consumed through these protocols only.

Tag generation and review summarization live in another service; the
keyword engine uses generated tags as extra seed keywords.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Sequence

from .config import DEFAULT_CONFIG, KeywordConfig
from .extraction import generate_keyword_suggestions
from .models import AnalysisResult, AppRecord, KeywordSuggestion


logger = logging.getLogger(__name__)


class TagGenerator(Protocol):
    async def generate_tags(self, app_name: str, reviews: Sequence[str]) -> List[str]: ...


class Summarizer(Protocol):
    async def summarize(self, app_name: str, reviews: Sequence[str]) -> AnalysisResult: ...


async def suggest_keywords(
    app: AppRecord,
    tag_generator: Optional[TagGenerator] = None,
    reviews: Sequence[str] = (),
    *,
    config: KeywordConfig = DEFAULT_CONFIG,
) -> List[KeywordSuggestion]:
    """Keyword suggestions seeded by AI tags; metadata only if tagging fails."""
    tags: List[str] = []
    if tag_generator is not None:
        try:
            tags = list(await tag_generator.generate_tags(app.name, reviews))
        except Exception as exc:
            logger.warning("tag generation failed for app %s: %s", app.id, exc)
    return generate_keyword_suggestions(app, tags, config)
