from __future__ import annotations

import os
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


ENV_PREFIX = "KEYWORD_"


class KeywordConfig(BaseModel):
    """
    Tunables for discovery, ranking checks and history tracking.

    Every field can be overridden with an env var named KEYWORD_<FIELD>,
    e.g. KEYWORD_DELAY_BETWEEN_KEYWORD_CHECKS=500.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    # discovery
    max_keywords_to_check: int = Field(50, ge=1)
    max_competitor_keywords: int = Field(30, ge=1)

    # extraction
    max_phrases_from_description: int = Field(20, ge=0)
    max_metadata_keywords: int = Field(20, ge=1)

    # display / scoring
    max_apps_in_ranking_display: int = Field(4, ge=0)
    max_competing_apps_for_difficulty: int = Field(10, ge=1)

    # rate limiting, milliseconds
    delay_between_keyword_checks: int = Field(200, ge=0)

    # history
    history_retention_days: int = Field(30, ge=1)

    # suggestions
    max_keyword_suggestions: int = Field(30, ge=1)

    @property
    def delay_seconds(self) -> float:
        return self.delay_between_keyword_checks / 1000.0


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for name in KeywordConfig.model_fields:
        raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is None or not raw.strip():
            continue
        out[name] = raw.strip()
    return out


def load_config(
    environ: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> KeywordConfig:
    """Build a config from env vars, then explicit overrides. Invalid values raise."""
    values = _env_overrides(os.environ if environ is None else environ)
    values.update(overrides)
    return KeywordConfig.model_validate(values)


DEFAULT_CONFIG = KeywordConfig()
