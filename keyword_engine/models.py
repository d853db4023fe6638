from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .utils import format_count, utc_now


class KeywordSource(str, Enum):
    EXTRACTED = "extracted"
    AI_SUGGESTED = "ai-suggested"
    MANUAL = "manual"
    COMPETITOR = "competitor"


class AppRecord(BaseModel):
    """One app as returned by the search / lookup collaborator. Never mutated."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    developer: str = ""
    icon: str = ""
    rating: float = Field(0.0, ge=0.0, le=5.0)
    reviews_count: str = "0"
    description: Optional[str] = None
    primary_genre_name: Optional[str] = None
    version: Optional[str] = None
    price: Optional[float] = None

    @classmethod
    def from_itunes(cls, item: Dict[str, Any]) -> "AppRecord":
        icon = item.get("artworkUrl100") or ""
        try:
            rating = float(item.get("averageUserRating") or 0.0)
        except (TypeError, ValueError):
            rating = 0.0
        return cls(
            id=str(item.get("trackId", "")),
            name=item.get("trackName") or "",
            developer=item.get("artistName") or "",
            icon=icon.replace("100x100", "256x256"),
            rating=max(0.0, min(5.0, rating)),
            reviews_count=format_count(item.get("userRatingCount") or 0),
            description=item.get("description"),
            primary_genre_name=item.get("primaryGenreName"),
            version=item.get("version"),
            price=item.get("price"),
        )


class RankingAppRef(BaseModel):
    id: str
    name: str = ""
    icon: str = ""

    @classmethod
    def from_app(cls, app: AppRecord) -> "RankingAppRef":
        return cls(id=app.id, name=app.name, icon=app.icon)


class RankingProbeResult(BaseModel):
    keyword: str
    position: Optional[int] = None
    position_change: Optional[int] = None
    popularity: int = 0
    difficulty: int = 0
    competing_apps: List[AppRecord] = Field(default_factory=list)
    apps_in_ranking: List[AppRecord] = Field(default_factory=list)
    total_results: int = 0
    # set only when the search call failed and the result is neutral
    error: Optional[str] = None
    checked_at: datetime = Field(default_factory=utc_now)

    @property
    def ranked(self) -> bool:
        return self.position is not None


class DiscoveredKeyword(BaseModel):
    keyword: str
    position: int
    popularity: int
    difficulty: int
    total_apps_in_ranking: int = 0


class KeywordHistoryEntry(BaseModel):
    date: datetime
    position: int
    popularity: int = 0
    difficulty: int = 0


class TrackedKeyword(BaseModel):
    id: str
    app_id: str
    keyword: str
    source: KeywordSource = KeywordSource.MANUAL
    position: Optional[int] = None
    previous_position: Optional[int] = None
    position_change: Optional[int] = None
    popularity: Optional[int] = None
    difficulty: Optional[int] = None
    apps_in_ranking: List[RankingAppRef] = Field(default_factory=list)
    total_apps_in_ranking: Optional[int] = None
    last_checked: Optional[datetime] = None
    notes: List[str] = Field(default_factory=list)
    history: List[KeywordHistoryEntry] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)


class AppSnapshot(BaseModel):
    date: datetime
    rating: float
    reviews_count: str
    version: Optional[str] = None
    price: Optional[float] = None

    @classmethod
    def of(cls, app: AppRecord, date: datetime) -> "AppSnapshot":
        return cls(
            date=date,
            rating=app.rating,
            reviews_count=app.reviews_count,
            version=app.version,
            price=app.price,
        )


class TrackedApp(BaseModel):
    id: str
    app: AppRecord
    tracked_since: datetime
    last_checked: datetime
    snapshots: List[AppSnapshot] = Field(default_factory=list)


class KeywordSuggestion(BaseModel):
    keyword: str
    reason: str
    source: str


class KeywordRecommendation(BaseModel):
    keyword: str
    reason: str
    based_on: str


class AnalysisResult(BaseModel):
    summary: str = ""
    common_complaints: List[str] = Field(default_factory=list)
    feature_requests: List[str] = Field(default_factory=list)
    monetization: str = ""
    market_opportunities: str = ""
