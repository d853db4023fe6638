"""
Persistence for tracked keywords and tracked apps.

Stores talk to a small key/value port (StorageBackend) and publish domain
events on an EventBus after every successful mutation. Whatever mirrors
the data elsewhere (see sync.SyncOutbox) subscribes to those events; the
stores themselves never wait on it.
"""
from __future__ import annotations

import json
import logging
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Union

from pydantic import ValidationError

from .config import DEFAULT_CONFIG, KeywordConfig
from .models import (
    AppRecord,
    AppSnapshot,
    KeywordHistoryEntry,
    KeywordSource,
    RankingAppRef,
    RankingProbeResult,
    TrackedApp,
    TrackedKeyword,
)
from .utils import normalize_keyword, utc_now


logger = logging.getLogger(__name__)

KEYWORDS_KEY = "keywords"
TRACKED_APPS_KEY = "tracked_apps"

Clock = Callable[[], datetime]


class StorageError(Exception):
    """The backing store could not be read; callers must not write over it."""


# --------------------------------------------------------------------------- #
# Storage backends
# --------------------------------------------------------------------------- #


class StorageBackend(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryBackend:
    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        value = self._data.get(key)
        # hand out copies so callers can't mutate stored state in place
        return json.loads(json.dumps(value)) if value is not None else None

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.loads(json.dumps(value))

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileBackend:
    """All keys in one JSON document on disk, rewritten atomically on each set."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def _read(self) -> Dict[str, Any]:
        # only a missing file means empty; anything else must stop the write
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.error("unreadable store file %s: %s", self.path, exc)
            raise StorageError(f"cannot read {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"unexpected top-level {type(data).__name__} in {self.path}")
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)

    def get(self, key: str) -> Optional[Any]:
        return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def delete(self, key: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)


# --------------------------------------------------------------------------- #
# Domain events
# --------------------------------------------------------------------------- #


@dataclass(frozen=True)
class KeywordUpserted:
    keyword: TrackedKeyword


@dataclass(frozen=True)
class KeywordDeleted:
    keyword_id: str
    app_id: str


@dataclass(frozen=True)
class TrackedAppUpserted:
    tracked_app: TrackedApp


@dataclass(frozen=True)
class TrackedAppDeleted:
    app_id: str


Subscriber = Callable[[Any], None]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        self._subscribers.append(subscriber)

        def _unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return _unsubscribe

    def publish(self, event: Any) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception:
                logger.exception("event subscriber failed for %s", type(event).__name__)


# --------------------------------------------------------------------------- #
# Keyword store
# --------------------------------------------------------------------------- #


def _load_models(backend: StorageBackend, key: str, model: Any) -> List[Any]:
    raw = backend.get(key) or []
    out = []
    for item in raw if isinstance(raw, list) else []:
        try:
            out.append(model.model_validate(item))
        except ValidationError as exc:
            logger.warning("dropping malformed %s record: %s", key, exc)
    return out


def _save_models(backend: StorageBackend, key: str, items: List[Any]) -> None:
    backend.set(key, [item.model_dump(mode="json") for item in items])


_IMMUTABLE_KEYWORD_FIELDS = {"id", "app_id", "keyword", "created_at", "history"}


class KeywordStore:
    """
    Tracked keywords, unique per (app_id, lowercased keyword).

    Mutators are synchronous, so on one event loop every call is atomic and
    concurrent updates to one keyword resolve as last-write-wins.
    """

    def __init__(
        self,
        backend: StorageBackend,
        config: KeywordConfig = DEFAULT_CONFIG,
        events: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.backend = backend
        self.config = config
        self.events = events or EventBus()
        self.clock = clock or utc_now

    def _all(self) -> List[TrackedKeyword]:
        return _load_models(self.backend, KEYWORDS_KEY, TrackedKeyword)

    def list_keywords(self, app_id: Optional[str] = None) -> List[TrackedKeyword]:
        keywords = self._all()
        if app_id is None:
            return keywords
        return [k for k in keywords if k.app_id == app_id]

    def get_keyword(self, keyword_id: str) -> Optional[TrackedKeyword]:
        return next((k for k in self._all() if k.id == keyword_id), None)

    def find_keyword(self, app_id: str, keyword: str) -> Optional[TrackedKeyword]:
        norm = normalize_keyword(keyword)
        return next(
            (k for k in self._all() if k.app_id == app_id and normalize_keyword(k.keyword) == norm),
            None,
        )

    def add_keyword(
        self,
        app_id: str,
        keyword: str,
        source: Union[KeywordSource, str] = KeywordSource.MANUAL,
    ) -> Optional[TrackedKeyword]:
        """Insert a keyword; returns None when the app already tracks it."""
        app_id = str(app_id or "").strip()
        keyword = " ".join((keyword or "").split())
        if not app_id:
            raise ValueError("app_id is required")
        if not keyword:
            raise ValueError("keyword is required")

        keywords = self._all()
        norm = normalize_keyword(keyword)
        if any(k.app_id == app_id and normalize_keyword(k.keyword) == norm for k in keywords):
            logger.debug("keyword %r already tracked for app %s", keyword, app_id)
            return None

        now = self.clock()
        tracked = TrackedKeyword(
            id=f"{app_id}_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:8]}",
            app_id=app_id,
            keyword=keyword,
            source=KeywordSource(source),
            created_at=now,
        )
        keywords.append(tracked)
        _save_models(self.backend, KEYWORDS_KEY, keywords)
        self.events.publish(KeywordUpserted(tracked))
        return tracked

    def remove_keyword(self, keyword_id: str) -> bool:
        keywords = self._all()
        removed = next((k for k in keywords if k.id == keyword_id), None)
        if removed is None:
            return False
        _save_models(self.backend, KEYWORDS_KEY, [k for k in keywords if k.id != keyword_id])
        self.events.publish(KeywordDeleted(keyword_id=removed.id, app_id=removed.app_id))
        return True

    def update_keyword(self, keyword_id: str, updates: Dict[str, Any]) -> Optional[TrackedKeyword]:
        """
        Merge `updates` into a keyword. A non-null `position` appends a
        history entry; history older than the retention window is dropped.
        Returns None for an unknown id.
        """
        bad = set(updates) - (set(TrackedKeyword.model_fields) - _IMMUTABLE_KEYWORD_FIELDS)
        if bad:
            raise ValueError(f"cannot update fields: {sorted(bad)}")

        keywords = self._all()
        index = next((i for i, k in enumerate(keywords) if k.id == keyword_id), None)
        if index is None:
            return None

        current = keywords[index]
        merged = current.model_dump()
        merged.update(updates)

        if updates.get("position") is not None:
            now = self.clock()
            cutoff = now - timedelta(days=self.config.history_retention_days)
            history = [h for h in current.history if h.date >= cutoff]
            history.append(KeywordHistoryEntry(
                date=now,
                position=updates["position"],
                popularity=_first_not_none(updates.get("popularity"), current.popularity, 0),
                difficulty=_first_not_none(updates.get("difficulty"), current.difficulty, 0),
            ))
            merged["history"] = history

        updated = TrackedKeyword.model_validate(merged)
        keywords[index] = updated
        _save_models(self.backend, KEYWORDS_KEY, keywords)
        self.events.publish(KeywordUpserted(updated))
        return updated

    def apply_probe_result(self, keyword_id: str, result: RankingProbeResult) -> Optional[TrackedKeyword]:
        """Persist a ranking check. Neutral (failed) probes are not recorded."""
        current = self.get_keyword(keyword_id)
        if current is None:
            return None
        if result.error is not None:
            logger.info("not recording failed check for keyword %s: %s", keyword_id, result.error)
            return current

        change = result.position_change
        if change is None and current.position is not None and result.position is not None:
            change = current.position - result.position
        return self.update_keyword(keyword_id, {
            "position": result.position,
            "previous_position": current.position,
            "position_change": change,
            "popularity": result.popularity,
            "difficulty": result.difficulty,
            "apps_in_ranking": [RankingAppRef.from_app(a) for a in result.apps_in_ranking],
            "total_apps_in_ranking": result.total_results,
            "last_checked": result.checked_at,
        })


def _first_not_none(*values: Any) -> Any:
    return next((v for v in values if v is not None), None)


# --------------------------------------------------------------------------- #
# Tracked apps
# --------------------------------------------------------------------------- #


class TrackedAppStore:
    def __init__(
        self,
        backend: StorageBackend,
        events: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.backend = backend
        self.events = events or EventBus()
        self.clock = clock or utc_now

    def list_apps(self) -> List[TrackedApp]:
        return _load_models(self.backend, TRACKED_APPS_KEY, TrackedApp)

    def get_app(self, app_id: str) -> Optional[TrackedApp]:
        return next((t for t in self.list_apps() if t.id == app_id), None)

    def add_app(self, app: AppRecord) -> Optional[TrackedApp]:
        """Start tracking an app; returns None when it is already tracked."""
        tracked = self.list_apps()
        if any(t.id == app.id for t in tracked):
            return None
        now = self.clock()
        entry = TrackedApp(
            id=app.id,
            app=app,
            tracked_since=now,
            last_checked=now,
            snapshots=[AppSnapshot.of(app, now)],
        )
        tracked.append(entry)
        _save_models(self.backend, TRACKED_APPS_KEY, tracked)
        self.events.publish(TrackedAppUpserted(entry))
        return entry

    def remove_app(self, app_id: str) -> bool:
        tracked = self.list_apps()
        remaining = [t for t in tracked if t.id != app_id]
        if len(remaining) == len(tracked):
            return False
        _save_models(self.backend, TRACKED_APPS_KEY, remaining)
        self.events.publish(TrackedAppDeleted(app_id))
        return True

    def update_app(self, app_id: str, app: AppRecord) -> Optional[TrackedApp]:
        """Replace the app data and append a snapshot of it."""
        tracked = self.list_apps()
        index = next((i for i, t in enumerate(tracked) if t.id == app_id), None)
        if index is None:
            return None
        now = self.clock()
        current = tracked[index]
        entry = current.model_copy(update={
            "app": app,
            "last_checked": now,
            "snapshots": current.snapshots + [AppSnapshot.of(app, now)],
        })
        tracked[index] = entry
        _save_models(self.backend, TRACKED_APPS_KEY, tracked)
        self.events.publish(TrackedAppUpserted(entry))
        return entry
