import json
from datetime import timedelta
from pathlib import Path

import pytest

from keyword_engine.config import KeywordConfig
from keyword_engine.models import KeywordSource, RankingProbeResult
from keyword_engine.store import (
    EventBus,
    JsonFileBackend,
    KeywordDeleted,
    KeywordStore,
    KeywordUpserted,
    MemoryBackend,
    StorageError,
    TrackedAppDeleted,
    TrackedAppStore,
    TrackedAppUpserted,
)

from conftest import make_app


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def store(clock, events):
    return KeywordStore(MemoryBackend(), KeywordConfig(history_retention_days=30), events, clock)


class TestAddRemove:
    def test_add_is_case_insensitive_idempotent(self, store):
        first = store.add_keyword("app1", "Foo")
        second = store.add_keyword("app1", "foo")

        assert first is not None
        assert second is None
        assert [k.keyword for k in store.list_keywords("app1")] == ["Foo"]

    def test_same_keyword_for_other_app_is_separate(self, store):
        store.add_keyword("app1", "notes")
        store.add_keyword("app2", "notes")
        assert len(store.list_keywords()) == 2
        assert len(store.list_keywords("app2")) == 1

    def test_new_keyword_starts_unchecked(self, store, clock):
        kw = store.add_keyword("app1", "  habit   tracker ", KeywordSource.COMPETITOR)
        assert kw.keyword == "habit tracker"
        assert kw.source == KeywordSource.COMPETITOR
        assert kw.position is None
        assert kw.popularity is None
        assert kw.difficulty is None
        assert kw.history == []
        assert kw.last_checked is None
        assert kw.created_at == clock.now

    def test_source_accepts_plain_strings(self, store):
        assert store.add_keyword("app1", "x", "ai-suggested").source == KeywordSource.AI_SUGGESTED

    def test_blank_input_is_a_caller_error(self, store):
        with pytest.raises(ValueError):
            store.add_keyword("", "notes")
        with pytest.raises(ValueError):
            store.add_keyword("app1", "   ")

    def test_remove_unknown_is_noop(self, store):
        store.add_keyword("app1", "notes")
        assert store.remove_keyword("missing") is False
        assert len(store.list_keywords()) == 1

    def test_readd_after_remove_is_fresh(self, store, clock):
        kw = store.add_keyword("app1", "notes")
        store.update_keyword(kw.id, {"position": 5, "popularity": 40, "difficulty": 30})
        assert store.remove_keyword(kw.id) is True

        clock.advance(seconds=1)
        again = store.add_keyword("app1", "Notes")
        assert again is not None
        assert again.id != kw.id
        assert again.history == []
        assert again.position is None


class TestUpdateAndHistory:
    def test_update_merges_and_appends_history(self, store, clock):
        kw = store.add_keyword("app1", "notes")
        updated = store.update_keyword(kw.id, {"position": 8, "popularity": 40, "difficulty": 30})

        assert updated.position == 8
        assert len(updated.history) == 1
        entry = updated.history[0]
        assert (entry.position, entry.popularity, entry.difficulty) == (8, 40, 30)
        assert entry.date == clock.now
        assert store.get_keyword(kw.id) == updated

    def test_update_without_position_keeps_history(self, store):
        kw = store.add_keyword("app1", "notes")
        store.update_keyword(kw.id, {"position": 8})
        updated = store.update_keyword(kw.id, {"notes": ["red"]})
        assert updated.notes == ["red"]
        assert len(updated.history) == 1

    def test_null_position_is_not_recorded_in_history(self, store):
        kw = store.add_keyword("app1", "notes")
        updated = store.update_keyword(kw.id, {"position": None, "popularity": 10})
        assert updated.history == []
        assert updated.popularity == 10

    def test_history_falls_back_to_stored_scores(self, store):
        kw = store.add_keyword("app1", "notes")
        store.update_keyword(kw.id, {"popularity": 55, "difficulty": 20})
        updated = store.update_keyword(kw.id, {"position": 3})
        assert (updated.history[0].popularity, updated.history[0].difficulty) == (55, 20)

    def test_history_is_pruned_to_retention_window(self, store, clock):
        kw = store.add_keyword("app1", "notes")
        for day in range(45):
            store.update_keyword(kw.id, {"position": day + 1})
            clock.advance(days=1)

        history = store.get_keyword(kw.id).history
        last_check = history[-1].date
        # checks on days 14..44 fall inside the 30 day window of the last one
        assert len(history) == 31
        assert all(h.date >= last_check - timedelta(days=30) for h in history)
        assert [h.position for h in history] == list(range(15, 46))

    def test_update_unknown_id_returns_none(self, store):
        assert store.update_keyword("missing", {"position": 1}) is None

    def test_update_rejects_identity_fields(self, store):
        kw = store.add_keyword("app1", "notes")
        with pytest.raises(ValueError):
            store.update_keyword(kw.id, {"app_id": "other"})
        with pytest.raises(ValueError):
            store.update_keyword(kw.id, {"history": []})


class TestApplyProbeResult:
    def test_records_check_and_change(self, store, clock):
        kw = store.add_keyword("app1", "notes")
        store.apply_probe_result(kw.id, RankingProbeResult(keyword="notes", position=10, total_results=25))
        clock.advance(hours=1)
        result = RankingProbeResult(
            keyword="notes",
            position=4,
            popularity=30,
            difficulty=45,
            apps_in_ranking=[make_app("a", icon="http://icon")],
            total_results=25,
            checked_at=clock.now,
        )
        updated = store.apply_probe_result(kw.id, result)

        assert updated.position == 4
        assert updated.previous_position == 10
        assert updated.position_change == 6
        assert updated.apps_in_ranking[0].id == "a"
        assert updated.apps_in_ranking[0].icon == "http://icon"
        assert updated.total_apps_in_ranking == 25
        assert updated.last_checked == clock.now
        assert [h.position for h in updated.history] == [10, 4]

    def test_unranked_check_clears_change(self, store):
        kw = store.add_keyword("app1", "notes")
        store.apply_probe_result(kw.id, RankingProbeResult(keyword="notes", position=10))
        updated = store.apply_probe_result(kw.id, RankingProbeResult(keyword="notes", position=None))

        assert updated.position is None
        assert updated.previous_position == 10
        assert updated.position_change is None
        assert len(updated.history) == 1

    def test_failed_check_is_not_recorded(self, store):
        kw = store.add_keyword("app1", "notes")
        store.apply_probe_result(kw.id, RankingProbeResult(keyword="notes", position=10))
        unchanged = store.apply_probe_result(kw.id, RankingProbeResult(keyword="notes", error="timeout"))
        assert unchanged.position == 10
        assert len(unchanged.history) == 1


class TestEvents:
    def test_mutations_publish_events(self, store, events):
        seen = []
        events.subscribe(seen.append)

        kw = store.add_keyword("app1", "notes")
        store.add_keyword("app1", "NOTES")
        store.update_keyword(kw.id, {"position": 2})
        store.remove_keyword(kw.id)
        store.remove_keyword(kw.id)

        assert [type(e) for e in seen] == [KeywordUpserted, KeywordUpserted, KeywordDeleted]
        assert seen[1].keyword.position == 2
        assert seen[2] == KeywordDeleted(keyword_id=kw.id, app_id="app1")

    def test_failing_subscriber_does_not_block_mutation(self, store, events):
        def broken(event):
            raise RuntimeError("sync down")

        events.subscribe(broken)
        assert store.add_keyword("app1", "notes") is not None
        assert len(store.list_keywords()) == 1

    def test_unsubscribe(self, store, events):
        seen = []
        unsubscribe = events.subscribe(seen.append)
        unsubscribe()
        store.add_keyword("app1", "notes")
        assert seen == []


class TestTrackedApps:
    def test_add_records_initial_snapshot(self, clock):
        apps = TrackedAppStore(MemoryBackend(), clock=clock)
        tracked = apps.add_app(make_app("1", rating=4.1, reviews="2k"))

        assert tracked.tracked_since == clock.now
        assert len(tracked.snapshots) == 1
        assert tracked.snapshots[0].reviews_count == "2k"
        assert apps.add_app(make_app("1")) is None

    def test_update_appends_snapshot(self, clock):
        events = EventBus()
        seen = []
        events.subscribe(seen.append)
        apps = TrackedAppStore(MemoryBackend(), events, clock)
        apps.add_app(make_app("1", rating=4.1, reviews="2k"))
        clock.advance(days=1)
        updated = apps.update_app("1", make_app("1", rating=4.3, reviews="2.5k", version="2.0"))

        assert [s.rating for s in updated.snapshots] == [4.1, 4.3]
        assert updated.snapshots[1].version == "2.0"
        assert updated.last_checked == clock.now
        assert updated.app.rating == 4.3
        assert apps.update_app("missing", make_app("missing")) is None

        assert apps.remove_app("1") is True
        assert apps.remove_app("1") is False
        assert [type(e) for e in seen] == [TrackedAppUpserted, TrackedAppUpserted, TrackedAppDeleted]


class TestJsonFileBackend:
    def test_round_trip_through_disk(self, tmp_path, clock):
        path = tmp_path / "store.json"
        store = KeywordStore(JsonFileBackend(path), clock=clock)
        kw = store.add_keyword("app1", "notes")
        store.update_keyword(kw.id, {"position": 3, "popularity": 20, "difficulty": 10})

        reopened = KeywordStore(JsonFileBackend(path), clock=clock)
        loaded = reopened.get_keyword(kw.id)
        assert loaded.position == 3
        assert loaded.history[0].date == clock.now
        assert json.loads(path.read_text())["keywords"][0]["keyword"] == "notes"

    def test_corrupt_file_raises_instead_of_reading_empty(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("{not json")
        with pytest.raises(StorageError):
            KeywordStore(JsonFileBackend(path)).list_keywords()
        assert path.read_text() == "{not json"

    def test_invalid_utf8_raises_storage_error(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_bytes(b"\xff\xfe{}")
        with pytest.raises(StorageError):
            JsonFileBackend(path).get("keywords")

    def test_read_failure_aborts_write(self, tmp_path, monkeypatch):
        path = tmp_path / "store.json"
        store = KeywordStore(JsonFileBackend(path))
        for keyword in ("alpha", "beta", "gamma"):
            store.add_keyword("app1", keyword)
        before = path.read_text()

        real_read_text = Path.read_text
        failures = [OSError(5, "Input/output error")]

        def flaky_read_text(self, *args, **kwargs):
            if failures:
                raise failures.pop()
            return real_read_text(self, *args, **kwargs)

        monkeypatch.setattr(Path, "read_text", flaky_read_text)
        with pytest.raises(StorageError):
            store.add_keyword("app1", "delta")

        assert path.read_text() == before
        store.add_keyword("app1", "delta")
        assert [k.keyword for k in store.list_keywords("app1")] == ["alpha", "beta", "gamma", "delta"]

    def test_delete_key(self, tmp_path):
        backend = JsonFileBackend(tmp_path / "store.json")
        backend.set("a", [1])
        backend.delete("a")
        assert backend.get("a") is None
