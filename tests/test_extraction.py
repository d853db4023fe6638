from keyword_engine.config import KeywordConfig
from keyword_engine.extraction import (
    extract_candidates,
    generate_keyword_suggestions,
    generate_smart_recommendations,
)
from keyword_engine.models import AppRecord


def test_name_tokens_and_full_name():
    app = AppRecord(id="1", name="Todo-List Planner for Teams")
    candidates = extract_candidates(app)
    assert candidates[:4] == ["todo", "list", "planner", "teams"]
    assert "todo list planner for teams" in candidates
    assert "for" not in candidates


def test_short_tokens_are_dropped_but_full_name_kept():
    app = AppRecord(id="1", name="Cal AI")
    candidates = extract_candidates(app)
    assert "cal" in candidates
    assert "cal ai" in candidates
    assert "ai" not in candidates


def test_single_token_name_has_no_full_name_duplicate():
    app = AppRecord(id="1", name="Notion")
    assert extract_candidates(app) == ["notion"]


def test_description_phrases_and_genre():
    app = AppRecord(
        id="1",
        name="Focus",
        description="Track daily habits. Build better routines with smart reminders.",
        primary_genre_name="Health & Fitness",
    )
    candidates = extract_candidates(app)
    assert "track daily habits" in candidates
    assert "build better routines" in candidates
    assert "with smart reminders" in candidates
    assert candidates[-1] == "health & fitness"


def test_description_phrase_cap():
    app = AppRecord(id="1", name="X", description="alpha beta. gamma delta. epsilon zeta. theta iota.")
    candidates = extract_candidates(app, KeywordConfig(max_phrases_from_description=2))
    assert candidates == ["alpha beta", "gamma delta"]


def test_total_cap():
    words = " ".join(f"word{i:02d} more{i:02d}." for i in range(40))
    app = AppRecord(id="1", name="Huge", description=words)
    config = KeywordConfig(max_metadata_keywords=5, max_phrases_from_description=40)
    assert len(extract_candidates(app, config)) == 5


def test_missing_fields_contribute_nothing():
    assert extract_candidates(AppRecord(id="1")) == []


def test_candidates_are_deterministic_lowercase_and_unique():
    app = AppRecord(
        id="1",
        name="Photo Editor PHOTO",
        description="Photo editor tools. PHOTO EDITOR tools.",
        primary_genre_name="Photo & Video",
    )
    first = extract_candidates(app)
    assert first == extract_candidates(app)
    assert all(c == c.lower() for c in first)
    assert len(first) == len(set(first))
    assert first.count("photo") == 1


def test_suggestions_merge_ai_tags_first():
    app = AppRecord(id="1", name="Habit Tracker", primary_genre_name="Productivity")
    suggestions = generate_keyword_suggestions(app, ["Habit", "streaks", "habit"])
    keywords = [s.keyword for s in suggestions]
    assert keywords[:2] == ["Habit", "streaks"]
    assert keywords.count("habit") == 0
    assert "tracker" in keywords
    assert suggestions[0].source == "ai-tags"
    assert suggestions[-1].source == "app-metadata"


def test_suggestions_cap():
    app = AppRecord(id="1", name="Habit Tracker")
    tags = [f"tag {i}" for i in range(50)]
    suggestions = generate_keyword_suggestions(app, tags, KeywordConfig(max_keyword_suggestions=7))
    assert len(suggestions) == 7


def test_recommendations_variants():
    recs = generate_smart_recommendations(["habit tracker"], limit=100)
    keywords = {r.keyword for r in recs}
    assert "habits tracker" in keywords
    assert "best habit tracker" in keywords
    assert "tracker habit" in keywords
    assert "routine tracker" in keywords
    assert "habit monitor" in keywords
    assert "habit tracker" not in keywords
    assert all(r.based_on == "habit tracker" for r in recs)


def test_recommendations_single_word_suffixes_and_singular():
    recs = generate_smart_recommendations(["notes"], limit=100)
    keywords = [r.keyword for r in recs]
    assert keywords[0] == "note"
    assert "notes app" in keywords
    assert len(keywords) == len(set(keywords))


def test_recommendations_skip_already_tracked():
    recs = generate_smart_recommendations(["budget", "budgets", "money"], limit=100)
    keywords = {r.keyword for r in recs}
    assert "budgets" not in keywords
    assert "money" not in keywords


def test_recommendations_limit():
    assert len(generate_smart_recommendations(["photo", "video", "task"], limit=5)) == 5
