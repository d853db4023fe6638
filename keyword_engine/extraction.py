from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional, Sequence

from .config import DEFAULT_CONFIG, KeywordConfig
from .models import AppRecord, KeywordRecommendation, KeywordSuggestion
from .utils import normalize_keyword


NAME_SPLIT_RE = re.compile(r"[\s\-_]+")
PHRASE_RE = re.compile(r"\b\w{3,}(?:\s+\w{3,}){1,2}\b")
_WHITESPACE_RE = re.compile(r"\s+")

NAME_STOPWORDS = frozenset({"app", "the", "for", "and"})
MIN_TOKEN_LENGTH = 3

RECOMMENDATION_PREFIXES = ("best", "free", "top", "easy", "simple", "pro")
RECOMMENDATION_SUFFIXES = ("app", "tracker", "manager", "tool", "helper")
MAX_RECOMMENDATION_LENGTH = 30
SYNONYMS: Dict[str, Sequence[str]] = {
    "track": ("monitor", "log", "record"),
    "tracker": ("monitor", "logger", "recorder"),
    "manage": ("organize", "control", "handle"),
    "manager": ("organizer", "controller", "planner"),
    "health": ("wellness", "fitness", "medical"),
    "fitness": ("workout", "exercise", "health"),
    "money": ("budget", "finance", "cash"),
    "budget": ("money", "expense", "finance"),
    "habit": ("routine", "daily", "goal"),
    "goal": ("target", "objective", "habit"),
    "photo": ("picture", "image", "camera"),
    "video": ("movie", "film", "clip"),
    "note": ("memo", "reminder", "document"),
    "task": ("todo", "checklist", "reminder"),
    "calendar": ("schedule", "planner", "agenda"),
}


def _dedupe(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(v for v in values if v))


def _name_candidates(name: str) -> List[str]:
    raw_tokens = [t for t in NAME_SPLIT_RE.split(name.lower().strip()) if t]
    out = [t for t in raw_tokens if len(t) >= MIN_TOKEN_LENGTH and t not in NAME_STOPWORDS]
    if len(raw_tokens) > 1:
        out.append(" ".join(raw_tokens))
    return out


def _description_phrases(description: str, limit: int) -> List[str]:
    if limit <= 0:
        return []
    phrases = []
    for match in PHRASE_RE.finditer(description.lower()):
        phrases.append(_WHITESPACE_RE.sub(" ", match.group(0)))
        if len(phrases) >= limit:
            break
    return phrases


def extract_candidates(app: AppRecord, config: KeywordConfig = DEFAULT_CONFIG) -> List[str]:
    """
    Candidate keywords from an app's name, description and genre.

    Lowercase, deduplicated, ordered by source (name, description, genre)
    and capped to config.max_metadata_keywords. Same input, same output.
    """
    candidates: List[str] = []
    if app.name:
        candidates.extend(_name_candidates(app.name))
    if app.description:
        candidates.extend(_description_phrases(app.description, config.max_phrases_from_description))
    if app.primary_genre_name:
        candidates.append(app.primary_genre_name.lower().strip())
    return _dedupe(candidates)[: config.max_metadata_keywords]


def generate_keyword_suggestions(
    app: AppRecord,
    ai_tags: Optional[Iterable[str]] = None,
    config: KeywordConfig = DEFAULT_CONFIG,
) -> List[KeywordSuggestion]:
    """AI tags first, then metadata candidates, deduplicated by keyword text."""
    suggestions: List[KeywordSuggestion] = []
    seen = set()

    for tag in ai_tags or ():
        norm = normalize_keyword(tag)
        if not norm or norm in seen:
            continue
        seen.add(norm)
        suggestions.append(KeywordSuggestion(
            keyword=tag.strip(),
            reason="Based on user reviews and app features",
            source="ai-tags",
        ))

    for keyword in extract_candidates(app, config):
        norm = normalize_keyword(keyword)
        if norm in seen:
            continue
        seen.add(norm)
        suggestions.append(KeywordSuggestion(
            keyword=keyword,
            reason="Extracted from app name and description",
            source="app-metadata",
        ))

    return suggestions[: config.max_keyword_suggestions]


def generate_smart_recommendations(
    tracked_keywords: Iterable[str],
    limit: int = 20,
) -> List[KeywordRecommendation]:
    tracked = [k for k in (normalize_keyword(k) for k in tracked_keywords) if k]
    taken = set(tracked)
    out: List[KeywordRecommendation] = []

    def _add(keyword: str, reason: str, based_on: str) -> None:
        if keyword in taken:
            return
        taken.add(keyword)
        out.append(KeywordRecommendation(keyword=keyword, reason=reason, based_on=based_on))

    for keyword in tracked:
        words = keyword.split(" ")

        for word in words:
            if word.endswith("s") and len(word) > 3:
                _add(keyword.replace(word, word[:-1], 1), "Singular variation", keyword)
            elif not word.endswith("s") and len(word) > 2:
                _add(keyword.replace(word, word + "s", 1), "Plural variation", keyword)

        for prefix in RECOMMENDATION_PREFIXES:
            candidate = f"{prefix} {keyword}"
            if not keyword.startswith(prefix) and len(candidate) <= MAX_RECOMMENDATION_LENGTH:
                _add(candidate, f'"{prefix}" prefix often searched', keyword)

        if len(words) == 1:
            for suffix in RECOMMENDATION_SUFFIXES:
                candidate = f"{keyword} {suffix}"
                if not keyword.endswith(suffix) and len(candidate) <= MAX_RECOMMENDATION_LENGTH:
                    _add(candidate, f'"{suffix}" suffix popular', keyword)

        if len(words) == 2:
            _add(f"{words[1]} {words[0]}", "Word order variation", keyword)

        for word in words:
            for synonym in SYNONYMS.get(word, ())[:2]:
                _add(keyword.replace(word, synonym, 1), f'Synonym: "{word}" -> "{synonym}"', keyword)

    return out[:limit]
