"""Keyword-frequency topic extraction and category mapping for conversations."""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Iterable, List, Sequence, Tuple

import yaml

logger = logging.getLogger(__name__)

FALLBACK_TOPIC: Final[str] = "general"
MIN_TOKEN_LENGTH: Final[int] = 4

STOP_WORDS: Final[frozenset[str]] = frozenset(
    {
        "the",
        "a",
        "an",
        "and",
        "or",
        "but",
        "in",
        "on",
        "at",
        "to",
        "for",
        "of",
        "with",
        "by",
        "from",
        "as",
        "is",
        "was",
        "are",
        "were",
        "been",
        "be",
        "have",
        "has",
        "had",
        "do",
        "does",
        "did",
        "will",
        "would",
        "could",
        "should",
        "may",
        "might",
        "can",
        "what",
        "when",
        "where",
        "who",
        "how",
        "why",
        "this",
        "that",
        "these",
        "those",
        "i",
        "you",
        "he",
        "she",
        "it",
        "we",
        "they",
    }
)

_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class CategoryRule:
    """A broad category and the substrings that map a topic into it."""

    name: str
    keywords: tuple[str, ...]

    def matches(self, topic: str) -> bool:
        lowered = topic.lower()
        return any(keyword in lowered for keyword in self.keywords)


DEFAULT_CATEGORY_RULES: Final[tuple[CategoryRule, ...]] = (
    CategoryRule("environment", ("tree", "plant", "nature", "forest", "green", "climate", "weather")),
    CategoryRule("technology", ("tech", "computer", "software", "hardware", "digital", "internet")),
    CategoryRule("health", ("health", "medical", "doctor", "medicine", "wellness", "fitness")),
    CategoryRule("education", ("learn", "study", "school", "education", "teaching", "course")),
    CategoryRule("business", ("business", "company", "market", "finance", "economy", "trade")),
)


def _tokenize(texts: Iterable[str]) -> List[str]:
    combined = " ".join(texts).lower()
    stripped = _PUNCTUATION_RE.sub("", combined)
    return [token for token in _WHITESPACE_RE.split(stripped) if token]


def rank_keywords(
    questions: Sequence[str],
    answers: Sequence[str],
    language: str = "en",
) -> List[Tuple[str, int]]:
    """Return ``(token, count)`` pairs ordered by descending count.

    Questions are pooled before answers. Tokens shorter than
    ``MIN_TOKEN_LENGTH`` and members of ``STOP_WORDS`` are dropped. Equal
    counts keep the order in which tokens were first seen.

    ``language`` is reserved: it is accepted so callers can pass the
    conversation language through, but every language shares the same
    English stop-word list.
    """

    counter: Counter[str] = Counter()
    for token in _tokenize([*questions, *answers]):
        if len(token) < MIN_TOKEN_LENGTH or token in STOP_WORDS:
            continue
        counter[token] += 1
    # sorted() is stable and Counter keeps insertion order, so ties stay first-seen.
    return sorted(counter.items(), key=lambda item: -item[1])


def extract_topic(
    questions: Sequence[str],
    answers: Sequence[str],
    language: str = "en",
) -> str:
    """Return the most frequent informative token, or ``"general"``."""

    ranked = rank_keywords(questions, answers, language)
    if not ranked:
        return FALLBACK_TOPIC
    return ranked[0][0]


def categorize_topic(
    topic: str,
    rules: Sequence[CategoryRule] = DEFAULT_CATEGORY_RULES,
) -> str:
    """Map ``topic`` onto the first matching category, else return it unchanged."""

    for rule in rules:
        if rule.matches(topic):
            return rule.name
    return topic


def analyze_topic(
    questions: Sequence[str],
    answers: Sequence[str],
    language: str = "en",
    *,
    rules: Sequence[CategoryRule] = DEFAULT_CATEGORY_RULES,
) -> str:
    topic = extract_topic(questions, answers, language)
    categorized = categorize_topic(topic, rules)
    logger.debug("topic.analyzed keyword=%s category=%s language=%s", topic, categorized, language)
    return categorized


class CategoryRuleLoadError(RuntimeError):
    """Raised when a category rules file cannot be parsed."""


def load_category_rules(path: str | Path | None) -> tuple[CategoryRule, ...]:
    """Load category rules from YAML; fall back to the built-in table.

    The file holds a list of mappings with ``name`` and ``keywords``. Entries
    without a name or without keywords are skipped.
    """

    if not path:
        return DEFAULT_CATEGORY_RULES
    rules_path = Path(path)
    if not rules_path.exists():
        logger.info("topic.rules.missing path=%s using_defaults=true", rules_path)
        return DEFAULT_CATEGORY_RULES

    try:
        data = yaml.safe_load(rules_path.read_text(encoding="utf-8")) or []
    except yaml.YAMLError as exc:
        raise CategoryRuleLoadError(f"Invalid category rules file: {rules_path}") from exc

    rules: list[CategoryRule] = []
    for item in data if isinstance(data, list) else []:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name", "")).strip().lower()
        keywords = item.get("keywords") or []
        if not isinstance(keywords, list):
            keywords = [keywords]
        cleaned = tuple(str(value).strip().lower() for value in keywords if str(value).strip())
        if not name or not cleaned:
            continue
        rules.append(CategoryRule(name, cleaned))

    if not rules:
        logger.warning("topic.rules.empty path=%s using_defaults=true", rules_path)
        return DEFAULT_CATEGORY_RULES
    logger.info("topic.rules.loaded path=%s count=%s", rules_path, len(rules))
    return tuple(rules)


__all__ = [
    "CategoryRule",
    "CategoryRuleLoadError",
    "DEFAULT_CATEGORY_RULES",
    "FALLBACK_TOPIC",
    "STOP_WORDS",
    "analyze_topic",
    "categorize_topic",
    "extract_topic",
    "load_category_rules",
    "rank_keywords",
]
