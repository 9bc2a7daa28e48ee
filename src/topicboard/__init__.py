"""Topicboard application package."""

from __future__ import annotations

from .config import Settings
from .conversations import AnalyticsService, ConversationRecord, ConversationService, ConversationStore
from .topics import analyze_topic, categorize_topic, extract_topic

__all__ = [
    "Settings",
    "AnalyticsService",
    "ConversationRecord",
    "ConversationService",
    "ConversationStore",
    "analyze_topic",
    "categorize_topic",
    "extract_topic",
    "create_app",
]


def __getattr__(name: str):  # pragma: no cover - small helper
    if name == "create_app":
        from .app import create_app

        return create_app
    raise AttributeError(f"module 'topicboard' has no attribute {name}")
