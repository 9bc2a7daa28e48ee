from __future__ import annotations

from pathlib import Path

import pytest

from topicboard.config import Settings
from topicboard.topics import DEFAULT_CATEGORY_RULES, CategoryRule

_ENV_VARS = [
    "DATABASE_PATH",
    "DEFAULT_LANGUAGE",
    "PAGE_SIZE",
    "DASHBOARD_RECENT_LIMIT",
    "ANALYTICS_DAYS",
    "ANALYTICS_TOP_TOPICS",
    "CATEGORY_RULES_PATH",
    "OBSERVABILITY_METRICS_ENABLED",
    "OBSERVABILITY_NAMESPACE",
    "OBSERVABILITY_PROMETHEUS_ENABLED",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_settings_defaults() -> None:
    settings = Settings.from_env()
    assert settings.database_path == "data/conversations.sqlite"
    assert settings.default_language == "en"
    assert settings.page_size == 100
    assert settings.analytics_days == 30
    assert settings.analytics_top_topics == 10
    assert settings.category_rules_path is None
    assert settings.observability_metrics_enabled is True
    assert settings.observability_prometheus_enabled is False
    assert settings.load_category_rules() == DEFAULT_CATEGORY_RULES


def test_settings_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    rules_path = tmp_path / "rules.yaml"
    rules_path.write_text("- name: sports\n  keywords: [ball]\n", encoding="utf-8")
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "db.sqlite"))
    monkeypatch.setenv("DEFAULT_LANGUAGE", "de")
    monkeypatch.setenv("PAGE_SIZE", "25")
    monkeypatch.setenv("ANALYTICS_DAYS", "7")
    monkeypatch.setenv("CATEGORY_RULES_PATH", str(rules_path))
    monkeypatch.setenv("OBSERVABILITY_METRICS_ENABLED", "off")
    monkeypatch.setenv("OBSERVABILITY_PROMETHEUS_ENABLED", "yes")

    settings = Settings.from_env()
    assert settings.database_file() == (tmp_path / "db.sqlite").resolve()
    assert settings.default_language == "de"
    assert settings.page_size == 25
    assert settings.analytics_days == 7
    assert settings.load_category_rules() == (CategoryRule("sports", ("ball",)),)

    metrics = settings.build_metrics_recorder()
    assert metrics.enabled is False
    assert metrics.prometheus_enabled is True


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("OBSERVABILITY_METRICS_ENABLED", "maybe"),
        ("PAGE_SIZE", "lots"),
        ("PAGE_SIZE", "0"),
        ("ANALYTICS_DAYS", "-3"),
    ],
)
def test_settings_reject_malformed_values(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError, match=name):
        Settings.from_env()
