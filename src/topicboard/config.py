"""Configuration helpers for the Topicboard application."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import TYPE_CHECKING, Final

from dotenv import load_dotenv

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from .observability import MetricsRecorder
    from .topics import CategoryRule

load_dotenv()

_DEFAULT_DATABASE_PATH: Final[str] = "data/conversations.sqlite"
_DEFAULT_LANGUAGE: Final[str] = "en"
_DEFAULT_PAGE_SIZE: Final[int] = 100
_DEFAULT_DASHBOARD_RECENT_LIMIT: Final[int] = 20
_DEFAULT_ANALYTICS_DAYS: Final[int] = 30
_DEFAULT_ANALYTICS_TOP_TOPICS: Final[int] = 10
_DEFAULT_NAMESPACE: Final[str] = "topicboard"


def _env_optional_bool(name: str) -> bool | None:
    """Read an optional boolean environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    msg = f"Environment variable {name} must be a boolean value (true/false)."
    raise ValueError(msg)


def _env_bool(name: str, default: bool) -> bool:
    value = _env_optional_bool(name)
    return default if value is None else value


def _env_int(name: str, default: int, *, min_value: int | None = None) -> int:
    """Read an integer environment variable, rejecting values below ``min_value``."""

    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc
    if min_value is not None and value < min_value:
        raise ValueError(f"Environment variable {name} must be >= {min_value}")
    return value


@dataclass(slots=True)
class Settings:
    """Runtime settings loaded from environment variables."""

    database_path: str = _DEFAULT_DATABASE_PATH
    default_language: str = _DEFAULT_LANGUAGE
    page_size: int = _DEFAULT_PAGE_SIZE
    dashboard_recent_limit: int = _DEFAULT_DASHBOARD_RECENT_LIMIT
    analytics_days: int = _DEFAULT_ANALYTICS_DAYS
    analytics_top_topics: int = _DEFAULT_ANALYTICS_TOP_TOPICS
    category_rules_path: str | None = None
    observability_metrics_enabled: bool = True
    observability_namespace: str = _DEFAULT_NAMESPACE
    observability_prometheus_enabled: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings by reading environment variables."""

        return cls(
            database_path=os.getenv("DATABASE_PATH", _DEFAULT_DATABASE_PATH),
            default_language=(os.getenv("DEFAULT_LANGUAGE") or _DEFAULT_LANGUAGE).strip() or _DEFAULT_LANGUAGE,
            page_size=_env_int("PAGE_SIZE", _DEFAULT_PAGE_SIZE, min_value=1),
            dashboard_recent_limit=_env_int(
                "DASHBOARD_RECENT_LIMIT", _DEFAULT_DASHBOARD_RECENT_LIMIT, min_value=1
            ),
            analytics_days=_env_int("ANALYTICS_DAYS", _DEFAULT_ANALYTICS_DAYS, min_value=1),
            analytics_top_topics=_env_int(
                "ANALYTICS_TOP_TOPICS", _DEFAULT_ANALYTICS_TOP_TOPICS, min_value=1
            ),
            category_rules_path=os.getenv("CATEGORY_RULES_PATH") or None,
            observability_metrics_enabled=_env_bool("OBSERVABILITY_METRICS_ENABLED", True),
            observability_namespace=os.getenv("OBSERVABILITY_NAMESPACE", _DEFAULT_NAMESPACE),
            observability_prometheus_enabled=_env_bool("OBSERVABILITY_PROMETHEUS_ENABLED", False),
        )

    def database_file(self) -> Path:
        """Return the resolved SQLite database location."""

        return Path(self.database_path).expanduser().resolve()

    def build_metrics_recorder(self) -> "MetricsRecorder":
        """Instantiate the configured metrics recorder."""

        from .observability import MetricsRecorder

        return MetricsRecorder(
            enabled=self.observability_metrics_enabled,
            namespace=self.observability_namespace,
            prometheus_enabled=self.observability_prometheus_enabled,
        )

    def load_category_rules(self) -> tuple["CategoryRule", ...]:
        from .topics import load_category_rules

        return load_category_rules(self.category_rules_path)


__all__ = ["Settings"]
