"""Conversation storage, topic tagging and analytics primitives."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterator, Sequence, TYPE_CHECKING

from .topics import DEFAULT_CATEGORY_RULES, CategoryRule, analyze_topic

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from .observability import MetricsRecorder

logger = logging.getLogger(__name__)

_SELECT_COLUMNS = "id, datetime, language, questions, answers, topic"

# SQLite INTEGER PRIMARY KEY range.
MAX_ROW_ID = 2**63 - 1
MAX_ANALYTICS_DAYS = 36500


class ConversationError(RuntimeError):
    """Base class for conversation storage and validation failures."""


class ConversationValidationError(ConversationError, ValueError):
    """Raised when a conversation payload is missing or malformed."""


class ConversationNotFoundError(ConversationError, LookupError):
    """Raised when a conversation id does not exist."""

    def __init__(self, conversation_id: int) -> None:
        super().__init__(f"Conversation {conversation_id} not found")
        self.conversation_id = conversation_id


class ConversationStorageError(ConversationError):
    """Raised when the underlying database operation fails."""


@dataclass(slots=True)
class ConversationRecord:
    """A stored question/answer session."""

    id: int
    datetime: datetime
    language: str
    questions: list[str]
    answers: list[str]
    topic: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "datetime": self.datetime.isoformat(),
            "language": self.language,
            "questions": list(self.questions),
            "answers": list(self.answers),
            "topic": self.topic,
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row, *, strict: bool = False) -> "ConversationRecord":
        return cls(
            id=int(row["id"]),
            datetime=_from_storage(row["datetime"]),
            language=row["language"],
            questions=_decode_messages(row["questions"], strict=strict),
            answers=_decode_messages(row["answers"], strict=strict),
            topic=row["topic"],
        )


@dataclass(slots=True)
class ConversationPage:
    """One page of conversations plus pagination metadata."""

    records: list[ConversationRecord]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": [record.to_dict() for record in self.records],
            "pagination": {
                "total": self.total,
                "limit": self.limit,
                "offset": self.offset,
                "hasMore": self.has_more,
            },
        }


class ConversationStore:
    """SQLite-backed persistence for the ``conversations`` table."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    @property
    def path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextmanager
    def _session(self, action: str) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            logger.error("conversation.store.connect_failed path=%s error=%s", self._db_path, exc)
            raise ConversationStorageError(f"Failed to {action}") from exc
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            logger.error("conversation.store.failed action=%s error=%s", action, exc)
            raise ConversationStorageError(f"Failed to {action}") from exc
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._session("initialize schema") as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS conversations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    datetime TEXT NOT NULL,
                    language TEXT NOT NULL,
                    questions TEXT NOT NULL,
                    answers TEXT NOT NULL,
                    topic TEXT
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_conversations_datetime ON conversations(datetime)"
            )

    def insert(
        self,
        *,
        recorded_at: datetime,
        language: str,
        questions: Sequence[str],
        answers: Sequence[str],
        topic: str | None,
    ) -> ConversationRecord:
        stored_at = _to_storage(recorded_at)
        with self._session("create conversation") as conn:
            cursor = conn.execute(
                """
                INSERT INTO conversations (datetime, language, questions, answers, topic)
                VALUES (?, ?, ?, ?, ?)
                """,
                (stored_at, language, json.dumps(list(questions)), json.dumps(list(answers)), topic),
            )
            conversation_id = int(cursor.lastrowid)
        return ConversationRecord(
            id=conversation_id,
            datetime=_from_storage(stored_at),
            language=language,
            questions=list(questions),
            answers=list(answers),
            topic=topic,
        )

    def get(self, conversation_id: int) -> ConversationRecord | None:
        with self._session("fetch conversation") as conn:
            row = conn.execute(
                f"SELECT {_SELECT_COLUMNS} FROM conversations WHERE id = ?",
                (conversation_id,),
            ).fetchone()
        return ConversationRecord.from_row(row) if row else None

    def delete(self, conversation_id: int) -> bool:
        with self._session("delete conversation") as conn:
            cursor = conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
            return cursor.rowcount > 0

    def update_topic(self, conversation_id: int, topic: str) -> bool:
        with self._session("update topic") as conn:
            cursor = conn.execute(
                "UPDATE conversations SET topic = ? WHERE id = ?",
                (topic, conversation_id),
            )
            return cursor.rowcount > 0

    def list(self, *, limit: int, offset: int) -> list[ConversationRecord]:
        with self._session("list conversations") as conn:
            rows = conn.execute(
                f"""
                SELECT {_SELECT_COLUMNS} FROM conversations
                ORDER BY datetime DESC, id DESC
                LIMIT ? OFFSET ?
                """,
                (limit, offset),
            ).fetchall()
        return [ConversationRecord.from_row(row) for row in rows]

    def count(self) -> int:
        with self._session("count conversations") as conn:
            row = conn.execute("SELECT COUNT(*) FROM conversations").fetchone()
        return int(row[0])

    def list_missing_topic(self) -> list[ConversationRecord]:
        """Return untagged conversations, skipping rows whose messages are corrupt."""

        with self._session("list untagged conversations") as conn:
            rows = conn.execute(
                f"""
                SELECT {_SELECT_COLUMNS} FROM conversations
                WHERE topic IS NULL OR topic = ''
                ORDER BY id ASC
                """
            ).fetchall()
        records: list[ConversationRecord] = []
        for row in rows:
            try:
                records.append(ConversationRecord.from_row(row, strict=True))
            except ConversationStorageError:
                logger.warning("conversation.store.skipped_corrupt id=%s", row["id"])
        return records

    def count_by_day(self, since: datetime) -> list[tuple[str, int]]:
        with self._session("aggregate daily counts") as conn:
            rows = conn.execute(
                """
                SELECT substr(datetime, 1, 10) AS day, COUNT(*) AS count
                FROM conversations
                WHERE datetime >= ?
                GROUP BY day
                ORDER BY day ASC
                """,
                (_to_storage(since),),
            ).fetchall()
        return [(row["day"], int(row["count"])) for row in rows]

    def top_topics(self, limit: int) -> list[tuple[str, int]]:
        with self._session("aggregate topics") as conn:
            rows = conn.execute(
                """
                SELECT topic, COUNT(*) AS count
                FROM conversations
                WHERE topic IS NOT NULL AND topic != ''
                GROUP BY topic
                ORDER BY count DESC, topic ASC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [(row["topic"], int(row["count"])) for row in rows]

    def count_by_language(self) -> list[tuple[str, int]]:
        with self._session("aggregate languages") as conn:
            rows = conn.execute(
                """
                SELECT language, COUNT(*) AS count
                FROM conversations
                GROUP BY language
                ORDER BY count DESC, language ASC
                """
            ).fetchall()
        return [(row["language"], int(row["count"])) for row in rows]


class ConversationService:
    """Validate, tag and persist conversations."""

    def __init__(
        self,
        store: ConversationStore,
        *,
        rules: Sequence[CategoryRule] = DEFAULT_CATEGORY_RULES,
        default_language: str = "en",
        metrics: "MetricsRecorder" | None = None,
    ) -> None:
        self._store = store
        self._rules = tuple(rules)
        self._default_language = default_language
        self._metrics = metrics

    @property
    def store(self) -> ConversationStore:
        return self._store

    def create_record(
        self,
        questions: Any,
        answers: Any,
        *,
        language: str | None = None,
        recorded_at: Any = None,
    ) -> ConversationRecord:
        normalized_questions = normalize_messages(questions, "questions")
        normalized_answers = normalize_messages(answers, "answers")
        if language is not None and not isinstance(language, str):
            raise ConversationValidationError("language must be a string")
        language_code = (language or "").strip() or self._default_language
        timestamp = coerce_timestamp(recorded_at)

        topic = analyze_topic(normalized_questions, normalized_answers, language_code, rules=self._rules)
        record = self._store.insert(
            recorded_at=timestamp,
            language=language_code,
            questions=normalized_questions,
            answers=normalized_answers,
            topic=topic,
        )
        logger.info(
            "conversation.created id=%s language=%s topic=%s questions=%s answers=%s",
            record.id,
            record.language,
            record.topic,
            len(record.questions),
            len(record.answers),
        )
        if self._metrics:
            self._metrics.increment("conversations.created", language=language_code)
        return record

    def list_records(self, *, limit: int = 100, offset: int = 0) -> ConversationPage:
        if limit < 0:
            raise ConversationValidationError("limit must be >= 0")
        if offset < 0:
            raise ConversationValidationError("offset must be >= 0")
        if limit > MAX_ROW_ID or offset > MAX_ROW_ID:
            raise ConversationValidationError(f"limit and offset must be <= {MAX_ROW_ID}")
        records = self._store.list(limit=limit, offset=offset)
        total = self._store.count()
        return ConversationPage(records=records, total=total, limit=limit, offset=offset)

    def get_record(self, conversation_id: int) -> ConversationRecord:
        _check_row_id(conversation_id)
        record = self._store.get(conversation_id)
        if record is None:
            raise ConversationNotFoundError(conversation_id)
        return record

    def delete_record(self, conversation_id: int) -> None:
        _check_row_id(conversation_id)
        if not self._store.delete(conversation_id):
            raise ConversationNotFoundError(conversation_id)
        logger.info("conversation.deleted id=%s", conversation_id)
        if self._metrics:
            self._metrics.increment("conversations.deleted")

    def analyze_record(self, conversation_id: int) -> ConversationRecord:
        """Recompute and persist the topic of a single conversation."""

        record = self.get_record(conversation_id)
        topic = self._topic_for(record)
        if not self._store.update_topic(record.id, topic):
            raise ConversationNotFoundError(conversation_id)
        record.topic = topic
        logger.info("conversation.analyzed id=%s topic=%s", record.id, topic)
        if self._metrics:
            self._metrics.increment("topics.analyzed")
        return record

    def reanalyze_missing(self) -> list[tuple[int, str]]:
        """Tag every conversation whose topic is null or empty.

        Records are updated one at a time; an interrupted run leaves the
        remaining records untagged and can simply be repeated.
        """

        results: list[tuple[int, str]] = []
        for record in self._store.list_missing_topic():
            topic = self._topic_for(record)
            if self._store.update_topic(record.id, topic):
                results.append((record.id, topic))
        logger.info("conversation.reanalyzed count=%s", len(results))
        if self._metrics and results:
            self._metrics.increment("topics.reanalyzed", value=len(results))
        return results

    def _topic_for(self, record: ConversationRecord) -> str:
        return analyze_topic(record.questions, record.answers, record.language, rules=self._rules)


class AnalyticsService:
    """Compute dashboard aggregates straight from the conversations table."""

    def __init__(self, store: ConversationStore, *, metrics: "MetricsRecorder" | None = None) -> None:
        self._store = store
        self._metrics = metrics

    def build_summary(
        self,
        *,
        days: int = 30,
        top_limit: int = 10,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        if not 1 <= days <= MAX_ANALYTICS_DAYS:
            raise ConversationValidationError(f"days must be between 1 and {MAX_ANALYTICS_DAYS}")
        if not 1 <= top_limit <= MAX_ROW_ID:
            raise ConversationValidationError("top_limit must be a positive row count")
        current = _ensure_utc(now or _utc_now())
        since = current - timedelta(days=days)

        if self._metrics:
            with self._metrics.track_timing("analytics.summary", days=days):
                return self._summarize(current, since, days, top_limit)
        return self._summarize(current, since, days, top_limit)

    def _summarize(self, current: datetime, since: datetime, days: int, top_limit: int) -> dict[str, Any]:
        return {
            "generatedAt": current.isoformat(),
            "days": days,
            "interactionsOverTime": [
                {"date": day, "count": count} for day, count in self._store.count_by_day(since)
            ],
            "topTopics": [
                {"topic": topic, "count": count} for topic, count in self._store.top_topics(top_limit)
            ],
            "totalConversations": self._store.count(),
            "conversationsByLanguage": [
                {"language": language, "count": count}
                for language, count in self._store.count_by_language()
            ],
        }


def normalize_messages(value: Any, field_name: str) -> list[str]:
    """Coerce a questions/answers payload into a list of strings.

    A single string becomes a one-element list. ``None`` and non-string
    elements are rejected.
    """

    if value is None:
        raise ConversationValidationError(f"{field_name} is required")
    if isinstance(value, str):
        return [value]
    if not isinstance(value, (list, tuple)):
        raise ConversationValidationError(f"{field_name} must be a list of strings")
    for index, item in enumerate(value):
        if not isinstance(item, str):
            raise ConversationValidationError(f"{field_name}[{index}] must be a string")
    return list(value)


def coerce_timestamp(value: Any) -> datetime:
    """Parse an optional ISO-8601 value into an aware UTC datetime."""

    if value is None or value == "":
        return _utc_now()
    if isinstance(value, datetime):
        return _ensure_utc(value)
    if not isinstance(value, str):
        raise ConversationValidationError("datetime must be an ISO-8601 string")
    text = value.strip()
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ConversationValidationError(f"Invalid datetime: {value}") from exc
    return _ensure_utc(parsed)


def _check_row_id(conversation_id: int) -> None:
    # Ids outside the SQLite integer range can never have been stored.
    if not 1 <= conversation_id <= MAX_ROW_ID:
        raise ConversationNotFoundError(conversation_id)


def _decode_messages(raw: str | None, *, strict: bool = False) -> list[str]:
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.error("conversation.store.decode_failed value=%r", raw[:80])
        if strict:
            raise ConversationStorageError("Stored messages are not valid JSON") from exc
        return []
    if not isinstance(data, list):
        return [str(data)]
    return [str(item) for item in data]


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_storage(value: datetime) -> str:
    return _ensure_utc(value).isoformat(timespec="microseconds")


def _from_storage(value: str) -> datetime:
    return _ensure_utc(datetime.fromisoformat(value))


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


__all__ = [
    "AnalyticsService",
    "ConversationError",
    "ConversationNotFoundError",
    "ConversationPage",
    "ConversationRecord",
    "ConversationService",
    "ConversationStorageError",
    "ConversationStore",
    "ConversationValidationError",
    "MAX_ANALYTICS_DAYS",
    "MAX_ROW_ID",
    "coerce_timestamp",
    "normalize_messages",
]
