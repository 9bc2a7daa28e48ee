"""Seed the conversations table with a few sample sessions."""

from __future__ import annotations

import argparse
from datetime import datetime, timedelta, timezone

from topicboard import ConversationStore, Settings

SAMPLES = [
    {
        "offset": timedelta(0),
        "questions": ["Question 1", "Question 2", "Question 3"],
        "answers": ["Answer 1", "Answer 2", "Answer 3"],
        "language": "en",
        "topic": "technology",
    },
    {
        "offset": timedelta(hours=1),
        "questions": ["Is it working?", "Is it fast?", "Is it reliable?"],
        "answers": ["Yes", "No", "Maybe"],
        "language": "de",
        "topic": "business",
    },
    {
        "offset": timedelta(hours=4),
        "questions": ["Is it green?", "Is it cool?", "Is it healthy?"],
        "answers": ["I dunno", "Yes, definetely", "Maybe"],
        "language": "de",
        "topic": "environment",
    },
]


def main(*, dry_run: bool) -> None:
    settings = Settings.from_env()
    now = datetime.now(timezone.utc)

    if dry_run:
        for sample in SAMPLES:
            print(f"Would insert [{sample['language']}] {sample['topic']}: {sample['questions'][0]}")
        return

    store = ConversationStore(settings.database_file())
    for sample in SAMPLES:
        record = store.insert(
            recorded_at=now - sample["offset"],
            language=sample["language"],
            questions=sample["questions"],
            answers=sample["answers"],
            topic=sample["topic"],
        )
        print(f"Inserted conversation {record.id} ({record.topic})")
    print(f"Seeded {len(SAMPLES)} conversations into {store.path}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the sample conversations without inserting them",
    )
    args = parser.parse_args()
    main(dry_run=args.dry_run)
