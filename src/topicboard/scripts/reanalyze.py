"""CLI for tagging stored conversations that have no topic yet."""

from __future__ import annotations

import argparse
import sys

from topicboard.app import build_services
from topicboard.config import Settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Re-analyze conversations without a topic")
    parser.add_argument(
        "--count",
        action="store_true",
        help="Only print the number of stored conversations",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    state = build_services(settings, metrics=settings.build_metrics_recorder())

    if args.count:
        print(f"Rows in conversations table: {state.store.count()}")
        return 0

    results = state.conversation_service.reanalyze_missing()
    for conversation_id, topic in results:
        print(f"{conversation_id}\t{topic}")
    print(f"Analyzed {len(results)} conversation{'s' if len(results) != 1 else ''}")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry
    sys.exit(main())
