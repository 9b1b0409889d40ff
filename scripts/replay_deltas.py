#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from chatsync.core.log import configure_logging
from chatsync.features.conversations import ConversationStore, conversation_from_payload, folder_from_payload
from chatsync.features.deltas import ConversationDelta, DeltaReconciler
from chatsync.features.mutations import PendingMutationLedger
from chatsync.features.shared.diagnostics import SyncDiagnostics
from chatsync.features.views import partition_conversations


@dataclass
class ReplayStats:
    events_read: int
    lines_skipped: int


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Replay recorded socket events against a conversation snapshot and print the result.",
    )
    parser.add_argument(
        "--snapshot",
        type=Path,
        help="JSON file with 'conversations' and 'folders' arrays (default: empty store).",
    )
    parser.add_argument(
        "--events",
        required=True,
        type=Path,
        help="JSONL file, one socket event per line; lines may wrap it as {'source', 'event'}.",
    )
    parser.add_argument(
        "--source",
        choices=("chat", "channel"),
        default="chat",
        help="Source used for events that do not name one (default: chat).",
    )
    parser.add_argument(
        "--conversation-id",
        default=None,
        help="Conversation id the subscription was bound to, used when an event omits one.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Configure chatsync logging before replaying.",
    )
    args = parser.parse_args()

    if not args.events.is_file():
        raise SystemExit(f"--events file not found: {args.events}")
    if args.snapshot is not None and not args.snapshot.is_file():
        raise SystemExit(f"--snapshot file not found: {args.snapshot}")
    return args


def load_snapshot(store: ConversationStore, path: Path | None) -> None:
    if path is None:
        return
    data = json.loads(path.read_text(encoding="utf-8"))
    conversations = [conversation_from_payload(item) for item in data.get("conversations", [])]
    folders = [folder_from_payload(item) for item in data.get("folders", [])]
    store.replace_all(conversations, folders)


def read_deltas(path: Path, *, default_source: str) -> tuple[list[ConversationDelta], ReplayStats]:
    deltas: list[ConversationDelta] = []
    skipped = 0
    for line in path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        try:
            record: Any = json.loads(line)
        except json.JSONDecodeError:
            skipped += 1
            continue
        if not isinstance(record, dict):
            skipped += 1
            continue
        source = record.get("source") or default_source
        event = record.get("event", record)
        deltas.append(ConversationDelta.from_socket_event(source, event))
    return deltas, ReplayStats(events_read=len(deltas), lines_skipped=skipped)


def replay(args: argparse.Namespace) -> dict[str, Any]:
    store = ConversationStore()
    diagnostics = SyncDiagnostics()
    reconciler = DeltaReconciler(store, PendingMutationLedger(), diagnostics=diagnostics)

    load_snapshot(store, args.snapshot)
    deltas, stats = read_deltas(args.events, default_source=args.source)
    reconciler.apply_many(deltas, default_conversation_id=args.conversation_id)

    partitions = partition_conversations(store.list_conversations(), store.list_folders())
    return {
        "events_read": stats.events_read,
        "lines_skipped": stats.lines_skipped,
        "store_version": store.version,
        "partitions": partitions.ids(),
        "dangling": [
            {"conversation_id": item.conversation_id, "folder_id": item.folder_id}
            for item in partitions.dangling
        ],
        "conversations": [
            item.model_dump(mode="json", include={"id", "title", "pinned", "archived", "folder_id", "messages"})
            for item in store.list_conversations()
        ],
        "diagnostics": diagnostics.as_dict(),
    }


def main() -> int:
    args = parse_args()
    if args.verbose:
        configure_logging()
    print(json.dumps(replay(args), indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
