from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from chatsync.features.conversations.payloads import (
    conversation_from_payload,
    folder_from_payload,
    message_from_payload,
    parse_timestamp,
)
from chatsync.features.conversations.types import ChatMessage, Conversation


def test_parse_timestamp_accepts_seconds_milliseconds_and_iso():
    expected = datetime(2024, 3, 9, 16, 0, tzinfo=timezone.utc)

    assert parse_timestamp(1710000000) == expected
    assert parse_timestamp(1710000000000) == expected
    assert parse_timestamp("1710000000") == expected
    assert parse_timestamp("2024-03-09T16:00:00Z") == expected
    assert parse_timestamp("2024-03-09T16:00:00") == expected


def test_parse_timestamp_falls_back_to_now_for_garbage():
    before = datetime.now(timezone.utc)
    parsed = parse_timestamp("not a date")
    assert parsed >= before
    assert parse_timestamp(None).tzinfo is not None


def test_conversation_from_payload_reads_camel_case_and_defaults_title():
    conversation = conversation_from_payload(
        {
            "id": "c1",
            "updatedAt": 1710000000,
            "folderId": "f1",
            "pinned": True,
            "tags": [{"name": "work"}, "urgent"],
        }
    )

    assert conversation.title == "New Chat"
    assert conversation.folder_id == "f1"
    assert conversation.pinned is True
    assert conversation.archived is False
    assert conversation.tags == frozenset({"work", "urgent"})
    assert conversation.updated_at == datetime(2024, 3, 9, 16, 0, tzinfo=timezone.utc)


def test_conversation_from_payload_reads_nested_history_messages():
    conversation = conversation_from_payload(
        {
            "id": "c1",
            "title": "Trip",
            "chat": {
                "models": ["gpt-x"],
                "history": {
                    "messages": {
                        "m1": {"role": "user", "content": "hello", "timestamp": 1710000000},
                        "m2": {"role": "assistant", "content": [{"type": "text", "text": "hi"}]},
                    }
                },
            },
        }
    )

    assert conversation.model == "gpt-x"
    assert [(item.id, item.role, item.content) for item in conversation.messages] == [
        ("m1", "user", "hello"),
        ("m2", "assistant", "hi"),
    ]


def test_message_from_payload_rejects_missing_id_and_normalizes_role():
    with pytest.raises(ValueError):
        message_from_payload({"content": "x"})

    message = message_from_payload({"messageId": "m1", "role": "tool", "content": None})
    assert message.role == "assistant"
    assert message.content == ""


def test_folder_from_payload_reads_item_chat_ids():
    folder = folder_from_payload({"id": "f1", "name": "Work", "items": {"chat_ids": ["c1", "c2"]}})
    assert folder.conversation_ids == ("c1", "c2")

    with pytest.raises(ValueError):
        folder_from_payload({"id": "f2"})


def test_models_validate_camel_case_aliases_directly():
    conversation = Conversation.model_validate(
        {"chatId": 42, "createdAt": "1710000000000", "shareId": "  ", "archived": None, "systemPrompt": "be brief"}
    )

    assert conversation.id == "42"
    assert conversation.created_at == datetime(2024, 3, 9, 16, 0, tzinfo=timezone.utc)
    assert conversation.share_id is None
    assert conversation.archived is False
    assert conversation.system_prompt == "be brief"

    message = ChatMessage.model_validate({"id": "m1", "isStreaming": True, "attachmentIds": ["a1", {"id": "a2"}]})
    assert message.is_streaming is True
    assert message.attachment_ids == ("a1", "a2")


def test_invalid_payload_raises_validation_error():
    with pytest.raises(ValidationError):
        conversation_from_payload({"title": "no id"})
    with pytest.raises(ValidationError):
        folder_from_payload({"id": "f1", "name": None})


def test_folder_from_payload_prefers_explicit_conversation_ids():
    folder = folder_from_payload(
        {"id": 7, "name": "Work", "conversationIds": ["c9"], "parentId": "", "items": {"chat_ids": ["c1"]}}
    )

    assert folder.id == "7"
    assert folder.parent_id is None
    assert folder.conversation_ids == ("c9",)
