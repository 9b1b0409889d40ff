from __future__ import annotations

from chatsync.features.conversations.store import ConversationStore
from chatsync.features.deltas.reconciler import DeltaReconciler
from chatsync.features.mutations.ledger import PendingMutationLedger
from chatsync.features.mutations.types import PendingKey
from chatsync.features.shared.diagnostics import SyncDiagnostics
from chatsync.tests.fakes import make_conversation, make_message, socket_delta


def _setup(*conversations, active=None):
    store = ConversationStore()
    store.replace_all(list(conversations), [])
    if active is not None:
        store.set_active(active)
    ledger = PendingMutationLedger()
    cleared: list[str] = []
    reconciler = DeltaReconciler(
        store,
        ledger,
        diagnostics=SyncDiagnostics(),
        on_active_cleared=cleared.append,
    )
    return store, ledger, reconciler, cleared


def test_append_creates_then_extends_streaming_message():
    store, _, reconciler, _ = _setup(make_conversation("c1"))

    reconciler.apply(socket_delta("chat:message:delta", {"content": "Hel"}, chat_id="c1", message_id="m1"))
    reconciler.apply(socket_delta("chat:message:delta", {"content": "lo"}, chat_id="c1", message_id="m1"))
    reconciler.apply(socket_delta("message", {"content": "!"}, chat_id="c1"))

    messages = store.get_conversation("c1").messages
    assert len(messages) == 1
    assert messages[0].id == "m1"
    assert messages[0].content == "Hello!"
    assert messages[0].is_streaming is True


def test_chunks_concatenate_in_arrival_order_and_complete_stops_streaming():
    store, _, reconciler, _ = _setup(make_conversation("c1"))
    for piece in ("a", "b", "c"):
        reconciler.apply(socket_delta("message-chunk", {"conversation_id": "c1", "message_id": "m1", "content": piece}))
    reconciler.apply(socket_delta("message-complete", {"conversation_id": "c1", "message_id": "m1"}))

    message = store.get_conversation("c1").messages[0]
    assert message.content == "abc"
    assert message.is_streaming is False


def test_completion_applies_to_conversation_that_is_not_displayed():
    store, _, reconciler, _ = _setup(
        make_conversation("c1", messages=(make_message("m1", "", is_streaming=True),)),
        make_conversation("c2"),
        active=make_conversation("c2"),
    )

    reconciler.apply(socket_delta("chat:completion", {"chat_id": "c1", "done": True, "content": "final"}))

    message = store.get_conversation("c1").messages[0]
    assert message.is_streaming is False
    assert message.content == "final"


def test_message_deltas_update_active_conversation_too():
    active = make_conversation("c1", messages=(make_message("m1", "old"),))
    store, _, reconciler, _ = _setup(make_conversation("c1"), active=active)

    reconciler.apply(socket_delta("chat:message", {"chat_id": "c1", "id": "m1", "content": "new"}))
    reconciler.apply(socket_delta("event:status", {"chat_id": "c1", "id": "m1", "status": "done"}))

    message = store.active_conversation.messages[0]
    assert message.content == "new"
    assert message.metadata == {"status": "done"}


def test_error_delta_marks_message_failed():
    store, _, reconciler, _ = _setup(
        make_conversation("c1", messages=(make_message("m1", "partial", is_streaming=True),)),
    )

    reconciler.apply(socket_delta("chat:message:error", {"chat_id": "c1", "message_id": "m1", "error": "quota"}))

    message = store.get_conversation("c1").messages[0]
    assert message.content == "quota"
    assert message.is_streaming is False
    assert message.metadata["error"] is True


def test_malformed_unknown_and_orphan_deltas_are_counted_not_raised():
    store, _, reconciler, _ = _setup(make_conversation("c1"))
    version = store.version

    reconciler.apply(socket_delta("message-append", None, chat_id="c1"))
    reconciler.apply(socket_delta("typing", {"chat_id": "c1"}))
    reconciler.apply(socket_delta("message-append", {"content": "x"}, chat_id="ghost"))

    assert reconciler.diagnostics.malformed_deltas == 1
    assert reconciler.diagnostics.unknown_deltas == 1
    assert reconciler.diagnostics.orphan_deltas == 1
    assert store.version == version


def test_ack_receives_outcome_and_failing_ack_is_swallowed():
    _, _, reconciler, _ = _setup(make_conversation("c1"))
    acks: list[dict] = []

    def _broken_ack(_payload):
        raise RuntimeError("socket closed")

    reconciler.apply(socket_delta("message", {"content": "x"}, chat_id="c1", ack=acks.append))
    reconciler.apply(socket_delta("message", None, ack=acks.append))
    reconciler.apply(socket_delta("message", {"content": "y"}, chat_id="c1", ack=_broken_ack))

    assert acks == [{"ok": True}, {"ok": False}]


def test_conversation_updated_merges_fields_without_pending_mutation():
    store, _, reconciler, _ = _setup(make_conversation("c1"))

    reconciler.apply(socket_delta("chat:title", {"chat_id": "c1", "title": "  Trip\nplans "}))
    reconciler.apply(socket_delta("chat:tags", {"chat_id": "c1", "tags": ["travel"]}))

    conversation = store.get_conversation("c1")
    assert conversation.title == "Trip plans"
    assert conversation.tags == frozenset({"travel"})


def test_conversation_updated_holds_guarded_field_with_pending_mutation():
    store, ledger, reconciler, _ = _setup(make_conversation("c1", title="Y"))
    key = PendingKey("conversation", "c1", "title")
    ledger.begin(key, "rename", "Old")

    reconciler.apply(socket_delta("conversation-updated", {"conversation_id": "c1", "title": "X", "model": "m2"}))

    conversation = store.get_conversation("c1")
    assert conversation.title == "Y"
    assert conversation.model == "m2"
    assert ledger.release_held(key) == ["X"]
    assert reconciler.diagnostics.held_deltas == 1


def test_conversation_updated_is_discarded_while_delete_is_pending():
    store, ledger, reconciler, _ = _setup(make_conversation("c1"))
    ledger.begin(PendingKey("conversation", "c1", "deleted"), "delete", (store.get_conversation("c1"), 0))

    reconciler.apply(socket_delta("conversation-updated", {"conversation_id": "c1", "title": "X"}))

    assert store.get_conversation("c1").title == "Chat c1"
    assert reconciler.diagnostics.orphan_deltas == 1


def test_duplicate_conversation_deleted_is_a_noop():
    store, _, reconciler, _ = _setup(make_conversation("c1"), make_conversation("c2"))
    delta = socket_delta("conversation-deleted", {"conversation_id": "c1"})

    reconciler.apply(delta)
    once = store.get_snapshot()
    reconciler.apply(delta)
    twice = store.get_snapshot()

    assert [item.id for item in twice.conversations] == ["c2"]
    assert twice.conversations == once.conversations
    assert twice.version == once.version
    assert reconciler.diagnostics.malformed_deltas == 0


def test_deleting_active_conversation_clears_active_and_notifies():
    store, ledger, reconciler, cleared = _setup(make_conversation("c1"), active=make_conversation("c1"))
    ledger.begin(PendingKey("conversation", "c1", "pinned"), "set_pinned", False)

    reconciler.apply(socket_delta("conversation-deleted", {"conversation_id": "c1"}))

    assert store.active_conversation_id is None
    assert cleared == ["c1"]
    assert ledger.outstanding() == []


def test_apply_many_notifies_once():
    store, _, reconciler, _ = _setup(make_conversation("c1"))
    versions: list[int] = []
    store.subscribe(lambda snapshot: versions.append(snapshot.version))

    reconciler.apply_many(
        [
            socket_delta("message", {"content": "a"}, chat_id="c1", message_id="m1"),
            socket_delta("message", {"content": "b"}, chat_id="c1", message_id="m1"),
        ]
    )

    assert len(versions) == 1
    assert store.get_conversation("c1").messages[0].content == "ab"
