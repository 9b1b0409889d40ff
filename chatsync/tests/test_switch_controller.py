from __future__ import annotations

import asyncio

import pytest

from chatsync.features.conversations.store import ConversationStore
from chatsync.features.mutations.ledger import PendingMutationLedger
from chatsync.features.mutations.types import PendingKey
from chatsync.features.switching.controller import ConversationSwitchController
from chatsync.tests.fakes import FakeConversationApi, FakeRemoteError, drain, make_conversation, make_message


def _setup(ledger=None):
    full = [
        make_conversation("c1", messages=(make_message("m1", "from c1"),)),
        make_conversation("c2", messages=(make_message("m2", "from c2"),)),
    ]
    store = ConversationStore()
    store.replace_all([item.model_copy(update={"messages": ()}) for item in full], [])
    api = FakeConversationApi(full)
    controller = ConversationSwitchController(store, api, ledger=ledger)
    return store, api, controller


def test_select_loads_full_conversation():
    store, _, controller = _setup()

    outcome = asyncio.run(controller.select("c1"))

    assert outcome.status == "applied"
    assert outcome.token == 1
    assert controller.state.phase == "settled"
    assert store.active_conversation_id == "c1"
    assert store.get_snapshot().active_messages[0].content == "from c1"


def test_select_clears_previous_messages_while_loading():
    store, api, controller = _setup()
    store.set_active(make_conversation("c2", messages=(make_message("m2", "old"),)))
    api.hold("get_conversation")

    async def _scenario():
        task = asyncio.create_task(controller.select("c1"))
        await drain()
        snapshot = store.get_snapshot()
        assert snapshot.active_conversation_id == "c1"
        assert snapshot.active_loading is True
        assert snapshot.active_messages == ()
        assert controller.state.phase == "loading"
        api.release("get_conversation")
        return await task

    asyncio.run(_scenario())


@pytest.mark.asyncio
async def test_late_earlier_load_is_discarded():
    store, api, controller = _setup()
    api.hold("get_conversation")

    first = asyncio.create_task(controller.select("c1"))
    await drain()
    second = asyncio.create_task(controller.select("c2"))
    await drain()
    api.release("get_conversation", 1)
    second_outcome = await second
    api.release("get_conversation", 0)
    first_outcome = await first

    assert second_outcome.status == "applied"
    assert first_outcome.status == "stale"
    assert first_outcome.token < second_outcome.token
    assert store.active_conversation_id == "c2"
    assert store.active_conversation.messages[0].content == "from c2"
    assert controller.diagnostics.stale_loads == 1


def test_stale_failure_does_not_fall_back():
    store, api, controller = _setup()
    api.hold("get_conversation")

    async def _scenario():
        first = asyncio.create_task(controller.select("c1"))
        await drain()
        second = asyncio.create_task(controller.select("c2"))
        await drain()
        api.release("get_conversation", 1)
        await second
        api.release("get_conversation", 0, error=FakeRemoteError("timeout"))
        return await first

    outcome = asyncio.run(_scenario())

    assert outcome.status == "stale"
    assert outcome.error is not None
    assert store.active_conversation_id == "c2"


def test_failed_load_falls_back_to_list_summary():
    store, api, controller = _setup()
    api.fail("get_conversation")

    outcome = asyncio.run(controller.select("c1"))

    assert outcome.status == "fallback"
    assert outcome.error is not None
    assert store.active_conversation == store.get_conversation("c1")
    assert store.active_loading is False
    assert controller.state.phase == "settled"


def test_failed_load_without_summary_leaves_empty_view():
    store, api, controller = _setup()

    outcome = asyncio.run(controller.select("missing"))

    assert outcome.status == "fallback"
    assert outcome.conversation is None
    assert store.active_conversation is None
    assert store.active_loading is False


@pytest.mark.asyncio
async def test_reset_suppresses_in_flight_load():
    store, api, controller = _setup()
    api.hold("get_conversation")

    task = asyncio.create_task(controller.select("c1"))
    await drain()
    controller.clear()
    api.release("get_conversation")
    outcome = await task

    assert outcome.status == "stale"
    assert controller.state.phase == "idle"
    assert store.active_conversation_id is None


def test_loaded_conversation_keeps_unconfirmed_local_edits():
    ledger = PendingMutationLedger()
    store, _, controller = _setup(ledger=ledger)
    store.update_conversation("c1", pinned=True)
    ledger.begin(PendingKey("conversation", "c1", "pinned"), "set_pinned", False)

    asyncio.run(controller.select("c1"))

    assert store.active_conversation.pinned is True
    assert store.active_conversation.messages[0].content == "from c1"
