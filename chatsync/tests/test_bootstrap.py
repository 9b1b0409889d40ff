from __future__ import annotations

import asyncio

import pytest

from chatsync.features.conversations.store import ConversationStore
from chatsync.features.mutations.ledger import PendingMutationLedger
from chatsync.features.mutations.types import PendingKey
from chatsync.features.shared.errors import TransientNetworkError
from chatsync.features.sync.bootstrap import load_initial_state
from chatsync.features.views.partitions import partition_conversations
from chatsync.tests.fakes import FakeConversationApi, make_conversation, make_folder


class _SplitApi(FakeConversationApi):
    """Lists only some conversations while get_conversation can resolve more."""

    def __init__(self, listed, fetchable, folders):
        super().__init__(fetchable, folders)
        self._listed = listed

    async def list_conversations(self):
        await self._enter("list_conversations")
        return list(self._listed)


def test_load_sorts_newest_first_and_maps_folder_listings():
    api = FakeConversationApi(
        [make_conversation("old", minutes=1), make_conversation("new", minutes=9)],
        [make_folder("f1", conversation_ids=("old",))],
    )
    store = ConversationStore()

    state = asyncio.run(load_initial_state(api, store))

    assert [item.id for item in store.list_conversations()] == ["new", "old"]
    assert store.get_conversation("old").folder_id == "f1"
    assert state.folders_loaded is True
    assert [item.id for item in store.list_folders()] == ["f1"]


def test_folder_listed_conversations_missing_from_list_are_fetched():
    listed = [make_conversation("c1", minutes=1)]
    fetchable = listed + [make_conversation("c2", minutes=5)]
    api = _SplitApi(listed, fetchable, [make_folder("f1", conversation_ids=("c2", "ghost"))])
    store = ConversationStore()

    state = asyncio.run(load_initial_state(api, store))

    assert [item.id for item in store.list_conversations()] == ["c2", "c1"]
    assert store.get_conversation("c2").folder_id == "f1"
    assert state.unavailable_ids == ("ghost",)


def test_folder_list_failure_keeps_conversations_as_regular():
    api = FakeConversationApi([make_conversation("c1", folder_id="f1")], [make_folder("f1")])
    api.fail("list_folders")
    store = ConversationStore()

    state = asyncio.run(load_initial_state(api, store))

    assert state.folders_loaded is False
    assert store.list_folders() == []
    assert store.get_conversation("c1").folder_id == "f1"


def test_folder_list_failure_on_refresh_keeps_loaded_folder_table():
    store = ConversationStore()
    store.replace_all([make_conversation("c1", folder_id="f1")], [make_folder("f1"), make_folder("f2")])
    api = FakeConversationApi([make_conversation("c1", folder_id="f1", title="Renamed")], [])
    api.fail("list_folders")

    state = asyncio.run(load_initial_state(api, store))

    assert state.folders_loaded is False
    assert [item.id for item in store.list_folders()] == ["f1", "f2"]
    assert [item.id for item in state.folders] == ["f1", "f2"]
    assert store.get_conversation("c1").title == "Renamed"
    partitions = partition_conversations(store.list_conversations(), store.list_folders())
    assert partitions.ids()["foldered"] == {"f1": ["c1"]}
    assert partitions.ids()["regular"] == []


def test_conversation_list_failure_leaves_store_untouched():
    api = FakeConversationApi()
    api.fail("list_conversations")
    store = ConversationStore()
    store.replace_all([make_conversation("keep")], [])
    version = store.version

    with pytest.raises(TransientNetworkError):
        asyncio.run(load_initial_state(api, store))

    assert store.version == version
    assert store.get_conversation("keep") is not None


def test_pending_mutations_survive_reload():
    api = FakeConversationApi(
        [make_conversation("c1", minutes=2), make_conversation("c2", minutes=1)],
        [make_folder("f1")],
    )
    store = ConversationStore()
    store.replace_all([make_conversation("c1", minutes=2, pinned=True)], [make_folder("f1", "Renamed")])
    ledger = PendingMutationLedger()
    ledger.begin(PendingKey("conversation", "c1", "pinned"), "set_pinned", False)
    ledger.begin(PendingKey("conversation", "c2", "deleted"), "delete", None)
    ledger.begin(PendingKey("folder", "f1", "name"), "rename_folder", "Folder f1")

    asyncio.run(load_initial_state(api, store, ledger))

    assert [item.id for item in store.list_conversations()] == ["c1"]
    assert store.get_conversation("c1").pinned is True
    assert store.get_folder("f1").name == "Renamed"
