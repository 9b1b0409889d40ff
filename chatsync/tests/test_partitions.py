from __future__ import annotations

from chatsync.features.conversations.store import ConversationStore
from chatsync.features.views.partitions import (
    ConversationIndexView,
    DanglingFolderReference,
    partition_conversations,
)
from chatsync.tests.fakes import make_conversation, make_folder


def test_conversation_in_unloaded_folder_is_regular():
    partitions = partition_conversations([make_conversation("c1", folder_id="f1")], [])

    assert partitions.ids()["regular"] == ["c1"]
    assert partitions.foldered == {}
    assert partitions.dangling == (DanglingFolderReference("c1", "f1"),)


def test_precedence_is_pinned_then_archived_then_foldered():
    conversations = [
        make_conversation("both", pinned=True, archived=True, folder_id="f1"),
        make_conversation("archived", archived=True, folder_id="f1"),
        make_conversation("filed", folder_id="f1"),
        make_conversation("plain"),
    ]

    partitions = partition_conversations(conversations, [make_folder("f1")])

    assert partitions.ids() == {
        "pinned": ["both"],
        "archived": ["archived"],
        "foldered": {"f1": ["filed"]},
        "regular": ["plain"],
    }
    assert partitions.total == len(conversations)


def test_every_conversation_lands_in_exactly_one_bucket():
    conversations = [
        make_conversation(f"c{index}", minutes=index, folder_id=folder, pinned=index % 5 == 0, archived=index % 3 == 0)
        for index, folder in enumerate(["f1", "gone", None, "f2", "f1", "gone", None, "f2", "x", None])
    ]

    partitions = partition_conversations(conversations, [make_folder("f1"), make_folder("f2")])

    ids = partitions.ids()
    placed = ids["pinned"] + ids["archived"] + ids["regular"] + [
        item for items in ids["foldered"].values() for item in items
    ]
    assert sorted(placed) == sorted(item.id for item in conversations)
    dangling_ids = {item.conversation_id for item in partitions.dangling}
    assert dangling_ids <= set(ids["regular"])


def test_buckets_sort_newest_first_and_folders_follow_table_order():
    conversations = [
        make_conversation("old", minutes=1, folder_id="f2"),
        make_conversation("new", minutes=5, folder_id="f2"),
        make_conversation("a", minutes=3, folder_id="f1"),
        make_conversation("tie-1", minutes=2),
        make_conversation("tie-2", minutes=2),
    ]

    partitions = partition_conversations(conversations, [make_folder("f1"), make_folder("f2")])

    assert list(partitions.foldered) == ["f1", "f2"]
    assert partitions.ids()["foldered"]["f2"] == ["new", "old"]
    assert partitions.ids()["regular"] == ["tie-1", "tie-2"]


def test_index_view_recomputes_only_when_store_changes():
    store = ConversationStore()
    store.replace_all([make_conversation("c1")], [])
    view = ConversationIndexView(store)

    first = view.current()
    assert view.current() is first

    store.update_conversation("c1", pinned=True)
    second = view.current()

    assert second is not first
    assert second.ids()["pinned"] == ["c1"]
