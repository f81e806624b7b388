"""
Unit tests for ThreadStore
"""

import time

import pytest

from backend.promptx.errors import ThreadNotFoundError
from backend.promptx.runtime.types import (
    BusEntry,
    Message,
    MessageRole,
    ThreadType,
    ToolCall,
    ToolResult,
    utcnow,
)


def test_create_and_get_thread(store):
    """Test thread creation and retrieval"""
    thread_id = store.create_thread(owner="solver", name="first")
    thread = store.get_thread(thread_id)

    assert thread is not None
    assert thread.owner == "solver"
    assert thread.name == "first"
    assert thread.thread_type == ThreadType.ROOT
    assert thread.is_root
    assert thread.message_count == 0
    assert store.get_thread("missing") is None


def test_child_thread_defaults_to_delegation(store):
    """Test a thread with a parent is a delegation thread"""
    root = store.create_thread(owner="coordinator")
    child = store.create_thread(owner="solver", parent_thread_id=root, parent_entity_name="coordinator")

    thread = store.get_thread(child)
    assert thread.thread_type == ThreadType.DELEGATION
    assert thread.parent_thread_id == root
    assert thread.parent_entity_name == "coordinator"


def test_parent_must_exist(store):
    """Test creating a thread under a missing parent fails"""
    with pytest.raises(ThreadNotFoundError):
        store.create_thread(owner="solver", parent_thread_id="does-not-exist")
    assert store.total_threads() == 0


def test_update_thread(store):
    """Test renaming a thread"""
    thread_id = store.create_thread(owner="solver")

    assert store.update_thread(thread_id, name="renamed") is True
    assert store.get_thread(thread_id).name == "renamed"
    assert store.update_thread("missing", name="x") is False


def test_messages_ordered_and_rehydrated(store):
    """Test messages come back in order with ToolCall objects"""
    thread_id = store.create_thread(owner="solver")
    store.add_message(thread_id, Message.user("read it", sender="human"))
    store.add_message(
        thread_id,
        Message.assistant(tool_calls=[ToolCall("call_1", "read_file", {"path": "a.txt"})]),
    )
    store.add_message(thread_id, Message.tool([ToolResult("call_1", "read_file", "contents")]))
    store.add_message(thread_id, Message.assistant(content="done"))

    messages = store.get_messages(thread_id)

    assert [m.role for m in messages] == [
        MessageRole.USER,
        MessageRole.ASSISTANT,
        MessageRole.TOOL,
        MessageRole.ASSISTANT,
    ]
    assert messages[0].sender == "human"

    tc = messages[1].tool_calls[0]
    assert isinstance(tc, ToolCall)
    assert tc.name == "read_file"
    assert tc["name"] == "read_file"
    assert tc["arguments"] == {"path": "a.txt"}
    assert messages[1].content is None

    assert messages[2].results[0].content == "contents"
    assert messages[2].results[0].tool_call_id == "call_1"
    assert messages[3].content == "done"

    ids = [m.message_id for m in messages]
    assert ids == sorted(ids)
    assert store.message_count(thread_id) == 4


def test_add_message_bumps_updated_at(store):
    """Test adding a message makes its thread the most recently updated"""
    older = store.create_thread(owner="solver")
    time.sleep(0.01)
    newer = store.create_thread(owner="solver")

    assert [t.id for t in store.list_threads(owner="solver")] == [newer, older]

    time.sleep(0.01)
    store.add_message(older, Message.user("bump"))

    threads = store.list_threads(owner="solver")
    assert [t.id for t in threads] == [older, newer]
    assert threads[0].message_count == 1
    assert threads[0].updated_at > threads[0].created_at


def test_add_message_to_missing_thread(store):
    """Test adding to an unknown thread raises"""
    with pytest.raises(ThreadNotFoundError):
        store.add_message("missing", Message.user("hi"))


def test_list_threads_filters(store):
    """Test owner and type filters"""
    root = store.create_thread(owner="coordinator")
    store.create_thread(owner="solver")
    store.create_thread(owner="solver", parent_thread_id=root, parent_entity_name="coordinator")

    assert len(store.list_threads()) == 3
    assert len(store.list_threads(owner="solver")) == 2
    assert len(store.list_threads(owner="solver", thread_type=ThreadType.ROOT)) == 1


def test_get_or_create_thread(store):
    """Test the latest root thread is reused"""
    first = store.get_or_create_thread("solver")
    again = store.get_or_create_thread("solver")

    assert first.id == again.id
    assert store.total_threads() == 1


def test_lineage_and_root_resolution(store):
    """Test lineage is root first and the root resolves from any descendant"""
    root = store.create_thread(owner="coordinator")
    middle = store.create_thread(owner="solver", parent_thread_id=root, parent_entity_name="coordinator")
    leaf = store.create_thread(owner="observer", parent_thread_id=middle, parent_entity_name="solver")

    lineage = store.get_thread_lineage(leaf)
    assert [t.owner for t in lineage] == ["coordinator", "solver", "observer"]
    assert lineage[0].id == root

    assert store.resolve_root_thread(leaf) == root
    assert store.resolve_root_thread(leaf) == root
    assert store.resolve_root_thread(middle) == root
    assert store.resolve_root_thread(root) == root
    assert store.resolve_root_thread("missing") is None
    assert store.get_thread_lineage("missing") == []


def test_lineage_terminates_within_thread_count(store):
    """Test following parents from any thread ends at a root within the thread count"""
    parent = None
    ids = []
    for i in range(6):
        parent = store.create_thread(owner=f"e{i}", parent_thread_id=parent)
        ids.append(parent)

    total = store.total_threads()
    for thread_id in ids:
        steps = 0
        current = store.get_thread(thread_id)
        while current.parent_thread_id is not None:
            current = store.get_thread(current.parent_thread_id)
            steps += 1
            assert steps <= total
        assert current.id == ids[0]


def test_env_data_crud(store):
    """Test store, get, list, update and delete"""
    root = store.create_thread(owner="coordinator")

    store.store_env_data(root, "task", "The task", {"grid": [[1, 2]]}, "coordinator")
    store.store_env_data(root, "alpha", "First key", "a", "solver")

    entry = store.get_env_data(root, "task")
    assert entry.value == {"grid": [[1, 2]]}
    assert entry.stored_by == "coordinator"

    listed = store.list_env_data(root)
    assert [e["key"] for e in listed] == ["alpha", "task"]
    assert all("value" not in e for e in listed)
    assert listed[1]["short_description"] == "The task"

    assert store.update_env_data(root, "task", stored_by="solver", value={"grid": []}) is True
    updated = store.get_env_data(root, "task")
    assert updated.value == {"grid": []}
    assert updated.short_description == "The task"
    assert updated.stored_by == "solver"
    assert store.update_env_data(root, "missing", stored_by="solver", value=1) is False

    assert store.delete_env_data(root, "task") is True
    assert store.delete_env_data(root, "task") is False
    assert store.get_env_data(root, "task") is None


def test_env_data_update_to_null(store):
    """Test an explicit None is stored while an omitted value is kept"""
    root = store.create_thread(owner="coordinator")
    store.store_env_data(root, "k", "d", {"n": 1}, "coordinator")

    assert store.update_env_data(root, "k", stored_by="solver", short_description="renamed") is True
    assert store.get_env_data(root, "k").value == {"n": 1}

    assert store.update_env_data(root, "k", stored_by="solver", value=None) is True
    entry = store.get_env_data(root, "k")
    assert entry is not None
    assert entry.value is None
    assert entry.short_description == "renamed"


def test_env_data_overwrite(store):
    """Test storing an existing key replaces it"""
    root = store.create_thread(owner="coordinator")
    store.store_env_data(root, "k", "v1", 1, "a")
    store.store_env_data(root, "k", "v2", 2, "b")

    entry = store.get_env_data(root, "k")
    assert entry.value == 2
    assert entry.short_description == "v2"
    assert len(store.list_env_data(root)) == 1


def test_env_data_isolated_between_roots(store):
    """Test entries under one root are invisible from another"""
    root_a = store.create_thread(owner="coordinator")
    root_b = store.create_thread(owner="coordinator")
    store.store_env_data(root_a, "secret", "Only in A", "a", "coordinator")

    assert store.get_env_data(root_b, "secret") is None
    assert store.list_env_data(root_b) == []
    assert store.delete_env_data(root_b, "secret") is False
    assert store.get_env_data(root_a, "secret").value == "a"


def test_delete_thread_cascades(store):
    """Test deleting a root removes descendants, messages and env data"""
    root = store.create_thread(owner="coordinator")
    child = store.create_thread(owner="solver", parent_thread_id=root)
    store.add_message(child, Message.user("hi"))
    store.store_env_data(root, "k", "d", 1, "coordinator")
    store.resolve_root_thread(child)

    assert store.delete_thread(root) is True
    assert store.get_thread(child) is None
    assert store.total_messages() == 0
    assert store.list_env_data(root) == []
    assert store.resolve_root_thread(child) is None
    assert store.delete_thread(root) is False


def test_clear_messages(store):
    """Test clearing keeps the thread"""
    thread_id = store.create_thread(owner="solver")
    store.add_message(thread_id, Message.user("hi"))
    store.clear_messages(thread_id)

    assert store.get_messages(thread_id) == []
    assert store.get_thread(thread_id) is not None


def test_bus_events(store):
    """Test event persistence and recent ordering"""
    for i in range(5):
        store.add_event(BusEntry(utcnow(), "a", "b", {"n": i}, f"n={i}", thread_id="t1"))

    assert store.total_events() == 5
    assert [e.message["n"] for e in store.get_recent_events(2)] == [3, 4]
    assert len(store.get_events(thread_id="t1")) == 5


def test_in_memory_database():
    """Test an in-memory store keeps data across sessions"""
    from backend.promptx.persistence import ThreadStore

    memory = ThreadStore("sqlite:///:memory:")
    thread_id = memory.create_thread(owner="solver")
    assert memory.get_thread(thread_id).owner == "solver"
    memory.close()
