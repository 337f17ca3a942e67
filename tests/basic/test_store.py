import pytest

from tllm.conversation import Message, Role
from tllm.exceptions import NotFound
from tllm.store import ConversationStore


class TestConversationStore:
    def test_create_without_system_prompt(self, store):
        conversation_id = store.create()
        conversation = store.get(conversation_id)
        assert conversation.id == conversation_id
        assert conversation.messages == []
        assert conversation.title is None
        assert conversation.system_prompt is None

    def test_create_with_system_prompt(self, store):
        conversation_id = store.create("Be brief.")
        conversation = store.get(conversation_id)
        assert len(conversation.messages) == 1
        assert conversation.messages[0].role == Role.SYSTEM
        assert conversation.system_prompt == "Be brief."

    def test_append_returns_stored_copy(self, store):
        conversation_id = store.create()
        message = Message(Role.USER, "hi")
        stored = store.append(conversation_id, message)
        assert stored.id is not None
        assert message.id is None
        assert stored.content == "hi"

    def test_messages_keep_append_order(self, store):
        conversation_id = store.create("sys")
        store.append(conversation_id, Message(Role.USER, "one"))
        store.append(conversation_id, Message(Role.ASSISTANT, "two", provider="openai"))
        store.append(conversation_id, Message(Role.USER, "three"))

        conversation = store.get(conversation_id)
        assert [m.content for m in conversation.messages] == ["sys", "one", "two", "three"]
        assert conversation.messages[2].provider == "openai"
        timestamps = [m.created_at for m in conversation.messages]
        assert timestamps == sorted(timestamps)
        assert len(set(timestamps)) == len(timestamps)

    def test_append_updates_updated_at(self, store):
        conversation_id = store.create()
        before = store.get(conversation_id).updated_at
        stored = store.append(conversation_id, Message(Role.USER, "hi"))
        after = store.get(conversation_id).updated_at
        assert after > before
        assert after == stored.created_at

    def test_truncated_flag_round_trips(self, store):
        conversation_id = store.create()
        store.append(conversation_id, Message(Role.USER, "hi"))
        store.append(conversation_id, Message(Role.ASSISTANT, "par", truncated=True))
        conversation = store.get(conversation_id)
        assert conversation.messages[-1].truncated is True
        assert conversation.messages[0].truncated is False

    def test_append_to_missing_conversation(self, store):
        with pytest.raises(NotFound) as cm:
            store.append(42, Message(Role.USER, "hi"))
        assert cm.value.conversation_id == 42

    def test_get_missing_conversation(self, store):
        with pytest.raises(NotFound):
            store.get(1)

    def test_system_message_only_first(self, store):
        conversation_id = store.create()
        store.append(conversation_id, Message(Role.USER, "hi"))
        with pytest.raises(ValueError):
            store.append(conversation_id, Message(Role.SYSTEM, "late"))
        assert len(store.get(conversation_id).messages) == 1

    def test_second_system_message_rejected(self, store):
        conversation_id = store.create("first")
        with pytest.raises(ValueError):
            store.append(conversation_id, Message(Role.SYSTEM, "second"))

    def test_list_recent_orders_by_activity(self, store):
        first = store.create()
        second = store.create()
        third = store.create()
        store.append(first, Message(Role.USER, "bump"))

        ids = [s.id for s in store.list_recent()]
        assert ids == [first, third, second]
        assert [s.id for s in store.list_recent(limit=2)] == [first, third]

    def test_list_recent_empty(self, store):
        assert store.list_recent() == []
        assert store.latest() is None

    def test_latest_does_not_modify_store(self, store):
        store.create()
        newest = store.create()
        before = store.list_recent()

        assert store.latest().id == newest
        assert store.latest().id == newest
        assert store.list_recent() == before

    def test_set_title(self, store):
        conversation_id = store.create()
        store.set_title(conversation_id, "python_tips")
        assert store.get(conversation_id).title == "python_tips"
        assert store.list_recent()[0].title == "python_tips"

    def test_set_title_missing(self, store):
        with pytest.raises(NotFound):
            store.set_title(7, "nope")

    def test_export_all_oldest_first(self, store):
        first = store.create()
        second = store.create()
        store.append(first, Message(Role.USER, "latest activity"))

        exported = store.export_all()
        assert not isinstance(exported, list)
        assert [c.id for c in exported] == [first, second]

    def test_reopen_preserves_data(self, tmp_path):
        path = tmp_path / "nested" / "tllm.sqlite"
        with ConversationStore(path) as store:
            conversation_id = store.create("sys")
            last = store.append(conversation_id, Message(Role.USER, "hi"))

        with ConversationStore(path) as store:
            conversation = store.get(conversation_id)
            assert [m.content for m in conversation.messages] == ["sys", "hi"]
            # Timestamps keep increasing across processes
            newer = store.append(conversation_id, Message(Role.ASSISTANT, "hello"))
            assert newer.created_at > last.created_at

    def test_in_memory_store(self):
        with ConversationStore(":memory:") as store:
            conversation_id = store.create()
            store.append(conversation_id, Message(Role.USER, "hi"))
            assert len(store.get(conversation_id).messages) == 1


class TestMessage:
    def test_role_is_coerced(self):
        message = Message("assistant", "hello")
        assert message.role is Role.ASSISTANT

    def test_invalid_role(self):
        with pytest.raises(ValueError) as cm:
            Message("robot", "beep")
        assert "Invalid role: robot" in str(cm.value)

    def test_to_dict(self):
        message = Message(Role.USER, "hi", provider="openai")
        assert message.to_dict() == {"role": "user", "content": "hi"}

    def test_conversation_turns_skip_system(self, store):
        conversation_id = store.create("sys")
        store.append(conversation_id, Message(Role.USER, "hi"))
        conversation = store.get(conversation_id)
        assert [m.content for m in conversation.turns] == ["hi"]
