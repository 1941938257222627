"""Tests for the DuckDB message ledger."""
import time
from datetime import timezone

import pytest

from taskportal.messaging.errors import PersistenceError
from taskportal.messaging.ledger import MessageLedger, run_ledger_call
from taskportal.messaging.schemas import Message


class TestAppend:
    """Tests for persisting messages."""

    def test_append_returns_persisted_message(self, ledger):
        message = ledger.append(1, 2, "hello")

        assert isinstance(message, Message)
        assert message.id > 0
        assert message.sender_id == 1
        assert message.receiver_id == 2
        assert message.message == "hello"
        assert message.is_read is False
        assert message.created_at.tzinfo == timezone.utc

    def test_ids_increase(self, ledger):
        first = ledger.append(1, 2, "a")
        second = ledger.append(2, 1, "b")
        assert second.id > first.id

    def test_body_stored_as_given(self, ledger):
        body = "  spaced out  \n with ünïcode ✓ "
        ledger.append(1, 2, body)
        assert ledger.history(1, 2)[0].message == body

    def test_append_after_close_reopens(self, tmp_path):
        db_path = str(tmp_path / "messages.duckdb")
        store = MessageLedger(db_path=db_path)
        store.append(1, 2, "before")
        store.close()

        reopened = MessageLedger(db_path=db_path)
        reopened.append(1, 2, "after")
        assert [m.message for m in reopened.history(1, 2)] == ["before", "after"]
        reopened.close()


class TestHistory:
    """Tests for conversation history."""

    def test_history_contains_both_directions_in_order(self, ledger):
        ledger.append(1, 2, "one")
        ledger.append(2, 1, "two")
        ledger.append(1, 2, "three")

        history = ledger.history(1, 2)
        assert [m.message for m in history] == ["one", "two", "three"]

    def test_history_is_symmetric(self, ledger):
        ledger.append(1, 2, "one")
        ledger.append(2, 1, "two")

        assert ledger.history(1, 2) == ledger.history(2, 1)

    def test_history_excludes_other_conversations(self, ledger):
        ledger.append(1, 2, "mine")
        ledger.append(1, 3, "not yours")
        ledger.append(3, 2, "also not")

        assert [m.message for m in ledger.history(1, 2)] == ["mine"]

    def test_empty_history(self, ledger):
        assert ledger.history(1, 2) == []


class TestUnreadAndMarkRead:
    """Tests for unread counts and the is_read flag."""

    def test_unread_counts_grouped_by_sender(self, ledger):
        ledger.append(1, 3, "a")
        ledger.append(1, 3, "b")
        ledger.append(2, 3, "c")
        ledger.append(3, 1, "outgoing is not unread for 3")

        assert ledger.unread_counts_for(3) == {1: 2, 2: 1}

    def test_unread_counts_empty(self, ledger):
        assert ledger.unread_counts_for(1) == {}

    def test_unread_count_from(self, ledger):
        ledger.append(1, 2, "a")
        ledger.append(1, 2, "b")
        ledger.append(2, 1, "reply")

        assert ledger.unread_count_from(2, 1) == 2
        assert ledger.unread_count_from(1, 2) == 1
        assert ledger.unread_count_from(2, 9) == 0

    def test_mark_read_returns_rows_changed(self, ledger):
        ledger.append(1, 2, "a")
        ledger.append(1, 2, "b")

        assert ledger.mark_read(1, 2) == 2
        assert all(m.is_read for m in ledger.history(1, 2))

    def test_mark_read_is_idempotent(self, ledger):
        ledger.append(1, 2, "a")

        assert ledger.mark_read(1, 2) == 1
        assert ledger.mark_read(1, 2) == 0

    def test_mark_read_only_touches_one_direction(self, ledger):
        ledger.append(1, 2, "to two")
        ledger.append(2, 1, "to one")

        ledger.mark_read(1, 2)

        assert ledger.unread_counts_for(2) == {}
        assert ledger.unread_counts_for(1) == {2: 1}

    def test_peer_disappears_from_counts_once_read(self, ledger):
        ledger.append(1, 3, "a")
        ledger.append(2, 3, "b")

        ledger.mark_read(1, 3)

        assert ledger.unread_counts_for(3) == {2: 1}

    def test_new_message_after_read_is_unread(self, ledger):
        ledger.append(1, 2, "a")
        ledger.mark_read(1, 2)
        ledger.append(1, 2, "b")

        assert ledger.unread_count_from(2, 1) == 1


class TestSingleton:
    """Tests for get_instance/reset_instance."""

    def test_get_instance_returns_same_object(self):
        first = MessageLedger.get_instance(":memory:")
        assert MessageLedger.get_instance() is first

    def test_reset_instance_creates_new_store(self):
        first = MessageLedger.get_instance(":memory:")
        first.append(1, 2, "gone after reset")
        MessageLedger.reset_instance()

        second = MessageLedger.get_instance(":memory:")
        assert second is not first
        assert second.history(1, 2) == []


class TestRunLedgerCall:
    """Tests for running ledger calls off the event loop."""

    @pytest.mark.asyncio
    async def test_returns_result(self, ledger):
        message = await run_ledger_call(ledger.append, 1, 2, "async", timeout=5.0)
        assert message.message == "async"

    @pytest.mark.asyncio
    async def test_propagates_persistence_error(self):
        def failing():
            raise PersistenceError("Message save failed")

        with pytest.raises(PersistenceError, match="Message save failed"):
            await run_ledger_call(failing, timeout=5.0)

    @pytest.mark.asyncio
    async def test_timeout_becomes_persistence_error(self):
        def slow():
            time.sleep(0.5)

        with pytest.raises(PersistenceError, match="timed out"):
            await run_ledger_call(slow, timeout=0.05)
