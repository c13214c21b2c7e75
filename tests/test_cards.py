"""Tests for the card store and its post-commit indexing."""

from unittest.mock import MagicMock

import pytest

from cardsearch_lib.cards import Card, CardNotFoundError, CardStore, iter_cards
from cardsearch_lib.outbox import IndexOutbox
from cardsearch_lib.schema import get_connection


class TestIndexOutbox:
    """Jobs run in order, each in its own error boundary."""

    def test_runs_jobs_in_order(self):
        calls = []
        outbox = IndexOutbox()
        outbox.enqueue('first', calls.append, 1)
        outbox.enqueue('second', calls.append, 2)

        assert len(outbox) == 2
        assert outbox.flush() == 2
        assert calls == [1, 2]
        assert len(outbox) == 0

    def test_failure_does_not_stop_queue(self):
        calls = []

        def fail():
            raise ValueError("boom")

        outbox = IndexOutbox()
        outbox.enqueue('broken', fail)
        outbox.enqueue('after', calls.append, 'ran')

        assert outbox.flush() == 1
        assert calls == ['ran']
        assert [(f.name, f.error) for f in outbox.failures] == [('broken', 'boom')]

    def test_failure_log_is_bounded(self):
        outbox = IndexOutbox(max_failures=2)
        for i in range(3):
            outbox.enqueue(f'job {i}', int, 'x')
        outbox.flush()
        assert [f.name for f in outbox.failures] == ['job 1', 'job 2']


class TestCardStore:
    """CRUD on cards and their content records."""

    def test_create_and_get(self, store):
        store.create_card(Card(card_id='c1', name='会议记录', content={'text': '内容'}))

        card = store.get_card('c1')

        assert card.name == '会议记录'
        assert card.content == '{"text": "内容"}'
        assert card.create_time is not None

    def test_duplicate_id(self, store):
        store.create_card(Card(card_id='c1'))
        with pytest.raises(RuntimeError):
            store.create_card(Card(card_id='c1'))

    def test_get_missing(self, store):
        with pytest.raises(CardNotFoundError):
            store.get_card('nope')

    def test_update_merges_fields(self, store):
        store.create_card(Card(card_id='c1', name='old', description='kept'))

        store.update_card('c1', name='new')

        card = store.get_card('c1')
        assert card.name == 'new'
        assert card.description == 'kept'

    def test_update_rejects_unknown_field(self, store):
        store.create_card(Card(card_id='c1'))
        with pytest.raises(ValueError):
            store.update_card('c1', card_id='c2')

    def test_soft_delete_and_restore(self, store, db_path):
        store.create_card(Card(card_id='c1', name='会议'))

        store.delete_card('c1')

        with pytest.raises(CardNotFoundError):
            store.get_card('c1')
        assert store.get_card('c1', include_deleted=True).del_flag == 1
        assert [card.card_id for card in iter_cards(db_path)] == []

        store.restore_card('c1')
        assert store.get_card('c1').del_flag == 0

    def test_hard_delete_removes_content(self, store, db_path):
        store.create_card(Card(card_id='c1', content='text'))

        store.delete_card('c1', hard=True)

        with get_connection(db_path) as conn:
            assert conn.execute("SELECT COUNT(*) FROM card_contents").fetchone()[0] == 0
        with pytest.raises(CardNotFoundError):
            store.get_card('c1', include_deleted=True)


class TestIndexingHook:
    """Indexing follows each committed write and cannot fail it."""

    def test_writer_called_after_create(self, db_path):
        writer = MagicMock()
        store = CardStore(db_path, writer)

        card = store.create_card(Card(card_id='c1', name='会议'))

        writer.index_card.assert_called_once_with(card)

    def test_failing_writer_does_not_fail_write(self, db_path):
        writer = MagicMock()
        writer.index_card.side_effect = RuntimeError("index unavailable")
        outbox = IndexOutbox()
        store = CardStore(db_path, writer, outbox)

        store.create_card(Card(card_id='c1', name='会议'))

        assert store.get_card('c1').name == '会议'
        assert len(outbox.failures) == 1

    def test_delete_removes_index_in_transaction(self, db_path):
        writer = MagicMock()
        store = CardStore(db_path, writer)
        store.create_card(Card(card_id='c1'))

        store.delete_card('c1')

        conn, card_id = writer.remove.call_args.args
        assert card_id == 'c1'

    def test_store_without_writer(self, db_path):
        store = CardStore(db_path)
        store.create_card(Card(card_id='c1', name='plain'))
        assert len(store.outbox) == 0
        assert store.get_card('c1').name == 'plain'
