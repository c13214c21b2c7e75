"""Tests for derived text and card_fts maintenance."""

import json
from unittest.mock import MagicMock

from cardsearch_lib.cards import Card
from cardsearch_lib.derived_text import DerivedTextWriter
from cardsearch_lib.file_extract import Page
from cardsearch_lib.schema import get_connection
from cardsearch_lib.search import search_content


def _fts_rows(db_path):
    with get_connection(db_path) as conn:
        return conn.execute("SELECT COUNT(*) FROM card_fts").fetchone()[0]


class TestExtractColumns:
    """Per-card-type content extraction."""

    def test_rich_text_default(self, writer):
        card = Card(card_id='c1', card_type='diary', content='<p>今天的会议</p>')
        assert writer.extract_columns(card) == {'rich_text': '今天的会议'}

    def test_drawboard(self, writer):
        elements = [{'type': 'text', 'text': '架构图'}, {'type': 'rect', 'strokeColor': '1E1E1E'}]
        card = Card(card_id='c1', card_type='draw-board', content=json.dumps(elements))
        assert writer.extract_columns(card) == {'drawboard_content': '架构图'}

    def test_mind_map_uses_content_and_map(self, writer):
        card = Card(
            card_id='c1', card_type='mind-map',
            content={'data': {'text': '项目计划'}},
            card_map={'children': [{'data': {'text': '里程碑'}}]},
        )
        assert writer.extract_columns(card) == {'mind_map_content': '项目计划 里程碑'}

    def test_mermaid_has_no_content_columns(self, writer):
        card = Card(card_id='c1', card_type='mermaid', content='graph TD; A-->B')
        assert writer.extract_columns(card) == {}

    def test_multi_table(self, writer):
        card = Card(
            card_id='c1', card_type='multi-table',
            data=[{'id': 'r1', 'c1': '张三'}], attr_list=[{'title': '姓名'}], view_list=[],
        )
        assert writer.extract_columns(card) == {'rich_text': '张三 姓名'}

    def test_attachment_metadata_and_pages(self, db_path, extractor):
        documents = MagicMock()
        documents.index_file.return_value = [Page(1, '第一页'), Page(2, '')]
        writer = DerivedTextWriter(db_path, extractor, document_indexer=documents)
        card = Card(
            card_id='c1', card_type='attachment', space_id='s1',
            content={'fileName': '季度报告.pdf', 'localPath': '/files/report.pdf', 'size': 1024},
        )

        assert writer.extract_columns(card) == {'file_content': '季度报告.pdf 第一页'}
        path, = documents.index_file.call_args.args
        assert str(path) == '/files/report.pdf'
        assert documents.index_file.call_args.kwargs == {'card_id': 'c1', 'space_id': 's1'}

    def test_attachment_extraction_failure_keeps_metadata(self, db_path, extractor):
        documents = MagicMock()
        documents.index_file.side_effect = OSError("missing file")
        writer = DerivedTextWriter(db_path, extractor, document_indexer=documents)
        card = Card(card_id='c1', card_type='attachment', content={'fileName': 'notes.txt', 'path': '/x'})

        assert writer.extract_columns(card) == {'file_content': 'notes.txt'}


class TestIndexCard:
    """Derived text rows and card_fts rows."""

    def test_record_contents(self, store, writer):
        store.create_card(Card(card_id='c1', name='会议记录', description='周会', content='<p>项目计划</p>'))

        record = writer.get_derived_text('c1')

        assert record['origin_text'] == '会议记录 周会 项目计划'
        assert '会议记录' in record['text'].split()
        assert '项目' in record['text'].split()
        assert record['card_type'] == 'card'

    def test_freshness_after_updates(self, store, writer):
        """After every update the record reflects exactly the latest content."""
        store.create_card(Card(card_id='c1', name='计划', content='<p>第0版</p>'))

        for version in range(1, 6):
            store.update_card('c1', content=f'<p>第{version}版</p>')
            record = writer.get_derived_text('c1')
            assert record['origin_text'] == f'计划 第{version}版'

    def test_one_record_per_card(self, store, db_path):
        store.create_card(Card(card_id='c1', name='a'))
        store.update_card('c1', name='b')
        store.update_card('c1', name='c')

        with get_connection(db_path) as conn:
            assert conn.execute("SELECT COUNT(*) FROM card_derived_text").fetchone()[0] == 1
        assert _fts_rows(db_path) == 1

    def test_multi_table_emptied_by_update_is_fresh(self, store, writer, db_path, extractor):
        store.create_card(Card(
            card_id='t1', card_type='multi-table', name='项目', data=[{'id': 'r1', 'c1': '预算报告'}],
        ))
        assert writer.get_derived_text('t1')['origin_text'] == '项目 预算报告'

        store.update_card('t1', data=[])

        assert writer.get_derived_text('t1')['origin_text'] == '项目'
        assert search_content(db_path, "预算", extractor=extractor) == []

    def test_name_only_multi_table_gets_derived_row(self, store, writer):
        store.create_card(Card(card_id='t2', card_type='multi-table', name='会议记录'))

        assert writer.get_derived_text('t2')['origin_text'] == '会议记录'

    def test_multi_table_without_any_text_skips_derived_row(self, store, writer, db_path):
        store.create_card(Card(card_id='t3', card_type='multi-table', name='表', data=[{'id': 'r1'}]))
        assert writer.get_derived_text('t3') is not None

        store.update_card('t3', name='')

        assert writer.get_derived_text('t3') is None
        assert _fts_rows(db_path) == 1

    def test_card_without_row_only_writes_derived_text(self, writer, db_path):
        assert writer.index_card(Card(card_id='ghost', name='会议')) is True
        assert writer.get_derived_text('ghost') is not None
        assert _fts_rows(db_path) == 0


class TestDeletion:
    """Deleting a card removes its index rows."""

    def test_soft_delete_cascades(self, store, writer, db_path):
        store.create_card(Card(card_id='c1', name='会议记录'))

        store.delete_card('c1')

        assert writer.get_derived_text('c1') is None
        assert _fts_rows(db_path) == 0

    def test_restore_reindexes(self, store, writer, db_path):
        store.create_card(Card(card_id='c1', name='会议记录'))
        store.delete_card('c1')

        store.restore_card('c1')

        assert writer.get_derived_text('c1') is not None
        assert _fts_rows(db_path) == 1

    def test_delete_card_index(self, store, writer, db_path):
        store.create_card(Card(card_id='c1', name='会议记录'))

        writer.delete_card_index('c1')

        assert writer.get_derived_text('c1') is None
        assert _fts_rows(db_path) == 0

    def test_remove_deletes_card_documents(self, db_path, extractor):
        documents = MagicMock()
        writer = DerivedTextWriter(db_path, extractor, document_indexer=documents)

        writer.delete_card_index('c1')

        conn, card_id = documents.delete_card_documents.call_args.args
        assert card_id == 'c1'


class TestReindexAll:
    """Full rebuild of derived text and card_fts."""

    def test_rebuilds_from_cards(self, store, writer, db_path):
        store.create_card(Card(card_id='c1', name='会议记录'))
        store.create_card(Card(card_id='c2', name='项目计划'))
        store.create_card(Card(card_id='t1', card_type='multi-table', name='空表'))
        store.create_card(Card(card_id='t2', card_type='multi-table'))
        store.create_card(Card(card_id='c3', name='已删除'))
        store.delete_card('c3')
        with get_connection(db_path) as conn:
            conn.execute("DELETE FROM card_fts")
            conn.execute("INSERT INTO card_derived_text (card_id, text, updated_at) VALUES ('orphan', 'x', 'now')")
            conn.commit()

        stats = writer.reindex_all()

        assert stats == {'indexed': 3, 'skipped': 1, 'failed': 0}
        assert _fts_rows(db_path) == 4
        assert writer.get_derived_text('t2') is None
        assert writer.get_derived_text('orphan') is None
