"""Tests for the document page index."""

import hashlib
from unittest.mock import patch

import pytest

from cardsearch_lib.cards import Card, CardStore
from cardsearch_lib.derived_text import DerivedTextWriter
from cardsearch_lib.documents import DocumentIndexer, calculate_file_md5
from cardsearch_lib.schema import get_connection


@pytest.fixture
def documents(db_path, extractor):
    return DocumentIndexer(db_path, extractor)


@pytest.fixture
def notes_file(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("项目计划\n\n会议记录 and infor-\nmation", encoding='utf-8')
    return path


def _page_rows(db_path):
    with get_connection(db_path) as conn:
        return conn.execute(
            "SELECT card_id, file_path, page_number, content FROM document_page_content ORDER BY id"
        ).fetchall()


class TestIndexFile:
    """Extracting and storing pages."""

    def test_md5(self, notes_file):
        assert calculate_file_md5(notes_file) == hashlib.md5(notes_file.read_bytes()).hexdigest()

    def test_flat_document_is_one_page(self, documents, notes_file, db_path):
        pages = documents.index_file(notes_file, card_id='c1', space_id='s1')

        assert len(pages) == 1
        assert pages[0].page_number == 1
        assert pages[0].content == '项目计划 会议记录 and information'
        assert documents.is_indexed(calculate_file_md5(notes_file))
        assert len(_page_rows(db_path)) == 1

    def test_same_copy_is_not_extracted_again(self, documents, notes_file):
        documents.index_file(notes_file, card_id='c1')
        with patch('cardsearch_lib.documents.extract_document') as extract:
            pages = documents.index_file(notes_file, card_id='c1')
        extract.assert_not_called()
        assert pages[0].content == '项目计划 会议记录 and information'

    def test_known_content_for_another_card_is_copied(self, documents, notes_file, db_path):
        documents.index_file(notes_file, card_id='c1')
        with patch('cardsearch_lib.documents.extract_document') as extract:
            documents.index_file(notes_file, card_id='c2')
        extract.assert_not_called()
        assert sorted(row['card_id'] for row in _page_rows(db_path)) == ['c1', 'c2']

    def test_changed_file_replaces_pages(self, documents, notes_file, db_path):
        documents.index_file(notes_file, card_id='c1')
        notes_file.write_text("季度报告", encoding='utf-8')

        documents.index_file(notes_file, card_id='c1')

        rows = _page_rows(db_path)
        assert [row['content'] for row in rows] == ['季度报告']

    def test_missing_file(self, documents, tmp_path):
        with pytest.raises(OSError):
            documents.index_file(tmp_path / "missing.pdf")


class TestSearchPages:
    """Page hits with snippets."""

    def test_search_pages(self, documents, notes_file):
        documents.index_file(notes_file, card_id='c1', space_id='s1')

        hits = documents.search_pages("会议", card_id='c1')

        assert len(hits) == 1
        assert hits[0].page_number == 1
        assert hits[0].file_name == 'notes.txt'
        assert hits[0].file_type == 'txt'
        assert '<mark>会议</mark>' in hits[0].snippet

    def test_filters(self, documents, notes_file):
        documents.index_file(notes_file, card_id='c1', space_id='s1')
        assert documents.search_pages("会议", space_id='other') == []
        assert documents.search_pages("会议", file_type='pdf') == []

    def test_empty_keyword(self, documents):
        assert documents.search_pages("") == []


class TestDeletion:
    """Removing document pages."""

    def test_delete_document(self, documents, notes_file, db_path):
        documents.index_file(notes_file)
        assert documents.delete_document(calculate_file_md5(notes_file)) == 1
        assert _page_rows(db_path) == []

    def test_deleting_attachment_card_removes_pages(self, db_path, extractor, documents, notes_file):
        writer = DerivedTextWriter(db_path, extractor, document_indexer=documents)
        store = CardStore(db_path, writer)
        store.create_card(Card(
            card_id='a1', card_type='attachment',
            content={'fileName': 'notes.txt', 'localPath': str(notes_file)},
        ))
        assert [row['card_id'] for row in _page_rows(db_path)] == ['a1']
        assert '项目计划' in writer.get_derived_text('a1')['origin_text']

        store.delete_card('a1')

        assert _page_rows(db_path) == []
