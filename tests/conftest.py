"""
Shared fixtures: an initialized database and deterministic segmenters.
"""

import pytest

from cardsearch_lib.cards import CardStore
from cardsearch_lib.derived_text import DerivedTextWriter
from cardsearch_lib.schema import init_db
from cardsearch_lib.segment import KeywordExtractor, MaxMatchSegmenter

TEST_WORDS = {
    '计算机', '计算', '科学', '计算机科学', '技术', '专业', '课程', '安排',
    '会议', '记录', '会议记录', '季度', '报告', '项目', '计划',
}


@pytest.fixture
def db_path(tmp_path):
    """Fresh database with every table created."""
    path = tmp_path / "cards.db"
    init_db(path)
    return path


@pytest.fixture
def segmenter():
    """Max-match segmenter over a small fixed dictionary."""
    return MaxMatchSegmenter(TEST_WORDS)


@pytest.fixture
def extractor(segmenter):
    return KeywordExtractor(segmenter)


@pytest.fixture
def writer(db_path, extractor):
    return DerivedTextWriter(db_path, extractor)


@pytest.fixture
def store(db_path, writer):
    """Card store wired to the derived-text writer."""
    return CardStore(db_path, writer)
