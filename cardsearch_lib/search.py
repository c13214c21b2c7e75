"""
Card Search - Ranked, highlighted full-text search over cards.

Provides:
- search(): card_fts MATCH ranked by bm25 with per-column <mark> snippets
- count(): number of cards a query matches
- suggest(): card names for autocomplete
- search_content(): derived-text search with prefix/exact/LIKE fallbacks
  and in-memory reranking

Queries are segmented with the same KeywordExtractor used at index time,
then tried as a sequence of MATCH expressions from strict to lenient; the
first expression that matches anything is used. search(), count() and
suggest() pick the expression the same way, so they agree.

Expected database schema (created by schema.init_db):
    CREATE VIRTUAL TABLE card_fts USING fts5(
        name, text, description, mark_text, card_type UNINDEXED,
        mind_map_content, drawboard_content, file_content, rich_text,
        tokenize='porter unicode61', prefix='2 3 4'
    );
    -- rowid = cards.row_id
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Optional

from cardsearch_lib.relevance import calculate_relevance_score, extract_snippet
from cardsearch_lib.schema import HIGHLIGHT_COLUMNS, column_ordinal, get_connection
from cardsearch_lib.segment import ALL_CJK_RE, KeywordExtractor, get_segmenter
from cardsearch_lib.similarity import cosine_similarity, hashing_embed

logger = logging.getLogger(__name__)

# Constants
DEFAULT_SEARCH_LIMIT = 50
DEFAULT_SUGGEST_LIMIT = 10
DEFAULT_CONTENT_LIMIT = 20
DEFAULT_SNIPPET_TOKENS = 32
MAX_SNIPPET_TOKENS = 64  # FTS5 snippet() upper bound
MARK_OPEN = '<mark>'
MARK_CLOSE = '</mark>'
FTS_OPERATORS = {'AND', 'OR', 'NOT', 'NEAR'}


class SearchError(Exception):
    """Base exception for search errors."""
    pass


class DatabaseNotInitializedError(SearchError):
    """Database not initialized or missing required tables."""
    pass


@dataclass
class CardSearchResult:
    """A single card search hit."""
    id: str
    name: str
    text: str
    description: str
    card_type: str
    sub_type: str
    create_time: str
    update_time: str
    highlight: Optional[dict] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        result = {
            "id": self.id,
            "name": self.name,
            "text": self.text,
            "description": self.description,
            "card_type": self.card_type,
            "sub_type": self.sub_type,
            "create_time": self.create_time,
            "update_time": self.update_time,
        }
        if self.highlight is not None:
            result["highlight"] = self.highlight
        return result


@dataclass
class ContentSearchResult:
    """A derived-text hit from search_content()."""
    id: str
    name: str
    card_type: Optional[str]
    snippet: str
    score: float
    similarity: float = 0.0
    source: str = "fts"  # 'fts' or 'like'
    text: str = field(default='', repr=False)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "id": self.id,
            "name": self.name,
            "card_type": self.card_type,
            "snippet": self.snippet,
            "score": round(self.score, 4),
            "similarity": round(self.similarity, 4),
            "source": self.source,
        }


@lru_cache(maxsize=1)
def default_extractor() -> KeywordExtractor:
    """Keyword extractor used when the caller does not pass one."""
    return KeywordExtractor(get_segmenter('jieba'))


# =============================================================================
# Query construction
# =============================================================================

def _quote(term: str) -> str:
    """Quote a term as an FTS5 string so punctuation cannot act as syntax."""
    return '"' + term.replace('"', '""') + '"'


def _is_lenient_term(term: str) -> bool:
    if ALL_CJK_RE.fullmatch(term):
        return len(term) == 2
    return term.isascii()


def build_match_expressions(query: str, extractor: KeywordExtractor) -> list[str]:
    """
    Candidate MATCH expressions for a query, strict first.

    1. Every keyword as a prefix term, all required
    2. Only CJK bigrams and ASCII keywords, all required (tolerates
       segmentation differences between index and query time)
    3. Any keyword

    Returns:
        Distinct expressions in the order they should be tried; empty if
        the query has no keywords
    """
    if not query or not query.strip():
        return []

    keywords = [word for word in extractor.extract_keywords(query) if word not in FTS_OPERATORS]
    if not keywords:
        # Single characters are dropped by the extractor; fall back to the raw terms
        keywords = [term for term in query.split() if term not in FTS_OPERATORS]
    if not keywords:
        return []

    expressions = [' AND '.join(f"{_quote(word)}*" for word in keywords)]

    lenient = [word for word in keywords if _is_lenient_term(word)]
    if lenient:
        expressions.append(' AND '.join(f"{_quote(word)}*" for word in lenient))

    if len(keywords) > 1:
        expressions.append(' OR '.join(f"{_quote(word)}*" for word in keywords))

    return list(dict.fromkeys(expressions))


def _clamp_snippet_tokens(snippet_length: int) -> int:
    return max(1, min(MAX_SNIPPET_TOKENS, int(snippet_length)))


def _translate_errors(e: sqlite3.OperationalError):
    if "no such table" in str(e):
        raise DatabaseNotInitializedError(
            f"Search tables not found: {e}. Run init first."
        ) from e
    raise e


def _has_match(conn: sqlite3.Connection, expression: str) -> bool:
    row = conn.execute(
        """
        SELECT 1 FROM card_fts
        JOIN cards c ON card_fts.rowid = c.row_id
        WHERE card_fts MATCH ? AND c.del_flag = 0
        LIMIT 1
        """,
        (expression,),
    ).fetchone()
    return row is not None


def _resolve_expression(
    conn: sqlite3.Connection,
    query: str,
    extractor: KeywordExtractor,
) -> Optional[str]:
    """First candidate expression that matches at least one live card."""
    for expression in build_match_expressions(query, extractor):
        try:
            if _has_match(conn, expression):
                return expression
        except sqlite3.OperationalError as e:
            if "no such table" in str(e):
                raise
            logger.debug(f"Skipping unusable MATCH expression {expression!r}: {e}")
    return None


# =============================================================================
# Card search
# =============================================================================

def search(
    db_path: Path,
    query: str,
    limit: int = DEFAULT_SEARCH_LIMIT,
    offset: int = 0,
    highlight: bool = True,
    snippet_length: int = DEFAULT_SNIPPET_TOKENS,
    extractor: Optional[KeywordExtractor] = None,
) -> list[CardSearchResult]:
    """
    Search cards by name, fields and derived content.

    Args:
        db_path: Path to SQLite database
        query: Free-text query (segmented before matching)
        limit: Maximum results to return
        offset: Results to skip, for paging
        highlight: Return <mark> snippets per column
        snippet_length: Snippet size in tokens (clamped to 1-64)
        extractor: Keyword extractor (default: jieba)

    Returns:
        List of CardSearchResult ordered by bm25 rank; [] for an empty
        query or no matches. Highlight maps only columns whose snippet
        contains a match.

    Raises:
        DatabaseNotInitializedError: If the search tables do not exist
    """
    if not query or not query.strip():
        return []
    extractor = extractor or default_extractor()

    snippet_columns = ''
    tokens = _clamp_snippet_tokens(snippet_length)
    if highlight:
        snippet_columns = ''.join(
            f",\n snippet(card_fts, {column_ordinal(column)}, '{MARK_OPEN}', '{MARK_CLOSE}', '...', {tokens})"
            f" AS {column}_highlight"
            for column in HIGHLIGHT_COLUMNS
        )

    sql = f"""
        SELECT
            c.card_id, c.name, c.text, c.description, c.card_type, c.sub_type,
            c.create_time, c.update_time{snippet_columns}
        FROM card_fts
        JOIN cards c ON card_fts.rowid = c.row_id
        WHERE card_fts MATCH ? AND c.del_flag = 0
        ORDER BY rank
        LIMIT ? OFFSET ?
    """

    results = []
    try:
        with get_connection(db_path) as conn:
            expression = _resolve_expression(conn, query, extractor)
            if expression is None:
                return []
            rows = conn.execute(sql, (expression, limit, offset)).fetchall()
    except sqlite3.OperationalError as e:
        _translate_errors(e)

    for row in rows:
        marks = None
        if highlight:
            marks = {}
            for column in HIGHLIGHT_COLUMNS:
                snippet = row[f"{column}_highlight"]
                if snippet and MARK_OPEN in snippet:
                    marks[column] = snippet
        results.append(CardSearchResult(
            id=row["card_id"],
            name=row["name"] or '',
            text=row["text"] or '',
            description=row["description"] or '',
            card_type=row["card_type"],
            sub_type=row["sub_type"] or '',
            create_time=row["create_time"],
            update_time=row["update_time"],
            highlight=marks,
        ))

    logger.debug(f"Query {query!r} matched {len(results)} cards with {expression!r}")
    return results


def count(db_path: Path, query: str, extractor: Optional[KeywordExtractor] = None) -> int:
    """
    Count cards matching a query.

    Returns:
        Number of live cards matched (0 for an empty query)

    Raises:
        DatabaseNotInitializedError: If the search tables do not exist
    """
    if not query or not query.strip():
        return 0
    extractor = extractor or default_extractor()

    try:
        with get_connection(db_path) as conn:
            expression = _resolve_expression(conn, query, extractor)
            if expression is None:
                return 0
            row = conn.execute(
                """
                SELECT COUNT(*) FROM card_fts
                JOIN cards c ON card_fts.rowid = c.row_id
                WHERE card_fts MATCH ? AND c.del_flag = 0
                """,
                (expression,),
            ).fetchone()
    except sqlite3.OperationalError as e:
        _translate_errors(e)

    return row[0]


def suggest(
    db_path: Path,
    query: str,
    limit: int = DEFAULT_SUGGEST_LIMIT,
    extractor: Optional[KeywordExtractor] = None,
) -> list[str]:
    """
    Suggest card names for a partial query.

    Returns:
        Distinct non-empty card names in rank order, at most limit

    Raises:
        DatabaseNotInitializedError: If the search tables do not exist
    """
    if not query or not query.strip():
        return []
    extractor = extractor or default_extractor()

    try:
        with get_connection(db_path) as conn:
            expression = _resolve_expression(conn, query, extractor)
            if expression is None:
                return []
            rows = conn.execute(
                """
                SELECT c.name FROM card_fts
                JOIN cards c ON card_fts.rowid = c.row_id
                WHERE card_fts MATCH ? AND c.del_flag = 0
                    AND c.name IS NOT NULL AND c.name != ''
                ORDER BY rank
                """,
                (expression,),
            ).fetchall()
    except sqlite3.OperationalError as e:
        _translate_errors(e)

    names = list(dict.fromkeys(row["name"] for row in rows))
    return names[:limit]


# =============================================================================
# Derived-text search
# =============================================================================

def _strip_wildcards(expression: str) -> str:
    return ' '.join(
        part if part in FTS_OPERATORS else part.rstrip('*')
        for part in expression.split(' ')
    )


def search_content(
    db_path: Path,
    keyword: str,
    space_id: Optional[str] = None,
    card_types: Optional[list[str]] = None,
    limit: int = DEFAULT_CONTENT_LIMIT,
    offset: int = 0,
    extractor: Optional[KeywordExtractor] = None,
) -> list[ContentSearchResult]:
    """
    Search derived text with progressively looser strategies.

    Strategies, in order, stopping at the first that returns rows:
    1. Segmented keywords as prefix terms, then as exact terms
    2. The raw keyword as prefix terms, then as exact terms
    3. LIKE over the unsegmented origin text (CJK keywords only)

    Hits are reranked by keyword relevance in the origin text, with
    hashing-vector similarity breaking ties.

    Args:
        db_path: Path to SQLite database
        keyword: Search keyword
        space_id: Restrict to one space
        card_types: Restrict to these card types
        limit: Maximum results to return
        offset: Results to skip
        extractor: Keyword extractor (default: jieba)

    Returns:
        List of ContentSearchResult, best first

    Raises:
        DatabaseNotInitializedError: If the derived-text tables do not exist
    """
    if not keyword or not keyword.strip():
        return []
    keyword = keyword.strip()
    extractor = extractor or default_extractor()

    filters = ''
    params: list = []
    if space_id:
        filters += ' AND d.space_id = ?'
        params.append(space_id)
    if card_types:
        filters += f" AND d.card_type IN ({', '.join('?' for _ in card_types)})"
        params.extend(card_types)

    fts_sql = f"""
        SELECT d.card_id, d.name, d.card_type, COALESCE(d.origin_text, d.text) AS body
        FROM card_derived_text_fts
        JOIN card_derived_text d ON card_derived_text_fts.rowid = d.row_id
        WHERE card_derived_text_fts MATCH ?{filters}
        ORDER BY rank
        LIMIT ? OFFSET ?
    """

    candidates = []
    keywords = extractor.extract_keywords(keyword)
    if keywords:
        candidates.append(' '.join(f"{_quote(word)}*" for word in keywords))
    candidates.append(' '.join(f"{_quote(term)}*" for term in keyword.split()))

    rows = []
    source = "fts"
    try:
        with get_connection(db_path) as conn:
            for prefixed in candidates:
                for expression in (prefixed, _strip_wildcards(prefixed)):
                    try:
                        rows = conn.execute(fts_sql, (expression, *params, limit, offset)).fetchall()
                    except sqlite3.OperationalError as e:
                        if "no such table" in str(e):
                            raise
                        logger.debug(f"Skipping unusable MATCH expression {expression!r}: {e}")
                        rows = []
                    if rows:
                        break
                if rows:
                    break

            if not rows and ALL_CJK_RE.search(keyword):
                source = "like"
                rows = conn.execute(
                    f"""
                    SELECT d.card_id, d.name, d.card_type, COALESCE(d.origin_text, d.text) AS body
                    FROM card_derived_text d
                    WHERE COALESCE(d.origin_text, d.text) LIKE ?{filters}
                    LIMIT ? OFFSET ?
                    """,
                    (f"%{keyword}%", *params, limit, offset),
                ).fetchall()
    except sqlite3.OperationalError as e:
        _translate_errors(e)

    query_vector = hashing_embed(keyword, extractor)
    results = []
    seen = set()
    for row in rows:
        if row["card_id"] in seen:
            continue
        seen.add(row["card_id"])
        body = row["body"] or ''
        results.append(ContentSearchResult(
            id=row["card_id"],
            name=row["name"] or '',
            card_type=row["card_type"],
            snippet=extract_snippet(body, keyword, open_mark=MARK_OPEN, close_mark=MARK_CLOSE),
            score=calculate_relevance_score(body, keyword),
            similarity=cosine_similarity(
                query_vector, hashing_embed(f"{row['name'] or ''} {body}", extractor)
            ),
            source=source,
            text=body,
        ))

    results.sort(key=lambda r: (r.score, r.similarity), reverse=True)
    return results
