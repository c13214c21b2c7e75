"""
Document Pages - Page-level index of extracted documents.

index_file() extracts a document once per distinct content (document id =
MD5 of the file bytes), normalizes and segments each page, and stores one
document_page_content row per page. Paged kinds (PDF, Word, PowerPoint)
keep their pages; everything else is stored as a single page 1.

search_pages() matches the segmented page text and returns page hits with
highlighted excerpts, so a hit can be attributed to a specific page.
"""

import hashlib
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from cardsearch_lib.file_extract import (
    PAGED_KINDS,
    ImageRecognizer,
    Page,
    extract_document,
    get_document_kind,
)
from cardsearch_lib.plain_text import normalize_for_indexing
from cardsearch_lib.platform_info import PlatformProfile
from cardsearch_lib.relevance import extract_snippet
from cardsearch_lib.schema import get_connection
from cardsearch_lib.segment import KeywordExtractor
from cardsearch_lib.text_filter import TextPlausibilityPolicy

logger = logging.getLogger(__name__)

HASH_CHUNK_SIZE = 1024 * 1024
DEFAULT_PAGE_LIMIT = 10
DEFAULT_SPACE_ID = 'default'


def calculate_file_md5(file_path: Path) -> str:
    """
    Calculate the MD5 hex digest of a file's content.

    Args:
        file_path: Path to the file

    Returns:
        32-character hex string
    """
    digest = hashlib.md5()
    with open(file_path, 'rb') as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b''):
            digest.update(chunk)
    return digest.hexdigest()


def extract_pages(
    file_path: Path,
    kind: str,
    image_recognizer: Optional[ImageRecognizer] = None,
    profile: Optional[PlatformProfile] = None,
    policy: Optional[TextPlausibilityPolicy] = None,
) -> list[Page]:
    """
    Extract a document into normalized pages.

    Paged kinds keep their pages; everything else becomes a single page 1.
    Runs without database access, so it can be called in a worker process.
    """
    document = extract_document(
        file_path,
        kind,
        image_recognizer=image_recognizer,
        profile=profile,
        policy=policy,
    )
    if kind in PAGED_KINDS and document.pages:
        return [
            Page(page.page_number, normalize_for_indexing(page.content), page.page_type)
            for page in document.pages
        ]
    return [Page(1, normalize_for_indexing(document.content))]


@dataclass
class PageHit:
    """A matching document page."""
    document_id: str
    space_id: str
    card_id: str
    file_name: str
    file_type: str
    file_path: str
    page_number: int
    snippet: str

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "document_id": self.document_id,
            "space_id": self.space_id,
            "card_id": self.card_id,
            "file_name": self.file_name,
            "file_type": self.file_type,
            "file_path": self.file_path,
            "page_number": self.page_number,
            "snippet": self.snippet,
        }


class DocumentIndexer:
    """Extracts documents into the document page index."""

    def __init__(
        self,
        db_path: Path,
        extractor: KeywordExtractor,
        image_recognizer: Optional[ImageRecognizer] = None,
        profile: Optional[PlatformProfile] = None,
        policy: Optional[TextPlausibilityPolicy] = None,
    ):
        self.db_path = Path(db_path)
        self.extractor = extractor
        self.image_recognizer = image_recognizer
        self.profile = profile
        self.policy = policy

    def _stored_pages(self, conn: sqlite3.Connection, document_id: str) -> list[Page]:
        # Pages of one stored copy; the same content may be stored for several paths or cards
        rows = conn.execute(
            """
            SELECT page_number, content FROM document_page_content
            WHERE document_id = ? AND (file_path, card_id) = (
                SELECT file_path, card_id FROM document_page_content WHERE document_id = ? LIMIT 1
            )
            ORDER BY page_number
            """,
            (document_id, document_id),
        ).fetchall()
        return [Page(page_number=row["page_number"], content=row["content"] or '') for row in rows]

    def is_indexed(self, document_id: str) -> bool:
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT 1 FROM document_page_content WHERE document_id = ? LIMIT 1", (document_id,)
            ).fetchone()
        return row is not None

    def index_file(
        self,
        file_path: Path,
        card_id: Optional[str] = None,
        space_id: str = DEFAULT_SPACE_ID,
        extract: Optional[Callable[..., list[Page]]] = None,
    ) -> list[Page]:
        """
        Extract a document and store its pages.

        A document whose content is already stored for the same path and
        card is left alone. Content already stored under another path or
        card is copied from the stored pages instead of extracted again.

        Args:
            file_path: Document to index
            card_id: Attachment card owning the document
            space_id: Space the document belongs to
            extract: Replacement for extract_pages(), called with the same
                     arguments (e.g. to run extraction in a worker process)

        Returns:
            The document's pages (normalized content)

        Raises:
            OSError: If the file cannot be read
            ExtractionError: If the document is unreadable by every engine
            RuntimeError: If the database write fails (rolled back)
        """
        file_path = Path(file_path)
        document_id = calculate_file_md5(file_path)

        with get_connection(self.db_path) as conn:
            existing = self._stored_pages(conn, document_id)
            same_copy = conn.execute(
                """
                SELECT 1 FROM document_page_content
                WHERE document_id = ? AND file_path = ? AND card_id = ? LIMIT 1
                """,
                (document_id, str(file_path), card_id or ''),
            ).fetchone()
        if same_copy:
            logger.debug(f"Document already indexed, skipping: {file_path}")
            return existing

        kind = get_document_kind(file_path)
        if existing:
            pages = existing
        else:
            pages = (extract or extract_pages)(
                file_path,
                kind,
                image_recognizer=self.image_recognizer,
                profile=self.profile,
                policy=self.policy,
            )

        now = datetime.now().isoformat()
        with get_connection(self.db_path) as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                conn.execute(
                    "DELETE FROM document_page_content WHERE file_path = ? AND card_id = ?",
                    (str(file_path), card_id or ''),
                )
                conn.executemany(
                    """
                    INSERT INTO document_page_content
                        (document_id, space_id, card_id, file_name, file_type, file_path,
                         page_number, content, content_segmented, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (document_id, space_id or DEFAULT_SPACE_ID, card_id or '', file_path.name, kind,
                         str(file_path), page.page_number, page.content,
                         self.extractor.to_search_keywords(page.content), now)
                        for page in pages
                    ],
                )
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise RuntimeError(f"Indexing document {file_path} failed, rolled back: {e}") from e

        logger.info(f"Indexed {file_path.name}: {len(pages)} page(s)")
        return pages

    def search_pages(
        self,
        keyword: str,
        card_id: Optional[str] = None,
        space_id: Optional[str] = None,
        file_type: Optional[str] = None,
        limit: int = DEFAULT_PAGE_LIMIT,
        offset: int = 0,
    ) -> list[PageHit]:
        """
        Find document pages matching a keyword.

        Args:
            keyword: Search keyword (segmented before matching)
            card_id: Restrict to one attachment card
            space_id: Restrict to one space
            file_type: Restrict to one document kind
            limit: Maximum results to return
            offset: Results to skip

        Returns:
            List of PageHit ordered by rank ([] for an empty keyword)
        """
        if not keyword or not keyword.strip():
            return []
        keywords = self.extractor.extract_keywords(keyword)
        if not keywords:
            return []

        filters = ''
        params: list = []
        for column, value in (('card_id', card_id), ('space_id', space_id), ('file_type', file_type)):
            if value:
                filters += f' AND p.{column} = ?'
                params.append(value)

        expression = ' '.join('"' + word.replace('"', '""') + '"*' for word in keywords)
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                f"""
                SELECT p.document_id, p.space_id, p.card_id, p.file_name, p.file_type,
                       p.file_path, p.page_number, p.content,
                       snippet(document_page_content_fts, 1, '<mark>', '</mark>', '...', 16) AS fts_snippet
                FROM document_page_content_fts
                JOIN document_page_content p ON document_page_content_fts.rowid = p.id
                WHERE document_page_content_fts MATCH ?{filters}
                ORDER BY rank
                LIMIT ? OFFSET ?
                """,
                (expression, *params, limit, offset),
            ).fetchall()

        hits = []
        for row in rows:
            content = row["content"] or ''
            if keyword.strip().lower() in content.lower():
                snippet = extract_snippet(content, keyword.strip())
            else:
                snippet = row["fts_snippet"] or ''
            hits.append(PageHit(
                document_id=row["document_id"],
                space_id=row["space_id"] or '',
                card_id=row["card_id"] or '',
                file_name=row["file_name"] or '',
                file_type=row["file_type"] or '',
                file_path=row["file_path"] or '',
                page_number=row["page_number"],
                snippet=snippet,
            ))
        return hits

    def delete_document(self, document_id: str) -> int:
        """
        Remove every page of a document.

        Returns:
            Number of pages removed
        """
        with get_connection(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM document_page_content WHERE document_id = ?", (document_id,))
            conn.commit()
        return cursor.rowcount

    def delete_card_documents(self, conn: sqlite3.Connection, card_id: str) -> None:
        """Remove pages owned by a card inside the caller's transaction."""
        conn.execute("DELETE FROM document_page_content WHERE card_id = ?", (card_id,))
