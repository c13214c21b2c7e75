"""
Derived Text - Keep a searchable text record for every card.

For each card the writer:
1. Extracts plain text from the card's type-specific content
2. Prepends the base text (name, description, mark text)
3. Segments the result into space-separated search keywords
4. Upserts the card_derived_text row (last write wins) and the card's
   card_fts row in one transaction

Card types are dispatched through the writer's type_extractors table; types
without an entry (card, diary, card-date, mark) are rich text. Each handler
returns the card_fts columns it fills; their concatenation is the card's
plain text.

Usage:
    writer = DerivedTextWriter(db_path, KeywordExtractor(get_segmenter('jieba')))
    writer.index_card(card)
    writer.get_derived_text(card.card_id)
"""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from cardsearch_lib.cards import Card, iter_cards
from cardsearch_lib.plain_text import extract_multi_table_text, extract_plain_text, iter_text_leaves
from cardsearch_lib.schema import CARD_FTS_COLUMNS, get_connection
from cardsearch_lib.segment import KeywordExtractor
from cardsearch_lib.text_filter import DEFAULT_POLICY, TextPlausibilityPolicy

logger = logging.getLogger(__name__)

ATTACHMENT_TEXT_KEYS = ('fileName', 'name', 'title', 'description')
ATTACHMENT_PATH_KEYS = ('localPath', 'filePath', 'path')


def _parse_object(value) -> dict:
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value.strip().startswith('{'):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


class DerivedTextWriter:
    """Computes and stores derived text and card_fts rows for cards."""

    def __init__(
        self,
        db_path: Path,
        extractor: KeywordExtractor,
        policy: Optional[TextPlausibilityPolicy] = None,
        document_indexer=None,
    ):
        self.db_path = Path(db_path)
        self.extractor = extractor
        self.policy = policy or DEFAULT_POLICY
        self.document_indexer = document_indexer

        self.type_extractors: dict[str, Callable[[Card], dict]] = {
            'draw-board': self._drawboard_columns,
            'mind-map': self._mind_map_columns,
            'attachment': self._attachment_columns,
            'mermaid': lambda card: {},
            'multi-table': self._multi_table_columns,
        }

    # Per-type extraction

    def _rich_text_columns(self, card: Card) -> dict:
        return {'rich_text': extract_plain_text(card.content, self.policy)}

    def _drawboard_columns(self, card: Card) -> dict:
        return {'drawboard_content': extract_plain_text(card.content, self.policy)}

    def _mind_map_columns(self, card: Card) -> dict:
        parts = [
            extract_plain_text(card.content, self.policy),
            extract_plain_text(card.card_map, self.policy),
        ]
        return {'mind_map_content': ' '.join(part for part in parts if part)}

    def _multi_table_columns(self, card: Card) -> dict:
        return {'rich_text': extract_multi_table_text(card.data, card.attr_list, card.view_list)}

    def _attachment_columns(self, card: Card) -> dict:
        meta = _parse_object(card.content)
        if meta:
            parts = list(iter_text_leaves(meta, keys=ATTACHMENT_TEXT_KEYS))
        else:
            parts = [extract_plain_text(card.content, self.policy)]

        file_path = next((meta[key] for key in ATTACHMENT_PATH_KEYS if meta.get(key)), None)
        if file_path and self.document_indexer is not None:
            try:
                pages = self.document_indexer.index_file(
                    Path(file_path), card_id=card.card_id, space_id=card.space_id or 'default'
                )
                parts.extend(page.content for page in pages if page.content)
            except Exception as e:
                logger.warning(f"Could not extract attachment {file_path} of card {card.card_id}: {e}")

        return {'file_content': ' '.join(part for part in parts if part)}

    def extract_columns(self, card: Card) -> dict:
        """
        Plain text of every content column a card fills.

        Returns:
            Mapping of card_fts content column to plain text
        """
        handler = self.type_extractors.get(card.card_type, self._rich_text_columns)
        return {column: text for column, text in handler(card).items() if text}

    # Writes

    def index_card(self, card: Card) -> bool:
        """
        Recompute and store the derived text and card_fts row of a card.

        Args:
            card: Card with its current content

        Returns:
            True if a derived text row was written, False if the card has no
            text to index (multi-table cards with no base text and no rows);
            any stored row of such a card is removed

        Raises:
            RuntimeError: If the database write fails (rolled back)
        """
        columns = self.extract_columns(card)
        base_text = ' '.join(part for part in (card.name, card.description, card.mark_text) if part)
        plain_text = ' '.join(columns.values())
        origin_text = ' '.join(part for part in (base_text, plain_text) if part)
        keywords = self.extractor.to_search_keywords(origin_text)

        write_derived = card.card_type != 'multi-table' or bool(origin_text)

        fts_values = {
            'name': self.extractor.to_search_keywords(card.name),
            'text': self.extractor.to_search_keywords(card.text),
            'description': self.extractor.to_search_keywords(card.description),
            'mark_text': self.extractor.to_search_keywords(card.mark_text),
            'card_type': card.card_type,
        }
        for column, text in columns.items():
            fts_values[column] = self.extractor.to_search_keywords(text)

        with get_connection(self.db_path) as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                if write_derived:
                    conn.execute(
                        """
                        INSERT INTO card_derived_text
                            (card_id, card_type, name, space_id, text, origin_text, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(card_id) DO UPDATE SET
                            card_type = excluded.card_type,
                            name = excluded.name,
                            space_id = excluded.space_id,
                            text = excluded.text,
                            origin_text = excluded.origin_text,
                            updated_at = excluded.updated_at
                        """,
                        (card.card_id, card.card_type, card.name, card.space_id,
                         keywords, origin_text, datetime.now().isoformat()),
                    )
                else:
                    logger.debug(f"Skipping derived text for empty multi-table card {card.card_id}")
                    conn.execute("DELETE FROM card_derived_text WHERE card_id = ?", (card.card_id,))

                row = conn.execute(
                    "SELECT row_id, del_flag FROM cards WHERE card_id = ?", (card.card_id,)
                ).fetchone()
                if row is not None:
                    conn.execute("DELETE FROM card_fts WHERE rowid = ?", (row["row_id"],))
                    if not row["del_flag"]:
                        conn.execute(
                            f"""
                            INSERT INTO card_fts (rowid, {', '.join(CARD_FTS_COLUMNS)})
                            VALUES (?, {', '.join('?' for _ in CARD_FTS_COLUMNS)})
                            """,
                            (row["row_id"], *(fts_values.get(column, '') for column in CARD_FTS_COLUMNS)),
                        )
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise RuntimeError(f"Indexing card {card.card_id} failed, rolled back: {e}") from e

        logger.debug(f"Indexed card {card.card_id} ({card.card_type}, {len(keywords)} keyword chars)")
        return write_derived

    def remove(self, conn: sqlite3.Connection, card_id: str) -> None:
        """Delete a card's derived text and card_fts row inside the caller's transaction."""
        conn.execute("DELETE FROM card_derived_text WHERE card_id = ?", (card_id,))
        conn.execute(
            "DELETE FROM card_fts WHERE rowid IN (SELECT row_id FROM cards WHERE card_id = ?)",
            (card_id,),
        )
        if self.document_indexer is not None:
            self.document_indexer.delete_card_documents(conn, card_id)

    def delete_card_index(self, card_id: str) -> None:
        """Delete a card's derived text and card_fts row."""
        with get_connection(self.db_path) as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                self.remove(conn, card_id)
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise RuntimeError(f"Removing index of card {card_id} failed, rolled back: {e}") from e

    # Reads

    def get_derived_text(self, card_id: str) -> Optional[dict]:
        """
        Get the stored derived text record of a card.

        Returns:
            Dictionary with card_id, card_type, name, space_id, text,
            origin_text and updated_at, or None if the card has none
        """
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT card_id, card_type, name, space_id, text, origin_text, updated_at
                FROM card_derived_text WHERE card_id = ?
                """,
                (card_id,),
            ).fetchone()
        return dict(row) if row else None

    def reindex_all(self) -> dict:
        """
        Rebuild derived text and card_fts for every live card.

        Cards that fail are logged and counted; the rest are still indexed.

        Returns:
            Dictionary with indexed, skipped and failed counts
        """
        stats = {'indexed': 0, 'skipped': 0, 'failed': 0}
        with get_connection(self.db_path) as conn:
            conn.execute("DELETE FROM card_fts")
            conn.execute(
                "DELETE FROM card_derived_text WHERE card_id NOT IN "
                "(SELECT card_id FROM cards WHERE del_flag = 0)"
            )
            conn.commit()

        # Materialized so no read cursor is open while index_card writes
        for card in list(iter_cards(self.db_path)):
            try:
                if self.index_card(card):
                    stats['indexed'] += 1
                else:
                    stats['skipped'] += 1
            except RuntimeError as e:
                logger.warning(f"Failed to reindex card {card.card_id}: {e}")
                stats['failed'] += 1

        logger.info(
            f"Reindexed {stats['indexed']} cards ({stats['skipped']} skipped, {stats['failed']} failed)"
        )
        return stats
