"""
Card Store - Minimal card persistence with an indexing hook.

Stores base card rows and their type-specific content sub-record. After
every content-bearing write commits, the store hands the card to the
derived-text writer through the index outbox, so indexing always follows
the content write and can never fail it.

Deleting a card removes its derived text and card_fts row in the same
transaction as the delete.

Usage:
    store = CardStore(db_path, writer)
    card = store.create_card(Card(card_id="c1", name="会议记录", content="<p>...</p>"))
    store.update_card("c1", content="<p>new</p>")
    store.delete_card("c1")
"""

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Generator, Optional

from cardsearch_lib.outbox import IndexOutbox
from cardsearch_lib.schema import get_connection

logger = logging.getLogger(__name__)

BASE_FIELDS = ('card_type', 'sub_type', 'name', 'text', 'description', 'mark_text', 'space_id')
CONTENT_FIELDS = ('content', 'card_map', 'data', 'attr_list', 'view_list')


class CardNotFoundError(Exception):
    """No card with the given id."""
    pass


@dataclass
class Card:
    """A card and its content sub-record."""
    card_id: str
    card_type: str = 'card'
    sub_type: str = ''
    name: str = ''
    text: str = ''
    description: str = ''
    mark_text: str = ''
    space_id: str = ''
    del_flag: int = 0
    content: Any = None
    card_map: Any = None
    data: Any = None
    attr_list: Any = None
    view_list: Any = None
    create_time: Optional[str] = None
    update_time: Optional[str] = None


def _serialize(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def _row_to_card(row: sqlite3.Row) -> Card:
    return Card(
        card_id=row["card_id"],
        card_type=row["card_type"],
        sub_type=row["sub_type"] or '',
        name=row["name"] or '',
        text=row["text"] or '',
        description=row["description"] or '',
        mark_text=row["mark_text"] or '',
        space_id=row["space_id"] or '',
        del_flag=row["del_flag"],
        content=row["content"],
        card_map=row["card_map"],
        data=row["data"],
        attr_list=row["attr_list"],
        view_list=row["view_list"],
        create_time=row["create_time"],
        update_time=row["update_time"],
    )


CARD_SELECT = """
    SELECT c.*, cc.content, cc.card_map, cc.data, cc.attr_list, cc.view_list
    FROM cards c
    LEFT JOIN card_contents cc ON cc.card_id = c.card_id
"""


def iter_cards(db_path: Path, include_deleted: bool = False) -> Generator[Card, None, None]:
    """Yield every stored card with its content."""
    sql = CARD_SELECT + ("" if include_deleted else " WHERE c.del_flag = 0") + " ORDER BY c.row_id"
    with get_connection(db_path) as conn:
        for row in conn.execute(sql):
            yield _row_to_card(row)


class CardStore:
    """Card CRUD that triggers derived-text indexing after each commit."""

    def __init__(self, db_path: Path, writer=None, outbox: Optional[IndexOutbox] = None):
        self.db_path = Path(db_path)
        self.writer = writer
        self.outbox = outbox or IndexOutbox()

    def _write(self, conn: sqlite3.Connection, card: Card, insert: bool) -> None:
        base_values = [getattr(card, name) for name in BASE_FIELDS]
        content_values = [_serialize(getattr(card, name)) for name in CONTENT_FIELDS]

        if insert:
            conn.execute(
                f"""
                INSERT INTO cards (card_id, {', '.join(BASE_FIELDS)}, del_flag, create_time, update_time)
                VALUES (?, {', '.join('?' for _ in BASE_FIELDS)}, ?, ?, ?)
                """,
                (card.card_id, *base_values, card.del_flag, card.create_time, card.update_time),
            )
        else:
            assignments = ', '.join(f"{name} = ?" for name in BASE_FIELDS)
            conn.execute(
                f"UPDATE cards SET {assignments}, del_flag = ?, update_time = ? WHERE card_id = ?",
                (*base_values, card.del_flag, card.update_time, card.card_id),
            )

        conn.execute(
            f"""
            INSERT INTO card_contents (card_id, {', '.join(CONTENT_FIELDS)})
            VALUES (?, {', '.join('?' for _ in CONTENT_FIELDS)})
            ON CONFLICT(card_id) DO UPDATE SET
                {', '.join(f'{name} = excluded.{name}' for name in CONTENT_FIELDS)}
            """,
            (card.card_id, *content_values),
        )

    def _transaction(self, action: str, card_id: str, work) -> None:
        with get_connection(self.db_path) as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                work(conn)
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise RuntimeError(f"Failed to {action} card {card_id}, rolled back: {e}") from e

    def _after_commit(self, card: Card) -> None:
        if self.writer is None:
            return
        self.outbox.enqueue(f"index card {card.card_id}", self.writer.index_card, card)
        self.outbox.flush()

    def create_card(self, card: Card) -> Card:
        """
        Insert a card and its content, then index it.

        Raises:
            RuntimeError: If the card cannot be written (e.g. duplicate id)
        """
        now = datetime.now().isoformat()
        card.create_time = card.create_time or now
        card.update_time = now
        self._transaction('create', card.card_id, lambda conn: self._write(conn, card, insert=True))
        logger.debug(f"Created card {card.card_id} ({card.card_type})")
        self._after_commit(card)
        return card

    def get_card(self, card_id: str, include_deleted: bool = False) -> Card:
        """
        Load a card with its content.

        Raises:
            CardNotFoundError: If no (live) card has this id
        """
        sql = CARD_SELECT + " WHERE c.card_id = ?"
        if not include_deleted:
            sql += " AND c.del_flag = 0"
        with get_connection(self.db_path) as conn:
            row = conn.execute(sql, (card_id,)).fetchone()
        if row is None:
            raise CardNotFoundError(f"Card not found: {card_id}")
        return _row_to_card(row)

    def update_card(self, card_id: str, **changes) -> Card:
        """
        Apply field changes to a card, then reindex it from its merged state.

        Args:
            card_id: Card to update
            **changes: Card fields to replace (base or content fields)

        Raises:
            CardNotFoundError: If the card does not exist
            ValueError: If a change names an unknown or read-only field
        """
        allowed = set(BASE_FIELDS) | set(CONTENT_FIELDS)
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"Cannot update card fields: {', '.join(sorted(unknown))}")

        card = self.get_card(card_id)
        for name, value in changes.items():
            setattr(card, name, value)
        card.update_time = datetime.now().isoformat()

        self._transaction('update', card_id, lambda conn: self._write(conn, card, insert=False))
        self._after_commit(card)
        return card

    def delete_card(self, card_id: str, hard: bool = False) -> None:
        """
        Soft-delete (or remove) a card together with its index rows.

        Raises:
            CardNotFoundError: If the card does not exist
        """
        card = self.get_card(card_id, include_deleted=hard)

        def _delete(conn):
            if self.writer is not None:
                self.writer.remove(conn, card_id)
            if hard:
                conn.execute("DELETE FROM cards WHERE card_id = ?", (card_id,))
            else:
                conn.execute(
                    "UPDATE cards SET del_flag = 1, update_time = ? WHERE card_id = ?",
                    (datetime.now().isoformat(), card_id),
                )

        self._transaction('delete', card_id, _delete)
        logger.debug(f"Deleted card {card.card_id} (hard={hard})")

    def restore_card(self, card_id: str) -> Card:
        """Undo a soft delete and index the card again."""
        card = self.get_card(card_id, include_deleted=True)
        card.del_flag = 0
        card.update_time = datetime.now().isoformat()
        self._transaction('restore', card_id, lambda conn: self._write(conn, card, insert=False))
        self._after_commit(card)
        return card
