from __future__ import annotations

import itertools
import logging
import sqlite3
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

import aiosqlite

from newscache.models.content import NewsItem, chronological_key
from newscache.utils.date_extraction import parse_iso_date


SCHEMA = """
CREATE TABLE IF NOT EXISTS news_items (
    position INTEGER PRIMARY KEY,
    title TEXT,
    description TEXT,
    raw_pub_date TEXT,
    publish_date TEXT,
    image_url TEXT,
    image_path TEXT,
    content_digest TEXT NOT NULL
);
"""

_COLUMNS = (
    "position, title, description, raw_pub_date, publish_date, "
    "image_url, image_path, content_digest"
)


def merge_items(existing: Iterable[NewsItem], incoming: Iterable[NewsItem]) -> List[NewsItem]:
    """
    Merge two item collections into one deduplicated, chronological list.

    Items sharing an identity key collapse to the first one seen, so stored
    items win over fresh duplicates. The sort is stable: items with equal
    (or missing) publish dates keep their insertion order. Undated items
    come first.
    """
    unique: Dict[Tuple, NewsItem] = {}
    for item in itertools.chain(existing, incoming):
        unique.setdefault(item.identity_key(), item)
    return sorted(unique.values(), key=chronological_key)


def reverse_chronological(items: Iterable[NewsItem]) -> List[NewsItem]:
    """Newest first, undated last; ties keep their relative order."""
    return sorted(items, key=chronological_key, reverse=True)


class CacheService:
    """
    SQLite-backed durable store of every known NewsItem.

    The whole collection is read, merged in memory and rewritten on each
    pipeline run. Callers must not run two merges against the same file at
    once; the load/persist pair is not locked.
    """

    def __init__(self, db_path: Union[str, Path] = "news_items.db"):
        self.db_path = Path(db_path)
        self.logger = logging.getLogger(__name__)

    async def _ensure_schema(self, db: aiosqlite.Connection) -> None:
        await db.execute(SCHEMA)
        await db.commit()

    async def load_items(self) -> List[NewsItem]:
        """
        Read the stored collection in its persisted order.

        A missing store reads as empty.

        Raises:
            StoreIOError: if the store exists but cannot be read or decoded
        """
        if not self.db_path.exists():
            self.logger.info(f"No news store at {self.db_path}, starting empty")
            return []

        try:
            async with aiosqlite.connect(self.db_path) as db:
                await self._ensure_schema(db)
                db.row_factory = aiosqlite.Row
                async with db.execute(f"SELECT {_COLUMNS} FROM news_items ORDER BY position") as cursor:
                    rows = await cursor.fetchall()
        except (sqlite3.Error, OSError) as e:
            raise StoreIOError(f"Failed to read news store {self.db_path}: {e}") from e

        items = [self._row_to_item(row) for row in rows]
        self.logger.debug(f"Loaded {len(items)} items from {self.db_path}")
        return items

    async def save_items(self, items: List[NewsItem]) -> None:
        """
        Replace the stored collection with ``items``, in order.

        The rewrite is a single transaction; on failure the previous contents
        are left as they were.

        Raises:
            StoreIOError: if the store cannot be written
        """
        rows = [self._item_to_row(position, item) for position, item in enumerate(items)]
        placeholders = ", ".join("?" * 8)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiosqlite.connect(self.db_path) as db:
                await self._ensure_schema(db)
                try:
                    await db.execute("DELETE FROM news_items")
                    await db.executemany(
                        f"INSERT INTO news_items ({_COLUMNS}) VALUES ({placeholders})",
                        rows,
                    )
                    await db.commit()
                except sqlite3.Error:
                    await db.rollback()
                    raise
        except (sqlite3.Error, OSError) as e:
            raise StoreIOError(f"Failed to write news store {self.db_path}: {e}") from e

        self.logger.debug(f"Persisted {len(rows)} items to {self.db_path}")

    async def merge_and_persist(self, new_items: Iterable[NewsItem]) -> List[NewsItem]:
        """
        Merge fresh items into the store and return everything, newest first.

        Raises:
            StoreIOError: if the store cannot be loaded or written
        """
        new_items = list(new_items)
        existing = await self.load_items()
        merged = merge_items(existing, new_items)
        await self.save_items(merged)

        self.logger.info(
            f"Merged {len(new_items)} fresh items into {len(existing)} stored: "
            f"{len(merged)} total, {len(merged) - len(existing)} new"
        )
        return reverse_chronological(merged)

    @staticmethod
    def _item_to_row(position: int, item: NewsItem) -> Tuple:
        return (
            position,
            item.title,
            item.description,
            item.raw_pub_date,
            item.publish_date.isoformat() if item.publish_date else None,
            item.image_url,
            str(item.image_path) if item.image_path is not None else None,
            item.content_digest,
        )

    def _row_to_item(self, row) -> NewsItem:
        publish_date = None
        if row["publish_date"] is not None:
            publish_date = parse_iso_date(row["publish_date"])
            if publish_date is None:
                raise StoreIOError(
                    f"Corrupt publish_date {row['publish_date']!r} at position {row['position']} "
                    f"in {self.db_path}"
                )

        image_path: Optional[Path] = Path(row["image_path"]) if row["image_path"] is not None else None
        return NewsItem(
            title=row["title"],
            description=row["description"],
            raw_pub_date=row["raw_pub_date"],
            publish_date=publish_date,
            image_path=image_path,
            content_digest=row["content_digest"],
            image_url=row["image_url"],
        )


class StoreIOError(Exception):
    """Raised when the durable news store cannot be read or written"""
    pass
