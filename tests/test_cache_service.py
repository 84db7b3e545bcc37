"""Tests for the dedup/merge store."""
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from conftest import make_item, utc
from newscache.services.cache_service import (
    CacheService,
    StoreIOError,
    merge_items,
    reverse_chronological,
)


class TestMergeItems:
    def test_identity_equal_items_collapse(self):
        a = make_item(title="A", description="a", raw_pub_date="x", publish_date=utc(2024, 1, 1))
        duplicate = make_item(title="A", description="a", raw_pub_date="x", publish_date=utc(2024, 1, 1))

        merged = merge_items([a], [duplicate, duplicate])

        assert len(merged) == 1

    def test_differing_raw_date_is_a_different_item(self):
        a = make_item(title="A", description="a", raw_pub_date="x")
        b = make_item(title="A", description="a", raw_pub_date="y")

        assert len(merge_items([a], [b])) == 2

    def test_first_insertion_wins(self):
        """The stored item survives a fresh duplicate with other derived fields."""
        stored = make_item(title="A", description="a", raw_pub_date="x", content_digest="1" * 64,
                           image_path=Path("/old/a.png"))
        fresh = make_item(title="A", description="a", raw_pub_date="x", content_digest="2" * 64,
                          image_path=Path("/new/a.png"))

        merged = merge_items([stored], [fresh])

        assert merged == [stored]
        assert merged[0].content_digest == "1" * 64
        assert merged[0].image_path == Path("/old/a.png")

    def test_chronological_with_undated_first(self):
        new = make_item(title="new", publish_date=utc(2024, 3, 1))
        old = make_item(title="old", publish_date=utc(2023, 1, 1))
        undated = make_item(title="undated")

        merged = merge_items([new], [undated, old])

        assert [item.title for item in merged] == ["undated", "old", "new"]

    def test_equal_dates_keep_insertion_order(self):
        date = utc(2024, 1, 1, 12)
        first = make_item(title="first", publish_date=date)
        second = make_item(title="second", publish_date=date)
        third = make_item(title="third", publish_date=date)

        merged = merge_items([first], [second, third])
        newest_first = reverse_chronological(merged)

        assert [item.title for item in merged] == ["first", "second", "third"]
        assert [item.title for item in newest_first] == ["first", "second", "third"]

    def test_undated_items_keep_insertion_order(self):
        items = [make_item(title=name) for name in ("u1", "u2", "u3")]

        merged = merge_items(items[:1], items[1:])

        assert [item.title for item in reverse_chronological(merged)] == ["u1", "u2", "u3"]

    def test_same_instant_in_different_offsets_ties(self):
        plus_two = timezone(timedelta(hours=2))
        a = make_item(title="a", publish_date=utc(2024, 1, 1, 10))
        b = make_item(title="b", publish_date=datetime(2024, 1, 1, 12, tzinfo=plus_two))

        assert [item.title for item in merge_items([a], [b])] == ["a", "b"]


def test_reverse_chronological_order():
    items = [
        make_item(title="undated"),
        make_item(title="old", publish_date=utc(2023, 1, 1)),
        make_item(title="new", publish_date=utc(2024, 1, 1)),
    ]

    result = reverse_chronological(items)

    assert [item.title for item in result] == ["new", "old", "undated"]
    for earlier, later in zip(result, result[1:]):
        if earlier.publish_date and later.publish_date:
            assert earlier.publish_date >= later.publish_date


@pytest.mark.asyncio
async def test_missing_store_loads_empty(tmp_path: Path):
    store = CacheService(tmp_path / "news_items.db")

    assert await store.load_items() == []
    assert not (tmp_path / "news_items.db").exists()


@pytest.mark.asyncio
async def test_round_trip_preserves_every_field(tmp_path: Path):
    store = CacheService(tmp_path / "news_items.db")
    offset = timezone(timedelta(hours=-5))
    items = [
        make_item(title=None, description=None, raw_pub_date=None, content_digest="a" * 64),
        make_item(
            title="Dated",
            description="With image",
            raw_pub_date="Tue, 02 Jan 2024 10:00:00 -0500",
            publish_date=datetime(2024, 1, 2, 10, 0, tzinfo=offset),
            image_path=tmp_path / "example.com" / "img" / "a.jpg",
            image_url="https://example.com/img/a.jpg",
            content_digest="b" * 64,
        ),
    ]

    await store.save_items(items)
    loaded = await store.load_items()

    assert loaded == items
    assert loaded[1].publish_date.utcoffset() == timedelta(hours=-5)
    assert isinstance(loaded[1].image_path, Path)


@pytest.mark.asyncio
async def test_merge_and_persist_returns_newest_first(tmp_path: Path):
    store = CacheService(tmp_path / "news_items.db")
    await store.save_items([make_item(title="old", raw_pub_date="o", publish_date=utc(2023, 1, 1))])

    result = await store.merge_and_persist([
        make_item(title="new", raw_pub_date="n", publish_date=utc(2024, 1, 1)),
        make_item(title="undated"),
    ])

    assert [item.title for item in result] == ["new", "old", "undated"]
    stored = await store.load_items()
    assert [item.title for item in stored] == ["undated", "old", "new"]


@pytest.mark.asyncio
async def test_repeated_merges_are_idempotent(tmp_path: Path):
    store = CacheService(tmp_path / "news_items.db")
    batch = [
        make_item(title=f"item {i}", raw_pub_date=f"d{i}", publish_date=utc(2024, 1, i + 1))
        for i in range(5)
    ]

    await store.merge_and_persist(batch)
    await store.merge_and_persist(batch)
    await store.merge_and_persist(list(reversed(batch)))

    assert len(await store.load_items()) == 5


@pytest.mark.asyncio
async def test_corrupt_store_is_fatal(tmp_path: Path):
    db_path = tmp_path / "news_items.db"
    db_path.write_bytes(b"definitely not sqlite " * 200)
    store = CacheService(db_path)

    with pytest.raises(StoreIOError):
        await store.load_items()
    with pytest.raises(StoreIOError):
        await store.merge_and_persist([make_item()])


@pytest.mark.asyncio
async def test_corrupt_row_is_fatal(tmp_path: Path):
    store = CacheService(tmp_path / "news_items.db")
    await store.save_items([make_item(publish_date=utc(2024, 1, 1))])

    conn = sqlite3.connect(tmp_path / "news_items.db")
    conn.execute("UPDATE news_items SET publish_date = 'garbage'")
    conn.commit()
    conn.close()

    with pytest.raises(StoreIOError):
        await store.load_items()


@pytest.mark.asyncio
async def test_failed_write_leaves_previous_store_intact(tmp_path: Path):
    store = CacheService(tmp_path / "news_items.db")
    previous = [make_item(title="kept", raw_pub_date="k", publish_date=utc(2024, 1, 1))]
    await store.save_items(previous)

    unbindable = make_item(title=object(), raw_pub_date="bad")  # type: ignore[arg-type]
    with pytest.raises(StoreIOError):
        await store.save_items([make_item(title="partial", raw_pub_date="p"), unbindable])

    assert await store.load_items() == previous
