"""Shared fixtures for news cache tests."""
import io
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import pytest
from PIL import Image

from newscache.models.content import NewsItem


RSS_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"
     xmlns:media="http://search.yahoo.com/mrss/"
     xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel>
    <title>{name}</title>
    <link>https://example.com/</link>
    <description>Test feed</description>
    {items}
  </channel>
</rss>
"""


def rss_item(
    title: Optional[str] = None,
    description: Optional[str] = None,
    pub_date: Optional[str] = None,
    dc_date: Optional[str] = None,
    thumbnail: Optional[str] = None,
) -> str:
    parts = ["<item>"]
    if title is not None:
        parts.append(f"<title>{title}</title>")
    if description is not None:
        parts.append(f"<description>{description}</description>")
    if pub_date is not None:
        parts.append(f"<pubDate>{pub_date}</pubDate>")
    if dc_date is not None:
        parts.append(f"<dc:date>{dc_date}</dc:date>")
    if thumbnail is not None:
        parts.append(f'<media:thumbnail url="{thumbnail}" width="120" height="80"/>')
    parts.append("</item>")
    return "".join(parts)


def rss_feed(name: str, *items: str) -> bytes:
    return RSS_TEMPLATE.format(name=name, items="\n".join(items)).encode("utf-8")


def make_item(
    title: Optional[str] = "Title",
    description: Optional[str] = "Description",
    raw_pub_date: Optional[str] = None,
    publish_date: Optional[datetime] = None,
    image_path: Optional[Path] = None,
    content_digest: str = "0" * 64,
    image_url: Optional[str] = None,
) -> NewsItem:
    return NewsItem(
        title=title,
        description=description,
        raw_pub_date=raw_pub_date,
        publish_date=publish_date,
        image_path=image_path,
        content_digest=content_digest,
        image_url=image_url,
    )


def utc(year, month, day, hour=0, minute=0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def png_bytes() -> bytes:
    """A tiny valid PNG image."""
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color=(200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def cache_root(tmp_path: Path) -> Path:
    root = tmp_path / "cache"
    root.mkdir()
    return root
