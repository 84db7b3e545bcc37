"""
Content models for the news cache.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple


# Stand-in for a missing publish date when building sort keys
_UNDATED = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class RawEntry:
    """Unprocessed feed entry, as read from a feed document."""

    title: Optional[str] = None
    description: Optional[str] = None
    pub_date: Optional[str] = None  # native date string, unparsed
    dc_dates: List[str] = field(default_factory=list)
    media_thumbnails: List[Dict[str, str]] = field(default_factory=list)
    source_feed: Optional[str] = None


@dataclass
class NewsItem:
    """
    A normalized news item as kept in the durable store.

    Dataclass equality compares every field and is only meant for round-trip
    checks. Deduplication goes through ``identity_key``; ``content_digest`` is
    a hash of title and description and never decides identity on its own.
    """

    title: Optional[str]
    description: Optional[str]
    raw_pub_date: Optional[str]
    publish_date: Optional[datetime]
    image_path: Optional[Path]
    content_digest: str
    image_url: Optional[str] = None

    def identity_key(self) -> Tuple[Optional[str], Optional[str], Optional[str]]:
        """Key under which two items count as the same item."""
        return (self.title, self.description, self.raw_pub_date)

    def __str__(self) -> str:
        return f"{self.title or ''} - {self.description or ''}"


def chronological_key(item: NewsItem) -> Tuple[bool, datetime]:
    """Sort key ordering undated items before every dated one."""
    if item.publish_date is None:
        return (False, _UNDATED)
    return (True, item.publish_date)
