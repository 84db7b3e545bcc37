"""
Turns raw feed entries into NewsItems.
"""

import hashlib
import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from newscache.models.content import NewsItem, RawEntry
from newscache.utils.date_extraction import extract_publish_date
from newscache.utils.paths import image_path_for_url

logger = logging.getLogger(__name__)


class MissingContentError(Exception):
    """Raised when an entry lacks the title or description its digest needs"""
    pass


def compute_content_digest(title: Optional[str], description: Optional[str]) -> str:
    """
    SHA-256 over the title bytes followed by the description bytes.

    The concatenation order is part of the stored format.
    """
    if title is None or description is None:
        missing = "title" if title is None else "description"
        raise MissingContentError(f"Cannot compute content digest without {missing}")

    hasher = hashlib.sha256()
    hasher.update(title.encode("utf-8"))
    hasher.update(description.encode("utf-8"))
    return hasher.hexdigest()


def extract_image_url(entry: RawEntry) -> Optional[str]:
    """URL of the entry's first media thumbnail, if it has one."""
    if not entry.media_thumbnails:
        return None
    url = entry.media_thumbnails[0].get("url")
    return url or None


def normalize(entry: RawEntry, cache_root: Union[str, Path]) -> NewsItem:
    """
    Build the NewsItem for one raw entry.

    Raises:
        MissingContentError: if title or description is absent
    """
    digest = compute_content_digest(entry.title, entry.description)

    image_url = extract_image_url(entry)
    image_path = image_path_for_url(image_url, cache_root) if image_url else None

    return NewsItem(
        title=entry.title,
        description=entry.description,
        raw_pub_date=entry.pub_date,
        publish_date=extract_publish_date(entry.pub_date, entry.dc_dates),
        image_path=image_path,
        content_digest=digest,
        image_url=image_url if image_path else None,
    )


def normalize_entries(
    entries: Sequence[RawEntry],
    cache_root: Union[str, Path],
) -> Tuple[List[NewsItem], int]:
    """
    Normalize a batch, dropping entries that cannot be normalized.

    Returns:
        (items, dropped_count)
    """
    items: List[NewsItem] = []
    dropped = 0
    for entry in entries:
        try:
            items.append(normalize(entry, cache_root))
        except MissingContentError as e:
            dropped += 1
            logger.warning(f"Dropping entry '{(entry.title or '')[:50]}' from {entry.source_feed}: {e}")

    if dropped:
        logger.info(f"Normalized {len(items)} entries, dropped {dropped} without title/description")
    return items, dropped
