"""
Publish date extraction for feed entries.

Entries carry their date in one of two places: the native RSS ``pubDate``
(RFC-822 style) or a Dublin Core ``dc:date`` (ISO-8601). Both parsers only
accept timestamps with an explicit UTC offset.
"""

from datetime import datetime, timezone
from typing import Optional, Sequence
import logging

from dateutil.parser import isoparse

logger = logging.getLogger(__name__)

# e.g. "Tue, 02 Jan 2024 10:00:00 +0000"
RFC822_FORMAT = "%a, %d %b %Y %H:%M:%S %z"


def _as_fixed_offset(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone(dt.utcoffset()))


def parse_rfc822_date(date_str: Optional[str]) -> Optional[datetime]:
    """Parse an RSS ``pubDate`` value, or return None."""
    if not date_str:
        return None
    try:
        return _as_fixed_offset(datetime.strptime(date_str.strip(), RFC822_FORMAT))
    except (ValueError, TypeError) as e:
        logger.debug(f"Unparseable RFC-822 date '{date_str}': {e}")
        return None


def parse_iso_date(date_str: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp carrying an offset, or return None."""
    if not date_str:
        return None
    try:
        dt = isoparse(date_str.strip())
    except (ValueError, TypeError, OverflowError) as e:
        logger.debug(f"Unparseable ISO-8601 date '{date_str}': {e}")
        return None

    if dt.tzinfo is None or dt.utcoffset() is None:
        logger.debug(f"ISO-8601 date without offset ignored: '{date_str}'")
        return None
    return _as_fixed_offset(dt)


def extract_publish_date(
    pub_date: Optional[str],
    dc_dates: Sequence[str] = (),
) -> Optional[datetime]:
    """
    Resolve an entry's publish date.

    Priority:
    1. native ``pubDate`` parsed as RFC-822
    2. first Dublin Core date parsed as ISO-8601

    Args:
        pub_date: Raw native date string (may be None)
        dc_dates: Dublin Core dates listed on the entry, in document order

    Returns:
        Offset-aware datetime, or None when neither source parses
    """
    parsed = parse_rfc822_date(pub_date)
    if parsed is not None:
        return parsed

    if dc_dates:
        return parse_iso_date(dc_dates[0])

    return None
