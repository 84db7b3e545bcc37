import asyncio
import csv
import io
import logging
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import aiohttp
import feedparser

from newscache.models.content import RawEntry


# Feeds polled when no other source set is configured
DEFAULT_FEEDS = (
    "http://feeds.arstechnica.com/arstechnica/index",
    "https://boingboing.net/feed",
    "http://rss.slashdot.org/Slashdot/slashdotMain",
    "https://hackaday.com/blog/feed/",
    "https://www.phoronix.com/rss.php",
    "https://www.newyorker.com/feed/everything",
)

REQUEST_HEADERS = {
    "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) news-cache/0.1",
    "Accept": "application/rss+xml,application/atom+xml,application/xml;q=0.9,*/*;q=0.8",
}

DC_DATE_TAG = "{http://purl.org/dc/elements/1.1/}date"

# RSS 2.0 items, RSS 1.0 items and Atom entries
ENTRY_TAGS = {
    "item",
    "{http://purl.org/rss/1.0/}item",
    "{http://www.w3.org/2005/Atom}entry",
}


@dataclass
class FetchResult:
    """Outcome of one fetch pass over the source set"""
    entries: List[RawEntry] = field(default_factory=list)
    succeeded: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)  # feed url -> reason

    @property
    def feeds_attempted(self) -> int:
        return len(self.succeeded) + len(self.failures)


class RSSService:
    """
    Concurrent feed retrieval and parsing.

    Every endpoint is fetched and parsed on its own; one failing endpoint is
    recorded in the result and contributes no entries, the rest proceed.
    """

    def __init__(
        self,
        max_concurrent_feeds: int = 8,
        timeout: int = 30,
        max_retries: int = 2,
        retry_backoff: float = 0.25,
    ):
        self.max_concurrent_feeds = max_concurrent_feeds
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_backoff = retry_backoff
        self.logger = logging.getLogger(__name__)

    async def fetch_all(self, feed_urls: Iterable[str]) -> FetchResult:
        """Fetch every feed concurrently and collect their entries."""
        feed_urls = list(feed_urls)
        result = FetchResult()
        if not feed_urls:
            self.logger.warning("No feeds configured")
            return result

        start_time = time.time()
        semaphore = asyncio.Semaphore(self.max_concurrent_feeds)
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        async with aiohttp.ClientSession(timeout=timeout, headers=REQUEST_HEADERS) as session:
            tasks = [self._fetch_with_limit(session, semaphore, url) for url in feed_urls]
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        for url, outcome in zip(feed_urls, outcomes):
            if isinstance(outcome, FeedFetchError):
                self.logger.warning(f"Feed {url} failed: {outcome}")
                result.failures[url] = str(outcome)
            elif isinstance(outcome, Exception):
                self.logger.error(f"Unexpected error fetching {url}: {outcome!r}", exc_info=outcome)
                result.failures[url] = repr(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                self.logger.debug(f"Got {len(outcome)} entries from {url}")
                result.succeeded.append(url)
                result.entries.extend(outcome)

        elapsed = time.time() - start_time
        self.logger.info(
            f"Fetched {len(result.entries)} entries from {len(result.succeeded)}/{len(feed_urls)} feeds "
            f"in {elapsed:.2f}s"
        )
        return result

    async def _fetch_with_limit(
        self,
        session: aiohttp.ClientSession,
        semaphore: asyncio.Semaphore,
        feed_url: str,
    ) -> List[RawEntry]:
        async with semaphore:
            return await self.fetch_feed(session, feed_url)

    async def fetch_feed(self, session: aiohttp.ClientSession, feed_url: str) -> List[RawEntry]:
        """
        Fetch and parse a single feed.

        Raises:
            FeedFetchError: when the feed cannot be retrieved or parsed
        """
        last_error: Optional[Exception] = None
        content: Optional[bytes] = None
        for attempt in range(self.max_retries):
            try:
                content = await self._download(session, feed_url)
                break
            except (aiohttp.ClientError, asyncio.TimeoutError, FeedFetchError) as exc:
                last_error = exc
                self.logger.debug(f"Attempt {attempt + 1}/{self.max_retries} for {feed_url} failed: {exc!r}")
                if attempt + 1 < self.max_retries:
                    # Exponential backoff
                    await asyncio.sleep(self.retry_backoff * (2 ** attempt))

        if content is None:
            raise FeedFetchError(f"Failed to fetch {feed_url}: {last_error!r}")

        return await asyncio.to_thread(self._parse_feed, content, feed_url)

    async def _download(self, session: aiohttp.ClientSession, url: str) -> bytes:
        async with session.get(url) as resp:
            if resp.status != 200:
                raise FeedFetchError(f"HTTP {resp.status} for {url}")
            return await resp.read()

    def _parse_feed(self, content: bytes, feed_url: str) -> List[RawEntry]:
        """Parse RSS/Atom feed content into raw entries."""
        parsed = feedparser.parse(io.BytesIO(content))
        if not parsed.entries and (parsed.bozo or not parsed.version):
            reason = parsed.get("bozo_exception", "not a recognized feed format")
            raise FeedFetchError(f"Malformed feed document from {feed_url}: {reason}")

        dc_dates = self._dc_dates_by_entry(content)
        if dc_dates is None or len(dc_dates) != len(parsed.entries):
            self.logger.debug(f"Could not scan dc:date elements of {feed_url}, using feedparser dates")
            # feedparser keeps only the last dc:date of an RSS item, under
            # "updated". For Atom that key is the entry's own <updated>.
            is_atom = (parsed.version or "").startswith("atom")
            dc_dates = []
            for entry in parsed.entries:
                # Plain dict lookup skips the legacy updated -> published fallback
                updated = None if is_atom else dict.get(entry, "updated")
                dc_dates.append([updated] if updated else [])

        return [
            self._to_raw_entry(entry, dates, feed_url)
            for entry, dates in zip(parsed.entries, dc_dates)
        ]

    @staticmethod
    def _dc_dates_by_entry(content: bytes) -> Optional[List[List[str]]]:
        """
        Every dc:date of each item or entry, in document order.

        Returns None when the document is not well-formed XML.
        """
        try:
            root = ET.fromstring(content)
        except ET.ParseError:
            return None

        dates: List[List[str]] = []
        for element in root.iter():
            if element.tag not in ENTRY_TAGS:
                continue
            dates.append([
                date.text.strip()
                for date in element.findall(DC_DATE_TAG)
                if date.text and date.text.strip()
            ])
        return dates

    @staticmethod
    def _to_raw_entry(entry, dc_dates: List[str], feed_url: str) -> RawEntry:
        thumbnails = [
            dict(thumb) for thumb in entry.get("media_thumbnail", []) or []
            if isinstance(thumb, dict)
        ]
        return RawEntry(
            title=entry.get("title"),
            description=entry.get("summary"),
            pub_date=entry.get("published"),
            dc_dates=list(dc_dates),
            media_thumbnails=thumbnails,
            source_feed=feed_url,
        )


def load_feeds_from_csv(csv_path: str) -> List[str]:
    """Read feed URLs from a CSV file with a ``url`` column."""
    logger = logging.getLogger(__name__)
    urls: List[str] = []
    with open(csv_path, "r", encoding="utf-8", newline="") as file:
        reader = csv.DictReader(file)
        for row in reader:
            url = (row.get("url") or "").strip()
            if not url or url.startswith("#"):
                continue
            if url not in urls:
                urls.append(url)

    logger.info(f"Loaded {len(urls)} feed URLs from {csv_path}")
    return urls


class FeedFetchError(Exception):
    """Raised when one feed endpoint cannot be fetched or parsed"""
    pass
