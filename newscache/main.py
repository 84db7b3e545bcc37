#!/usr/bin/env python3
import argparse
import asyncio
import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

from dotenv import load_dotenv

from newscache.models.content import NewsItem
from newscache.pipeline.normalizer import normalize_entries
from newscache.services.cache_service import CacheService, StoreIOError
from newscache.services.image_cache import ImageCacheService
from newscache.services.rss import DEFAULT_FEEDS, RSSService, load_feeds_from_csv
from newscache.utils.logging_config import PerformanceTracker, log_pipeline_metrics, setup_logging
from newscache.utils.paths import ConfigurationError, resolve_cache_root


@dataclass
class PipelineConfig:
    """Pipeline configuration"""
    feed_urls: List[str] = field(default_factory=lambda: list(DEFAULT_FEEDS))
    cache_dir: Optional[str] = None  # None: platform cache directory
    store_filename: str = "news_items.db"

    # Concurrency and network
    max_concurrent_feeds: int = 8
    max_concurrent_downloads: int = 8
    feed_timeout: int = 30
    image_timeout: int = 30
    max_retries: int = 2

    # Polling
    poll_interval_seconds: int = 900

    # Logging
    log_level: str = "INFO"
    log_dir: Optional[str] = None


@dataclass
class CycleMetrics:
    """Execution metrics for one fetch-merge-persist cycle"""
    start_time: datetime
    end_time: Optional[datetime] = None

    # Stage timings (ms)
    fetch_time: float = 0.0
    normalize_time: float = 0.0
    image_time: float = 0.0
    merge_time: float = 0.0

    # Counts
    feeds_attempted: int = 0
    feeds_failed: Dict[str, str] = field(default_factory=dict)
    entries_fetched: int = 0
    entries_dropped: int = 0
    images_downloaded: int = 0
    images_skipped: int = 0
    images_failed: Dict[str, str] = field(default_factory=dict)
    items_total: int = 0

    success: bool = False

    def total_time(self) -> float:
        """Total execution time in seconds"""
        if self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return 0.0


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def _log_level_env(name: str, default: str) -> str:
    raw = os.getenv(name) or default
    if not isinstance(logging.getLevelName(raw.upper()), int):
        raise ConfigurationError(f"{name} must be a log level name, got {raw!r}")
    return raw.upper()


def load_config() -> PipelineConfig:
    """Load configuration from environment variables"""
    feeds_csv = os.getenv("NEWS_FEEDS_CSV")
    feeds_env = os.getenv("NEWS_FEEDS", "")
    if feeds_csv:
        try:
            feed_urls = load_feeds_from_csv(feeds_csv)
        except OSError as e:
            raise ConfigurationError(f"Cannot read feed list {feeds_csv}: {e}") from e
    elif feeds_env.strip():
        feed_urls = [url.strip() for url in feeds_env.split(",") if url.strip()]
    else:
        feed_urls = list(DEFAULT_FEEDS)

    return PipelineConfig(
        feed_urls=feed_urls,
        cache_dir=os.getenv("NEWS_CACHE_DIR") or None,
        store_filename=os.getenv("NEWS_STORE_FILENAME", "news_items.db"),
        max_concurrent_feeds=_int_env("MAX_CONCURRENT_FEEDS", 8),
        max_concurrent_downloads=_int_env("MAX_CONCURRENT_DOWNLOADS", 8),
        feed_timeout=_int_env("FEED_TIMEOUT", 30),
        image_timeout=_int_env("IMAGE_TIMEOUT", 30),
        max_retries=_int_env("FEED_MAX_RETRIES", 2),
        poll_interval_seconds=_int_env("POLL_INTERVAL_SECONDS", 900),
        log_level=_log_level_env("LOG_LEVEL", "INFO"),
        log_dir=os.getenv("LOG_DIR") or None,
    )


class NewsPipeline:
    """
    Fetch, normalize, cache images, merge and persist.

    ``run_cycle`` is the one operation exposed to consumers. Runs are
    serialized within the process; separate processes must not share a
    cache root concurrently.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        rss_service: Optional[RSSService] = None,
        image_cache: Optional[ImageCacheService] = None,
        cache_service: Optional[CacheService] = None,
    ):
        self.config = config or load_config()
        self.logger = logging.getLogger(__name__)
        self.rss_service = rss_service or RSSService(
            max_concurrent_feeds=self.config.max_concurrent_feeds,
            timeout=self.config.feed_timeout,
            max_retries=self.config.max_retries,
        )
        self.image_cache = image_cache or ImageCacheService(
            max_concurrent_downloads=self.config.max_concurrent_downloads,
            timeout=self.config.image_timeout,
        )
        self.cache_service = cache_service
        self.metrics: Optional[CycleMetrics] = None
        self._run_lock = asyncio.Lock()

    async def run_cycle(self) -> List[NewsItem]:
        """
        Run one fetch-merge-persist cycle.

        Returns:
            Every known item, newest first

        Raises:
            ConfigurationError: cache root unusable; raised before any fetch
            StoreIOError: durable store unreadable or unwritable
        """
        async with self._run_lock:
            self.metrics = CycleMetrics(start_time=datetime.now())
            try:
                items = await self._execute_cycle(self.metrics)
                self.metrics.success = True
                return items
            finally:
                self.metrics.end_time = datetime.now()

    async def _execute_cycle(self, metrics: CycleMetrics) -> List[NewsItem]:
        cache_root = resolve_cache_root(self.config.cache_dir)
        store = self.cache_service or CacheService(cache_root / self.config.store_filename)

        # Stage 1: Fetch
        with PerformanceTracker("fetch feeds", self.logger) as tracker:
            fetch_result = await self.rss_service.fetch_all(self.config.feed_urls)
        metrics.fetch_time = tracker.duration_ms
        metrics.feeds_attempted = fetch_result.feeds_attempted
        metrics.feeds_failed = dict(fetch_result.failures)
        metrics.entries_fetched = len(fetch_result.entries)
        log_pipeline_metrics(
            self.logger, "fetch", len(self.config.feed_urls), len(fetch_result.succeeded),
            metrics.fetch_time, entries=metrics.entries_fetched,
        )

        # Stage 2: Normalize
        with PerformanceTracker("normalize entries", self.logger) as tracker:
            items, dropped = normalize_entries(fetch_result.entries, cache_root)
        metrics.normalize_time = tracker.duration_ms
        metrics.entries_dropped = dropped
        log_pipeline_metrics(
            self.logger, "normalize", metrics.entries_fetched, len(items), metrics.normalize_time,
        )

        # Stage 3: Images (failures stay per image)
        with PerformanceTracker("cache images", self.logger) as tracker:
            image_report = await self.image_cache.cache_images(items)
        metrics.image_time = tracker.duration_ms
        metrics.images_downloaded = len(image_report.downloaded)
        metrics.images_skipped = len(image_report.skipped)
        metrics.images_failed = dict(image_report.failed)

        # Stage 4: Merge and persist (failures are fatal)
        with PerformanceTracker("merge store", self.logger) as tracker:
            merged = await store.merge_and_persist(items)
        metrics.merge_time = tracker.duration_ms
        metrics.items_total = len(merged)
        log_pipeline_metrics(self.logger, "merge", len(items), len(merged), metrics.merge_time)

        return merged

    async def run_forever(
        self,
        interval_seconds: Optional[int] = None,
        on_items: Optional[Callable[[List[NewsItem]], Awaitable[None]]] = None,
        max_cycles: Optional[int] = None,
    ) -> None:
        """
        Poll on a timer, handing each cycle's items to ``on_items``.

        A store failure skips that cycle and keeps polling; configuration
        errors end the loop.
        """
        interval = interval_seconds if interval_seconds is not None else self.config.poll_interval_seconds
        cycles = 0
        while max_cycles is None or cycles < max_cycles:
            cycles += 1
            try:
                items = await self.run_cycle()
            except StoreIOError as e:
                self.logger.error(f"Cycle {cycles} failed, store left unchanged: {e}")
            else:
                if on_items is not None:
                    await on_items(items)

            if max_cycles is None or cycles < max_cycles:
                await asyncio.sleep(interval)

    def get_metrics(self) -> Optional[CycleMetrics]:
        return self.metrics


def _format_item(item: NewsItem) -> str:
    date = item.publish_date.isoformat() if item.publish_date else "undated"
    return f"{date}  {item.title or ''}"


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    load_dotenv()

    parser = argparse.ArgumentParser(description="Fetch, deduplicate and cache news feeds")
    parser.add_argument('--loop', action='store_true', help='Keep polling instead of running once')
    parser.add_argument('--interval', type=int, help='Seconds between polls (with --loop)')
    parser.add_argument('--cache-dir', help='Cache root (overrides NEWS_CACHE_DIR)')
    parser.add_argument('--log-level', help='Log level (overrides LOG_LEVEL)')
    parser.add_argument('--limit', type=int, default=20, help='Number of newest items to print')
    args = parser.parse_args(argv)

    try:
        config = load_config()
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return 2

    if args.cache_dir:
        config.cache_dir = args.cache_dir
    if args.log_level:
        config.log_level = args.log_level

    try:
        setup_logging(
            log_level=config.log_level,
            log_dir=config.log_dir,
            enable_file_logging=config.log_dir is not None,
        )
    except ValueError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return 2
    pipeline = NewsPipeline(config)

    async def print_items(items: List[NewsItem]) -> None:
        for item in items[:args.limit]:
            print(_format_item(item))

    try:
        if args.loop:
            await pipeline.run_forever(interval_seconds=args.interval, on_items=print_items)
        else:
            items = await pipeline.run_cycle()
            await print_items(items)
            metrics = pipeline.get_metrics()
            if metrics:
                print(
                    f"✅ {metrics.items_total} items ({len(metrics.feeds_failed)} feeds failed, "
                    f"{metrics.entries_dropped} entries dropped) in {metrics.total_time():.2f}s"
                )
    except KeyboardInterrupt:
        print("\n⚠️ Shutting down")
    except (ConfigurationError, StoreIOError) as e:
        logging.getLogger(__name__).exception("Fatal error in news pipeline")
        print(f"❌ Fatal error: {e}", file=sys.stderr)
        return 1
    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
