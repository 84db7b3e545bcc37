import asyncio
import io
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List

import aiohttp
from PIL import Image

from newscache.models.content import NewsItem

# Modes the PNG encoder accepts as they are
PNG_MODES = {"1", "L", "LA", "I", "I;16", "P", "RGB", "RGBA"}


@dataclass
class ImageCacheReport:
    """Per-URL outcome of one image caching pass"""
    downloaded: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)  # already on disk
    failed: Dict[str, str] = field(default_factory=dict)  # image url -> reason


class ImageCacheService:
    """
    Write-once image cache keyed by image URL.

    A file already present at an image's path is never re-fetched or
    re-validated. Each image is downloaded, decoded and re-encoded on its own,
    so one broken image only fails itself.
    """

    def __init__(self, max_concurrent_downloads: int = 8, timeout: int = 30):
        self.max_concurrent_downloads = max_concurrent_downloads
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def collect_targets(items: Iterable[NewsItem]) -> Dict[Path, str]:
        """Map each distinct image path to the first URL that resolves to it."""
        targets: Dict[Path, str] = {}
        for item in items:
            if item.image_url and item.image_path:
                targets.setdefault(item.image_path, item.image_url)
        return targets

    async def cache_images(self, items: Iterable[NewsItem]) -> ImageCacheReport:
        """Make sure every item's image exists in the cache."""
        targets = self.collect_targets(items)
        report = ImageCacheReport()
        if not targets:
            return report

        start_time = time.time()
        semaphore = asyncio.Semaphore(self.max_concurrent_downloads)
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        async with aiohttp.ClientSession(timeout=timeout) as session:
            tasks = [
                self._cache_with_limit(session, semaphore, url, path)
                for path, url in targets.items()
            ]
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        for (path, url), outcome in zip(targets.items(), outcomes):
            if isinstance(outcome, ImageFetchError):
                self.logger.warning(f"Image {url} not cached: {outcome}")
                report.failed[url] = str(outcome)
            elif isinstance(outcome, Exception):
                self.logger.error(f"Unexpected error caching image {url}: {outcome!r}", exc_info=outcome)
                report.failed[url] = repr(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            elif outcome:
                report.downloaded.append(url)
            else:
                report.skipped.append(url)

        elapsed = time.time() - start_time
        self.logger.info(
            f"Images: {len(report.downloaded)} downloaded, {len(report.skipped)} cached, "
            f"{len(report.failed)} failed in {elapsed:.2f}s"
        )
        return report

    async def _cache_with_limit(
        self,
        session: aiohttp.ClientSession,
        semaphore: asyncio.Semaphore,
        url: str,
        path: Path,
    ) -> bool:
        async with semaphore:
            return await self.cache_image(session, url, path)

    async def cache_image(self, session: aiohttp.ClientSession, url: str, path: Path) -> bool:
        """
        Download one image to ``path`` unless it is already there.

        Returns:
            True if the image was written, False if it was already cached

        Raises:
            ImageFetchError: when the image cannot be fetched, decoded or stored
        """
        if path.exists():
            return False

        try:
            data = await self._download(session, url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ImageFetchError(f"Download failed: {e!r}") from e

        await asyncio.to_thread(self._store_image, data, path)
        self.logger.debug(f"Cached image {url} -> {path}")
        return True

    async def _download(self, session: aiohttp.ClientSession, url: str) -> bytes:
        async with session.get(url) as resp:
            if resp.status != 200:
                raise ImageFetchError(f"HTTP {resp.status} for {url}")
            return await resp.read()

    @staticmethod
    def _store_image(data: bytes, path: Path) -> None:
        """
        Decode ``data`` and re-encode it at ``path``.

        The source format is kept when Pillow can write it; formats it can
        only read are stored as PNG.
        """
        tmp_name = None
        try:
            with Image.open(io.BytesIO(data)) as image:
                image.load()
                image_format = image.format or "PNG"
                Image.init()
                if image_format.upper() not in Image.SAVE:
                    image_format = "PNG"
                    if image.mode not in PNG_MODES:
                        image = image.convert("RGBA")
                path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".", suffix=".part")
                with os.fdopen(fd, "wb") as tmp_file:
                    image.save(tmp_file, format=image_format)
            os.replace(tmp_name, path)
            tmp_name = None
        except Exception as e:
            raise ImageFetchError(f"Cannot store image at {path}: {e!r}") from e
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)


class ImageFetchError(Exception):
    """Raised when one image cannot be fetched, decoded or written"""
    pass
