"""
Filesystem locations for the news cache: the cache root and image paths.
"""

import logging
from pathlib import Path, PurePosixPath
from typing import Optional, Union

from platformdirs import user_cache_dir

logger = logging.getLogger(__name__)

APP_NAME = "News App"
APP_AUTHOR = "Big Endian"

_URL_SCHEMES = ("https://", "http://")


class ConfigurationError(Exception):
    """Raised when the pipeline cannot be configured (e.g. no usable cache root)"""
    pass


def default_cache_root() -> Path:
    """Platform cache directory for the application."""
    return Path(user_cache_dir(APP_NAME, APP_AUTHOR))


def resolve_cache_root(override: Optional[Union[str, Path]] = None) -> Path:
    """
    Return the cache root, creating it when absent.

    Args:
        override: Explicit directory to use instead of the platform default

    Raises:
        ConfigurationError: if the directory cannot be determined or created
    """
    try:
        root = Path(override).expanduser() if override else default_cache_root()
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid cache directory {override!r}: {e}") from e

    try:
        root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigurationError(f"Cannot create cache directory {root}: {e}") from e

    if not root.is_dir():
        raise ConfigurationError(f"Cache root {root} is not a directory")

    logger.debug(f"Using cache root {root}")
    return root


def image_path_for_url(image_url: str, cache_root: Union[str, Path]) -> Optional[Path]:
    """
    Map an image URL to its location in the image cache.

    The scheme prefix is stripped and the remainder is joined onto the cache
    root, so ``https://example.com/img/a.jpg`` lands at
    ``<root>/example.com/img/a.jpg``. Returns None for URLs that would not
    stay under the root.
    """
    remainder = image_url.strip()
    for scheme in _URL_SCHEMES:
        if remainder.startswith(scheme):
            remainder = remainder[len(scheme):]
            break

    remainder = remainder.lstrip("/")
    if not remainder or ".." in PurePosixPath(remainder).parts:
        logger.debug(f"No cache path for image URL '{image_url}'")
        return None

    return Path(cache_root) / remainder
