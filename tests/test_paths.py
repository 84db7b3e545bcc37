"""Tests for cache root resolution."""
from pathlib import Path

import pytest

from newscache.utils import paths
from newscache.utils.paths import ConfigurationError, resolve_cache_root


def test_override_is_created(tmp_path: Path):
    root = tmp_path / "a" / "b"

    resolved = resolve_cache_root(root)

    assert resolved == root
    assert root.is_dir()


def test_existing_directory_is_reused(tmp_path: Path):
    assert resolve_cache_root(str(tmp_path)) == tmp_path


def test_default_uses_platform_cache_dir(tmp_path: Path, monkeypatch):
    monkeypatch.setattr(paths, "user_cache_dir", lambda app, author: str(tmp_path / author / app))

    resolved = resolve_cache_root()

    assert resolved == tmp_path / "Big Endian" / "News App"
    assert resolved.is_dir()


def test_uncreatable_root_raises_configuration_error(tmp_path: Path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")

    with pytest.raises(ConfigurationError):
        resolve_cache_root(blocker / "cache")


def test_root_that_is_a_file_raises_configuration_error(tmp_path: Path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")

    with pytest.raises(ConfigurationError):
        resolve_cache_root(blocker)
