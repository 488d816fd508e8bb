"""
Shared test fixtures and configuration.
"""

from pathlib import Path

import pytest

from sourcepkg.adapters.mock import MockAdapter
from sourcepkg.adapters.registry import AdapterRegistry
from sourcepkg.core.models.package import SourcePackage
from sourcepkg.core.persistence.store import MemoryCache


@pytest.fixture
def store(tmp_path: Path) -> MemoryCache:
    """In-memory state store with real build directories under tmp_path."""
    return MemoryCache(tmp_path / "cache")


@pytest.fixture
def shell() -> MockAdapter:
    """Recording stand-in for the command runner."""
    return MockAdapter(adapter_name="shell")


@pytest.fixture
def fetcher() -> MockAdapter:
    """Stand-in for the fetcher; reports a fresh download by default."""
    return MockAdapter(adapter_name="remote_file")


@pytest.fixture
def registry(shell: MockAdapter, fetcher: MockAdapter) -> AdapterRegistry:
    registry = AdapterRegistry()
    registry.register(shell)
    registry.register(fetcher)
    return registry


@pytest.fixture
def emacs() -> SourcePackage:
    return SourcePackage(
        name="emacs",
        source="http://ftp.gnu.org/gnu/emacs/emacs.tar.gz",
        version="23.1",
        configure={"prefix": "/usr/local"},
    )
