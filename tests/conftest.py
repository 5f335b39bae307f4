"""Pytest configuration and fixtures for kbkit tests."""

from pathlib import Path

import pytest

from kbkit.core.options import EngineOptions
from kbkit.fs.memory import InMemoryFileSystem

KB_ROOT = Path("/kb")


@pytest.fixture
def kb_root() -> Path:
    """Managed root used by in-memory tests."""
    return KB_ROOT


@pytest.fixture
def sample_kb() -> dict[str, str]:
    """A small interlinked knowledge base."""
    return {
        "/kb/index.md": (
            "# Index\n\n"
            "See the [guide](guide.md) and [setup](docs/setup.md#install).\n"
            "External: [site](https://example.com/guide.md)\n"
        ),
        "/kb/guide.md": "# Guide\n\nBack to [index](index.md). Jump to [top](#guide).\n",
        "/kb/docs/setup.md": "# Setup\n\nRead the [guide](../guide.md) first.\n",
        "/kb/docs/logo.png": "PNG",
    }


@pytest.fixture
def memory_fs(sample_kb: dict[str, str]) -> InMemoryFileSystem:
    """In-memory filesystem pre-populated with the sample knowledge base."""
    return InMemoryFileSystem(sample_kb)


@pytest.fixture
def engine_options(kb_root: Path) -> EngineOptions:
    return EngineOptions(root=kb_root)
