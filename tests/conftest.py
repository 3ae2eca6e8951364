"""Pytest configuration and shared fixtures.

This module provides fixtures used across all test modules.
"""

import os
from collections.abc import AsyncGenerator, Generator
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

# Set test environment before importing app modules
os.environ["APP_ENV"] = "development"
os.environ["APP_DEBUG"] = "true"


LOGIN_PY = '''def login(user, password):
    """Authenticate a user login."""
    session = create_session(user)
    return check_password(user, password)
'''

LOGOUT_PY = '''def logout(session):
    """End a session."""
    session.clear()
'''

README_MD = """# Demo

A small demo project.
"""


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    """Create a temporary storage root for indexes and registry."""
    root = tmp_path / "storage"
    root.mkdir()
    return root


@pytest.fixture
def mock_settings(storage_root: Path) -> Generator[Any, None, None]:
    """Provide settings pointing at a temporary storage root.

    Args:
        storage_root: Temporary storage directory.

    Yields:
        Settings instance.
    """
    with patch.dict(
        os.environ,
        {
            "APP_ENV": "development",
            "APP_DEBUG": "true",
            "STORAGE_ROOT": str(storage_root),
            "INDEXING_DEBOUNCE_MS": "50",
        },
    ):
        # Clear cached settings
        from codebase_indexer.config import get_settings

        get_settings.cache_clear()
        yield get_settings()
        get_settings.cache_clear()


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Create a small project tree.

    Layout::

        src/auth/login.py
        src/auth/logout.py
        README.md
        logo.png                  (binary)
        node_modules/lib/index.js (pruned)
    """
    root = tmp_path / "demo"
    (root / "src" / "auth").mkdir(parents=True)
    (root / "src" / "auth" / "login.py").write_text(LOGIN_PY)
    (root / "src" / "auth" / "logout.py").write_text(LOGOUT_PY)
    (root / "README.md").write_text(README_MD)
    (root / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n\x00\x00")
    (root / "node_modules" / "lib").mkdir(parents=True)
    (root / "node_modules" / "lib" / "index.js").write_text("module.exports = {};\n")
    return root


@pytest.fixture
def manager(mock_settings: Any) -> Any:
    """Create a project manager on the temporary storage root."""
    from codebase_indexer.projects.manager import ProjectManager

    return ProjectManager(mock_settings)


@pytest.fixture
def app(manager: Any) -> Any:
    """Create a test application instance.

    Args:
        manager: Project manager fixture.

    Returns:
        FastAPI application instance.
    """
    from codebase_indexer.main import create_app

    return create_app(manager)


@pytest.fixture
def client(app: Any) -> Generator[TestClient, None, None]:
    """Create a synchronous test client.

    Args:
        app: FastAPI application instance.

    Yields:
        TestClient instance.
    """
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
async def async_client(app: Any, manager: Any) -> AsyncGenerator[AsyncClient, None]:
    """Create an asynchronous test client.

    The transport does not run the lifespan, so the manager is installed
    directly.

    Args:
        app: FastAPI application instance.
        manager: Project manager fixture.

    Yields:
        AsyncClient instance.
    """
    from codebase_indexer.api.dependencies import set_manager

    set_manager(manager)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    set_manager(None)


# Markers for test categories
def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "slow: Slow tests")
