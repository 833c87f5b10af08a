"""Shared pytest fixtures for cronocam tests."""

import tempfile
from collections.abc import Generator
from pathlib import Path
from unittest.mock import Mock

import pytest
import requests
from photos_fakes import SESSION_URL, make_response, success_body

from cronocam.database import UploadLedger


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp)


@pytest.fixture
def mock_db_path(temp_dir: Path) -> Path:
    """Create a temporary SQLite database path."""
    return temp_dir / "test_uploads.db"


@pytest.fixture
def ledger(mock_db_path: Path) -> Generator[UploadLedger, None, None]:
    db = UploadLedger(mock_db_path)
    yield db
    db.close()


@pytest.fixture
def fake_limiter() -> Mock:
    """Rate limiter stand-in that always grants a permit."""
    limiter = Mock()
    limiter.acquire.return_value = None
    return limiter


@pytest.fixture
def photos_session():
    """
    Mock requests.Session that speaks the Google Photos upload protocol.

    Start requests get a session URL, chunk requests get an empty body except
    the finalizing one which returns an upload token, and batchCreate
    succeeds. Tests can override ``batch_create_responses`` with a list of
    responses served in order.
    """
    session = Mock(spec=requests.Session)
    session.batch_create_responses = []

    def post(url, headers=None, data=None, json=None, timeout=None):
        headers = headers or {}
        if url.endswith("/v1/uploads") and headers.get("X-Goog-Upload-Command") == "start":
            return make_response(200, headers={"X-Goog-Upload-URL": SESSION_URL})
        if url == SESSION_URL:
            if "finalize" in headers.get("X-Goog-Upload-Command", ""):
                return make_response(200, text="upload-token-xyz")
            return make_response(200)
        if url.endswith("mediaItems:batchCreate"):
            if session.batch_create_responses:
                return session.batch_create_responses.pop(0)
            return make_response(200, json_body=success_body())
        raise AssertionError(f"Unexpected POST to {url}")

    session.post.side_effect = post
    return session


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration between tests."""
    import logging

    # Store original handlers
    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    original_level = root_logger.level

    yield

    # Restore original state
    root_logger.handlers = original_handlers
    root_logger.level = original_level
