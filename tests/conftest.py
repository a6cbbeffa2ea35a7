"""Shared fixtures and test utilities for podcast_downloader tests.

This module contains:
- Test constants
- Helper functions for creating test objects and RSS documents
- A fake fetcher standing in for HTTP
- Fixtures that keep environment overrides out of the tests

All test files can import from this module using pytest's conftest.py mechanism.
"""

import threading
from datetime import datetime

import pytest

from podcast_downloader import config, models

# Test constants
TEST_BASE_URL = "https://example.com"
TEST_FEED_URL = "https://example.com/feed.xml"
TEST_MEDIA_URL = f"{TEST_BASE_URL}/episode.mp3"
TEST_EPISODE_TITLE = "Hello"
TEST_EPISODE_TITLE_SPECIAL = "Ep 1: A/B *"
TEST_EPISODE_TITLE_SPECIAL_SANITIZED = "Ep_1-_A-B_a"
TEST_PUB_DATE = "Mon, 01 Jan 2024 10:00:00 +0000"
TEST_PUB_DATETIME = datetime(2024, 1, 1, 10, 0, 0)
TEST_TIMESTAMP = 1704103200
TEST_MEDIA_BYTES = b"ID3\x04\x00fake-mp3-payload"
TEST_USER_AGENT = "test-agent"

ENV_OVERRIDES = ("LOG_LEVEL", "LOG_FILE", "OUTPUT_DIR", "TASK_COUNT", "TIMEOUT")


def build_item_xml(title=None, pub_date=None, media_url=None, extra=""):
    """Build one <item> element; any field left as None is omitted."""
    parts = ["<item>"]
    if title is not None:
        parts.append(f"<title>{title}</title>")
    if pub_date is not None:
        parts.append(f"<pubDate>{pub_date}</pubDate>")
    if media_url is not None:
        parts.append(f'<enclosure url="{media_url}" type="audio/mpeg" length="1"/>')
    parts.append(extra)
    parts.append("</item>")
    return "".join(parts)


def build_rss_xml(items, channel_title="Test Feed"):
    """Wrap item markup into a complete RSS 2.0 document."""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0"><channel>'
        f"<title>{channel_title}</title>"
        f"{''.join(items)}"
        "</channel></rss>"
    )


def build_rss_xml_with_media(title, media_url, pub_date=TEST_PUB_DATE):
    return build_rss_xml([build_item_xml(title, pub_date, media_url)])


def create_test_config(**overrides):
    """Create test Config object with defaults.

    Args:
        **overrides: Fields to override from defaults

    Returns:
        config.Config object with test defaults
    """
    defaults = {
        "rss_url": TEST_FEED_URL,
        "output_dir": ".",
        "task_count": 1,
        "user_agent": TEST_USER_AGENT,
        "timeout": 5,
        "log_level": "INFO",
    }
    defaults.update(overrides)
    return config.Config(**defaults)


def create_test_episode(**overrides):
    """Create test Episode object with defaults."""
    defaults = {
        "url": TEST_MEDIA_URL,
        "title": TEST_EPISODE_TITLE,
        "published_at": TEST_PUB_DATETIME,
    }
    defaults.update(overrides)
    return models.Episode(**defaults)


class FakeFetcher:
    """Stand-in for ``downloader.fetch_bytes`` keyed by URL.

    Values may be bytes or an exception instance to raise. Every call is
    recorded with its progress label, and the peak number of concurrent calls
    is tracked. ``delays`` maps URLs to their own delay, overriding ``delay``.
    """

    def __init__(self, responses=None, delay=0.0, delays=None):
        self.responses = dict(responses or {})
        self.delay = delay
        self.delays = dict(delays or {})
        self.calls = []
        self.labels = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def __call__(self, url, label=None):
        with self._lock:
            self.calls.append(url)
            self.labels.append(label)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self.delays.get(url, self.delay)
            if delay:
                threading.Event().wait(delay)
            response = self.responses.get(url, TEST_MEDIA_BYTES)
            if isinstance(response, Exception):
                raise response
            return response
        finally:
            with self._lock:
                self.in_flight -= 1


class MockHTTPResponse:
    """Simple mock for streamed HTTP responses."""

    def __init__(self, *, content=b"", url="", headers=None, chunks=None, status_code=200):
        self.content = content
        self.url = url
        self.headers = headers or {}
        self.status_code = status_code
        self._chunks = chunks if chunks is not None else [content]
        self.closed = False

    def raise_for_status(self):
        if self.status_code >= 400:
            import requests

            raise requests.HTTPError(f"{self.status_code} Error for url: {self.url}")
        return None

    def iter_content(self, chunk_size=1):
        for chunk in self._chunks:
            yield chunk

    def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def clear_env_overrides(monkeypatch):
    """Keep deployment environment variables from leaking into Config."""
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
