"""HTTP session management and the byte-fetch capability for podcast_downloader."""

from __future__ import annotations

import atexit
import logging
import sys
import threading
from contextlib import contextmanager
from typing import Callable, cast, ContextManager, Iterator, List, Optional, Protocol

import requests
from requests.adapters import HTTPAdapter
from requests.utils import requote_uri

from .exceptions import TransportError

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 256
# Failed requests are reported, never retried.
HTTP_MAX_RETRIES = 0

_THREAD_LOCAL = threading.local()
_SESSION_REGISTRY: List[requests.Session] = []
_SESSION_REGISTRY_LOCK = threading.Lock()

_urllib3_logs_suppressed = False


def _suppress_urllib3_debug_logs() -> None:
    """Hide urllib3 connection chatter when the root logger is at DEBUG."""
    global _urllib3_logs_suppressed
    if _urllib3_logs_suppressed:
        return

    root_logger = logging.getLogger()
    root_level = root_logger.level if root_logger.level else logging.INFO
    if root_level <= logging.DEBUG:
        for logger_name in ("urllib3", "urllib3.connectionpool", "urllib3.connection"):
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    _urllib3_logs_suppressed = True


def should_log_download_summary() -> bool:
    """Return True when explicit download summaries should be emitted."""
    return not sys.stderr.isatty()


def normalize_url(url: str) -> str:
    """Normalize URLs while preserving already-encoded segments."""
    normalized = requote_uri(url)
    if normalized != url:
        logger.debug("Normalized URL %s -> %s", url, normalized)
    return cast(str, normalized)


def _configure_http_session(session: requests.Session) -> None:
    adapter = HTTPAdapter(max_retries=HTTP_MAX_RETRIES)
    session.mount("http://", adapter)
    session.mount("https://", adapter)


def _get_thread_request_session() -> requests.Session:
    _suppress_urllib3_debug_logs()

    session = getattr(_THREAD_LOCAL, "session", None)
    if session is None:
        session = requests.Session()
        _configure_http_session(session)
        setattr(_THREAD_LOCAL, "session", session)
        with _SESSION_REGISTRY_LOCK:
            _SESSION_REGISTRY.append(session)
        logger.debug("Created new thread-local HTTP session %s", hex(id(session)))
    return session


def _close_all_sessions() -> None:
    with _SESSION_REGISTRY_LOCK:
        for session in _SESSION_REGISTRY:
            try:
                session.close()
            # Best-effort cleanup; ignore shutdown errors
            except Exception:  # pragma: no cover # nosec B110
                pass
        _SESSION_REGISTRY.clear()


atexit.register(_close_all_sessions)


class DownloadProgress(Protocol):
    """Receives the size of every chunk read while a body downloads."""

    def update(self, advance: int) -> None: ...


# (expected size or None, label) -> context manager yielding a DownloadProgress
ProgressFactory = Callable[[Optional[int], str], ContextManager[DownloadProgress]]


class _SilentProgress:
    def update(self, advance: int) -> None:
        return None


@contextmanager
def _silent_progress(total: Optional[int], label: str) -> Iterator[DownloadProgress]:
    yield _SilentProgress()


_progress_factory: ProgressFactory = _silent_progress


def set_progress_factory(factory: Optional[ProgressFactory]) -> None:
    """Choose how downloads report progress; None turns reporting off."""
    global _progress_factory
    _progress_factory = factory or _silent_progress


def _content_length(resp: requests.Response) -> Optional[int]:
    content_length = resp.headers.get("Content-Length")
    try:
        return int(content_length) if content_length else None
    except (TypeError, ValueError):
        return None


def fetch_bytes(
    url: str, user_agent: str, timeout: int, *, description: Optional[str] = None
) -> bytes:
    """Download a URL into memory and return the complete body.

    Args:
        url: Resource to fetch
        user_agent: User-Agent header value
        timeout: Connect and read timeout in seconds
        description: Label shown by the progress reporter; defaults to the URL

    Returns:
        The full response body

    Raises:
        TransportError: On connection errors, timeouts, non-success status codes
            or a body that cannot be read to the end
    """
    normalized_url = normalize_url(url)
    headers = {"User-Agent": user_agent}
    session = _get_thread_request_session()
    logger.debug("GET %s (timeout=%s)", normalized_url, timeout)

    try:
        resp = session.get(normalized_url, headers=headers, timeout=timeout, stream=True)
    except requests.RequestException as exc:
        raise TransportError(f"Failed to fetch {url}: {exc}", url=url) from exc

    try:
        try:
            resp.raise_for_status()
        except requests.HTTPError as exc:
            raise TransportError(
                f"Failed to fetch {url}: {exc}", url=url, status_code=resp.status_code
            ) from exc

        body_parts: List[bytes] = []
        total_size = _content_length(resp)
        with _progress_factory(total_size, description or url) as reporter:
            for chunk in resp.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                if not chunk:
                    continue
                body_parts.append(chunk)
                reporter.update(len(chunk))
        return b"".join(body_parts)
    except (requests.RequestException, OSError) as exc:
        raise TransportError(f"Failed to read response from {url}: {exc}", url=url) from exc
    finally:
        resp.close()


__all__ = [
    "DOWNLOAD_CHUNK_SIZE",
    "DownloadProgress",
    "ProgressFactory",
    "fetch_bytes",
    "normalize_url",
    "set_progress_factory",
    "should_log_download_summary",
]
