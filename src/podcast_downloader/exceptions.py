"""Custom exceptions for podcast_downloader.

Only failures that cross a component boundary are exceptions. Per-item parse
failures are returned as ``models.ItemFailure`` values and per-episode
download outcomes as ``models.EpisodeResult`` values, so a single bad episode
never unwinds the caller.

Exception Hierarchy:
    PodcastDownloaderError (base)
    ├── FeedFetchError - Feed document could not be retrieved (fatal)
    ├── FeedDocumentError - Feed document is not well-formed XML (fatal)
    └── TransportError - One HTTP fetch failed (isolated to that episode)
"""

from typing import Optional


class PodcastDownloaderError(Exception):
    """Base exception for all podcast_downloader errors.

    Attributes:
        message: Human-readable error message
        suggestion: Optional suggestion for resolving the error
    """

    def __init__(self, message: str, suggestion: Optional[str] = None) -> None:
        self.message = message
        self.suggestion = suggestion
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [self.message]
        if self.suggestion:
            parts.append(f"Suggestion: {self.suggestion}")
        return " ".join(parts)


class TransportError(PodcastDownloaderError):
    """Raised when fetching a URL fails.

    Common causes:
    - DNS or connection failures
    - Read timeouts
    - Non-success HTTP status codes

    Example:
        >>> raise TransportError(
        ...     message="404 Client Error: Not Found",
        ...     url="https://example.com/ep1.mp3",
        ...     status_code=404,
        ... )
    """

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(message=message, suggestion=suggestion)


class FeedFetchError(PodcastDownloaderError):
    """Raised when the RSS feed document itself cannot be downloaded."""

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        self.url = url
        super().__init__(
            message=message,
            suggestion="Check that --rss-url is reachable and returns the feed XML",
        )


class FeedDocumentError(PodcastDownloaderError):
    """Raised when the feed document is not well-formed XML.

    Attributes:
        offset: Byte offset into the document where parsing stopped, if known
    """

    def __init__(self, message: str, offset: Optional[int] = None) -> None:
        self.offset = offset
        if offset is not None:
            message = f"{message} (at byte offset {offset})"
        super().__init__(message=message)
