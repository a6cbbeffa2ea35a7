# This project is intended for personal, non-commercial use only.
# Respect the terms of the feeds you mirror.

"""Podcast Downloader - Mirror podcast episodes from an RSS feed.

This package downloads every episode enclosure listed in a feed into a
directory, naming files after the publication time and title, skipping
episodes already on disk and writing each file atomically.

Programmatic API Example:
    >>> import podcast_downloader
    >>>
    >>> config = podcast_downloader.Config(
    ...     rss_url="https://example.com/feed.xml",
    ...     output_dir="./episodes",
    ...     task_count=4,
    ... )
    >>> count, summary = podcast_downloader.run_pipeline(config)
    >>> print(f"Downloaded {count} episodes")

Service API Example (for periodic runs):
    >>> from podcast_downloader import service
    >>> result = service.run_from_config_file("config.yaml")

CLI Usage:
    $ podcast-downloader --rss-url https://example.com/feed.xml --output-dir ./episodes
    $ python -m podcast_downloader.cli --config config.yaml

Service Mode:
    $ python -m podcast_downloader.service --config config.yaml
"""

from __future__ import annotations

__version__ = "1.0.0"

from .config import Config, load_config_file  # noqa: E402
from .rss_parser import parse_feed, parse_item  # noqa: E402
from .workflow import run_pipeline  # noqa: E402

__all__ = [
    "Config",
    "load_config_file",
    "parse_feed",
    "parse_item",
    "run_pipeline",
    "__version__",
]
