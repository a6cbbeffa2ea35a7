"""Service API for programmatic use of podcast_downloader.

This module provides a config-file-only entry point for non-interactive use,
such as a cron job or a systemd timer that mirrors a feed periodically.

Example:
    >>> from podcast_downloader import service, config
    >>>
    >>> config_dict = config.load_config_file("config.yaml")
    >>> cfg = config.Config(**config_dict)
    >>> result = service.run(cfg)
    >>> print(f"Downloaded {result.episodes_downloaded} episodes")

For periodic runs:
    # systemd service unit
    [Service]
    Type=oneshot
    ExecStart=python -m podcast_downloader.service --config /etc/podcasts/feed.yaml
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union

from pydantic import ValidationError

from . import __version__, config, workflow
from .exceptions import PodcastDownloaderError

logger = logging.getLogger(__name__)


@dataclass
class ServiceResult:
    """Result of a service run.

    Attributes:
        episodes_downloaded: Number of episodes committed to disk in this run
        summary: Human-readable summary message
        success: Whether the run completed successfully
        error: Error message if success is False, None otherwise
    """

    episodes_downloaded: int
    summary: str
    success: bool = True
    error: Optional[str] = None


def _failure(error_msg: str) -> ServiceResult:
    return ServiceResult(episodes_downloaded=0, summary="", success=False, error=error_msg)


def run(cfg: config.Config) -> ServiceResult:
    """Run the download pipeline with the given configuration.

    Fatal pipeline errors (feed fetch or feed document failures, invalid
    output directory) are reported through the result instead of raised.

    Args:
        cfg: Configuration object

    Returns:
        ServiceResult with the run outcome
    """
    workflow.apply_log_level(level=cfg.log_level, log_file=cfg.log_file, syslog=cfg.syslog)

    try:
        count, summary = workflow.run_pipeline(cfg)
    except (PodcastDownloaderError, ValueError) as exc:
        error_msg = str(exc)
        logger.error(f"Pipeline execution failed: {error_msg}")
        return _failure(error_msg)

    return ServiceResult(episodes_downloaded=count, summary=summary)


def run_from_config_file(config_path: Union[str, Path]) -> ServiceResult:
    """Run the pipeline from a configuration file.

    Args:
        config_path: Path to configuration file (JSON or YAML)

    Returns:
        ServiceResult with the run outcome; configuration problems are
        reported as an unsuccessful result

    Example:
        >>> from podcast_downloader import service
        >>> result = service.run_from_config_file("config.yaml")
        >>> if not result.success:
        ...     sys.exit(1)
    """
    try:
        config_dict = config.load_config_file(str(config_path))
        cfg = config.Config(**config_dict)
    except (ValueError, ValidationError) as exc:
        error_msg = f"Failed to load configuration file: {exc}"
        logger.error(error_msg)
        return _failure(error_msg)

    if not cfg.rss_url:
        error_msg = f"Configuration file {config_path} does not set 'rss'"
        logger.error(error_msg)
        return _failure(error_msg)

    return run(cfg)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for service mode.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = argparse.ArgumentParser(
        description="Podcast Downloader Service - Run pipeline from configuration file",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m podcast_downloader.service --config feed.yaml
        """,
    )
    parser.add_argument(
        "--config",
        required=True,
        help="Path to configuration file (JSON or YAML)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"podcast_downloader {__version__}",
    )

    args = parser.parse_args(argv)
    result = run_from_config_file(args.config)

    if result.success:
        print(result.summary)
        return 0
    print(f"Error: {result.error}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
