"""Core workflow orchestration: main pipeline execution.

This module fetches the feed, parses it, and fans the episodes out to a
bounded pool of download workers.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import as_completed, ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from . import config, filesystem, metrics, models
from .episode_processor import FetchFn, make_fetcher, process_episode_download
from .exceptions import FeedFetchError, TransportError
from .rss_parser import parse_feed_results

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_HANDLER_NAME_PREFIX = "podcast_downloader"
RSS_FEED_LABEL = "RSS feed"


def syslog_priority(levelno: int) -> int:
    """Map a logging level onto the numeric priority used in syslog mode."""
    if levelno >= logging.CRITICAL:
        return 2
    if levelno >= logging.ERROR:
        return 3
    if levelno >= logging.WARNING:
        return 4
    if levelno >= logging.INFO:
        return 5
    return 6


class SyslogFormatter(logging.Formatter):
    """Render records as ``<priority>message`` for syslog/journald capture."""

    def __init__(self) -> None:
        super().__init__("%(message)s")

    def format(self, record: logging.LogRecord) -> str:
        return f"<{syslog_priority(record.levelno)}>{super().format(record)}"


def build_formatter(syslog: bool = False) -> logging.Formatter:
    return SyslogFormatter() if syslog else logging.Formatter(LOG_FORMAT)


def apply_log_level(level: str, log_file: Optional[str] = None, syslog: bool = False) -> None:
    """Apply logging level to root logger and configure handlers.

    Args:
        level: Log level string (e.g., 'DEBUG', 'INFO', 'WARNING')
        log_file: Optional path to log file. If provided, logs will be written to both
                  console and file.
        syslog: Use ``SyslogFormatter`` on the console handler instead of the
                human-readable format

    Raises:
        ValueError: If log level is invalid
        OSError: If log file cannot be created or written to
    """
    numeric_level = getattr(logging, str(level).upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")

    root_logger = logging.getLogger()
    console_name = f"{_HANDLER_NAME_PREFIX}.console"

    if not root_logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.set_name(console_name)
        root_logger.addHandler(console_handler)

    root_logger.setLevel(numeric_level)
    for handler in root_logger.handlers:
        handler.setLevel(numeric_level)
        if handler.get_name() == console_name:
            handler.setFormatter(build_formatter(syslog))

    if log_file:
        file_handler_exists = any(
            isinstance(h, logging.FileHandler) and h.baseFilename == os.path.abspath(log_file)
            for h in root_logger.handlers
        )

        if not file_handler_exists:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
            file_handler.set_name(f"{_HANDLER_NAME_PREFIX}.file")
            file_handler.setLevel(numeric_level)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            root_logger.addHandler(file_handler)
            logger.info(f"Logging to file: {log_file}")


def run_pipeline(cfg: config.Config, fetch: Optional[FetchFn] = None) -> Tuple[int, str]:
    """Execute the download pipeline.

    1. Validate and create the output directory
    2. Fetch the feed document
    3. Persist ``rss.xml`` on a background thread (never awaited)
    4. Parse the feed, dropping malformed items
    5. Download episodes with at most ``cfg.task_count`` in flight

    Args:
        cfg: Configuration object with all pipeline settings
        fetch: Byte-fetch callable; defaults to the HTTP downloader

    Returns:
        Tuple[int, str]: number of episodes committed and a human-readable summary

    Raises:
        ValueError: If the RSS URL is missing or the output directory is invalid
        FeedFetchError: If the feed document cannot be downloaded
        FeedDocumentError: If the feed document is not well-formed XML

    Example:
        >>> from podcast_downloader import Config, run_pipeline
        >>> cfg = Config(rss_url="https://example.com/feed.xml", output_dir="./episodes")
        >>> count, summary = run_pipeline(cfg)
    """
    pipeline_metrics = metrics.Metrics()

    output_dir = _setup_output_dir(cfg)
    cfg = cfg.model_copy(update={"output_dir": output_dir})
    fetch = fetch or make_fetcher(cfg)

    fetch_start = time.time()
    rss_bytes = _fetch_feed(cfg, fetch)
    pipeline_metrics.record_stage("fetching_feed", time.time() - fetch_start)

    _start_raw_feed_writer(rss_bytes, output_dir)

    parse_start = time.time()
    episodes, failures = parse_feed_results(rss_bytes)
    pipeline_metrics.episodes_parsed_total = len(episodes)
    pipeline_metrics.items_rejected_total = len(failures)
    pipeline_metrics.record_stage("parsing", time.time() - parse_start)

    download_start = time.time()
    results = download_episodes(episodes, cfg, fetch=fetch, pipeline_metrics=pipeline_metrics)
    pipeline_metrics.record_stage("downloading", time.time() - download_start)

    pipeline_metrics.log_metrics()
    return _generate_pipeline_summary(results, failures, output_dir)


def _setup_output_dir(cfg: config.Config) -> str:
    output_dir = filesystem.validate_and_normalize_output_dir(cfg.output_dir)
    os.makedirs(output_dir, exist_ok=True)
    logger.debug("Effective output dir=%s", output_dir)
    return output_dir


def _fetch_feed(cfg: config.Config, fetch: FetchFn) -> bytes:
    if cfg.rss_url is None:
        raise ValueError("RSS URL is required")

    logger.info("Downloading RSS feed")
    try:
        rss_bytes = fetch(cfg.rss_url, RSS_FEED_LABEL)
    except TransportError as exc:
        raise FeedFetchError(f"Failed to fetch RSS feed: {exc}", url=cfg.rss_url) from exc
    logger.debug("Fetched RSS feed (%s bytes)", len(rss_bytes))
    return rss_bytes


def _start_raw_feed_writer(rss_bytes: bytes, output_dir: str) -> threading.Thread:
    """Write the raw feed to ``rss.xml`` without blocking episode processing.

    The thread is non-daemon so the interpreter finishes the write before
    exiting; its outcome is only ever logged.
    """
    output_path = os.path.join(output_dir, filesystem.RSS_COPY_NAME)

    def _write() -> None:
        logger.info(f"RSS --> {output_path}")
        try:
            filesystem.write_file(output_path, rss_bytes)
        except OSError as exc:
            logger.error(f"Failed to write RSS XML to {output_path}: {exc}")

    thread = threading.Thread(target=_write, name="rss-writer", daemon=False)
    thread.start()
    return thread


def _run_episode(
    episode: models.Episode,
    cfg: config.Config,
    fetch: FetchFn,
    pipeline_metrics: Optional[metrics.Metrics],
) -> models.EpisodeResult:
    try:
        return process_episode_download(episode, cfg, fetch, pipeline_metrics)
    except Exception as exc:
        logger.error(f"{episode.title} processing raised an unexpected error: {exc}")
        return models.EpisodeResult(episode=episode, status="failed", error=str(exc))


def download_episodes(
    episodes: Sequence[models.Episode],
    cfg: config.Config,
    fetch: Optional[FetchFn] = None,
    pipeline_metrics: Optional[metrics.Metrics] = None,
) -> List[models.EpisodeResult]:
    """Download episodes with at most ``cfg.task_count`` fetches in flight.

    Episodes are submitted in feed order but results are collected as they
    complete, so the returned list is in completion order. A failure in one
    episode, including an unexpected exception inside its worker, becomes a
    failed result and never affects the others.

    Args:
        episodes: Parsed episodes, in feed order
        cfg: Configuration (task_count, output_dir, replace_existing)
        fetch: Byte-fetch callable; defaults to the HTTP downloader
        pipeline_metrics: Optional metrics collector

    Returns:
        One EpisodeResult per episode
    """
    if not episodes:
        logger.info("No episodes to download")
        return []

    fetch = fetch or make_fetcher(cfg)
    results: List[models.EpisodeResult] = []
    logger.info(f"Downloading {len(episodes)} episodes with {cfg.task_count} tasks")

    if cfg.task_count <= 1 or len(episodes) == 1:
        for episode in episodes:
            result = _run_episode(episode, cfg, fetch, pipeline_metrics)
            results.append(result)
            if pipeline_metrics is not None:
                pipeline_metrics.record_result(result)
        return results

    with ThreadPoolExecutor(max_workers=cfg.task_count, thread_name_prefix="episode") as executor:
        future_map = {
            executor.submit(process_episode_download, episode, cfg, fetch, pipeline_metrics): (
                episode
            )
            for episode in episodes
        }
        for future in as_completed(future_map):
            episode = future_map[future]
            try:
                result = future.result()
            except Exception as exc:
                logger.error(f"{episode.title} processing raised an unexpected error: {exc}")
                result = models.EpisodeResult(episode=episode, status="failed", error=str(exc))
            results.append(result)
            if pipeline_metrics is not None:
                pipeline_metrics.record_result(result)

    return results


def _generate_pipeline_summary(
    results: Sequence[models.EpisodeResult],
    failures: Sequence[models.ItemFailure],
    output_dir: str,
) -> Tuple[int, str]:
    """Build the run summary.

    Returns:
        Tuple[int, str]: episodes committed and a multi-line summary message
    """
    committed = sum(1 for r in results if r.status == "committed")
    skipped = sum(1 for r in results if r.status == "skipped")
    failed = [r for r in results if r.failed]

    summary_lines = [f"Done. episodes_downloaded={committed}"]
    if skipped:
        summary_lines.append(f"  - Episodes skipped: {skipped}")
    if failed:
        summary_lines.append(f"  - Download errors: {len(failed)}")
        for result in failed:
            summary_lines.append(f"      {result.episode.title}: {result.error}")
    if failures:
        summary_lines.append(f"  - Items rejected: {len(failures)}")
    summary_lines.append(f"  - Output directory: {output_dir}")
    return committed, "\n".join(summary_lines)
