"""Per-episode work unit: existence check, fetch and commit."""

from __future__ import annotations

import logging
import os
import time
from typing import Callable, Optional

from . import config, downloader, filesystem, metrics, models
from .exceptions import TransportError

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024

# (url, progress label) -> full response body
FetchFn = Callable[[str, str], bytes]


def make_fetcher(cfg: config.Config) -> FetchFn:
    """Bind the configured User-Agent and timeout to ``downloader.fetch_bytes``."""

    def fetch(url: str, label: str) -> bytes:
        return downloader.fetch_bytes(url, cfg.user_agent, cfg.timeout, description=label)

    return fetch


def process_episode_download(
    episode: models.Episode,
    cfg: config.Config,
    fetch: FetchFn,
    pipeline_metrics: Optional[metrics.Metrics] = None,
) -> models.EpisodeResult:
    """Download one episode and commit it under its final name.

    Episodes whose final file already exists are skipped before any network
    call unless ``cfg.replace_existing`` is set. Transport failures are logged
    and returned as a failed result; they are never raised.

    Args:
        episode: Episode to download
        cfg: Configuration (output_dir, replace_existing)
        fetch: Callable returning the full body for a URL, raising TransportError;
            the episode title is passed as its progress label
        pipeline_metrics: Optional metrics collector for download timings

    Returns:
        EpisodeResult describing what happened
    """
    names = filesystem.derive_names(episode)
    final_path = os.path.join(cfg.output_dir, names.final_name)

    if not filesystem.should_write(final_path, cfg.replace_existing):
        logger.info(f"Skipping {episode.title}; {final_path} exists")
        return models.EpisodeResult(episode=episode, status="skipped", path=final_path)

    logger.info(f"Downloading {episode.title}")
    start = time.time()
    try:
        data = fetch(episode.url, episode.title)
    except TransportError as exc:
        logger.error(f"Failed to download {episode.title}: {exc}")
        return models.EpisodeResult(episode=episode, status="failed", error=str(exc))
    elapsed = time.time() - start

    if pipeline_metrics is not None:
        pipeline_metrics.record_download_time(elapsed)
    logger.debug("Got %s bytes for %s", len(data), episode.title)

    if not data:
        logger.warning(f"Empty response for {episode.title}; nothing to write")
    elif downloader.should_log_download_summary():
        logger.info(
            "    downloaded %.2f MB in %.1fs: %s",
            len(data) / BYTES_PER_MB,
            elapsed,
            episode.title,
        )

    return filesystem.commit_episode(
        data, episode, cfg.output_dir, cfg.replace_existing, names=names
    )
