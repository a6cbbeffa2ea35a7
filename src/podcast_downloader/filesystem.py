"""Filesystem utilities for podcast_downloader."""

from __future__ import annotations

import calendar
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional

from platformdirs import user_data_dir, user_downloads_dir, user_music_dir

from . import models

logger = logging.getLogger(__name__)

FINAL_EXTENSION = ".mp3"
TEMP_EXTENSION = ".part"
RSS_COPY_NAME = "rss.xml"
_PLATFORMDIR_APP_NAME = "podcast_downloader"

# Applied in order. Changing this renames every file on disk, and the next
# run would download everything again.
TITLE_REPLACEMENTS = (
    (" ", "_"),
    (":", "-"),
    ("/", "-"),
    ('"', ""),
    ("'", ""),
    ("*", "a"),
)


def _platformdirs_safe_roots() -> set[Path]:
    """Return resolved platformdirs locations considered safe for downloads."""

    roots: set[Path] = set()
    getters = (user_downloads_dir, user_music_dir, lambda: user_data_dir(_PLATFORMDIR_APP_NAME))
    for getter in getters:
        try:
            location = getter()
        # Fall back to next candidate on failure
        except Exception:  # nosec B112
            continue
        if not location:
            continue
        try:
            resolved = Path(location).expanduser().resolve()
        except (OSError, RuntimeError):
            continue
        roots.add(resolved)
    return roots


_PLATFORMDIR_SAFE_ROOTS = _platformdirs_safe_roots()


def sanitize_title(title: str) -> str:
    """Make an episode title safe to embed in a file name."""
    for old, new in TITLE_REPLACEMENTS:
        title = title.replace(old, new)
    return title


def unix_timestamp(published_at: datetime) -> int:
    """Seconds since the epoch, reading the naive datetime as UTC."""
    return calendar.timegm(published_at.timetuple())


def derive_names(episode: models.Episode) -> models.FilenamePair:
    """Return the temp and final file names for an episode.

    Both names depend only on the publish time and title, so the same episode
    maps to the same files on every run.
    """
    base_name = f"{unix_timestamp(episode.published_at)}-{sanitize_title(episode.title)}"
    return models.FilenamePair(
        temp_name=base_name + TEMP_EXTENSION,
        final_name=base_name + FINAL_EXTENSION,
    )


def write_file(path: str, data: bytes) -> None:
    """Persist arbitrary bytes to disk, creating parent directories as needed."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "wb") as handle:
        handle.write(data)


def validate_and_normalize_output_dir(path: str) -> str:
    """Validate an output directory path and return an absolute, normalized version."""
    if not path or not path.strip():
        raise ValueError("Output directory path cannot be empty")

    path_obj = Path(path).expanduser()
    try:
        resolved = path_obj.resolve()
    except (OSError, RuntimeError) as exc:
        raise ValueError(f"Invalid output directory path: {path} ({exc})")

    if resolved.exists() and not resolved.is_dir():
        raise ValueError(f"Output path exists and is not a directory: {resolved}")

    safe_roots = {Path.cwd().resolve(), Path.home().resolve(), *_PLATFORMDIR_SAFE_ROOTS}
    if not any(resolved == root or resolved.is_relative_to(root) for root in safe_roots):
        logger.warning(
            f"Output directory {resolved} is outside recommended locations "
            "(home, downloads or music)."
        )
    return str(resolved)


def should_write(final_path: str, replace_existing: bool) -> bool:
    return replace_existing or not os.path.exists(final_path)


def commit_episode(
    data: bytes,
    episode: models.Episode,
    output_dir: str,
    replace_existing: bool,
    names: Optional[models.FilenamePair] = None,
) -> models.EpisodeResult:
    """Write a downloaded payload under its final name, atomically.

    The bytes go to the ``.part`` file first and are only renamed onto the
    ``.mp3`` name once fully written and flushed. A failed write never
    renames; a failed rename leaves the ``.part`` file in place.

    Args:
        data: Complete media payload
        episode: Episode the payload belongs to
        output_dir: Directory holding both the temp and the final file
        replace_existing: Overwrite a final file that already exists
        names: Precomputed names, derived from the episode when omitted

    Returns:
        EpisodeResult with status ``committed``, ``skipped`` or ``failed``
    """
    names = names or derive_names(episode)
    temp_path = os.path.join(output_dir, names.temp_name)
    final_path = os.path.join(output_dir, names.final_name)

    if not data:
        logger.debug("Nothing to commit for %s", episode.title)
        return models.EpisodeResult(episode=episode, status="skipped", path=final_path)

    # the file may have appeared while this episode was downloading
    if not should_write(final_path, replace_existing):
        logger.info(f"Skipping {episode.title}; {final_path} exists")
        return models.EpisodeResult(episode=episode, status="skipped", path=final_path)

    logger.info(f"{episode.title} --> {final_path}")
    try:
        with open(temp_path, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
    except OSError as exc:
        logger.error(f"Failed to write to {temp_path}. Error: {exc}")
        return models.EpisodeResult(
            episode=episode, status="failed", path=temp_path, error=str(exc)
        )

    try:
        os.replace(temp_path, final_path)
    except OSError as exc:
        logger.error(f"Failed to move {temp_path} to {final_path}. Error: {exc}")
        return models.EpisodeResult(
            episode=episode, status="failed", path=temp_path, error=str(exc)
        )

    return models.EpisodeResult(
        episode=episode, status="committed", path=final_path, bytes_written=len(data)
    )


__all__ = [
    "FINAL_EXTENSION",
    "TEMP_EXTENSION",
    "RSS_COPY_NAME",
    "TITLE_REPLACEMENTS",
    "sanitize_title",
    "unix_timestamp",
    "derive_names",
    "write_file",
    "validate_and_normalize_output_dir",
    "should_write",
    "commit_episode",
]
