"""Command-line interface helpers for podcast_downloader."""

from __future__ import annotations

import argparse
import logging
import sys
from contextlib import contextmanager
from typing import (
    Any,
    Callable,
    cast,
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    TYPE_CHECKING,
)
from urllib.parse import urlparse

from pydantic import ValidationError

from . import __version__, config, downloader, filesystem, workflow
from .exceptions import PodcastDownloaderError

if TYPE_CHECKING:  # pragma: no cover - typing only
    import tqdm

_LOGGER = logging.getLogger(__name__)

# Progress bar constants
TQDM_NCOLS = 80
TQDM_MIN_INTERVAL = 0.5
TQDM_MIN_ITERS = 1
BYTES_PER_KB = 1024

# Config file keys that name a field differently from its CLI destination
_CONFIG_KEY_ALIASES = {"rss_url": "rss"}


class _TqdmProgress:
    """Simple adapter that exposes tqdm's update interface."""

    def __init__(self, bar: "tqdm.tqdm") -> None:
        self._bar = bar

    def update(self, advance: int) -> None:
        self._bar.update(advance)


@contextmanager
def _tqdm_progress(total: Optional[int], label: str) -> Iterator[_TqdmProgress]:
    """Draw one tqdm bar per download, labelled with the episode title or feed."""
    from tqdm import tqdm

    kwargs: Dict[str, Any] = {"desc": label}
    if total is None:
        kwargs.update(
            total=None,
            unit="",
            leave=False,
            miniters=TQDM_MIN_ITERS,
            mininterval=TQDM_MIN_INTERVAL,
            bar_format="{desc}: {elapsed}",
            ncols=TQDM_NCOLS,
            dynamic_ncols=False,
        )
    else:
        kwargs.update(
            total=total,
            unit="B",
            unit_scale=True,
            unit_divisor=BYTES_PER_KB,
            leave=False,
        )

    with tqdm(**kwargs) as bar:
        yield _TqdmProgress(bar)


def _validate_rss_url(rss_value: str, errors: List[str]) -> None:
    """Validate RSS URL format.

    Args:
        rss_value: RSS URL string
        errors: List to append validation errors to
    """
    if not rss_value:
        errors.append("RSS URL is required")
        return

    parsed_obj = urlparse(rss_value)
    if parsed_obj.scheme not in ("http", "https"):
        errors.append(f"RSS URL must be http or https: {rss_value}")
    if not parsed_obj.netloc:
        errors.append(f"RSS URL must have a valid hostname: {rss_value}")


def validate_args(args: argparse.Namespace) -> None:
    """Validate parsed CLI arguments and raise ValueError when invalid."""
    errors: List[str] = []

    rss_value = (args.rss or "").strip()
    _validate_rss_url(rss_value, errors)

    if args.task_count is not None and args.task_count < config.MIN_TASK_COUNT:
        errors.append(
            f"--task-count must be at least {config.MIN_TASK_COUNT}, got: {args.task_count}"
        )

    if args.timeout is not None and args.timeout < config.MIN_TIMEOUT_SECONDS:
        errors.append(f"--timeout must be positive, got: {args.timeout}")

    if args.log_level is not None and args.log_level not in config.VALID_LOG_LEVELS:
        errors.append(
            f"--log-level must be one of {config.VALID_LOG_LEVELS}, got: {args.log_level}"
        )

    if args.output_dir:
        try:
            filesystem.validate_and_normalize_output_dir(args.output_dir)
        except ValueError as exc:
            errors.append(str(exc))

    if errors:
        raise ValueError("Invalid input parameters:\n  " + "\n  ".join(errors))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Download every episode enclosure listed in a podcast RSS feed."
    )
    parser.add_argument("--config", default=None, help="Path to configuration file (JSON or YAML)")
    parser.add_argument("--rss-url", dest="rss", default=None, help="Podcast RSS feed URL")
    parser.add_argument(
        "--output-dir",
        default=None,
        help=f"Directory for rss.xml and episode files (default: {config.DEFAULT_OUTPUT_DIR})",
    )
    parser.add_argument(
        "--task-count",
        type=int,
        default=None,
        help=f"Maximum concurrent episode downloads (default: {config.DEFAULT_TASK_COUNT})",
    )
    parser.add_argument(
        "--replace-existing",
        action="store_true",
        default=False,
        help="Download episodes even when their file already exists",
    )
    parser.add_argument(
        "--syslog",
        action="store_true",
        default=False,
        help="Prefix log lines with a numeric syslog priority",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=None,
        help=f"Request timeout in seconds (default: {config.DEFAULT_TIMEOUT_SECONDS})",
    )
    parser.add_argument("--user-agent", default=None, help="User-Agent header")
    parser.add_argument(
        "--log-level",
        default=None,
        type=str.upper,
        help=f"Logging level (default: {config.DEFAULT_LOG_LEVEL})",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Path to log file (logs are written to both console and file)",
    )
    parser.add_argument("--version", action="store_true", help="Show program version and exit")
    return parser


def _load_and_merge_config(
    parser: argparse.ArgumentParser, config_path: str, argv: Optional[Sequence[str]]
) -> argparse.Namespace:
    """Load configuration file and merge with CLI arguments.

    Values from the file become parser defaults, so explicit CLI flags win.

    Raises:
        ValueError: If the config file is invalid or names unknown options
    """
    config_data = config.load_config_file(config_path)
    config_data = {_CONFIG_KEY_ALIASES.get(key, key): value for key, value in config_data.items()}

    valid_dests = {action.dest for action in parser._actions if action.dest}
    valid_dests -= {"help", "config", "version"}
    unknown_keys = [key for key in config_data.keys() if key not in valid_dests]
    if unknown_keys:
        raise ValueError("Unknown config option(s): " + ", ".join(sorted(unknown_keys)))

    try:
        config.Config.model_validate(config_data)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc

    parser.set_defaults(**config_data)
    return parser.parse_args(argv)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments, optionally merging configuration file defaults."""
    parser = _build_parser()
    initial_args, _ = parser.parse_known_args(argv)

    if initial_args.version:
        print(f"podcast_downloader {__version__}")
        raise SystemExit(0)

    if initial_args.config:
        args = _load_and_merge_config(parser, initial_args.config, argv)
    else:
        args = parser.parse_args(argv)

    validate_args(args)
    return args


def _build_config(args: argparse.Namespace) -> config.Config:
    """Materialize a Config object from already-validated CLI arguments.

    Options left unset are omitted so environment overrides can apply.
    """
    payload: Dict[str, Any] = {
        "rss_url": args.rss,
        "replace_existing": args.replace_existing,
        "syslog": args.syslog,
    }
    optional_values = {
        "output_dir": args.output_dir,
        "task_count": args.task_count,
        "timeout": args.timeout,
        "user_agent": args.user_agent,
        "log_level": args.log_level,
        "log_file": args.log_file,
    }
    payload.update({key: value for key, value in optional_values.items() if value is not None})
    return cast(config.Config, config.Config.model_validate(payload))


def _log_configuration(cfg: config.Config, logger: logging.Logger) -> None:
    logger.debug("Configuration:")
    logger.debug(f"  RSS URL: {cfg.rss_url}")
    logger.debug(f"  Output Directory: {cfg.output_dir}")
    logger.debug(f"  Task Count: {cfg.task_count}")
    logger.debug(f"  Replace Existing: {cfg.replace_existing}")
    logger.debug(f"  Timeout: {cfg.timeout}s")
    logger.debug(f"  Log Level: {cfg.log_level}")
    logger.debug(f"  Log File: {cfg.log_file or 'console only'}")


def _use_interactive_progress(cfg: config.Config) -> bool:
    return not cfg.syslog and sys.stderr.isatty()


def main(
    argv: Optional[Sequence[str]] = None,
    *,
    apply_log_level_fn: Optional[Callable[..., None]] = None,
    run_pipeline_fn: Optional[Callable[[config.Config], Tuple[int, str]]] = None,
    logger: Optional[logging.Logger] = None,
) -> int:
    """Entry point for the CLI; returns an exit status code."""
    log = logger or _LOGGER
    if apply_log_level_fn is None:
        apply_log_level_fn = workflow.apply_log_level
    if run_pipeline_fn is None:
        run_pipeline_fn = workflow.run_pipeline

    try:
        args = parse_args(argv)
    except ValueError as exc:
        log.error(f"Error: {exc}")
        return 1

    try:
        cfg = _build_config(args)
    except ValidationError as exc:
        log.error(f"Invalid configuration: {exc}")
        return 1

    apply_log_level_fn(cfg.log_level, cfg.log_file, syslog=cfg.syslog)
    downloader.set_progress_factory(_tqdm_progress if _use_interactive_progress(cfg) else None)
    _log_configuration(cfg, log)

    try:
        _, summary = run_pipeline_fn(cfg)
    except (PodcastDownloaderError, ValueError) as exc:
        log.error(f"Error: {exc}")
        return 1

    log.info(summary)
    return 0


if __name__ == "__main__":  # pragma: no cover - script entry
    raise SystemExit(main())
