"""Simple in-memory metrics collector for pipeline runs."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List

from . import models

logger = logging.getLogger(__name__)


@dataclass
class Metrics:
    """In-memory metrics collector for one pipeline run.

    Counters are updated from the coordinating thread as results are drained,
    but ``record_result`` takes a lock so workers may call it directly too.
    """

    run_duration_seconds: float = 0.0
    episodes_parsed_total: int = 0
    items_rejected_total: int = 0
    episodes_committed_total: int = 0
    episodes_skipped_total: int = 0
    errors_total: int = 0
    bytes_downloaded_total: int = 0

    time_fetching_feed: float = 0.0
    time_parsing: float = 0.0
    time_downloading: float = 0.0

    download_times: List[float] = field(default_factory=list)

    _start_time: float = field(default_factory=time.time, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def record_stage(self, stage: str, duration: float) -> None:
        """Record time spent in a stage ("fetching_feed", "parsing", "downloading")."""
        if stage == "fetching_feed":
            self.time_fetching_feed += duration
        elif stage == "parsing":
            self.time_parsing += duration
        elif stage == "downloading":
            self.time_downloading += duration

    def record_download_time(self, duration: float) -> None:
        with self._lock:
            self.download_times.append(duration)

    def record_result(self, result: models.EpisodeResult) -> None:
        with self._lock:
            if result.status == "committed":
                self.episodes_committed_total += 1
                self.bytes_downloaded_total += result.bytes_written
            elif result.status == "skipped":
                self.episodes_skipped_total += 1
            else:
                self.errors_total += 1

    def finish(self) -> Dict[str, Any]:
        """Calculate final metrics and return as dict."""
        self.run_duration_seconds = time.time() - self._start_time
        avg_download = (
            round(sum(self.download_times) / len(self.download_times), 2)
            if self.download_times
            else 0.0
        )
        return {
            "run_duration_seconds": round(self.run_duration_seconds, 2),
            "episodes_parsed_total": self.episodes_parsed_total,
            "items_rejected_total": self.items_rejected_total,
            "episodes_committed_total": self.episodes_committed_total,
            "episodes_skipped_total": self.episodes_skipped_total,
            "errors_total": self.errors_total,
            "bytes_downloaded_total": self.bytes_downloaded_total,
            "time_fetching_feed": round(self.time_fetching_feed, 2),
            "time_parsing": round(self.time_parsing, 2),
            "time_downloading": round(self.time_downloading, 2),
            "avg_download_seconds": avg_download,
            "download_count": len(self.download_times),
        }

    def log_metrics(self) -> None:
        """Log every metric on its own line at DEBUG level."""
        summary_lines = ["Pipeline finished (detailed metrics):"]
        for key, value in self.finish().items():
            readable_key = key.replace("_", " ").title()
            summary_lines.append(f"  - {readable_key}: {value}")
        logger.debug("\n".join(summary_lines))
