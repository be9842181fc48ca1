"""Per-pattern progress tracking and ETA calculation."""

import time
from datetime import timedelta
from typing import Optional

import structlog

from utils.logging import get_logger


class ProgressTracker:
    """Logs the packing progress of one archive job."""

    def __init__(
        self,
        pattern: str,
        quiet: bool = False,
        update_interval: float = 5.0,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize progress tracker.

        Args:
            pattern: Raw pattern text of the tracked job
            quiet: If True, suppress progress output (for cron)
            update_interval: Minimum seconds between progress updates
            logger: Optional logger instance
        """
        self.pattern = pattern
        self.quiet = quiet
        self.update_interval = update_interval
        self.logger = (logger or get_logger("progress")).bind(pattern=pattern)

        self.total: int = 0
        self.processed: int = 0
        self.start_time: Optional[float] = None
        self.last_update_time: Optional[float] = None

    def start(self, total: int) -> None:
        """Start tracking a job with ``total`` entries."""
        self.total = total
        self.processed = 0
        self.start_time = time.monotonic()
        self.last_update_time = self.start_time

        if not self.quiet:
            self.logger.info("Processing matched results", total=total)

    def update(self, processed: int) -> None:
        """Record the number of entries packed so far."""
        self.processed = processed
        now = time.monotonic()

        if self.quiet:
            return
        # Always report the final entry so the log shows N/N
        if (
            processed >= self.total
            or self.last_update_time is None
            or (now - self.last_update_time) >= self.update_interval
        ):
            self.logger.info(
                "Progress",
                processed=processed,
                total=self.total,
                percentage=f"{self.get_progress_percentage():.1f}%",
                rate=f"{self.rate:.1f} obj/s",
                eta=str(self.get_eta()) if self.get_eta() is not None else "N/A",
                elapsed=self.elapsed,
            )
            self.last_update_time = now

    def finish(self, success: bool = True) -> None:
        """Log the final summary for the job."""
        if self.quiet:
            return
        self.logger.info(
            "Total archived" if success else "Archiving failed",
            processed=self.processed,
            total=self.total,
            elapsed=self.elapsed,
        )

    @property
    def rate(self) -> float:
        """Entries per second since start."""
        if self.start_time is None:
            return 0.0
        elapsed = time.monotonic() - self.start_time
        return self.processed / elapsed if elapsed > 0 else 0.0

    @property
    def elapsed(self) -> str:
        """Elapsed time formatted as H:MM:SS."""
        if self.start_time is None:
            return "0:00:00"
        return str(timedelta(seconds=int(time.monotonic() - self.start_time)))

    def get_eta(self) -> Optional[timedelta]:
        """Get estimated time remaining, or None if it cannot be calculated."""
        rate = self.rate
        if rate <= 0 or self.processed >= self.total:
            return None
        return timedelta(seconds=int((self.total - self.processed) / rate))

    def get_progress_percentage(self) -> float:
        """Get current progress percentage (0.0 if the total is unknown)."""
        if self.total <= 0:
            return 0.0
        return min(100.0, (self.processed / self.total) * 100)
