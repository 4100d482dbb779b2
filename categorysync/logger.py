"""
Structured logging system for categorysync.

Provides centralized logging with console and file outputs, plus
run metrics for monitoring how category convergence jobs behave.
"""

import logging
import sys
from pathlib import Path
from typing import Optional
from datetime import datetime
import json


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks metrics for monitoring convergence runs.
    """

    def __init__(
        self,
        name: str = "categorysync",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers.clear()  # Remove existing handlers

        self.metrics = {
            "runs_attempted": 0,
            "runs_succeeded": 0,
            "soft_skips": 0,
            "recoverable_failures": 0,
            "revisions_processed": 0,
            "notifications_emitted": 0,
            "batch_commits": 0,
            "feed_deliveries": 0,
            "feed_failures": 0,
            "errors_by_type": {},
        }

        # Console handler
        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        # File handler
        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"categorysync_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # Always log everything to file
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    def debug(self, message: str, **kwargs):
        """Log debug message with optional context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        """Log info message with optional context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with optional context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with optional context."""
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message with optional context."""
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        """Internal logging method with context."""
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def record_run_attempt(self):
        """Increment the convergence run counter."""
        self.metrics["runs_attempted"] += 1

    def record_run_success(self, revisions: int, notifications: int, commits: int):
        """Record a completed run and what it did."""
        self.metrics["runs_succeeded"] += 1
        self.metrics["revisions_processed"] += revisions
        self.metrics["notifications_emitted"] += notifications
        self.metrics["batch_commits"] += commits

    def record_soft_skip(self):
        """Record a run that ended as a benign no-op."""
        self.metrics["soft_skips"] += 1

    def record_recoverable_failure(self, error_type: str):
        """Record a run that must be retried by the queue."""
        self.metrics["recoverable_failures"] += 1
        self.record_error(error_type)

    def record_error(self, error_type: str):
        """Track an error by type."""
        if error_type not in self.metrics["errors_by_type"]:
            self.metrics["errors_by_type"][error_type] = 0
        self.metrics["errors_by_type"][error_type] += 1

    def record_feed_delivery(self, ok: bool):
        """Record an outbound recent-changes feed delivery."""
        if ok:
            self.metrics["feed_deliveries"] += 1
        else:
            self.metrics["feed_failures"] += 1

    def get_metrics(self) -> dict:
        """Return current metrics."""
        metrics_copy = self.metrics.copy()
        metrics_copy["errors_by_type"] = dict(self.metrics["errors_by_type"])
        attempts = metrics_copy["runs_attempted"]
        if attempts > 0:
            finished = metrics_copy["runs_succeeded"] + metrics_copy["soft_skips"]
            metrics_copy["completion_rate"] = round(finished / attempts, 3)
        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        attempts = metrics["runs_attempted"]
        rate = metrics.get("completion_rate", 0) * 100

        self.info("=== Category Convergence Metrics ===")
        self.info(f"Runs: {metrics['runs_succeeded']}/{attempts} succeeded ({rate:.1f}% completed)")
        self.info(f"Soft skips: {metrics['soft_skips']}, retryable failures: {metrics['recoverable_failures']}")
        self.info(
            f"Revisions: {metrics['revisions_processed']}, "
            f"notifications: {metrics['notifications_emitted']}, "
            f"batch commits: {metrics['batch_commits']}"
        )
        if metrics["feed_deliveries"] or metrics["feed_failures"]:
            self.info(f"Feed: {metrics['feed_deliveries']} delivered, {metrics['feed_failures']} failed")

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "categorysync",
    level: str = "INFO",
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
