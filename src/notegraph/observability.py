"""Observability utilities for notegraph.

Provides logging configuration with rotation, per-operation timing
metrics, and correlation-id tracing for store mutations.
"""
import json
import logging
import re
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

# Root of the package logger hierarchy
ROOT_LOGGER_NAME = "notegraph"
DEFAULT_LOG_DIR = Path.home() / ".notegraph" / "logs"

# Logging format with ISO 8601 timestamps
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

_logging_configured = False


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB per file
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Configure persistent file logging with rotation.

    Sets up a rotating file handler for the ``notegraph`` logger hierarchy.
    Calling this more than once replaces the previously installed file
    handler instead of stacking another one.

    Args:
        log_dir: Directory for log files. Defaults to ~/.notegraph/logs/
        level: Logging level (default: INFO)
        max_bytes: Maximum size per log file before rotation (default: 10 MB)
        backup_count: Number of rotated files to keep (default: 5)
        console: Also log to console (default: True)

    Returns:
        Path to the log directory
    """
    global _logging_configured

    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    for handler in list(root_logger.handlers):
        if isinstance(handler, RotatingFileHandler):
            root_logger.removeHandler(handler)
            handler.close()

    log_file = log_path / "notegraph.log"
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    if console and not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        for h in root_logger.handlers
    ):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    _logging_configured = True
    root_logger.info(f"Logging configured: {log_file} (max {max_bytes} bytes, {backup_count} backups)")

    return log_path


def configure_from_config(cfg=None) -> Path:
    """Configure logging and metrics persistence from a NotegraphConfig."""
    if cfg is None:
        from notegraph.config import config as cfg

    log_path = configure_logging(log_dir=cfg.log_dir, level=cfg.get_log_level())
    if cfg.metrics_file is not None:
        metrics.set_metrics_file(cfg.metrics_file)
    return log_path


def is_logging_configured() -> bool:
    """Check if file logging has been configured."""
    return _logging_configured


def _sanitize_error_message(message: Optional[str], max_length: int = 200) -> Optional[str]:
    """Make an error message safe to persist in the metrics file.

    Replaces the home directory with ``~``, flattens whitespace and
    truncates to ``max_length`` characters.
    """
    if message is None:
        return None
    home = str(Path.home())
    cleaned = message.replace(home, "~")
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    if len(cleaned) > max_length:
        cleaned = cleaned[: max_length - 3] + "..."
    return cleaned


@dataclass
class OperationMetrics:
    """Metrics for a single operation type."""
    count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: float = float('inf')
    max_duration_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None


class MetricsCollector:
    """Thread-safe metrics collection for store operations.

    Collects timing, success/failure rates, and error information
    for each operation type (create_note, replace_note, etc.).
    Persistence to disk is enabled only when a metrics file is set.
    """

    def __init__(
        self,
        metrics_file: Optional[Union[str, Path]] = None,
        auto_save_interval: int = 100,
    ):
        """Initialize the metrics collector.

        Args:
            metrics_file: Path to persist metrics. None keeps metrics in memory only.
            auto_save_interval: Save to disk every N operations (0 to disable)
        """
        self._metrics: Dict[str, OperationMetrics] = defaultdict(OperationMetrics)
        self._lock = Lock()
        self._start_time = datetime.now(timezone.utc)
        self._metrics_file = Path(metrics_file) if metrics_file else None
        self._auto_save_interval = auto_save_interval
        self._operation_count_since_save = 0

        if self._metrics_file is not None:
            self._load_metrics()

    def set_metrics_file(self, metrics_file: Union[str, Path]) -> None:
        """Point the collector at a metrics file and load what it holds."""
        with self._lock:
            self._metrics_file = Path(metrics_file)
            self._load_metrics()

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None
    ) -> None:
        """Record metrics for an operation.

        Args:
            operation: The operation name (e.g., 'create_note')
            duration_ms: Duration in milliseconds
            success: Whether the operation succeeded
            error: Error message if the operation failed
        """
        with self._lock:
            m = self._metrics[operation]
            m.count += 1
            m.total_duration_ms += duration_ms
            m.min_duration_ms = min(m.min_duration_ms, duration_ms)
            m.max_duration_ms = max(m.max_duration_ms, duration_ms)

            if success:
                m.success_count += 1
            else:
                m.error_count += 1
                m.last_error = _sanitize_error_message(error)
                m.last_error_time = datetime.now(timezone.utc)

            self._operation_count_since_save += 1
            if (
                self._metrics_file is not None
                and self._auto_save_interval > 0
                and self._operation_count_since_save >= self._auto_save_interval
            ):
                self._save_metrics_unlocked()

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Get a snapshot of all metrics.

        Returns:
            Dictionary mapping operation names to their metrics.
        """
        with self._lock:
            result = {}
            for op, m in self._metrics.items():
                avg_duration = m.total_duration_ms / m.count if m.count > 0 else 0
                min_dur = m.min_duration_ms if m.min_duration_ms != float('inf') else 0
                result[op] = {
                    'count': m.count,
                    'success_count': m.success_count,
                    'error_count': m.error_count,
                    'success_rate': m.success_count / m.count if m.count > 0 else 0,
                    'avg_duration_ms': round(avg_duration, 2),
                    'min_duration_ms': round(min_dur, 2),
                    'max_duration_ms': round(m.max_duration_ms, 2),
                    'last_error': m.last_error,
                    'last_error_time': m.last_error_time.isoformat() if m.last_error_time else None
                }
            return result

    def get_summary(self) -> Dict[str, Any]:
        """Get aggregate statistics across all operations."""
        with self._lock:
            total_ops = sum(m.count for m in self._metrics.values())
            total_success = sum(m.success_count for m in self._metrics.values())
            total_errors = sum(m.error_count for m in self._metrics.values())

            return {
                'uptime_seconds': (datetime.now(timezone.utc) - self._start_time).total_seconds(),
                'total_operations': total_ops,
                'total_success': total_success,
                'total_errors': total_errors,
                'overall_success_rate': total_success / total_ops if total_ops > 0 else 1.0,
                'operations_tracked': list(self._metrics.keys())
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._metrics.clear()
            self._start_time = datetime.now(timezone.utc)
            self._operation_count_since_save = 0

    def _load_metrics(self) -> bool:
        """Load metrics from disk.

        Returns:
            True if metrics were loaded successfully, False otherwise.
        """
        try:
            if self._metrics_file is None or not self._metrics_file.exists():
                return False

            with open(self._metrics_file, "r", encoding="utf-8") as f:
                data = json.load(f)

            if "start_time" in data:
                self._start_time = datetime.fromisoformat(data["start_time"])

            for op_name, op_data in data.get("operations", {}).items():
                m = self._metrics[op_name]
                m.count = op_data.get("count", 0)
                m.success_count = op_data.get("success_count", 0)
                m.error_count = op_data.get("error_count", 0)
                m.total_duration_ms = op_data.get("total_duration_ms", 0.0)
                min_dur = op_data.get("min_duration_ms")
                m.min_duration_ms = min_dur if min_dur is not None else float("inf")
                m.max_duration_ms = op_data.get("max_duration_ms", 0.0)
                m.last_error = op_data.get("last_error")
                if op_data.get("last_error_time"):
                    m.last_error_time = datetime.fromisoformat(op_data["last_error_time"])

            logger.debug(f"Loaded metrics from {self._metrics_file}")
            return True

        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning(f"Failed to load metrics from {self._metrics_file}: {e}")
            return False

    def _save_metrics_unlocked(self) -> bool:
        """Save metrics to disk (must be called with lock held)."""
        if self._metrics_file is None:
            return False
        try:
            self._metrics_file.parent.mkdir(parents=True, exist_ok=True)

            data = {
                "start_time": self._start_time.isoformat(),
                "saved_at": datetime.now(timezone.utc).isoformat(),
                "operations": {},
            }

            for op_name, m in self._metrics.items():
                data["operations"][op_name] = {
                    "count": m.count,
                    "success_count": m.success_count,
                    "error_count": m.error_count,
                    "total_duration_ms": m.total_duration_ms,
                    "min_duration_ms": m.min_duration_ms if m.min_duration_ms != float("inf") else None,
                    "max_duration_ms": m.max_duration_ms,
                    "last_error": m.last_error,
                    "last_error_time": m.last_error_time.isoformat() if m.last_error_time else None,
                }

            # Atomic write via temp file
            temp_file = self._metrics_file.with_suffix(".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)

            temp_file.replace(self._metrics_file)
            self._operation_count_since_save = 0
            return True

        except (OSError, TypeError) as e:
            logger.error(f"Failed to save metrics to {self._metrics_file}: {e}")
            return False

    def save_metrics(self) -> bool:
        """Explicitly save metrics to disk.

        Returns:
            True if saved successfully, False otherwise (including when
            no metrics file is configured).
        """
        with self._lock:
            return self._save_metrics_unlocked()

    def get_metrics_file(self) -> Optional[Path]:
        """Get the path to the metrics file, if any."""
        return self._metrics_file


# Global metrics collector instance
metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context):
    """Context manager for timing and logging operations.

    Args:
        operation: Name of the operation being performed
        **context: Additional context to include in log messages

    Yields:
        A dictionary where you can store result info (e.g., note_id)

    Example:
        with timed_operation('create_note', title=title) as op:
            note_id = do_create()
            op['note_id'] = note_id
    """
    correlation_id = str(uuid.uuid4())[:8]
    start_time = time.perf_counter()
    result_info: Dict[str, Any] = {'correlation_id': correlation_id}

    context_str = ', '.join(f'{k}={v}' for k, v in context.items())
    logger.debug(f"[{correlation_id}] START {operation} ({context_str})")

    error_msg = None
    success = True

    try:
        yield result_info
    except Exception as e:
        success = False
        error_msg = str(e)
        raise
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        metrics.record_operation(operation, duration_ms, success, error_msg)

        result_str = ', '.join(f'{k}={v}' for k, v in result_info.items() if k != 'correlation_id')
        status = 'OK' if success else f'ERROR: {error_msg}'
        logger.debug(
            f"[{correlation_id}] END {operation} "
            f"({duration_ms:.2f}ms) [{status}] {result_str}"
        )

