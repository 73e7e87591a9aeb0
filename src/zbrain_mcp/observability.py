"""Logging and operation metrics for the Zero Friction Brain.

Everything the engine logs goes to the ``zbrain_mcp`` logger tree, which
``configure_logging`` points at a rotating file under ``~/.zbrain/logs``
(plus stderr, since stdout carries the MCP protocol). Every tool call and
the heavier engine operations run inside ``timed_operation``; the numbers
end up in ``metrics`` and are shown by the ``zk_status`` tool.
"""
import functools
import logging
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Optional, TypeVar, Union

from zbrain_mcp.exceptions import BrainError

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "zbrain_mcp"
DEFAULT_LOG_DIR = Path.home() / ".zbrain" / "logs"
LOG_FILE_NAME = "zbrain.log"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

F = TypeVar('F', bound=Callable[..., Any])

_logging_configured = False


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    console: bool = True,
) -> Path:
    """Send the package's log records to a rotating file (and stderr).

    Handlers are attached to the ``zbrain_mcp`` logger only, so module
    loggers inherit them and third-party libraries keep their own
    settings. Calling this again does not stack handlers.

    Args:
        log_dir: Where ``zbrain.log`` and its rotations live.
        level: Level for the package logger and its handlers.
        max_bytes: Size at which the log file rotates.
        backup_count: Rotated files kept next to the live one.
        console: Also write to stderr.

    Returns:
        The log directory.
    """
    global _logging_configured

    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / LOG_FILE_NAME

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    if not any(isinstance(h, RotatingFileHandler) for h in package_logger.handlers):
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    # stdout belongs to the MCP transport; StreamHandler defaults to stderr
    if console and not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        for h in package_logger.handlers
    ):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        package_logger.addHandler(console_handler)

    _logging_configured = True
    package_logger.info(
        f"Logging to {log_file} (rotates at {max_bytes} bytes, keeps {backup_count})"
    )
    return log_path


def is_logging_configured() -> bool:
    return _logging_configured


@dataclass
class OperationMetrics:
    """Running totals for one operation name."""

    count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_code: Optional[str] = None
    last_error_time: Optional[datetime] = None

    @property
    def avg_duration_ms(self) -> float:
        return self.total_duration_ms / self.count if self.count else 0.0


class MetricsCollector:
    """In-memory counters and timings per operation.

    Operation names are the tool names (``zk_classify_note``, ...) and the
    engine steps they run (``classify_note``, ``commit_candidate``,
    ``rebuild_index``, ...). Safe to update from the watcher thread.
    """

    def __init__(self):
        self._metrics: Dict[str, OperationMetrics] = defaultdict(OperationMetrics)
        self._lock = Lock()
        self._start_time = datetime.now(timezone.utc)

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None,
        error_code: Optional[str] = None,
    ) -> None:
        with self._lock:
            m = self._metrics[operation]
            m.count += 1
            m.total_duration_ms += duration_ms
            m.max_duration_ms = max(m.max_duration_ms, duration_ms)
            if success:
                m.success_count += 1
                return
            m.error_count += 1
            m.last_error = error
            m.last_error_code = error_code
            m.last_error_time = datetime.now(timezone.utc)

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of every operation's numbers, keyed by operation name."""
        with self._lock:
            return {
                op: {
                    'count': m.count,
                    'success_count': m.success_count,
                    'error_count': m.error_count,
                    'avg_duration_ms': round(m.avg_duration_ms, 2),
                    'max_duration_ms': round(m.max_duration_ms, 2),
                    'last_error': m.last_error,
                    'last_error_code': m.last_error_code,
                    'last_error_time': (
                        m.last_error_time.isoformat() if m.last_error_time else None
                    ),
                }
                for op, m in self._metrics.items()
            }

    def get_summary(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'uptime_seconds': (datetime.now(timezone.utc) - self._start_time).total_seconds(),
                'total_operations': sum(m.count for m in self._metrics.values()),
                'total_errors': sum(m.error_count for m in self._metrics.values()),
                'operations_tracked': sorted(self._metrics.keys()),
            }

    def reset(self) -> None:
        with self._lock:
            self._metrics.clear()
            self._start_time = datetime.now(timezone.utc)


metrics = MetricsCollector()


def _format_fields(fields: Dict[str, Any]) -> str:
    return ', '.join(f'{k}={v}' for k, v in fields.items())


@contextmanager
def timed_operation(operation: str, **context):
    """Time a block, log START/END lines and record it in ``metrics``.

    Both log lines share a short correlation id so interleaved watcher and
    tool activity can be told apart in the log file. Failures are logged
    at WARNING with the error code of domain errors, then re-raised.

    Yields:
        A dict the block can fill with result details for the END line.

    Example:
        with timed_operation('zk_find_related', path=path) as op:
            results = search.find_related(...)
            op['result_count'] = len(results)
    """
    correlation_id = str(uuid.uuid4())[:8]
    start_time = time.perf_counter()
    result_info: Dict[str, Any] = {}
    logger.debug(f"[{correlation_id}] START {operation} ({_format_fields(context)})")

    try:
        yield result_info
    except Exception as e:
        duration_ms = (time.perf_counter() - start_time) * 1000
        code = e.code.name if isinstance(e, BrainError) else None
        message = e.message if isinstance(e, BrainError) else str(e)
        metrics.record_operation(operation, duration_ms, False, message, code)
        logger.warning(
            f"[{correlation_id}] FAILED {operation} ({duration_ms:.2f}ms) "
            f"[{code or type(e).__name__}] {message} ({_format_fields(context)})"
        )
        raise

    duration_ms = (time.perf_counter() - start_time) * 1000
    metrics.record_operation(operation, duration_ms, True)
    logger.debug(
        f"[{correlation_id}] END {operation} ({duration_ms:.2f}ms) "
        f"{_format_fields(result_info)}"
    )


def _call_context(args: tuple, kwargs: Dict[str, Any]) -> Dict[str, Any]:
    """Pick the vault path (or title) out of a service call's arguments."""
    if 'path' in kwargs:
        return {'path': kwargs['path']}
    # Services take the note path as their first argument after self
    for value in args[1:2]:
        if isinstance(value, str) and value.lower().endswith('.md'):
            return {'path': value}
    if kwargs.get('title'):
        return {'title': kwargs['title'][:50]}
    return {}


def _describe_result(result: Any, op: Dict[str, Any]) -> None:
    if hasattr(result, 'processed') and hasattr(result, 'failed'):
        op['processed'] = result.processed
        op['failed'] = result.failed
    elif isinstance(result, bool) or result is None:
        return
    elif isinstance(result, int):
        op['count'] = result
    elif hasattr(result, '__len__'):
        op['result_count'] = len(result)


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Run a service method inside ``timed_operation``.

    The note path argument (positional or keyword) goes into the log
    context, and counts or batch totals of the result into the END line.

    Example:
        @traced('classify_note')
        def classify_note(self, path: str) -> ClassificationOutcome:
            ...
    """
    def decorator(func: F) -> F:
        op_name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with timed_operation(op_name, **_call_context(args, kwargs)) as op:
                result = func(*args, **kwargs)
                _describe_result(result, op)
                return result

        return wrapper  # type: ignore
    return decorator
