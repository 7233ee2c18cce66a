"""Logging and observability utilities for GSD.

Loggers live under the ``gsd`` namespace. Console output goes to stderr
because stdout carries the MCP stdio transport; an optional file handler
writes one JSON object per record. Timings of lifecycle operations are kept
by a process-wide :class:`PerformanceMonitor`, and lifecycle events are fanned
out to callbacks registered on :data:`observability_hooks`.
"""

from __future__ import annotations

import json
import logging as std_logging
import sys
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

ROOT_LOGGER = "gsd"
CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [%(module)s:%(lineno)d] %(message)s"
CONSOLE_DATEFMT = "%H:%M:%S"


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _fields(**values: Any) -> Dict[str, Any]:
    """Wrap structured values for ``extra=`` so JsonFormatter can merge them."""
    return {"extra_fields": values}


def setup_logging(log_level: Union[str, int] = std_logging.INFO, log_file: Optional[Path] = None) -> None:
    """Configure the ``gsd`` logger; safe to call more than once."""
    logger = std_logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(log_level)

    console = std_logging.StreamHandler(sys.stderr)
    console.setLevel(log_level)
    console.setFormatter(std_logging.Formatter(CONSOLE_FORMAT, datefmt=CONSOLE_DATEFMT))
    logger.addHandler(console)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        json_file = std_logging.FileHandler(log_file, encoding="utf-8")
        json_file.setLevel(std_logging.DEBUG)
        json_file.setFormatter(JsonFormatter())
        logger.addHandler(json_file)

    logger.info("GSD logging initialized")


class JsonFormatter(std_logging.Formatter):
    """Render a record, plus any ``extra_fields``, as a single JSON line."""

    def format(self, record: std_logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(getattr(record, "extra_fields", None) or {})
        return json.dumps(entry, default=str)


class PerformanceMonitor:
    """In-memory record of named measurements, grouped by metric name."""

    def __init__(self):
        self.metrics: Dict[str, List[Dict[str, Any]]] = {}
        self._logger = std_logging.getLogger(f"{ROOT_LOGGER}.performance")

    def record_metric(self, name: str, value: Any, tags: Optional[Dict[str, str]] = None) -> None:
        sample = {"timestamp": _utcnow(), "name": name, "value": value, "tags": dict(tags or {})}
        self.metrics.setdefault(name, []).append(sample)
        self._logger.debug("metric %s=%s", name, value, extra=_fields(**sample))

    def get_metrics(self, name: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
        if name is not None:
            return {name: list(self.metrics.get(name, []))}
        return {key: list(samples) for key, samples in self.metrics.items()}

    def clear(self) -> None:
        self.metrics.clear()


performance_monitor = PerformanceMonitor()


@contextmanager
def _measured(operation_name: str) -> Iterator[None]:
    """Time the block and record ``<operation>_duration`` with its outcome."""
    logger = std_logging.getLogger(f"{ROOT_LOGGER}.performance")
    metric = f"{operation_name}_duration"
    started = time.perf_counter()
    try:
        yield
    except Exception as e:
        elapsed = time.perf_counter() - started
        error_type = type(e).__name__
        performance_monitor.record_metric(metric, elapsed, {"status": "error", "error_type": error_type})
        logger.warning(
            "%s failed after %.3fs: %s", operation_name, elapsed, e,
            extra=_fields(operation=operation_name, duration=elapsed, status="error",
                          error_type=error_type, error_message=str(e)),
        )
        raise
    elapsed = time.perf_counter() - started
    performance_monitor.record_metric(metric, elapsed, {"status": "success"})
    logger.info(
        "%s finished in %.3fs", operation_name, elapsed,
        extra=_fields(operation=operation_name, duration=elapsed, status="success"),
    )


def log_performance(operation_name: str):
    """Decorator recording the duration and outcome of every call."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            with _measured(operation_name):
                return func(*args, **kwargs)
        return wrapper
    return decorator


@contextmanager
def log_operation(operation_name: str, **extra_fields) -> Iterator[None]:
    """Log the start and end of a block on ``gsd.operations``."""
    logger = std_logging.getLogger(f"{ROOT_LOGGER}.operations")
    started = time.perf_counter()
    logger.debug("%s started", operation_name,
                 extra=_fields(operation=operation_name, status="started", **extra_fields))
    try:
        yield
    except Exception as e:
        logger.warning(
            "%s failed: %s", operation_name, e,
            extra=_fields(operation=operation_name, status="failed", duration=time.perf_counter() - started,
                          error_type=type(e).__name__, error_message=str(e), **extra_fields),
        )
        raise
    logger.debug("%s completed", operation_name,
                 extra=_fields(operation=operation_name, status="completed",
                               duration=time.perf_counter() - started, **extra_fields))


class ObservabilityHooks:
    """Named lifecycle events, each logged and passed to registered callbacks."""

    def __init__(self):
        self.hooks: Dict[str, List[Callable[..., Any]]] = {}
        self.logger = std_logging.getLogger(f"{ROOT_LOGGER}.observability")

    def register_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        self.hooks.setdefault(event_type, []).append(callback)
        self.logger.debug("Hook registered for %s", event_type)

    def unregister_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        callbacks = self.hooks.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def trigger_hooks(self, event_type: str, **data) -> None:
        """Call every hook for ``event_type``. A failing hook is logged and skipped."""
        for hook in list(self.hooks.get(event_type, [])):
            try:
                hook(**data)
            except Exception as e:
                self.logger.error("Hook %r for %s raised %s: %s",
                                  getattr(hook, "__name__", hook), event_type, type(e).__name__, e)

    def log_workflow_event(self, event_type: str, phase: Optional[int] = None, **data) -> None:
        payload = {"timestamp": _utcnow(), "phase": phase, **data}
        self.logger.info("event %s%s", event_type, f" (phase {phase})" if phase is not None else "",
                         extra=_fields(event_type=event_type, **payload))
        self.trigger_hooks(event_type, **payload)


observability_hooks = ObservabilityHooks()


def log_phase_event(event_type: str, phase: Optional[int], **extra_fields) -> None:
    """Emit ``phase_<event>`` for a lifecycle transition (planned, task_executed, ...)."""
    observability_hooks.log_workflow_event(f"phase_{event_type.lower()}", phase=phase, **extra_fields)


def log_checkpoint_event(category: str, phase: Optional[int], checkpoint_id: str, **extra_fields) -> None:
    """Emit ``checkpoint_<category>`` when a checkpoint is created or reset to."""
    event = "checkpoint_" + category.replace("-", "_")
    observability_hooks.log_workflow_event(event, phase=phase, checkpoint_id=checkpoint_id, **extra_fields)


def log_error_with_context(error: Exception, context: Dict[str, Any], **extra_fields) -> None:
    operation = context.get("operation", "unknown operation")
    std_logging.getLogger(f"{ROOT_LOGGER}.errors").error(
        "Error in %s: %s", operation, error,
        extra=_fields(timestamp=_utcnow(), error_type=type(error).__name__, error_message=str(error),
                      context=context, **extra_fields),
        exc_info=error,
    )
