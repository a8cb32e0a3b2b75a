"""
Structured logging for the API process and the Celery workers.

Every entry carries the level, the logger name, a UTC timestamp and
``app="taskflow"``. Event names are snake_case; context goes in keywords:

    logger = get_logger("services.tasks")
    logger.info("task_created", task_id=task_id, user_id=user_id)

Per-request and per-job context (``request_id``, ``task_id``) is bound
through structlog contextvars so that nested calls pick it up without
passing loggers around.
"""

import logging
import sys
import time
import uuid
from collections.abc import Callable, MutableMapping
from functools import wraps
from typing import Any, TypeVar

import structlog
from structlog.types import Processor

F = TypeVar("F", bound=Callable[..., Any])

REQUEST_ID_HEADER = b"x-request-id"

_configured = False


def _tag_service(logger: Any, method_name: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    event_dict["app"] = "taskflow"
    return event_dict


def _renderer(log_format: str, development: bool) -> list[Processor]:
    if log_format == "console" or (log_format == "auto" and development):
        return [
            structlog.dev.ConsoleRenderer(
                colors=sys.stdout.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            )
        ]
    return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]


def build_processors(log_format: str = "auto", development: bool = True) -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        _tag_service,
    ] + _renderer(log_format, development)


def configure_logging(level: str | None = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    ``level`` defaults to LOG_LEVEL (DEBUG when DEBUG is on). Calling it
    again is a no-op, so the API and the worker entry points may both call it.
    """
    global _configured
    if _configured:
        return

    from .config import get_settings

    settings = get_settings()
    if level is None:
        level = "DEBUG" if settings.debug else settings.log_level

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )
    structlog.configure(
        processors=build_processors(settings.log_format, settings.is_development),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(name)  # type: ignore[no-any-return]


def bind_context(**kwargs: Any) -> None:
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """
    Bind keys for the duration of a block, then unbind only those keys.

        with LogContext(sweep="overdue"):
            logger.info("sweep_started")  # carries sweep="overdue"
    """

    def __init__(self, **kwargs: Any):
        self.kwargs = kwargs

    def __enter__(self):
        structlog.contextvars.bind_contextvars(**self.kwargs)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        structlog.contextvars.unbind_contextvars(*self.kwargs)
        return False


def log_timing(operation: str) -> Callable[[F], F]:
    """
    Log the duration of each call. Dict results (sweep summaries) are
    attached to the completion entry as ``summary``.
    """

    def decorator(func: F) -> F:
        logger = get_logger(func.__module__)

        @wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                logger.error(
                    "operation_failed",
                    operation=operation,
                    duration_seconds=round(time.perf_counter() - start, 3),
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise
            extra = {"summary": result} if isinstance(result, dict) else {}
            logger.info(
                "operation_complete",
                operation=operation,
                duration_seconds=round(time.perf_counter() - start, 3),
                **extra,
            )
            return result

        return wrapper  # type: ignore

    return decorator


class RequestLoggingMiddleware:
    """
    ASGI middleware: one log entry per HTTP request.

    Binds ``request_id`` (the caller's X-Request-ID when sent, otherwise a
    fresh one) for everything logged while the request is handled. 5xx
    responses log at error, 4xx at warning.
    """

    def __init__(self, app):
        self.app = app
        self.logger = get_logger("http")

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers") or [])
        supplied = headers.get(REQUEST_ID_HEADER, b"").decode("latin-1")[:64]
        bind_context(request_id=supplied or uuid.uuid4().hex[:12])

        method, path = scope.get("method", ""), scope.get("path", "")
        start = time.perf_counter()
        status_code = 500

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 500)
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            if status_code >= 500:
                log = self.logger.error
            elif status_code >= 400:
                log = self.logger.warning
            else:
                log = self.logger.info
            log(
                "request_complete",
                method=method,
                path=path,
                status_code=status_code,
                duration_seconds=round(time.perf_counter() - start, 3),
            )
            clear_context()


def configure_celery_logging():
    """Bind Celery job identity into the log context for each task run."""
    from celery.signals import task_failure, task_postrun, task_prerun, task_retry

    logger = get_logger("celery.tasks")

    @task_prerun.connect(weak=False)
    def on_prerun(task_id, task, args, kwargs, **kw):
        context = {"task_id": task_id, "task_name": task.name}
        if kwargs and "event_type" in kwargs:
            context["event_type"] = kwargs["event_type"]
        bind_context(**context)
        logger.info("job_started")

    @task_postrun.connect(weak=False)
    def on_postrun(task_id, task, args, kwargs, retval, state, **kw):
        logger.info("job_finished", state=state)
        clear_context()

    @task_retry.connect(weak=False)
    def on_retry(request, reason, einfo, **kw):
        logger.warning("job_retrying", reason=str(reason), retries=request.retries)

    @task_failure.connect(weak=False)
    def on_failure(task_id, exception, args, kwargs, traceback, einfo, **kw):
        logger.error("job_failed", error=str(exception), error_type=type(exception).__name__)
        clear_context()


class _LazyLogger:
    """Resolves the named logger on first use, after configure_logging ran."""

    def __init__(self, name: str):
        self._name = name
        self._logger: structlog.stdlib.BoundLogger | None = None

    def __getattr__(self, name: str):
        if self._logger is None:
            self._logger = get_logger(self._name)
        return getattr(self._logger, name)


worker_logger = _LazyLogger("worker")
security_logger = _LazyLogger("security")


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "LogContext",
    "log_timing",
    "RequestLoggingMiddleware",
    "configure_celery_logging",
    "worker_logger",
    "security_logger",
]
