"""Decorators for tracking tool calls with the telemetry collector."""

from __future__ import annotations

import functools
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .collector import TelemetryCollector
from .events import EventStatus, ToolExecutionMetadata

logger = logging.getLogger(__name__)

T = TypeVar("T")
MetadataExtractor = Callable[[Any], ToolExecutionMetadata]

# Checked in order; the first category whose marker appears in a class name wins.
_ERROR_CATEGORIES = (
    ("validation", ("Validation", "Invalid")),
    ("not_found", ("NotFound", "404")),
    ("rate_limit", ("RateLimit",)),
    ("timeout", ("Timeout",)),
    ("network", ("Network", "Connection")),
    ("service_error", ("Service", "API", "Api")),
)


def classify_error(error: BaseException) -> str:
    """Best-effort mapping of an exception to an error category.

    Class names along the exception's MRO are matched against fixed markers,
    so ``asyncio.TimeoutError`` subclasses and ``ConnectionResetError`` land
    in ``timeout`` and ``network`` respectively.
    """
    names = [cls.__name__ for cls in type(error).__mro__ if cls not in (BaseException, Exception, object)]
    for category, markers in _ERROR_CATEGORIES:
        for name in names:
            if any(marker in name for marker in markers):
                return category
    return "unknown"


def _elapsed_ms(start: float) -> int:
    return int(round((time.perf_counter() - start) * 1000))


def _extract_metadata(tool_name: str, result: Any, extractor: Optional[MetadataExtractor]) -> ToolExecutionMetadata:
    if extractor is None:
        return {}
    try:
        return dict(extractor(result) or {})
    except Exception as e:
        logger.warning(f"Telemetry metadata extraction error for {tool_name}: {type(e).__name__}")
        return {}


async def with_telemetry(
    collector: TelemetryCollector,
    tool_name: str,
    handler: Callable[[], Awaitable[T]],
    metadata_extractor: Optional[MetadataExtractor] = None,
) -> T:
    """Run ``handler`` and record its outcome.

    The handler's own exception is re-raised unchanged after it is recorded.

    Usage:
        async def get_forecast(args):
            return await with_telemetry(
                collector,
                "get_forecast",
                lambda: fetch_forecast(args),
                lambda result: {"service": result.source, "cache_hit": result.cached},
            )
    """
    start = time.perf_counter()
    try:
        result = await handler()
    except Exception as e:
        collector.track_tool_call(
            tool_name,
            EventStatus.ERROR.value,
            {"response_time_ms": _elapsed_ms(start), "error_type": classify_error(e)},
        )
        raise

    metadata: ToolExecutionMetadata = {"response_time_ms": _elapsed_ms(start)}
    metadata.update(_extract_metadata(tool_name, result, metadata_extractor))
    collector.track_tool_call(tool_name, EventStatus.SUCCESS.value, metadata)
    return result


def track_tool(
    collector: TelemetryCollector,
    tool_name: Optional[str] = None,
    metadata_extractor: Optional[MetadataExtractor] = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator form of :func:`with_telemetry` for sync and async tools.

    Usage:
        @track_tool(collector, metadata_extractor=lambda r: {"service": "noaa"})
        async def get_alerts(area: str) -> str:
            ...
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        name = tool_name or func.__name__

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                return await with_telemetry(collector, name, lambda: func(*args, **kwargs), metadata_extractor)

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                collector.track_tool_call(
                    name,
                    EventStatus.ERROR.value,
                    {"response_time_ms": _elapsed_ms(start), "error_type": classify_error(e)},
                )
                raise

            metadata: ToolExecutionMetadata = {"response_time_ms": _elapsed_ms(start)}
            metadata.update(_extract_metadata(name, result, metadata_extractor))
            collector.track_tool_call(name, EventStatus.SUCCESS.value, metadata)
            return result

        return wrapper

    return decorator
