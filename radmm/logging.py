"""
Structured event logging for radmm.

Every component writes JSON Lines events rather than free-form text so a
quoting session can be replayed and audited afterwards:

    QuotingLoop -> logger -> mm_events.jsonl
                     |
              debug / perf / error events

Components:
- JsonlLogger: append-only JSON Lines writer (one event per line)
- DebugLogger: JsonlLogger with hierarchical levels and prefixed event names
- performance_trace: timing decorator for sync and async methods
- ErrorContext: error events with location, stack trace and operation context
- make_logger: picks the logger flavour from LoggingConfig

Usage:
    logger = JsonlLogger("./data/logs/mm_events.jsonl")
    logger.write("fill", {"order_id": "RAD-7-ask", "price": 101.4})

    logger = DebugLogger("./data/logs/debug.jsonl", level="DEBUG")
    logger.warning("cycle_skipped", {"reason": "pool_state"})

    try:
        await ex.swap(amount, direction)
    except ExchangeUnavailable as e:
        ErrorContext.log_operation_error(logger, "swap", e, {"amount": amount})
"""
import asyncio
import functools
import inspect
import json
import os
import time
import traceback
from typing import Any, Callable, Dict, Optional

from .types import LoggingConfig
from .utils import now_ms


class JsonlLogger:
    """Append-only JSON Lines logger.

    Each record is `{"ts_ms": ..., "event": ..., **payload}` written compactly
    on its own line. The file is opened line-buffered so events reach disk as
    soon as they are written. Not safe for concurrent writers; each quoting
    loop owns its logger.

    Args:
        path: File path for log output (parent directories are created)
    """

    def __init__(self, path: str):
        self.path = path
        dirname = os.path.dirname(path)
        if dirname:
            os.makedirs(dirname, exist_ok=True)
        self._fp = open(path, "a", buffering=1)

    def write(self, event_type: str, payload: Dict[str, Any]) -> None:
        """Write one event; `ts_ms` and `event` are injected ahead of the payload."""
        rec = {"ts_ms": now_ms(), "event": event_type, **payload}
        # default=str keeps enums and other odd values from breaking a log line
        self._fp.write(json.dumps(rec, separators=(",", ":"), ensure_ascii=False, default=str) + "\n")

    # Level helpers so callers can always use the leveled API; the plain
    # logger writes everything except debug events.
    def debug(self, event_type: str, payload: Dict[str, Any]) -> None:
        pass

    def info(self, event_type: str, payload: Dict[str, Any]) -> None:
        self.write(event_type, payload)

    def warning(self, event_type: str, payload: Dict[str, Any]) -> None:
        self.write(f"warn_{event_type}", payload)

    def error(self, event_type: str, payload: Dict[str, Any]) -> None:
        self.write(f"error_{event_type}", payload)

    def critical(self, event_type: str, payload: Dict[str, Any]) -> None:
        self.write(f"critical_{event_type}", payload)

    def close(self) -> None:
        """Flush and close the file. Safe to call more than once."""
        try:
            self._fp.close()
        except Exception:
            pass


class DebugLogger(JsonlLogger):
    """JsonlLogger with configurable verbosity.

    Levels (an event is written when its level >= the configured level):
        DEBUG (10): variable dumps, timings
        INFO (20): fills, orders, cycle summaries
        WARNING (30): skipped cycles, retried exchange calls
        ERROR (40): failed operations
        CRITICAL (50): stop-loss, failed shutdown cancellation

    Non-INFO events carry a prefix (`debug_`, `warn_`, `error_`, `critical_`)
    so they can be grepped out of a mixed log.

    Args:
        path: Log file output path
        level: Verbosity name, case-insensitive; unknown names fall back to INFO
    """

    LEVELS = {
        'DEBUG': 10,
        'INFO': 20,
        'WARNING': 30,
        'ERROR': 40,
        'CRITICAL': 50
    }

    def __init__(self, path: str, level: str = 'INFO'):
        super().__init__(path)
        self.level = self.LEVELS.get(level.upper(), self.LEVELS['INFO'])

    def debug(self, event_type: str, payload: Dict[str, Any]) -> None:
        if self.level <= self.LEVELS['DEBUG']:
            self.write(f"debug_{event_type}", payload)

    def info(self, event_type: str, payload: Dict[str, Any]) -> None:
        if self.level <= self.LEVELS['INFO']:
            self.write(event_type, payload)

    def warning(self, event_type: str, payload: Dict[str, Any]) -> None:
        if self.level <= self.LEVELS['WARNING']:
            self.write(f"warn_{event_type}", payload)

    def error(self, event_type: str, payload: Dict[str, Any]) -> None:
        if self.level <= self.LEVELS['ERROR']:
            self.write(f"error_{event_type}", payload)

    def critical(self, event_type: str, payload: Dict[str, Any]) -> None:
        if self.level <= self.LEVELS['CRITICAL']:
            self.write(f"critical_{event_type}", payload)


def make_logger(path: str, cfg: LoggingConfig) -> JsonlLogger:
    """Plain JsonlLogger for default INFO runs, DebugLogger otherwise."""
    if cfg.level.upper() != "INFO" or cfg.enable_performance:
        return DebugLogger(path, level=cfg.level)
    return JsonlLogger(path)


def performance_trace(logger_attr: str = 'logger'):
    """Time a method and log the duration when its owner logs at DEBUG.

    Works for both sync and async methods. The logger is looked up on the
    instance (`self.<logger_attr>`); anything other than a DebugLogger at
    DEBUG level makes the wrapper a pass-through.

    Log output:
        {"event": "debug_perf_sync_function",
         "function": "radmm.spread.SpreadPolicy.quote",
         "duration_ms": 0.041, "args_count": 5}
    """

    def _active_logger(args):
        if not args:
            return None
        logger = getattr(args[0], logger_attr, None)
        if not isinstance(logger, DebugLogger) or logger.level > DebugLogger.LEVELS['DEBUG']:
            return None
        return logger

    def decorator(func: Callable) -> Callable:
        name = f"{func.__module__}.{func.__qualname__}"

        def _log_error(logger, start_time, e):
            logger.error("perf_function_error", {
                "function": name,
                "duration_ms": round((time.perf_counter() - start_time) * 1000, 3),
                "error": str(e),
                "error_type": type(e).__name__
            })

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            logger = _active_logger(args)
            if logger is None:
                return await func(*args, **kwargs)
            start_time = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                _log_error(logger, start_time, e)
                raise
            logger.debug("perf_async_function", {
                "function": name,
                "duration_ms": round((time.perf_counter() - start_time) * 1000, 3),
                "args_count": len(args) + len(kwargs)
            })
            return result

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            logger = _active_logger(args)
            if logger is None:
                return func(*args, **kwargs)
            start_time = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _log_error(logger, start_time, e)
                raise
            logger.debug("perf_sync_function", {
                "function": name,
                "duration_ms": round((time.perf_counter() - start_time) * 1000, 3),
                "args_count": len(args) + len(kwargs)
            })
            return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


class ErrorContext:
    """Error events with location and operation context.

    Log output:
        {"event": "error_detailed_error",
         "error_message": "pool lookup timed out",
         "error_type": "ExchangeUnavailable",
         "function": "_fetch_pool_state", "file": ".../trading.py", "line": 212,
         "stack_trace": "Traceback ...",
         "context": {"operation": "get_pool_state", "instrument_id": "RAD"}}
    """

    @staticmethod
    def capture_error(
        logger: JsonlLogger,
        error: Exception,
        context: Optional[Dict[str, Any]] = None,
        include_stack: bool = True
    ) -> None:
        """Log `error` as an ERROR event.

        The reported location is taken from the traceback when the exception
        carries one, otherwise from the calling frame.
        """
        function_name = "unknown"
        file_name = "unknown"
        line_number = 0

        tb = error.__traceback__
        if tb is not None:
            while tb.tb_next is not None:
                tb = tb.tb_next
            function_name = tb.tb_frame.f_code.co_name
            file_name = tb.tb_frame.f_code.co_filename
            line_number = tb.tb_lineno
        else:
            frame = inspect.currentframe()
            try:
                caller = frame.f_back if frame else None
                if caller is not None:
                    function_name = caller.f_code.co_name
                    file_name = caller.f_code.co_filename
                    line_number = caller.f_lineno
            finally:
                del frame

        error_payload = {
            "error_message": str(error),
            "error_type": type(error).__name__,
            "function": function_name,
            "file": file_name,
            "line": line_number,
            "timestamp": now_ms()
        }
        if include_stack and error.__traceback__ is not None:
            error_payload["stack_trace"] = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )
        if context:
            error_payload["context"] = context

        logger.error("detailed_error", error_payload)

    @staticmethod
    def log_operation_error(
        logger: JsonlLogger,
        operation: str,
        error: Exception,
        context: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log a failed named operation (`swap`, `cancel_liquidity`, ...)."""
        full_context = {
            "operation": operation,
            **(context or {})
        }
        ErrorContext.capture_error(logger, error, full_context)
