"""Process-level fault handling.

An exception that escapes every handler leaves the session registry and
asset folders in an unknown state, so the process logs it and exits. The
supervisor (systemd, Cloud Run, docker restart policy) brings it back.
"""

import asyncio
import logging
import os
import sys
import threading
from typing import Any

logger = logging.getLogger(__name__)

EXIT_CODE = 1


def _terminate() -> None:
    logging.shutdown()
    os._exit(EXIT_CODE)


def _handle_uncaught(exc_type, exc_value, exc_traceback) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    logger.critical(
        "Uncaught exception, terminating process",
        exc_info=(exc_type, exc_value, exc_traceback),
    )
    _terminate()


def _handle_thread_exception(args: threading.ExceptHookArgs) -> None:
    if args.exc_type is SystemExit:
        return
    logger.critical(
        "Uncaught exception in thread, terminating process",
        exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
        extra={"thread_name": args.thread.name if args.thread else None},
    )
    _terminate()


def _handle_loop_exception(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    exception = context.get("exception")
    if exception is None:
        # Transport and connection notices carry no exception
        logger.error(
            "Event loop error",
            extra={"loop_message": context.get("message")},
        )
        return
    logger.critical(
        "Unhandled exception in event loop, terminating process",
        exc_info=(type(exception), exception, exception.__traceback__),
        extra={"loop_message": context.get("message")},
    )
    _terminate()


def install_fault_handlers(loop: asyncio.AbstractEventLoop | None = None) -> None:
    """Make uncaught exceptions fatal for the main thread, worker threads and the event loop."""
    sys.excepthook = _handle_uncaught
    threading.excepthook = _handle_thread_exception
    if loop is not None:
        loop.set_exception_handler(_handle_loop_exception)
