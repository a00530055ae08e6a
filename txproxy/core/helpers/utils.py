import asyncio
import contextlib
import functools
import importlib
import logging
import pkgutil
import sys
import signal
import threading
from collections.abc import Callable, MutableMapping
from types import FrameType
from typing import Any, Generator

SHUTDOWN_SIGNALS = (
    signal.SIGINT,
    signal.SIGTERM,
)

if sys.platform == "win32":
    SHUTDOWN_SIGNALS += (signal.SIGBREAK,)


@contextlib.contextmanager
def setup_signal_handler() -> Generator[asyncio.Event, None, None]:
    stop_event = asyncio.Event()

    if threading.current_thread() is not threading.main_thread():
        yield stop_event
        return

    captured_signals: list[signal.Signals | int] = []

    def handle(sig: int, frame: FrameType) -> None:
        captured_signals.append(sig)
        stop_event.set()

    # Install temporary handlers
    original_handlers = {
        sig: signal.signal(sig, handle)
        for sig in SHUTDOWN_SIGNALS
    }

    try:
        yield stop_event
    finally:
        # Restore original handlers
        for sig, old in original_handlers.items():
            signal.signal(sig, old)

        # Now replay signals with the real handler
        for sig in reversed(captured_signals):
            if original_handlers[sig] is not handle:
                signal.raise_signal(sig)


def setup_logging(level: str = "INFO", verbose: bool = False) -> None:
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)-8s [%(name)s:%(funcName)s] : %(message)s',
    )
    set_verbose(verbose)


def set_verbose(enabled: bool) -> None:
    """
    Toggle debug tracing of every envelope, transaction handler and
    execution summary. All txproxy loggers live under "core".
    """
    if enabled:
        logging.getLogger("core").setLevel(logging.DEBUG)


class TransactionLogAdapter(logging.LoggerAdapter):
    """
    Prefix log records with the transaction they belong to:

        [<parent id> -> <transaction id>] message
    """

    def __init__(
        self,
        logger: logging.Logger,
        transaction_id: str | None,
        parent_transaction_id: str | None = None,
    ) -> None:
        super().__init__(logger, {})
        self.transaction_id = transaction_id
        self.parent_transaction_id = parent_transaction_id

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        parent = f"{self.parent_transaction_id} -> " if self.parent_transaction_id else ""
        return f"[{parent}{self.transaction_id or '-'}] {msg}", kwargs


def scan(package: str):
    """
    Decorator that triggers a component scan when the decorated function
    is imported.
    """
    def decorator(func: Callable):

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            # Execute the scan BEFORE calling the function
            py_package = importlib.import_module(package)

            for module_info in pkgutil.iter_modules(py_package.__path__):
                module_name = f"{package}.{module_info.name}"
                importlib.import_module(module_name)

            # The function itself is usually a no-op, but we call it anyway
            return func(*args, **kwargs)

        return wrapper

    return decorator
