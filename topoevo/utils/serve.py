import asyncio
from collections.abc import Callable
import contextlib
import signal


@contextlib.contextmanager
def abort_on_signal(on_signal: Callable[[], None]):
    """
    Route SIGINT/SIGTERM to *on_signal* for the duration of the block.

    Must be entered from inside a running event loop. Handlers are removed on
    exit so a second Ctrl-C after the run finishes behaves normally.
    """
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, on_signal)
        except (NotImplementedError, RuntimeError):
            # Non-main thread or platform without signal support
            continue
        installed.append(sig)
    try:
        yield
    finally:
        for sig in installed:
            with contextlib.suppress(Exception):
                loop.remove_signal_handler(sig)
