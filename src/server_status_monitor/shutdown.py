"""Graceful shutdown handler for the server status monitor.

Traps SIGTERM/SIGINT and runs cleanup callbacks in explicit phases, so
poll timers stop before channel clients close and channel clients close
before the store does.

Usage:
    ```python
    async def main():
        shutdown = GracefulShutdown()

        async with shutdown:
            engine = MonitorEngine(settings)
            shutdown.register_cleanup(engine.stop_timers, phase=PHASE_TIMERS)
            shutdown.register_cleanup(engine.stop_clients, phase=PHASE_CLIENTS)
            shutdown.register_cleanup(engine.close_store, phase=PHASE_STORE)
            await engine.start()

            await shutdown.wait()
    ```
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from collections.abc import Callable
from contextlib import suppress
from types import FrameType
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_SHUTDOWN_TIMEOUT = 30.0

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)

# Cleanup phases, run in ascending order
PHASE_TIMERS = 0
PHASE_CLIENTS = 10
PHASE_STORE = 20


class ShutdownTimeoutError(Exception):
    """Raised when graceful shutdown exceeds timeout."""


class GracefulShutdown:
    """Signal trapping plus phased cleanup.

    The first SIGTERM/SIGINT sets the shutdown event; a second one forces
    the process to exit. Cleanup callbacks registered for the same phase
    run in registration order, phases run in ascending order, and the whole
    cleanup is bounded by ``timeout``.

    Example:
        ```python
        shutdown = GracefulShutdown(timeout=30.0)
        shutdown.register_cleanup(poller.stop_all, phase=PHASE_TIMERS)
        shutdown.register_cleanup(db.close, phase=PHASE_STORE)

        async with shutdown:
            await shutdown.wait()
        ```
    """

    def __init__(
        self,
        timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
        *,
        exit_on_timeout: bool = True,
    ) -> None:
        """Initialize the shutdown handler.

        Args:
            timeout: Maximum time in seconds for the cleanup phases.
            exit_on_timeout: If True, force exit when cleanup exceeds timeout.
        """
        self._timeout = timeout
        self._exit_on_timeout = exit_on_timeout

        self._shutdown_event: asyncio.Event | None = None
        self._shutdown_requested = False
        self._force_exit_requested = False
        self._original_handlers: dict[signal.Signals, Any] = {}
        self._cleanup_callbacks: list[tuple[int, Callable[[], Any]]] = []
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def timeout(self) -> float:
        """Shutdown timeout in seconds."""
        return self._timeout

    @property
    def is_shutdown_requested(self) -> bool:
        """Check if shutdown has been requested."""
        return self._shutdown_requested

    @property
    def is_force_exit_requested(self) -> bool:
        """Check if force exit has been requested (second signal received)."""
        return self._force_exit_requested

    def register_cleanup(self, callback: Callable[[], Any], *, phase: int = PHASE_CLIENTS) -> None:
        """Register a sync or async cleanup callback for a phase."""
        self._cleanup_callbacks.append((phase, callback))

    def request_shutdown(self) -> None:
        """Request shutdown from application code instead of a signal."""
        if not self._shutdown_requested:
            self._shutdown_requested = True
            logger.info("Shutdown requested programmatically")
            if self._shutdown_event:
                self._shutdown_event.set()

    async def wait(self) -> None:
        """Block until a shutdown signal arrives or request_shutdown() is called."""
        if self._shutdown_event is None:
            self._shutdown_event = asyncio.Event()
        if self._shutdown_requested:
            self._shutdown_event.set()

        await self._shutdown_event.wait()

    def install_signal_handlers(self) -> None:
        """Trap SIGTERM and SIGINT (SIGINT only on Windows)."""
        self._loop = asyncio.get_running_loop()
        if self._shutdown_event is None:
            self._shutdown_event = asyncio.Event()

        if sys.platform == "win32":
            self._install_windows_handlers()
        else:
            self._install_unix_handlers()

        logger.debug("Signal handlers installed")

    def _install_unix_handlers(self) -> None:
        if self._loop is None:
            return

        for sig in SHUTDOWN_SIGNALS:
            try:
                self._loop.add_signal_handler(sig, self._handle_signal, sig)
            except (ValueError, OSError, NotImplementedError) as e:
                logger.warning("Could not install handler for %s: %s", sig.name, e)

    def _install_windows_handlers(self) -> None:
        for sig in SHUTDOWN_SIGNALS:
            try:
                self._original_handlers[sig] = signal.signal(sig, self._handle_signal_sync)
            except (ValueError, OSError) as e:
                logger.warning("Could not install handler for %s: %s", sig.name, e)

    def remove_signal_handlers(self) -> None:
        """Remove installed signal handlers and restore originals."""
        if sys.platform == "win32":
            for sig, original in self._original_handlers.items():
                with suppress(ValueError, OSError):
                    signal.signal(sig, original)
            self._original_handlers.clear()
        elif self._loop is not None:
            for sig in SHUTDOWN_SIGNALS:
                with suppress(ValueError, OSError, NotImplementedError):
                    self._loop.remove_signal_handler(sig)

        logger.debug("Signal handlers removed")

    def _handle_signal(self, sig: signal.Signals) -> None:
        if self._shutdown_requested:
            self._force_exit_requested = True
            logger.warning("Received %s again - forcing exit!", sig.name)
            sys.exit(128 + sig.value)

        self._shutdown_requested = True
        logger.info("Received %s - initiating graceful shutdown...", sig.name)
        if self._shutdown_event:
            self._shutdown_event.set()

    def _handle_signal_sync(self, sig: int, _frame: FrameType | None) -> None:
        self._handle_signal(signal.Signals(sig))

    async def _run_phases(self) -> None:
        for phase, callback in sorted(self._cleanup_callbacks, key=lambda item: item[0]):
            try:
                result = callback()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("Cleanup callback failed in phase %d: %s", phase, e)

    async def run_cleanup_callbacks(self) -> None:
        """Run the registered callbacks phase by phase, once.

        Raises:
            ShutdownTimeoutError: If cleanup exceeds the timeout and
                ``exit_on_timeout`` is False.
        """
        try:
            await asyncio.wait_for(self._run_phases(), timeout=self._timeout)
        except TimeoutError as e:
            logger.error("Graceful shutdown exceeded %.0fs", self._timeout)
            if self._exit_on_timeout:
                sys.exit(1)
            raise ShutdownTimeoutError(f"Cleanup exceeded {self._timeout}s") from e
        finally:
            self._cleanup_callbacks.clear()

    async def __aenter__(self) -> GracefulShutdown:
        """Install signal handlers."""
        self.install_signal_handlers()
        return self

    async def __aexit__(self, *_args: Any) -> None:
        """Remove signal handlers and run cleanup."""
        self.remove_signal_handlers()
        await self.run_cleanup_callbacks()
