"""Lifecycle of the embedded local cache registry.

The registry serves from its own thread and asyncio loop. ``start`` blocks
until the listener is bound (or a timeout expires), so nothing talks to the
registry before it can answer. Termination is reported through a single
signal queue consumed by a watcher thread: a requested shutdown stops the
server, anything else is escalated to the fault handler.
"""

from __future__ import annotations

import asyncio
import logging
import os
import queue
import threading
from typing import Callable

from aiohttp import web
from aiohttp.abc import AbstractAccessLogger

from imageset_mirror.config.settings import REGISTRY_READY_TIMEOUT_SECONDS
from imageset_mirror.domain import RegistryState, ShutdownReason
from imageset_mirror.exceptions import RegistryError, RegistryStartError
from imageset_mirror.logging import LoggerFactory, RegistryLogSink
from imageset_mirror.registry.config import RegistryConfig
from imageset_mirror.registry.server import build_app
from imageset_mirror.registry.storage import FilesystemStorage

EXIT_REGISTRY_FAULT = 70

log = LoggerFactory.for_registry()


class RegistryAccessLogger(AbstractAccessLogger):
    """Write aiohttp access records to the registry log."""

    def log(self, request, response, time: float) -> None:
        log.info(
            f'{request.remote} "{request.method} {request.path_qs}" '
            f"{response.status} {response.body_length} {time:.3f}s"
        )

    @property
    def enabled(self) -> bool:
        return True


def terminate_on_fault(reason: ShutdownReason) -> None:
    """Default fault handler: a dead cache registry ends the process."""
    workflow_log = LoggerFactory.for_workflow()
    workflow_log.critical(
        f"local storage registry stopped unexpectedly: {reason.detail or 'no error reported'}"
    )
    os._exit(EXIT_REGISTRY_FAULT)


class LocalRegistry:
    """One embedded registry instance; not restartable once stopped."""

    def __init__(
        self,
        config: RegistryConfig,
        log_sink: RegistryLogSink | None = None,
        fault_handler: Callable[[ShutdownReason], None] | None = None,
    ):
        self.config = config
        self.log_sink = log_sink
        self.storage = FilesystemStorage(config.root_directory)
        self.fault: ShutdownReason | None = None
        self._fault_handler = fault_handler or terminate_on_fault
        self._state = RegistryState.CONSTRUCTED
        self._state_lock = threading.Lock()
        self._signals: queue.Queue[ShutdownReason] = queue.Queue()
        self._stopped = threading.Event()
        self._shutdown_requested = threading.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._watcher: threading.Thread | None = None

    @property
    def state(self) -> RegistryState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: RegistryState) -> None:
        with self._state_lock:
            self._state = state
        log.debug(f"registry state -> {state.value}")

    @property
    def address(self) -> str:
        return f"localhost:{self.config.port}"

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def start(self, timeout: float = REGISTRY_READY_TIMEOUT_SECONDS) -> None:
        """Start serving and wait until the listener accepts connections.

        Raises:
            RegistryError: If this instance was already started
            RegistryStartError: If the listener is not ready within timeout
        """
        with self._state_lock:
            if self._state != RegistryState.CONSTRUCTED:
                raise RegistryError(
                    f"local storage registry cannot be started from state {self._state.value}"
                )
            self._state = RegistryState.STARTING

        ready: queue.Queue[tuple[str, BaseException | None]] = queue.Queue(maxsize=1)
        self._thread = threading.Thread(
            target=self._serve, args=(ready,), name="local-registry", daemon=True
        )
        self._thread.start()
        try:
            status, error = ready.get(timeout=timeout)
        except queue.Empty as exc:
            self._shutdown_requested.set()
            self._stop_loop()
            self._set_state(RegistryState.STOPPED)
            self._stopped.set()
            raise RegistryStartError(
                f"local storage registry not ready on {self.address} within {timeout}s"
            ) from exc
        if status == "error":
            self._set_state(RegistryState.STOPPED)
            self._stopped.set()
            raise RegistryStartError(
                f"local storage registry failed to start on {self.address}: {error}"
            ) from error

        self._set_state(RegistryState.SERVING)
        self._watcher = threading.Thread(
            target=self._watch, name="local-registry-watcher", daemon=True
        )
        self._watcher.start()
        log.info(f"listening on {self.config.host}:{self.config.port}")

    def _serve(self, ready: queue.Queue) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        app = build_app(self.config, self.storage)

        async def start_site() -> web.AppRunner:
            if self.config.access_log_disabled:
                runner = web.AppRunner(app, access_log=None)
            else:
                runner = web.AppRunner(
                    app,
                    access_log_class=RegistryAccessLogger,
                    access_log=logging.getLogger("imageset_mirror.registry.access"),
                )
            await runner.setup()
            try:
                site = web.TCPSite(runner, self.config.host, self.config.port)
                await site.start()
            except BaseException:
                await runner.cleanup()
                raise
            return runner

        try:
            runner = loop.run_until_complete(start_site())
        except Exception as exc:
            log.error(f"failed to start listener: {exc}")
            loop.close()
            ready.put(("error", exc))
            return

        if self._shutdown_requested.is_set():
            loop.run_until_complete(runner.cleanup())
            loop.close()
            log.info("listener closed before serving, start was abandoned")
            return

        ready.put(("ok", None))
        # stop right away if the abandon lands between the check and run_forever
        loop.call_soon(self._stop_if_requested)
        error: BaseException | None = None
        try:
            loop.run_forever()
        except Exception as exc:
            error = exc
        finally:
            loop.run_until_complete(runner.cleanup())
            loop.close()
            log.info("listener closed")

        if not self._shutdown_requested.is_set():
            detail = str(error) if error else "listener exited without error"
            self._signals.put(ShutdownReason.fault(detail))

    def _stop_loop(self) -> None:
        loop = self._loop
        if loop is not None and loop.is_running():
            loop.call_soon_threadsafe(loop.stop)

    def _stop_if_requested(self) -> None:
        if self._shutdown_requested.is_set() and self._loop is not None:
            self._loop.stop()

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def _watch(self) -> None:
        reason = self._signals.get()
        self._set_state(RegistryState.SHUTTING_DOWN)
        if reason.is_requested:
            log.info(f"normal shutdown requested: {reason.detail}")
            self._stop_loop()
            if self._thread is not None:
                self._thread.join()
            self._set_state(RegistryState.STOPPED)
            self._stopped.set()
            return

        self.fault = reason
        log.error(f"abnormal shutdown: {reason.detail}")
        self._set_state(RegistryState.STOPPED)
        self._stopped.set()
        self._fault_handler(reason)

    def signal(self, reason: ShutdownReason) -> None:
        """Send a terminal signal to the registry watcher."""
        if reason.is_requested:
            self._shutdown_requested.set()
        self._signals.put(reason)

    def request_shutdown(self, detail: str = "", timeout: float = 30.0) -> bool:
        """Ask a serving registry to stop and wait until it has.

        Returns:
            True if the registry is stopped when this returns
        """
        if self.state != RegistryState.SERVING:
            return self.state == RegistryState.STOPPED or self.state == RegistryState.CONSTRUCTED
        self.signal(ShutdownReason.requested(detail))
        return self._stopped.wait(timeout)

    def wait_stopped(self, timeout: float | None = None) -> bool:
        return self._stopped.wait(timeout)
