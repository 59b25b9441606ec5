"""
Supervisor for the Xray engine process.

Owns the lifecycle of a single engine child process: writes its
configuration, launches it, confirms it stays up through a short liveness
window, stops it, and watches for crashes. Status is the single source of
truth for asynchronous failures: a crash is never reported to a caller,
only reflected by get_status().

Start is synchronous: it blocks its caller for the liveness window
(`liveness_wait`, 2 seconds by default) and only returns once the engine is
confirmed running, or raises.
"""

import logging
import subprocess
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from .config import config
from .engine_config import synthesize, write_config
from .errors import ConfigWriteError, KillFailed, LaunchFailed
from .models import ServerDescriptor

logger = logging.getLogger(__name__)


class ProxyStatus(Enum):
    STOPPED = "stopped"
    CONNECTING = "connecting"
    RUNNING = "running"
    ERROR = "error"


@dataclass
class EngineProcess:
    """One launched engine process and the watcher bookkeeping bound to it."""

    process: subprocess.Popen
    generation: int
    cancel: threading.Event = field(default_factory=threading.Event)
    exited: threading.Event = field(default_factory=threading.Event)
    started_at: datetime = field(default_factory=datetime.now)


class ProcessSupervisor:
    """Manages the engine process and its stopped/connecting/running/error status."""

    def __init__(
        self,
        binary_path=None,
        config_path=None,
        *,
        provisioner=None,
        liveness_wait: float = None,
        poll_interval: float = 0.1,
        stop_timeout: float = None,
        socks_port: int = None,
        http_port: int = None,
        engine_log_level: str = None,
    ):
        self.binary_path = Path(binary_path or config.engine_binary_path)
        self.config_path = Path(config_path or config.engine_config_path)
        self.liveness_wait = config.liveness_wait if liveness_wait is None else liveness_wait
        self.poll_interval = poll_interval
        self.stop_timeout = config.stop_timeout if stop_timeout is None else stop_timeout
        self.socks_port = socks_port or config.socks_port
        self.http_port = http_port or config.http_port
        self.engine_log_level = engine_log_level or config.engine_log_level

        # ProvisionError propagates: a supervisor without a binary is unusable.
        if provisioner is not None:
            provisioner.ensure(self.binary_path)

        self._lock = threading.Lock()
        self._start_lock = threading.Lock()
        self._status = ProxyStatus.STOPPED
        self._active_server: ServerDescriptor | None = None
        self._engine: EngineProcess | None = None
        self._generation = 0

    def start(self, server: ServerDescriptor):
        """
        Start the engine for `server`, replacing any running engine.

        Raises:
            ConfigWriteError: the engine config could not be written.
            LaunchFailed: the engine did not start, exited within the
                liveness window, or was stopped while starting.
            KillFailed: a previously running engine could not be stopped.
        """
        with self._start_lock:
            with self._lock:
                previous = None
                if self._engine is not None:
                    logger.info("Engine already running, stopping it before restart")
                    previous = self._detach_locked()

                self._status = ProxyStatus.CONNECTING
                self._active_server = server
                generation = self._generation

            if previous is not None:
                self._reap(previous)

            with self._lock:
                if self._generation != generation:
                    raise LaunchFailed(f"Engine start for {server.name} was interrupted by a stop")

                document = synthesize(
                    server,
                    socks_port=self.socks_port,
                    http_port=self.http_port,
                    log_level=self.engine_log_level,
                )
                try:
                    write_config(document, self.config_path)
                except ConfigWriteError as e:
                    logger.error(f"Failed to start engine for {server.name}: {e}")
                    self._status = ProxyStatus.ERROR
                    raise

                self._generation += 1
                try:
                    process = subprocess.Popen(
                        [str(self.binary_path), "-config", str(self.config_path)],
                    )
                except OSError as e:
                    logger.error(f"Failed to launch engine {self.binary_path}: {e}")
                    self._status = ProxyStatus.ERROR
                    raise LaunchFailed(f"Failed to start engine process: {e}") from e

                engine = EngineProcess(process=process, generation=self._generation)
                self._engine = engine
                threading.Thread(
                    target=self._watch,
                    args=(engine,),
                    name=f"engine-watcher-{engine.generation}",
                    daemon=True,
                ).start()

            logger.info(f"Started engine for {server.name} with PID {process.pid}")
            self._wait_liveness(engine)

            with self._lock:
                if self._engine is not engine or engine.generation != self._generation:
                    raise LaunchFailed(f"Engine start for {server.name} was interrupted by a stop")

                if engine.exited.is_set():
                    self._status = ProxyStatus.ERROR
                    self._engine = None
                    logger.error(
                        f"Engine for {server.name} exited with code "
                        f"{process.returncode} during startup"
                    )
                    raise LaunchFailed(
                        f"Engine process exited immediately (code {process.returncode})"
                    )

                self._status = ProxyStatus.RUNNING

        logger.info(f"Engine running for {server.name}")

    def _wait_liveness(self, engine: EngineProcess):
        """Poll until the liveness window ends, the engine exits, or a stop cancels it."""
        deadline = time.monotonic() + self.liveness_wait
        while not engine.exited.is_set() and not engine.cancel.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            engine.exited.wait(min(self.poll_interval, remaining))

    def stop(self):
        """
        Stop the engine. Calling it while already stopped is a no-op.

        State is cleared under the lock; the killed process is reaped after
        the lock is released, so status reads never wait on it.

        Raises:
            KillFailed: the OS refused to terminate the process. State is
                left unchanged; re-query get_status().
        """
        with self._lock:
            engine = self._detach_locked()
        if engine is not None:
            self._reap(engine)

    def _detach_locked(self) -> EngineProcess | None:
        """Kill the current engine and reset state. Returns the engine still to be reaped."""
        engine = self._engine
        if engine is None and self._status == ProxyStatus.STOPPED:
            return None

        if engine is not None:
            process = engine.process
            try:
                process.kill()
            except ProcessLookupError:
                pass
            except OSError as e:
                logger.error(f"Failed to kill engine process {process.pid}: {e}")
                raise KillFailed(f"Failed to kill engine process {process.pid}: {e}") from e
            engine.cancel.set()

        self._generation += 1
        self._engine = None
        self._active_server = None
        self._status = ProxyStatus.STOPPED
        return engine

    def _reap(self, engine: EngineProcess):
        process = engine.process
        try:
            process.wait(timeout=self.stop_timeout)
        except subprocess.TimeoutExpired:
            logger.error(
                f"Engine process {process.pid} did not exit within {self.stop_timeout}s of kill"
            )
            return
        logger.info(f"Stopped engine process {process.pid}")

    def _watch(self, engine: EngineProcess):
        """Wait for one engine process to exit and record the outcome."""
        returncode = engine.process.wait()
        engine.exited.set()

        with self._lock:
            if engine.cancel.is_set() or self._engine is not engine:
                logger.debug(f"Engine process {engine.process.pid} exit handled by stop")
                return
            if self._status == ProxyStatus.CONNECTING:
                # start() is still inside the liveness window and reports this itself
                return

            if returncode != 0:
                logger.error(f"Engine process {engine.process.pid} exited with code {returncode}")
                self._status = ProxyStatus.ERROR
            else:
                logger.info(f"Engine process {engine.process.pid} exited")
                self._status = ProxyStatus.STOPPED
            self._engine = None
            self._active_server = None

    def get_status(self) -> ProxyStatus:
        with self._lock:
            return self._status

    def get_active_server(self) -> ServerDescriptor | None:
        with self._lock:
            return self._active_server

    def is_running(self) -> bool:
        return self.get_status() == ProxyStatus.RUNNING

    def get_pid(self) -> int | None:
        """Get the PID of the engine, if one is alive."""
        with self._lock:
            engine = self._engine
        if engine is None or engine.exited.is_set():
            return None
        return engine.process.pid

    def get_started_at(self) -> datetime | None:
        with self._lock:
            return self._engine.started_at if self._engine else None

    def shutdown(self):
        """Stop the engine at application exit, logging instead of raising."""
        try:
            self.stop()
        except KillFailed as e:
            logger.error(f"Engine could not be stopped at shutdown: {e}")
