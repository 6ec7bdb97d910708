"""
Sync manager: local cache is authoritative, the remote store is a lagging mirror.

Every commit is written synchronously to the local cache. Remote writes are
queued and applied by a worker with bounded retry and exponential backoff;
a remote write that still fails is dropped with a SyncWarning.
"""
import queue
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional

import structlog

from ..config import settings
from ..errors import PersistenceError, SyncWarning
from ..schemas.machines import Machine
from ..storage.provider import MachineCache, RemoteStore


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RemoteOp:
    operation: str  # upsert|delete
    machine_id: str
    machine: Optional[Machine] = None


class SyncManager:
    def __init__(
        self,
        cache: MachineCache,
        remote: Optional[RemoteStore] = None,
        *,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        background: Optional[bool] = None,
        sleep: Callable[[float], None] = time.sleep,
        warning_history: Optional[int] = None,
    ):
        self.cache = cache
        self.remote = remote
        self.max_retries = settings.sync_max_retries if max_retries is None else max_retries
        self.backoff_seconds = settings.sync_backoff_seconds if backoff_seconds is None else backoff_seconds
        self.background = settings.sync_background if background is None else background
        self._sleep = sleep
        self._queue: "queue.Queue[Optional[RemoteOp]]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._stopping = threading.Event()
        self.warnings: Deque[SyncWarning] = deque(
            maxlen=settings.sync_warning_history if warning_history is None else warning_history
        )

    # Startup
    def load_initial(self) -> List[Machine]:
        """Seed order: remote store, then local cache, then empty."""
        if self.remote is not None:
            try:
                machines = self.remote.list_machines()
            except Exception as e:
                logger.warning("remote_seed_failed", error=str(e))
            else:
                logger.info("seeded_from_remote", machines=len(machines))
                try:
                    self.cache.write(machines)
                except PersistenceError as e:
                    logger.warning("cache_refresh_failed", error=str(e))
                return machines

        try:
            cached = self.cache.read()
        except PersistenceError as e:
            logger.warning("cache_seed_failed", error=str(e))
            cached = None
        if cached is not None:
            logger.info("seeded_from_cache", machines=len(cached))
            return cached

        logger.info("seeded_empty")
        return []

    # Local commit
    def write_local(self, machines: List[Machine]) -> None:
        """Write the full snapshot to the local cache. Raises PersistenceError."""
        self.cache.write(machines)

    # Remote write-through
    def enqueue_upsert(self, machine: Machine) -> None:
        self._enqueue(RemoteOp("upsert", machine.id, machine.model_copy(deep=True)))

    def enqueue_delete(self, machine_id: str) -> None:
        self._enqueue(RemoteOp("delete", machine_id))

    def _enqueue(self, op: RemoteOp) -> None:
        if self.remote is None:
            return
        self._queue.put(op)
        if self.background:
            self.start()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def drain(self) -> int:
        """Apply all queued remote writes on the calling thread. Returns ops processed."""
        processed = 0
        while True:
            try:
                op = self._queue.get_nowait()
            except queue.Empty:
                return processed
            try:
                if op is not None:
                    self._apply(op)
                    processed += 1
            finally:
                self._queue.task_done()

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait until queued remote writes are done. Returns False on timeout."""
        if self._worker is None or not self._worker.is_alive():
            self.drain()
            return True
        # Queue.join has no timeout; wait on it from a helper thread
        waiter = threading.Thread(target=self._queue.join, name="machinehub-sync-flush", daemon=True)
        waiter.start()
        waiter.join(timeout)
        return not waiter.is_alive()

    def _apply(self, op: RemoteOp) -> None:
        attempts = 0
        while True:
            attempts += 1
            try:
                if op.operation == "upsert":
                    self.remote.upsert_machine(op.machine)
                else:
                    self.remote.delete_machine(op.machine_id)
                if attempts > 1:
                    logger.info("remote_write_recovered", operation=op.operation, machine_id=op.machine_id, attempts=attempts)
                return
            except Exception as e:
                if attempts > self.max_retries:
                    warning = SyncWarning(
                        f"Remote {op.operation} of {op.machine_id} dropped after {attempts} attempts: {e}",
                        operation=op.operation,
                        machine_id=op.machine_id,
                        attempts=attempts,
                    )
                    self.warnings.append(warning)
                    logger.warning(
                        "remote_write_dropped",
                        operation=op.operation,
                        machine_id=op.machine_id,
                        attempts=attempts,
                        error=str(e),
                    )
                    return
                delay = self.backoff_seconds * (2 ** (attempts - 1))
                logger.info(
                    "remote_write_failed",
                    operation=op.operation,
                    machine_id=op.machine_id,
                    attempt=attempts,
                    retry_in=delay,
                    error=str(e),
                )
                self._sleep(delay)

    # Worker thread
    def start(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._stopping.clear()
        self._worker = threading.Thread(target=self._run, name="machinehub-sync", daemon=True)
        self._worker.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        if self._worker is None:
            return
        self._stopping.set()
        self._queue.put(None)
        self._worker.join(timeout)
        self._worker = None

    def _run(self) -> None:
        while not self._stopping.is_set():
            op = self._queue.get()
            try:
                if op is not None:
                    self._apply(op)
            except Exception:
                logger.exception("sync_worker_error")
            finally:
                self._queue.task_done()
