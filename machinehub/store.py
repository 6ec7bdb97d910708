"""
In-memory machine store.

Holds the current list of machines as an immutable tuple snapshot. A commit
writes the local cache first, then swaps the whole snapshot, then queues
remote writes for the changed machines. Every read-modify-write runs under
one re-entrant lock so concurrent requests never build on a stale snapshot.
"""
import threading
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

import structlog

from .errors import NotFoundError
from .schemas.auth import AccessSession, Role
from .schemas.machines import Machine, utcnow
from .services import permissions
from .services.sync import SyncManager


logger = structlog.get_logger(__name__)


class EntityStore:
    def __init__(
        self,
        sync: SyncManager,
        machines: Iterable[Machine] = (),
        session: Optional[AccessSession] = None,
    ):
        self.sync = sync
        self._machines: Tuple[Machine, ...] = tuple(machines)
        self._lock = threading.RLock()
        self.session = session or AccessSession.anonymous()

    @classmethod
    def bootstrap(cls, sync: SyncManager) -> "EntityStore":
        machines = sync.load_initial()
        logger.info("store_bootstrapped", machines=len(machines))
        return cls(sync, machines)

    # Reads
    @property
    def machines(self) -> List[Machine]:
        return list(self._machines)

    def find_machine(self, machine_id: str) -> Optional[Machine]:
        for machine in self._machines:
            if machine.id == machine_id:
                return machine
        return None

    def get_machine(self, machine_id: str) -> Machine:
        machine = self.find_machine(machine_id)
        if machine is None:
            raise NotFoundError("Machine not found", detail={"machine_id": machine_id})
        return machine

    # Writes
    def commit(
        self,
        machines: Sequence[Machine],
        changed: Optional[Iterable[Machine]] = None,
        deleted: Optional[Iterable[str]] = None,
    ) -> List[Machine]:
        """
        Replace the whole machine list.

        The local cache is written before the snapshot is swapped, so a
        PersistenceError leaves the previous snapshot in place.
        """
        snapshot = tuple(machines)
        changed = list(changed or [])
        deleted = list(deleted or [])
        with self._lock:
            self.sync.write_local(list(snapshot))
            self._machines = snapshot
            # queued under the lock so remote writes keep commit order
            for machine in changed:
                self.sync.enqueue_upsert(machine)
            for machine_id in deleted:
                self.sync.enqueue_delete(machine_id)
        logger.info(
            "machines_committed",
            machines=len(snapshot),
            changed=[m.id for m in changed],
            deleted=deleted,
        )
        return list(snapshot)

    def update(self, machine_id: str, fn: Callable[[Machine], Tuple[Machine, Any]]) -> Tuple[Machine, Any]:
        """
        Apply `fn` to the current value of a machine and commit the result.

        `fn` returns (machine, result). Returning the input machine unchanged
        skips the commit. Errors raised by `fn` leave the store untouched.

        Returns:
            (committed machine, result)
        """
        with self._lock:
            current = self.get_machine(machine_id)
            machine, result = fn(current)
            if machine is current:
                return current, result
            return self.replace_machine(machine), result

    def replace_machine(self, machine: Machine) -> Machine:
        with self._lock:
            current = self.get_machine(machine.id)
            if machine.updated_at is None or machine.updated_at == current.updated_at:
                machine = machine.model_copy(update={"updated_at": utcnow()})
            self.commit(
                [machine if m.id == machine.id else m for m in self._machines],
                changed=[machine],
            )
        return machine

    def insert_machine(self, machine: Machine) -> Machine:
        with self._lock:
            self.commit([*self._machines, machine], changed=[machine])
        return machine

    def remove_machine(self, machine_id: str) -> None:
        with self._lock:
            self.get_machine(machine_id)
            self.commit([m for m in self._machines if m.id != machine_id], deleted=[machine_id])

    # Session
    def login(self, user_id: str, name: str, role: Role) -> AccessSession:
        self.session = permissions.login_session(user_id, name, role)
        return self.session

    def logout(self) -> AccessSession:
        self.session = permissions.logout_session()
        return self.session

    def grant_public_access(self, machine_id: Optional[str] = None) -> AccessSession:
        self.session = permissions.grant_public_access(self.session, machine_id)
        return self.session
