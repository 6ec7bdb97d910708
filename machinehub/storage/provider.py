from typing import List, Optional

from ..schemas.machines import Machine


class MachineCache:
    """Durable local copy of the full machine list."""

    def read(self) -> Optional[List[Machine]]:
        raise NotImplementedError

    def write(self, machines: List[Machine]) -> None:
        raise NotImplementedError


class RemoteStore:
    """Authoritative remote store, addressed by machine id."""

    def list_machines(self) -> List[Machine]:
        raise NotImplementedError

    def get_machine(self, machine_id: str) -> Optional[Machine]:
        raise NotImplementedError

    def upsert_machine(self, machine: Machine) -> None:
        raise NotImplementedError

    def delete_machine(self, machine_id: str) -> None:
        raise NotImplementedError
