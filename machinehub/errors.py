"""
Error taxonomy for machine, schedule and sync operations.

Only PersistenceError is raised after a mutation has been computed; every
other error is raised before any side effect.
"""
from typing import Optional


class MachineHubError(Exception):
    """Base class for domain errors."""

    status_code = 400

    def __init__(self, message: str, *, detail: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ConfigurationError(MachineHubError):
    """Bad interval specification or settings value."""

    status_code = 422


class ValidationError(MachineHubError):
    """Missing or malformed required fields on a record or machine."""

    status_code = 400


class NotFoundError(MachineHubError):
    """Referenced machine, task or schedule does not exist."""

    status_code = 404


class PermissionDenied(MachineHubError):
    """Caller's session does not carry the required capability."""

    status_code = 403


class PersistenceError(MachineHubError):
    """Local cache write failed; the attempted mutation was not committed."""

    status_code = 503


class SyncWarning(MachineHubError):
    """Remote write failed after the local commit. Never raised to callers."""

    def __init__(self, message: str, *, operation: str, machine_id: str, attempts: int):
        super().__init__(message, detail={"operation": operation, "machine_id": machine_id, "attempts": attempts})
        self.operation = operation
        self.machine_id = machine_id
        self.attempts = attempts
