"""
Permission checking for machine operations.

Every mutating operation goes through `require`; capabilities are a fixed
minimum-rank table defined here and nowhere else.
"""
import json
from typing import Dict, Iterable, List, Optional, Union
from urllib.parse import parse_qs, urlparse

import structlog
from pydantic import ValidationError as PydanticValidationError

from ..config import settings
from ..errors import NotFoundError, PermissionDenied, ValidationError
from ..schemas.auth import AccessSession, Role
from ..schemas.machines import Machine, ScanPayload


logger = structlog.get_logger(__name__)

ROLE_RANKS: Dict[Role, int] = {
    Role.viewer: 1,
    Role.customer: 1,
    Role.guest: 1,
    Role.driver: 2,
    Role.mechanic: 3,
    Role.technician: 4,
    Role.blacksmith: 4,
    Role.admin: 5,
}
LOWEST_RANK = min(ROLE_RANKS.values())

CAPABILITIES: Dict[str, Role] = {
    "view_machine": Role.viewer,
    "mark_lubrication": Role.driver,
    "add_notes": Role.driver,
    "complete_task": Role.driver,
    "add_service_record": Role.mechanic,
    "upload_documents": Role.mechanic,
    "add_task": Role.mechanic,
    "add_machine": Role.mechanic,
    "delete_machine": Role.admin,
    "manage_users": Role.admin,
}


def rank(role: Union[Role, str]) -> int:
    return ROLE_RANKS[Role(role)]


def has_rank(session: AccessSession, min_role: Union[Role, str]) -> bool:
    """Check if the session's rank meets or exceeds the rank of `min_role`."""
    required = rank(min_role)
    if session.is_authenticated and session.role is not None:
        return rank(session.role) >= required
    if session.is_public:
        # Scan-granted sessions are read-only equivalents
        return required <= LOWEST_RANK
    return False


def can(session: AccessSession, capability: str) -> bool:
    try:
        min_role = CAPABILITIES[capability]
    except KeyError:
        raise ValueError(f"Unknown capability: {capability}")
    return has_rank(session, min_role)


def require(session: AccessSession, capability: str) -> None:
    """Raise PermissionDenied unless the session carries the capability."""
    if not can(session, capability):
        logger.info(
            "permission_denied",
            capability=capability,
            session_kind=session.kind.value,
            role=session.role.value if session.role else None,
        )
        raise PermissionDenied(
            f"Not allowed to {capability.replace('_', ' ')}",
            detail={"capability": capability, "session_kind": session.kind.value},
        )


def can_view_machine(session: AccessSession, machine_id: str) -> bool:
    """Public access only covers the machine it was granted for."""
    if not can(session, "view_machine"):
        return False
    if session.is_public:
        return session.machine_id is not None and session.machine_id == machine_id
    return True


def require_view(session: AccessSession, machine_id: str) -> None:
    if not can_view_machine(session, machine_id):
        logger.info("permission_denied", capability="view_machine", machine_id=machine_id, session_kind=session.kind.value)
        raise PermissionDenied(
            "Not allowed to view this machine",
            detail={"machine_id": machine_id, "session_kind": session.kind.value},
        )


def visible_machines(session: AccessSession, machines: Iterable[Machine]) -> List[Machine]:
    require(session, "view_machine")
    return [m for m in machines if can_view_machine(session, m.id)]


def can_edit_machine(session: AccessSession, machine: Machine) -> bool:
    """
    Check if the session can edit a machine.
    - Admin can edit any machine
    - Roles listed in the machine's edit_permissions can edit it
    - Without edit_permissions, mechanic rank and above can edit
    """
    if not session.is_authenticated or session.role is None:
        return False
    if has_rank(session, Role.admin):
        return True
    if machine.edit_permissions:
        return session.role in machine.edit_permissions
    return has_rank(session, Role.mechanic)


def require_edit(session: AccessSession, machine: Machine) -> None:
    if not can_edit_machine(session, machine):
        logger.info("permission_denied", capability="edit_machine", machine_id=machine.id, session_kind=session.kind.value)
        raise PermissionDenied(
            "Not allowed to edit this machine",
            detail={"machine_id": machine.id, "session_kind": session.kind.value},
        )


def can_add_service_record(session: AccessSession) -> bool:
    return can(session, "add_service_record")


def can_mark_lubrication(session: AccessSession) -> bool:
    return can(session, "mark_lubrication")


def can_add_notes(session: AccessSession) -> bool:
    return can(session, "add_notes")


def can_upload_documents(session: AccessSession) -> bool:
    return can(session, "upload_documents")


def can_add_task(session: AccessSession) -> bool:
    return can(session, "add_task")


def can_manage_users(session: AccessSession) -> bool:
    return can(session, "manage_users")


# Session transitions
def grant_public_access(session: AccessSession, machine_id: Optional[str] = None) -> AccessSession:
    """Anonymous -> PublicAccess. Logged-in sessions keep their identity."""
    if session.is_authenticated:
        return session
    return AccessSession.public(machine_id)


def login_session(user_id: str, name: str, role: Union[Role, str]) -> AccessSession:
    return AccessSession.authenticated(user_id, name, Role(role))


def logout_session() -> AccessSession:
    return AccessSession.anonymous()


# Scan codes
def _machine_id_from_path(path: str) -> Optional[str]:
    parts = [p for p in path.split("/") if p]
    for i, part in enumerate(parts[:-1]):
        if part in ("machine", "machines"):
            return parts[i + 1]
    return None


def parse_scan_code(code: str) -> Union[str, ScanPayload]:
    """
    Turn raw scanner/manual-entry text into a machine id or a full payload.

    Accepts a JSON payload, a /machine/<id> URL, or a bare id.
    """
    if code is None or not str(code).strip():
        raise ValidationError("Invalid QR code", detail={"reason": "empty code"})
    text = str(code).strip()

    if text.startswith("{"):
        try:
            data = json.loads(text)
            return ScanPayload.model_validate(data)
        except (json.JSONDecodeError, PydanticValidationError) as e:
            raise ValidationError("Invalid QR code", detail={"reason": "malformed payload"}) from e

    parsed = urlparse(text)
    from_path = _machine_id_from_path(parsed.path)
    if from_path:
        return from_path
    return text.split("?")[0].split("#")[0]


def resolve_scan(machines: Iterable[Machine], code: Union[str, ScanPayload]) -> Machine:
    """
    Find the machine a scanned code points at.

    Raises:
        NotFoundError: the id does not match a known machine
        ValidationError: a full payload whose fields do not match the machine
    """
    target = parse_scan_code(code) if isinstance(code, str) else code
    if isinstance(target, ScanPayload):
        return validate_scan_payload(machines, target)
    for machine in machines:
        if machine.id == target:
            return machine
    logger.info("scan_unknown_machine", machine_id=target)
    raise NotFoundError("Machine not found", detail={"machine_id": target})


def validate_scan_payload(machines: Iterable[Machine], payload: ScanPayload) -> Machine:
    machine = next((m for m in machines if m.id == payload.id), None)
    if machine is None:
        logger.info("scan_unknown_machine", machine_id=payload.id)
        raise NotFoundError("Machine not found", detail={"machine_id": payload.id})
    if (
        machine.name != payload.name
        or machine.model != payload.model
        or machine.serial_number != payload.serial_number
    ):
        logger.warning("scan_payload_mismatch", machine_id=payload.id)
        raise ValidationError("Invalid QR code", detail={"machine_id": payload.id})
    return machine


def scan_payload_for(machine: Machine) -> ScanPayload:
    return ScanPayload(id=machine.id, name=machine.name, model=machine.model, serial_number=machine.serial_number)


def public_location(machine_id: str, marker: Optional[str] = None) -> str:
    marker = marker or settings.public_access_marker
    return f"/machines/{machine_id}?{marker}=true"


def session_from_location(
    url: str,
    authenticated: Optional[AccessSession] = None,
    marker: Optional[str] = None,
) -> AccessSession:
    """
    Resolve the session for a navigable location.
    A stored login always wins; otherwise the public marker grants PublicAccess
    to the machine named in the path. The marker on any other path is ignored.
    """
    if authenticated is not None and authenticated.is_authenticated:
        return authenticated
    marker = marker or settings.public_access_marker
    parsed = urlparse(url or "")
    machine_id = _machine_id_from_path(parsed.path)
    if machine_id and marker in parse_qs(parsed.query, keep_blank_values=True):
        return AccessSession.public(machine_id)
    return AccessSession.anonymous()
