from fastapi import APIRouter, Depends

from ..auth.security import get_session, get_store
from ..schemas.auth import AccessSession
from ..schemas.machines import SyncStatusResponse
from ..services import permissions


router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(store=Depends(get_store), session: AccessSession = Depends(get_session)):
    permissions.require(session, "view_machine")
    return SyncStatusResponse(
        pending=store.sync.pending,
        warnings=[
            {
                "message": w.message,
                "operation": w.operation,
                "machineId": w.machine_id,
                "attempts": w.attempts,
            }
            for w in store.sync.warnings
        ],
    )
