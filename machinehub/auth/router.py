from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import User
from ..schemas.auth import AccessSession, LoginRequest, MeResponse, TokenResponse
from .security import create_access_token, get_session, verify_password


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == req.email.lower()).first()
    if not user or not user.is_active or not verify_password(req.password, user.password_hash):
        logger.info("login_failed", email=req.email)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    access = create_access_token(str(user.id), user.name, user.role)
    user.last_login_at = datetime.now(timezone.utc)
    db.commit()
    logger.info("login_succeeded", user_id=str(user.id), role=user.role)
    return TokenResponse(access_token=access)


@router.get("/me", response_model=MeResponse)
def me(session: AccessSession = Depends(get_session)):
    return MeResponse(
        kind=session.kind,
        user_id=session.user_id,
        name=session.name,
        role=session.role,
        machine_id=session.machine_id,
    )
