from typing import List

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import get_password_hash, get_session
from ..db import get_db
from ..models.models import User
from ..schemas.auth import AccessSession, UserCreate, UserResponse
from ..services import permissions


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=List[UserResponse])
def list_users(db: Session = Depends(get_db), session: AccessSession = Depends(get_session)):
    permissions.require(session, "manage_users")
    return db.query(User).order_by(User.created_at.asc()).all()


@router.post("", response_model=UserResponse, status_code=201)
def create_user(body: UserCreate, db: Session = Depends(get_db), session: AccessSession = Depends(get_session)):
    permissions.require(session, "manage_users")
    email = body.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=409, detail="Email already registered")
    user = User(
        email=email,
        name=body.name,
        role=body.role.value,
        password_hash=get_password_hash(body.password),
        phone=body.phone,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("user_created", user_id=str(user.id), role=user.role, created_by=session.user_id)
    return user
