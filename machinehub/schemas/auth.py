import uuid
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Role(str, Enum):
    admin = "admin"
    mechanic = "mechanic"
    technician = "technician"
    driver = "driver"
    blacksmith = "blacksmith"
    guest = "guest"
    viewer = "viewer"
    customer = "customer"


class SessionKind(str, Enum):
    anonymous = "anonymous"
    public = "public"
    authenticated = "authenticated"


class AccessSession(BaseModel):
    """Who is acting: nobody, a scan-granted visitor, or a logged-in user."""

    model_config = ConfigDict(frozen=True)

    kind: SessionKind = SessionKind.anonymous
    user_id: Optional[str] = None
    name: Optional[str] = None
    role: Optional[Role] = None
    machine_id: Optional[str] = None  # machine the public grant was issued for

    @classmethod
    def anonymous(cls) -> "AccessSession":
        return cls()

    @classmethod
    def public(cls, machine_id: Optional[str] = None) -> "AccessSession":
        return cls(kind=SessionKind.public, machine_id=machine_id)

    @classmethod
    def authenticated(cls, user_id: str, name: str, role: Role) -> "AccessSession":
        return cls(kind=SessionKind.authenticated, user_id=user_id, name=name, role=Role(role))

    @property
    def is_anonymous(self) -> bool:
        return self.kind == SessionKind.anonymous

    @property
    def is_public(self) -> bool:
        return self.kind == SessionKind.public

    @property
    def is_authenticated(self) -> bool:
        return self.kind == SessionKind.authenticated

    @property
    def display_name(self) -> str:
        if self.is_authenticated:
            return self.name or self.user_id or "Unknown user"
        return "Public access" if self.is_public else "Anonymous"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class MeResponse(BaseModel):
    kind: SessionKind
    user_id: Optional[str] = None
    name: Optional[str] = None
    role: Optional[Role] = None
    machine_id: Optional[str] = None


class UserCreate(BaseModel):
    email: EmailStr
    name: str = Field(min_length=1)
    role: Role = Role.viewer
    password: str = Field(min_length=8)
    phone: Optional[str] = None


class UserResponse(BaseModel):
    id: uuid.UUID
    email: EmailStr
    name: str
    role: Role
    phone: Optional[str] = None
    is_active: bool = True

    class Config:
        from_attributes = True
