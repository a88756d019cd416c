from datetime import datetime, timezone
from typing import Optional, Dict, Tuple, Any
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field, JSON


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthenticationResponse(BaseModel):
    """
    Result of a successful ticket validation. Never mutated once built: one
    instance is shared by every request carrying the session cookie, so the
    multi-valued fields are tuples.
    """

    model_config = ConfigDict(frozen=True)

    user: str
    # CAS attributes are multi-valued: name -> values in document order
    attributes: Dict[str, Tuple[str, ...]] = {}
    authentication_date: Optional[datetime] = None # absent under CAS 1.0 / 2.0
    is_new_login: Optional[bool] = None
    is_remembered_login: Optional[bool] = None
    member_of: Tuple[str, ...] = ()
    proxy_granting_ticket: Optional[str] = None
    proxies: Tuple[str, ...] = ()


class Session(BaseModel):
    model_config = ConfigDict(frozen=True)

    cookie: str
    ticket: str
    response: AuthenticationResponse
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # SQLite hands back naive values for timezone-aware columns
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class LogoutNotification(BaseModel):
    session_index: str
    id: Optional[str] = None
    version: Optional[str] = None
    issue_instant: Optional[str] = None
    name_id: Optional[str] = None


class CasSessionRecord(SQLModel, table=True):
    __tablename__ = "cas_session"

    cookie: str = Field(primary_key=True)
    # One row holds both keys, so deleting it drops the ticket index as well
    ticket: str = Field(index=True, unique=True)
    response: Dict[str, Any] = Field(default={}, sa_type=JSON)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

    def to_session(self) -> Session:
        return Session(
            cookie=self.cookie,
            ticket=self.ticket,
            response=AuthenticationResponse.model_validate(self.response),
            created_at=self.created_at,
        )


class Role(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    name: str


class Permission(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    name: str
    code: Optional[str] = None


class UserInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    name: str
    department: Optional[str] = None
    email: Optional[str] = None
