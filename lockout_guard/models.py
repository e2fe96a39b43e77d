from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field
from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything is stored in UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    pass


class LockoutRecordModel(Base):
    __tablename__ = "account_lockouts"

    credential = Column(String, primary_key=True)
    failed_attempts = Column(Integer, nullable=False, default=0)
    last_failed_attempt = Column(DateTime(timezone=True), nullable=True)
    locked_until = Column(DateTime(timezone=True), nullable=True)
    lockout_count = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, unique=True, nullable=False)
    password = Column(String, nullable=False)
    salt = Column(String, nullable=False)
    hash_mode = Column(String, nullable=False)


class LockoutRecord(BaseModel):
    credential: str
    failed_attempts: int = Field(default=0, ge=0)
    last_failed_attempt: datetime | None = None
    locked_until: datetime | None = None
    lockout_count: int = Field(default=0, ge=0)
    version: int = Field(default=0, ge=0, description="optimistic concurrency token")

    @classmethod
    def from_orm_model(cls, orm_record: LockoutRecordModel) -> "LockoutRecord":
        return cls(
            credential=orm_record.credential,
            failed_attempts=orm_record.failed_attempts,
            last_failed_attempt=as_utc(orm_record.last_failed_attempt),
            locked_until=as_utc(orm_record.locked_until),
            lockout_count=orm_record.lockout_count,
            version=orm_record.version,
        )

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now


class Outcome(str, Enum):
    ALLOWED = "allowed"
    DENIED = "denied"
    INDETERMINATE = "indeterminate"


class LockoutStatus(BaseModel):
    locked: bool
    attempts_remaining: int
    locked_until: datetime | None = None
    outcome: Outcome = Outcome.ALLOWED

    def message(self) -> str:
        if self.locked:
            if self.locked_until is None:
                return "Account is locked due to too many failed attempts. Try again later."
            return (
                "Account is locked due to too many failed attempts. "
                f"Try again after {self.locked_until.strftime('%H:%M:%S')}."
            )
        return (
            "Invalid email or password. "
            f"{self.attempts_remaining} attempts remaining before account lockout."
        )


class User(BaseModel):
    id: int | None = None
    email: str
    password: str
    salt: str
    hash_mode: str | None = Field(default=None)

    @classmethod
    def from_orm_model(cls, orm_user: UserModel) -> "User":
        return cls(
            id=orm_user.id,
            email=orm_user.email,
            password=orm_user.password,
            salt=orm_user.salt,
            hash_mode=orm_user.hash_mode,
        )


class RegisterRequest(BaseModel):
    email: str
    password: str = Field(min_length=6)
    hash_mode: str | None = Field(default=None, description="argon2id|bcrypt")


class RegisterResponse(BaseModel):
    result: str


class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    result: str
    locked: bool = False
    attempts_remaining: int | None = None
    locked_until: datetime | None = None
    message: str | None = None
    latency_ms: float | None = None


class AccountStatusResponse(BaseModel):
    email: str
    exists: bool
    locked: bool
    attempts_remaining: int
    locked_until: datetime | None = None
    outcome: Outcome


class UnlockRequest(BaseModel):
    email: str
    admin_key: str


class UnlockResponse(BaseModel):
    result: str
    email: str
