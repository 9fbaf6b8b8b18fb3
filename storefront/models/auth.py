"""User and session records."""

import uuid
from datetime import datetime, timezone
from typing import List, Optional
from sqlmodel import SQLModel, Field, Column, DateTime, JSON, Relationship
from sqlalchemy import func
import bcrypt


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    """Customer, vendor or admin account."""

    __tablename__ = "users"

    id: str = Field(default_factory=_new_id, primary_key=True, max_length=36)
    email: str = Field(unique=True, index=True, max_length=255)
    username: Optional[str] = Field(default=None, unique=True, index=True, max_length=100)
    password_hash: str = Field(default="", max_length=255)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    profile_picture: Optional[str] = Field(default=None, max_length=1000)
    roles: List[str] = Field(default_factory=lambda: ["USER"], sa_column=Column(JSON))
    is_verified: bool = Field(default=False)
    verification_hash: Optional[str] = Field(default=None, unique=True, max_length=255)
    verification_code: Optional[str] = Field(default=None, max_length=16)
    verification_code_expire_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), onupdate=func.now())
    )

    def set_password(self, password: str) -> None:
        """Hash and set password using bcrypt."""
        salt = bcrypt.gensalt()
        self.password_hash = bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')

    def verify_password(self, password: str) -> bool:
        """Verify password against stored hash."""
        if not self.password_hash:
            return False
        return bcrypt.checkpw(
            password.encode('utf-8'),
            self.password_hash.encode('utf-8')
        )

    @classmethod
    def create(cls, email: str, password: str, username: Optional[str] = None,
               **fields) -> "User":
        """Factory method to create a user with hashed password."""
        user = cls(
            email=email.lower().strip(),
            username=username.strip() if username else None,
            **fields
        )
        user.set_password(password)
        return user


class UserSession(SQLModel, table=True):
    """Login session bound to a bearer token."""

    __tablename__ = "sessions"

    id: str = Field(default_factory=_new_id, primary_key=True, max_length=36)
    user_id: str = Field(foreign_key="users.id", index=True, max_length=36)
    token: str = Field(unique=True, index=True, max_length=512)
    ip_address: Optional[str] = Field(default=None, max_length=64)
    user_agent: Optional[str] = Field(default=None, max_length=512)
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    last_activity: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True))
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )

    # Owner, attached on request by SessionRepository; never loaded implicitly
    user: Optional[User] = Relationship(sa_relationship_kwargs={"lazy": "noload"})

    @property
    def is_expired(self) -> bool:
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            # SQLite drops the offset on the way back
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= _utcnow()
