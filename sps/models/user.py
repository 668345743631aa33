"""User data models"""

import re
from typing import Literal, Optional

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

UserType = Literal["admin", "user"]

PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]")


def _check_password_strength(value: str) -> str:
    if not PASSWORD_PATTERN.match(value):
        raise ValueError(
            "Password must contain at least one uppercase letter, one lowercase letter, "
            "one number and one special character"
        )
    return value


def _check_email(value: str) -> str:
    """Reject malformed addresses; the accepted value is kept exactly as sent."""
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError as e:
        raise ValueError(f"Invalid email: {e}")
    return value


class User(BaseModel):
    """Public user record. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    type: UserType


class StoredUser(User):
    """Credential store record"""

    password_hash: str

    def public(self) -> User:
        return User(id=self.id, name=self.name, email=self.email, type=self.type)


class UserCreate(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    email: str
    type: UserType
    password: str = Field(min_length=8, max_length=128)

    @field_validator("email")
    @classmethod
    def email_format(cls, v: str) -> str:
        return _check_email(v)

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return _check_password_strength(v)


class UserUpdate(BaseModel):
    """Partial update; at least one field must be provided."""

    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    email: Optional[str] = None
    type: Optional[UserType] = None
    password: Optional[str] = Field(default=None, min_length=8, max_length=128)

    @field_validator("email")
    @classmethod
    def email_format(cls, v: Optional[str]) -> Optional[str]:
        return _check_email(v) if v is not None else v

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: Optional[str]) -> Optional[str]:
        return _check_password_strength(v) if v is not None else v

    @model_validator(mode="after")
    def at_least_one_field(self) -> "UserUpdate":
        if not self.model_dump(exclude_none=True):
            raise ValueError("At least one field must be provided for update")
        return self


class LoginRequest(BaseModel):
    email: str
    password: str = Field(min_length=3)

    @field_validator("email")
    @classmethod
    def email_format(cls, v: str) -> str:
        return _check_email(v)


class RefreshRequest(BaseModel):
    refreshToken: str = Field(min_length=1)
