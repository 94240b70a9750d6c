"""Domain models for the referral service."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List, Optional


@dataclass
class User:
    """Represents a registered participant held in the user directory."""

    id: int
    name: str
    email: str
    referral_code: str
    points: int
    created_at: datetime
    updated_at: datetime

    def snapshot(self) -> "User":
        """Return a detached copy exposing only the public fields."""

        return replace(self)


@dataclass(frozen=True)
class RegistrationInput:
    """Raw registration fields; ``None`` means the field was not supplied."""

    name: Optional[object] = None
    email: Optional[object] = None
    referral_code: Optional[object] = None


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class RegistrationResult:
    """Outcome of a directory mutation, classified by HTTP-style status code."""

    success: bool
    status_code: int
    user: Optional[User] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class TopUser:
    name: str
    email: str
    points: int


@dataclass(frozen=True)
class UserStatistics:
    total_users: int
    total_points: int
    average_points: int
    top_users: List[TopUser] = field(default_factory=list)


__all__ = [
    "RegistrationInput",
    "RegistrationResult",
    "TopUser",
    "User",
    "UserStatistics",
    "ValidationResult",
]
