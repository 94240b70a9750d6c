"""In-memory user directory and the registration workflow."""

from __future__ import annotations

import logging
import math
import secrets
import threading
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from .config import PointsSettings, Settings, ValidationSettings
from .models import (
    RegistrationInput,
    RegistrationResult,
    TopUser,
    User,
    UserStatistics,
)
from .validation import (
    is_valid_referral_code,
    is_valid_user_id,
    sanitize_user_input,
    validate_user_input,
)

logger = logging.getLogger("referrals.directory")

MAX_CODE_ATTEMPTS = 100
TOP_USERS_LIMIT = 5

INTERNAL_ERROR_MESSAGE = "Internal server error"


class ReferralCodeExhaustedError(RuntimeError):
    """Raised when no unused referral code could be generated."""


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def sample_users() -> List[User]:
    """Return fresh copies of the demo users the service starts with."""

    def _user(user_id: int, name: str, email: str, code: str, points: int, day: int) -> User:
        created = datetime(2024, 1, day, tzinfo=timezone.utc)
        return User(
            id=user_id,
            name=name,
            email=email,
            referral_code=code,
            points=points,
            created_at=created,
            updated_at=created,
        )

    return [
        _user(1, "Alice Johnson", "alice@example.com", "ABC123", 0, 1),
        _user(2, "Bob Smith", "bob@example.com", "DEF456", 20, 2),
        _user(3, "Carol Davis", "carol@example.com", "GHI789", 50, 3),
    ]


class UserDirectory:
    """Own the registered users, allocate identifiers and apply referral credit."""

    def __init__(
        self,
        users: Optional[Iterable[User]] = None,
        *,
        settings: Optional[Settings] = None,
        token_source: Callable[[int], bytes] = secrets.token_bytes,
        clock: Callable[[], datetime] = _current_timestamp,
    ) -> None:
        settings = settings or Settings()
        self._validation: ValidationSettings = settings.validation
        self._points: PointsSettings = settings.points
        self._token_source = token_source
        self._clock = clock
        self._lock = threading.RLock()

        seed = sample_users() if users is None else users
        self._users: List[User] = [user.snapshot() for user in seed]
        self._check_seed_users()
        self._next_id = max((user.id for user in self._users), default=0) + 1

    def _check_seed_users(self) -> None:
        emails = set()
        codes = set()
        for user in self._users:
            if not is_valid_user_id(user.id):
                raise ValueError(f"User id must be a positive integer, got {user.id!r}")
            if not is_valid_referral_code(user.referral_code, self._validation.referral_code_length):
                raise ValueError(f"Invalid referral code for user {user.id}: {user.referral_code!r}")
            if user.email != user.email.strip().lower():
                raise ValueError(f"Seed email must be trimmed and lower-case: {user.email!r}")
            if user.email in emails:
                raise ValueError(f"Duplicate email in seed data: {user.email}")
            if user.referral_code in codes:
                raise ValueError(f"Duplicate referral code in seed data: {user.referral_code}")
            emails.add(user.email)
            codes.add(user.referral_code)
        ids = [user.id for user in self._users]
        if len(set(ids)) != len(ids):
            raise ValueError("Duplicate user ids in seed data")

    @property
    def next_id(self) -> int:
        return self._next_id

    def __len__(self) -> int:
        with self._lock:
            return len(self._users)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def _find(self, predicate: Callable[[User], bool]) -> Optional[User]:
        with self._lock:
            return next((user for user in self._users if predicate(user)), None)

    def _find_by_referral_code(self, code: object) -> Optional[User]:
        if not isinstance(code, str):
            return None
        normalized = code.strip().upper()
        return self._find(lambda user: user.referral_code == normalized)

    def _find_by_email(self, email: object) -> Optional[User]:
        if not isinstance(email, str):
            return None
        normalized = email.strip().lower()
        return self._find(lambda user: user.email == normalized)

    @staticmethod
    def _detach(user: Optional[User]) -> Optional[User]:
        return user.snapshot() if user is not None else None

    def find_by_referral_code(self, code: object) -> Optional[User]:
        return self._detach(self._find_by_referral_code(code))

    def find_by_email(self, email: object) -> Optional[User]:
        return self._detach(self._find_by_email(email))

    def _find_by_id(self, user_id: object) -> Optional[User]:
        if not is_valid_user_id(user_id):
            return None
        return self._find(lambda user: user.id == user_id)

    def get_by_id(self, user_id: int) -> Optional[User]:
        return self._detach(self._find_by_id(user_id))

    def list_users(self) -> List[User]:
        with self._lock:
            return [user.snapshot() for user in self._users]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def generate_referral_code(self) -> str:
        """Return an unused code built from three random bytes."""

        length = self._validation.referral_code_length
        with self._lock:
            taken = {user.referral_code for user in self._users}
            for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
                code = self._token_source(3).hex().upper().ljust(length, "0")
                if code not in taken:
                    logger.debug("Generated referral code %s after %d attempt(s)", code, attempt)
                    return code

        logger.error("Failed to generate a unique referral code after %d attempts", MAX_CODE_ATTEMPTS)
        raise ReferralCodeExhaustedError("Unable to generate unique referral code")

    def register(self, data: RegistrationInput) -> RegistrationResult:
        """Register a new user and credit the referrer, if any."""

        try:
            return self._register(data)
        except Exception:
            logger.exception("Error registering user %r", getattr(data, "email", None))
            return RegistrationResult(success=False, status_code=500, error=INTERNAL_ERROR_MESSAGE)

    def _register(self, data: RegistrationInput) -> RegistrationResult:
        sanitized = sanitize_user_input(data)
        validation = validate_user_input(sanitized, self._validation)
        if not validation.is_valid:
            return RegistrationResult(success=False, status_code=400, error=", ".join(validation.errors))

        with self._lock:
            if self._find_by_email(sanitized.email) is not None:
                return RegistrationResult(success=False, status_code=409, error="Email already exists")

            referrer: Optional[User] = None
            if sanitized.referral_code is not None:
                referrer = self._find_by_referral_code(sanitized.referral_code)
                if referrer is None:
                    return RegistrationResult(success=False, status_code=400, error="Invalid referral code")

            code = self.generate_referral_code()
            now = self._clock()
            user = User(
                id=self._next_id,
                name=sanitized.name,
                email=sanitized.email,
                referral_code=code,
                points=self._points.initial_points,
                created_at=now,
                updated_at=now,
            )
            self._next_id += 1
            self._users.append(user)

            if referrer is not None:
                referrer.points += self._points.referral_bonus
                referrer.updated_at = self._clock()
                logger.info(
                    "Awarded %d referral points to user %s for referring %s",
                    self._points.referral_bonus,
                    referrer.id,
                    user.name,
                )

            logger.info("User %s registered with referral code %s", user.id, user.referral_code)
            return RegistrationResult(success=True, status_code=201, user=user.snapshot())

    def update_points(self, user_id: int, delta: int) -> RegistrationResult:
        """Add ``delta`` to a user's points; negative values are not clamped."""

        try:
            with self._lock:
                user = self._find_by_id(user_id)
                if user is None:
                    return RegistrationResult(success=False, status_code=404, error="User not found")

                previous = user.points
                user.points += delta
                user.updated_at = self._clock()
                logger.info(
                    "Updated points for user %s from %d to %d (%+d)",
                    user.id,
                    previous,
                    user.points,
                    delta,
                )
                return RegistrationResult(success=True, status_code=200, user=user.snapshot())
        except Exception:
            logger.exception("Error updating points for user %s", user_id)
            return RegistrationResult(success=False, status_code=500, error=INTERNAL_ERROR_MESSAGE)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def statistics(self) -> UserStatistics:
        with self._lock:
            users = [user.snapshot() for user in self._users]

        total_users = len(users)
        total_points = sum(user.points for user in users)
        # Halves round up.
        average_points = math.floor(total_points / total_users + 0.5) if total_users else 0
        ranked = sorted(users, key=lambda user: user.points, reverse=True)[:TOP_USERS_LIMIT]
        return UserStatistics(
            total_users=total_users,
            total_points=total_points,
            average_points=average_points,
            top_users=[TopUser(name=user.name, email=user.email, points=user.points) for user in ranked],
        )


__all__ = [
    "INTERNAL_ERROR_MESSAGE",
    "MAX_CODE_ATTEMPTS",
    "ReferralCodeExhaustedError",
    "UserDirectory",
    "sample_users",
]
