"""Sanitisation and validation of registration input."""
from __future__ import annotations

import re
from typing import List, Optional

from .config import ValidationSettings
from .models import RegistrationInput, ValidationResult


_EMAIL_PATTERN = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
_REFERRAL_CODE_ALPHABET_PATTERN = re.compile(r"[A-Z0-9]+")

_DEFAULT_SETTINGS = ValidationSettings()


def is_valid_email(email: str) -> bool:
    return _EMAIL_PATTERN.fullmatch(email) is not None


def is_valid_referral_code(code: str, length: int = _DEFAULT_SETTINGS.referral_code_length) -> bool:
    return len(code) == length and _REFERRAL_CODE_ALPHABET_PATTERN.fullmatch(code) is not None


def is_valid_user_id(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def sanitize_user_input(data: RegistrationInput) -> RegistrationInput:
    """Trim and case-fold supplied string fields.

    Fields that were not supplied stay ``None``. Non-string values are passed
    through unchanged so that :func:`validate_user_input` can report them.
    """

    def _clean(value: Optional[object], transform) -> Optional[object]:
        if isinstance(value, str):
            return transform(value.strip())
        return value

    return RegistrationInput(
        name=_clean(data.name, lambda text: text),
        email=_clean(data.email, str.lower),
        referral_code=_clean(data.referral_code, str.upper),
    )


def _validate_name(name: Optional[object], settings: ValidationSettings) -> List[str]:
    if not isinstance(name, str):
        return ["Name is required and must be a string"]

    trimmed = name.strip()
    if not trimmed:
        return ["Name cannot be empty"]

    errors: List[str] = []
    if len(trimmed) < settings.min_name_length:
        errors.append(f"Name must be at least {settings.min_name_length} characters long")
    if len(trimmed) > settings.max_name_length:
        errors.append(f"Name cannot exceed {settings.max_name_length} characters")
    return errors


def _validate_email(email: Optional[object], settings: ValidationSettings) -> List[str]:
    if not isinstance(email, str):
        return ["Email is required and must be a string"]

    normalized = email.strip().lower()
    if not normalized:
        return ["Email cannot be empty"]

    errors: List[str] = []
    if len(normalized) < settings.min_email_length:
        errors.append(f"Email must be at least {settings.min_email_length} characters long")
    if len(normalized) > settings.max_email_length:
        errors.append(f"Email cannot exceed {settings.max_email_length} characters")
    if not is_valid_email(normalized):
        errors.append("Email format is invalid")
    return errors


def _validate_referral_code(code: Optional[object], settings: ValidationSettings) -> List[str]:
    if code is None:
        return []
    if not isinstance(code, str):
        return ["Referral code must be a string"]

    normalized = code.strip().upper()
    if not normalized:
        return ["Referral code cannot be empty"]

    errors: List[str] = []
    if len(normalized) != settings.referral_code_length:
        errors.append(f"Referral code must be exactly {settings.referral_code_length} characters")
    if _REFERRAL_CODE_ALPHABET_PATTERN.fullmatch(normalized) is None:
        errors.append("Referral code must contain only alphanumeric characters")
    return errors


def validate_user_input(
    data: RegistrationInput,
    settings: ValidationSettings = _DEFAULT_SETTINGS,
) -> ValidationResult:
    """Check every field and collect all violations in name, email, code order."""

    errors = [
        *_validate_name(data.name, settings),
        *_validate_email(data.email, settings),
        *_validate_referral_code(data.referral_code, settings),
    ]
    return ValidationResult(is_valid=not errors, errors=errors)


__all__ = [
    "is_valid_email",
    "is_valid_referral_code",
    "is_valid_user_id",
    "sanitize_user_input",
    "validate_user_input",
]
