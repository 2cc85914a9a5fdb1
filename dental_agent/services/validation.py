"""Plausibility checks for patient identity fields.

The model is under pressure to fill required tool parameters and will
sometimes invent values ("pending", "Test Test", "1234567").  These helpers
return a patient-facing hint when a value looks invented, else ``None``.
"""

from __future__ import annotations

import re

from dental_agent.errors import MissingInfoError

PLACEHOLDER_NAMES = frozenset({
    "pending", "unknown", "test", "user", "patient", "name",
    "n/a", "na", "tbd", "to be determined", "none", "null",
})

PLACEHOLDER_PHONES = frozenset({
    "0000000", "1234567", "pending", "unknown", "test",
    "n/a", "na", "tbd", "none", "null",
})

MIN_NAME_LENGTH = 2
MIN_PHONE_LENGTH = 6
PHONE_SUFFIX_LENGTH = 6

_EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)


def digits_only(phone: str) -> str:
    return re.sub(r"\D", "", phone or "")


def phone_suffix(phone: str) -> str:
    """Last six digits of a phone number, ignoring formatting."""
    return digits_only(phone)[-PHONE_SUFFIX_LENGTH:]


def _is_sequential(digits: str) -> bool:
    if len(digits) < 3:
        return False
    steps = {int(b) - int(a) for a, b in zip(digits, digits[1:])}
    return steps == {1} or steps == {-1}


def validate_name(name: str | None) -> str | None:
    """Return an error message if *name* looks missing or invented."""
    cleaned = (name or "").strip().lower()
    if len(cleaned) < MIN_NAME_LENGTH:
        return "The patient's name is missing. Please ask for their full name."
    parts = cleaned.split()
    if cleaned in PLACEHOLDER_NAMES or any(part in PLACEHOLDER_NAMES for part in parts):
        return "That looks like a placeholder, not a real name. Please ask for the patient's full name."
    if len(parts) >= 2 and len(set(parts)) == 1:
        return "That does not look like a real name. Please ask for the patient's full name."
    return None


def validate_phone(phone: str | None) -> str | None:
    """Return an error message if *phone* looks missing or invented."""
    cleaned = (phone or "").strip()
    if len(cleaned) < MIN_PHONE_LENGTH:
        return "The patient's phone number is missing. Please ask for it."
    digits = digits_only(cleaned)
    if cleaned.lower() in PLACEHOLDER_PHONES or digits in PLACEHOLDER_PHONES:
        return "That looks like a placeholder phone number. Please ask for a real one."
    if len(digits) < MIN_PHONE_LENGTH:
        return "That phone number is too short. Please ask the patient to repeat it."
    if len(set(digits)) == 1 or _is_sequential(digits):
        return "That phone number does not look real. Please ask the patient to confirm it."
    return None


def validate_email(email: str) -> str | None:
    """Return an error message if *email* looks invalid, else ``None``."""
    if not email or not email.strip():
        return "No email address was provided. Please ask the patient for their email."
    email = email.strip()
    if not _EMAIL_RE.match(email):
        return (
            f'"{email}" does not look like a valid email address. '
            "Please ask the patient to double-check and provide a corrected email."
        )
    return None


def validate_identity(name: str | None, phone: str | None, email: str | None = None) -> None:
    """Raise ``MissingInfoError`` for the first implausible field.

    Email is optional; it is only checked when supplied.
    """
    error = validate_name(name) or validate_phone(phone)
    if error is None and email and email.strip():
        error = validate_email(email)
    if error:
        raise MissingInfoError(error)
