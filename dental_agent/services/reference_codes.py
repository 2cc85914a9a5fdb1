"""Human-speakable booking references such as ``APT-7KQ2``."""

from __future__ import annotations

import re
import secrets

REFERENCE_PREFIX = "APT-"
REFERENCE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no I, O, 0, 1
REFERENCE_LENGTH = 4

_REFERENCE_RE = re.compile(rf"^{REFERENCE_PREFIX}[{REFERENCE_ALPHABET}]{{{REFERENCE_LENGTH}}}$")


def generate_reference_code() -> str:
    return REFERENCE_PREFIX + "".join(
        secrets.choice(REFERENCE_ALPHABET) for _ in range(REFERENCE_LENGTH)
    )


def normalize_reference_code(value: str) -> str:
    """Upper-case and strip; adds the ``APT-`` prefix if the patient left it off."""
    code = (value or "").strip().upper().replace(" ", "")
    if code.startswith(REFERENCE_PREFIX):
        return code
    if code.startswith("APT") and len(code) == 3 + REFERENCE_LENGTH:
        return REFERENCE_PREFIX + code[3:]
    if len(code) == REFERENCE_LENGTH:
        return REFERENCE_PREFIX + code
    return code


def is_well_formed(value: str) -> bool:
    return bool(_REFERENCE_RE.match(normalize_reference_code(value)))
