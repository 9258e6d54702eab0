"""Phone number normalization into canonical international form."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final

from .errors import ClassifiedError, ErrorClass

DEFAULT_COUNTRY_CODE: Final = "+1"
CANONICAL_PHONE_PATTERN: Final = re.compile(r"^\+[1-9][0-9]{1,14}$")

_STRIPPED_CHARACTERS: Final = re.compile(r"[\s().\-]")
_LEADING_ZEROS: Final = re.compile(r"^(\+?)0+")
_EMPTY_PHONE_MESSAGE: Final = "Phone number is required."
_MASK_PREFIX_LENGTH: Final = 3
_MASK_SUFFIX_LENGTH: Final = 4


@dataclass(frozen=True, slots=True)
class PhoneNumber:
    """Raw user input plus its canonical `+<country><number>` form."""

    raw: str
    canonical: str

    @property
    def masked(self) -> str:
        """Return the display form with the middle digits hidden."""
        return mask_phone_number(self.canonical)


@dataclass(frozen=True, slots=True)
class PhoneValidation:
    """Non-raising validation outcome for a phone number input."""

    valid: bool
    normalized: PhoneNumber | None = None
    error: ClassifiedError | None = None


def normalize_phone_number(
    raw: str,
    default_country_code: str | None = None,
) -> PhoneNumber:
    """Normalize user input, raising `InvalidPhoneFormat` when impossible."""
    if not raw or not raw.strip():
        raise ClassifiedError.local(
            ErrorClass.INVALID_PHONE_FORMAT,
            _EMPTY_PHONE_MESSAGE,
        )

    candidate = _STRIPPED_CHARACTERS.sub("", raw.strip())
    candidate = _LEADING_ZEROS.sub(r"\1", candidate)

    if not candidate.startswith("+"):
        candidate = _format_country_code(default_country_code) + candidate

    if not CANONICAL_PHONE_PATTERN.fullmatch(candidate):
        raise ClassifiedError(
            ErrorClass.INVALID_PHONE_FORMAT,
            raw_code="local",
            raw_message=f"cannot canonicalize input of length {len(raw)}",
        )
    return PhoneNumber(raw=raw, canonical=candidate)


def validate_phone_number(
    raw: str,
    default_country_code: str | None = None,
) -> PhoneValidation:
    """Validate phone input without raising."""
    try:
        normalized = normalize_phone_number(raw, default_country_code)
    except ClassifiedError as exc:
        return PhoneValidation(valid=False, error=exc)
    return PhoneValidation(valid=True, normalized=normalized)


def mask_phone_number(canonical: str) -> str:
    """Hide all but the leading and trailing digits of a canonical number."""
    if len(canonical) <= _MASK_PREFIX_LENGTH + _MASK_SUFFIX_LENGTH:
        return canonical[:_MASK_PREFIX_LENGTH] + "****"
    return (
        canonical[:_MASK_PREFIX_LENGTH] + "****" + canonical[-_MASK_SUFFIX_LENGTH:]
    )


def _format_country_code(country_code: str | None) -> str:
    code = (country_code or DEFAULT_COUNTRY_CODE).strip()
    return code if code.startswith("+") else f"+{code}"
