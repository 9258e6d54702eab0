"""Verification attempt state and the six-slot code entry model."""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from .errors import ClassifiedError
    from .phone import PhoneNumber

CODE_LENGTH: Final = 6


class AttemptStatus(StrEnum):
    """Lifecycle of one phone verification attempt."""

    IDLE = "idle"
    SENDING = "sending"
    AWAITING_CODE = "awaiting_code"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    EXCHANGING = "exchanging"
    COMPLETE = "complete"
    FAILED = "failed"


class FailedStage(StrEnum):
    """Step that was running when an attempt entered `failed`."""

    SENDING = "sending"
    VERIFYING = "verifying"
    EXCHANGING = "exchanging"


_HANDLE_STATUSES: Final = frozenset(
    {
        AttemptStatus.AWAITING_CODE,
        AttemptStatus.VERIFYING,
        AttemptStatus.VERIFIED,
        AttemptStatus.EXCHANGING,
    },
)


class AttemptStateError(RuntimeError):
    """Raised when an attempt transition would break its invariants."""

    @classmethod
    def missing_session_handle(cls, status: AttemptStatus) -> AttemptStateError:
        """Build error for entering a code-bound status without a handle."""
        return cls(f"Attempt cannot enter '{status}' without a session handle.")


class DigitSlots:
    """Six independently addressable single-digit slots plus focus."""

    _slots: list[str]
    _focused_index: int

    def __init__(self) -> None:
        """Start with every slot empty and focus on the first slot."""
        self._slots = [""] * CODE_LENGTH
        self._focused_index = 0

    @property
    def values(self) -> tuple[str, ...]:
        """Return a snapshot of all six slots."""
        return tuple(self._slots)

    @property
    def focused_index(self) -> int:
        """Return the slot that currently has input focus."""
        return self._focused_index

    @property
    def is_complete(self) -> bool:
        """Return True when every slot holds a digit."""
        return all(self._slots)

    def joined(self) -> str:
        """Return the code as one string."""
        return "".join(self._slots)

    def enter(self, index: int, value: str) -> bool:
        """Put a digit into a slot and advance focus; non-digits are dropped."""
        _check_index(index)
        digits = _only_digits(value)
        if not digits:
            return False
        if len(digits) == CODE_LENGTH:
            return self.paste(digits)
        self._slots[index] = digits[-1]
        self._focused_index = min(index + 1, CODE_LENGTH - 1)
        return True

    def backspace(self, index: int) -> None:
        """Clear a filled slot, or move focus back from an empty one."""
        _check_index(index)
        if self._slots[index]:
            self._slots[index] = ""
            self._focused_index = index
            return
        self._focused_index = max(index - 1, 0)

    def paste(self, text: str) -> bool:
        """Fill slots from pasted text; a full code focuses the last slot."""
        digits = _only_digits(text)[:CODE_LENGTH]
        if not digits:
            return False
        for position, digit in enumerate(digits):
            self._slots[position] = digit
        self._focused_index = min(len(digits), CODE_LENGTH - 1)
        return True

    def clear(self) -> None:
        """Empty every slot and refocus the first one."""
        self._slots = [""] * CODE_LENGTH
        self._focused_index = 0


def _only_digits(value: str) -> str:
    return "".join(char for char in value if "0" <= char <= "9")


def _check_index(index: int) -> None:
    if not 0 <= index < CODE_LENGTH:
        message = f"Digit slot index must be between 0 and {CODE_LENGTH - 1}."
        raise IndexError(message)


def _new_attempt_id() -> str:
    return secrets.token_urlsafe(16)


@dataclass(slots=True)
class VerificationAttempt:
    """In-memory unit of work for verifying one phone number."""

    attempt_id: str = field(default_factory=_new_attempt_id)
    phone_number: PhoneNumber | None = None
    session_handle: str | None = None
    status: AttemptStatus = AttemptStatus.IDLE
    failed_stage: FailedStage | None = None
    cooldown_expires_at: datetime | None = None
    digits: DigitSlots = field(default_factory=DigitSlots)
    last_error: ClassifiedError | None = None
    assertion_token: str | None = None
    requires_resend: bool = False

    @property
    def status_label(self) -> str:
        """Return status with the failed stage, e.g. `failed(exchanging)`."""
        if self.status is AttemptStatus.FAILED and self.failed_stage is not None:
            return f"{self.status.value}({self.failed_stage.value})"
        return self.status.value

    def begin_sending(self, phone_number: PhoneNumber) -> None:
        """Capture the phone and drop any previous dispatch session."""
        self.phone_number = phone_number
        self.session_handle = None
        self.assertion_token = None
        self.requires_resend = False
        self.failed_stage = None
        self.last_error = None
        self.status = AttemptStatus.SENDING

    def code_dispatched(self, session_handle: str) -> None:
        """Record a successful dispatch and wait for the user's code."""
        self.session_handle = session_handle
        self.status = AttemptStatus.AWAITING_CODE

    def transition(self, status: AttemptStatus) -> None:
        """Move to a code-bound status, enforcing handle presence."""
        if status in _HANDLE_STATUSES and self.session_handle is None:
            raise AttemptStateError.missing_session_handle(status)
        self.status = status
        self.failed_stage = None

    def fail(self, stage: FailedStage, error: ClassifiedError) -> None:
        """Enter `failed` for a stage; only an exchange failure keeps the handle."""
        self.status = AttemptStatus.FAILED
        self.failed_stage = stage
        self.last_error = error
        if stage is not FailedStage.EXCHANGING:
            self.session_handle = None

    def record_error(self, error: ClassifiedError | None) -> None:
        """Set or clear the error without changing status."""
        self.last_error = error
