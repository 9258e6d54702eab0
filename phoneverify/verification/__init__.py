"""Phone verification core: normalization, challenge, dispatch, entry, exchange."""

from .attempt import (
    CODE_LENGTH,
    AttemptStateError,
    AttemptStatus,
    DigitSlots,
    FailedStage,
    VerificationAttempt,
)
from .challenge import (
    DEFAULT_CONTAINER_ID,
    ChallengeLifecycleManager,
    ChallengeMode,
    ChallengeNotReadyError,
    ChallengeState,
    ChallengeWidget,
)
from .dispatch import DispatchResult, OTPDispatchController
from .document import PageContainer, PageDocument
from .entry import CodeConfirmProvider, OTPEntryStateMachine, VerificationView
from .errors import (
    ClassifiedError,
    ErrorClass,
    ErrorPolicy,
    FallbackAction,
    ProviderError,
    classify,
    classify_exception,
    message_for,
    policy_for,
    remediation_for,
)
from .exchange import ExchangeResponse, SessionExchangeController, StoredSession
from .phone import (
    PhoneNumber,
    PhoneValidation,
    mask_phone_number,
    normalize_phone_number,
    validate_phone_number,
)
from .timers import CooldownTimer, NavigationScheduler

__all__ = [
    "CODE_LENGTH",
    "DEFAULT_CONTAINER_ID",
    "AttemptStateError",
    "AttemptStatus",
    "ChallengeLifecycleManager",
    "ChallengeMode",
    "ChallengeNotReadyError",
    "ChallengeState",
    "ChallengeWidget",
    "ClassifiedError",
    "CodeConfirmProvider",
    "CooldownTimer",
    "DigitSlots",
    "DispatchResult",
    "ErrorClass",
    "ErrorPolicy",
    "ExchangeResponse",
    "FailedStage",
    "FallbackAction",
    "NavigationScheduler",
    "OTPDispatchController",
    "OTPEntryStateMachine",
    "PageContainer",
    "PageDocument",
    "PhoneNumber",
    "PhoneValidation",
    "ProviderError",
    "SessionExchangeController",
    "StoredSession",
    "VerificationAttempt",
    "VerificationView",
    "classify",
    "classify_exception",
    "mask_phone_number",
    "message_for",
    "normalize_phone_number",
    "policy_for",
    "remediation_for",
    "validate_phone_number",
]
