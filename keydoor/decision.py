import enum
from dataclasses import dataclass
from typing import Optional


class DenyReason(enum.Enum):
    KEY_UNKNOWN_OR_DISABLED = "key-unknown-or-disabled"
    AUTHENTICATION_DECLINED = "authentication-declined"
    AUTHENTICATION_ERROR = "authentication-error"


@dataclass(frozen=True)
class AuthorizationDecision:
    """Outcome of evaluating one presentation event.

    reason is None exactly when the presenter is authorized.
    """

    reason: Optional[DenyReason] = None

    @property
    def authorized(self) -> bool:
        return self.reason is None

    @staticmethod
    def authorize() -> "AuthorizationDecision":
        return AuthorizationDecision()

    @staticmethod
    def deny(reason: DenyReason) -> "AuthorizationDecision":
        return AuthorizationDecision(reason)

    def __str__(self) -> str:
        if self.reason is None:
            return "authorized"
        return f"denied({self.reason.value})"


class UnlockStatus(enum.Enum):
    UNLOCKED = "unlocked"
    REFUSED = "refused"
    TRANSPORT_ERROR = "transport-error"


@dataclass(frozen=True)
class UnlockOutcome:
    status: UnlockStatus
    message: str = ""

    @staticmethod
    def unlocked(message: str = "") -> "UnlockOutcome":
        return UnlockOutcome(UnlockStatus.UNLOCKED, message)

    @staticmethod
    def refused(message: str) -> "UnlockOutcome":
        return UnlockOutcome(UnlockStatus.REFUSED, message)

    @staticmethod
    def transport_error(message: str = "") -> "UnlockOutcome":
        return UnlockOutcome(UnlockStatus.TRANSPORT_ERROR, message)
