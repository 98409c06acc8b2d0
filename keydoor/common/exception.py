from typing import Any, Optional


class KeydoorException(Exception):
    """Base class for all keydoor exceptions"""

    _msg_fmt = "An unknown exception occurred."

    def __init__(self, message: Optional[str] = None, **kwargs: Any):
        if not message:
            message = self._msg_fmt % kwargs

        super().__init__(message)


class ConfigurationError(KeydoorException):
    _msg_fmt = "Invalid configuration for option '%(option)s'."


class SessionCreationError(KeydoorException):
    _msg_fmt = "Could not create an identity session."


class EventDecodeError(KeydoorException):
    _msg_fmt = "Could not decode presentation event."


class StoreError(KeydoorException):
    _msg_fmt = "Allow list store is unavailable."


class AuthenticationError(KeydoorException):
    _msg_fmt = "Authentication exchange failed."


class ActuatorError(KeydoorException):
    _msg_fmt = "Could not reach the door actuator."


class InvalidIdentityKey(KeydoorException):
    _msg_fmt = "Invalid public key format. Must be a valid npub1 key."


class InvalidLoopState(KeydoorException):
    _msg_fmt = "Invalid authorization loop state."
