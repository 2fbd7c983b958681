from typing import Any, Optional


class RelayError(Exception):
    """Base class for errors raised by the relay core."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_event(self) -> dict:
        """Payload for the private `error` event sent back to a client."""
        payload = {"message": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(RelayError):
    """A client action is missing a required field or does not parse."""


class UnsupportedTypeError(RelayError):
    """send-message was called with a messageType the relay cannot send."""


class GatewayError(RelayError):
    """The messaging provider call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        super().__init__(message, details)
        self.status_code = status_code


class RegistryDesyncError(RelayError):
    """Connection registry and transport group membership disagree."""
