"""
Error taxonomy for aura-voice

Every error carries a stable ``code`` so surfaces can react without
parsing messages. Capture and transcription errors end the session,
completion errors degrade to a partial result, persistence errors are
best-effort, and sync errors only prune the dead observer.
"""

import re
from enum import Enum
from typing import Iterable, Optional


class AuraError(Exception):
    """Base class for all aura-voice errors"""
    code = "AURA_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


# Validation

class ValidationError(AuraError):
    """Command rejected before it could touch session state"""
    code = "VALIDATION_ERROR"


class AgentValidationReason(str, Enum):
    NOT_SELECTED = "not_selected"
    NOT_FOUND = "not_found"
    DISABLED = "disabled"


class AgentValidationError(ValidationError):
    """Selected agent is missing, unknown or disabled"""
    code = "AGENT_INVALID"

    def __init__(self, reason: AgentValidationReason, message: str):
        super().__init__(message)
        self.reason = reason

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["reason"] = self.reason.value
        return data


class SessionBusyError(ValidationError):
    """A session is already live"""
    code = "SESSION_BUSY"


class ConfirmationRequiredError(ValidationError):
    """A destructive settings change needs explicit confirmation"""
    code = "CONFIRMATION_REQUIRED"

    def __init__(self, delete_count: int):
        super().__init__(
            f"Reducing the history limit will delete {delete_count} entries"
        )
        self.delete_count = delete_count

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["delete_count"] = self.delete_count
        return data


# Capture

class CaptureFailure(str, Enum):
    DEVICE_DENIED = "device_denied"
    DEVICE_ERROR = "device_error"
    EMPTY_AUDIO = "empty_audio"


class CaptureError(AuraError):
    """Audio capture failed; ends the session"""
    code = "CAPTURE_ERROR"

    def __init__(self, kind: CaptureFailure, message: str):
        super().__init__(message)
        self.kind = kind
        self.code = f"CAPTURE_{kind.name}"


# External services

class ServiceFailure(str, Enum):
    AUTH_FAILURE = "auth_failure"
    RATE_LIMITED = "rate_limited"
    NETWORK_FAILURE = "network_failure"
    EMPTY_AUDIO = "empty_audio"
    EMPTY_RESPONSE = "empty_response"
    SERVICE_ERROR = "service_error"


class TranscriptionError(AuraError):
    """Speech-to-text failed; ends the session"""
    code = "TRANSCRIPTION_ERROR"

    def __init__(self, kind: ServiceFailure, message: str):
        super().__init__(message)
        self.kind = kind


class CompletionError(AuraError):
    """Completion failed; recovered into a partial result"""
    code = "COMPLETION_ERROR"

    def __init__(self, kind: ServiceFailure, message: str):
        super().__init__(message)
        self.kind = kind


# Storage and sync

class PersistenceError(AuraError):
    """History or settings could not be written"""
    code = "PERSISTENCE_ERROR"


class SyncError(AuraError):
    """An observer could not be reached"""
    code = "SYNC_ERROR"


_KEY_PATTERN = re.compile(r"sk-[A-Za-z0-9_\-]{8,}")


def scrub_credentials(text: str, secrets: Iterable[Optional[str]] = ()) -> str:
    """Remove API keys from an error detail before it leaves the process"""
    for secret in secrets:
        if secret:
            text = text.replace(secret, "***")
    return _KEY_PATTERN.sub("sk-***", text)
