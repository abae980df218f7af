"""
Exception hierarchy for the ritual service.

All application errors derive from SerenisError and carry a ``message``.
Denied stage transitions are not errors: they come back as FlowGuardResult
values. Storage failures inside the session layer are logged and absorbed;
StorageError only escapes from the raw key-value backends.
"""


class SerenisError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(SerenisError):
    """Invalid or missing configuration."""


# AI gateway


class LLMError(SerenisError):
    """AI gateway call failed."""


class LLMTimeoutError(LLMError):
    """Every attempt timed out."""


class LLMRateLimitError(LLMError):
    """Gateway kept answering 429."""


class LLMQuotaExhaustedError(LLMError):
    """Gateway reports exhausted credits (402)."""


# Session state


class SessionError(SerenisError):
    """Operation does not fit the current session."""


class SessionIncompleteError(SessionError):
    """Operation needs both an ACT profile and a diagnosis."""


class RitualNotStartedError(SessionError):
    """Operation needs an active ritual."""


# Storage


class StorageError(SerenisError):
    """Local key-value backend failure."""
