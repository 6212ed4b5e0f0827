"""
Error types for Lodestar-DNS.

Configuration errors are fatal at construction time. Soft errors concern a
single record and never abort a batch. Everything else is a hard error and
aborts the current records()/apply_changes() call.
"""

from typing import List, Optional


class LodestarError(Exception):
    """Base class for all Lodestar-DNS errors."""


class ConfigurationError(LodestarError):
    """Invalid or missing configuration."""


class SoftError(LodestarError):
    """
    One or more records could not be applied because the backend cannot
    represent them. Other records in the same batch were still applied.
    """

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors if errors is not None else [message]


class UnsupportedRecordTypeError(LodestarError):
    """The backend has no endpoint for the requested record type."""


class BackendUnavailableError(LodestarError):
    """The backend could not be reached."""


class APIError(LodestarError):
    """
    The backend answered with a non-success status.

    Carries the backend's error envelope so the failure can be diagnosed
    without retrying.
    """

    def __init__(
        self,
        status_code: int,
        key: str = "",
        message: str = "",
        hint: str = "",
        took: float = 0.0,
    ):
        self.status_code = status_code
        self.key = key
        self.message = message
        self.hint = hint
        self.took = took
        super().__init__(
            f"received {status_code} status code from request: "
            f"[{key}] {message} ({hint}) - {took:f}s"
        )


class TokenRenewalError(LodestarError):
    """The session token could not be renewed within the attempt bound."""
