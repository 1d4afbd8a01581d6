from __future__ import annotations

from typing import Optional


class PimError(Exception):
    """Base class for every error raised by bluepim."""


class TransportError(PimError):
    """A backend could not be reached or returned an unusable response."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class BackendRejection(PimError):
    """The backend refused an activation/deactivation request."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class FatalSessionError(PimError):
    """The session cannot continue (no identity, no usable backend)."""


class AuthenticationError(FatalSessionError):
    def __init__(self, message: str, *, backend: Optional[str] = None) -> None:
        super().__init__(message)
        self.backend = backend


class SelectionError(PimError):
    """No valid roles could be selected from the user's selection expression."""

    def __init__(self, message: str, *, invalid: Optional[list[tuple[str, str]]] = None) -> None:
        super().__init__(message)
        self.invalid = list(invalid or [])
