"""Custom exceptions for calil-shelf."""

from __future__ import annotations

from typing import Optional


class CalilShelfError(Exception):
    """Base exception for all calil-shelf errors."""

    def __init__(self, message: str = "An error occurred in calil-shelf") -> None:
        self.message = message
        super().__init__(self.message)


class SessionExpiredError(CalilShelfError):
    """Raised when Calil no longer accepts the session cookie."""

    def __init__(self, message: str = "Calil session expired. Please log in again.") -> None:
        super().__init__(message)


class TokenRejectedError(CalilShelfError):
    """Raised when Calil rejects the yomitai access token."""

    def __init__(self, message: str = "Calil rejected the access token.") -> None:
        super().__init__(message)


class UpstreamError(CalilShelfError):
    """Raised for upstream failures that are not authentication related."""

    def __init__(self, message: str = "Upstream request failed", status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class LoginTimeoutError(CalilShelfError):
    """Raised when the interactive login does not reach the landing page in time."""

    def __init__(self, message: str = "Timed out waiting for Calil login to complete.") -> None:
        super().__init__(message)


class BrowserLaunchError(CalilShelfError):
    """Raised when no browser could be resolved, downloaded, or started."""

    def __init__(self, message: str = "Failed to launch a browser for login.") -> None:
        super().__init__(message)
