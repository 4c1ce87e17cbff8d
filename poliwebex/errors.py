"""Error taxonomy and process exit codes."""

from enum import IntEnum
from typing import Optional


class ExitCode(IntEnum):
    MISSING_ARIA2C = 22
    MISSING_FFMPEG = 23
    BAD_URL_ARGS = 24
    BAD_TIMEOUT = 25
    OUTPUT_DIR = 26
    BAD_CREDENTIALS = 41
    LOGIN_TIMEOUT = 42
    UNSUPPORTED_PROVIDER = 43
    COOKIE_EXTRACTION = 88


class PoliWebexError(Exception):
    """Base class for every error raised by this package."""


class FatalError(PoliWebexError):
    """Aborts the whole run with ``exit_code``."""

    exit_code: ExitCode

    def __init__(self, message: str, exit_code: Optional[ExitCode] = None) -> None:
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class FatalSetupError(FatalError):
    """Missing external tools or bad command line input."""


class FatalAuthError(FatalError):
    pass


class BadCredentials(FatalAuthError):
    exit_code = ExitCode.BAD_CREDENTIALS

    def __init__(self, message: str = "Bad credentials.") -> None:
        super().__init__(message)


class LoginTimeout(FatalAuthError):
    exit_code = ExitCode.LOGIN_TIMEOUT

    def __init__(self, milestone: str) -> None:
        super().__init__(f"Timed out waiting for login milestone: {milestone}")
        self.milestone = milestone


class UnsupportedProviderPage(FatalAuthError):
    exit_code = ExitCode.UNSUPPORTED_PROVIDER

    def __init__(self, host: str) -> None:
        super().__init__(f"Unsupported identity provider login page: {host}")
        self.host = host


class CookieExtractionError(FatalAuthError):
    exit_code = ExitCode.COOKIE_EXTRACTION

    def __init__(self, cookie_name: str) -> None:
        super().__init__(
            f"Unable to read the '{cookie_name}' cookie. "
            "Try launching one more time, this is not an exact science."
        )
        self.cookie_name = cookie_name


class ItemUnresolved(PoliWebexError):
    """A single lecture reference could not be resolved; the batch goes on."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"{reason} ({url})")
        self.url = url
        self.reason = reason


class RequestFailed(PoliWebexError):
    def __init__(self, url: str, status: Optional[int] = None, detail: str = "") -> None:
        message = f"GET {url} failed"
        if status is not None:
            message += f" with status {status}"
        if detail:
            message += f": {detail}"
        super().__init__(message)
        self.url = url
        self.status = status
