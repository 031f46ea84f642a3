from __future__ import annotations


class PerfTapError(Exception):
    """Base class for collection errors."""


class AdbError(PerfTapError):
    pass


class AdbNotFound(AdbError):
    def __init__(self, message: str = "adb executable not found") -> None:
        super().__init__(message)


class AdbCommandFailed(AdbError):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ParseFailed(PerfTapError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class HistoryUnavailable(PerfTapError):
    """The sample history lock could not be acquired."""
