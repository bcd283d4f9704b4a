from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    INVALID_CONFIG = "INVALID_CONFIG"
    INVALID_SPEC = "INVALID_SPEC"
    CACHE_ENTRY_NOT_FOUND = "CACHE_ENTRY_NOT_FOUND"
    CACHE_READ_FAILED = "CACHE_READ_FAILED"
    CACHE_WRITE_FAILED = "CACHE_WRITE_FAILED"
    NOT_FOUND = "NOT_FOUND"
    FETCH_FAILED = "FETCH_FAILED"


class DocpipeError(Exception):
    """Base class for every failure raised by docpipe itself.

    Errors raised by user-supplied retrievers and transform functions are
    never wrapped in this class; they reach the caller unchanged.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "recoverable": self.recoverable,
            }
        }


class ConfigurationError(DocpipeError):
    """Raised at construction time, before any I/O happens."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.INVALID_CONFIG, message)


class SpecError(ConfigurationError):
    """A transform spec (or one of its property values) has an invalid shape."""

    def __init__(self, message: str, *, prop: str | None = None, found_type: str | None = None) -> None:
        super().__init__(message)
        self.code = ErrorCode.INVALID_SPEC
        self.prop = prop
        self.found_type = found_type


class CacheError(DocpipeError):
    pass


class CacheEntryNotFoundError(CacheError):
    def __init__(self, key: str, message: str | None = None) -> None:
        super().__init__(
            ErrorCode.CACHE_ENTRY_NOT_FOUND,
            message or f"No cache entry for key {key!r}",
        )
        self.key = key
