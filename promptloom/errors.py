"""
PROMPTLOOM Errors

Exception hierarchy plus a small Result type. The gateway and the
codec return Results so callers can tell "absent" from "corrupt" and
apply their own defaults.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


class PromptloomError(Exception):
    pass


class StorageError(PromptloomError):
    """Raised (or carried in a Result) when the gateway fails or holds malformed data."""
    pass


class CodecError(PromptloomError):
    """A share token could not be decoded by any known format."""
    pass


class ShareError(PromptloomError):
    """Network failure while uploading, fetching or shortening a share link."""
    pass


class CompletionError(PromptloomError):
    pass


@dataclass(frozen=True)
class Result(Generic[T]):
    value: T | None = None
    error: Exception | None = None

    @classmethod
    def ok(cls, value: T | None = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def err(cls, error: Exception) -> "Result[T]":
        return cls(error=error)

    @property
    def is_ok(self) -> bool:
        return self.error is None

    @property
    def is_err(self) -> bool:
        return self.error is not None

    def unwrap_or(self, default: T) -> T:
        """Return the value, or `default` when the result is an error or absent."""
        if self.error is not None or self.value is None:
            return default
        return self.value
