"""Exception hierarchy for tiercache.

All exceptions inherit from :class:`TierCacheError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`tiercache.exit_codes`.
The command line entry point in :func:`tiercache.app.main` catches
``TierCacheError`` and exits with the appropriate code.

Codec and storage errors are raised by the tiers.  The engine chains them
into the engine-level :class:`CacheReadError` / :class:`CacheWriteError`
so callers only need to handle those two.  A missing entry is *not* an
error; :class:`CacheMissError` exists for callers that explicitly ask for
one (:meth:`~tiercache.result.CacheResult.unwrap`).

Subclass hierarchy::

    TierCacheError (exit 1)
    +-- InvalidKeyError        (exit 2)
    +-- InvalidExpiryError     (exit 2)
    +-- ConfigError            (exit 1)
    +-- CodecError             (exit 7)
    |   +-- EncodingError
    |   +-- DecodingError
    +-- StorageError           (exit 1)
    |   +-- StorageReadError   (exit 5)
    |   +-- StorageWriteError  (exit 6)
    +-- CacheError             (exit 1)
        +-- CacheReadError     (exit 5)
        +-- CacheWriteError    (exit 6)
        +-- CacheMissError     (exit 4)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from tiercache.exit_codes import (
    EXIT_CODEC_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_READ_ERROR,
    EXIT_WRITE_ERROR,
)

if TYPE_CHECKING:
    from tiercache.models import SweepReport


class TierCacheError(Exception):
    """Base exception for all tiercache errors.

    Args:
        message: Human-readable error description.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidKeyError(TierCacheError):
    """Raised when a cache key is empty or not a string."""

    exit_code = EXIT_INVALID_USAGE


class InvalidExpiryError(TierCacheError):
    """Raised when an expiry is not a duration, a date or ``"never"``."""

    exit_code = EXIT_INVALID_USAGE


class ConfigError(TierCacheError):
    """Raised for configuration problems (invalid JSON, bad environment values)."""

    exit_code = EXIT_GENERIC_FAILURE


# --- Codec ---


class CodecError(TierCacheError):
    """Base class for serialization failures."""

    exit_code = EXIT_CODEC_ERROR


class EncodingError(CodecError):
    """Raised when a value cannot be represented by the codec."""


class DecodingError(CodecError):
    """Raised when stored bytes are malformed or do not match the codec's type."""


# --- Storage ---


class StorageError(TierCacheError):
    """Base class for I/O failures in the disk tier.

    Args:
        message: Human-readable error description.
        report: Counts of a best-effort sweep that ended with failures.
    """

    def __init__(self, message: str, report: Optional[SweepReport] = None):
        super().__init__(message)
        self.report = report


class StorageReadError(StorageError):
    """Raised when an entry cannot be read (permission denied, truncated header)."""

    exit_code = EXIT_READ_ERROR


class StorageWriteError(StorageError):
    """Raised when an entry cannot be written or removed (disk full, permission denied)."""

    exit_code = EXIT_WRITE_ERROR


# --- Engine ---


class CacheError(TierCacheError):
    """Base class for engine-level errors.

    The underlying tier error, when there is one, is available as
    ``__cause__``.
    """

    def __init__(self, message: str, report: Optional[SweepReport] = None):
        super().__init__(message)
        self.report = report


class CacheReadError(CacheError):
    """Raised when a stored entry exists but cannot be read or decoded."""

    exit_code = EXIT_READ_ERROR


class CacheWriteError(CacheError):
    """Raised when the disk write of a ``set`` (or a removal) fails.

    A failed ``set`` never touches the memory tier.
    """

    exit_code = EXIT_WRITE_ERROR


class CacheMissError(CacheError):
    """Raised on request when no unexpired entry exists for a key."""

    exit_code = EXIT_NOT_FOUND
