"""Pydantic models shared across tiercache modules.

* :class:`Expiry` -- when an entry stops being served (never, a relative
  number of seconds, or an absolute date).
* :class:`CacheConfig` -- immutable engine configuration captured at
  construction time.  Persisted as JSON by :mod:`tiercache.config`.
* :class:`SweepReport` -- outcome of a best-effort sweep over the disk tier.

All models use Pydantic v2.  ``CacheConfig`` and ``Expiry`` are frozen so that
a running engine can never observe a configuration change.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ExpiryKind(str, enum.Enum):
    """How an :class:`Expiry` value is interpreted."""

    NEVER = "never"
    SECONDS = "seconds"
    DATE = "date"


class Expiry(BaseModel):
    """Lifetime of a cache entry.

    ``SECONDS`` is relative to the moment of the write, ``DATE`` is an
    absolute POSIX timestamp.  Negative durations and past dates are valid and
    produce entries that are already expired.

    Plain values are accepted wherever an ``Expiry`` is expected: ``None`` and
    ``"never"`` mean never, an ``int``/``float`` or :class:`~datetime.timedelta`
    is a duration, and a :class:`~datetime.datetime` is an absolute date.

    Example::

        Expiry.seconds(300)
        Expiry.model_validate(timedelta(hours=1))
        Expiry.date(datetime(2030, 1, 1, tzinfo=timezone.utc))
    """

    model_config = ConfigDict(frozen=True)

    kind: ExpiryKind = ExpiryKind.NEVER
    value: float = 0.0

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, data: Any) -> Any:
        if data is None or data == ExpiryKind.NEVER.value:
            return {"kind": ExpiryKind.NEVER}
        if isinstance(data, bool):
            raise ValueError("expiry must be a duration, a date or 'never'")
        if isinstance(data, (int, float)):
            return {"kind": ExpiryKind.SECONDS, "value": float(data)}
        if isinstance(data, timedelta):
            return {"kind": ExpiryKind.SECONDS, "value": data.total_seconds()}
        if isinstance(data, datetime):
            return {"kind": ExpiryKind.DATE, "value": data.timestamp()}
        return data

    @classmethod
    def never(cls) -> Expiry:
        return cls(kind=ExpiryKind.NEVER)

    @classmethod
    def seconds(cls, seconds: float) -> Expiry:
        return cls(kind=ExpiryKind.SECONDS, value=seconds)

    @classmethod
    def date(cls, when: datetime | float) -> Expiry:
        timestamp = when.timestamp() if isinstance(when, datetime) else float(when)
        return cls(kind=ExpiryKind.DATE, value=timestamp)

    def deadline(self, now: float) -> Optional[float]:
        """Resolve to an absolute POSIX deadline, or ``None`` for never.

        Args:
            now: Current time in epoch seconds (the moment of the write).
        """
        if self.kind == ExpiryKind.NEVER:
            return None
        if self.kind == ExpiryKind.SECONDS:
            return now + self.value
        return self.value


class CacheConfig(BaseModel):
    """Engine configuration, fixed for the lifetime of a
    :class:`~tiercache.engine.CacheEngine`.

    The disk tier lives in ``storage_location / name``.  Every limit uses
    ``0`` to mean unlimited.

    ``memory_expiry`` optionally gives memory copies a shorter lifetime than
    their disk entry.  A memory copy never outlives the disk entry it was made
    from.
    """

    model_config = ConfigDict(frozen=True)

    storage_location: Path = Field(description="Parent directory of the disk tier")
    name: str = Field(
        default="default",
        min_length=1,
        description="Folder name of this cache under storage_location",
    )
    max_disk_bytes: int = Field(default=0, ge=0, description="Disk size limit, 0 = unlimited")
    memory_count_limit: int = Field(
        default=0, ge=0, description="Max entries held in memory, 0 = unlimited"
    )
    memory_cost_limit: int = Field(
        default=0, ge=0, description="Max total cost held in memory, 0 = unlimited"
    )
    default_expiry: Expiry = Field(default_factory=Expiry.never)
    memory_expiry: Optional[Expiry] = None

    @property
    def directory(self) -> Path:
        """The directory holding this cache's entry files."""
        return self.storage_location / self.name


class SweepReport(BaseModel):
    """Counts produced by a best-effort sweep over stored entries."""

    removed: int = 0
    failed: int = 0

    @property
    def ok(self) -> bool:
        return self.failed == 0
