from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

STATUS_VERIFIED = "verified"
STATUS_GONE = "gone"
STATUS_FAILED = "failed"


@dataclass(slots=True)
class Notification:
    source: str
    target: str
    validated_at: datetime | None = None
    mentioned: bool | None = None
    deleted: bool | None = None
    # Record keys this service does not interpret, written back unchanged.
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str]:
        return (self.source, self.target)

    def same_pair(self, other: Notification) -> bool:
        return self.source == other.source and self.target == other.target


@dataclass(frozen=True, slots=True)
class Submission:
    method: str
    content_type: str | None
    notification: Notification | None


@dataclass(frozen=True, slots=True)
class Outcome:
    status: str
    checked_at: datetime
    mentioned: bool | None = None
    error: str | None = None
