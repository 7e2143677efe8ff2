from __future__ import annotations

from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Callable

from webmention_receiver.models import Notification
from webmention_receiver.store import FailureStore, NotificationStore

Clock = Callable[[], datetime]

REASON_QUEUE_FULL = "queue_full"
REASON_ALREADY_QUEUED = "already_queued"
REASON_FAILURE_BUDGET = "failure_budget_exhausted"
REASON_RECENTLY_VERIFIED = "recently_verified"


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


class AdmissionQueue:
    """FIFO of notifications awaiting verification.

    A pair is admitted only when it is not already queued, its source has not
    used up its failure budget, and it was not verified within the freshness
    window. Rejection never mutates the queue.
    """

    def __init__(
        self,
        store: NotificationStore,
        failures: FailureStore,
        *,
        max_failures: int = 5,
        freshness: timedelta = timedelta(hours=24),
        max_depth: int | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._failures = failures
        self._max_failures = max_failures
        self._freshness = freshness
        self._max_depth = max_depth
        self._clock = clock
        self._pending: deque[Notification] = deque()

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, notification: Notification) -> bool:
        return any(queued.same_pair(notification) for queued in self._pending)

    def pending(self) -> list[Notification]:
        return list(self._pending)

    def rejection_reason(self, notification: Notification) -> str | None:
        if notification in self:
            return REASON_ALREADY_QUEUED

        if self._failures.count(notification.source) > self._max_failures:
            return REASON_FAILURE_BUDGET

        existing = self._store.find(notification.source, notification.target)
        if existing is not None and existing.validated_at is not None:
            if self._clock() - existing.validated_at < self._freshness:
                return REASON_RECENTLY_VERIFIED

        if self._max_depth is not None and len(self._pending) >= self._max_depth:
            return REASON_QUEUE_FULL

        return None

    def is_enqueueable(self, notification: Notification) -> bool:
        return self.rejection_reason(notification) is None

    def admit(self, notification: Notification) -> bool:
        if not self.is_enqueueable(notification):
            return False
        self._pending.append(Notification(source=notification.source, target=notification.target))
        return True

    def pop(self) -> Notification | None:
        if not self._pending:
            return None
        return self._pending.popleft()
