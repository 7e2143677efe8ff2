from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from webmention_receiver.admission import AdmissionQueue, Clock, utc_now
from webmention_receiver.config import Settings
from webmention_receiver.store import FailureStore, NotificationStore, load_allowed_targets


@dataclass
class AppContext:
    settings: Settings
    store: NotificationStore
    failures: FailureStore
    queue: AdmissionQueue
    allowed_targets: tuple[str, ...]
    clock: Clock = utc_now


def build_context(settings: Settings, *, clock: Clock = utc_now) -> AppContext:
    """Load persisted state and wire up the queue. Call once before serving."""
    store = NotificationStore(settings.mentions_file)
    store.load()
    failures = FailureStore(settings.failures_file)
    failures.load()

    queue = AdmissionQueue(
        store,
        failures,
        max_failures=settings.max_failures,
        freshness=timedelta(hours=settings.freshness_hours),
        max_depth=settings.max_queue_depth,
        clock=clock,
    )
    return AppContext(
        settings=settings,
        store=store,
        failures=failures,
        queue=queue,
        allowed_targets=load_allowed_targets(settings.allowed_targets_file),
        clock=clock,
    )
