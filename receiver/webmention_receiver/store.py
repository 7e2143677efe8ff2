from __future__ import annotations

from datetime import datetime, timezone
import json
from pathlib import Path
from typing import Any

from webmention_receiver.config import ConfigError
from webmention_receiver.models import STATUS_GONE, STATUS_VERIFIED, Notification, Outcome


def _to_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_millis(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(float(value) / 1000, tz=timezone.utc)


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return default
    return json.loads(text)


def _write_json(path: Path, payload: Any) -> None:
    path.write_text(json.dumps(payload), encoding="utf-8")


_RECORD_KEYS = {"source", "target", "validated", "mentioned", "isMentioned", "deleted", "validatedAt"}


def notification_to_record(notification: Notification) -> dict[str, Any]:
    record: dict[str, Any] = dict(notification.extra)
    record.update(
        source=notification.source,
        target=notification.target,
        validated=True,
    )
    if notification.deleted:
        record["deleted"] = True
    elif notification.mentioned is not None:
        record["mentioned"] = notification.mentioned
    if notification.validated_at is not None:
        record["validatedAt"] = _to_millis(notification.validated_at)
    return record


def notification_from_record(record: dict[str, Any]) -> Notification:
    mentioned = record.get("mentioned")
    if mentioned is None:
        # Older files stored updated flags under "isMentioned".
        mentioned = record.get("isMentioned")
    deleted = True if record.get("deleted") else None
    if deleted or mentioned is None:
        mentioned = None
    return Notification(
        source=str(record["source"]),
        target=str(record["target"]),
        validated_at=_from_millis(record.get("validatedAt")),
        mentioned=None if mentioned is None else bool(mentioned),
        deleted=deleted,
        extra={key: value for key, value in record.items() if key not in _RECORD_KEYS},
    )


class NotificationStore:
    """Verified notifications, held in memory and rewritten in full on persist."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._entries: list[Notification] = []

    def load(self) -> None:
        payload = _read_json(self.path, {"webmentions": []})
        if not isinstance(payload, dict) or not isinstance(payload.get("webmentions", []), list):
            raise ConfigError(f"{self.path} must contain an object with a 'webmentions' list")
        self._entries = [notification_from_record(record) for record in payload.get("webmentions", [])]

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> list[Notification]:
        return list(self._entries)

    def find(self, source: str, target: str) -> Notification | None:
        for entry in self._entries:
            if entry.source == source and entry.target == target:
                return entry
        return None

    def upsert(self, notification: Notification, outcome: Outcome) -> Notification:
        if outcome.status not in {STATUS_VERIFIED, STATUS_GONE}:
            raise ValueError(f"cannot record outcome {outcome.status!r}")

        entry = self.find(notification.source, notification.target)
        if entry is None:
            entry = Notification(source=notification.source, target=notification.target)
            self._entries.append(entry)

        entry.validated_at = outcome.checked_at
        if outcome.status == STATUS_GONE:
            entry.deleted = True
            entry.mentioned = None
        else:
            entry.deleted = None
            entry.mentioned = bool(outcome.mentioned)
        return entry

    def persist(self) -> None:
        _write_json(
            self.path,
            {"webmentions": [notification_to_record(entry) for entry in self._entries]},
        )


class FailureStore:
    """Per-source count of failed verifications."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._counts: dict[str, int] = {}

    def load(self) -> None:
        payload = _read_json(self.path, {})
        if not isinstance(payload, dict):
            raise ConfigError(f"{self.path} must contain an object of source -> count")
        self._counts = {str(source): int(count) for source, count in payload.items()}

    def count(self, source: str) -> int:
        return self._counts.get(source, 0)

    def increment(self, source: str) -> int:
        self._counts[source] = self._counts.get(source, 0) + 1
        return self._counts[source]

    def as_dict(self) -> dict[str, int]:
        return dict(self._counts)

    def persist(self) -> None:
        _write_json(self.path, self._counts)


def load_allowed_targets(path: Path | None) -> tuple[str, ...]:
    if path is None:
        return ()
    payload = json.loads(path.read_text(encoding="utf-8"))
    urls = payload.get("urls") if isinstance(payload, dict) else None
    if not isinstance(urls, list) or not all(isinstance(url, str) for url in urls):
        raise ConfigError(f"{path} must contain an object with a 'urls' list of strings")
    return tuple(urls)
