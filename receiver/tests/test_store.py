from __future__ import annotations

from datetime import datetime, timedelta, timezone
import json
from pathlib import Path
import tempfile
import unittest

from webmention_receiver.config import ConfigError
from webmention_receiver.models import STATUS_FAILED, STATUS_GONE, STATUS_VERIFIED, Notification, Outcome
from webmention_receiver.store import FailureStore, NotificationStore, load_allowed_targets

CHECKED_AT = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


class NotificationStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.path = Path(self._tmp.name) / "webmentions.json"

    def _read(self) -> dict:
        return json.loads(self.path.read_text(encoding="utf-8"))

    def test_missing_file_loads_empty(self) -> None:
        store = NotificationStore(self.path)
        store.load()
        self.assertEqual(len(store), 0)
        self.assertFalse(self.path.exists())

    def test_malformed_layout_raises(self) -> None:
        self.path.write_text(json.dumps({"webmentions": {}}), encoding="utf-8")
        with self.assertRaises(ConfigError):
            NotificationStore(self.path).load()

    def test_verified_entry_is_persisted_in_file_layout(self) -> None:
        store = NotificationStore(self.path)
        notification = Notification("https://a.example/post", "https://b.example/page")

        store.upsert(notification, Outcome(status=STATUS_VERIFIED, checked_at=CHECKED_AT, mentioned=True))
        store.persist()

        self.assertEqual(
            self._read(),
            {
                "webmentions": [
                    {
                        "source": "https://a.example/post",
                        "target": "https://b.example/page",
                        "validated": True,
                        "mentioned": True,
                        "validatedAt": int(CHECKED_AT.timestamp() * 1000),
                    }
                ]
            },
        )

    def test_gone_entry_has_deleted_flag_and_no_mentioned(self) -> None:
        store = NotificationStore(self.path)
        notification = Notification("https://a.example/post", "https://b.example/page")

        store.upsert(notification, Outcome(status=STATUS_GONE, checked_at=CHECKED_AT))
        store.persist()

        record = self._read()["webmentions"][0]
        self.assertTrue(record["deleted"])
        self.assertNotIn("mentioned", record)

    def test_upsert_updates_existing_pair_in_place(self) -> None:
        store = NotificationStore(self.path)
        notification = Notification("https://a.example/post", "https://b.example/page")
        later = CHECKED_AT + timedelta(days=2)

        store.upsert(notification, Outcome(status=STATUS_VERIFIED, checked_at=CHECKED_AT, mentioned=False))
        store.upsert(notification, Outcome(status=STATUS_VERIFIED, checked_at=later, mentioned=True))

        self.assertEqual([entry.key for entry in store.entries()], [notification.key])
        entry = store.find(notification.source, notification.target)
        assert entry is not None
        self.assertEqual(entry.validated_at, later)
        self.assertTrue(entry.mentioned)

    def test_gone_then_verified_clears_deleted(self) -> None:
        store = NotificationStore(self.path)
        notification = Notification("https://a.example/post", "https://b.example/page")

        store.upsert(notification, Outcome(status=STATUS_GONE, checked_at=CHECKED_AT))
        entry = store.upsert(
            notification,
            Outcome(status=STATUS_VERIFIED, checked_at=CHECKED_AT + timedelta(days=1), mentioned=True),
        )

        self.assertIsNone(entry.deleted)
        self.assertTrue(entry.mentioned)

    def test_failed_outcome_is_refused(self) -> None:
        store = NotificationStore(self.path)
        with self.assertRaises(ValueError):
            store.upsert(
                Notification("https://a.example/post", "https://b.example/page"),
                Outcome(status=STATUS_FAILED, checked_at=CHECKED_AT),
            )
        self.assertEqual(len(store), 0)

    def test_round_trip_through_file(self) -> None:
        millis = int(CHECKED_AT.timestamp() * 1000)
        self.path.write_text(
            json.dumps(
                {
                    "webmentions": [
                        {
                            "source": "https://a.example/1",
                            "target": "https://b.example/",
                            "validated": True,
                            "mentioned": True,
                            "validatedAt": millis,
                        },
                        {
                            "source": "https://a.example/2",
                            "target": "https://b.example/",
                            "validated": True,
                            "isMentioned": False,
                            "validatedAt": millis,
                        },
                    ]
                }
            ),
            encoding="utf-8",
        )

        store = NotificationStore(self.path)
        store.load()

        first = store.find("https://a.example/1", "https://b.example/")
        second = store.find("https://a.example/2", "https://b.example/")
        assert first is not None and second is not None
        self.assertEqual(first.validated_at, CHECKED_AT)
        self.assertTrue(first.mentioned)
        self.assertFalse(second.mentioned)
        self.assertIsNone(store.find("https://a.example/3", "https://b.example/"))

    def test_unknown_record_keys_survive_update_and_persist(self) -> None:
        self.path.write_text(
            json.dumps(
                {
                    "webmentions": [
                        {
                            "source": "https://a.example/post",
                            "target": "https://b.example/page",
                            "validated": True,
                            "mentioned": False,
                            "validatedAt": int(CHECKED_AT.timestamp() * 1000),
                            "author": {"name": "Ada"},
                            "note": "imported",
                        }
                    ]
                }
            ),
            encoding="utf-8",
        )
        store = NotificationStore(self.path)
        store.load()

        later = CHECKED_AT + timedelta(days=2)
        store.upsert(
            Notification("https://a.example/post", "https://b.example/page"),
            Outcome(status=STATUS_VERIFIED, checked_at=later, mentioned=True),
        )
        store.persist()

        record = self._read()["webmentions"][0]
        self.assertEqual(record["author"], {"name": "Ada"})
        self.assertEqual(record["note"], "imported")
        self.assertTrue(record["mentioned"])
        self.assertEqual(record["validatedAt"], int(later.timestamp() * 1000))


class FailureStoreTests(unittest.TestCase):
    def test_increment_starts_at_one_and_persists(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "validation-failures.json"
            failures = FailureStore(path)
            failures.load()

            self.assertEqual(failures.count("https://a.example/post"), 0)
            self.assertEqual(failures.increment("https://a.example/post"), 1)
            self.assertEqual(failures.increment("https://a.example/post"), 2)
            self.assertEqual(failures.as_dict(), {"https://a.example/post": 2})
            failures.persist()

            self.assertEqual(json.loads(path.read_text(encoding="utf-8")), {"https://a.example/post": 2})

            reloaded = FailureStore(path)
            reloaded.load()
            self.assertEqual(reloaded.count("https://a.example/post"), 2)


class AllowListTests(unittest.TestCase):
    def test_reads_url_prefixes(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "allowed.json"
            path.write_text(json.dumps({"urls": ["https://b.example/"]}), encoding="utf-8")
            self.assertEqual(load_allowed_targets(path), ("https://b.example/",))

    def test_no_file_means_no_restriction(self) -> None:
        self.assertEqual(load_allowed_targets(None), ())

    def test_rejects_malformed_allow_list(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "allowed.json"
            path.write_text(json.dumps({"prefixes": []}), encoding="utf-8")
            with self.assertRaises(ConfigError):
                load_allowed_targets(path)


if __name__ == "__main__":
    unittest.main()
