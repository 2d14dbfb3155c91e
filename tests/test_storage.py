import sqlite3
import unittest
from datetime import datetime, timezone

from tests.helpers import make_record, memory_store


class DisasterStoreTests(unittest.TestCase):
    def setUp(self):
        self.store = memory_store()

    def test_starts_empty(self):
        self.assertEqual(self.store.count(), 0)
        self.assertIsNone(self.store.get_last_fetch())
        self.assertEqual(self.store.all(), [])

    def test_replace_all_swaps_snapshot_and_metadata(self):
        self.store.replace_all([make_record("a"), make_record("b")], fetched_ts=1000.0)
        self.store.replace_all([make_record("c", source="usgs", type="earthquake")], fetched_ts=2000.0)

        ids = [r.id for r in self.store.all()]
        self.assertEqual(ids, ["usgs-c"])
        self.assertEqual(self.store.get_last_fetch(), 2000.0)

    def test_round_trip_preserves_fields(self):
        rec = make_record("a", severity="extreme", start=datetime(2024, 3, 1, 6, 30, tzinfo=timezone.utc))
        self.store.replace_all([rec], fetched_ts=1234.5)
        got = self.store.all()[0]
        self.assertEqual(got.start_time, rec.start_time)
        self.assertEqual(got.severity, "extreme")
        self.assertEqual(got.raw, {"eventType": "flood"})
        self.assertEqual(got.fetched_at, datetime.fromtimestamp(1234.5, tz=timezone.utc))

    def test_touch_last_fetch_keeps_records(self):
        self.store.replace_all([make_record("a")], fetched_ts=1000.0)
        self.store.touch_last_fetch(5000.0)
        self.assertEqual(self.store.count(), 1)
        self.assertEqual(self.store.get_last_fetch(), 5000.0)

    def test_failed_replace_leaves_previous_snapshot(self):
        self.store.replace_all([make_record("a"), make_record("b")], fetched_ts=1000.0)
        self.store.conn.execute(
            """
            CREATE TRIGGER fail_on_boom BEFORE INSERT ON disasters
            WHEN NEW.id = 'nws-boom'
            BEGIN SELECT RAISE(ABORT, 'boom'); END;
            """
        )

        with self.assertRaises(sqlite3.Error):
            self.store.replace_all([make_record("c"), make_record("boom")], fetched_ts=2000.0)

        self.assertEqual(sorted(r.id for r in self.store.all()), ["nws-a", "nws-b"])
        self.assertEqual(self.store.get_last_fetch(), 1000.0)

    def test_duplicate_ids_fail_the_whole_replace(self):
        self.store.replace_all([make_record("a")], fetched_ts=1000.0)

        with self.assertRaises(sqlite3.IntegrityError):
            self.store.replace_all([make_record("b"), make_record("b")], fetched_ts=2000.0)

        self.assertEqual([r.id for r in self.store.all()], ["nws-a"])
        self.assertEqual(self.store.get_last_fetch(), 1000.0)

    def test_query_filters_and_orders(self):
        self.store.replace_all(
            [
                make_record("old", severity="severe", start=datetime(2024, 1, 1, tzinfo=timezone.utc)),
                make_record("new", severity="severe", start=datetime(2024, 5, 1, tzinfo=timezone.utc)),
                make_record("minor", severity="minor", start=datetime(2024, 3, 1, tzinfo=timezone.utc)),
                make_record("q", source="usgs", type="earthquake", severity="severe", state="CA"),
            ],
            fetched_ts=1.0,
        )

        got = self.store.query(limit=10, sources=["nws"], severities=["severe"])
        self.assertEqual([r.id for r in got], ["nws-new", "nws-old"])

        ranged = self.store.query(
            limit=10,
            start_gte=datetime(2024, 2, 1, tzinfo=timezone.utc).timestamp(),
            start_lte=datetime(2024, 4, 1, tzinfo=timezone.utc).timestamp(),
        )
        self.assertEqual(sorted(r.id for r in ranged), ["nws-minor", "usgs-q"])

        self.assertEqual(self.store.source_counts(states=["CA"]), {"usgs": 1})
        self.assertEqual(self.store.source_counts(), {"nws": 3, "usgs": 1})
        self.assertEqual(len(self.store.query(limit=2)), 2)


if __name__ == "__main__":
    unittest.main()
