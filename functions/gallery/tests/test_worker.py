import unittest

from gallery.db import AnalyticsEvent, InMemoryDbClient, WallpaperRecord
from gallery.queue import InMemoryEventQueue
from gallery.worker import process_next


class WorkerTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.queue = InMemoryEventQueue()
        self.wallpaper = self.db.create_wallpaper(
            WallpaperRecord(title="dunes", image_url="https://cdn.test/dunes.png")
        )

    def _enqueue(self, event_type, wallpaper_id=None):
        event = AnalyticsEvent(
            event_type=event_type, wallpaper_id=wallpaper_id or self.wallpaper.id
        )
        self.queue.enqueue(event.to_json())

    def _drain(self):
        processed = 0
        while process_next(db=self.db, queue=self.queue, block=False):
            processed += 1
        return processed

    def test_view_and_download_update_counters(self):
        self._enqueue("view")
        self._enqueue("view")
        self._enqueue("download")
        self.assertEqual(self._drain(), 3)

        wallpaper = self.db.get_wallpaper(self.wallpaper.id)
        self.assertEqual(wallpaper.view_count, 2)
        self.assertEqual(wallpaper.download_count, 1)
        self.assertEqual(
            [e.event_type for e in self.db.events], ["view", "view", "download"]
        )

    def test_like_events_are_recorded_without_touching_counts(self):
        self._enqueue("like")
        self._enqueue("unlike")
        self.assertEqual(self._drain(), 2)
        self.assertEqual(self.db.get_wallpaper(self.wallpaper.id).like_count, 0)
        self.assertEqual(len(self.db.events), 2)

    def test_unknown_wallpaper_is_skipped(self):
        self._enqueue("view", wallpaper_id="missing")
        with self.assertLogs("gallery.worker", level="WARNING"):
            self.assertTrue(process_next(db=self.db, queue=self.queue, block=False))
        self.assertEqual(self.db.events, [])

    def test_malformed_message_is_dropped(self):
        self.queue.enqueue("not json")
        self.queue.enqueue('{"event_type": "share", "wallpaper_id": "x"}')
        with self.assertLogs("gallery.worker", level="ERROR"):
            self.assertEqual(self._drain(), 2)
        self.assertEqual(self.queue.items, [])
        self.assertEqual(self.db.events, [])

    def test_process_once_no_events(self):
        processed = process_next(db=self.db, queue=self.queue, block=False)
        self.assertFalse(processed)


if __name__ == "__main__":
    unittest.main()
