import os
import tempfile
import threading
import unittest

from gallery.db import (
    AnalyticsEvent,
    AnalyticsEventRow,
    CategoryInUseError,
    PostgresDbClient,
    SlugConflictError,
    UserRecord,
    WallpaperRecord,
)


class PostgresDbClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the Postgres client logic.
    """

    def setUp(self):
        self.db = PostgresDbClient("sqlite+pysqlite:///:memory:")
        self.nature = self.db.create_category("Nature", "nature", order_index=2)
        self.space = self.db.create_category("Space", "space", order_index=1)

    def _wallpaper(self, title, created_at, **kwargs):
        return self.db.create_wallpaper(
            WallpaperRecord(
                title=title,
                image_url=f"https://cdn.test/{title}.png",
                created_at=created_at,
                updated_at=created_at,
                **kwargs,
            )
        )

    def test_categories_are_ordered_and_counted(self):
        self._wallpaper("forest", 1.0, category_id=self.nature.id, like_count=3)
        self._wallpaper("lake", 2.0, category_id=self.nature.id, like_count=9)

        categories = self.db.list_categories_with_images()
        self.assertEqual([c.slug for c in categories], ["space", "nature"])
        self.assertEqual(categories[0].wallpaper_count, 0)
        self.assertIsNone(categories[0].image_url)
        self.assertEqual(categories[1].wallpaper_count, 2)
        self.assertEqual(categories[1].image_url, "https://cdn.test/lake.png")

        by_slug = self.db.get_category_by_slug("nature")
        self.assertEqual(by_slug.id, self.nature.id)
        self.assertIsNone(self.db.get_category_by_slug("missing"))

    def test_category_slug_conflicts(self):
        with self.assertRaises(SlugConflictError):
            self.db.create_category("Nature again", "nature")
        with self.assertRaises(SlugConflictError):
            self.db.update_category(self.space.id, {"slug": "nature"})

        updated = self.db.update_category(
            self.space.id, {"name": "Outer space", "slug": "space"}
        )
        self.assertEqual(updated.name, "Outer space")
        self.assertIsNone(self.db.update_category("missing", {"name": "x"}))

    def test_delete_category_refused_while_in_use(self):
        wallpaper = self._wallpaper("forest", 1.0, category_id=self.nature.id)
        self.db.soft_delete_wallpaper(wallpaper.id)
        with self.assertRaises(CategoryInUseError):
            self.db.delete_category(self.nature.id)

        self.assertTrue(self.db.delete_category(self.space.id))
        self.assertFalse(self.db.delete_category(self.space.id))

    def test_wallpaper_listings(self):
        old = self._wallpaper("old", 1.0, like_count=10, download_count=1)
        mid = self._wallpaper(
            "mid", 2.0, like_count=5, download_count=7, is_featured=True
        )
        new = self._wallpaper("new", 3.0, category_id=self.space.id)

        self.assertEqual([w.id for w in self.db.list_latest()], [new.id, mid.id, old.id])
        self.assertEqual(
            [w.id for w in self.db.list_trending()], [old.id, mid.id, new.id]
        )
        self.assertEqual(
            [w.id for w in self.db.list_most_downloaded()], [mid.id, old.id, new.id]
        )
        self.assertEqual([w.id for w in self.db.list_featured()], [mid.id])
        self.assertEqual([w.id for w in self.db.list_by_category("space")], [new.id])
        self.assertEqual(self.db.list_latest(limit=1)[0].id, new.id)

        fetched = self.db.get_wallpaper(new.id)
        self.assertEqual(fetched.category["slug"], "space")

    def test_soft_delete_hides_wallpaper(self):
        wallpaper = self._wallpaper("gone", 1.0)
        self.assertTrue(self.db.soft_delete_wallpaper(wallpaper.id))
        self.assertIsNone(self.db.get_wallpaper(wallpaper.id))
        self.assertEqual(self.db.list_latest(), [])
        self.assertFalse(self.db.increment_view_count(wallpaper.id))
        self.assertFalse(self.db.soft_delete_wallpaper("missing"))

    def test_deleted_wallpaper_cannot_be_deleted_or_featured_again(self):
        wallpaper = self._wallpaper("gone", 1.0)
        self.assertTrue(self.db.soft_delete_wallpaper(wallpaper.id))
        self.assertFalse(self.db.soft_delete_wallpaper(wallpaper.id))
        self.assertFalse(self.db.set_featured(wallpaper.id, True))
        self.assertEqual(self.db.list_featured(), [])

    def test_search_matches_title_and_description(self):
        self._wallpaper("Mountain Sunset", 1.0, like_count=1)
        self._wallpaper("Beach", 2.0, description="a warm sunset", like_count=4)
        self._wallpaper("100% cotton", 3.0)

        results = self.db.search_wallpapers("SUNSET")
        self.assertEqual([w.title for w in results], ["Beach", "Mountain Sunset"])
        self.assertEqual(
            [w.title for w in self.db.search_wallpapers("0%")], ["100% cotton"]
        )
        self.assertEqual(self.db.search_wallpapers("   "), [])

    def test_counters_and_featured_flag(self):
        wallpaper = self._wallpaper("counter", 1.0)
        self.assertTrue(self.db.increment_view_count(wallpaper.id))
        self.assertTrue(self.db.increment_view_count(wallpaper.id))
        self.assertTrue(self.db.increment_download_count(wallpaper.id))
        self.assertTrue(self.db.set_featured(wallpaper.id, True))

        fetched = self.db.get_wallpaper(wallpaper.id)
        self.assertEqual(fetched.view_count, 2)
        self.assertEqual(fetched.download_count, 1)
        self.assertTrue(fetched.is_featured)

    def test_favorites_adjust_like_count(self):
        wallpaper = self._wallpaper("liked", 1.0)
        first = self.db.add_favorite("user-1", wallpaper.id)
        again = self.db.add_favorite("user-1", wallpaper.id)
        self.assertEqual(first.id, again.id)
        self.assertEqual(self.db.get_wallpaper(wallpaper.id).like_count, 1)
        self.assertIsNone(self.db.add_favorite("user-1", "missing"))

        favorites = self.db.list_favorites("user-1")
        self.assertEqual(len(favorites), 1)
        self.assertEqual(favorites[0].wallpaper["title"], "liked")
        self.assertEqual(self.db.list_favorites("user-2"), [])

        self.assertIsNone(self.db.remove_favorite("user-2", first.id))
        removed = self.db.remove_favorite("user-1", first.id)
        self.assertEqual(removed.wallpaper_id, wallpaper.id)
        self.assertEqual(self.db.get_wallpaper(wallpaper.id).like_count, 0)
        self.assertIsNone(self.db.remove_favorite("user-1", first.id))

    def test_users_roundtrip(self):
        self.db.upsert_user(
            UserRecord(id="u1", email="a@example.com", display_name="a", created_at=1.0)
        )
        self.db.upsert_user(UserRecord(id="u2", email="b@example.com", created_at=2.0))
        self.assertTrue(self.db.set_user_role("u1", "admin"))
        self.assertFalse(self.db.set_user_role("missing", "admin"))
        with self.assertRaises(ValueError):
            self.db.set_user_role("u1", "owner")

        user = self.db.get_user("u1")
        self.assertTrue(user.is_admin)
        self.assertEqual([u.id for u in self.db.list_users()], ["u2", "u1"])

    def test_record_event(self):
        wallpaper = self._wallpaper("tracked", 1.0)
        self.db.record_event(
            AnalyticsEvent(event_type="download", wallpaper_id=wallpaper.id)
        )
        with self.db.Session() as session:
            rows = session.query(AnalyticsEventRow).all()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].event_type, "download")


class ConcurrentWritesTests(unittest.TestCase):
    """
    Several threads racing on a file-backed SQLite database, which shares state
    across connections the way Postgres does.
    """

    def setUp(self):
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = os.path.join(tmpdir.name, "gallery.db")
        self.db = PostgresDbClient(f"sqlite+pysqlite:///{path}")
        self.addCleanup(self.db.engine.dispose)

    def _race(self, target, threads=4):
        start = threading.Barrier(threads)
        results, errors = [], []

        def run():
            start.wait()
            try:
                results.append(target())
            except Exception as exc:
                errors.append(exc)

        workers = [threading.Thread(target=run) for _ in range(threads)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()
        return results, errors

    def test_concurrent_favorites_create_one_row(self):
        for i in range(15):
            wallpaper = self.db.create_wallpaper(
                WallpaperRecord(title=f"w{i}", image_url=f"https://cdn.test/{i}.png")
            )
            results, errors = self._race(
                lambda: self.db.add_favorite("user-1", wallpaper.id)
            )
            self.assertEqual(errors, [])
            self.assertEqual(len({favorite.id for favorite in results}), 1)
            self.assertEqual(self.db.get_wallpaper(wallpaper.id).like_count, 1)
        self.assertEqual(len(self.db.list_favorites("user-1")), 15)

    def test_concurrent_category_creates_conflict_cleanly(self):
        for i in range(15):
            slug = f"slug-{i}"
            results, errors = self._race(
                lambda: self.db.create_category("Name", slug)
            )
            self.assertEqual(len(results), 1)
            self.assertEqual(len(errors), 3)
            for error in errors:
                self.assertIsInstance(error, SlugConflictError)
        self.assertEqual(len(self.db.list_categories()), 15)


if __name__ == "__main__":
    unittest.main()
