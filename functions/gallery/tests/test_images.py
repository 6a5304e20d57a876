import io
import unittest
from unittest.mock import patch

from PIL import Image

from gallery.images import (
    ImageValidationError,
    build_object_keys,
    make_thumbnail,
    parse_tags,
    upload_image,
    validate_image,
)
from gallery.storage import InMemoryStorageClient


def _png(width, height, mode="RGB"):
    buffer = io.BytesIO()
    Image.new(mode, (width, height)).save(buffer, format="PNG")
    return buffer.getvalue()


class ImageHelpersTests(unittest.TestCase):
    def test_validate_image(self):
        validate_image("image/png", 1024)
        with self.assertRaisesRegex(ImageValidationError, "Invalid file type"):
            validate_image("application/pdf", 1024)
        with self.assertRaisesRegex(ImageValidationError, "exceeds 10MB"):
            validate_image("image/jpeg", 10 * 1024 * 1024 + 1)
        with self.assertRaisesRegex(ImageValidationError, "exceeds 1MB"):
            validate_image("image/gif", 2 * 1024 * 1024, max_bytes=1024 * 1024)

    def test_parse_tags(self):
        self.assertEqual(parse_tags(" Nature, ,Dark Mode ,"), ["nature", "dark mode"])
        self.assertEqual(parse_tags(None), [])

    def test_build_object_keys(self):
        key, thumb = build_object_keys("My Photo (1).PNG", "image/png", uid="abc")
        self.assertEqual(key, "wallpapers/abc-my-photo--1-.png")
        self.assertEqual(thumb, "wallpapers/thumbnails/abc-my-photo--1-.webp")

        key, thumb = build_object_keys(None, "image/jpeg", folder=None, uid="x")
        self.assertEqual(key, "x-image.jpg")
        self.assertEqual(thumb, "thumbnails/x-image.webp")

    def test_make_thumbnail_bounds_longest_side(self):
        data, width, height = make_thumbnail(_png(1600, 900), max_size=800)
        self.assertEqual((width, height), (1600, 900))
        with Image.open(io.BytesIO(data)) as thumb:
            self.assertEqual(thumb.format, "WEBP")
            self.assertEqual(thumb.size, (800, 450))

    def test_make_thumbnail_keeps_small_images(self):
        data, _, _ = make_thumbnail(_png(40, 30, mode="P"))
        with Image.open(io.BytesIO(data)) as thumb:
            self.assertEqual(thumb.size, (40, 30))

    def test_make_thumbnail_rejects_garbage(self):
        with self.assertRaises(ImageValidationError):
            make_thumbnail(b"definitely not an image")

    def test_make_thumbnail_rejects_oversized_dimensions(self):
        data = _png(40, 30)
        # Pillow refuses images over twice its pixel limit.
        with patch.object(Image, "MAX_IMAGE_PIXELS", 100):
            with self.assertRaisesRegex(ImageValidationError, "dimensions are too large"):
                make_thumbnail(data)

    def test_upload_image_stores_original_and_thumbnail(self):
        storage = InMemoryStorageClient(base_url="https://cdn.test")
        data = _png(1000, 2000)
        result = upload_image(
            storage, data, filename="tall.png", content_type="image/png"
        )

        self.assertEqual(result.width, 1000)
        self.assertEqual(result.height, 2000)
        self.assertEqual(result.file_size, len(data))
        self.assertTrue(result.key.startswith("wallpapers/"))
        self.assertTrue(result.key.endswith("-tall.png"))
        self.assertEqual(result.url, f"https://cdn.test/{result.key}")
        self.assertIn("/thumbnails/", result.thumbnail_url)
        self.assertEqual(storage.stored_objects[result.key], data)
        self.assertEqual(storage.content_types[result.thumbnail_key], "image/webp")
        self.assertEqual(len(storage.stored_objects), 2)


if __name__ == "__main__":
    unittest.main()
