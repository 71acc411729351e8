import unittest
from datetime import datetime, timedelta, timezone

from core.utils import ensure_utc, mask_url, to_number


class TestUtils(unittest.TestCase):

    def test_mask_url_hides_credentials(self):
        masked = mask_url("https://chat.googleapis.com/v1/spaces/AAA/messages?key=k&token=t")
        self.assertEqual(masked, "https://chat.googleapis.com/...")

    def test_mask_url_bad_input(self):
        self.assertEqual(mask_url(None), "<none>")
        self.assertEqual(mask_url("no-scheme"), "<invalid-url>")

    def test_ensure_utc(self):
        naive = datetime(2024, 6, 12, 10, 0)
        self.assertEqual(ensure_utc(naive), datetime(2024, 6, 12, 10, 0, tzinfo=timezone.utc))

        plus_two = datetime(2024, 6, 12, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        self.assertEqual(ensure_utc(plus_two).hour, 10)
        self.assertIsNotNone(ensure_utc(None).tzinfo)

    def test_to_number(self):
        self.assertEqual(to_number("12.5"), 12.5)
        self.assertEqual(to_number(None, 3.0), 3.0)
        self.assertEqual(to_number("n/a"), 0.0)


if __name__ == '__main__':
    unittest.main()
