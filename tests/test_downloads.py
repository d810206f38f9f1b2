import unittest
from datetime import datetime, timedelta, timezone
from unittest import mock

from sharebox import downloads
from sharebox.downloads import (
    ClientAddressSeenSet,
    DisplayDownload,
    DownloadRecord,
    dedupe_downloads,
    describe_user_agent,
    download_index,
    to_display_records,
)

T1 = datetime(2024, 5, 3, tzinfo=timezone.utc)
T2 = T1 - timedelta(hours=1)
T3 = T1 - timedelta(hours=2)

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
FIREFOX_LINUX = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"


class DedupeDownloadsTests(unittest.TestCase):
    def test_later_record_from_same_address_is_dropped(self):
        records = [
            DownloadRecord(T1, "1.1.1.1", CHROME_WINDOWS),
            DownloadRecord(T2, "2.2.2.2", FIREFOX_LINUX),
            DownloadRecord(T3, "1.1.1.1", FIREFOX_LINUX),
        ]
        self.assertEqual(
            dedupe_downloads(records),
            [
                DownloadRecord(T1, "1.1.1.1", CHROME_WINDOWS),
                DownloadRecord(T2, "2.2.2.2", FIREFOX_LINUX),
            ],
        )

    def test_input_is_not_mutated(self):
        records = [
            DownloadRecord(T1, "1.1.1.1", ""),
            DownloadRecord(T2, "1.1.1.1", ""),
        ]
        snapshot = list(records)
        dedupe_downloads(records)
        self.assertEqual(records, snapshot)

    def test_empty_history(self):
        self.assertEqual(dedupe_downloads([]), [])

    def test_seen_set(self):
        seen = ClientAddressSeenSet()
        self.assertTrue(seen.first_sighting("10.0.0.1"))
        self.assertFalse(seen.first_sighting("10.0.0.1"))
        self.assertIn("10.0.0.1", seen)
        self.assertEqual(len(seen), 1)


class DisplayProjectionTests(unittest.TestCase):
    def test_known_agents_are_described(self):
        browser, platform = describe_user_agent(CHROME_WINDOWS)
        self.assertEqual(browser, "Chrome")
        self.assertTrue(platform.startswith("Windows"))
        self.assertEqual(describe_user_agent(FIREFOX_LINUX), ("Firefox", "Linux"))

    def test_missing_agent_degrades_to_empty(self):
        self.assertEqual(describe_user_agent(""), ("", ""))

    def test_parser_failure_degrades_to_empty(self):
        with mock.patch.object(downloads, "parse_user_agent", side_effect=RuntimeError("boom")):
            self.assertEqual(describe_user_agent(CHROME_WINDOWS), ("", ""))

    def test_projection_keeps_time_and_address(self):
        display = to_display_records([DownloadRecord(T1, "1.1.1.1", CHROME_WINDOWS)])
        self.assertEqual(len(display), 1)
        self.assertIsInstance(display[0], DisplayDownload)
        self.assertEqual((display[0].time, display[0].client_ip), (T1, "1.1.1.1"))
        self.assertEqual(display[0].browser, "Chrome")

    def test_download_index_counts_down(self):
        self.assertEqual([download_index(i, 3) for i in range(3)], [3, 2, 1])


if __name__ == "__main__":
    unittest.main()
