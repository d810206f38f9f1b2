import unittest
from datetime import datetime, timedelta, timezone

from sharebox.guest_links import (
    ENTRY_ID_LENGTH,
    GUEST_LINK_ID_LENGTH,
    GuestLink,
    InvalidIdentifierError,
    format_count_limit,
    format_size_limit,
    is_active,
    new_entry_id,
    new_guest_link_id,
    parse_entry_id,
    parse_guest_link_id,
)
from sharebox.lifetimes import (
    NEVER_EXPIRE,
    ExpirationTime,
    Lifetime,
)

NOW = datetime(2024, 3, 1, tzinfo=timezone.utc)


def make_link(**overrides) -> GuestLink:
    values = {
        "id": "abcdefghijklmnop",
        "label": "Vendor drop",
        "created": NOW - timedelta(days=1),
        "expiration": NEVER_EXPIRE,
        "max_file_lifetime": Lifetime.in_days(7),
        "max_file_bytes": None,
        "max_file_uploads": None,
        "files_uploaded": 0,
    }
    values.update(overrides)
    return GuestLink(**values)


class GuestLinkGateTests(unittest.TestCase):
    def test_never_expiring_unlimited_link_is_active(self):
        self.assertTrue(is_active(make_link(files_uploaded=1000), NOW))

    def test_link_is_inactive_once_expiration_is_reached(self):
        link = make_link(expiration=ExpirationTime(NOW))
        self.assertFalse(is_active(link, NOW))
        self.assertFalse(is_active(link, NOW + timedelta(days=1)))
        self.assertTrue(is_active(link, NOW - timedelta(seconds=1)))

    def test_link_is_inactive_once_upload_count_is_used_up(self):
        self.assertTrue(is_active(make_link(max_file_uploads=3, files_uploaded=2), NOW))
        self.assertFalse(is_active(make_link(max_file_uploads=3, files_uploaded=3), NOW))

    def test_both_conditions_must_hold(self):
        link = make_link(
            expiration=ExpirationTime(NOW - timedelta(days=1)),
            max_file_uploads=5,
            files_uploaded=0,
        )
        self.assertFalse(link.is_active(NOW))


class GuestLinkFormattingTests(unittest.TestCase):
    def test_size_limit(self):
        self.assertEqual(format_size_limit(None), "Unlimited")
        self.assertEqual(format_size_limit(512), "512 B")
        self.assertEqual(format_size_limit(1536), "1.50 kB")
        self.assertEqual(format_size_limit(10 * 1024 * 1024), "10.00 MB")

    def test_count_limit(self):
        self.assertEqual(format_count_limit(None), "Unlimited")
        self.assertEqual(format_count_limit(5), "5")


class IdentifierTests(unittest.TestCase):
    def test_generated_ids_parse(self):
        guest_link_id = new_guest_link_id()
        entry_id = new_entry_id()
        self.assertEqual(len(guest_link_id), GUEST_LINK_ID_LENGTH)
        self.assertEqual(len(entry_id), ENTRY_ID_LENGTH)
        self.assertEqual(parse_guest_link_id(guest_link_id), guest_link_id)
        self.assertEqual(parse_entry_id(entry_id), entry_id)

    def test_malformed_ids_rejected(self):
        for raw in ["", "short", "abcdefghijklmno!", "abcdefghijklmnopq", "abcdefghijklmno\n"]:
            with self.subTest(raw=raw):
                with self.assertRaises(InvalidIdentifierError):
                    parse_guest_link_id(raw)
        for raw in ["../../etc", "abcdefghi\n"]:
            with self.subTest(raw=raw):
                with self.assertRaises(InvalidIdentifierError):
                    parse_entry_id(raw)


if __name__ == "__main__":
    unittest.main()
