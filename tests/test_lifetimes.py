import unittest
from datetime import datetime, timedelta, timezone

from sharebox.lifetimes import (
    FILE_LIFETIME_INFINITE,
    LIFETIME_CATALOG,
    MAX_LIFETIME_DAYS,
    NEVER_EXPIRE,
    ExpirationTime,
    InvalidLifetimeError,
    Lifetime,
)

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class LifetimeTests(unittest.TestCase):
    def test_finite_lifetimes_order_by_days(self):
        self.assertLess(Lifetime.in_days(1), Lifetime.in_days(7))
        self.assertLess(Lifetime.in_days(364), Lifetime.in_years(1))
        self.assertEqual(Lifetime.in_years(1), Lifetime.in_days(365))

    def test_infinite_sorts_after_every_finite_lifetime(self):
        self.assertGreater(FILE_LIFETIME_INFINITE, Lifetime.in_years(100))
        shuffled = [FILE_LIFETIME_INFINITE, Lifetime.in_days(30), Lifetime.in_days(1)]
        self.assertEqual(
            sorted(shuffled),
            [Lifetime.in_days(1), Lifetime.in_days(30), FILE_LIFETIME_INFINITE],
        )

    def test_catalog_is_already_ascending(self):
        self.assertEqual(list(LIFETIME_CATALOG), sorted(LIFETIME_CATALOG))
        self.assertEqual(len(set(LIFETIME_CATALOG)), 5)

    def test_friendly_names(self):
        self.assertEqual(Lifetime.in_days(1).friendly_name(), "1 day")
        self.assertEqual(Lifetime.in_days(7).friendly_name(), "7 days")
        self.assertEqual(Lifetime.in_days(0).friendly_name(), "0 days")
        self.assertEqual(Lifetime.in_years(1).friendly_name(), "1 year")
        self.assertEqual(Lifetime.in_days(730).friendly_name(), "2 years")
        self.assertEqual(FILE_LIFETIME_INFINITE.friendly_name(), "Never")

    def test_year_boundary(self):
        self.assertTrue(Lifetime.in_days(730).is_year_boundary)
        self.assertEqual(Lifetime.in_days(730).years, 2)
        self.assertFalse(Lifetime.in_days(400).is_year_boundary)
        self.assertFalse(Lifetime.in_days(0).is_year_boundary)
        self.assertFalse(FILE_LIFETIME_INFINITE.is_year_boundary)

    def test_infinite_lifetime_has_no_day_count(self):
        with self.assertRaises(ValueError):
            FILE_LIFETIME_INFINITE.days

    def test_negative_lifetime_rejected(self):
        with self.assertRaises(InvalidLifetimeError):
            Lifetime.in_days(-1)

    def test_parse_accepts_days_and_infinite_aliases(self):
        self.assertEqual(Lifetime.parse(7), Lifetime.in_days(7))
        self.assertEqual(Lifetime.parse(" 30 "), Lifetime.in_days(30))
        self.assertEqual(Lifetime.parse("infinite"), FILE_LIFETIME_INFINITE)
        self.assertEqual(Lifetime.parse("Never"), FILE_LIFETIME_INFINITE)

    def test_parse_rejects_garbage(self):
        for value in ["", "soon", "1.5", "-3", None, True, 2.0]:
            with self.subTest(value=value):
                with self.assertRaises(InvalidLifetimeError):
                    Lifetime.parse(value)

    def test_day_count_is_capped(self):
        self.assertEqual(Lifetime.in_days(MAX_LIFETIME_DAYS).days, 65535)
        with self.assertRaises(InvalidLifetimeError):
            Lifetime.in_days(MAX_LIFETIME_DAYS + 1)
        with self.assertRaises(InvalidLifetimeError):
            Lifetime.in_years(10000)
        with self.assertRaises(InvalidLifetimeError):
            Lifetime.parse("4000000")

    def test_longest_lifetime_resolves_to_an_instant(self):
        expiration = Lifetime.in_days(MAX_LIFETIME_DAYS).expiration_from(NOW)
        self.assertFalse(expiration.is_never)
        self.assertEqual(expiration.instant, NOW + timedelta(days=65535))

    def test_json_representation(self):
        self.assertEqual(Lifetime.in_days(3).to_json(), 3)
        self.assertEqual(FILE_LIFETIME_INFINITE.to_json(), "infinite")
        self.assertEqual(Lifetime.parse(FILE_LIFETIME_INFINITE.to_json()), FILE_LIFETIME_INFINITE)


class ExpirationTimeTests(unittest.TestCase):
    def test_finite_lifetime_adds_days_to_now(self):
        expiration = Lifetime.in_days(7).expiration_from(NOW)
        self.assertEqual(expiration.instant, NOW + timedelta(days=7))

    def test_infinite_lifetime_never_expires_for_any_reference_time(self):
        for reference in [NOW, datetime(1970, 1, 1, tzinfo=timezone.utc), datetime(9000, 1, 1, tzinfo=timezone.utc)]:
            with self.subTest(reference=reference):
                self.assertIs(FILE_LIFETIME_INFINITE.expiration_from(reference), NEVER_EXPIRE)

    def test_naive_reference_time_rejected(self):
        with self.assertRaises(ValueError):
            Lifetime.in_days(1).expiration_from(datetime(2024, 1, 1))

    def test_never_is_later_than_any_instant(self):
        far_future = ExpirationTime(datetime(9999, 1, 1, tzinfo=timezone.utc))
        self.assertLess(far_future, NEVER_EXPIRE)
        self.assertGreater(NEVER_EXPIRE, far_future)
        self.assertTrue(NEVER_EXPIRE.is_never)
        self.assertFalse(far_future.is_never)

    def test_has_passed(self):
        expiration = ExpirationTime(NOW)
        self.assertTrue(expiration.has_passed(NOW))
        self.assertFalse(expiration.has_passed(NOW - timedelta(seconds=1)))
        self.assertFalse(NEVER_EXPIRE.has_passed(datetime(9999, 1, 1, tzinfo=timezone.utc)))

    def test_timestamp_encoding_of_never(self):
        self.assertIsNone(NEVER_EXPIRE.timestamp())
        self.assertIs(ExpirationTime.from_timestamp(None), NEVER_EXPIRE)
        self.assertEqual(
            ExpirationTime.from_timestamp(NOW.timestamp()),
            ExpirationTime(NOW),
        )

    def test_far_future_instant_survives_timestamp_encoding(self):
        far_future = ExpirationTime(datetime(2300, 1, 1, tzinfo=timezone.utc))
        restored = ExpirationTime.from_timestamp(far_future.timestamp())
        self.assertFalse(restored.is_never)
        self.assertEqual(restored, far_future)

    def test_isoformat(self):
        self.assertEqual(ExpirationTime(NOW).isoformat(), "2024-01-01T12:00:00Z")
        self.assertEqual(NEVER_EXPIRE.isoformat(), "")

    def test_instant_of_never_raises(self):
        with self.assertRaises(ValueError):
            NEVER_EXPIRE.instant


if __name__ == "__main__":
    unittest.main()
