import unittest
from datetime import date

from ramadan_backend import repositories, timezones
from ramadan_backend.errors import InvalidTimezoneError
from tests.base import StorageTestCase, utc


class ResolveTimezoneTestCase(unittest.TestCase):
    def test_manual_setting_wins_over_hint(self):
        zone = timezones.resolve_timezone("Africa/Cairo", "manual", hint="Asia/Istanbul")
        self.assertEqual(zone, "Africa/Cairo")

    def test_auto_prefers_hint(self):
        zone = timezones.resolve_timezone("Africa/Cairo", "auto", hint="Asia/Istanbul")
        self.assertEqual(zone, "Asia/Istanbul")

    def test_auto_without_hint_uses_stored_zone(self):
        self.assertEqual(timezones.resolve_timezone("Africa/Cairo", "auto", hint="  "), "Africa/Cairo")

    def test_unknown_zone_raises(self):
        for zone in ["Mars/Olympus", "", None, "../etc/passwd"]:
            with self.subTest(zone=zone):
                with self.assertRaises(InvalidTimezoneError):
                    timezones.resolve_timezone(zone, "manual")

    def test_local_today(self):
        self.assertEqual(timezones.local_today("Asia/Istanbul", utc(2024, 3, 11, 22, 0)), date(2024, 3, 12))
        self.assertEqual(timezones.local_today("UTC", utc(2024, 3, 11, 22, 0)), date(2024, 3, 11))


class TimezoneSnapshotTestCase(StorageTestCase):
    async def test_defaults_for_new_user(self):
        settings = await timezones.get_user_timezone_settings(self.user_email)
        self.assertEqual(settings, {"timezone_iana": "UTC", "timezone_source": "auto"})

    async def test_auto_mode_remembers_detected_zone(self):
        snapshot = await timezones.snapshot_timezone(self.user_email, "Asia/Istanbul")
        self.assertEqual(snapshot.zone, "Asia/Istanbul")
        self.assertIsNone(snapshot.warning)
        stored = await repositories.get_setting(self.user_email, "timezone_iana")
        self.assertEqual(stored, "Asia/Istanbul")

    async def test_manual_mode_ignores_hint(self):
        await timezones.update_user_timezone(self.user_email, "Asia/Riyadh", "manual")
        snapshot = await timezones.snapshot_timezone(self.user_email, "Europe/London")
        self.assertEqual(snapshot.zone, "Asia/Riyadh")
        self.assertEqual(snapshot.source, "manual")

    async def test_invalid_hint_falls_back_to_utc_with_warning(self):
        with self.assertLogs("ramadan_backend.timezones", level="WARNING"):
            snapshot = await timezones.snapshot_timezone(self.user_email, "Nowhere/Special")
        self.assertEqual(snapshot.zone, "UTC")
        self.assertIn("Nowhere/Special", snapshot.warning)

    async def test_update_rejects_unknown_zone(self):
        with self.assertRaises(InvalidTimezoneError):
            await timezones.update_user_timezone(self.user_email, "Nowhere/Special")
        with self.assertRaises(ValueError):
            await timezones.update_user_timezone(self.user_email, timezone_source="sometimes")
        settings = await timezones.get_user_timezone_settings(self.user_email)
        self.assertEqual(settings["timezone_iana"], "UTC")


if __name__ == "__main__":
    unittest.main()
