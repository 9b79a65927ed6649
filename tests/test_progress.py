import unittest
from datetime import date

from ramadan_backend import entries, periods, progress, repositories, timezones
from ramadan_backend.errors import DateOutOfPeriodError, EntryLockedError, NotFoundError
from ramadan_backend.hijri import ramadan_bounds
from tests.base import StorageTestCase, utc

WEEK = {"id": "week-0", "start_date": "2024-03-11", "end_date": "2024-03-17"}


def rows(*pairs):
    return [{"gregorian_date": day, "completed": done} for day, done in pairs]


class StreakTestCase(unittest.TestCase):
    def test_streak_counts_back_from_latest_recorded_day(self):
        history = rows(("2024-03-11", True), ("2024-03-12", True), ("2024-03-13", True))
        self.assertEqual(progress.compute_streak(history, date(2024, 3, 11), date(2024, 3, 17)), 3)

    def test_incomplete_latest_day_resets_streak(self):
        history = rows(("2024-03-11", True), ("2024-03-12", True), ("2024-03-13", False))
        self.assertEqual(progress.compute_streak(history, date(2024, 3, 11), date(2024, 3, 17)), 0)

    def test_gap_breaks_streak(self):
        history = rows(("2024-03-11", True), ("2024-03-13", True))
        self.assertEqual(progress.compute_streak(history, date(2024, 3, 11), date(2024, 3, 17)), 1)

    def test_streak_stops_at_period_boundary(self):
        history = rows(("2024-03-10", True), ("2024-03-11", True), ("2024-03-12", True))
        self.assertEqual(progress.compute_streak(history, date(2024, 3, 11), date(2024, 3, 17)), 2)

    def test_no_rows(self):
        self.assertEqual(progress.compute_streak([], date(2024, 3, 11), date(2024, 3, 17)), 0)

    def test_summary_scores_full_span(self):
        history = rows(("2024-03-11", True), ("2024-03-12", True), ("2024-03-13", True), ("2024-03-14", False))
        summary = progress.summarize_period(WEEK, history)
        self.assertEqual(summary["days_total"], 7)
        self.assertEqual(summary["days_completed"], 3)
        self.assertAlmostEqual(summary["completion_ratio"], 0.4286)
        self.assertEqual(summary["streak"], 0)
        self.assertFalse(summary["completed"])

    def test_single_day_period_completed(self):
        day = {"id": "d", "start_date": "2024-03-11", "end_date": "2024-03-11"}
        summary = progress.summarize_period(day, rows(("2024-03-11", True)))
        self.assertTrue(summary["completed"])
        self.assertEqual(summary["completion_ratio"], 1.0)


class RecordProgressTestCase(StorageTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.clock.set(utc(2024, 3, 13, 8, 0))
        self.challenge = await periods.create_challenge(self.user_email, "Dhikr", "weekly", clock=self.clock)
        (self.period,) = self.challenge["periods"]

    async def test_date_after_period_end_rejected(self):
        with self.assertRaises(DateOutOfPeriodError) as ctx:
            await progress.record_progress(self.period, date(2024, 3, 20), 50, False)
        self.assertEqual(ctx.exception.end_date, "2024-03-19")
        self.assertEqual(await repositories.list_progress(self.period["id"]), [])

    async def test_recompute_is_idempotent(self):
        for day in ("2024-03-13", "2024-03-14", "2024-03-15"):
            await progress.record_progress(self.period, day, 100, True)
        first = await progress.recompute_period_status(self.period)
        second = await progress.recompute_period_status(self.period)
        self.assertEqual(first, second)
        self.assertEqual(first["streak"], 3)
        self.assertEqual(first["days_completed"], 3)
        stored = await progress.get_period_status(self.period["id"])
        self.assertEqual(stored["streak"], 3)

    async def test_rerecording_overwrites_and_keeps_notes(self):
        await progress.record_progress(self.period, "2024-03-13", 40, False, notes="morning adhkar only")
        await progress.record_progress(self.period, "2024-03-13", 100, True)
        (row,) = await repositories.list_progress(self.period["id"])
        self.assertEqual(row["progress_value"], 100.0)
        self.assertTrue(row["completed"])
        self.assertEqual(row["notes"], "morning adhkar only")

    async def test_challenge_progress_outside_any_period(self):
        with self.assertRaises(DateOutOfPeriodError):
            await progress.record_challenge_progress(
                self.user_email, self.challenge["id"], date(2024, 3, 12), 100, True
            )

    async def test_challenge_progress_generates_missing_period(self):
        self.clock.set(utc(2024, 3, 21, 8, 0))
        statuses = await progress.record_challenge_progress(
            self.user_email, self.challenge["id"], date(2024, 3, 21), 100, True, clock=self.clock
        )
        self.assertEqual(len(statuses), 1)
        self.assertEqual(statuses[0]["days_completed"], 1)
        stored = await repositories.list_periods(self.challenge["id"])
        self.assertEqual([p["anchor_key"] for p in stored], ["weekly:0", "weekly:1"])

    async def test_future_progress_rejected_without_generating_periods(self):
        with self.assertRaises(DateOutOfPeriodError) as ctx:
            await progress.record_challenge_progress(
                self.user_email, self.challenge["id"], date(2054, 3, 11), 100, True, clock=self.clock
            )
        self.assertEqual(ctx.exception.end_date, "2024-03-13")
        stored = await repositories.list_periods(self.challenge["id"])
        self.assertEqual([p["anchor_key"] for p in stored], ["weekly:0"])

    async def test_future_is_judged_in_users_timezone(self):
        # 22:30 UTC on the 13th is already the 14th in Istanbul.
        await timezones.update_user_timezone(self.user_email, "Asia/Istanbul", "manual")
        self.clock.set(utc(2024, 3, 13, 22, 30))
        statuses = await progress.record_challenge_progress(
            self.user_email, self.challenge["id"], "2024-03-14", 100, True, clock=self.clock
        )
        self.assertEqual(statuses[0]["days_completed"], 1)

    async def test_delete_past_progress(self):
        self.clock.set(utc(2024, 3, 15, 8, 0))
        for day in ("2024-03-13", "2024-03-14"):
            await progress.record_challenge_progress(
                self.user_email, self.challenge["id"], day, 100, True, clock=self.clock
            )
        (status,) = await progress.delete_progress(
            self.user_email, self.challenge["id"], "2024-03-13", self.clock
        )
        self.assertEqual(status["days_completed"], 1)
        rows = await repositories.list_progress(self.period["id"])
        self.assertEqual([row["gregorian_date"] for row in rows], ["2024-03-14"])

    async def test_delete_progress_refuses_today_and_future(self):
        await progress.record_challenge_progress(
            self.user_email, self.challenge["id"], "2024-03-13", 100, True, clock=self.clock
        )
        for day in ("2024-03-13", "2024-03-14"):
            with self.subTest(day=day):
                with self.assertRaises(ValueError):
                    await progress.delete_progress(self.user_email, self.challenge["id"], day, self.clock)
        self.assertEqual(len(await repositories.list_progress(self.period["id"])), 1)

    async def test_delete_challenge_removes_everything(self):
        await progress.record_challenge_progress(
            self.user_email, self.challenge["id"], "2024-03-13", 100, True, clock=self.clock
        )
        with self.assertRaises(NotFoundError):
            await periods.delete_challenge("someone@example.com", self.challenge["id"])

        await periods.delete_challenge(self.user_email, self.challenge["id"])
        with self.assertRaises(NotFoundError):
            await periods.get_challenge(self.user_email, self.challenge["id"])
        self.assertEqual(await repositories.list_periods(self.challenge["id"]), [])
        self.assertEqual(await repositories.list_progress(self.period["id"]), [])
        self.assertEqual(await repositories.list_period_statuses([self.period["id"]]), {})
        with self.assertRaises(NotFoundError):
            await periods.delete_challenge(self.user_email, self.challenge["id"])


class GenerationHorizonTestCase(StorageTestCase):
    def test_horizon_is_end_of_following_ramadan(self):
        self.assertEqual(periods.generation_horizon(date(2024, 3, 20)), ramadan_bounds(1446)[1])
        self.assertEqual(periods.generation_horizon(date(2024, 5, 1)), ramadan_bounds(1447)[1])
        self.assertEqual(periods.generation_horizon(date.max), date.max)

    async def test_requested_horizon_is_capped(self):
        challenge = await periods.create_challenge(self.user_email, "Tahajjud", "monthly", clock=self.clock)
        stored = await periods.ensure_user_periods(self.user_email, challenge, date(2054, 3, 11), self.clock)
        self.assertEqual(stored[-1]["end_date"], ramadan_bounds(1446)[1].isoformat())
        self.assertEqual(stored[-1]["anchor_key"], "monthly:1446-09")

    async def test_default_horizon_is_current_ramadan(self):
        challenge = await periods.create_challenge(self.user_email, "Tahajjud", "weekly", clock=self.clock)
        stored = await periods.ensure_user_periods(self.user_email, challenge, clock=self.clock)
        self.assertEqual(stored[-1]["start_date"], "2024-04-08")


class FieldSyncTestCase(StorageTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        await timezones.update_user_timezone(self.user_email, "Asia/Istanbul", "manual")
        self.challenge = await periods.create_challenge(
            self.user_email, "Fast every day", "weekly", field_key="fasted", clock=self.clock
        )

    async def test_completed_field_feeds_challenge(self):
        entry = await entries.get_or_create_entry(self.user_email, date(2024, 3, 11), self.clock)
        await entries.save_field(entry, "fasted", "checkbox", True, self.clock)
        (period,) = await repositories.list_periods(self.challenge["id"])
        status = await progress.get_period_status(period["id"])
        self.assertEqual(status["days_completed"], 1)
        self.assertEqual(status["streak"], 1)

        await entries.save_field(entry, "fasted", "checkbox", False, self.clock)
        status = await progress.get_period_status(period["id"])
        self.assertEqual(status["days_completed"], 0)
        self.assertEqual(status["streak"], 0)

    async def test_unrelated_field_is_ignored(self):
        entry = await entries.get_or_create_entry(self.user_email, date(2024, 3, 11), self.clock)
        await entries.save_field(entry, "quran_pages", "text", "20", self.clock)
        (period,) = await repositories.list_periods(self.challenge["id"])
        self.assertEqual(await repositories.list_progress(period["id"]), [])

    async def test_reset_day_clears_progress(self):
        entry = await entries.get_or_create_entry(self.user_email, date(2024, 3, 11), self.clock)
        await entries.save_field(entry, "fasted", "checkbox", True, self.clock)
        await entries.reset_day(entry, self.clock)
        (period,) = await repositories.list_periods(self.challenge["id"])
        (row,) = await repositories.list_progress(period["id"])
        self.assertFalse(row["completed"])

    async def test_locked_day_keeps_historical_progress(self):
        entry = await entries.get_or_create_entry(self.user_email, date(2024, 3, 11), self.clock)
        await entries.save_field(entry, "fasted", "checkbox", True, self.clock)
        self.clock.set(utc(2024, 3, 12, 9, 0))
        with self.assertRaises(EntryLockedError):
            await entries.save_field(entry, "fasted", "checkbox", False, self.clock)
        (period,) = await repositories.list_periods(self.challenge["id"])
        (row,) = await repositories.list_progress(period["id"])
        self.assertTrue(row["completed"])

    async def test_direct_progress_cannot_rewrite_locked_day(self):
        entry = await entries.get_or_create_entry(self.user_email, date(2024, 3, 11), self.clock)
        await entries.save_field(entry, "fasted", "checkbox", False, self.clock)
        self.clock.set(utc(2024, 3, 13, 9, 0))
        with self.assertRaises(EntryLockedError):
            await progress.record_challenge_progress(
                self.user_email, self.challenge["id"], "2024-03-11", 100, True, clock=self.clock
            )
        (period,) = await repositories.list_periods(self.challenge["id"])
        self.assertEqual(await repositories.list_progress(period["id"]), [])
        with self.assertRaises(EntryLockedError):
            await progress.delete_progress(self.user_email, self.challenge["id"], "2024-03-11", self.clock)

    async def test_direct_progress_follows_lock_of_missing_entry(self):
        statuses = await progress.record_challenge_progress(
            self.user_email, self.challenge["id"], "2024-03-11", 100, True, clock=self.clock
        )
        self.assertEqual(statuses[0]["days_completed"], 1)
        self.clock.set(utc(2024, 3, 13, 9, 0))
        with self.assertRaises(EntryLockedError):
            await progress.record_challenge_progress(
                self.user_email, self.challenge["id"], "2024-03-12", 100, True, clock=self.clock
            )

    async def test_field_completed_before_challenge_is_backfilled(self):
        entry = await entries.get_or_create_entry(self.user_email, date(2024, 3, 11), self.clock)
        await entries.save_field(entry, "quran", "text", "Al-Baqarah 1-141", self.clock)
        challenge = await periods.create_challenge(
            self.user_email, "Read every day", "daily", field_key="quran", clock=self.clock
        )
        (period,) = challenge["periods"]
        status = await progress.get_period_status(period["id"])
        self.assertEqual(status["days_completed"], 1)

    async def test_resaving_completed_field_feeds_reactivated_challenge(self):
        entry = await entries.get_or_create_entry(self.user_email, date(2024, 3, 11), self.clock)
        await periods.update_challenge(self.user_email, self.challenge["id"], {"active": False}, self.clock)
        await entries.save_field(entry, "fasted", "checkbox", True, self.clock)
        await periods.update_challenge(self.user_email, self.challenge["id"], {"active": True}, self.clock)
        (period,) = await repositories.list_periods(self.challenge["id"])
        self.assertEqual(await repositories.list_progress(period["id"]), [])

        await entries.save_field(entry, "fasted", "checkbox", True, self.clock)
        status = await progress.get_period_status(period["id"])
        self.assertEqual(status["days_completed"], 1)

    async def test_far_future_entry_does_not_generate_periods(self):
        entry = await entries.get_or_create_entry(self.user_email, date(2054, 3, 11), self.clock)
        await entries.save_field(entry, "fasted", "checkbox", True, self.clock)
        self.assertEqual(len(await repositories.list_periods(self.challenge["id"])), 1)


if __name__ == "__main__":
    unittest.main()
