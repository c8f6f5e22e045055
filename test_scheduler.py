import asyncio
import os
import tempfile
import unittest
from datetime import datetime, timedelta, timezone

from lunabot.reminders import (
    DeliveryError,
    InvalidTimeFormat,
    InvalidTimezone,
    MissingField,
    PastTime,
    ReminderScheduler,
)
from lunabot.storage import Store

NOW = datetime(2030, 1, 1, 10, 0, tzinfo=timezone.utc)
FAR_FUTURE = datetime(2100, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingDeliver:
    def __init__(self):
        self.calls = []
        self.fail_ids = set()
        self.raise_ids = set()

    async def __call__(self, reminder) -> bool:
        self.calls.append(reminder.id)
        await asyncio.sleep(0)
        if reminder.id in self.raise_ids:
            raise DeliveryError("channel unreachable")
        return reminder.id not in self.fail_ids


class SchedulerTestCase(unittest.IsolatedAsyncioTestCase):
    max_attempts = None

    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.store = await Store(os.path.join(self.tmp.name, "reminders.db")).open()
        self.clock = FakeClock(NOW)
        self.deliver = RecordingDeliver()
        self.scheduler = ReminderScheduler(
            self.store, self.deliver, clock=self.clock, poll_interval=0.05, max_attempts=self.max_attempts
        )

    async def asyncTearDown(self):
        await self.scheduler.stop()
        await self.store.close()
        self.tmp.cleanup()

    async def run_tick(self, now=None):
        tasks = await self.scheduler.tick(now)
        return await asyncio.gather(*tasks)


class TestSchedule(SchedulerTestCase):
    async def test_future_local_time_is_stored_in_utc(self):
        scheduled = await self.scheduler.schedule("u1", "c1", "g1", "stretch", "2030-06-01 09:00", "America/New_York")

        expected = datetime(2030, 6, 1, 13, 0, tzinfo=timezone.utc)
        self.assertEqual(scheduled.reminder.run_at, expected)
        self.assertEqual(scheduled.local_echo, "2030-06-01 09:00 EDT")
        stored = await self.store.get_reminder(scheduled.reminder.id)
        self.assertEqual(stored.run_at, expected)
        self.assertFalse(stored.delivered)
        self.assertEqual(stored.created_at, NOW)

    async def test_winter_offset(self):
        scheduled = await self.scheduler.schedule("u1", "c1", None, "x", "2030-01-15 09:00", "Europe/Berlin")
        self.assertEqual(scheduled.reminder.run_at, datetime(2030, 1, 15, 8, 0, tzinfo=timezone.utc))

    async def test_past_time_rejected_and_nothing_stored(self):
        with self.assertRaises(PastTime):
            await self.scheduler.schedule("u1", "c1", "g1", "too late", "2030-01-01 09:59", "UTC")
        with self.assertRaises(PastTime):
            await self.scheduler.schedule("u1", "c1", "g1", "exactly now", "2030-01-01 10:00", "UTC")
        self.assertEqual(await self.store.due_reminders(FAR_FUTURE), [])

    async def test_past_in_users_zone(self):
        # 11:00 in Tokyo is 02:00 UTC, before NOW.
        with self.assertRaises(PastTime):
            await self.scheduler.schedule("u1", "c1", "g1", "x", "2030-01-01 11:00", "Asia/Tokyo")

    async def test_invalid_input(self):
        with self.assertRaises(InvalidTimeFormat):
            await self.scheduler.schedule("u1", "c1", "g1", "x", "", "UTC")
        with self.assertRaises(InvalidTimezone):
            await self.scheduler.schedule("u1", "c1", "g1", "x", "2030-06-01 09:00", "Mars/Olympus")
        with self.assertRaises(MissingField):
            await self.scheduler.schedule("u1", "c1", "g1", "   ", "2030-06-01 09:00", "UTC")
        self.assertEqual(await self.store.due_reminders(FAR_FUTURE), [])


class TestTick(SchedulerTestCase):
    async def add(self, text, minutes):
        return await self.store.add_reminder("u1", "c1", "g1", text, NOW + timedelta(minutes=minutes))

    async def test_delivers_exactly_the_due_set_in_order(self):
        second = await self.add("second", -5)
        first = await self.add("first", -30)
        at_now = await self.add("at now", 0)
        future = await self.add("future", 1)

        results = await self.run_tick(NOW)

        self.assertEqual(results, [True, True, True])
        self.assertEqual(self.deliver.calls, [first.id, second.id, at_now.id])
        for r in (first, second, at_now):
            self.assertTrue((await self.store.get_reminder(r.id)).delivered)
        self.assertFalse((await self.store.get_reminder(future.id)).delivered)

    async def test_second_tick_is_idempotent(self):
        r = await self.add("once", -1)
        await self.run_tick(NOW)
        await self.run_tick(NOW)
        self.assertEqual(self.deliver.calls, [r.id])

    async def test_failure_does_not_block_others_and_is_retried(self):
        failing = await self.add("fails", -3)
        raising = await self.add("raises", -2)
        ok = await self.add("ok", -1)
        self.deliver.fail_ids.add(failing.id)
        self.deliver.raise_ids.add(raising.id)

        self.assertEqual(await self.run_tick(NOW), [False, False, True])
        self.assertTrue((await self.store.get_reminder(ok.id)).delivered)
        self.assertFalse((await self.store.get_reminder(failing.id)).delivered)
        self.assertEqual((await self.store.get_reminder(raising.id)).attempts, 0)

        self.deliver.fail_ids.clear()
        self.deliver.raise_ids.clear()
        await self.run_tick(NOW)
        self.assertEqual(self.deliver.calls, [failing.id, raising.id, ok.id, failing.id, raising.id])
        self.assertTrue((await self.store.get_reminder(failing.id)).delivered)

    async def test_tick_uses_clock_by_default(self):
        r = await self.add("later", 10)
        self.assertEqual(await self.run_tick(), [])
        self.clock.now = NOW + timedelta(minutes=10)
        await self.run_tick()
        self.assertEqual(self.deliver.calls, [r.id])


class TestRetryCap(SchedulerTestCase):
    max_attempts = 2

    async def test_gives_up_after_max_attempts(self):
        r = await self.store.add_reminder("u1", "c1", "g1", "dead channel", NOW)
        self.deliver.fail_ids.add(r.id)

        for _ in range(4):
            await self.run_tick(NOW)

        self.assertEqual(self.deliver.calls, [r.id, r.id])
        self.assertFalse((await self.store.get_reminder(r.id)).delivered)


class TestLifecycle(SchedulerTestCase):
    async def test_start_polls_and_stop(self):
        await self.store.add_reminder("u1", "c1", "g1", "poll me", NOW - timedelta(minutes=1))

        self.scheduler.start()
        self.assertTrue(self.scheduler.running)
        for _ in range(100):
            if self.deliver.calls:
                break
            await asyncio.sleep(0.05)
        await self.scheduler.stop()

        self.assertFalse(self.scheduler.running)
        self.assertGreaterEqual(len(self.deliver.calls), 1)


if __name__ == "__main__":
    unittest.main()
