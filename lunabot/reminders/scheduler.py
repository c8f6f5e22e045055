"""
Reminder scheduler: a single-process poller.

Every ``poll_interval`` seconds the store is asked for undelivered reminders
whose fire time has passed. Each one gets its own delivery task; the tick does
not wait for them. A reminder is marked delivered only after the delivery
callback reports success, so failures are simply picked up again on the next
tick. Ticks may overlap with deliveries still in flight from a previous tick;
in that case a reminder can be sent twice, never lost (at-least-once).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from lunabot.storage import Reminder, Store

from .errors import DeliveryError, MissingField, PastTime
from .timeparse import format_local, parse_local_time

DEFAULT_POLL_INTERVAL_SECONDS = 20
JOB_ID = "reminder_poll"

DeliverFn = Callable[[Reminder], Awaitable[bool]]
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ScheduledReminder:
    reminder: Reminder
    zone: str
    local_echo: str        # fire time rendered in the user's zone


class ReminderScheduler:
    def __init__(
        self,
        store: Store,
        deliver: DeliverFn,
        clock: Clock = utc_now,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_attempts: Optional[int] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ) -> None:
        """
        deliver       — async callback, returns True once the reminder was sent
        clock         — returns the current aware UTC datetime
        max_attempts  — stop polling a reminder after this many failed
                        deliveries; None retries forever
        scheduler     — APScheduler instance to attach the poll job to
                        (a private one is created if omitted)
        """
        self.store = store
        self.deliver = deliver
        self.clock = clock
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self._scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self._owns_scheduler = scheduler is None
        self._inflight: Set[asyncio.Task] = set()

    # ── Scheduling ──────────────────────────────────────────────────────────

    async def schedule(
        self,
        user_id: str,
        channel_id: str,
        guild_id: Optional[str],
        text: str,
        when_local: str,
        user_zone: str,
    ) -> ScheduledReminder:
        """
        Validate and persist a reminder.

        Raises InvalidTimeFormat / InvalidTimezone if ``when_local`` can't be
        read in ``user_zone``, PastTime if it isn't strictly in the future.
        """
        text = (text or "").strip()
        if not text:
            raise MissingField("What should I remind you about?")

        now = self.clock()
        run_at = parse_local_time(when_local, user_zone, now=now)
        if run_at <= now:
            raise PastTime(f"{format_local(run_at, user_zone)} is in the past.")

        reminder = await self.store.add_reminder(user_id, channel_id, guild_id, text, run_at, created_at=now)
        logging.info(f"Reminder {reminder.id} scheduled for user {user_id} at {run_at.isoformat()}")
        return ScheduledReminder(reminder=reminder, zone=user_zone, local_echo=format_local(run_at, user_zone))

    # ── Polling ─────────────────────────────────────────────────────────────

    async def tick(self, now: Optional[datetime] = None) -> List[asyncio.Task]:
        """
        Dispatch one delivery attempt for every due reminder, in fire-time order.

        Returns the delivery tasks without awaiting them.
        """
        now = now or self.clock()
        try:
            due = await self.store.due_reminders(now, max_attempts=self.max_attempts)
        except Exception:
            logging.exception("Reminder poll failed")
            return []

        if due:
            logging.info(f"Reminder tick: {len(due)} due")
        tasks = []
        for reminder in due:
            task = asyncio.create_task(self._attempt(reminder), name=f"reminder-{reminder.id}")
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            tasks.append(task)
        return tasks

    async def _attempt(self, reminder: Reminder) -> bool:
        try:
            ok = await self.deliver(reminder)
            if not ok:
                raise DeliveryError(f"delivery callback reported failure for reminder {reminder.id}")
        except DeliveryError as e:
            logging.warning("Reminder %s not delivered: %s", reminder.id, e)
        except Exception as e:  # noqa: BLE001
            logging.warning("Reminder %s not delivered: %s: %s", reminder.id, type(e).__name__, e)
        else:
            try:
                if await self.store.mark_delivered(reminder.id):
                    logging.info(f"Reminder {reminder.id} delivered to channel {reminder.channel_id}")
            except Exception:
                logging.exception("Reminder %s was sent but could not be marked delivered", reminder.id)
            return True

        if self.max_attempts is None:
            return False
        try:
            await self.store.record_failure(reminder.id)
        except Exception:
            logging.exception("Could not record failed attempt for reminder %s", reminder.id)
        return False

    # ── Lifecycle ───────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._scheduler.get_job(JOB_ID) is not None and self._scheduler.running

    def start(self) -> None:
        """Register the poll job and start the underlying scheduler if needed."""
        self._scheduler.add_job(
            self.tick,
            "interval",
            seconds=self.poll_interval,
            id=JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=3,
        )
        if not self._scheduler.running:
            self._scheduler.start()
        logging.info(f"Reminder scheduler started (every {self.poll_interval}s)")

    async def stop(self, wait: bool = True) -> None:
        """Remove the poll job; optionally wait for in-flight deliveries."""
        if self._scheduler.get_job(JOB_ID) is not None:
            self._scheduler.remove_job(JOB_ID)
        if self._owns_scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        if wait and self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        logging.info("Reminder scheduler stopped")
