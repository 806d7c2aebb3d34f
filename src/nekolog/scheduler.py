"""Reinicio diario a medianoche local, con un único temporizador por proceso."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import ClassVar

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from dateutil import tz

logger = logging.getLogger(__name__)

MIDNIGHT_JOB_ID = "nekolog:midnight"

ResetAction = Callable[[datetime], None]
Waiter = Callable[[threading.Event, float], bool]

# One background scheduler per process; the midnight chain is a single job id.
background = BackgroundScheduler(daemon=True, timezone="UTC")
_background_lock = threading.Lock()


def _ensure_background() -> None:
    with _background_lock:
        if not background.running:
            background.start()


@dataclass(frozen=True)
class Armed:
    """Waiting for ``next_fire``."""

    next_fire: datetime


@dataclass(frozen=True)
class Idle:
    """Not scheduled."""


SchedulerState = Armed | Idle


def next_local_midnight(now: datetime, zone: tzinfo) -> datetime:
    """First local midnight strictly after ``now``.

    Naive ``now`` values are taken as local wall time in ``zone``. A midnight
    skipped by a DST jump resolves to the first existing instant.
    """
    local = now.astimezone(zone) if now.tzinfo else now.replace(tzinfo=zone)
    midnight = datetime.combine(local.date() + timedelta(days=1), time.min)
    return tz.resolve_imaginary(midnight.replace(tzinfo=zone))


class ScheduleHandle:
    """The one live midnight chain of the process.

    Claiming a new handle cancels the previous one, so chains never stack.
    A cancelled handle can no longer arm a job.
    """

    _active: ClassVar[ScheduleHandle | None] = None
    _registry_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self, owner: DailyScheduler) -> None:
        self.owner = owner
        self.cancel_event = threading.Event()
        self._lock = threading.Lock()
        self._job: Job | None = None

    @classmethod
    def claim(cls, owner: DailyScheduler) -> ScheduleHandle:
        with cls._registry_lock:
            current = cls._active
            if current is not None and not current.cancelled:
                logger.info("Replacing the running midnight schedule")
                current.cancel()
            handle = cls(owner)
            cls._active = handle
            return handle

    @classmethod
    def active(cls) -> ScheduleHandle | None:
        with cls._registry_lock:
            return cls._active

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def arm(self, add_job: Callable[[], Job]) -> bool:
        """Attach the next job unless the handle was cancelled meanwhile."""
        with self._lock:
            if self.cancelled:
                return False
            self._job = add_job()
            return True

    def cancel(self) -> None:
        with self._lock:
            self.cancel_event.set()
            job, self._job = self._job, None
            if job is not None:
                try:
                    job.remove()
                except JobLookupError:
                    # already ran and was dropped by the scheduler
                    pass

    def release(self) -> None:
        cls = type(self)
        with cls._registry_lock:
            if cls._active is self:
                cls._active = None


def _event_wait(event: threading.Event, timeout: float) -> bool:
    return event.wait(timeout)


class DailyScheduler:
    """Runs ``action`` at every local midnight until cancelled.

    ``start()`` arms a one-shot ``date`` job on the process background
    scheduler and re-arms it after every fire. ``run()`` drives the same
    chain in the calling thread with the injected ``clock`` and ``wait``,
    for simulated time. A scheduler owns at most one live chain: while one
    runs, ``start()`` returns its handle and ``run()`` refuses to loop.
    """

    def __init__(
        self,
        action: ResetAction,
        *,
        zone: tzinfo | None = None,
        clock: Callable[[], datetime] | None = None,
        wait: Waiter = _event_wait,
    ) -> None:
        self._action = action
        self._zone = zone or tz.tzlocal()
        self._clock = clock or (lambda: datetime.now(self._zone))
        self._wait = wait
        self._handle: ScheduleHandle | None = None
        self._lock = threading.Lock()
        self.state: SchedulerState = Idle()
        self.fired = 0
        self.armed = 0

    @property
    def running(self) -> bool:
        handle = self._handle
        return handle is not None and not handle.cancelled

    def start(self) -> ScheduleHandle:
        """Arm the chain on the background scheduler; a second call is a no-op."""
        with self._lock:
            if self._handle is not None and not self._handle.cancelled:
                return self._handle
            handle = ScheduleHandle.claim(self)
            self._handle = handle
        _ensure_background()
        self._schedule_next(handle, None)
        return handle

    def run(self, max_cycles: int | None = None) -> int:
        """Run the loop in the calling thread.

        Args:
            max_cycles: Stop after this many fires (None = until cancelled).

        Returns:
            Number of fires (0 if a chain of this scheduler is already live).
        """
        with self._lock:
            if self._handle is not None and not self._handle.cancelled:
                logger.warning("Midnight schedule already running, not looping twice")
                return 0
            handle = ScheduleHandle.claim(self)
            self._handle = handle
        return self._loop(handle, max_cycles)

    def stop(self) -> None:
        with self._lock:
            handle = self._handle
        if handle is not None:
            handle.cancel()
            handle.release()
        self.state = Idle()

    def _schedule_next(self, handle: ScheduleHandle, after: datetime | None) -> bool:
        now = self._clock()
        # never re-arm for the midnight that just fired
        if after is not None and after > now:
            now = after
        next_fire = next_local_midnight(now, self._zone)

        def _add() -> Job:
            return background.add_job(
                self._on_job,
                "date",
                run_date=next_fire.astimezone(timezone.utc),
                args=(handle, next_fire),
                id=MIDNIGHT_JOB_ID,
                replace_existing=True,
                coalesce=True,
                misfire_grace_time=None,
            )

        if not handle.arm(_add):
            return False
        self._mark_armed(next_fire)
        return True

    def _on_job(self, handle: ScheduleHandle, fire_time: datetime) -> None:
        if handle.cancelled:
            return
        self._fire(fire_time)
        if not self._schedule_next(handle, fire_time):
            self.state = Idle()

    def _loop(self, handle: ScheduleHandle, max_cycles: int | None) -> int:
        cycles = 0
        try:
            next_fire = self._arm()
            while not handle.cancelled:
                if not self._sleep_until(handle, next_fire):
                    break
                self._fire(next_fire)
                cycles += 1
                next_fire = self._arm()
                if max_cycles is not None and cycles >= max_cycles:
                    break
        finally:
            handle.cancel()
            handle.release()
            self.state = Idle()
        return cycles

    def _arm(self) -> datetime:
        next_fire = next_local_midnight(self._clock(), self._zone)
        self._mark_armed(next_fire)
        return next_fire

    def _mark_armed(self, next_fire: datetime) -> None:
        self.state = Armed(next_fire)
        self.armed += 1
        logger.debug("Armed for %s", next_fire.isoformat())

    def _sleep_until(self, handle: ScheduleHandle, target: datetime) -> bool:
        """False if cancelled before ``target``."""
        while True:
            # UTC, otherwise same-zone subtraction ignores DST offsets
            remaining = (
                target.astimezone(timezone.utc) - self._clock().astimezone(timezone.utc)
            ).total_seconds()
            if remaining <= 0:
                return True
            if self._wait(handle.cancel_event, remaining):
                return False

    def _fire(self, fire_time: datetime) -> None:
        self.fired += 1
        try:
            self._action(fire_time)
        except Exception:
            logger.exception("Midnight reset failed; re-arming anyway")
