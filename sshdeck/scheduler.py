"""Periodic in-process job scheduling with a fluent interface.

Typical use::

    scheduler = Scheduler()
    scheduler.every(1).day().at("10:30").do(task)
    scheduler.every(2).hours().do(task_with_args, 1, "hello")
    stop = scheduler.start()
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Callable

__all__ = [
    "MAX_JOBS",
    "Job",
    "Scheduler",
    "TimeUnit",
    "Weekday",
    "change_loc",
    "clear",
    "every",
    "next_run",
    "parse_time",
    "remove",
    "run_all",
    "run_all_with_delay",
    "run_pending",
    "start",
]

MAX_JOBS = 10000

_EPOCH = datetime.fromtimestamp(0, timezone.utc)
_CO_VARARGS = 0x04

log = logging.getLogger(__name__)


@dataclass
class _Settings:
    """Module-wide scheduling settings."""

    location: tzinfo | None = None


_settings = _Settings()


class TimeUnit(str, enum.Enum):
    SECONDS = "seconds"
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"


_UNIT_SECONDS = {
    TimeUnit.SECONDS: 1,
    TimeUnit.MINUTES: 60,
    TimeUnit.HOURS: 60 * 60,
    TimeUnit.DAYS: 60 * 60 * 24,
    TimeUnit.WEEKS: 60 * 60 * 24 * 7,
}


class Weekday(enum.IntEnum):
    """Days of the week, numbered from Sunday."""

    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6


def change_loc(tz: tzinfo | None) -> None:
    """Set the time zone used for wall-clock times; None means local time."""
    if tz is not None and not isinstance(tz, tzinfo):
        raise TypeError(f"expected a tzinfo or None, got {type(tz).__name__}")
    _settings.location = tz


def _local_now() -> datetime:
    return datetime.now().astimezone()


def _zone(now: datetime) -> tzinfo | None:
    location = _settings.location
    return location if location is not None else now.tzinfo


def _wall_time(day: date, hour: int, minute: int, now: datetime) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=_zone(now))


def _weekday(moment: datetime) -> Weekday:
    return Weekday((moment.weekday() + 1) % 7)


def parse_time(text: str) -> tuple[int, int]:
    """Parse an ``HH:MM`` string into ``(hour, minute)``."""
    parts = text.split(":")
    if len(parts) != 2:
        raise ValueError("time format error")
    try:
        hour, minute = int(parts[0]), int(parts[1])
    except ValueError:
        raise ValueError("time format error") from None
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError("time format error")
    return hour, minute


def _accepts(func: Callable[..., Any], count: int) -> bool:
    """Whether ``func`` can be called with ``count`` positional arguments.

    Callables without a code object (builtins, partials, instances) are
    assumed to accept them.
    """
    code = getattr(func, "__code__", None)
    if code is None:
        return True
    bound = 1 if hasattr(func, "__func__") and getattr(func, "__self__", None) is not None else 0
    positional = code.co_argcount - bound
    defaults = len(getattr(func, "__defaults__", None) or ())
    kw_defaults = getattr(func, "__kwdefaults__", None) or {}
    if code.co_kwonlyargcount > len(kw_defaults):
        return False
    if count < positional - defaults:
        return False
    if count > positional and not code.co_flags & _CO_VARARGS:
        return False
    return True


class Job:
    """A function to be run every ``interval`` units of time."""

    def __init__(self, interval: int) -> None:
        self.interval = interval
        self.job_func: Callable[..., Any] | None = None
        self.args: tuple[Any, ...] = ()
        self.unit: TimeUnit | None = None
        self.last_run: datetime = _EPOCH
        self.next_run: datetime = _EPOCH
        self.period = timedelta(0)
        self.start_day = Weekday.SUNDAY

    def __repr__(self) -> str:
        name = getattr(self.job_func, "__name__", repr(self.job_func))
        return f"Job(every {self.interval} {self.unit and self.unit.value}, {name}, next={self.next_run})"

    def should_run(self) -> bool:
        """True if the job is due now."""
        return _local_now() > self.next_run

    def run(self) -> Any:
        """Run the job, reschedule it, and return what the function returned."""
        if self.job_func is None:
            raise RuntimeError("no function has been scheduled for this job")
        if not _accepts(self.job_func, len(self.args)):
            raise TypeError("the number of param is not adapted")
        result = self.job_func(*self.args)
        self.last_run = _local_now()
        self._schedule_next_run()
        return result

    def do(self, job_func: Callable[..., Any], *args: Any) -> Job:
        """Set the function (and its arguments) the job runs, and schedule it."""
        if not callable(job_func):
            raise TypeError("only function can be schedule into the job queue.")
        self.job_func = job_func
        self.args = args
        self._schedule_next_run()
        return self

    def at(self, time_str: str) -> Job:
        """Run at a given ``HH:MM`` wall-clock time (daily or weekly jobs)."""
        hour, minute = parse_time(time_str)
        now = _local_now()
        today = now.date()
        mock = _wall_time(today, hour, minute, now)

        if self.unit is TimeUnit.DAYS:
            if now > mock:
                self.last_run = mock
            else:
                self.last_run = _wall_time(today - timedelta(days=1), hour, minute, now)
        elif self.unit is TimeUnit.WEEKS:
            current = _weekday(now)
            if self.start_day != current or now > mock:
                back = (_weekday(mock) - self.start_day) % 7
                self.last_run = _wall_time(today - timedelta(days=back), hour, minute, now)
            else:
                self.last_run = _wall_time(today - timedelta(days=7), hour, minute, now)
        return self

    def _schedule_next_run(self) -> None:
        if self.last_run == _EPOCH:
            now = _local_now()
            if self.unit is TimeUnit.WEEKS:
                back = (_weekday(now) - self.start_day) % 7
                self.last_run = _wall_time(now.date() - timedelta(days=back), 0, 0, now)
            else:
                self.last_run = now

        if not self.period:
            seconds = _UNIT_SECONDS.get(self.unit, 0) if self.unit else 0
            self.period = timedelta(seconds=self.interval * seconds)
        self.next_run = self.last_run + self.period

    def next_scheduled_time(self) -> datetime:
        """When the job is to run next."""
        return self.next_run

    def _require_single(self) -> None:
        if self.interval != 1:
            raise ValueError(f"interval must be 1, got {self.interval}")

    def second(self) -> Job:
        self._require_single()
        return self.seconds()

    def seconds(self) -> Job:
        self.unit = TimeUnit.SECONDS
        return self

    def minute(self) -> Job:
        self._require_single()
        return self.minutes()

    def minutes(self) -> Job:
        self.unit = TimeUnit.MINUTES
        return self

    def hour(self) -> Job:
        self._require_single()
        return self.hours()

    def hours(self) -> Job:
        self.unit = TimeUnit.HOURS
        return self

    def day(self) -> Job:
        self._require_single()
        return self.days()

    def days(self) -> Job:
        self.unit = TimeUnit.DAYS
        return self

    def _on(self, weekday: Weekday) -> Job:
        self._require_single()
        self.start_day = weekday
        return self.weeks()

    def monday(self) -> Job:
        return self._on(Weekday.MONDAY)

    def tuesday(self) -> Job:
        return self._on(Weekday.TUESDAY)

    def wednesday(self) -> Job:
        return self._on(Weekday.WEDNESDAY)

    def thursday(self) -> Job:
        return self._on(Weekday.THURSDAY)

    def friday(self) -> Job:
        return self._on(Weekday.FRIDAY)

    def saturday(self) -> Job:
        return self._on(Weekday.SATURDAY)

    def sunday(self) -> Job:
        return self._on(Weekday.SUNDAY)

    def weeks(self) -> Job:
        self.unit = TimeUnit.WEEKS
        return self


class Scheduler:
    """Holds a set of jobs and runs those that are due."""

    def __init__(self) -> None:
        self.jobs: list[Job] = []

    def __len__(self) -> int:
        return len(self.jobs)

    def _sort(self) -> None:
        self.jobs.sort(key=lambda job: job.next_run)

    def _runnable_jobs(self) -> list[Job]:
        self._sort()
        runnable = []
        for job in self.jobs:
            if not job.should_run():
                break
            runnable.append(job)
        return runnable

    def every(self, interval: int) -> Job:
        """Add a new periodic job and return it for configuration."""
        if len(self.jobs) >= MAX_JOBS:
            raise RuntimeError(f"a scheduler holds at most {MAX_JOBS} jobs")
        job = Job(interval)
        self.jobs.append(job)
        return job

    def run_pending(self) -> None:
        """Run every job that is due.

        Missed runs are not caught up: a job that fell behind runs once.
        """
        for job in self._runnable_jobs():
            job.run()

    def run_all(self) -> None:
        """Run every job whether it is due or not."""
        for job in list(self.jobs):
            job.run()

    def run_all_with_delay(self, delay: float) -> None:
        """Run every job, sleeping ``delay`` seconds after each one."""
        for job in list(self.jobs):
            job.run()
            time.sleep(delay)

    def remove(self, job_func: Callable[..., Any]) -> None:
        """Remove the first job that runs ``job_func``."""
        for index, job in enumerate(self.jobs):
            if job.job_func == job_func:
                del self.jobs[index]
                return

    def clear(self) -> None:
        """Delete all jobs."""
        self.jobs.clear()

    def next_run(self) -> tuple[Job | None, datetime]:
        """The job due soonest and when; ``(None, now)`` if there are none."""
        if not self.jobs:
            return None, _local_now()
        self._sort()
        first = self.jobs[0]
        return first, first.next_run

    def start(self) -> threading.Event:
        """Check for due jobs once a second in a background thread.

        Set the returned event to stop; wait on it to block forever.
        """
        stopped = threading.Event()

        def loop() -> None:
            while not stopped.wait(1):
                try:
                    self.run_pending()
                except Exception:
                    log.exception("scheduled job failed")

        threading.Thread(target=loop, name="scheduler", daemon=True).start()
        return stopped


_default = Scheduler()


def every(interval: int) -> Job:
    """Add a periodic job to the default scheduler."""
    return _default.every(interval)


def run_pending() -> None:
    """Run due jobs of the default scheduler."""
    _default.run_pending()


def run_all() -> None:
    """Run all jobs of the default scheduler."""
    _default.run_all()


def run_all_with_delay(delay: float) -> None:
    """Run all jobs of the default scheduler with a pause between them."""
    _default.run_all_with_delay(delay)


def start() -> threading.Event:
    """Start the default scheduler in the background."""
    return _default.start()


def clear() -> None:
    """Delete all jobs of the default scheduler."""
    _default.clear()


def remove(job_func: Callable[..., Any]) -> None:
    """Remove a job from the default scheduler."""
    _default.remove(job_func)


def next_run() -> tuple[Job | None, datetime]:
    """The next job of the default scheduler and when it runs."""
    return _default.next_run()