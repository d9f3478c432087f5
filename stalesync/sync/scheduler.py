# Stalesync Scheduler
# Periodic, reactive and manual triggers with adaptive interval and safety timeout

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from concurrent.futures import CancelledError, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Optional

from stalesync.sync.coordinator import OutcomeStatus, SyncCoordinator, SyncOutcome
from stalesync.sync.errors import SyncTimeout
from stalesync.sync.interfaces import Trigger
from stalesync.sync.locks import AttemptToken


class AdaptiveInterval:
    """
    Tick interval that backs off while the user is idle.

    Starts at ``base``. Every tick without activity since the previous tick
    doubles it up to ``ceiling``; any activity resets it to ``base``. With
    ``adaptive=False`` the interval stays at ``base``.
    """

    def __init__(self, base: int, ceiling: int, *, adaptive: bool = True):
        if base <= 0:
            raise ValueError("Base interval must be positive")
        if ceiling < base:
            raise ValueError("Interval ceiling must not be below the base interval")
        self.base = base
        self.ceiling = ceiling
        self.adaptive = adaptive
        self.current = base
        self._activity = False
        self._lock = threading.Lock()

    def record_activity(self) -> None:
        """Note user activity; the next tick resets the interval."""
        with self._lock:
            self._activity = True
            self.current = self.base

    def on_tick(self) -> int:
        """Advance after a tick and return the interval until the next one."""
        with self._lock:
            if not self.adaptive or self._activity:
                self.current = self.base
            else:
                self.current = min(self.current * 2, self.ceiling)
            self._activity = False
            return self.current


@dataclass
class TickReport:
    """Outcomes of one round of triggers."""

    trigger: Trigger
    outcomes: list[SyncOutcome] = field(default_factory=list)
    next_interval: Optional[int] = None

    @property
    def failed(self) -> list[SyncOutcome]:
        return [o for o in self.outcomes if o.status is OutcomeStatus.FAILED]


class SyncScheduler:
    """
    Drives the coordinator for one owner and a set of entity types.

    Every attempt runs on a worker thread under a safety timeout; an
    attempt that overruns is abandoned through the coordinator, which
    releases its lock and enters ERROR. Failed attempts are not retried
    immediately, the next tick picks them up.
    """

    def __init__(
        self,
        coordinator: SyncCoordinator,
        owner_id: str,
        entity_types: Iterable[str],
        *,
        base_interval: int = 60_000,
        max_interval: int = 900_000,
        adaptive: bool = True,
        attempt_timeout: int = 30_000,
        max_workers: int = 4,
        on_report: Optional[Callable[[TickReport], None]] = None,
    ):
        """
        Initialize scheduler.

        Args:
            coordinator: Coordinator to drive.
            owner_id: Owner whose collections are synced.
            entity_types: Entity types to keep fresh.
            base_interval: Tick interval in milliseconds.
            max_interval: Ceiling for the adaptive interval in milliseconds.
            adaptive: Back off while no user activity is seen.
            attempt_timeout: Safety timeout per attempt in milliseconds.
            max_workers: Worker threads for attempts.
            on_report: Called with every TickReport.
        """
        if attempt_timeout <= 0:
            raise ValueError("Attempt timeout must be positive")
        self.coordinator = coordinator
        self.owner_id = owner_id
        self.entity_types = list(entity_types)
        self.interval = AdaptiveInterval(base_interval, max_interval, adaptive=adaptive)
        self.attempt_timeout = attempt_timeout
        self.on_report = on_report
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="stalesync-attempt")
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # Attempts

    def run_attempt(self, entity_type: str, *, trigger: Trigger, force: bool = False) -> SyncOutcome:
        """Run one coordinator attempt under the safety timeout."""
        token = AttemptToken()
        future = self._executor.submit(
            self.coordinator.check_and_sync,
            self.owner_id,
            entity_type,
            force=force,
            trigger=trigger,
            token=token,
        )
        try:
            return future.result(timeout=self.attempt_timeout / 1000)
        except CancelledError:
            return self._timed_out(entity_type, trigger, "was cancelled because the scheduler closed")
        except FutureTimeout:
            # Never wait past the deadline: the attempt may still be queued
            # behind hung workers or not have reached its lock yet
            future.cancel()
            abandoned = self.coordinator.abandon(self.owner_id, entity_type, token)
            if not abandoned and future.done() and not future.cancelled():
                # Finished right at the deadline
                return future.result()
            return self._timed_out(entity_type, trigger, f"did not finish within {self.attempt_timeout} ms")

    def _timed_out(self, entity_type: str, trigger: Trigger, reason: str) -> SyncOutcome:
        return SyncOutcome(
            self.owner_id,
            entity_type,
            OutcomeStatus.FAILED,
            trigger=trigger,
            error=SyncTimeout(f"Sync of '{entity_type}' {reason}", entity_type=entity_type),
        )

    def _trigger_all(self, trigger: Trigger, entity_types: Optional[list[str]] = None, *, force: bool = False) -> TickReport:
        report = TickReport(trigger=trigger)
        for entity_type in entity_types or self.entity_types:
            report.outcomes.append(self.run_attempt(entity_type, trigger=trigger, force=force))
        return report

    def _publish(self, report: TickReport) -> TickReport:
        if self.on_report is not None:
            self.on_report(report)
        return report

    # Triggers

    def tick(self) -> TickReport:
        """Periodic trigger: sync stale types, then adapt the interval."""
        report = self._trigger_all(Trigger.TIMER)
        report.next_interval = self.interval.on_tick()
        return self._publish(report)

    def record_activity(self) -> None:
        """User activity seen; resets the adaptive interval."""
        self.interval.record_activity()

    def on_foreground(self) -> TickReport:
        """App returned to the foreground."""
        self.record_activity()
        return self._publish(self._trigger_all(Trigger.FOREGROUND))

    def on_focus(self) -> TickReport:
        """Window or tab regained focus."""
        self.record_activity()
        return self._publish(self._trigger_all(Trigger.FOCUS))

    def on_connectivity_restored(self) -> TickReport:
        """Network came back."""
        return self._publish(self._trigger_all(Trigger.CONNECTIVITY))

    def request_sync(self, entity_type: Optional[str] = None, *, force: bool = False) -> TickReport:
        """Manual trigger for one or all entity types."""
        entity_types = [entity_type] if entity_type else None
        return self._publish(self._trigger_all(Trigger.MANUAL, entity_types, force=force))

    # Loop

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Run the tick loop on a daemon thread."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="stalesync-scheduler", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        delay = 0
        while not self._stop.wait(delay / 1000):
            report = self.tick()
            delay = report.next_interval or self.interval.current

    def stop(self, *, wait: bool = True) -> None:
        """Stop the tick loop. Attempts already running finish on their own."""
        self._stop.set()
        if self._thread is not None and wait and self._thread is not threading.current_thread():
            self._thread.join()
        self._thread = None

    def close(self, *, wait: bool = False) -> None:
        """Stop the loop and shut the worker pool down."""
        self.stop()
        self._executor.shutdown(wait=wait, cancel_futures=True)

    def run_forever(self) -> None:
        """Tick in the calling thread until ``stop`` is called."""
        self._stop.clear()
        self._run()
