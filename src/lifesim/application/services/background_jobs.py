from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from lifesim.application.services.balance_tables import (
    ALCOHOLISM_DECAY_INTERVAL_SECONDS,
    ALCOHOLISM_DECAY_STEP,
    DISEASE_RECONCILE_INTERVAL_SECONDS,
    HAPPINESS_DECAY_INTERVAL_SECONDS,
    HUNGER_DECAY_INTERVAL_SECONDS,
    POLL_INTERVAL_SECONDS,
)
from lifesim.application.services.inventory_service import InventoryService
from lifesim.application.services.session_state import SessionState
from lifesim.domain.errors import RemoteFunctionNotFound
from lifesim.domain.events import InventoryChanged


logger = logging.getLogger(__name__)


@dataclass
class ScheduledJob:
    name: str
    interval_seconds: float
    action: Callable[[], None]
    next_run_at: float = 0.0
    enabled: bool = True


class JobScheduler:
    """Timer-driven session chores, advanced explicitly with :meth:`run_pending`.

    A failing job is logged and rescheduled; it never stops the others.
    """

    def __init__(self, *, clock=time.monotonic) -> None:
        self._clock = clock
        self._jobs: dict[str, ScheduledJob] = {}

    def add(self, name: str, interval_seconds: float, action: Callable[[], None], *, run_immediately: bool = False) -> ScheduledJob:
        start = self._clock()
        job = ScheduledJob(
            name=name,
            interval_seconds=float(interval_seconds),
            action=action,
            next_run_at=start if run_immediately else start + float(interval_seconds),
        )
        self._jobs[name] = job
        return job

    def remove(self, name: str) -> None:
        self._jobs.pop(name, None)

    def job(self, name: str) -> Optional[ScheduledJob]:
        return self._jobs.get(name)

    @property
    def job_names(self) -> list[str]:
        return sorted(self._jobs)

    def run_pending(self, now: Optional[float] = None) -> list[str]:
        current = self._clock() if now is None else now
        ran: list[str] = []
        for job in list(self._jobs.values()):
            if not job.enabled or current < job.next_run_at:
                continue
            try:
                job.action()
            except Exception:
                logger.exception("Background job failed", extra={"job": job.name})
            job.next_run_at = current + job.interval_seconds
            ran.append(job.name)
        return ran

    def run_all(self) -> list[str]:
        """Run every enabled job now and restart its interval."""

        for job in self._jobs.values():
            job.next_run_at = float("-inf")
        return self.run_pending(self._clock())


class SessionJobs:
    """The periodic jobs a logged-in session runs."""

    def __init__(self, session: SessionState, inventory: InventoryService) -> None:
        self.session = session
        self.inventory = inventory

    def install(self, scheduler: JobScheduler) -> JobScheduler:
        scheduler.add("hunger_decay", HUNGER_DECAY_INTERVAL_SECONDS, self.trigger_hunger_decay)
        scheduler.add("alcoholism_decay", ALCOHOLISM_DECAY_INTERVAL_SECONDS, self.decay_alcoholism)
        scheduler.add("happiness_decay", HAPPINESS_DECAY_INTERVAL_SECONDS, self.trigger_happiness_decay)
        scheduler.add("disease_reconcile", DISEASE_RECONCILE_INTERVAL_SECONDS, self.reconcile_disease)
        if not self.session.store.supports_push:
            # no change feed from this backend
            scheduler.add("poll_refresh", POLL_INTERVAL_SECONDS, self.poll)
        return scheduler

    def _invoke_decay(self, function: str) -> bool:
        """Run a gated decay function on the store; False when it has none."""

        try:
            self.session.store.invoke(function)
        except RemoteFunctionNotFound:
            logger.warning("Store has no decay function", extra={"function": function})
            return False
        return True

    def trigger_hunger_decay(self) -> None:
        """Ask the store to run its hunger step, then re-read the profile."""

        if not self.session.logged_in or not self._invoke_decay("decrease_hunger"):
            return
        player = self.session.refresh()
        if player is not None:
            self.session.medicine.check_malnutrition(player)

    def trigger_happiness_decay(self) -> None:
        if self.session.logged_in and self._invoke_decay("decrease_happiness"):
            self.session.refresh()

    def decay_alcoholism(self) -> None:
        """Server-gated decay; stores without the function decay the session player locally."""

        player = self.session.player
        if player is None:
            return
        if self._invoke_decay("decrease_alcoholism"):
            self.session.refresh()
            return
        if player.stats.alcoholism > 0:
            self.session.update_stats(alcoholism=max(0, player.stats.alcoholism - ALCOHOLISM_DECAY_STEP))

    def reconcile_disease(self) -> None:
        player = self.session.player
        if player is not None:
            self.session.medicine.reconcile_disease_stat(player)

    def poll(self) -> None:
        player = self.session.refresh()
        if player is None:
            return
        self.inventory.invalidate(str(player.id))
        self.session.event_bus.publish(InventoryChanged(user_id=str(player.id), reason="poll"))
