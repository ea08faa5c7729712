from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine, Sequence

from auroraguard.dispatcher import AlertDispatcher, DispatchError
from auroraguard.models import AlertCycle, AlertPhase, AlertStatus, Contact, Location, Notice
from auroraguard.recognition import RecognitionSessionManager
from auroraguard.scheduler import Scheduler, TimerHandle

Spawn = Callable[[Coroutine[Any, Any, None]], "asyncio.Task[None]"]


def _default_spawn(coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
    return asyncio.get_running_loop().create_task(coro, name="alert_dispatch")


class AlertStateMachine:
    """
    idle -> listening -> alerting -> listening.

    Only the cool-down timer moves alerting back to listening; dispatch
    results update the per-contact statuses of their own cycle and never
    change the phase.
    """

    def __init__(
        self,
        recognizer: RecognitionSessionManager,
        dispatcher: AlertDispatcher,
        *,
        contacts: Callable[[], Sequence[Contact]],
        location: Callable[[], Location | None],
        scheduler: Scheduler,
        cooldown_s: float = 10.0,
        on_change: Callable[[], None] | None = None,
        on_notice: Callable[[Notice], None] | None = None,
        spawn: Spawn | None = None,
    ) -> None:
        self._recognizer = recognizer
        self._dispatcher = dispatcher
        self._contacts = contacts
        self._location = location
        self._scheduler = scheduler
        self._cooldown_s = max(0.0, float(cooldown_s))
        self._on_change = on_change
        self._on_notice = on_notice
        self._spawn = spawn or _default_spawn
        self._logger = logging.getLogger("auroraguard.alerts")

        self._phase: AlertPhase = "idle"
        self._cycle: AlertCycle | None = None
        self._cycle_seq = 0
        self._cooldown: TimerHandle | None = None
        self.dispatch_task: asyncio.Task[None] | None = None
        recognizer.on_stopped = self._recognition_stopped

    @property
    def phase(self) -> AlertPhase:
        return self._phase

    @property
    def cycle(self) -> AlertCycle | None:
        return self._cycle

    @property
    def statuses(self) -> dict[str, AlertStatus]:
        if self._cycle is None:
            return {}
        return dict(self._cycle.statuses)

    @property
    def sending(self) -> bool:
        return self.dispatch_task is not None and not self.dispatch_task.done()

    def activate(self) -> bool:
        if self._recognizer.active:
            if self._phase == "idle":
                self._phase = "listening"
                self._changed()
            return True
        self._recognizer.start()
        if not self._recognizer.active:
            self._go_idle()
            return False
        if self._phase != "idle":
            self._logger.info("Recognition restarted while %s", self._phase)
            self._changed()
            return True
        self._phase = "listening"
        self._notice(Notice("protection-active", "Protection Active", "Aurora is now listening for your safety keywords."))
        self._changed()
        return True

    def deactivate(self) -> None:
        self._recognizer.stop()
        self._cancel_cooldown()
        self._cycle = None
        if self._phase == "idle":
            return
        self._phase = "idle"
        self._notice(Notice("protection-paused", "Protection Paused", "Aurora is no longer listening for emergency keywords."))
        self._changed()

    def toggle(self) -> bool:
        if self._phase == "idle":
            return self.activate()
        self.deactivate()
        return False

    def handle_keyword(self, keyword: str, transcript: str) -> None:
        if self._phase != "listening":
            return

        contacts = tuple(sorted(self._contacts(), key=lambda c: c.priority))
        location = self._location()
        self._cycle_seq += 1
        cycle = AlertCycle(
            cycle_id=self._cycle_seq,
            keyword=keyword,
            transcript=transcript,
            contacts=contacts,
            location=location,
            started_at=self._scheduler.now(),
            statuses={c.id: AlertStatus.idle() for c in contacts},
        )
        self._cycle = cycle
        self._phase = "alerting"
        self._recognizer.reset_transcript()
        self._logger.warning(
            "Alert cycle %d: keyword=%r contacts=%d hasLocation=%s",
            cycle.cycle_id,
            keyword,
            len(contacts),
            location is not None,
        )
        self._notice(
            Notice(
                "keyword-detected",
                "Emergency Keyword Detected!",
                f'Keyword "{keyword}" detected. Alerting your contacts now!',
                True,
            )
        )

        if not contacts:
            self._notice(Notice("no-contacts-configured", "No Contacts", "Please add emergency contacts first.", True))
        else:
            for index, c in enumerate(contacts):
                cycle.statuses[c.id] = AlertStatus.in_flight(is_primary=index == 0)
            self.dispatch_task = self._spawn(self._run_dispatch(cycle))

        self._cooldown = self._scheduler.call_later(self._cooldown_s, self._end_cycle)
        self._changed()

    async def _run_dispatch(self, cycle: AlertCycle) -> None:
        try:
            result = await self._dispatcher.dispatch(cycle.contacts, cycle.keyword, cycle.location)
        except DispatchError as e:
            self._logger.error("Alert cycle %d dispatch failed: %s", cycle.cycle_id, e)
            if self._cycle is cycle:
                for c in cycle.contacts:
                    cycle.statuses[c.id] = AlertStatus.idle()
            self._notice(
                Notice(
                    "dispatch-failure",
                    "Alert Failed",
                    str(e) or "Failed to send emergency alerts. Please try again.",
                    True,
                )
            )
            self._changed()
            return

        if self._cycle is not cycle:
            # TODO: decide whether late results should be shown after the cool-down cleared the cycle.
            self._logger.warning(
                "Alert cycle %d dispatch finished after cool-down; per-contact results not shown",
                cycle.cycle_id,
            )
        else:
            for index, c in enumerate(cycle.contacts):
                outcome = result.outcome_for(c.id)
                cycle.statuses[c.id] = AlertStatus(
                    calling=False,
                    called=index == 0 and outcome is not None and outcome.call_outcome == "initiated",
                    messaging=False,
                    message_sent=outcome is not None and outcome.sms_outcome == "sent",
                )
        self._notice(Notice("alerts-sent", "Alerts Sent!", f"Emergency alerts sent to {len(cycle.contacts)} contacts."))
        self._changed()

    def _recognition_stopped(self) -> None:
        if self._phase == "idle":
            return
        self._logger.warning("Recognition stopped while %s; protection is off", self._phase)
        self._go_idle()

    def _go_idle(self) -> None:
        self._cancel_cooldown()
        self._cycle = None
        if self._phase == "idle":
            return
        self._phase = "idle"
        self._changed()

    def _end_cycle(self) -> None:
        self._cooldown = None
        if self._phase != "alerting":
            return
        cycle = self._cycle
        self._cycle = None
        self._phase = "listening"
        if cycle is not None:
            self._logger.info("Alert cycle %d cooled down; listening again", cycle.cycle_id)
        self._changed()

    def _cancel_cooldown(self) -> None:
        if self._cooldown is not None:
            self._cooldown.cancel()
            self._cooldown = None

    def _notice(self, notice: Notice) -> None:
        if self._on_notice is not None:
            self._on_notice(notice)

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    def snapshot(self) -> dict[str, Any]:
        cycle = self._cycle
        return {
            "phase": self._phase,
            "listening": self._recognizer.listening,
            "transcript": self._recognizer.transcript,
            "error": self._recognizer.error,
            "keyword": cycle.keyword if cycle is not None else None,
            "detectedText": cycle.transcript if cycle is not None else "",
            "location": cycle.location.as_dict() if cycle is not None and cycle.location is not None else None,
            "sending": self.sending,
            "alertStatuses": {cid: s.as_dict() for cid, s in (cycle.statuses.items() if cycle else [])},
        }
