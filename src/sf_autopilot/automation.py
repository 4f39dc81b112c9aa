from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import random
from typing import Any, Callable

from .budget import SpendLedger
from .command_queue import AutomationQueue
from .commands import Command, Update
from .config import CharacterConfig, SafetyConfig, SchedulerConfig
from .decision import Decision, decide
from .events import AccountEvents, EventLog
from .models import TavernActivity, utc_now
from .safety import SafetyManager
from .scheduler import AdaptiveScheduler, WakePlan
from .session import (
    AccountSession,
    FatalSessionError,
    ReauthenticationFailed,
    SendFailed,
    SessionClient,
    SessionState,
    SnapshotApplyFailed,
)


@dataclass(frozen=True)
class Dispatch:
    command: Command
    handle: Any
    reason: str
    from_queue: bool = False


@dataclass(frozen=True)
class TickResult:
    """Outcome of one step; with ``dispatch`` set the caller sends it and the next delay comes from ``execute``."""

    delay_seconds: float | None
    dispatch: Dispatch | None
    reason: str

    @property
    def stopped(self) -> bool:
        return self.delay_seconds is None and self.dispatch is None


class AccountAutomation:
    """
    Decision loop for one character.

    ``run_tick`` decides and either hands out the connection handle with the
    command to send or queues the command behind the in-flight one.
    ``complete_send`` applies the response, returns the handle and schedules
    the next wake. ``relogin``/``finish_relogin`` recover after failures.
    """

    def __init__(
        self,
        character: CharacterConfig,
        client: SessionClient,
        *,
        scheduler_cfg: SchedulerConfig,
        safety_cfg: SafetyConfig,
        events: EventLog | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._character = character
        self.client = client
        self.clock = clock
        self.events: AccountEvents = (events or EventLog(None)).for_account(character.account_key)
        self.session = AccountSession(on_event=self._session_event)
        self.queue = AutomationQueue()
        self.ledger = SpendLedger()
        self.scheduler = AdaptiveScheduler(scheduler_cfg, rng)
        self.safety = SafetyManager(safety_cfg)
        self._grace_handle: Any = None
        self.last_decision: Decision | None = None
        self.last_sent: Command | None = None
        self.last_error = ""
        self.last_plan: WakePlan | None = None

    @property
    def lock(self):
        return self.session.lock

    @property
    def character(self) -> CharacterConfig:
        with self.lock:
            return self._character

    def update_character(self, character: CharacterConfig) -> None:
        with self.lock:
            self._character = character
        self.events.emit("config", "character_updated", "info", character.to_dict())

    def _session_event(self, event_type: str, severity: str, payload: dict[str, Any]) -> None:
        self.events.emit("session", event_type, severity, payload)

    def needs_login(self) -> bool:
        return self.session.state in (SessionState.AUTHENTICATING, SessionState.REAUTHENTICATING)

    def in_grace(self) -> bool:
        with self.lock:
            return self._grace_handle is not None

    def wake_plan(self, now: datetime | None = None) -> WakePlan:
        now = now or self.clock()
        with self.lock:
            plan = self.scheduler.next_delay(
                self.session.state, self.session.snapshot(), self._character, now, self.ledger
            )
            self.last_plan = plan
            return plan

    def run_tick(self, now: datetime | None = None) -> TickResult:
        now = now or self.clock()
        with self.lock:
            state = self.session.state
            if state == SessionState.FATAL:
                return TickResult(None, None, "fatal")
            snapshot = self.session.snapshot()
            if snapshot is None:
                return TickResult(self.scheduler.busy_retry_delay(), None, f"no_snapshot:{state.value}")

            decision = decide(snapshot, self._character, now, self.ledger)
            self.last_decision = decision
            self.events.emit("decision", "decided", "debug", decision.to_dict())

            handle = self.session.take(decision.command.name)
            if handle is not None:
                return TickResult(0.0, Dispatch(decision.command, handle, decision.reason), decision.reason)

            if isinstance(decision.command, Update):
                return TickResult(self.scheduler.busy_retry_delay(), None, "busy_skip_update")
            queued = self.queue.offer(decision.command)
            self.events.emit(
                "queue",
                "queued" if queued else "queue_skipped",
                "debug",
                {"command": decision.command.to_dict(), "queue_length": len(self.queue)},
            )
            return TickResult(self.scheduler.queued_retry_delay(), None, "queued" if queued else "queue_skipped")

    def execute(self, dispatch: Dispatch, now: datetime | None = None) -> TickResult:
        try:
            response = self.client.send(dispatch.handle, dispatch.command)
        except Exception as exc:  # noqa: BLE001
            return self.complete_send(dispatch, error=SendFailed(str(exc)), now=now)
        return self.complete_send(dispatch, response=response, now=now)

    def complete_send(
        self,
        dispatch: Dispatch,
        *,
        response: Any = None,
        error: Exception | None = None,
        now: datetime | None = None,
    ) -> TickResult:
        now = now or self.clock()
        with self.lock:
            if error is None:
                snapshot = self.session.snapshot()
                try:
                    if snapshot is None:
                        raise SnapshotApplyFailed("no snapshot to apply the response to")
                    self.client.apply(snapshot, response)
                except Exception as exc:  # noqa: BLE001
                    error = exc if isinstance(exc, SnapshotApplyFailed) else SnapshotApplyFailed(str(exc))
            if error is not None:
                return self._fail(dispatch, error, now)

            self.session.restore(dispatch.handle)
            self.last_sent = dispatch.command
            self.last_error = ""
            spent = self.ledger.record(dispatch.command, now)
            self.events.emit(
                "dispatch",
                "sent",
                "info",
                {
                    "command": dispatch.command.to_dict(),
                    "reason": dispatch.reason,
                    "from_queue": dispatch.from_queue,
                    "spent": spent,
                },
            )
            return self._after_success(now)

    def _after_success(self, now: datetime) -> TickResult:
        snapshot = self.session.snapshot()
        tavern = snapshot.tavern if snapshot is not None else None
        if (
            tavern is not None
            and tavern.action.kind == TavernActivity.EXPEDITION
            and tavern.expedition_stage is not None
            and tavern.expedition_stage.needs_input()
            and len(self.queue) == 0
        ):
            return TickResult(self.scheduler.expedition_follow_up_delay(), None, "expedition_follow_up")

        head = self.queue.peek()
        if head is not None:
            handle = self.session.take(head.name)
            if handle is not None:
                self.queue.pop()
                return TickResult(0.0, Dispatch(head, handle, "queued", from_queue=True), "drain_queue")

        plan = self.scheduler.next_delay(self.session.state, snapshot, self._character, now, self.ledger)
        self.last_plan = plan
        return TickResult(plan.delay_seconds, None, plan.reason)

    def _fail(self, dispatch: Dispatch, error: Exception, now: datetime) -> TickResult:
        self.last_error = f"{type(error).__name__}:{error}"
        dropped = self.queue.to_list()
        self.queue.clear()
        self.session.mark_failed(self.last_error)
        self.safety.record_failure(now)
        self.events.emit(
            "dispatch",
            "send_failed",
            "error",
            {"command": dispatch.command.to_dict(), "error": self.last_error, "dropped_queue": dropped},
        )
        return TickResult(0.0, None, "reauthenticate")

    def relogin(self, attempt: int = 0, now: datetime | None = None) -> TickResult:
        now = now or self.clock()
        try:
            result = self.client.login()
        except FatalSessionError as exc:
            with self.lock:
                self.last_error = f"fatal:{exc}"
                self.session.fail_fatally(str(exc))
            self.events.emit("session", "login_fatal", "critical", {"error": str(exc)})
            return TickResult(None, None, "fatal")
        except Exception as exc:  # noqa: BLE001
            delay = float(self.safety.backoff_seconds(attempt))
            with self.lock:
                self.last_error = f"{ReauthenticationFailed.__name__}:{exc}"
            self.safety.record_failure(now)
            self.events.emit(
                "session",
                "relogin_failed",
                "warning",
                {"attempt": attempt, "error": str(exc), "retry_in_seconds": delay},
            )
            if self.safety.needs_attention(now):
                self.events.emit(
                    "safety",
                    "needs_attention",
                    "critical",
                    {"failures_in_window": self.safety.failure_count(now)},
                )
            return TickResult(delay, None, "relogin_failed")

        with self.lock:
            if self.session.state == SessionState.AUTHENTICATING:
                self.session.authenticated(result.handle, result.snapshot)
                self.events.emit("session", "logged_in", "info", {})
                return TickResult(self.scheduler.first_tick_delay(), None, "logged_in")
            if not self.session.relogin_succeeded(result.handle, result.snapshot):
                return TickResult(self.scheduler.busy_retry_delay(), None, "relogin_ignored")
            self._grace_handle = result.handle
        grace = float(self.safety.cfg.relogin_grace_seconds)
        self.events.emit("session", "relogged_in", "info", {"attempt": attempt, "grace_seconds": grace})
        return TickResult(grace, None, "post_relogin_grace")

    def finish_relogin(self, now: datetime | None = None) -> TickResult:
        now = now or self.clock()
        with self.lock:
            handle = self._grace_handle
            self._grace_handle = None
            if handle is None or not self.session.restore(handle):
                return TickResult(self.scheduler.busy_retry_delay(), None, "grace_without_handle")
            return self._after_success(now)

    def status(self) -> dict[str, Any]:
        now = self.clock()
        with self.lock:
            return {
                "account": self._character.account_key,
                "state": self.session.status_label(),
                "last_decision": self.last_decision.to_dict() if self.last_decision is not None else None,
                "last_sent": self.last_sent.to_dict() if self.last_sent is not None else None,
                "queue": self.queue.to_list(),
                "next_wake": self.last_plan.to_dict() if self.last_plan is not None else None,
                "failures_in_window": self.safety.failure_count(now),
                "needs_attention": self.safety.needs_attention(now),
                "last_error": self.last_error,
                "spend": self.ledger.to_dict(),
            }
