from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import threading
from typing import Any, Callable

from .automation import AccountAutomation, TickResult
from .budget import SpendLedger
from .config import AppConfig, CharacterConfig
from .events import EventLog, read_json, write_json
from .models import utc_now_iso
from .session import SessionClient, SessionState


@dataclass(frozen=True)
class RunResult:
    steps: int
    stop_reason: str
    state: str

    def to_dict(self) -> dict[str, Any]:
        return {"steps": self.steps, "stop_reason": self.stop_reason, "state": self.state}


class AccountRunner:
    def __init__(
        self,
        automation: AccountAutomation,
        *,
        status_file: Path | None = None,
    ) -> None:
        self.automation = automation
        self.status_file = status_file
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._relogin_attempt = 0
        self.steps = 0
        self.stop_reason = ""

    def step(self) -> TickResult:
        """Advance the account by one wake-up and return when to wake next."""
        automation = self.automation
        if automation.session.state == SessionState.FATAL:
            result = TickResult(None, None, "fatal")
        elif automation.needs_login():
            result = automation.relogin(self._relogin_attempt)
            if result.reason == "relogin_failed":
                self._relogin_attempt += 1
            else:
                self._relogin_attempt = 0
        elif automation.in_grace():
            result = automation.finish_relogin()
        else:
            result = automation.run_tick()
            while result.dispatch is not None:
                result = automation.execute(result.dispatch)
        self.steps += 1
        self._write_status(result)
        return result

    def _write_status(self, result: TickResult) -> None:
        if self.status_file is None:
            return
        payload = self.automation.status()
        payload.update(
            {
                "ts": utc_now_iso(),
                "steps": self.steps,
                "last_step_reason": result.reason,
                "next_delay_seconds": result.delay_seconds,
            }
        )
        write_json(self.status_file, payload)

    def run(self, *, max_steps: int = 0, sleep_fn: Callable[[float], Any] | None = None) -> RunResult:
        wait = sleep_fn or self._stop.wait
        while not self._stop.is_set():
            if max_steps > 0 and self.steps >= max_steps:
                self.stop_reason = "max_steps_reached"
                break
            result = self.step()
            if result.stopped:
                self.stop_reason = result.reason
                break
            wait(max(0.0, float(result.delay_seconds or 0.0)))
        else:
            self.stop_reason = "stopped"
        return RunResult(
            steps=self.steps,
            stop_reason=self.stop_reason,
            state=self.automation.session.status_label(),
        )

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self.run,
            name=f"sf-autopilot-{self.automation.character.account_key}",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)


class AutomationService:
    """One independent runner per configured character."""

    def __init__(
        self,
        cfg: AppConfig,
        client_factory: Callable[[CharacterConfig], SessionClient],
    ) -> None:
        self.cfg = cfg
        self.events = EventLog(cfg.resolve(cfg.runtime.events_file), debug=cfg.runtime.debug_events)
        self.runners: dict[str, AccountRunner] = {}
        status_dir = cfg.resolve(cfg.runtime.status_dir)
        for character in cfg.characters:
            automation = AccountAutomation(
                character,
                client_factory(character),
                scheduler_cfg=cfg.scheduler,
                safety_cfg=cfg.safety,
                events=self.events,
            )
            key = character.account_key
            status_file = status_dir / status_file_name(key)
            _restore_ledger(automation, status_file)
            self.runners[key] = AccountRunner(automation, status_file=status_file)

    def start(self) -> None:
        for runner in self.runners.values():
            runner.start()

    def stop(self) -> None:
        for runner in self.runners.values():
            runner.stop()

    def status(self) -> dict[str, Any]:
        return {key: runner.automation.status() for key, runner in self.runners.items()}


def _restore_ledger(automation: AccountAutomation, status_file: Path) -> None:
    if not status_file.exists():
        return
    try:
        payload = read_json(status_file)
    except (OSError, ValueError) as exc:
        automation.events.emit(
            "runner",
            "status_unreadable",
            "warning",
            {"path": str(status_file), "error": str(exc)},
        )
        return
    spend = payload.get("spend") if isinstance(payload, dict) else None
    if isinstance(spend, dict):
        automation.ledger = SpendLedger.from_dict(spend)
        automation.events.emit("runner", "spend_restored", "info", automation.ledger.to_dict())


def status_file_name(account_key: str) -> str:
    token = "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in account_key)
    return f"{token}.json"
