from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import random
from typing import Any

from .budget import SpendLedger
from .commands import FightPetOpponent, GuildPetBattle
from .config import CharacterConfig, SchedulerConfig
from .decision import (
    Decision,
    DecisionContext,
    decide_dungeons,
    decide_guard_fallback,
    decide_guild,
    decide_mission_start,
    decide_pets,
    expedition_in_progress,
    quest_in_progress,
)
from .models import ExpeditionStageKind, GameStateSnapshot, TavernActivity
from .session import SessionState


@dataclass(frozen=True)
class Timer:
    name: str
    at: datetime


@dataclass(frozen=True)
class WakePlan:
    delay_seconds: float | None
    reason: str
    next_due: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "delay_seconds": self.delay_seconds,
            "reason": self.reason,
            "next_due": self.next_due.isoformat() if self.next_due is not None else None,
        }


def collect_timers(
    snapshot: GameStateSnapshot,
    character: CharacterConfig,
    now: datetime,
    ledger: SpendLedger | None = None,
) -> list[Timer]:
    """Next-ready times of every subsystem the character automates.

    A subsystem is ready now only when its decision layer would act on this
    snapshot, glass and mushroom skips included. Future cooldowns are reported
    as they are; elapsed cooldowns with nothing to act on contribute nothing.
    """
    ctx = DecisionContext(snapshot=snapshot, character=character, now=now, ledger=ledger)
    timers: list[Timer] = []
    tavern = snapshot.tavern
    action = tavern.action

    def ready(name: str, decision: Decision | None) -> None:
        if decision is not None:
            timers.append(Timer(name, now))

    def cooldown(name: str, at: datetime | None) -> None:
        if at is not None and at > now:
            timers.append(Timer(name, at))

    if action.kind == TavernActivity.QUEST:
        ready("quest", quest_in_progress(ctx))
        cooldown("quest", action.busy_until)
    elif action.kind == TavernActivity.CITY_GUARD:
        if action.finished(now):
            timers.append(Timer("city_guard", now))
        cooldown("city_guard", action.busy_until)
    elif action.kind == TavernActivity.EXPEDITION:
        stage = tavern.expedition_stage
        ready("expedition", expedition_in_progress(ctx))
        if stage is not None and stage.kind == ExpeditionStageKind.WAITING:
            cooldown("expedition", stage.until)
    else:
        ready("tavern", decide_mission_start(ctx) or decide_guard_fallback(ctx))

    if character.auto_dungeons:
        ready("portal" if snapshot.dungeons.portal_can_fight else "dungeon", decide_dungeons(ctx))
        cooldown("dungeon", snapshot.dungeons.next_free_fight)

    pets = snapshot.pets
    if character.auto_pets and pets is not None:
        decision = decide_pets(ctx)
        if decision is not None:
            name = "pet_pvp" if isinstance(decision.command, FightPetOpponent) else "pet_exploration"
            ready(name, decision)
        cooldown("pet_pvp", pets.next_free_battle)
        cooldown("pet_exploration", pets.next_free_exploration)

    guild = snapshot.guild
    if character.auto_guild and guild is not None:
        decision = decide_guild(ctx)
        if decision is not None:
            ready("hydra" if isinstance(decision.command, GuildPetBattle) else "guild", decision)
        if character.auto_guild_hydra and guild.hydra_remaining_fights > 0:
            cooldown("hydra", guild.hydra_next_battle)

    return timers


class AdaptiveScheduler:
    def __init__(self, cfg: SchedulerConfig, rng: random.Random | None = None) -> None:
        self.cfg = cfg
        self.rng = rng or random.Random()

    def _pick(self, window: tuple[int, int]) -> float:
        low, high = window
        return self.rng.randint(int(low), int(high)) / 1000.0

    def first_tick_delay(self) -> float:
        return self._pick(self.cfg.first_tick_ms)

    def busy_retry_delay(self) -> float:
        return self._pick(self.cfg.busy_retry_ms)

    def queued_retry_delay(self) -> float:
        return self._pick(self.cfg.queued_retry_ms)

    def expedition_follow_up_delay(self) -> float:
        return self._pick(self.cfg.expedition_follow_up_ms)

    def next_delay(
        self,
        state: SessionState,
        snapshot: GameStateSnapshot | None,
        character: CharacterConfig,
        now: datetime,
        ledger: SpendLedger | None = None,
    ) -> WakePlan:
        if state == SessionState.FATAL:
            return WakePlan(delay_seconds=None, reason="fatal")
        if state != SessionState.IDLE or snapshot is None:
            base = self._pick(self.cfg.not_idle_ms)
            return WakePlan(delay_seconds=base + self._pick(self.cfg.post_wait_jitter_ms), reason="not_idle")

        timers = collect_timers(snapshot, character, now, ledger)
        next_due: datetime | None = None
        if not timers:
            base = self._pick(self.cfg.no_timers_ms)
            reason = "no_timers"
        else:
            earliest = min(timers, key=lambda item: item.at)
            next_due = earliest.at
            if earliest.at <= now:
                base = self._pick(self.cfg.due_now_ms)
                reason = f"due_now:{earliest.name}"
            else:
                base = (earliest.at - now).total_seconds()
                reason = f"timer:{earliest.name}"
                if base > self.cfg.max_wait_seconds:
                    base = float(self.cfg.max_wait_seconds)
                    reason = f"capped:{earliest.name}"
        return WakePlan(
            delay_seconds=base + self._pick(self.cfg.post_wait_jitter_ms),
            reason=reason,
            next_due=next_due,
        )
