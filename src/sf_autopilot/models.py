from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import math
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def parse_ts(raw: object) -> datetime | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, (int, float)):
        return datetime.fromtimestamp(float(raw), tz=timezone.utc)
    else:
        value = datetime.fromisoformat(str(raw).strip().replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def remaining_seconds(until: datetime | None, now: datetime) -> float:
    if until is None:
        return 0.0
    return max(0.0, (until - now).total_seconds())


def is_due(at: datetime | None, now: datetime) -> bool:
    """A missing timestamp means the cooldown is not running."""
    return at is None or at <= now


class TavernActivity(str, Enum):
    IDLE = "idle"
    QUEST = "quest"
    EXPEDITION = "expedition"
    CITY_GUARD = "city_guard"
    UNKNOWN = "unknown"


class ExpeditionStageKind(str, Enum):
    BOSS = "boss"
    REWARDS = "rewards"
    ENCOUNTERS = "encounters"
    WAITING = "waiting"
    FINISHED = "finished"
    UNKNOWN = "unknown"


class QuestingPreference(str, Enum):
    QUESTS = "quests"
    EXPEDITIONS = "expeditions"


def _enum(kind: type[Enum], raw: object, default: Enum) -> Any:
    token = str(raw or "").strip().lower()
    for item in kind:
        if item.value == token:
            return item
    return default


@dataclass(frozen=True)
class Mission:
    position: int
    duration_seconds: int
    gold: int = 0
    xp: int = 0
    mushrooms: int = 0

    @property
    def minutes(self) -> int:
        return int(math.ceil(max(0, self.duration_seconds) / 60.0))

    def to_dict(self) -> dict[str, Any]:
        return {
            "position": self.position,
            "duration_seconds": self.duration_seconds,
            "gold": self.gold,
            "xp": self.xp,
            "mushrooms": self.mushrooms,
        }

    @staticmethod
    def from_dict(payload: dict[str, Any], position: int) -> "Mission":
        return Mission(
            position=int(payload.get("position", position)),
            duration_seconds=max(0, int(payload.get("duration_seconds", 0))),
            gold=max(0, int(payload.get("gold", 0))),
            xp=max(0, int(payload.get("xp", 0))),
            mushrooms=max(0, int(payload.get("mushrooms", 0))),
        )


@dataclass
class CurrentAction:
    kind: TavernActivity = TavernActivity.IDLE
    busy_until: datetime | None = None
    hours: int = 0

    def finished(self, now: datetime) -> bool:
        return self.busy_until is not None and self.busy_until <= now

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "busy_until": format_ts(self.busy_until), "hours": self.hours}

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "CurrentAction":
        return CurrentAction(
            kind=_enum(TavernActivity, payload.get("kind"), TavernActivity.UNKNOWN),
            busy_until=parse_ts(payload.get("busy_until")),
            hours=max(0, int(payload.get("hours", 0))),
        )


@dataclass
class ExpeditionStage:
    kind: ExpeditionStageKind = ExpeditionStageKind.UNKNOWN
    rewards: list[str] = field(default_factory=list)
    encounters: list[str] = field(default_factory=list)
    until: datetime | None = None

    def needs_input(self) -> bool:
        """True only when there is a choice to send; empty offer lists wait for the server."""
        if self.kind == ExpeditionStageKind.BOSS:
            return True
        if self.kind == ExpeditionStageKind.REWARDS:
            return bool(self.rewards)
        if self.kind == ExpeditionStageKind.ENCOUNTERS:
            return bool(self.encounters)
        return False

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "rewards": list(self.rewards),
            "encounters": list(self.encounters),
            "until": format_ts(self.until),
        }

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "ExpeditionStage":
        return ExpeditionStage(
            kind=_enum(ExpeditionStageKind, payload.get("kind"), ExpeditionStageKind.UNKNOWN),
            rewards=[str(item) for item in payload.get("rewards", [])],
            encounters=[str(item) for item in payload.get("encounters", [])],
            until=parse_ts(payload.get("until")),
        )


@dataclass
class TavernState:
    action: CurrentAction = field(default_factory=CurrentAction)
    quests: list[Mission] = field(default_factory=list)
    expeditions: list[Mission] = field(default_factory=list)
    expeditions_available: bool = False
    expedition_stage: ExpeditionStage | None = None
    thirst_seconds: int = 0
    beer_drunk: int = 0
    beer_cap: int = 10
    quicksand_glasses: int = 0
    questing_preference: QuestingPreference = QuestingPreference.QUESTS
    can_change_questing_preference: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.to_dict(),
            "quests": [item.to_dict() for item in self.quests],
            "expeditions": [item.to_dict() for item in self.expeditions],
            "expeditions_available": self.expeditions_available,
            "expedition_stage": self.expedition_stage.to_dict() if self.expedition_stage else None,
            "thirst_seconds": self.thirst_seconds,
            "beer_drunk": self.beer_drunk,
            "beer_cap": self.beer_cap,
            "quicksand_glasses": self.quicksand_glasses,
            "questing_preference": self.questing_preference.value,
            "can_change_questing_preference": self.can_change_questing_preference,
        }

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "TavernState":
        stage = payload.get("expedition_stage")
        return TavernState(
            action=CurrentAction.from_dict(payload.get("action", {}) or {}),
            quests=[Mission.from_dict(item, idx) for idx, item in enumerate(payload.get("quests", []))],
            expeditions=[Mission.from_dict(item, idx) for idx, item in enumerate(payload.get("expeditions", []))],
            expeditions_available=bool(payload.get("expeditions_available", False)),
            expedition_stage=ExpeditionStage.from_dict(stage) if isinstance(stage, dict) else None,
            thirst_seconds=max(0, int(payload.get("thirst_seconds", 0))),
            beer_drunk=max(0, int(payload.get("beer_drunk", 0))),
            beer_cap=max(0, int(payload.get("beer_cap", 10))),
            quicksand_glasses=max(0, int(payload.get("quicksand_glasses", 0))),
            questing_preference=_enum(
                QuestingPreference, payload.get("questing_preference"), QuestingPreference.QUESTS
            ),
            can_change_questing_preference=bool(payload.get("can_change_questing_preference", False)),
        )


TOWER = "tower"


@dataclass(frozen=True)
class DungeonProgress:
    name: str
    finished: int = 0
    open: bool = True
    shadow: bool = False

    @property
    def is_tower(self) -> bool:
        return self.name == TOWER and not self.shadow

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "finished": self.finished, "open": self.open, "shadow": self.shadow}

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "DungeonProgress":
        return DungeonProgress(
            name=str(payload.get("name", "")).strip().lower(),
            finished=max(0, int(payload.get("finished", 0))),
            open=bool(payload.get("open", True)),
            shadow=bool(payload.get("shadow", False)),
        )


@dataclass
class DungeonState:
    dungeons: list[DungeonProgress] = field(default_factory=list)
    next_free_fight: datetime | None = None
    portal_can_fight: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "dungeons": [item.to_dict() for item in self.dungeons],
            "next_free_fight": format_ts(self.next_free_fight),
            "portal_can_fight": self.portal_can_fight,
        }

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "DungeonState":
        return DungeonState(
            dungeons=[DungeonProgress.from_dict(item) for item in payload.get("dungeons", [])],
            next_free_fight=parse_ts(payload.get("next_free_fight")),
            portal_can_fight=bool(payload.get("portal_can_fight", False)),
        )


@dataclass(frozen=True)
class Pet:
    id: int
    level: int


@dataclass
class Habitat:
    kind: str
    pets: list[Pet] = field(default_factory=list)
    battled_opponent: bool = False
    exploring: bool = False
    fights_won: int = 0

    @property
    def best_pet(self) -> Pet | None:
        best: Pet | None = None
        for pet in self.pets:
            if best is None or pet.level > best.level:
                best = pet
        return best

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "pets": [{"id": pet.id, "level": pet.level} for pet in self.pets],
            "battled_opponent": self.battled_opponent,
            "exploring": self.exploring,
            "fights_won": self.fights_won,
        }

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "Habitat":
        return Habitat(
            kind=str(payload.get("kind", "")).strip().lower(),
            pets=[Pet(id=int(item.get("id", 0)), level=int(item.get("level", 0))) for item in payload.get("pets", [])],
            battled_opponent=bool(payload.get("battled_opponent", False)),
            exploring=bool(payload.get("exploring", False)),
            fights_won=max(0, int(payload.get("fights_won", 0))),
        )


@dataclass
class PetsState:
    habitats: list[Habitat] = field(default_factory=list)
    opponent_id: int | None = None
    opponent_habitat: str | None = None
    next_free_battle: datetime | None = None
    next_free_exploration: datetime | None = None

    def habitat(self, kind: str | None) -> Habitat | None:
        for item in self.habitats:
            if item.kind == kind:
                return item
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "habitats": [item.to_dict() for item in self.habitats],
            "opponent_id": self.opponent_id,
            "opponent_habitat": self.opponent_habitat,
            "next_free_battle": format_ts(self.next_free_battle),
            "next_free_exploration": format_ts(self.next_free_exploration),
        }

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "PetsState":
        opponent_id = payload.get("opponent_id")
        opponent_habitat = payload.get("opponent_habitat")
        return PetsState(
            habitats=[Habitat.from_dict(item) for item in payload.get("habitats", [])],
            opponent_id=int(opponent_id) if opponent_id is not None else None,
            opponent_habitat=str(opponent_habitat).strip().lower() if opponent_habitat else None,
            next_free_battle=parse_ts(payload.get("next_free_battle")),
            next_free_exploration=parse_ts(payload.get("next_free_exploration")),
        )


@dataclass
class GuildState:
    can_join_defense: bool = True
    can_join_attack: bool = True
    hydra_remaining_fights: int = 0
    hydra_next_battle: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "can_join_defense": self.can_join_defense,
            "can_join_attack": self.can_join_attack,
            "hydra_remaining_fights": self.hydra_remaining_fights,
            "hydra_next_battle": format_ts(self.hydra_next_battle),
        }

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "GuildState":
        return GuildState(
            can_join_defense=bool(payload.get("can_join_defense", True)),
            can_join_attack=bool(payload.get("can_join_attack", True)),
            hydra_remaining_fights=max(0, int(payload.get("hydra_remaining_fights", 0))),
            hydra_next_battle=parse_ts(payload.get("hydra_next_battle")),
        )


@dataclass
class GameStateSnapshot:
    """Last known game state of one character, mutated in place by the session client."""

    mushrooms: int = 0
    tavern: TavernState = field(default_factory=TavernState)
    dungeons: DungeonState = field(default_factory=DungeonState)
    pets: PetsState | None = None
    guild: GuildState | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "mushrooms": self.mushrooms,
            "tavern": self.tavern.to_dict(),
            "dungeons": self.dungeons.to_dict(),
            "pets": self.pets.to_dict() if self.pets is not None else None,
            "guild": self.guild.to_dict() if self.guild is not None else None,
        }

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "GameStateSnapshot":
        pets = payload.get("pets")
        guild = payload.get("guild")
        return GameStateSnapshot(
            mushrooms=max(0, int(payload.get("mushrooms", 0))),
            tavern=TavernState.from_dict(payload.get("tavern", {}) or {}),
            dungeons=DungeonState.from_dict(payload.get("dungeons", {}) or {}),
            pets=PetsState.from_dict(pets) if isinstance(pets, dict) else None,
            guild=GuildState.from_dict(guild) if isinstance(guild, dict) else None,
        )
