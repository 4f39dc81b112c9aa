from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import os
from pathlib import Path
import tomllib
from typing import Any


class MissionStrategy(str, Enum):
    SHORTEST = "shortest"
    MOST_GOLD = "most_gold"
    BEST_GOLD_PER_MINUTE = "best_gold_per_minute"
    BEST_XP_PER_MINUTE = "best_xp_per_minute"
    SMARTEST = "smartest"

    @staticmethod
    def parse(raw: object, default: "MissionStrategy | None" = None) -> "MissionStrategy":
        token = str(raw or "").strip().lower().replace("-", "_")
        for item in MissionStrategy:
            if item.value == token:
                return item
        return default or MissionStrategy.SMARTEST


REWARD_CATEGORIES = ("mushroom", "gold", "egg")

_REWARD_PRESETS: dict[str, tuple[str, ...]] = {
    "mushrooms_gold_eggs": ("mushroom", "gold", "egg"),
    "gold_mushrooms_eggs": ("gold", "mushroom", "egg"),
    "eggs_mushrooms_gold": ("egg", "mushroom", "gold"),
}


def parse_reward_priority(raw: object) -> tuple[str, ...]:
    """Accept a preset name or an explicit list of reward categories, best first."""
    if isinstance(raw, list):
        out: list[str] = []
        for item in raw:
            token = str(item).strip().lower().rstrip("s")
            if token == "silver":
                token = "gold"
            if token in REWARD_CATEGORIES and token not in out:
                out.append(token)
        for token in REWARD_CATEGORIES:
            if token not in out:
                out.append(token)
        return tuple(out)
    token = str(raw or "").strip().lower().replace("-", "").replace("_", "")
    for key, order in _REWARD_PRESETS.items():
        if key.replace("_", "") == token:
            return order
    return _REWARD_PRESETS["mushrooms_gold_eggs"]


@dataclass(frozen=True)
class CharacterConfig:
    name: str = ""
    server: str = ""
    auto_tavern: bool = False
    auto_expeditions: bool = False
    auto_dungeons: bool = False
    auto_pets: bool = False
    auto_guild: bool = False
    auto_guild_accept_defense: bool = True
    auto_guild_accept_attack: bool = True
    auto_guild_hydra: bool = True
    mission_strategy: MissionStrategy = MissionStrategy.SMARTEST
    use_glasses_for_tavern: bool = False
    use_glasses_for_expeditions: bool = False
    auto_buy_beer_mushrooms: bool = False
    max_mushrooms_beer: int = 0
    max_mushrooms_dungeon_skip: int = 0
    max_mushrooms_pet_skip: int = 0
    expedition_reward_priority: tuple[str, ...] = field(default=_REWARD_PRESETS["mushrooms_gold_eggs"])

    def matches(self, name: str, server: str) -> bool:
        return (
            self.name.strip().lower() == str(name).strip().lower()
            and self.server.strip().lower() == str(server).strip().lower()
        )

    @property
    def account_key(self) -> str:
        return f"{self.name.strip().lower()}@{self.server.strip().lower()}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "server": self.server,
            "auto_tavern": self.auto_tavern,
            "auto_expeditions": self.auto_expeditions,
            "auto_dungeons": self.auto_dungeons,
            "auto_pets": self.auto_pets,
            "auto_guild": self.auto_guild,
            "auto_guild_accept_defense": self.auto_guild_accept_defense,
            "auto_guild_accept_attack": self.auto_guild_accept_attack,
            "auto_guild_hydra": self.auto_guild_hydra,
            "mission_strategy": self.mission_strategy.value,
            "use_glasses_for_tavern": self.use_glasses_for_tavern,
            "use_glasses_for_expeditions": self.use_glasses_for_expeditions,
            "auto_buy_beer_mushrooms": self.auto_buy_beer_mushrooms,
            "max_mushrooms_beer": self.max_mushrooms_beer,
            "max_mushrooms_dungeon_skip": self.max_mushrooms_dungeon_skip,
            "max_mushrooms_pet_skip": self.max_mushrooms_pet_skip,
            "expedition_reward_priority": list(self.expedition_reward_priority),
        }

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "CharacterConfig":
        return CharacterConfig(
            name=str(payload.get("name", "")).strip(),
            server=str(payload.get("server", "")).strip(),
            auto_tavern=bool(payload.get("auto_tavern", False)),
            auto_expeditions=bool(payload.get("auto_expeditions", False)),
            auto_dungeons=bool(payload.get("auto_dungeons", False)),
            auto_pets=bool(payload.get("auto_pets", False)),
            auto_guild=bool(payload.get("auto_guild", False)),
            auto_guild_accept_defense=bool(payload.get("auto_guild_accept_defense", True)),
            auto_guild_accept_attack=bool(payload.get("auto_guild_accept_attack", True)),
            auto_guild_hydra=bool(payload.get("auto_guild_hydra", True)),
            mission_strategy=MissionStrategy.parse(payload.get("mission_strategy")),
            use_glasses_for_tavern=bool(payload.get("use_glasses_for_tavern", False)),
            use_glasses_for_expeditions=bool(payload.get("use_glasses_for_expeditions", False)),
            auto_buy_beer_mushrooms=bool(payload.get("auto_buy_beer_mushrooms", False)),
            max_mushrooms_beer=max(0, int(payload.get("max_mushrooms_beer", 0))),
            max_mushrooms_dungeon_skip=max(0, int(payload.get("max_mushrooms_dungeon_skip", 0))),
            max_mushrooms_pet_skip=max(0, int(payload.get("max_mushrooms_pet_skip", 0))),
            expedition_reward_priority=parse_reward_priority(
                payload.get("expedition_reward_priority", "mushrooms_gold_eggs")
            ),
        )


@dataclass(frozen=True)
class RuntimeConfig:
    state_dir: str
    events_file: str
    status_dir: str
    debug_events: bool


@dataclass(frozen=True)
class SchedulerConfig:
    first_tick_ms: tuple[int, int] = (200, 600)
    not_idle_ms: tuple[int, int] = (1500, 3500)
    due_now_ms: tuple[int, int] = (400, 1200)
    no_timers_ms: tuple[int, int] = (30000, 60000)
    post_wait_jitter_ms: tuple[int, int] = (300, 1200)
    busy_retry_ms: tuple[int, int] = (500, 1500)
    queued_retry_ms: tuple[int, int] = (400, 1200)
    expedition_follow_up_ms: tuple[int, int] = (30, 90)
    max_wait_seconds: float = 120.0


@dataclass(frozen=True)
class SafetyConfig:
    relogin_backoff_seconds: list[int]
    failure_window_minutes: int
    attention_threshold: int
    relogin_grace_seconds: float


@dataclass(frozen=True)
class AppConfig:
    project_root: Path
    runtime: RuntimeConfig
    scheduler: SchedulerConfig
    safety: SafetyConfig
    characters: list[CharacterConfig]

    def resolve(self, rel_or_abs: str) -> Path:
        expanded = os.path.expandvars(str(rel_or_abs))
        path = Path(expanded).expanduser()
        if path.is_absolute():
            return path
        return (self.project_root / path).resolve()

    def character(self, name: str, server: str) -> CharacterConfig | None:
        for item in self.characters:
            if item.matches(name, server):
                return item
        return None


DEFAULT_BACKOFF = [1, 2, 4, 8, 16, 32, 60]


def _int_list(raw: object) -> list[int]:
    if not isinstance(raw, list):
        return list(DEFAULT_BACKOFF)
    out: list[int] = []
    for item in raw:
        try:
            value = int(item)
        except (TypeError, ValueError):
            continue
        if value > 0:
            out.append(value)
    return out or list(DEFAULT_BACKOFF)


def _ms_range(raw: object, default: tuple[int, int]) -> tuple[int, int]:
    if not isinstance(raw, list) or len(raw) != 2:
        return default
    try:
        low, high = int(raw[0]), int(raw[1])
    except (TypeError, ValueError):
        return default
    low = max(0, low)
    return (low, max(low, high))


def _detect_project_root(cfg_path: Path) -> Path:
    direct_parent = cfg_path.parent
    if direct_parent.name == "config":
        return direct_parent.parent.resolve()

    for candidate in [direct_parent, *direct_parent.parents]:
        if (candidate / "src" / "sf_autopilot").exists():
            return candidate.resolve()
    return direct_parent.resolve()


def load_config(path: str | Path) -> AppConfig:
    cfg_path = Path(path).expanduser().resolve()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    with cfg_path.open("rb") as fh:
        payload = tomllib.load(fh)

    runtime = payload.get("runtime", {})
    scheduler = payload.get("scheduler", {})
    safety = payload.get("safety", {})
    characters = payload.get("characters", [])
    if not isinstance(characters, list):
        characters = []

    defaults = SchedulerConfig()

    return AppConfig(
        project_root=_detect_project_root(cfg_path),
        runtime=RuntimeConfig(
            state_dir=str(runtime.get("state_dir", "runtime")),
            events_file=str(runtime.get("events_file", "runtime/events/automation_events.jsonl")),
            status_dir=str(runtime.get("status_dir", "runtime/status")),
            debug_events=bool(runtime.get("debug_events", False)),
        ),
        scheduler=SchedulerConfig(
            first_tick_ms=_ms_range(scheduler.get("first_tick_ms"), defaults.first_tick_ms),
            not_idle_ms=_ms_range(scheduler.get("not_idle_ms"), defaults.not_idle_ms),
            due_now_ms=_ms_range(scheduler.get("due_now_ms"), defaults.due_now_ms),
            no_timers_ms=_ms_range(scheduler.get("no_timers_ms"), defaults.no_timers_ms),
            post_wait_jitter_ms=_ms_range(scheduler.get("post_wait_jitter_ms"), defaults.post_wait_jitter_ms),
            busy_retry_ms=_ms_range(scheduler.get("busy_retry_ms"), defaults.busy_retry_ms),
            queued_retry_ms=_ms_range(scheduler.get("queued_retry_ms"), defaults.queued_retry_ms),
            expedition_follow_up_ms=_ms_range(
                scheduler.get("expedition_follow_up_ms"), defaults.expedition_follow_up_ms
            ),
            max_wait_seconds=max(1.0, float(scheduler.get("max_wait_seconds", defaults.max_wait_seconds))),
        ),
        safety=SafetyConfig(
            relogin_backoff_seconds=_int_list(safety.get("relogin_backoff_seconds", DEFAULT_BACKOFF)),
            failure_window_minutes=max(1, int(safety.get("failure_window_minutes", 30))),
            attention_threshold=max(1, int(safety.get("attention_threshold", 5))),
            relogin_grace_seconds=max(0.0, float(safety.get("relogin_grace_seconds", 10.0))),
        ),
        characters=[CharacterConfig.from_dict(item) for item in characters if isinstance(item, dict)],
    )
