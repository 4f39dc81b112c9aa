from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, ClassVar

from .models import QuestingPreference


class TimeSkip(str, Enum):
    MUSHROOM = "mushroom"
    GLASS = "glass"


SPEND_BEER = "beer"
SPEND_DUNGEON_SKIP = "dungeon_skip"
SPEND_PET_SKIP = "pet_skip"


@dataclass(frozen=True)
class Command:
    name: ClassVar[str] = "command"
    primary: ClassVar[bool] = False

    def is_primary(self) -> bool:
        return self.primary

    def spend_category(self) -> str | None:
        """Budget charged with one premium currency unit when this command succeeds."""
        return None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"command": self.name}
        for item in fields(self):
            value = getattr(self, item.name)
            out[item.name] = value.value if isinstance(value, Enum) else value
        return out


@dataclass(frozen=True)
class FinishQuest(Command):
    name: ClassVar[str] = "finish_quest"
    primary: ClassVar[bool] = True
    skip: TimeSkip | None = None


@dataclass(frozen=True)
class StartQuest(Command):
    name: ClassVar[str] = "start_quest"
    primary: ClassVar[bool] = True
    position: int = 0


@dataclass(frozen=True)
class BuyBeer(Command):
    name: ClassVar[str] = "buy_beer"
    primary: ClassVar[bool] = True

    def spend_category(self) -> str | None:
        return SPEND_BEER


@dataclass(frozen=True)
class SetQuestingPreference(Command):
    name: ClassVar[str] = "set_questing_preference"
    primary: ClassVar[bool] = True
    preference: QuestingPreference = QuestingPreference.EXPEDITIONS


@dataclass(frozen=True)
class ExpeditionStart(Command):
    name: ClassVar[str] = "expedition_start"
    primary: ClassVar[bool] = True
    position: int = 0


@dataclass(frozen=True)
class ExpeditionContinue(Command):
    name: ClassVar[str] = "expedition_continue"
    primary: ClassVar[bool] = True


@dataclass(frozen=True)
class ExpeditionPickEncounter(Command):
    name: ClassVar[str] = "expedition_pick_encounter"
    primary: ClassVar[bool] = True
    position: int = 0


@dataclass(frozen=True)
class ExpeditionPickReward(Command):
    name: ClassVar[str] = "expedition_pick_reward"
    primary: ClassVar[bool] = True
    position: int = 0


@dataclass(frozen=True)
class ExpeditionSkipWait(Command):
    name: ClassVar[str] = "expedition_skip_wait"
    primary: ClassVar[bool] = True
    skip: TimeSkip = TimeSkip.GLASS


@dataclass(frozen=True)
class StartWork(Command):
    name: ClassVar[str] = "start_work"
    primary: ClassVar[bool] = True
    hours: int = 1


@dataclass(frozen=True)
class FinishWork(Command):
    name: ClassVar[str] = "finish_work"
    primary: ClassVar[bool] = True


@dataclass(frozen=True)
class FightTower(Command):
    name: ClassVar[str] = "fight_tower"
    current_level: int = 0
    use_mushroom: bool = False

    def spend_category(self) -> str | None:
        return SPEND_DUNGEON_SKIP if self.use_mushroom else None


@dataclass(frozen=True)
class FightDungeon(Command):
    name: ClassVar[str] = "fight_dungeon"
    dungeon: str = ""
    shadow: bool = False
    use_mushroom: bool = False

    def spend_category(self) -> str | None:
        return SPEND_DUNGEON_SKIP if self.use_mushroom else None


@dataclass(frozen=True)
class FightPortal(Command):
    name: ClassVar[str] = "fight_portal"


@dataclass(frozen=True)
class FightPetOpponent(Command):
    name: ClassVar[str] = "fight_pet_opponent"
    habitat: str = ""
    opponent_id: int = 0


@dataclass(frozen=True)
class FightPetDungeon(Command):
    name: ClassVar[str] = "fight_pet_dungeon"
    habitat: str = ""
    enemy_pos: int = 1
    player_pet_id: int = 0
    use_mushroom: bool = False

    def spend_category(self) -> str | None:
        return SPEND_PET_SKIP if self.use_mushroom else None


@dataclass(frozen=True)
class GuildJoinDefense(Command):
    name: ClassVar[str] = "guild_join_defense"


@dataclass(frozen=True)
class GuildJoinAttack(Command):
    name: ClassVar[str] = "guild_join_attack"


@dataclass(frozen=True)
class GuildPetBattle(Command):
    name: ClassVar[str] = "guild_pet_battle"
    use_mushroom: bool = False


@dataclass(frozen=True)
class Update(Command):
    name: ClassVar[str] = "update"
