from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
import threading
from typing import Any

from .commands import SPEND_BEER, SPEND_DUNGEON_SKIP, SPEND_PET_SKIP, Command
from .config import CharacterConfig
from .models import GameStateSnapshot, utc_now


def beer_allowance(snapshot: GameStateSnapshot, character: CharacterConfig) -> int:
    """Beers still purchasable today; each beer costs one mushroom so drunk beers are the day's spend."""
    tavern = snapshot.tavern
    ceiling = min(int(tavern.beer_cap), int(character.max_mushrooms_beer))
    return max(0, ceiling - int(tavern.beer_drunk))


def can_buy_beer(snapshot: GameStateSnapshot, character: CharacterConfig) -> bool:
    return (
        character.auto_buy_beer_mushrooms
        and character.max_mushrooms_beer > 0
        and snapshot.mushrooms > 0
        and beer_allowance(snapshot, character) > 0
    )


@dataclass
class SpendLedger:
    """Premium currency spent on cooldown skips, reset at the UTC day boundary.

    The runner writes it into the account status file after every step and the
    service reloads it from there on start, so a restart keeps today's spend.
    """

    day: date = field(default_factory=lambda: utc_now().date())
    spent: dict[str, int] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def _roll(self, now: datetime) -> None:
        today = now.date()
        if today != self.day:
            self.day = today
            self.spent = {}

    def spent_today(self, category: str, now: datetime | None = None) -> int:
        with self._lock:
            self._roll(now or utc_now())
            return int(self.spent.get(category, 0))

    def remaining(self, category: str, character: CharacterConfig, now: datetime | None = None) -> int:
        ceilings = {
            SPEND_DUNGEON_SKIP: character.max_mushrooms_dungeon_skip,
            SPEND_PET_SKIP: character.max_mushrooms_pet_skip,
            SPEND_BEER: character.max_mushrooms_beer,
        }
        ceiling = int(ceilings.get(category, 0))
        return max(0, ceiling - self.spent_today(category, now))

    def record(self, command: Command, now: datetime | None = None) -> str | None:
        category = command.spend_category()
        if category is None or category == SPEND_BEER:
            return None
        with self._lock:
            self._roll(now or utc_now())
            self.spent[category] = int(self.spent.get(category, 0)) + 1
        return category

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {"day": self.day.isoformat(), "spent": dict(self.spent)}

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "SpendLedger":
        try:
            day = date.fromisoformat(str(payload.get("day", "")))
        except ValueError:
            day = utc_now().date()
        raw = payload.get("spent", {})
        spent: dict[str, int] = {}
        if isinstance(raw, dict):
            for key, value in raw.items():
                try:
                    spent[str(key)] = max(0, int(value))
                except (TypeError, ValueError):
                    continue
        return SpendLedger(day=day, spent=spent)
