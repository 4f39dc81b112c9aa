from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Sequence

from .budget import SpendLedger, can_buy_beer
from .commands import (
    SPEND_DUNGEON_SKIP,
    SPEND_PET_SKIP,
    BuyBeer,
    Command,
    ExpeditionContinue,
    ExpeditionPickEncounter,
    ExpeditionPickReward,
    ExpeditionSkipWait,
    ExpeditionStart,
    FightDungeon,
    FightPetDungeon,
    FightPetOpponent,
    FightPortal,
    FightTower,
    FinishQuest,
    FinishWork,
    GuildJoinAttack,
    GuildJoinDefense,
    GuildPetBattle,
    SetQuestingPreference,
    StartQuest,
    StartWork,
    TimeSkip,
    Update,
)
from .config import CharacterConfig
from .models import (
    ExpeditionStageKind,
    GameStateSnapshot,
    Habitat,
    QuestingPreference,
    TavernActivity,
    is_due,
    remaining_seconds,
)
from .scoring import pick_mission


GLASS_MIN_REMAINING_SECONDS = 60.0
GUARD_FALLBACK_HOURS = 1


@dataclass(frozen=True)
class Decision:
    command: Command
    reason: str
    detail: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"command": self.command.to_dict(), "reason": self.reason, "detail": dict(self.detail)}


@dataclass(frozen=True)
class DecisionContext:
    snapshot: GameStateSnapshot
    character: CharacterConfig
    now: datetime
    ledger: SpendLedger | None = None

    def skip_allowed(self, category: str, ceiling: int) -> bool:
        if ceiling <= 0 or self.snapshot.mushrooms <= 0:
            return False
        if self.ledger is None:
            return True
        return self.ledger.remaining(category, self.character, self.now) > 0


Layer = Callable[[DecisionContext], "Decision | None"]


def _first(ctx: DecisionContext, layers: Sequence[Layer]) -> Decision | None:
    for layer in layers:
        decision = layer(ctx)
        if decision is not None:
            return decision
    return None


# Tavern: actions already running


def quest_in_progress(ctx: DecisionContext) -> Decision | None:
    action = ctx.snapshot.tavern.action
    if action.finished(ctx.now):
        return Decision(FinishQuest(skip=None), "quest_finished")
    left = remaining_seconds(action.busy_until, ctx.now)
    if (
        left > GLASS_MIN_REMAINING_SECONDS
        and ctx.character.use_glasses_for_tavern
        and ctx.snapshot.tavern.quicksand_glasses > 0
    ):
        return Decision(FinishQuest(skip=TimeSkip.GLASS), "quest_skip_glass", {"remaining_seconds": int(left)})
    return None


def reward_category(label: str) -> str | None:
    token = label.lower()
    if "mushroom" in token:
        return "mushroom"
    if "gold" in token or "silver" in token:
        return "gold"
    if "egg" in token:
        return "egg"
    return None


def pick_reward(rewards: Sequence[str], priority: Sequence[str]) -> int | None:
    best: tuple[int, int] | None = None
    for idx, label in enumerate(rewards):
        category = reward_category(label)
        rank = len(priority) - list(priority).index(category) if category in priority else 0
        if best is None or rank > best[1]:
            best = (idx, rank)
    return best[0] if best is not None else None


def expedition_in_progress(ctx: DecisionContext) -> Decision | None:
    stage = ctx.snapshot.tavern.expedition_stage
    if stage is None:
        return None
    if stage.kind == ExpeditionStageKind.BOSS:
        return Decision(ExpeditionContinue(), "expedition_boss")
    if stage.kind == ExpeditionStageKind.REWARDS:
        idx = pick_reward(stage.rewards, ctx.character.expedition_reward_priority)
        if idx is None:
            return None
        return Decision(ExpeditionPickReward(position=idx), "expedition_reward", {"reward": stage.rewards[idx]})
    if stage.kind == ExpeditionStageKind.ENCOUNTERS:
        if not stage.encounters:
            return None
        return Decision(ExpeditionPickEncounter(position=0), "expedition_encounter", {"encounter": stage.encounters[0]})
    if stage.kind == ExpeditionStageKind.WAITING:
        left = remaining_seconds(stage.until, ctx.now)
        if (
            ctx.character.use_glasses_for_expeditions
            and left > GLASS_MIN_REMAINING_SECONDS
            and ctx.snapshot.tavern.quicksand_glasses > 0
        ):
            return Decision(
                ExpeditionSkipWait(skip=TimeSkip.GLASS),
                "expedition_skip_glass",
                {"remaining_seconds": int(left)},
            )
    return None


# Side actions


def dungeons_ready(ctx: DecisionContext) -> bool:
    return is_due(ctx.snapshot.dungeons.next_free_fight, ctx.now)


def decide_dungeons(ctx: DecisionContext) -> Decision | None:
    if not ctx.character.auto_dungeons:
        return None
    state = ctx.snapshot.dungeons
    if state.portal_can_fight:
        return Decision(FightPortal(), "portal_ready")

    use_mushroom = False
    if not dungeons_ready(ctx):
        if not ctx.skip_allowed(SPEND_DUNGEON_SKIP, ctx.character.max_mushrooms_dungeon_skip):
            return None
        use_mushroom = True

    for item in state.dungeons:
        if item.is_tower and item.open:
            return Decision(
                FightTower(current_level=item.finished, use_mushroom=use_mushroom),
                "tower_ready",
                {"finished": item.finished},
            )

    best = None
    for item in state.dungeons:
        if item.is_tower or not item.open:
            continue
        if best is None or item.finished < best.finished:
            best = item
    if best is None:
        return None
    return Decision(
        FightDungeon(dungeon=best.name, shadow=best.shadow, use_mushroom=use_mushroom),
        "dungeon_ready",
        {"finished": best.finished},
    )


def _best_level(habitat: Habitat) -> int:
    pet = habitat.best_pet
    return pet.level if pet is not None else -1


def pvp_target(ctx: DecisionContext) -> Habitat | None:
    pets = ctx.snapshot.pets
    if pets is None or pets.opponent_id is None:
        return None
    declared = pets.habitat(pets.opponent_habitat)
    if declared is not None and not declared.battled_opponent and declared.best_pet is not None:
        return declared
    best: Habitat | None = None
    for item in pets.habitats:
        if item.battled_opponent or item.best_pet is None:
            continue
        if best is None or _best_level(item) > _best_level(best):
            best = item
    return best


def exploration_target(ctx: DecisionContext) -> Habitat | None:
    pets = ctx.snapshot.pets
    if pets is None:
        return None
    best: Habitat | None = None
    for item in pets.habitats:
        if not item.exploring or item.best_pet is None:
            continue
        if best is None or _best_level(item) > _best_level(best):
            best = item
    return best


def decide_pets(ctx: DecisionContext) -> Decision | None:
    pets = ctx.snapshot.pets
    if not ctx.character.auto_pets or pets is None:
        return None

    if is_due(pets.next_free_battle, ctx.now):
        target = pvp_target(ctx)
        if target is not None and pets.opponent_id is not None:
            return Decision(
                FightPetOpponent(habitat=target.kind, opponent_id=pets.opponent_id),
                "pet_pvp_ready",
                {"level": _best_level(target)},
            )

    use_mushroom = False
    if not is_due(pets.next_free_exploration, ctx.now):
        if not ctx.skip_allowed(SPEND_PET_SKIP, ctx.character.max_mushrooms_pet_skip):
            return None
        use_mushroom = True
    target = exploration_target(ctx)
    if target is None or target.best_pet is None:
        return None
    return Decision(
        FightPetDungeon(
            habitat=target.kind,
            enemy_pos=target.fights_won + 1,
            player_pet_id=target.best_pet.id,
            use_mushroom=use_mushroom,
        ),
        "pet_exploration_ready",
        {"level": target.best_pet.level},
    )


def hydra_ready(ctx: DecisionContext) -> bool:
    guild = ctx.snapshot.guild
    if guild is None or guild.hydra_remaining_fights <= 0 or guild.hydra_next_battle is None:
        return False
    return guild.hydra_next_battle <= ctx.now


def decide_guild(ctx: DecisionContext) -> Decision | None:
    guild = ctx.snapshot.guild
    cfg = ctx.character
    if not cfg.auto_guild or guild is None:
        return None
    if cfg.auto_guild_accept_defense and guild.can_join_defense:
        return Decision(GuildJoinDefense(), "guild_defense")
    if cfg.auto_guild_accept_attack and guild.can_join_attack:
        return Decision(GuildJoinAttack(), "guild_attack")
    if cfg.auto_guild_hydra and hydra_ready(ctx):
        return Decision(
            GuildPetBattle(use_mushroom=False),
            "guild_hydra",
            {"remaining_fights": guild.hydra_remaining_fights},
        )
    return None


SIDE_ACTIONS: tuple[Layer, ...] = (decide_dungeons, decide_pets, decide_guild)


def side_actions(ctx: DecisionContext) -> Decision | None:
    return _first(ctx, SIDE_ACTIONS)


# Tavern: starting new work


def _start_expedition(ctx: DecisionContext) -> Decision | None:
    tavern = ctx.snapshot.tavern
    if tavern.thirst_seconds <= 0:
        return None
    if not tavern.expeditions:
        return Decision(ExpeditionStart(position=0), "expedition_start")
    picked = pick_mission(tavern.expeditions, ctx.character.mission_strategy)
    if picked is None:
        return None
    return Decision(ExpeditionStart(position=picked.position), "expedition_start", {"minutes": picked.minutes})


def _start_quest(ctx: DecisionContext) -> Decision | None:
    tavern = ctx.snapshot.tavern
    strategy = ctx.character.mission_strategy
    picked = pick_mission(tavern.quests, strategy)
    if picked is None:
        return None
    thirst = tavern.thirst_seconds
    if picked.duration_seconds <= thirst:
        return Decision(StartQuest(position=picked.position), "quest_start", {"minutes": picked.minutes})
    if can_buy_beer(ctx.snapshot, ctx.character):
        return Decision(BuyBeer(), "beer_for_quest", {"beer_drunk": tavern.beer_drunk, "thirst": thirst})
    fallback = pick_mission([item for item in tavern.quests if item.duration_seconds <= thirst], strategy)
    if fallback is None:
        return None
    return Decision(StartQuest(position=fallback.position), "quest_fits_thirst", {"minutes": fallback.minutes})


def decide_mission_start(ctx: DecisionContext) -> Decision | None:
    tavern = ctx.snapshot.tavern
    cfg = ctx.character
    if cfg.auto_expeditions and tavern.expeditions_available:
        if tavern.questing_preference == QuestingPreference.QUESTS:
            if tavern.can_change_questing_preference:
                return Decision(
                    SetQuestingPreference(preference=QuestingPreference.EXPEDITIONS),
                    "prefer_expeditions",
                )
        else:
            return _start_expedition(ctx)
    if cfg.auto_tavern and tavern.quests:
        return _start_quest(ctx)
    return None


def decide_guard_fallback(ctx: DecisionContext) -> Decision | None:
    cfg = ctx.character
    if not (cfg.auto_tavern or cfg.auto_expeditions):
        return None
    if ctx.snapshot.tavern.thirst_seconds > 0 or can_buy_beer(ctx.snapshot, cfg):
        return None
    return Decision(StartWork(hours=GUARD_FALLBACK_HOURS), "guard_duty_fallback")


IDLE_LAYERS: tuple[Layer, ...] = (
    decide_dungeons,
    decide_pets,
    decide_mission_start,
    decide_guard_fallback,
    decide_guild,
)


def summary(ctx: DecisionContext) -> dict[str, Any]:
    snapshot = ctx.snapshot
    pets = snapshot.pets
    return {
        "portal": snapshot.dungeons.portal_can_fight,
        "dungeon_ready": dungeons_ready(ctx),
        "open_dungeons": sum(1 for item in snapshot.dungeons.dungeons if item.open),
        "pets_pvp": pets is not None and is_due(pets.next_free_battle, ctx.now),
        "pets_explore": pets is not None and is_due(pets.next_free_exploration, ctx.now),
        "hydra": hydra_ready(ctx),
        "thirst": snapshot.tavern.thirst_seconds,
    }


def decide(
    snapshot: GameStateSnapshot,
    character: CharacterConfig,
    now: datetime,
    ledger: SpendLedger | None = None,
) -> Decision:
    """Pick the single next command; ``Update`` when nothing is actionable."""
    ctx = DecisionContext(snapshot=snapshot, character=character, now=now, ledger=ledger)
    action = snapshot.tavern.action

    if action.kind == TavernActivity.CITY_GUARD:
        if action.finished(now):
            return Decision(FinishWork(), "guard_duty_finished")
        decision = side_actions(ctx)
        if decision is not None:
            return decision
        return Decision(Update(), "guard_duty_running", summary(ctx))

    if action.kind == TavernActivity.QUEST:
        decision = _first(ctx, (quest_in_progress, *SIDE_ACTIONS))
    elif action.kind == TavernActivity.EXPEDITION:
        decision = _first(ctx, (expedition_in_progress, *SIDE_ACTIONS))
    else:
        decision = _first(ctx, IDLE_LAYERS)

    if decision is not None:
        return decision
    return Decision(Update(), "no_action", summary(ctx))
