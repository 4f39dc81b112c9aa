from __future__ import annotations

from datetime import datetime, timedelta, timezone
import random
import unittest
from typing import Any, Callable

from sf_autopilot.automation import AccountAutomation
from sf_autopilot.commands import (
    Command,
    ExpeditionContinue,
    FightDungeon,
    FightPortal,
    FinishQuest,
    StartQuest,
    Update,
)
from sf_autopilot.config import CharacterConfig, SafetyConfig, SchedulerConfig
from sf_autopilot.events import EventLog
from sf_autopilot.models import (
    CurrentAction,
    DungeonProgress,
    DungeonState,
    ExpeditionStage,
    ExpeditionStageKind,
    GameStateSnapshot,
    Mission,
    TavernActivity,
    TavernState,
)
from sf_autopilot.session import FatalSessionError, LoginResult, SessionState


NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)

SCHEDULER = SchedulerConfig(
    first_tick_ms=(400, 400),
    not_idle_ms=(2000, 2000),
    due_now_ms=(500, 500),
    no_timers_ms=(45000, 45000),
    post_wait_jitter_ms=(100, 100),
    busy_retry_ms=(1000, 1000),
    queued_retry_ms=(800, 800),
    expedition_follow_up_ms=(50, 50),
    max_wait_seconds=120.0,
)
SAFETY = SafetyConfig(
    relogin_backoff_seconds=[1, 2, 4],
    failure_window_minutes=30,
    attention_threshold=3,
    relogin_grace_seconds=10.0,
)


class Handle:
    pass


class FakeClient:
    def __init__(self, snapshot_factory: Callable[[], GameStateSnapshot]) -> None:
        self.snapshot_factory = snapshot_factory
        self.sent: list[Command] = []
        self.logins = 0
        self.login_errors: list[Exception] = []
        self.send_error: Exception | None = None
        self.apply_error: Exception | None = None
        self.on_apply: Callable[[GameStateSnapshot, Command], None] | None = None

    def login(self) -> LoginResult:
        self.logins += 1
        if self.login_errors:
            raise self.login_errors.pop(0)
        return LoginResult(handle=Handle(), snapshot=self.snapshot_factory())

    def send(self, handle: Any, command: Command) -> Any:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(command)
        return command

    def apply(self, snapshot: GameStateSnapshot, response: Any) -> None:
        if self.apply_error is not None:
            raise self.apply_error
        if self.on_apply is not None:
            self.on_apply(snapshot, response)


def _portal_snapshot() -> GameStateSnapshot:
    return GameStateSnapshot(dungeons=DungeonState(portal_can_fight=True))


class AccountAutomationTests(unittest.TestCase):
    def _build(
        self,
        snapshot_factory: Callable[[], GameStateSnapshot] = GameStateSnapshot,
        character: CharacterConfig | None = None,
    ) -> tuple[AccountAutomation, FakeClient]:
        client = FakeClient(snapshot_factory)
        self.events = EventLog(None, debug=True)
        automation = AccountAutomation(
            character or CharacterConfig(name="Hero", server="s1", auto_dungeons=True),
            client,
            scheduler_cfg=SCHEDULER,
            safety_cfg=SAFETY,
            events=self.events,
            rng=random.Random(2),
            clock=lambda: NOW,
        )
        return automation, client

    def _event_types(self) -> list[str]:
        return [row["event_type"] for row in self.events.rows]

    def test_login_then_tick_sends_and_returns_handle(self) -> None:
        automation, client = self._build(_portal_snapshot)
        first = automation.relogin()
        self.assertEqual(first.reason, "logged_in")
        self.assertAlmostEqual(first.delay_seconds, 0.4)
        self.assertTrue(automation.session.is_idle())

        def consume_portal(snapshot: GameStateSnapshot, response: Any) -> None:
            snapshot.dungeons.portal_can_fight = False

        client.on_apply = consume_portal
        tick = automation.run_tick()
        self.assertEqual(tick.dispatch.command, FightPortal())
        self.assertEqual(automation.session.state, SessionState.BUSY)

        after = automation.execute(tick.dispatch)
        self.assertIsNone(after.dispatch)
        self.assertEqual(client.sent, [FightPortal()])
        self.assertTrue(automation.session.is_idle())
        self.assertEqual(after.reason, "no_timers")
        self.assertIn("sent", self._event_types())

    def test_busy_handle_queues_side_actions_but_one_primary(self) -> None:
        def factory() -> GameStateSnapshot:
            return GameStateSnapshot(dungeons=DungeonState(dungeons=[DungeonProgress(name="light_1")]))

        automation, _ = self._build(factory)
        automation.relogin()
        self.assertIsNotNone(automation.session.take("external"))

        for _ in range(2):
            result = automation.run_tick()
            self.assertIsNone(result.dispatch)
            self.assertEqual(result.reason, "queued")
        self.assertEqual(len(automation.queue), 2)

        automation.update_character(CharacterConfig(name="Hero", server="s1", auto_tavern=True))
        snapshot = automation.session.snapshot()
        snapshot.tavern = TavernState(thirst_seconds=600, quests=[Mission(position=0, duration_seconds=60)])
        self.assertEqual(automation.run_tick().reason, "queued")
        self.assertEqual(automation.run_tick().reason, "queue_skipped")
        self.assertEqual(len(automation.queue), 3)
        primaries = [item for item in automation.queue.to_list() if item["command"] == "start_quest"]
        self.assertEqual(len(primaries), 1)

    def test_busy_update_is_not_queued(self) -> None:
        automation, _ = self._build(character=CharacterConfig(name="Hero", server="s1"))
        automation.relogin()
        automation.session.take("external")
        result = automation.run_tick()
        self.assertEqual(automation.last_decision.command, Update())
        self.assertEqual(result.reason, "busy_skip_update")
        self.assertEqual(len(automation.queue), 0)

    def test_queue_head_is_sent_before_next_decision(self) -> None:
        automation, client = self._build(_portal_snapshot)
        automation.relogin()
        outstanding = automation.run_tick().dispatch
        automation.run_tick()
        self.assertEqual(len(automation.queue), 1)

        follow = automation.complete_send(outstanding, response=outstanding.command)
        self.assertIsNotNone(follow.dispatch)
        self.assertTrue(follow.dispatch.from_queue)
        self.assertEqual(follow.dispatch.command, FightPortal())
        self.assertEqual(len(automation.queue), 0)
        self.assertEqual(automation.session.state, SessionState.BUSY)

    def test_send_failure_reauthenticates(self) -> None:
        automation, client = self._build(_portal_snapshot)
        automation.relogin()
        dispatch = automation.run_tick().dispatch
        automation.queue.offer(FightDungeon(dungeon="light_1"))
        client.send_error = ConnectionError("reset by peer")

        result = automation.execute(dispatch)
        self.assertEqual(result.reason, "reauthenticate")
        self.assertEqual(automation.session.state, SessionState.REAUTHENTICATING)
        self.assertEqual(len(automation.queue), 0)
        self.assertTrue(automation.needs_login())
        self.assertIn("SendFailed", automation.last_error)

        relogged = automation.relogin()
        self.assertEqual(relogged.reason, "post_relogin_grace")
        self.assertAlmostEqual(relogged.delay_seconds, 10.0)
        self.assertEqual(automation.session.status_label(), "busy:post-relogin")
        self.assertTrue(automation.in_grace())

        finished = automation.finish_relogin()
        self.assertTrue(automation.session.is_idle())
        self.assertFalse(automation.in_grace())
        self.assertIsNone(finished.dispatch)

    def test_apply_failure_reauthenticates(self) -> None:
        automation, client = self._build(_portal_snapshot)
        automation.relogin()
        dispatch = automation.run_tick().dispatch
        client.apply_error = ValueError("bad payload")
        result = automation.execute(dispatch)
        self.assertEqual(result.reason, "reauthenticate")
        self.assertIn("SnapshotApplyFailed", automation.last_error)

    def test_relogin_backoff_and_attention(self) -> None:
        automation, client = self._build()
        client.login_errors = [TimeoutError("t1"), TimeoutError("t2"), TimeoutError("t3"), TimeoutError("t4")]
        delays = [automation.relogin(attempt).delay_seconds for attempt in range(4)]
        self.assertEqual(delays, [1.0, 2.0, 4.0, 4.0])
        self.assertTrue(automation.safety.needs_attention(NOW))
        self.assertIn("needs_attention", self._event_types())
        self.assertEqual(automation.last_error, "ReauthenticationFailed:t4")
        self.assertEqual(automation.session.state, SessionState.AUTHENTICATING)
        self.assertEqual(automation.relogin().reason, "logged_in")

    def test_fatal_login_stops(self) -> None:
        automation, client = self._build()
        client.login_errors = [FatalSessionError("wrong password")]
        result = automation.relogin()
        self.assertTrue(result.stopped)
        self.assertEqual(automation.session.state, SessionState.FATAL)
        self.assertTrue(automation.run_tick().stopped)
        self.assertIsNone(automation.wake_plan().delay_seconds)

    def test_expedition_needing_input_follows_up_quickly(self) -> None:
        def factory() -> GameStateSnapshot:
            return GameStateSnapshot(
                tavern=TavernState(
                    action=CurrentAction(kind=TavernActivity.EXPEDITION),
                    expedition_stage=ExpeditionStage(kind=ExpeditionStageKind.BOSS),
                )
            )

        def next_stage(snapshot: GameStateSnapshot, response: Any) -> None:
            snapshot.tavern.expedition_stage = ExpeditionStage(kind=ExpeditionStageKind.ENCOUNTERS, encounters=["a"])

        automation, client = self._build(factory, CharacterConfig(name="Hero", server="s1", auto_expeditions=True))
        client.on_apply = next_stage
        automation.relogin()
        dispatch = automation.run_tick().dispatch
        self.assertEqual(dispatch.command, ExpeditionContinue())
        result = automation.execute(dispatch)
        self.assertEqual(result.reason, "expedition_follow_up")
        self.assertAlmostEqual(result.delay_seconds, 0.05)

    def test_expedition_with_empty_rewards_backs_off(self) -> None:
        def factory() -> GameStateSnapshot:
            return GameStateSnapshot(
                tavern=TavernState(
                    action=CurrentAction(kind=TavernActivity.EXPEDITION),
                    expedition_stage=ExpeditionStage(kind=ExpeditionStageKind.REWARDS, rewards=[]),
                )
            )

        automation, client = self._build(factory, CharacterConfig(name="Hero", server="s1", auto_expeditions=True))
        automation.relogin()
        for _ in range(3):
            tick = automation.run_tick()
            self.assertEqual(tick.dispatch.command, Update())
            result = automation.execute(tick.dispatch)
            self.assertEqual(result.reason, "no_timers")
            self.assertAlmostEqual(result.delay_seconds, 45.1)
        self.assertEqual(client.sent, [Update(), Update(), Update()])

    def test_dungeon_skip_spend_is_recorded(self) -> None:
        def factory() -> GameStateSnapshot:
            return GameStateSnapshot(
                mushrooms=10,
                dungeons=DungeonState(
                    dungeons=[DungeonProgress(name="light_1")],
                    next_free_fight=NOW + timedelta(hours=1),
                ),
            )

        character = CharacterConfig(name="Hero", server="s1", auto_dungeons=True, max_mushrooms_dungeon_skip=1)
        automation, client = self._build(factory, character)
        automation.relogin()
        dispatch = automation.run_tick().dispatch
        self.assertTrue(dispatch.command.use_mushroom)
        automation.execute(dispatch)
        self.assertEqual(automation.ledger.spent_today("dungeon_skip", NOW), 1)
        self.assertEqual(automation.run_tick().dispatch.command, Update())

    def test_status_payload(self) -> None:
        def factory() -> GameStateSnapshot:
            return GameStateSnapshot(
                tavern=TavernState(action=CurrentAction(kind=TavernActivity.QUEST, busy_until=NOW - timedelta(seconds=1)))
            )

        automation, client = self._build(factory, CharacterConfig(name="Hero", server="S1"))
        automation.relogin()
        dispatch = automation.run_tick().dispatch
        self.assertEqual(dispatch.command, FinishQuest(skip=None))
        automation.execute(dispatch)
        status = automation.status()
        self.assertEqual(status["account"], "hero@s1")
        self.assertEqual(status["state"], "idle")
        self.assertEqual(status["last_sent"]["command"], "finish_quest")
        self.assertFalse(status["needs_attention"])

    def test_start_quest_decision_on_idle(self) -> None:
        def factory() -> GameStateSnapshot:
            return GameStateSnapshot(
                tavern=TavernState(thirst_seconds=600, quests=[Mission(position=2, duration_seconds=120)])
            )

        automation, _ = self._build(factory, CharacterConfig(name="Hero", server="s1", auto_tavern=True))
        automation.relogin()
        self.assertEqual(automation.run_tick().dispatch.command, StartQuest(position=2))


if __name__ == "__main__":
    unittest.main()
