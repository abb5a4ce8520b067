"""Tests for ai_manager.py and the agent think cycle"""

import math
import pytest
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from pydantic import ValidationError

from app.config import Settings
from app.services.ai_manager import (
    AIManager, AINotInitializedError, AIInitializationError, get_instance,
)
from app.services.arena_world import ArenaWorld
from app.services.bot_controller import AgentState
from app.services.character_profiles import Personality
from app.services.combat_tactics import CombatState
from app.services.engine_interface import EntitySnapshot, EntityKind, TEAM_RED, TEAM_BLUE
from app.services.learning_agent import RewardSignals, shape_reward
from app.services.movement_tactics import DodgeType
from app.services.perception import EYE_HEIGHT
from app.services.team_coordinator import MemberOrders
from app.services.user_command import Button, UserCommand
from app.services.vector_math import distance
from app.services.weapons import Weapon

BOT = 1
ENEMY = 2


@pytest.fixture(autouse=True)
def fresh_singleton():
    AIManager.reset_instance()
    yield
    AIManager.reset_instance()


def _manager(world, tmp_path, **overrides):
    settings = Settings(ai_training_dir=str(tmp_path / "training"), **overrides)
    manager = AIManager()
    manager.init(world, None, settings)
    return manager


def _pump(manager, world, now_ms):
    manager.sync_entities(list(world.entities.values()))
    return manager.frame(now_ms)


def _duel(tmp_path, **overrides):
    world = ArenaWorld()
    world.spawn_player(BOT, (0.0, 0.0, 24.0), team=TEAM_RED)
    world.spawn_player(ENEMY, (400.0, 0.0, 24.0), team=TEAM_BLUE)
    manager = _manager(world, tmp_path, **overrides)
    manager.spawn_bot(BOT, "Grunt")
    return manager, world


class TestLifecycle:
    """Tests for init, shutdown and guards."""

    def test_not_initialized(self):
        """Test every entry but init raises before init."""
        manager = AIManager()
        with pytest.raises(AINotInitializedError):
            manager.frame(0)
        with pytest.raises(AINotInitializedError):
            manager.spawn_bot(BOT, "Grunt")
        with pytest.raises(AINotInitializedError):
            manager.update_entity(BOT, None)
        with pytest.raises(AINotInitializedError):
            manager.shutdown()

    def test_init_requires_engine(self):
        """Test init without an engine fails."""
        with pytest.raises(AIInitializationError):
            AIManager().init(None)

    def test_shutdown_clears_tables(self, tmp_path):
        """Test shutdown drops agents and returns to uninitialised."""
        manager, _ = _duel(tmp_path)
        manager.shutdown()
        assert not manager.initialized
        assert not manager.agents
        with pytest.raises(AINotInitializedError):
            manager.frame(100)

    def test_singleton(self):
        """Test the module accessor returns one shared manager."""
        assert get_instance() is AIManager.get_instance()

    def test_load_map_analyses_cover(self, tmp_path):
        """Test loading a map scans cover and sets up planner regions."""
        world = ArenaWorld.default_arena()
        manager = _manager(world, tmp_path, ai_cover_grid_spacing=32.0, ai_cover_scan_extent=512.0)
        assert manager.load_map("arena") > 0
        assert manager.map_name == "arena"


class TestAgents:
    """Tests for spawning and entity bookkeeping."""

    def test_invalid_client_ids(self, tmp_path):
        """Test out-of-range client ids are ignored."""
        manager = _manager(ArenaWorld(), tmp_path)
        assert manager.spawn_bot(64, "Grunt") is None
        assert manager.spawn_bot(-1, "Grunt") is None
        assert not manager.despawn_bot(99)
        assert not manager.agents

    def test_respawn_replaces(self, tmp_path):
        """Test spawning into an occupied slot replaces the agent."""
        manager = _manager(ArenaWorld(), tmp_path)
        first = manager.spawn_bot(BOT, "Grunt")
        second = manager.spawn_bot(BOT, "Grunt", Personality.SNIPER)
        assert first is not second
        assert len(manager.agents) == 1
        assert manager.get_agent(BOT).personality == Personality.SNIPER

    def test_despawn(self, tmp_path):
        """Test despawning removes the agent."""
        manager, world = _duel(tmp_path)
        _pump(manager, world, 100)
        assert manager.despawn_bot(BOT)
        assert manager.get_agent(BOT) is None
        assert BOT not in manager.get_coordinator(TEAM_RED).members

    def test_update_entity_guards(self, tmp_path):
        """Test invalid and malformed entity records are rejected."""
        manager = _manager(ArenaWorld(), tmp_path)
        good = EntitySnapshot(5, EntityKind.PLAYER, origin=(0.0, 0.0, 24.0))
        bad = EntitySnapshot(6, EntityKind.PLAYER, origin=(math.nan, 0.0, 0.0))
        assert manager.update_entity(5, good)
        assert not manager.update_entity(6, bad)
        assert not manager.update_entity(5000, good)
        assert manager.update_entity(5, None)
        assert 5 not in manager.entities

    def test_agent_seeds(self, tmp_path):
        """Test agent seeds follow the global seed and client id."""
        manager = _manager(ArenaWorld(), tmp_path, ai_random_seed=10)
        assert manager.spawn_bot(3, "Grunt").seed == 10 + 3 * 7919


class TestFrame:
    """Tests for the frame pump and think scenarios."""

    def test_empty_world_idles(self, tmp_path):
        """Test a bot with no snapshot idles and sends a neutral command."""
        world = ArenaWorld()
        manager = _manager(world, tmp_path)
        manager.spawn_bot(BOT, "Grunt")
        assert manager.frame(100) == 1
        assert manager.get_agent(BOT).state == AgentState.IDLE
        assert world.commands[BOT] == UserCommand.neutral(100, 0)

    def test_alone_in_arena(self, tmp_path):
        """Test a bot with nothing around stands still and holds fire."""
        world = ArenaWorld()
        world.spawn_player(BOT, (0.0, 0.0, 24.0), team=TEAM_RED)
        manager = _manager(world, tmp_path)
        manager.spawn_bot(BOT, "Grunt")
        _pump(manager, world, 100)
        command = world.commands[BOT]
        assert manager.get_agent(BOT).state == AgentState.IDLE
        assert command.forward_move == 0 and command.right_move == 0
        assert not command.buttons & Button.ATTACK

    def test_alone_gets_no_team_orders(self, tmp_path):
        """Test a lone team member is never sent anywhere by its coordinator."""
        world = ArenaWorld()
        world.spawn_player(BOT, (0.0, 0.0, 24.0), team=TEAM_RED)
        manager = _manager(world, tmp_path)
        manager.spawn_bot(BOT, "Grunt")
        for now in range(50, 1050, 50):
            _pump(manager, world, now)
            agent = manager.get_agent(BOT)
            assert agent.state == AgentState.IDLE
            assert agent.destination is None
        plan = manager.get_coordinator(TEAM_RED).planner.plan
        assert all(o.target_entity is None for o in plan.objectives)
        command = world.commands[BOT]
        assert command.forward_move == 0 and command.right_move == 0

    def test_think_stagger(self, tmp_path):
        """Test an agent does not think before its staggered start."""
        manager, world = _duel(tmp_path)
        assert _pump(manager, world, 0) == 0
        assert _pump(manager, world, 10) == 1
        assert _pump(manager, world, 20) == 0

    def test_engages_visible_enemy(self, tmp_path):
        """Test a bot engages a visible enemy with an aim inside its spread."""
        manager, world = _duel(tmp_path)
        _pump(manager, world, 100)
        agent = manager.get_agent(BOT)
        decision = agent.combat.decision
        assert decision.state == CombatState.ENGAGING
        assert agent.state == AgentState.COMBAT
        assert decision.desired_weapon in (Weapon.SHOTGUN, Weapon.MACHINEGUN)
        assert distance(decision.aim_position, (400.0, 0.0, 24.0)) <= decision.aim_spread * math.sqrt(3) + 1e-6
        fired = bool(world.commands[BOT].buttons & Button.ATTACK)
        assert fired == decision.fire
        if fired:
            assert decision.confidence > 0.3

    def test_dodges_incoming_missile(self, tmp_path):
        """Test an incoming rocket triggers a lateral dodge."""
        world = ArenaWorld()
        world.spawn_player(BOT, (0.0, 0.0, 24.0), team=TEAM_RED)
        world.spawn_missile(100, (900.0, 0.0, 24.0 + EYE_HEIGHT), (-900.0, 0.0, 0.0))
        manager = _manager(world, tmp_path)
        manager.spawn_bot(BOT, "Grunt")
        _pump(manager, world, 100)
        movement = manager.get_agent(BOT).movement
        assert movement.dodge_in_progress
        assert movement.dodge.dodge_type in (DodgeType.SIDESTEP, DodgeType.DIAGONAL, DodgeType.JUMP)
        assert abs(movement.desired_velocity[1]) >= 150.0

    def test_retreats_to_cover(self, tmp_path):
        """Test a badly hurt bot under fire retreats to a cover point."""
        world = ArenaWorld.default_arena()
        world.spawn_player(BOT, (-300.0, 0.0, 24.0), team=TEAM_RED, health=20)
        world.spawn_player(ENEMY, (300.0, 200.0, 24.0), team=TEAM_BLUE)
        manager = _manager(world, tmp_path, ai_cover_grid_spacing=32.0, ai_cover_scan_extent=512.0)
        manager.load_map("arena")
        manager.spawn_bot(BOT, "Grunt")
        agent = manager.get_agent(BOT)
        for now in (100, 150):
            _pump(manager, world, now)
            if agent.state == AgentState.RETREATING:
                break
        assert agent.state == AgentState.RETREATING
        assert agent.cover_point is not None
        assert agent.destination == agent.cover_point.position
        assert manager.cover.states[BOT].point_id == agent.cover_point.point_id

    def test_deterministic_replay(self, tmp_path):
        """Test equal seeds and inputs produce identical command streams."""
        logs = []
        for run in range(2):
            manager, world = _duel(tmp_path / str(run))
            for _ in range(20):
                now = world.advance(50, apply_commands=True)
                _pump(manager, world, now)
            logs.append(list(world.command_log))
            manager.shutdown()
        assert logs[0] == logs[1]
        assert len(logs[0]) > 0

    def test_budget_overrun_resends_previous(self, tmp_path):
        """Test an exhausted think budget re-sends the previous command."""
        manager, world = _duel(tmp_path, ai_agent_budget_ms=1e-9)
        _pump(manager, world, 100)
        agent = manager.get_agent(BOT)
        assert agent.skipped_thinks == 1
        assert world.commands[BOT] == UserCommand.neutral()

    def test_disabled(self, tmp_path):
        """Test no agent thinks with the AI disabled."""
        manager, world = _duel(tmp_path, ai_enable=False)
        assert _pump(manager, world, 100) == 0

    def test_teams_formed(self, tmp_path):
        """Test a frame builds a coordinator for the bot's team."""
        manager, world = _duel(tmp_path)
        _pump(manager, world, 100)
        coordinator = manager.get_coordinator(TEAM_RED)
        assert coordinator is not None
        assert BOT in coordinator.members
        assert manager.get_coordinator(TEAM_BLUE) is None

    def test_no_teams_without_teamplay(self, tmp_path):
        """Test coordinators are not built with teamplay off."""
        manager, world = _duel(tmp_path, ai_teamplay=False)
        _pump(manager, world, 100)
        assert not manager.coordinators


class TestCvars:
    """Tests for runtime configuration."""

    def test_unknown(self, tmp_path):
        """Test unknown cvars raise KeyError."""
        manager = _manager(ArenaWorld(), tmp_path)
        with pytest.raises(KeyError):
            manager.set_cvar("ai_nonsense", 1)

    def test_out_of_range(self, tmp_path):
        """Test out-of-range values are rejected and not applied."""
        manager = _manager(ArenaWorld(), tmp_path)
        with pytest.raises(ValidationError):
            manager.set_cvar("ai_skill", 9.0)
        assert manager.settings.ai_skill == 3.0

    def test_perception_applied(self, tmp_path):
        """Test perception cvars reach live agents."""
        manager, _ = _duel(tmp_path)
        assert manager.set_cvar("ai_perception_range", 900.0) == 900.0
        assert manager.get_agent(BOT).perception.max_vision_range == 900.0

    def test_aggression_applied(self, tmp_path):
        """Test combat aggression reaches live agents."""
        manager, _ = _duel(tmp_path)
        manager.set_cvar("ai_combat_aggression", 0.9)
        assert manager.get_agent(BOT).combat.aggression == 0.9
        assert manager.list_cvars()["ai_combat_aggression"] == 0.9


class TestPersistence:
    """Tests for learning and skill files."""

    def test_learning_round_trip(self, tmp_path):
        """Test learned state is saved at shutdown and restored on spawn."""
        manager, world = _duel(tmp_path, ai_learning=True)
        _pump(manager, world, 100)
        steps = manager.get_agent(BOT).learning.stats.steps
        assert steps >= 1
        manager.shutdown()
        training = tmp_path / "training"
        assert (training / "grunt_learning.json").is_file()
        assert (training / "grunt_skill.json").is_file()

        manager, _ = _duel(tmp_path, ai_learning=True)
        assert manager.get_agent(BOT).learning.stats.steps == steps


class FakeCoordinator:
    """Hands out fixed orders and remembers resolved objectives."""

    def __init__(self):
        self.orders = None
        self.results = {}
        self.planner = self

    def get_orders(self, client_id):
        return self.orders

    def objective_result(self, objective_id):
        return self.results.get(objective_id)


class TestObjectiveReward:
    """Tests for objective terms in the learning reward."""

    def _agent(self, tmp_path):
        world = ArenaWorld()
        world.spawn_player(BOT, (0.0, 0.0, 24.0), team=TEAM_RED)
        manager = _manager(world, tmp_path, ai_learning=True)
        agent = manager.spawn_bot(BOT, "Grunt")
        frame = agent.perception.update(world, world.entities, 0)
        return agent, frame

    def _reward(self, agent, frame):
        agent.learning.select_action()
        agent._learning_reward(frame, 0)
        return agent.learning.trajectory[-1].reward

    def _orders(self):
        return MemberOrders(None, None, None, objective_position=(1000.0, 0.0, 24.0), objective_id=7)

    def test_progress_raises_reward(self, tmp_path):
        """Test closing distance to the ordered objective is rewarded."""
        agent, frame = self._agent(tmp_path)
        coordinator = FakeCoordinator()
        idle_reward = self._reward(agent, frame)

        agent._track_objective(coordinator, self._orders(), (0.0, 0.0, 24.0))
        assert agent._objective_progress == 0.0
        agent._track_objective(coordinator, self._orders(), (250.0, 0.0, 24.0))
        assert agent._objective_progress == pytest.approx(0.25)

        reward = self._reward(agent, frame)
        assert reward == pytest.approx(shape_reward(RewardSignals(objective_progress=0.25)))
        assert reward > idle_reward
        assert agent._objective_progress == 0.0

    def test_completion_bonus(self, tmp_path):
        """Test a completed objective earns the completion bonus once."""
        agent, frame = self._agent(tmp_path)
        coordinator = FakeCoordinator()
        agent._track_objective(coordinator, self._orders(), (0.0, 0.0, 24.0))
        coordinator.results[7] = True
        agent._track_objective(coordinator, None, (990.0, 0.0, 24.0))
        assert agent._objective_completed

        assert self._reward(agent, frame) == pytest.approx(0.01 + 10.0)
        assert self._reward(agent, frame) == pytest.approx(0.01)

    def test_failed_objective_no_bonus(self, tmp_path):
        """Test a failed objective earns nothing."""
        agent, frame = self._agent(tmp_path)
        coordinator = FakeCoordinator()
        agent._track_objective(coordinator, self._orders(), (0.0, 0.0, 24.0))
        coordinator.results[7] = False
        agent._track_objective(coordinator, None, (0.0, 0.0, 24.0))
        assert not agent._objective_completed
        assert list(agent.skill.metrics["objective_score"].samples) == [0.0]

    def test_objective_outcomes_feed_skill(self, tmp_path):
        """Test resolved objectives land in the skill objective score."""
        agent, frame = self._agent(tmp_path)
        coordinator = FakeCoordinator()
        agent._track_objective(coordinator, self._orders(), (0.0, 0.0, 24.0))
        coordinator.results[7] = True
        agent._track_objective(coordinator, None, (990.0, 0.0, 24.0))
        assert list(agent.skill.metrics["objective_score"].samples) == [1.0]

        # Dropped orders that never resolved are not scored
        agent._track_objective(coordinator, MemberOrders(None, None, None, objective_position=(0.0, 0.0, 24.0),
                                                         objective_id=8), (0.0, 200.0, 24.0))
        agent._track_objective(coordinator, None, (0.0, 200.0, 24.0))
        assert agent.skill.metrics["objective_score"].average == pytest.approx(1.0)
        assert len(agent.skill.metrics["objective_score"].samples) == 1
