"""
AI Manager: process-wide owner of agents and team coordinators.

The host drives it through Init/Shutdown, LoadMap, SpawnBot/DespawnBot,
UpdateEntity and Frame. Every entry except ``init`` raises
AINotInitializedError before ``init``; out-of-range ids are logged and
ignored.

Frame order (stable for replay):
1. Team coordination, once per team, in team id order
2. Agent thinks in client id order (perception, threat, combat,
   movement, command)
"""

import logging
import os
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from ..config import Settings, get_settings
from .bot_controller import Agent, ThinkContext
from .character_profiles import Personality, load_character
from .cover_system import CoverManager
from .engine_interface import (
    EntityKind, EntitySnapshot, GameEngine, NavigationService, MAX_CLIENTS, MAX_GENTITIES,
    TEAM_FREE, TEAM_SPECTATOR,
)
from .learning_agent import LearningAgent
from .neural_network import NeuralNetwork
from .skill_adaptation import SkillProfile
from .strategic_planner import FEATURE_SIZE, STRATEGIES, StrategicPlanner
from .team_coordinator import TeamCoordinator

logger = logging.getLogger(__name__)

SEED_STRIDE = 7919


class AINotInitializedError(RuntimeError):
    """A public entry was called before init."""


class AIInitializationError(RuntimeError):
    """init could not build the AI tables."""


class AIManager:
    """Singleton owner of the agent and coordinator tables."""

    _instance = None

    def __init__(self):
        self.initialized = False
        self.engine: Optional[GameEngine] = None
        self.navigation: Optional[NavigationService] = None
        self.settings: Settings = get_settings()
        self.agents: Dict[int, Agent] = {}
        self.coordinators: Dict[int, TeamCoordinator] = {}
        self.entities: Dict[int, EntitySnapshot] = {}
        self.cover = CoverManager()
        self.mesh: Any = None
        self.map_name: Optional[str] = None
        self.level_time_ms = 0
        self.frame_count = 0

    @classmethod
    def get_instance(cls) -> "AIManager":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        if cls._instance is not None and cls._instance.initialized:
            cls._instance.shutdown()
        cls._instance = None

    # Lifecycle

    def init(self, engine: GameEngine, navigation: Optional[NavigationService] = None,
             settings: Optional[Settings] = None) -> None:
        if engine is None:
            raise AIInitializationError("No engine handle")
        settings = settings or get_settings()
        try:
            NeuralNetwork([FEATURE_SIZE, 64, 32, len(STRATEGIES)])
        except (ValueError, MemoryError) as e:
            raise AIInitializationError(f"Neural network unavailable: {e}") from e

        self.engine = engine
        self.navigation = navigation
        self.settings = settings
        self.agents = {}
        self.coordinators = {}
        self.entities = {}
        self.cover = CoverManager()
        self.mesh = None
        self.map_name = None
        self.level_time_ms = 0
        self.frame_count = 0
        self._apply_debug_level()
        self.initialized = True
        logger.info(f"AI initialised (skill={settings.ai_skill}, think={settings.ai_think_time}ms)")

    def shutdown(self) -> None:
        self._require_init()
        if self.settings.ai_learning:
            for agent in self.agents.values():
                self._save_agent(agent)
        if self.navigation is not None and self.mesh is not None:
            self.navigation.free_mesh(self.mesh)
        self.agents.clear()
        self.coordinators.clear()
        self.entities.clear()
        self.cover.clear()
        self.mesh = None
        self.initialized = False
        logger.info("AI shut down")

    def _require_init(self) -> None:
        if not self.initialized:
            raise AINotInitializedError("AI manager is not initialised")

    def _apply_debug_level(self) -> None:
        level = logging.DEBUG if self.settings.ai_debug > 0 else logging.INFO
        logging.getLogger("app.services").setLevel(level)

    # Map

    def load_map(self, map_name: str) -> int:
        """Load the navigation mesh and analyse cover. Returns the number of
        cover points."""
        self._require_init()
        if self.navigation is not None:
            if self.mesh is not None:
                self.navigation.free_mesh(self.mesh)
            self.mesh = self.navigation.load_mesh(map_name)
        count = self.cover.analyze_map(
            self.engine, self.settings.ai_cover_scan_extent, self.settings.ai_cover_grid_spacing
        )
        self.map_name = map_name
        for coordinator in self.coordinators.values():
            self._analyze_regions(coordinator.planner)
        logger.info(f"Loaded map {map_name}: {count} cover points")
        return count

    def _analyze_regions(self, planner: StrategicPlanner) -> None:
        planner.analyze_map(self.engine.world_bounds(), [p.position for p in self.cover.points])

    # Agents

    def _valid_client(self, client_id: int) -> bool:
        if not isinstance(client_id, int) or not 0 <= client_id < MAX_CLIENTS:
            logger.debug(f"Ignoring invalid client id {client_id}")
            return False
        return True

    def _agent_seed(self, client_id: int) -> int:
        return self.settings.ai_random_seed + client_id * SEED_STRIDE

    def _training_path(self, name: str, kind: str) -> str:
        return os.path.join(self.settings.ai_training_dir, f"{name.lower()}_{kind}.json")

    def spawn_bot(self, client_id: int, name: str,
                  personality: Personality = Personality.BALANCED) -> Optional[Agent]:
        """Create the agent for a client slot. Returns None for invalid ids."""
        self._require_init()
        if not self._valid_client(client_id):
            return None
        if client_id in self.agents:
            self.despawn_bot(client_id)

        settings = self.settings
        seed = self._agent_seed(client_id)
        character = load_character(name, settings.ai_skill, settings.ai_character_dir)
        learning = None
        if settings.ai_learning:
            learning = LearningAgent(
                update_frequency=settings.ai_learning_update_frequency, training=True, seed=seed + 3
            )
            path = self._training_path(name, "learning")
            if os.path.isfile(path):
                learning.load(path, training=True)

        agent = Agent(
            client_id, name, character, personality,
            think_period_ms=settings.ai_think_time,
            seed=seed,
            perception_range=settings.ai_perception_range,
            perception_fov=settings.ai_perception_fov,
            peripheral_sensitivity=settings.ai_perception_peripheral_sensitivity,
            memory_decay_rate=settings.ai_memory_decay_rate,
            aggression=settings.ai_combat_aggression,
            prediction=settings.ai_combat_prediction,
            skill_update_interval_ms=settings.ai_skill_update_interval_ms,
            learning=learning,
        )
        skill_path = self._training_path(name, "skill")
        if settings.ai_learning and os.path.isfile(skill_path):
            agent.skill = SkillProfile.load(skill_path, settings.ai_skill_update_interval_ms)
            agent.combat.skill = agent.skill
        self.agents[client_id] = agent
        logger.info(f"Spawned bot {client_id} '{name}' ({agent.personality.value})")
        return agent

    def despawn_bot(self, client_id: int) -> bool:
        self._require_init()
        if not self._valid_client(client_id):
            return False
        agent = self.agents.pop(client_id, None)
        if agent is None:
            return False
        if self.settings.ai_learning:
            self._save_agent(agent)
        for coordinator in self.coordinators.values():
            coordinator.remove_member(client_id)
        self.cover.leave_cover(client_id)
        logger.info(f"Despawned bot {client_id} '{agent.name}'")
        return True

    def _save_agent(self, agent: Agent) -> None:
        if agent.learning is not None:
            agent.learning.save(self._training_path(agent.name, "learning"))
        agent.skill.save(self._training_path(agent.name, "skill"))

    def get_agent(self, client_id: int) -> Optional[Agent]:
        self._require_init()
        return self.agents.get(client_id)

    # Entities

    def update_entity(self, entity_id: int, snapshot: Optional[EntitySnapshot]) -> bool:
        """Record this tick's state for one entity; None removes it."""
        self._require_init()
        if not isinstance(entity_id, int) or not 0 <= entity_id < MAX_GENTITIES:
            logger.debug(f"Ignoring invalid entity id {entity_id}")
            return False
        if snapshot is None:
            self.entities.pop(entity_id, None)
            return True
        if not snapshot.is_valid():
            logger.debug(f"Ignoring malformed entity {entity_id}")
            return False
        self.entities[entity_id] = snapshot
        return True

    def sync_entities(self, snapshots: Iterable[EntitySnapshot]) -> int:
        """Replace the entity table with a full snapshot set."""
        self._require_init()
        self.entities = {}
        count = 0
        for snapshot in snapshots:
            if self.update_entity(snapshot.entity_id, snapshot):
                count += 1
        return count

    # Teams

    def _sync_teams(self) -> None:
        settings = self.settings
        for client_id, agent in sorted(self.agents.items()):
            snapshot = self.entities.get(client_id)
            team = snapshot.team if snapshot is not None else TEAM_FREE
            if team in (TEAM_FREE, TEAM_SPECTATOR):
                continue
            coordinator = self.coordinators.get(team)
            if coordinator is None:
                planner = StrategicPlanner(
                    team,
                    adaptability=settings.ai_strategy_adaptability,
                    lookahead_s=settings.ai_strategy_lookahead,
                    seed=settings.ai_random_seed + team,
                )
                coordinator = TeamCoordinator(team, planner, seed=settings.ai_random_seed + team)
                if self.map_name is not None:
                    self._analyze_regions(planner)
                self.coordinators[team] = coordinator
            for other in self.coordinators.values():
                if other is not coordinator and client_id in other.members:
                    other.remove_member(client_id)
            coordinator.add_member(client_id, agent.role)
        for coordinator in self.coordinators.values():
            coordinator.coordination = settings.ai_team_coordination
            coordinator.communication = settings.ai_team_communication
            coordinator.formations = settings.ai_team_formations

    def _enemies_seen(self, coordinator: TeamCoordinator) -> List[EntitySnapshot]:
        """Latest-seen enemy snapshots across the team's perception."""
        seen: Dict[int, EntitySnapshot] = {}
        for client_id in sorted(coordinator.members):
            agent = self.agents.get(client_id)
            if agent is None:
                continue
            for ent in agent.perception.frame.enemies():
                snapshot = self.entities.get(ent.entity_id)
                if snapshot is not None and snapshot.kind == EntityKind.PLAYER:
                    seen[ent.entity_id] = snapshot
        return [seen[i] for i in sorted(seen)]

    def get_coordinator(self, team_id: int) -> Optional[TeamCoordinator]:
        self._require_init()
        return self.coordinators.get(team_id)

    # Frame

    def frame(self, level_time_ms: int) -> int:
        """Main pump. Returns the number of agents that thought."""
        self._require_init()
        settings = self.settings
        if not settings.ai_enable:
            return 0
        self.level_time_ms = level_time_ms
        self.frame_count += 1

        if settings.ai_teamplay:
            self._sync_teams()
            for team in sorted(self.coordinators):
                coordinator = self.coordinators[team]
                coordinator.update(level_time_ms, self.entities, self._enemies_seen(coordinator))

        thought = 0
        for client_id in sorted(self.agents):
            agent = self.agents[client_id]
            snapshot = self.entities.get(client_id)
            coordinator = None
            if settings.ai_teamplay and snapshot is not None:
                coordinator = self.coordinators.get(snapshot.team)
            ctx = ThinkContext(
                engine=self.engine,
                world=self.entities,
                navigation=self.navigation,
                mesh=self.mesh,
                cover=self.cover,
                coordinator=coordinator,
                teamplay=settings.ai_teamplay,
                advanced_movement=settings.ai_movement_advanced,
                hysteresis=settings.ai_state_hysteresis,
                budget_ms=settings.ai_agent_budget_ms,
                debug=settings.ai_debug,
            )
            if agent.think(ctx, level_time_ms) is not None:
                thought += 1
        return thought

    # Configuration

    def list_cvars(self) -> Dict[str, Any]:
        self._require_init()
        return self.settings.model_dump()

    def set_cvar(self, name: str, value: Any) -> Any:
        """Validate and apply one cvar. Unknown names raise KeyError; bad
        values raise pydantic.ValidationError."""
        self._require_init()
        if name not in Settings.model_fields:
            raise KeyError(name)
        data = self.settings.model_dump()
        data[name] = value
        try:
            settings = Settings(**data)
        except ValidationError:
            logger.debug(f"Rejected cvar {name}={value!r}")
            raise
        self.settings = settings
        self._apply_debug_level()
        if name.startswith("ai_perception") or name in ("ai_memory_decay_rate", "ai_think_time"):
            for agent in self.agents.values():
                agent.think_period_ms = settings.ai_think_time
                agent.perception.configure(
                    settings.ai_perception_range, settings.ai_perception_fov,
                    settings.ai_perception_peripheral_sensitivity, settings.ai_memory_decay_rate,
                    settings.ai_think_time,
                )
        elif name == "ai_combat_aggression":
            for agent in self.agents.values():
                agent.combat.aggression = settings.ai_combat_aggression
        elif name == "ai_combat_prediction":
            for agent in self.agents.values():
                agent.combat.prediction = settings.ai_combat_prediction
        logger.info(f"cvar {name} = {getattr(settings, name)!r}")
        return getattr(settings, name)

    def summary(self) -> Dict:
        self._require_init()
        return {
            "map": self.map_name,
            "level_time_ms": self.level_time_ms,
            "frames": self.frame_count,
            "agents": len(self.agents),
            "teams": sorted(self.coordinators),
            "cover_points": len(self.cover.points),
        }


def get_instance() -> AIManager:
    return AIManager.get_instance()
