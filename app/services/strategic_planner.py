"""
Strategic Planner: team-level situation assessment and goal planning.

=== SITUATION ===

strength  = sum over alive units of (hp + armor/2)*0.01 + weapon_dps*0.001
            + 10 per alive unit
position  = (controlled regions + 0.5*contested) / regions   (4x4 map grid)
momentum  = 0.1*(d_team - d_enemy) + 0.05*d_score, clamped to [-1, 1]

winning   = ratio > 1.3 and momentum > 0.2
losing    = ratio < 0.7 and momentum < -0.2
stalemate = otherwise

=== STRATEGY ===

A small MLP (32-64-32-8, softmax) scores the eight strategies from the
situation features plus per-strategy effectiveness memory. Overrides:
- losing with momentum < -0.5: Aggressive or Guerrilla, coin flip
- winning with under 60 s left: Defensive

=== PLAN ===

Each strategy expands into goals, each goal into 1-4 objectives with
deadlines, member requirements and rewards. Attack objectives only target
known enemies, so a team that has seen nobody gets no attack orders. A
plan is rebuilt when any re-plan trigger fires (see needs_replanning).
"""

import logging
import math
import random
from collections import deque
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Deque, Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np

from .engine_interface import EntitySnapshot
from .neural_network import NeuralNetwork
from .vector_math import Vec3, ORIGIN, distance, distance_2d, average, clamp
from .weapons import WeaponDatabase

logger = logging.getLogger(__name__)

MAX_STRATEGIC_GOALS = 8
MAX_TACTICAL_OBJECTIVES = 32
PLAN_MAX_AGE_MS = 30000
MIN_EVALUATION_AGE_MS = 5000
LOW_EFFECTIVENESS = 0.3
FAILED_RATIO_LIMIT = 0.5
SUPPORT_DURATION_MS = 10000
RESOLVED_HISTORY = 64
REGION_GRID = 4
FEATURE_SIZE = 32
SITUATION_FEATURES = FEATURE_SIZE - 8
OUTCOME_HISTORY = 50


class StrategyType(Enum):
    AGGRESSIVE = "aggressive"
    DEFENSIVE = "defensive"
    BALANCED = "balanced"
    CONTROL = "control"
    GUERRILLA = "guerrilla"
    SUPPORT = "support"
    OBJECTIVE_FOCUSED = "objective_focused"
    ELIMINATION = "elimination"


STRATEGIES: List[StrategyType] = list(StrategyType)


class GoalType(Enum):
    ELIMINATE = "eliminate"
    CAPTURE = "capture"
    DEFEND = "defend"
    CONTROL = "control"
    COLLECT = "collect"
    ESCORT = "escort"
    SURVIVE = "survive"
    DOMINATE = "dominate"


class GoalPriority(IntEnum):
    CRITICAL = 0
    HIGH = 1
    MEDIUM = 2
    LOW = 3
    OPTIONAL = 4


class ObjectiveType(Enum):
    ATTACK = "attack"
    DEFEND = "defend"
    CAPTURE = "capture"
    SUPPORT = "support"
    MOVE = "move"
    PATROL = "patrol"
    SCOUT = "scout"
    COLLECT = "collect"


# (priority, value, cost, success probability)
GOAL_BASE: Dict[GoalType, Tuple[GoalPriority, float, float, float]] = {
    GoalType.ELIMINATE: (GoalPriority.HIGH, 100.0, 50.0, 0.7),
    GoalType.CAPTURE: (GoalPriority.CRITICAL, 150.0, 70.0, 0.6),
    GoalType.DEFEND: (GoalPriority.HIGH, 80.0, 40.0, 0.8),
    GoalType.CONTROL: (GoalPriority.MEDIUM, 120.0, 60.0, 0.65),
    GoalType.COLLECT: (GoalPriority.MEDIUM, 60.0, 30.0, 0.85),
    GoalType.SURVIVE: (GoalPriority.HIGH, 70.0, 20.0, 0.75),
    GoalType.DOMINATE: (GoalPriority.LOW, 200.0, 100.0, 0.4),
}
DEFAULT_GOAL_BASE = (GoalPriority.MEDIUM, 80.0, 40.0, 0.6)

STRATEGY_GOALS: Dict[StrategyType, List[GoalType]] = {
    StrategyType.AGGRESSIVE: [GoalType.ELIMINATE, GoalType.DOMINATE],
    StrategyType.DEFENSIVE: [GoalType.DEFEND, GoalType.SURVIVE],
    StrategyType.CONTROL: [GoalType.CONTROL, GoalType.COLLECT],
    StrategyType.OBJECTIVE_FOCUSED: [GoalType.CAPTURE],
    StrategyType.GUERRILLA: [GoalType.ELIMINATE, GoalType.SURVIVE],
    StrategyType.BALANCED: [GoalType.ELIMINATE, GoalType.DEFEND],
}
DEFAULT_STRATEGY_GOALS = [GoalType.ELIMINATE]

# (count, required agents, time limit s, reward, penalty)
OBJECTIVE_TEMPLATES: Dict[GoalType, Tuple[int, int, float, float, float]] = {
    GoalType.ELIMINATE: (3, 2, 30.0, 50.0, 10.0),
    GoalType.CAPTURE: (1, 3, 60.0, 100.0, 50.0),
    GoalType.DEFEND: (2, 2, 120.0, 30.0, 40.0),
    GoalType.CONTROL: (4, 1, 90.0, 40.0, 20.0),
}
DEFAULT_OBJECTIVE_TEMPLATE = (1, 1, 60.0, 20.0, 10.0)

GOAL_OBJECTIVE_TYPE: Dict[GoalType, ObjectiveType] = {
    GoalType.ELIMINATE: ObjectiveType.ATTACK,
    GoalType.CAPTURE: ObjectiveType.CAPTURE,
    GoalType.DEFEND: ObjectiveType.DEFEND,
    GoalType.CONTROL: ObjectiveType.PATROL,
    GoalType.COLLECT: ObjectiveType.COLLECT,
    GoalType.ESCORT: ObjectiveType.SUPPORT,
    GoalType.SURVIVE: ObjectiveType.SUPPORT,
    GoalType.DOMINATE: ObjectiveType.ATTACK,
}

OBJECTIVE_RADIUS: Dict[ObjectiveType, float] = {
    ObjectiveType.DEFEND: 400.0,
    ObjectiveType.CAPTURE: 200.0,
    ObjectiveType.PATROL: 300.0,
}
DEFAULT_OBJECTIVE_RADIUS = 150.0


@dataclass
class StrategyWeights:
    aggression: float = 0.5
    defense: float = 0.5
    objective: float = 0.7
    resources: float = 0.6
    coordination: float = 0.7
    risk: float = 0.5
    adaptability: float = 0.7

    def to_dict(self) -> Dict[str, float]:
        return {
            "aggression": self.aggression, "defense": self.defense, "objective": self.objective,
            "resources": self.resources, "coordination": self.coordination, "risk": self.risk,
            "adaptability": self.adaptability,
        }


STRATEGY_WEIGHTS: Dict[StrategyType, Tuple[float, float, float, float, float, float]] = {
    StrategyType.AGGRESSIVE: (0.9, 0.2, 0.5, 0.4, 0.6, 0.8),
    StrategyType.DEFENSIVE: (0.2, 0.9, 0.6, 0.7, 0.8, 0.3),
    StrategyType.CONTROL: (0.4, 0.6, 0.5, 0.9, 0.7, 0.5),
    StrategyType.GUERRILLA: (0.7, 0.3, 0.4, 0.5, 0.4, 0.7),
    StrategyType.OBJECTIVE_FOCUSED: (0.5, 0.5, 1.0, 0.6, 0.9, 0.6),
}
DEFAULT_STRATEGY_WEIGHTS = (0.5, 0.5, 0.7, 0.6, 0.7, 0.5)


def strategy_weights(strategy: StrategyType, adaptability: float) -> StrategyWeights:
    values = STRATEGY_WEIGHTS.get(strategy, DEFAULT_STRATEGY_WEIGHTS)
    return StrategyWeights(*values, adaptability=adaptability)


@dataclass
class MapRegion:
    region_id: int
    mins: Vec3
    maxs: Vec3
    strategic_value: float = 0.0
    control_strength: float = 0.5
    friendly_presence: int = 0
    enemy_presence: int = 0
    contested: bool = False
    controlled: bool = False

    @property
    def center(self) -> Vec3:
        return (
            (self.mins[0] + self.maxs[0]) / 2.0,
            (self.mins[1] + self.maxs[1]) / 2.0,
            max(self.mins[2], 0.0) + 24.0,
        )

    def contains(self, point: Vec3) -> bool:
        return self.mins[0] <= point[0] < self.maxs[0] and self.mins[1] <= point[1] < self.maxs[1]


@dataclass
class SituationAssessment:
    team_strength: float = 0.0
    enemy_strength: float = 0.0
    positional_advantage: float = 0.5
    resource_advantage: float = 0.5
    momentum: float = 0.0
    team_alive: int = 0
    enemy_alive: int = 0
    team_score: int = 0
    enemy_score: int = 0
    time_remaining_s: float = math.inf
    timestamp: int = 0

    @property
    def strength_ratio(self) -> float:
        if self.enemy_strength <= 0:
            return 2.0 if self.team_strength > 0 else 1.0
        return self.team_strength / self.enemy_strength

    @property
    def winning(self) -> bool:
        return self.strength_ratio > 1.3 and self.momentum > 0.2

    @property
    def losing(self) -> bool:
        return self.strength_ratio < 0.7 and self.momentum < -0.2

    @property
    def stalemate(self) -> bool:
        return not self.winning and not self.losing

    def to_dict(self) -> Dict:
        return {
            "team_strength": round(self.team_strength, 3),
            "enemy_strength": round(self.enemy_strength, 3),
            "strength_ratio": round(self.strength_ratio, 3),
            "positional_advantage": round(self.positional_advantage, 3),
            "momentum": round(self.momentum, 3),
            "winning": self.winning,
            "losing": self.losing,
        }


@dataclass
class StrategicObjective:
    objective_id: int
    objective_type: ObjectiveType
    goal_id: int
    position: Vec3
    radius: float
    required_agents: int
    priority: GoalPriority
    deadline_ms: int
    reward: float
    penalty: float
    created_ms: int
    target_entity: Optional[int] = None
    assigned_agents: List[int] = field(default_factory=list)
    active: bool = True
    completed: bool = False
    failed: bool = False

    def complete(self) -> None:
        self.completed, self.active = True, False

    def fail(self) -> None:
        self.failed, self.active = True, False


@dataclass
class StrategicGoal:
    goal_id: int
    goal_type: GoalType
    priority: GoalPriority
    value: float
    cost: float
    success_probability: float
    objective_ids: List[int] = field(default_factory=list)
    completed: bool = False
    failed: bool = False

    @property
    def utility(self) -> float:
        return (self.value / max(self.cost, 1e-6)) * self.success_probability * (5 - int(self.priority))


@dataclass
class StrategicPlan:
    plan_id: int
    strategy: StrategyType
    weights: StrategyWeights
    created_ms: int
    goals: List[StrategicGoal] = field(default_factory=list)
    objectives: List[StrategicObjective] = field(default_factory=list)
    execution_time_ms: int = 0
    completed_objectives: int = 0
    failed_objectives: int = 0
    effectiveness: float = 0.5
    confidence: float = 0.5
    active: bool = True

    @property
    def num_objectives(self) -> int:
        return len(self.objectives)

    def active_objectives(self) -> List[StrategicObjective]:
        return [o for o in self.objectives if o.active]

    def get_objective(self, objective_id: int) -> Optional[StrategicObjective]:
        for objective in self.objectives:
            if objective.objective_id == objective_id:
                return objective
        return None

    @property
    def failed_ratio(self) -> float:
        if not self.objectives:
            return 0.0
        return self.failed_objectives / len(self.objectives)

    def to_dict(self) -> Dict:
        return {
            "plan_id": self.plan_id,
            "strategy": self.strategy.value,
            "confidence": round(self.confidence, 3),
            "effectiveness": round(self.effectiveness, 3),
            "age_ms": self.execution_time_ms,
            "completed": self.completed_objectives,
            "failed": self.failed_objectives,
            "goals": [g.goal_type.value for g in self.goals],
            "objectives": [
                {"id": o.objective_id, "type": o.objective_type.value, "position": list(o.position),
                 "active": o.active, "completed": o.completed, "failed": o.failed}
                for o in self.objectives
            ],
        }


@dataclass
class StrategyRecord:
    successes: int = 0
    failures: int = 0
    uses: int = 0
    effectiveness: float = 0.5


@dataclass
class StrategicMemory:
    records: Dict[StrategyType, StrategyRecord] = field(
        default_factory=lambda: {s: StrategyRecord() for s in STRATEGIES}
    )
    outcomes: Deque[Tuple[StrategyType, float]] = field(default_factory=lambda: deque(maxlen=OUTCOME_HISTORY))

    def effectiveness_vector(self) -> List[float]:
        return [self.records[s].effectiveness for s in STRATEGIES]

    def success_boost(self, strategy: StrategyType) -> float:
        record = self.records[strategy]
        if record.successes > record.failures:
            return 1.2
        if record.failures > 2 * record.successes:
            return 0.5
        return 1.0


def unit_strength(units: Iterable[EntitySnapshot]) -> Tuple[float, int]:
    """Team strength and alive count."""
    strength = 0.0
    alive = 0
    for unit in units:
        if unit is None or not unit.alive:
            continue
        alive += 1
        strength += (unit.health + unit.armor / 2.0) * 0.01
        strength += WeaponDatabase.dps(unit.weapon) * 0.001
    return strength + alive * 10.0, alive


class StrategicPlanner:
    """Team-level planner. Owned by a TeamCoordinator."""

    def __init__(self, team_id: int, adaptability: float = 0.7, lookahead_s: float = 10.0, seed: int = 0):
        self.team_id = team_id
        self.adaptability = adaptability
        self.lookahead_s = lookahead_s
        self.rng = random.Random(seed)
        self.network = NeuralNetwork([FEATURE_SIZE, 64, 32, len(STRATEGIES)], learning_rate=0.01,
                                     rng=np.random.default_rng(seed))

        self.situation: Optional[SituationAssessment] = None
        self.plan: Optional[StrategicPlan] = None
        self.memory = StrategicMemory()
        self.regions: List[MapRegion] = []
        self.plans_created = 0

        self._next_objective_id = 0
        self._team: List[EntitySnapshot] = []
        self._enemies: List[EntitySnapshot] = []
        self._previous: Optional[SituationAssessment] = None
        self._last_features: Optional[np.ndarray] = None
        self._resolved: Deque[Tuple[int, bool]] = deque(maxlen=RESOLVED_HISTORY)

    # Map

    def analyze_map(self, bounds: Tuple[Vec3, Vec3], cover_positions: Iterable[Vec3] = ()) -> None:
        """Split the world into a 4x4 region grid valued by cover density."""
        mins, maxs = bounds
        step_x = (maxs[0] - mins[0]) / REGION_GRID
        step_y = (maxs[1] - mins[1]) / REGION_GRID
        self.regions = []
        for j in range(REGION_GRID):
            for i in range(REGION_GRID):
                lo = (mins[0] + i * step_x, mins[1] + j * step_y, mins[2])
                hi = (mins[0] + (i + 1) * step_x, mins[1] + (j + 1) * step_y, maxs[2])
                self.regions.append(MapRegion(len(self.regions), lo, hi))
        counts = [0] * len(self.regions)
        for position in cover_positions:
            region = self.region_at(position)
            if region is not None:
                counts[region.region_id] += 1
        peak = max(counts) if counts else 0
        for region, count in zip(self.regions, counts):
            region.strategic_value = count / peak if peak else 0.0

    def region_at(self, point: Vec3) -> Optional[MapRegion]:
        for region in self.regions:
            if region.contains(point):
                return region
        return None

    def _update_regions(self) -> float:
        if not self.regions:
            return 0.5
        for region in self.regions:
            region.friendly_presence = sum(1 for u in self._team if u.alive and region.contains(u.origin))
            region.enemy_presence = sum(1 for u in self._enemies if u.alive and region.contains(u.origin))
            total = region.friendly_presence + region.enemy_presence
            if total:
                region.control_strength = region.friendly_presence / total
            region.contested = region.friendly_presence > 0 and region.enemy_presence > 0
            region.controlled = region.friendly_presence > 0 and region.enemy_presence == 0
        controlled = sum(1 for r in self.regions if r.controlled)
        contested = sum(1 for r in self.regions if r.contested)
        return (controlled + 0.5 * contested) / len(self.regions)

    # Situation

    def assess(
        self,
        team: List[EntitySnapshot],
        enemies: List[EntitySnapshot],
        now_ms: int,
        team_score: int = 0,
        enemy_score: int = 0,
        time_remaining_s: float = math.inf,
    ) -> SituationAssessment:
        """Rebuild the situation from member snapshots and the latest-seen
        enemy snapshots."""
        self._team = [u for u in team if u is not None]
        self._enemies = [u for u in enemies if u is not None]
        team_strength, team_alive = unit_strength(self._team)
        enemy_strength, enemy_alive = unit_strength(self._enemies)

        momentum = 0.0
        if self._previous is not None:
            d_team = team_strength - self._previous.team_strength
            d_enemy = enemy_strength - self._previous.enemy_strength
            d_score = (team_score - enemy_score) - (self._previous.team_score - self._previous.enemy_score)
            momentum = clamp(0.1 * (d_team - d_enemy) + 0.05 * d_score, -1.0, 1.0)

        total = team_strength + enemy_strength
        situation = SituationAssessment(
            team_strength=team_strength,
            enemy_strength=enemy_strength,
            positional_advantage=self._update_regions(),
            resource_advantage=team_strength / total if total > 0 else 0.5,
            momentum=momentum,
            team_alive=team_alive,
            enemy_alive=enemy_alive,
            team_score=team_score,
            enemy_score=enemy_score,
            time_remaining_s=time_remaining_s,
            timestamp=now_ms,
        )
        self._previous = situation
        self.situation = situation
        return situation

    def features(self, situation: SituationAssessment) -> np.ndarray:
        values = [
            situation.team_strength / 100.0,
            situation.enemy_strength / 100.0,
            min(situation.strength_ratio, 4.0) / 2.0,
            situation.positional_advantage,
            situation.resource_advantage,
            situation.momentum,
            situation.team_alive / 16.0,
            situation.enemy_alive / 16.0,
            min(situation.time_remaining_s, 600.0) / 600.0,
            1.0 if situation.winning else 0.0,
            1.0 if situation.losing else 0.0,
            1.0 if situation.stalemate else 0.0,
            self.adaptability,
            min(self.lookahead_s, 60.0) / 60.0,
        ]
        values += [0.0] * (SITUATION_FEATURES - len(values))
        values += self.memory.effectiveness_vector()
        return np.asarray(values, dtype=float)

    # Strategy

    def select_strategy(self, situation: Optional[SituationAssessment] = None) -> StrategyType:
        situation = situation or self.situation or SituationAssessment()
        if situation.losing and situation.momentum < -0.5:
            choice = StrategyType.AGGRESSIVE if self.rng.random() < 0.5 else StrategyType.GUERRILLA
            logger.debug(f"Team {self.team_id}: losing badly, desperate strategy {choice.value}")
            return choice
        if situation.winning and situation.time_remaining_s < 60.0:
            return StrategyType.DEFENSIVE

        features = self.features(situation)
        self._last_features = features
        probabilities = self.network.forward(features)
        scores = [float(p) * self.memory.success_boost(s) for p, s in zip(probabilities, STRATEGIES)]
        best = max(range(len(STRATEGIES)), key=lambda i: (scores[i], -i))
        return STRATEGIES[best]

    def predict_confidence(self, strategy: StrategyType, goals: List[StrategicGoal]) -> float:
        history = self.memory.records[strategy].effectiveness
        if not goals:
            return 0.5 * history
        mean_success = sum(g.success_probability for g in goals) / len(goals)
        return 0.5 * history + 0.5 * mean_success

    # Planning

    def create_plan(self, now_ms: int, strategy: Optional[StrategyType] = None,
                    situation: Optional[SituationAssessment] = None) -> StrategicPlan:
        situation = situation or self.situation or SituationAssessment(timestamp=now_ms)
        strategy = strategy or self.select_strategy(situation)
        self.plans_created += 1
        plan = StrategicPlan(
            plan_id=self.plans_created,
            strategy=strategy,
            weights=strategy_weights(strategy, self.adaptability),
            created_ms=now_ms,
        )

        for goal_type in STRATEGY_GOALS.get(strategy, DEFAULT_STRATEGY_GOALS):
            goal = self._build_goal(len(plan.goals), goal_type, situation)
            plan.goals.append(goal)
        plan.goals.sort(key=lambda g: -g.utility)
        plan.goals = plan.goals[:MAX_STRATEGIC_GOALS]

        for goal in plan.goals:
            for objective in self._build_objectives(goal, now_ms):
                if len(plan.objectives) >= MAX_TACTICAL_OBJECTIVES:
                    break
                plan.objectives.append(objective)
                goal.objective_ids.append(objective.objective_id)

        plan.confidence = self.predict_confidence(strategy, plan.goals)
        self.memory.records[strategy].uses += 1
        self.plan = plan
        logger.info(
            f"Team {self.team_id}: plan {plan.plan_id} strategy={strategy.value} "
            f"goals={len(plan.goals)} objectives={len(plan.objectives)} confidence={plan.confidence:.2f}"
        )
        return plan

    def _team_centroid(self) -> Vec3:
        alive = [u.origin for u in self._team if u.alive]
        return average(alive) if alive else ORIGIN

    def _enemy_centroid(self) -> Vec3:
        alive = [u.origin for u in self._enemies if u.alive]
        return average(alive) if alive else self._team_centroid()

    def _goal_position(self, goal_type: GoalType) -> Vec3:
        if goal_type in (GoalType.ELIMINATE, GoalType.DOMINATE):
            return self._enemy_centroid()
        if goal_type in (GoalType.CAPTURE, GoalType.CONTROL, GoalType.COLLECT):
            regions = self._ranked_regions()
            return regions[0].center if regions else self._team_centroid()
        return self._team_centroid()

    def _ranked_regions(self) -> List[MapRegion]:
        return sorted(self.regions, key=lambda r: (-r.strategic_value, r.controlled, r.region_id))

    def _build_goal(self, goal_id: int, goal_type: GoalType, situation: SituationAssessment) -> StrategicGoal:
        priority, value, cost, success = GOAL_BASE.get(goal_type, DEFAULT_GOAL_BASE)

        if goal_type == GoalType.ELIMINATE and situation.losing:
            value *= 1.3
        elif goal_type == GoalType.DEFEND and situation.winning:
            value *= 1.2
        elif goal_type == GoalType.CAPTURE and situation.time_remaining_s < 120.0:
            value *= 1.5
        elif goal_type == GoalType.SURVIVE and situation.team_alive < 3:
            value *= 1.4

        cost += 0.01 * distance(self._team_centroid(), self._goal_position(goal_type))

        success *= clamp(situation.strength_ratio, 0.5, 1.5)
        success += 0.1 * situation.momentum
        if goal_type == GoalType.DEFEND and situation.positional_advantage > 0.6:
            success += 0.1
        if goal_type == GoalType.ELIMINATE and situation.resource_advantage > 0.6:
            success += 0.15
        success = clamp(success, 0.1, 0.95)
        return StrategicGoal(goal_id, goal_type, priority, value, cost, success)

    def _build_objectives(self, goal: StrategicGoal, now_ms: int) -> List[StrategicObjective]:
        count, agents, time_limit, reward, penalty = OBJECTIVE_TEMPLATES.get(goal.goal_type, DEFAULT_OBJECTIVE_TEMPLATE)
        objective_type = GOAL_OBJECTIVE_TYPE.get(goal.goal_type, ObjectiveType.MOVE)
        radius = OBJECTIVE_RADIUS.get(objective_type, DEFAULT_OBJECTIVE_RADIUS)

        targets: List[Tuple[Vec3, Optional[int]]] = []
        if objective_type == ObjectiveType.ATTACK:
            enemies = sorted((u for u in self._enemies if u.alive), key=lambda u: u.entity_id)
            targets = [(u.origin, u.entity_id) for u in enemies]
        elif goal.goal_type in (GoalType.CONTROL, GoalType.CAPTURE, GoalType.COLLECT):
            targets = [(r.center, None) for r in self._ranked_regions()]
        if objective_type == ObjectiveType.ATTACK and not targets:
            return []
        if not targets:
            targets = [(self._goal_position(goal.goal_type), None)]

        objectives = []
        for i in range(min(count, 4)):
            if objective_type == ObjectiveType.ATTACK and i >= len(targets):
                break
            position, entity = targets[i % len(targets)]
            self._next_objective_id += 1
            objectives.append(StrategicObjective(
                objective_id=self._next_objective_id,
                objective_type=objective_type,
                goal_id=goal.goal_id,
                position=position,
                radius=radius,
                required_agents=agents,
                priority=goal.priority,
                deadline_ms=now_ms + int(time_limit * 1000),
                reward=reward,
                penalty=penalty,
                created_ms=now_ms,
                target_entity=entity,
            ))
        return objectives

    # Execution

    def update_plan(self, now_ms: int, world: Mapping[int, EntitySnapshot], team_ids: Iterable[int]) -> List[StrategicObjective]:
        """Advance the plan clock and resolve objectives. Returns objectives
        resolved by this call."""
        plan = self.plan
        if plan is None or not plan.active:
            return []
        plan.execution_time_ms = now_ms - plan.created_ms
        team_ids = set(team_ids)
        friendlies = [e for i, e in world.items() if i in team_ids and e is not None and e.alive]
        enemies = [e for e in self._enemies if e.alive]

        resolved: List[StrategicObjective] = []
        for objective in plan.active_objectives():
            outcome = self._objective_outcome(objective, now_ms, world, friendlies, enemies)
            if outcome is None:
                continue
            if outcome:
                objective.complete()
                plan.completed_objectives += 1
            else:
                objective.fail()
                plan.failed_objectives += 1
            resolved.append(objective)
            self._resolved.append((objective.objective_id, bool(outcome)))

        for goal in plan.goals:
            objectives = [plan.get_objective(i) for i in goal.objective_ids]
            if objectives and all(o.completed for o in objectives):
                goal.completed = True
            elif objectives and sum(o.failed for o in objectives) * 2 > len(objectives):
                goal.failed = True

        resolved_count = plan.completed_objectives + plan.failed_objectives
        if resolved_count:
            plan.effectiveness = plan.completed_objectives / resolved_count
        return resolved

    def objective_result(self, objective_id: int) -> Optional[bool]:
        """True if completed, False if failed, None while unresolved or
        too old to remember. Survives replanning."""
        for resolved_id, success in reversed(self._resolved):
            if resolved_id == objective_id:
                return success
        return None

    def _objective_outcome(self, objective: StrategicObjective, now_ms: int, world: Mapping[int, EntitySnapshot],
                           friendlies: List[EntitySnapshot], enemies: List[EntitySnapshot]) -> Optional[bool]:
        kind = objective.objective_type
        inside_friendly = any(distance_2d(f.origin, objective.position) <= objective.radius for f in friendlies)
        inside_enemy = any(distance_2d(e.origin, objective.position) <= objective.radius for e in enemies)

        if kind == ObjectiveType.ATTACK:
            target = world.get(objective.target_entity) if objective.target_entity is not None else None
            if objective.target_entity is not None and (target is None or not target.alive):
                return True
        elif kind == ObjectiveType.DEFEND:
            if inside_enemy:
                return False
            if now_ms >= objective.deadline_ms:
                return True
        elif kind == ObjectiveType.CAPTURE:
            if inside_friendly and not inside_enemy:
                return True
        elif kind == ObjectiveType.SUPPORT:
            if now_ms - objective.created_ms >= SUPPORT_DURATION_MS:
                return True
        elif inside_friendly:
            return True

        if now_ms >= objective.deadline_ms:
            return False
        return None

    def needs_replanning(self, now_ms: int) -> bool:
        plan = self.plan
        if plan is None or not plan.active:
            return True
        age = now_ms - plan.created_ms
        if age > PLAN_MAX_AGE_MS:
            return True
        if plan.effectiveness < LOW_EFFECTIVENESS and age > MIN_EVALUATION_AGE_MS:
            return True
        if plan.failed_ratio > FAILED_RATIO_LIMIT:
            return True
        if not plan.active_objectives():
            # An empty plan waits for the first enemy sighting
            return plan.num_objectives > 0 or bool(self._enemies)
        situation = self.situation
        if situation is not None and situation.enemy_strength > 2.0 * situation.team_strength:
            return True
        return False

    def replan(self, now_ms: int) -> StrategicPlan:
        if self.plan is not None and self.plan.active:
            if self.plan.num_objectives > 0:
                self.learn_from_outcome(self.plan)
            else:
                self.plan.active = False
        return self.create_plan(now_ms)

    def learn_from_outcome(self, plan: StrategicPlan) -> bool:
        """Close a plan and fold its outcome into strategy memory."""
        plan.active = False
        success = plan.effectiveness >= 0.5
        record = self.memory.records[plan.strategy]
        if success:
            record.successes += 1
        else:
            record.failures += 1
        alpha = self.adaptability * 0.2
        record.effectiveness = (1 - alpha) * record.effectiveness + alpha * plan.effectiveness
        self.memory.outcomes.append((plan.strategy, plan.effectiveness))

        if success and self._last_features is not None:
            target = np.zeros(len(STRATEGIES))
            target[STRATEGIES.index(plan.strategy)] = 1.0
            self.network.train_step(self._last_features, target)
        logger.debug(
            f"Team {self.team_id}: plan {plan.plan_id} ({plan.strategy.value}) ended "
            f"effectiveness={plan.effectiveness:.2f} success={success}"
        )
        return success

    def summary(self) -> Dict:
        return {
            "situation": self.situation.to_dict() if self.situation else None,
            "plan": self.plan.to_dict() if self.plan else None,
            "strategy_effectiveness": {s.value: round(r.effectiveness, 3) for s, r in self.memory.records.items()},
        }
