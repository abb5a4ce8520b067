"""
Bot Controller: the per-agent think cycle.

Each think runs, in a fixed order:

1. Perception refresh from the engine snapshot
2. Threat re-rank
3. Skill interpolation and adaptation
4. Learning hook observation (optional)
5. Combat decision
6. Team messages and orders
7. Agent state transition (priority driven, with hysteresis)
8. Movement update (dodge first, then path/style)
9. UserCommand composition and delivery

A subsystem exception skips the tick: the previous command is re-sent
unchanged. When the per-agent budget is exceeded the cycle aborts after
the current subsystem with the same fallback.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Set, Tuple

from .character_profiles import BotCharacter, Personality, resolve_personality
from .combat_tactics import (
    CombatDecision, CombatState, CombatStyle, STYLE_PARAMETERS, TacticalCombat,
    COVER_SEARCH_RADIUS,
)
from .cover_system import CoverManager, CoverPoint, CoverSearchParams
from .engine_interface import EntityKind, EntitySnapshot, GameEngine, ItemType, NavigationService
from .learning_agent import LearningAgent, RewardSignals, shape_reward
from .movement_tactics import DodgeType, MovementStyle, MovementTactics
from .perception import Perception, PerceptionFrame, SoundType
from .skill_adaptation import SkillProfile
from .team_coordinator import MemberOrders, TeamCoordinator, TeamRole
from .threat_model import ThreatLevel, ThreatModel
from .user_command import Button, UserCommand
from .vector_math import (
    Vec3, ORIGIN, sub, length_2d, distance_2d, vector_to_angles, angle_delta,
    angle_mod, clamp,
)

logger = logging.getLogger(__name__)

VIEW_TURN_RATE = 360.0  # deg/s at view_max_change 0.5
ALERT_INTERVAL_MS = 2000
SUPPORT_REQUEST_INTERVAL_MS = 5000
SUPPORT_REQUEST_HEALTH = 50
OBJECTIVE_REACHED_DISTANCE = 48.0
INVESTIGATE_MEMORY_MS = 5000


class AgentState(Enum):
    SPAWNING = "spawning"
    IDLE = "idle"
    MOVING = "moving"
    SEARCHING = "searching"
    COMBAT = "combat"
    RETREATING = "retreating"
    OBJECTIVE = "objective"
    DEAD = "dead"


COMBAT_STATES = (
    CombatState.ENGAGING, CombatState.PURSUING, CombatState.FLANKING, CombatState.SUPPRESSING,
    CombatState.AMBUSHING, CombatState.DEFENDING, CombatState.EVADING,
)

# Personality -> (combat style, movement style, team role)
PERSONALITY_STYLES: Dict[Personality, Tuple[CombatStyle, MovementStyle, TeamRole]] = {
    Personality.AGGRESSIVE: (CombatStyle.AGGRESSIVE, MovementStyle.AGGRESSIVE, TeamRole.ASSAULT),
    Personality.DEFENSIVE: (CombatStyle.DEFENSIVE, MovementStyle.TACTICAL, TeamRole.DEFENDER),
    Personality.TACTICAL: (CombatStyle.TACTICAL, MovementStyle.TACTICAL, TeamRole.ASSAULT),
    Personality.SUPPORT: (CombatStyle.SUPPORT, MovementStyle.NORMAL, TeamRole.SUPPORT),
    Personality.SCOUT: (CombatStyle.GUERRILLA, MovementStyle.EVASIVE, TeamRole.SCOUT),
    Personality.SNIPER: (CombatStyle.SNIPER, MovementStyle.TACTICAL, TeamRole.SNIPER),
    Personality.RUSHER: (CombatStyle.RUSHER, MovementStyle.AGGRESSIVE, TeamRole.ASSAULT),
    Personality.BALANCED: (CombatStyle.BALANCED, MovementStyle.NORMAL, TeamRole.ASSAULT),
}


def personality_styles(personality: Personality, character: BotCharacter) -> Tuple[CombatStyle, MovementStyle, TeamRole]:
    """Styles for a personality, adjusted by character traits."""
    personality = resolve_personality(personality, character)
    combat, movement, role = PERSONALITY_STYLES.get(personality, PERSONALITY_STYLES[Personality.BALANCED])
    if character.camper > 0.7:
        combat = CombatStyle.DEFENSIVE
    if character.jump_frequency > 0.7 and character.weapon_jumping > 0.5:
        movement = MovementStyle.AGGRESSIVE
    elif character.walk_frequency > 0.7 or character.crouch_frequency > 0.7:
        movement = MovementStyle.TACTICAL
    return combat, movement, role


class ThinkBudgetExceeded(Exception):
    """Raised between subsystems when a think runs over its budget."""


@dataclass
class ThinkContext:
    """Shared, read-mostly inputs for one frame of thinks."""
    engine: GameEngine
    world: Mapping[int, EntitySnapshot]
    navigation: Optional[NavigationService] = None
    mesh: Any = None
    cover: Optional[CoverManager] = None
    coordinator: Optional[TeamCoordinator] = None
    teamplay: bool = True
    advanced_movement: bool = True
    hysteresis: float = 0.1
    budget_ms: float = 0.0
    debug: int = 0


class Agent:
    """One bot: owns its perception, threat, combat, movement, skill and
    optional learning blocks."""

    def __init__(
        self,
        client_id: int,
        name: str,
        character: BotCharacter,
        personality: Personality = Personality.BALANCED,
        think_period_ms: int = 50,
        seed: int = 0,
        perception_range: float = 2000.0,
        perception_fov: float = 120.0,
        peripheral_sensitivity: float = 0.5,
        memory_decay_rate: float = 0.1,
        aggression: float = 0.5,
        prediction: bool = True,
        skill_update_interval_ms: int = 30000,
        learning: Optional[LearningAgent] = None,
    ):
        self.client_id = client_id
        self.name = name
        self.character = character
        self.personality = resolve_personality(personality, character)
        self.combat_style, self.movement_style, self.role = personality_styles(personality, character)
        self.think_period_ms = think_period_ms
        self.seed = seed

        self.skill = SkillProfile.from_character(
            character, STYLE_PARAMETERS[self.combat_style].aim_accuracy, skill_update_interval_ms
        )
        self.perception = Perception(
            client_id, perception_range, perception_fov, peripheral_sensitivity,
            memory_decay_rate, think_period_ms, seed=seed,
        )
        self.threats = ThreatModel()
        self.combat = TacticalCombat(
            client_id, self.combat_style, self.skill, seed=seed + 1,
            aggression=aggression, prediction=prediction,
        )
        self.movement = MovementTactics(
            client_id, self.movement_style, seed=seed + 2,
            strafe_multiplier=STYLE_PARAMETERS[self.combat_style].strafe_multiplier,
        )
        self.learning = learning

        self.state = AgentState.SPAWNING
        self.previous_state = AgentState.SPAWNING
        # Stagger so agents spawned together do not think on the same tick
        self.next_think_time_ms = (client_id * 10) % max(1, think_period_ms)
        self.last_think_ms: Optional[int] = None
        self.last_command = UserCommand.neutral()
        self.view_angles: Vec3 = ORIGIN
        self.destination: Optional[Vec3] = None
        self.cover_point: Optional[CoverPoint] = None
        self.investigate_position: Optional[Vec3] = None
        self._investigate_ms: Optional[int] = None
        self.think_count = 0
        self.skipped_thinks = 0

        self.spawn_time_ms: Optional[int] = None
        self._last_health: Optional[int] = None
        self._dealt: Dict[int, float] = {}
        self._fired_last = False
        self._dealt_this_think = 0.0
        self._taken_this_think = 0.0
        self._alerted: Dict[int, int] = {}
        self._last_support_request_ms: Optional[int] = None
        self._objective_id: Optional[int] = None
        self._objective_start = 0.0
        self._objective_last = 0.0
        self._objective_progress = 0.0
        self._objective_completed = False
        self._warned_states: Set[str] = set()

    # Think cycle

    def think(self, ctx: ThinkContext, now_ms: int) -> Optional[UserCommand]:
        """Run one think if due. Returns the command sent, or None when not due."""
        if now_ms < self.next_think_time_ms:
            return None
        self.next_think_time_ms = now_ms + self.think_period_ms
        started = time.perf_counter()

        try:
            command = self._think(ctx, now_ms, started)
        except ThinkBudgetExceeded:
            self.skipped_thinks += 1
            logger.debug(f"Bot {self.client_id}: think over budget, re-sending previous command")
            command = self.last_command
        except Exception:
            self.skipped_thinks += 1
            if ctx.debug > 0:
                logger.exception(f"Bot {self.client_id}: think failed in state {self.state.value}")
            elif self.state.value not in self._warned_states:
                self._warned_states.add(self.state.value)
                logger.warning(f"Bot {self.client_id}: think failed in state {self.state.value}")
            command = self.last_command

        ctx.engine.send_command(self.client_id, command)
        self.last_command = command
        self.last_think_ms = now_ms
        self.think_count += 1
        return command

    def _checkpoint(self, ctx: ThinkContext, started: float) -> None:
        if ctx.budget_ms > 0 and (time.perf_counter() - started) * 1000.0 > ctx.budget_ms:
            raise ThinkBudgetExceeded()

    def _think(self, ctx: ThinkContext, now_ms: int, started: float) -> UserCommand:
        engine = ctx.engine
        own = ctx.world.get(self.client_id)
        if own is None or not own.is_valid():
            self._set_state(AgentState.IDLE)
            return UserCommand.neutral(now_ms, self.last_command.weapon)
        if not own.alive:
            self._handle_death(ctx, now_ms)
            return UserCommand.neutral(now_ms, own.weapon)
        if self.state in (AgentState.DEAD, AgentState.SPAWNING):
            self._handle_spawn(own, now_ms)

        frame = self.perception.update(engine, ctx.world, now_ms)
        if frame.is_empty:
            self._set_state(AgentState.IDLE)
            return UserCommand.neutral(now_ms, own.weapon)
        self._checkpoint(ctx, started)

        self.threats.update(frame, now_ms, self.combat.fired_at)
        self._checkpoint(ctx, started)

        self.skill.update()
        self.skill.adapt(now_ms)
        self._track_combat_results(frame, ctx.world)

        if self.learning is not None:
            self._learning_observe(frame)
            self._checkpoint(ctx, started)

        decision = self.combat.decide(engine, frame, self.threats, now_ms, self._cover_finder(ctx, now_ms))
        self._checkpoint(ctx, started)

        orders_destination = self._team_step(ctx, frame, decision, now_ms)
        self._update_investigation(frame, now_ms)
        self._choose_state(ctx, frame, decision, orders_destination)

        output = self._move(ctx, frame, decision, now_ms)
        self._checkpoint(ctx, started)

        command = self._compose(frame, decision, output, now_ms)
        self._learning_reward(frame, now_ms)
        self._fired_last = decision.fire
        return command

    # Lifecycle

    def _handle_spawn(self, own: EntitySnapshot, now_ms: int) -> None:
        if self.state == AgentState.DEAD:
            self.perception.reset()
            self.threats.reset()
        self.spawn_time_ms = now_ms
        self._last_health = own.health
        self.view_angles = own.angles
        logger.debug(f"Bot {self.client_id}: spawned")

    def _handle_death(self, ctx: ThinkContext, now_ms: int) -> None:
        if self.state == AgentState.DEAD:
            return
        survival = 0.0 if self.spawn_time_ms is None else (now_ms - self.spawn_time_ms) / 1000.0
        self.skill.record_death(survival)
        if self.learning is not None:
            self.learning.record(shape_reward(RewardSignals(died=True, deaths=1)), done=True)
        if ctx.cover is not None:
            ctx.cover.leave_cover(self.client_id)
        self.cover_point = None
        self.combat.reset()
        self.movement.reset()
        self.destination = None
        self._objective_id = None
        self._set_state(AgentState.DEAD)

    def _set_state(self, state: AgentState) -> None:
        if state != self.state:
            logger.debug(f"Bot {self.client_id}: {self.state.value} -> {state.value}")
            self.previous_state = self.state
            self.state = state

    # Combat bookkeeping

    def _track_combat_results(self, frame: PerceptionFrame, world: Mapping[int, EntitySnapshot]) -> None:
        dealt_now = 0.0
        for threat in self.threats.threats:
            previous = self._dealt.get(threat.entity_id, 0.0)
            if threat.damage_dealt_by_me > previous:
                dealt_now += threat.damage_dealt_by_me - previous
            self._dealt[threat.entity_id] = threat.damage_dealt_by_me

        if self._fired_last:
            self.skill.record_shot(dealt_now > 0)
            target = self.combat.fired_at
            snapshot = world.get(target) if target is not None else None
            if snapshot is not None and snapshot.kind == EntityKind.PLAYER and not snapshot.alive:
                self.skill.record_kill()
                self._dealt.pop(target, None)
        me = frame.self_state
        taken = 0.0
        if self._last_health is not None and me.health < self._last_health:
            taken = self._last_health - me.health
        if dealt_now or taken:
            self.skill.record_damage(dealt_now, taken)
        self._dealt_this_think = dealt_now
        self._taken_this_think = taken

    def _cover_finder(self, ctx: ThinkContext, now_ms: int):
        cover = ctx.cover
        if cover is None or not cover.points:
            return None

        def find_cover(position: Vec3, threat_position: Vec3) -> Optional[Vec3]:
            params = CoverSearchParams(
                position=position,
                threat_position=threat_position,
                search_radius=COVER_SEARCH_RADIUS,
                time_pressure=0.8,
                requester=self.client_id,
            )
            point = cover.find_best_cover(ctx.engine, params, now_ms)
            if point is None:
                return None
            cover.enter_cover(self.client_id, point, now_ms)
            self.cover_point = point
            return point.position

        return find_cover

    # Team play

    def _team_step(self, ctx: ThinkContext, frame: PerceptionFrame, decision: CombatDecision,
                   now_ms: int) -> Optional[Vec3]:
        coordinator = ctx.coordinator
        if coordinator is None or not ctx.teamplay:
            return None
        me = frame.self_state
        coordinator.set_member_busy(self.client_id, decision.state in COMBAT_STATES)

        for threat in self.threats.threats:
            if not threat.visible or threat.level < ThreatLevel.HIGH:
                continue
            last = self._alerted.get(threat.entity_id)
            if last is None or now_ms - last >= ALERT_INTERVAL_MS:
                coordinator.post_alert(self.client_id, threat.position, int(threat.level) - 1, now_ms, threat.entity_id)
                self._alerted[threat.entity_id] = now_ms

        if me.health < SUPPORT_REQUEST_HEALTH and self.threats.under_fire:
            if self._last_support_request_ms is None or now_ms - self._last_support_request_ms >= SUPPORT_REQUEST_INTERVAL_MS:
                coordinator.request_support(self.client_id, me.position, now_ms, me.health)
                self._last_support_request_ms = now_ms

        orders = coordinator.get_orders(self.client_id)
        self._track_objective(coordinator, orders, me.position)
        if orders is None:
            return None
        destination = orders.assigned_position or orders.objective_position
        if destination is None or distance_2d(destination, me.position) <= OBJECTIVE_REACHED_DISTANCE:
            return None
        return destination

    def _track_objective(self, coordinator: TeamCoordinator, orders: Optional[MemberOrders],
                         position: Vec3) -> None:
        """Progress is the share of the initial distance to the ordered
        objective closed since the last think."""
        self._objective_progress = 0.0
        self._objective_completed = False
        objective_id = orders.objective_id if orders is not None else None
        if self._objective_id is not None and self._objective_id != objective_id:
            result = coordinator.planner.objective_result(self._objective_id)
            if result is not None:
                self.skill.record_objective(1.0 if result else 0.0)
            self._objective_completed = result is True
            self._objective_id = None
        if objective_id is None or orders.objective_position is None:
            return
        remaining = distance_2d(orders.objective_position, position)
        if self._objective_id != objective_id:
            self._objective_id = objective_id
            self._objective_start = max(remaining, 1.0)
        else:
            self._objective_progress = clamp((self._objective_last - remaining) / self._objective_start, -1.0, 1.0)
        self._objective_last = remaining

    def _update_investigation(self, frame: PerceptionFrame, now_ms: int) -> None:
        visible = {e.entity_id for e in frame.visible_enemies()}
        enemies = {e.entity_id for e in frame.enemies()}
        for sound in frame.sounds:
            if sound.sound_type != SoundType.WEAPON_FIRE or sound.source_id in visible:
                continue
            if sound.source_id not in enemies and frame.get(sound.source_id) is not None:
                continue
            if sound.source_id == self.client_id:
                continue
            if self._investigate_ms is None or sound.timestamp > self._investigate_ms:
                self.investigate_position = sound.origin
                self._investigate_ms = sound.timestamp
        if self._investigate_ms is not None and now_ms - self._investigate_ms > INVESTIGATE_MEMORY_MS:
            self.investigate_position = None
            self._investigate_ms = None

    # State selection

    def _candidates(self, frame: PerceptionFrame, decision: CombatDecision,
                    orders_destination: Optional[Vec3]) -> Dict[AgentState, Tuple[float, Optional[Vec3]]]:
        me = frame.self_state
        candidates: Dict[AgentState, Tuple[float, Optional[Vec3]]] = {AgentState.IDLE: (0.1, None)}
        if decision.state == CombatState.RETREATING:
            candidates[AgentState.RETREATING] = (1.0, decision.movement_destination)
        elif decision.state in COMBAT_STATES:
            candidates[AgentState.COMBAT] = (0.7 + 0.2 * decision.confidence, decision.movement_destination)
        elif decision.state == CombatState.SEARCHING:
            candidates[AgentState.SEARCHING] = (0.3, decision.movement_destination)

        if AgentState.SEARCHING not in candidates and self.investigate_position is not None:
            candidates[AgentState.SEARCHING] = (0.3, self.investigate_position)

        if orders_destination is not None:
            candidates[AgentState.OBJECTIVE] = (0.6, orders_destination)

        item = self._wanted_item(frame)
        if item is not None:
            urgency = 0.2 * (1.0 - clamp(me.health / 100.0, 0.0, 1.0)) if item.item_type == ItemType.HEALTH else 0.0
            candidates[AgentState.MOVING] = (0.4 + urgency, item.position)
        return candidates

    def _wanted_item(self, frame: PerceptionFrame):
        me = frame.self_state
        best, best_d = None, float("inf")
        for item in frame.items():
            if not item.visible:
                continue
            if item.item_type == ItemType.HEALTH and me.health >= 100:
                continue
            if item.item_type == ItemType.ARMOR and me.armor >= 100:
                continue
            if item.distance < best_d:
                best, best_d = item, item.distance
        return best

    def _choose_state(self, ctx: ThinkContext, frame: PerceptionFrame, decision: CombatDecision,
                      orders_destination: Optional[Vec3]) -> None:
        candidates = self._candidates(frame, decision, orders_destination)
        best = max(candidates, key=lambda s: candidates[s][0])
        if best != self.state and self.state in candidates:
            if candidates[best][0] <= candidates[self.state][0] + ctx.hysteresis:
                best = self.state
        self._set_state(best)
        self.destination = candidates[best][1]
        if best != AgentState.RETREATING and self.cover_point is not None and ctx.cover is not None:
            ctx.cover.leave_cover(self.client_id)
            self.cover_point = None

    # Movement

    def _move(self, ctx: ThinkContext, frame: PerceptionFrame, decision: CombatDecision, now_ms: int):
        me = frame.self_state
        movement = self.movement
        movement.set_style(MovementStyle.RETREAT if self.state == AgentState.RETREATING else self.movement_style)

        projectile = decision.projectile_threat
        if projectile is not None and not movement.dodge_in_progress:
            movement.dodge_projectile(ctx.engine, me.position, me.velocity, me.on_ground,
                                      projectile.position, projectile.velocity, now_ms)
        elif decision.should_dodge and not movement.dodge_in_progress:
            movement.start_dodge(DodgeType.SIDESTEP, decision.dodge_vector, now_ms, me.on_ground, me.speed)

        movement.set_destination(self.destination, ctx.navigation, ctx.mesh, me.position, now_ms)

        threat_position = None
        primary = self.threats.primary
        if self.state in (AgentState.COMBAT, AgentState.RETREATING) and primary is not None:
            threat_position = primary.position
        return movement.update(
            ctx.engine, me.position, me.velocity, me.on_ground, now_ms,
            threat_position=threat_position,
            speed_multiplier=self.skill.movement_speed_multiplier,
            ammo=me.ammo,
            advanced=ctx.advanced_movement,
        )

    # Command

    def _desired_view(self, frame: PerceptionFrame, decision: CombatDecision, output) -> Vec3:
        me = frame.self_state
        if decision.aim_position is not None:
            return vector_to_angles(sub(decision.aim_position, me.eye))
        if length_2d(output.velocity) > 1.0:
            return vector_to_angles(output.velocity)
        return self.view_angles

    def _turn(self, desired: Vec3, dt: float) -> Vec3:
        max_change = VIEW_TURN_RATE * (0.5 + self.character.view_max_change) * dt
        pitch = self.view_angles[0] + clamp(angle_delta(desired[0], self.view_angles[0]), -max_change, max_change)
        yaw = self.view_angles[1] + clamp(angle_delta(desired[1], self.view_angles[1]), -max_change, max_change)
        return (clamp(angle_delta(pitch, 0.0), -89.0, 89.0), angle_mod(yaw), 0.0)

    def _compose(self, frame: PerceptionFrame, decision: CombatDecision, output, now_ms: int) -> UserCommand:
        me = frame.self_state
        dt = self.think_period_ms / 1000.0 if self.last_think_ms is None else (now_ms - self.last_think_ms) / 1000.0
        desired = self._desired_view(frame, decision, output)
        if desired != self.view_angles:
            self.view_angles = self._turn(desired, max(dt, 0.0))
        if output.pitch_override is not None:
            self.view_angles = (output.pitch_override, self.view_angles[1], 0.0)

        if decision.should_crouch and not output.jump:
            output.crouch = True
        forward, right, up = self.movement.compose(self.view_angles, output)

        buttons = Button.NONE
        if decision.fire or output.fire:
            buttons |= Button.ATTACK
        weapon = decision.desired_weapon or me.weapon
        return UserCommand.from_intent(now_ms, self.view_angles, forward, right, up, int(buttons), weapon)

    # Learning

    def _learning_observe(self, frame: PerceptionFrame) -> None:
        states = list(CombatState)
        state_vector = self.learning.encoder.encode(frame, self.threats, states.index(self.combat.state))
        self.learning.select_action(state_vector)
        weapons = self.combat.available_weapons(frame.self_state)
        self.combat.set_learning_bias(self.learning.confidence_bias(), self.learning.weapon_bias(weapons))

    def _learning_reward(self, frame: PerceptionFrame, now_ms: int) -> None:
        me = frame.self_state
        if self.learning is not None:
            health_delta = 0.0 if self._last_health is None else me.health - self._last_health
            signals = RewardSignals(
                health_delta=health_delta,
                health=me.health,
                damage_dealt=self._dealt_this_think,
                damage_received=self._taken_this_think,
                objective_progress=self._objective_progress,
                objective_completed=self._objective_completed,
            )
            self.learning.record(shape_reward(signals))
        self._last_health = me.health
        self._objective_progress = 0.0
        self._objective_completed = False

    # Introspection

    def summary(self) -> Dict:
        return {
            "client_id": self.client_id,
            "name": self.name,
            "state": self.state.value,
            "personality": self.personality.value,
            "combat_style": self.combat_style.value,
            "movement_style": self.movement_style.value,
            "role": self.role.value,
            "combat_state": self.combat.state.value,
            "next_think_time_ms": self.next_think_time_ms,
            "destination": list(self.destination) if self.destination else None,
            "cover_point": self.cover_point.point_id if self.cover_point else None,
            "skipped_thinks": self.skipped_thinks,
        }

    def detail(self) -> Dict:
        frame = self.perception.frame
        return {
            **self.summary(),
            "perception": {
                "timestamp": frame.timestamp,
                "entities": [
                    {"entity_id": e.entity_id, "kind": e.kind.value, "visible": e.visible,
                     "confidence": round(e.visibility_confidence, 3), "distance": round(e.distance, 1)}
                    for e in frame.entities
                ],
                "sounds": len(frame.sounds),
                "damage_rate": round(frame.damage_rate, 2),
                "cornered": frame.spatial.cornered,
            },
            "threats": self.threats.summary(),
            "decision": self.combat.decision.to_dict(),
            "movement": self.movement.summary(),
            "skill": self.skill.to_dict(),
            "learning": self.learning.summary() if self.learning is not None else None,
            "command": self.last_command.to_dict(),
        }
