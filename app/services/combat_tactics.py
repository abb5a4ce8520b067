"""
Combat Tactics: engagement state machine, weapon choice, aim and fire gating.

=== STATE SELECTION (after every threat update) ===

1. Low health and under fire            -> Retreating
2. should_retreat hint                  -> Retreating
3. should_flank hint and not under fire -> Flanking
4. Primary threat visible, by style:
   Aggressive/Rusher: beyond optimal range -> Pursuing, else Engaging
   Defensive/Sniper:  closer than 200      -> Evading,  else Engaging
   Guerrilla:         >3 s in combat       -> Retreating, else Ambushing
   Support:                                -> Suppressing
   others:                                 -> Engaging
5. Last sighting within 5 s -> Searching, else Idle

=== AIM ===

predicted target position
+ lead for projectile weapons: velocity * (d / projectile_speed) * prediction_factor
+ 20 units of arc for grenades
+ Gaussian spread, (1 - aim_accuracy) * 50 per axis (clamped to that magnitude)

=== FIRE ===

confidence > 0.3 AND desired weapon is up and has ammo AND line of sight
to the aim point. Confidence ramps in over the reaction time after a
target is first seen.
"""

import logging
import math
import random
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from .engine_interface import GameEngine, MASK_SOLID, sanitize_trace
from .perception import PerceptionFrame, PerceivedEntity, SelfState, MIN_TRACE_FRACTION, GRAVITY
from .skill_adaptation import SkillProfile
from .threat_model import ThreatModel, ThreatInfo, ThreatLevel, ProjectileThreat
from .vector_math import (
    Vec3, ORIGIN, add, sub, scale, mad, length_2d, distance,
    normalize, flatten, perpendicular, rotate_z, clamp,
)
from .weapons import Weapon, WeaponDatabase

logger = logging.getLogger(__name__)

LOW_HEALTH = 30
SEARCH_MEMORY_MS = 5000
CLOSE_RANGE = 200.0
GUERRILLA_HIT_AND_RUN_S = 3.0
FIRE_CONFIDENCE = 0.3
MAX_PREDICTION_S = 2.0
GRENADE_ARC = 20.0
AIM_SPREAD_SCALE = 50.0
FLANK_DISTANCE = 300.0
EVADE_DISTANCE = 300.0
RETREAT_DISTANCE = 400.0
COVER_SEARCH_RADIUS = 1000.0
LEARNING_BIAS_LIMIT = 0.1


class CombatState(Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    ENGAGING = "engaging"
    PURSUING = "pursuing"
    RETREATING = "retreating"
    FLANKING = "flanking"
    SUPPRESSING = "suppressing"
    AMBUSHING = "ambushing"
    DEFENDING = "defending"
    EVADING = "evading"


class CombatStyle(Enum):
    AGGRESSIVE = "aggressive"
    DEFENSIVE = "defensive"
    SNIPER = "sniper"
    RUSHER = "rusher"
    SUPPORT = "support"
    GUERRILLA = "guerrilla"
    TACTICAL = "tactical"
    BALANCED = "balanced"


@dataclass(frozen=True)
class StyleParameters:
    optimal_range: float
    aim_accuracy: float
    burst_duration: float  # seconds
    dodge_probability: float
    strafe_multiplier: float
    prediction_factor: float


STYLE_PARAMETERS: Dict[CombatStyle, StyleParameters] = {
    CombatStyle.AGGRESSIVE: StyleParameters(300.0, 0.60, 2.0, 0.3, 1.2, 0.4),
    CombatStyle.DEFENSIVE: StyleParameters(700.0, 0.80, 1.0, 0.7, 0.8, 0.3),
    CombatStyle.SNIPER: StyleParameters(1500.0, 0.95, 0.5, 0.5, 0.5, 1.0),
    CombatStyle.RUSHER: StyleParameters(150.0, 0.50, 1.0, 0.2, 1.5, 0.3),
    CombatStyle.SUPPORT: StyleParameters(600.0, 0.60, 1.0, 0.5, 1.0, 0.5),
    CombatStyle.GUERRILLA: StyleParameters(400.0, 0.60, 0.7, 0.8, 1.3, 0.2),
    CombatStyle.TACTICAL: StyleParameters(500.0, 0.75, 1.0, 0.6, 1.0, 0.7),
    CombatStyle.BALANCED: StyleParameters(500.0, 0.70, 1.0, 0.5, 1.0, 0.5),
}


@dataclass
class CombatDecision:
    """One think's combat output. Rebuilt every think."""
    state: CombatState = CombatState.IDLE
    primary_target: Optional[int] = None
    secondary_target: Optional[int] = None
    desired_weapon: int = 0
    aim_position: Optional[Vec3] = None
    aim_spread: float = 0.0
    movement_destination: Optional[Vec3] = None
    confidence: float = 0.0
    fire: bool = False
    should_retreat: bool = False
    should_take_cover: bool = False
    should_flank: bool = False
    should_jump: bool = False
    should_crouch: bool = False
    should_dodge: bool = False
    dodge_vector: Vec3 = ORIGIN
    projectile_threat: Optional[ProjectileThreat] = None

    def to_dict(self) -> Dict:
        return {
            "state": self.state.value,
            "primary_target": self.primary_target,
            "secondary_target": self.secondary_target,
            "desired_weapon": self.desired_weapon,
            "aim_position": list(self.aim_position) if self.aim_position else None,
            "movement_destination": list(self.movement_destination) if self.movement_destination else None,
            "confidence": round(self.confidence, 3),
            "fire": self.fire,
            "hints": {
                "retreat": self.should_retreat,
                "take_cover": self.should_take_cover,
                "flank": self.should_flank,
                "jump": self.should_jump,
                "crouch": self.should_crouch,
                "dodge": self.should_dodge,
            },
        }


CoverFinder = Callable[[Vec3, Vec3], Optional[Vec3]]


class TacticalCombat:
    """Per-bot combat brain."""

    def __init__(
        self,
        client_id: int,
        style: CombatStyle = CombatStyle.BALANCED,
        skill: Optional[SkillProfile] = None,
        seed: int = 0,
        aggression: float = 0.5,
        prediction: bool = True,
    ):
        self.client_id = client_id
        self.style = style
        self.skill = skill or SkillProfile()
        self.rng = random.Random(seed)
        self.aggression = aggression
        self.prediction = prediction

        self.state = CombatState.IDLE
        self.previous_state = CombatState.IDLE
        self.state_entered_ms = 0
        self.combat_start_ms: Optional[int] = None
        self.first_seen: Dict[int, int] = {}
        self.last_seen_ms: Optional[int] = None
        self.last_known_position: Optional[Vec3] = None
        self.last_target: Optional[int] = None
        self.fired_at: Optional[int] = None
        self.last_fire_ms: Optional[int] = None

        self.learning_bias = 0.0
        self.weapon_bias: Dict[int, float] = {}
        self.decision = CombatDecision()

    @property
    def params(self) -> StyleParameters:
        return STYLE_PARAMETERS[self.style]

    def set_style(self, style: CombatStyle) -> None:
        self.style = style

    def set_learning_bias(self, confidence_bias: float, weapon_bias: Optional[Dict[int, float]] = None) -> None:
        self.learning_bias = clamp(confidence_bias, -LEARNING_BIAS_LIMIT, LEARNING_BIAS_LIMIT)
        self.weapon_bias = {
            w: clamp(b, -LEARNING_BIAS_LIMIT, LEARNING_BIAS_LIMIT) for w, b in (weapon_bias or {}).items()
        }

    def reset(self) -> None:
        self.state = CombatState.IDLE
        self.previous_state = CombatState.IDLE
        self.combat_start_ms = None
        self.first_seen.clear()
        self.last_seen_ms = None
        self.last_known_position = None
        self.last_target = None
        self.fired_at = None
        self.decision = CombatDecision()

    def time_in_combat(self, now_ms: int) -> float:
        if self.combat_start_ms is None:
            return 0.0
        return (now_ms - self.combat_start_ms) / 1000.0

    # Decision

    def decide(
        self,
        engine: GameEngine,
        frame: PerceptionFrame,
        threats: ThreatModel,
        now_ms: int,
        find_cover: Optional[CoverFinder] = None,
    ) -> CombatDecision:
        decision = CombatDecision()
        me = frame.self_state
        if me is None:
            self._set_state(CombatState.IDLE, now_ms)
            self.decision = decision
            return decision

        primary = threats.primary
        secondary = threats.secondary
        if primary is not None:
            decision.primary_target = primary.entity_id
            if self.combat_start_ms is None:
                self.combat_start_ms = now_ms
        if secondary is not None:
            decision.secondary_target = secondary.entity_id

        target = frame.get(primary.entity_id) if primary is not None else None
        visible_ids = {e.entity_id for e in frame.visible_enemies()}
        for entity_id in list(self.first_seen):
            if entity_id not in visible_ids:
                del self.first_seen[entity_id]
        for entity_id in visible_ids:
            self.first_seen.setdefault(entity_id, now_ms)

        if primary is not None and primary.visible:
            self.last_seen_ms = now_ms
            self.last_known_position = primary.position
            self.last_target = primary.entity_id

        self._hints(decision, me, frame, threats, primary, now_ms)
        state = self._select_state(decision, me, threats, primary, now_ms)
        self._set_state(state, now_ms)
        decision.state = state
        if state == CombatState.IDLE:
            self.combat_start_ms = None

        dist = primary.distance if primary is not None else 0.0
        decision.desired_weapon = self.select_weapon(me, dist if primary is not None else None)

        if target is not None and primary.visible:
            decision.aim_position, decision.aim_spread = self.aim_point(me, target, decision.desired_weapon)
        elif state == CombatState.SUPPRESSING and self.last_known_position is not None:
            decision.aim_position = self.last_known_position

        decision.confidence = self._confidence(me, frame, primary, decision.desired_weapon, now_ms)
        decision.movement_destination = self._destination(engine, state, me, frame, primary, find_cover)
        decision.fire = self._should_fire(engine, me, decision, primary, now_ms)

        projectile = threats.imminent_projectile
        if projectile is not None:
            decision.projectile_threat = projectile

        self.fired_at = decision.primary_target if decision.fire else None
        if decision.fire:
            self.last_fire_ms = now_ms
        self.decision = decision
        return decision

    def _set_state(self, state: CombatState, now_ms: int) -> None:
        if state != self.state:
            logger.debug(f"Bot {self.client_id}: combat {self.state.value} -> {state.value}")
            self.previous_state = self.state
            self.state = state
            self.state_entered_ms = now_ms

    def _hints(self, decision: CombatDecision, me: SelfState, frame: PerceptionFrame,
               threats: ThreatModel, primary: Optional[ThreatInfo], now_ms: int) -> None:
        health = me.health
        decision.should_retreat = (
            (health < 50 and threats.outnumbered)
            or (health < 40 and primary is not None and primary.level >= ThreatLevel.CRITICAL)
        )
        decision.should_take_cover = (threats.under_fire and health < 60) or threats.flanked
        decision.should_flank = (
            self.style == CombatStyle.TACTICAL
            and primary is not None
            and primary.visible
            and not threats.outnumbered
            and health >= 60
            and self.time_in_combat(now_ms) > 2.0
        )

        projectile = threats.imminent_projectile
        decision.should_jump = projectile is not None and (
            projectile.predicted_impact[2] < me.position[2]
            or bool(WeaponDatabase.get(projectile.weapon) and WeaponDatabase.get(projectile.weapon).splash)
        )
        decision.should_crouch = (
            self.style in (CombatStyle.SNIPER, CombatStyle.DEFENSIVE)
            and self.state == CombatState.ENGAGING
            and length_2d(me.velocity) < 10.0
        )

        if threats.under_fire and primary is not None and self.rng.random() < self.params.dodge_probability:
            lateral = perpendicular(primary.direction)
            side = 1.0 if self.rng.random() < 0.5 else -1.0
            noise = (self.rng.uniform(-20.0, 20.0), self.rng.uniform(-20.0, 20.0), 0.0)
            decision.should_dodge = True
            decision.dodge_vector = add(scale(normalize(lateral), side * self.params.strafe_multiplier * 400.0), noise)

    def _select_state(self, decision: CombatDecision, me: SelfState, threats: ThreatModel,
                      primary: Optional[ThreatInfo], now_ms: int) -> CombatState:
        if me.health < LOW_HEALTH and threats.under_fire:
            return CombatState.RETREATING
        if decision.should_retreat:
            return CombatState.RETREATING
        if decision.should_flank and not threats.under_fire:
            return CombatState.FLANKING

        if primary is not None and primary.visible:
            style = self.style
            if style in (CombatStyle.AGGRESSIVE, CombatStyle.RUSHER):
                return CombatState.PURSUING if primary.distance > self.params.optimal_range else CombatState.ENGAGING
            if style in (CombatStyle.DEFENSIVE, CombatStyle.SNIPER):
                return CombatState.EVADING if primary.distance < CLOSE_RANGE else CombatState.ENGAGING
            if style == CombatStyle.GUERRILLA:
                if self.time_in_combat(now_ms) > GUERRILLA_HIT_AND_RUN_S:
                    return CombatState.RETREATING
                return CombatState.AMBUSHING
            if style == CombatStyle.SUPPORT:
                return CombatState.SUPPRESSING
            return CombatState.ENGAGING

        if threats.imminent_projectile is not None:
            return CombatState.EVADING
        if self.last_seen_ms is not None and now_ms - self.last_seen_ms <= SEARCH_MEMORY_MS:
            if (self.style == CombatStyle.SUPPORT and self.last_known_position is not None
                    and now_ms - self.last_seen_ms <= self.params.burst_duration * 1000):
                return CombatState.SUPPRESSING
            return CombatState.SEARCHING
        return CombatState.IDLE

    # Weapons

    def weapon_score(self, weapon: int, dist: float) -> float:
        stats = WeaponDatabase.get(weapon)
        if stats is None or stats.optimal_range <= 0:
            return -math.inf
        range_fit = 1.0 - abs(dist - stats.optimal_range) / stats.optimal_range
        score = range_fit * 40.0 + stats.dps / 200.0 * 30.0
        if self.style == CombatStyle.SNIPER and weapon == Weapon.RAILGUN:
            score += 20.0
        if self.style in (CombatStyle.AGGRESSIVE, CombatStyle.RUSHER) and weapon in (Weapon.ROCKET_LAUNCHER, Weapon.LIGHTNING):
            score += 15.0
        if dist < CLOSE_RANGE and weapon == Weapon.SHOTGUN:
            score += 25.0
        score += self.weapon_bias.get(int(weapon), 0.0) * 100.0
        return score

    def available_weapons(self, me: SelfState) -> List[int]:
        weapons = [int(Weapon.GAUNTLET)]
        for weapon, ammo in sorted(me.ammo.items()):
            if ammo > 0 and WeaponDatabase.can_fire(weapon, me.ammo) and weapon not in weapons:
                weapons.append(int(weapon))
        return weapons

    def select_weapon(self, me: SelfState, dist: Optional[float]) -> int:
        candidates = self.available_weapons(me)
        if dist is None:
            if WeaponDatabase.can_fire(me.weapon, me.ammo):
                return me.weapon
            return max(candidates, key=lambda w: (WeaponDatabase.dps(w), -w))
        return max(candidates, key=lambda w: (self.weapon_score(w, dist), -w))

    # Aim

    def predict_target(self, target: PerceivedEntity, seconds: float) -> Vec3:
        seconds = min(seconds, MAX_PREDICTION_S)
        predicted = mad(target.predicted_position, seconds, target.velocity)
        if not target.on_ground:
            predicted = add(predicted, (0.0, 0.0, -0.5 * GRAVITY * seconds * seconds))
        return predicted

    def aim_point(self, me: SelfState, target: PerceivedEntity, weapon: int) -> Tuple[Vec3, float]:
        """Returns (aim position, spread magnitude per axis)."""
        aim = target.predicted_position
        stats = WeaponDatabase.get(weapon)
        if self.prediction and stats is not None and stats.is_projectile:
            travel = distance(me.eye, aim) / stats.projectile_speed
            lead = min(travel, MAX_PREDICTION_S) * self.params.prediction_factor
            aim = self.predict_target(target, lead)
            if weapon == Weapon.GRENADE_LAUNCHER:
                aim = add(aim, (0.0, 0.0, GRENADE_ARC))

        spread = (1.0 - self.skill.aim_accuracy) * AIM_SPREAD_SCALE
        if spread > 0:
            offset = tuple(clamp(self.rng.gauss(0.0, spread / 2.0), -spread, spread) for _ in range(3))
            aim = add(aim, offset)
        return aim, spread

    # Confidence and firing

    def _confidence(self, me: SelfState, frame: PerceptionFrame, primary: Optional[ThreatInfo],
                    weapon: int, now_ms: int) -> float:
        if primary is None:
            return 0.0
        health_factor = clamp((me.health + me.armor / 2.0) / 100.0, 0.0, 1.0)
        stats = WeaponDatabase.get(weapon)
        range_fit = 0.0
        if stats is not None and stats.optimal_range > 0:
            range_fit = clamp(1.0 - abs(primary.distance - stats.optimal_range) / stats.optimal_range, 0.0, 1.0)
        threat_factor = 1.0 - clamp(primary.score / 100.0, 0.0, 1.0)

        confidence = 0.3 + 0.3 * health_factor + 0.2 * range_fit + 0.2 * threat_factor

        first = self.first_seen.get(primary.entity_id)
        if first is not None:
            reaction_ms = max(self.skill.reaction_delay_ms, 1.0)
            elapsed_ms = now_ms - first
            confidence *= 0.5 + 0.5 * min(1.0, elapsed_ms / reaction_ms)
        elif not primary.visible:
            confidence *= 0.5

        confidence += (self.aggression - 0.5) * 0.2
        confidence += self.learning_bias
        return clamp(confidence, 0.0, 1.0)

    def weapon_ready(self, me: SelfState, weapon: int) -> bool:
        return me.weapon == weapon and WeaponDatabase.can_fire(weapon, me.ammo)

    def has_line_of_sight(self, engine: GameEngine, me: SelfState, point: Vec3) -> bool:
        trace = sanitize_trace(engine.trace(me.eye, ORIGIN, ORIGIN, point, self.client_id, MASK_SOLID), me.eye)
        return trace.fraction >= MIN_TRACE_FRACTION

    def _should_fire(self, engine: GameEngine, me: SelfState, decision: CombatDecision,
                     primary: Optional[ThreatInfo], now_ms: int) -> bool:
        if decision.aim_position is None or primary is None:
            return False
        if decision.confidence <= FIRE_CONFIDENCE:
            return False
        if not self.weapon_ready(me, decision.desired_weapon):
            return False
        if decision.state == CombatState.SUPPRESSING and not primary.visible:
            if self.last_seen_ms is None or now_ms - self.last_seen_ms > self.params.burst_duration * 1000:
                return False
        elif not primary.visible:
            return False
        return self.has_line_of_sight(engine, me, decision.aim_position)

    # Destinations

    def _destination(self, engine: GameEngine, state: CombatState, me: SelfState, frame: PerceptionFrame,
                     primary: Optional[ThreatInfo], find_cover: Optional[CoverFinder]) -> Optional[Vec3]:
        position = me.position
        if state == CombatState.RETREATING:
            threat_pos = primary.position if primary is not None else self.last_known_position
            if threat_pos is not None and find_cover is not None:
                cover = find_cover(position, threat_pos)
                if cover is not None:
                    return cover
            escape = frame.spatial.escape_direction
            if escape == ORIGIN and threat_pos is not None:
                escape = normalize(flatten(sub(position, threat_pos)))
            if escape == ORIGIN:
                return None
            return mad(position, RETREAT_DISTANCE, escape)

        if primary is None:
            if state == CombatState.SEARCHING:
                return self.last_known_position
            return None

        if state == CombatState.PURSUING:
            target = frame.get(primary.entity_id)
            return target.predicted_position if target is not None else primary.position
        if state == CombatState.FLANKING:
            return self.flank_position(engine, position, primary.position)
        if state == CombatState.EVADING:
            return mad(position, EVADE_DISTANCE, normalize(flatten(sub(position, primary.position))))
        if state == CombatState.SEARCHING:
            return self.last_known_position
        if state == CombatState.ENGAGING:
            optimal = self.params.optimal_range
            if primary.distance > optimal * 1.2 or primary.distance < optimal * 0.8:
                back = normalize(flatten(sub(position, primary.position)))
                return mad(primary.position, optimal, back)
        return None

    def flank_position(self, engine: GameEngine, position: Vec3, target: Vec3) -> Vec3:
        """300 units from the target, 90 degrees off the current bearing,
        on the side with more clearance."""
        bearing = normalize(flatten(sub(position, target)))
        if bearing == ORIGIN:
            bearing = (1.0, 0.0, 0.0)
        best, best_fraction = None, -1.0
        for angle in (90.0, -90.0):
            candidate = mad(target, FLANK_DISTANCE, rotate_z(bearing, angle))
            start = add(target, (0.0, 0.0, 16.0))
            end = add(candidate, (0.0, 0.0, 16.0))
            fraction = sanitize_trace(engine.trace(start, ORIGIN, ORIGIN, end, self.client_id, MASK_SOLID), start).fraction
            if fraction > best_fraction:
                best, best_fraction = candidate, fraction
        return best
