"""Perception: a filtered, temporally smoothed world view for one bot.

Each update builds a PerceptionFrame from the engine's entity snapshots:

1. Self state from the bot's own record.
2. Vision: range and field-of-view filter (primary cone plus a 160 degree
   peripheral cone admitted by a Bernoulli draw), one line-of-sight ray per
   candidate, visibility confidence from distance, motion, size and light.
3. Memory: entities not seen this tick decay and are extrapolated from
   their last velocity until forgotten.
4. Hearing (half rate): sounds derived from nearby players' state.
5. Damage: health drops since the last update, with a guessed attacker.
6. Spatial awareness: eight horizontal rays around the bot.

Perception only reads from the engine; it never raises on bad entities,
it skips them.
"""

import logging
import random
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Deque, Dict, List, Mapping, Optional

from .engine_interface import (
    EntityKind, EntitySnapshot, GameEngine, ItemType,
    MASK_SOLID, MASK_WATER, is_enemy_team, sanitize_contents, sanitize_trace,
)
from .vector_math import (
    Vec3, ORIGIN, add, sub, mad, dot, length, length_2d, distance,
    normalize, angle_vectors, angle_between, average, rotate_z, clamp,
)
from .weapons import WeaponDatabase

logger = logging.getLogger(__name__)

MAX_VISIBLE_ENTITIES = 32
MAX_AUDIBLE_SOUNDS = 16
MAX_DAMAGE_EVENTS = 8
MAX_HEARING_RANGE = 1024.0
MAX_ENGAGE_RANGE = 2000.0

EYE_HEIGHT = 56.0
PERIPHERAL_FOV = 160.0
MIN_TRACE_FRACTION = 0.95

MOTION_THRESHOLD = 50.0
MOTION_BONUS = 1.2
ASSUMED_LIGHTING = 0.8
KIND_SIZE_FACTOR = {
    EntityKind.PLAYER: 1.0,
    EntityKind.ITEM: 0.7,
    EntityKind.PROJECTILE: 0.5,
    EntityKind.MISSILE: 0.5,
    EntityKind.OTHER: 0.5,
}

MEMORY_MIN_CONFIDENCE = 0.1
MEMORY_MAX_AGE_MS = 10000
MEMORY_EXTRAPOLATE_CONFIDENCE = 0.3
PREDICTION_HORIZON_S = 0.1
GRAVITY = 800.0

SOUND_MEMORY_MS = 5000
WALL_MUFFLE = 0.3
MIN_SOUND_VOLUME = 0.1
DAMAGE_WINDOW_MS = 5000

SPATIAL_RAYS = 8
SPATIAL_RAY_RANGE = 200.0
CORNERED_RATIO = 0.3
HEIGHT_ADVANTAGE = 50.0


class SoundType(Enum):
    WEAPON_FIRE = "weapon_fire"
    JUMP = "jump"
    FOOTSTEP = "footstep"
    AMBIENT = "ambient"


@dataclass
class SoundEvent:
    sound_type: SoundType
    origin: Vec3
    volume: float
    timestamp: int
    source_id: int


@dataclass
class DamageEvent:
    amount: int
    attacker_id: Optional[int]  # heuristic: highest-threat visible enemy
    direction: Vec3
    timestamp: int


@dataclass
class SelfState:
    client_id: int
    position: Vec3
    velocity: Vec3
    view_angles: Vec3
    health: int
    armor: int
    weapon: int
    team: int
    ammo: Dict[int, int] = field(default_factory=dict)
    on_ground: bool = True
    in_water: bool = False
    in_air: bool = False

    @property
    def eye(self) -> Vec3:
        return add(self.position, (0.0, 0.0, EYE_HEIGHT))

    @property
    def speed(self) -> float:
        return length_2d(self.velocity)


@dataclass
class SpatialAwareness:
    nearest_wall_distance: float = SPATIAL_RAY_RANGE
    open_space_ratio: float = 1.0
    height_advantage: bool = False
    cornered: bool = False
    escape_direction: Vec3 = ORIGIN


@dataclass
class PerceivedEntity:
    entity_id: int
    kind: EntityKind
    position: Vec3
    velocity: Vec3
    distance: float
    visibility_confidence: float
    first_seen: int
    last_seen: int
    is_enemy: bool = False
    is_ally: bool = False
    visible: bool = True  # seen this tick (as opposed to remembered)
    threat_score: float = 0.0
    predicted_position: Vec3 = ORIGIN
    impact_time: Optional[float] = None
    health: int = 0
    armor: int = 0
    weapon: int = 0
    team: int = 0
    item_type: Optional[ItemType] = None
    owner: int = -1
    on_ground: bool = True
    is_firing: bool = False


@dataclass
class RayRecord:
    start: Vec3
    end: Vec3
    fraction: float
    purpose: str
    entity_id: Optional[int] = None


@dataclass
class PerceptionFrame:
    timestamp: int
    self_state: Optional[SelfState] = None
    entities: List[PerceivedEntity] = field(default_factory=list)
    sounds: List[SoundEvent] = field(default_factory=list)
    damage_events: List[DamageEvent] = field(default_factory=list)
    damage_rate: float = 0.0
    spatial: SpatialAwareness = field(default_factory=SpatialAwareness)
    ray_log: List[RayRecord] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.self_state is None

    def get(self, entity_id: int) -> Optional[PerceivedEntity]:
        for ent in self.entities:
            if ent.entity_id == entity_id:
                return ent
        return None

    def enemies(self) -> List[PerceivedEntity]:
        return [e for e in self.entities if e.is_enemy and e.kind == EntityKind.PLAYER]

    def visible_enemies(self) -> List[PerceivedEntity]:
        return [e for e in self.enemies() if e.visible]

    def allies(self) -> List[PerceivedEntity]:
        return [e for e in self.entities if e.is_ally]

    def items(self) -> List[PerceivedEntity]:
        return [e for e in self.entities if e.kind == EntityKind.ITEM]

    def projectiles(self) -> List[PerceivedEntity]:
        return [e for e in self.entities if e.kind in (EntityKind.MISSILE, EntityKind.PROJECTILE)]

    def traced_entity_ids(self) -> List[int]:
        return [r.entity_id for r in self.ray_log if r.purpose == "vision" and r.entity_id is not None]


class Perception:
    """Builds PerceptionFrames for one bot."""

    def __init__(
        self,
        client_id: int,
        max_vision_range: float = 2000.0,
        fov_angle: float = 120.0,
        peripheral_sensitivity: float = 0.5,
        memory_decay_rate: float = 0.1,
        think_period_ms: int = 50,
        seed: int = 0,
    ):
        self.client_id = client_id
        self.max_vision_range = max_vision_range
        self.fov_angle = fov_angle
        self.peripheral_sensitivity = peripheral_sensitivity
        self.memory_decay_rate = memory_decay_rate
        self.think_period_ms = think_period_ms
        self.seed = seed

        self.memory: Dict[int, PerceivedEntity] = {}
        self.sounds: List[SoundEvent] = []
        self.damage_events: Deque[DamageEvent] = deque(maxlen=MAX_DAMAGE_EVENTS)
        self.last_health: Optional[int] = None
        self.last_update_ms: Optional[int] = None
        self.last_hearing_ms: Optional[int] = None
        self.frame = PerceptionFrame(timestamp=0)

    def configure(self, max_vision_range: float, fov_angle: float, peripheral_sensitivity: float,
                  memory_decay_rate: float, think_period_ms: int) -> None:
        self.max_vision_range = max_vision_range
        self.fov_angle = fov_angle
        self.peripheral_sensitivity = peripheral_sensitivity
        self.memory_decay_rate = memory_decay_rate
        self.think_period_ms = think_period_ms

    def reset(self) -> None:
        self.memory.clear()
        self.sounds.clear()
        self.damage_events.clear()
        self.last_health = None
        self.last_update_ms = None
        self.last_hearing_ms = None

    # Update

    def update(self, engine: GameEngine, world: Mapping[int, EntitySnapshot], now_ms: int) -> PerceptionFrame:
        own = world.get(self.client_id) or engine.entity_snapshot(self.client_id)
        if own is None or not own.is_valid():
            self.frame = PerceptionFrame(timestamp=now_ms)
            return self.frame

        ray_log: List[RayRecord] = []
        self_state = self._build_self_state(engine, own)
        dt = 0.0 if self.last_update_ms is None else max(0.0, (now_ms - self.last_update_ms) / 1000.0)

        seen = self._update_vision(engine, world, self_state, now_ms, ray_log)
        self._update_memory(seen, self_state, now_ms, dt)

        entities = [replace(e) for e in sorted(self.memory.values(), key=lambda e: (-e.threat_score, e.entity_id))]
        entities = entities[:MAX_VISIBLE_ENTITIES]

        if self.last_hearing_ms is None or now_ms - self.last_hearing_ms >= 2 * self.think_period_ms:
            self._update_hearing(engine, world, self_state, now_ms)
            self.last_hearing_ms = now_ms
        self.sounds = [s for s in self.sounds if now_ms - s.timestamp <= SOUND_MEMORY_MS]

        self._update_damage(self_state, entities, now_ms)
        damage_rate = sum(
            e.amount for e in self.damage_events if now_ms - e.timestamp <= DAMAGE_WINDOW_MS
        ) / (DAMAGE_WINDOW_MS / 1000.0)

        spatial = self._update_spatial(engine, self_state, entities, ray_log)

        self.last_update_ms = now_ms
        self.frame = PerceptionFrame(
            timestamp=now_ms,
            self_state=self_state,
            entities=entities,
            sounds=list(self.sounds),
            damage_events=list(self.damage_events),
            damage_rate=damage_rate,
            spatial=spatial,
            ray_log=ray_log,
        )
        return self.frame

    def _build_self_state(self, engine: GameEngine, own: EntitySnapshot) -> SelfState:
        contents = sanitize_contents(engine.point_contents(own.origin, self.client_id))
        in_water = bool(contents & MASK_WATER)
        return SelfState(
            client_id=self.client_id,
            position=own.origin,
            velocity=own.velocity,
            view_angles=own.angles,
            health=own.health,
            armor=own.armor,
            weapon=own.weapon,
            team=own.team,
            ammo=dict(own.ammo),
            on_ground=own.on_ground,
            in_water=in_water,
            in_air=not own.on_ground and not in_water,
        )

    def _peripheral_draw(self, entity_id: int, now_ms: int) -> float:
        # Keyed by tick and entity so repeated updates agree
        return random.Random(f"{self.seed}:{now_ms}:{entity_id}").random()

    def _in_view(self, forward: Vec3, direction: Vec3, entity_id: int, now_ms: int) -> bool:
        angle = angle_between(forward, direction)
        if angle <= self.fov_angle / 2.0:
            return True
        if angle <= PERIPHERAL_FOV / 2.0:
            return self._peripheral_draw(entity_id, now_ms) < self.peripheral_sensitivity
        return False

    def _update_vision(self, engine: GameEngine, world: Mapping[int, EntitySnapshot],
                       me: SelfState, now_ms: int, ray_log: List[RayRecord]) -> Dict[int, PerceivedEntity]:
        forward, _, _ = angle_vectors(me.view_angles)
        eye = me.eye
        seen: Dict[int, PerceivedEntity] = {}

        for entity_id in sorted(world):
            ent = world[entity_id]
            if entity_id == self.client_id or ent is None:
                continue
            try:
                if not ent.is_valid() or ent.kind == EntityKind.WORLD or not ent.alive:
                    continue
                if ent.kind in (EntityKind.MISSILE, EntityKind.PROJECTILE) and ent.owner == self.client_id:
                    continue
                to_entity = sub(ent.origin, eye)
                dist = length(to_entity)
                if dist > self.max_vision_range:
                    continue
                if dist > 1e-6 and not self._in_view(forward, to_entity, entity_id, now_ms):
                    continue

                trace = sanitize_trace(
                    engine.trace(eye, ORIGIN, ORIGIN, ent.origin, self.client_id, MASK_SOLID), eye
                )
                ray_log.append(RayRecord(eye, ent.origin, trace.fraction, "vision", entity_id))
                if trace.fraction < MIN_TRACE_FRACTION:
                    continue

                seen[entity_id] = self._perceive(ent, me, world, dist, now_ms)
            except (AttributeError, TypeError, ValueError) as e:
                logger.debug(f"Bot {self.client_id}: skipping malformed entity {entity_id}: {e}")
        return seen

    def _perceive(self, ent: EntitySnapshot, me: SelfState, world: Mapping[int, EntitySnapshot],
                  dist: float, now_ms: int) -> PerceivedEntity:
        confidence = max(0.0, 1.0 - dist / self.max_vision_range)
        if length(ent.velocity) > MOTION_THRESHOLD:
            confidence *= MOTION_BONUS
        confidence *= KIND_SIZE_FACTOR.get(ent.kind, 0.5) * ASSUMED_LIGHTING
        confidence = clamp(confidence, 0.01, 1.0)

        is_enemy = is_ally = False
        if ent.kind == EntityKind.PLAYER:
            is_enemy = is_enemy_team(me.team, ent.team)
            is_ally = not is_enemy and ent.team == me.team
        elif ent.kind in (EntityKind.MISSILE, EntityKind.PROJECTILE):
            owner = world.get(ent.owner)
            is_enemy = owner is None or is_enemy_team(me.team, owner.team)

        previous = self.memory.get(ent.entity_id)
        perceived = PerceivedEntity(
            entity_id=ent.entity_id,
            kind=ent.kind,
            position=ent.origin,
            velocity=ent.velocity,
            distance=distance(ent.origin, me.position),
            visibility_confidence=confidence,
            first_seen=previous.first_seen if previous is not None else now_ms,
            last_seen=now_ms,
            is_enemy=is_enemy,
            is_ally=is_ally,
            visible=True,
            health=ent.health,
            armor=ent.armor,
            weapon=ent.weapon,
            team=ent.team,
            item_type=ent.item_type,
            owner=ent.owner,
            on_ground=ent.on_ground,
            is_firing=ent.is_firing,
        )
        perceived.predicted_position = predict_position(perceived, PREDICTION_HORIZON_S)
        if perceived.kind in (EntityKind.MISSILE, EntityKind.PROJECTILE):
            perceived.impact_time = projected_impact_time(perceived, me.position)
        perceived.threat_score = preliminary_threat(perceived, self.max_vision_range)
        return perceived

    def _update_memory(self, seen: Dict[int, PerceivedEntity], me: SelfState, now_ms: int, dt: float) -> None:
        for entity_id in list(self.memory):
            if entity_id in seen:
                continue
            ent = self.memory[entity_id]
            ent.visible = False
            ent.distance = distance(ent.position, me.position)
            ent.visibility_confidence = max(0.0, ent.visibility_confidence - self.memory_decay_rate * dt)
            age = now_ms - ent.last_seen
            if ent.visibility_confidence < MEMORY_MIN_CONFIDENCE or age > MEMORY_MAX_AGE_MS:
                del self.memory[entity_id]
                continue
            if ent.visibility_confidence > MEMORY_EXTRAPOLATE_CONFIDENCE:
                ent.predicted_position = mad(ent.position, age / 1000.0, ent.velocity)
            ent.threat_score = preliminary_threat(ent, self.max_vision_range) * ent.visibility_confidence
        self.memory.update(seen)

    # Hearing

    def _update_hearing(self, engine: GameEngine, world: Mapping[int, EntitySnapshot],
                        me: SelfState, now_ms: int) -> None:
        for entity_id in sorted(world):
            ent = world[entity_id]
            if entity_id == self.client_id or ent is None or ent.kind != EntityKind.PLAYER:
                continue
            if not ent.is_valid() or not ent.alive:
                continue
            dist = distance(ent.origin, me.position)
            if dist > MAX_HEARING_RANGE:
                continue

            if ent.is_firing:
                sound_type = SoundType.WEAPON_FIRE
                volume = 1.0 if WeaponDatabase.is_heavy(ent.weapon) else 0.6
            elif not ent.on_ground and ent.velocity[2] > 0:
                sound_type, volume = SoundType.JUMP, 0.3
            elif length_2d(ent.velocity) > 300.0:
                sound_type, volume = SoundType.FOOTSTEP, 0.2
            else:
                sound_type, volume = SoundType.AMBIENT, 0.1

            volume *= 1.0 - dist / MAX_HEARING_RANGE
            source_ear = add(ent.origin, (0.0, 0.0, EYE_HEIGHT))
            trace = sanitize_trace(
                engine.trace(me.eye, ORIGIN, ORIGIN, source_ear, self.client_id, MASK_SOLID), me.eye
            )
            if trace.fraction < MIN_TRACE_FRACTION:
                volume *= WALL_MUFFLE
            if volume < MIN_SOUND_VOLUME:
                continue
            self.sounds.append(SoundEvent(sound_type, ent.origin, volume, now_ms, entity_id))

        if len(self.sounds) > MAX_AUDIBLE_SOUNDS:
            self.sounds = self.sounds[-MAX_AUDIBLE_SOUNDS:]

    # Damage

    def _update_damage(self, me: SelfState, entities: List[PerceivedEntity], now_ms: int) -> None:
        if self.last_health is not None and me.health < self.last_health:
            attacker = None
            visible = [e for e in entities if e.visible and e.is_enemy and e.kind == EntityKind.PLAYER]
            if visible:
                attacker = max(visible, key=lambda e: (e.threat_score, -e.entity_id))
            direction = normalize(sub(attacker.position, me.position)) if attacker else ORIGIN
            self.damage_events.append(DamageEvent(
                amount=self.last_health - me.health,
                attacker_id=attacker.entity_id if attacker else None,
                direction=direction,
                timestamp=now_ms,
            ))
        self.last_health = me.health

    # Spatial

    def _update_spatial(self, engine: GameEngine, me: SelfState, entities: List[PerceivedEntity],
                        ray_log: List[RayRecord]) -> SpatialAwareness:
        start = add(me.position, (0.0, 0.0, 16.0))
        fractions: List[float] = []
        directions: List[Vec3] = []
        for i in range(SPATIAL_RAYS):
            direction = rotate_z((1.0, 0.0, 0.0), i * 360.0 / SPATIAL_RAYS)
            end = mad(start, SPATIAL_RAY_RANGE, direction)
            trace = sanitize_trace(engine.trace(start, ORIGIN, ORIGIN, end, self.client_id, MASK_SOLID), start)
            ray_log.append(RayRecord(start, end, trace.fraction, "spatial"))
            fractions.append(trace.fraction)
            directions.append(direction)

        ratio = sum(fractions) / len(fractions)
        enemies = [e for e in entities if e.visible and e.is_enemy and e.kind == EntityKind.PLAYER]
        height_advantage = bool(enemies) and all(
            me.position[2] > e.position[2] + HEIGHT_ADVANTAGE for e in enemies
        )
        threat_dir = ORIGIN
        if enemies:
            threat_dir = normalize(sub(average(e.position for e in enemies), me.position))

        best_dir, best_score = ORIGIN, float("-inf")
        for frac, direction in zip(fractions, directions):
            score = frac * 500.0 - dot(direction, threat_dir) * 200.0
            if score > best_score:
                best_dir, best_score = direction, score

        return SpatialAwareness(
            nearest_wall_distance=min(fractions) * SPATIAL_RAY_RANGE,
            open_space_ratio=ratio,
            height_advantage=height_advantage,
            cornered=ratio < CORNERED_RATIO,
            escape_direction=best_dir,
        )


def predict_position(ent: PerceivedEntity, seconds: float) -> Vec3:
    """Ballistic when airborne, linear otherwise."""
    predicted = mad(ent.position, seconds, ent.velocity)
    if not ent.on_ground and ent.kind == EntityKind.PLAYER:
        predicted = add(predicted, (0.0, 0.0, -0.5 * GRAVITY * seconds * seconds))
    return predicted


def projected_impact_time(ent: PerceivedEntity, target: Vec3, hit_radius: float = 64.0) -> Optional[float]:
    """Time of closest approach to target when it passes within hit_radius."""
    speed_sq = dot(ent.velocity, ent.velocity)
    if speed_sq < 1e-6:
        return None
    rel = sub(target, ent.position)
    t = dot(rel, ent.velocity) / speed_sq
    if t <= 0:
        return None
    closest = mad(ent.position, t, ent.velocity)
    if distance(closest, target) > hit_radius:
        return None
    return t


def preliminary_threat(ent: PerceivedEntity, max_range: float) -> float:
    """Cheap ordering score; the threat model does the real ranking."""
    if ent.kind in (EntityKind.MISSILE, EntityKind.PROJECTILE):
        if not ent.is_enemy or ent.impact_time is None:
            return 0.0
        return 100.0 / max(ent.impact_time, 0.1)
    if ent.kind != EntityKind.PLAYER or not ent.is_enemy:
        return 0.0
    score = 30.0 * max(0.0, 1.0 - ent.distance / max(max_range, 1.0))
    score += 25.0 * WeaponDatabase.dps(ent.weapon) / 200.0
    score += 20.0 * (1.0 - min(200.0, ent.health + ent.armor / 2.0) / 200.0)
    if ent.visible:
        score += 15.0
    return score
