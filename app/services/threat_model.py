"""Threat Model: score and rank perceived enemies.

Score = 30*(1 - d/MAX_ENGAGE_RANGE) + 25*(dps/200) + 20*(1 - (hp + armor/2)/200)
      + 15*visible + 20*can_hit_me + 10*i_can_hit + recent_damage_from_enemy/10

Levels: <20 Low, <40 Medium, <60 High, >=60 Critical.

Incoming missiles are tracked separately as ProjectileThreats so the
combat layer can dodge them.
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, List, Optional

from .perception import PerceptionFrame, PerceivedEntity, MAX_ENGAGE_RANGE
from .vector_math import Vec3, ORIGIN, sub, mad, dot, length, normalize, average
from .weapons import WeaponDatabase

logger = logging.getLogger(__name__)

MAX_THREATS = 16
RECENT_DAMAGE_MS = 5000
PROJECTILE_HEADING_DOT = 0.7
PROJECTILE_HORIZON_S = 2.0
FLANK_DOT = -0.3
OUTNUMBERED_COUNT = 2


class ThreatLevel(IntEnum):
    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


def threat_level(score: float) -> ThreatLevel:
    if score <= 0:
        return ThreatLevel.NONE
    if score < 20:
        return ThreatLevel.LOW
    if score < 40:
        return ThreatLevel.MEDIUM
    if score < 60:
        return ThreatLevel.HIGH
    return ThreatLevel.CRITICAL


@dataclass
class ThreatInfo:
    entity_id: int
    score: float
    level: ThreatLevel
    position: Vec3
    direction: Vec3  # unit vector from self toward the threat
    distance: float
    can_hit_me: bool
    i_can_hit: bool
    visible: bool
    weapon: int = 0
    damage_dealt_to_me: float = 0.0
    damage_dealt_by_me: float = 0.0
    time_visible_s: float = 0.0


@dataclass
class ProjectileThreat:
    entity_id: int
    position: Vec3
    velocity: Vec3
    time_to_impact: float
    predicted_impact: Vec3
    threat: float
    weapon: int = 0

    @property
    def vertical_component(self) -> float:
        """Vertical share of the incoming direction (positive = rising)."""
        return normalize(self.velocity)[2]


@dataclass
class _EnemyRecord:
    damage_dealt_to_me: float = 0.0
    damage_dealt_by_me: float = 0.0
    time_visible_s: float = 0.0
    last_health: Optional[int] = None


class ThreatModel:
    """Ranked threat list plus derived situation flags for one bot."""

    def __init__(self):
        self.threats: List[ThreatInfo] = []
        self.projectile_threats: List[ProjectileThreat] = []
        self.under_fire = False
        self.outnumbered = False
        self.flanked = False
        self.centroid: Vec3 = ORIGIN
        self._records: Dict[int, _EnemyRecord] = {}
        self._last_damage_ts: int = -1
        self._last_update_ms: Optional[int] = None

    def reset(self) -> None:
        self.__init__()

    @property
    def primary(self) -> Optional[ThreatInfo]:
        return self.threats[0] if self.threats else None

    @property
    def secondary(self) -> Optional[ThreatInfo]:
        return self.threats[1] if len(self.threats) > 1 else None

    @property
    def imminent_projectile(self) -> Optional[ProjectileThreat]:
        return self.projectile_threats[0] if self.projectile_threats else None

    def get(self, entity_id: int) -> Optional[ThreatInfo]:
        for threat in self.threats:
            if threat.entity_id == entity_id:
                return threat
        return None

    def update(self, frame: PerceptionFrame, now_ms: int, fired_at: Optional[int] = None) -> None:
        """Re-rank threats from the latest perception frame.

        ``fired_at`` is the entity the bot shot at on its previous think,
        used to attribute observed health drops to the bot.
        """
        me = frame.self_state
        if me is None:
            self.threats = []
            self.projectile_threats = []
            self.under_fire = self.outnumbered = self.flanked = False
            self.centroid = ORIGIN
            return

        dt = 0.0 if self._last_update_ms is None else max(0.0, (now_ms - self._last_update_ms) / 1000.0)
        self._last_update_ms = now_ms

        for event in frame.damage_events:
            if event.timestamp > self._last_damage_ts and event.attacker_id is not None:
                self._records.setdefault(event.attacker_id, _EnemyRecord()).damage_dealt_to_me += event.amount
        if frame.damage_events:
            self._last_damage_ts = max(self._last_damage_ts, max(e.timestamp for e in frame.damage_events))

        my_range = WeaponDatabase.optimal_range(me.weapon)
        threats: List[ThreatInfo] = []
        for ent in frame.enemies():
            record = self._records.setdefault(ent.entity_id, _EnemyRecord())
            if ent.visible:
                record.time_visible_s += dt
                if record.last_health is not None and ent.health < record.last_health and fired_at == ent.entity_id:
                    record.damage_dealt_by_me += record.last_health - ent.health
                record.last_health = ent.health
            threats.append(self._score(ent, me.position, my_range, frame, now_ms, record))

        threats.sort(key=lambda t: (-t.score, t.entity_id))
        self.threats = threats[:MAX_THREATS]
        self.projectile_threats = self._projectiles(frame)

        self.under_fire = any(t.can_hit_me and t.visible for t in self.threats)
        self.outnumbered = len(self.threats) > OUTNUMBERED_COUNT
        self.flanked = (
            len(self.threats) >= 2
            and dot(self.threats[0].direction, self.threats[1].direction) < FLANK_DOT
        )
        self.centroid = average(t.position for t in self.threats) if self.threats else ORIGIN

        known = {e.entity_id for e in frame.enemies()}
        for entity_id in list(self._records):
            if entity_id not in known and self._records[entity_id].damage_dealt_to_me == 0:
                del self._records[entity_id]

    def _score(self, ent: PerceivedEntity, my_pos: Vec3, my_range: float, frame: PerceptionFrame,
               now_ms: int, record: _EnemyRecord) -> ThreatInfo:
        offset = sub(ent.position, my_pos)
        dist = length(offset)
        enemy_range = WeaponDatabase.optimal_range(ent.weapon)
        can_hit_me = ent.visible and enemy_range > 0 and dist <= enemy_range
        i_can_hit = ent.visible and my_range > 0 and dist <= my_range
        recent = sum(
            e.amount for e in frame.damage_events
            if e.attacker_id == ent.entity_id and now_ms - e.timestamp <= RECENT_DAMAGE_MS
        )

        score = 30.0 * max(0.0, 1.0 - dist / MAX_ENGAGE_RANGE)
        score += 25.0 * WeaponDatabase.dps(ent.weapon) / 200.0
        score += 20.0 * (1.0 - min(200.0, ent.health + ent.armor / 2.0) / 200.0)
        score += 15.0 if ent.visible else 0.0
        score += 20.0 if can_hit_me else 0.0
        score += 10.0 if i_can_hit else 0.0
        score += recent / 10.0
        if not ent.visible:
            score *= ent.visibility_confidence

        return ThreatInfo(
            entity_id=ent.entity_id,
            score=score,
            level=threat_level(score),
            position=ent.position,
            direction=normalize(offset),
            distance=dist,
            can_hit_me=can_hit_me,
            i_can_hit=i_can_hit,
            visible=ent.visible,
            weapon=ent.weapon,
            damage_dealt_to_me=record.damage_dealt_to_me,
            damage_dealt_by_me=record.damage_dealt_by_me,
            time_visible_s=record.time_visible_s,
        )

    def _projectiles(self, frame: PerceptionFrame) -> List[ProjectileThreat]:
        me = frame.self_state
        result: List[ProjectileThreat] = []
        for ent in frame.projectiles():
            if not ent.is_enemy or not ent.visible:
                continue
            speed = length(ent.velocity)
            if speed < 1.0:
                continue
            to_me = sub(me.position, ent.position)
            heading = dot(normalize(ent.velocity), normalize(to_me))
            if heading <= PROJECTILE_HEADING_DOT:
                continue
            t = length(to_me) / speed
            if t >= PROJECTILE_HORIZON_S:
                continue
            result.append(ProjectileThreat(
                entity_id=ent.entity_id,
                position=ent.position,
                velocity=ent.velocity,
                time_to_impact=t,
                predicted_impact=mad(ent.position, t, ent.velocity),
                threat=100.0 / max(t, 0.1),
                weapon=ent.weapon,
            ))
        result.sort(key=lambda p: (p.time_to_impact, p.entity_id))
        return result

    def summary(self) -> Dict:
        return {
            "under_fire": self.under_fire,
            "outnumbered": self.outnumbered,
            "flanked": self.flanked,
            "centroid": list(self.centroid),
            "threats": [
                {"entity_id": t.entity_id, "score": round(t.score, 2), "level": t.level.name,
                 "distance": round(t.distance, 1), "visible": t.visible}
                for t in self.threats
            ],
            "projectiles": [
                {"entity_id": p.entity_id, "time_to_impact": round(p.time_to_impact, 3)}
                for p in self.projectile_threats
            ],
        }
