"""Per-bot skill profile and dynamic difficulty adaptation.

Each bot carries a SkillProfile: current and target values for the skill
dimensions combat and movement read every tick. Targets drift with the
bot's recent kill/death record against its opponent; current values chase
targets at a fixed rate so a large adjustment settles over about a second
of thinking instead of snapping.

=== ADAPTATION ===

Recent K/D < 0.5  -> targets move up   (aim +0.05, reaction -0.02, speed +0.05)
Recent K/D > 2.0  -> targets move down (same magnitudes)

The opponent's experience modulates the step:
- frustration (bot dominating) doubles downward steps
- boredom (bot dominated, falling trend) doubles upward steps
"""

import json
import logging
import os
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Deque, Dict, Optional, Tuple

from .vector_math import clamp

logger = logging.getLogger(__name__)

SKILL_RANGES: Dict[str, Tuple[float, float]] = {
    "aim_accuracy": (0.05, 1.0),
    "reaction_time": (0.05, 1.0),  # seconds
    "aggression": (0.0, 1.0),
    "tactical_awareness": (0.0, 1.0),
    "movement_prediction": (0.0, 1.0),
    "movement_speed_multiplier": (0.5, 1.5),
}

DIFFICULTY_NAMES = [
    (1.0, "Novice"),
    (2.0, "Easy"),
    (3.0, "Normal"),
    (4.0, "Hard"),
    (5.0, "Expert"),
    (7.0, "Master"),
    (9.0, "Legendary"),
]

SKILL_WINDOW_SIZE = 50


@dataclass
class SkillValues:
    aim_accuracy: float = 0.5
    reaction_time: float = 0.3
    aggression: float = 0.5
    tactical_awareness: float = 0.5
    movement_prediction: float = 0.5
    movement_speed_multiplier: float = 1.0

    def clamped(self) -> "SkillValues":
        return SkillValues(**{
            name: clamp(getattr(self, name), low, high)
            for name, (low, high) in SKILL_RANGES.items()
        })

    def in_range(self) -> bool:
        return all(
            low <= getattr(self, name) <= high
            for name, (low, high) in SKILL_RANGES.items()
        )

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, float]) -> "SkillValues":
        known = {k: float(v) for k, v in data.items() if k in SKILL_RANGES}
        return cls(**known).clamped()


@dataclass
class PerformanceMetric:
    """Sliding window of one performance measurement."""
    samples: Deque[float] = field(default_factory=lambda: deque(maxlen=SKILL_WINDOW_SIZE))

    def add(self, value: float) -> None:
        self.samples.append(value)

    @property
    def average(self) -> float:
        if not self.samples:
            return 0.0
        return sum(self.samples) / len(self.samples)

    @property
    def variance(self) -> float:
        if len(self.samples) < 2:
            return 0.0
        mean = self.average
        return sum((s - mean) ** 2 for s in self.samples) / len(self.samples)

    @property
    def trend(self) -> float:
        """Second-half mean minus first-half mean, clamped to [-1, 1]."""
        n = len(self.samples)
        if n < 4:
            return 0.0
        values = list(self.samples)
        half = n // 2
        first = sum(values[:half]) / half
        second = sum(values[half:]) / (n - half)
        return clamp(second - first, -1.0, 1.0)


def difficulty_name(level: float) -> str:
    for limit, name in DIFFICULTY_NAMES:
        if level <= limit:
            return name
    return "Legendary"


class SkillProfile:
    """Skill values for one bot, with K/D driven adaptation."""

    INTERPOLATION_RATE = 0.05
    LOW_KD = 0.5
    HIGH_KD = 2.0
    ADJUSTMENT: Dict[str, float] = {
        "aim_accuracy": 0.05,
        "reaction_time": -0.02,
        "movement_speed_multiplier": 0.05,
    }
    MIN_EVENTS_FOR_ADAPTATION = 2

    def __init__(
        self,
        base: Optional[SkillValues] = None,
        skill_level: float = 3.0,
        update_interval_ms: int = 30000,
    ):
        base = (base or SkillValues()).clamped()
        self.skill_level = skill_level
        self.current = SkillValues(**base.to_dict())
        self.target = SkillValues(**base.to_dict())
        self.update_interval_ms = update_interval_ms
        self.last_adaptation_ms: Optional[int] = None
        self.adaptation_count = 0

        self.kills = 0
        self.deaths = 0
        self.shots_fired = 0
        self.shots_hit = 0
        self.damage_dealt = 0.0
        self.damage_taken = 0.0

        self.metrics: Dict[str, PerformanceMetric] = {
            "kd_ratio": PerformanceMetric(),
            "accuracy": PerformanceMetric(),
            "damage_efficiency": PerformanceMetric(),
            "survival_time": PerformanceMetric(),
            "objective_score": PerformanceMetric(),
        }
        self.frustration = 0.0
        self.boredom = 0.0

    @classmethod
    def from_character(cls, character, style_accuracy: float, update_interval_ms: int = 30000) -> "SkillProfile":
        """Initial values from a character profile and combat style accuracy."""
        base = SkillValues(
            aim_accuracy=(character.aim_accuracy + style_accuracy) / 2.0,
            reaction_time=0.05 + character.reaction_time * 0.45,
            aggression=character.aggression,
            tactical_awareness=character.alertness,
            movement_prediction=0.3 + character.aim_accuracy * 0.4,
            movement_speed_multiplier=0.7 + character.movement_skill * 0.6,
        )
        return cls(base, skill_level=character.skill, update_interval_ms=update_interval_ms)

    # Per-tick

    def update(self) -> None:
        """Move every current value toward its target."""
        for name in SKILL_RANGES:
            cur = getattr(self.current, name)
            tgt = getattr(self.target, name)
            setattr(self.current, name, cur + (tgt - cur) * self.INTERPOLATION_RATE)
        self.current = self.current.clamped()

    @property
    def aim_accuracy(self) -> float:
        return self.current.aim_accuracy

    @property
    def reaction_time(self) -> float:
        return self.current.reaction_time

    @property
    def movement_speed_multiplier(self) -> float:
        return self.current.movement_speed_multiplier

    @property
    def reaction_delay_ms(self) -> float:
        return self.current.reaction_time * 1000.0

    # Events

    def record_kill(self) -> None:
        self.kills += 1
        self.metrics["kd_ratio"].add(self.kd_ratio)

    def record_death(self, survival_time_s: float = 0.0) -> None:
        self.deaths += 1
        self.metrics["kd_ratio"].add(self.kd_ratio)
        self.metrics["survival_time"].add(survival_time_s)

    def record_shot(self, hit: bool) -> None:
        self.shots_fired += 1
        if hit:
            self.shots_hit += 1
        self.metrics["accuracy"].add(self.accuracy)

    def record_damage(self, dealt: float = 0.0, taken: float = 0.0) -> None:
        self.damage_dealt += dealt
        self.damage_taken += taken
        total = self.damage_dealt + self.damage_taken
        if total > 0:
            self.metrics["damage_efficiency"].add(self.damage_dealt / total)

    def record_objective(self, score: float) -> None:
        self.metrics["objective_score"].add(score)

    @property
    def kd_ratio(self) -> float:
        return self.kills / max(1, self.deaths)

    @property
    def accuracy(self) -> float:
        if self.shots_fired == 0:
            return 0.0
        return self.shots_hit / self.shots_fired

    # Adaptation

    def detect_frustration(self) -> float:
        """Estimated opponent frustration: how hard the bot is dominating."""
        score = 0.0
        if self.kd_ratio > 3.0:
            score += 0.5
        if self.shots_fired > 0 and self.accuracy > 0.7:
            score += 0.3
        if self.metrics["kd_ratio"].trend > 0.3:
            score += 0.2
        return clamp(score, 0.0, 1.0)

    def detect_boredom(self) -> float:
        """Estimated opponent boredom: how easily the bot is being beaten."""
        score = 0.0
        if self.deaths > 0 and self.kd_ratio < 0.3:
            score += 0.4
        if self.shots_fired > 0 and self.accuracy < 0.15:
            score += 0.3
        if self.metrics["kd_ratio"].trend < -0.3:
            score += 0.3
        return clamp(score, 0.0, 1.0)

    def adapt(self, now_ms: int) -> bool:
        """Drift targets from the running K/D. Rate-limited; returns True
        when targets changed."""
        if self.kills + self.deaths < self.MIN_EVENTS_FOR_ADAPTATION:
            return False
        if self.last_adaptation_ms is not None and now_ms - self.last_adaptation_ms < self.update_interval_ms:
            return False

        kd = self.kd_ratio
        if kd < self.LOW_KD:
            direction = 1.0
        elif kd > self.HIGH_KD:
            direction = -1.0
        else:
            self.last_adaptation_ms = now_ms
            return False

        self.frustration = self.detect_frustration()
        self.boredom = self.detect_boredom()
        magnitude = 1.0
        if direction < 0 and self.frustration > 0.7:
            magnitude = 2.0
        elif direction > 0 and self.boredom > 0.7:
            magnitude = 2.0

        for name, step in self.ADJUSTMENT.items():
            setattr(self.target, name, getattr(self.target, name) + direction * magnitude * step)
        self.target = self.target.clamped()
        self.last_adaptation_ms = now_ms
        self.adaptation_count += 1
        logger.debug(
            f"Skill adapted (kd={kd:.2f}, direction={direction:+.0f}, x{magnitude:.0f}): "
            f"aim={self.target.aim_accuracy:.2f} reaction={self.target.reaction_time:.2f}"
        )
        return True

    @property
    def difficulty(self) -> str:
        return difficulty_name(self.skill_level)

    # Persistence

    def to_dict(self) -> Dict:
        return {
            "skill_level": self.skill_level,
            "current": self.current.to_dict(),
            "target": self.target.to_dict(),
            "kills": self.kills,
            "deaths": self.deaths,
            "shots_fired": self.shots_fired,
            "shots_hit": self.shots_hit,
            "adaptation_count": self.adaptation_count,
        }

    def save(self, filepath: str) -> None:
        directory = os.path.dirname(filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f)
        logger.info(f"Saved skill profile to {filepath}")

    @classmethod
    def load(cls, filepath: str, update_interval_ms: int = 30000) -> "SkillProfile":
        with open(filepath, 'r') as f:
            data = json.load(f)
        profile = cls(
            SkillValues.from_dict(data.get("current", {})),
            skill_level=float(data.get("skill_level", 3.0)),
            update_interval_ms=update_interval_ms,
        )
        profile.target = SkillValues.from_dict(data.get("target", {}))
        profile.kills = int(data.get("kills", 0))
        profile.deaths = int(data.get("deaths", 0))
        profile.shots_fired = int(data.get("shots_fired", 0))
        profile.shots_hit = int(data.get("shots_hit", 0))
        profile.adaptation_count = int(data.get("adaptation_count", 0))
        return profile
