"""
Movement Tactics: path following, strafing, dodging and parkour.

Every think the controller hands movement a destination (or a path from
the navigation service), the current threat picture and the skill speed
multiplier. Movement produces a desired world-space velocity which is
then projected on the bot's view basis into (forward, right, up) speeds
for the UserCommand.

=== PIPELINE ===

1. Path following (advance a waypoint when within 32 units planar)
2. Technique primitive for the current waypoint tag
3. Strafe overlay for the movement style (only while a threat is known)
4. Turn-rate smoothing of the heading
5. Active dodge impulse, added after smoothing
6. Speed cap at the style's maximum

Dodges are one-shot: at most one DodgeSlot is active and its impulse
eases out as dir * intensity * 400 * (1 - t^2).
"""

import logging
import math
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .engine_interface import GameEngine, MASK_SOLID, Waypoint, sanitize_trace
from .vector_math import (
    Vec3, ORIGIN, UP, add, sub, scale, mad, dot, length, length_2d, distance_2d,
    normalize, flatten, perpendicular, rotate_z, angle_vectors, angle_delta,
    vector_to_angles, clamp, clamp_length,
)
from .weapons import Weapon

logger = logging.getLogger(__name__)

WAYPOINT_REACHED_RADIUS = 32.0
STRAFE_CHANGE_TIME_MS = 500
SERPENTINE_UPDATE_MS = 500
DODGE_IMPULSE = 400.0
BASE_TURN_RATE = 180.0  # deg/s
TURN_SPEED_REFERENCE = 800.0
MAX_WALL_RUN_TIME_S = 2.0
WALL_RAY_DISTANCE = 32.0
STUCK_WINDOW_MS = 1000
STUCK_DISTANCE = 8.0
REPATH_INTERVAL_MS = 500
REPATH_GOAL_TOLERANCE = 64.0
MAX_PATH_WAYPOINTS = 32
JUMP_SPEED = 400.0


class MovementStyle(Enum):
    NORMAL = "normal"
    AGGRESSIVE = "aggressive"
    EVASIVE = "evasive"
    STEALTH = "stealth"
    PARKOUR = "parkour"
    TACTICAL = "tactical"
    RETREAT = "retreat"


@dataclass(frozen=True)
class MoveStyleParams:
    max_speed: float = 320.0
    strafe_amplitude: float = 200.0
    strafe_frequency: float = 2.0
    random_strafe: bool = False
    momentum: float = 0.0


STYLE_PARAMETERS: Dict[MovementStyle, MoveStyleParams] = {
    MovementStyle.NORMAL: MoveStyleParams(),
    MovementStyle.AGGRESSIVE: MoveStyleParams(max_speed=400.0),
    MovementStyle.EVASIVE: MoveStyleParams(strafe_amplitude=300.0, strafe_frequency=3.0, random_strafe=True),
    MovementStyle.STEALTH: MoveStyleParams(max_speed=200.0),
    MovementStyle.PARKOUR: MoveStyleParams(momentum=1.0),
    MovementStyle.TACTICAL: MoveStyleParams(),
    MovementStyle.RETREAT: MoveStyleParams(),
}


class DodgeType(Enum):
    SIDESTEP = "sidestep"
    DUCK = "duck"
    JUMP = "jump"
    DIAGONAL = "diagonal"
    BACKPEDAL = "backpedal"
    SLIDE = "slide"


# (intensity, duration seconds)
DODGE_PARAMETERS: Dict[DodgeType, Tuple[float, float]] = {
    DodgeType.SIDESTEP: (1.0, 0.3),
    DodgeType.DUCK: (1.0, 0.5),
    DodgeType.JUMP: (1.5, 0.6),
    DodgeType.DIAGONAL: (1.2, 0.4),
    DodgeType.BACKPEDAL: (0.8, 0.5),
    DodgeType.SLIDE: (1.3, 0.8),
}
SLIDE_MIN_SPEED = 320.0


class Technique(Enum):
    STRAFE_JUMP = "StrafeJump"
    BUNNY_HOP = "BunnyHop"
    ROCKET_JUMP = "RocketJump"
    WALL_RUN = "WallRun"
    AIR_CONTROL = "AirControl"


@dataclass
class MovementPath:
    """Waypoints with a cursor. Invalid once the cursor passes the end."""
    waypoints: List[Waypoint] = field(default_factory=list)
    current_index: int = 0
    total_length: float = 0.0
    valid: bool = False
    goal: Optional[Vec3] = None

    @classmethod
    def from_waypoints(cls, waypoints: List[Waypoint], start: Vec3, goal: Optional[Vec3] = None) -> "MovementPath":
        total = 0.0
        previous = start
        for wp in waypoints:
            total += length(sub(wp.position, previous))
            previous = wp.position
        return cls(list(waypoints), 0, total, bool(waypoints), goal)

    @property
    def current(self) -> Optional[Waypoint]:
        if not self.valid or self.current_index >= len(self.waypoints):
            return None
        return self.waypoints[self.current_index]

    def advance(self) -> None:
        self.current_index = min(self.current_index + 1, len(self.waypoints))
        if self.current_index >= len(self.waypoints):
            self.valid = False

    def invalidate(self) -> None:
        self.valid = False


@dataclass
class DodgeSlot:
    dodge_type: DodgeType
    direction: Vec3
    intensity: float
    duration: float  # seconds
    start_ms: int
    in_progress: bool = True

    def progress(self, now_ms: int) -> float:
        if self.duration <= 0:
            return 1.0
        return clamp((now_ms - self.start_ms) / 1000.0 / self.duration, 0.0, 1.0)

    def impulse(self, now_ms: int) -> Vec3:
        """Eased impulse; ends the dodge when its duration has elapsed."""
        t = self.progress(now_ms)
        if t >= 1.0:
            self.in_progress = False
            return ORIGIN
        return scale(self.direction, self.intensity * DODGE_IMPULSE * (1.0 - t * t))


@dataclass
class ParkourState:
    can_wall_run: bool = False
    wall_normal: Vec3 = ORIGIN
    wall_run_time: float = 0.0
    can_wall_jump: bool = False
    momentum: float = 1.0
    ground_time: float = 0.0


@dataclass
class MovementOutput:
    """What movement asks of the command for this think."""
    velocity: Vec3 = ORIGIN  # world space, planar part drives forward/right
    jump: bool = False
    crouch: bool = False
    fire: bool = False  # rocket jump
    pitch_override: Optional[float] = None
    technique: Optional[Technique] = None


class MovementTactics:
    """Per-bot movement state and primitives."""

    def __init__(self, client_id: int, style: MovementStyle = MovementStyle.NORMAL, seed: int = 0,
                 strafe_multiplier: float = 1.0):
        self.client_id = client_id
        self.style = style
        self.strafe_multiplier = strafe_multiplier
        self.rng = random.Random(seed)

        self.path = MovementPath()
        self.destination: Optional[Vec3] = None
        self.dodge: Optional[DodgeSlot] = None
        self.parkour = ParkourState(momentum=max(0.5, STYLE_PARAMETERS[style].momentum or 1.0))

        self.heading: Vec3 = ORIGIN
        self.desired_velocity: Vec3 = ORIGIN
        self.output = MovementOutput()
        self.needs_repath = False

        self._strafe_sign = 1.0
        self._last_strafe_change_ms: Optional[int] = None
        self._serpentine_offset = 0.0
        self._last_serpentine_ms: Optional[int] = None
        self._last_repath_ms: Optional[int] = None
        self._stuck_anchor: Optional[Tuple[Vec3, int]] = None
        self._last_update_ms: Optional[int] = None
        self.stuck_count = 0

    @property
    def params(self) -> MoveStyleParams:
        return STYLE_PARAMETERS[self.style]

    def set_style(self, style: MovementStyle) -> None:
        if style != self.style:
            logger.debug(f"Bot {self.client_id}: movement style {self.style.value} -> {style.value}")
            self.style = style

    def reset(self) -> None:
        self.path = MovementPath()
        self.destination = None
        self.dodge = None
        self.heading = ORIGIN
        self.desired_velocity = ORIGIN
        self.output = MovementOutput()
        self._stuck_anchor = None
        self._last_update_ms = None

    # Routing

    def set_destination(self, destination: Optional[Vec3], navigation: Any = None, mesh: Any = None,
                        position: Optional[Vec3] = None, now_ms: int = 0) -> None:
        """Aim for a destination, routing through the navigation service
        when one is available."""
        if destination is None:
            self.destination = None
            self.path.invalidate()
            return
        goal_moved = (
            self.path.goal is None
            or distance_2d(self.path.goal, destination) > REPATH_GOAL_TOLERANCE
        )
        self.destination = destination
        if navigation is None or mesh is None or position is None:
            return
        due = self._last_repath_ms is None or now_ms - self._last_repath_ms >= REPATH_INTERVAL_MS
        if (goal_moved or not self.path.valid or self.needs_repath) and due:
            waypoints = navigation.route_to_goal(mesh, position, destination, MAX_PATH_WAYPOINTS)
            self.path = MovementPath.from_waypoints(waypoints, position, destination)
            self._last_repath_ms = now_ms
            self.needs_repath = False

    # Dodging

    def start_dodge(self, dodge_type: DodgeType, direction: Vec3, now_ms: int,
                    on_ground: bool = True, speed: float = 0.0) -> bool:
        """Begin a dodge. Refused while one is running or while airborne
        (a Jump off a Parkour wall run is the exception)."""
        if self.dodge is not None and self.dodge.in_progress:
            return False
        if not on_ground:
            wall_jump = (dodge_type == DodgeType.JUMP and self.style == MovementStyle.PARKOUR
                         and self.parkour.can_wall_run)
            if not wall_jump:
                return False
        if dodge_type == DodgeType.SLIDE and speed <= SLIDE_MIN_SPEED:
            dodge_type = DodgeType.SIDESTEP
        intensity, duration = DODGE_PARAMETERS[dodge_type]
        self.dodge = DodgeSlot(dodge_type, normalize(direction), intensity, duration, now_ms)
        logger.debug(f"Bot {self.client_id}: dodge {dodge_type.value}")
        return True

    def dodge_projectile(self, engine: GameEngine, position: Vec3, velocity: Vec3, on_ground: bool,
                         projectile_position: Vec3, projectile_velocity: Vec3, now_ms: int) -> bool:
        """Pick and start a dodge against an incoming projectile."""
        incoming = normalize(projectile_velocity)
        vertical = incoming[2]
        speed = length_2d(velocity)

        lateral = normalize(perpendicular(flatten(incoming)))
        if lateral == ORIGIN:
            lateral = (0.0, 1.0, 0.0)
        offset = dot(sub(position, projectile_position), lateral)
        side = 1.0 if offset > 1e-3 else -1.0 if offset < -1e-3 else (1.0 if self.rng.random() < 0.5 else -1.0)
        if self._clearance(engine, position, scale(lateral, side)) < 0.5:
            side = -side
        lateral = scale(lateral, side)
        away = flatten(incoming)

        if vertical > 0.5:
            dodge_type = DodgeType.JUMP
            direction = add(lateral, UP)
        elif vertical < -0.5:
            dodge_type = DodgeType.DUCK
            direction = lateral
        elif self.style == MovementStyle.PARKOUR and speed > SLIDE_MIN_SPEED:
            dodge_type = DodgeType.SLIDE
            direction = add(normalize(flatten(velocity)), lateral)
        elif self.rng.random() < 0.5:
            dodge_type = DodgeType.SIDESTEP
            direction = lateral
        else:
            dodge_type = DodgeType.DIAGONAL
            direction = add(lateral, scale(normalize(away), 0.5))
        return self.start_dodge(dodge_type, direction, now_ms, on_ground, speed)

    def _clearance(self, engine: GameEngine, position: Vec3, direction: Vec3, dist: float = 100.0) -> float:
        start = add(position, (0.0, 0.0, 16.0))
        end = mad(start, dist, direction)
        return sanitize_trace(engine.trace(start, ORIGIN, ORIGIN, end, self.client_id, MASK_SOLID), start).fraction

    @property
    def dodge_in_progress(self) -> bool:
        return self.dodge is not None and self.dodge.in_progress

    # Main update

    def update(
        self,
        engine: GameEngine,
        position: Vec3,
        velocity: Vec3,
        on_ground: bool,
        now_ms: int,
        threat_position: Optional[Vec3] = None,
        speed_multiplier: float = 1.0,
        ammo: Optional[Dict[int, int]] = None,
        advanced: bool = True,
    ) -> MovementOutput:
        """Compute this think's desired velocity and movement flags."""
        dt = 0.05 if self._last_update_ms is None else clamp((now_ms - self._last_update_ms) / 1000.0, 0.0, 0.5)
        self._last_update_ms = now_ms
        out = MovementOutput()
        params = self.params
        max_speed = params.max_speed * speed_multiplier
        speed = length_2d(velocity)

        # Path following
        direction = ORIGIN
        waypoint = self.path.current
        while waypoint is not None and distance_2d(position, waypoint.position) < WAYPOINT_REACHED_RADIUS:
            self.path.advance()
            waypoint = self.path.current
        if waypoint is not None:
            direction = normalize(flatten(sub(waypoint.position, position)))
            max_speed *= waypoint.speed_multiplier
            out.jump = waypoint.requires_jump
            out.crouch = waypoint.requires_crouch
        elif self.destination is not None and distance_2d(position, self.destination) >= WAYPOINT_REACHED_RADIUS:
            direction = normalize(flatten(sub(self.destination, position)))

        if self.style == MovementStyle.RETREAT and threat_position is not None and direction == ORIGIN:
            direction = normalize(flatten(sub(position, threat_position)))

        desired = scale(direction, max_speed)

        # Techniques
        if advanced and waypoint is not None and waypoint.technique:
            desired = self._run_technique(waypoint.technique, desired, velocity, on_ground, speed, dt, ammo or {}, out)

        # Strafe overlay
        if threat_position is not None:
            desired = add(desired, self._strafe(engine, position, velocity, on_ground, threat_position, now_ms, dt, out))

        # Smoothing
        desired = self._smooth(desired, speed, dt)

        # Dodge impulse bypasses smoothing
        if self.dodge is not None and self.dodge.in_progress:
            impulse = self.dodge.impulse(now_ms)
            desired = add(desired, flatten(impulse))
            if self.dodge.dodge_type == DodgeType.JUMP:
                out.jump = True
            elif self.dodge.dodge_type in (DodgeType.DUCK, DodgeType.SLIDE):
                out.crouch = True

        cap = max(max_speed, params.max_speed)
        desired = clamp_length(flatten(desired), cap)

        self._detect_stuck(position, now_ms, out)
        self._update_momentum(on_ground, dt)

        out.velocity = desired
        self.desired_velocity = desired
        self.output = out
        return out

    def _run_technique(self, tag: str, desired: Vec3, velocity: Vec3, on_ground: bool, speed: float,
                       dt: float, ammo: Dict[int, int], out: MovementOutput) -> Vec3:
        try:
            technique = Technique(tag)
        except ValueError:
            logger.debug(f"Bot {self.client_id}: unknown technique {tag}")
            return desired

        if technique == Technique.STRAFE_JUMP:
            if on_ground and speed > 200.0:
                out.jump = True
                out.technique = technique
                sign = 1.0 if self.path.current_index % 2 == 0 else -1.0
                return rotate_z(desired, 45.0 * sign)
        elif technique == Technique.BUNNY_HOP:
            if on_ground and self.parkour.ground_time < 0.1 and speed > 250.0:
                out.jump = True
                out.technique = technique
                self.parkour.momentum = clamp(self.parkour.momentum * 1.05, 0.5, 2.0)
                return scale(desired, self.parkour.momentum)
        elif technique == Technique.ROCKET_JUMP:
            if on_ground and ammo.get(int(Weapon.ROCKET_LAUNCHER), 0) > 0:
                out.jump = True
                out.fire = True
                out.pitch_override = 89.0
                out.technique = technique
                return scale(desired, 1.5)
        elif technique == Technique.AIR_CONTROL:
            if not on_ground:
                out.technique = technique
                correction = clamp_length(sub(flatten(desired), flatten(velocity)), 30.0)
                return add(flatten(velocity), correction)
        elif technique == Technique.WALL_RUN:
            if not on_ground and speed > 200.0 and self.parkour.can_wall_run:
                out.technique = technique
                return desired
        return desired

    def _strafe(self, engine: GameEngine, position: Vec3, velocity: Vec3, on_ground: bool,
                threat_position: Vec3, now_ms: int, dt: float, out: MovementOutput) -> Vec3:
        to_threat = normalize(flatten(sub(threat_position, position)))
        if to_threat == ORIGIN:
            return ORIGIN
        lateral = normalize(perpendicular(to_threat))
        params = self.params
        t = now_ms / 1000.0
        mult = self.strafe_multiplier

        if self.style == MovementStyle.EVASIVE:
            if params.random_strafe:
                if self._last_strafe_change_ms is None or now_ms - self._last_strafe_change_ms >= STRAFE_CHANGE_TIME_MS:
                    self._strafe_sign = 1.0 if self.rng.random() < 0.5 else -1.0
                    self._last_strafe_change_ms = now_ms
                return scale(lateral, self._strafe_sign * params.strafe_amplitude * mult)
            return scale(lateral, math.sin(2 * math.pi * params.strafe_frequency * t) * params.strafe_amplitude * mult)

        if self.style == MovementStyle.AGGRESSIVE:
            if self._last_serpentine_ms is None or now_ms - self._last_serpentine_ms >= SERPENTINE_UPDATE_MS:
                self._serpentine_offset = math.sin(3 * t) * math.cos(1.5 * t) * 150.0
                self._last_serpentine_ms = now_ms
            return add(scale(to_threat, params.max_speed * 0.5), scale(lateral, self._serpentine_offset * mult))

        if self.style == MovementStyle.TACTICAL:
            predicted = mad(position, 0.5, velocity)
            left = self._clearance(engine, predicted, lateral)
            right = self._clearance(engine, predicted, scale(lateral, -1.0))
            if abs(left - right) < 1e-6:
                sign = 1.0 if int(t) % 2 == 0 else -1.0
            else:
                sign = 1.0 if left > right else -1.0
            strafe_speed = params.strafe_amplitude * mult
            if distance_2d(position, threat_position) < 500.0:
                strafe_speed *= 1.2
            wobble = math.sin(2 * t) * 100.0
            return add(scale(lateral, sign * strafe_speed), scale(to_threat, wobble))

        if self.style == MovementStyle.PARKOUR:
            return self._wall_run(engine, position, velocity, on_ground, dt, out)

        if self.style in (MovementStyle.STEALTH, MovementStyle.RETREAT):
            return ORIGIN

        return scale(lateral, math.sin(2 * math.pi * params.strafe_frequency * t) * params.strafe_amplitude * mult)

    def _wall_run(self, engine: GameEngine, position: Vec3, velocity: Vec3, on_ground: bool,
                  dt: float, out: MovementOutput) -> Vec3:
        parkour = self.parkour
        if on_ground:
            parkour.can_wall_run = False
            parkour.wall_run_time = 0.0
            return ORIGIN

        if parkour.can_wall_jump:
            m = parkour.momentum
            push = scale(parkour.wall_normal, 400.0 + m * 200.0)
            parkour.can_wall_jump = False
            parkour.can_wall_run = False
            parkour.wall_run_time = 0.0
            out.jump = True
            out.technique = Technique.WALL_RUN
            return add(push, (0.0, 0.0, 300.0 + m * 100.0))

        speed = length_2d(velocity)
        heading = normalize(flatten(velocity))
        if speed <= 200.0 or heading == ORIGIN:
            parkour.can_wall_run = False
            return ORIGIN

        side = normalize(perpendicular(heading))
        start = add(position, (0.0, 0.0, 16.0))
        for lateral in (side, scale(side, -1.0)):
            end = mad(start, WALL_RAY_DISTANCE, lateral)
            trace = sanitize_trace(engine.trace(start, ORIGIN, ORIGIN, end, self.client_id, MASK_SOLID), start)
            if trace.fraction < 1.0 and abs(dot(heading, trace.normal)) < 0.5:
                parkour.can_wall_run = True
                parkour.wall_normal = trace.normal
                parkour.wall_run_time += dt
                out.technique = Technique.WALL_RUN
                if parkour.wall_run_time >= MAX_WALL_RUN_TIME_S:
                    parkour.can_wall_jump = True
                return ORIGIN
        parkour.can_wall_run = False
        return ORIGIN

    def _smooth(self, desired: Vec3, speed: float, dt: float) -> Vec3:
        magnitude = length_2d(desired)
        if magnitude < 1e-6:
            self.heading = ORIGIN
            return ORIGIN
        if self.heading == ORIGIN:
            self.heading = normalize(flatten(desired))
            return desired

        rate = BASE_TURN_RATE * clamp(1.0 - speed / TURN_SPEED_REFERENCE, 0.3, 1.0)
        current_yaw = vector_to_angles(self.heading)[1]
        target_yaw = vector_to_angles(desired)[1]
        delta = angle_delta(target_yaw, current_yaw)
        max_turn = rate * dt
        if abs(delta) > max_turn:
            delta = math.copysign(max_turn, delta)
        self.heading = rotate_z(self.heading, delta)
        return scale(self.heading, magnitude)

    def _detect_stuck(self, position: Vec3, now_ms: int, out: MovementOutput) -> None:
        if not self.path.valid:
            self._stuck_anchor = None
            return
        if self._stuck_anchor is None:
            self._stuck_anchor = (position, now_ms)
            return
        anchor, since = self._stuck_anchor
        if now_ms - since < STUCK_WINDOW_MS:
            return
        if distance_2d(anchor, position) < STUCK_DISTANCE:
            out.jump = True
            self.needs_repath = True
            self.stuck_count += 1
            logger.debug(f"Bot {self.client_id}: stuck, jumping and repathing")
        self._stuck_anchor = (position, now_ms)

    def _update_momentum(self, on_ground: bool, dt: float) -> None:
        if on_ground:
            self.parkour.ground_time += dt
            self.parkour.momentum = clamp(self.parkour.momentum * 0.98, 0.5, 2.0)
        else:
            self.parkour.ground_time = 0.0

    # Command composition

    def compose(self, view_angles: Vec3, output: Optional[MovementOutput] = None) -> Vec3:
        """Project the desired velocity on the view basis: (forward, right, up)."""
        output = output or self.output
        forward, right, _ = angle_vectors((0.0, view_angles[1], 0.0))
        velocity = output.velocity
        f = dot(velocity, forward)
        r = dot(velocity, right)
        up = JUMP_SPEED if output.jump else -JUMP_SPEED if output.crouch else 0.0
        return (f, r, up)

    def summary(self) -> Dict:
        return {
            "style": self.style.value,
            "path_valid": self.path.valid,
            "waypoint_index": self.path.current_index,
            "waypoints": len(self.path.waypoints),
            "desired_velocity": list(self.desired_velocity),
            "dodge": None if not self.dodge_in_progress else {
                "type": self.dodge.dodge_type.value,
                "direction": list(self.dodge.direction),
                "start_ms": self.dodge.start_ms,
            },
            "momentum": round(self.parkour.momentum, 3),
        }
