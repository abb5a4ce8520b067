"""Cover system: one-time map scan plus per-query cover search.

=== MAP SCAN ===

Candidate points sit on a regular grid over the world bounds. A candidate
survives when:
- a downward trace finds walkable floor (normal z > 0.7)
- it is near geometry (one of four 64-unit rays at waist height blocks)
- the 8 directions x 3 heights validation classifies it:
    block ratio > 0.75        -> Pillar (quality 0.9)
    blocked above 48 units    -> High   (0.7 + 0.3 * ratio)
    blocked above 24 units    -> Low    (0.5 + 0.3 * ratio)
    otherwise rejected

Surviving points are linked to their nearest reachable neighbours, giving
a small graph that route() searches with A*.

=== SEARCH ===

score = 0.4*protection + 0.2*position + 0.2*tactical + 0.2*accessibility
score *= 0.7 + 0.3*quality
score *= 0.7 if the point was used in the last 10 s
"""

import heapq
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .engine_interface import GameEngine, MASK_SOLID, ENTITYNUM_NONE, sanitize_trace
from .vector_math import (
    Vec3, ORIGIN, add, sub, scale, dot, distance, normalize, rotate_z, lerp, clamp,
)

logger = logging.getLogger(__name__)

MAX_COVER_POINTS = 256
MAX_CONNECTIONS = 4
PLAYER_ORIGIN_HEIGHT = 24.0
COVER_RAY_DISTANCE = 64.0
COVER_RAY_HEIGHTS = (16.0, 40.0, 64.0)
COVER_DIRECTIONS = 8
OPTIMAL_THREAT_DISTANCE = 400.0
RECENTLY_USED_MS = 10000
EXPOSURE_SAMPLES = 10
EYE_HEIGHT = 56.0


class CoverType(Enum):
    LOW = "low"
    HIGH = "high"
    CORNER = "corner"
    PILLAR = "pillar"
    WINDOW = "window"
    DOOR = "door"
    EDGE = "edge"


@dataclass
class CoverPoint:
    point_id: int
    position: Vec3
    normal: Vec3  # points away from the covering geometry
    cover_type: CoverType
    quality: float
    height: float
    block_ratio: float = 0.0
    is_corner: bool = False
    can_peek_left: bool = False
    can_peek_right: bool = False
    connections: List[int] = field(default_factory=list)
    last_used_ms: Optional[int] = None
    occupant: Optional[int] = None


@dataclass
class CoverSearchParams:
    position: Vec3
    threat_position: Vec3
    search_radius: float = 1000.0
    min_threat_distance: float = 0.0
    max_threat_distance: float = math.inf
    preferred_direction: Optional[Vec3] = None
    preferred_type: Optional[CoverType] = None
    require_peek: bool = False
    time_pressure: float = 0.5
    requester: Optional[int] = None


@dataclass
class CoverEvaluation:
    point_id: int
    protection: float
    position: float
    tactical: float
    accessibility: float
    total: float


@dataclass
class CoverState:
    """Per-agent cover occupancy."""
    point_id: Optional[int] = None
    entered_ms: int = 0
    peek_count: int = 0
    is_peeking: bool = False

    def time_in_cover(self, now_ms: int) -> float:
        if self.point_id is None:
            return 0.0
        return (now_ms - self.entered_ms) / 1000.0


class CoverManager:
    """Holds the map's cover points and answers cover queries."""

    def __init__(self):
        self.points: List[CoverPoint] = []
        self.states: Dict[int, CoverState] = {}
        self.last_evaluations: List[CoverEvaluation] = []
        self.spacing = 128.0

    def clear(self) -> None:
        self.points = []
        self.states = {}
        self.last_evaluations = []

    def get(self, point_id: int) -> Optional[CoverPoint]:
        if 0 <= point_id < len(self.points):
            return self.points[point_id]
        return None

    # Map scan

    def analyze_map(self, engine: GameEngine, extent: float = 2048.0, spacing: float = 128.0) -> int:
        """Scan the world for cover points. Returns the number kept."""
        self.clear()
        self.spacing = spacing
        mins, maxs = engine.world_bounds()
        x_lo, x_hi = max(mins[0], -extent), min(maxs[0], extent)
        y_lo, y_hi = max(mins[1], -extent), min(maxs[1], extent)

        candidates: List[CoverPoint] = []
        x = x_lo + spacing / 2.0
        while x < x_hi:
            y = y_lo + spacing / 2.0
            while y < y_hi:
                point = self._evaluate_candidate(engine, x, y, mins[2], maxs[2], len(candidates))
                if point is not None:
                    candidates.append(point)
                y += spacing
            x += spacing

        if len(candidates) > MAX_COVER_POINTS:
            candidates.sort(key=lambda p: (-p.quality, p.position))
            candidates = candidates[:MAX_COVER_POINTS]
        for i, point in enumerate(candidates):
            point.point_id = i
        self.points = candidates
        self._connect(engine, spacing)
        logger.info(f"Cover analysis found {len(self.points)} cover points")
        return len(self.points)

    def _evaluate_candidate(self, engine: GameEngine, x: float, y: float, z_min: float, z_max: float,
                            point_id: int) -> Optional[CoverPoint]:
        top = (x, y, z_max - 1.0)
        ground = sanitize_trace(engine.trace(top, ORIGIN, ORIGIN, (x, y, z_min), ENTITYNUM_NONE, MASK_SOLID), top)
        if ground.fraction >= 1.0 or ground.start_solid or ground.normal[2] <= 0.7:
            return None
        floor_z = ground.endpos[2]

        # Near geometry at all?
        waist = (x, y, floor_z + 40.0)
        near = False
        for i in range(4):
            direction = rotate_z((1.0, 0.0, 0.0), i * 90.0)
            end = add(waist, scale(direction, COVER_RAY_DISTANCE))
            if sanitize_trace(engine.trace(waist, ORIGIN, ORIGIN, end, ENTITYNUM_NONE, MASK_SOLID), waist).fraction < 1.0:
                near = True
                break
        if not near:
            return None

        blocked_dirs: List[bool] = []
        max_height = 0.0
        for i in range(COVER_DIRECTIONS):
            direction = rotate_z((1.0, 0.0, 0.0), i * 360.0 / COVER_DIRECTIONS)
            dir_blocked = False
            for h in COVER_RAY_HEIGHTS:
                start = (x, y, floor_z + h)
                end = add(start, scale(direction, COVER_RAY_DISTANCE))
                trace = sanitize_trace(engine.trace(start, ORIGIN, ORIGIN, end, ENTITYNUM_NONE, MASK_SOLID), start)
                if trace.start_solid:
                    return None
                if trace.fraction < 1.0:
                    dir_blocked = True
                    max_height = max(max_height, h)
            blocked_dirs.append(dir_blocked)

        count = sum(blocked_dirs)
        ratio = count / COVER_DIRECTIONS
        if ratio > 0.75:
            cover_type, quality = CoverType.PILLAR, 0.9
        elif max_height > 48.0:
            cover_type, quality = CoverType.HIGH, 0.7 + 0.3 * ratio
        elif max_height > 24.0:
            cover_type, quality = CoverType.LOW, 0.5 + 0.3 * ratio
        else:
            return None

        wall = ORIGIN
        for i, blocked in enumerate(blocked_dirs):
            if blocked:
                wall = add(wall, rotate_z((1.0, 0.0, 0.0), i * 360.0 / COVER_DIRECTIONS))
        normal = normalize(scale(wall, -1.0))
        if normal == ORIGIN:
            normal = (1.0, 0.0, 0.0)

        is_corner = count == 2 and any(
            blocked_dirs[i] and blocked_dirs[(i + 1) % COVER_DIRECTIONS] for i in range(COVER_DIRECTIONS)
        )
        if is_corner and cover_type != CoverType.PILLAR:
            cover_type = CoverType.CORNER

        # Sectors either side of the wall direction
        wall_sector = int(round(math.degrees(math.atan2(-normal[1], -normal[0])) / 45.0)) % COVER_DIRECTIONS
        can_peek_left = not blocked_dirs[(wall_sector + 2) % COVER_DIRECTIONS]
        can_peek_right = not blocked_dirs[(wall_sector - 2) % COVER_DIRECTIONS]

        return CoverPoint(
            point_id=point_id,
            position=(x, y, floor_z + PLAYER_ORIGIN_HEIGHT),
            normal=normal,
            cover_type=cover_type,
            quality=clamp(quality, 0.0, 1.0),
            height=max_height,
            block_ratio=ratio,
            is_corner=is_corner,
            can_peek_left=can_peek_left,
            can_peek_right=can_peek_right,
        )

    def _connect(self, engine: GameEngine, spacing: float) -> None:
        radius = spacing * 2.0
        for point in self.points:
            nearby = sorted(
                (distance(point.position, other.position), other.point_id)
                for other in self.points
                if other.point_id != point.point_id and distance(point.position, other.position) <= radius
            )
            for _, other_id in nearby:
                if len(point.connections) >= MAX_CONNECTIONS:
                    break
                other = self.points[other_id]
                start = add(point.position, (0.0, 0.0, 16.0))
                end = add(other.position, (0.0, 0.0, 16.0))
                trace = sanitize_trace(engine.trace(start, ORIGIN, ORIGIN, end, ENTITYNUM_NONE, MASK_SOLID), start)
                if trace.fraction >= 1.0:
                    point.connections.append(other_id)

    # Search

    def evaluate(self, engine: GameEngine, point: CoverPoint, params: CoverSearchParams,
                 now_ms: int) -> Optional[CoverEvaluation]:
        """Score one cover point, None when it violates the query."""
        from_distance = distance(point.position, params.position)
        if from_distance > params.search_radius:
            return None
        threat_distance = distance(point.position, params.threat_position)
        if not params.min_threat_distance <= threat_distance <= params.max_threat_distance:
            return None
        if point.occupant is not None and point.occupant != params.requester:
            return None
        if params.require_peek and not (point.can_peek_left or point.can_peek_right):
            return None

        # Protection
        to_threat = normalize(sub(params.threat_position, point.position))
        facing = dot(point.normal, to_threat)
        p = -facing if facing < 0 else 0.0
        base = (p + 1.0) / 2.0
        if point.cover_type == CoverType.HIGH:
            protection = base * 0.9
        elif point.cover_type == CoverType.LOW:
            protection = base * 0.6
        elif point.cover_type == CoverType.PILLAR:
            protection = 0.95
        elif point.cover_type == CoverType.CORNER:
            protection = base * 0.75
        else:
            protection = base * 0.4
        threat_eye = add(params.threat_position, (0.0, 0.0, EYE_HEIGHT))
        if self._exposed(engine, threat_eye, point.position):
            protection *= 0.5

        # Position
        position_score = clamp(1.0 - abs(threat_distance - OPTIMAL_THREAT_DISTANCE) / OPTIMAL_THREAT_DISTANCE, 0.0, 1.0) * 0.5
        if params.preferred_direction is not None:
            heading = normalize(sub(point.position, params.position))
            position_score += (dot(normalize(params.preferred_direction), heading) + 1.0) * 0.25
        else:
            position_score += 0.25

        # Tactical
        tactical = 0.5
        if point.is_corner:
            tactical += 0.2
        if point.can_peek_left or point.can_peek_right:
            tactical += 0.15
        if params.preferred_type is not None and point.cover_type == params.preferred_type:
            tactical += 0.15
        tactical = min(1.0, tactical)

        # Accessibility
        exposed = 0
        for i in range(EXPOSURE_SAMPLES):
            sample = lerp(params.position, point.position, (i + 1) / EXPOSURE_SAMPLES)
            if self._exposed(engine, threat_eye, sample):
                exposed += 1
        accessibility = 1.0 - exposed / EXPOSURE_SAMPLES
        if params.search_radius > 0:
            accessibility += (1.0 - from_distance / params.search_radius) * params.time_pressure * 0.3
        accessibility = clamp(accessibility, 0.0, 1.0)

        total = 0.4 * protection + 0.2 * position_score + 0.2 * tactical + 0.2 * accessibility
        total *= 0.7 + 0.3 * point.quality
        if point.last_used_ms is not None and now_ms - point.last_used_ms < RECENTLY_USED_MS:
            total *= 0.7
        return CoverEvaluation(point.point_id, protection, position_score, tactical, accessibility, total)

    def _exposed(self, engine: GameEngine, threat_eye: Vec3, position: Vec3) -> bool:
        target = add(position, (0.0, 0.0, EYE_HEIGHT))
        trace = sanitize_trace(engine.trace(threat_eye, ORIGIN, ORIGIN, target, ENTITYNUM_NONE, MASK_SOLID), threat_eye)
        return trace.fraction >= 1.0

    def find_best_cover(self, engine: GameEngine, params: CoverSearchParams, now_ms: int) -> Optional[CoverPoint]:
        """Highest scoring cover point for the query, or None."""
        evaluations: List[CoverEvaluation] = []
        for point in self.points:
            evaluation = self.evaluate(engine, point, params, now_ms)
            if evaluation is not None:
                evaluations.append(evaluation)
        evaluations.sort(key=lambda e: (-e.total, e.point_id))
        self.last_evaluations = evaluations
        if not evaluations:
            return None
        return self.points[evaluations[0].point_id]

    def find_safest_cover(self, engine: GameEngine, params: CoverSearchParams, now_ms: int) -> Optional[CoverPoint]:
        """Cover point with the best protection, ignoring other factors."""
        best: Optional[Tuple[float, int]] = None
        for point in self.points:
            evaluation = self.evaluate(engine, point, params, now_ms)
            if evaluation is None:
                continue
            key = (evaluation.protection * (0.7 + 0.3 * point.quality), -point.point_id)
            if best is None or key > best:
                best = key
        return self.points[-best[1]] if best is not None else None

    def nearest(self, position: Vec3, max_distance: float = math.inf) -> Optional[CoverPoint]:
        best: Optional[CoverPoint] = None
        best_d = max_distance
        for point in self.points:
            d = distance(point.position, position)
            if d <= best_d:
                best, best_d = point, d
        return best

    def route(self, from_id: int, to_id: int) -> List[CoverPoint]:
        """A* over the cover graph; empty when unreachable."""
        start, goal = self.get(from_id), self.get(to_id)
        if start is None or goal is None:
            return []
        open_set: List[Tuple[float, int]] = [(distance(start.position, goal.position), from_id)]
        g_score: Dict[int, float] = {from_id: 0.0}
        parent: Dict[int, int] = {}
        closed = set()
        while open_set:
            _, current = heapq.heappop(open_set)
            if current == to_id:
                path = [current]
                while current in parent:
                    current = parent[current]
                    path.append(current)
                return [self.points[i] for i in reversed(path)]
            if current in closed:
                continue
            closed.add(current)
            for neighbor in self.points[current].connections:
                tentative = g_score[current] + distance(self.points[current].position, self.points[neighbor].position)
                if tentative < g_score.get(neighbor, math.inf):
                    g_score[neighbor] = tentative
                    parent[neighbor] = current
                    f = tentative + distance(self.points[neighbor].position, goal.position)
                    heapq.heappush(open_set, (f, neighbor))
        return []

    # Occupancy

    def enter_cover(self, client_id: int, point: CoverPoint, now_ms: int) -> CoverState:
        state = self.states.setdefault(client_id, CoverState())
        if state.point_id == point.point_id:
            return state
        self.leave_cover(client_id)
        point.occupant = client_id
        point.last_used_ms = now_ms
        state.point_id = point.point_id
        state.entered_ms = now_ms
        state.peek_count = 0
        state.is_peeking = False
        return state

    def leave_cover(self, client_id: int) -> None:
        state = self.states.get(client_id)
        if state is None or state.point_id is None:
            return
        point = self.get(state.point_id)
        if point is not None and point.occupant == client_id:
            point.occupant = None
        state.point_id = None
        state.is_peeking = False

    def peek(self, client_id: int) -> bool:
        state = self.states.get(client_id)
        if state is None or state.point_id is None:
            return False
        state.is_peeking = True
        state.peek_count += 1
        return True
