"""In-memory arena used as a host engine.

ArenaWorld implements the GameEngine protocol over a floor plane plus a
set of axis-aligned boxes. It has no physics beyond straight-line
integration of entity velocities; it exists so the AI can be driven
without a real game server (tests, the debug API, replays).
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

from .engine_interface import (
    EntityKind, EntitySnapshot, TraceResult, ENTITYNUM_NONE, ENTITYNUM_WORLD,
    CONTENTS_SOLID, CONTENTS_WATER, TEAM_FREE,
)
from .user_command import UserCommand
from .vector_math import Vec3, ORIGIN, add, scale, angle_vectors, mad
from .weapons import Weapon

logger = logging.getLogger(__name__)


@dataclass
class Box:
    """Axis-aligned solid (or water) volume."""
    mins: Vec3
    maxs: Vec3
    contents: int = CONTENTS_SOLID

    def contains(self, p: Vec3) -> bool:
        return all(self.mins[i] <= p[i] <= self.maxs[i] for i in range(3))

    def expanded(self, mins: Vec3, maxs: Vec3) -> "Box":
        """Minkowski sum with a trace hull."""
        return Box(
            (self.mins[0] - maxs[0], self.mins[1] - maxs[1], self.mins[2] - maxs[2]),
            (self.maxs[0] - mins[0], self.maxs[1] - mins[1], self.maxs[2] - mins[2]),
            self.contents,
        )


def _ray_box(start: Vec3, delta: Vec3, box: Box) -> Optional[Tuple[float, Vec3]]:
    """Slab test. Returns (entry fraction, entry normal) or None."""
    t_enter, t_exit = -math.inf, math.inf
    normal = ORIGIN
    for axis in range(3):
        s, d = start[axis], delta[axis]
        lo, hi = box.mins[axis], box.maxs[axis]
        if abs(d) < 1e-12:
            # Grazing along a face is not a hit
            if s <= lo or s >= hi:
                return None
            continue
        t1, t2 = (lo - s) / d, (hi - s) / d
        sign = -1.0
        if t1 > t2:
            t1, t2 = t2, t1
            sign = 1.0
        if t1 > t_enter:
            t_enter = t1
            n = [0.0, 0.0, 0.0]
            n[axis] = sign
            normal = (n[0], n[1], n[2])
        t_exit = min(t_exit, t2)
        if t_enter > t_exit:
            return None
    if t_exit <= 0 or t_enter > 1:
        return None
    return max(t_enter, 0.0), normal


class ArenaWorld:
    """A box-geometry arena implementing the host engine surface."""

    FLOOR_DEPTH = 64.0

    def __init__(
        self,
        bounds: Tuple[Vec3, Vec3] = ((-2048.0, -2048.0, -64.0), (2048.0, 2048.0, 512.0)),
        boxes: Optional[List[Box]] = None,
        with_floor: bool = True,
    ):
        self.bounds = bounds
        self.boxes: List[Box] = []
        if with_floor:
            mins, maxs = bounds
            self.boxes.append(Box((mins[0], mins[1], -self.FLOOR_DEPTH), (maxs[0], maxs[1], 0.0)))
        self.boxes.extend(boxes or [])
        self.entities: Dict[int, EntitySnapshot] = {}
        self.level_time_ms = 0
        self.commands: Dict[int, UserCommand] = {}
        self.command_log: List[Tuple[int, UserCommand]] = []
        self.trace_count = 0

    @classmethod
    def default_arena(cls) -> "ArenaWorld":
        """A small symmetric arena with pillars and a low wall."""
        boxes = [
            Box((-64, -64, 0), (64, 64, 160)),
            Box((-640, 320, 0), (-512, 448, 160)),
            Box((512, -448, 0), (640, -320, 160)),
            Box((-320, -700, 0), (320, -660, 40)),
            Box((-320, 660, 0), (320, 700, 40)),
            Box((900, 200, 0), (960, 800, 160)),
            Box((-960, -800, 0), (-900, -200, 160)),
        ]
        return cls(bounds=((-1536.0, -1536.0, -64.0), (1536.0, 1536.0, 512.0)), boxes=boxes)

    # Engine surface

    def trace(self, start: Vec3, mins: Vec3, maxs: Vec3, end: Vec3,
              pass_entity: int = ENTITYNUM_NONE, mask: int = CONTENTS_SOLID) -> TraceResult:
        self.trace_count += 1
        delta = (end[0] - start[0], end[1] - start[1], end[2] - start[2])
        best: Optional[Tuple[float, Vec3, Box]] = None
        for box in self.boxes:
            if not box.contents & mask:
                continue
            hull = box.expanded(mins, maxs)
            if hull.contains(start) and box.contents & CONTENTS_SOLID:
                # Starting on a surface is allowed; starting inside is not
                inside = all(hull.mins[i] < start[i] < hull.maxs[i] for i in range(3))
                if inside:
                    return TraceResult(0.0, start, ORIGIN, ENTITYNUM_WORLD, box.contents, True)
            hit = _ray_box(start, delta, hull)
            if hit is None:
                continue
            fraction, normal = hit
            if fraction <= 0.0 and normal != ORIGIN and _moving_away(delta, normal):
                continue
            if best is None or fraction < best[0]:
                best = (fraction, normal, box)
        if best is None:
            return TraceResult(1.0, end)
        fraction, normal, box = best
        return TraceResult(fraction, mad(start, fraction, delta), normal, ENTITYNUM_WORLD, box.contents)

    def point_contents(self, point: Vec3, pass_entity: int = ENTITYNUM_NONE) -> int:
        contents = 0
        for box in self.boxes:
            if all(box.mins[i] < point[i] < box.maxs[i] for i in range(3)):
                contents |= box.contents
        return contents

    def entity_snapshot(self, entity_id: int) -> Optional[EntitySnapshot]:
        return self.entities.get(entity_id)

    def time(self) -> int:
        return self.level_time_ms

    def send_command(self, client_id: int, command: UserCommand) -> None:
        self.commands[client_id] = command
        self.command_log.append((client_id, command))

    def world_bounds(self) -> Tuple[Vec3, Vec3]:
        return self.bounds

    # Arena management

    def add_box(self, mins: Vec3, maxs: Vec3, contents: int = CONTENTS_SOLID) -> Box:
        box = Box(mins, maxs, contents)
        self.boxes.append(box)
        return box

    def add_water(self, mins: Vec3, maxs: Vec3) -> Box:
        return self.add_box(mins, maxs, CONTENTS_WATER)

    def spawn_player(
        self,
        client_id: int,
        origin: Vec3,
        team: int = TEAM_FREE,
        name: str = "",
        weapon: int = Weapon.MACHINEGUN,
        ammo: Optional[Dict[int, int]] = None,
        angles: Vec3 = ORIGIN,
        health: int = 100,
        armor: int = 0,
    ) -> EntitySnapshot:
        snapshot = EntitySnapshot(
            entity_id=client_id,
            kind=EntityKind.PLAYER,
            origin=origin,
            angles=angles,
            health=health,
            armor=armor,
            weapon=int(weapon),
            team=team,
            name=name or f"player{client_id}",
            ammo=dict(ammo) if ammo is not None else {int(Weapon.MACHINEGUN): 100},
        )
        self.entities[client_id] = snapshot
        return snapshot

    def spawn_missile(self, entity_id: int, origin: Vec3, velocity: Vec3,
                      owner: int = ENTITYNUM_NONE, weapon: int = Weapon.ROCKET_LAUNCHER) -> EntitySnapshot:
        snapshot = EntitySnapshot(
            entity_id=entity_id, kind=EntityKind.MISSILE, origin=origin,
            velocity=velocity, weapon=int(weapon), owner=owner, on_ground=False,
        )
        self.entities[entity_id] = snapshot
        return snapshot

    def set_entity(self, snapshot: EntitySnapshot) -> None:
        self.entities[snapshot.entity_id] = snapshot

    def update_entity(self, entity_id: int, **changes) -> Optional[EntitySnapshot]:
        current = self.entities.get(entity_id)
        if current is None:
            return None
        updated = replace(current, **changes)
        self.entities[entity_id] = updated
        return updated

    def remove_entity(self, entity_id: int) -> None:
        self.entities.pop(entity_id, None)
        self.commands.pop(entity_id, None)

    def advance(self, dt_ms: int, apply_commands: bool = False) -> int:
        """Move the clock and integrate entity velocities.

        With ``apply_commands`` players move according to their last
        received UserCommand (no collision).
        """
        dt = dt_ms / 1000.0
        for entity_id, ent in list(self.entities.items()):
            velocity = ent.velocity
            angles = ent.angles
            if apply_commands and ent.kind == EntityKind.PLAYER and entity_id in self.commands:
                cmd = self.commands[entity_id]
                angles = cmd.view_angles()
                forward, right, _ = angle_vectors((0.0, angles[1], 0.0))
                f, r, _ = cmd.move_speeds()
                velocity = add(scale(forward, f), scale(right, r))
            if velocity == ORIGIN and angles == ent.angles:
                continue
            origin = mad(ent.origin, dt, velocity)
            self.entities[entity_id] = replace(ent, origin=origin, velocity=velocity, angles=angles)
        self.level_time_ms += dt_ms
        return self.level_time_ms


def _moving_away(delta: Vec3, normal: Vec3) -> bool:
    return delta[0] * normal[0] + delta[1] * normal[1] + delta[2] * normal[2] >= 0
