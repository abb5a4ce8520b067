"""Host engine and navigation service interfaces.

The AI never owns world state. Everything it knows about the world comes
through the two protocols below, which the host game (or the in-memory
ArenaWorld used by tests and the debug API) implements.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

from .vector_math import Vec3, ORIGIN, is_finite

MAX_CLIENTS = 64
MAX_GENTITIES = 1024
ENTITYNUM_NONE = MAX_GENTITIES - 1
ENTITYNUM_WORLD = MAX_GENTITIES - 2

# Content bits
CONTENTS_SOLID = 1
CONTENTS_LAVA = 8
CONTENTS_SLIME = 16
CONTENTS_WATER = 32
CONTENTS_FOG = 64
CONTENTS_PLAYERCLIP = 0x10000
CONTENTS_BODY = 0x2000000
CONTENTS_CORPSE = 0x4000000
KNOWN_CONTENTS = (
    CONTENTS_SOLID | CONTENTS_LAVA | CONTENTS_SLIME | CONTENTS_WATER
    | CONTENTS_FOG | CONTENTS_PLAYERCLIP | CONTENTS_BODY | CONTENTS_CORPSE
)

MASK_SOLID = CONTENTS_SOLID
MASK_PLAYERSOLID = CONTENTS_SOLID | CONTENTS_PLAYERCLIP | CONTENTS_BODY
MASK_SHOT = CONTENTS_SOLID | CONTENTS_BODY | CONTENTS_CORPSE
MASK_WATER = CONTENTS_WATER | CONTENTS_LAVA | CONTENTS_SLIME

TEAM_FREE = 0
TEAM_RED = 1
TEAM_BLUE = 2
TEAM_SPECTATOR = 3
NUM_TEAMS = 4


class EntityKind(Enum):
    PLAYER = "player"
    ITEM = "item"
    PROJECTILE = "projectile"
    MISSILE = "missile"
    WORLD = "world"
    OTHER = "other"


class ItemType(Enum):
    HEALTH = "health"
    ARMOR = "armor"
    WEAPON = "weapon"
    AMMO = "ammo"
    POWERUP = "powerup"
    HOLDABLE = "holdable"


@dataclass
class EntitySnapshot:
    """One entity as reported by the engine for the current tick."""
    entity_id: int
    kind: EntityKind
    origin: Vec3 = ORIGIN
    velocity: Vec3 = ORIGIN
    angles: Vec3 = ORIGIN
    health: int = 100
    armor: int = 0
    weapon: int = 0
    team: int = TEAM_FREE
    name: str = ""
    item_type: Optional[ItemType] = None
    owner: int = ENTITYNUM_NONE  # projectile/missile owner
    ammo: Dict[int, int] = field(default_factory=dict)
    on_ground: bool = True
    is_firing: bool = False

    @property
    def alive(self) -> bool:
        return self.kind != EntityKind.PLAYER or self.health > 0

    def is_valid(self) -> bool:
        """Reject malformed records (non-finite vectors, bad ids)."""
        return (
            0 <= self.entity_id < MAX_GENTITIES
            and is_finite(self.origin)
            and is_finite(self.velocity)
            and is_finite(self.angles)
        )


@dataclass
class TraceResult:
    fraction: float
    endpos: Vec3
    normal: Vec3 = ORIGIN
    entity: int = ENTITYNUM_NONE
    contents: int = 0
    start_solid: bool = False

    @property
    def hit(self) -> bool:
        return self.fraction < 1.0


@dataclass
class Waypoint:
    """A navigation waypoint, optionally tagged with a movement technique."""
    position: Vec3
    technique: Optional[str] = None
    speed_multiplier: float = 1.0
    requires_jump: bool = False
    requires_crouch: bool = False


class GameEngine(Protocol):
    """World queries and command delivery provided by the host."""

    def trace(self, start: Vec3, mins: Vec3, maxs: Vec3, end: Vec3,
              pass_entity: int, mask: int) -> TraceResult: ...

    def point_contents(self, point: Vec3, pass_entity: int) -> int: ...

    def entity_snapshot(self, entity_id: int) -> Optional[EntitySnapshot]: ...

    def time(self) -> int: ...

    def send_command(self, client_id: int, command: Any) -> None: ...

    def world_bounds(self) -> Tuple[Vec3, Vec3]: ...


class NavigationService(Protocol):
    """Area lookup and routing over a loaded navigation mesh."""

    def load_mesh(self, map_name: str) -> Any: ...

    def free_mesh(self, mesh: Any) -> None: ...

    def point_area_num(self, mesh: Any, point: Vec3) -> Optional[int]: ...

    def route_to_goal(self, mesh: Any, start: Vec3, goal: Vec3,
                      max_waypoints: int) -> List[Waypoint]: ...

    def area_travel_time(self, mesh: Any, area_a: int, area_b: int) -> float: ...

    def swimming(self, mesh: Any, point: Vec3) -> bool: ...


def sanitize_trace(result: Optional[TraceResult], start: Vec3) -> TraceResult:
    """Coerce a garbage trace into a solid hit at the start point."""
    if (
        result is None
        or not isinstance(result.fraction, (int, float))
        or not math.isfinite(result.fraction)
        or not 0.0 <= result.fraction <= 1.0
        or not is_finite(result.endpos)
    ):
        return TraceResult(fraction=0.0, endpos=start, contents=CONTENTS_SOLID, start_solid=True)
    return result


def sanitize_contents(bits: Any) -> int:
    """Unknown content bits are treated as solid."""
    if not isinstance(bits, int) or bits < 0:
        return CONTENTS_SOLID
    if bits & ~KNOWN_CONTENTS:
        return bits | CONTENTS_SOLID
    return bits


def is_enemy_team(my_team: int, other_team: int) -> bool:
    """Free-for-all players are everyone's enemy."""
    if my_team == TEAM_SPECTATOR or other_team == TEAM_SPECTATOR:
        return False
    if my_team == TEAM_FREE or other_team == TEAM_FREE:
        return True
    return my_team != other_team
