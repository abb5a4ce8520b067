"""
Team Coordinator: squads, formations, orders and support requests.

One coordinator per team. It owns the team's StrategicPlanner, its squads
and a bounded message queue; members are referenced by client id only.

=== PER-UPDATE LOOP (rate-limited) ===

1. Refresh member snapshots
2. Drain up to 5 messages (FIFO, queue drops the oldest when full)
3. Re-plan when a trigger fires, otherwise advance the plan
4. Hand active objectives to idle squads round-robin
5. Per squad: formation slots, then the state behaviour
6. Evaluate team effectiveness and coordination quality

=== FORMATIONS ===

Slots are laid out around the leader using its heading toward the squad
destination. Wedge: row = (i+1)//2, alternating sides,
back = row*spread*0.7, lateral = row*spread.
"""

import logging
import math
import random
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, List, Mapping, Optional

from .engine_interface import EntitySnapshot
from .strategic_planner import GoalType, StrategicObjective, StrategicPlanner
from .vector_math import (
    Vec3, ORIGIN, add, sub, scale, mad, distance, distance_2d, normalize, flatten,
    perpendicular, rotate_z, average, clamp,
)

logger = logging.getLogger(__name__)

MAX_TEAM_SIZE = 16
MAX_SQUADS = 4
MAX_SQUAD_SIZE = 4
MAX_TEAM_MESSAGES = 32
MESSAGES_PER_UPDATE = 5
COORDINATION_UPDATE_INTERVAL_MS = 500
SUPPORT_RANGE = 2000.0
SUPPORT_MIN_HEALTH = 30
SPREAD_ON_SUPPORT_HEALTH = 50
COORDINATED_ATTACK_DISTANCE = 400.0
PINCER_OFFSET = 200.0
COHESION_DECAY = 0.98
COHESION_RECOVERY = 0.01
STRAY_FACTOR = 0.3


class TeamRole(Enum):
    LEADER = "leader"
    ASSAULT = "assault"
    SUPPORT = "support"
    SNIPER = "sniper"
    SCOUT = "scout"
    DEFENDER = "defender"
    MEDIC = "medic"
    ENGINEER = "engineer"


class SquadState(Enum):
    IDLE = "idle"
    MOVING = "moving"
    ENGAGING = "engaging"
    DEFENDING = "defending"
    FLANKING = "flanking"
    REGROUPING = "regrouping"
    SUPPORTING = "supporting"
    RETREATING = "retreating"


class Formation(Enum):
    LINE = "line"
    COLUMN = "column"
    WEDGE = "wedge"
    DIAMOND = "diamond"
    CIRCLE = "circle"
    SPREAD = "spread"


FORMATION_SPREAD: Dict[Formation, float] = {
    Formation.LINE: 150.0,
    Formation.COLUMN: 50.0,
    Formation.WEDGE: 100.0,
    Formation.DIAMOND: 80.0,
    Formation.SPREAD: 200.0,
}
DEFAULT_SPREAD = 100.0


class MessageType(Enum):
    COMMAND = "command"
    REQUEST = "request"
    ALERT = "alert"
    STATUS = "status"
    RESPONSE = "response"
    COORDINATION = "coordination"


class CommandType(Enum):
    ATTACK = "attack"
    DEFEND = "defend"
    REGROUP = "regroup"
    FOLLOW = "follow"
    HOLD = "hold"
    RETREAT = "retreat"
    FLANK_LEFT = "flank_left"
    FLANK_RIGHT = "flank_right"
    PROVIDE_COVER = "provide_cover"
    SUPPRESS = "suppress"


SUPPRESSOR_ROLES = (TeamRole.SNIPER, TeamRole.SUPPORT, TeamRole.DEFENDER)

GOAL_SQUAD_STATE: Dict[GoalType, SquadState] = {
    GoalType.ELIMINATE: SquadState.ENGAGING,
    GoalType.DOMINATE: SquadState.ENGAGING,
    GoalType.DEFEND: SquadState.DEFENDING,
    GoalType.SURVIVE: SquadState.DEFENDING,
    GoalType.CAPTURE: SquadState.MOVING,
    GoalType.CONTROL: SquadState.MOVING,
    GoalType.COLLECT: SquadState.MOVING,
    GoalType.ESCORT: SquadState.SUPPORTING,
}


@dataclass
class TeamMessage:
    message_type: MessageType
    sender: int
    timestamp: int
    command: Optional[CommandType] = None
    position: Optional[Vec3] = None
    target: Optional[int] = None
    threat_level: int = 0
    data: Dict = field(default_factory=dict)


@dataclass
class TeamMember:
    client_id: int
    role: TeamRole = TeamRole.ASSAULT
    squad_id: Optional[int] = None
    position: Vec3 = ORIGIN
    health: int = 100
    armor: int = 0
    ammo_factor: float = 1.0
    alive: bool = True
    busy: bool = False
    assigned_position: Optional[Vec3] = None
    current_command: Optional[CommandType] = None
    target: Optional[int] = None


@dataclass
class Squad:
    squad_id: int
    name: str
    formation: Formation = Formation.WEDGE
    spread: float = FORMATION_SPREAD[Formation.WEDGE]
    members: List[int] = field(default_factory=list)
    leader: Optional[int] = None
    state: SquadState = SquadState.IDLE
    objective_id: Optional[int] = None
    rally_point: Optional[Vec3] = None
    attack_position: Optional[Vec3] = None
    defend_position: Optional[Vec3] = None
    target: Optional[int] = None
    cohesion: float = 1.0
    heading: Vec3 = (1.0, 0.0, 0.0)
    slots: Dict[int, Vec3] = field(default_factory=dict)

    @property
    def is_full(self) -> bool:
        return len(self.members) >= MAX_SQUAD_SIZE

    def set_formation(self, formation: Formation) -> None:
        self.formation = formation
        self.spread = FORMATION_SPREAD.get(formation, DEFAULT_SPREAD)

    @property
    def destination(self) -> Optional[Vec3]:
        if self.state in (SquadState.RETREATING, SquadState.REGROUPING):
            return self.rally_point
        if self.state == SquadState.DEFENDING:
            return self.defend_position or self.attack_position
        return self.attack_position


@dataclass
class MemberOrders:
    """What a member reads back from the coordinator each think."""
    assigned_position: Optional[Vec3]
    command: Optional[CommandType]
    squad_state: Optional[SquadState]
    objective_position: Optional[Vec3] = None
    target: Optional[int] = None
    objective_id: Optional[int] = None


def formation_offsets(formation: Formation, count: int, spread: float) -> List[Vec3]:
    """Slot offsets as (back, lateral, 0) for slot 0 (leader) .. count-1."""
    offsets: List[Vec3] = []
    for i in range(count):
        if i == 0:
            offsets.append(ORIGIN)
            continue
        row = (i + 1) // 2
        side = 1.0 if i % 2 == 1 else -1.0
        if formation == Formation.LINE:
            offsets.append((0.0, side * row * spread, 0.0))
        elif formation == Formation.COLUMN:
            offsets.append((i * spread, 0.0, 0.0))
        elif formation == Formation.WEDGE:
            offsets.append((row * spread * 0.7, side * row * spread, 0.0))
        elif formation == Formation.DIAMOND:
            ring = (i - 1) // 3 + 1
            corner = (i - 1) % 3
            if corner == 0:
                offsets.append((ring * spread, ring * spread, 0.0))
            elif corner == 1:
                offsets.append((ring * spread, -ring * spread, 0.0))
            else:
                offsets.append((2 * ring * spread, 0.0, 0.0))
        elif formation == Formation.CIRCLE:
            angle = 2 * math.pi * (i - 1) / max(1, count - 1)
            offsets.append((math.cos(angle) * spread, math.sin(angle) * spread, 0.0))
        else:
            offsets.append((row * spread * 0.5, side * row * spread, 0.0))
    return offsets


def formation_positions(formation: Formation, leader_position: Vec3, heading: Vec3,
                        count: int, spread: float) -> List[Vec3]:
    """World-space slots behind/beside the leader for its heading."""
    forward = normalize(flatten(heading))
    if forward == ORIGIN:
        forward = (1.0, 0.0, 0.0)
    right = perpendicular(forward)
    positions = []
    for back, lateral, _ in formation_offsets(formation, count, spread):
        positions.append(add(add(leader_position, scale(forward, -back)), scale(right, lateral)))
    return positions


class TeamCoordinator:
    """Coordinates one team's members."""

    def __init__(
        self,
        team_id: int,
        planner: Optional[StrategicPlanner] = None,
        coordination: bool = True,
        communication: bool = True,
        formations: bool = True,
        update_interval_ms: int = COORDINATION_UPDATE_INTERVAL_MS,
        seed: int = 0,
    ):
        self.team_id = team_id
        self.planner = planner or StrategicPlanner(team_id, seed=seed)
        self.coordination = coordination
        self.communication = communication
        self.formations = formations
        self.update_interval_ms = update_interval_ms
        self.rng = random.Random(seed)

        self.members: Dict[int, TeamMember] = {}
        self.squads: Dict[int, Squad] = {}
        self.messages: Deque[TeamMessage] = deque(maxlen=MAX_TEAM_MESSAGES)
        self.dropped_messages = 0
        self.processed_messages = 0

        self.coordinated_attack = True
        self.risk_tolerance = 0.5
        self.team_effectiveness = 1.0
        self.coordination_quality = 1.0
        self.last_update_ms: Optional[int] = None
        self._next_squad_id = 0
        self._round_robin = 0

    # Membership

    def add_member(self, client_id: int, role: TeamRole = TeamRole.ASSAULT) -> bool:
        if client_id in self.members:
            return True
        if len(self.members) >= MAX_TEAM_SIZE:
            logger.debug(f"Team {self.team_id}: full, refusing {client_id}")
            return False
        self.members[client_id] = TeamMember(client_id=client_id, role=role)
        squad = next((s for s in self._ordered_squads() if not s.is_full), None)
        if squad is None:
            squad = self.create_squad()
        if squad is not None:
            self.assign_to_squad(client_id, squad.squad_id)
        return True

    def remove_member(self, client_id: int) -> None:
        member = self.members.pop(client_id, None)
        if member is None:
            return
        if member.squad_id is not None and member.squad_id in self.squads:
            squad = self.squads[member.squad_id]
            if client_id in squad.members:
                squad.members.remove(client_id)
            squad.slots.pop(client_id, None)
            if squad.leader == client_id:
                self._elect_leader(squad)

    def create_squad(self, formation: Formation = Formation.WEDGE, name: str = "") -> Optional[Squad]:
        if len(self.squads) >= MAX_SQUADS:
            return None
        squad_id = self._next_squad_id
        self._next_squad_id += 1
        squad = Squad(squad_id=squad_id, name=name or f"squad{squad_id}")
        squad.set_formation(formation)
        self.squads[squad_id] = squad
        return squad

    def assign_to_squad(self, client_id: int, squad_id: int) -> bool:
        member = self.members.get(client_id)
        squad = self.squads.get(squad_id)
        if member is None or squad is None:
            return False
        if client_id in squad.members:
            return True
        if squad.is_full:
            return False
        if member.squad_id is not None and member.squad_id in self.squads:
            old = self.squads[member.squad_id]
            old.members.remove(client_id)
            old.slots.pop(client_id, None)
            if old.leader == client_id:
                self._elect_leader(old)
        squad.members.append(client_id)
        member.squad_id = squad_id
        if squad.leader is None:
            squad.leader = client_id
        return True

    def _elect_leader(self, squad: Squad) -> None:
        alive = [m for m in squad.members if m in self.members and self.members[m].alive]
        squad.leader = alive[0] if alive else (squad.members[0] if squad.members else None)

    def _ordered_squads(self) -> List[Squad]:
        return [self.squads[k] for k in sorted(self.squads)]

    def squad_of(self, client_id: int) -> Optional[Squad]:
        member = self.members.get(client_id)
        if member is None or member.squad_id is None:
            return None
        return self.squads.get(member.squad_id)

    # Messages

    def send_message(self, message: TeamMessage) -> bool:
        if not self.communication:
            return False
        if len(self.messages) == self.messages.maxlen:
            self.dropped_messages += 1
        self.messages.append(message)
        return True

    def post_alert(self, sender: int, position: Vec3, threat_level: int, now_ms: int,
                   target: Optional[int] = None) -> bool:
        return self.send_message(TeamMessage(MessageType.ALERT, sender, now_ms, position=position,
                                             threat_level=threat_level, target=target))

    def request_support(self, requester: int, position: Vec3, now_ms: int, health: int = 100) -> bool:
        return self.send_message(TeamMessage(MessageType.REQUEST, requester, now_ms, position=position,
                                             data={"health": health}))

    def issue_command(self, sender: int, command: CommandType, now_ms: int, position: Optional[Vec3] = None) -> bool:
        return self.send_message(TeamMessage(MessageType.COMMAND, sender, now_ms, command=command, position=position))

    def _process_messages(self) -> None:
        for _ in range(min(MESSAGES_PER_UPDATE, len(self.messages))):
            message = self.messages.popleft()
            self.processed_messages += 1
            if message.message_type == MessageType.COMMAND:
                self._apply_command(message)
            elif message.message_type == MessageType.REQUEST and message.position is not None:
                self.handle_support_request(message.sender, message.position, int(message.data.get("health", 100)))
            elif message.message_type == MessageType.ALERT and message.position is not None:
                self.respond_to_threat(message.position, message.threat_level, message.target)

    def _apply_command(self, message: TeamMessage) -> None:
        if message.command == CommandType.RETREAT:
            self.emergency_retreat()
            return
        for member in self.members.values():
            if member.client_id == message.sender or not member.alive:
                continue
            member.current_command = message.command
            if message.position is not None:
                member.assigned_position = message.position

    # Responses

    def handle_support_request(self, requester: int, position: Vec3, health: int = 100) -> Optional[int]:
        """Send the best available member toward a requester. Returns the
        responder id."""
        best, best_score = None, -math.inf
        for member in sorted(self.members.values(), key=lambda m: m.client_id):
            if member.client_id == requester or not member.alive or member.health < SUPPORT_MIN_HEALTH:
                continue
            d = distance(member.position, position)
            if d > SUPPORT_RANGE:
                continue
            availability = 0.3 if member.busy else 1.0
            score = 0.5 * (1.0 - d / SUPPORT_RANGE) + 0.3 * (member.health / 100.0) + 0.2 * availability
            if score > best_score:
                best, best_score = member, score
        if best is None:
            return None

        best.assigned_position = position
        best.current_command = CommandType.PROVIDE_COVER
        squad = self.squad_of(best.client_id)
        if squad is not None and squad.state in (SquadState.IDLE, SquadState.MOVING):
            squad.state = SquadState.SUPPORTING
            squad.attack_position = position

        if health < SPREAD_ON_SUPPORT_HEALTH:
            for squad in self._ordered_squads():
                leader = self.members.get(squad.leader) if squad.leader is not None else None
                if leader is not None and distance(leader.position, position) <= SUPPORT_RANGE:
                    squad.set_formation(Formation.SPREAD)
        logger.debug(f"Team {self.team_id}: {best.client_id} responds to support request from {requester}")
        return best.client_id

    def respond_to_threat(self, position: Vec3, threat_level: int, target: Optional[int] = None) -> None:
        squads = [s for s in self._ordered_squads() if s.members]
        if not squads:
            return
        if threat_level >= 3:
            for squad in squads:
                squad.state = SquadState.ENGAGING
                squad.attack_position = position
                squad.target = target
            return
        nearest = min(squads, key=lambda s: (distance(self._squad_center(s), position), s.squad_id))
        nearest.attack_position = position
        nearest.target = target
        nearest.state = SquadState.ENGAGING if threat_level == 2 else SquadState.MOVING

    def handle_casualty(self, client_id: int) -> None:
        member = self.members.get(client_id)
        if member is None:
            return
        member.alive = False
        member.current_command = None
        squad = self.squad_of(client_id)
        if squad is None:
            return
        if squad.leader == client_id:
            self._elect_leader(squad)
        if not any(self.members[m].alive for m in squad.members if m in self.members):
            squad.state = SquadState.REGROUPING
        logger.debug(f"Team {self.team_id}: casualty {client_id} in {squad.name}")

    def emergency_retreat(self) -> None:
        for squad in self._ordered_squads():
            squad.state = SquadState.RETREATING
            if squad.rally_point is None:
                squad.rally_point = self._squad_center(squad)
            for client_id in squad.members:
                member = self.members.get(client_id)
                if member is not None and member.alive:
                    member.current_command = CommandType.RETREAT
                    member.assigned_position = squad.rally_point
        logger.info(f"Team {self.team_id}: emergency retreat")

    def order_squad(self, squad_id: int, state: SquadState, position: Optional[Vec3] = None,
                    target: Optional[int] = None) -> bool:
        squad = self.squads.get(squad_id)
        if squad is None:
            return False
        squad.state = state
        if state == SquadState.DEFENDING:
            squad.defend_position = position
        elif state in (SquadState.RETREATING, SquadState.REGROUPING):
            squad.rally_point = position
        else:
            squad.attack_position = position
        squad.target = target
        return True

    # Update loop

    def update(self, now_ms: int, world: Mapping[int, EntitySnapshot],
               enemies_seen: Optional[List[EntitySnapshot]] = None) -> bool:
        """Run one coordination step. Returns False when rate-limited."""
        if self.last_update_ms is not None and now_ms - self.last_update_ms < self.update_interval_ms:
            return False
        self.last_update_ms = now_ms

        self._refresh_members(world)
        self._process_messages()

        team = [world.get(i) for i in sorted(self.members)]
        self.planner.assess([t for t in team if t is not None], enemies_seen or [], now_ms)
        if self.planner.needs_replanning(now_ms):
            self.planner.replan(now_ms)
        else:
            self.planner.update_plan(now_ms, world, self.members.keys())

        if self.coordination:
            self.distribute_objectives()
        for squad in self._ordered_squads():
            if not squad.members:
                continue
            if self.formations:
                self.maintain_formation(squad)
            if self.coordination:
                self._execute_squad_state(squad, world)
        self.evaluate()
        return True

    def _refresh_members(self, world: Mapping[int, EntitySnapshot]) -> None:
        for client_id, member in self.members.items():
            snapshot = world.get(client_id)
            if snapshot is None:
                continue
            was_alive = member.alive
            member.position = snapshot.origin
            member.health = snapshot.health
            member.armor = snapshot.armor
            member.ammo_factor = clamp(sum(snapshot.ammo.values()) / 100.0, 0.0, 1.0)
            member.alive = snapshot.alive
            if was_alive and not member.alive:
                self.handle_casualty(client_id)
            elif member.alive and not was_alive:
                squad = self.squad_of(client_id)
                if squad is not None and squad.leader is None:
                    squad.leader = client_id

    def distribute_objectives(self) -> None:
        plan = self.planner.plan
        if plan is None:
            return
        active = {o.objective_id: o for o in plan.active_objectives()}
        for squad in self._ordered_squads():
            if squad.objective_id is not None and squad.objective_id not in active:
                squad.objective_id = None
                if squad.state not in (SquadState.RETREATING, SquadState.REGROUPING):
                    squad.state = SquadState.IDLE

        taken = {s.objective_id for s in self.squads.values() if s.objective_id is not None}
        pending = [o for o in sorted(active.values(), key=lambda o: (int(o.priority), o.objective_id))
                   if o.objective_id not in taken]
        idle = [s for s in self._ordered_squads() if s.state == SquadState.IDLE and s.members]
        if not pending or not idle:
            return
        for objective in pending:
            if not idle:
                break
            squad = idle.pop(self._round_robin % len(idle))
            self._round_robin += 1
            self._assign_objective(squad, objective, plan)

    def _assign_objective(self, squad: Squad, objective: StrategicObjective, plan) -> None:
        goal = next((g for g in plan.goals if g.goal_id == objective.goal_id), None)
        squad.objective_id = objective.objective_id
        squad.state = GOAL_SQUAD_STATE.get(goal.goal_type, SquadState.MOVING) if goal else SquadState.MOVING
        squad.target = objective.target_entity
        if squad.state == SquadState.DEFENDING:
            squad.defend_position = objective.position
        squad.attack_position = objective.position
        objective.assigned_agents = list(squad.members)

    def _squad_center(self, squad: Squad) -> Vec3:
        alive = [self.members[m].position for m in squad.members if m in self.members and self.members[m].alive]
        return average(alive) if alive else ORIGIN

    def maintain_formation(self, squad: Squad) -> None:
        leader = self.members.get(squad.leader) if squad.leader is not None else None
        if leader is None:
            return
        destination = squad.destination
        if destination is not None and distance_2d(destination, leader.position) > 1.0:
            squad.heading = normalize(flatten(sub(destination, leader.position)))
        ordered = [squad.leader] + [m for m in squad.members if m != squad.leader]
        slots = formation_positions(squad.formation, leader.position, squad.heading, len(ordered), squad.spread)
        squad.slots = dict(zip(ordered, slots))

        leader.assigned_position = destination
        for client_id in ordered[1:]:
            member = self.members.get(client_id)
            if member is None or not member.alive:
                continue
            member.assigned_position = squad.slots[client_id]
            if distance_2d(member.position, squad.slots[client_id]) > STRAY_FACTOR * squad.spread:
                squad.cohesion *= COHESION_DECAY
        squad.cohesion = clamp(squad.cohesion + COHESION_RECOVERY, 0.0, 1.0)

    def _execute_squad_state(self, squad: Squad, world: Mapping[int, EntitySnapshot]) -> None:
        alive = [m for m in squad.members if m in self.members and self.members[m].alive]
        if not alive:
            return
        state = squad.state
        if state == SquadState.ENGAGING and squad.attack_position is not None:
            if self.coordinated_attack:
                self.coordinated_attack_positions(squad, squad.attack_position)
            else:
                self._command_all(alive, CommandType.ATTACK, target=squad.target)
        elif state == SquadState.FLANKING and squad.attack_position is not None:
            self.flank(squad, squad.attack_position)
        elif state == SquadState.DEFENDING:
            position = squad.defend_position or squad.attack_position
            for client_id in alive:
                member = self.members[client_id]
                if member.role in SUPPRESSOR_ROLES:
                    member.current_command = CommandType.SUPPRESS
                    member.assigned_position = position
                else:
                    member.current_command = CommandType.PROVIDE_COVER
        elif state == SquadState.RETREATING:
            self._command_all(alive, CommandType.RETREAT, position=squad.rally_point)
        elif state == SquadState.REGROUPING:
            if squad.rally_point is None:
                squad.rally_point = self._squad_center(squad)
            self._command_all(alive, CommandType.REGROUP, position=squad.rally_point)
            if squad.cohesion > 0.9 and all(
                distance_2d(self.members[m].position, squad.rally_point) < squad.spread * 2 for m in alive
            ):
                squad.state = SquadState.IDLE
        elif state in (SquadState.MOVING, SquadState.SUPPORTING):
            self._command_all(alive, CommandType.FOLLOW)
        else:
            self._command_all(alive, CommandType.HOLD)

    def _command_all(self, client_ids: List[int], command: CommandType, position: Optional[Vec3] = None,
                     target: Optional[int] = None) -> None:
        for client_id in client_ids:
            member = self.members[client_id]
            member.current_command = command
            member.target = target
            if position is not None:
                member.assigned_position = position

    def coordinated_attack_positions(self, squad: Squad, target_position: Vec3) -> List[Vec3]:
        """Concentrate on one target; up to three attackers at 90 degree
        offsets around it."""
        alive = [m for m in squad.members if m in self.members and self.members[m].alive]
        bearing = normalize(flatten(sub(self._squad_center(squad), target_position)))
        if bearing == ORIGIN:
            bearing = (1.0, 0.0, 0.0)
        positions = []
        for i, client_id in enumerate(alive):
            member = self.members[client_id]
            member.current_command = CommandType.ATTACK
            member.target = squad.target
            if i < 3:
                angle = (0.0, 90.0, -90.0)[i]
                position = mad(target_position, COORDINATED_ATTACK_DISTANCE, rotate_z(bearing, angle))
                member.assigned_position = position
                positions.append(position)
        return positions

    def flank(self, squad: Squad, target_position: Vec3) -> None:
        """Pincer: half the squad 200 units left of the target line, half right."""
        alive = [m for m in squad.members if m in self.members and self.members[m].alive]
        bearing = normalize(flatten(sub(target_position, self._squad_center(squad))))
        if bearing == ORIGIN:
            bearing = (1.0, 0.0, 0.0)
        side = perpendicular(bearing)
        half = (len(alive) + 1) // 2
        for i, client_id in enumerate(alive):
            member = self.members[client_id]
            if i < half:
                member.current_command = CommandType.FLANK_LEFT
                member.assigned_position = mad(target_position, -PINCER_OFFSET, side)
            else:
                member.current_command = CommandType.FLANK_RIGHT
                member.assigned_position = mad(target_position, PINCER_OFFSET, side)
            member.target = squad.target

    # Evaluation

    def evaluate(self) -> None:
        alive = [m for m in self.members.values() if m.alive]
        if alive:
            self.team_effectiveness = sum(
                (m.health / 100.0 + m.armor / 200.0 + m.ammo_factor) / 2.5 for m in alive
            ) / len(alive)
        else:
            self.team_effectiveness = 0.0
        squads = [s for s in self.squads.values() if s.members]
        self.coordination_quality = sum(s.cohesion for s in squads) / len(squads) if squads else 1.0

        if self.team_effectiveness < 0.3:
            self.coordinated_attack = False
            self.risk_tolerance = 0.2
        elif self.team_effectiveness > 0.7:
            self.coordinated_attack = True
            self.risk_tolerance = 0.7

    # Queries

    def get_orders(self, client_id: int) -> Optional[MemberOrders]:
        member = self.members.get(client_id)
        if member is None:
            return None
        squad = self.squad_of(client_id)
        objective_position = None
        objective_id = None
        plan = self.planner.plan
        if squad is not None and squad.objective_id is not None and plan is not None:
            objective = plan.get_objective(squad.objective_id)
            if objective is not None and objective.active:
                objective_position = objective.position
                objective_id = objective.objective_id
        return MemberOrders(
            assigned_position=member.assigned_position,
            command=member.current_command,
            squad_state=squad.state if squad is not None else None,
            objective_position=objective_position,
            target=member.target,
            objective_id=objective_id,
        )

    def set_member_busy(self, client_id: int, busy: bool) -> None:
        member = self.members.get(client_id)
        if member is not None:
            member.busy = busy

    def summary(self) -> Dict:
        return {
            "team_id": self.team_id,
            "members": sorted(self.members),
            "team_effectiveness": round(self.team_effectiveness, 3),
            "coordination_quality": round(self.coordination_quality, 3),
            "coordinated_attack": self.coordinated_attack,
            "risk_tolerance": self.risk_tolerance,
            "pending_messages": len(self.messages),
            "dropped_messages": self.dropped_messages,
            "squads": [
                {
                    "squad_id": s.squad_id,
                    "name": s.name,
                    "formation": s.formation.value,
                    "state": s.state.value,
                    "leader": s.leader,
                    "members": list(s.members),
                    "cohesion": round(s.cohesion, 3),
                    "objective_id": s.objective_id,
                }
                for s in self._ordered_squads()
            ],
            "planner": self.planner.summary(),
        }
