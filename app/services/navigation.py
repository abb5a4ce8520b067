"""Grid navigation service.

A* over a numpy occupancy grid rasterised from the engine's geometry.
8-directional movement with diagonal cost sqrt(2); paths are simplified
by grid line-of-sight and returned as world-space Waypoints.
"""

import heapq
import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

import numpy as np

from .engine_interface import (
    CONTENTS_SOLID, CONTENTS_WATER, MASK_SOLID, GameEngine, Waypoint,
)
from .vector_math import Vec3, distance

logger = logging.getLogger(__name__)

PLAYER_SPEED = 320.0  # units/s used for travel-time estimates
STEP_HEIGHT = 18.0
PLAYER_HEIGHT = 72.0


@dataclass
class Node:
    """A* search node."""
    x: int
    y: int
    g: float = 0  # Cost from start
    h: float = 0  # Heuristic to goal
    parent: Optional['Node'] = None

    @property
    def f(self) -> float:
        return self.g + self.h

    def __lt__(self, other: 'Node') -> bool:
        return self.f < other.f


@dataclass
class NavMesh:
    """A loaded navigation grid."""
    map_name: str
    grid: np.ndarray  # 0 = walkable, 1 = blocked
    origin: Tuple[float, float]
    cell_size: float

    @property
    def shape(self) -> Tuple[int, int]:
        return self.grid.shape


class GridNavigation:
    """NavigationService implementation over a rasterised occupancy grid."""

    DIRECTIONS = [
        (0, 1), (1, 0), (0, -1), (-1, 0),  # Cardinal
        (1, 1), (1, -1), (-1, 1), (-1, -1)  # Diagonal
    ]
    DIAGONAL_COST = 1.414  # sqrt(2)
    CARDINAL_COST = 1.0
    STRAFE_JUMP_MIN_RUN = 600.0  # straight run length worth a strafe jump

    def __init__(self, engine: GameEngine, cell_size: float = 64.0):
        self.engine = engine
        self.cell_size = cell_size

    def load_mesh(self, map_name: str) -> NavMesh:
        """Rasterise the engine's solid geometry into a grid."""
        mins, maxs = self.engine.world_bounds()
        width = max(1, int(math.ceil((maxs[0] - mins[0]) / self.cell_size)))
        height = max(1, int(math.ceil((maxs[1] - mins[1]) / self.cell_size)))
        grid = np.zeros((width, height), dtype=np.uint8)

        boxes = getattr(self.engine, "boxes", None)
        if boxes is not None:
            for box in boxes:
                if not box.contents & CONTENTS_SOLID:
                    continue
                # Floors, steps and overhangs do not block walking
                if box.maxs[2] <= STEP_HEIGHT or box.mins[2] >= PLAYER_HEIGHT:
                    continue
                x0 = int(math.floor((box.mins[0] - mins[0]) / self.cell_size))
                x1 = int(math.ceil((box.maxs[0] - mins[0]) / self.cell_size))
                y0 = int(math.floor((box.mins[1] - mins[1]) / self.cell_size))
                y1 = int(math.ceil((box.maxs[1] - mins[1]) / self.cell_size))
                grid[max(0, x0):min(width, x1), max(0, y0):min(height, y1)] = 1
        else:
            self._trace_grid(grid, mins)

        blocked = int(grid.sum())
        logger.info(f"Loaded nav grid for {map_name}: {width}x{height} cells, {blocked} blocked")
        return NavMesh(map_name, grid, (mins[0], mins[1]), self.cell_size)

    def _trace_grid(self, grid: np.ndarray, mins: Vec3) -> None:
        """Fallback rasterisation for engines without box geometry: trace
        each cell centre at waist height."""
        for gx in range(grid.shape[0]):
            for gy in range(grid.shape[1]):
                x = mins[0] + (gx + 0.5) * self.cell_size
                y = mins[1] + (gy + 0.5) * self.cell_size
                if self.engine.point_contents((x, y, 32.0), -1) & MASK_SOLID:
                    grid[gx, gy] = 1

    def free_mesh(self, mesh: Optional[NavMesh]) -> None:
        if mesh is not None:
            logger.info(f"Freed nav grid for {mesh.map_name}")

    def world_to_grid(self, mesh: NavMesh, point: Vec3) -> Tuple[int, int]:
        return (
            int(math.floor((point[0] - mesh.origin[0]) / mesh.cell_size)),
            int(math.floor((point[1] - mesh.origin[1]) / mesh.cell_size)),
        )

    def grid_to_world(self, mesh: NavMesh, gx: int, gy: int, z: float) -> Vec3:
        return (
            mesh.origin[0] + (gx + 0.5) * mesh.cell_size,
            mesh.origin[1] + (gy + 0.5) * mesh.cell_size,
            z,
        )

    def is_walkable(self, mesh: NavMesh, x: int, y: int) -> bool:
        w, h = mesh.shape
        if x < 0 or x >= w or y < 0 or y >= h:
            return False
        return mesh.grid[x, y] == 0

    def point_area_num(self, mesh: Optional[NavMesh], point: Vec3) -> Optional[int]:
        """Area ids are flat cell indices; blocked or outside cells have none."""
        if mesh is None:
            return None
        gx, gy = self.world_to_grid(mesh, point)
        if not self.is_walkable(mesh, gx, gy):
            return None
        return gx * mesh.shape[1] + gy

    def area_center(self, mesh: NavMesh, area: int, z: float = 24.0) -> Vec3:
        gx, gy = divmod(area, mesh.shape[1])
        return self.grid_to_world(mesh, gx, gy, z)

    def heuristic(self, a: Tuple[int, int], b: Tuple[int, int]) -> float:
        dx, dy = abs(a[0] - b[0]), abs(a[1] - b[1])
        return self.CARDINAL_COST * (dx + dy) + (self.DIAGONAL_COST - 2 * self.CARDINAL_COST) * min(dx, dy)

    def _search(self, mesh: NavMesh, start: Tuple[int, int],
                goal: Tuple[int, int]) -> Optional[List[Tuple[int, int]]]:
        open_set: List[Node] = []
        closed_set: Set[Tuple[int, int]] = set()
        start_node = Node(start[0], start[1], 0, self.heuristic(start, goal))
        heapq.heappush(open_set, start_node)
        node_map: Dict[Tuple[int, int], Node] = {start: start_node}

        iterations = 0
        max_iterations = mesh.grid.size * 2

        while open_set and iterations < max_iterations:
            iterations += 1
            current = heapq.heappop(open_set)
            key = (current.x, current.y)
            if key in closed_set:
                continue

            if key == goal:
                cells = []
                node = current
                while node:
                    cells.append((node.x, node.y))
                    node = node.parent
                cells.reverse()
                return cells

            closed_set.add(key)

            for i, (dx, dy) in enumerate(self.DIRECTIONS):
                nx, ny = current.x + dx, current.y + dy
                if not self.is_walkable(mesh, nx, ny) or (nx, ny) in closed_set:
                    continue
                # No corner cutting
                if i >= 4 and not (self.is_walkable(mesh, current.x + dx, current.y)
                                   and self.is_walkable(mesh, current.x, current.y + dy)):
                    continue
                move_cost = self.DIAGONAL_COST if i >= 4 else self.CARDINAL_COST
                new_g = current.g + move_cost
                existing = node_map.get((nx, ny))
                if existing is None or new_g < existing.g:
                    neighbor = Node(nx, ny, new_g, self.heuristic((nx, ny), goal), current)
                    node_map[(nx, ny)] = neighbor
                    heapq.heappush(open_set, neighbor)
        return None

    def _grid_line_clear(self, mesh: NavMesh, a: Tuple[int, int], b: Tuple[int, int]) -> bool:
        """Bresenham walk between two cells."""
        x0, y0 = a
        x1, y1 = b
        dx, dy = abs(x1 - x0), -abs(y1 - y0)
        sx = 1 if x0 < x1 else -1
        sy = 1 if y0 < y1 else -1
        err = dx + dy
        while True:
            if not self.is_walkable(mesh, x0, y0):
                return False
            if (x0, y0) == (x1, y1):
                return True
            e2 = 2 * err
            if e2 >= dy:
                err += dy
                x0 += sx
            if e2 <= dx:
                err += dx
                y0 += sy

    def _simplify(self, mesh: NavMesh, cells: List[Tuple[int, int]]) -> List[Tuple[int, int]]:
        """Remove unnecessary waypoints using grid line-of-sight."""
        if len(cells) <= 2:
            return cells
        simplified = [cells[0]]
        i = 0
        while i < len(cells) - 1:
            furthest = i + 1
            for j in range(i + 2, len(cells)):
                if self._grid_line_clear(mesh, cells[i], cells[j]):
                    furthest = j
            simplified.append(cells[furthest])
            i = furthest
        return simplified

    def route_to_goal(self, mesh: Optional[NavMesh], start: Vec3, goal: Vec3,
                      max_waypoints: int = 32) -> List[Waypoint]:
        """Waypoints from start to goal, excluding the start cell.

        Returns an empty list when either end is blocked or unreachable.
        """
        if mesh is None:
            return []
        start_cell = self.world_to_grid(mesh, start)
        goal_cell = self.world_to_grid(mesh, goal)
        if not self.is_walkable(mesh, *start_cell) or not self.is_walkable(mesh, *goal_cell):
            return []
        cells = self._search(mesh, start_cell, goal_cell)
        if cells is None:
            return []

        waypoints: List[Waypoint] = []
        previous = start
        for cell in self._simplify(mesh, cells)[1:]:
            position = self.grid_to_world(mesh, cell[0], cell[1], start[2])
            technique = "StrafeJump" if distance(previous, position) >= self.STRAFE_JUMP_MIN_RUN else None
            waypoints.append(Waypoint(position=position, technique=technique))
            previous = position
        if waypoints:
            # Land exactly on the requested goal
            last = waypoints[-1]
            waypoints[-1] = Waypoint(position=(goal[0], goal[1], start[2]), technique=last.technique)
        else:
            waypoints.append(Waypoint(position=(goal[0], goal[1], start[2])))
        return waypoints[:max(1, max_waypoints)]

    def area_travel_time(self, mesh: Optional[NavMesh], area_a: int, area_b: int) -> float:
        """Seconds to travel between two areas at run speed, inf when unreachable."""
        if mesh is None:
            return math.inf
        a = self.area_center(mesh, area_a)
        b = self.area_center(mesh, area_b)
        route = self.route_to_goal(mesh, a, b, max_waypoints=mesh.grid.size)
        if not route:
            return math.inf
        total = 0.0
        previous = a
        for waypoint in route:
            total += distance(previous, waypoint.position)
            previous = waypoint.position
        return total / PLAYER_SPEED

    def swimming(self, mesh: Optional[NavMesh], point: Vec3) -> bool:
        return bool(self.engine.point_contents(point, -1) & CONTENTS_WATER)
