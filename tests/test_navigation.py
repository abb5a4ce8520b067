"""Tests for navigation.py and arena_world.py"""

import math
import pytest
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from app.services.arena_world import ArenaWorld, Box
from app.services.navigation import GridNavigation, PLAYER_SPEED
from app.services.engine_interface import (
    CONTENTS_SOLID, CONTENTS_WATER, EntityKind, TraceResult, sanitize_trace, sanitize_contents,
    is_enemy_team, TEAM_FREE, TEAM_RED, TEAM_BLUE, TEAM_SPECTATOR,
)
from app.services.user_command import UserCommand


@pytest.fixture
def walled():
    """Arena with a wall between x=-64 and x=64 spanning y in [-512, 512]."""
    world = ArenaWorld(boxes=[Box((-64, -512, 0), (64, 512, 160))])
    nav = GridNavigation(world)
    return world, nav, nav.load_mesh("walled")


class TestArenaWorld:
    """Tests for the in-memory engine."""

    def test_trace_hits_pillar(self):
        """Test a trace through the centre pillar stops at its face."""
        world = ArenaWorld.default_arena()
        tr = world.trace((-500, 0, 50), (0, 0, 0), (0, 0, 0), (500, 0, 50))
        assert tr.hit
        assert tr.fraction == pytest.approx(0.436)
        assert tr.normal == (-1.0, 0.0, 0.0)

    def test_trace_clear(self):
        """Test a trace above all geometry is clear."""
        world = ArenaWorld.default_arena()
        tr = world.trace((-500, 0, 300), (0, 0, 0), (0, 0, 0), (500, 0, 300))
        assert not tr.hit
        assert tr.endpos == (500, 0, 300)

    def test_trace_from_floor_surface(self):
        """Test a trace starting on the floor and moving up is not blocked."""
        world = ArenaWorld()
        tr = world.trace((0, 0, 0), (0, 0, 0), (0, 0, 0), (0, 0, 100))
        assert not tr.hit

    def test_point_contents(self):
        """Test solid and water volumes report their bits."""
        world = ArenaWorld()
        world.add_water((100, 100, 0), (200, 200, 64))
        assert world.point_contents((0, 0, -10)) & CONTENTS_SOLID
        assert world.point_contents((150, 150, 10)) & CONTENTS_WATER
        assert world.point_contents((0, 0, 10)) == 0

    def test_advance_integrates_velocity(self):
        """Test missiles move along their velocity."""
        world = ArenaWorld()
        world.spawn_missile(100, (0, 0, 50), (900, 0, 0), owner=1)
        world.advance(100)
        assert world.entities[100].origin == pytest.approx((90.0, 0.0, 50.0))
        assert world.time() == 100

    def test_advance_applies_commands(self):
        """Test players follow their last command."""
        world = ArenaWorld()
        world.spawn_player(1, (0, 0, 24))
        world.send_command(1, UserCommand.from_intent(0, (0, 0, 0), 400, 0, 0, 0, 2))
        world.advance(1000, apply_commands=True)
        assert world.entities[1].origin[0] == pytest.approx(400.0)
        assert len(world.command_log) == 1

    def test_spawn_player_defaults(self):
        """Test spawned players are alive with a machinegun."""
        world = ArenaWorld()
        snap = world.spawn_player(3, (0, 0, 24), team=TEAM_RED)
        assert snap.kind == EntityKind.PLAYER
        assert snap.alive and snap.is_valid()
        assert snap.ammo == {2: 100}


class TestEngineGuards:
    """Tests for host input sanitising."""

    def test_garbage_trace_is_solid(self):
        """Test malformed traces become a start-solid hit."""
        for bad in (None, TraceResult(float('nan'), (0, 0, 0)), TraceResult(2.0, (0, 0, 0)),
                    TraceResult(0.5, (float('inf'), 0, 0))):
            tr = sanitize_trace(bad, (1, 2, 3))
            assert tr.start_solid and tr.fraction == 0.0 and tr.endpos == (1, 2, 3)

    def test_good_trace_passes(self):
        """Test a valid trace is returned unchanged."""
        tr = TraceResult(0.5, (1, 1, 1))
        assert sanitize_trace(tr, (0, 0, 0)) is tr

    def test_unknown_contents_are_solid(self):
        """Test unknown bits and garbage values read as solid."""
        assert sanitize_contents(-1) == CONTENTS_SOLID
        assert sanitize_contents("x") == CONTENTS_SOLID
        assert sanitize_contents(1 << 40) & CONTENTS_SOLID
        assert sanitize_contents(CONTENTS_WATER) == CONTENTS_WATER

    def test_enemy_teams(self):
        """Test free-for-all, team and spectator relations."""
        assert is_enemy_team(TEAM_FREE, TEAM_FREE)
        assert is_enemy_team(TEAM_RED, TEAM_BLUE)
        assert not is_enemy_team(TEAM_RED, TEAM_RED)
        assert not is_enemy_team(TEAM_RED, TEAM_SPECTATOR)


class TestGridNavigation:
    """Tests for grid routing."""

    def test_wall_cells_blocked(self, walled):
        """Test wall cells have no area and open cells do."""
        world, nav, mesh = walled
        assert nav.point_area_num(mesh, (0, 0, 24)) is None
        assert nav.point_area_num(mesh, (-500, 0, 24)) is not None
        assert nav.point_area_num(None, (0, 0, 24)) is None

    def test_floor_does_not_block(self):
        """Test an empty arena grid is fully walkable."""
        world = ArenaWorld()
        mesh = GridNavigation(world).load_mesh("empty")
        assert int(mesh.grid.sum()) == 0

    def test_straight_route(self):
        """Test open space routes straight to the goal."""
        world = ArenaWorld()
        nav = GridNavigation(world)
        mesh = nav.load_mesh("empty")
        route = nav.route_to_goal(mesh, (-500, 0, 24), (500, 0, 24), 32)
        assert len(route) == 1
        assert route[0].position == (500, 0, 24)
        assert route[0].technique == "StrafeJump"

    def test_route_around_wall(self, walled):
        """Test the route detours past the end of the wall."""
        world, nav, mesh = walled
        route = nav.route_to_goal(mesh, (-500, 0, 24), (500, 0, 24), 32)
        assert route
        assert route[-1].position == (500, 0, 24)
        assert max(abs(w.position[1]) for w in route) >= 512

    def test_blocked_goal(self, walled):
        """Test a goal inside the wall has no route."""
        world, nav, mesh = walled
        assert nav.route_to_goal(mesh, (-500, 0, 24), (0, 0, 24), 32) == []

    def test_max_waypoints(self, walled):
        """Test the route is truncated to the requested length."""
        world, nav, mesh = walled
        assert len(nav.route_to_goal(mesh, (-500, 0, 24), (500, 0, 24), 1)) == 1

    def test_travel_time(self):
        """Test travel time is distance over run speed."""
        world = ArenaWorld()
        nav = GridNavigation(world)
        mesh = nav.load_mesh("empty")
        a = nav.point_area_num(mesh, (-500, 0, 24))
        b = nav.point_area_num(mesh, (500, 0, 24))
        expected = math.dist(nav.area_center(mesh, a), nav.area_center(mesh, b)) / PLAYER_SPEED
        assert nav.area_travel_time(mesh, a, b) == pytest.approx(expected)
        assert nav.area_travel_time(None, a, b) == math.inf

    def test_swimming(self):
        """Test water volumes count as swimming."""
        world = ArenaWorld()
        world.add_water((100, 100, 0), (200, 200, 64))
        nav = GridNavigation(world)
        assert nav.swimming(None, (150, 150, 10))
        assert not nav.swimming(None, (0, 0, 10))
