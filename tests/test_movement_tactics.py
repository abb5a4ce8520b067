"""Tests for movement_tactics.py"""

import pytest
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from app.services.arena_world import ArenaWorld
from app.services.engine_interface import Waypoint
from app.services.movement_tactics import (
    MovementTactics, MovementStyle, MovementPath, MovementOutput, DodgeType, DodgeSlot, Technique,
    DODGE_IMPULSE, MAX_PATH_WAYPOINTS,
)
from app.services.vector_math import length_2d
from app.services.weapons import Weapon

BOT = 1
START = (0.0, 0.0, 24.0)


class FakeNavigation:
    """Returns a fixed route and counts requests."""

    def __init__(self, waypoints):
        self.waypoints = waypoints
        self.calls = 0
        self.max_waypoints = None

    def route_to_goal(self, mesh, start, goal, max_waypoints):
        self.calls += 1
        self.max_waypoints = max_waypoints
        return list(self.waypoints)


@pytest.fixture
def world():
    return ArenaWorld()


def _routed(waypoints, style=MovementStyle.NORMAL, goal=(2000.0, 0.0, 24.0)):
    nav = FakeNavigation(waypoints)
    mt = MovementTactics(BOT, style, seed=5)
    mt.set_destination(goal, nav, "mesh", START, 0)
    return mt, nav


class TestMovementPath:
    """Tests for path bookkeeping."""

    def test_total_length(self):
        """Test path length sums the legs from the start."""
        path = MovementPath.from_waypoints([Waypoint((100.0, 0.0, 0.0)), Waypoint((100.0, 50.0, 0.0))], (0.0, 0.0, 0.0))
        assert path.valid
        assert path.total_length == pytest.approx(150.0)

    def test_advance_past_end_invalidates(self):
        """Test the path is invalid once the cursor passes the last waypoint."""
        path = MovementPath.from_waypoints([Waypoint((100.0, 0.0, 0.0))], (0.0, 0.0, 0.0))
        path.advance()
        assert not path.valid
        assert path.current is None

    def test_empty_path_invalid(self):
        """Test an empty route yields an invalid path."""
        assert not MovementPath.from_waypoints([], START).valid


class TestRouting:
    """Tests for destination handling and repathing."""

    def test_set_destination_routes(self):
        """Test a destination with navigation builds a path."""
        mt, nav = _routed([Waypoint((100.0, 0.0, 24.0)), Waypoint((200.0, 0.0, 24.0))])
        assert nav.calls == 1
        assert mt.path.valid
        assert len(mt.path.waypoints) == 2

    def test_route_request_passes_waypoint_cap(self):
        """Test route requests carry the waypoint cap the navigation interface requires."""
        mt, nav = _routed([Waypoint((100.0, 0.0, 24.0))])
        assert nav.max_waypoints == MAX_PATH_WAYPOINTS

    def test_repath_throttled(self):
        """Test the same goal does not trigger a new route."""
        mt, nav = _routed([Waypoint((1000.0, 0.0, 24.0))])
        mt.set_destination((2000.0, 0.0, 24.0), nav, "mesh", START, 100)
        assert nav.calls == 1

    def test_moved_goal_waits_for_interval(self):
        """Test a moved goal repaths only after the repath interval."""
        mt, nav = _routed([Waypoint((1000.0, 0.0, 24.0))])
        mt.set_destination((2000.0, 500.0, 24.0), nav, "mesh", START, 200)
        assert nav.calls == 1
        mt.set_destination((2000.0, 500.0, 24.0), nav, "mesh", START, 600)
        assert nav.calls == 2

    def test_clear_destination(self):
        """Test clearing the destination invalidates the path."""
        mt, _ = _routed([Waypoint((1000.0, 0.0, 24.0))])
        mt.set_destination(None)
        assert mt.destination is None
        assert not mt.path.valid

    def test_waypoint_reached_advances(self, world):
        """Test waypoints within reach are skipped."""
        mt, _ = _routed([Waypoint((10.0, 0.0, 24.0)), Waypoint((0.0, 500.0, 24.0))])
        out = mt.update(world, START, (0.0, 0.0, 0.0), True, 0)
        assert mt.path.current_index == 1
        assert out.velocity[1] > 0
        assert abs(out.velocity[0]) < 1e-6

    def test_direct_destination_without_navigation(self, world):
        """Test the bot heads straight for a destination with no route."""
        mt = MovementTactics(BOT)
        mt.set_destination((500.0, 0.0, 24.0))
        out = mt.update(world, START, (0.0, 0.0, 0.0), True, 0)
        assert out.velocity == pytest.approx((320.0, 0.0, 0.0))

    def test_stuck_detection(self, world):
        """Test no progress along a path triggers a jump and a repath."""
        mt, _ = _routed([Waypoint((1000.0, 0.0, 24.0))])
        mt.update(world, START, (0.0, 0.0, 0.0), True, 0)
        out = mt.update(world, START, (0.0, 0.0, 0.0), True, 1000)
        assert out.jump
        assert mt.needs_repath
        assert mt.stuck_count == 1


class TestSteering:
    """Tests for strafing, smoothing and the speed cap."""

    def test_turn_rate_limits_reversal(self, world):
        """Test a reversed destination turns gradually."""
        mt = MovementTactics(BOT)
        mt.set_destination((500.0, 0.0, 24.0))
        mt.update(world, START, (0.0, 0.0, 0.0), True, 0)
        mt.set_destination((-500.0, 0.0, 24.0))
        out = mt.update(world, START, (0.0, 0.0, 0.0), True, 50)
        assert out.velocity[0] > 300.0
        assert out.velocity[1] > 0

    def test_aggressive_speed_cap(self, world):
        """Test aggressive style never exceeds its maximum speed."""
        mt = MovementTactics(BOT, MovementStyle.AGGRESSIVE)
        mt.set_destination((1000.0, 0.0, 24.0))
        for now in range(0, 2000, 50):
            out = mt.update(world, START, (0.0, 0.0, 0.0), True, now, threat_position=(600.0, 0.0, 24.0))
            assert length_2d(out.velocity) <= 400.0 + 1e-6

    def test_speed_multiplier(self, world):
        """Test the skill speed multiplier scales the base speed."""
        mt = MovementTactics(BOT)
        mt.set_destination((500.0, 0.0, 24.0))
        out = mt.update(world, START, (0.0, 0.0, 0.0), True, 0, speed_multiplier=0.5)
        assert out.velocity[0] == pytest.approx(160.0)

    def test_evasive_random_strafe(self, world):
        """Test evasive bots strafe at full amplitude across the threat line."""
        mt = MovementTactics(BOT, MovementStyle.EVASIVE, seed=3)
        out = mt.update(world, START, (0.0, 0.0, 0.0), True, 0, threat_position=(500.0, 0.0, 24.0))
        assert abs(out.velocity[1]) == pytest.approx(300.0)
        assert abs(out.velocity[0]) < 1e-6

    def test_stealth_does_not_strafe(self, world):
        """Test stealth movement ignores the threat for strafing."""
        mt = MovementTactics(BOT, MovementStyle.STEALTH)
        out = mt.update(world, START, (0.0, 0.0, 0.0), True, 0, threat_position=(500.0, 0.0, 24.0))
        assert out.velocity == (0.0, 0.0, 0.0)

    def test_retreat_moves_away(self, world):
        """Test retreat style backs away from the threat with no destination."""
        mt = MovementTactics(BOT, MovementStyle.RETREAT)
        out = mt.update(world, START, (0.0, 0.0, 0.0), True, 0, threat_position=(500.0, 0.0, 24.0))
        assert out.velocity[0] == pytest.approx(-320.0)


class TestTechniques:
    """Tests for waypoint technique primitives."""

    def test_rocket_jump_with_ammo(self, world):
        """Test a rocket jump waypoint fires downward and jumps."""
        mt, _ = _routed([Waypoint((1000.0, 0.0, 24.0), technique="RocketJump")])
        out = mt.update(world, START, (0.0, 0.0, 0.0), True, 0, ammo={int(Weapon.ROCKET_LAUNCHER): 5})
        assert out.technique == Technique.ROCKET_JUMP
        assert out.fire and out.jump
        assert out.pitch_override == 89.0

    def test_rocket_jump_needs_ammo(self, world):
        """Test no rocket jump without rockets."""
        mt, _ = _routed([Waypoint((1000.0, 0.0, 24.0), technique="RocketJump")])
        out = mt.update(world, START, (0.0, 0.0, 0.0), True, 0, ammo={})
        assert out.technique is None
        assert not out.fire

    def test_strafe_jump_needs_speed(self, world):
        """Test strafe jumping only at speed."""
        mt, _ = _routed([Waypoint((1000.0, 0.0, 24.0), technique="StrafeJump")])
        slow = mt.update(world, START, (0.0, 0.0, 0.0), True, 0)
        assert slow.technique is None
        fast = mt.update(world, START, (300.0, 0.0, 0.0), True, 50)
        assert fast.technique == Technique.STRAFE_JUMP
        assert fast.jump

    def test_advanced_movement_disabled(self, world):
        """Test techniques are skipped when advanced movement is off."""
        mt, _ = _routed([Waypoint((1000.0, 0.0, 24.0), technique="RocketJump")])
        out = mt.update(world, START, (0.0, 0.0, 0.0), True, 0, ammo={int(Weapon.ROCKET_LAUNCHER): 5},
                        advanced=False)
        assert out.technique is None

    def test_unknown_technique_ignored(self, world):
        """Test an unknown tag falls back to plain movement."""
        mt, _ = _routed([Waypoint((1000.0, 0.0, 24.0), technique="Teleport")])
        out = mt.update(world, START, (0.0, 0.0, 0.0), True, 0)
        assert out.technique is None
        assert out.velocity[0] == pytest.approx(320.0)


class TestDodging:
    """Tests for dodge slots and projectile dodges."""

    def test_single_active_dodge(self):
        """Test a second dodge is refused while one runs."""
        mt = MovementTactics(BOT)
        assert mt.start_dodge(DodgeType.SIDESTEP, (0.0, 1.0, 0.0), 0)
        assert not mt.start_dodge(DodgeType.JUMP, (0.0, 1.0, 0.0), 100)
        assert mt.dodge_in_progress

    def test_airborne_refused(self):
        """Test dodges need ground contact."""
        mt = MovementTactics(BOT)
        assert not mt.start_dodge(DodgeType.SIDESTEP, (0.0, 1.0, 0.0), 0, on_ground=False)

    def test_slow_slide_becomes_sidestep(self):
        """Test a slide below slide speed degrades to a sidestep."""
        mt = MovementTactics(BOT)
        mt.start_dodge(DodgeType.SLIDE, (0.0, 1.0, 0.0), 0, speed=100.0)
        assert mt.dodge.dodge_type == DodgeType.SIDESTEP

    def test_impulse_eases_out(self):
        """Test the impulse follows intensity * 400 * (1 - t^2)."""
        slot = DodgeSlot(DodgeType.SIDESTEP, (0.0, 1.0, 0.0), 1.0, 0.3, 0)
        assert slot.impulse(0)[1] == pytest.approx(DODGE_IMPULSE)
        assert slot.impulse(150)[1] == pytest.approx(DODGE_IMPULSE * 0.75)
        assert slot.impulse(300) == (0.0, 0.0, 0.0)
        assert not slot.in_progress

    def test_impulse_added_after_smoothing(self, world):
        """Test the dodge impulse shows in the velocity, capped at max speed."""
        mt = MovementTactics(BOT)
        mt.start_dodge(DodgeType.SIDESTEP, (0.0, 1.0, 0.0), 0)
        out = mt.update(world, START, (0.0, 0.0, 0.0), True, 0)
        assert out.velocity[1] == pytest.approx(320.0)

    def test_jump_dodge_sets_jump(self, world):
        """Test a jump dodge raises the jump flag."""
        mt = MovementTactics(BOT)
        mt.start_dodge(DodgeType.JUMP, (0.0, 1.0, 1.0), 0)
        out = mt.update(world, START, (0.0, 0.0, 0.0), True, 100)
        assert out.jump

    def test_horizontal_projectile(self, world):
        """Test a level projectile triggers a sidestep or diagonal dodge."""
        mt = MovementTactics(BOT, seed=9)
        assert mt.dodge_projectile(world, START, (0.0, 0.0, 0.0), True,
                                   (900.0, 0.0, 80.0), (-900.0, 0.0, 0.0), 0)
        assert mt.dodge.dodge_type in (DodgeType.SIDESTEP, DodgeType.DIAGONAL)
        assert abs(mt.dodge.direction[1]) > 0.5

    def test_falling_projectile_ducks(self, world):
        """Test a steeply falling projectile triggers a duck."""
        mt = MovementTactics(BOT)
        mt.dodge_projectile(world, START, (0.0, 0.0, 0.0), True, (0.0, 0.0, 800.0), (0.0, 0.0, -900.0), 0)
        assert mt.dodge.dodge_type == DodgeType.DUCK

    def test_rising_projectile_jumps(self, world):
        """Test a steeply rising projectile triggers a jump."""
        mt = MovementTactics(BOT)
        mt.dodge_projectile(world, START, (0.0, 0.0, 0.0), True, (100.0, 0.0, -200.0), (-100.0, 0.0, 900.0), 0)
        assert mt.dodge.dodge_type == DodgeType.JUMP
        assert mt.dodge.direction[2] > 0

    def test_dodge_away_from_wall(self, world):
        """Test the dodge side flips when a wall blocks it."""
        world.add_box((-64.0, 40.0, 0.0), (64.0, 80.0, 160.0))
        mt = MovementTactics(BOT, seed=9)
        mt.dodge_projectile(world, START, (0.0, 0.0, 0.0), True, (900.0, -50.0, 80.0), (-900.0, 0.0, 0.0), 0)
        assert mt.dodge.direction[1] < 0


class TestCompose:
    """Tests for projecting velocity onto the view basis."""

    def test_forward(self):
        """Test velocity along the view maps to forward speed."""
        mt = MovementTactics(BOT)
        f, r, u = mt.compose((0.0, 0.0, 0.0), MovementOutput(velocity=(320.0, 0.0, 0.0)))
        assert f == pytest.approx(320.0)
        assert r == pytest.approx(0.0, abs=1e-6)
        assert u == 0.0

    def test_rotated_view(self):
        """Test a view turned 90 degrees maps +x velocity to the right."""
        mt = MovementTactics(BOT)
        f, r, _ = mt.compose((0.0, 90.0, 0.0), MovementOutput(velocity=(320.0, 0.0, 0.0)))
        assert f == pytest.approx(0.0, abs=1e-6)
        assert r == pytest.approx(320.0)

    def test_jump_and_crouch(self):
        """Test jump and crouch map to up speed."""
        mt = MovementTactics(BOT)
        assert mt.compose((0.0, 0.0, 0.0), MovementOutput(jump=True))[2] > 0
        assert mt.compose((0.0, 0.0, 0.0), MovementOutput(crouch=True))[2] < 0

    def test_summary(self, world):
        """Test the summary reports style and dodge state."""
        mt = MovementTactics(BOT, MovementStyle.PARKOUR)
        mt.start_dodge(DodgeType.SIDESTEP, (0.0, 1.0, 0.0), 0)
        summary = mt.summary()
        assert summary["style"] == "parkour"
        assert summary["dodge"]["type"] == "sidestep"
