"""Tests for perception.py"""

import pytest
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from app.services.arena_world import ArenaWorld
from app.services.engine_interface import EntityKind, ItemType, EntitySnapshot, TEAM_RED, TEAM_BLUE
from app.services.perception import (
    Perception, SoundType, predict_position, projected_impact_time, PerceivedEntity,
)
from app.services.weapons import Weapon

BOT = 1
ENEMY = 2


@pytest.fixture
def world():
    """Floor-only arena with a bot facing +x and an enemy 500 units ahead."""
    w = ArenaWorld()
    w.spawn_player(BOT, (0.0, 0.0, 24.0), team=TEAM_RED)
    w.spawn_player(ENEMY, (500.0, 0.0, 24.0), team=TEAM_BLUE)
    return w


def _update(perception, world, now_ms):
    return perception.update(world, world.entities, now_ms)


class TestVision:
    """Tests for the vision pass."""

    def test_sees_enemy_ahead(self, world):
        """Test an enemy in the view cone with clear line of sight is visible."""
        frame = _update(Perception(BOT), world, 0)
        enemies = frame.visible_enemies()
        assert [e.entity_id for e in enemies] == [ENEMY]
        assert enemies[0].visibility_confidence == pytest.approx(0.6, abs=0.01)
        assert frame.self_state.team == TEAM_RED

    def test_wall_blocks_sight(self, world):
        """Test a box between bot and enemy hides the enemy but still costs a ray."""
        world.add_box((200, -64, 0), (264, 64, 160))
        frame = _update(Perception(BOT), world, 0)
        assert frame.enemies() == []
        assert ENEMY in frame.traced_entity_ids()

    def test_behind_is_not_traced(self, world):
        """Test entities outside the peripheral cone are culled before tracing."""
        world.update_entity(ENEMY, origin=(-500.0, 0.0, 24.0))
        frame = _update(Perception(BOT), world, 0)
        assert frame.enemies() == []
        assert ENEMY not in frame.traced_entity_ids()

    def test_out_of_range(self, world):
        """Test entities beyond vision range are ignored."""
        frame = _update(Perception(BOT, max_vision_range=300.0), world, 0)
        assert frame.enemies() == []

    @pytest.mark.parametrize("sensitivity,expected", [(0.0, False), (1.0, True)])
    def test_peripheral_vision(self, world, sensitivity, expected):
        """Test the peripheral band admits entities by sensitivity."""
        world.update_entity(ENEMY, origin=(171.0, 470.0, 80.0))  # 70 degrees off axis
        frame = _update(Perception(BOT, fov_angle=120.0, peripheral_sensitivity=sensitivity), world, 0)
        assert bool(frame.enemies()) == expected

    def test_ally_classification(self, world):
        """Test teammates are allies, not enemies."""
        world.update_entity(ENEMY, team=TEAM_RED)
        frame = _update(Perception(BOT), world, 0)
        assert frame.enemies() == []
        assert [e.entity_id for e in frame.allies()] == [ENEMY]

    def test_items_visible(self, world):
        """Test items are perceived with their type."""
        world.set_entity(EntitySnapshot(entity_id=50, kind=EntityKind.ITEM, origin=(300.0, 0.0, 24.0),
                                        item_type=ItemType.HEALTH))
        frame = _update(Perception(BOT), world, 0)
        items = frame.items()
        assert len(items) == 1 and items[0].item_type == ItemType.HEALTH

    def test_own_missile_ignored(self, world):
        """Test a bot does not perceive its own rockets."""
        world.spawn_missile(100, (100.0, 0.0, 80.0), (900.0, 0.0, 0.0), owner=BOT)
        frame = _update(Perception(BOT), world, 0)
        assert frame.projectiles() == []

    def test_incoming_missile(self, world):
        """Test an enemy rocket on a collision course gets an impact time."""
        world.spawn_missile(100, (450.0, 0.0, 24.0), (-900.0, 0.0, 0.0), owner=ENEMY)
        frame = _update(Perception(BOT), world, 0)
        projectiles = frame.projectiles()
        assert len(projectiles) == 1
        assert projectiles[0].is_enemy
        assert projectiles[0].impact_time == pytest.approx(0.5)

    def test_missing_self(self):
        """Test a bot without a snapshot gets an empty frame."""
        frame = _update(Perception(BOT), ArenaWorld(), 0)
        assert frame.is_empty
        assert frame.entities == []

    def test_malformed_entity_skipped(self, world):
        """Test non-finite entities are skipped without raising."""
        world.set_entity(EntitySnapshot(entity_id=9, kind=EntityKind.PLAYER,
                                        origin=(float('nan'), 0.0, 0.0), team=TEAM_BLUE))
        frame = _update(Perception(BOT), world, 0)
        assert frame.get(9) is None


class TestMemory:
    """Tests for remembered entities."""

    def test_unseen_enemy_remembered_and_decays(self, world):
        """Test an enemy that dies stays in memory with lower confidence."""
        perception = Perception(BOT, memory_decay_rate=0.1)
        _update(perception, world, 0)
        world.update_entity(ENEMY, health=0)
        frame = _update(perception, world, 1000)
        remembered = frame.get(ENEMY)
        assert remembered is not None
        assert not remembered.visible
        assert remembered.visibility_confidence == pytest.approx(0.5, abs=0.01)

    def test_memory_forgotten(self, world):
        """Test memory is dropped once confidence or age runs out."""
        perception = Perception(BOT, memory_decay_rate=0.1)
        _update(perception, world, 0)
        world.remove_entity(ENEMY)
        _update(perception, world, 1000)
        frame = _update(perception, world, 12000)
        assert frame.get(ENEMY) is None

    def test_reset(self, world):
        """Test reset clears memory."""
        perception = Perception(BOT)
        _update(perception, world, 0)
        perception.reset()
        assert perception.memory == {}


class TestHearingAndDamage:
    """Tests for sounds and damage."""

    def test_weapon_fire_heard(self, world):
        """Test a firing enemy within hearing range produces a sound."""
        world.update_entity(ENEMY, is_firing=True, weapon=int(Weapon.RAILGUN))
        frame = _update(Perception(BOT), world, 0)
        fire = [s for s in frame.sounds if s.sound_type == SoundType.WEAPON_FIRE]
        assert len(fire) == 1
        assert fire[0].source_id == ENEMY
        assert fire[0].volume == pytest.approx(1.0 - 500.0 / 1024.0)

    def test_quiet_player_not_heard(self, world):
        """Test a standing player is below the audible threshold at range."""
        world.update_entity(ENEMY, origin=(950.0, 0.0, 24.0))
        frame = _update(Perception(BOT), world, 0)
        assert frame.sounds == []

    def test_damage_event(self, world):
        """Test a health drop records damage attributed to the visible enemy."""
        perception = Perception(BOT)
        _update(perception, world, 0)
        world.update_entity(BOT, health=70)
        frame = _update(perception, world, 100)
        assert len(frame.damage_events) == 1
        event = frame.damage_events[0]
        assert event.amount == 30
        assert event.attacker_id == ENEMY
        assert event.direction == pytest.approx((1.0, 0.0, 0.0), abs=0.01)
        assert frame.damage_rate == pytest.approx(6.0)


class TestSpatial:
    """Tests for spatial awareness."""

    def test_wall_distance(self, world):
        """Test the nearest wall distance from eight rays."""
        world.add_box((100, -300, 0), (200, 300, 160))
        world.remove_entity(ENEMY)
        frame = _update(Perception(BOT), world, 0)
        assert frame.spatial.nearest_wall_distance == pytest.approx(100.0)
        assert not frame.spatial.cornered

    def test_cornered(self, world):
        """Test a bot boxed in on all sides is cornered."""
        world.remove_entity(ENEMY)
        world.add_box((40, -100, 0), (50, 100, 160))
        world.add_box((-50, -100, 0), (-40, 100, 160))
        world.add_box((-100, 40, 0), (100, 50, 160))
        world.add_box((-100, -50, 0), (100, -40, 160))
        frame = _update(Perception(BOT), world, 0)
        assert frame.spatial.cornered
        assert frame.spatial.open_space_ratio < 0.3

    def test_escape_away_from_enemy(self, world):
        """Test the escape direction points away from the enemy in open space."""
        frame = _update(Perception(BOT), world, 0)
        assert frame.spatial.escape_direction[0] == pytest.approx(-1.0)


class TestPrediction:
    """Tests for position prediction helpers."""

    def _entity(self, velocity, on_ground=True):
        return PerceivedEntity(
            entity_id=5, kind=EntityKind.PLAYER, position=(0.0, 0.0, 0.0), velocity=velocity,
            distance=0.0, visibility_confidence=1.0, first_seen=0, last_seen=0, on_ground=on_ground,
        )

    def test_linear_prediction(self):
        """Test grounded targets are extrapolated linearly."""
        assert predict_position(self._entity((100.0, 0.0, 0.0)), 0.5) == pytest.approx((50.0, 0.0, 0.0))

    def test_airborne_prediction_falls(self):
        """Test airborne players fall under gravity."""
        predicted = predict_position(self._entity((0.0, 0.0, 0.0), on_ground=False), 0.5)
        assert predicted[2] == pytest.approx(-100.0)

    def test_missing_projectile(self):
        """Test a projectile passing wide has no impact time."""
        ent = self._entity((100.0, 0.0, 0.0))
        assert projected_impact_time(ent, (500.0, 300.0, 0.0)) is None
        assert projected_impact_time(ent, (-500.0, 0.0, 0.0)) is None
