"""Tests for threat_model.py"""

import pytest
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from app.services.engine_interface import EntityKind, TEAM_RED, TEAM_BLUE
from app.services.perception import PerceptionFrame, PerceivedEntity, SelfState, DamageEvent
from app.services.threat_model import ThreatModel, ThreatLevel, threat_level
from app.services.weapons import Weapon


def _me(weapon=Weapon.MACHINEGUN, health=100):
    return SelfState(client_id=1, position=(0.0, 0.0, 0.0), velocity=(0.0, 0.0, 0.0),
                     view_angles=(0.0, 0.0, 0.0), health=health, armor=0, weapon=int(weapon), team=TEAM_RED)


def _enemy(entity_id, position, weapon=Weapon.MACHINEGUN, visible=True, confidence=1.0, health=100):
    return PerceivedEntity(
        entity_id=entity_id, kind=EntityKind.PLAYER, position=position, velocity=(0.0, 0.0, 0.0),
        distance=0.0, visibility_confidence=confidence, first_seen=0, last_seen=0,
        is_enemy=True, visible=visible, health=health, weapon=int(weapon), team=TEAM_BLUE,
    )


def _rocket(entity_id, position, velocity):
    return PerceivedEntity(
        entity_id=entity_id, kind=EntityKind.MISSILE, position=position, velocity=velocity,
        distance=0.0, visibility_confidence=1.0, first_seen=0, last_seen=0, is_enemy=True,
        weapon=int(Weapon.ROCKET_LAUNCHER),
    )


def _frame(entities, damage_events=None, now=0, me=None):
    return PerceptionFrame(timestamp=now, self_state=me or _me(), entities=entities,
                           damage_events=damage_events or [])


class TestThreatLevel:
    """Tests for score bands."""

    @pytest.mark.parametrize("score,level", [
        (0.0, ThreatLevel.NONE), (10.0, ThreatLevel.LOW), (25.0, ThreatLevel.MEDIUM),
        (45.0, ThreatLevel.HIGH), (60.0, ThreatLevel.CRITICAL),
    ])
    def test_bands(self, score, level):
        """Test score thresholds."""
        assert threat_level(score) == level


class TestScoring:
    """Tests for threat scoring and ranking."""

    def test_close_enemy_score(self):
        """Test the score formula for a visible machinegunner at 500 units."""
        model = ThreatModel()
        model.update(_frame([_enemy(2, (500.0, 0.0, 0.0))]), 0)
        threat = model.primary
        assert threat.score == pytest.approx(22.5 + 12.5 + 10.0 + 15.0 + 20.0 + 10.0)
        assert threat.level == ThreatLevel.CRITICAL
        assert threat.can_hit_me and threat.i_can_hit
        assert threat.direction == pytest.approx((1.0, 0.0, 0.0))

    def test_out_of_range_enemy(self):
        """Test a distant railgunner can hit me but I cannot hit back."""
        model = ThreatModel()
        model.update(_frame([_enemy(2, (1500.0, 0.0, 0.0), weapon=Weapon.RAILGUN)]), 0)
        threat = model.primary
        assert threat.can_hit_me and not threat.i_can_hit
        assert threat.score == pytest.approx(7.5 + 12.5 + 10.0 + 15.0 + 20.0)

    def test_ranking_is_descending(self):
        """Test the closer enemy ranks first and ties break by id."""
        model = ThreatModel()
        model.update(_frame([_enemy(3, (1500.0, 0.0, 0.0)), _enemy(2, (400.0, 0.0, 0.0)),
                             _enemy(4, (0.0, 400.0, 0.0))]), 0)
        assert [t.entity_id for t in model.threats] == [2, 4, 3]
        assert model.secondary.entity_id == 4

    def test_remembered_enemy_scaled(self):
        """Test unseen enemies are discounted by confidence."""
        model = ThreatModel()
        model.update(_frame([_enemy(2, (500.0, 0.0, 0.0), visible=False, confidence=0.5)]), 0)
        assert model.primary.score == pytest.approx((22.5 + 12.5 + 10.0) * 0.5)
        assert not model.under_fire

    def test_recent_damage_adds(self):
        """Test damage from an enemy raises its score."""
        model = ThreatModel()
        damage = [DamageEvent(amount=40, attacker_id=2, direction=(1.0, 0.0, 0.0), timestamp=0)]
        model.update(_frame([_enemy(2, (500.0, 0.0, 0.0))], damage), 0)
        assert model.primary.score == pytest.approx(90.0 + 4.0)
        assert model.primary.damage_dealt_to_me == 40

    def test_empty_frame(self):
        """Test a missing self state clears everything."""
        model = ThreatModel()
        model.update(_frame([_enemy(2, (500.0, 0.0, 0.0))]), 0)
        model.update(PerceptionFrame(timestamp=50), 50)
        assert model.primary is None and not model.under_fire


class TestSituation:
    """Tests for derived flags."""

    def test_under_fire(self):
        """Test a visible enemy in range puts the bot under fire."""
        model = ThreatModel()
        model.update(_frame([_enemy(2, (500.0, 0.0, 0.0))]), 0)
        assert model.under_fire

    def test_outnumbered(self):
        """Test more than two threats means outnumbered."""
        model = ThreatModel()
        enemies = [_enemy(i, (300.0 * i, 100.0, 0.0)) for i in range(2, 5)]
        model.update(_frame(enemies), 0)
        assert model.outnumbered

    def test_flanked(self):
        """Test threats on opposite sides are a flank."""
        model = ThreatModel()
        model.update(_frame([_enemy(2, (500.0, 0.0, 0.0)), _enemy(3, (-500.0, 0.0, 0.0))]), 0)
        assert model.flanked
        assert model.centroid == pytest.approx((0.0, 0.0, 0.0))

    def test_damage_attributed_to_me(self):
        """Test health drops on the enemy I fired at count as my damage."""
        model = ThreatModel()
        model.update(_frame([_enemy(2, (500.0, 0.0, 0.0), health=100)]), 0)
        model.update(_frame([_enemy(2, (500.0, 0.0, 0.0), health=80)], now=100), 100, fired_at=2)
        assert model.primary.damage_dealt_by_me == 20
        assert model.primary.time_visible_s == pytest.approx(0.1)


class TestProjectiles:
    """Tests for incoming projectile tracking."""

    def test_incoming_rocket(self):
        """Test a rocket heading at the bot is an imminent threat."""
        model = ThreatModel()
        model.update(_frame([_rocket(100, (900.0, 0.0, 0.0), (-900.0, 0.0, 0.0))]), 0)
        rocket = model.imminent_projectile
        assert rocket is not None
        assert rocket.time_to_impact == pytest.approx(1.0)
        assert rocket.predicted_impact == pytest.approx((0.0, 0.0, 0.0))

    def test_rocket_heading_away(self):
        """Test a rocket moving away is ignored."""
        model = ThreatModel()
        model.update(_frame([_rocket(100, (900.0, 0.0, 0.0), (900.0, 0.0, 0.0))]), 0)
        assert model.imminent_projectile is None

    def test_distant_rocket(self):
        """Test rockets beyond the two second horizon are ignored."""
        model = ThreatModel()
        model.update(_frame([_rocket(100, (2000.0, 0.0, 0.0), (-900.0, 0.0, 0.0))]), 0)
        assert model.imminent_projectile is None

    def test_summary(self):
        """Test the summary lists threats by level name."""
        model = ThreatModel()
        model.update(_frame([_enemy(2, (500.0, 0.0, 0.0))]), 0)
        assert model.summary()["threats"][0]["level"] == "CRITICAL"
