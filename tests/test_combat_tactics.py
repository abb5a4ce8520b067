"""Tests for combat_tactics.py"""

import math
import pytest
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from app.services.arena_world import ArenaWorld
from app.services.combat_tactics import (
    TacticalCombat, CombatState, CombatStyle, CombatDecision, STYLE_PARAMETERS, LEARNING_BIAS_LIMIT,
)
from app.services.engine_interface import TEAM_RED, TEAM_BLUE
from app.services.perception import Perception, SelfState
from app.services.skill_adaptation import SkillProfile, SkillValues
from app.services.threat_model import ThreatModel
from app.services.weapons import Weapon

BOT = 1
ENEMY = 2


class Rig:
    """Perception, threat model and combat wired to an arena."""

    def __init__(self, style=CombatStyle.BALANCED, enemy_at=(400.0, 0.0, 24.0), skill=None,
                 bot_weapon=Weapon.MACHINEGUN, bot_ammo=None, health=100, enemy_weapon=Weapon.MACHINEGUN):
        self.world = ArenaWorld()
        self.world.spawn_player(BOT, (0.0, 0.0, 24.0), team=TEAM_RED, weapon=bot_weapon,
                                ammo=bot_ammo or {int(Weapon.MACHINEGUN): 100}, health=health)
        if enemy_at is not None:
            self.world.spawn_player(ENEMY, enemy_at, team=TEAM_BLUE, weapon=enemy_weapon)
        self.perception = Perception(BOT)
        self.threats = ThreatModel()
        self.combat = TacticalCombat(BOT, style, skill, seed=11)

    def step(self, now_ms, find_cover=None):
        frame = self.perception.update(self.world, self.world.entities, now_ms)
        self.threats.update(frame, now_ms, self.combat.fired_at)
        return self.combat.decide(self.world, frame, self.threats, now_ms, find_cover)


def _self_state(ammo, weapon=Weapon.MACHINEGUN):
    return SelfState(client_id=BOT, position=(0.0, 0.0, 24.0), velocity=(0.0, 0.0, 0.0),
                     view_angles=(0.0, 0.0, 0.0), health=100, armor=0, weapon=int(weapon),
                     team=TEAM_RED, ammo=ammo)


class TestStateSelection:
    """Tests for the engagement state machine."""

    def test_engaging_visible_enemy(self):
        """Test a balanced bot engages a visible enemy in range."""
        decision = Rig().step(0)
        assert decision.state == CombatState.ENGAGING
        assert decision.primary_target == ENEMY
        assert decision.desired_weapon == Weapon.MACHINEGUN

    def test_aggressive_pursues(self):
        """Test aggressive bots chase targets beyond their optimal range."""
        rig = Rig(CombatStyle.AGGRESSIVE, enemy_at=(800.0, 0.0, 24.0))
        decision = rig.step(0)
        assert decision.state == CombatState.PURSUING
        assert decision.movement_destination == pytest.approx((800.0, 0.0, 24.0))

    def test_sniper_evades_close_enemy(self):
        """Test snipers back off from enemies inside 200 units."""
        rig = Rig(CombatStyle.SNIPER, enemy_at=(150.0, 0.0, 24.0))
        decision = rig.step(0)
        assert decision.state == CombatState.EVADING
        assert decision.movement_destination == pytest.approx((-300.0, 0.0, 24.0))

    def test_support_suppresses(self):
        """Test support bots lay down suppressing fire."""
        assert Rig(CombatStyle.SUPPORT).step(0).state == CombatState.SUPPRESSING

    def test_guerrilla_hit_and_run(self):
        """Test guerrillas ambush then retreat after three seconds."""
        rig = Rig(CombatStyle.GUERRILLA)
        assert rig.step(0).state == CombatState.AMBUSHING
        assert rig.step(3500).state == CombatState.RETREATING

    def test_low_health_retreats_to_cover(self):
        """Test a badly hurt bot under fire retreats to the cover it is given."""
        rig = Rig(health=20)
        cover = (-300.0, 200.0, 24.0)
        calls = []

        def find_cover(position, threat_position):
            calls.append((position, threat_position))
            return cover

        decision = rig.step(0, find_cover)
        assert decision.state == CombatState.RETREATING
        assert decision.movement_destination == cover
        assert calls[0][1] == pytest.approx((400.0, 0.0, 24.0))

    def test_retreat_without_cover(self):
        """Test retreating falls back to the escape direction."""
        decision = Rig(health=20).step(0, lambda p, t: None)
        assert decision.movement_destination[0] < 0

    def test_idle_without_enemies(self):
        """Test no threats means idle."""
        decision = Rig(enemy_at=None).step(0)
        assert decision.state == CombatState.IDLE
        assert decision.primary_target is None
        assert not decision.fire

    def test_searching_after_losing_sight(self):
        """Test a recently seen enemy is searched for at its last position."""
        rig = Rig()
        rig.step(0)
        rig.world.remove_entity(ENEMY)
        rig.perception.reset()
        decision = rig.step(1000)
        assert decision.state == CombatState.SEARCHING
        assert decision.movement_destination == pytest.approx((400.0, 0.0, 24.0))
        rig.step(7000)
        assert rig.combat.state == CombatState.IDLE


class TestWeapons:
    """Tests for weapon selection."""

    def test_sniper_prefers_railgun(self):
        """Test a sniper picks the railgun at long range."""
        combat = TacticalCombat(BOT, CombatStyle.SNIPER)
        me = _self_state({int(Weapon.MACHINEGUN): 100, int(Weapon.RAILGUN): 10})
        assert combat.select_weapon(me, 1500.0) == Weapon.RAILGUN

    def test_shotgun_up_close(self):
        """Test the shotgun wins at close range."""
        combat = TacticalCombat(BOT)
        me = _self_state({int(Weapon.MACHINEGUN): 100, int(Weapon.SHOTGUN): 10})
        assert combat.select_weapon(me, 100.0) == Weapon.SHOTGUN

    def test_empty_weapons_skipped(self):
        """Test weapons without ammo are not candidates."""
        combat = TacticalCombat(BOT)
        me = _self_state({int(Weapon.MACHINEGUN): 100, int(Weapon.RAILGUN): 0})
        assert combat.available_weapons(me) == [int(Weapon.GAUNTLET), int(Weapon.MACHINEGUN)]

    def test_no_target_keeps_current(self):
        """Test with no target the held weapon is kept."""
        combat = TacticalCombat(BOT)
        me = _self_state({int(Weapon.MACHINEGUN): 100, int(Weapon.RAILGUN): 10})
        assert combat.select_weapon(me, None) == Weapon.MACHINEGUN

    def test_weapon_bias(self):
        """Test learned weapon bias is clamped and shifts the score."""
        combat = TacticalCombat(BOT)
        base = combat.weapon_score(Weapon.MACHINEGUN, 400.0)
        combat.set_learning_bias(0.5, {int(Weapon.MACHINEGUN): 0.5})
        assert combat.learning_bias == LEARNING_BIAS_LIMIT
        assert combat.weapon_score(Weapon.MACHINEGUN, 400.0) == pytest.approx(base + 10.0)


class TestAimAndFire:
    """Tests for aim and fire gating."""

    def test_aim_within_spread(self):
        """Test the aim point stays within the spread box around the target."""
        rig = Rig()
        decision = rig.step(0)
        spread = (1.0 - rig.combat.skill.aim_accuracy) * 50.0
        assert decision.aim_spread == pytest.approx(spread)
        assert math.dist(decision.aim_position, (400.0, 0.0, 24.0)) <= spread * math.sqrt(3) + 1e-6

    def test_fires_when_confident(self):
        """Test a confident bot with the weapon up and clear sight fires."""
        decision = Rig().step(0)
        assert decision.confidence > 0.3
        assert decision.fire
        assert Rig().combat.fired_at is None

    def test_no_fire_without_weapon_up(self):
        """Test firing waits for the desired weapon to be raised."""
        rig = Rig(bot_weapon=Weapon.GAUNTLET)
        decision = rig.step(0)
        assert decision.desired_weapon == Weapon.MACHINEGUN
        assert not decision.fire

    def test_confidence_ramps_with_reaction(self):
        """Test confidence grows once the reaction time has passed."""
        rig = Rig()
        first = rig.step(0).confidence
        later = rig.step(1000).confidence
        assert later > first

    def test_reaction_delay_scales_ramp(self):
        """Test a slower reaction delay leaves confidence lower at the same moment."""
        fast = Rig(skill=SkillProfile(SkillValues(reaction_time=0.1)))
        slow = Rig(skill=SkillProfile(SkillValues(reaction_time=1.0)))
        assert slow.combat.skill.reaction_delay_ms == pytest.approx(1000.0)
        for rig in (fast, slow):
            rig.step(0)
        assert fast.step(200).confidence > slow.step(200).confidence

    def test_projectile_lead(self):
        """Test rockets lead a strafing target."""
        skill = SkillProfile(SkillValues(aim_accuracy=1.0))
        rig = Rig(skill=skill, bot_weapon=Weapon.ROCKET_LAUNCHER,
                  bot_ammo={int(Weapon.ROCKET_LAUNCHER): 10})
        rig.world.update_entity(ENEMY, velocity=(0.0, 300.0, 0.0))
        decision = rig.step(0)
        assert decision.desired_weapon == Weapon.ROCKET_LAUNCHER
        assert decision.aim_spread == 0.0
        assert decision.aim_position[1] > 30.0

    def test_no_prediction(self):
        """Test prediction can be switched off."""
        skill = SkillProfile(SkillValues(aim_accuracy=1.0))
        rig = Rig(skill=skill, bot_weapon=Weapon.ROCKET_LAUNCHER,
                  bot_ammo={int(Weapon.ROCKET_LAUNCHER): 10})
        rig.combat.prediction = False
        rig.world.update_entity(ENEMY, velocity=(0.0, 300.0, 0.0))
        decision = rig.step(0)
        assert decision.aim_position[1] == pytest.approx(30.0)

    def test_decision_to_dict(self):
        """Test the debug view of a decision."""
        data = CombatDecision().to_dict()
        assert data["state"] == "idle"
        assert set(data["hints"]) == {"retreat", "take_cover", "flank", "jump", "crouch", "dodge"}


class TestStyles:
    """Tests for the style table."""

    def test_every_style_has_parameters(self):
        """Test each combat style is configured."""
        for style in CombatStyle:
            assert style in STYLE_PARAMETERS

    def test_reset(self):
        """Test reset returns to idle."""
        rig = Rig()
        rig.step(0)
        rig.combat.reset()
        assert rig.combat.state == CombatState.IDLE
        assert rig.combat.last_known_position is None
