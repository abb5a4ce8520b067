"""Weapon table for arena combat.

Static weapon statistics used by threat scoring, weapon selection and aim
lead. Indices match the engine's weapon numbering.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Optional


class Weapon(IntEnum):
    NONE = 0
    GAUNTLET = 1
    MACHINEGUN = 2
    SHOTGUN = 3
    GRENADE_LAUNCHER = 4
    ROCKET_LAUNCHER = 5
    LIGHTNING = 6
    RAILGUN = 7
    PLASMAGUN = 8
    BFG = 9
    GRAPPLING_HOOK = 10


@dataclass(frozen=True)
class WeaponStats:
    """Statistics for a single weapon."""
    weapon: Weapon
    name: str
    optimal_range: float  # units
    dps: float
    projectile_speed: float = 0.0  # 0 = hitscan
    splash: bool = False
    needs_ammo: bool = True

    @property
    def is_projectile(self) -> bool:
        return self.projectile_speed > 0


class WeaponDatabase:
    """Database of all arena weapons."""

    WEAPONS: Dict[Weapon, WeaponStats] = {
        Weapon.NONE: WeaponStats(Weapon.NONE, "None", 0, 0, needs_ammo=False),
        Weapon.GAUNTLET: WeaponStats(Weapon.GAUNTLET, "Gauntlet", 50, 50, needs_ammo=False),
        Weapon.MACHINEGUN: WeaponStats(Weapon.MACHINEGUN, "Machinegun", 800, 100),
        Weapon.SHOTGUN: WeaponStats(Weapon.SHOTGUN, "Shotgun", 600, 110),
        Weapon.GRENADE_LAUNCHER: WeaponStats(
            Weapon.GRENADE_LAUNCHER, "Grenade Launcher", 400, 100,
            projectile_speed=700, splash=True,
        ),
        Weapon.ROCKET_LAUNCHER: WeaponStats(
            Weapon.ROCKET_LAUNCHER, "Rocket Launcher", 600, 120,
            projectile_speed=900, splash=True,
        ),
        Weapon.LIGHTNING: WeaponStats(Weapon.LIGHTNING, "Lightning Gun", 1200, 140),
        Weapon.RAILGUN: WeaponStats(Weapon.RAILGUN, "Railgun", 2000, 100),
        Weapon.PLASMAGUN: WeaponStats(Weapon.PLASMAGUN, "Plasma Gun", 500, 130, projectile_speed=2000),
        Weapon.BFG: WeaponStats(Weapon.BFG, "BFG10K", 1000, 200, projectile_speed=2000, splash=True),
        Weapon.GRAPPLING_HOOK: WeaponStats(Weapon.GRAPPLING_HOOK, "Grappling Hook", 0, 0, needs_ammo=False),
    }

    # Loud when fired; audible at full volume
    HEAVY_WEAPONS = (Weapon.RAILGUN, Weapon.ROCKET_LAUNCHER, Weapon.BFG)

    @classmethod
    def get(cls, weapon: int) -> Optional[WeaponStats]:
        """Look up stats by weapon index, None for unknown indices."""
        try:
            return cls.WEAPONS[Weapon(weapon)]
        except ValueError:
            return None

    @classmethod
    def dps(cls, weapon: int) -> float:
        stats = cls.get(weapon)
        return stats.dps if stats else 0.0

    @classmethod
    def optimal_range(cls, weapon: int) -> float:
        stats = cls.get(weapon)
        return stats.optimal_range if stats else 0.0

    @classmethod
    def is_heavy(cls, weapon: int) -> bool:
        return weapon in cls.HEAVY_WEAPONS

    @classmethod
    def can_fire(cls, weapon: int, ammo: Dict[int, int]) -> bool:
        """A weapon is usable when it needs no ammo or has some left."""
        stats = cls.get(weapon)
        if stats is None or stats.weapon in (Weapon.NONE, Weapon.GRAPPLING_HOOK):
            return False
        if not stats.needs_ammo:
            return True
        return ammo.get(int(weapon), 0) > 0
