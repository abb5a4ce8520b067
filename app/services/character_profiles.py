"""Bot character profiles.

A character is a set of numbered characteristics in [0, 1] read once at
bot creation. Files use the block format:

    skill 3
    {
        7   0.75        // by index
        alertness 0.6   // or by name
        name "Alpha"
    }

A file may hold one block per skill level. Missing characters fall back to
the built-in default profile for the requested skill (and to skill 3 when
the skill is out of range).
"""

import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .vector_math import clamp

logger = logging.getLogger(__name__)

# Characteristic indices
CHARACTERISTIC_NAME = 0
CHARACTERISTIC_ATTACK_SKILL = 1
CHARACTERISTIC_REACTIONTIME = 2
CHARACTERISTIC_AIM_ACCURACY_MG = 3
CHARACTERISTIC_AIM_ACCURACY = 7
CHARACTERISTIC_VIEW_FACTOR = 16
CHARACTERISTIC_VIEW_MAXCHANGE = 17
CHARACTERISTIC_MOVEMENT_SKILL = 19
CHARACTERISTIC_ALERTNESS = 36
CHARACTERISTIC_CAMPER = 37
CHARACTERISTIC_JUMPER = 38
CHARACTERISTIC_FIRETHROTTLE = 39
CHARACTERISTIC_CROUCHER = 44
CHARACTERISTIC_WALKER = 45
CHARACTERISTIC_WEAPONJUMPING = 46
MAX_CHARACTERISTICS = 50

DEFAULT_CHARACTERISTIC = 0.5
DEFAULT_SKILL = 3

CHARACTERISTIC_NAMES: Dict[str, int] = {
    "attack_skill": CHARACTERISTIC_ATTACK_SKILL,
    "aggression": CHARACTERISTIC_ATTACK_SKILL,
    "reaction_time": CHARACTERISTIC_REACTIONTIME,
    "aim_accuracy_mg": CHARACTERISTIC_AIM_ACCURACY_MG,
    "aim_accuracy": CHARACTERISTIC_AIM_ACCURACY,
    "aim_skill": CHARACTERISTIC_AIM_ACCURACY,
    "view_factor": CHARACTERISTIC_VIEW_FACTOR,
    "view_max_change": CHARACTERISTIC_VIEW_MAXCHANGE,
    "movement_skill": CHARACTERISTIC_MOVEMENT_SKILL,
    "alertness": CHARACTERISTIC_ALERTNESS,
    "camper": CHARACTERISTIC_CAMPER,
    "jump_frequency": CHARACTERISTIC_JUMPER,
    "jumper": CHARACTERISTIC_JUMPER,
    "fire_throttle": CHARACTERISTIC_FIRETHROTTLE,
    "crouch_frequency": CHARACTERISTIC_CROUCHER,
    "croucher": CHARACTERISTIC_CROUCHER,
    "walk_frequency": CHARACTERISTIC_WALKER,
    "walker": CHARACTERISTIC_WALKER,
    "weapon_jumping": CHARACTERISTIC_WEAPONJUMPING,
}

_TOKEN = re.compile(r'"[^"]*"|[{}]|[^\s{}]+')


class Personality(Enum):
    AGGRESSIVE = "aggressive"
    DEFENSIVE = "defensive"
    TACTICAL = "tactical"
    SUPPORT = "support"
    SCOUT = "scout"
    SNIPER = "sniper"
    RUSHER = "rusher"
    BALANCED = "balanced"
    RANDOM = "random"


@dataclass
class BotCharacter:
    """Parsed character: name, skill and characteristic table."""
    name: str
    skill: float
    characteristics: Dict[int, float] = field(default_factory=dict)

    def get(self, index: int) -> float:
        return self.characteristics.get(index, DEFAULT_CHARACTERISTIC)

    @property
    def aggression(self) -> float:
        return self.get(CHARACTERISTIC_ATTACK_SKILL)

    @property
    def reaction_time(self) -> float:
        return self.get(CHARACTERISTIC_REACTIONTIME)

    @property
    def aim_accuracy(self) -> float:
        return self.get(CHARACTERISTIC_AIM_ACCURACY)

    @property
    def aim_accuracy_mg(self) -> float:
        return self.get(CHARACTERISTIC_AIM_ACCURACY_MG)

    @property
    def view_factor(self) -> float:
        return self.get(CHARACTERISTIC_VIEW_FACTOR)

    @property
    def view_max_change(self) -> float:
        return self.get(CHARACTERISTIC_VIEW_MAXCHANGE)

    @property
    def movement_skill(self) -> float:
        return self.get(CHARACTERISTIC_MOVEMENT_SKILL)

    @property
    def alertness(self) -> float:
        return self.get(CHARACTERISTIC_ALERTNESS)

    @property
    def camper(self) -> float:
        return self.get(CHARACTERISTIC_CAMPER)

    @property
    def jump_frequency(self) -> float:
        return self.get(CHARACTERISTIC_JUMPER)

    @property
    def fire_throttle(self) -> float:
        return self.get(CHARACTERISTIC_FIRETHROTTLE)

    @property
    def crouch_frequency(self) -> float:
        return self.get(CHARACTERISTIC_CROUCHER)

    @property
    def walk_frequency(self) -> float:
        return self.get(CHARACTERISTIC_WALKER)

    @property
    def weapon_jumping(self) -> float:
        return self.get(CHARACTERISTIC_WEAPONJUMPING)


def default_character(name: str, skill: float) -> BotCharacter:
    """Built-in profile scaled by skill factor f = skill / 5."""
    level = int(round(skill))
    if level < 1 or level > 5:
        level = DEFAULT_SKILL
    f = level / 5.0
    values = {
        CHARACTERISTIC_ATTACK_SKILL: 0.3 + 0.6 * f,
        CHARACTERISTIC_REACTIONTIME: 1.0 - 0.7 * f,
        CHARACTERISTIC_AIM_ACCURACY_MG: 0.2 + 0.7 * f,
        CHARACTERISTIC_AIM_ACCURACY: 0.2 + 0.7 * f,
        CHARACTERISTIC_VIEW_FACTOR: 0.5 + 0.4 * f,
        CHARACTERISTIC_VIEW_MAXCHANGE: 0.3 + 0.5 * f,
        CHARACTERISTIC_MOVEMENT_SKILL: 0.3 + 0.6 * f,
        CHARACTERISTIC_ALERTNESS: 0.3 + 0.6 * f,
        CHARACTERISTIC_CAMPER: 0.5 - 0.2 * f,
        CHARACTERISTIC_JUMPER: 0.2 + 0.5 * f,
        CHARACTERISTIC_FIRETHROTTLE: 0.7 - 0.3 * f,
        CHARACTERISTIC_CROUCHER: 0.1 + 0.3 * f,
        CHARACTERISTIC_WALKER: 0.3 - 0.2 * f,
        CHARACTERISTIC_WEAPONJUMPING: 0.5 * f,
    }
    return BotCharacter(name=name, skill=float(level), characteristics=values)


def parse_character_text(text: str, name: str = "") -> Dict[int, BotCharacter]:
    """Parse every ``skill N { ... }`` block; keys are skill levels."""
    text = re.sub(r"//[^\n]*|#[^\n]*", "", text)
    tokens = _TOKEN.findall(text)
    characters: Dict[int, BotCharacter] = {}
    i = 0
    while i < len(tokens):
        if tokens[i].lower() != "skill":
            i += 1
            continue
        try:
            level = int(float(tokens[i + 1]))
        except (IndexError, ValueError):
            logger.warning(f"Character {name}: bad skill header near token {i}")
            break
        if i + 2 >= len(tokens) or tokens[i + 2] != "{":
            logger.warning(f"Character {name}: missing block for skill {level}")
            break
        i += 3
        character = BotCharacter(name=name, skill=float(level))
        while i < len(tokens) and tokens[i] != "}":
            key = tokens[i]
            value = tokens[i + 1] if i + 1 < len(tokens) else None
            i += 2
            if value is None or value == "}":
                break
            if key.isdigit():
                index = int(key)
            elif key.lower() == "name":
                character.name = value.strip('"')
                continue
            else:
                index = CHARACTERISTIC_NAMES.get(key.lower(), -1)
            if not 0 < index < MAX_CHARACTERISTICS:
                logger.debug(f"Character {name}: ignoring unknown characteristic {key}")
                continue
            try:
                character.characteristics[index] = clamp(float(value.strip('"')), 0.0, 1.0)
            except ValueError:
                logger.debug(f"Character {name}: non-numeric value for {key}")
        i += 1
        characters[level] = character
    return characters


def character_search_paths(directory: str, name: str) -> List[str]:
    return [
        os.path.join(directory, f"{name}_c.c"),
        os.path.join(directory, f"{name}.c"),
    ]


def load_character(name: str, skill: float, directory: Optional[str] = None) -> BotCharacter:
    """Load a named character at a skill level, falling back to defaults."""
    level = int(round(skill))
    if level < 1 or level > 5:
        level = DEFAULT_SKILL
    if directory:
        for path in character_search_paths(directory, name.lower()):
            if not os.path.isfile(path):
                continue
            with open(path, 'r') as f:
                blocks = parse_character_text(f.read(), name)
            chosen = blocks.get(level) or blocks.get(DEFAULT_SKILL)
            if chosen is not None:
                base = default_character(name, level)
                base.characteristics.update(chosen.characteristics)
                base.name = chosen.name or name
                logger.info(f"Loaded character {name} (skill {level}) from {path}")
                return base
    return default_character(name, level)


def resolve_personality(personality: Personality, character: BotCharacter) -> Personality:
    """Random personalities are decided by the character's traits."""
    if personality != Personality.RANDOM:
        return personality
    if character.aggression > 0.7:
        return Personality.AGGRESSIVE
    if character.aggression < 0.3:
        return Personality.DEFENSIVE
    if character.aim_accuracy > 0.7:
        return Personality.TACTICAL
    return Personality.SUPPORT
