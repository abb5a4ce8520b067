"""UserCommand: the per-tick input record sent to the engine for each bot.

Wire format: ``{server_time:u32, angles:[i16;3], forward_move:i8,
right_move:i8, up_move:i8, buttons:u16, weapon:u8}`` (little endian).
Movement is quantised to 1/127 of MAX_MOVE_SPEED.
"""

import math
import struct
from dataclasses import dataclass
from enum import IntFlag
from typing import Tuple

from .vector_math import Vec3

MAX_MOVE_SPEED = 400.0
MOVE_SCALE = 127

_WIRE = struct.Struct("<I3hbbbHB")


class Button(IntFlag):
    NONE = 0
    ATTACK = 1
    TALK = 2
    USE_HOLDABLE = 4
    GESTURE = 8
    WALKING = 16
    AFFIRMATIVE = 32
    NEGATIVE = 64
    GETFLAG = 128
    GUARDBASE = 256
    PATROL = 512
    FOLLOWME = 1024
    ANY = 2048


def angle_to_short(angle: float) -> int:
    """Degrees to a signed 16-bit engine angle."""
    value = int(round(angle * 65536.0 / 360.0)) & 0xFFFF
    return value - 0x10000 if value >= 0x8000 else value


def short_to_angle(value: int) -> float:
    return (value & 0xFFFF) * (360.0 / 65536.0)


def speed_to_move(speed: float) -> int:
    """Units/second to a signed move byte in [-127, 127]."""
    if not math.isfinite(speed):
        return 0
    value = int(round(speed * MOVE_SCALE / MAX_MOVE_SPEED))
    return max(-MOVE_SCALE, min(MOVE_SCALE, value))


def move_to_speed(value: int) -> float:
    return value * MAX_MOVE_SPEED / MOVE_SCALE


@dataclass
class UserCommand:
    """A bot's intent for one tick."""
    server_time: int = 0
    angles: Tuple[int, int, int] = (0, 0, 0)
    forward_move: int = 0
    right_move: int = 0
    up_move: int = 0
    buttons: int = 0
    weapon: int = 0

    @classmethod
    def neutral(cls, server_time: int = 0, weapon: int = 0) -> "UserCommand":
        return cls(server_time=server_time, weapon=weapon)

    @classmethod
    def from_intent(
        cls,
        server_time: int,
        view_angles: Vec3,
        forward: float,
        right: float,
        up: float,
        buttons: int,
        weapon: int,
    ) -> "UserCommand":
        """Build a command from view angles (degrees) and speeds (units/s)."""
        return cls(
            server_time=int(server_time) & 0xFFFFFFFF,
            angles=tuple(angle_to_short(a) for a in view_angles),
            forward_move=speed_to_move(forward),
            right_move=speed_to_move(right),
            up_move=speed_to_move(up),
            buttons=int(buttons) & 0xFFFF,
            weapon=int(weapon) & 0xFF,
        )

    def move_speeds(self) -> Vec3:
        """Inverse of the move quantisation: (forward, right, up) in units/s."""
        return (
            move_to_speed(self.forward_move),
            move_to_speed(self.right_move),
            move_to_speed(self.up_move),
        )

    def view_angles(self) -> Vec3:
        return tuple(short_to_angle(a) for a in self.angles)

    def has_button(self, button: Button) -> bool:
        return bool(self.buttons & button)

    def is_within_range(self) -> bool:
        """Every field fits its wire encoding."""
        return (
            0 <= self.server_time <= 0xFFFFFFFF
            and all(-0x8000 <= a <= 0x7FFF for a in self.angles)
            and all(-MOVE_SCALE <= m <= MOVE_SCALE for m in (self.forward_move, self.right_move, self.up_move))
            and 0 <= self.buttons <= 0xFFFF
            and 0 <= self.weapon <= 0xFF
        )

    def to_bytes(self) -> bytes:
        return _WIRE.pack(
            self.server_time, *self.angles,
            self.forward_move, self.right_move, self.up_move,
            self.buttons, self.weapon,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "UserCommand":
        fields = _WIRE.unpack(data)
        return cls(
            server_time=fields[0],
            angles=(fields[1], fields[2], fields[3]),
            forward_move=fields[4],
            right_move=fields[5],
            up_move=fields[6],
            buttons=fields[7],
            weapon=fields[8],
        )

    def to_dict(self) -> dict:
        return {
            "server_time": self.server_time,
            "angles": list(self.angles),
            "forward_move": self.forward_move,
            "right_move": self.right_move,
            "up_move": self.up_move,
            "buttons": self.buttons,
            "weapon": self.weapon,
        }
