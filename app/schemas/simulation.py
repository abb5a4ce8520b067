from pydantic import BaseModel, Field
from typing import Optional, List, Dict


class FrameRequest(BaseModel):
    dt_ms: int = Field(50, ge=1, le=1000)
    frames: int = Field(1, ge=1, le=200)
    apply_commands: bool = True


class FrameResponse(BaseModel):
    level_time_ms: int
    frames: int
    thinks: int
    agents: int


class EntityUpdate(BaseModel):
    entity_id: int = Field(..., ge=0)
    kind: str = "player"  # 'player', 'item', 'projectile', 'missile'
    origin: List[float]
    velocity: List[float] = [0.0, 0.0, 0.0]
    angles: List[float] = [0.0, 0.0, 0.0]
    health: int = 100
    armor: int = 0
    weapon: int = 2
    team: int = 0
    name: str = ""
    owner: Optional[int] = None
    ammo: Optional[Dict[int, int]] = None


class EntityResponse(BaseModel):
    entity_id: int
    kind: str
    origin: List[float]
    health: int
    team: int
