from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any


class AgentSpawnRequest(BaseModel):
    client_id: int = Field(..., ge=0)
    name: str
    personality: str = "balanced"  # aggressive, defensive, tactical, support, scout, sniper, rusher, balanced, random
    team: Optional[int] = None  # 1 red, 2 blue; places the bot in the arena when given
    origin: Optional[List[float]] = None  # [x, y, z]


class AgentSummary(BaseModel):
    client_id: int
    name: str
    state: str
    personality: str
    combat_style: str
    movement_style: str
    role: str
    combat_state: str
    next_think_time_ms: int
    destination: Optional[List[float]] = None
    cover_point: Optional[int] = None
    skipped_thinks: int = 0


class AgentDetail(AgentSummary):
    perception: Dict[str, Any]
    threats: Dict[str, Any]
    decision: Dict[str, Any]
    movement: Dict[str, Any]
    skill: Dict[str, Any]
    learning: Optional[Dict[str, Any]] = None
    command: Dict[str, Any]


class AgentList(BaseModel):
    agents: List[AgentSummary]
    count: int
