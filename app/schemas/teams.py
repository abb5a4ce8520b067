from pydantic import BaseModel
from typing import Optional, List, Dict, Any


class SquadResponse(BaseModel):
    squad_id: int
    name: str
    formation: str  # 'line', 'column', 'wedge', 'diamond', 'circle', 'spread'
    state: str
    leader: Optional[int] = None
    members: List[int]
    cohesion: float
    objective_id: Optional[int] = None


class TeamResponse(BaseModel):
    team_id: int
    members: List[int]
    team_effectiveness: float
    coordination_quality: float
    coordinated_attack: bool
    risk_tolerance: float
    pending_messages: int
    dropped_messages: int
    squads: List[SquadResponse]
    planner: Dict[str, Any]
