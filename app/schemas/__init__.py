from .agents import AgentSpawnRequest, AgentSummary, AgentDetail, AgentList
from .teams import SquadResponse, TeamResponse
from .cvars import CvarUpdate, CvarResponse, CvarList
from .simulation import FrameRequest, FrameResponse, EntityUpdate, EntityResponse

__all__ = [
    "AgentSpawnRequest", "AgentSummary", "AgentDetail", "AgentList",
    "SquadResponse", "TeamResponse",
    "CvarUpdate", "CvarResponse", "CvarList",
    "FrameRequest", "FrameResponse", "EntityUpdate", "EntityResponse",
]
