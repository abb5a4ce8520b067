from fastapi import APIRouter, HTTPException

from ...services.ai_manager import AIManager
from ...schemas.teams import TeamResponse

router = APIRouter()


def _get_manager() -> AIManager:
    manager = AIManager.get_instance()
    if not manager.initialized:
        raise HTTPException(status_code=503, detail="AI is not initialised")
    return manager


@router.get("/")
async def list_teams():
    """Team ids with an active coordinator."""
    manager = _get_manager()
    return {"teams": sorted(manager.coordinators)}


@router.get("/{team_id}", response_model=TeamResponse)
async def get_team(team_id: int):
    """Squads, formation, cohesion and the current strategic plan."""
    manager = _get_manager()
    coordinator = manager.get_coordinator(team_id)
    if coordinator is None:
        raise HTTPException(status_code=404, detail=f"Team {team_id} not found")
    return coordinator.summary()
