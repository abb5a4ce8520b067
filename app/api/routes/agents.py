from fastapi import APIRouter, HTTPException

from ...services.ai_manager import AIManager, AINotInitializedError
from ...services.arena_world import ArenaWorld
from ...services.character_profiles import Personality
from ...schemas.agents import AgentSpawnRequest, AgentSummary, AgentDetail, AgentList

router = APIRouter()


def _get_manager() -> AIManager:
    manager = AIManager.get_instance()
    if not manager.initialized:
        raise HTTPException(status_code=503, detail="AI is not initialised")
    return manager


@router.get("/", response_model=AgentList)
async def list_agents():
    """List every spawned bot with its current state."""
    manager = _get_manager()
    agents = [manager.agents[i].summary() for i in sorted(manager.agents)]
    return {"agents": agents, "count": len(agents)}


@router.get("/{client_id}", response_model=AgentDetail)
async def get_agent(client_id: int):
    """Full debug view of one bot: perception, threats, decision, movement."""
    manager = _get_manager()
    agent = manager.get_agent(client_id)
    if agent is None:
        raise HTTPException(status_code=404, detail=f"Agent {client_id} not found")
    return agent.detail()


@router.post("/", response_model=AgentSummary, status_code=201)
async def spawn_agent(request: AgentSpawnRequest):
    """Spawn a bot, optionally placing it in the sandbox arena."""
    manager = _get_manager()
    try:
        personality = Personality(request.personality.lower())
    except ValueError:
        valid = [p.value for p in Personality]
        raise HTTPException(status_code=400, detail=f"Unknown personality '{request.personality}'. Valid: {valid}")

    if request.origin is not None and len(request.origin) != 3:
        raise HTTPException(status_code=400, detail="origin must be [x, y, z]")

    try:
        agent = manager.spawn_bot(request.client_id, request.name, personality)
    except AINotInitializedError:
        raise HTTPException(status_code=503, detail="AI is not initialised")
    if agent is None:
        raise HTTPException(status_code=400, detail=f"Invalid client id {request.client_id}")

    if request.team is not None and isinstance(manager.engine, ArenaWorld):
        origin = tuple(request.origin) if request.origin else (0.0, 0.0, 24.0)
        snapshot = manager.engine.spawn_player(request.client_id, origin, team=request.team, name=request.name)
        manager.update_entity(request.client_id, snapshot)

    return agent.summary()


@router.delete("/{client_id}")
async def despawn_agent(client_id: int):
    """Remove a bot and release its cover reservation."""
    manager = _get_manager()
    if not manager.despawn_bot(client_id):
        raise HTTPException(status_code=404, detail=f"Agent {client_id} not found")
    if isinstance(manager.engine, ArenaWorld):
        manager.engine.remove_entity(client_id)
    return {"client_id": client_id, "status": "removed"}
