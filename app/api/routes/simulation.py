from fastapi import APIRouter, HTTPException

from ...services.ai_manager import AIManager
from ...services.arena_world import ArenaWorld
from ...services.engine_interface import EntityKind, EntitySnapshot, ENTITYNUM_NONE
from ...schemas.simulation import FrameRequest, FrameResponse, EntityUpdate, EntityResponse

router = APIRouter()


def _get_manager() -> AIManager:
    manager = AIManager.get_instance()
    if not manager.initialized:
        raise HTTPException(status_code=503, detail="AI is not initialised")
    return manager


def _get_arena(manager: AIManager) -> ArenaWorld:
    if not isinstance(manager.engine, ArenaWorld):
        raise HTTPException(status_code=409, detail="Not running against the sandbox arena")
    return manager.engine


@router.post("/frame", response_model=FrameResponse)
async def run_frames(request: FrameRequest):
    """Advance the sandbox arena and run AI frames."""
    manager = _get_manager()
    world = _get_arena(manager)

    thinks = 0
    for _ in range(request.frames):
        world.advance(request.dt_ms, apply_commands=request.apply_commands)
        manager.sync_entities(world.entities.values())
        thinks += manager.frame(world.level_time_ms)

    return {
        "level_time_ms": world.level_time_ms,
        "frames": request.frames,
        "thinks": thinks,
        "agents": len(manager.agents),
    }


@router.post("/entities", response_model=EntityResponse)
async def put_entity(update: EntityUpdate):
    """Create or replace an entity in the sandbox arena."""
    manager = _get_manager()
    world = _get_arena(manager)

    try:
        kind = EntityKind(update.kind.lower())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown entity kind '{update.kind}'")
    for label, vec in (("origin", update.origin), ("velocity", update.velocity), ("angles", update.angles)):
        if len(vec) != 3:
            raise HTTPException(status_code=400, detail=f"{label} must be [x, y, z]")

    snapshot = EntitySnapshot(
        entity_id=update.entity_id,
        kind=kind,
        origin=tuple(update.origin),
        velocity=tuple(update.velocity),
        angles=tuple(update.angles),
        health=update.health,
        armor=update.armor,
        weapon=update.weapon,
        team=update.team,
        name=update.name,
        owner=update.owner if update.owner is not None else ENTITYNUM_NONE,
        ammo=dict(update.ammo) if update.ammo else {update.weapon: 100},
        on_ground=kind == EntityKind.PLAYER,
    )
    if not manager.update_entity(update.entity_id, snapshot):
        raise HTTPException(status_code=400, detail=f"Invalid entity {update.entity_id}")
    world.set_entity(snapshot)
    return {
        "entity_id": snapshot.entity_id,
        "kind": snapshot.kind.value,
        "origin": list(snapshot.origin),
        "health": snapshot.health,
        "team": snapshot.team,
    }


@router.delete("/entities/{entity_id}")
async def delete_entity(entity_id: int):
    manager = _get_manager()
    world = _get_arena(manager)
    if entity_id not in world.entities:
        raise HTTPException(status_code=404, detail=f"Entity {entity_id} not found")
    world.remove_entity(entity_id)
    manager.update_entity(entity_id, None)
    return {"entity_id": entity_id, "status": "removed"}


@router.get("/summary")
async def summary():
    """Map, clock and table sizes."""
    return _get_manager().summary()
