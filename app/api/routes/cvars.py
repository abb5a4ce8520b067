from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from ...services.ai_manager import AIManager
from ...schemas.cvars import CvarUpdate, CvarResponse, CvarList

router = APIRouter()


def _get_manager() -> AIManager:
    manager = AIManager.get_instance()
    if not manager.initialized:
        raise HTTPException(status_code=503, detail="AI is not initialised")
    return manager


@router.get("/", response_model=CvarList)
async def list_cvars():
    """Current value of every cvar."""
    return {"cvars": _get_manager().list_cvars()}


@router.get("/{name}", response_model=CvarResponse)
async def get_cvar(name: str):
    cvars = _get_manager().list_cvars()
    if name not in cvars:
        raise HTTPException(status_code=404, detail=f"Unknown cvar '{name}'")
    return {"name": name, "value": cvars[name]}


@router.put("/{name}", response_model=CvarResponse)
async def set_cvar(name: str, update: CvarUpdate):
    """Validate and apply a cvar at runtime."""
    manager = _get_manager()
    try:
        value = manager.set_cvar(name, update.value)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown cvar '{name}'")
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid value for {name}: {e.errors()[0]['msg']}")
    return {"name": name, "value": value}
