from fastapi import APIRouter
from .routes import agents, teams, cvars, simulation

api_router = APIRouter()

api_router.include_router(agents.router, prefix="/agents", tags=["agents"])
api_router.include_router(teams.router, prefix="/teams", tags=["teams"])
api_router.include_router(cvars.router, prefix="/cvars", tags=["cvars"])
api_router.include_router(simulation.router, prefix="/simulation", tags=["simulation"])
