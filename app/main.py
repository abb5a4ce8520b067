"""Arena Tactical AI - FastAPI debug backend.

Hosts the bot AI against a sandbox arena and exposes its state.
"""

import logging
import os
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .api import api_router
from .services.ai_manager import AIManager, AIInitializationError
from .services.arena_world import ArenaWorld
from .services.navigation import GridNavigation

settings = get_settings()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

SANDBOX_MAP = "arena"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    # Startup
    logger.info("Starting Arena Tactical AI...")

    world = ArenaWorld.default_arena()
    manager = AIManager.get_instance()
    try:
        manager.init(world, GridNavigation(world), settings)
        manager.load_map(SANDBOX_MAP)
        app.state.ai_available = True
    except AIInitializationError as e:
        logger.error(f"AI unavailable, serving health only: {e}")
        app.state.ai_available = False

    yield

    # Shutdown
    logger.info("Shutting down Arena Tactical AI...")
    if manager.initialized:
        manager.shutdown()


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="""
    Arena Tactical AI - debug API for the multi-agent bot AI.

    Features:
    - Spawn and inspect bots (perception, threats, combat decision, movement)
    - Team coordination and strategic plans
    - Runtime cvars
    - Sandbox arena stepping
    """,
    version="1.0.0",
    lifespan=lifespan,
)

# CORS configuration - allow local tooling
cors_origins = [
    "http://localhost:3000",
    "http://localhost:3001",
    "http://127.0.0.1:3000",
]

frontend_url = os.environ.get("FRONTEND_URL")
if frontend_url:
    cors_origins.append(frontend_url)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router, prefix=f"/api/{settings.api_version}")


@app.get("/")
async def root():
    """Root endpoint - API info."""
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    manager = AIManager.get_instance()
    return {"status": "healthy", "ai": manager.initialized}


# For running with uvicorn directly
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 8000)),
        reload=True,
    )
