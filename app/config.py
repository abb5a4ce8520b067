from pydantic import Field
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_name: str = "Arena Tactical AI"
    api_version: str = "v1"

    # Core cvars
    ai_enable: bool = True
    ai_debug: int = Field(0, ge=0, le=2)
    ai_skill: float = Field(3.0, ge=1.0, le=5.0)
    ai_learning: bool = False
    ai_teamplay: bool = True
    ai_think_time: int = Field(50, ge=20, le=200)  # ms between thinks

    # Perception
    ai_perception_range: float = Field(2000.0, gt=0)
    ai_perception_fov: float = Field(120.0, gt=0, le=360)
    ai_perception_peripheral_sensitivity: float = Field(0.5, ge=0.0, le=1.0)
    ai_memory_decay_rate: float = Field(0.1, ge=0.0, le=1.0)  # per second

    # Strategy / combat / movement
    ai_strategy_adaptability: float = Field(0.7, ge=0.0, le=1.0)
    ai_strategy_lookahead: float = Field(10.0, ge=0.0)
    ai_combat_aggression: float = Field(0.5, ge=0.0, le=1.0)
    ai_combat_prediction: bool = True
    ai_movement_advanced: bool = True

    # Team play
    ai_team_coordination: bool = True
    ai_team_communication: bool = True
    ai_team_formations: bool = True

    # Scheduling
    ai_state_hysteresis: float = Field(0.1, ge=0.0, le=1.0)
    ai_agent_budget_ms: float = Field(0.0, ge=0.0)  # 0 disables the per-agent cap
    ai_random_seed: int = 1234

    # Skill adaptation
    ai_skill_update_interval_ms: int = Field(30000, ge=0)

    # Cover analysis
    ai_cover_grid_spacing: float = Field(128.0, gt=0)
    ai_cover_scan_extent: float = Field(2048.0, gt=0)

    # Learning / persistence
    ai_learning_update_frequency: int = Field(256, ge=8)
    ai_training_dir: str = "ai_training"
    ai_character_dir: str = "botfiles/bots"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
