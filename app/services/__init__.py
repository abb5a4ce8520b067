# Core modules (numpy only)
from .weapons import Weapon, WeaponDatabase, WeaponStats
from .user_command import UserCommand, Button
from .engine_interface import EntitySnapshot, EntityKind, ItemType, TraceResult, GameEngine, NavigationService
from .arena_world import ArenaWorld
from .navigation import GridNavigation
from .character_profiles import BotCharacter, Personality, load_character
from .skill_adaptation import SkillProfile
from .neural_network import NeuralNetwork
from .perception import Perception, PerceptionFrame
from .threat_model import ThreatModel, ThreatLevel, ThreatInfo
from .cover_system import CoverManager, CoverSearchParams
from .combat_tactics import TacticalCombat, CombatState, CombatStyle, CombatDecision
from .movement_tactics import MovementTactics, MovementStyle, DodgeType
from .strategic_planner import StrategicPlanner, StrategyType, GoalType
from .team_coordinator import TeamCoordinator, TeamRole, Formation, SquadState
from .learning_agent import LearningAgent, StateEncoder
from .bot_controller import Agent, AgentState, ThinkContext
from .ai_manager import AIManager, AINotInitializedError, AIInitializationError

__all__ = [
    "Weapon",
    "WeaponDatabase",
    "WeaponStats",
    "UserCommand",
    "Button",
    "EntitySnapshot",
    "EntityKind",
    "ItemType",
    "TraceResult",
    "GameEngine",
    "NavigationService",
    "ArenaWorld",
    "GridNavigation",
    "BotCharacter",
    "Personality",
    "load_character",
    "SkillProfile",
    "NeuralNetwork",
    "Perception",
    "PerceptionFrame",
    "ThreatModel",
    "ThreatLevel",
    "ThreatInfo",
    "CoverManager",
    "CoverSearchParams",
    "TacticalCombat",
    "CombatState",
    "CombatStyle",
    "CombatDecision",
    "MovementTactics",
    "MovementStyle",
    "DodgeType",
    "StrategicPlanner",
    "StrategyType",
    "GoalType",
    "TeamCoordinator",
    "TeamRole",
    "Formation",
    "SquadState",
    "LearningAgent",
    "StateEncoder",
    "Agent",
    "AgentState",
    "ThinkContext",
    "AIManager",
    "AINotInitializedError",
    "AIInitializationError",
]
