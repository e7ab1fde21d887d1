"""Role behaviors for the four agent tiers.

Each module pairs an ``AgentBehavior`` implementation with a factory that
returns a configured ``Agent``. Factories take the shared tool registry;
NPC and world factories also take an optional ``random.Random`` so runs are
reproducible.
"""

from .npc import NPCBehavior, NPCConfig, NPCPersonality, create_npc_agent
from .tutor import TutorBehavior, TutorConfig, create_tutor_agent
from .world import EventTemplate, WorldBehavior, WorldConfig, create_world_agent
from .evaluation import (
    AffectiveBaseline,
    EvaluationBehavior,
    EvaluationConfig,
    create_evaluation_agent,
)

__all__ = [
    "NPCBehavior",
    "NPCConfig",
    "NPCPersonality",
    "create_npc_agent",
    "TutorBehavior",
    "TutorConfig",
    "create_tutor_agent",
    "EventTemplate",
    "WorldBehavior",
    "WorldConfig",
    "create_world_agent",
    "AffectiveBaseline",
    "EvaluationBehavior",
    "EvaluationConfig",
    "create_evaluation_agent",
]
