"""
Cohort - role-tagged agent pools for interactive learning sessions.

A fixed pool of autonomous agents reacts to lifecycle events, keeps tiered
memory, calls capability-scoped tools, exchanges messages, and returns
prioritized decisions for the host application to apply.

Library only. No file I/O, no persistence, no global state beyond optional
environment-driven defaults in ``Config``.
"""

__version__ = "0.1.0"

# Pool orchestration
from .orchestrator import (
    Orchestrator,
    ConflictStrategy,
    FailurePolicy,
    AgentProcessingError,
    EVENT_ROLE_MAP,
    ROLE_ORDER,
)

# Agent loop
from .agent import (
    Agent,
    AgentBehavior,
    AgentConfig,
    CallbackBehavior,
    Strategy,
    ThinkContext,
    ThinkTimeoutError,
    create_message,
    make_decision,
)
from .planning import execute_plan_step, extract_plan, advance_plan

# Memory
from .memory import (
    TieredMemory,
    MemoryConfig,
    RecallStrategy,
    SubstringRecall,
    VectorRecall,
    VectorStore,
    VectorMatch,
    InMemoryVectorStore,
)

# Tools
from .tools import Tool, ToolRegistry, ToolProviders, register_builtin_tools

# Core schemas
from .schemas import (
    Role,
    AgentState,
    AgentEvent,
    Message,
    MessageType,
    Decision,
    DecisionType,
    PlanPayload,
    OpaquePayload,
    AgentPlan,
    PlanStep,
    PlanStatus,
    StepStatus,
    Observation,
    MemoryItem,
    EpisodicMemory,
    SemanticFact,
    FactCategory,
    MemorySnapshot,
    AgentSnapshot,
)

# Generation backend
from .generation import LLMGenerator
from .config import Config

__all__ = [
    # Orchestration
    "Orchestrator",
    "ConflictStrategy",
    "FailurePolicy",
    "AgentProcessingError",
    "EVENT_ROLE_MAP",
    "ROLE_ORDER",
    # Agent loop
    "Agent",
    "AgentBehavior",
    "AgentConfig",
    "CallbackBehavior",
    "Strategy",
    "ThinkContext",
    "ThinkTimeoutError",
    "create_message",
    "make_decision",
    "execute_plan_step",
    "extract_plan",
    "advance_plan",
    # Memory
    "TieredMemory",
    "MemoryConfig",
    "RecallStrategy",
    "SubstringRecall",
    "VectorRecall",
    "VectorStore",
    "VectorMatch",
    "InMemoryVectorStore",
    # Tools
    "Tool",
    "ToolRegistry",
    "ToolProviders",
    "register_builtin_tools",
    # Schemas
    "Role",
    "AgentState",
    "AgentEvent",
    "Message",
    "MessageType",
    "Decision",
    "DecisionType",
    "PlanPayload",
    "OpaquePayload",
    "AgentPlan",
    "PlanStep",
    "PlanStatus",
    "StepStatus",
    "Observation",
    "MemoryItem",
    "EpisodicMemory",
    "SemanticFact",
    "FactCategory",
    "MemorySnapshot",
    "AgentSnapshot",
    # Generation
    "LLMGenerator",
    "Config",
]
