"""
Pydantic schemas for the Cohort agent pool.

All data structures exchanged between agents, memory, tools, and the
orchestrator are defined here.

Design Philosophy:
- Closed enums for roles, lifecycle states, message and decision types
- Decisions are immutable once created; conflict resolution only selects
- Decision payloads are an explicit tagged union (plan vs opaque data)
  so plan detection never inspects arbitrary payload fields
- Metadata fields for scenario-specific extensions
"""

from datetime import datetime, timezone
from enum import Enum
from itertools import count
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Timezone-aware timestamp used as the default for every record."""
    return datetime.now(timezone.utc)


# ============================================================================
# Identity & Lifecycle
# ============================================================================


class Role(str, Enum):
    """Closed set of agent roles. Determines routing tier and tool access."""

    NPC = "npc"
    TUTOR = "tutor"
    WORLD = "world"
    EVALUATION = "evaluation"


class AgentState(str, Enum):
    """Phase of the observe -> think -> act -> reflect loop."""

    IDLE = "idle"
    OBSERVING = "observing"
    THINKING = "thinking"
    ACTING = "acting"
    REFLECTING = "reflecting"


class AgentEvent(BaseModel):
    """Lifecycle event delivered by the host application.

    ``data`` is not validated beyond being a mapping; role behaviors read
    the keys they care about defensively.
    """

    type: str = Field(..., description="Event type, e.g. turn_complete, tick")
    data: Dict[str, Any] = Field(default_factory=dict, description="Event payload")
    timestamp: datetime = Field(default_factory=utcnow)


# ============================================================================
# Messaging
# ============================================================================


class MessageType(str, Enum):
    REQUEST = "request"          # Agent asks another agent for something
    RESPONSE = "response"        # Reply to a request
    BROADCAST = "broadcast"      # Announcement to all agents
    DIRECTIVE = "directive"      # Authoritative instruction (tutor -> npc)
    OBSERVATION = "observation"  # Raw data or metrics


_message_ids = count(1)


def next_message_id() -> str:
    """Return the next process-wide message id (monotonically increasing)."""
    return f"msg-{next(_message_ids)}"


class Message(BaseModel):
    """Inter-agent message.

    ``recipient=None`` means broadcast to every agent except the sender.
    Messages are transient: they sit in the sender's outbox, then in the
    orchestrator's pending queue, then in recipient inboxes.
    """

    id: str = Field(default_factory=next_message_id)
    sender: str = Field(..., description="Sender agent id")
    recipient: Optional[str] = Field(None, description="Recipient agent id, None for broadcast")
    type: MessageType
    content: str
    payload: Optional[Dict[str, Any]] = None
    # Unbounded; higher is more urgent
    priority: int = 5
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def is_broadcast(self) -> bool:
        return self.recipient is None


# ============================================================================
# Planning
# ============================================================================


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class PlanStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    ABANDONED = "abandoned"


class PlanStep(BaseModel):
    """A single step in an agent plan.

    Steps without ``tool_name`` are pure reasoning steps; the rest invoke a
    tool through the registry when executed.
    """

    description: str
    tool_name: Optional[str] = None
    tool_params: Dict[str, Any] = Field(default_factory=dict)
    # Indices of steps that must complete first
    depends_on: List[int] = Field(default_factory=list)
    status: StepStatus = StepStatus.PENDING
    result: Any = None

    @property
    def is_reasoning_step(self) -> bool:
        return self.tool_name is None


class AgentPlan(BaseModel):
    """Ordered multi-step plan produced by a deliberative agent's think phase."""

    id: str = Field(default_factory=lambda: f"plan-{uuid4().hex[:8]}")
    agent_id: str
    goal: str
    steps: List[PlanStep] = Field(default_factory=list)
    current_step: int = 0
    status: PlanStatus = PlanStatus.ACTIVE
    created_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# Decisions
# ============================================================================


class DecisionType(str, Enum):
    SPEAK = "speak"                      # NPC dialogue response
    INJECT = "inject"                    # Tutor injects forward directive
    FIRE_EVENT = "fire_event"            # World fires ambient event
    MOVE_NPC = "move_npc"                # World moves NPC to new location
    ADJUST_PRESSURE = "adjust_pressure"  # Evaluation adjusts communicative pressure
    ESCALATE = "escalate"                # Evaluation triggers scaffolding escalation
    ADVANCE_TIER = "advance_tier"        # Tutor recommends tier advancement
    SCHEDULE_REVIEW = "schedule_review"  # Tutor schedules retention review
    SEND_MESSAGE = "send_message"        # Inter-agent message, re-queued by the orchestrator
    NO_ACTION = "no_action"              # Deliberately do nothing


class PlanPayload(BaseModel):
    """Decision payload carrying a plan for deliberative agents."""

    kind: Literal["plan"] = "plan"
    plan: AgentPlan


class OpaquePayload(BaseModel):
    """Decision payload carrying arbitrary structured data."""

    kind: Literal["opaque"] = "opaque"
    data: Dict[str, Any] = Field(default_factory=dict)


DecisionPayload = Annotated[Union[PlanPayload, OpaquePayload], Field(discriminator="kind")]


class Decision(BaseModel):
    """Sole output of a processing cycle. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    type: DecisionType
    agent_id: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = ""
    payload: DecisionPayload = Field(default_factory=OpaquePayload)
    # Higher wins under the priority conflict strategy
    priority: int = 5
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def data(self) -> Dict[str, Any]:
        """Opaque payload data, or an empty dict for plan payloads."""
        if isinstance(self.payload, OpaquePayload):
            return self.payload.data
        return {}

    @property
    def plan(self) -> Optional[AgentPlan]:
        if isinstance(self.payload, PlanPayload):
            return self.payload.plan
        return None

    def outgoing_message(self) -> Optional[Message]:
        """Return the message a ``send_message`` decision asks to deliver."""
        if self.type != DecisionType.SEND_MESSAGE:
            return None
        raw = self.data.get("message")
        if raw is None:
            return None
        if isinstance(raw, Message):
            return raw
        return Message.model_validate(raw)


# ============================================================================
# Tools
# ============================================================================


class Observation(BaseModel):
    """Uniform success/failure result returned by every tool invocation."""

    tool_name: str
    success: bool
    data: Any = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)

    @classmethod
    def ok(cls, tool_name: str, data: Any = None) -> "Observation":
        return cls(tool_name=tool_name, success=True, data=data)

    @classmethod
    def failure(cls, tool_name: str, error: str) -> "Observation":
        return cls(tool_name=tool_name, success=False, data=None, error=error)


# ============================================================================
# Memory
# ============================================================================


class FactCategory(str, Enum):
    VOCABULARY = "vocabulary"
    GRAMMAR = "grammar"
    PRONUNCIATION = "pronunciation"
    CULTURAL = "cultural"
    PREFERENCE = "preference"
    PERSONAL = "personal"


class MemoryItem(BaseModel):
    """Working-memory entry. Also the base of the episodic and semantic tiers."""

    id: str
    content: str = Field(..., description="Human-readable memory content")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
    importance: float = Field(default=0.5, ge=0.0, le=1.0)
    # Bumped by recall; protects episodic entries from eviction
    access_count: int = 0


class EpisodicMemory(MemoryItem):
    """Past interaction, optionally embedded for similarity recall."""

    session_id: str = ""
    npc_id: Optional[str] = None
    location_id: Optional[str] = None
    embedding: Optional[List[float]] = None

    @property
    def eviction_score(self) -> float:
        """Lowest score is evicted first; repeated recall earns protection."""
        return self.importance * (1 + self.access_count * 0.1)


class SemanticFact(MemoryItem):
    """Structured fact about the learner, deduplicated on (category, content)."""

    category: FactCategory
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    evidence: List[str] = Field(default_factory=list)
    superseded: bool = False


class MemorySnapshot(BaseModel):
    working_memory_size: int
    episodic_memory_size: int
    semantic_fact_count: int
    oldest_memory: Optional[datetime] = None
    newest_memory: Optional[datetime] = None


# ============================================================================
# Diagnostics
# ============================================================================


class AgentSnapshot(BaseModel):
    """Host-side observability view of one agent. Not for control flow."""

    id: str
    state: AgentState
    working_memory_summary: str
    active_plan: Optional[AgentPlan] = None
    decision_count: int = 0
    message_sent_count: int = 0
