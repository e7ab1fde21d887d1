"""
Agent loop: one memory, one inbox/outbox pair, one role behavior.

An ``Agent`` wraps a role behavior into an addressable unit that the
orchestrator drives with ``process(event)``. Each call runs the fixed cycle

    idle -> observing -> thinking -> acting -> reflecting -> idle

and returns the decisions produced in this cycle. ``state`` is observable
mid-cycle and is always back to ``idle`` when ``process`` returns or raises.

Messages received between cycles are visible to exactly one think phase:
the inbox is copied into the ``ThinkContext`` and cleared afterwards,
whether or not think succeeded. Messages sent during think land in the
outbox and are drained by the orchestrator via ``flush_messages``.
"""

from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .logging_utils import log_deterministic
from .memory import EmbedFunction, MemoryConfig, TieredMemory, VectorStore
from .planning import extract_plan
from .schemas import (
    AgentEvent,
    AgentPlan,
    AgentSnapshot,
    AgentState,
    Decision,
    DecisionType,
    Message,
    MessageType,
    OpaquePayload,
    Role,
)
from .tools import ToolRegistry


class Strategy(str, Enum):
    """How an agent treats plans returned from think."""

    REACTIVE = "reactive"          # Decisions only, plans are ignored
    DELIBERATIVE = "deliberative"  # Adopts a returned plan when none is active


@dataclass
class AgentConfig:
    """Static configuration for one agent."""

    id: str
    role: Role
    name: str = ""
    strategy: Strategy = Strategy.REACTIVE
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    max_reasoning_steps: int = 5
    # Model name passed to generation tools instead of the pool default
    model_override: Optional[str] = None
    # Seconds; None disables the limit on the think phase
    think_timeout: Optional[float] = None

    def __post_init__(self) -> None:
        self.role = Role(self.role)
        self.strategy = Strategy(self.strategy)
        if not self.name:
            self.name = self.id


class ThinkTimeoutError(Exception):
    """Raised when an agent's think phase exceeds ``think_timeout``."""

    def __init__(self, *, agent_id: str, timeout: float) -> None:
        self.agent_id = agent_id
        self.timeout = timeout
        message = (
            f"Agent '{agent_id}' did not finish thinking within {timeout}s.\n\n"
            "Remediation tips:\n"
            "  - Check that generation tools are reachable (LLM_PROVIDER, OLLAMA_BASE_URL)\n"
            "  - Raise think_timeout on the agent config or THINK_TIMEOUT_SECONDS\n"
            "  - Enable COHORT_VERBOSE=true to see which tool call stalled"
        )
        super().__init__(message)


@dataclass
class ThinkContext:
    """Everything a behavior may use while thinking.

    ``inbox`` is a snapshot of messages received since the previous cycle.
    ``send`` queues a message on the owning agent's outbox.
    """

    config: AgentConfig
    event: AgentEvent
    memory: TieredMemory
    tools: ToolRegistry
    inbox: List[Message]
    active_plan: Optional[AgentPlan]
    _send: Callable[[Message], None] = field(repr=False)

    @property
    def agent_id(self) -> str:
        return self.config.id

    def send(self, message: Message) -> None:
        self._send(message)

    def messages_of_type(self, message_type: MessageType) -> List[Message]:
        return [m for m in self.inbox if m.type == MessageType(message_type)]


class AgentBehavior(ABC):
    """Role-specific logic plugged into the agent loop.

    Only ``think`` is required. ``observe`` records the event in memory,
    ``act`` may filter or reorder decisions, and ``reflect`` sees the final
    decision list after acting.
    """

    async def observe(self, event: AgentEvent, memory: TieredMemory) -> None:
        return None

    @abstractmethod
    async def think(self, context: ThinkContext) -> List[Decision]:
        ...

    def act(self, decisions: List[Decision]) -> List[Decision]:
        return decisions

    async def reflect(self, decisions: List[Decision], memory: TieredMemory) -> None:
        return None


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class CallbackBehavior(AgentBehavior):
    """Behavior assembled from plain callables (sync or async).

    Handy for tests and small host-side agents::

        behavior = CallbackBehavior(think=lambda ctx: [Decision(...)])
    """

    def __init__(
        self,
        think: Callable[[ThinkContext], Any],
        *,
        observe: Optional[Callable[[AgentEvent, TieredMemory], Any]] = None,
        act: Optional[Callable[[List[Decision]], List[Decision]]] = None,
        reflect: Optional[Callable[[List[Decision], TieredMemory], Any]] = None,
    ) -> None:
        self._think = think
        self._observe = observe
        self._act = act
        self._reflect = reflect

    async def observe(self, event: AgentEvent, memory: TieredMemory) -> None:
        if self._observe is not None:
            await _maybe_await(self._observe(event, memory))

    async def think(self, context: ThinkContext) -> List[Decision]:
        return list(await _maybe_await(self._think(context)) or [])

    def act(self, decisions: List[Decision]) -> List[Decision]:
        if self._act is None:
            return decisions
        return list(self._act(decisions))

    async def reflect(self, decisions: List[Decision], memory: TieredMemory) -> None:
        if self._reflect is not None:
            await _maybe_await(self._reflect(decisions, memory))


def create_message(
    sender: str,
    recipient: Optional[str],
    type: MessageType,
    content: str,
    payload: Optional[Dict[str, Any]] = None,
    priority: int = 5,
) -> Message:
    """Build a message with a fresh ``msg-N`` id. ``recipient=None`` broadcasts."""
    return Message(
        sender=sender,
        recipient=recipient,
        type=MessageType(type),
        content=content,
        payload=payload,
        priority=priority,
    )


def make_decision(
    type: DecisionType,
    agent_id: str,
    *,
    confidence: float,
    reasoning: str = "",
    data: Optional[Dict[str, Any]] = None,
    priority: int = 5,
) -> Decision:
    """Decision with an opaque data payload."""
    return Decision(
        type=DecisionType(type),
        agent_id=agent_id,
        confidence=confidence,
        reasoning=reasoning,
        payload=OpaquePayload(data=dict(data or {})),
        priority=priority,
    )


class Agent:
    """An addressable agent driven by the orchestrator."""

    def __init__(
        self,
        config: AgentConfig,
        behavior: AgentBehavior,
        tools: ToolRegistry,
        *,
        vector_store: Optional[VectorStore] = None,
        embed: Optional[EmbedFunction] = None,
    ) -> None:
        self.config = config
        self.behavior = behavior
        self.tools = tools
        self.state = AgentState.IDLE
        self.decision_count = 0
        self.message_sent_count = 0

        self._memory = TieredMemory(
            config.memory,
            owner_id=config.id,
            vector_store=vector_store,
            embed=embed,
        )
        self._inbox: List[Message] = []
        self._outbox: List[Message] = []
        self._active_plan: Optional[AgentPlan] = None

    def __repr__(self) -> str:
        return f"Agent(id={self.id!r}, role={self.role.value!r}, state={self.state.value!r})"

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def role(self) -> Role:
        return self.config.role

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def memory(self) -> TieredMemory:
        return self._memory

    @property
    def active_plan(self) -> Optional[AgentPlan]:
        return self._active_plan

    def clear_plan(self) -> None:
        self._active_plan = None

    # ---- processing cycle ---------------------------------------------

    async def process(self, event: AgentEvent) -> List[Decision]:
        """Run one observe/think/act/reflect cycle for ``event``."""
        try:
            self.state = AgentState.OBSERVING
            await self.behavior.observe(event, self._memory)

            self.state = AgentState.THINKING
            inbox = list(self._inbox)
            context = ThinkContext(
                config=self.config,
                event=event,
                memory=self._memory,
                tools=self.tools,
                inbox=inbox,
                active_plan=self._active_plan,
                _send=self._outbox.append,
            )
            try:
                decisions = list(await self._think(context))
            finally:
                # Only the messages this think phase saw are consumed
                del self._inbox[: len(inbox)]

            if self.config.strategy == Strategy.DELIBERATIVE and self._active_plan is None:
                plan = extract_plan(decisions)
                if plan is not None:
                    self._active_plan = plan
                    log_deterministic(f"[{self.id}] Adopted plan {plan.id}: {plan.goal}")

            self.state = AgentState.ACTING
            decisions = list(self.behavior.act(decisions))
            self.decision_count += len(decisions)

            self.state = AgentState.REFLECTING
            await self.behavior.reflect(decisions, self._memory)

            return decisions
        finally:
            self.state = AgentState.IDLE

    async def _think(self, context: ThinkContext) -> List[Decision]:
        timeout = self.config.think_timeout
        if timeout is None:
            return await self.behavior.think(context)
        try:
            return await asyncio.wait_for(self.behavior.think(context), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise ThinkTimeoutError(agent_id=self.id, timeout=timeout) from exc

    # ---- messaging ----------------------------------------------------

    def receive_message(self, message: Message) -> None:
        self._inbox.append(message)

    def flush_messages(self) -> List[Message]:
        """Drain the outbox, counting every drained message as sent."""
        drained = list(self._outbox)
        self._outbox.clear()
        self.message_sent_count += len(drained)
        return drained

    def discard_outbox(self) -> None:
        """Drop queued outgoing messages without counting them as sent."""
        self._outbox.clear()

    @property
    def inbox_size(self) -> int:
        return len(self._inbox)

    # ---- diagnostics & lifecycle --------------------------------------

    def snapshot(self) -> AgentSnapshot:
        return AgentSnapshot(
            id=self.id,
            state=self.state,
            working_memory_summary=self._memory.summarize(),
            active_plan=self._active_plan,
            decision_count=self.decision_count,
            message_sent_count=self.message_sent_count,
        )

    def dispose(self) -> None:
        """Release memory and queues. Safe to call more than once."""
        self._memory.clear()
        self._inbox.clear()
        self._outbox.clear()
        self._active_plan = None
        self.state = AgentState.IDLE
