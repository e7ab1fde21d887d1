"""
Pool orchestrator.

Owns a fixed pool of agents and drives them through lifecycle events.
Fully decoupled from generation backends and storage: tools and vector
stores are injected by the host.

Each ``process_event`` call runs one cycle in a fixed order:
1. Deliver messages queued during the previous cycle
2. Route the event to role tiers (npc -> evaluation -> tutor -> world)
3. Process agents one at a time, draining each outbox right after it runs,
   until the decision cap is reached
4. Resolve conflicting decisions with the configured strategy
5. Re-queue resolved ``send_message`` decisions for the next cycle
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from .agent import Agent, create_message
from .config import Config
from .logging_utils import log_deterministic, log_error, log_info, log_success
from .schemas import AgentEvent, AgentSnapshot, Decision, DecisionType, Message, MessageType, Role
from .tools import ToolRegistry


# =============================
# Module-level Exceptions
# =============================


class AgentProcessingError(Exception):
    """Raised under the fail-fast policy when an agent's cycle fails.

    Carries the agent id, the event type, and the underlying exception,
    along with guidance on common remediation steps.
    """

    def __init__(self, *, agent_id: str, event_type: str, underlying: Exception) -> None:
        self.agent_id = agent_id
        self.event_type = event_type
        self.underlying = underlying
        message = (
            f"Agent '{agent_id}' failed while processing '{event_type}': {underlying}\n\n"
            "Remediation tips:\n"
            "  - Check the agent's behavior for unhandled errors in observe/think/reflect\n"
            "  - Verify generation tools are configured (LLM_PROVIDER, LLM_MODEL, API key)\n"
            "  - Use FAILURE_POLICY=isolate to keep the pool running past one agent\n"
            "  - Enable COHORT_VERBOSE=true to trace the cycle"
        )
        super().__init__(message)


# =============================
# Routing & resolution settings
# =============================


class ConflictStrategy(str, Enum):
    """How multiple decisions of the same type are reconciled."""

    PRIORITY = "priority"      # Highest priority per type, ties go to first seen
    FIRST_WINS = "first-wins"  # First decision per type
    ALL_PASS = "all-pass"      # Keep everything


class FailurePolicy(str, Enum):
    """What happens when an agent raises during ``process``."""

    ISOLATE = "isolate"      # Log, treat the agent as producing no decisions
    FAIL_FAST = "fail_fast"  # Abort the cycle with AgentProcessingError


# Role tiers are processed in this order
ROLE_ORDER: Sequence[Role] = (Role.NPC, Role.EVALUATION, Role.TUTOR, Role.WORLD)

# Event types mapped to the roles that care about them. Unlisted types go to
# every role.
EVENT_ROLE_MAP: Dict[str, frozenset] = {
    "turn_complete": frozenset({Role.NPC, Role.EVALUATION, Role.TUTOR}),
    "dialogue_start": frozenset({Role.NPC, Role.EVALUATION}),
    "dialogue_end": frozenset({Role.NPC, Role.TUTOR, Role.EVALUATION, Role.WORLD}),
    "session_start": frozenset({Role.TUTOR, Role.WORLD, Role.EVALUATION}),
    "session_end": frozenset({Role.TUTOR, Role.WORLD, Role.EVALUATION}),
    "tick": frozenset({Role.WORLD, Role.EVALUATION}),
    "location_enter": frozenset({Role.NPC, Role.WORLD}),
    "location_exit": frozenset({Role.WORLD}),
}


class Orchestrator:
    """Priority-ordered event dispatch over a pool of agents."""

    def __init__(
        self,
        tools: Optional[ToolRegistry] = None,
        *,
        max_decisions_per_tick: int = 20,
        enable_messaging: bool = True,
        conflict_strategy: ConflictStrategy = ConflictStrategy.PRIORITY,
        failure_policy: FailurePolicy = FailurePolicy.ISOLATE,
        event_roles: Optional[Mapping[str, Iterable[Role]]] = None,
    ) -> None:
        """Create an orchestrator.

        Args:
            tools: Registry shared by agents built through role factories
            max_decisions_per_tick: Hard cap on decisions returned per cycle
            enable_messaging: When False, outboxes are still drained but
                nothing is queued or delivered
            conflict_strategy: Decision resolution strategy
            failure_policy: Handling of exceptions raised by an agent
            event_roles: Overrides/extends ``EVENT_ROLE_MAP``
        """
        if max_decisions_per_tick < 1:
            raise ValueError("max_decisions_per_tick must be >= 1")

        self.tools = tools if tools is not None else ToolRegistry()
        self.max_decisions_per_tick = max_decisions_per_tick
        self.enable_messaging = enable_messaging
        self.conflict_strategy = ConflictStrategy(conflict_strategy)
        self.failure_policy = FailurePolicy(failure_policy)

        self.event_roles: Dict[str, frozenset] = dict(EVENT_ROLE_MAP)
        for event_type, roles in (event_roles or {}).items():
            self.event_roles[event_type] = frozenset(Role(r) for r in roles)

        self._agents: Dict[str, Agent] = {}
        self._pending: List[Message] = []

    @classmethod
    def from_config(cls, tools: Optional[ToolRegistry] = None) -> "Orchestrator":
        """Build an orchestrator with defaults read from ``Config``."""
        Config.validate()
        return cls(
            tools,
            max_decisions_per_tick=Config.MAX_DECISIONS_PER_TICK,
            enable_messaging=Config.ENABLE_MESSAGING,
            conflict_strategy=ConflictStrategy(Config.CONFLICT_STRATEGY),
            failure_policy=FailurePolicy(Config.FAILURE_POLICY),
        )

    def __len__(self) -> int:
        return len(self._agents)

    # ---- pool management ----------------------------------------------

    def add_agent(self, agent: Agent) -> None:
        """Add an agent; an existing agent with the same id is replaced."""
        if agent.id in self._agents:
            log_info(f"[Pool] Replacing agent '{agent.id}'")
        self._agents[agent.id] = agent

    def remove_agent(self, agent_id: str) -> bool:
        agent = self._agents.pop(agent_id, None)
        if agent is None:
            return False
        agent.dispose()
        return True

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        return self._agents.get(agent_id)

    def get_agents_by_role(self, role: Role) -> List[Agent]:
        role = Role(role)
        return [agent for agent in self._agents.values() if agent.role == role]

    @property
    def agents(self) -> List[Agent]:
        return list(self._agents.values())

    # ---- messaging ----------------------------------------------------

    def send_message(self, message: Message) -> None:
        """Queue a message for delivery at the start of the next cycle."""
        if not self.enable_messaging:
            return
        self._pending.append(message)

    def broadcast(
        self,
        sender: str,
        content: str,
        payload: Optional[Dict] = None,
        priority: int = 5,
    ) -> Message:
        message = create_message(sender, None, MessageType.BROADCAST, content, payload, priority)
        self.send_message(message)
        return message

    @property
    def pending_messages(self) -> List[Message]:
        return list(self._pending)

    def _deliver_pending(self) -> None:
        if not self._pending:
            return
        queued, self._pending = self._pending, []
        for message in queued:
            if message.is_broadcast:
                for agent in self._agents.values():
                    if agent.id != message.sender:
                        agent.receive_message(message)
                continue

            recipient = self._agents.get(message.recipient)
            if recipient is None:
                log_error(
                    f"[Messages] Dropped {message.id} from '{message.sender}': "
                    f"unknown recipient '{message.recipient}'"
                )
                continue
            recipient.receive_message(message)
        log_deterministic(f"[Messages] Delivered {len(queued)} queued message(s)")

    # ---- event cycle --------------------------------------------------

    def route(self, event_type: str) -> List[Agent]:
        """Agents that receive ``event_type``, in processing order."""
        roles = self.event_roles.get(event_type)
        routed: List[Agent] = []
        for role in ROLE_ORDER:
            if roles is not None and role not in roles:
                continue
            routed.extend(self.get_agents_by_role(role))
        return routed

    async def process_event(self, event: AgentEvent) -> List[Decision]:
        """Run one full cycle for ``event`` and return the resolved decisions."""
        self._deliver_pending()

        targets = self.route(event.type)
        log_deterministic(f"[Pool] '{event.type}' routed to {len(targets)} agent(s)")

        collected: List[Decision] = []
        for agent in targets:
            if len(collected) >= self.max_decisions_per_tick:
                log_info(
                    f"[Pool] Decision cap {self.max_decisions_per_tick} reached; "
                    f"skipping remaining agents"
                )
                break

            try:
                decisions = await agent.process(event)
            except Exception as exc:
                if self.failure_policy == FailurePolicy.FAIL_FAST:
                    raise AgentProcessingError(
                        agent_id=agent.id, event_type=event.type, underlying=exc
                    ) from exc
                log_error(f"[Pool] Agent '{agent.id}' failed on '{event.type}': {exc}")
                decisions = []
            finally:
                if self.enable_messaging:
                    self._pending.extend(agent.flush_messages())
                else:
                    agent.discard_outbox()

            collected.extend(decisions)

        collected = collected[: self.max_decisions_per_tick]
        resolved = self.resolve(collected)

        if self.enable_messaging:
            for decision in resolved:
                if decision.type != DecisionType.SEND_MESSAGE:
                    continue
                try:
                    message = decision.outgoing_message()
                except ValidationError as exc:
                    log_error(
                        f"[Messages] Dropped malformed message from '{decision.agent_id}': "
                        f"{exc.error_count()} validation error(s)"
                    )
                    continue
                if message is not None:
                    self._pending.append(message)

        log_success(
            f"[Pool] '{event.type}' produced {len(resolved)} decision(s) "
            f"({len(self._pending)} message(s) queued)"
        )
        return resolved

    def resolve(self, decisions: List[Decision]) -> List[Decision]:
        """Apply the conflict strategy. Output keeps first-seen order."""
        if self.conflict_strategy == ConflictStrategy.ALL_PASS:
            return list(decisions)

        winners: Dict[DecisionType, Decision] = {}
        for decision in decisions:
            current = winners.get(decision.type)
            if current is None:
                winners[decision.type] = decision
            elif (
                self.conflict_strategy == ConflictStrategy.PRIORITY
                and decision.priority > current.priority
            ):
                winners[decision.type] = decision

        chosen = {id(d) for d in winners.values()}
        return [d for d in decisions if id(d) in chosen]

    # ---- diagnostics & lifecycle --------------------------------------

    def snapshots(self) -> Dict[str, AgentSnapshot]:
        return {agent_id: agent.snapshot() for agent_id, agent in self._agents.items()}

    def dispose(self) -> None:
        """Dispose every agent and drop queued messages."""
        for agent in self._agents.values():
            agent.dispose()
        self._agents.clear()
        self._pending.clear()
