"""Tutor role: session-wide learning overseer.

Watches friction across turns, steers NPCs with directives when a friction
type keeps recurring, recommends tier advancement from evaluation metrics,
and schedules retention reviews.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from ..agent import Agent, AgentBehavior, AgentConfig, Strategy, ThinkContext, create_message, make_decision
from ..memory import EmbedFunction, MemoryConfig, TieredMemory, VectorStore
from ..planning import advance_plan
from ..schemas import (
    AgentEvent,
    AgentPlan,
    Decision,
    DecisionType,
    FactCategory,
    MessageType,
    PlanPayload,
    PlanStep,
    Role,
    utcnow,
)
from ..tools import ToolRegistry


TUTOR_AGENT_ID = "tutor-main"

# Composite score needed to leave each tier
TIER_THRESHOLDS: Dict[int, float] = {1: 0.7, 2: 0.75, 3: 1.0}

REVIEW_EVERY_TURNS = 10
RECENT_TURN_WINDOW = 5

DIRECTIVE_TEMPLATES: Dict[str, str] = {
    "lexical_gap": (
        "Create natural opportunities for the learner to use: {forms}. "
        "Model the vocabulary in context without explicit correction."
    ),
    "morphosyntactic_error": (
        "Recast the correct form of: {forms}. "
        "Use contrastive emphasis to highlight the correct structure."
    ),
    "register_mismatch": (
        "Model appropriate register for this context. The learner used: {forms}. "
        "Guide toward correct register naturally."
    ),
    "phonemic_error": (
        "Encourage the learner to repeat key phrases containing: {forms}. "
        "Slow your speech slightly to model correct pronunciation."
    ),
    "pragmatic_failure": (
        "Create a scenario that naturally requires the speech act the learner struggled with: {forms}."
    ),
    "cultural_violation": (
        "Model the culturally appropriate behavior for: {forms}. "
        "React naturally to the violation to provide calibrating feedback."
    ),
}


@dataclass
class TutorConfig:
    current_tier: int = 1
    target_competencies: List[str] = field(default_factory=list)
    learner_l1: str = "en"
    session_objectives: List[str] = field(default_factory=list)
    # Friction rate (per turn) at which the tutor steps in
    intervention_threshold: float = 0.3
    enable_forward_injection: bool = True


@dataclass
class FrictionEntry:
    type: str
    form: str
    turn_index: int
    npc_id: str


def generate_directive(friction_type: str, entries: List[FrictionEntry]) -> str:
    forms = ", ".join(dict.fromkeys(e.form for e in entries))
    template = DIRECTIVE_TEMPLATES.get(friction_type, "Focus on helping the learner with: {forms}.")
    return template.format(forms=forms)


def composite_score(metrics: Dict[str, float]) -> float:
    return (
        float(metrics.get("accuracy", 0.0)) * 0.4
        + float(metrics.get("fluency", 0.0)) * 0.35
        + float(metrics.get("complexity", 0.0)) * 0.25
    )


class TutorBehavior(AgentBehavior):
    def __init__(self, config: TutorConfig, *, max_plan_steps: int = 5) -> None:
        self.config = config
        self.max_plan_steps = max_plan_steps
        self.friction_log: List[FrictionEntry] = []
        self.sent_directives: List[str] = []
        self.active_objectives: List[str] = list(config.session_objectives)
        self.turn_count = 0
        self.tier_advancement_recommended = False
        self.last_metrics: Optional[Dict[str, float]] = None
        self._plan_requested = False

    async def observe(self, event: AgentEvent, memory: TieredMemory) -> None:
        data = event.data
        if event.type == "turn_complete":
            self.turn_count += 1
            frictions = data.get("friction_events")
            frictions = frictions if isinstance(frictions, list) else []
            for friction in frictions:
                if not isinstance(friction, dict):
                    continue
                self.friction_log.append(
                    FrictionEntry(
                        type=str(friction.get("type") or ""),
                        form=str(friction.get("form") or ""),
                        turn_index=self.turn_count,
                        npc_id=str(data.get("npc_id") or ""),
                    )
                )
            text = str(data.get("text") or "")[:100]
            memory.observe(
                f'Turn {self.turn_count}: {data.get("speaker")} said "{text}" '
                f"[{len(frictions)} friction events]",
                {"turn_count": self.turn_count, "npc_id": data.get("npc_id")},
            )

        elif event.type == "session_start":
            memory.observe(
                "Session started",
                {"tier": self.config.current_tier, "objectives": list(self.config.session_objectives)},
            )

        elif event.type == "dialogue_end":
            outcome = data.get("outcome")
            memory.observe(
                f"Dialogue ended with {data.get('npc_id')}: {outcome}",
                {"npc_id": data.get("npc_id"), "outcome": outcome},
            )

    async def think(self, context: ThinkContext) -> List[Decision]:
        decisions: List[Decision] = []

        for message in context.messages_of_type(MessageType.OBSERVATION):
            metrics = (message.payload or {}).get("metrics")
            if metrics:
                self.last_metrics = dict(metrics)

        plan_decision = self._session_plan(context)
        if plan_decision is not None:
            decisions.append(plan_decision)
        elif context.active_plan is not None and context.event.type == "turn_complete":
            step = await advance_plan(context.active_plan, context.tools)
            if step is not None:
                context.memory.observe(
                    f"Objective step: {step.description} ({step.status.value})",
                    {"plan_id": context.active_plan.id},
                )

        decisions.extend(self._interventions(context))

        advancement = self._tier_advancement()
        if advancement is not None:
            decisions.append(advancement)

        review = self._retention_review()
        if review is not None:
            decisions.append(review)

        return decisions

    def _session_plan(self, context: ThinkContext) -> Optional[Decision]:
        """One plan per session, one reasoning step per objective."""
        if self._plan_requested or context.active_plan is not None or not self.active_objectives:
            return None
        if context.event.type != "session_start":
            return None
        self._plan_requested = True
        plan = AgentPlan(
            agent_id=context.agent_id,
            goal=f"Cover session objectives at tier {self.config.current_tier}",
            steps=[
                PlanStep(description=objective)
                for objective in self.active_objectives[: self.max_plan_steps]
            ],
        )
        return Decision(
            type=DecisionType.NO_ACTION,
            agent_id=context.agent_id,
            confidence=1.0,
            reasoning=f"Planned {len(plan.steps)} objective(s) for this session.",
            payload=PlanPayload(plan=plan),
            priority=1,
        )

    def _interventions(self, context: ThinkContext) -> List[Decision]:
        recent = [f for f in self.friction_log if f.turn_index >= self.turn_count - RECENT_TURN_WINDOW]
        if not recent or not self.config.enable_forward_injection:
            return []

        by_type: Dict[str, List[FrictionEntry]] = {}
        for entry in recent:
            by_type.setdefault(entry.type, []).append(entry)

        decisions: List[Decision] = []
        for friction_type, entries in by_type.items():
            if len(entries) < 2:
                continue
            rate = len(entries) / max(1, self.turn_count)
            if rate < self.config.intervention_threshold:
                continue

            directive = generate_directive(friction_type, entries)
            self.sent_directives.append(directive)
            target_npc = entries[-1].npc_id
            message = create_message(
                context.agent_id,
                f"npc-{target_npc}",
                MessageType.DIRECTIVE,
                directive,
                {
                    "friction_type": friction_type,
                    "entries": [asdict(e) for e in entries],
                },
                priority=7,
            )
            context.send(message)
            decisions.append(
                make_decision(
                    DecisionType.INJECT,
                    context.agent_id,
                    confidence=0.8,
                    reasoning=(
                        f"Recurring {friction_type} friction ({len(entries)}x in last "
                        f"{RECENT_TURN_WINDOW} turns, rate={rate:.2f}). Injecting directive."
                    ),
                    data={
                        "directive": directive,
                        "target_npc_id": target_npc,
                        "message_id": message.id,
                    },
                    priority=7,
                )
            )
        return decisions

    def _tier_advancement(self) -> Optional[Decision]:
        if self.tier_advancement_recommended or not self.last_metrics:
            return None
        tier = self.config.current_tier
        score = composite_score(self.last_metrics)
        threshold = TIER_THRESHOLDS.get(tier, 1.0)
        if score < threshold or tier >= 3:
            return None

        self.tier_advancement_recommended = True
        return make_decision(
            DecisionType.ADVANCE_TIER,
            TUTOR_AGENT_ID,
            confidence=min(1.0, score),
            reasoning=(
                f"Composite score {score:.2f} >= threshold {threshold} for tier {tier}. "
                "Recommending advancement."
            ),
            data={
                "current_tier": tier,
                "target_tier": tier + 1,
                "composite_score": score,
                "metrics": dict(self.last_metrics),
            },
            priority=6,
        )

    def _retention_review(self) -> Optional[Decision]:
        if self.turn_count == 0 or self.turn_count % REVIEW_EVERY_TURNS != 0:
            return None
        forms = list(dict.fromkeys(f.form for f in self.friction_log))
        if not forms:
            return None
        return make_decision(
            DecisionType.SCHEDULE_REVIEW,
            TUTOR_AGENT_ID,
            confidence=0.75,
            reasoning=(
                f"{len(forms)} unique friction forms after {self.turn_count} turns; "
                "scheduling retention review."
            ),
            data={
                "forms": forms,
                "next_review_time": (utcnow() + timedelta(days=1)).isoformat(),
            },
            priority=4,
        )

    async def reflect(self, decisions: List[Decision], memory: TieredMemory) -> None:
        for decision in decisions:
            data: Dict[str, Any] = decision.data
            if decision.type == DecisionType.INJECT:
                memory.learn(
                    f"Injected directive to NPC: {data.get('directive')}",
                    category=FactCategory.GRAMMAR,
                    confidence=decision.confidence,
                    evidence=[f"turn-{self.turn_count}"],
                    importance=0.7,
                    metadata={"target_npc": data.get("target_npc_id")},
                )
            elif decision.type == DecisionType.ADVANCE_TIER:
                memory.learn(
                    f"Recommended tier advancement: {data.get('current_tier')} -> {data.get('target_tier')}",
                    category=FactCategory.PREFERENCE,
                    confidence=decision.confidence,
                    evidence=["session-summary"],
                    importance=1.0,
                    metadata={"metrics": data.get("metrics")},
                )


def create_tutor_agent(
    config: TutorConfig,
    tools: ToolRegistry,
    *,
    vector_store: Optional[VectorStore] = None,
    embed: Optional[EmbedFunction] = None,
    think_timeout: Optional[float] = None,
) -> Agent:
    agent_config = AgentConfig(
        id=TUTOR_AGENT_ID,
        role=Role.TUTOR,
        name="Tutor Agent",
        strategy=Strategy.DELIBERATIVE,
        memory=MemoryConfig(
            working_memory_size=50,
            episodic_capacity=200,
            recall_threshold=0.6,
            enable_semantic=True,
        ),
        max_reasoning_steps=5,
        think_timeout=think_timeout,
    )
    behavior = TutorBehavior(config, max_plan_steps=agent_config.max_reasoning_steps)
    return Agent(agent_config, behavior, tools, vector_store=vector_store, embed=embed)
