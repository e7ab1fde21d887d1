"""Evaluation role: real-time competency and affect assessment.

Accumulates per-turn learner signals, keeps running accuracy, fluency, and
complexity scores, infers an affective state against a calibrated baseline,
and recommends communicative pressure. Metrics are broadcast to the rest of
the pool every ``broadcast_interval`` learner turns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

from ..agent import Agent, AgentBehavior, AgentConfig, Strategy, ThinkContext, create_message, make_decision
from ..memory import EmbedFunction, MemoryConfig, TieredMemory, VectorStore
from ..schemas import AgentEvent, Decision, DecisionType, FactCategory, MessageType, Role
from ..tools import ToolRegistry


EVALUATION_AGENT_ID = "evaluation-main"

PRESSURE_ADJUSTMENTS: Dict[str, float] = {
    "confident": 0.05,
    "engaged": 0.02,
    "determined": 0.03,
    "amused": 0.01,
    "uncertain": -0.02,
    "anxious": -0.05,
    "frustrated": -0.08,
    "disengaged": -0.03,
    "overwhelmed": -0.15,
}

# tier -> (floor, ceiling)
PRESSURE_BOUNDS: Dict[int, tuple] = {1: (0.2, 0.7), 2: (0.3, 0.85), 3: (0.4, 1.0)}


@dataclass
class AffectiveBaseline:
    """Per-learner calibration of the behavioral signals."""

    response_latency: float = 2000.0  # ms
    l1_fallback_rate: float = 0.1
    hedging_frequency: float = 0.1
    pause_duration: float = 500.0  # ms
    topic_avoidance_rate: float = 0.05
    repair_attempt_rate: float = 0.1


@dataclass
class EvaluationConfig:
    current_tier: int = 1
    affective_baseline: AffectiveBaseline = field(default_factory=AffectiveBaseline)
    # Frustration signal (0.0-1.0) at which scaffolding escalates
    escalation_threshold: float = 0.6
    broadcast_interval: int = 3


@dataclass
class TurnSignal:
    turn_index: int
    word_count: int
    friction_count: int
    response_latency: float = 0.0
    l1_fallback_rate: float = 0.0
    hedging_frequency: float = 0.0
    repair_attempts: float = 0.0


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _ratio(value: float, baseline: float) -> float:
    return value / baseline if baseline > 0 else 1.0


def infer_affective_state(signals: Sequence[TurnSignal], baseline: AffectiveBaseline) -> str:
    """Classify the last five turns against the baseline."""
    if not signals:
        return "engaged"
    recent = signals[-5:]

    latency = _ratio(_mean([s.response_latency for s in recent]), baseline.response_latency)
    l1 = _ratio(_mean([s.l1_fallback_rate for s in recent]), baseline.l1_fallback_rate)
    hedging = _ratio(_mean([s.hedging_frequency for s in recent]), baseline.hedging_frequency)
    repair = _ratio(_mean([s.repair_attempts for s in recent]), baseline.repair_attempt_rate)
    friction = _mean([s.friction_count for s in recent])
    words = _mean([s.word_count for s in recent])

    if latency > 2.0 and l1 > 1.5 and friction > 2:
        return "overwhelmed"
    if latency > 1.5 and hedging > 1.5 and friction > 1:
        return "frustrated"
    if l1 > 1.5 and hedging > 1.3:
        return "anxious"
    if latency > 1.3 and hedging > 1.2:
        return "uncertain"
    if words < 3 and latency > 1.5:
        return "disengaged"
    if friction == 0 and words > 8 and repair < 0.8:
        return "confident"
    if friction > 0 and repair > 1.2:
        return "determined"
    return "engaged"


def frustration_signal(signals: Sequence[TurnSignal], baseline: AffectiveBaseline) -> float:
    """Weighted latency, friction, and L1 signal over the last three turns, in [0, 1]."""
    if not signals:
        return 0.0
    recent = signals[-3:]
    latency = _mean([s.response_latency for s in recent])
    friction = _mean([s.friction_count for s in recent])
    l1 = _mean([s.l1_fallback_rate for s in recent])

    latency_score = (
        min(1.0, (latency / baseline.response_latency - 1) * 0.5)
        if baseline.response_latency > 0
        else 0.0
    )
    friction_score = min(1.0, friction / 3)
    l1_score = min(1.0, l1 * 2)
    combined = latency_score * 0.3 + friction_score * 0.4 + l1_score * 0.3
    return max(0.0, min(1.0, combined))


def calibrate_pressure(affective_state: str, current: float, tier: int) -> float:
    floor, ceiling = PRESSURE_BOUNDS.get(tier, PRESSURE_BOUNDS[3])
    delta = PRESSURE_ADJUSTMENTS.get(affective_state, 0.0)
    return max(floor, min(ceiling, current + delta))


class EvaluationBehavior(AgentBehavior):
    def __init__(self, config: EvaluationConfig) -> None:
        self.config = config
        self.signals: List[TurnSignal] = []
        self.accuracy = 0.5
        self.fluency = 0.5
        self.complexity = 0.5
        self.affective_state = "engaged"
        self.pressure_level = 0.5
        self.turn_count = 0
        self.friction_counts: Dict[str, int] = {}
        self.total_words = 0
        self.total_errors = 0
        self.unique_vocab: Set[str] = set()
        self._last_broadcast_turn = 0

    @property
    def metrics(self) -> Dict[str, float]:
        return {"accuracy": self.accuracy, "fluency": self.fluency, "complexity": self.complexity}

    def competencies(self) -> List[str]:
        found: List[str] = []
        if self.accuracy > 0.8:
            found.append("grammar_accuracy")
        if self.fluency > 0.7:
            found.append("conversational_fluency")
        if self.complexity > 0.5:
            found.append("vocabulary_diversity")
        if len(self.unique_vocab) > 50:
            found.append("broad_vocabulary")
        if self.total_errors / max(1, self.total_words) < 0.05:
            found.append("low_friction")
        return found

    def _update_metrics(self) -> None:
        if self.total_words == 0:
            return
        self.accuracy = max(0.0, 1 - self.total_errors / self.total_words)
        # 20 words per turn counts as fully fluent
        self.fluency = min(1.0, (self.total_words / self.turn_count) / 20)
        self.complexity = min(1.0, len(self.unique_vocab) / self.total_words)

    async def observe(self, event: AgentEvent, memory: TieredMemory) -> None:
        data = event.data
        if event.type == "turn_complete" and data.get("speaker") == "learner":
            self.turn_count += 1
            words = str(data.get("text") or "").split()
            self.total_words += len(words)
            self.unique_vocab.update(w.lower() for w in words)

            frictions = data.get("friction_events")
            frictions = frictions if isinstance(frictions, list) else []
            self.total_errors += len(frictions)
            for friction in frictions:
                kind = str(friction.get("type") or "unknown") if isinstance(friction, dict) else "unknown"
                self.friction_counts[kind] = self.friction_counts.get(kind, 0) + 1

            self.signals.append(
                TurnSignal(
                    turn_index=self.turn_count,
                    word_count=len(words),
                    friction_count=len(frictions),
                    response_latency=float(data.get("response_latency") or 0),
                    l1_fallback_rate=float(data.get("l1_fallback_rate") or 0),
                    hedging_frequency=float(data.get("hedging_frequency") or 0),
                    repair_attempts=float(data.get("repair_attempts") or 0),
                )
            )
            self._update_metrics()
            memory.observe(
                f"Learner turn {self.turn_count}: {len(words)} words, {len(frictions)} frictions. "
                f"Accuracy={self.accuracy:.2f}, Fluency={self.fluency:.2f}",
                {"turn_count": self.turn_count, "accuracy": self.accuracy, "fluency": self.fluency},
            )

        elif event.type == "dialogue_end":
            memory.observe(
                f"Session metrics: accuracy={self.accuracy:.2f}, fluency={self.fluency:.2f}, "
                f"complexity={self.complexity:.2f}, affect={self.affective_state}",
                dict(self.metrics, affect=self.affective_state),
            )

    async def think(self, context: ThinkContext) -> List[Decision]:
        if self.turn_count == 0:
            return []

        baseline = self.config.affective_baseline
        affect = infer_affective_state(self.signals, baseline)
        self.affective_state = affect

        pressure = calibrate_pressure(affect, self.pressure_level, self.config.current_tier)
        pressure_changed = abs(pressure - self.pressure_level) > 0.05
        self.pressure_level = pressure

        decisions: List[Decision] = []

        if affect in ("frustrated", "overwhelmed"):
            signal = frustration_signal(self.signals, baseline)
            if signal >= self.config.escalation_threshold:
                decisions.append(
                    make_decision(
                        DecisionType.ESCALATE,
                        context.agent_id,
                        confidence=signal,
                        reasoning=(
                            f"Affective state: {affect}, frustration signal={signal:.2f} >= "
                            f"threshold {self.config.escalation_threshold}. Triggering scaffolding escalation."
                        ),
                        data={
                            "affective_state": affect,
                            "frustration_signal": signal,
                            "pressure_level": self.pressure_level,
                            "recommendation": (
                                "activate_companion" if affect == "overwhelmed" else "reduce_difficulty"
                            ),
                        },
                        priority=8,
                    )
                )

        if pressure_changed:
            decisions.append(
                make_decision(
                    DecisionType.ADJUST_PRESSURE,
                    context.agent_id,
                    confidence=0.75,
                    reasoning=f"Pressure adjusted to {self.pressure_level:.2f} based on affective state: {affect}",
                    data={"pressure_level": self.pressure_level, "affective_state": affect},
                    priority=6,
                )
            )

        broadcast = self._metrics_broadcast(context.agent_id, affect)
        if broadcast is not None:
            decisions.append(broadcast)

        return decisions

    def _metrics_broadcast(self, agent_id: str, affect: str) -> Optional[Decision]:
        interval = max(1, self.config.broadcast_interval)
        if self.turn_count % interval != 0 or self._last_broadcast_turn == self.turn_count:
            return None
        self._last_broadcast_turn = self.turn_count

        message = create_message(
            agent_id,
            None,
            MessageType.OBSERVATION,
            f"Metrics update: accuracy={self.accuracy:.2f}, fluency={self.fluency:.2f}, "
            f"complexity={self.complexity:.2f}, affect={affect}",
            {
                "metrics": self.metrics,
                "affective_state": affect,
                "pressure_level": self.pressure_level,
                "competencies": self.competencies(),
            },
        )
        return make_decision(
            DecisionType.SEND_MESSAGE,
            agent_id,
            confidence=0.9,
            reasoning=f"Broadcasting metrics after {self.turn_count} turns.",
            data={"message": message},
            priority=5,
        )

    async def reflect(self, decisions: List[Decision], memory: TieredMemory) -> None:
        for decision in decisions:
            if decision.type != DecisionType.ESCALATE:
                continue
            data = decision.data
            memory.learn(
                f"Escalation triggered: {data.get('recommendation')} "
                f"(frustration={data.get('frustration_signal')})",
                category=FactCategory.PREFERENCE,
                confidence=decision.confidence,
                evidence=[f"turn-{self.turn_count}"],
                importance=0.9,
                metadata={"affective_state": data.get("affective_state")},
            )


def create_evaluation_agent(
    config: EvaluationConfig,
    tools: ToolRegistry,
    *,
    vector_store: Optional[VectorStore] = None,
    embed: Optional[EmbedFunction] = None,
    think_timeout: Optional[float] = None,
) -> Agent:
    agent_config = AgentConfig(
        id=EVALUATION_AGENT_ID,
        role=Role.EVALUATION,
        name="Evaluation Agent",
        strategy=Strategy.REACTIVE,
        memory=MemoryConfig(
            working_memory_size=30,
            episodic_capacity=50,
            recall_threshold=0.5,
            enable_semantic=True,
        ),
        max_reasoning_steps=2,
        think_timeout=think_timeout,
    )
    return Agent(agent_config, EvaluationBehavior(config), tools, vector_store=vector_store, embed=embed)
