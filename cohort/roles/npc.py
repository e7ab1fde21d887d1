"""NPC role: personality-driven conversational agent, one per NPC.

Answers learner turns in character, remembers conversations episodically,
and folds tutor directives into its next reply.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import List, Optional

from ..agent import Agent, AgentBehavior, AgentConfig, Strategy, ThinkContext, make_decision
from ..logging_utils import log_deterministic
from ..memory import EmbedFunction, MemoryConfig, TieredMemory, VectorStore
from ..schemas import AgentEvent, Decision, DecisionType, FactCategory, MessageType, Role
from ..tools import ToolRegistry


FALLBACK_GREETINGS = (
    "¡Hola! ¿En qué puedo ayudarte?",
    "Buenos días. ¿Qué necesitas?",
    "¡Bienvenido! Dime, ¿qué buscas?",
)
FALLBACK_FOLLOW_UPS = (
    "Interesante. Cuéntame más.",
    "Entiendo. ¿Algo más?",
    "Ah, sí. ¿Y después?",
)


@dataclass
class NPCPersonality:
    """Big Five traits plus a cultural overlay, each 0.0-1.0."""

    openness: float = 0.5
    conscientiousness: float = 0.5
    extraversion: float = 0.5
    agreeableness: float = 0.5
    neuroticism: float = 0.5
    directness: float = 0.5
    formality: float = 0.5
    emotional_expressiveness: float = 0.5

    def describe(self) -> str:
        traits: List[str] = []
        if self.openness > 0.7:
            traits.append("curious and creative")
        elif self.openness < 0.3:
            traits.append("practical and conventional")
        if self.conscientiousness > 0.7:
            traits.append("organized and careful")
        if self.extraversion > 0.7:
            traits.append("outgoing and talkative")
        elif self.extraversion < 0.3:
            traits.append("reserved and quiet")
        if self.agreeableness > 0.7:
            traits.append("warm and patient")
        elif self.agreeableness < 0.3:
            traits.append("blunt and direct")
        if self.neuroticism > 0.7:
            traits.append("easily stressed")
        return ", ".join(traits) or "balanced personality"


@dataclass
class NPCConfig:
    npc_id: str
    npc_name: str
    # Occupation in the scenario (vendor, teacher, ...)
    role: str = "local"
    register: str = "informal"
    personality: NPCPersonality = field(default_factory=NPCPersonality)
    vocabulary_focus: List[str] = field(default_factory=list)
    patience_level: float = 0.5
    initial_mood: str = "neutral"
    initial_reputation: float = 0.0


class NPCBehavior(AgentBehavior):
    def __init__(self, config: NPCConfig, *, rng: Optional[random.Random] = None) -> None:
        self.config = config
        self.rng = rng or random.Random()
        self.mood = config.initial_mood
        self.reputation = config.initial_reputation
        self.turn_count = 0
        self.active_directives: List[str] = []
        self.last_learner_text = ""
        self.last_response_text = ""

    @property
    def agent_id(self) -> str:
        return f"npc-{self.config.npc_id}"

    async def observe(self, event: AgentEvent, memory: TieredMemory) -> None:
        data = event.data
        if event.type == "turn_complete" and data.get("speaker") == "learner":
            text = str(data.get("text") or "")
            self.last_learner_text = text
            self.turn_count += 1
            memory.observe(
                f'Learner said: "{text}"',
                {
                    "npc_id": self.config.npc_id,
                    "turn_index": self.turn_count,
                    "friction_events": data.get("friction_events"),
                },
            )

        elif event.type == "dialogue_start":
            memory.observe(
                f"Dialogue started with learner at {data.get('location_id')}",
                {"npc_id": self.config.npc_id, "location_id": data.get("location_id")},
            )

        elif event.type == "dialogue_end":
            outcome = str(data.get("outcome") or "completed")
            self.update_mood(outcome)
            await memory.remember(
                f"Conversation with learner: {self.turn_count} turns, "
                f"outcome: {outcome}, mood: {self.mood}",
                session_id=str(data.get("session_id") or ""),
                importance=0.9 if outcome == "failed" else 0.6,
                npc_id=self.config.npc_id,
                location_id=str(data.get("location_id") or ""),
                metadata={
                    "agent_id": self.agent_id,
                    "turn_count": self.turn_count,
                    "outcome": outcome,
                    "mood": self.mood,
                    "reputation": self.reputation,
                },
            )
            self.turn_count = 0

    def update_mood(self, outcome: str) -> None:
        personality = self.config.personality
        if outcome in ("success", "completed"):
            self.mood = "happy" if personality.agreeableness > 0.6 else "satisfied"
            self.reputation = min(1.0, self.reputation + 0.05)
        elif outcome in ("failed", "abandoned"):
            self.mood = "annoyed" if personality.neuroticism > 0.6 else "neutral"
            self.reputation = max(-0.5, self.reputation - 0.03)

    def system_prompt(self, memory: TieredMemory) -> str:
        cfg = self.config
        lines = [
            f"You are {cfg.npc_name}, a {cfg.role} speaking in {cfg.register} register.",
            f"Personality: {cfg.personality.describe()}",
            f"Current mood: {self.mood} | Reputation with learner: {self.reputation:.2f}",
            f"Vocabulary focus: {', '.join(cfg.vocabulary_focus)}",
            f"Patience level: {cfg.patience_level * 100:.0f}%",
        ]
        if self.active_directives:
            lines.append("Active teaching directives:")
            lines.extend(f"  - {d}" for d in self.active_directives)
        lines.extend(
            [
                f"\nMemory:\n{memory.summarize()}",
                "\nRespond in character. Keep responses concise (1-3 sentences).",
                "If the learner makes errors, respond naturally and recast correct forms "
                "without explicit correction.",
                "Maintain formal register."
                if cfg.personality.formality > 0.7
                else "Use casual, friendly register.",
            ]
        )
        return "\n".join(lines)

    def fallback_response(self) -> str:
        if self.turn_count <= 1:
            return self.rng.choice(FALLBACK_GREETINGS)
        return self.rng.choice(FALLBACK_FOLLOW_UPS)

    async def think(self, context: ThinkContext) -> List[Decision]:
        for message in context.messages_of_type(MessageType.DIRECTIVE):
            self.active_directives.append(message.content)

        if not self.last_learner_text:
            return []

        response = self.fallback_response()
        if context.tools.get_tool("generate_text") is not None:
            observation = await context.tools.execute(
                "generate_text",
                {
                    "system": self.system_prompt(context.memory),
                    "user": f'The learner says: "{self.last_learner_text}"',
                },
            )
            if observation.success and isinstance(observation.data, str):
                response = observation.data
            else:
                log_deterministic(f"[{self.agent_id}] Using template reply ({observation.error})")

        self.last_response_text = response
        self.last_learner_text = ""
        self.active_directives = []

        return [
            make_decision(
                DecisionType.SPEAK,
                self.agent_id,
                confidence=0.85,
                reasoning=(
                    f"Responding as {self.config.npc_name} "
                    f"({self.mood} mood, rep={self.reputation:.2f})"
                ),
                data={
                    "npc_id": self.config.npc_id,
                    "text": response,
                    "mood": self.mood,
                    "reputation": self.reputation,
                },
                priority=9,
            )
        ]

    async def reflect(self, decisions: List[Decision], memory: TieredMemory) -> None:
        # Friction seen anywhere in working memory becomes a learner fact
        for item in memory.get_working_memory():
            frictions = item.metadata.get("friction_events")
            if not isinstance(frictions, list):
                continue
            for friction in frictions:
                if not isinstance(friction, dict):
                    continue
                kind = str(friction.get("type"))
                memory.learn(
                    f'Learner has friction with: {kind}: "{friction.get("form") or ""}"',
                    category=FactCategory.VOCABULARY if kind == "lexical_gap" else FactCategory.GRAMMAR,
                    confidence=0.7,
                    evidence=[f"turn-{self.turn_count}"],
                    importance=0.8,
                    metadata={"npc_id": self.config.npc_id},
                )


def create_npc_agent(
    config: NPCConfig,
    tools: ToolRegistry,
    *,
    rng: Optional[random.Random] = None,
    vector_store: Optional[VectorStore] = None,
    embed: Optional[EmbedFunction] = None,
    think_timeout: Optional[float] = None,
) -> Agent:
    behavior = NPCBehavior(config, rng=rng)
    agent_config = AgentConfig(
        id=behavior.agent_id,
        role=Role.NPC,
        name=config.npc_name,
        strategy=Strategy.REACTIVE,
        memory=MemoryConfig(
            working_memory_size=20,
            episodic_capacity=100,
            recall_threshold=0.7,
            enable_semantic=True,
        ),
        max_reasoning_steps=3,
        think_timeout=think_timeout,
    )
    return Agent(agent_config, behavior, tools, vector_store=vector_store, embed=embed)
