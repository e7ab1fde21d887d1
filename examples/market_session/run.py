"""
Market Session: a scripted learner visits a Spanish market
==========================================================

WHAT THIS SHOWS:
- A full pool: one NPC vendor, the tutor, the world, and the evaluator
- Friction reported by the host turns into tutor directives for the NPC
- Evaluation metrics broadcast to the pool and read back by tutor and world
- Seeded randomness: the same --seed replays the same world

RUN (deterministic, template NPC replies):
    uv run python -m examples.market_session.run

RUN (LLM-backed NPC replies):
    export LLM_PROVIDER=openai
    export LLM_MODEL=gpt-5-nano
    export OPENAI_API_KEY=your_key
    uv run python -m examples.market_session.run --llm

Set COHORT_VERBOSE=1 to see routing, delivery, and tool traces.
"""

from __future__ import annotations

import argparse
import asyncio
import random

from cohort import AgentEvent, Decision, DecisionType, LLMGenerator, Orchestrator, ToolRegistry
from cohort import register_builtin_tools
from cohort.roles import (
    EvaluationConfig,
    EventTemplate,
    NPCConfig,
    NPCPersonality,
    TutorConfig,
    WorldConfig,
    create_evaluation_agent,
    create_npc_agent,
    create_tutor_agent,
    create_world_agent,
)


# Learner turns as the host would report them after speech recognition and
# friction detection.
SCRIPT = [
    {"text": "Hola, buenos días", "friction_events": [], "response_latency": 1800},
    {
        "text": "Quiero el... fish, por favor",
        "friction_events": [{"type": "lexical_gap", "form": "pescado"}],
        "response_latency": 4200,
        "l1_fallback_rate": 0.3,
    },
    {
        "text": "¿Cuánto es el... fish?",
        "friction_events": [{"type": "lexical_gap", "form": "pescado"}],
        "response_latency": 3900,
        "l1_fallback_rate": 0.25,
    },
    {"text": "Ah, pescado. Un kilo de pescado, por favor", "friction_events": [], "response_latency": 2100},
    {"text": "Muchas gracias, hasta luego", "friction_events": [], "response_latency": 1500},
]

EVENT_TEMPLATES = [
    EventTemplate(
        id="fish-delivery",
        type="market",
        description="A fresh fish delivery arrives at the stall",
        location_id="mercado",
        duration=300,
        target_competencies=["transactions", "vocabulary_diversity"],
        involved_npcs=["rosa"],
    ),
    EventTemplate(
        id="plaza-music",
        type="festival",
        description="Street musicians start playing in the plaza",
        location_id="plaza",
        duration=600,
        target_competencies=["greetings"],
    ),
]


def build_pool(tools: ToolRegistry, seed: int) -> Orchestrator:
    rng = random.Random(seed)
    orchestrator = Orchestrator(tools, max_decisions_per_tick=20)
    orchestrator.add_agent(
        create_npc_agent(
            NPCConfig(
                npc_id="rosa",
                npc_name="Rosa",
                role="fishmonger",
                personality=NPCPersonality(extraversion=0.8, agreeableness=0.75),
                vocabulary_focus=["pescado", "kilo", "fresco"],
                patience_level=0.7,
            ),
            tools,
            rng=rng,
        )
    )
    orchestrator.add_agent(
        create_tutor_agent(
            TutorConfig(
                target_competencies=["transactions"],
                session_objectives=["greet the vendor", "buy fish", "say goodbye"],
            ),
            tools,
        )
    )
    orchestrator.add_agent(
        create_world_agent(
            WorldConfig(
                location_ids=["mercado", "plaza", "puerto"],
                npc_ids=["rosa", "tomas"],
                event_templates=EVENT_TEMPLATES,
            ),
            tools,
            rng=rng,
        )
    )
    orchestrator.add_agent(create_evaluation_agent(EvaluationConfig(broadcast_interval=2), tools))
    return orchestrator


def describe(decision: Decision) -> str:
    data = decision.data
    if decision.type == DecisionType.SPEAK:
        return f'Rosa: "{data["text"]}" (mood={data["mood"]})'
    if decision.type == DecisionType.INJECT:
        return f"Tutor -> npc-{data['target_npc_id']}: {data['directive']}"
    if decision.type == DecisionType.FIRE_EVENT:
        return f"World event: {data.get('description') or data.get('title')}"
    if decision.type == DecisionType.MOVE_NPC:
        return f"World: {data['npc_id']} moves {data['from_location']} -> {data['to_location']}"
    if decision.type == DecisionType.SEND_MESSAGE:
        message = decision.outgoing_message()
        return f"Evaluation broadcast: {message.content}"
    return f"{decision.type.value} from {decision.agent_id}: {decision.reasoning}"


async def main() -> None:
    parser = argparse.ArgumentParser(description="Scripted market conversation")
    parser.add_argument("--llm", action="store_true", help="Use the configured LLM for NPC replies")
    parser.add_argument("--seed", type=int, default=7)
    args = parser.parse_args()

    tools = ToolRegistry()
    if args.llm:
        generator = LLMGenerator.from_config()
        register_builtin_tools(tools, generator.providers())
        print(f"Using: {generator.provider}/{generator.model}")

    orchestrator = build_pool(tools, args.seed)

    print("=" * 60)
    print("MARKET SESSION")
    print("=" * 60)

    events = [
        AgentEvent(type="session_start", data={"session_id": "demo"}),
        AgentEvent(type="dialogue_start", data={"npc_id": "rosa", "location_id": "mercado"}),
    ]
    for i, turn in enumerate(SCRIPT):
        events.append(
            AgentEvent(type="turn_complete", data=dict(turn, speaker="learner", npc_id="rosa"))
        )
        events.append(AgentEvent(type="tick", data={"elapsed_seconds": 30 * (i + 1)}))
    events.append(
        AgentEvent(
            type="dialogue_end",
            data={"npc_id": "rosa", "outcome": "success", "session_id": "demo", "location_id": "mercado"},
        )
    )

    try:
        for event in events:
            if event.type == "turn_complete":
                print(f'\nLearner: "{event.data["text"]}"')
            decisions = await orchestrator.process_event(event)
            for decision in decisions:
                print(f"  {describe(decision)}")

        print("\n" + "=" * 60)
        print("AGENT SNAPSHOTS")
        print("=" * 60)
        for agent_id, snapshot in orchestrator.snapshots().items():
            print(
                f"{agent_id}: {snapshot.decision_count} decisions, "
                f"{snapshot.message_sent_count} messages sent"
            )
    finally:
        orchestrator.dispose()


if __name__ == "__main__":
    asyncio.run(main())
