"""World role: narrative and environment manager.

Fires ambient events aimed at competencies the learner has not shown yet,
shuffles NPCs between locations, and strings encounters into narrative arcs.
All randomness comes from an injectable ``random.Random`` so runs can be
replayed.
"""

from __future__ import annotations

import math
import random
from dataclasses import asdict, dataclass, field
from itertools import count
from typing import Dict, List, Optional

from ..agent import Agent, AgentBehavior, AgentConfig, Strategy, ThinkContext, make_decision
from ..memory import MemoryConfig, TieredMemory
from ..schemas import AgentEvent, Decision, DecisionType, Role
from ..tools import ToolRegistry


WORLD_AGENT_ID = "world-main"
MAX_ACTIVE_EVENTS = 2
NPC_MOVE_PERIOD_SECONDS = 60
ARC_COMPETENCIES = ("greetings", "transactions", "directions", "complaints", "negotiations")

_arc_ids = count(1)


@dataclass
class EventTemplate:
    id: str
    # festival, emergency, weather, social, market, cultural
    type: str
    description: str
    location_id: str
    duration: float
    min_level: str = "A1"
    target_competencies: List[str] = field(default_factory=list)
    involved_npcs: List[str] = field(default_factory=list)


@dataclass
class WorldConfig:
    location_ids: List[str] = field(default_factory=list)
    npc_ids: List[str] = field(default_factory=list)
    current_tier: int = 1
    event_templates: List[EventTemplate] = field(default_factory=list)
    # Seconds between event eligibility checks
    event_check_interval: float = 30.0


@dataclass
class ActiveEvent:
    template: EventTemplate
    start_time: float
    end_time: float


@dataclass
class NarrativeEncounter:
    npc_id: str
    location_id: str
    competency: str
    completed: bool = False


@dataclass
class NarrativeArc:
    id: str
    title: str
    encounters: List[NarrativeEncounter]
    current_encounter: int = 0
    # active, completed, abandoned
    status: str = "active"


class WorldBehavior(AgentBehavior):
    def __init__(self, config: WorldConfig, *, rng: Optional[random.Random] = None) -> None:
        self.config = config
        self.rng = rng or random.Random()
        self.active_events: List[ActiveEvent] = []
        self.npc_locations: Dict[str, str] = {}
        if config.location_ids:
            for i, npc_id in enumerate(config.npc_ids):
                self.npc_locations[npc_id] = config.location_ids[i % len(config.location_ids)]
        self.narrative_arcs: List[NarrativeArc] = []
        self.elapsed_seconds = 0.0
        self.last_event_check = 0.0
        self.learner_competencies: List[str] = []

    async def observe(self, event: AgentEvent, memory: TieredMemory) -> None:
        data = event.data
        if event.type == "tick":
            self.elapsed_seconds = float(data.get("elapsed_seconds", self.elapsed_seconds))
            memory.observe(f"Tick at {self.elapsed_seconds:g}s", {"elapsed": self.elapsed_seconds})

        elif event.type == "dialogue_end":
            npc_id = str(data.get("npc_id") or "")
            outcome = str(data.get("outcome") or "")
            self._record_encounter(npc_id, outcome)
            memory.observe(f"Dialogue with {npc_id} ended: {outcome}", {"npc_id": npc_id, "outcome": outcome})

        elif event.type == "location_enter":
            memory.observe(
                f"Learner entered {data.get('location_id')}",
                {"location_id": data.get("location_id")},
            )

    def _record_encounter(self, npc_id: str, outcome: str) -> None:
        for arc in self.narrative_arcs:
            if arc.status != "active" or arc.current_encounter >= len(arc.encounters):
                continue
            encounter = arc.encounters[arc.current_encounter]
            if encounter.npc_id != npc_id or encounter.completed:
                continue
            encounter.completed = outcome in ("success", "completed")
            if encounter.completed:
                arc.current_encounter += 1
                if arc.current_encounter >= len(arc.encounters):
                    arc.status = "completed"

    async def think(self, context: ThinkContext) -> List[Decision]:
        for message in context.inbox:
            competencies = (message.payload or {}).get("competencies")
            if competencies:
                self.learner_competencies = list(competencies)

        now = self.elapsed_seconds
        self.active_events = [e for e in self.active_events if now < e.end_time]

        decisions: List[Decision] = []
        fired = self._maybe_fire_event(now)
        if fired is not None:
            decisions.append(fired)
        moved = self._maybe_move_npc(now)
        if moved is not None:
            decisions.append(moved)
        arc = self._maybe_start_arc()
        if arc is not None:
            decisions.append(arc)
        return decisions

    def _unmastered(self, template: EventTemplate) -> int:
        return sum(1 for c in template.target_competencies if c not in self.learner_competencies)

    def _maybe_fire_event(self, now: float) -> Optional[Decision]:
        if now - self.last_event_check < self.config.event_check_interval:
            return None
        self.last_event_check = now

        if len(self.active_events) >= MAX_ACTIVE_EVENTS:
            return None
        active_ids = {e.template.id for e in self.active_events}
        eligible = [t for t in self.config.event_templates if t.id not in active_ids]
        if not eligible:
            return None

        # Ties keep the earlier template
        best = max(eligible, key=self._unmastered)
        self.active_events.append(ActiveEvent(template=best, start_time=now, end_time=now + best.duration))
        return make_decision(
            DecisionType.FIRE_EVENT,
            WORLD_AGENT_ID,
            confidence=0.7,
            reasoning=(
                f'Firing "{best.description}" event targeting unmastered competencies: '
                f"{', '.join(best.target_competencies)}"
            ),
            data={
                "event_id": best.id,
                "event_type": best.type,
                "description": best.description,
                "location_id": best.location_id,
                "duration": best.duration,
                "involved_npcs": list(best.involved_npcs),
            },
            priority=5,
        )

    def _maybe_move_npc(self, now: float) -> Optional[Decision]:
        npc_ids = self.config.npc_ids
        if now <= 0 or math.floor(now) % NPC_MOVE_PERIOD_SECONDS != 0 or len(npc_ids) < 2:
            return None

        npc_id = self.rng.choice(npc_ids)
        current = self.npc_locations.get(npc_id)
        others = [loc for loc in self.config.location_ids if loc != current]
        if not others:
            return None

        destination = self.rng.choice(others)
        self.npc_locations[npc_id] = destination
        return make_decision(
            DecisionType.MOVE_NPC,
            WORLD_AGENT_ID,
            confidence=0.6,
            reasoning=f"Moving NPC {npc_id} from {current} to {destination} for world variety.",
            data={"npc_id": npc_id, "from_location": current, "to_location": destination},
            priority=3,
        )

    def _maybe_start_arc(self) -> Optional[Decision]:
        if any(arc.status == "active" for arc in self.narrative_arcs):
            return None
        if len(self.config.npc_ids) < 2 or len(self.config.location_ids) < 2:
            return None

        arc = self.generate_arc()
        self.narrative_arcs.append(arc)
        return make_decision(
            DecisionType.FIRE_EVENT,
            WORLD_AGENT_ID,
            confidence=0.65,
            reasoning=f'Starting narrative arc "{arc.title}" with {len(arc.encounters)} encounters.',
            data={
                "arc_id": arc.id,
                "title": arc.title,
                "encounters": [asdict(e) for e in arc.encounters],
            },
            priority=4,
        )

    def generate_arc(self) -> NarrativeArc:
        """Up to three encounters across different NPCs and locations."""
        size = min(3, len(self.config.npc_ids), len(self.config.location_ids))
        npcs = list(self.config.npc_ids)
        locations = list(self.config.location_ids)
        self.rng.shuffle(npcs)
        self.rng.shuffle(locations)
        encounters = [
            NarrativeEncounter(
                npc_id=npcs[i],
                location_id=locations[i],
                competency=ARC_COMPETENCIES[i % len(ARC_COMPETENCIES)],
            )
            for i in range(size)
        ]
        return NarrativeArc(id=f"arc-{next(_arc_ids)}", title="Journey through the city", encounters=encounters)

    async def reflect(self, decisions: List[Decision], memory: TieredMemory) -> None:
        for decision in decisions:
            if decision.type != DecisionType.FIRE_EVENT:
                continue
            data = decision.data
            memory.observe(
                f"Fired event: {data.get('description') or data.get('title')}",
                {"event_id": data.get("event_id") or data.get("arc_id")},
            )


def create_world_agent(
    config: WorldConfig,
    tools: ToolRegistry,
    *,
    rng: Optional[random.Random] = None,
    think_timeout: Optional[float] = None,
) -> Agent:
    agent_config = AgentConfig(
        id=WORLD_AGENT_ID,
        role=Role.WORLD,
        name="World Agent",
        strategy=Strategy.REACTIVE,
        memory=MemoryConfig(
            working_memory_size=30,
            episodic_capacity=50,
            recall_threshold=0.5,
            enable_semantic=False,
        ),
        max_reasoning_steps=3,
        think_timeout=think_timeout,
    )
    return Agent(agent_config, WorldBehavior(config, rng=rng), tools)
