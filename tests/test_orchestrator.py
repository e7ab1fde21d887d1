"""Tests for pool orchestration: routing, messaging, resolution, and failures."""

import pytest

from cohort.agent import Agent, AgentConfig, CallbackBehavior, create_message, make_decision
from cohort.orchestrator import (
    AgentProcessingError,
    ConflictStrategy,
    FailurePolicy,
    Orchestrator,
)
from cohort.schemas import AgentEvent, AgentState, DecisionType, MessageType, Role
from cohort.tools import ToolRegistry


def _agent(agent_id, role, think=None, calls=None):
    def default_think(ctx):
        if calls is not None:
            calls.append(agent_id)
        return []

    behavior = CallbackBehavior(think or default_think)
    return Agent(AgentConfig(id=agent_id, role=role), behavior, ToolRegistry())


def _emitting(agent_id, role, decision_type=DecisionType.SPEAK, priority=5):
    def think(ctx):
        return [make_decision(decision_type, agent_id, confidence=0.5, priority=priority)]

    return _agent(agent_id, role, think)


@pytest.mark.asyncio
async def test_routing_order_and_filtering():
    calls = []
    orchestrator = Orchestrator()
    # Insert out of tier order on purpose
    orchestrator.add_agent(_agent("world", Role.WORLD, calls=calls))
    orchestrator.add_agent(_agent("tutor", Role.TUTOR, calls=calls))
    orchestrator.add_agent(_agent("npc-b", Role.NPC, calls=calls))
    orchestrator.add_agent(_agent("eval", Role.EVALUATION, calls=calls))
    orchestrator.add_agent(_agent("npc-a", Role.NPC, calls=calls))

    await orchestrator.process_event(AgentEvent(type="dialogue_end"))
    assert calls == ["npc-b", "npc-a", "eval", "tutor", "world"]

    calls.clear()
    await orchestrator.process_event(AgentEvent(type="tick"))
    assert calls == ["eval", "world"]

    calls.clear()
    await orchestrator.process_event(AgentEvent(type="turn_complete"))
    assert "world" not in calls
    assert calls == ["npc-b", "npc-a", "eval", "tutor"]


@pytest.mark.asyncio
async def test_unknown_event_type_reaches_all_roles():
    calls = []
    orchestrator = Orchestrator()
    for agent_id, role in [("n", Role.NPC), ("t", Role.TUTOR), ("w", Role.WORLD), ("e", Role.EVALUATION)]:
        orchestrator.add_agent(_agent(agent_id, role, calls=calls))

    await orchestrator.process_event(AgentEvent(type="weather_changed"))
    assert calls == ["n", "e", "t", "w"]


@pytest.mark.asyncio
async def test_event_roles_override():
    calls = []
    orchestrator = Orchestrator(event_roles={"tick": [Role.NPC]})
    orchestrator.add_agent(_agent("n", Role.NPC, calls=calls))
    orchestrator.add_agent(_agent("w", Role.WORLD, calls=calls))
    await orchestrator.process_event(AgentEvent(type="tick"))
    assert calls == ["n"]


@pytest.mark.asyncio
async def test_priority_resolution_picks_highest_per_type():
    orchestrator = Orchestrator(conflict_strategy=ConflictStrategy.PRIORITY)
    orchestrator.add_agent(_emitting("low", Role.NPC, priority=2))
    orchestrator.add_agent(_emitting("high", Role.TUTOR, priority=8))

    decisions = await orchestrator.process_event(AgentEvent(type="session_end_custom"))

    assert len(decisions) == 1
    assert decisions[0].agent_id == "high"
    assert decisions[0].priority == 8


@pytest.mark.asyncio
async def test_priority_ties_keep_first_seen():
    orchestrator = Orchestrator()
    orchestrator.add_agent(_emitting("first", Role.NPC, priority=5))
    orchestrator.add_agent(_emitting("second", Role.NPC, priority=5))
    decisions = await orchestrator.process_event(AgentEvent(type="turn_complete"))
    assert [d.agent_id for d in decisions] == ["first"]


@pytest.mark.asyncio
async def test_first_wins_ignores_priority():
    orchestrator = Orchestrator(conflict_strategy="first-wins")
    orchestrator.add_agent(_emitting("low", Role.NPC, priority=1))
    orchestrator.add_agent(_emitting("high", Role.EVALUATION, priority=9))
    orchestrator.add_agent(_emitting("other", Role.TUTOR, decision_type=DecisionType.INJECT))

    decisions = await orchestrator.process_event(AgentEvent(type="turn_complete"))
    assert [d.agent_id for d in decisions] == ["low", "other"]


@pytest.mark.asyncio
async def test_all_pass_keeps_everything():
    orchestrator = Orchestrator(conflict_strategy=ConflictStrategy.ALL_PASS)
    orchestrator.add_agent(_emitting("a", Role.NPC))
    orchestrator.add_agent(_emitting("b", Role.NPC))
    decisions = await orchestrator.process_event(AgentEvent(type="turn_complete"))
    assert [d.agent_id for d in decisions] == ["a", "b"]


@pytest.mark.asyncio
async def test_decision_cap_truncates_in_routing_order():
    calls = []

    def counting(agent_id):
        def think(ctx):
            calls.append(agent_id)
            return [make_decision(DecisionType.SPEAK, agent_id, confidence=0.5, priority=1)]

        return think

    orchestrator = Orchestrator(max_decisions_per_tick=1, conflict_strategy="all-pass")
    orchestrator.add_agent(_agent("first", Role.NPC, counting("first")))
    orchestrator.add_agent(_agent("second", Role.NPC, counting("second")))

    decisions = await orchestrator.process_event(AgentEvent(type="turn_complete"))

    assert [d.agent_id for d in decisions] == ["first"]
    assert calls == ["first"]


@pytest.mark.asyncio
async def test_decision_cap_truncates_single_agent_overflow():
    def noisy(ctx):
        return [make_decision(DecisionType.SPEAK, "noisy", confidence=0.5) for _ in range(5)]

    orchestrator = Orchestrator(max_decisions_per_tick=3, conflict_strategy="all-pass")
    orchestrator.add_agent(_agent("noisy", Role.NPC, noisy))
    decisions = await orchestrator.process_event(AgentEvent(type="turn_complete"))
    assert len(decisions) == 3


@pytest.mark.asyncio
async def test_messages_arrive_one_cycle_later():
    seen = []

    def sender(ctx):
        if ctx.event.data.get("send"):
            ctx.send(create_message("sender", "receiver", MessageType.REQUEST, "ping"))
        return []

    def receiver(ctx):
        seen.append([m.content for m in ctx.inbox])
        return []

    orchestrator = Orchestrator()
    orchestrator.add_agent(_agent("sender", Role.NPC, sender))
    orchestrator.add_agent(_agent("receiver", Role.TUTOR, receiver))

    await orchestrator.process_event(AgentEvent(type="custom", data={"send": True}))
    assert seen == [[]]
    assert [m.content for m in orchestrator.pending_messages] == ["ping"]

    await orchestrator.process_event(AgentEvent(type="custom"))
    assert seen == [[], ["ping"]]
    assert orchestrator.pending_messages == []


@pytest.mark.asyncio
async def test_send_message_decisions_are_requeued():
    seen = []

    def evaluator(ctx):
        message = create_message("eval", None, MessageType.OBSERVATION, "metrics", {"metrics": {}})
        return [
            make_decision(
                DecisionType.SEND_MESSAGE, "eval", confidence=0.9, data={"message": message}
            )
        ]

    def tutor(ctx):
        seen.append([m.content for m in ctx.inbox])
        return []

    orchestrator = Orchestrator()
    orchestrator.add_agent(_agent("eval", Role.EVALUATION, evaluator))
    orchestrator.add_agent(_agent("tutor", Role.TUTOR, tutor))

    await orchestrator.process_event(AgentEvent(type="turn_complete"))
    assert seen == [[]]
    await orchestrator.process_event(AgentEvent(type="turn_complete"))
    assert seen[1] == ["metrics"]


@pytest.mark.asyncio
async def test_broadcast_skips_sender_and_unknown_recipients_drop():
    inboxes = {}

    def recorder(agent_id):
        def think(ctx):
            inboxes[agent_id] = [m.content for m in ctx.inbox]
            return []

        return think

    orchestrator = Orchestrator()
    orchestrator.add_agent(_agent("a", Role.NPC, recorder("a")))
    orchestrator.add_agent(_agent("b", Role.NPC, recorder("b")))

    orchestrator.broadcast("a", "hello everyone")
    orchestrator.send_message(create_message("a", "ghost", MessageType.REQUEST, "lost"))
    await orchestrator.process_event(AgentEvent(type="custom"))

    assert inboxes == {"a": [], "b": ["hello everyone"]}


@pytest.mark.asyncio
async def test_messaging_disabled_queues_nothing():
    def sender(ctx):
        ctx.send(create_message("s", None, MessageType.BROADCAST, "ignored"))
        return []

    orchestrator = Orchestrator(enable_messaging=False)
    orchestrator.add_agent(_agent("s", Role.NPC, sender))
    await orchestrator.process_event(AgentEvent(type="custom"))
    orchestrator.broadcast("host", "also ignored")
    assert orchestrator.pending_messages == []
    # Discarded messages were never sent
    assert orchestrator.snapshots()["s"].message_sent_count == 0


@pytest.mark.asyncio
async def test_malformed_send_message_is_dropped_and_cycle_completes(capsys):
    def bad_sender(ctx):
        return [
            make_decision(
                DecisionType.SEND_MESSAGE, "a", confidence=0.5, data={"message": {"content": "hi"}}
            )
        ]

    orchestrator = Orchestrator(failure_policy=FailurePolicy.ISOLATE)
    orchestrator.add_agent(_agent("a", Role.NPC, bad_sender))
    orchestrator.add_agent(_emitting("b", Role.NPC, DecisionType.SPEAK))

    decisions = await orchestrator.process_event(AgentEvent(type="custom"))

    assert [d.type for d in decisions] == [DecisionType.SEND_MESSAGE, DecisionType.SPEAK]
    assert orchestrator.pending_messages == []
    assert "Dropped malformed message from 'a'" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_isolate_policy_skips_failing_agent():
    calls = []

    def broken(ctx):
        raise RuntimeError("npc bug")

    orchestrator = Orchestrator(failure_policy=FailurePolicy.ISOLATE)
    orchestrator.add_agent(_agent("broken", Role.NPC, broken))
    orchestrator.add_agent(_emitting("eval", Role.EVALUATION))
    orchestrator.add_agent(_agent("tutor", Role.TUTOR, calls=calls))

    decisions = await orchestrator.process_event(AgentEvent(type="turn_complete"))

    assert [d.agent_id for d in decisions] == ["eval"]
    assert calls == ["tutor"]
    assert orchestrator.get_agent("broken").state == AgentState.IDLE


@pytest.mark.asyncio
async def test_fail_fast_policy_aborts_cycle():
    calls = []

    def broken(ctx):
        raise RuntimeError("npc bug")

    orchestrator = Orchestrator(failure_policy="fail_fast")
    orchestrator.add_agent(_agent("broken", Role.NPC, broken))
    orchestrator.add_agent(_agent("tutor", Role.TUTOR, calls=calls))

    with pytest.raises(AgentProcessingError) as excinfo:
        await orchestrator.process_event(AgentEvent(type="turn_complete"))

    assert excinfo.value.agent_id == "broken"
    assert excinfo.value.event_type == "turn_complete"
    assert isinstance(excinfo.value.underlying, RuntimeError)
    assert "Remediation tips" in str(excinfo.value)
    assert calls == []


def test_pool_management():
    orchestrator = Orchestrator()
    npc = _agent("npc-1", Role.NPC)
    orchestrator.add_agent(npc)
    orchestrator.add_agent(_agent("tutor", Role.TUTOR))

    assert len(orchestrator) == 2
    assert orchestrator.get_agent("npc-1") is npc
    assert [a.id for a in orchestrator.get_agents_by_role(Role.NPC)] == ["npc-1"]
    assert set(orchestrator.snapshots()) == {"npc-1", "tutor"}

    npc.memory.observe("something")
    assert orchestrator.remove_agent("npc-1")
    assert npc.memory.get_working_memory() == []
    assert orchestrator.remove_agent("npc-1") is False
    assert len(orchestrator) == 1

    orchestrator.broadcast("host", "bye")
    orchestrator.dispose()
    assert len(orchestrator) == 0
    assert orchestrator.pending_messages == []


def test_invalid_settings_rejected():
    with pytest.raises(ValueError):
        Orchestrator(max_decisions_per_tick=0)
    with pytest.raises(ValueError):
        Orchestrator(conflict_strategy="loudest")
    with pytest.raises(ValueError):
        Orchestrator(failure_policy="ignore")


def test_from_config_reads_defaults(monkeypatch):
    from cohort.config import Config

    monkeypatch.setattr(Config, "LLM_PROVIDER", "ollama")
    monkeypatch.setattr(Config, "MAX_DECISIONS_PER_TICK", 7)
    monkeypatch.setattr(Config, "CONFLICT_STRATEGY", "first-wins")
    monkeypatch.setattr(Config, "FAILURE_POLICY", "fail_fast")
    monkeypatch.setattr(Config, "ENABLE_MESSAGING", False)

    orchestrator = Orchestrator.from_config()

    assert orchestrator.max_decisions_per_tick == 7
    assert orchestrator.conflict_strategy == ConflictStrategy.FIRST_WINS
    assert orchestrator.failure_policy == FailurePolicy.FAIL_FAST
    assert orchestrator.enable_messaging is False
