"""Tests for the agent observe/think/act/reflect loop."""

import asyncio

import pytest

from cohort.agent import (
    Agent,
    AgentConfig,
    CallbackBehavior,
    Strategy,
    ThinkTimeoutError,
    create_message,
    make_decision,
)
from cohort.planning import advance_plan, execute_plan_step, extract_plan
from cohort.schemas import (
    AgentEvent,
    AgentPlan,
    AgentState,
    Decision,
    DecisionType,
    MessageType,
    Observation,
    PlanPayload,
    PlanStatus,
    PlanStep,
    Role,
    StepStatus,
)
from cohort.tools import Tool, ToolRegistry


def _agent(think, *, strategy=Strategy.REACTIVE, tools=None, think_timeout=None, **hooks):
    config = AgentConfig(
        id="agent-1",
        role=Role.TUTOR,
        strategy=strategy,
        think_timeout=think_timeout,
    )
    return Agent(config, CallbackBehavior(think, **hooks), tools or ToolRegistry())


def _plan_decision(goal="goal"):
    plan = AgentPlan(agent_id="agent-1", goal=goal, steps=[PlanStep(description="think")])
    return Decision(
        type=DecisionType.NO_ACTION,
        agent_id="agent-1",
        confidence=1.0,
        payload=PlanPayload(plan=plan),
    )


@pytest.mark.asyncio
async def test_process_walks_state_machine():
    agent = None
    seen = []

    def observe(event, memory):
        seen.append(agent.state)

    def think(ctx):
        seen.append(agent.state)
        return [make_decision(DecisionType.SPEAK, "agent-1", confidence=0.5)]

    def act(decisions):
        seen.append(agent.state)
        return decisions

    def reflect(decisions, memory):
        seen.append(agent.state)

    agent = _agent(think, observe=observe, act=act, reflect=reflect)
    assert agent.state == AgentState.IDLE

    decisions = await agent.process(AgentEvent(type="tick"))

    assert seen == [
        AgentState.OBSERVING,
        AgentState.THINKING,
        AgentState.ACTING,
        AgentState.REFLECTING,
    ]
    assert agent.state == AgentState.IDLE
    assert len(decisions) == 1
    assert agent.decision_count == 1


@pytest.mark.asyncio
async def test_state_returns_to_idle_after_error():
    def think(ctx):
        raise RuntimeError("bad think")

    agent = _agent(think)
    with pytest.raises(RuntimeError):
        await agent.process(AgentEvent(type="tick"))
    assert agent.state == AgentState.IDLE


@pytest.mark.asyncio
async def test_inbox_is_copied_then_cleared_even_on_failure():
    received = []

    def think(ctx):
        received.append([m.content for m in ctx.inbox])
        raise RuntimeError("fail after reading")

    agent = _agent(think)
    agent.receive_message(create_message("other", "agent-1", MessageType.REQUEST, "hello"))
    assert agent.inbox_size == 1

    with pytest.raises(RuntimeError):
        await agent.process(AgentEvent(type="tick"))

    assert received == [["hello"]]
    assert agent.inbox_size == 0


@pytest.mark.asyncio
async def test_act_filters_before_counting():
    def think(ctx):
        return [
            make_decision(DecisionType.SPEAK, "agent-1", confidence=0.5),
            make_decision(DecisionType.NO_ACTION, "agent-1", confidence=0.5),
        ]

    reflected = []
    agent = _agent(
        think,
        act=lambda decisions: [d for d in decisions if d.type != DecisionType.NO_ACTION],
        reflect=lambda decisions, memory: reflected.extend(decisions),
    )

    decisions = await agent.process(AgentEvent(type="tick"))

    assert [d.type for d in decisions] == [DecisionType.SPEAK]
    assert agent.decision_count == 1
    assert reflected == decisions


@pytest.mark.asyncio
async def test_send_appends_to_outbox_and_flush_counts():
    def think(ctx):
        ctx.send(create_message(ctx.agent_id, None, MessageType.BROADCAST, "hi all"))
        ctx.send(create_message(ctx.agent_id, "x", MessageType.REQUEST, "hi x"))
        return []

    agent = _agent(think)
    await agent.process(AgentEvent(type="tick"))

    flushed = agent.flush_messages()
    assert [m.content for m in flushed] == ["hi all", "hi x"]
    assert agent.message_sent_count == 2
    assert agent.flush_messages() == []
    assert agent.message_sent_count == 2


@pytest.mark.asyncio
async def test_deliberative_adopts_first_plan_only_when_none_active():
    calls = []

    def think(ctx):
        calls.append(ctx.active_plan)
        return [_plan_decision(goal=f"goal-{len(calls)}")]

    agent = _agent(think, strategy=Strategy.DELIBERATIVE)

    await agent.process(AgentEvent(type="tick"))
    first = agent.active_plan
    assert first is not None and first.goal == "goal-1"

    await agent.process(AgentEvent(type="tick"))
    assert agent.active_plan is first
    assert calls[1] is first

    agent.clear_plan()
    await agent.process(AgentEvent(type="tick"))
    assert agent.active_plan.goal == "goal-3"


@pytest.mark.asyncio
async def test_reactive_ignores_plans():
    agent = _agent(lambda ctx: [_plan_decision()])
    await agent.process(AgentEvent(type="tick"))
    assert agent.active_plan is None


@pytest.mark.asyncio
async def test_think_timeout_raises():
    async def slow_think(ctx):
        await asyncio.sleep(1)
        return []

    agent = _agent(slow_think, think_timeout=0.01)
    with pytest.raises(ThinkTimeoutError) as excinfo:
        await agent.process(AgentEvent(type="tick"))

    assert excinfo.value.agent_id == "agent-1"
    assert agent.state == AgentState.IDLE


@pytest.mark.asyncio
async def test_snapshot_and_dispose():
    def think(ctx):
        ctx.memory.observe("saw something")
        ctx.send(create_message(ctx.agent_id, None, MessageType.BROADCAST, "queued"))
        return [make_decision(DecisionType.SPEAK, "agent-1", confidence=0.9)]

    agent = _agent(think)
    await agent.process(AgentEvent(type="tick"))

    snap = agent.snapshot()
    assert snap.id == "agent-1"
    assert snap.state == AgentState.IDLE
    assert snap.decision_count == 1
    assert "saw something" in snap.working_memory_summary

    agent.receive_message(create_message("other", "agent-1", MessageType.REQUEST, "late"))
    agent.dispose()
    agent.dispose()

    assert agent.inbox_size == 0
    assert agent.flush_messages() == []
    assert agent.memory.get_working_memory() == []
    assert agent.state == AgentState.IDLE


def test_agent_config_defaults_name_to_id():
    config = AgentConfig(id="npc-ana", role="npc")
    assert config.name == "npc-ana"
    assert config.role == Role.NPC


def test_create_message_ids_increase():
    first = create_message("a", "b", MessageType.REQUEST, "one")
    second = create_message("a", None, MessageType.BROADCAST, "two")
    assert int(second.id.split("-")[1]) > int(first.id.split("-")[1])
    assert second.is_broadcast and not first.is_broadcast
    assert first.priority == 5


def test_decision_is_frozen():
    decision = make_decision(DecisionType.SPEAK, "a", confidence=0.5)
    with pytest.raises(Exception):
        decision.priority = 10


def test_extract_plan_ignores_opaque_payloads():
    opaque = make_decision(DecisionType.SPEAK, "a", confidence=0.5, data={"steps": ["not a plan"]})
    assert extract_plan([opaque]) is None
    plan_decision = _plan_decision()
    assert extract_plan([opaque, plan_decision]) is plan_decision.plan


@pytest.mark.asyncio
async def test_execute_plan_step_outcomes():
    async def ok(params):
        return Observation.ok("lookup", {"found": params["q"]})

    async def bad(params):
        return Observation.failure("broken", "no data")

    tools = ToolRegistry(
        [
            Tool(name="lookup", description="", available_to=[Role.TUTOR], handler=ok),
            Tool(name="broken", description="", available_to=[Role.TUTOR], handler=bad),
        ]
    )

    reasoning = PlanStep(description="just think")
    assert await execute_plan_step(reasoning, tools) is None
    assert reasoning.status == StepStatus.PENDING

    good = PlanStep(description="look", tool_name="lookup", tool_params={"q": "x"})
    assert await execute_plan_step(good, tools) == {"found": "x"}
    assert good.status == StepStatus.COMPLETED
    assert good.result == {"found": "x"}

    failing = PlanStep(description="fail", tool_name="broken")
    assert await execute_plan_step(failing, tools) is None
    assert failing.status == StepStatus.FAILED

    missing = PlanStep(description="missing", tool_name="nope")
    assert await execute_plan_step(missing, tools) is None
    assert missing.status == StepStatus.FAILED


@pytest.mark.asyncio
async def test_advance_plan_respects_dependencies_and_completes():
    plan = AgentPlan(
        agent_id="a",
        goal="g",
        steps=[PlanStep(description="one"), PlanStep(description="two", depends_on=[0])],
    )
    tools = ToolRegistry()

    assert (await advance_plan(plan, tools)).description == "one"
    assert plan.current_step == 1
    assert (await advance_plan(plan, tools)).description == "two"
    assert plan.status == PlanStatus.COMPLETED
    assert await advance_plan(plan, tools) is None


@pytest.mark.asyncio
async def test_advance_plan_fails_on_failed_tool_step():
    plan = AgentPlan(agent_id="a", goal="g", steps=[PlanStep(description="x", tool_name="missing")])
    step = await advance_plan(plan, ToolRegistry())
    assert step.status == StepStatus.FAILED
    assert plan.status == PlanStatus.FAILED
    assert plan.current_step == 0
