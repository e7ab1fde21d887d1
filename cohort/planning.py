"""Plan helpers for deliberative agents.

Plans are produced by a behavior's think phase (as a ``PlanPayload``
decision) and stepped through explicitly by role code. The agent loop never
executes steps on its own.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from .schemas import AgentPlan, Decision, PlanStatus, PlanStep, StepStatus
from .tools import ToolRegistry


async def execute_plan_step(step: PlanStep, tools: ToolRegistry) -> Any:
    """Run one tool-invocation step and record its outcome on the step.

    Reasoning steps (no ``tool_name``) are left untouched and return None.
    A failed observation or an unexpected error marks the step failed and
    returns None.
    """
    if step.tool_name is None:
        return None

    step.status = StepStatus.RUNNING
    try:
        observation = await tools.execute(step.tool_name, step.tool_params)
    except Exception as exc:
        step.status = StepStatus.FAILED
        step.result = str(exc)
        return None

    step.result = observation.data if observation.success else observation.error
    step.status = StepStatus.COMPLETED if observation.success else StepStatus.FAILED
    return observation.data if observation.success else None


def extract_plan(decisions: Iterable[Decision]) -> Optional[AgentPlan]:
    """First plan carried by a decision's ``PlanPayload``, if any."""
    for decision in decisions:
        if decision.plan is not None:
            return decision.plan
    return None


def next_ready_step(plan: AgentPlan) -> Optional[PlanStep]:
    """Step at ``current_step`` if all of its dependencies have completed."""
    if plan.status != PlanStatus.ACTIVE or plan.current_step >= len(plan.steps):
        return None
    step = plan.steps[plan.current_step]
    for index in step.depends_on:
        if index >= len(plan.steps) or plan.steps[index].status != StepStatus.COMPLETED:
            return None
    return step


async def advance_plan(plan: AgentPlan, tools: ToolRegistry) -> Optional[PlanStep]:
    """Execute the next ready step and move the plan cursor forward.

    Reasoning steps complete immediately. A failed tool step fails the plan;
    running past the last step completes it. Returns the step that ran.
    """
    step = next_ready_step(plan)
    if step is None:
        return None

    if step.is_reasoning_step:
        step.status = StepStatus.COMPLETED
    else:
        await execute_plan_step(step, tools)

    if step.status == StepStatus.FAILED:
        plan.status = PlanStatus.FAILED
        return step

    plan.current_step += 1
    if plan.current_step >= len(plan.steps):
        plan.status = PlanStatus.COMPLETED
    return step
