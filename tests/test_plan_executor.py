"""
Tests for plan execution.
"""

import pytest

from goose_runtime.agent import (
    AgentContext,
    DoneEvent,
    ErrorEvent,
    ExecutionPlan,
    ExecutionStep,
    PlanExecutor,
    StepStatus,
    ToolCallEvent,
    ToolResultEvent,
)
from goose_runtime.hooks import HookPoint


def chain_plan(b_tool: str = "broken") -> ExecutionPlan:
    return ExecutionPlan.create(
        "three steps",
        [
            ExecutionStep(id="A", description="first", tool_name="echo", parameters={"text": "a"}),
            ExecutionStep(id="B", description="second", tool_name=b_tool, dependencies={"A"}),
            ExecutionStep(id="C", description="third", tool_name="echo", dependencies={"B"}),
        ],
    )


async def run_plan(executor, context, plan=None):
    return [event async for event in executor.execute_plan(context, plan)]


@pytest.mark.asyncio
async def test_failed_step_halts_plan(dispatcher):
    """A failing step stops the plan with exactly one Error."""
    context = AgentContext("s1")
    events = await run_plan(PlanExecutor(dispatcher), context, chain_plan())

    errors = [e for e in events if isinstance(e, ErrorEvent)]
    assert len(errors) == 1
    assert events[-1] is errors[0]
    assert errors[0].message.startswith("Step 'B' failed")
    assert not any(isinstance(e, DoneEvent) for e in events)

    snapshot = await context.planning_state.snapshot()
    statuses = {s.id: s.status for s in snapshot.current_plan.steps}
    assert statuses == {"A": StepStatus.COMPLETED, "B": StepStatus.FAILED, "C": StepStatus.PENDING}
    assert snapshot.completed_steps == ("A",)
    assert snapshot.failed_steps == ("B",)


@pytest.mark.asyncio
async def test_successful_plan(dispatcher):
    """All steps complete and the plan ends with Done."""
    context = AgentContext("s1")
    events = await run_plan(PlanExecutor(dispatcher), context, chain_plan(b_tool="echo"))

    assert isinstance(events[-1], DoneEvent)
    results = [e for e in events if isinstance(e, ToolResultEvent)]
    assert len(results) == 3
    assert results[0].output == ["echo: a"]

    snapshot = await context.planning_state.snapshot()
    assert snapshot.completed_steps == ("A", "B", "C")
    assert snapshot.current_plan.get_step("A").result == ["echo: a"]


@pytest.mark.asyncio
async def test_step_without_tool_completes(dispatcher):
    """A step with no tool is completed without dispatching."""
    context = AgentContext("s1")
    plan = ExecutionPlan.create("think", [ExecutionStep(id="only", description="reflect")])

    events = await run_plan(PlanExecutor(dispatcher), context, plan)

    assert not any(isinstance(e, ToolCallEvent) for e in events)
    assert isinstance(events[-1], DoneEvent)
    assert await context.planning_state.is_completed("only")


@pytest.mark.asyncio
async def test_unmet_dependency_halts(dispatcher):
    """A dependency that never completed stops the plan before the step runs."""
    context = AgentContext("s1")
    plan = ExecutionPlan(
        "unvalidated",
        [
            ExecutionStep(id="A", description="a", tool_name="echo"),
            ExecutionStep(id="B", description="b", tool_name="echo", dependencies={"Z"}),
        ],
    )
    await context.planning_state.update(lambda s: setattr(s, "current_plan", plan))

    events = await run_plan(PlanExecutor(dispatcher), context)

    errors = [e for e in events if isinstance(e, ErrorEvent)]
    assert len(errors) == 1
    assert errors[0].message == "Step 'B' has unmet dependencies: Z"
    assert plan.get_step("A").status == StepStatus.COMPLETED
    assert plan.get_step("B").status == StepStatus.PENDING


@pytest.mark.asyncio
async def test_no_plan_is_an_error(dispatcher):
    """Executing without a plan reports an error."""
    events = await run_plan(PlanExecutor(dispatcher), AgentContext("s1"))

    assert [type(e) for e in events] == [ErrorEvent]


@pytest.mark.asyncio
async def test_tool_execution_hooks_apply_to_steps(dispatcher):
    """Tool-execution hooks rewrite plan step calls; a failing hook is skipped."""
    context = AgentContext("s1")

    def explode(tool_call):
        raise RuntimeError("hook broke")

    def rewrite(tool_call):
        tool_call.arguments = {"text": "hooked"}
        return tool_call

    await context.hooks.register(HookPoint.TOOL_EXECUTION, explode)
    await context.hooks.register(HookPoint.TOOL_EXECUTION, rewrite)

    plan = ExecutionPlan.create(
        "one", [ExecutionStep(id="A", description="a", tool_name="echo", parameters={"text": "a"})]
    )
    events = await run_plan(PlanExecutor(dispatcher), context, plan)

    result = next(e for e in events if isinstance(e, ToolResultEvent))
    assert result.output == ["echo: hooked"]


@pytest.mark.asyncio
async def test_invalid_plan_is_an_error(dispatcher):
    """A plan with a forward dependency is rejected with one Error and nothing runs."""
    context = AgentContext("s1")
    plan = ExecutionPlan(
        "backwards",
        [
            ExecutionStep(id="a", description="a", tool_name="echo", dependencies={"b"}),
            ExecutionStep(id="b", description="b", tool_name="echo"),
        ],
    )

    events = await run_plan(PlanExecutor(dispatcher), context, plan)

    assert [type(e) for e in events] == [ErrorEvent]
    assert events[0].message == "Step 'a' depends on steps that do not precede it: b"
    assert (await context.planning_state.snapshot()).current_plan is None


@pytest.mark.asyncio
async def test_second_run_of_finished_plan_is_an_error(dispatcher):
    """Running a plan that already ran reports an error instead of raising."""
    context = AgentContext("s1")
    executor = PlanExecutor(dispatcher)
    first = await run_plan(executor, context, chain_plan(b_tool="echo"))
    assert isinstance(first[-1], DoneEvent)

    second = await run_plan(executor, context)

    assert [type(e) for e in second] == [ErrorEvent]
    assert second[0].message == "Plan 'three steps' has already been executed"
    snapshot = await context.planning_state.snapshot()
    assert snapshot.completed_steps == ("A", "B", "C")


@pytest.mark.asyncio
async def test_hook_that_mutates_then_raises_leaves_call_unchanged(dispatcher):
    """A failing tool-execution hook cannot leak partial changes into the call."""
    context = AgentContext("s1")

    def hijack(tool_call):
        tool_call.arguments["text"] = "HIJACKED"
        raise RuntimeError("hook broke")

    await context.hooks.register(HookPoint.TOOL_EXECUTION, hijack)

    plan = ExecutionPlan.create(
        "one", [ExecutionStep(id="A", description="a", tool_name="echo", parameters={"text": "orig"})]
    )
    events = await run_plan(PlanExecutor(dispatcher), context, plan)

    call = next(e for e in events if isinstance(e, ToolCallEvent))
    result = next(e for e in events if isinstance(e, ToolResultEvent))
    assert call.tool_call.arguments == {"text": "orig"}
    assert result.output == ["echo: orig"]
