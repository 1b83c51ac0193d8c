"""
Plan executor - runs the steps of the current execution plan in order.

Execution is fail-fast: an invalid plan, an unmet dependency or a failed
step emits one ``Error`` and stops the plan. Completed steps are never
rolled back, and a plan that has already run is refused rather than rerun.
"""

from typing import Any, AsyncIterator, Callable

import structlog

from ..errors import DependencyUnmetError, PlanError
from ..hooks import HookPoint
from ..llm.base import ToolCall
from ..tools.dispatcher import ToolDispatcher
from .context import AgentContext
from .events import (
    AgentEvent,
    DoneEvent,
    ErrorEvent,
    SystemNotificationEvent,
    ThinkingEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from .planning import ExecutionPlan, ExecutionStep, PlanningState, StepStatus

logger = structlog.get_logger()


def _find_step(state: PlanningState, step_id: str) -> ExecutionStep:
    step = state.current_plan.get_step(step_id) if state.current_plan else None
    if step is None:
        raise KeyError(step_id)
    return step


class PlanExecutor:
    """Executes plan steps through the tool dispatcher."""

    def __init__(self, dispatcher: ToolDispatcher):
        self.dispatcher = dispatcher

    async def execute_plan(
        self,
        context: AgentContext,
        plan: ExecutionPlan | None = None,
    ) -> AsyncIterator[AgentEvent]:
        """Run ``plan`` (installed first) or the context's current plan."""
        state = context.planning_state
        if plan is not None:
            try:
                await state.set_plan(plan)
            except PlanError as e:
                logger.warning("Rejected execution plan", session_id=context.session_id, error=str(e))
                yield await self._error(context, str(e))
                return

        snapshot = await state.snapshot()
        if snapshot.current_plan is None:
            yield await self._error(context, "No execution plan to run")
            return

        steps = snapshot.current_plan.steps
        log = logger.bind(session_id=context.session_id, plan_id=snapshot.current_plan.id)
        if any(step.status != StepStatus.PENDING for step in steps):
            log.warning("Plan already executed")
            yield await self._error(
                context, f"Plan '{snapshot.current_plan.goal}' has already been executed"
            )
            return

        yield SystemNotificationEvent(
            f"Executing plan '{snapshot.current_plan.goal}' ({len(steps)} steps)"
        )

        for index, step in enumerate(steps):
            completed = (await state.snapshot()).completed_steps
            missing = sorted(dep for dep in step.dependencies if dep not in completed)
            if missing:
                log.warning("Plan halted on unmet dependency", step_id=step.id, missing=missing)
                yield await self._error(context, str(DependencyUnmetError(step.id, missing)))
                return

            try:
                await state.update(self._record_start(step.id, index))
            except (PlanError, KeyError) as e:
                log.warning("Plan step could not start", step_id=step.id, error=str(e))
                yield await self._error(context, f"Step '{step.id}' could not start: {e}")
                return
            yield ThinkingEvent(f"Step {index + 1}/{len(steps)}: {step.description}")

            if not step.tool_name:
                await state.update(self._record_success(step.id, None))
                yield SystemNotificationEvent(f"Step '{step.id}' completed")
                continue

            tool_call = ToolCall(
                id=f"plan_{step.id}",
                name=step.tool_name,
                arguments=dict(step.parameters or {}),
            )
            tool_call = await context.hooks.run(HookPoint.TOOL_EXECUTION, tool_call)
            yield ToolCallEvent(tool_call)

            result = await self.dispatcher.execute(tool_call, context.config, session_id=context.session_id)
            failed = not result.success or result.is_error
            output = result.output if result.success else [f"Error: {result.error}"]
            yield ToolResultEvent(
                tool_call_id=tool_call.id,
                tool_name=tool_call.name,
                output=output,
                is_error=failed,
            )

            if failed:
                error = result.error or "\n".join(output)
                await state.update(self._record_failure(step.id, error))
                log.warning("Plan step failed", step_id=step.id, error=error)
                yield await self._error(context, f"Step '{step.id}' failed: {error}")
                return

            await state.update(self._record_success(step.id, output))
            log.info("Plan step completed", step_id=step.id)

        yield DoneEvent()

    @staticmethod
    def _record_start(step_id: str, position: int) -> Callable[[PlanningState], None]:
        def record(state: PlanningState) -> None:
            _find_step(state, step_id).start()
            state.current_step = position

        return record

    @staticmethod
    def _record_success(step_id: str, result: Any) -> Callable[[PlanningState], None]:
        def record(state: PlanningState) -> None:
            _find_step(state, step_id).complete(result)
            state.completed_steps.append(step_id)
            state.current_step = None

        return record

    @staticmethod
    def _record_failure(step_id: str, error: str) -> Callable[[PlanningState], None]:
        def record(state: PlanningState) -> None:
            _find_step(state, step_id).fail(error)
            state.failed_steps.append(step_id)
            state.current_step = None

        return record

    @staticmethod
    async def _error(context: AgentContext, message: str) -> ErrorEvent:
        message = await context.hooks.run(HookPoint.ERROR, message)
        return ErrorEvent(str(message))
