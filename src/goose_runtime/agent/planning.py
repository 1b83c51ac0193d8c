"""
Planning state - execution plans, step lifecycle and the reasoning chain.

Steps move Pending -> InProgress -> Completed | Failed, or Pending -> Skipped.
Every mutation of a :class:`PlanningState` goes through :meth:`PlanningState.update`,
which runs the mutator under the state's write lock.
"""

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, TypeVar

import structlog

from ..concurrency import RWLock
from ..errors import PlanError
from ..llm.base import utcnow

logger = structlog.get_logger()

T = TypeVar("T")


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ReasoningType(str, Enum):
    ANALYSIS = "analysis"
    PLANNING = "planning"
    TOOL_SELECTION = "tool_selection"
    REFLECTION = "reflection"
    ERROR_CORRECTION = "error_correction"


_TRANSITIONS: dict[StepStatus, set[StepStatus]] = {
    StepStatus.PENDING: {StepStatus.IN_PROGRESS, StepStatus.SKIPPED},
    StepStatus.IN_PROGRESS: {StepStatus.COMPLETED, StepStatus.FAILED},
    StepStatus.COMPLETED: set(),
    StepStatus.FAILED: set(),
    StepStatus.SKIPPED: set(),
}


@dataclass
class ReasoningStep:
    """One entry in the agent's reasoning chain."""

    step_type: ReasoningType
    content: str
    confidence: float = 1.0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be between 0 and 1, got {self.confidence}")


@dataclass
class ExecutionStep:
    """A single step of an execution plan."""

    id: str
    description: str
    tool_name: str | None = None
    parameters: dict[str, Any] | None = None
    dependencies: set[str] = field(default_factory=set)
    status: StepStatus = StepStatus.PENDING
    result: Any = None
    error: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None

    def _transition(self, new_status: StepStatus) -> None:
        if new_status not in _TRANSITIONS[self.status]:
            raise PlanError(
                f"Step '{self.id}' cannot move from {self.status.value} to {new_status.value}"
            )
        self.status = new_status

    def start(self) -> None:
        self._transition(StepStatus.IN_PROGRESS)

    def complete(self, result: Any = None) -> None:
        self._transition(StepStatus.COMPLETED)
        self.result = result
        self.completed_at = utcnow()

    def fail(self, error: str) -> None:
        self._transition(StepStatus.FAILED)
        self.error = error
        self.completed_at = utcnow()

    def skip(self) -> None:
        self._transition(StepStatus.SKIPPED)

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self.status]


@dataclass
class ExecutionPlan:
    """An ordered list of steps toward a goal."""

    goal: str
    steps: list[ExecutionStep] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    estimated_duration: timedelta | None = None

    def validate(self) -> None:
        """Check that step ids are unique and dependencies point at earlier steps.

        Raises:
            PlanError: On a duplicate id or a forward/unknown dependency
        """
        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                raise PlanError(f"Duplicate step id: {step.id}")
            unknown = sorted(step.dependencies - seen)
            if unknown:
                raise PlanError(
                    f"Step '{step.id}' depends on steps that do not precede it: {', '.join(unknown)}"
                )
            seen.add(step.id)

    @classmethod
    def create(cls, goal: str, steps: list[ExecutionStep], **kwargs: Any) -> "ExecutionPlan":
        plan = cls(goal=goal, steps=steps, **kwargs)
        plan.validate()
        return plan

    def get_step(self, step_id: str) -> ExecutionStep | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


@dataclass
class PlanningSnapshot:
    """Read-only copy of a planning state at one moment."""

    current_plan: ExecutionPlan | None
    completed_steps: tuple[str, ...]
    failed_steps: tuple[str, ...]
    current_step: int | None
    reasoning_chain: tuple[ReasoningStep, ...]


class PlanningState:
    """Current plan, progress and reasoning for one agent context.

    Fields must only be touched inside :meth:`update` (or read through
    :meth:`snapshot`). Do not call back into the state from a mutator.
    """

    def __init__(self):
        self.current_plan: ExecutionPlan | None = None
        self.completed_steps: list[str] = []
        self.failed_steps: list[str] = []
        self.current_step: int | None = None
        self.reasoning_chain: list[ReasoningStep] = []
        self._lock = RWLock()

    async def update(self, mutator: Callable[["PlanningState"], T]) -> T:
        """Run ``mutator`` on the state under the write lock and return its result."""
        async with self._lock.write():
            return mutator(self)

    async def snapshot(self) -> PlanningSnapshot:
        async with self._lock.read():
            return PlanningSnapshot(
                current_plan=copy.deepcopy(self.current_plan),
                completed_steps=tuple(self.completed_steps),
                failed_steps=tuple(self.failed_steps),
                current_step=self.current_step,
                reasoning_chain=tuple(copy.deepcopy(self.reasoning_chain)),
            )

    async def set_plan(self, plan: ExecutionPlan) -> None:
        """Replace the current plan and reset progress."""
        plan.validate()

        def install(state: "PlanningState") -> None:
            state.current_plan = plan
            state.completed_steps = []
            state.failed_steps = []
            state.current_step = None

        await self.update(install)
        logger.info("Execution plan installed", plan_id=plan.id, steps=len(plan.steps))

    async def add_reasoning(
        self,
        step_type: ReasoningType,
        content: str,
        confidence: float = 1.0,
    ) -> ReasoningStep:
        step = ReasoningStep(step_type=step_type, content=content, confidence=confidence)
        await self.update(lambda state: state.reasoning_chain.append(step))
        return step

    async def is_completed(self, step_id: str) -> bool:
        async with self._lock.read():
            return step_id in self.completed_steps
