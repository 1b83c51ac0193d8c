"""
Planner - asks the model for a structured execution plan.

The model answers with JSON describing ordered steps. Anything that cannot
be parsed or fails validation falls back to a single step with no tool.
"""

import json
from typing import Any

import structlog

from ..errors import PlanError
from ..hooks import HookPoint
from ..llm.base import BaseLLM, CompletionRequest, Message, ToolDefinition
from .context import AgentContext
from .planning import ExecutionPlan, ExecutionStep, ReasoningType

logger = structlog.get_logger()

PLANNER_SYSTEM_PROMPT = "You are the planning engine of an AI agent. Respond only with valid JSON."

PLANNING_PROMPT = """Break the user's goal into 1-6 ordered steps using ONLY the available tools.

AVAILABLE TOOLS:
{tools}

GOAL: "{goal}"

RULES:
1. Each step uses at most one tool, by its exact name. Omit "tool_name" for steps that need no tool.
2. "dependencies" may only list ids of earlier steps.
3. Keep it minimal.

Respond ONLY with JSON (no markdown, no extra text):
{{
    "reasoning": "Why you chose this plan",
    "steps": [
        {{
            "id": "step_1",
            "description": "What this step does",
            "tool_name": "tool_name_here",
            "parameters": {{"key": "value"}},
            "dependencies": []
        }}
    ]
}}"""


def format_tools(tools: list[ToolDefinition]) -> str:
    lines = []
    for tool in tools:
        params = tool.parameters.get("properties", {})
        param_lines = [
            f"    - {name} ({info.get('type', 'any')}): {info.get('description', '')}"
            for name, info in params.items()
        ]
        lines.append(
            f"- {tool.name}: {tool.description}\n" + ("\n".join(param_lines) or "    (no parameters)")
        )
    return "\n".join(lines) or "(no tools available)"


def extract_json(text: str) -> dict[str, Any]:
    """Parse a JSON object from model output, tolerating surrounding prose."""
    text = text.strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start, end = text.find("{"), text.rfind("}") + 1
        if start == -1 or end <= start:
            raise ValueError(f"No JSON object in planner response: {text[:200]}")
        data = json.loads(text[start:end])

    if not isinstance(data, dict):
        raise ValueError("Planner response is not a JSON object")
    return data


def parse_plan(goal: str, text: str, known_tools: set[str] | None = None) -> ExecutionPlan:
    """Build and validate an ExecutionPlan from the planner's JSON answer.

    Raises:
        ValueError: If the answer is not usable JSON
        PlanError: If the steps fail validation
    """
    data = extract_json(text)
    raw_steps = data.get("steps")
    if not isinstance(raw_steps, list) or not raw_steps:
        raise PlanError("Plan has no steps")

    steps = []
    for position, raw in enumerate(raw_steps, 1):
        if not isinstance(raw, dict):
            raise PlanError(f"Step {position} is not an object")

        tool_name = raw.get("tool_name") or None
        if tool_name and known_tools is not None and tool_name not in known_tools:
            raise PlanError(f"Step {position} uses unknown tool: {tool_name}")

        parameters = raw.get("parameters")
        steps.append(
            ExecutionStep(
                id=str(raw.get("id") or f"step_{position}"),
                description=str(raw.get("description", "")),
                tool_name=tool_name,
                parameters=parameters if isinstance(parameters, dict) else None,
                dependencies={str(d) for d in raw.get("dependencies") or []},
            )
        )

    return ExecutionPlan.create(goal, steps)


def fallback_plan(goal: str) -> ExecutionPlan:
    return ExecutionPlan.create(goal, [ExecutionStep(id="step_1", description=goal)])


class Planner:
    """LLM-backed plan generator."""

    def __init__(self, provider: BaseLLM):
        self.provider = provider

    async def create_plan(
        self,
        goal: str,
        tools: list[ToolDefinition],
        context: AgentContext | None = None,
    ) -> ExecutionPlan:
        """Generate a plan for ``goal``.

        With a context, planning hooks may rewrite the plan, which is then
        installed as the context's current plan and noted in its reasoning
        chain. Provider errors propagate.
        """
        request = CompletionRequest(
            messages=[
                Message(
                    role="user",
                    content=PLANNING_PROMPT.format(tools=format_tools(tools), goal=goal),
                )
            ],
            system_prompt=PLANNER_SYSTEM_PROMPT,
            temperature=0.3,
        )
        response = await self.provider.complete(request)

        confidence = 0.8
        try:
            plan = parse_plan(goal, response.content, {t.name for t in tools})
        except (ValueError, PlanError) as e:
            logger.warning("Planning failed, falling back to single-step plan", error=str(e))
            plan = fallback_plan(goal)
            confidence = 0.3

        if context is None:
            return plan

        plan = await context.hooks.run(HookPoint.PLANNING, plan)
        await context.planning_state.set_plan(plan)
        await context.planning_state.add_reasoning(
            ReasoningType.PLANNING,
            f"Planned {len(plan.steps)} step(s) for: {goal}",
            confidence=confidence,
        )
        return plan
