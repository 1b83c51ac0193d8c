"""
Tool Approval - Confirmation gate for state-changing tool calls.

When an agent runs with ``require_confirmation`` enabled, every tool call
whose name is not listed in ``readonly_tools`` is parked as a pending
approval instead of executing. A client approves or denies it by id; an
approved call can then be executed exactly once. Requests expire after
five minutes.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import structlog

from ..config import AgentConfig
from ..llm.base import ToolCall, utcnow

logger = structlog.get_logger()

APPROVAL_TTL = timedelta(minutes=5)


@dataclass
class PendingApproval:
    """A tool call waiting for a decision."""

    id: str
    session_id: str | None
    tool_call: ToolCall
    created_at: datetime = field(default_factory=utcnow)
    expires_at: datetime = field(default_factory=lambda: utcnow() + APPROVAL_TTL)
    approved: bool = False
    denied: bool = False
    executed: bool = False

    @property
    def tool_name(self) -> str:
        return self.tool_call.name

    @property
    def arguments(self) -> dict[str, Any]:
        return self.tool_call.arguments

    @property
    def is_expired(self) -> bool:
        return utcnow() > self.expires_at

    @property
    def is_pending(self) -> bool:
        return not self.approved and not self.denied and not self.is_expired

    def describe(self) -> list[str]:
        """Lines shown to the model and the user instead of the tool output."""
        lines = [f"Approval required before running '{self.tool_name}' (approval id: {self.id})."]
        lines.extend(f"  {key}: {str(value)[:100]}" for key, value in self.arguments.items())
        lines.append("The call will run once it is approved. It expires in 5 minutes.")
        return lines

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "tool_call": self.tool_call.to_dict(),
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "approved": self.approved,
            "denied": self.denied,
            "executed": self.executed,
        }


class ApprovalManager:
    """Tracks pending approvals and applies the confirmation policy."""

    def __init__(self):
        self._pending: dict[str, PendingApproval] = {}
        self._decisions: dict[str, asyncio.Event] = {}

    @staticmethod
    def needs_approval(tool_name: str, config: AgentConfig | None) -> bool:
        if config is None or not config.require_confirmation:
            return False
        return tool_name not in config.readonly_tools

    def request(self, tool_call: ToolCall, session_id: str | None = None) -> PendingApproval:
        self._cleanup()
        approval = PendingApproval(
            id=uuid.uuid4().hex[:8],
            session_id=session_id,
            tool_call=tool_call,
        )
        self._pending[approval.id] = approval
        self._decisions[approval.id] = asyncio.Event()

        logger.info("Approval request created", approval_id=approval.id, tool=tool_call.name)
        return approval

    def approve(self, approval_id: str) -> bool:
        """Approve a pending request. Returns False if it is unknown, decided or expired."""
        approval = self._pending.get(approval_id)
        if approval is None or not approval.is_pending:
            return False

        approval.approved = True
        self._decisions[approval_id].set()
        logger.info("Approval granted", approval_id=approval_id, tool=approval.tool_name)
        return True

    def deny(self, approval_id: str) -> bool:
        approval = self._pending.get(approval_id)
        if approval is None or not approval.is_pending:
            return False

        approval.denied = True
        self._decisions[approval_id].set()
        logger.info("Approval denied", approval_id=approval_id, tool=approval.tool_name)
        return True

    def take_approved(self, approval_id: str) -> PendingApproval | None:
        """Claim an approved request for execution. Each approval can be claimed once."""
        approval = self._pending.get(approval_id)
        if approval is None or not approval.approved or approval.executed:
            return None
        approval.executed = True
        return approval

    async def wait_for_decision(self, approval_id: str, timeout: float = 300.0) -> bool:
        """Wait for an approve/deny decision. Returns True if approved."""
        event = self._decisions.get(approval_id)
        if event is None:
            return False

        try:
            await asyncio.wait_for(event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.info("Approval timed out", approval_id=approval_id)
            return False

        return self._pending[approval_id].approved

    def get(self, approval_id: str) -> PendingApproval | None:
        return self._pending.get(approval_id)

    def list_pending(self, session_id: str | None = None) -> list[PendingApproval]:
        self._cleanup()
        return [
            a for a in self._pending.values()
            if a.is_pending and (session_id is None or a.session_id == session_id)
        ]

    def _cleanup(self) -> None:
        """Forget expired, denied and already executed requests."""
        finished = [
            aid for aid, a in self._pending.items()
            if a.is_expired or a.denied or a.executed
        ]
        for aid in finished:
            self._pending.pop(aid, None)
            self._decisions.pop(aid, None)
