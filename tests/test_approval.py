"""
Tests for the tool approval gate.
"""

import asyncio
from datetime import timedelta

import pytest

from conftest import make_echo_registry
from goose_runtime.config import AgentConfig
from goose_runtime.llm.base import ToolCall, utcnow
from goose_runtime.tools import ApprovalManager, ToolDispatcher


def write_call() -> ToolCall:
    return ToolCall(id="call_1", name="write_file", arguments={"path": "a.txt", "content": "x" * 300})


def test_needs_approval_policy():
    """Only non-readonly tools need approval, and only when required."""
    strict = AgentConfig(require_confirmation=True, readonly_tools="read_file, list_files")

    assert ApprovalManager.needs_approval("write_file", strict)
    assert not ApprovalManager.needs_approval("read_file", strict)
    assert not ApprovalManager.needs_approval("write_file", AgentConfig())
    assert not ApprovalManager.needs_approval("write_file", None)


def test_approve_then_take_once():
    """An approved call can be claimed exactly once."""
    manager = ApprovalManager()
    approval = manager.request(write_call(), session_id="s1")

    assert manager.take_approved(approval.id) is None
    assert manager.approve(approval.id)
    assert not manager.approve(approval.id)
    assert manager.take_approved(approval.id) is approval
    assert manager.take_approved(approval.id) is None


def test_deny():
    """Denied calls cannot be approved afterwards."""
    manager = ApprovalManager()
    approval = manager.request(write_call())

    assert manager.deny(approval.id)
    assert not manager.approve(approval.id)
    assert manager.list_pending() == []
    assert not manager.deny("unknown")


def test_expired_requests():
    """Expired requests cannot be decided and are not listed."""
    manager = ApprovalManager()
    approval = manager.request(write_call())
    approval.expires_at = utcnow() - timedelta(seconds=1)

    assert approval.is_expired
    assert not manager.approve(approval.id)
    assert manager.list_pending() == []
    assert manager.get(approval.id) is None


def test_new_request_prunes_finished_requests():
    """Creating a request forgets expired and denied ones."""
    manager = ApprovalManager()
    expired = manager.request(write_call())
    expired.expires_at = utcnow() - timedelta(seconds=1)
    denied = manager.request(write_call())
    manager.deny(denied.id)

    fresh = manager.request(write_call())

    assert manager.get(expired.id) is None
    assert manager.get(denied.id) is None
    assert set(manager._decisions) == {fresh.id}


def test_list_pending_by_session():
    """Pending requests can be filtered by session."""
    manager = ApprovalManager()
    first = manager.request(write_call(), session_id="s1")
    manager.request(write_call(), session_id="s2")

    assert [a.id for a in manager.list_pending("s1")] == [first.id]
    assert len(manager.list_pending()) == 2


def test_describe_truncates_arguments():
    """Long argument values are shortened in the description."""
    approval = ApprovalManager().request(write_call())

    lines = approval.describe()

    assert lines[0] == f"Approval required before running 'write_file' (approval id: {approval.id})."
    assert lines[1] == "  path: a.txt"
    assert lines[2] == "  content: " + "x" * 100
    assert approval.to_dict()["tool_call"]["name"] == "write_file"


@pytest.mark.asyncio
async def test_wait_for_decision():
    """Waiters wake up when a decision is made."""
    manager = ApprovalManager()
    approval = manager.request(write_call())

    waiter = asyncio.create_task(manager.wait_for_decision(approval.id, timeout=1))
    await asyncio.sleep(0)
    manager.approve(approval.id)

    assert await waiter is True
    assert await manager.wait_for_decision("unknown") is False


@pytest.mark.asyncio
async def test_wait_for_decision_timeout():
    """No decision within the timeout counts as not approved."""
    manager = ApprovalManager()
    approval = manager.request(write_call())

    assert await manager.wait_for_decision(approval.id, timeout=0.01) is False


@pytest.mark.asyncio
async def test_execute_approved_runs_once():
    """An approved call runs through the dispatcher a single time."""
    dispatcher = ToolDispatcher(make_echo_registry())
    config = AgentConfig(require_confirmation=True)
    parked = await dispatcher.execute(ToolCall(id="c1", name="echo", arguments={"text": "later"}), config)
    approval_id = parked.data["approval_id"]

    assert dispatcher.approvals.approve(approval_id)
    first = await dispatcher.execute_approved(approval_id)
    second = await dispatcher.execute_approved(approval_id)

    assert first.output == ["echo: later"]
    assert not second.success
    assert second.error == f"No approved call with id {approval_id}"
