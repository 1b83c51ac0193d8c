"""
Tests for CLI helpers.
"""

import os
from unittest.mock import patch

from goose_runtime.agent import DoneEvent, ErrorEvent, MessageEvent, ToolCallEvent, ToolResultEvent
from goose_runtime.cli import check_settings, render_event
from goose_runtime.config import Settings
from goose_runtime.llm.base import Message, ToolCall


def test_render_streamed_text():
    """Fragments print as-is; a finished answer ends the line."""
    fragment = MessageEvent(Message(role="assistant", content="Hel"), partial=True)
    final = MessageEvent(Message(role="assistant", content="Hello"))
    user = MessageEvent(Message(role="user", content="Hi"))

    assert render_event(fragment.to_dict()) == "Hel"
    assert render_event(final.to_dict()) == "\n"
    assert render_event(user.to_dict()) is None


def test_render_tools_and_errors():
    """Tool activity and errors are labelled."""
    call = ToolCallEvent(ToolCall(id="c1", name="echo", arguments={"text": "x"}))
    failed = ToolResultEvent(tool_call_id="c1", tool_name="echo", output=["bad"], is_error=True)

    assert render_event(call.to_dict()) == "\n[tool] echo({'text': 'x'})\n"
    assert render_event(failed.to_dict()) == "[error] bad\n"
    assert render_event(ErrorEvent("Maximum iterations reached").to_dict()) == "\n[error] Maximum iterations reached\n"
    assert render_event(DoneEvent().to_dict()) is None


def test_check_settings():
    """A missing key is an error; odd limits are warnings."""
    env = {"MAX_TURNS_WITHOUT_TOOLS": "20", "REQUIRE_CONFIRMATION": "true"}

    with patch.dict(os.environ, env, clear=True):
        errors, warnings = check_settings(Settings(_env_file=None))

    assert errors == ["No API key configured for the default provider (anthropic)"]
    assert len(warnings) == 2


def test_check_settings_clean():
    """A configured key with default limits passes."""
    with patch.dict(os.environ, {"ANTHROPIC_API_KEY": "sk-test"}, clear=True):
        assert check_settings(Settings(_env_file=None)) == ([], [])
