"""
Command-line interface for goose-runtime.
"""

import argparse
import asyncio
import sys
from pathlib import Path

import structlog
import uvicorn

from .config import GooseMode, Settings, get_settings
from .logging import configure_logging

logger = structlog.get_logger()

CHAT_HELP = """Commands:
  /approve <id>   Approve a pending tool call and run it
  /deny <id>      Deny a pending tool call
  /plan <goal>    Plan a goal and execute the plan
  /quit           Leave the chat"""


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="goose-runtime",
        description="goose-runtime - agent runtime with tools, planning and extensions",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default=None, help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    chat_parser = subparsers.add_parser("chat", help="Chat with the agent in the terminal")
    chat_parser.add_argument("--session", default=None, help="Resume an existing session id")
    chat_parser.add_argument(
        "--mode",
        choices=[m.value for m in GooseMode],
        default=None,
        help="Goose mode for this chat",
    )

    config_parser = subparsers.add_parser("config", help="Show configuration")
    config_parser.add_argument("--check", action="store_true", help="Check configuration validity")

    subparsers.add_parser("init", help="Create a starter .env and the data directory")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    settings = get_settings()
    configure_logging(settings.log_level, settings.json_logs)

    if args.command == "serve":
        run_server(settings, args.host, args.port, args.reload)
    elif args.command == "chat":
        asyncio.run(chat(settings, args.session, args.mode))
    elif args.command == "config":
        ok = show_config(settings, args.check)
        if not ok:
            sys.exit(1)
    elif args.command == "init":
        init_project()
    else:
        parser.print_help()


def run_server(settings: Settings, host: str | None, port: int | None, reload: bool) -> None:
    """Run the FastAPI server."""
    host = host or settings.host
    port = port or settings.port
    logger.info("Starting goose-runtime server", host=host, port=port)

    uvicorn.run(
        "goose_runtime.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
        log_level=settings.log_level.lower(),
    )


def render_event(event: dict) -> str | None:
    """Terminal rendering of one serialized agent event."""
    kind = event["type"]

    if kind == "message":
        message = event["message"]
        if event["partial"]:
            return message["content"]
        if message["role"] == "user":
            return None
        # streamed text was already printed fragment by fragment
        return "\n"
    if kind == "tool_call":
        call = event["tool_call"]
        return f"\n[tool] {call['name']}({call['arguments']})\n"
    if kind == "tool_result":
        marker = "error" if event["is_error"] else "result"
        return f"[{marker}] " + "\n".join(event["output"]) + "\n"
    if kind == "error":
        return f"\n[error] {event['message']}\n"
    if kind == "system_notification":
        return f"[notice] {event['message']}\n"
    if kind == "history_replaced":
        return f"[history] conversation now has {len(event['messages'])} messages\n"
    return None


async def chat(settings: Settings, session_id: str | None, mode: str | None) -> None:
    """Interactive REPL over one session."""
    from .errors import ProviderError, SessionNotFoundError
    from .runtime import create_runtime

    runtime = await create_runtime(settings)
    session = None
    try:
        if session_id:
            try:
                session = await runtime.store.get(session_id)
            except SessionNotFoundError:
                print(f"Session not found: {session_id}")
                return
        else:
            session = await runtime.store.create(model=runtime.provider.model)

        print(f"Session {session.id} ({runtime.provider.provider_name}/{runtime.provider.model})")
        print(CHAT_HELP)

        overrides = {"goose_mode": GooseMode(mode)} if mode else {}

        while True:
            try:
                line = await asyncio.to_thread(input, "\n> ")
            except (EOFError, KeyboardInterrupt):
                print()
                break

            line = line.strip()
            if not line:
                continue
            if line in ("/quit", "/exit"):
                break

            if line.startswith("/approve "):
                approval_id = line.split(maxsplit=1)[1]
                if not runtime.dispatcher.approvals.approve(approval_id):
                    print("No pending approval with that id.")
                    continue
                result = await runtime.dispatcher.execute_approved(approval_id)
                print("\n".join(result.output) if result.success else f"[error] {result.error}")
                continue

            if line.startswith("/deny "):
                approval_id = line.split(maxsplit=1)[1]
                denied = runtime.dispatcher.approvals.deny(approval_id)
                print("Denied." if denied else "No pending approval with that id.")
                continue

            context = runtime.new_context(session.id, settings.get_agent_config(**overrides))
            if line.startswith("/plan "):
                goal = line.split(maxsplit=1)[1]
                tools = await runtime.dispatcher.list_tools()
                try:
                    await runtime.planner.create_plan(goal, tools, context)
                except ProviderError as e:
                    print(f"\n[error] Provider error: {e}")
                    continue
                events = runtime.plan_executor.execute_plan(context)
            else:
                session = await runtime.store.get(session.id)
                events = runtime.loop.run(context, session, line)

            async for event in events:
                text = render_event(event.to_dict())
                if text:
                    print(text, end="", flush=True)
    finally:
        if session is not None:
            await runtime.end_session(session.id)
        await runtime.close()


def show_config(settings: Settings, check: bool) -> bool:
    """Show current configuration. Returns False if the check found errors."""

    def mask(value: str) -> str:
        if not value:
            return "(not set)"
        return value[:4] + "..." + value[-4:] if len(value) > 10 else "****"

    print("\n=== goose-runtime Configuration ===\n")

    print("Server:")
    print(f"  Host: {settings.host}")
    print(f"  Port: {settings.port}")
    print(f"  Debug: {settings.debug}")

    print("\nLLM Providers:")
    llm = settings.get_llm_config()
    print(f"  Default: {settings.default_provider}")
    print(f"  Model: {llm.model}")
    print(f"  Context Limit: {settings.context_limit}")
    print(f"  Anthropic Key: {mask(settings.anthropic_api_key)}")
    print(f"  OpenAI Key: {mask(settings.openai_api_key)}")
    print(f"  OpenRouter Key: {mask(settings.openrouter_api_key)}")

    print("\nAgent:")
    print(f"  Goose Mode: {settings.goose_mode.value}")
    print(f"  Max Iterations: {settings.max_iterations}")
    print(f"  Max Turns Without Tools: {settings.max_turns_without_tools}")
    print(f"  Auto Compact: {settings.enable_auto_compact} (threshold {settings.compact_threshold})")
    print(f"  Extensions: {settings.enable_extensions} (timeout {settings.extension_timeout}s)")
    print(f"  Require Confirmation: {settings.require_confirmation}")
    print(f"  Read-only Tools: {settings.readonly_tools or '(none)'}")

    print("\nTools:")
    print(f"  Workspace: {settings.workspace_dir}")
    print(f"  Shell Timeout: {settings.shell_timeout_seconds}s")
    print(f"  External Tools: {settings.external_tools_url or '(none)'}")

    print("\nDatabase:")
    print(f"  URL: {settings.database_url}")

    if not check:
        return True

    print("\n=== Configuration Check ===\n")
    errors, warnings = check_settings(settings)

    if errors:
        print("Errors:")
        for e in errors:
            print(f"   - {e}")

    if warnings:
        print("Warnings:")
        for w in warnings:
            print(f"   - {w}")

    if not errors and not warnings:
        print("Configuration looks good!")
    elif not errors:
        print("\nConfiguration is valid (with warnings)")
    else:
        print("\nConfiguration has errors - fix them before starting")

    return not errors


def check_settings(settings: Settings) -> tuple[list[str], list[str]]:
    """Validate settings. Returns (errors, warnings)."""
    errors = []
    warnings = []

    if not settings.get_llm_config().api_key:
        errors.append(f"No API key configured for the default provider ({settings.default_provider})")

    if settings.max_turns_without_tools > settings.max_iterations:
        warnings.append("MAX_TURNS_WITHOUT_TOOLS exceeds MAX_ITERATIONS and will never trigger")

    if settings.require_confirmation and not settings.readonly_tools_list:
        warnings.append("Confirmation is required for every tool - consider setting READONLY_TOOLS")

    return errors, warnings


def init_project() -> None:
    """Create a starter .env and the data directory."""
    env_file = Path(".env")
    data_dir = Path("data")

    data_dir.mkdir(exist_ok=True)

    if not env_file.exists():
        env_content = """# goose-runtime Configuration

# LLM API Keys (set the one for your default provider)
ANTHROPIC_API_KEY=
# OPENAI_API_KEY=
# OPENROUTER_API_KEY=

# Default LLM provider and model
DEFAULT_PROVIDER=anthropic
# DEFAULT_MODEL=claude-sonnet-4-20250514
CONTEXT_LIMIT=128000

# Agent loop
GOOSE_MODE=agent
MAX_ITERATIONS=10
MAX_TURNS_WITHOUT_TOOLS=3
ENABLE_AUTO_COMPACT=true
COMPACT_THRESHOLD=0.8
REQUIRE_CONFIRMATION=false
# READONLY_TOOLS=read_file,list_files

# Tools
WORKSPACE_DIR=~/.goose-runtime/workspace
# EXTERNAL_TOOLS_URL=http://localhost:9000

# Server
HOST=127.0.0.1
PORT=8080

# Database
DATABASE_URL=sqlite+aiosqlite:///./data/goose.db
"""
        env_file.write_text(env_content)
        print(f"Created {env_file}")
    else:
        print(f"{env_file} already exists")

    print(f"Created {data_dir}")
    print("\nNext: add your API key to .env, then run `goose-runtime chat` or `goose-runtime serve`")


if __name__ == "__main__":
    main()
