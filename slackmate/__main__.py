"""
Slackmate CLI entry point.

Runs single conversation turns and tool calls from the terminal, the same
way the chat front end drives them.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from slackmate import __version__
from slackmate.components import AssistantComponents
from slackmate.config.logging import get_logger, setup_logging
from slackmate.config.settings import Settings, load_settings
from slackmate.llm.models import ChatMessage


def create_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(
        prog="slackmate",
        description="Chat assistant that drives Redmine, GitLab and MCP tools through an LLM",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Slackmate {__version__}",
    )

    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: .env in current directory)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level from config",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Config command
    subparsers.add_parser(
        "config",
        help="Show current configuration",
    )

    # Ask command
    ask_parser = subparsers.add_parser(
        "ask",
        help="Run one conversation turn and print the reply",
    )
    ask_parser.add_argument(
        "message",
        help='Message to send, e.g. "create a task to update the docs"',
    )
    ask_parser.add_argument(
        "--project",
        default=None,
        help="Redmine project id added to the prompt context "
             "(default: REDMINE_DEFAULT_PROJECT_ID)",
    )
    ask_parser.add_argument(
        "--model",
        default=None,
        help="LiteLLM model string (default: LLM_MODEL from config)",
    )
    ask_parser.add_argument(
        "--history",
        type=Path,
        default=None,
        help="JSON file with earlier thread messages: "
             '[{"role": "user", "content": "...", "username": "..."}, ...]',
    )
    ask_parser.add_argument(
        "--username",
        default=None,
        help="Display name of the author of MESSAGE",
    )

    # Tools command
    subparsers.add_parser(
        "tools",
        help="Discover tools on every configured MCP server",
    )

    # Call command
    call_parser = subparsers.add_parser(
        "call",
        help="Dispatch one tool call by function name and print the result",
    )
    call_parser.add_argument(
        "name",
        help="Function name, e.g. getRedmineIssues",
    )
    call_parser.add_argument(
        "--args",
        default="{}",
        help='JSON argument object (default: "{}")',
    )

    return parser


def _mask(value: str | None) -> str:
    return "Set" if value else "Not set"


def cmd_config(settings: Settings) -> int:
    """Show current configuration."""
    logger = get_logger(__name__)

    logger.info("\n=== Slackmate Configuration ===\n")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Log Level: {settings.log_level}")
    logger.info(f"Log File: {settings.log_file or 'None (console only)'}")
    logger.info(f"HTTP Timeout: {settings.http_timeout}s")
    logger.info(f"\nLLM Model: {settings.llm.model}")
    logger.info(f"LLM API Base: {settings.llm.api_base or 'provider default'}")
    logger.info(f"LLM API Key: {_mask(settings.llm.api_key)}")
    logger.info(f"LLM Timeout: {settings.llm.timeout}s")
    logger.info(f"LLM Max Tool Rounds: {settings.llm.max_tool_rounds}")
    logger.info(f"\nRedmine URL: {settings.redmine.url or 'Not set'}")
    logger.info(f"Redmine API Key: {_mask(settings.redmine.api_key)}")
    logger.info(f"Redmine Default Project: {settings.redmine.default_project_id or 'Not set'}")
    logger.info(f"\nGitLab URL: {settings.gitlab.url}")
    logger.info(f"GitLab Token: {_mask(settings.gitlab.token)}")
    logger.info(f"\nMCP Config: {settings.mcp.config_path}")
    logger.info(f"MCP Timeout: {settings.mcp.timeout}s")
    logger.info(f"\nTime Zone: {settings.assistant.timezone}")

    return 0


def load_history(path: Path) -> list[ChatMessage]:
    """
    Read earlier thread messages from a JSON file.

    Raises:
        ValueError: If the file is not a JSON list of messages
    """
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise ValueError("history file must contain a JSON list")
    return [ChatMessage.model_validate(item) for item in raw]


async def cmd_ask(args, settings: Settings) -> int:
    """Run one turn with MESSAGE appended to the optional history."""
    logger = get_logger(__name__)

    history: list[ChatMessage] = []
    if args.history:
        try:
            history = load_history(args.history)
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"Could not read history file {args.history}: {e}")
            return 1
    history.append(ChatMessage(role="user", content=args.message, username=args.username))

    project_id = args.project or settings.redmine.default_project_id or None
    factory = AssistantComponents(settings)

    async with factory.open_assistant() as assistant:
        response = await assistant.orchestrator.generate_response(
            history,
            model=args.model,
            project_id=project_id,
        )

    print(f"\n=== Slackmate [{response.mode}] ===")
    print(response.text)

    if response.tool_calls:
        print("\n--- Tool Calls ---")
        for tc in response.tool_calls:
            status = "ok" if tc.result.get("success") else "failed"
            print(f"  {tc.name}({json.dumps(tc.arguments, ensure_ascii=False)}) → {status}")

    print(f"\nStop reason: {response.stop_reason.value}")
    print(f"Tokens: {response.usage.total_tokens} "
          f"(prompt {response.usage.prompt_tokens} "
          f"+ completion {response.usage.completion_tokens})")

    return 0


async def cmd_tools(settings: Settings) -> int:
    """List composite keys from one discovery pass."""
    factory = AssistantComponents(settings)

    async with factory.create_mcp_bridge() as bridge:
        discovery = await bridge.discover()

    print(f"\n=== MCP Tools ({len(discovery.tools)}) ===")
    for key, entry in sorted(discovery.tools.items()):
        print(f"  {key}")
        if entry.description:
            print(f"      {entry.description.splitlines()[0]}")

    if discovery.failures:
        print("\n--- Failed Servers ---")
        for server_id, reason in discovery.failures.items():
            print(f"  {server_id}: {reason}")

    return 0 if discovery.tools or not discovery.failures else 1


async def cmd_call(args, settings: Settings) -> int:
    """Dispatch one tool call and print its JSON result."""
    logger = get_logger(__name__)
    factory = AssistantComponents(settings)

    async with factory.open_assistant() as assistant:
        if args.name not in assistant.dispatcher:
            logger.error(f"Unknown function: {args.name}")
            logger.info(f"Known functions: {', '.join(sorted(assistant.dispatcher.routes))}")
            return 1
        result = await assistant.dispatcher.dispatch(args.name, args.args)

    print(json.dumps(result, indent=2, ensure_ascii=False))
    return 0 if result.get("success") else 1


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    # Load settings
    try:
        settings = load_settings(env_file=args.env_file)
    except Exception as e:
        print(f"Error loading settings: {e}", file=sys.stderr)
        return 1

    # Override log level if specified
    if args.log_level:
        settings.log_level = args.log_level

    setup_logging(settings)

    # Execute command
    if args.command == "config":
        return cmd_config(settings)
    elif args.command == "ask":
        return asyncio.run(cmd_ask(args, settings))
    elif args.command == "tools":
        return asyncio.run(cmd_tools(settings))
    elif args.command == "call":
        return asyncio.run(cmd_call(args, settings))
    else:
        # Default: show help
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
