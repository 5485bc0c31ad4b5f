"""
Assistant component factory.

Centralises the construction of tool adapters, the dispatcher and the
orchestrator from settings, so the CLI, tests and a chat front end wire
them the same way.
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass

from slackmate.config.logging import get_logger
from slackmate.config.settings import Settings
from slackmate.llm.orchestrator import LLMOrchestrator
from slackmate.tools.base import ToolAdapter
from slackmate.tools.dispatcher import ToolDispatcher, default_routes
from slackmate.tools.gitlab import GitLabClient
from slackmate.tools.local import LocalTools
from slackmate.tools.mcp_bridge import MCPBridge
from slackmate.tools.redmine import RedmineClient

logger = get_logger(__name__)


@dataclass
class Assistant:
    """Ready-to-use components for one process lifetime."""

    orchestrator: LLMOrchestrator
    dispatcher: ToolDispatcher
    bridge: MCPBridge


class AssistantComponents:
    """
    Factory for building assistant components from settings.

    Example::

        factory = AssistantComponents(settings)
        async with factory.open_assistant() as assistant:
            reply = await assistant.orchestrator.generate_response(history)
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def placeholder_env(self) -> dict[str, str]:
        """
        Environment used for ``${VAR}`` placeholders in the MCP config.

        Redmine credentials loaded from the .env file are added on top of the
        process environment so the default server works without exporting them.
        """
        env = dict(os.environ)
        if self.settings.redmine.url:
            env["REDMINE_URL"] = self.settings.redmine.url
        if self.settings.redmine.api_key:
            env["REDMINE_API_KEY"] = self.settings.redmine.api_key
        return env

    def create_local_tools(self) -> LocalTools:
        return LocalTools()

    def create_redmine_client(self) -> RedmineClient:
        """Create a RedmineClient from settings."""
        return RedmineClient(
            url=self.settings.redmine.url,
            api_key=self.settings.redmine.api_key,
            default_project_id=self.settings.redmine.default_project_id,
            timeout=self.settings.http_timeout,
        )

    def create_gitlab_client(self) -> GitLabClient:
        """Create a GitLabClient from settings."""
        return GitLabClient(
            url=self.settings.gitlab.url,
            token=self.settings.gitlab.token,
            timeout=self.settings.http_timeout,
        )

    def create_mcp_bridge(self) -> MCPBridge:
        """Create an MCPBridge from settings."""
        return MCPBridge(
            config_path=self.settings.mcp.config_path,
            timeout=self.settings.mcp.timeout,
            env=self.placeholder_env(),
        )

    def create_dispatcher(
        self,
        local: ToolAdapter,
        redmine: ToolAdapter,
        gitlab: ToolAdapter,
        bridge: ToolAdapter,
    ) -> ToolDispatcher:
        """Create a ToolDispatcher over initialized adapters."""
        return ToolDispatcher(default_routes(local, redmine, gitlab, bridge))

    def create_orchestrator(self, dispatcher: ToolDispatcher) -> LLMOrchestrator:
        """Create an LLMOrchestrator from settings + an initialized dispatcher."""
        return LLMOrchestrator(
            settings=self.settings.llm,
            dispatcher=dispatcher,
            assistant=self.settings.assistant,
        )

    @asynccontextmanager
    async def open_assistant(self) -> AsyncIterator[Assistant]:
        """Initialize every adapter, yield the wired components, shut down on exit."""
        async with AsyncExitStack() as stack:
            local = await stack.enter_async_context(self.create_local_tools())
            redmine = await stack.enter_async_context(self.create_redmine_client())
            gitlab = await stack.enter_async_context(self.create_gitlab_client())
            bridge = await stack.enter_async_context(self.create_mcp_bridge())
            logger.info("Tool adapters ready")

            dispatcher = self.create_dispatcher(local, redmine, gitlab, bridge)
            orchestrator = self.create_orchestrator(dispatcher)
            yield Assistant(orchestrator=orchestrator, dispatcher=dispatcher, bridge=bridge)
