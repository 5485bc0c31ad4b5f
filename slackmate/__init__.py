"""
Slackmate - LLM-powered chat assistant for Redmine, GitLab and MCP tool servers.

This package provides the tool-calling conversation loop that answers chat
threads, plus the adapters the model's tool calls are dispatched to.
"""

__version__ = "0.1.0"
