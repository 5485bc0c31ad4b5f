"""
Local deterministic tools.

These never touch the network and return the same result for the same
arguments, so the model can call them freely.
"""

from typing import Any

from slackmate.config.logging import get_logger
from slackmate.tools.base import ToolAdapter
from slackmate.tools.registry import CONTROL_LIGHT

logger = get_logger(__name__)


def control_light(action: str | None, brightness: float | None = None) -> dict[str, Any]:
    """
    Switch the smart light.

    ``on`` uses the requested brightness, or 100 when none (or 0) is given.
    """
    logger.info(f"[LIGHT CONTROL] Action: {action}, Brightness: {brightness or 'N/A'}")

    if action == "on":
        level = brightness or 100
        return {
            "success": True,
            "message": f"Light switched on at {level}% brightness",
            "state": {"power": "on", "brightness": level},
        }
    if action == "off":
        return {
            "success": True,
            "message": "Light switched off",
            "state": {"power": "off", "brightness": 0},
        }
    return {"success": False, "message": f"Invalid light action: {action!r}"}


class LocalTools(ToolAdapter):
    """Adapter exposing the in-process tools to the dispatcher."""

    async def call(self, tool_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        if tool_name == CONTROL_LIGHT.name:
            return control_light(arguments.get("action"), arguments.get("brightness"))
        raise ValueError(f"Unknown local tool: {tool_name}")

    async def list_tools(self) -> list[dict[str, Any]]:
        return [
            {
                "name": CONTROL_LIGHT.name,
                "description": CONTROL_LIGHT.description,
                "input_schema": CONTROL_LIGHT.parameters,
            }
        ]
