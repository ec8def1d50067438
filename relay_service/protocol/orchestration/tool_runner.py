import asyncio
import json
from typing import Any, Dict, Mapping, Optional

from relay_service.core.interfaces import Tool, ToolExecutor
from relay_service.core.logging import logger


def error_payload(name: str, message: str) -> str:
    return json.dumps({"success": False, "error": message, "tool": name, "mode": "error"})


def output_ok(output: str) -> bool:
    """A tool output counts as failed when it is a JSON object flagged as an error."""
    try:
        parsed = json.loads(output)
    except (json.JSONDecodeError, TypeError):
        return True
    if isinstance(parsed, dict):
        if parsed.get("success") is False:
            return False
        if parsed.get("error"):
            return False
    return True


class ToolRunner(ToolExecutor):
    """Execute registered tools by name with a timeout. Never raises."""

    def __init__(self, tools: Mapping[str, Tool], timeout: Optional[float] = None):
        # resolved once; later registry changes don't leak into a running orchestration
        self.tools: Dict[str, Tool] = dict(tools)
        self.timeout = timeout

    async def execute(self, name: str, input: Any) -> str:
        tool = self.tools.get(name)
        if not tool:
            logger.warning(f"Tool not found: {name}")
            return error_payload(name, f"Tool '{name}' not found")
        if input is None:
            input = {}
        if not isinstance(input, dict):
            return error_payload(name, "Tool input must be a JSON object")

        try:
            logger.info(f"Executing tool {name} with args: {json.dumps(input, default=str)}")
            result = await asyncio.wait_for(tool.run(**input), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Tool {name} timed out after {self.timeout}s")
            return error_payload(name, f"Tool timed out after {self.timeout}s")
        except TypeError as e:
            logger.warning(f"Invalid arguments for tool {name}: {e}")
            return error_payload(name, f"Invalid arguments: {e}")
        except Exception as e:
            logger.exception(f"Error executing tool {name}: {e}")
            return error_payload(name, str(e) or "Tool execution failed")

        if isinstance(result, str):
            return result
        return json.dumps(result, default=str)
