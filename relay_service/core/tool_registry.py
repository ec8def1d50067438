from typing import Dict, Any, List

from relay_service.core.factory import load
from relay_service.core.interfaces import Tool
from relay_service.core.logging import logger


class ToolRegistry:
    """Loads and provides available tools based on config"""
    def __init__(self, registry_cfg: List[Dict[str, Any]], enabled: List[str]):
        self.tools: Dict[str, Tool] = {}
        for tcfg in registry_cfg:
            name = tcfg.get('name')
            if name not in enabled:
                continue
            impl = tcfg.get('impl', '')
            args = tcfg.get('args', {}) or {}
            try:
                tool = load(impl, **args)
            except (ImportError, AttributeError, TypeError, ValueError) as e:
                logger.warning(f"Skipping tool '{name}': cannot load {impl}: {e}")
                continue
            # the registry name is what the model calls the tool by
            if hasattr(tool, '_registry_name'):
                tool._registry_name = name
            self.tools[name] = tool

    def get(self, name: str) -> Any:
        return self.tools.get(name)

    def all(self) -> Dict[str, Tool]:
        return self.tools
