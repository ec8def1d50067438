import inspect
import re
from abc import abstractmethod
from typing import Any, Dict, Literal, Optional, get_args, get_origin, get_type_hints

from relay_service.core.interfaces import Tool
from relay_service.core.types import ToolDescriptor

# =============================
# Tool Authoring Guidelines
# =============================
#
# To create a new tool:
# 1. Subclass BaseTool and implement the async run() method with explicit, type-annotated arguments.
# 2. Use a Google-style docstring for run() with an Args: section.
# 3. The input_schema is generated from the run() signature and docstring.
# 4. The first paragraph of the class docstring becomes the tool description.
# 5. Return a JSON-serializable dict; {"success": False, "error": ...} marks a failed call.


_JSON_TYPES = {str: "string", int: "integer", float: "number", bool: "boolean", list: "array", dict: "object"}


class BaseTool(Tool):

    def __init__(self):
        self._registry_name: str | None = None

    @staticmethod
    def _extract_param_descriptions(docstring: str) -> dict:
        """
        Parse the docstring for an Args: section and return a mapping of param name to description.
        Supports Google-style docstrings.
        """
        if not docstring:
            return {}
        param_desc = {}
        args_section = re.search(r"Args?:\s*(.*?)(?:^\s*Returns?:|\Z)", docstring, re.DOTALL | re.MULTILINE)
        if args_section:
            for line in args_section.group(1).splitlines():
                match = re.match(r"\s*(\w+)\s*:\s*(.*)", line)
                if match:
                    name, desc = match.groups()
                    param_desc[name] = desc.strip()
        return param_desc

    @staticmethod
    def _param_schema(annotation: Any) -> Dict[str, Any]:
        if get_origin(annotation) is Literal:
            choices = list(get_args(annotation))
            return {"type": _JSON_TYPES.get(type(choices[0]), "string"), "enum": choices}
        origin = get_origin(annotation) or annotation
        return {"type": _JSON_TYPES.get(origin, "string")}

    @property
    def description(self) -> str:
        doc = inspect.getdoc(self) or ""
        return doc.split("\n\n")[0].strip()

    @property
    def auto_schema(self) -> Dict[str, Any]:
        sig = inspect.signature(self.run)
        hints = get_type_hints(self.run)
        param_docs = self._extract_param_descriptions(inspect.getdoc(self.run) or "")
        properties = {}
        required = []
        for name, param in sig.parameters.items():
            if name == 'self' or param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
                continue
            prop = self._param_schema(hints.get(name, str))
            prop["description"] = param_docs.get(name, '')
            properties[name] = prop
            if param.default is inspect.Parameter.empty:
                required.append(name)
        return {"type": "object", "properties": properties, "required": required}

    @property
    def name(self) -> str:
        if self._registry_name:
            return self._registry_name
        return self.__class__.__name__

    @property
    def schema(self) -> Dict[str, Any]:
        return self.descriptor.to_dict()

    @property
    def descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(name=self.name, description=self.description, input_schema=self.auto_schema)

    @abstractmethod
    async def run(self, *args, **kwargs) -> Any:
        """Execute tool with given arguments (auto-schema will match signature)."""
        raise NotImplementedError()
