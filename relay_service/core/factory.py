from importlib import import_module
from typing import Any, Dict, cast
import inspect
import os

from relay_service.core.config import load_settings
from relay_service.core.interfaces import HistoryStorage, SessionStore, Transport


def load(dotted: str, **kwargs: Any) -> Any:
    """Import a dotted path and instantiate the class if callable.
    Filters kwargs to match the constructor signature (unless **kwargs is accepted)."""
    module, cls = dotted.rsplit(".", 1)
    mod = import_module(module)
    obj = getattr(mod, cls)

    if isinstance(obj, type):
        sig = inspect.signature(obj.__init__)
        params = list(sig.parameters.values())
        accepts_kwargs = any(p.kind == p.VAR_KEYWORD for p in params)
        if accepts_kwargs:
            return obj(**kwargs)
        allowed = {p.name for p in params if p.kind in (p.POSITIONAL_OR_KEYWORD, p.KEYWORD_ONLY) and p.name != "self"}
        filtered = {k: v for k, v in kwargs.items() if k in allowed}
        return obj(**filtered)

    return obj


class ServiceFactory:
    def __init__(self, config: Dict[str, Any] | None = None):
        self.config = config if config is not None else load_settings()
        self._transport: Transport | None = None
        self._store: SessionStore | None = None
        self._history: HistoryStorage | None = None

    def _provider_cfg(self, key: str) -> Dict[str, Any]:
        return self.config.get("providers", {}).get(key, {}) or {}

    def get_transport(self) -> Transport:
        if not self._transport:
            cfg = self._provider_cfg("transport")
            args = dict(cfg.get("args", {}) or {})
            upstream = self.config.get("upstream", {}) or {}
            args.setdefault("base_url", upstream.get("base_url"))
            args.setdefault("timeout_sec", upstream.get("timeout_sec"))
            args.setdefault("connect_timeout_sec", upstream.get("connect_timeout_sec"))
            args = {k: v for k, v in args.items() if v is not None}
            self._transport = cast(Transport, load(cfg.get("impl", ""), **args))
        return self._transport

    def get_store(self) -> SessionStore:
        if not self._store:
            cfg = self._provider_cfg("session_store")
            self._store = cast(SessionStore, load(cfg.get("impl", ""), **(cfg.get("args", {}) or {})))
        return self._store

    def get_history_store(self) -> HistoryStorage:
        if not self._history:
            from relay_service.context.history_store import HistoryStore

            hist_cfg = self.config.get("history", {}) or {}
            self._history = HistoryStore(
                path=hist_cfg.get("path") or None,
                max_items=hist_cfg.get("max_items", 50),
                max_bytes=hist_cfg.get("max_bytes", 5_000_000),
            )
        return self._history

    def get_generation_service(self):
        from relay_service.core.tool_registry import ToolRegistry
        from relay_service.protocol.service.generation_service import GenerationService

        tools_cfg = self.config.get("tools", {}) or {}
        registry = ToolRegistry(tools_cfg.get("registry", []) or [], tools_cfg.get("enabled", []) or [])
        upstream = self.config.get("upstream", {}) or {}
        limits = self.config.get("limits", {}) or {}
        defaults = self.config.get("defaults", {}) or {}

        return GenerationService(
            transport=self.get_transport(),
            session_store=self.get_store(),
            history_store=self.get_history_store(),
            tools=registry.all(),
            api_key=os.environ.get("ANTHROPIC_API_KEY"),
            version=upstream.get("version", "2023-06-01"),
            max_rounds=limits.get("max_rounds", 25),
            tool_timeout=limits.get("tool_timeout_sec"),
            server_tools=tools_cfg.get("server_side"),
            default_model=defaults.get("model"),
            default_max_tokens=defaults.get("max_tokens", 1024),
        )
