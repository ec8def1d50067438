import pytest

from relay_service.context.memory_store import MemoryStore
from relay_service.core.factory import ServiceFactory, load
from relay_service.core.tool_registry import ToolRegistry
from relay_service.providers.scripted.transport import ScriptedTransport

CONFIG = {
    "upstream": {"base_url": "http://unused", "version": "2023-06-01", "timeout_sec": 5},
    "defaults": {"model": "claude-test", "max_tokens": 64},
    "limits": {"max_rounds": 4, "tool_timeout_sec": 2},
    "history": {"max_items": 3},
    "providers": {
        "transport": {"impl": "relay_service.providers.scripted.transport.ScriptedTransport", "args": {"chunk_size": 3}},
        "session_store": {"impl": "relay_service.context.memory_store.MemoryStore"},
    },
    "tools": {
        "enabled": ["calculator"],
        "registry": [
            {"name": "calculator", "impl": "relay_service.tools.calculator_tool.CalculatorTool"},
            {"name": "get_current_time", "impl": "relay_service.tools.time_tool.TimeTool"},
        ],
        "server_side": ["web_search"],
    },
}


def test_load_filters_unknown_kwargs():
    transport = load("relay_service.providers.scripted.transport.ScriptedTransport", chunk_size=5, base_url="http://x")
    assert isinstance(transport, ScriptedTransport)
    assert transport.chunk_size == 5


def test_load_returns_non_class_objects():
    assert load("relay_service.core.config.deep_merge").__name__ == "deep_merge"


def test_registry_skips_unloadable_tools():
    registry = ToolRegistry(
        [
            {"name": "calculator", "impl": "relay_service.tools.calculator_tool.CalculatorTool"},
            {"name": "broken", "impl": "relay_service.tools.nope.Missing"},
            {"name": "disabled", "impl": "relay_service.tools.time_tool.TimeTool"},
        ],
        ["calculator", "broken"],
    )
    assert list(registry.all()) == ["calculator"]
    assert registry.get("calculator").name == "calculator"
    assert registry.get("disabled") is None


def test_factory_builds_generation_service(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-env")
    factory = ServiceFactory(CONFIG)
    service = factory.get_generation_service()

    assert isinstance(service.transport, ScriptedTransport)
    assert service.transport.chunk_size == 3
    assert isinstance(service.store, MemoryStore)
    assert service.api_key == "sk-env"
    assert service.max_rounds == 4
    assert service.default_model == "claude-test"
    assert service.server_tools == ["web_search"]
    assert [t["name"] for t in service.list_tools()] == ["calculator"]
    assert factory.get_transport() is service.transport


@pytest.mark.asyncio
async def test_factory_history_store_uses_limits():
    history = ServiceFactory(CONFIG).get_history_store()
    assert history.max_items == 3
    assert await history.list() == []
