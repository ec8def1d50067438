import copy
from typing import Any, Dict, Iterable, List, Optional, Sequence

from relay_service.core.errors import ConfigError
from relay_service.core.types import RequestConfig, WireMessage

DEFAULT_VERSION = "2023-06-01"


def build_body(config: RequestConfig, stream: bool = False) -> Dict[str, Any]:
    """Upstream request body; optional fields are only sent when they differ from the API defaults."""
    body: Dict[str, Any] = {
        "model": config.model,
        "messages": [copy.deepcopy(m) for m in config.messages],
        "max_tokens": config.max_tokens,
    }
    if config.system:
        body["system"] = config.system
    if config.temperature != 1.0:
        body["temperature"] = config.temperature
    if config.top_p != 1.0:
        body["top_p"] = config.top_p
    if config.top_k != 0:
        body["top_k"] = config.top_k
    if config.tools:
        body["tools"] = [t.to_dict() for t in config.tools]
    if config.stop_sequences:
        body["stop_sequences"] = list(config.stop_sequences)
    if config.metadata:
        body["metadata"] = dict(config.metadata)
    if config.thinking:
        if config.thinking.type == "adaptive":
            body["thinking"] = {"type": "adaptive"}
            body["output_config"] = {"effort": config.thinking.effort}
        else:
            body["thinking"] = {"type": "enabled", "budget_tokens": config.thinking.budget_tokens}
        # thinking requires temperature 1
        body["temperature"] = 1
    if config.output_format:
        body["output_format"] = copy.deepcopy(config.output_format)
    if config.container:
        body["container"] = copy.deepcopy(config.container)
    if stream:
        body["stream"] = True
    return body


def build_count_body(config: RequestConfig) -> Dict[str, Any]:
    body = build_body(config)
    for key in ("max_tokens", "temperature", "top_p", "top_k", "stop_sequences", "metadata", "container"):
        body.pop(key, None)
    return body


def build_headers(api_key: Optional[str], version: str = DEFAULT_VERSION, betas: Iterable[str] = ()) -> Dict[str, str]:
    if not api_key:
        raise ConfigError("Please provide an API key")
    headers = {
        "content-type": "application/json",
        "x-api-key": api_key,
        "anthropic-version": version or DEFAULT_VERSION,
    }
    betas = [b for b in betas if b]
    if betas:
        headers["anthropic-beta"] = ",".join(betas)
    return headers


def user_message(text: str, images: Sequence[Dict[str, Any]] = ()) -> WireMessage:
    """A user turn; images ride along after the text block."""
    if not images:
        return {"role": "user", "content": text}
    return {"role": "user", "content": [{"type": "text", "text": text}, *[copy.deepcopy(i) for i in images]]}


def prompt_preview(messages: List[WireMessage], limit: int = 50) -> str:
    if not messages:
        return "Empty prompt"
    content = messages[0].get("content")
    if isinstance(content, str):
        return content[:limit]
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                return block.get("text", "")[:limit]
        return "Multi-modal message"
    return "Empty prompt"
