"""
模型服务提供方实现（OpenAI / Anthropic / NVIDIA）

所有实现直接使用 httpx 调用 HTTP 接口，流式响应按 SSE 的 data 行解析。
"""
import json
from abc import abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional
import logging

import httpx

from ..config import Settings
from .exceptions import ModelAPIError, ModelConfigError
from .model_client import (
    ModelClient, ChatCompletionRequest, ChatCompletionResponse, Usage
)


logger = logging.getLogger(__name__)


class HTTPModelProvider(ModelClient):
    """基于 httpx 的提供方基类"""

    name = "http"
    default_base_url = ""
    default_embedding_model = ""

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        if not api_key:
            raise ModelConfigError(f"{self.name} API key is not configured", "api_key")
        self.api_key = api_key
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @abstractmethod
    def headers(self) -> Dict[str, str]:
        """请求头（含认证信息）"""
        pass

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers(),
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.post(path, json=payload)
        except httpx.HTTPError as e:
            raise ModelAPIError(self.name, None, str(e)) from e

        if response.status_code >= 400:
            raise ModelAPIError(self.name, response.status_code, response.text)
        return response.json()

    async def _stream_events(self, path: str, payload: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        """逐个产出 SSE data 行解析后的 JSON 事件，遇到 [DONE] 结束"""
        try:
            async with self._client() as client:
                async with client.stream("POST", path, json=payload) as response:
                    if response.status_code >= 400:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        raise ModelAPIError(self.name, response.status_code, body)

                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:"):].strip()
                        if data == "[DONE]":
                            return
                        try:
                            yield json.loads(data)
                        except json.JSONDecodeError:
                            logger.debug(f"Skipping malformed {self.name} stream chunk: {data!r}")
        except httpx.HTTPError as e:
            raise ModelAPIError(self.name, None, str(e)) from e


class OpenAIProvider(HTTPModelProvider):
    """OpenAI 兼容接口"""

    name = "openai"
    default_base_url = "https://api.openai.com/v1"
    default_embedding_model = "text-embedding-3-small"

    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _payload(self, request: ChatCompletionRequest, stream: bool) -> Dict[str, Any]:
        return {
            "model": request.model,
            "messages": [message.to_dict() for message in request.messages],
            "stream": stream,
            **request.sampling_options(),
        }

    async def create_chat_completion(self, request: ChatCompletionRequest) -> ChatCompletionResponse:
        data = await self._post("/chat/completions", self._payload(request, stream=False))
        choice = data["choices"][0]
        usage = data.get("usage") or {}
        return ChatCompletionResponse(
            id=data.get("id", ""),
            content=choice["message"].get("content") or "",
            finish_reason=choice.get("finish_reason"),
            usage=Usage(
                prompt_tokens=usage.get("prompt_tokens", 0),
                completion_tokens=usage.get("completion_tokens", 0),
                total_tokens=usage.get("total_tokens", 0),
            ),
        )

    async def stream_chat_completion(self, request: ChatCompletionRequest) -> AsyncIterator[str]:
        async for event in self._stream_events("/chat/completions", self._payload(request, stream=True)):
            choices = event.get("choices") or []
            if not choices:
                continue
            content = (choices[0].get("delta") or {}).get("content")
            if content:
                yield content

    def _embedding_payload(self, text: str, model: str) -> Dict[str, Any]:
        return {"model": model, "input": [text]}

    async def create_embedding(self, text: str, model: Optional[str] = None) -> List[float]:
        model = model or self.default_embedding_model
        data = await self._post("/embeddings", self._embedding_payload(text, model))
        return data["data"][0]["embedding"]


class NVIDIAProvider(OpenAIProvider):
    """NVIDIA NIM 接口（OpenAI 兼容格式）"""

    name = "nvidia"
    default_base_url = "https://integrate.api.nvidia.com/v1"
    default_embedding_model = "nvidia/nv-embedqa-e5-v5"

    def _embedding_payload(self, text: str, model: str) -> Dict[str, Any]:
        return {"model": model, "input": [text], "encoding_format": "float"}


class AnthropicProvider(HTTPModelProvider):
    """Anthropic Messages 接口"""

    name = "anthropic"
    default_base_url = "https://api.anthropic.com/v1"
    api_version = "2023-06-01"

    def headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "Content-Type": "application/json",
        }

    def _payload(self, request: ChatCompletionRequest, stream: bool) -> Dict[str, Any]:
        # system 提示需要从消息列表中拆出
        system_prompts = [m.content for m in request.messages if m.role == "system"]
        payload = {
            "model": request.model,
            "messages": [m.to_dict() for m in request.messages if m.role != "system"],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "stream": stream,
        }
        if system_prompts:
            payload["system"] = "\n\n".join(system_prompts)
        if request.top_p is not None:
            payload["top_p"] = request.top_p
        return payload

    async def create_chat_completion(self, request: ChatCompletionRequest) -> ChatCompletionResponse:
        data = await self._post("/messages", self._payload(request, stream=False))
        text = "".join(
            block.get("text", "") for block in data.get("content", []) if block.get("type") == "text"
        )
        usage = data.get("usage") or {}
        prompt_tokens = usage.get("input_tokens", 0)
        completion_tokens = usage.get("output_tokens", 0)
        return ChatCompletionResponse(
            id=data.get("id", ""),
            content=text,
            finish_reason=data.get("stop_reason"),
            usage=Usage(prompt_tokens, completion_tokens, prompt_tokens + completion_tokens),
        )

    async def stream_chat_completion(self, request: ChatCompletionRequest) -> AsyncIterator[str]:
        async for event in self._stream_events("/messages", self._payload(request, stream=True)):
            event_type = event.get("type")
            if event_type == "content_block_delta":
                text = (event.get("delta") or {}).get("text")
                if text:
                    yield text
            elif event_type == "message_stop":
                return
            elif event_type == "error":
                error = event.get("error") or {}
                raise ModelAPIError(self.name, None, error.get("message", json.dumps(event)))

    async def create_embedding(self, text: str, model: Optional[str] = None) -> List[float]:
        raise ModelConfigError("Anthropic does not support embeddings", "embedding_model")


def provider_for_model(model: str) -> str:
    """根据模型ID选择提供方"""
    model_id = model.lower()
    if model_id.startswith("claude"):
        return "anthropic"
    if "nvidia" in model_id or "deepseek" in model_id or "/" in model_id:
        return "nvidia"
    return "openai"


class AIClient(ModelClient):
    """按模型ID路由到对应提供方的统一客户端"""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.transport = transport
        self._providers: Dict[str, HTTPModelProvider] = {}

    def get_provider(self, name: str) -> HTTPModelProvider:
        if name in self._providers:
            return self._providers[name]

        settings = self.settings
        if name == "openai":
            provider = OpenAIProvider(settings.openai_api_key, settings.openai_base_url,
                                      settings.request_timeout, self.transport)
        elif name == "anthropic":
            provider = AnthropicProvider(settings.anthropic_api_key, settings.anthropic_base_url,
                                         settings.request_timeout, self.transport)
        elif name == "nvidia":
            provider = NVIDIAProvider(settings.nvidia_api_key, settings.nvidia_base_url,
                                      settings.request_timeout, self.transport)
        else:
            raise ModelConfigError(f"Unsupported provider: {name}", "provider")

        self._providers[name] = provider
        logger.info(f"Initialized {name} model provider")
        return provider

    async def create_chat_completion(self, request: ChatCompletionRequest) -> ChatCompletionResponse:
        provider = self.get_provider(provider_for_model(request.model))
        return await provider.create_chat_completion(request)

    async def stream_chat_completion(self, request: ChatCompletionRequest) -> AsyncIterator[str]:
        provider = self.get_provider(provider_for_model(request.model))
        async for fragment in provider.stream_chat_completion(request):
            yield fragment

    async def create_embedding(self, text: str, model: Optional[str] = None) -> List[float]:
        model = model or self.settings.embedding_model
        name = provider_for_model(model)
        if name == "anthropic":
            raise ModelConfigError("Anthropic does not support embeddings", "embedding_model")
        return await self.get_provider(name).create_embedding(text, model)
