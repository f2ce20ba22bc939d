"""
模型客户端接口

节点处理器只依赖这里定义的统一接口，各厂商的差异在 providers 中归一化。
"""
import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional
from uuid import uuid4
import logging

from ..knowledge.embeddings import simulated_embedding


logger = logging.getLogger(__name__)


@dataclass
class ChatMessage:
    """对话消息"""
    role: str  # system / user / assistant
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ChatCompletionRequest:
    """对话补全请求"""
    model: str
    messages: List[ChatMessage]
    temperature: float = 0.7
    max_tokens: int = 2048
    top_p: Optional[float] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None

    def sampling_options(self) -> Dict[str, Any]:
        """只包含已设置的采样参数"""
        options = {
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "top_p": self.top_p,
            "frequency_penalty": self.frequency_penalty,
            "presence_penalty": self.presence_penalty,
        }
        return {key: value for key, value in options.items() if value is not None}


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class ChatCompletionResponse:
    """归一化后的补全响应"""
    id: str
    content: str
    finish_reason: Optional[str] = None
    usage: Usage = field(default_factory=Usage)


class ModelClient(ABC):
    """模型客户端接口"""

    @abstractmethod
    async def create_chat_completion(self, request: ChatCompletionRequest) -> ChatCompletionResponse:
        """一次性补全"""
        pass

    @abstractmethod
    def stream_chat_completion(self, request: ChatCompletionRequest) -> AsyncIterator[str]:
        """流式补全，返回只能消费一次的文本片段异步生成器"""
        pass

    @abstractmethod
    async def create_embedding(self, text: str, model: Optional[str] = None) -> List[float]:
        """生成文本向量"""
        pass


class MockModelClient(ModelClient):
    """脚本化的模型客户端，用于测试和离线运行"""

    def __init__(
        self,
        fragments: Optional[List[str]] = None,
        error: Optional[Exception] = None,
        embedding_dimensions: int = 64,
        delay: float = 0.0
    ):
        self.fragments = fragments
        self.error = error
        self.embedding_dimensions = embedding_dimensions
        self.delay = delay
        self.requests: List[ChatCompletionRequest] = []
        self.embedding_requests: List[str] = []

    def _script(self, request: ChatCompletionRequest) -> List[str]:
        if self.fragments is not None:
            return list(self.fragments)
        user_messages = [m.content for m in request.messages if m.role == "user"]
        return ["Echo: ", user_messages[-1] if user_messages else ""]

    async def create_chat_completion(self, request: ChatCompletionRequest) -> ChatCompletionResponse:
        self.requests.append(request)
        if self.error:
            raise self.error

        content = "".join(self._script(request))
        completion_tokens = len(content.split())
        return ChatCompletionResponse(
            id=f"mock-{uuid4()}",
            content=content,
            finish_reason="stop",
            usage=Usage(0, completion_tokens, completion_tokens),
        )

    async def stream_chat_completion(self, request: ChatCompletionRequest) -> AsyncIterator[str]:
        self.requests.append(request)
        if self.error:
            raise self.error

        for fragment in self._script(request):
            await asyncio.sleep(self.delay)
            yield fragment

    async def create_embedding(self, text: str, model: Optional[str] = None) -> List[float]:
        self.embedding_requests.append(text)
        return simulated_embedding(text, self.embedding_dimensions)
