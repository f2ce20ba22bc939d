"""
文本向量与相似度
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np


def _hash_code(text: str) -> int:
    """32 位有符号字符串哈希"""
    value = 0
    for char in text:
        value = (value * 31 + ord(char)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return value


def simulated_embedding(text: str, dimensions: int = 1536) -> List[float]:
    """基于哈希的确定性单位向量，用于演示和测试"""
    seeds = _hash_code(text) + np.arange(dimensions, dtype=np.float64)
    vector = np.sin(seeds) * np.cos(seeds * 0.5)
    norm = np.linalg.norm(vector)
    if norm == 0:
        return vector.tolist()
    return (vector / norm).tolist()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    余弦相似度

    Raises:
        ValueError: 维度不一致
    """
    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)
    if vec_a.shape != vec_b.shape:
        raise ValueError(
            f"Embeddings must have same dimensions: {vec_a.shape[0]} != {vec_b.shape[0]}"
        )

    magnitude = np.linalg.norm(vec_a) * np.linalg.norm(vec_b)
    if magnitude == 0:
        return 0.0
    return float(np.clip(np.dot(vec_a, vec_b) / magnitude, -1.0, 1.0))


class Embedder(ABC):
    """文本向量生成接口"""

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        pass

    async def embed_many(self, texts: List[str]) -> List[List[float]]:
        return [await self.embed(text) for text in texts]


class SimulatedEmbedder(Embedder):
    """离线确定性向量"""

    def __init__(self, dimensions: int = 1536):
        self.dimensions = dimensions

    async def embed(self, text: str) -> List[float]:
        return simulated_embedding(text, self.dimensions)


class ModelClientEmbedder(Embedder):
    """委托给模型客户端的 create_embedding"""

    def __init__(self, model_client, model: Optional[str] = None):
        self.model_client = model_client
        self.model = model

    async def embed(self, text: str) -> List[float]:
        return await self.model_client.create_embedding(text, self.model)
