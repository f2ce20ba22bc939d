"""
文档与分块
"""
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4


DEFAULT_SEPARATORS = ["\n\n", "\n", ". ", " "]


@dataclass
class Chunk:
    """文档分块"""
    id: str
    document_id: str
    content: str
    index: int
    embedding: Optional[List[float]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Document:
    """知识库文档"""
    name: str
    content: str
    id: str = field(default_factory=lambda: str(uuid4()))
    chunks: List[Chunk] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    knowledge_base_id: Optional[str] = None
    doc_type: str = "txt"
    size: int = 0
    uploaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if not self.size:
            self.size = len(self.content.encode("utf-8"))


class TextChunker:
    """按分隔符递归切分文本"""

    def __init__(
        self,
        chunk_size: int = 512,
        chunk_overlap: int = 50,
        separators: Optional[List[str]] = None
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be between 0 and chunk_size - 1")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.separators = separators if separators is not None else list(DEFAULT_SEPARATORS)

    def chunk_text(self, text: str, document_id: str) -> List[Chunk]:
        """
        切分文本

        每个分块（第一个除外）会带上前一段末尾 chunk_overlap 个字符，
        metadata 中记录切分片段在原文中的 start_index / end_index（不含重叠部分）。
        """
        chunks = []
        cursor = 0
        previous = ""

        for piece in self._split_recursive(text, self.separators):
            start = text.find(piece, cursor)
            if start < 0:
                start = cursor
            end = start + len(piece)
            cursor = end

            if not piece.strip():
                continue

            overlap = previous[-self.chunk_overlap:] if self.chunk_overlap and previous else ""
            previous = piece

            content = (overlap + piece).strip()
            index = len(chunks)
            chunks.append(Chunk(
                id=f"chunk_{document_id}_{index}",
                document_id=document_id,
                content=content,
                index=index,
                metadata={
                    "start_index": start,
                    "end_index": end,
                    "overlap": len(overlap),
                },
            ))

        return chunks

    def _split_recursive(self, text: str, separators: List[str]) -> List[str]:
        if not separators:
            return self._split_by_length(text)

        separator = separators[0]
        result = []
        current = ""

        for split in text.split(separator):
            candidate_length = len(current) + len(separator) + len(split) if current else len(split)
            if candidate_length <= self.chunk_size:
                current = f"{current}{separator}{split}" if current else split
                continue

            if current:
                result.append(current)

            if len(split) > self.chunk_size:
                result.extend(self._split_recursive(split, separators[1:]))
                current = ""
            else:
                current = split

        if current:
            result.append(current)

        return result

    def _split_by_length(self, text: str) -> List[str]:
        return [text[i:i + self.chunk_size] for i in range(0, len(text), self.chunk_size)]

    @staticmethod
    def extract_text(content: str, doc_type: str) -> str:
        """按文档类型提取纯文本"""
        doc_type = doc_type.lower().lstrip(".")
        if doc_type == "json":
            return json.dumps(json.loads(content), indent=2, ensure_ascii=False)
        if doc_type in ("html", "htm"):
            return re.sub(r"\s+", " ", re.sub(r"<[^>]*>", " ", content)).strip()
        return content

    @staticmethod
    def get_chunk_stats(chunks: List[Chunk]) -> Dict[str, Any]:
        """分块统计"""
        lengths = [len(chunk.content) for chunk in chunks]
        if not lengths:
            return {"count": 0, "avg_length": 0, "min_length": 0, "max_length": 0, "total_chars": 0}
        return {
            "count": len(lengths),
            "avg_length": sum(lengths) / len(lengths),
            "min_length": min(lengths),
            "max_length": max(lengths),
            "total_chars": sum(lengths),
        }
