"""
语义检索
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

from .documents import Chunk, Document
from .embeddings import Embedder, cosine_similarity


logger = logging.getLogger(__name__)

SEMANTIC_WEIGHT = 0.7
KEYWORD_WEIGHT = 0.3


@dataclass
class SearchFilter:
    document_ids: Optional[List[str]] = None
    tags: Optional[List[str]] = None


@dataclass
class SearchOptions:
    """检索参数"""
    top_k: int = 5
    threshold: float = 0.0
    filter: SearchFilter = field(default_factory=SearchFilter)


@dataclass
class SearchResult:
    """检索结果"""
    chunk: Chunk
    score: float
    document: Document

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.chunk.content,
            "score": self.score,
            "document_id": self.document.id,
            "document_name": self.document.name,
            "chunk_id": self.chunk.id,
        }


class SemanticSearch:
    """基于向量相似度的检索"""

    def __init__(self, embedder: Embedder):
        self.embedder = embedder

    def _candidates(
        self,
        chunks: List[Chunk],
        documents: Dict[str, Document],
        search_filter: SearchFilter
    ) -> List[Chunk]:
        """按文档ID和标签过滤分块，丢弃找不到所属文档的分块"""
        candidates = []
        for chunk in chunks:
            document = documents.get(chunk.document_id)
            if document is None:
                continue
            if search_filter.document_ids is not None and chunk.document_id not in search_filter.document_ids:
                continue
            if search_filter.tags and not set(search_filter.tags) & set(document.tags):
                continue
            candidates.append(chunk)
        return candidates

    async def search(
        self,
        query: str,
        chunks: List[Chunk],
        documents: List[Document],
        options: Optional[SearchOptions] = None
    ) -> List[SearchResult]:
        """
        检索与查询最相似的分块

        低于 threshold 的结果被丢弃，按分数降序排列并截断到 top_k。
        没有向量的分块不参与检索。
        """
        options = options or SearchOptions()
        by_id = {document.id: document for document in documents}
        query_embedding = await self.embedder.embed(query)

        results = []
        for chunk in self._candidates(chunks, by_id, options.filter):
            if not chunk.embedding:
                continue
            score = cosine_similarity(query_embedding, chunk.embedding)
            if score >= options.threshold:
                results.append(SearchResult(chunk, score, by_id[chunk.document_id]))

        results.sort(key=lambda result: result.score, reverse=True)
        logger.debug(f"Semantic search for '{query}' matched {len(results)} chunks")
        return results[:options.top_k]

    def keyword_search(
        self,
        query: str,
        chunks: List[Chunk],
        documents: List[Document],
        options: Optional[SearchOptions] = None
    ) -> List[SearchResult]:
        """关键词重合度检索，分数为命中词占查询词的比例"""
        options = options or SearchOptions()
        by_id = {document.id: document for document in documents}
        terms = query.lower().split()
        if not terms:
            return []

        results = []
        for chunk in self._candidates(chunks, by_id, options.filter):
            content = chunk.content.lower()
            hits = sum(1 for term in terms if term in content)
            if hits:
                results.append(SearchResult(chunk, hits / len(terms), by_id[chunk.document_id]))

        results.sort(key=lambda result: result.score, reverse=True)
        return results[:options.top_k]

    async def hybrid_search(
        self,
        query: str,
        chunks: List[Chunk],
        documents: List[Document],
        options: Optional[SearchOptions] = None
    ) -> List[SearchResult]:
        """语义 0.7 + 关键词 0.3 加权混合检索"""
        options = options or SearchOptions()
        semantic_options = SearchOptions(
            top_k=options.top_k * 2,
            threshold=options.threshold,
            filter=options.filter,
        )
        semantic = await self.search(query, chunks, documents, semantic_options)
        keyword = self.keyword_search(query, chunks, documents, options)

        combined: Dict[str, SearchResult] = {}
        for result in semantic:
            combined[result.chunk.id] = SearchResult(
                result.chunk, result.score * SEMANTIC_WEIGHT, result.document
            )
        for result in keyword:
            existing = combined.get(result.chunk.id)
            if existing:
                existing.score += result.score * KEYWORD_WEIGHT
            else:
                combined[result.chunk.id] = SearchResult(
                    result.chunk, result.score * KEYWORD_WEIGHT, result.document
                )

        ranked = sorted(combined.values(), key=lambda result: result.score, reverse=True)
        return ranked[:options.top_k]

    @staticmethod
    def get_document_stats(documents: List[Document]) -> Dict[str, Any]:
        """文档统计"""
        total_chunks = sum(len(document.chunks) for document in documents)
        return {
            "total_documents": len(documents),
            "total_chunks": total_chunks,
            "average_chunks_per_doc": total_chunks / len(documents) if documents else 0,
            "total_size": sum(document.size for document in documents),
        }
