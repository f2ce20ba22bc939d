"""Knowledge base: documents, embeddings and semantic search"""

from .documents import Document, Chunk, TextChunker
from .embeddings import (
    Embedder, SimulatedEmbedder, ModelClientEmbedder,
    cosine_similarity, simulated_embedding
)
from .search import SemanticSearch, SearchOptions, SearchFilter, SearchResult
from .store import KnowledgeStore, InMemoryKnowledgeStore

__all__ = [
    "Document",
    "Chunk",
    "TextChunker",
    "Embedder",
    "SimulatedEmbedder",
    "ModelClientEmbedder",
    "cosine_similarity",
    "simulated_embedding",
    "SemanticSearch",
    "SearchOptions",
    "SearchFilter",
    "SearchResult",
    "KnowledgeStore",
    "InMemoryKnowledgeStore"
]
