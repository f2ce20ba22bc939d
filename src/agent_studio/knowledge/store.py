"""
知识库存储
"""
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

import aiofiles

from .documents import Document, TextChunker
from .embeddings import Embedder
from .search import SemanticSearch


logger = logging.getLogger(__name__)


class KnowledgeStore(ABC):
    """知识库接口，embedder 为写入分块向量时使用的 embedder"""

    embedder: Optional[Embedder] = None

    @abstractmethod
    async def get_all_documents(self) -> List[Document]:
        """获取全部文档（含分块）"""
        pass


class InMemoryKnowledgeStore(KnowledgeStore):
    """内存知识库，写入时分块，配置了 embedder 时同时生成向量"""

    def __init__(self, chunker: Optional[TextChunker] = None, embedder: Optional[Embedder] = None):
        self.chunker = chunker or TextChunker()
        self.embedder = embedder
        self.documents: Dict[str, Document] = {}

    async def add_document(
        self,
        name: str,
        content: str,
        knowledge_base_id: Optional[str] = None,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        doc_type: str = "txt"
    ) -> Document:
        """添加文档"""
        document = Document(
            name=name,
            content=content,
            tags=tags or [],
            metadata=metadata or {},
            knowledge_base_id=knowledge_base_id,
            doc_type=doc_type,
        )
        document.chunks = self.chunker.chunk_text(content, document.id)

        if self.embedder:
            for chunk in document.chunks:
                chunk.embedding = await self.embedder.embed(chunk.content)

        self.documents[document.id] = document
        logger.info(f"Added document '{name}' with {len(document.chunks)} chunks")
        return document

    async def add_file(self, path: str, knowledge_base_id: Optional[str] = None,
                       tags: Optional[List[str]] = None) -> Document:
        """从文件读取并添加文档"""
        file_path = Path(path)
        async with aiofiles.open(file_path, 'r', encoding='utf-8') as f:
            raw = await f.read()

        doc_type = file_path.suffix.lstrip(".").lower() or "txt"
        content = TextChunker.extract_text(raw, doc_type)
        return await self.add_document(
            file_path.name,
            content,
            knowledge_base_id=knowledge_base_id,
            tags=tags,
            metadata={"source": str(file_path)},
            doc_type=doc_type,
        )

    async def remove_document(self, document_id: str) -> bool:
        """删除文档"""
        if document_id in self.documents:
            del self.documents[document_id]
            logger.info(f"Removed document: {document_id}")
            return True
        return False

    async def get_document(self, document_id: str) -> Optional[Document]:
        return self.documents.get(document_id)

    async def get_all_documents(self) -> List[Document]:
        return list(self.documents.values())

    async def document_stats(self) -> Dict[str, Any]:
        return SemanticSearch.get_document_stats(list(self.documents.values()))
