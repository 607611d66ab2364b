"""
LangChain retriever wrapper for knowledge base search over Q&A records.
"""

import threading
from pathlib import Path
from typing import Callable

from langchain_chroma import Chroma
from langchain_core.documents import Document

from ..errors import UpstreamError
from ..pipeline.context import classify
from ..schemas import KnowledgeRecord, SearchContext, SearchHit
from ..utils import get_logger
from .collections import KBCollection, get_collection_setting
from .indexer import build_knowledge_index, index_records
from .loader import document_to_record

logger = get_logger("kb.retriever")


class KnowledgeRetriever:
    """
    Knowledge base retriever using ChromaDB and LangChain.
    Returns classified, deduplicated Q&A hits.
    """

    def __init__(
        self,
        persist_dir: str | Path | None = None,
        csv_path: str | Path | None = None,
        use_mock: bool | None = None,
        k: int | None = None,
        vectorstore: Chroma | None = None
    ):
        """
        Initialize the knowledge retriever.

        Args:
            persist_dir: Path to ChromaDB persistence directory
            csv_path: Knowledge CSV ingested if the index is empty
            use_mock: Use fake embeddings. If None, auto-detect from QA_MODE
            k: Default number of results to return
            vectorstore: Pre-built vector store to wrap instead of opening one
        """
        self.k = k if k is not None else get_collection_setting(KBCollection.PARK_AND_RIDE, "search_k")
        if vectorstore is None:
            vectorstore = build_knowledge_index(
                csv_path=csv_path,
                persist_dir=persist_dir,
                use_mock=use_mock
            )
        self.vectorstore = vectorstore

    def similarity_search(self, query: str, k: int | None = None) -> list[SearchHit]:
        """
        Search the knowledge base for records similar to the query.

        Results are deduplicated by question (first hit wins) and documents
        missing question or answer metadata are dropped.

        Args:
            query: Search query text
            k: Number of results (overrides default). Zero returns no hits

        Returns:
            List of SearchHit in relevance order
        """
        if k is None:
            k = self.k
        if k <= 0:
            return []
        try:
            docs = self.vectorstore.similarity_search_with_relevance_scores(query, k=k)
        except Exception as e:
            raise UpstreamError(f"Similarity search failed: {e}") from e

        results = []
        seen_questions = set()
        for doc, score in docs:
            record = document_to_record(doc)
            if record is None or record.question in seen_questions:
                continue
            seen_questions.add(record.question)
            results.append(SearchHit(
                record=record,
                context=classify(record.tags),
                score=float(score)
            ))

        logger.debug(f"Search returned {len(docs)} documents, {len(results)} usable")
        return results

    def search_knowledge(self, query: str, k: int = 3) -> list[SearchHit]:
        """Search and keep only hits that belong to a known support context."""
        return [
            hit for hit in self.similarity_search(query, k=k)
            if hit.context != SearchContext.other_contexts
        ]

    def list_records(self, limit: int | None = None) -> list[KnowledgeRecord]:
        """List indexed records."""
        try:
            data = self.vectorstore.get(limit=limit, include=["metadatas", "documents"])
        except Exception as e:
            raise UpstreamError(f"Failed to read knowledge index: {e}") from e

        records = []
        for doc_id, metadata, content in zip(data["ids"], data["metadatas"], data["documents"]):
            record = document_to_record(
                Document(page_content=content or "", metadata=metadata or {}),
                fallback_id=doc_id
            )
            if record is not None:
                records.append(record)
        return records

    def count(self) -> int:
        return len(self.vectorstore.get(include=[])["ids"])

    def add_records(self, records: list[KnowledgeRecord]) -> int:
        return index_records(self.vectorstore, records)

    def delete(self, ids: list[str] | None = None, where: dict | None = None) -> None:
        """Delete records by id or metadata filter. With neither, deletes everything."""
        try:
            if ids is None and where is None:
                ids = self.vectorstore.get(include=[])["ids"]
                if not ids:
                    return
            if where is not None:
                ids = self.vectorstore.get(where=where, include=[])["ids"]
                if not ids:
                    return
            self.vectorstore.delete(ids=ids)
        except Exception as e:
            raise UpstreamError(f"Failed to delete from knowledge index: {e}") from e

    def replace_records(self, records: list[KnowledgeRecord]) -> int:
        """
        Replace the whole knowledge base with the given records.

        New records are indexed before old ones are removed, so a failed
        embedding call leaves the existing knowledge in place.
        """
        try:
            old_ids = self.vectorstore.get(include=[])["ids"]
        except Exception as e:
            raise UpstreamError(f"Failed to read knowledge index: {e}") from e

        added = self.add_records(records)

        new_ids = {record.id for record in records}
        stale_ids = [doc_id for doc_id in old_ids if doc_id not in new_ids]
        if stale_ids:
            self.delete(ids=stale_ids)
        logger.info(f"Knowledge base replaced with {added} records")
        return added


class KnowledgeStoreHandle:
    """
    Process-wide holder for the knowledge retriever.

    Created once at application startup. The retriever itself is built on
    first use; concurrent first callers wait on one lock so only a single
    retriever is ever constructed.
    """

    def __init__(self, factory: Callable[[], KnowledgeRetriever] | None = None):
        self._factory = factory or KnowledgeRetriever
        self._retriever: KnowledgeRetriever | None = None
        self._lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        return self._retriever is not None

    def get(self) -> KnowledgeRetriever:
        retriever = self._retriever
        if retriever is not None:
            return retriever

        with self._lock:
            if self._retriever is None:
                logger.info("Initializing knowledge store...")
                self._retriever = self._factory()
            return self._retriever

    def reset(self) -> None:
        """Drop the retriever so the next get() rebuilds it."""
        with self._lock:
            self._retriever = None
