"""Knowledge base ingestion, indexing and retrieval with ChromaDB + LangChain.

The park_and_ride collection holds one document per Q&A record loaded from
knowledge.csv. Records are parsed by the loader, embedded by the indexer and
searched through the retriever, which classifies every hit into a support
context.
"""

from .collections import KBCollection, get_collection_path, get_collection_setting, get_search_settings
from .loader import (
    parse_knowledge_csv, parse_knowledge_bytes, load_knowledge_csv,
    write_knowledge_csv, record_to_document, document_to_record, split_tags
)
from .indexer import build_knowledge_index, get_chroma_path, get_data_path, get_knowledge_csv_path
from .retriever import KnowledgeRetriever, KnowledgeStoreHandle
from .merger import merge_category_knowledge, update_knowledge

__all__ = [
    # Collections
    "KBCollection",
    "get_collection_path",
    "get_collection_setting",
    "get_search_settings",
    # Loader
    "parse_knowledge_csv",
    "parse_knowledge_bytes",
    "load_knowledge_csv",
    "write_knowledge_csv",
    "record_to_document",
    "document_to_record",
    "split_tags",
    # Indexer
    "build_knowledge_index",
    "get_chroma_path",
    "get_data_path",
    "get_knowledge_csv_path",
    # Retriever
    "KnowledgeRetriever",
    "KnowledgeStoreHandle",
    # Merger
    "merge_category_knowledge",
    "update_knowledge",
]
