"""
ChromaDB indexer with LangChain integration for the Q&A knowledge base.
"""

import os
from pathlib import Path

from dotenv import load_dotenv
load_dotenv()

from langchain_chroma import Chroma

from ..errors import UpstreamError
from ..llm_client import resolve_mode
from ..schemas import KnowledgeRecord
from ..utils import get_logger
from .collections import KBCollection, get_collection_path
from .loader import load_knowledge_csv, record_to_document

logger = get_logger("kb.indexer")

MOCK_EMBEDDING_SIZE = 256


def get_project_root() -> Path:
    """Get the project root directory."""
    return Path(__file__).parent.parent.parent


def get_data_path() -> Path:
    """Get the data directory path (base for all collections)."""
    return get_project_root() / "data"


def get_knowledge_csv_path() -> Path:
    """Get the knowledge CSV ingested when the index is empty."""
    configured = os.getenv("KNOWLEDGE_CSV")
    return Path(configured) if configured else get_data_path() / "knowledge.csv"


def get_uploads_path() -> Path:
    """Get the directory where uploaded knowledge files are kept."""
    configured = os.getenv("UPLOAD_DIR")
    return Path(configured) if configured else get_project_root() / "uploads"


def get_chroma_path() -> Path:
    """Get the ChromaDB persistence directory for the park_and_ride collection."""
    return get_collection_path(get_data_path(), KBCollection.PARK_AND_RIDE)


def get_embeddings(use_mock: bool | None = None):
    """
    Get the embeddings model.

    Uses OpenAI embeddings in real mode and a deterministic fake embedding
    in mock mode, so the index can be exercised without an API key.
    """
    if use_mock is None:
        use_mock = resolve_mode() == "mock"

    if use_mock:
        from langchain_core.embeddings import DeterministicFakeEmbedding
        return DeterministicFakeEmbedding(size=MOCK_EMBEDDING_SIZE)

    from langchain_openai import OpenAIEmbeddings
    return OpenAIEmbeddings(
        model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-ada-002")
    )


def open_vectorstore(persist_dir: str | Path | None = None, use_mock: bool | None = None) -> Chroma:
    """Open (or create) the persisted park_and_ride collection."""
    persist_dir = Path(persist_dir) if persist_dir else get_chroma_path()
    persist_dir.mkdir(parents=True, exist_ok=True)

    return Chroma(
        collection_name=KBCollection.PARK_AND_RIDE.value,
        embedding_function=get_embeddings(use_mock=use_mock),
        persist_directory=str(persist_dir),
        collection_metadata={"hnsw:space": "cosine"}
    )


def index_records(vectorstore: Chroma, records: list[KnowledgeRecord]) -> int:
    """Embed and add records to the vector store. Returns the number added."""
    if not records:
        return 0

    documents = [record_to_document(r) for r in records]
    try:
        vectorstore.add_documents(documents, ids=[r.id for r in records])
    except Exception as e:
        raise UpstreamError(f"Failed to index {len(records)} records: {e}") from e

    logger.info(f"Indexed {len(records)} records")
    return len(records)


def build_knowledge_index(
    csv_path: str | Path | None = None,
    persist_dir: str | Path | None = None,
    force_rebuild: bool = False,
    use_mock: bool | None = None
) -> Chroma:
    """
    Build or load the ChromaDB index for the park_and_ride collection.

    Args:
        csv_path: Path to the knowledge CSV
        persist_dir: Path to persist ChromaDB data
        force_rebuild: Drop existing entries and re-ingest the CSV
        use_mock: Use fake embeddings. If None, auto-detect from QA_MODE

    Returns:
        Chroma vectorstore instance
    """
    csv_path = Path(csv_path) if csv_path else get_knowledge_csv_path()
    vectorstore = open_vectorstore(persist_dir, use_mock=use_mock)

    existing_ids = vectorstore.get(include=[])["ids"]
    if existing_ids and not force_rebuild:
        logger.info(f"Loading existing knowledge index ({len(existing_ids)} records)")
        return vectorstore

    if existing_ids:
        logger.info(f"Dropping {len(existing_ids)} indexed records for rebuild")
        vectorstore.delete(ids=existing_ids)

    if not csv_path.exists():
        logger.warning(f"Knowledge CSV {csv_path} not found, starting with an empty index")
        return vectorstore

    logger.info(f"Building knowledge index from {csv_path}")
    records = load_knowledge_csv(csv_path)
    index_records(vectorstore, records)

    return vectorstore


# CLI entry point for building index
if __name__ == "__main__":
    import argparse

    from ..utils import setup_logging

    parser = argparse.ArgumentParser(description="Build the park-and-ride knowledge index")
    parser.add_argument("--csv", help="Knowledge CSV path (default: data/knowledge.csv)")
    parser.add_argument("--force", action="store_true", help="Force rebuild index")
    parser.add_argument("--mock", action="store_true", help="Use fake embeddings")
    args = parser.parse_args()

    setup_logging()
    build_knowledge_index(csv_path=args.csv, force_rebuild=args.force, use_mock=args.mock or None)
    print("Done!")
