"""
Collection definitions for the knowledge base vector index.
"""

from enum import Enum
from pathlib import Path


class KBCollection(str, Enum):
    """Knowledge base collection types."""
    PARK_AND_RIDE = "park_and_ride"  # Q&A records loaded from knowledge.csv


# Collection metadata configurations
COLLECTION_CONFIGS = {
    KBCollection.PARK_AND_RIDE: {
        "description": "Park-and-ride Q&A records (question, answer, tags)",
        "persist_subdir": "chroma_db",
        "search_k": 6,        # Hits retrieved for answering
        "answer_sources": 4,  # Hits passed to the answer prompt
        "related_k": 7,       # Candidate pool for related questions
    },
}


def get_collection_path(base_path: Path, collection: KBCollection) -> Path:
    """Get the persistence path for a specific collection."""
    config = COLLECTION_CONFIGS[collection]
    return base_path / config["persist_subdir"]


def get_collection_setting(collection: KBCollection, key: str) -> int:
    """Get a numeric search setting for a collection."""
    return COLLECTION_CONFIGS[collection][key]


def get_search_settings(collection: KBCollection = KBCollection.PARK_AND_RIDE) -> dict:
    """Search sizes passed to answer_query as keyword arguments."""
    return {
        key: get_collection_setting(collection, key)
        for key in ("search_k", "answer_sources", "related_k")
    }
