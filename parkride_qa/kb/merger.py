"""
Build the consolidated knowledge.csv from per-category knowledge sheets.

Each category directory under data/knowledge/ may hold a base.csv with
general rules (parents) and a details.csv with detailed entries (children).
Children are linked to the last parent of their category.
"""

import shutil
from pathlib import Path

from ..errors import ParseError
from ..schemas import ChunkType, KnowledgeRecord
from ..utils import get_logger
from .indexer import get_data_path
from .loader import load_knowledge_csv, write_knowledge_csv

logger = get_logger("kb.merger")


# Merge order of the category directories
KNOWLEDGE_CATEGORIES = [
    "reservation_rules",
    "reservation_change_rules",
    "international_ng",
    "vehicles_ng",
    "usage_process",
    "operation_rules",
    "baggage_rules",
    "capacity_rules",
    "transportation_plans_knowledge",
    "group_usage",
    "fee_rules",
    "peak_season",
    "full_parking_responses",
    "navigation_and_access",
    "other",
]


def get_knowledge_dir() -> Path:
    return get_data_path() / "knowledge"


def merge_category_knowledge(
    knowledge_dir: str | Path | None = None,
    categories: list[str] | None = None
) -> list[KnowledgeRecord]:
    """
    Merge category sheets into one record list with sequential ids.

    Args:
        knowledge_dir: Directory holding one sub-directory per category
        categories: Category names in merge order

    Returns:
        Merged records; parents before their children within each category
    """
    knowledge_dir = Path(knowledge_dir) if knowledge_dir else get_knowledge_dir()
    categories = categories or KNOWLEDGE_CATEGORIES

    merged: list[KnowledgeRecord] = []
    next_id = 1

    for category in categories:
        category_dir = knowledge_dir / category
        if not category_dir.is_dir():
            logger.debug(f"Skipping non-existent directory: {category}")
            continue

        parent_id = None

        base_path = category_dir / "base.csv"
        if base_path.exists():
            base_items = _load_sheet(base_path)
            logger.info(f"{category}/base.csv: {len(base_items)} items")
            for item in base_items:
                parent_id = str(next_id)
                merged.append(item.model_copy(update={
                    "id": parent_id,
                    "parent_id": None,
                    "chunk_type": ChunkType.parent,
                    "tags": list(item.tags) or [category],
                }))
                next_id += 1

        details_path = category_dir / "details.csv"
        if details_path.exists():
            if parent_id is None:
                logger.warning(f"Found details.csv but no parent for {category}, skipping")
                continue

            detail_items = _load_sheet(details_path)
            if not detail_items:
                logger.warning(f"Empty details.csv for {category}")
                continue

            logger.info(f"{category}/details.csv: {len(detail_items)} items")
            for item in detail_items:
                merged.append(item.model_copy(update={
                    "id": str(next_id),
                    "parent_id": parent_id,
                    "chunk_type": ChunkType.child,
                    "tags": list(item.tags) or [category],
                }))
                next_id += 1

    logger.info(f"Total items merged: {len(merged)}")
    return merged


def _load_sheet(path: Path) -> list[KnowledgeRecord]:
    try:
        return load_knowledge_csv(path)
    except ParseError as e:
        raise ParseError(f"{path.parent.name}/{path.name}: {e}") from e


def update_knowledge(
    knowledge_dir: str | Path | None = None,
    output_path: str | Path | None = None
) -> int:
    """
    Rewrite knowledge.csv from the category sheets.
    An existing file is kept as knowledge.csv.bak.

    Returns:
        Number of records written
    """
    output_path = Path(output_path) if output_path else get_data_path() / "knowledge.csv"
    records = merge_category_knowledge(knowledge_dir)

    if output_path.exists():
        backup_path = output_path.with_name(output_path.name + ".bak")
        shutil.copyfile(output_path, backup_path)
        logger.info(f"Backed up {output_path.name} to {backup_path.name}")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    write_knowledge_csv(records, output_path)
    logger.info(f"Knowledge base written to {output_path}")
    return len(records)


if __name__ == "__main__":
    import argparse

    from ..utils import setup_logging

    parser = argparse.ArgumentParser(description="Merge category knowledge sheets into knowledge.csv")
    parser.add_argument("--knowledge-dir", help="Category sheets directory (default: data/knowledge)")
    parser.add_argument("--output", help="Output CSV path (default: data/knowledge.csv)")
    args = parser.parse_args()

    setup_logging()
    count = update_knowledge(args.knowledge_dir, args.output)
    print(f"Knowledge base updated successfully ({count} records)")
