"""
CSV ingestion for the Q&A knowledge base.

Parses knowledge CSV files into KnowledgeRecord objects and converts records
to and from LangChain documents for the vector index.
"""

import csv
import io
import re
from pathlib import Path

from langchain_core.documents import Document
from pydantic import ValidationError as SchemaValidationError

from ..errors import ParseError
from ..schemas import KnowledgeRecord, ChunkType
from ..utils import get_logger

logger = get_logger("kb.loader")


CSV_COLUMNS = ["id", "question", "answer", "parent_id", "tags", "priority", "purpose", "chunk_type"]
REQUIRED_COLUMNS = ["question", "answer", "tags"]

# Japanese headers used by the category knowledge sheets
HEADER_ALIASES = {
    "質問": "question",
    "回答": "answer",
    "タグ": "tags",
    "優先度": "priority",
    "解決する課題": "purpose",
    "親id": "parent_id",
}

TAG_SEPARATORS = re.compile(r"[,;]")


def split_tags(value: str | None) -> list[str]:
    """Split a tags field on commas or semicolons into lowercase tags."""
    if not value:
        return []
    return [tag.strip().lower() for tag in TAG_SEPARATORS.split(value) if tag.strip()]


def unescape_answer(value: str) -> str:
    """Turn literal \\n sequences into newlines."""
    return value.replace("\\n", "\n")


def _normalize_header(fieldnames: list[str]) -> list[str]:
    normalized = []
    for name in fieldnames:
        key = (name or "").strip().lstrip("\ufeff")
        normalized.append(HEADER_ALIASES.get(key, HEADER_ALIASES.get(key.lower(), key.lower())))
    return normalized


def _parse_chunk_type(value: str, parent_id: str | None, line: int) -> ChunkType:
    value = value.strip().lower()
    if not value:
        return ChunkType.child if parent_id else ChunkType.parent
    try:
        return ChunkType(value)
    except ValueError:
        raise ParseError(f"invalid chunk_type '{value}'", line=line)


def parse_knowledge_csv(text: str) -> list[KnowledgeRecord]:
    """
    Parse knowledge CSV text into records.

    The whole ingestion is aborted with ParseError on the first malformed
    row, so a file is either loaded completely or not at all.

    Args:
        text: CSV text with a header row

    Returns:
        List of KnowledgeRecord in file order
    """
    reader = csv.reader(io.StringIO(text))
    try:
        header = next(reader)
    except StopIteration:
        raise ParseError("CSV is empty", line=1)
    except csv.Error as e:
        raise ParseError(str(e), line=1)

    columns = _normalize_header(header)
    missing = [c for c in REQUIRED_COLUMNS if c not in columns]
    if missing:
        raise ParseError(f"missing required column(s): {', '.join(missing)}", line=1)
    if len(set(columns)) != len(columns):
        raise ParseError("duplicate column names in header", line=1)

    has_ids = "id" in columns
    records: list[KnowledgeRecord] = []
    seen_ids: set[str] = set()

    try:
        for row in reader:
            line = reader.line_num
            if not row or all(not cell.strip() for cell in row):
                continue
            if len(row) != len(columns):
                raise ParseError(
                    f"expected {len(columns)} fields, found {len(row)}", line=line
                )

            values = dict(zip(columns, row))
            record_id = values.get("id", "").strip() if has_ids else str(len(records) + 1)
            if not record_id:
                raise ParseError("empty id", line=line)
            if record_id in seen_ids:
                raise ParseError(f"duplicate id '{record_id}'", line=line)

            parent_id = values.get("parent_id", "").strip() or None

            try:
                record = KnowledgeRecord(
                    id=record_id,
                    question=values["question"].strip(),
                    answer=unescape_answer(values["answer"].strip()),
                    parent_id=parent_id,
                    tags=split_tags(values["tags"]),
                    priority=values.get("priority", "").strip(),
                    purpose=values.get("purpose", "").strip(),
                    chunk_type=_parse_chunk_type(values.get("chunk_type", ""), parent_id, line),
                )
            except SchemaValidationError as e:
                fields = ", ".join(str(err["loc"][0]) for err in e.errors())
                raise ParseError(f"invalid value for {fields}", line=line) from e

            seen_ids.add(record_id)
            records.append(record)
    except csv.Error as e:
        raise ParseError(str(e), line=reader.line_num)

    dangling = [r.id for r in records if r.parent_id and r.parent_id not in seen_ids]
    if dangling:
        logger.warning(f"{len(dangling)} record(s) reference unknown parents: {', '.join(dangling[:5])}")

    logger.info(f"Parsed {len(records)} knowledge records")
    return records


def parse_knowledge_bytes(data: bytes) -> list[KnowledgeRecord]:
    """Decode uploaded CSV bytes (UTF-8, optional BOM) and parse them."""
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ParseError(f"file is not valid UTF-8: {e.reason}") from e
    return parse_knowledge_csv(text)


def load_knowledge_csv(csv_path: str | Path) -> list[KnowledgeRecord]:
    """Load knowledge records from a CSV file."""
    with open(csv_path, "r", encoding="utf-8-sig", newline="") as f:
        return parse_knowledge_csv(f.read())


def write_knowledge_csv(records: list[KnowledgeRecord], csv_path: str | Path) -> None:
    """Write records in the canonical CSV layout, escaping answer newlines."""
    with open(csv_path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f, quoting=csv.QUOTE_MINIMAL)
        writer.writerow(CSV_COLUMNS)
        for record in records:
            writer.writerow([
                record.id,
                record.question,
                record.answer.replace("\n", "\\n"),
                record.parent_id or "",
                ",".join(record.tags),
                record.priority,
                record.purpose,
                record.chunk_type.value,
            ])


def record_to_document(record: KnowledgeRecord) -> Document:
    """Convert a record to a LangChain document. Chroma metadata holds scalars only."""
    return Document(
        page_content=record.page_content,
        metadata={
            "record_id": record.id,
            "question": record.question,
            "answer": record.answer,
            "tags": ",".join(record.tags),
            "priority": record.priority,
            "purpose": record.purpose,
            "parent_id": record.parent_id or "",
            "chunk_type": record.chunk_type.value,
        }
    )


def document_to_record(doc: Document, fallback_id: str = "") -> KnowledgeRecord | None:
    """
    Rebuild a record from an indexed document.

    Returns None for documents missing question or answer metadata.
    """
    metadata = doc.metadata or {}
    question = metadata.get("question")
    answer = metadata.get("answer")
    if not question or not answer or not doc.page_content:
        return None

    tags = metadata.get("tags", "")
    if isinstance(tags, str):
        tags = split_tags(tags)
    else:
        tags = [str(t).strip().lower() for t in tags if str(t).strip()]

    chunk_type = metadata.get("chunk_type") or ChunkType.parent.value
    if chunk_type not in (ChunkType.parent.value, ChunkType.child.value):
        chunk_type = ChunkType.parent.value

    return KnowledgeRecord(
        id=str(metadata.get("record_id") or doc.id or fallback_id),
        question=question,
        answer=answer,
        parent_id=metadata.get("parent_id") or None,
        tags=tags,
        priority=str(metadata.get("priority") or ""),
        purpose=str(metadata.get("purpose") or ""),
        chunk_type=ChunkType(chunk_type),
    )
