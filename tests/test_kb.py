"""
Tests for knowledge base ingestion, merging and retrieval.

Retrieval tests use fake embeddings against a temporary Chroma directory,
so no API key is needed.
"""

import threading

import pytest
from langchain_core.documents import Document

from parkride_qa.errors import ParseError, UpstreamError
from parkride_qa.kb.collections import KBCollection, get_collection_setting, get_search_settings
from parkride_qa.kb.indexer import build_knowledge_index, get_chroma_path, get_knowledge_csv_path
from parkride_qa.kb.loader import (
    document_to_record, load_knowledge_csv, parse_knowledge_bytes,
    parse_knowledge_csv, record_to_document, split_tags, write_knowledge_csv
)
from parkride_qa.kb.merger import merge_category_knowledge, update_knowledge
from parkride_qa.kb.retriever import KnowledgeRetriever, KnowledgeStoreHandle
from parkride_qa.schemas import ChunkType, SearchContext

from conftest import make_record


HEADER = "id,question,answer,parent_id,tags,priority,purpose,chunk_type\n"


class TestKnowledgeLoader:
    """Tests for CSV parsing."""

    def test_sample_knowledge_loads(self, knowledge_csv_path):
        """The bundled knowledge.csv should parse completely."""
        records = load_knowledge_csv(knowledge_csv_path)

        assert len(records) == 19
        assert len({r.id for r in records}) == 19
        for record in records:
            assert record.question.strip()
            assert record.answer.strip()

    def test_answer_escapes_become_newlines(self, knowledge_csv_path):
        records = load_knowledge_csv(knowledge_csv_path)
        first = records[0]

        assert "\\n" not in first.answer
        assert first.answer.count("\n") == 1

    def test_quoted_fields_keep_commas(self, knowledge_csv_path):
        records = {r.id: r for r in load_knowledge_csv(knowledge_csv_path)}

        assert "1,000円" in records["17"].answer
        assert records["17"].tags == ["料金", "深夜料金", "追加料金"]

    def test_parent_child_columns(self, knowledge_csv_path):
        records = {r.id: r for r in load_knowledge_csv(knowledge_csv_path)}

        assert records["1"].chunk_type == ChunkType.parent
        assert records["1"].parent_id is None
        assert records["2"].chunk_type == ChunkType.child
        assert records["2"].parent_id == "1"

    def test_split_tags(self):
        assert split_tags("予約方法, Web予約限定;電話問い合わせ") == ["予約方法", "web予約限定", "電話問い合わせ"]
        assert split_tags("") == []
        assert split_tags(None) == []
        assert split_tags(" , ;") == []

    def test_japanese_headers_and_generated_ids(self):
        """Sheets with Japanese headers and no id column get sequential ids."""
        text = "質問,回答,タグ,優先度,解決する課題\n" \
               "予約方法は？,Webのみです。,予約方法,高,予約手段\n" \
               "駐車場はどこ？,南インター近くです。,,低,\n"

        records = parse_knowledge_csv(text)

        assert [r.id for r in records] == ["1", "2"]
        assert records[0].tags == ["予約方法"]
        assert records[0].priority == "高"
        assert records[1].tags == []

    def test_chunk_type_inferred_from_parent(self):
        text = "id,question,answer,parent_id,tags\n" \
               "1,親,親の回答,,a\n" \
               "2,子,子の回答,1,a\n"

        records = parse_knowledge_csv(text)

        assert records[0].chunk_type == ChunkType.parent
        assert records[1].chunk_type == ChunkType.child

    def test_blank_lines_skipped(self):
        text = HEADER + "1,q,a,,t,,,\n\n2,q2,a2,,t,,,\n"
        assert [r.id for r in parse_knowledge_csv(text)] == ["1", "2"]

    def test_dangling_parent_is_kept(self):
        text = HEADER + "1,q,a,99,t,,,child\n"
        records = parse_knowledge_csv(text)
        assert records[0].parent_id == "99"

    def test_bom_is_ignored(self):
        data = ("\ufeff" + HEADER + "1,q,a,,t,,,\n").encode("utf-8")
        assert parse_knowledge_bytes(data)[0].id == "1"

    @pytest.mark.parametrize("text, line", [
        ("", 1),
        ("id,question,answer\n1,q,a\n", 1),
        ("id,question,answer,tags,tags\n1,q,a,t,t\n", 1),
        (HEADER + "1,q,a,,t,,\n", 2),
        (HEADER + "1,q,a,,t,,,\n1,q2,a2,,t,,,\n", 3),
        (HEADER + ",q,a,,t,,,\n", 2),
        (HEADER + "1,q,a,,t,,,grandchild\n", 2),
        (HEADER + "1,q,,,t,,,\n", 2),
        (HEADER + "1,q,a,,t,,,\n2,\"unterminated,a,,t,,,\n", 3),
    ])
    def test_malformed_csv_aborts(self, text, line):
        """Any malformed row aborts the whole file with the offending line."""
        with pytest.raises(ParseError) as exc_info:
            parse_knowledge_csv(text)

        assert exc_info.value.line == line
        assert str(exc_info.value).startswith(f"line {line}:")

    def test_invalid_utf8_is_parse_error(self):
        with pytest.raises(ParseError):
            parse_knowledge_bytes(b"\xff\xfe\x00garbage")

    def test_write_then_load(self, tmp_path):
        records = [
            make_record("1", "質問1", ["予約方法"], answer="一行目\n二行目", priority="高"),
            make_record("2", "質問2", ["a", "b"], parent_id="1", chunk_type=ChunkType.child),
        ]
        path = tmp_path / "out.csv"

        write_knowledge_csv(records, path)

        assert "一行目\\n二行目" in path.read_text(encoding="utf-8")
        assert load_knowledge_csv(path) == records


class TestDocumentConversion:
    """Tests for record <-> LangChain document conversion."""

    def test_metadata_is_scalar(self):
        record = make_record("7", "質問", ["予約方法", "web予約限定"], parent_id="1")
        doc = record_to_document(record)

        assert doc.page_content == "質問: 質問\n回答: 質問への回答です。"
        assert doc.metadata["tags"] == "予約方法,web予約限定"
        assert doc.metadata["parent_id"] == "1"
        assert all(isinstance(v, str) for v in doc.metadata.values())

    def test_document_to_record(self):
        record = make_record("7", "質問", ["予約方法"], purpose="目的")
        assert document_to_record(record_to_document(record)) == record

    def test_document_without_answer_is_dropped(self):
        doc = Document(page_content="質問: x", metadata={"question": "x", "tags": "a"})
        assert document_to_record(doc) is None

    def test_document_tags_list(self):
        doc = Document(
            page_content="x",
            metadata={"question": "q", "answer": "a", "tags": [" A ", "b", ""]}
        )
        assert document_to_record(doc, fallback_id="x1").tags == ["a", "b"]


class TestKnowledgeMerger:
    """Tests for merging category sheets."""

    def write_sheet(self, path, rows):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("question,answer,tags\n" + "".join(rows), encoding="utf-8")

    def test_parents_then_children(self, tmp_path):
        self.write_sheet(tmp_path / "fee_rules" / "base.csv", ["料金は？,1日1000円です。,料金\n"])
        self.write_sheet(tmp_path / "fee_rules" / "details.csv", [
            "深夜料金は？,1000円追加です。,深夜料金\n",
            "延長料金は？,1日1500円です。,\n",
        ])

        records = merge_category_knowledge(tmp_path, ["fee_rules"])

        assert [r.id for r in records] == ["1", "2", "3"]
        assert records[0].chunk_type == ChunkType.parent
        assert [r.parent_id for r in records[1:]] == ["1", "1"]
        assert all(r.chunk_type == ChunkType.child for r in records[1:])
        assert records[2].tags == ["fee_rules"]

    def test_categories_merged_in_order(self, tmp_path):
        self.write_sheet(tmp_path / "vehicles_ng" / "base.csv", ["外車は？,不可です。,車種制限\n"])
        self.write_sheet(tmp_path / "reservation_rules" / "base.csv", ["予約は？,Webのみです。,予約方法\n"])

        records = merge_category_knowledge(tmp_path, ["reservation_rules", "missing", "vehicles_ng"])

        assert [r.question for r in records] == ["予約は？", "外車は？"]
        assert [r.id for r in records] == ["1", "2"]

    def test_details_without_parent_skipped(self, tmp_path):
        self.write_sheet(tmp_path / "other" / "details.csv", ["詳細,詳細です。,a\n"])
        assert merge_category_knowledge(tmp_path, ["other"]) == []

    def test_bad_sheet_names_file(self, tmp_path):
        self.write_sheet(tmp_path / "other" / "base.csv", ["only,two\n"])

        with pytest.raises(ParseError, match="other/base.csv"):
            merge_category_knowledge(tmp_path, ["other"])

    def test_update_knowledge_backs_up(self, tmp_path):
        knowledge_dir = tmp_path / "knowledge"
        self.write_sheet(knowledge_dir / "other" / "base.csv", ["駐車場は？,南インター近くです。,アクセス\n"])
        output = tmp_path / "knowledge.csv"
        output.write_text("old", encoding="utf-8")

        count = update_knowledge(knowledge_dir, output)

        assert count == 1
        assert (tmp_path / "knowledge.csv.bak").read_text(encoding="utf-8") == "old"
        assert load_knowledge_csv(output)[0].question == "駐車場は？"


class TestKnowledgeRetriever:
    """Tests for the Chroma-backed retriever with fake embeddings."""

    @pytest.fixture
    def retriever(self, tmp_path, knowledge_csv_path):
        return KnowledgeRetriever(
            persist_dir=tmp_path / "chroma",
            csv_path=knowledge_csv_path,
            use_mock=True
        )

    def test_default_paths(self):
        assert get_chroma_path().name == "chroma_db"
        assert get_knowledge_csv_path().name == "knowledge.csv"

    def test_index_built_from_csv(self, retriever):
        assert retriever.count() == 19

    def test_search_returns_classified_hits(self, retriever):
        hits = retriever.similarity_search("予約方法を教えてください", k=5)

        assert 0 < len(hits) <= 5
        questions = [hit.record.question for hit in hits]
        assert len(questions) == len(set(questions))
        for hit in hits:
            assert isinstance(hit.context, SearchContext)

    def test_exact_question_ranks_first(self, retriever, knowledge_csv_path):
        """Fake embeddings are deterministic, so identical text is the nearest neighbour."""
        records = {r.id: r for r in load_knowledge_csv(knowledge_csv_path)}
        hits = retriever.similarity_search(records["8"].page_content, k=3)

        assert hits[0].record.id == "8"
        assert hits[0].context == SearchContext.vehicles_ng

    def test_search_knowledge_drops_other_contexts(self, retriever):
        hits = retriever.search_knowledge("駐車場へのアクセスを教えてください", k=19)
        assert hits
        assert all(hit.context != SearchContext.other_contexts for hit in hits)

    def test_list_records(self, retriever):
        records = retriever.list_records(limit=5)
        assert len(records) == 5

    def test_existing_index_is_reused(self, tmp_path, knowledge_csv_path, retriever):
        reopened = KnowledgeRetriever(
            persist_dir=tmp_path / "chroma",
            csv_path=tmp_path / "missing.csv",
            use_mock=True
        )
        assert reopened.count() == 19

    def test_force_rebuild(self, tmp_path, retriever):
        csv_path = tmp_path / "small.csv"
        csv_path.write_text(HEADER + "1,q,a,,予約方法,,,\n", encoding="utf-8")

        vectorstore = build_knowledge_index(
            csv_path=csv_path,
            persist_dir=tmp_path / "chroma",
            force_rebuild=True,
            use_mock=True
        )

        assert len(vectorstore.get(include=[])["ids"]) == 1

    def test_replace_records(self, retriever):
        count = retriever.replace_records([
            make_record("a", "新しい質問", ["予約方法"]),
            make_record("b", "別の質問", ["キャンセル"]),
        ])

        assert count == 2
        assert retriever.count() == 2
        assert {r.question for r in retriever.list_records()} == {"新しい質問", "別の質問"}

    def test_delete_by_metadata(self, retriever):
        retriever.delete(where={"chunk_type": "child"})

        remaining = retriever.list_records()
        assert remaining
        assert all(r.chunk_type == ChunkType.parent for r in remaining)


class InMemoryVectorStore:
    """Minimal stand-in for the Chroma methods the retriever calls."""

    def __init__(self, records=(), fail_on_add=False):
        self.docs = {r.id: record_to_document(r) for r in records}
        self.fail_on_add = fail_on_add
        self.searches = []

    def get(self, include=None, limit=None, where=None):
        ids = list(self.docs)
        if where:
            ids = [i for i in ids if all(self.docs[i].metadata.get(k) == v for k, v in where.items())]
        ids = ids[:limit] if limit else ids
        return {
            "ids": ids,
            "metadatas": [self.docs[i].metadata for i in ids],
            "documents": [self.docs[i].page_content for i in ids],
        }

    def add_documents(self, documents, ids):
        if self.fail_on_add:
            raise RuntimeError("embedding quota exceeded")
        self.docs.update(zip(ids, documents))

    def delete(self, ids):
        for doc_id in ids:
            self.docs.pop(doc_id, None)

    def similarity_search_with_relevance_scores(self, query, k):
        self.searches.append((query, k))
        return [(doc, 0.5) for doc in list(self.docs.values())[:k]]


class TestReplaceRecords:
    """Tests for replacing the knowledge base."""

    def test_failed_indexing_keeps_existing_knowledge(self):
        store = InMemoryVectorStore(
            [make_record("1", "予約方法は？", ["予約方法"]), make_record("2", "外車は？", ["車種制限"])],
            fail_on_add=True
        )
        retriever = KnowledgeRetriever(vectorstore=store)

        with pytest.raises(UpstreamError):
            retriever.replace_records([make_record("9", "新しい質問", ["予約方法"])])

        assert list(store.docs) == ["1", "2"]

    def test_stale_records_removed_after_indexing(self):
        store = InMemoryVectorStore([
            make_record("1", "予約方法は？", ["予約方法"]),
            make_record("2", "外車は？", ["車種制限"]),
        ])
        retriever = KnowledgeRetriever(vectorstore=store)

        count = retriever.replace_records([
            make_record("2", "外車は駐車できますか？", ["車種制限"]),
            make_record("3", "キャンセル方法は？", ["キャンセル"]),
        ])

        assert count == 2
        assert sorted(store.docs) == ["2", "3"]
        assert store.docs["2"].metadata["question"] == "外車は駐車できますか？"

    def test_zero_k_returns_no_hits(self):
        store = InMemoryVectorStore([make_record("1", "予約方法は？", ["予約方法"])])
        retriever = KnowledgeRetriever(vectorstore=store)

        assert retriever.similarity_search("予約", k=0) == []
        assert store.searches == []

    def test_default_k_from_collection_config(self):
        store = InMemoryVectorStore([make_record("1", "予約方法は？", ["予約方法"])])
        retriever = KnowledgeRetriever(vectorstore=store)

        retriever.similarity_search("予約")

        assert store.searches == [("予約", get_collection_setting(KBCollection.PARK_AND_RIDE, "search_k"))]

    def test_search_settings(self):
        assert get_search_settings() == {"search_k": 6, "answer_sources": 4, "related_k": 7}


class TestKnowledgeStoreHandle:
    """Tests for the lazily initialized store handle."""

    def test_initialized_once_under_concurrency(self):
        created = []
        barrier = threading.Barrier(8)

        def factory():
            created.append(object())
            return created[-1]

        handle = KnowledgeStoreHandle(factory)
        results = []

        def worker():
            barrier.wait()
            results.append(handle.get())

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(created) == 1
        assert all(r is created[0] for r in results)
        assert handle.initialized

    def test_reset(self):
        handle = KnowledgeStoreHandle(lambda: object())
        first = handle.get()
        handle.reset()

        assert not handle.initialized
        assert handle.get() is not first
