"""
Per-context tag adjacency table and tag relatedness check.
"""

import json
import os
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Iterable

from ..errors import ConfigurationError
from ..schemas import SearchContext
from ..utils import get_logger

logger = get_logger("pipeline.adjacency")


# Tag -> related tags, per context. Relations are not necessarily symmetric.
default_tag_adjacency: dict[SearchContext, dict[str, list[str]]] = {
    SearchContext.default: {
        "予約方法": ["インターネット予約", "web予約限定", "予約条件", "電話問い合わせ"],
        "インターネット予約": ["予約方法", "web予約限定"],
        "電話問い合わせ": ["予約方法", "軽自動車枠"],
    },
    SearchContext.international_ng: {
        "国際線制限": ["利用不可", "出国", "帰国", "第3ターミナル", "国際線ターミナル"],
        "利用不可": ["見送り不可", "迎え不可", "施設利用不可"],
        "予約分割不可": ["併用不可", "国際線制限"],
        "国際線ターミナル": ["第3ターミナル", "施設利用不可"],
    },
    SearchContext.vehicles_ng: {
        "車種制限": [
            "輸入車不可",
            "高級車不可",
            "対象外車種",
            "寸法制限",
            "特殊車両不可",
            "マニュアル車不可",
        ],
        "輸入車不可": ["車種制限", "高級車不可"],
        "高級車不可": ["車種制限", "輸入車不可"],
        "事前確認": ["車種確認", "代替車両予約"],
        "国産車案内": ["代替車両予約", "車種確認"],
    },
    SearchContext.reservation_rules: {
        "予約変更": ["変更可能", "変更不可項目", "日程変更"],
        "予約条件": ["仮押さえ不可", "分割予約不可", "時間制限"],
        "利用延長": ["予約変更", "特例対応"],
        "変更可能": ["予約変更", "日程変更"],
        "変更不可項目": ["予約変更", "予約条件"],
    },
    SearchContext.cancellation: {
        "キャンセル": ["手続き", "料金", "キャンセル料"],
        "手続き": ["キャンセル", "キャンセル料"],
        "料金": ["キャンセル", "キャンセル料"],
    },
    SearchContext.fee_rules: {
        "料金": ["深夜料金", "追加料金", "延長料金"],
        "深夜料金": ["料金", "追加料金"],
        "追加料金": ["料金", "深夜料金"],
    },
}


def normalize_tag(tag: str) -> str:
    return tag.strip().lower()


class TagAdjacencyTable:
    """
    Immutable mapping of context -> tag -> related tags.

    Built once at startup and passed to the related-question selector.
    A tag pair is related when the tags are equal, when either lists the
    other, or when both are listed under a common key (one hop only).
    """

    def __init__(
        self,
        tables: Mapping[SearchContext, Mapping[str, Iterable[str]]],
        fallback_to_default: bool = False
    ):
        frozen = {}
        for context, mapping in tables.items():
            context = SearchContext(context)
            if context == SearchContext.other_contexts:
                raise ValueError("other_contexts cannot have an adjacency table")
            frozen[context] = MappingProxyType({
                normalize_tag(tag): frozenset(normalize_tag(t) for t in related)
                for tag, related in mapping.items()
            })
        self._tables = MappingProxyType(frozen)
        self.fallback_to_default = fallback_to_default

    @classmethod
    def from_json_file(cls, path: str | Path, fallback_to_default: bool = False) -> "TagAdjacencyTable":
        """Load a table from a JSON object keyed by context name."""
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            tables = {SearchContext(name): mapping for name, mapping in data.items()}
            return cls(tables, fallback_to_default=fallback_to_default)
        except (OSError, json.JSONDecodeError, ValueError, AttributeError) as e:
            raise ConfigurationError(f"Invalid tag adjacency file {path}: {e}") from e

    def contexts(self) -> list[SearchContext]:
        return list(self._tables.keys())

    def table_for(self, context: SearchContext) -> Mapping[str, frozenset[str]] | None:
        """Get the adjacency mapping for a context, honouring the fallback switch."""
        if context == SearchContext.other_contexts:
            return None
        table = self._tables.get(context)
        if table is None and self.fallback_to_default:
            logger.warning(f"No adjacency table for {context.value}, using default table")
            table = self._tables.get(SearchContext.default)
        return table

    def are_related(self, tag_a: str, tag_b: str, context: SearchContext) -> bool:
        """
        Check whether two tags are related within a context.

        Args:
            tag_a: First tag
            tag_b: Second tag
            context: Context whose adjacency table is consulted

        Returns:
            True if the tags are equal, directly adjacent in either
            direction, or siblings under a shared key
        """
        a = normalize_tag(tag_a)
        b = normalize_tag(tag_b)
        if a == b:
            return True

        table = self.table_for(context)
        if not table:
            return False

        # Direct, checked both ways
        if b in table.get(a, ()) or a in table.get(b, ()):
            return True

        # Siblings under a common key
        return any(a in related and b in related for related in table.values())

    def any_related(self, tags_a: Iterable[str], tags_b: Iterable[str], context: SearchContext) -> bool:
        """Whether any tag of tags_a is related to any tag of tags_b."""
        tags_b = list(tags_b)
        return any(
            self.are_related(a, b, context)
            for a in tags_a
            for b in tags_b
        )


def load_tag_adjacency(
    path: str | Path | None = None,
    fallback_to_default: bool | None = None
) -> TagAdjacencyTable:
    """
    Build the process-wide adjacency table.

    Uses TAG_ADJACENCY_PATH if set, otherwise the built-in table.
    TAG_ADJACENCY_FALLBACK=1 enables the default-table fallback.
    """
    if fallback_to_default is None:
        fallback_to_default = os.getenv("TAG_ADJACENCY_FALLBACK", "0").lower() in ("1", "true", "yes")

    path = path or os.getenv("TAG_ADJACENCY_PATH")
    if path:
        logger.info(f"Loading tag adjacency table from {path}")
        return TagAdjacencyTable.from_json_file(path, fallback_to_default=fallback_to_default)

    return TagAdjacencyTable(default_tag_adjacency, fallback_to_default=fallback_to_default)
