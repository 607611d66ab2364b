"""
Query normalization before knowledge base search.
"""

import re

from ..errors import ValidationError


MAX_QUERY_LENGTH = 1000

# Vehicle name patterns -> canonical knowledge base question
vehicle_query_map = [
    (
        re.compile(
            r"(ベンツ|BMW|アウディ|ボルボ|プジョー|シトロエン|アストンマーチン|MINI"
            r"|フォルクスワーゲン|テスラ|ポルシェ|ジャガー|ランドローバー)",
            re.IGNORECASE
        ),
        "外車は駐車できますか？",
    ),
    (
        re.compile(r"(レクサス|FJクルーザー|ハイラックス|ランドクルーザー|プラド|グランドキャビン)", re.IGNORECASE),
        "高級車（レクサスなど）は駐車できますか？",
    ),
    (
        re.compile(r"(キャラバン|ハイエース|パジェロ|プレジデント|グランエース)", re.IGNORECASE),
        "車の大きさに制限はありますか？",
    ),
]


def validate_query(query: str | None) -> str:
    """Strip a query and reject empty or oversized input."""
    if query is None or not isinstance(query, str):
        raise ValidationError("Query is required")
    query = query.strip()
    if not query:
        raise ValidationError("Query is required")
    if len(query) > MAX_QUERY_LENGTH:
        raise ValidationError(f"Query must be at most {MAX_QUERY_LENGTH} characters")
    return query


def map_vehicle_query(query: str) -> str:
    """Rewrite a query naming a specific vehicle to the matching canonical question."""
    for pattern, canonical in vehicle_query_map:
        if pattern.search(query):
            return canonical
    return query
