"""
Context classification for knowledge records.
Maps a record's tags to one of the fixed support contexts.
"""

from typing import Iterable

from ..schemas import SearchContext


# Checked in order; the first rule with a matching keyword wins.
context_rules: list[tuple[SearchContext, tuple[str, ...]]] = [
    (SearchContext.cancellation, ("キャンセル",)),
    (SearchContext.fee_rules, ("深夜料金", "追加料金", "料金詳細")),
    (SearchContext.default, ("予約方法",)),
    (SearchContext.international_ng, ("国際線",)),
    (SearchContext.vehicles_ng, ("車種制限",)),
    (SearchContext.reservation_rules, ("予約変更",)),
]


def classify(tags: Iterable[str]) -> SearchContext:
    """
    Classify a tag sequence into a support context.

    Tags are joined into one lowercase string and searched for keyword
    substrings, so a tag such as "国際線ターミナル" also matches "国際線".

    Args:
        tags: Tags of a knowledge record

    Returns:
        The matching SearchContext, or other_contexts when nothing matches
    """
    tag_str = ",".join(tags).lower()
    if not tag_str:
        return SearchContext.other_contexts

    for context, keywords in context_rules:
        if any(kw in tag_str for kw in keywords):
            return context

    return SearchContext.other_contexts
