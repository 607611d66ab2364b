"""
Answer composition stage.
Builds the context block from retrieved records and asks the LLM for a
customer-support answer.
"""

from ..errors import UpstreamError
from ..llm_client import LLMProvider
from ..schemas import KnowledgeRecord, SearchContext, SearchHit
from ..utils import get_logger

logger = get_logger("pipeline.answer")


GREETING_LINE = "お問い合わせいただきありがとうございます。"
CLOSING_LINE = "その他ご不明な点がございましたら、お気軽にお問い合わせください。"

answer_system_prompt = """あなたは空港パーク＆ライド駐車場のカスタマーサポート担当者です。

回答は必ず次のルールに従ってください:
1. 回答の最初の行は「{greeting}」としてください
2. 以下の「情報」に含まれる内容だけを使って回答してください。推測や情報にない内容は含めないでください
3. 情報に含まれていない内容を質問された場合は「申し訳ありませんが、その情報は提供できません」と回答してください
4. 手順・条件・料金など列挙できる内容は「- 」で始まる箇条書きで示してください
5. 回答の最後の行は「{closing}」としてください
6. 日本語で回答してください

情報:
{context}"""


def build_context_block(records: list[KnowledgeRecord]) -> str:
    """Concatenate record answers, one per line."""
    return "\n".join(record.answer for record in records)


def select_answer_sources(hits: list[SearchHit], limit: int = 4) -> list[SearchHit]:
    """
    Pick the hits used as answer context.

    The top hit comes first, followed by hits sharing its context. When the
    top hit has no known context the leading hits are used as they are.
    """
    if not hits:
        return []

    top = hits[0]
    if top.context == SearchContext.other_contexts:
        return hits[:limit]

    siblings = [hit for hit in hits[1:] if hit.context == top.context]
    return [top] + siblings[:limit - 1]


def build_answer_prompt(records: list[KnowledgeRecord]) -> str:
    return answer_system_prompt.format(
        greeting=GREETING_LINE,
        closing=CLOSING_LINE,
        context=build_context_block(records)
    )


def compose_answer(
    query: str,
    records: list[KnowledgeRecord],
    llm: LLMProvider
) -> str:
    """
    Generate the answer for a query from the retrieved records.

    Args:
        query: User question
        records: Records whose answers form the context block
        llm: LLM provider instance

    Returns:
        The generated answer, verbatim

    Raises:
        UpstreamError: If the generation call fails
    """
    if llm.is_mock and hasattr(llm, "mock_answer"):
        return llm.mock_answer(query, records)

    try:
        return llm.complete(query, system_prompt=build_answer_prompt(records))
    except UpstreamError:
        raise
    except Exception as e:
        logger.error(f"Answer generation failed: {e}")
        raise UpstreamError(f"Answer generation failed: {e}") from e
