"""History compression service - token-budgeted rolling summaries."""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional, Sequence

from ..errors import (
    CompressionNotBeneficial,
    ConfigurationError,
    ExternalServiceError,
    ServiceErrorKind,
)
from ..models.chat import ChatMessage
from ..models.compression import (
    CompressedConversationHistory,
    CompressionStats,
    ConversationSummary,
)
from ..protocols.llm import LLMProtocol
from ..tokens import estimate_tokens

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = """You create concise summaries of conversation segments.
Preserve all critical information while reducing token usage.

Rules:
1. Preserve key facts, decisions, and conclusions
2. Maintain context about what was discussed
3. Keep technical details, code snippets, and specific requirements
4. Note any unresolved questions or pending tasks
5. Use compact, information-dense language
6. Avoid redundancy and pleasantries

Write a coherent paragraph or a structured list, depending on content complexity."""

SUMMARY_PROMPT = """Summarize the following conversation segment, preserving all important information:

{conversation}

Summary:"""


@dataclass(frozen=True)
class CompressionResult:
    """New history and stats after one committed compression."""
    history: CompressedConversationHistory
    stats: CompressionStats
    summary: ConversationSummary
    folded_messages: int


class HistoryCompressionService:
    """Folds the oldest recent messages into summaries when over budget.

    Inputs are never mutated: every operation takes a history snapshot and
    returns a new one, so concurrent readers keep a stable view.
    """

    def __init__(
        self,
        summarizer: LLMProtocol,
        token_budget: int = 4000,
        fold_fraction: float = 0.5,
        min_recent_messages: int = 2,
        timeout: float = 60.0,
    ):
        """Initialize compression service.

        Args:
            summarizer: Answer generator used for summaries.
            token_budget: Max estimated tokens of recent messages plus the new one.
            fold_fraction: Share of the budget folded per compression.
            min_recent_messages: Newest messages that are never folded.
            timeout: Seconds allowed for one summary call.
        """
        if token_budget <= 0:
            raise ConfigurationError(f"token_budget must be positive, got {token_budget}")
        if not 0 < fold_fraction <= 1:
            raise ConfigurationError(f"fold_fraction must be in (0, 1], got {fold_fraction}")
        if min_recent_messages < 0:
            raise ConfigurationError(
                f"min_recent_messages must be >= 0, got {min_recent_messages}"
            )
        self._summarizer = summarizer
        self._token_budget = token_budget
        self._fold_fraction = fold_fraction
        self._min_recent = min_recent_messages
        self._timeout = timeout

    @property
    def token_budget(self) -> int:
        return self._token_budget

    def should_compress(
        self, history: CompressedConversationHistory, new_message_tokens: int = 0
    ) -> bool:
        """True when recent messages plus the new one exceed the budget."""
        return history.recent_tokens_estimate + new_message_tokens > self._token_budget

    def select_run(self, history: CompressedConversationHistory) -> list[ChatMessage]:
        """Oldest contiguous run of recent messages to fold.

        Takes messages until the run reaches ``fold_fraction * token_budget``
        tokens, always at least one, never the newest ``min_recent_messages``.
        """
        foldable = len(history.recent_messages) - self._min_recent
        if foldable <= 0:
            return []

        target = self._fold_fraction * self._token_budget
        run: list[ChatMessage] = []
        tokens = 0
        for message in history.recent_messages[:foldable]:
            if run and tokens + message.token_estimate > target:
                break
            run.append(message)
            tokens += message.token_estimate
        return run

    async def summarize(self, messages: Sequence[ChatMessage]) -> ConversationSummary:
        """Summarize a run of messages.

        Raises:
            ExternalServiceError: Summarizer failed, timed out or replied empty.
        """
        content = [m for m in messages if not m.is_system]
        if not content:
            raise CompressionNotBeneficial(0, 0, "no content messages to compress")

        try:
            summary = await asyncio.wait_for(
                self._summarizer.generate(
                    SUMMARY_PROMPT.format(conversation=build_conversation_text(content)),
                    system=SUMMARY_SYSTEM_PROMPT,
                ),
                self._timeout,
            )
        except asyncio.TimeoutError as e:
            raise ExternalServiceError(
                "summarizer", ServiceErrorKind.TIMEOUT, f"no summary within {self._timeout:.0f}s"
            ) from e

        summary = summary.strip()
        if not summary:
            raise ExternalServiceError(
                "summarizer", ServiceErrorKind.MALFORMED_RESPONSE, "empty summary"
            )
        return ConversationSummary(
            summary=summary,
            # System messages in the run are folded away too, so they count
            original_messages_count=len(messages),
            original_tokens_estimate=sum(m.token_estimate for m in messages),
            summary_tokens_estimate=estimate_tokens(summary),
            start_date=messages[0].timestamp,
            end_date=messages[-1].timestamp,
        )

    def commit(
        self,
        history: CompressedConversationHistory,
        stats: CompressionStats,
        summary: ConversationSummary,
        folded_messages: int,
        when: Optional[datetime] = None,
    ) -> CompressionResult:
        """Apply a summary of the first ``folded_messages`` recent messages.

        Raises:
            CompressionNotBeneficial: Summary is not smaller than the original.
        """
        if not summary.is_beneficial:
            raise CompressionNotBeneficial(
                summary.original_tokens_estimate, summary.summary_tokens_estimate
            )
        if not 0 < folded_messages <= len(history.recent_messages):
            raise ValueError(
                f"Cannot fold {folded_messages} of {len(history.recent_messages)} messages"
            )

        new_history = replace(
            history,
            summaries=history.summaries + (summary,),
            recent_messages=history.recent_messages[folded_messages:],
        )
        new_stats = stats.record(summary, when or datetime.now(timezone.utc))

        logger.info(
            f"Compressed {folded_messages} messages: "
            f"{summary.original_tokens_estimate} → {summary.summary_tokens_estimate} tokens "
            f"(saved {summary.tokens_saved}, total compressions {new_stats.total_compressions})"
        )
        return CompressionResult(
            history=new_history,
            stats=new_stats,
            summary=summary,
            folded_messages=folded_messages,
        )

    async def compress(
        self,
        history: CompressedConversationHistory,
        stats: CompressionStats,
    ) -> CompressionResult:
        """Fold the oldest run of recent messages into one new summary.

        Raises:
            CompressionNotBeneficial: Nothing to fold, or the summary is not smaller.
            ExternalServiceError: Summarizer failed.
        """
        run = self.select_run(history)
        if not run:
            raise CompressionNotBeneficial(
                history.recent_tokens_estimate,
                history.recent_tokens_estimate,
                "no messages available to fold",
            )

        summary = await self.summarize(run)
        try:
            return self.commit(history, stats, summary, len(run))
        except CompressionNotBeneficial:
            logger.warning(
                f"Compression discarded: summary ~{summary.summary_tokens_estimate} tokens "
                f"is not smaller than ~{summary.original_tokens_estimate}"
            )
            raise

    async def fit_to_budget(
        self,
        history: CompressedConversationHistory,
        stats: CompressionStats,
        new_message_tokens: int = 0,
    ) -> tuple[CompressedConversationHistory, CompressionStats]:
        """Compress repeatedly until the next turn fits the budget.

        Raises:
            CompressionNotBeneficial: Budget cannot be met by compression.
                Compressions committed before the failure are attached as
                ``partial`` so the caller can keep them.
        """
        while self.should_compress(history, new_message_tokens):
            try:
                result = await self.compress(history, stats)
            except CompressionNotBeneficial as e:
                e.partial = (history, stats)
                raise
            history, stats = result.history, result.stats
        return history, stats

    def truncate(
        self, history: CompressedConversationHistory, new_message_tokens: int = 0
    ) -> CompressedConversationHistory:
        """Hard fallback: drop oldest recent messages until the budget holds."""
        recent = list(history.recent_messages)
        tokens = history.recent_tokens_estimate
        dropped = 0
        while recent and tokens + new_message_tokens > self._token_budget:
            tokens -= recent.pop(0).token_estimate
            dropped += 1

        if dropped:
            logger.warning(f"History truncated: dropped {dropped} oldest messages")
        return replace(history, recent_messages=tuple(recent))


def build_conversation_text(messages: Sequence[ChatMessage]) -> str:
    """Render messages as a plain transcript."""
    return "".join(
        f"{'User' if m.role == 'user' else 'Assistant'}: {m.content}\n\n" for m in messages
    )
