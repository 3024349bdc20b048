"""Chat service - coordinates history compression, retrieval and the LLM."""

import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Optional

from ..errors import CompressionNotBeneficial, ConfigurationError
from ..models.chat import ChatMessage
from ..models.compression import CompressedConversationHistory, CompressionStats
from ..models.rag import RAGResponse
from ..protocols.llm import LLMProtocol
from ..tokens import estimate_tokens
from .compression_service import HistoryCompressionService
from .rag_service import RAGService

logger = logging.getLogger(__name__)

OVERFLOW_POLICIES = ("truncate", "refuse")


@dataclass
class Conversation:
    """Per-conversation state.

    ``history`` is an immutable snapshot that gets swapped, never edited,
    so work started on an older snapshot keeps seeing what it started with.
    """
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    history: CompressedConversationHistory = field(
        default_factory=CompressedConversationHistory
    )
    stats: CompressionStats = field(default_factory=CompressionStats)

    def snapshot(self) -> CompressedConversationHistory:
        return self.history

    def append(self, message: ChatMessage) -> None:
        self.history = self.history.with_message(message)

    def merge(
        self,
        base: CompressedConversationHistory,
        updated: CompressedConversationHistory,
        stats: CompressionStats,
    ) -> bool:
        """Apply a compression computed from ``base``.

        Messages appended since ``base`` are kept after the compressed part.
        If the history was compressed by someone else in the meantime, the
        update is dropped.
        """
        current = self.history
        n = len(base.recent_messages)
        if current.summaries != base.summaries or current.recent_messages[:n] != base.recent_messages:
            logger.info(f"Conversation {self.id}: stale compression discarded")
            return False

        self.history = replace(
            updated, recent_messages=updated.recent_messages + current.recent_messages[n:]
        )
        self.stats = stats
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "history": self.history.to_dict(),
            "stats": self.stats.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Conversation":
        return cls(
            id=data["id"],
            history=CompressedConversationHistory.from_dict(data.get("history", {})),
            stats=CompressionStats.from_dict(data.get("stats", {})),
        )


@dataclass(frozen=True)
class ChatReply:
    """Assistant reply with the bookkeeping the UI shows."""
    content: str
    rag: Optional[RAGResponse]
    history_tokens: int
    compression_ratio: float
    truncated: bool = False


class ChatService:
    """Chat service that keeps history within budget and answers with RAG."""

    def __init__(
        self,
        llm: LLMProtocol,
        compressor: HistoryCompressionService,
        rag: Optional[RAGService] = None,
        overflow_policy: str = "truncate",
    ):
        """Initialize chat service.

        Args:
            llm: LLM client.
            compressor: History compression service.
            rag: RAG service; plain chat when omitted.
            overflow_policy: What to do when compression cannot meet the
                budget: "truncate" drops oldest messages, "refuse" raises.
        """
        if overflow_policy not in OVERFLOW_POLICIES:
            raise ConfigurationError(f"Unknown overflow policy: {overflow_policy!r}")
        self._llm = llm
        self._compressor = compressor
        self._rag = rag
        self._overflow_policy = overflow_policy

    async def prepare_history(
        self, conversation: Conversation, new_message: str
    ) -> tuple[CompressedConversationHistory, bool]:
        """Bring history within budget before a new turn.

        Returns:
            History to send and whether it had to be truncated.

        Raises:
            CompressionNotBeneficial: Policy is "refuse" and compression
                could not meet the budget.
        """
        base = conversation.snapshot()
        stats = conversation.stats
        new_tokens = estimate_tokens(new_message)

        if not self._compressor.should_compress(base, new_tokens):
            return base, False

        try:
            history, stats = await self._compressor.fit_to_budget(base, stats, new_tokens)
            conversation.merge(base, history, stats)
            return history, False
        except CompressionNotBeneficial as e:
            history, stats = e.partial or (base, stats)
            if self._overflow_policy == "refuse":
                conversation.merge(base, history, stats)
                raise

        logger.warning(
            f"Conversation {conversation.id}: compression cannot meet the budget, truncating"
        )
        history = self._compressor.truncate(history, new_tokens)
        conversation.merge(base, history, stats)
        return history, True

    async def send_message(
        self,
        conversation: Conversation,
        text: str,
        use_rag: bool = True,
    ) -> ChatReply:
        """Process one user turn.

        Args:
            conversation: Conversation state.
            text: User message.
            use_rag: Answer from retrieved documents when a RAG service is set.

        Returns:
            Assistant reply.
        """
        history, truncated = await self.prepare_history(conversation, text)
        messages = history.build_message_array()
        conversation.append(ChatMessage(role="user", content=text))

        rag_response = None
        if use_rag and self._rag is not None:
            rag_response = await self._rag.answer(text, history=messages)
            content = rag_response.answer
        else:
            content = await self._llm.generate(text, history=messages)

        conversation.append(ChatMessage(role="assistant", content=content))

        return ChatReply(
            content=content,
            rag=rag_response,
            history_tokens=history.total_tokens_estimate,
            compression_ratio=history.compression_ratio,
            truncated=truncated,
        )

    async def stream_message(
        self, conversation: Conversation, text: str
    ) -> AsyncIterator[str]:
        """Stream a plain (non-RAG) reply; the turn is recorded when done.

        Yields:
            Response tokens.
        """
        history, _ = await self.prepare_history(conversation, text)
        conversation.append(ChatMessage(role="user", content=text))

        tokens: list[str] = []
        async for token in self._llm.chat_stream(text, history=history.build_message_array()):
            tokens.append(token)
            yield token

        conversation.append(ChatMessage(role="assistant", content="".join(tokens)))
