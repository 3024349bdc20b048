"""History compression domain models."""
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional

from .chat import ChatMessage


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ConversationSummary:
    """Summary of a contiguous run of older messages. Immutable."""
    summary: str
    original_messages_count: int
    original_tokens_estimate: int
    summary_tokens_estimate: int
    start_date: datetime
    end_date: datetime
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def tokens_saved(self) -> int:
        return self.original_tokens_estimate - self.summary_tokens_estimate

    @property
    def compression_ratio(self) -> float:
        return self.summary_tokens_estimate / max(self.original_tokens_estimate, 1)

    @property
    def is_beneficial(self) -> bool:
        return self.summary_tokens_estimate < self.original_tokens_estimate

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "summary": self.summary,
            "original_messages_count": self.original_messages_count,
            "original_tokens_estimate": self.original_tokens_estimate,
            "summary_tokens_estimate": self.summary_tokens_estimate,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConversationSummary":
        return cls(
            id=data["id"],
            summary=data["summary"],
            original_messages_count=int(data["original_messages_count"]),
            original_tokens_estimate=int(data["original_tokens_estimate"]),
            summary_tokens_estimate=int(data["summary_tokens_estimate"]),
            start_date=datetime.fromisoformat(data["start_date"]),
            end_date=datetime.fromisoformat(data["end_date"]),
            created_at=datetime.fromisoformat(data["created_at"])
            if data.get("created_at")
            else _utcnow(),
        )


@dataclass(frozen=True)
class CompressedConversationHistory:
    """Summaries of older messages followed by recent verbatim messages.

    Instances are snapshots: every change produces a new object, so a
    reader holding one never sees it move under its feet.
    """
    summaries: tuple[ConversationSummary, ...] = ()
    recent_messages: tuple[ChatMessage, ...] = ()

    @property
    def is_compressed(self) -> bool:
        return bool(self.summaries)

    @property
    def recent_tokens_estimate(self) -> int:
        return sum(m.token_estimate for m in self.recent_messages)

    @property
    def total_tokens_estimate(self) -> int:
        return sum(s.summary_tokens_estimate for s in self.summaries) + self.recent_tokens_estimate

    @property
    def original_tokens_estimate(self) -> int:
        return sum(s.original_tokens_estimate for s in self.summaries) + self.recent_tokens_estimate

    @property
    def total_tokens_saved(self) -> int:
        return sum(s.tokens_saved for s in self.summaries)

    @property
    def compression_ratio(self) -> float:
        original = self.original_tokens_estimate
        if original <= 0:
            return 1.0
        return self.total_tokens_estimate / original

    def with_message(self, message: ChatMessage) -> "CompressedConversationHistory":
        return replace(self, recent_messages=self.recent_messages + (message,))

    def build_message_array(self) -> list[dict]:
        """Message list for the LLM: summaries first, then recent turns."""
        result = [
            {
                "role": "user",
                "content": f"[Previous conversation summary]: {s.summary}",
            }
            for s in self.summaries
        ]
        result.extend(m.to_llm() for m in self.recent_messages if not m.is_system)
        return result

    def to_dict(self) -> dict[str, Any]:
        return {
            "summaries": [s.to_dict() for s in self.summaries],
            "recent_messages": [m.to_dict() for m in self.recent_messages],
            "original_tokens_estimate": self.original_tokens_estimate,
            "total_tokens_estimate": self.total_tokens_estimate,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompressedConversationHistory":
        # Token totals are derived from the records and recomputed on load.
        return cls(
            summaries=tuple(
                ConversationSummary.from_dict(s) for s in data.get("summaries", [])
            ),
            recent_messages=tuple(
                ChatMessage.from_dict(m) for m in data.get("recent_messages", [])
            ),
        )


@dataclass(frozen=True)
class CompressionStats:
    """Running totals over successful compressions. Never decreases."""
    total_compressions: int = 0
    total_tokens_saved: int = 0
    total_original_tokens: int = 0
    total_compressed_tokens: int = 0
    last_compression_date: Optional[datetime] = None

    def record(
        self, summary: ConversationSummary, when: Optional[datetime] = None
    ) -> "CompressionStats":
        """Return stats with one more compression event accounted for."""
        return CompressionStats(
            total_compressions=self.total_compressions + 1,
            total_tokens_saved=self.total_tokens_saved + max(0, summary.tokens_saved),
            total_original_tokens=self.total_original_tokens + summary.original_tokens_estimate,
            total_compressed_tokens=self.total_compressed_tokens + summary.summary_tokens_estimate,
            last_compression_date=when or _utcnow(),
        )

    @property
    def average_compression_ratio(self) -> float:
        if self.total_original_tokens <= 0:
            return 0.0
        return self.total_compressed_tokens / self.total_original_tokens

    @property
    def average_tokens_saved(self) -> float:
        if self.total_compressions == 0:
            return 0.0
        return self.total_tokens_saved / self.total_compressions

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_compressions": self.total_compressions,
            "total_tokens_saved": self.total_tokens_saved,
            "total_original_tokens": self.total_original_tokens,
            "total_compressed_tokens": self.total_compressed_tokens,
            "last_compression_date": self.last_compression_date.isoformat()
            if self.last_compression_date
            else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompressionStats":
        last = data.get("last_compression_date")
        return cls(
            total_compressions=int(data.get("total_compressions", 0)),
            total_tokens_saved=int(data.get("total_tokens_saved", 0)),
            total_original_tokens=int(data.get("total_original_tokens", 0)),
            total_compressed_tokens=int(data.get("total_compressed_tokens", 0)),
            last_compression_date=datetime.fromisoformat(last) if last else None,
        )
