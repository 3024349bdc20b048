"""Chat domain models."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..tokens import estimate_tokens


@dataclass(frozen=True)
class ChatMessage:
    """Chat message."""
    role: str  # "user" | "assistant" | "system"
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def is_system(self) -> bool:
        return self.role == "system"

    @property
    def token_estimate(self) -> int:
        return estimate_tokens(self.content)

    def to_llm(self) -> dict:
        return {"role": self.role, "content": self.content}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatMessage":
        return cls(
            id=data["id"],
            role=data["role"],
            content=data["content"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )
