import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator, Optional

from ragchat.core.services.chat_service import Conversation

logger = logging.getLogger(__name__)


@contextmanager
def atomic_file(path: Path, mode: str = "w") -> Iterator[IO]:
    """Open a temp file next to path; it replaces path only if the block succeeds."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, mode, encoding=None if "b" in mode else "utf-8") as f:
            yield f
        os.replace(tmp, path)
    finally:
        Path(tmp).unlink(missing_ok=True)


def write_atomic(path: Path, data: str) -> None:
    """Write text so readers never see half a file."""
    with atomic_file(path) as f:
        f.write(data)


class JsonConversationStore:
    """One JSON file per conversation: history, summaries and compression stats."""

    def __init__(self, directory: str = "./data/conversations"):
        self._directory = Path(directory)

    def _path(self, conversation_id: str) -> Path:
        return self._directory / f"{conversation_id}.json"

    def save(self, conversation: Conversation) -> None:
        write_atomic(
            self._path(conversation.id),
            json.dumps(conversation.to_dict(), ensure_ascii=False, indent=2),
        )
        logger.debug(f"Saved conversation {conversation.id}")

    def load(self, conversation_id: str) -> Optional[Conversation]:
        path = self._path(conversation_id)
        if not path.exists():
            return None
        data = json.loads(path.read_text(encoding="utf-8"))
        return Conversation.from_dict(data)

    def load_or_create(self, conversation_id: str) -> Conversation:
        return self.load(conversation_id) or Conversation(id=conversation_id)

    def delete(self, conversation_id: str) -> bool:
        path = self._path(conversation_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def list_ids(self) -> list[str]:
        if not self._directory.exists():
            return []
        return sorted(p.stem for p in self._directory.glob("*.json"))
