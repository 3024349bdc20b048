from pathlib import Path

from ragchat.core.services.chunker import SOURCE_LANGUAGES


class TextLoader:
    """Plain text, markdown and source code files."""

    EXTENSIONS = {".txt", ".md", ".markdown", ".rst", *SOURCE_LANGUAGES}

    def supports(self, file_path: Path) -> bool:
        return file_path.suffix.lower() in self.EXTENSIONS

    def load(self, file_path: Path) -> str:
        return file_path.read_text(encoding="utf-8", errors="replace")
