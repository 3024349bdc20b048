"""RAG answer domain models."""
import json
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from .document import SearchResult

_JSON_BLOCK = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


@dataclass(frozen=True)
class CitationValidation:
    """Structural citation check of a generated answer."""
    has_source_markers: bool
    has_sources_section: bool
    has_file_references: bool
    has_code_blocks: bool
    citation_count: int
    score: float
    is_valid: bool
    code_blocks_required: bool = False

    @property
    def summary(self) -> str:
        def mark(flag: bool) -> str:
            return "yes" if flag else "no"

        return (
            f"Source markers: {mark(self.has_source_markers)}\n"
            f"Sources section: {mark(self.has_sources_section)}\n"
            f"File references: {mark(self.has_file_references)}\n"
            f"Code blocks: {mark(self.has_code_blocks)}"
            f"{'' if self.code_blocks_required else ' (not required)'}\n"
            f"Citations: {self.citation_count}\n"
            f"Score: {self.score:.0%}"
        )


@dataclass(frozen=True)
class ParsedAnswer:
    """Optional structured companion of a raw answer."""
    answer: str
    confidence: Optional[float] = None
    additional_info: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> Optional["ParsedAnswer"]:
        """Best-effort parse of a JSON answer; None when text is plain."""
        candidate = text.strip()
        match = _JSON_BLOCK.search(candidate)
        if match:
            candidate = match.group(1)
        if not candidate.startswith("{"):
            return None

        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            return None

        if not isinstance(data, dict) or not isinstance(data.get("answer"), str):
            return None

        confidence = data.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            confidence = None

        info = data.get("additional_info", data.get("additionalInfo"))
        return cls(
            answer=data["answer"],
            confidence=float(confidence) if confidence is not None else None,
            additional_info=info if isinstance(info, str) else None,
        )


@dataclass(frozen=True)
class RAGResponse:
    """Answer produced for one question."""
    answer: str
    used_chunks: tuple[SearchResult, ...]
    question: str
    processing_time: float
    validation: Optional[CitationValidation] = None
    parsed: Optional[ParsedAnswer] = None

    @property
    def sources(self) -> list[str]:
        seen: dict[str, None] = {}
        for r in self.used_chunks:
            seen.setdefault(r.chunk.file_name, None)
        return list(seen)


@dataclass(frozen=True)
class RAGComparison:
    """Answer with retrieved context next to the plain answer."""
    question: str
    with_rag: RAGResponse
    without_rag: str
    no_rag_processing_time: float


@dataclass
class RerankingComparison:
    """Several reranking strategies run on the same candidates."""
    question: str
    candidates: list[SearchResult]
    results: dict[str, list[SearchResult]] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    def summary(self) -> dict[str, Any]:
        rows: dict[str, Any] = {}
        for name, results in self.results.items():
            rows[name] = {
                "count": len(results),
                "min_similarity": results[-1].similarity if results else None,
            }
        for name, error in self.errors.items():
            rows[name] = {"error": error}
        return rows
