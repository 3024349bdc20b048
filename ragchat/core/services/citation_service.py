"""Citation enforcer - structural checks of generated answers."""

import logging
import re
from typing import Sequence

from ..errors import ConfigurationError
from ..models.document import SearchResult
from ..models.rag import CitationValidation

logger = logging.getLogger(__name__)

CHECK_WEIGHT = 0.25

_SOURCE_MARKER = re.compile(r"\[(?:(?:Source|Источник)\s+)?(\d+)\]", re.IGNORECASE)
_SOURCES_HEADER = re.compile(
    r"^[ \t]*(?:#+[ \t]*)?\**[ \t]*(?:Sources|Источники)[ \t]*\**[ \t]*(:?)[ \t]*\**[ \t]*(.*)$",
    re.IGNORECASE | re.MULTILINE,
)
_SOURCE_ENTRY = re.compile(r"^\s*(?:\[\d+\]|\d+[.)]|[-*•])\s*\S", re.MULTILINE)
_CODE_BLOCK = re.compile(r"```[^\n]*\n.*?```", re.DOTALL)


class CitationEnforcer:
    """Checks that an answer attributes the chunks it was given.

    Four checks worth 0.25 each: numbered source markers, a trailing
    sources section, file name mentions, and fenced code when any context
    chunk is source code (passes vacuously otherwise).
    """

    def __init__(self, pass_threshold: float = 1.0):
        """Initialize enforcer.

        Args:
            pass_threshold: Minimum score for is_valid.
        """
        if not 0.0 <= pass_threshold <= 1.0:
            raise ConfigurationError(
                f"pass_threshold must be in [0, 1], got {pass_threshold}"
            )
        self._pass_threshold = pass_threshold

    @property
    def pass_threshold(self) -> float:
        return self._pass_threshold

    def validate(
        self, answer: str, results: Sequence[SearchResult]
    ) -> CitationValidation:
        """Validate citations of answer against the chunks supplied as context."""
        markers = source_markers(answer, len(results))
        has_sources_section = _has_sources_section(answer)
        has_code_blocks = bool(_CODE_BLOCK.search(answer))
        code_required = any(r.chunk.is_source_code for r in results)

        answer_lower = answer.lower()
        has_file_references = any(
            r.chunk.file_name and r.chunk.file_name.lower() in answer_lower
            for r in results
        )

        if not results:
            # Nothing was retrieved, so nothing can be cited
            score = 1.0
        else:
            checks = (
                bool(markers),
                has_sources_section,
                has_file_references,
                has_code_blocks or not code_required,
            )
            score = CHECK_WEIGHT * sum(checks)

        validation = CitationValidation(
            has_source_markers=bool(markers),
            has_sources_section=has_sources_section,
            has_file_references=has_file_references,
            has_code_blocks=has_code_blocks,
            citation_count=len(markers),
            score=score,
            is_valid=score >= self._pass_threshold,
            code_blocks_required=code_required,
        )

        logger.debug(
            f"Citations: markers={validation.citation_count} "
            f"sources={has_sources_section} files={has_file_references} "
            f"code={has_code_blocks} score={score:.2f}"
        )
        return validation


def source_markers(answer: str, source_count: int) -> set[int]:
    """Distinct marker numbers that point at a supplied source."""
    return {
        n
        for n in (int(m.group(1)) for m in _SOURCE_MARKER.finditer(answer))
        if 1 <= n <= source_count
    }


def _has_sources_section(answer: str) -> bool:
    for header in reversed(list(_SOURCES_HEADER.finditer(answer))):
        colon, rest = header.group(1), header.group(2).strip()
        if rest and not colon:
            # "Sources" opening a sentence, not a header
            continue
        # Entries may follow on the header line itself: "Sources: [1] a.md, [2] b.md"
        return bool(_SOURCE_ENTRY.search(rest + "\n" + answer[header.end():]))
    return False
