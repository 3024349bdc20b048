import asyncio
import logging
import re
from abc import ABC, abstractmethod

import numpy as np

from ..errors import ConfigurationError, ExternalServiceError
from ..models.document import SearchResult, with_dense_ranks
from ..protocols.llm import LLMProtocol

logger = logging.getLogger(__name__)

GAP_EPSILON = 1e-9

JUDGE_SYSTEM_PROMPT = """You judge whether a document fragment helps answer a question.
Reply with exactly one word: RELEVANT or IRRELEVANT."""

JUDGE_PROMPT = """QUESTION: {question}

FRAGMENT [{index}] from {file_name}:
{content}

Is this fragment relevant to the question? Answer RELEVANT or IRRELEVANT."""

_VERDICT = re.compile(r"\b(irrelevant|not relevant|relevant|yes|no)\b", re.IGNORECASE)


class RerankingStrategy(ABC):
    """Base class for reranking strategies."""

    name: str = "base"

    @abstractmethod
    async def rerank(
        self, candidates: list[SearchResult], question: str
    ) -> list[SearchResult]:
        """Filter candidates; survivors keep their order."""
        ...

    def _log_filtered(self, before: int, after: int, detail: str = "") -> None:
        if after < before:
            logger.info(f"{self.name}: {before} → {after} {detail}".rstrip())


class NoFilterStrategy(RerankingStrategy):
    """Baseline: returns candidates unchanged."""

    name = "none"

    async def rerank(
        self, candidates: list[SearchResult], question: str
    ) -> list[SearchResult]:
        return with_dense_ranks(list(candidates))


class ThresholdStrategy(RerankingStrategy):
    """Drop candidates below a fixed similarity."""

    name = "threshold"

    def __init__(self, threshold: float = 0.5):
        """Initialize strategy.

        Args:
            threshold: Minimum cosine similarity to keep.
        """
        if not -1.0 <= threshold <= 1.0:
            raise ConfigurationError(f"threshold must be in [-1, 1], got {threshold}")
        self._threshold = threshold

    @property
    def threshold(self) -> float:
        return self._threshold

    async def rerank(
        self, candidates: list[SearchResult], question: str
    ) -> list[SearchResult]:
        filtered = [c for c in candidates if c.similarity >= self._threshold]
        self._log_filtered(len(candidates), len(filtered), f"(min={self._threshold:.2f})")
        return with_dense_ranks(filtered)


class AdaptiveStrategy(RerankingStrategy):
    """Threshold derived from the similarity distribution of the candidates.

    Rules:
        gap: cut right after the largest drop between consecutive candidates
            (the earliest one when drops tie), provided the drop is at least
            ``min_gap``; then drop anything below ``floor``.
        stddev: keep candidates at or above ``max(floor, mean - std_factor * std)``.

    Fewer than two candidates carry no distribution and pass unfiltered.
    """

    name = "adaptive"
    RULES = ("gap", "stddev")

    def __init__(
        self,
        rule: str = "gap",
        floor: float = 0.3,
        std_factor: float = 0.5,
        min_gap: float = 0.05,
    ):
        if rule not in self.RULES:
            raise ConfigurationError(f"Unknown adaptive rule: {rule!r}")
        if not -1.0 <= floor <= 1.0:
            raise ConfigurationError(f"floor must be in [-1, 1], got {floor}")
        if min_gap < 0:
            raise ConfigurationError(f"min_gap must be non-negative, got {min_gap}")
        self._rule = rule
        self._floor = floor
        self._std_factor = std_factor
        self._min_gap = min_gap

    @property
    def rule(self) -> str:
        return self._rule

    def threshold_for(self, similarities: list[float]) -> float:
        """Similarity a candidate needs to survive."""
        if self._rule == "stddev":
            sims = np.asarray(similarities, dtype=np.float64)
            return max(self._floor, float(sims.mean() - self._std_factor * sims.std()))

        best_gap = 0.0
        cut = len(similarities) - 1
        for i in range(len(similarities) - 1):
            gap = similarities[i] - similarities[i + 1]
            if gap > best_gap + GAP_EPSILON:
                best_gap, cut = gap, i

        if best_gap >= self._min_gap:
            return max(self._floor, similarities[cut])
        return self._floor

    async def rerank(
        self, candidates: list[SearchResult], question: str
    ) -> list[SearchResult]:
        if len(candidates) < 2:
            return with_dense_ranks(list(candidates))

        similarities = [c.similarity for c in candidates]
        threshold = self.threshold_for(similarities)

        kept = [c for c in candidates if c.similarity >= threshold]
        self._log_filtered(
            len(candidates), len(kept), f"(rule={self._rule}, threshold={threshold:.3f})"
        )
        return with_dense_ranks(kept)


class LLMJudgedStrategy(RerankingStrategy):
    """Ask the answer generator whether each candidate is relevant.

    Results vary between calls with model variance. A failed, timed-out or
    unparseable judgment keeps the candidate when ``fail_open`` is set and
    drops it otherwise.
    """

    name = "llm"

    def __init__(
        self,
        llm: LLMProtocol,
        concurrency: int = 4,
        timeout: float = 20.0,
        fail_open: bool = True,
        preview_chars: int = 600,
    ):
        """Initialize strategy.

        Args:
            llm: Answer generator used as judge.
            concurrency: Max judgments in flight.
            timeout: Seconds allowed per judgment.
            fail_open: Keep candidates whose judgment failed.
            preview_chars: Chunk characters shown to the judge.
        """
        if concurrency < 1:
            raise ConfigurationError(f"concurrency must be >= 1, got {concurrency}")
        if timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {timeout}")
        self._llm = llm
        self._concurrency = concurrency
        self._timeout = timeout
        self._fail_open = fail_open
        self._preview_chars = preview_chars

    @property
    def fail_open(self) -> bool:
        return self._fail_open

    async def rerank(
        self, candidates: list[SearchResult], question: str
    ) -> list[SearchResult]:
        if not candidates:
            return []

        semaphore = asyncio.Semaphore(self._concurrency)

        async def judge(result: SearchResult) -> bool:
            async with semaphore:
                return await self._judge(result, question)

        verdicts = await asyncio.gather(*(judge(c) for c in candidates))
        kept = [c for c, keep in zip(candidates, verdicts) if keep]

        self._log_filtered(len(candidates), len(kept), "(LLM judged)")
        return with_dense_ranks(kept)

    async def _judge(self, result: SearchResult, question: str) -> bool:
        prompt = JUDGE_PROMPT.format(
            question=question,
            index=result.rank,
            file_name=result.chunk.file_name,
            content=result.chunk.content[: self._preview_chars],
        )
        try:
            reply = await asyncio.wait_for(
                self._llm.generate(prompt, system=JUDGE_SYSTEM_PROMPT), self._timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"LLM judge timed out for {result.chunk.file_name}, "
                f"{'keeping' if self._fail_open else 'dropping'} it"
            )
            return self._fail_open
        except ExternalServiceError as e:
            logger.warning(
                f"LLM judge failed for {result.chunk.file_name} ({e.kind.value}), "
                f"{'keeping' if self._fail_open else 'dropping'} it"
            )
            return self._fail_open

        verdict = parse_verdict(reply)
        if verdict is None:
            logger.warning(f"Unparseable LLM judgment: {reply[:80]!r}")
            return self._fail_open
        return verdict


def parse_verdict(reply: str) -> bool | None:
    """Read a RELEVANT / IRRELEVANT (or yes / no) answer."""
    match = _VERDICT.search(reply)
    if match is None:
        return None
    return match.group(1).lower() in ("relevant", "yes")
