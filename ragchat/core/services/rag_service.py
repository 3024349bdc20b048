"""RAG service - retrieval-augmented answers with mandatory citations."""

import asyncio
import logging
import time
from typing import Optional

from ..errors import ExternalServiceError, ServiceErrorKind
from ..models.document import FileType, SearchResult
from ..models.rag import ParsedAnswer, RAGComparison, RAGResponse
from ..protocols.llm import LLMProtocol
from ..protocols.reranker import RerankerProtocol
from .citation_service import CitationEnforcer
from .search_service import SearchService

logger = logging.getLogger(__name__)

RAG_SYSTEM_PROMPT = """You are an AI assistant that helps developers understand their code and documents.
Use ONLY the information from the provided context. If the context does not contain the answer, say so honestly and do not make anything up."""

RAG_PROMPT = """MANDATORY REQUIREMENTS:
1. Use ONLY information from the CONTEXT section
2. Put a marker [Source N] after EVERY statement
3. Quote code verbatim in ``` blocks
4. End the answer with a "Sources:" section listing every file you used
5. If the information is missing, say so and do NOT invent it

QUESTION:
{question}

ANSWER FORMAT (MANDATORY):

[Answer with [Source 1], [Source 2] markers after each fact]

[Code quotes in ``` blocks where relevant]

Sources:
[1] FileName - short description
[2] FileName - short description"""

STRICT_REMINDER = """

IMPORTANT: a previous answer to this question was rejected because it did not cite its sources.
Every fact MUST carry a [Source N] marker, file names MUST be mentioned, and the answer MUST end with a "Sources:" section."""


class RAGService:
    """Answers questions from retrieved chunks and checks their citations."""

    def __init__(
        self,
        search_service: SearchService,
        llm: LLMProtocol,
        enforcer: Optional[CitationEnforcer] = None,
        timeout: float = 120.0,
    ):
        """Initialize RAG service.

        Args:
            search_service: Retriever.
            llm: Answer generator.
            enforcer: Citation enforcer.
            timeout: Seconds allowed for one answer.
        """
        self._search = search_service
        self._llm = llm
        self._enforcer = enforcer or CitationEnforcer()
        self._timeout = timeout

    async def answer(
        self,
        question: str,
        strategy: Optional[RerankerProtocol] = None,
        top_k: Optional[int] = None,
        file_type: Optional[FileType] = None,
        history: Optional[list[dict]] = None,
        strict: bool = False,
    ) -> RAGResponse:
        """Answer a question using retrieved context.

        Args:
            question: User question.
            strategy: Override reranking strategy.
            top_k: Override number of chunks.
            file_type: Keep only chunks of this type.
            history: Prior turns to include.
            strict: Add a reminder about citations to the prompt.

        Returns:
            Answer with the chunks used, citation validation and an optional
            structured payload.
        """
        start = time.perf_counter()

        search_response = await self._search.search(
            question, strategy=strategy, top_k=top_k, file_type=file_type
        )
        chunks = search_response.results

        if chunks:
            prompt = RAG_PROMPT.format(question=question)
            if strict:
                prompt += STRICT_REMINDER
            system = RAG_SYSTEM_PROMPT
        else:
            logger.info(f"No context found for '{question[:50]}...', answering without it")
            prompt, system = question, None

        answer = await self._generate(prompt, chunks, history, system)
        validation = self._enforcer.validate(answer, chunks)
        processing_time = time.perf_counter() - start

        logger.info(
            f"RAG: {len(chunks)} chunks, citations={validation.citation_count}, "
            f"score={validation.score:.2f}, {processing_time:.2f}s"
        )

        return RAGResponse(
            answer=answer,
            used_chunks=tuple(chunks),
            question=question,
            processing_time=processing_time,
            validation=validation,
            parsed=ParsedAnswer.parse(answer),
        )

    async def answer_with_mandatory_citations(
        self,
        question: str,
        max_attempts: int = 2,
        strategy: Optional[RerankerProtocol] = None,
        top_k: Optional[int] = None,
    ) -> RAGResponse:
        """Re-prompt with stricter instructions until citations validate.

        The last answer is returned even if it never validates; the caller
        reads ``response.validation`` to decide what to show.
        """
        response: Optional[RAGResponse] = None
        for attempt in range(1, max(1, max_attempts) + 1):
            response = await self.answer(
                question, strategy=strategy, top_k=top_k, strict=attempt > 1
            )
            if response.validation.is_valid:
                logger.info(f"Citations valid on attempt {attempt}")
                return response
            logger.warning(
                f"Citations invalid on attempt {attempt}/{max_attempts} "
                f"(score={response.validation.score:.2f})"
            )
        return response

    async def answer_without_rag(self, question: str) -> tuple[str, float]:
        """Baseline answer without retrieval."""
        start = time.perf_counter()
        answer = await self._generate(question, [], None, None)
        return answer, time.perf_counter() - start

    async def compare(
        self, question: str, strategy: Optional[RerankerProtocol] = None
    ) -> RAGComparison:
        """Answer with and without retrieved context."""
        with_rag, (without_rag, plain_time) = await asyncio.gather(
            self.answer(question, strategy=strategy),
            self.answer_without_rag(question),
        )
        return RAGComparison(
            question=question,
            with_rag=with_rag,
            without_rag=without_rag,
            no_rag_processing_time=plain_time,
        )

    async def _generate(
        self,
        prompt: str,
        chunks: list[SearchResult],
        history: Optional[list[dict]],
        system: Optional[str],
    ) -> str:
        try:
            return await asyncio.wait_for(
                self._llm.generate(
                    prompt, context=chunks or None, history=history, system=system
                ),
                self._timeout,
            )
        except asyncio.TimeoutError as e:
            raise ExternalServiceError(
                "llm", ServiceErrorKind.TIMEOUT, f"no answer within {self._timeout:.0f}s"
            ) from e
