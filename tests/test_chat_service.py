"""Tests for the chat service and conversation state."""

import pytest

from conftest import FakeLLM, make_chunk
from ragchat.core.errors import CompressionNotBeneficial, ConfigurationError
from ragchat.core.models.chat import ChatMessage
from ragchat.core.models.compression import CompressedConversationHistory, CompressionStats
from ragchat.core.services.chat_service import ChatService, Conversation
from ragchat.core.services.compression_service import HistoryCompressionService
from ragchat.core.services.embedding_service import EmbeddingService
from ragchat.core.services.rag_service import RAGService
from ragchat.core.services.search_service import SearchService
from ragchat.infrastructure.vector_stores.memory_store import InMemoryVectorIndex


def msg(role: str, tokens: int) -> ChatMessage:
    return ChatMessage(role=role, content="w" * (tokens * 4))


def conversation_with(*token_counts: int) -> Conversation:
    conversation = Conversation(id="c1")
    for i, tokens in enumerate(token_counts):
        conversation.append(msg("user" if i % 2 == 0 else "assistant", tokens))
    return conversation


def make_chat(llm, summarizer, budget=100, policy="truncate", rag=None) -> ChatService:
    compressor = HistoryCompressionService(summarizer, token_budget=budget, fold_fraction=0.5)
    return ChatService(llm, compressor, rag=rag, overflow_policy=policy)


class TestSendMessage:

    @pytest.mark.asyncio
    async def test_plain_turn_is_recorded(self):
        llm = FakeLLM("Hello there")
        chat = make_chat(llm, FakeLLM("unused"))
        conversation = Conversation()

        reply = await chat.send_message(conversation, "Hi", use_rag=False)

        assert reply.content == "Hello there"
        assert reply.rag is None
        assert not reply.truncated
        assert [m.role for m in conversation.history.recent_messages] == ["user", "assistant"]
        assert llm.calls[0]["prompt"] == "Hi"
        assert llm.calls[0]["history"] == []

    @pytest.mark.asyncio
    async def test_history_is_sent_with_next_turn(self):
        llm = FakeLLM("first", "second")
        chat = make_chat(llm, FakeLLM("unused"), budget=1000)
        conversation = Conversation()

        await chat.send_message(conversation, "one", use_rag=False)
        await chat.send_message(conversation, "two", use_rag=False)

        assert llm.calls[1]["history"] == [
            {"role": "user", "content": "one"},
            {"role": "assistant", "content": "first"},
        ]

    @pytest.mark.asyncio
    async def test_compresses_before_sending(self):
        llm = FakeLLM("answer")
        summarizer = FakeLLM("short")
        chat = make_chat(llm, summarizer, budget=100)
        conversation = conversation_with(40, 40, 40, 40)

        reply = await chat.send_message(conversation, "hi", use_rag=False)

        assert len(summarizer.calls) == 2
        assert conversation.stats.total_compressions == 2
        assert len(conversation.history.summaries) == 2
        sent = llm.calls[0]["history"]
        assert len(sent) == 4
        assert sent[0]["content"].startswith("[Previous conversation summary]")
        assert not reply.truncated
        assert reply.history_tokens <= 100
        # two kept messages plus the new turn
        assert len(conversation.history.recent_messages) == 4

    @pytest.mark.asyncio
    async def test_truncates_when_compression_fails(self):
        llm = FakeLLM("answer")
        summarizer = FakeLLM("s" * 4000)
        chat = make_chat(llm, summarizer, budget=100, policy="truncate")
        conversation = conversation_with(40, 40, 40, 40)

        reply = await chat.send_message(conversation, "hi", use_rag=False)

        assert reply.truncated
        assert conversation.stats.total_compressions == 0
        assert len(llm.calls[0]["history"]) == 2
        assert len(conversation.history.recent_messages) == 4

    @pytest.mark.asyncio
    async def test_refuse_policy_raises(self):
        llm = FakeLLM("answer")
        chat = make_chat(llm, FakeLLM("s" * 4000), budget=100, policy="refuse")
        conversation = conversation_with(40, 40, 40, 40)

        with pytest.raises(CompressionNotBeneficial):
            await chat.send_message(conversation, "hi", use_rag=False)

        assert llm.calls == []
        assert len(conversation.history.recent_messages) == 4

    @pytest.mark.asyncio
    async def test_uses_rag_when_available(self, fake_embedder):
        index = InMemoryVectorIndex()
        text = "Deployments run in containers."
        index.insert(make_chunk(text, "docs/deploy.md"), fake_embedder.vector_for(text))
        llm = FakeLLM("They run in containers [Source 1].\n\nSources:\n[1] deploy.md")
        search = SearchService(EmbeddingService(fake_embedder), index)
        chat = make_chat(llm, FakeLLM("unused"), budget=1000, rag=RAGService(search, llm))

        reply = await chat.send_message(Conversation(), "How do deployments run?")

        assert reply.rag is not None
        assert reply.rag.validation.is_valid
        assert reply.content == reply.rag.answer
        assert llm.calls[0]["context"] is not None

    def test_rejects_unknown_policy(self):
        with pytest.raises(ConfigurationError):
            make_chat(FakeLLM(), FakeLLM(), policy="ignore")


class TestStreamMessage:

    @pytest.mark.asyncio
    async def test_streams_and_records(self):
        chat = make_chat(FakeLLM("streamed reply"), FakeLLM("unused"), budget=1000)
        conversation = Conversation()

        tokens = [t async for t in chat.stream_message(conversation, "go")]

        assert "".join(tokens).strip() == "streamed reply"
        last = conversation.history.recent_messages[-1]
        assert last.role == "assistant"
        assert last.content.strip() == "streamed reply"


class TestConversationMerge:

    def test_keeps_messages_added_during_compression(self):
        conversation = conversation_with(10, 10, 10)
        base = conversation.snapshot()
        compressed = CompressedConversationHistory(recent_messages=base.recent_messages[2:])
        stats = CompressionStats(total_compressions=1)

        late = ChatMessage(role="user", content="late")
        conversation.append(late)

        assert conversation.merge(base, compressed, stats)
        assert conversation.history.recent_messages == (base.recent_messages[2], late)
        assert conversation.stats.total_compressions == 1

    def test_discards_stale_compression(self):
        conversation = conversation_with(10, 10, 10)
        base = conversation.snapshot()
        other = CompressedConversationHistory(recent_messages=base.recent_messages[1:])
        conversation.merge(base, other, CompressionStats(total_compressions=1))

        stale = CompressedConversationHistory(recent_messages=base.recent_messages[2:])
        assert not conversation.merge(base, stale, CompressionStats(total_compressions=5))
        assert conversation.history == other
        assert conversation.stats.total_compressions == 1

    def test_round_trip(self):
        conversation = conversation_with(10, 20)
        conversation.stats = CompressionStats(total_compressions=2, total_tokens_saved=50)
        restored = Conversation.from_dict(conversation.to_dict())
        assert restored == conversation
