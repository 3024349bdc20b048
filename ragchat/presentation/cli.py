import argparse
import asyncio
import logging
import sys
import uuid

import httpx

from ragchat.config.settings import Settings
from ragchat.container import STRATEGY_NAMES, Container, build_strategy, configure_container
from ragchat.core.errors import CompressionNotBeneficial, ExternalServiceError, RagChatError
from ragchat.core.models.document import FileType
from ragchat.core.protocols.llm import LLMProtocol
from ragchat.core.protocols.vector_store import VectorStoreProtocol
from ragchat.core.services.chat_service import ChatService
from ragchat.core.services.ingest_service import IngestService
from ragchat.core.services.rag_service import RAGService
from ragchat.core.services.search_service import SearchService
from ragchat.infrastructure.storage.conversation_store import JsonConversationStore
from ragchat.infrastructure.storage.index_store import IndexSnapshotStore

logger = logging.getLogger(__name__)


def check_llm_server(settings: Settings) -> bool:
    """Check that the OpenAI-compatible server answers and serves the model."""
    base_url = settings.llm_base_url.rstrip("/")
    logger.info(f"Checking LLM server: {base_url}")

    try:
        resp = httpx.get(
            f"{base_url}/models",
            headers={"Authorization": f"Bearer {settings.llm_api_key}"},
            timeout=5,
        )
    except httpx.HTTPError as e:
        logger.error(f"LLM server not reachable: {e}")
        return False

    if resp.status_code != 200:
        logger.error(f"LLM server answered HTTP {resp.status_code}: {resp.text[:200]}")
        return False

    models = [m.get("id", "") for m in resp.json().get("data", [])]
    if models and not any(settings.llm_model in m for m in models):
        logger.warning(f"Model {settings.llm_model} not listed by server: {', '.join(models)}")
    return True


def load_index(container: Container, settings: Settings) -> None:
    store = IndexSnapshotStore(settings.index_path)
    if not store.exists():
        logger.info("No saved index, starting empty")
        return
    try:
        hashes = store.load(container.resolve(VectorStoreProtocol))
    except ValueError as e:
        logger.error(f"Saved index unreadable, starting empty (run ingest to rebuild): {e}")
        return
    container.resolve(IngestService).restore_hashes(hashes)


async def cmd_ingest(container: Container, settings: Settings, args) -> None:
    """Index documents and save the index snapshot."""
    load_index(container, settings)
    ingest_service = container.resolve(IngestService)

    def progress(name: str, processed: int, total: int) -> None:
        logger.info(f"[{processed}/{total}] {name}")

    stats = await ingest_service.run(args.path, force=args.force, progress=progress)
    IndexSnapshotStore(settings.index_path).save(
        container.resolve(VectorStoreProtocol), ingest_service.file_hashes
    )

    print(
        f"Documents: {stats.total_documents}, chunks: {stats.total_chunks}, "
        f"time: {stats.processing_time:.1f}s"
    )
    if stats.failed_files:
        print(f"Failed: {', '.join(stats.failed_files)}")


async def cmd_ask(container: Container, settings: Settings, args) -> None:
    """Answer one question from the indexed documents."""
    load_index(container, settings)
    rag = container.resolve(RAGService)
    strategy = (
        build_strategy(args.strategy, settings, container.resolve(LLMProtocol))
        if args.strategy
        else None
    )

    if args.file_type:
        response = await rag.answer(
            args.question,
            strategy=strategy,
            top_k=args.top_k,
            file_type=FileType.parse(args.file_type),
        )
    else:
        response = await rag.answer_with_mandatory_citations(
            args.question,
            max_attempts=settings.citation_max_attempts,
            strategy=strategy,
            top_k=args.top_k,
        )

    print(response.answer)
    print()
    for result in response.used_chunks:
        print(f"  [{result.rank}] {result.file_name} ({result.similarity:.2f}) {result.preview}")
    if response.validation:
        print()
        print(response.validation.summary)
        if not response.validation.is_valid:
            print("Warning: the answer does not cite its sources properly")


async def cmd_compare(container: Container, settings: Settings, args) -> None:
    """Compare reranking strategies, or answers with and without RAG."""
    load_index(container, settings)

    if args.rag:
        comparison = await container.resolve(RAGService).compare(args.question)
        print("=== With RAG ===")
        print(comparison.with_rag.answer)
        print(f"({comparison.with_rag.processing_time:.1f}s)")
        print()
        print("=== Without RAG ===")
        print(comparison.without_rag)
        print(f"({comparison.no_rag_processing_time:.1f}s)")
        return

    llm = container.resolve(LLMProtocol)
    strategies = [build_strategy(name, settings, llm) for name in args.strategies]
    comparison = await container.resolve(SearchService).compare(
        args.question, strategies, top_k=args.top_k
    )

    print(f"Candidates: {len(comparison.candidates)}")
    for name, row in comparison.summary().items():
        if "error" in row:
            print(f"  {name:<10} error: {row['error']}")
        else:
            min_sim = row["min_similarity"]
            floor = f"{min_sim:.3f}" if min_sim is not None else "-"
            print(f"  {name:<10} kept {row['count']:>3}  min similarity {floor}")


async def cmd_chat(container: Container, settings: Settings, args) -> None:
    """Interactive chat with compressed history."""
    load_index(container, settings)
    chat_service = container.resolve(ChatService)
    store = JsonConversationStore(settings.history_path)
    conversation = store.load_or_create(args.conversation or uuid.uuid4().hex)
    print(f"Conversation {conversation.id} (empty line to quit)")

    while True:
        try:
            text = input("> ").strip()
        except EOFError:
            break
        if not text:
            break

        try:
            reply = await chat_service.send_message(conversation, text, use_rag=not args.no_rag)
        except CompressionNotBeneficial as e:
            print(f"History is over budget and cannot be compressed: {e}")
            continue
        except ExternalServiceError as e:
            print(e.user_message)
            continue

        print(reply.content)
        note = f"[history ~{reply.history_tokens} tokens"
        if conversation.stats.total_compressions:
            note += f", {conversation.stats.total_compressions} compressions"
        if reply.truncated:
            note += ", oldest messages dropped"
        print(note + "]")
        store.save(conversation)


COMMANDS = {
    "ingest": cmd_ingest,
    "ask": cmd_ask,
    "compare": cmd_compare,
    "chat": cmd_chat,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ragchat", description="Document Q&A with cited sources")
    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="index documents")
    ingest.add_argument("path", nargs="?", help="folder or file (default: DOCS_PATH)")
    ingest.add_argument("--force", action="store_true", help="re-index unchanged files")

    ask = sub.add_parser("ask", help="answer a question with citations")
    ask.add_argument("question")
    ask.add_argument("--strategy", choices=STRATEGY_NAMES)
    ask.add_argument("--top-k", type=int)
    ask.add_argument("--file-type", choices=[t.value for t in FileType])

    compare = sub.add_parser("compare", help="compare reranking strategies")
    compare.add_argument("question")
    compare.add_argument(
        "--strategies", nargs="+", choices=STRATEGY_NAMES, default=list(STRATEGY_NAMES)
    )
    compare.add_argument("--top-k", type=int)
    compare.add_argument("--rag", action="store_true", help="compare answers with and without RAG")

    chat = sub.add_parser("chat", help="interactive chat")
    chat.add_argument("--conversation", help="conversation id to resume")
    chat.add_argument("--no-rag", action="store_true", help="do not search documents")

    sub.add_parser("check", help="check the LLM server")
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    settings = Settings()
    logging.basicConfig(level=settings.log_level, format="%(message)s")

    if args.command == "check":
        return 0 if check_llm_server(settings) else 1

    if args.command != "ingest" and not check_llm_server(settings):
        return 1

    try:
        container = configure_container(settings)
        asyncio.run(COMMANDS[args.command](container, settings, args))
    except ExternalServiceError as e:
        print(e.user_message, file=sys.stderr)
        return 1
    except RagChatError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
