from pydantic_settings import BaseSettings


class Settings(BaseSettings):

    llm_base_url: str = "http://localhost:11434/v1"
    llm_api_key: str = "ollama"
    llm_model: str = "qwen2.5:7b"
    llm_max_tokens: int = 1024
    llm_temperature: float = 0.1
    llm_timeout: float = 120.0

    # "sentence-transformers" or "openai"
    embedding_provider: str = "sentence-transformers"
    embedding_model: str = "intfloat/multilingual-e5-base"
    embedding_batch_size: int = 64
    embedding_cache_size: int = 2048
    embedding_timeout: float = 30.0

    chunk_size: int = 1000
    chunk_overlap: float = 0.2
    code_chunk_size: int = 3000
    code_chunk_overlap: float = 0.15

    docs_path: str = "./docs"
    rag_top_k: int = 5
    rag_oversample_factor: int = 3
    rag_preview_length: int = 200

    # Reranking: none | threshold | adaptive | llm
    rerank_strategy: str = "adaptive"
    rerank_threshold: float = 0.5
    adaptive_rule: str = "gap"
    adaptive_floor: float = 0.3
    adaptive_std_factor: float = 0.5
    adaptive_min_gap: float = 0.05
    llm_rerank_concurrency: int = 4
    llm_rerank_timeout: float = 20.0
    llm_rerank_fail_open: bool = True

    citation_pass_threshold: float = 1.0
    citation_max_attempts: int = 2

    # History compression
    history_token_budget: int = 4000
    history_fold_fraction: float = 0.5
    history_min_recent_messages: int = 2
    history_overflow_policy: str = "truncate"
    history_path: str = "./data/conversations"
    index_path: str = "./data/index"

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
