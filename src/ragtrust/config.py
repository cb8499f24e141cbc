"""Configuration settings for the trust evaluation engine."""

from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent.parent


class RetrievalSettings(BaseModel):
    """Retrieval ranking configuration.

    Controls over-fetching, metadata-aware reranking weights and the
    denoising thresholds applied to raw nearest-neighbor results.
    """

    default_top_k: int = Field(
        default=3,
        description="Default number of chunks to return",
    )
    fetch_multiplier: int = Field(
        default=4,
        description="Over-fetch factor applied to top_k when filters or rerank signals are active",
    )
    max_fetch_k: int = Field(
        default=40,
        description="Upper bound on neighbors requested from the vector store",
    )
    text_sample_chars: int = Field(
        default=600,
        description="Chunk text prefix length used for lexical overlap",
    )
    corpus_script: Literal["latin", "cyrillic"] = Field(
        default="cyrillic",
        description="Script of the indexed corpus; Latin queries against a Cyrillic corpus are expanded",
    )

    # Rerank blend
    semantic_weight: float = Field(default=0.68, description="Weight of 1 - distance")
    lexical_weight: float = Field(default=0.26, description="Weight of query token overlap")
    category_boost: float = Field(
        default=0.08,
        description="Boost for chunks matching the strongest inferred intent",
    )
    category_boost_decay: float = Field(
        default=0.5,
        description="Multiplier applied to the boost for each weaker intent",
    )
    off_category_penalty: float = Field(
        default=0.06,
        description="Penalty for categorized chunks outside every inferred intent",
    )
    duplicate_penalty: float = Field(
        default=0.1,
        description="Penalty for chunks that near-duplicate a better candidate",
    )
    duplicate_similarity_threshold: float = Field(
        default=0.9,
        description="TF-IDF cosine similarity above which two chunks are duplicates",
    )
    low_info_penalty: float = Field(
        default=0.08,
        description="Penalty for short chunks that survived denoising",
    )
    low_info_min_words: int = Field(
        default=6,
        description="Chunks with fewer words receive the low-info penalty",
    )

    # Denoising thresholds
    min_alnum_chars: int = Field(
        default=6,
        description="Chunks with fewer alphanumeric characters are noise",
    )
    max_punctuation_ratio: float = Field(
        default=0.7,
        description="Punctuation ratio above which a chunk is noise",
    )
    punctuation_min_length: int = Field(
        default=12,
        description="Minimum length before the punctuation ratio check applies",
    )
    min_distinct_chars: int = Field(
        default=3,
        description="Compacted chunks with fewer distinct characters are noise",
    )


class TrustSettings(BaseModel):
    """Trust score configuration.

    The semantic compensation thresholds and caps are heuristic constants;
    they are exposed here so deployments can tune them.
    """

    faithfulness_weight: float = Field(default=0.4, description="Full-mode faithfulness weight")
    precision_weight: float = Field(default=0.3, description="Full-mode precision@K weight")
    similarity_weight: float = Field(default=0.3, description="Full-mode similarity weight")
    default_similarity: float = Field(
        default=0.5,
        description="Similarity assumed when no ground truth is supplied",
    )
    lightweight_cap: float = Field(
        default=0.35,
        description="Lightweight score cap when citations stay invalid after retry",
    )
    full_cap: float = Field(
        default=0.60,
        description="Full score cap when citations stay invalid after retry",
    )
    semantic_faithfulness_threshold: float = Field(
        default=0.9,
        description="Minimum faithfulness for semantic compensation",
    )
    semantic_similarity_threshold: float = Field(
        default=0.75,
        description="Similarity must exceed this for semantic compensation",
    )
    semantic_floor: float = Field(
        default=0.75,
        description="Score floor applied by semantic compensation",
    )
    coverage_threshold: float = Field(
        default=0.8,
        description="Minimum citation coverage for a valid answer",
    )
    min_factual_sentence_length: int = Field(
        default=20,
        description="Sentences shorter than this are not treated as factual",
    )


class EvalSettings(BaseModel):
    """Batch evaluation and benchmarking configuration."""

    max_concurrency: int = Field(
        default=2,
        description="Maximum in-flight query evaluations",
    )
    cold_start_ms: float = Field(
        default=30000.0,
        description="Evaluation latency above which a query is flagged as cold start",
    )
    latency_penalty_divisor: float = Field(
        default=100000.0,
        description="Divisor converting average latency (ms) to a leaderboard penalty",
    )
    evaluation_version: str = Field(
        default="1.0.0",
        description="Version tag recorded with every benchmark",
    )
    benchmark_dir: Path = Field(
        default=PROJECT_ROOT / "data",
        description="Directory for benchmark history",
    )
    benchmark_file: str = Field(
        default="benchmarks.jsonl",
        description="Benchmark history filename (JSON lines)",
    )
    default_models: list[str] = Field(
        default=["claude-3-5-haiku-20241022", "claude-3-5-sonnet-20241022"],
        description="Generation models compared by the leaderboard",
    )

    @property
    def benchmark_path(self) -> Path:
        """Full path to the benchmark history file."""
        return self.benchmark_dir / self.benchmark_file


class AuditSettings(BaseModel):
    """Audit logging configuration."""

    enabled: bool = Field(default=True, description="Enable/disable audit logging")
    log_level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    log_dir: Path = Field(default=PROJECT_ROOT / "logs", description="Directory for log files")
    log_file: str = Field(default="audit.log", description="Audit log filename")
    max_file_size: int = Field(
        default=10 * 1024 * 1024,
        description="Max log file size before rotation (10MB default)",
    )
    backup_count: int = Field(default=5, description="Number of backup files to keep")
    mask_sensitive_data: bool = Field(
        default=True,
        description="Mask queries and answers in logs",
    )
    handler_type: Literal["rotating_file", "stdout_json", "memory"] = Field(
        default="rotating_file",
        description="Handler type: rotating_file, stdout_json, or memory (tests)",
    )

    @property
    def log_path(self) -> Path:
        """Full path to audit log file."""
        return self.log_dir / self.log_file


class Settings(BaseSettings):
    """Trust evaluation configuration."""

    # Embedding settings
    embedding_model: str = Field(
        default="sentence-transformers/all-MiniLM-L6-v2",
        description="Embedding model name",
    )

    # Vector store settings
    index_dir: Path = Field(
        default=PROJECT_ROOT / "indexes",
        description="Directory for FAISS index storage",
    )
    collection_name: str = Field(
        default="university-corpus",
        description="Default collection evaluated by the CLI",
    )

    # Anthropic API settings
    anthropic_api_key: str = Field(default="", description="Anthropic API key")
    anthropic_model: str = Field(
        default="claude-3-5-haiku-20241022",
        description="Default generation model",
    )
    evaluation_model: str = Field(
        default="claude-3-5-haiku-20241022",
        description="Model used as the faithfulness judge",
    )
    generation_max_tokens: int = Field(default=1024, description="Maximum tokens for generation")
    generation_temperature: float = Field(
        default=0.0,
        description="Temperature for generation (0.0 for deterministic)",
    )

    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    trust: TrustSettings = Field(default_factory=TrustSettings)
    evals: EvalSettings = Field(default_factory=EvalSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)

    model_config = SettingsConfigDict(
        env_prefix="",
        env_nested_delimiter="__",  # Allows TRUST__FULL_CAP=0.5
        case_sensitive=False,
    )


# Global settings instance
settings = Settings()
