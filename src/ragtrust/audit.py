"""Audit logging for trust evaluations.

This module provides structured audit logging with:
- One correlation id per evaluated query
- Hash chain for tamper detection
- Configurable handlers (file, stdout, memory)
- Sensitive data masking
"""

import hashlib
import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .config import AuditSettings


# =============================================================================
# Enums
# =============================================================================


class AuditEventType(str, Enum):
    """Types of audit events."""

    RETRIEVAL_COMPLETE = "retrieval_complete"
    GENERATION_COMPLETE = "generation_complete"
    CITATION_RETRY = "citation_retry"
    EVALUATION_COMPLETE = "evaluation_complete"
    BENCHMARK_PERSISTENCE = "benchmark_persistence"
    ERROR = "error"


class AuditSeverity(str, Enum):
    """Audit event severity levels."""

    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class AuditComponent(str, Enum):
    """Engine components for audit logging."""

    RETRIEVE = "retrieve"
    GENERATE = "generate"
    CITATIONS = "citations"
    EVALUATE = "evaluate"
    BENCHMARK = "benchmark"


# =============================================================================
# Models
# =============================================================================


class AuditEvent(BaseModel):
    """Base audit event with correlation, classification and timing fields."""

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    request_id: str = Field(..., description="Correlation ID for request tracing")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO
    component: AuditComponent

    latency_ms: Optional[float] = None
    schema_version: str = "1.0"
    details: dict[str, Any] = Field(default_factory=dict)

    # Tamper detection (hash chain)
    prev_event_hash: Optional[str] = None
    event_hash: Optional[str] = None


class RetrievalEvent(AuditEvent):
    """Retrieval and ranking of one query."""

    event_type: AuditEventType = AuditEventType.RETRIEVAL_COMPLETE
    component: AuditComponent = AuditComponent.RETRIEVE

    query_hash: str
    collection_id: str
    embedding_model: str
    k_requested: int
    fetch_k: int
    results_before_filter: int
    results_after_filter: int
    top_k_returned: int
    filters_applied: list[str] = Field(default_factory=list)
    inferred_intents: list[str] = Field(default_factory=list)
    query_expanded: bool = False


class GenerationEvent(AuditEvent):
    """One generation attempt (initial or citation regeneration)."""

    event_type: AuditEventType = AuditEventType.GENERATION_COMPLETE
    component: AuditComponent = AuditComponent.GENERATE

    query_hash: str
    model: str
    attempt: int = 1
    context_chunks: int
    citation_valid: bool
    citation_issues: list[str] = Field(default_factory=list)


class CitationRetryEvent(AuditEvent):
    """Outcome of the single citation regeneration."""

    event_type: AuditEventType = AuditEventType.CITATION_RETRY
    component: AuditComponent = AuditComponent.CITATIONS
    severity: AuditSeverity = AuditSeverity.WARN

    query_hash: str
    issues_before: list[str] = Field(default_factory=list)
    issues_after: list[str] = Field(default_factory=list)
    invalid_citations: list[int] = Field(default_factory=list)
    recovered: bool


class EvaluationEvent(AuditEvent):
    """Final scoring of one query."""

    event_type: AuditEventType = AuditEventType.EVALUATION_COMPLETE
    component: AuditComponent = AuditComponent.EVALUATE

    query_hash: str
    trust_mode: str
    trust_score: float
    diagnosis: str
    capped_by_citation_policy: bool = False
    semantic_compensation_applied: bool = False
    cold_start: bool = False
    refusal: bool = False


class BenchmarkEvent(AuditEvent):
    """Persistence decision for a batch run."""

    event_type: AuditEventType = AuditEventType.BENCHMARK_PERSISTENCE
    component: AuditComponent = AuditComponent.BENCHMARK

    benchmark_id: str
    generation_model: str
    dataset_size: int
    successful_evaluations: int
    persisted: bool
    skip_reason: Optional[str] = None


# =============================================================================
# Handlers
# =============================================================================


class AuditJsonFormatter(logging.Formatter):
    """JSON formatter that outputs pre-formatted JSON strings."""

    def format(self, record: logging.LogRecord) -> str:
        return record.getMessage()


class MemoryHandler(logging.Handler):
    """In-memory handler for testing audit logs."""

    def __init__(self) -> None:
        super().__init__()
        self.records: list[str] = []
        self._lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        with self._lock:
            self.records.append(self.format(record))

    def clear(self) -> None:
        with self._lock:
            self.records.clear()

    def get_records(self) -> list[str]:
        with self._lock:
            return list(self.records)


# =============================================================================
# Audit Logger
# =============================================================================


def _canonical_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str)


class AuditLogger:
    """Thread-safe singleton audit logger with hash chain.

    Events are masked first, then chained, so the logged line is exactly
    what `verify_hash_chain` recomputes.
    """

    _instance: Optional["AuditLogger"] = None
    _lock: threading.Lock = threading.Lock()

    SENSITIVE_KEYS = ("query", "answer", "ground_truth", "prompt", "text", "api_key")

    def __init__(self, settings: "AuditSettings") -> None:
        self.settings = settings
        self._last_hash: Optional[str] = None
        self._hash_lock = threading.Lock()
        self._memory_handler: Optional[MemoryHandler] = None
        self._logger = self._setup_logger()

        if self.settings.handler_type == "rotating_file":
            self._load_last_hash_from_file()

    @classmethod
    def get_instance(cls, settings: Optional["AuditSettings"] = None) -> "AuditLogger":
        """Get or create the singleton instance."""
        with cls._lock:
            if cls._instance is None:
                if settings is None:
                    from .config import settings as app_settings

                    settings = app_settings.audit
                cls._instance = cls(settings)
            return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (for testing)."""
        with cls._lock:
            if cls._instance is not None:
                for handler in cls._instance._logger.handlers[:]:
                    handler.close()
                    cls._instance._logger.removeHandler(handler)
            cls._instance = None

    def _setup_logger(self) -> logging.Logger:
        logger = logging.getLogger("ragtrust.audit")
        logger.setLevel(getattr(logging, self.settings.log_level.upper(), logging.INFO))
        logger.propagate = False

        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

        formatter = AuditJsonFormatter()

        if self.settings.handler_type == "memory":
            self._memory_handler = MemoryHandler()
            self._memory_handler.setFormatter(formatter)
            logger.addHandler(self._memory_handler)
        elif self.settings.handler_type == "stdout_json":
            handler = logging.StreamHandler()
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        else:
            log_path = self.settings.log_path
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(
                filename=str(log_path),
                maxBytes=self.settings.max_file_size,
                backupCount=self.settings.backup_count,
                encoding="utf-8",
            )
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        return logger

    def _load_last_hash_from_file(self) -> None:
        """Continue the hash chain from the last line of an existing log file."""
        log_path = self.settings.log_path
        if not log_path.exists():
            return

        try:
            with open(log_path, "rb") as f:
                f.seek(0, 2)
                file_size = f.tell()
                if file_size == 0:
                    return
                f.seek(max(0, file_size - 4096))
                lines = f.read().decode("utf-8").strip().split("\n")

            last_line = next((line.strip() for line in reversed(lines) if line.strip()), None)
            if last_line:
                self._last_hash = json.loads(last_line).get("event_hash")
        except (json.JSONDecodeError, OSError, UnicodeDecodeError):
            # Chain restarts from GENESIS; integrity of earlier lines is unaffected
            self._last_hash = None

    def _mask_sensitive(self, payload: dict[str, Any]) -> dict[str, Any]:
        details = payload.get("details") or {}
        for key in self.SENSITIVE_KEYS:
            if key in details:
                details[key] = "<MASKED>"
        return payload

    def log(self, event: AuditEvent) -> None:
        """Log an audit event with hash chain."""
        if not self.settings.enabled:
            return

        payload = event.model_dump(mode="json", exclude={"prev_event_hash", "event_hash"})
        if self.settings.mask_sensitive_data:
            payload = self._mask_sensitive(payload)

        with self._hash_lock:
            prev_hash = self._last_hash
            content = f"{prev_hash or 'GENESIS'}:{_canonical_json(payload)}"
            event_hash = hashlib.sha256(content.encode()).hexdigest()[:16]
            self._last_hash = event_hash

            payload["prev_event_hash"] = prev_hash
            payload["event_hash"] = event_hash
            event.prev_event_hash = prev_hash
            event.event_hash = event_hash

            log_method = getattr(self._logger, event.severity.value.lower(), self._logger.info)
            if event.severity == AuditSeverity.WARN:
                log_method = self._logger.warning
            log_method(_canonical_json(payload))

    def get_memory_records(self) -> list[str]:
        """Get records from memory handler (for testing)."""
        if self._memory_handler is not None:
            return self._memory_handler.get_records()
        return []

    def clear_memory_records(self) -> None:
        """Clear records from memory handler (for testing)."""
        if self._memory_handler is not None:
            self._memory_handler.clear()


# =============================================================================
# Helper Functions
# =============================================================================


def get_audit_logger() -> AuditLogger:
    """Get the singleton audit logger instance."""
    return AuditLogger.get_instance()


def generate_request_id() -> str:
    """Generate a new request ID for correlation."""
    return f"req-{uuid.uuid4().hex[:12]}"


def hash_query(query: str) -> str:
    """Hash a query string for privacy-preserving logging."""
    return hashlib.sha256(query.encode()).hexdigest()[:16]


def verify_hash_chain(log_source: Path | list[str]) -> tuple[bool, list[str]]:
    """Verify the hash chain integrity of an audit log.

    Args:
        log_source: Path to the audit log file, or already-read JSON lines.

    Returns:
        Tuple of (is_valid, list of error messages).
    """
    errors: list[str] = []
    prev_event_hash: Optional[str] = None

    if isinstance(log_source, list):
        lines = log_source
    else:
        try:
            lines = Path(log_source).read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return False, [f"Log file not found: {log_source}"]

    for line_num, line in enumerate(lines, 1):
        line = line.strip()
        if not line:
            continue

        try:
            event = json.loads(line)
        except json.JSONDecodeError as e:
            errors.append(f"Line {line_num}: Invalid JSON - {e}")
            continue

        recorded_prev_hash = event.get("prev_event_hash")
        if recorded_prev_hash != prev_event_hash:
            errors.append(
                f"Line {line_num}: prev_event_hash mismatch - "
                f"expected {prev_event_hash}, got {recorded_prev_hash}"
            )

        recorded_event_hash = event.get("event_hash")
        if recorded_event_hash is None:
            errors.append(f"Line {line_num}: Missing event_hash")
            prev_event_hash = recorded_prev_hash
            continue

        body = {k: v for k, v in event.items() if k not in ("prev_event_hash", "event_hash")}
        content = f"{recorded_prev_hash or 'GENESIS'}:{_canonical_json(body)}"
        expected_hash = hashlib.sha256(content.encode()).hexdigest()[:16]
        if recorded_event_hash != expected_hash:
            errors.append(
                f"Line {line_num}: event_hash mismatch - "
                f"expected {expected_hash}, got {recorded_event_hash}"
            )

        prev_event_hash = recorded_event_hash

    return len(errors) == 0, errors
