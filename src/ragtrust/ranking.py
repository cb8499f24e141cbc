"""Metadata-aware reranking of raw nearest-neighbor results.

Pipeline:
    raw hits → metadata filter → version preference → denoise → rerank → top_k

Rerank score per candidate:
    0.68 * semantic + 0.26 * lexical + category_boost
        - duplicate_penalty - low_info_penalty - off_category_penalty

Ties are broken by ascending distance, then by original order.
"""

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Optional

from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.metrics.pairwise import cosine_similarity

from .config import RetrievalSettings, settings
from .models import RetrievalFilters, RetrievedChunk, SearchHit, clamp01

# =============================================================================
# Text Normalization
# =============================================================================

_WORD_RE = re.compile(r"\w+", re.UNICODE)
_LATIN_RE = re.compile(r"[A-Za-z]")
_CYRILLIC_RE = re.compile(r"[Ѐ-ӿ]")


def normalize_text(text: str) -> str:
    """Lower-case and strip diacritics (NFKD without combining marks)."""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.lower()


def tokenize(text: str) -> list[str]:
    """Split normalized text into word tokens."""
    return _WORD_RE.findall(normalize_text(text))


STOP_WORDS = frozenset(
    normalize_text(word)
    for word in (
        # English
        "the and for are was were with what which who whom when where why how "
        "does did can could should would will shall may might must this that these "
        "those there their them they you your our from into about have has had not "
        "any all per each than then also only its it's is be been being of to in on "
        "at by an or as if do"
        # Ukrainian
        " які яка який яке що як чи для про при від над під між або але також "
        "цей ця це ці той та те ті щоб коли де чому хто яким якою який є був була "
        "були буде мене мені його її їх нас вас"
    ).split()
)


def query_tokens(query: str) -> list[str]:
    """Content tokens of a query: ≥3 chars, stop words removed, deduplicated."""
    seen: dict[str, None] = {}
    for token in tokenize(query):
        if len(token) >= 3 and token not in STOP_WORDS:
            seen.setdefault(token, None)
    return list(seen)


# =============================================================================
# Intent Inference & Query Expansion
# =============================================================================

# Keyword stems matched as token prefixes, in both corpus and query languages
_INTENT_KEYWORDS_RAW: dict[str, tuple[str, ...]] = {
    "admission": (
        "admission", "admit", "enrol", "applicant", "apply", "entrance", "entry",
        "вступ", "абітурієнт", "зарахуван", "прийом", "конкурс",
    ),
    "documents": (
        "document", "certificate", "diploma", "transcript", "paperwork", "passport",
        "документ", "довідк", "диплом", "заяв", "сертифікат", "паспорт",
    ),
    "integrity": (
        "integrity", "plagiar", "cheat", "honesty", "misconduct",
        "доброчесн", "плагіат", "списуван", "академічн",
    ),
    "scholarship": (
        "scholarship", "stipend", "grant", "tuition", "fee", "payment", "financial",
        "стипенд", "грант", "оплат", "вартість", "контракт",
    ),
    "infrastructure": (
        "dormitor", "dorm", "hostel", "library", "campus", "building", "housing", "canteen",
        "гуртож", "бібліотек", "корпус", "кампус", "їдальн",
    ),
    "regulations": (
        "regulation", "rule", "policy", "procedure", "exam", "retake", "session", "grading",
        "положенн", "правил", "порядок", "іспит", "сесі", "перескладан", "оцінюван",
    ),
}

# Target-language hint terms appended to Latin-script queries
_INTENT_HINTS_RAW: dict[str, tuple[str, ...]] = {
    "admission": ("вступ", "абітурієнт", "зарахування"),
    "documents": ("документи", "довідка", "заява"),
    "integrity": ("академічна доброчесність", "плагіат"),
    "scholarship": ("стипендія", "оплата навчання"),
    "infrastructure": ("гуртожиток", "бібліотека"),
    "regulations": ("положення", "порядок", "іспит"),
}

INTENT_KEYWORDS: dict[str, tuple[str, ...]] = {
    intent: tuple(normalize_text(k) for k in keywords)
    for intent, keywords in _INTENT_KEYWORDS_RAW.items()
}
INTENT_HINTS = _INTENT_HINTS_RAW
INTENTS = tuple(INTENT_KEYWORDS)


def infer_intents(query: str) -> list[str]:
    """Infer query intents, strongest first.

    Args:
        query: Raw query text.

    Returns:
        Intent names with at least one keyword hit, ordered by hit count
        (ties keep the declaration order of INTENTS).
    """
    tokens = tokenize(query)
    hits: dict[str, int] = {}
    for intent, stems in INTENT_KEYWORDS.items():
        count = sum(1 for token in tokens if any(token.startswith(stem) for stem in stems))
        if count:
            hits[intent] = count
    return sorted(hits, key=lambda intent: (-hits[intent], INTENTS.index(intent)))


def is_cross_language(query: str, corpus_script: str = "cyrillic") -> bool:
    """True when a Latin-script query targets a non-Latin corpus."""
    if corpus_script == "latin":
        return False
    return bool(_LATIN_RE.search(query)) and not _CYRILLIC_RE.search(query)


def expand_query(query: str, config: Optional[RetrievalSettings] = None) -> tuple[str, bool]:
    """Append target-language hint terms for cross-language queries.

    Only meaningful when the query text itself is embedded; callers that
    search with a precomputed vector skip this step.

    Returns:
        Tuple of (query text to embed, whether it was expanded).
    """
    config = config or settings.retrieval
    if not is_cross_language(query, config.corpus_script):
        return query, False

    hints: list[str] = []
    for intent in infer_intents(query):
        hints.extend(h for h in INTENT_HINTS.get(intent, ()) if h not in hints)
    if not hints:
        return query, False
    return f"{query} {' '.join(hints)}", True


# =============================================================================
# Filtering & Denoising
# =============================================================================


def apply_metadata_filters(
    chunks: list[RetrievedChunk], filters: RetrievalFilters
) -> list[RetrievedChunk]:
    """Keep exact year matches and case-insensitive document type matches.

    The document type is metadata `documentType`, falling back to `category`.
    """
    results = chunks
    if filters.year is not None:
        results = [c for c in results if c.document_year == filters.year]
    if filters.document_type:
        wanted = filters.document_type.strip().lower()
        results = [
            c for c in results if c.document_type and c.document_type.strip().lower() == wanted
        ]
    return results


def prefer_latest_version(
    chunks: list[RetrievedChunk], filters: RetrievalFilters
) -> list[RetrievedChunk]:
    """Without an explicit year, keep only the newest dated chunks plus all undated ones."""
    if filters.year is not None or not chunks:
        return chunks
    dated = [c for c in chunks if c.document_year is not None]
    undated = [c for c in chunks if c.document_year is None]
    if not dated:
        return chunks
    latest = max(c.document_year for c in dated)
    return [c for c in dated if c.document_year == latest] + undated


def is_noise(text: str, config: Optional[RetrievalSettings] = None) -> bool:
    """Detect punctuation-dominated, near-empty or highly repetitive text."""
    config = config or settings.retrieval
    stripped = text.strip()
    compact = re.sub(r"\s+", "", stripped)

    alnum_count = sum(1 for ch in compact if ch.isalnum())
    if alnum_count < config.min_alnum_chars:
        return True

    if len(stripped) >= config.punctuation_min_length:
        punctuation = sum(1 for ch in compact if not ch.isalnum())
        if punctuation / len(compact) > config.max_punctuation_ratio:
            return True

    return len(set(compact.lower())) < config.min_distinct_chars


def denoise(
    chunks: list[RetrievedChunk], config: Optional[RetrievalSettings] = None
) -> tuple[list[RetrievedChunk], bool]:
    """Drop noise chunks unless that would drop everything.

    Returns:
        Tuple of (kept chunks, whether denoising was skipped).
    """
    kept = [c for c in chunks if not is_noise(c.text, config)]
    if chunks and not kept:
        return chunks, True
    return kept, False


# =============================================================================
# Scoring Signals
# =============================================================================


def lexical_overlap(tokens: list[str], chunk: RetrievedChunk, config: RetrievalSettings) -> float:
    """Fraction of query tokens found in the chunk's text prefix, title and section labels.

    A query token matches any chunk word it is a prefix of.
    """
    if not tokens:
        return 0.0
    parts = [
        chunk.text[: config.text_sample_chars],
        chunk.title or "",
        str(chunk.metadata.get("documentTitle", "")),
        chunk.section or "",
        chunk.subsection or "",
    ]
    words = set(tokenize(" ".join(parts)))
    return sum(1 for token in tokens if any(word.startswith(token) for word in words)) / len(tokens)


def _intent_rank(category: Optional[str], intents: list[str]) -> Optional[int]:
    if not category:
        return None
    category = normalize_text(category)
    for rank, intent in enumerate(intents):
        if category == intent or category.startswith(intent) or intent.startswith(category):
            return rank
    return None


def category_boost(chunk: RetrievedChunk, intents: list[str], config: RetrievalSettings) -> float:
    """Boost chunks whose category matches an inferred intent, diminishing by intent rank."""
    rank = _intent_rank(chunk.category, intents)
    if rank is None:
        return 0.0
    return config.category_boost * (config.category_boost_decay**rank)


def off_category_penalty(
    chunk: RetrievedChunk,
    intents: list[str],
    filters: RetrievalFilters,
    config: RetrievalSettings,
) -> float:
    """Penalize categorized chunks outside every inferred intent (no explicit type requested)."""
    if filters.document_type or not intents or not chunk.category:
        return 0.0
    return 0.0 if _intent_rank(chunk.category, intents) is not None else config.off_category_penalty


def find_near_duplicates(texts: list[str], order: list[int], threshold: float) -> set[int]:
    """Indices of texts that near-duplicate an earlier text in `order`.

    Args:
        texts: Candidate texts.
        order: Candidate indices, best first; the first of a duplicate group is kept.
        threshold: TF-IDF cosine similarity at or above which texts are duplicates.

    Returns:
        Set of duplicate indices.
    """
    if len(texts) < 2:
        return set()

    try:
        sim_matrix = cosine_similarity(TfidfVectorizer().fit_transform(texts))
    except ValueError:
        # Empty vocabulary: compare compacted text instead
        compact = [re.sub(r"\s+", " ", normalize_text(t)).strip() for t in texts]
        sim_matrix = [[1.0 if a == b else 0.0 for b in compact] for a in compact]

    duplicates: set[int] = set()
    kept: list[int] = []
    for i in order:
        if any(sim_matrix[i][j] >= threshold for j in kept):
            duplicates.add(i)
        else:
            kept.append(i)
    return duplicates


def compute_fetch_k(
    top_k: int,
    filters: RetrievalFilters,
    query: str,
    config: Optional[RetrievalSettings] = None,
) -> int:
    """Neighbor count to request so the pool survives filtering and reranking."""
    config = config or settings.retrieval
    rerank_active = bool(query_tokens(query)) or bool(infer_intents(query))
    if filters.year is None and not filters.document_type and not rerank_active:
        return top_k
    return max(top_k, min(top_k * config.fetch_multiplier, config.max_fetch_k))


# =============================================================================
# Ranker
# =============================================================================


@dataclass
class RankingReport:
    """Ranked chunks plus per-stage counts for audit logging."""

    chunks: list[RetrievedChunk]
    candidates: int = 0
    after_filter: int = 0
    after_denoise: int = 0
    denoise_skipped: bool = False
    intents: list[str] = field(default_factory=list)
    filters_applied: list[str] = field(default_factory=list)


class RetrievalRanker:
    """Filters, denoises and reranks raw vector search results."""

    def __init__(self, config: Optional[RetrievalSettings] = None):
        self.config = config or settings.retrieval

    def rank(
        self,
        raw_results: list[SearchHit] | list[RetrievedChunk],
        query: str,
        filters: RetrievalFilters,
    ) -> list[RetrievedChunk]:
        """Return at most filters.top_k chunks, best first."""
        return self.rank_with_report(raw_results, query, filters).chunks

    def rank_with_report(
        self,
        raw_results: list[SearchHit] | list[RetrievedChunk],
        query: str,
        filters: RetrievalFilters,
    ) -> RankingReport:
        chunks = [
            r if isinstance(r, RetrievedChunk) else RetrievedChunk.from_hit(r) for r in raw_results
        ]
        report = RankingReport(chunks=[], candidates=len(chunks))
        if not chunks:
            return report

        if filters.year is not None:
            report.filters_applied.append("year")
        if filters.document_type:
            report.filters_applied.append("document_type")

        chunks = apply_metadata_filters(chunks, filters)
        chunks = prefer_latest_version(chunks, filters)
        report.after_filter = len(chunks)

        chunks, report.denoise_skipped = denoise(chunks, self.config)
        report.after_denoise = len(chunks)
        if not chunks:
            return report

        tokens = query_tokens(query)
        intents = infer_intents(query)
        report.intents = intents

        # Base score decides which member of a duplicate group survives
        base_scores = []
        for chunk in chunks:
            semantic = clamp01(1.0 - chunk.distance)
            base = (
                self.config.semantic_weight * semantic
                + self.config.lexical_weight * lexical_overlap(tokens, chunk, self.config)
                + category_boost(chunk, intents, self.config)
            )
            base_scores.append(base)

        order = sorted(range(len(chunks)), key=lambda i: (-base_scores[i], chunks[i].distance, i))
        duplicates = find_near_duplicates(
            [c.text for c in chunks], order, self.config.duplicate_similarity_threshold
        )

        scored: list[tuple[float, float, int, RetrievedChunk]] = []
        for i, chunk in enumerate(chunks):
            score = base_scores[i]
            if i in duplicates:
                score -= self.config.duplicate_penalty
            if len(tokenize(chunk.text)) < self.config.low_info_min_words:
                score -= self.config.low_info_penalty
            score -= off_category_penalty(chunk, intents, filters, self.config)
            scored.append((score, chunk.distance, i, chunk))

        scored.sort(key=lambda item: (-item[0], item[1], item[2]))
        report.chunks = [
            chunk.model_copy(update={"rerank_score": round(score, 6)})
            for score, _, _, chunk in scored[: filters.top_k]
        ]
        return report
