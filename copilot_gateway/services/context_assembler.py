"""Context assembly: concurrent fetch, lexical ranking and token budgeting."""

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

import tiktoken

from copilot_gateway.infra.database import SessionScope, get_db_session
from copilot_gateway.infra.metrics import copilot_context_documents
from copilot_gateway.infra.timeout import DATABASE_QUERY_TIMEOUT
from copilot_gateway.models.context import AccessibleScope, ContextDocument, ContextKind
from copilot_gateway.services.context_sources import ALL_FETCHERS

logger = logging.getLogger("copilot_gateway.services.context_assembler")

MAX_CONTEXT_DOCUMENTS = 10
DEFAULT_TOKEN_BUDGET = 4000

PHRASE_BONUS = 0.3
TERM_BONUS = 0.1
MIN_TERM_LENGTH = 3
MAX_SCORE = 1.0

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

Fetcher = Callable[..., List[ContextDocument]]


def _get_encoding():
    try:
        return tiktoken.get_encoding("cl100k_base")
    except Exception as e:
        # No network or cache for the BPE file; fall back to a character estimate
        logger.warning("tiktoken encoding unavailable, estimating tokens", extra={"error": str(e)})
        return None


_encoding = None
_encoding_loaded = False


def count_tokens(value: str) -> int:
    """Token count under cl100k_base, or roughly four characters per token."""
    global _encoding, _encoding_loaded
    if not _encoding_loaded:
        _encoding = _get_encoding()
        _encoding_loaded = True
    if _encoding is not None:
        return len(_encoding.encode(value))
    return (len(value) + 3) // 4


def query_terms(query: str) -> List[str]:
    """Distinct lower-cased terms longer than two characters, in query order."""
    seen = []
    for term in re.findall(r"\w+", query.lower()):
        if len(term) >= MIN_TERM_LENGTH and term not in seen:
            seen.append(term)
    return seen


def score_document(document: ContextDocument, query: str) -> float:
    """
    Lexical relevance score.

    Starts at the source's base weight, adds 0.3 when the whole query appears
    in the text and 0.1 per distinct query term found, and never exceeds 1.0.
    """
    score = document.base_weight
    body = document.text.lower()
    phrase = query.strip().lower()
    if phrase and phrase in body:
        score += PHRASE_BONUS
    for term in query_terms(query):
        if term in body:
            score += TERM_BONUS
    return round(min(score, MAX_SCORE), 4)


def _sort_key(document: ContextDocument) -> Tuple:
    timestamp = (document.created_at or _EPOCH).timestamp()
    return (-document.score, -timestamp, document.kind.value, document.source, document.item_id)


class RankingStrategy(Protocol):
    """Scores and orders candidate documents for a query."""

    def rank(self, documents: Sequence[ContextDocument], query: str) -> List[ContextDocument]:
        ...


class KeywordRanker:
    """Substring keyword ranking; ties go to the most recent document."""

    def rank(self, documents: Sequence[ContextDocument], query: str) -> List[ContextDocument]:
        for document in documents:
            document.score = score_document(document, query)
        return sorted(documents, key=_sort_key)


def rank_documents(
    documents: Sequence[ContextDocument],
    query: str,
    limit: int = MAX_CONTEXT_DOCUMENTS,
    ranker: Optional[RankingStrategy] = None,
) -> List[ContextDocument]:
    """Rank candidates and keep the top ``limit``."""
    ranker = ranker or KeywordRanker()
    return ranker.rank(documents, query)[:limit]


def document_tokens(document: ContextDocument) -> int:
    """Tokens the document takes up once labelled in the prompt."""
    return count_tokens(f"[{document.source}]\n{document.text}")


def apply_token_budget(documents: Sequence[ContextDocument], budget: int = DEFAULT_TOKEN_BUDGET) -> List[ContextDocument]:
    """
    Drop the lowest-ranked documents until the total fits ``budget``.

    Input must already be ranked; order is preserved.
    """
    kept = list(documents)
    sizes = [document_tokens(d) for d in kept]
    total = sum(sizes)
    while kept and total > budget:
        kept.pop()
        total -= sizes.pop()
    return kept


class ContextAssembler:
    """Builds the ranked context set for one request."""

    def __init__(
        self,
        session_scope: SessionScope = get_db_session,
        token_budget: int = DEFAULT_TOKEN_BUDGET,
        ranker: Optional[RankingStrategy] = None,
        fetchers: Sequence[Tuple[ContextKind, Fetcher]] = ALL_FETCHERS,
        fetch_timeout: float = DATABASE_QUERY_TIMEOUT,
    ):
        self.session_scope = session_scope
        self.token_budget = token_budget
        self.ranker = ranker or KeywordRanker()
        self.fetchers = fetchers
        self.fetch_timeout = fetch_timeout

    def _run_fetcher(self, fetcher: Fetcher, subject_id: str, scope: AccessibleScope) -> List[ContextDocument]:
        with self.session_scope() as session:
            return fetcher(session, subject_id, scope)

    async def fetch_candidates(self, subject_id: str, scope: AccessibleScope) -> Dict[ContextKind, List[ContextDocument]]:
        """Run every source fetcher concurrently, each on its own session."""
        if not scope:
            return {kind: [] for kind, _ in self.fetchers}

        results = await asyncio.wait_for(
            asyncio.gather(*[
                asyncio.to_thread(self._run_fetcher, fetcher, subject_id, scope)
                for _, fetcher in self.fetchers
            ]),
            timeout=self.fetch_timeout,
        )
        candidates = {}
        for (kind, _), documents in zip(self.fetchers, results):
            # Fetchers already filter by scope; this only guards against a faulty fetcher
            candidates[kind] = [d for d in documents if d.container_id in scope.container_ids]
        return candidates

    def select(self, candidates: Dict[ContextKind, List[ContextDocument]], query: str) -> List[ContextDocument]:
        """Rank, keep the top ten, then enforce the token budget."""
        pool = [d for kind, _ in self.fetchers for d in candidates.get(kind, [])]
        ranked = rank_documents(pool, query, ranker=self.ranker)
        return apply_token_budget(ranked, self.token_budget)

    async def build(self, subject_id: str, query: str, scope: AccessibleScope) -> List[ContextDocument]:
        """
        Build the context documents for a request.

        Args:
            subject_id: Verified subject id
            query: Retrieval query (the latest user turn)
            scope: Scope returned by the scope resolver

        Returns:
            At most ten documents, ordered by descending relevance, within
            the token budget
        """
        candidates = await self.fetch_candidates(subject_id, scope)
        selected = self.select(candidates, query)

        copilot_context_documents.observe(len(selected))
        logger.info(
            "Assembled copilot context",
            extra={
                "subject_id": subject_id,
                "containers": len(scope),
                "candidates": {kind.value: len(docs) for kind, docs in candidates.items()},
                "selected": len(selected),
            },
        )
        return selected

    async def preview(self, subject_id: str, query: str, scope: AccessibleScope) -> Dict:
        """Per-source candidate counts and the selected documents, without calling the LLM."""
        candidates = await self.fetch_candidates(subject_id, scope)
        return {
            "sources": {kind.value: len(docs) for kind, docs in candidates.items()},
            "documents": self.select(candidates, query),
        }
