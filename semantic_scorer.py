import logging
import re
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity

from match_types import MenteeProfile, MentorProfile
from matching_errors import EmbeddingProviderError

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 8.0
EMBED_BATCH_SIZE = 100


class SentenceTransformerProvider:
    """Embeds a batch of texts with a local sentence-transformers model."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self.model_name = model_name
        try:
            from sentence_transformers import SentenceTransformer
            self._embedder = SentenceTransformer(self.model_name)
        except Exception as e:
            raise EmbeddingProviderError(
                f"Could not load embedding model {model_name!r}. Embed mode requires "
                "sentence-transformers: pip install sentence-transformers") from e

    def __call__(self, texts: Sequence[str]) -> List[List[float]]:
        embs = self._embedder.encode(list(texts), show_progress_bar=False, normalize_embeddings=True)
        return np.asarray(embs, dtype=float).tolist()


# Embedding texts
def _join(parts) -> str:
    return ". ".join(p.strip() for p in parts if p and p.strip())


def build_mentee_text(mentee: MenteeProfile) -> str:
    return _join([
        mentee.goals_text,
        mentee.motivation,
        f"Topics: {', '.join(mentee.topics_sought)}" if mentee.topics_sought else "",
    ])


def build_mentor_text(mentor: MentorProfile) -> str:
    return _join([
        mentor.bio_text,
        mentor.motivation,
        f"Topics: {', '.join(mentor.topics_offered)}" if mentor.topics_offered else "",
        f"Style: {mentor.mentoring_style}" if mentor.mentoring_style else "",
    ])


def _words(text: str) -> set:
    return {w for w in re.findall(r"\w+", (text or "").lower()) if len(w) > 3}


def lexical_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Share of distinct content words (longer than 3 chars) the two texts have in common."""
    wa, wb = _words(a), _words(b)
    if not wa or not wb:
        return 0.0
    return len(wa & wb) / len(wa | wb)


# Semantic scorer
class SemanticScorer:
    """
    Similarity between a mentee's goals and a mentor's offer.

    mode="off" scores every pair 0, mode="lexical" uses word overlap, and
    mode="embed" embeds every profile once per run through `provider`
    (any callable mapping a list of strings to same-length vectors).
    If embedding fails after the bounded retries, the run continues on the
    lexical heuristic and `fallback_reason` says why.
    """

    def __init__(self, mode: str = "lexical", provider: Optional[Callable] = None,
                 model_name: str = "all-MiniLM-L6-v2", retries: int = 3, backoff: float = 0.5,
                 sleep: Callable[[float], None] = time.sleep):
        self.mode = mode
        self.model_name = model_name
        self.provider = provider
        self.retries = max(1, retries)
        self.backoff = backoff
        self._sleep = sleep
        self._vectors: Dict[Tuple[str, str], np.ndarray] = {}
        self.fallback_reason: Optional[str] = None

    @property
    def is_embedding_based(self) -> bool:
        return bool(self._vectors)

    def _embed_with_retry(self, texts: List[str]) -> List[List[float]]:
        for attempt in range(self.retries):
            try:
                vectors = self.provider(texts)
                if vectors is None or len(vectors) != len(texts):
                    raise EmbeddingProviderError(
                        f"expected {len(texts)} vectors, got {0 if vectors is None else len(vectors)}")
                return vectors
            except Exception as e:
                if attempt == self.retries - 1:
                    raise EmbeddingProviderError(
                        f"embedding failed after {self.retries} attempts: {e}") from e
                wait = min(self.backoff * (2 ** attempt), MAX_BACKOFF_SECONDS)
                logger.warning("Embedding attempt %d/%d failed (%s); retrying in %.1fs",
                               attempt + 1, self.retries, e, wait)
                self._sleep(wait)

    def prepare(self, mentees: Sequence[MenteeProfile], mentors: Sequence[MentorProfile]) -> None:
        """Embed every profile of the cohort up front. No-op unless mode is 'embed'."""
        self._vectors = {}
        self.fallback_reason = None
        if self.mode != "embed":
            return

        keys, texts = [], []
        for m in mentees:
            text = build_mentee_text(m)
            if text:
                keys.append(("mentee", m.id))
                texts.append(text)
        for m in mentors:
            text = build_mentor_text(m)
            if text:
                keys.append(("mentor", m.id))
                texts.append(text)
        if not texts:
            return

        try:
            if self.provider is None:
                self.provider = SentenceTransformerProvider(self.model_name)
            vectors: List[List[float]] = []
            for i in range(0, len(texts), EMBED_BATCH_SIZE):
                vectors.extend(self._embed_with_retry(texts[i:i + EMBED_BATCH_SIZE]))
            arr = np.asarray(vectors, dtype=float)
            if arr.ndim != 2 or not np.isfinite(arr).all():
                raise EmbeddingProviderError("provider returned malformed vectors")
        except EmbeddingProviderError as e:
            self.fallback_reason = str(e)
            logger.warning("Embedding provider unavailable, using lexical similarity: %s", e)
            return

        self._vectors = {key: arr[i] for i, key in enumerate(keys)}
        logger.info("Embedded %d profile texts with %s", len(keys), self.model_name)

    def similarity(self, mentee: MenteeProfile, mentor: MentorProfile) -> Tuple[float, bool]:
        """Returns (similarity in [0, 1], whether it came from embeddings)."""
        if self.mode == "off":
            return 0.0, False
        a = self._vectors.get(("mentee", mentee.id))
        b = self._vectors.get(("mentor", mentor.id))
        if a is not None and b is not None:
            sim = float(cosine_similarity([a], [b])[0][0])
            if not np.isfinite(sim):
                sim = 0.0
            return max(0.0, min(1.0, sim)), True
        return lexical_similarity(build_mentee_text(mentee), build_mentor_text(mentor)), False
