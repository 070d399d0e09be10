"""
Keyword Ranker
---------------
IDF-weighted term overlap with saturation and recency decay.  Corpus
statistics are computed once per chunk set (i.e. once per reindex); each
query then only touches the postings of its own terms.

Per chunk c and distinct query term t present in c:

    idf(t)      = ln(1 + N / df(t))
    sat(tf)     = tf * (k1 + 1) / (tf + k1)            # diminishing returns
    term(t, c)  = idf(t) * (sat(tf_content) + heading_boost * sat(tf_section))

    raw(c)      = sum_t term(t, c) * (1 + multi_term_bonus * (matched - 1))
    final(c)    = raw(c) * 0.5 ** (age_days / half_life_days)

Chunks without `indexed_at` are not decayed.  Terms that appear nowhere in
the corpus contribute nothing; a query with no known terms ranks nothing.
"""
from __future__ import annotations

import math
import re
from collections import Counter
from datetime import datetime, timezone
from typing import Optional, Sequence

import numpy as np
from loguru import logger

from context_engine.chunking.schemas import Chunk, SearchResult

K1 = 1.2
HEADING_BOOST = 2.0
MULTI_TERM_BONUS = 0.5
HALF_LIFE_DAYS = 90.0

_TOKEN_RE = re.compile(r"[^\W_]+")
_SECONDS_PER_DAY = 86400.0


def tokenize(text: str) -> list[str]:
    """Lower-case, split on non-alphanumeric runs, drop 1-char tokens."""
    return [t for t in _TOKEN_RE.findall(text.lower()) if len(t) > 1]


def query_terms(query: str) -> list[str]:
    """Distinct query tokens in first-seen order."""
    return list(dict.fromkeys(tokenize(query)))


def _as_utc(ts: datetime) -> datetime:
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts


def decay_factor(
    indexed_at: Optional[datetime],
    now: datetime,
    half_life_days: float = HALF_LIFE_DAYS,
) -> float:
    """0.5 ** (age / half-life); 1.0 when there is no timestamp or decay is off."""
    if indexed_at is None or half_life_days <= 0:
        return 1.0
    age_days = (_as_utc(now) - _as_utc(indexed_at)).total_seconds() / _SECONDS_PER_DAY
    return 0.5 ** (max(age_days, 0.0) / half_life_days)


class KeywordRanker:
    """
    Ranks a fixed chunk collection against free-text queries.

    Usage:
        ranker = KeywordRanker(chunks)
        results = ranker.search("docker compose", top_k=5)
        scores = ranker.scores("docker compose")   # aligned with chunks
    """

    def __init__(
        self,
        chunks: Sequence[Chunk],
        k1: float = K1,
        heading_boost: float = HEADING_BOOST,
        multi_term_bonus: float = MULTI_TERM_BONUS,
        half_life_days: float = HALF_LIFE_DAYS,
    ) -> None:
        self.chunks: list[Chunk] = list(chunks)
        self.k1 = k1
        self.heading_boost = heading_boost
        self.multi_term_bonus = multi_term_bonus
        self.half_life_days = half_life_days

        self._content_tf: list[Counter] = []
        self._section_tf: list[Counter] = []
        self._postings: dict[str, list[int]] = {}

        for idx, chunk in enumerate(self.chunks):
            content_tf = Counter(tokenize(chunk.content))
            section_tf = Counter(tokenize(chunk.section))
            self._content_tf.append(content_tf)
            self._section_tf.append(section_tf)
            for term in content_tf.keys() | section_tf.keys():
                self._postings.setdefault(term, []).append(idx)

        for postings in self._postings.values():
            postings.sort()

        logger.debug(
            f"[KeywordRanker] {len(self.chunks)} chunks | vocabulary {len(self._postings)} terms"
        )

    def __len__(self) -> int:
        return len(self.chunks)

    # --- Term statistics ----------------------------------------------------------

    def document_frequency(self, term: str) -> int:
        return len(self._postings.get(term, ()))

    def idf(self, term: str) -> float:
        df = self.document_frequency(term)
        if df == 0:
            return 0.0
        return math.log(1.0 + len(self.chunks) / df)

    def saturate(self, tf: int) -> float:
        if tf <= 0:
            return 0.0
        return tf * (self.k1 + 1.0) / (tf + self.k1)

    # --- Scoring ------------------------------------------------------------------

    def scores(self, query: str, now: Optional[datetime] = None) -> np.ndarray:
        """Final keyword score for every chunk, in chunk order (0 = no match)."""
        scores = np.zeros(len(self.chunks), dtype=np.float64)
        terms = query_terms(query)
        if not terms or not self.chunks:
            return scores

        matched = np.zeros(len(self.chunks), dtype=np.int64)
        for term in terms:
            postings = self._postings.get(term)
            if not postings:
                continue
            weight = self.idf(term)
            for idx in postings:
                body = self.saturate(self._content_tf[idx][term])
                heading = self.saturate(self._section_tf[idx][term])
                scores[idx] += weight * (body + self.heading_boost * heading)
                matched[idx] += 1

        hit = matched > 0
        if not hit.any():
            return scores
        scores[hit] *= 1.0 + self.multi_term_bonus * (matched[hit] - 1)

        now = now or datetime.now(timezone.utc)
        for idx in np.flatnonzero(hit):
            scores[idx] *= decay_factor(self.chunks[idx].indexed_at, now, self.half_life_days)
        return scores

    def search(
        self,
        query: str,
        top_k: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> list[SearchResult]:
        """
        Chunks with a positive score, best first; equal scores keep chunk order.

        An empty/whitespace query, a query with no known terms, or top_k <= 0
        returns [] rather than raising.
        """
        if top_k is not None and top_k <= 0:
            return []
        scores = self.scores(query, now=now)
        ranked = sorted(np.flatnonzero(scores > 0), key=lambda i: -scores[i])
        if top_k is not None:
            ranked = ranked[:top_k]
        return [
            SearchResult(chunk=self.chunks[i], score=float(scores[i]), keyword_score=float(scores[i]))
            for i in ranked
        ]
