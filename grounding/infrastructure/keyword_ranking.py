# grounding/infrastructure/keyword_ranking.py

import re
from typing import List

from rank_bm25 import BM25Okapi

from grounding.domain.models import Fragment


def matches_any_term(fragment: Fragment, terms: List[str]) -> bool:
    """Case-insensitive substring match of any term against title or body."""
    title = fragment.title.lower()
    body = fragment.body.lower()
    return any(term in title or term in body for term in terms)


def _tokenize(text: str) -> List[str]:
    return re.sub(r"[^\w\s]", " ", text.lower()).split()


def rank_keyword_matches(fragments: List[Fragment], terms: List[str]) -> List[Fragment]:
    """
    Order keyword matches by BM25 relevance of the query terms.

    The BM25 corpus is the matched set itself, so scores only say which
    match uses the terms most. Ties (including substring-only matches that
    score zero) go to the most recently updated fragment.
    """
    by_recency = sorted(fragments, key=lambda f: f.updated_at.timestamp(), reverse=True)
    if len(by_recency) < 2:
        return by_recency

    corpus = [_tokenize(f"{f.title} {f.body}") for f in by_recency]
    if not any(corpus):
        return by_recency

    scores = BM25Okapi(corpus).get_scores(terms)
    order = sorted(range(len(by_recency)), key=lambda i: scores[i], reverse=True)
    return [by_recency[i] for i in order]


def keyword_search(fragments: List[Fragment], terms: List[str], limit: int) -> List[Fragment]:
    """Filter + rank + cap, shared by every corpus store backend."""
    if not terms or limit < 1:
        return []
    matches = [f for f in fragments if matches_any_term(f, terms)]
    return rank_keyword_matches(matches, terms)[:limit]
