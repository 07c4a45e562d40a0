"""
String Similarity Engine

Three similarity measures used by the similarity preset. Every function is
total: it never raises on string input and always returns a value in [0, 1].

- levenshtein: 1 - edit_distance / max(len(a), len(b))
- cosine: term-frequency vectors over the union vocabulary
- jaccard: token-set intersection over union

Usage:
    from eval_engine.similarity import calculate_similarity

    calculate_similarity("hello", "hallo")              # 0.8
    calculate_similarity("a b c", "a b d", "jaccard")   # 0.5
"""

import re
from collections import Counter
from typing import List, Union

import numpy as np
from rapidfuzz.distance import Levenshtein

from .types import SimilarityAlgorithm, clamp_score

# Whitespace plus ASCII and full-width Chinese punctuation.
TOKEN_SEPARATORS = re.compile(r"[\s,.!?;:，。！？；：]+")


def tokenize(text: str) -> List[str]:
    """Lowercase and split on whitespace/punctuation runs, dropping empties."""
    return [token for token in TOKEN_SEPARATORS.split(text.lower()) if token]


def levenshtein_similarity(a: str, b: str) -> float:
    """Normalized edit-distance similarity."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    distance = Levenshtein.distance(a, b)
    return 1.0 - distance / longest


def cosine_similarity(a: str, b: str) -> float:
    """Cosine of the term-frequency vectors of both strings."""
    counts_a = Counter(tokenize(a))
    counts_b = Counter(tokenize(b))

    vocabulary = sorted(set(counts_a) | set(counts_b))
    if not vocabulary:
        return 1.0

    vec_a = np.array([counts_a[term] for term in vocabulary], dtype=float)
    vec_b = np.array([counts_b[term] for term in vocabulary], dtype=float)

    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return clamp_score(float(np.dot(vec_a, vec_b) / (norm_a * norm_b)))


def jaccard_similarity(a: str, b: str) -> float:
    """Token-set intersection over union."""
    set_a = set(tokenize(a))
    set_b = set(tokenize(b))

    union = set_a | set_b
    if not union:
        return 1.0
    return len(set_a & set_b) / len(union)


def calculate_similarity(
    a: str,
    b: str,
    algorithm: Union[SimilarityAlgorithm, str] = SimilarityAlgorithm.LEVENSHTEIN,
) -> float:
    """Compute similarity with the named algorithm.

    Raises:
        ValueError: If the algorithm name is unknown.
    """
    algorithm = SimilarityAlgorithm(algorithm)

    if algorithm is SimilarityAlgorithm.LEVENSHTEIN:
        return levenshtein_similarity(a, b)
    elif algorithm is SimilarityAlgorithm.COSINE:
        return cosine_similarity(a, b)
    elif algorithm is SimilarityAlgorithm.JACCARD:
        return jaccard_similarity(a, b)
    else:
        raise ValueError(f"Unknown similarity algorithm: {algorithm}")
