"""
Similarity - Hashing-trick vectors for reranking search hits.

Text is turned into a sparse vector without a vocabulary: every search
keyword and every character 2-3 gram is hashed (FNV-1a) into one of 2048
buckets with a hash-derived sign and a log-scaled count as weight. Vectors
are L2-normalized, so cosine similarity is a plain dot product.

No external ML libraries required.
"""

import math
from collections import Counter
from typing import Optional

from cardsearch_lib.segment import KeywordExtractor

DEFAULT_DIMENSION = 2048

FNV_OFFSET_BASIS = 0x811C9DC5
FNV_PRIME = 0x01000193


def fnv1a32(value: str) -> int:
    """32-bit FNV-1a hash of a string's code points."""
    h = FNV_OFFSET_BASIS
    for char in value:
        h ^= ord(char)
        h = (h * FNV_PRIME) & 0xFFFFFFFF
    return h


def char_ngrams(text: str, min_n: int = 2, max_n: int = 3) -> list[str]:
    """Character n-grams of the text with all whitespace removed."""
    compact = ''.join((text or '').split())
    grams = []
    for n in range(min_n, max_n + 1):
        grams.extend(compact[i:i + n] for i in range(len(compact) - n + 1))
    return grams


def _tokenize(text: str, extractor: Optional[KeywordExtractor] = None) -> list[str]:
    """
    Hashing tokens of a text.

    Args:
        text: Input text
        extractor: Keyword extractor contributing segmented words

    Returns:
        Keywords followed by character n-grams, repeats included
    """
    if not text:
        return []
    tokens = []
    if extractor is not None:
        tokens.extend(word.strip() for word in extractor.extract_keywords(text) if word.strip())
    tokens.extend(char_ngrams(text))
    return tokens


def _normalize_vector(vector: dict[int, float]) -> dict[int, float]:
    """
    Normalize a vector to unit length for cosine similarity.

    Args:
        vector: Input vector as dictionary

    Returns:
        Normalized vector
    """
    if not vector:
        return {}

    magnitude = math.sqrt(sum(v * v for v in vector.values()))

    if magnitude == 0:
        return {}

    return {k: v / magnitude for k, v in vector.items()}


def hashing_embed(
    text: str,
    extractor: Optional[KeywordExtractor] = None,
    dimension: int = DEFAULT_DIMENSION,
) -> dict[int, float]:
    """
    Embed text as a normalized sparse hashing vector.

    Args:
        text: Input text
        extractor: Keyword extractor for word tokens (n-grams only if None)
        dimension: Number of hash buckets

    Returns:
        Mapping of bucket index to weight (empty for empty text)
    """
    vector: dict[int, float] = {}
    for token, count in Counter(_tokenize(text, extractor)).items():
        h = fnv1a32(token)
        index = h % dimension
        sign = 1.0 if (h >> 31) & 1 == 0 else -1.0
        vector[index] = vector.get(index, 0.0) + sign * math.log1p(count)
    return _normalize_vector(vector)


def cosine_similarity(vec1: dict[int, float], vec2: dict[int, float]) -> float:
    """
    Compute cosine similarity between two normalized vectors.

    Returns:
        Cosine similarity (-1.0 to 1.0); 0.0 if either vector is empty
    """
    if not vec1 or not vec2:
        return 0.0

    common = set(vec1.keys()) & set(vec2.keys())
    return sum(vec1[k] * vec2[k] for k in common)
