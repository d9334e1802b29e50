"""Search service interfaces."""

from .service import (
    FileHit,
    PersonHit,
    SearchOutcome,
    SemanticSearchService,
    VectorMatch,
    cosine_similarity,
    reciprocal_rank_fusion,
)

__all__ = [
    "FileHit",
    "PersonHit",
    "SearchOutcome",
    "SemanticSearchService",
    "VectorMatch",
    "cosine_similarity",
    "reciprocal_rank_fusion",
]
