"""Merchant matching exports."""

from .matcher import (  # noqa: F401
    CONFIDENCE_THRESHOLD,
    MatchResult,
    MerchantCandidate,
    NO_MATCH,
    ScoredCandidate,
    load_verified_candidates,
    match_transaction,
    score_candidate,
    select_best_match,
)
