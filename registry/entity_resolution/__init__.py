"""
Entity Resolution Module

Composite entity resolution for provider records:
- Deterministic normalization of names, addresses, phones and ZIPs
- Weighted multi-field scoring (Jaro-Winkler, containment, exact match)
- Threshold-banded decisions (auto-match / manual review / reject)
- Idempotent source links, review queue and audit trail
"""

from registry.entity_resolution.candidates import CandidateRetriever
from registry.entity_resolution.details import MatchDetail
from registry.entity_resolution.matchers import (
    DEFAULT_MATCH_CONFIG,
    CompositeMatcher,
    MatchCandidate,
    MatchConfig,
    NormalizedRecord,
    ScorePolicy,
)
from registry.entity_resolution.persistence import ResolutionStore
from registry.entity_resolution.resolver import (
    EntityResolver,
    MatchMethod,
    ResolveInput,
    ResolveResult,
)

__all__ = [
    "CandidateRetriever",
    "CompositeMatcher",
    "DEFAULT_MATCH_CONFIG",
    "EntityResolver",
    "MatchCandidate",
    "MatchConfig",
    "MatchDetail",
    "MatchMethod",
    "NormalizedRecord",
    "ResolutionStore",
    "ResolveInput",
    "ResolveResult",
    "ScorePolicy",
]
