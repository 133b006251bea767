"""
Per-criterion match details and their persisted (versioned) form.

Match details are stored on source links, pending matches and audit rows so
a reviewer can see why a decision was made. The stored payload carries a
schema version so historical rows stay readable as scoring evolves:

    {
        "version": 1,
        "score_policy": "weighted_average",
        "criteria": [
            {"criterion": "name", "source_value": "...", "matched_value": "...",
             "score": 0.97, "weight": 0.35},
            ...
        ]
    }

Rows written before versioning hold a bare list with camelCase keys
(sourceValue / matchedValue); those load as version 0.
"""

from dataclasses import asdict, dataclass
from typing import Any, Optional

MATCH_DETAILS_VERSION = 1


@dataclass(frozen=True)
class MatchDetail:
    """Score contributed by one field comparison."""
    criterion: str
    source_value: str
    matched_value: str
    score: float
    weight: float

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "MatchDetail":
        return cls(
            criterion=data["criterion"],
            source_value=data.get("source_value", data.get("sourceValue", "")),
            matched_value=data.get("matched_value", data.get("matchedValue", "")),
            score=float(data.get("score", 0.0)),
            weight=float(data.get("weight", 0.0)),
        )


def dump_match_details(
    details: list[MatchDetail],
    score_policy: Optional[str] = None,
) -> dict:
    """Serialize match details into the current versioned payload."""
    return {
        "version": MATCH_DETAILS_VERSION,
        "score_policy": score_policy,
        "criteria": [detail.to_dict() for detail in details],
    }


def load_match_details(payload: Any) -> list[MatchDetail]:
    """
    Parse a stored match-details payload.

    Accepts the versioned dict form and the legacy bare list.

    Raises:
        ValueError: for an unknown version or an unrecognized shape
    """
    if payload is None:
        return []

    if isinstance(payload, list):
        return [MatchDetail.from_dict(item) for item in payload]

    if isinstance(payload, dict):
        version = payload.get("version")
        if version != MATCH_DETAILS_VERSION:
            raise ValueError(f"Unsupported match details version: {version!r}")
        return [MatchDetail.from_dict(item) for item in payload.get("criteria", [])]

    raise ValueError(f"Unrecognized match details payload: {type(payload).__name__}")
