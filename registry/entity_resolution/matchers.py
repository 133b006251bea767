"""
Composite multi-field matching of an incoming record against candidates.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from registry.entity_resolution.details import MatchDetail
from registry.entity_resolution.similarity import jaro_winkler, name_similarity
from registry.models import MasterEntity
from registry.normalization import (
    normalize_address,
    normalize_city,
    normalize_name,
    normalize_phone,
    normalize_zip,
)


class ScorePolicy(Enum):
    """How per-field scores are combined into one composite score."""
    # Sum(score * weight) / Sum(weights of fields present on both sides)
    WEIGHTED_AVERAGE = "weighted_average"
    # Sum(score * weight), only equal to the average when every field is present
    RAW_SUM = "raw_sum"


@dataclass(frozen=True)
class MatchConfig:
    """
    Weights and thresholds for one resolution call.

    Passed explicitly into every resolve() so the same config always
    reproduces the same decision.
    """
    name_weight: float = 0.35
    address_weight: float = 0.30
    city_weight: float = 0.15
    zip_weight: float = 0.15
    phone_weight: float = 0.05

    # Minimum score to link without review
    auto_match_threshold: float = 0.85
    # Minimum score to queue for manual review
    review_threshold: float = 0.60
    # Best candidate below this is no candidate at all
    reject_threshold: float = 0.40

    score_policy: ScorePolicy = ScorePolicy.WEIGHTED_AVERAGE

    def __post_init__(self):
        weights = (
            self.name_weight, self.address_weight, self.city_weight,
            self.zip_weight, self.phone_weight,
        )
        if any(w < 0 for w in weights):
            raise ValueError(f"Match weights must be non-negative: {weights}")
        if self.name_weight <= 0:
            raise ValueError("name_weight must be positive")
        if not (
            0 <= self.reject_threshold
            <= self.review_threshold
            <= self.auto_match_threshold
            <= 1
        ):
            raise ValueError(
                "Thresholds must satisfy 0 <= reject <= review <= auto_match <= 1, got "
                f"reject={self.reject_threshold}, review={self.review_threshold}, "
                f"auto_match={self.auto_match_threshold}"
            )

    @classmethod
    def from_settings(cls, settings=None) -> "MatchConfig":
        """Build a config from environment-backed settings."""
        if settings is None:
            from config.settings import settings

        return cls(
            name_weight=settings.MATCH_NAME_WEIGHT,
            address_weight=settings.MATCH_ADDRESS_WEIGHT,
            city_weight=settings.MATCH_CITY_WEIGHT,
            zip_weight=settings.MATCH_ZIP_WEIGHT,
            phone_weight=settings.MATCH_PHONE_WEIGHT,
            auto_match_threshold=settings.AUTO_MATCH_THRESHOLD,
            review_threshold=settings.REVIEW_THRESHOLD,
            reject_threshold=settings.REJECT_THRESHOLD,
            score_policy=ScorePolicy(settings.SCORE_POLICY),
        )


DEFAULT_MATCH_CONFIG = MatchConfig()


@dataclass(frozen=True)
class NormalizedRecord:
    """Comparable form of an incoming record. Empty string = field absent."""
    name: str
    address: str = ""
    city: str = ""
    zip5: str = ""
    phone: str = ""

    @classmethod
    def from_fields(
        cls,
        name: Optional[str],
        address: Optional[str] = None,
        city: Optional[str] = None,
        zip_code: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> "NormalizedRecord":
        return cls(
            name=normalize_name(name),
            address=normalize_address(address),
            city=normalize_city(city),
            zip5=normalize_zip(zip_code),
            phone=normalize_phone(phone),
        )


@dataclass
class MatchCandidate:
    """A scored master entity."""
    master_id: int
    display_name: str
    canonical_name: str
    address: Optional[str]
    city: Optional[str]
    zip5: Optional[str]
    score: float
    match_details: list[MatchDetail] = field(default_factory=list)

    def __repr__(self) -> str:
        return f"<MatchCandidate({self.master_id}, {self.canonical_name}, score={self.score:.3f})>"


class CompositeMatcher:
    """
    Weighted multi-field scorer.

    Fields:
    - name (required): best of Jaro-Winkler / discounted containment,
      against the canonical name and every alias
    - address: Jaro-Winkler on normalized addresses
    - city, zip5, phone: exact match

    A field only contributes when it is present on both sides. A missing
    field is left out of both the weighted sum and the weight total, so it
    never counts as a mismatch.
    """

    def __init__(self, config: MatchConfig):
        self.config = config

    def score(self, record: NormalizedRecord, entity: MasterEntity) -> MatchCandidate:
        """Score one candidate entity against a normalized record."""
        config = self.config
        details: list[MatchDetail] = []

        # Name: canonical plus aliases, keep the best
        names = [entity.canonical_name] + [a.alias_normalized for a in entity.aliases]
        best_name, best_name_score = entity.canonical_name, 0.0
        for candidate_name in names:
            if not candidate_name:
                continue
            name_score = name_similarity(record.name, candidate_name)
            if name_score > best_name_score:
                best_name, best_name_score = candidate_name, name_score
        details.append(MatchDetail(
            criterion="name",
            source_value=record.name,
            matched_value=best_name,
            score=best_name_score,
            weight=config.name_weight,
        ))

        if record.address and entity.normalized_address:
            details.append(MatchDetail(
                criterion="address",
                source_value=record.address,
                matched_value=entity.normalized_address,
                score=jaro_winkler(record.address, entity.normalized_address),
                weight=config.address_weight,
            ))

        entity_city = normalize_city(entity.city)
        if record.city and entity_city:
            details.append(MatchDetail(
                criterion="city",
                source_value=record.city,
                matched_value=entity.city,
                score=1.0 if record.city == entity_city else 0.0,
                weight=config.city_weight,
            ))

        if record.zip5 and entity.zip5:
            details.append(MatchDetail(
                criterion="zip",
                source_value=record.zip5,
                matched_value=entity.zip5,
                score=1.0 if record.zip5 == entity.zip5 else 0.0,
                weight=config.zip_weight,
            ))

        if record.phone and entity.normalized_phone:
            details.append(MatchDetail(
                criterion="phone",
                source_value=record.phone,
                matched_value=entity.normalized_phone,
                score=1.0 if record.phone == entity.normalized_phone else 0.0,
                weight=config.phone_weight,
            ))

        return MatchCandidate(
            master_id=entity.id,
            display_name=entity.display_name,
            canonical_name=entity.canonical_name,
            address=entity.normalized_address,
            city=entity.city,
            zip5=entity.zip5,
            score=self.combine(details),
            match_details=details,
        )

    def combine(self, details: list[MatchDetail]) -> float:
        """Combine per-field details into one score under the configured policy."""
        total_score = sum(d.score * d.weight for d in details)
        if self.config.score_policy is ScorePolicy.RAW_SUM:
            return total_score

        total_weight = sum(d.weight for d in details)
        return total_score / total_weight if total_weight > 0 else 0.0

    def rank(
        self,
        record: NormalizedRecord,
        candidates: list[MasterEntity],
    ) -> list[MatchCandidate]:
        """Score all candidates, best first (ties go to the older entity)."""
        scored = [self.score(record, entity) for entity in candidates]
        scored.sort(key=lambda c: (-c.score, c.master_id))
        return scored

    def best_match(
        self,
        record: NormalizedRecord,
        candidates: list[MasterEntity],
    ) -> Optional[MatchCandidate]:
        """Return the top candidate if it clears the reject threshold."""
        if not record.name:
            return None

        ranked = self.rank(record, candidates)
        if ranked and ranked[0].score >= self.config.reject_threshold:
            return ranked[0]
        return None
