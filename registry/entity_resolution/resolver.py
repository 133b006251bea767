"""
Entity Resolver

Decides, for each incoming source record, whether it belongs to an existing
master entity, needs a human decision, or matches nothing.

Decision tree (thresholds from MatchConfig):
a) Blank normalized name                      → no_candidates (no DB access)
b) Active source link for the identifier      → existing_link
c) No candidate scores >= reject threshold    → no_candidates
d) Score >= auto_match threshold              → auto_match (link + audit)
e) Score >= review threshold                  → needs_review (pending match)
f) Otherwise                                  → low_confidence
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from sqlalchemy.orm import Session

from config.logging import logger
from registry.entity_resolution.candidates import CandidateRetriever
from registry.entity_resolution.details import MatchDetail, load_match_details
from registry.entity_resolution.matchers import (
    CompositeMatcher,
    MatchCandidate,
    MatchConfig,
    NormalizedRecord,
)
from registry.entity_resolution.persistence import ResolutionStore
from registry.models import AliasType, AuditAction, SourceLink


class MatchMethod(Enum):
    """Terminal state of one resolution call."""
    EXISTING_LINK = "existing_link"
    AUTO_MATCH = "auto_match"
    NEEDS_REVIEW = "needs_review"
    LOW_CONFIDENCE = "low_confidence"
    NO_CANDIDATES = "no_candidates"


@dataclass(frozen=True)
class ResolveInput:
    """A record handed over by a scraper or bridge."""
    name: str
    source_system: str
    address: Optional[str] = None
    city: Optional[str] = None
    zip: Optional[str] = None
    phone: Optional[str] = None
    source_identifier: Optional[str] = None

    def normalized(self) -> NormalizedRecord:
        return NormalizedRecord.from_fields(
            self.name,
            address=self.address,
            city=self.city,
            zip_code=self.zip,
            phone=self.phone,
        )


@dataclass
class ResolveResult:
    """Outcome of a resolution call."""
    matched: bool = False
    master_id: Optional[int] = None
    score: float = 0.0
    match_method: MatchMethod = MatchMethod.NO_CANDIDATES
    match_details: list[MatchDetail] = field(default_factory=list)
    needs_review: bool = False

    def to_dict(self) -> dict:
        return {
            "matched": self.matched,
            "master_id": self.master_id,
            "score": round(self.score, 4),
            "match_method": self.match_method.value,
            "match_details": [d.to_dict() for d in self.match_details],
            "needs_review": self.needs_review,
        }

    def __repr__(self) -> str:
        return (
            f"<ResolveResult({self.match_method.value}, master_id={self.master_id}, "
            f"score={self.score:.3f})>"
        )


class EntityResolver:
    """
    Resolves source records against the master registry.

    Usage:
        resolver = EntityResolver(db)
        result = resolver.resolve(
            ResolveInput(
                name="Little Stars Daycare",
                city="Manchester",
                zip="03101",
                source_system="ccis",
                source_identifier="CCIS-001",
            ),
            MatchConfig(),
        )
        if result.matched:
            master_id = result.master_id
    """

    def __init__(
        self,
        db: Session,
        retriever: Optional[CandidateRetriever] = None,
        store: Optional[ResolutionStore] = None,
    ):
        self.db = db
        self.retriever = retriever or CandidateRetriever(db)
        self.store = store or ResolutionStore(db)

    def resolve(self, record: ResolveInput, config: MatchConfig) -> ResolveResult:
        """
        Resolve one source record.

        Storage read failures propagate; write failures are logged by the
        store and do not change the returned result.
        """
        logger.debug(f"Resolving {record.source_system}:{record.source_identifier} '{record.name}'")
        result = ResolveResult()

        normalized = record.normalized()
        if not normalized.name:
            logger.debug(f"Blank normalized name for '{record.name}', skipping")
            return result

        # Idempotence: a linked identifier always resolves to its link
        if record.source_identifier:
            link = self.store.get_active_link(record.source_system, record.source_identifier)
            if link is not None:
                return self._from_existing_link(link)

        match = self._best_match(normalized, config)

        if match is None:
            self._audit(record, None, AuditAction.REJECTED, 0.0, MatchMethod.NO_CANDIDATES, [], config)
            logger.debug(f"No candidates for '{record.name}'")
            return result

        result.score = match.score
        result.match_details = match.match_details

        if match.score >= config.auto_match_threshold:
            result.matched = True
            result.master_id = match.master_id
            result.match_method = MatchMethod.AUTO_MATCH

            if record.source_identifier:
                self.store.upsert_source_link(
                    master_id=match.master_id,
                    source_system=record.source_system,
                    source_identifier=record.source_identifier,
                    source_name=record.name,
                    match_method=MatchMethod.AUTO_MATCH.value,
                    match_score=match.score,
                    match_details=match.match_details,
                    score_policy=config.score_policy.value,
                )
            self._audit(
                record, match.master_id, AuditAction.MATCHED, match.score,
                MatchMethod.AUTO_MATCH, match.match_details, config,
            )
            logger.info(
                f"Auto-matched '{record.name}' -> {match.master_id} "
                f"'{match.display_name}' (score={match.score:.3f})"
            )

        elif match.score >= config.review_threshold:
            # Tentative match only; no source link until a reviewer approves
            result.master_id = match.master_id
            result.match_method = MatchMethod.NEEDS_REVIEW
            result.needs_review = True

            if record.source_identifier:
                self.store.queue_pending_match(
                    source_system=record.source_system,
                    source_identifier=record.source_identifier,
                    source_name=record.name,
                    candidate_master_id=match.master_id,
                    match_score=match.score,
                    match_details=match.match_details,
                    source_address=record.address,
                    source_city=record.city,
                    source_zip=record.zip,
                    score_policy=config.score_policy.value,
                )

        else:
            result.match_method = MatchMethod.LOW_CONFIDENCE
            self._audit(
                record, match.master_id, AuditAction.REJECTED, match.score,
                MatchMethod.LOW_CONFIDENCE, match.match_details, config,
            )
            logger.debug(
                f"Low confidence for '{record.name}': best {match.master_id} "
                f"(score={match.score:.3f})"
            )

        return result

    def find_best_match(
        self,
        record: ResolveInput,
        config: MatchConfig,
    ) -> Optional[MatchCandidate]:
        """Best candidate at or above the reject threshold, without side effects."""
        return self._best_match(record.normalized(), config)

    def resolve_or_create(
        self,
        record: ResolveInput,
        config: MatchConfig,
        **attributes: Any,
    ) -> tuple[ResolveResult, bool]:
        """
        Resolve a record, creating a master entity when nothing resembles it.

        A new entity is only created when no candidate clears the reject
        threshold. Review-band and low-confidence records are returned as-is.
        On an auto-match the input name is kept as an alias when it differs
        from the canonical name.

        Args:
            record: Source record
            config: Match configuration
            **attributes: Extra MasterEntity columns for a new entity
                (provider_type, license_number, capacity, ...)

        Returns:
            Tuple of (result, created) where created is True for a new entity
        """
        result = self.resolve(record, config)

        if result.match_method is MatchMethod.AUTO_MATCH:
            self._add_name_variant(record, result)
            return result, False

        if result.match_method is not MatchMethod.NO_CANDIDATES or not record.normalized().name:
            return result, False

        entity = self.store.create_master_entity(
            display_name=record.name,
            display_address=record.address,
            city=record.city,
            zip_code=record.zip,
            phone=record.phone,
            **attributes,
        )
        if entity is None:
            return result, False

        if record.source_identifier:
            self.store.upsert_source_link(
                master_id=entity.id,
                source_system=record.source_system,
                source_identifier=record.source_identifier,
                source_name=record.name,
                match_method=AuditAction.CREATED.value,
                match_score=1.0,
                score_policy=config.score_policy.value,
            )
        self.store.append_audit(
            master_id=entity.id,
            source_system=record.source_system,
            source_identifier=record.source_identifier or record.name,
            source_name=record.name,
            action=AuditAction.CREATED,
            match_score=1.0,
            match_method=MatchMethod.NO_CANDIDATES.value,
        )

        created = ResolveResult(
            matched=True,
            master_id=entity.id,
            score=1.0,
            match_method=MatchMethod.NO_CANDIDATES,
        )
        return created, True

    def get_master_id_for_source(
        self,
        source_system: str,
        source_identifier: str,
    ) -> Optional[int]:
        """Master id an external record is actively linked to, if any."""
        link = self.store.get_active_link(source_system, source_identifier)
        return link.master_id if link else None

    def _best_match(
        self,
        normalized: NormalizedRecord,
        config: MatchConfig,
    ) -> Optional[MatchCandidate]:
        if not normalized.name:
            return None

        candidates = self.retriever.fetch(normalized.name, normalized.city, normalized.zip5)
        if not candidates:
            return None
        return CompositeMatcher(config).best_match(normalized, candidates)

    def _from_existing_link(self, link: SourceLink) -> ResolveResult:
        try:
            details = load_match_details(link.match_details)
        except ValueError:
            logger.warning(f"Unreadable match details on link {link.id}")
            details = []

        return ResolveResult(
            matched=True,
            master_id=link.master_id,
            score=link.match_score if link.match_score is not None else 1.0,
            match_method=MatchMethod.EXISTING_LINK,
            match_details=details,
        )

    def _add_name_variant(self, record: ResolveInput, result: ResolveResult):
        """Keep the incoming spelling as an alias of the matched entity."""
        name_detail = next((d for d in result.match_details if d.criterion == "name"), None)
        if name_detail is None or name_detail.source_value == name_detail.matched_value:
            return

        self.store.add_alias(
            master_id=result.master_id,
            alias_name=record.name,
            alias_type=AliasType.VARIANT,
            source=record.source_system,
            confidence=result.score,
        )

    def _audit(
        self,
        record: ResolveInput,
        master_id: Optional[int],
        action: AuditAction,
        score: float,
        method: MatchMethod,
        details: list[MatchDetail],
        config: MatchConfig,
    ):
        self.store.append_audit(
            master_id=master_id,
            source_system=record.source_system,
            source_identifier=record.source_identifier or record.name,
            source_name=record.name,
            action=action,
            match_score=score,
            match_method=method.value,
            match_details=details,
            score_policy=config.score_policy.value,
        )
