"""
Persistence and audit writes for entity resolution.

Concurrency model: independent ingestion jobs may resolve the same external
record at the same time. There is no lock around "check link, then write
link". Instead every write converges through a unique constraint plus the
store's native upsert:

- source_links     (source_system, source_identifier)      ON CONFLICT DO UPDATE
- provider_aliases (master_id, alias_normalized)            ON CONFLICT DO NOTHING
- pending_matches  (source_system, source_identifier,
                    candidate_master_id)                    ON CONFLICT DO NOTHING
- match_audit_log                                           plain INSERT

Writes are best-effort: a failed write is logged, rolled back and reported
through the return value, but never raised. A resolution result is returned
to the caller even if its audit row could not be stored.
"""

from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.logging import logger
from registry.entity_resolution.details import MatchDetail, dump_match_details, load_match_details
from registry.models import (
    AliasType,
    AuditAction,
    LinkStatus,
    MasterEntity,
    MatchAuditLog,
    PendingMatch,
    PendingStatus,
    ProviderAlias,
    SourceLink,
)
from registry.normalization import normalize_name

# Dialects with INSERT ... ON CONFLICT support
UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


class ResolutionStore:
    """
    Idempotent writes of links, aliases, review-queue rows and audit entries.

    Usage:
        store = ResolutionStore(db)
        store.upsert_source_link(master_id=7, source_system="ccis",
                                 source_identifier="CCIS-001", ...)
    """

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Reads (errors propagate)
    # ------------------------------------------------------------------

    def get_active_link(
        self,
        source_system: str,
        source_identifier: str,
    ) -> Optional[SourceLink]:
        """Return the active source link for an external identifier, if any."""
        return (
            self.db.query(SourceLink)
            .filter(
                SourceLink.source_system == source_system,
                SourceLink.source_identifier == source_identifier,
                SourceLink.status == LinkStatus.ACTIVE,
            )
            .first()
        )

    def list_pending_matches(self, limit: int = 50) -> list[PendingMatch]:
        """Pending review rows, highest score first."""
        return (
            self.db.query(PendingMatch)
            .filter(PendingMatch.status == PendingStatus.PENDING)
            .order_by(PendingMatch.match_score.desc(), PendingMatch.id)
            .limit(limit)
            .all()
        )

    # ------------------------------------------------------------------
    # Resolution writes
    # ------------------------------------------------------------------

    def upsert_source_link(
        self,
        master_id: int,
        source_system: str,
        source_identifier: str,
        source_name: Optional[str],
        match_method: str,
        match_score: float,
        match_details: Optional[list[MatchDetail]] = None,
        score_policy: Optional[str] = None,
    ) -> bool:
        """
        Create or replace the link for (source_system, source_identifier).

        The link is always left active. Returns False if the write failed.
        """
        try:
            self._write_source_link(
                master_id, source_system, source_identifier, source_name,
                match_method, match_score, match_details, score_policy,
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                f"Error creating source link {source_system}:{source_identifier} -> {master_id}"
            )
            return False

        logger.debug(f"Linked {source_system}:{source_identifier} -> {master_id} ({match_method})")
        return True

    def add_alias(
        self,
        master_id: int,
        alias_name: str,
        alias_type: AliasType = AliasType.VARIANT,
        source: Optional[str] = None,
        confidence: float = 1.0,
    ) -> bool:
        """
        Record an alternate name for a master entity.

        Re-adding an alias with the same normalized form is a no-op.
        Returns False if the name normalizes to nothing or the write failed.
        """
        alias_normalized = normalize_name(alias_name)
        if not alias_normalized:
            return False

        values = {
            "master_id": master_id,
            "alias_display": alias_name,
            "alias_normalized": alias_normalized,
            "alias_type": alias_type,
            "source": source,
            "confidence": confidence,
        }
        try:
            self._upsert(
                ProviderAlias,
                values,
                conflict_columns=["master_id", "alias_normalized"],
                update=False,
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Error adding alias '{alias_name}' to {master_id}")
            return False
        return True

    def queue_pending_match(
        self,
        source_system: str,
        source_identifier: str,
        source_name: Optional[str],
        candidate_master_id: int,
        match_score: float,
        match_details: Optional[list[MatchDetail]] = None,
        source_address: Optional[str] = None,
        source_city: Optional[str] = None,
        source_zip: Optional[str] = None,
        score_policy: Optional[str] = None,
    ) -> bool:
        """
        Queue a tentative match for manual review.

        An existing row for the same (source, candidate) is left untouched,
        including one a reviewer has already decided.
        """
        values = {
            "source_system": source_system,
            "source_identifier": source_identifier,
            "source_name": source_name,
            "source_address": source_address,
            "source_city": source_city,
            "source_zip": source_zip,
            "candidate_master_id": candidate_master_id,
            "match_score": match_score,
            "match_details": dump_match_details(match_details or [], score_policy),
            "status": PendingStatus.PENDING,
        }
        try:
            self._upsert(
                PendingMatch,
                values,
                conflict_columns=["source_system", "source_identifier", "candidate_master_id"],
                update=False,
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                f"Error queueing pending match {source_system}:{source_identifier} -> {candidate_master_id}"
            )
            return False

        logger.info(
            f"Queued for review: {source_system}:{source_identifier} -> "
            f"{candidate_master_id} (score={match_score:.3f})"
        )
        return True

    def append_audit(
        self,
        master_id: Optional[int],
        source_system: str,
        source_identifier: str,
        source_name: Optional[str],
        action: AuditAction,
        match_score: Optional[float] = None,
        match_method: Optional[str] = None,
        match_details: Optional[list[MatchDetail]] = None,
        score_policy: Optional[str] = None,
    ) -> bool:
        """Append one audit row. Existing rows are never updated."""
        entry = MatchAuditLog(
            master_id=master_id,
            source_system=source_system,
            source_identifier=source_identifier,
            source_name=source_name,
            action=action,
            match_score=match_score,
            match_method=match_method,
            match_details=(
                dump_match_details(match_details, score_policy)
                if match_details is not None else None
            ),
        )
        try:
            self.db.add(entry)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                f"Error logging match audit ({action.value}) for {source_system}:{source_identifier}"
            )
            return False
        return True

    def create_master_entity(
        self,
        display_name: str,
        display_address: Optional[str] = None,
        city: Optional[str] = None,
        zip_code: Optional[str] = None,
        phone: Optional[str] = None,
        **attributes: Any,
    ) -> Optional[MasterEntity]:
        """
        Create a master entity from display values.

        Normalized columns are derived by the model. Returns None if the
        write failed.
        """
        today = date.today()
        entity = MasterEntity(
            display_name=display_name,
            display_address=display_address,
            city=city,
            zip=zip_code,
            phone=phone,
            first_seen_date=attributes.pop("first_seen_date", today),
            last_verified_date=attributes.pop("last_verified_date", today),
            **attributes,
        )
        try:
            self.db.add(entity)
            self.db.commit()
            self.db.refresh(entity)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Error creating master entity '{display_name}'")
            return None

        logger.info(f"Created master entity: {entity}")
        return entity

    # ------------------------------------------------------------------
    # Manual review / curation
    # ------------------------------------------------------------------

    def approve_pending_match(self, pending_id: int, reviewer: str) -> bool:
        """
        Approve a queued candidate: link the source to it and audit manual_link.

        Other pending candidates for the same source record are rejected.
        The review decision and the source link are committed together, so a
        failed link write leaves the candidate pending and the approval can
        be retried.
        """
        pending = self.db.get(PendingMatch, pending_id)
        if pending is None or pending.status is not PendingStatus.PENDING:
            logger.warning(f"Pending match {pending_id} not found or already reviewed")
            return False

        details = self._stored_details(pending.match_details)
        score_policy = self._stored_policy(pending.match_details)
        reviewed_at = datetime.now()
        try:
            pending.status = PendingStatus.APPROVED
            pending.reviewed_by = reviewer
            pending.reviewed_at = reviewed_at

            siblings = (
                self.db.query(PendingMatch)
                .filter(
                    PendingMatch.source_system == pending.source_system,
                    PendingMatch.source_identifier == pending.source_identifier,
                    PendingMatch.status == PendingStatus.PENDING,
                    PendingMatch.id != pending.id,
                )
                .all()
            )
            for sibling in siblings:
                sibling.status = PendingStatus.REJECTED
                sibling.reviewed_by = reviewer
                sibling.reviewed_at = reviewed_at

            self._write_source_link(
                master_id=pending.candidate_master_id,
                source_system=pending.source_system,
                source_identifier=pending.source_identifier,
                source_name=pending.source_name,
                match_method=AuditAction.MANUAL_LINK.value,
                match_score=pending.match_score,
                match_details=details,
                score_policy=score_policy,
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Error approving pending match {pending_id}")
            return False

        self.append_audit(
            master_id=pending.candidate_master_id,
            source_system=pending.source_system,
            source_identifier=pending.source_identifier,
            source_name=pending.source_name,
            action=AuditAction.MANUAL_LINK,
            match_score=pending.match_score,
            match_method=AuditAction.MANUAL_LINK.value,
            match_details=details,
            score_policy=score_policy,
        )
        logger.info(f"Approved pending match {pending_id} by {reviewer}")
        return True

    def reject_pending_match(self, pending_id: int, reviewer: str) -> bool:
        """Reject a queued candidate and audit the rejection."""
        pending = self.db.get(PendingMatch, pending_id)
        if pending is None or pending.status is not PendingStatus.PENDING:
            logger.warning(f"Pending match {pending_id} not found or already reviewed")
            return False

        try:
            pending.status = PendingStatus.REJECTED
            pending.reviewed_by = reviewer
            pending.reviewed_at = datetime.now()
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Error rejecting pending match {pending_id}")
            return False

        self.append_audit(
            master_id=pending.candidate_master_id,
            source_system=pending.source_system,
            source_identifier=pending.source_identifier,
            source_name=pending.source_name,
            action=AuditAction.REJECTED,
            match_score=pending.match_score,
            match_method="manual_review",
            match_details=self._stored_details(pending.match_details),
            score_policy=self._stored_policy(pending.match_details),
        )
        logger.info(f"Rejected pending match {pending_id} by {reviewer}")
        return True

    def unlink_source(
        self,
        source_system: str,
        source_identifier: str,
        reviewer: Optional[str] = None,
    ) -> bool:
        """
        Mark an active source link rejected and audit manual_unlink.

        The next resolution of that record starts from scratch.
        """
        link = self.get_active_link(source_system, source_identifier)
        if link is None:
            return False

        master_id = link.master_id
        try:
            link.status = LinkStatus.REJECTED
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Error unlinking {source_system}:{source_identifier}")
            return False

        self.append_audit(
            master_id=master_id,
            source_system=source_system,
            source_identifier=source_identifier,
            source_name=link.source_name,
            action=AuditAction.MANUAL_UNLINK,
            match_score=link.match_score,
            match_method=f"manual_review:{reviewer}" if reviewer else "manual_review",
        )
        logger.info(f"Unlinked {source_system}:{source_identifier} from {master_id}")
        return True

    def deactivate_master_entity(self, master_id: int) -> bool:
        """
        Soft-delete a master entity.

        Its active source links become superseded so those records are
        resolved again on next sight.
        """
        entity = self.db.get(MasterEntity, master_id)
        if entity is None:
            return False

        try:
            entity.is_active = False
            (
                self.db.query(SourceLink)
                .filter(
                    SourceLink.master_id == master_id,
                    SourceLink.status == LinkStatus.ACTIVE,
                )
                .update({SourceLink.status: LinkStatus.SUPERSEDED}, synchronize_session="fetch")
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Error deactivating master entity {master_id}")
            return False

        logger.info(f"Deactivated master entity {master_id}")
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _write_source_link(
        self,
        master_id: int,
        source_system: str,
        source_identifier: str,
        source_name: Optional[str],
        match_method: str,
        match_score: Optional[float],
        match_details: Optional[list[MatchDetail]],
        score_policy: Optional[str],
    ) -> None:
        """Upsert an active link in the current transaction, without committing."""
        values = {
            "master_id": master_id,
            "source_system": source_system,
            "source_identifier": source_identifier,
            "source_name": source_name,
            "match_method": match_method,
            "match_score": match_score,
            "match_details": dump_match_details(match_details or [], score_policy),
            "status": LinkStatus.ACTIVE,
        }
        self._upsert(
            SourceLink,
            values,
            conflict_columns=["source_system", "source_identifier"],
            update=True,
        )

    def _upsert(
        self,
        model,
        values: dict,
        conflict_columns: list[str],
        update: bool,
    ) -> None:
        """
        INSERT ... ON CONFLICT on the model's unique key.

        Dialects without ON CONFLICT fall back to select-then-write, which
        still converges through the unique constraint but may raise
        IntegrityError under a race.
        """
        dialect = self.db.get_bind().dialect.name
        insert = UPSERT_DIALECTS.get(dialect)

        if insert is not None:
            stmt = insert(model).values(**values)
            if update:
                update_columns = {
                    col: stmt.excluded[col]
                    for col in values
                    if col not in conflict_columns
                }
                update_columns["updated_at"] = datetime.now()
                stmt = stmt.on_conflict_do_update(
                    index_elements=conflict_columns,
                    set_=update_columns,
                )
            else:
                stmt = stmt.on_conflict_do_nothing(index_elements=conflict_columns)
            self.db.execute(stmt)
            return

        existing = (
            self.db.query(model)
            .filter_by(**{col: values[col] for col in conflict_columns})
            .first()
        )
        if existing is None:
            self.db.add(model(**values))
        elif update:
            for col, value in values.items():
                setattr(existing, col, value)
        self.db.flush()

    @staticmethod
    def _stored_details(payload) -> list[MatchDetail]:
        try:
            return load_match_details(payload)
        except ValueError:
            logger.warning("Could not parse stored match details; continuing without them")
            return []

    @staticmethod
    def _stored_policy(payload) -> Optional[str]:
        return payload.get("score_policy") if isinstance(payload, dict) else None
