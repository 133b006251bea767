"""
Candidate retrieval (blocking) for entity resolution.

Scoring every master entity for every incoming record is O(N) string
comparisons per record. The retriever narrows the registry with cheap
indexed filters before the composite matcher runs:

- canonical name or any alias contains the first `prefix_length`
  characters of the normalized input name, OR
- city and zip5 both equal the input's.

The result set is hard-capped at `limit` rows. Rows matching the name
clause are returned first, so a crowded city/zip cannot push an exact name
match past the cap.

Known recall gap: a true match whose normalized name differs in its leading
characters (e.g. word reordering, "KIDS FIRST ACADEMY" vs "ACADEMY KIDS
FIRST") and that sits in a different city/zip is never retrieved. Closing
that gap needs n-gram or token blocking, not a wider LIKE.
"""

from typing import Optional

from sqlalchemy import and_, case, func, or_
from sqlalchemy.orm import Session, selectinload

from config.logging import logger
from config.settings import settings
from registry.models import MasterEntity, ProviderAlias


class CandidateRetriever:
    """
    Bounded-recall lookup of master entities worth scoring.

    Usage:
        retriever = CandidateRetriever(db)
        candidates = retriever.fetch("LITTLE STARS CHILDCARE", "MANCHESTER", "03101")
    """

    def __init__(
        self,
        db: Session,
        limit: Optional[int] = None,
        prefix_length: Optional[int] = None,
    ):
        self.db = db
        self.limit = limit or settings.CANDIDATE_LIMIT
        self.prefix_length = prefix_length or settings.NAME_PREFIX_LENGTH

    def fetch(
        self,
        normalized_name: str,
        normalized_city: Optional[str] = None,
        zip5: Optional[str] = None,
    ) -> list[MasterEntity]:
        """
        Fetch active candidates for a normalized input.

        Storage errors propagate to the caller.
        """
        if not normalized_name:
            return []

        name_prefix = normalized_name[: self.prefix_length]

        # autoescape keeps % and _ in the input from acting as wildcards
        name_match = or_(
            MasterEntity.canonical_name.contains(name_prefix, autoescape=True),
            MasterEntity.aliases.any(
                ProviderAlias.alias_normalized.contains(name_prefix, autoescape=True)
            ),
        )
        filters = [name_match]
        if normalized_city and zip5:
            filters.append(
                and_(
                    func.upper(MasterEntity.city) == normalized_city,
                    MasterEntity.zip5 == zip5,
                )
            )

        # Name and alias hits fill the cap before city/zip-only neighbours
        candidates = (
            self.db.query(MasterEntity)
            .options(selectinload(MasterEntity.aliases))
            .filter(MasterEntity.is_active.is_(True), or_(*filters))
            .order_by(case((name_match, 0), else_=1), MasterEntity.id)
            .limit(self.limit)
            .all()
        )

        logger.debug(
            f"Retrieved {len(candidates)} candidates for '{normalized_name}' "
            f"(prefix='{name_prefix}', city={normalized_city}, zip5={zip5})"
        )
        return candidates
