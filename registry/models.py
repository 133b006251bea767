"""
Provider Registry - Database Models

SQLAlchemy ORM models for the master provider registry and its
entity-resolution bookkeeping (aliases, source links, review queue, audit).
"""

from datetime import date, datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, validates

from registry.normalization import (
    normalize_address,
    normalize_name,
    normalize_phone,
    normalize_zip,
)


class Base(DeclarativeBase):
    pass


# Enums
class AliasType(PyEnum):
    DBA = "dba"
    FORMER_NAME = "former_name"
    VARIANT = "variant"
    VENDOR_NAME = "vendor_name"


class LinkStatus(PyEnum):
    ACTIVE = "active"
    SUPERSEDED = "superseded"
    REJECTED = "rejected"


class PendingStatus(PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AuditAction(PyEnum):
    MATCHED = "matched"
    CREATED = "created"
    REJECTED = "rejected"
    MANUAL_LINK = "manual_link"
    MANUAL_UNLINK = "manual_unlink"


class MasterEntity(Base):
    """
    Canonical provider/contractor record.

    Normalized columns are derived from their display columns whenever a
    display column is assigned. Entities are deactivated, never deleted.
    """

    __tablename__ = "master_entities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    registry_id: Mapped[Optional[str]] = mapped_column(String(64), unique=True)

    canonical_name: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(Text, nullable=False)

    normalized_address: Mapped[Optional[str]] = mapped_column(Text)
    display_address: Mapped[Optional[str]] = mapped_column(Text)
    city: Mapped[Optional[str]] = mapped_column(Text, index=True)
    state: Mapped[Optional[str]] = mapped_column(String(2), default="NH")
    zip: Mapped[Optional[str]] = mapped_column(String(10))
    zip5: Mapped[Optional[str]] = mapped_column(String(5), index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32))
    normalized_phone: Mapped[Optional[str]] = mapped_column(String(10))
    email: Mapped[Optional[str]] = mapped_column(Text)

    # Type attributes
    provider_type: Mapped[Optional[str]] = mapped_column(Text)
    license_number: Mapped[Optional[str]] = mapped_column(String(64))
    capacity: Mapped[Optional[int]] = mapped_column(Integer)
    accepts_ccdf: Mapped[bool] = mapped_column(Boolean, default=False)
    quality_rating: Mapped[Optional[str]] = mapped_column(String(32))

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    first_seen_date: Mapped[Optional[date]] = mapped_column(Date)
    last_verified_date: Mapped[Optional[date]] = mapped_column(Date)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    aliases: Mapped[list["ProviderAlias"]] = relationship(
        back_populates="master_entity", cascade="all, delete-orphan"
    )
    source_links: Mapped[list["SourceLink"]] = relationship(
        back_populates="master_entity"
    )

    __table_args__ = (
        Index("ix_master_entities_city_zip5", "city", "zip5"),
    )

    @validates("display_name")
    def _derive_canonical_name(self, key, value):
        self.canonical_name = normalize_name(value)
        return value

    @validates("display_address")
    def _derive_normalized_address(self, key, value):
        self.normalized_address = normalize_address(value) or None
        return value

    @validates("zip")
    def _derive_zip5(self, key, value):
        self.zip5 = normalize_zip(value) or None
        return value

    @validates("phone")
    def _derive_normalized_phone(self, key, value):
        self.normalized_phone = normalize_phone(value) or None
        return value

    def __repr__(self) -> str:
        return f"<MasterEntity(id={self.id}, name={self.canonical_name}, city={self.city})>"


class ProviderAlias(Base):
    """
    Alternate names (DBA, former names, vendor spellings) for a master entity.
    """

    __tablename__ = "provider_aliases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    master_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("master_entities.id"), nullable=False, index=True
    )
    alias_display: Mapped[str] = mapped_column(Text, nullable=False)
    alias_normalized: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    alias_type: Mapped[AliasType] = mapped_column(
        Enum(AliasType), default=AliasType.VARIANT, nullable=False
    )
    source: Mapped[Optional[str]] = mapped_column(String(64))
    confidence: Mapped[float] = mapped_column(Float, default=1.0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )

    master_entity: Mapped["MasterEntity"] = relationship(back_populates="aliases")

    __table_args__ = (
        UniqueConstraint("master_id", "alias_normalized", name="uq_alias_master_normalized"),
    )

    def __repr__(self) -> str:
        return f"<ProviderAlias(master_id={self.master_id}, alias={self.alias_normalized})>"


class SourceLink(Base):
    """
    Bridge row mapping one external record to one master entity.
    """

    __tablename__ = "source_links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    master_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("master_entities.id"), nullable=False, index=True
    )
    source_system: Mapped[str] = mapped_column(String(64), nullable=False)
    source_identifier: Mapped[str] = mapped_column(Text, nullable=False)
    source_name: Mapped[Optional[str]] = mapped_column(Text)

    match_method: Mapped[Optional[str]] = mapped_column(String(32))
    match_score: Mapped[Optional[float]] = mapped_column(Float)
    match_details: Mapped[Optional[dict]] = mapped_column(JSON)
    status: Mapped[LinkStatus] = mapped_column(
        Enum(LinkStatus), default=LinkStatus.ACTIVE, nullable=False, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), onupdate=func.now(), nullable=False
    )

    master_entity: Mapped["MasterEntity"] = relationship(back_populates="source_links")

    __table_args__ = (
        UniqueConstraint("source_system", "source_identifier", name="uq_source_link_key"),
    )

    def __repr__(self) -> str:
        return (
            f"<SourceLink({self.source_system}:{self.source_identifier} -> "
            f"{self.master_id}, status={self.status.value})>"
        )


class PendingMatch(Base):
    """
    Tentative candidate awaiting human adjudication.
    """

    __tablename__ = "pending_matches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_system: Mapped[str] = mapped_column(String(64), nullable=False)
    source_identifier: Mapped[str] = mapped_column(Text, nullable=False)
    source_name: Mapped[Optional[str]] = mapped_column(Text)
    source_address: Mapped[Optional[str]] = mapped_column(Text)
    source_city: Mapped[Optional[str]] = mapped_column(Text)
    source_zip: Mapped[Optional[str]] = mapped_column(String(10))

    candidate_master_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("master_entities.id"), nullable=False, index=True
    )
    match_score: Mapped[Optional[float]] = mapped_column(Float)
    match_details: Mapped[Optional[dict]] = mapped_column(JSON)
    status: Mapped[PendingStatus] = mapped_column(
        Enum(PendingStatus), default=PendingStatus.PENDING, nullable=False, index=True
    )
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(128))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )

    candidate: Mapped["MasterEntity"] = relationship("MasterEntity")

    __table_args__ = (
        UniqueConstraint(
            "source_system", "source_identifier", "candidate_master_id",
            name="uq_pending_match_key",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<PendingMatch({self.source_system}:{self.source_identifier} -> "
            f"{self.candidate_master_id}, score={self.match_score}, status={self.status.value})>"
        )


class MatchAuditLog(Base):
    """
    Append-only record of every resolution decision.
    """

    __tablename__ = "match_audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    master_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("master_entities.id"), nullable=True, index=True
    )
    source_system: Mapped[str] = mapped_column(String(64), nullable=False)
    source_identifier: Mapped[str] = mapped_column(Text, nullable=False)
    source_name: Mapped[Optional[str]] = mapped_column(Text)
    action: Mapped[AuditAction] = mapped_column(Enum(AuditAction), nullable=False, index=True)
    match_score: Mapped[Optional[float]] = mapped_column(Float)
    match_method: Mapped[Optional[str]] = mapped_column(String(32))
    match_details: Mapped[Optional[dict]] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_audit_source", "source_system", "source_identifier"),
    )

    def __repr__(self) -> str:
        return f"<MatchAuditLog({self.action.value}, {self.source_system}:{self.source_identifier})>"
