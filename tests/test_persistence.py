"""
Tests for idempotent link/alias/review writes and the audit trail.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from registry.database import init_db
from registry.entity_resolution import CandidateRetriever, MatchDetail, ResolutionStore
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

DETAILS = [MatchDetail("name", "LITTLE STARS CHILDCARE", "LITTLE STARS CHILDCARE", 1.0, 0.35)]


@pytest.fixture
def store(db):
    return ResolutionStore(db)


@pytest.fixture
def two_entities(add_entity):
    return (
        add_entity("Little Stars Daycare", city="Manchester", zip="03101"),
        add_entity("Little Stars Learning Center", city="Manchester", zip="03104"),
    )


def test_master_entity_derives_normalized_fields(add_entity):
    entity = add_entity(
        "Little Stars Daycare, LLC",
        display_address="12 Elm Street, Suite 4",
        zip="03101-4410",
        phone="1 (603) 555-1234",
    )

    assert entity.canonical_name == "LITTLE STARS CHILDCARE"
    assert entity.normalized_address == "12 ELM ST STE 4"
    assert entity.zip5 == "03101"
    assert entity.normalized_phone == "6035551234"
    assert entity.is_active is True

    entity.display_name = "Bright Futures Day Care"
    assert entity.canonical_name == "BRIGHT FUTURES CHILDCARE"


def test_upsert_source_link_replaces(db, store, two_entities):
    first, second = two_entities

    assert store.upsert_source_link(first.id, "ccis", "CCIS-001", "Little Stars", "auto_match", 0.9, DETAILS)
    assert store.upsert_source_link(second.id, "ccis", "CCIS-001", "Little Stars", "manual_link", 0.7)

    link = db.query(SourceLink).one()
    assert link.master_id == second.id
    assert link.match_method == "manual_link"
    assert link.status is LinkStatus.ACTIVE
    assert link.match_details["version"] == 1


def test_upsert_reactivates_rejected_link(db, store, two_entities):
    first, _ = two_entities
    store.upsert_source_link(first.id, "ccis", "CCIS-001", "Little Stars", "auto_match", 0.9)
    store.unlink_source("ccis", "CCIS-001")
    assert store.get_active_link("ccis", "CCIS-001") is None

    store.upsert_source_link(first.id, "ccis", "CCIS-001", "Little Stars", "auto_match", 0.9)

    assert store.get_active_link("ccis", "CCIS-001").master_id == first.id
    assert db.query(SourceLink).count() == 1


def test_add_alias_is_insert_if_absent(db, store, two_entities):
    first, _ = two_entities

    assert store.add_alias(first.id, "Little Stars Day Care Inc", AliasType.DBA, "ccis")
    assert store.add_alias(first.id, "LITTLE STARS DAYCARE", AliasType.VARIANT, "das")
    assert store.add_alias(first.id, "The Inc.") is False

    alias = db.query(ProviderAlias).one()
    assert alias.alias_normalized == "LITTLE STARS CHILDCARE"
    assert alias.alias_type is AliasType.DBA
    assert alias.source == "ccis"


def test_queue_pending_match_is_insert_if_absent(db, store, two_entities):
    first, second = two_entities

    for _ in range(2):
        store.queue_pending_match("ccis", "CCIS-002", "Little Stars", first.id, 0.7, DETAILS)
    store.queue_pending_match("ccis", "CCIS-002", "Little Stars", second.id, 0.65, DETAILS)

    assert db.query(PendingMatch).count() == 2
    assert [p.candidate_master_id for p in store.list_pending_matches()] == [first.id, second.id]


def test_append_audit_only_appends(db, store):
    store.append_audit(None, "ccis", "CCIS-001", "Little Stars", AuditAction.REJECTED, 0.0, "no_candidates", [])
    store.append_audit(None, "ccis", "CCIS-001", "Little Stars", AuditAction.REJECTED, 0.0, "no_candidates", [])

    rows = db.query(MatchAuditLog).all()
    assert len(rows) == 2
    assert rows[0].match_details == {"version": 1, "score_policy": None, "criteria": []}


def test_approve_pending_match(db, store, two_entities):
    first, second = two_entities
    store.queue_pending_match("ccis", "CCIS-002", "Little Stars", first.id, 0.7, DETAILS,
                              score_policy="weighted_average")
    store.queue_pending_match("ccis", "CCIS-002", "Little Stars", second.id, 0.65, DETAILS)
    approved, sibling = db.query(PendingMatch).order_by(PendingMatch.id).all()

    assert store.approve_pending_match(approved.id, reviewer="jdoe")

    db.refresh(approved)
    db.refresh(sibling)
    assert approved.status is PendingStatus.APPROVED
    assert approved.reviewed_by == "jdoe"
    assert sibling.status is PendingStatus.REJECTED

    link = store.get_active_link("ccis", "CCIS-002")
    assert link.master_id == first.id
    assert link.match_method == "manual_link"
    assert link.match_details["score_policy"] == "weighted_average"

    audit = db.query(MatchAuditLog).one()
    assert audit.action is AuditAction.MANUAL_LINK
    assert audit.match_details["score_policy"] == "weighted_average"
    assert audit.match_details["criteria"] == [d.to_dict() for d in DETAILS]

    assert store.approve_pending_match(approved.id, reviewer="jdoe") is False


def test_failed_approval_can_be_retried(db, store, two_entities, monkeypatch):
    """The review decision is only kept when the source link was written."""
    first, second = two_entities
    store.queue_pending_match("ccis", "CCIS-002", "Little Stars", first.id, 0.7, DETAILS)
    store.queue_pending_match("ccis", "CCIS-002", "Little Stars", second.id, 0.65, DETAILS)
    approved, sibling = db.query(PendingMatch).order_by(PendingMatch.id).all()

    def locked(*args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    monkeypatch.setattr(store, "_upsert", locked)
    assert store.approve_pending_match(approved.id, reviewer="jdoe") is False

    db.refresh(approved)
    db.refresh(sibling)
    assert approved.status is PendingStatus.PENDING
    assert approved.reviewed_by is None
    assert sibling.status is PendingStatus.PENDING
    assert db.query(SourceLink).count() == 0
    assert db.query(MatchAuditLog).count() == 0

    monkeypatch.undo()
    assert store.approve_pending_match(approved.id, reviewer="jdoe") is True

    db.refresh(approved)
    db.refresh(sibling)
    assert approved.status is PendingStatus.APPROVED
    assert sibling.status is PendingStatus.REJECTED
    assert store.get_active_link("ccis", "CCIS-002").master_id == first.id


def test_reject_pending_match(db, store, two_entities):
    first, _ = two_entities
    store.queue_pending_match("ccis", "CCIS-002", "Little Stars", first.id, 0.7, DETAILS)
    pending = db.query(PendingMatch).one()

    assert store.reject_pending_match(pending.id, reviewer="jdoe")

    db.refresh(pending)
    assert pending.status is PendingStatus.REJECTED
    assert db.query(SourceLink).count() == 0
    assert db.query(MatchAuditLog).one().action is AuditAction.REJECTED
    assert store.reject_pending_match(9999, reviewer="jdoe") is False


def test_unlink_source(db, store, two_entities):
    first, _ = two_entities
    store.upsert_source_link(first.id, "ccis", "CCIS-001", "Little Stars", "auto_match", 0.9)

    assert store.unlink_source("ccis", "CCIS-001", reviewer="jdoe")

    link = db.query(SourceLink).one()
    assert link.status is LinkStatus.REJECTED
    audit = db.query(MatchAuditLog).one()
    assert audit.action is AuditAction.MANUAL_UNLINK
    assert audit.master_id == first.id
    assert store.unlink_source("ccis", "CCIS-001") is False


def test_deactivate_master_entity(db, store, two_entities):
    first, _ = two_entities
    store.upsert_source_link(first.id, "ccis", "CCIS-001", "Little Stars", "auto_match", 0.9)

    assert store.deactivate_master_entity(first.id)

    assert db.get(MasterEntity, first.id).is_active is False
    assert db.query(SourceLink).one().status is LinkStatus.SUPERSEDED
    assert store.get_active_link("ccis", "CCIS-001") is None
    assert first.id not in [e.id for e in CandidateRetriever(db).fetch("LITTLE STARS CHILDCARE")]
    assert store.deactivate_master_entity(9999) is False


def test_create_master_entity(db, store):
    entity = store.create_master_entity(
        "Tiny Tots Preschool",
        display_address="4 Main St",
        city="Concord",
        zip_code="03301",
        license_number="LIC-77",
    )

    assert entity.id is not None
    assert entity.canonical_name == "TINY TOTS PRESCHOOL"
    assert entity.license_number == "LIC-77"
    assert entity.first_seen_date is not None


@pytest.fixture
def file_sessionmaker(tmp_path):
    """Sessions on a SQLite file shared between threads."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'data' / 'registry.db'}",
        connect_args={"timeout": 30, "check_same_thread": False},
        future=True,
    )
    init_db(bind=engine)
    try:
        yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    finally:
        engine.dispose()


def test_init_db_creates_sqlite_directory(tmp_path, file_sessionmaker):
    assert (tmp_path / "data" / "registry.db").exists()


def test_concurrent_link_upserts_converge(file_sessionmaker):
    """Jobs racing on one source record leave exactly one active link."""
    with file_sessionmaker() as session:
        entities = [
            MasterEntity(display_name="Little Stars Daycare", city="Manchester", zip="03101"),
            MasterEntity(display_name="Little Stars Learning Center", city="Manchester", zip="03104"),
        ]
        session.add_all(entities)
        session.commit()
        master_ids = [e.id for e in entities]

    def link(master_id):
        with file_sessionmaker() as session:
            return ResolutionStore(session).upsert_source_link(
                master_id, "ccis", "CCIS-001", "Little Stars", "auto_match", 0.9, DETAILS
            )

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(link, [master_ids[i % 2] for i in range(16)]))

    assert all(results)
    with file_sessionmaker() as session:
        link_row = session.query(SourceLink).one()
        assert link_row.master_id in master_ids
        assert link_row.status is LinkStatus.ACTIVE
