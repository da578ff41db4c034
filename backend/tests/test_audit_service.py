"""
Audit sink tests.

Verifies:
- Entries are append-only: flushing an update or delete is refused
- Entries share the caller's transaction and vanish with its rollback
- Payload values are stored JSON-safe
- Reads come back newest first and filter by action, subject and user
"""

from datetime import datetime
from decimal import Decimal

import pytest

from loyalty.context import RequestContext
from loyalty.models import AuditLogEntry, EntityKind
from loyalty.models.audit import AuditImmutableError
from loyalty.services import audit_service
from loyalty.services.concurrency import unit_of_work


def append(action, ctx, kind=EntityKind.MEMBER, entity_id=1, **payload):
    return audit_service.append_audit_entry(
        action,
        ctx=ctx,
        subject=audit_service.subject(kind, entity_id),
        payload=payload,
    )


class TestAppend:

    def test_records_context(self, db_session, staff_user):
        ctx = RequestContext(actor_id=staff_user.id, ip_address="10.1.2.3", user_agent="scanner/1.0")

        with unit_of_work():
            entry = append("TEST_ACTION", ctx, note="hello")

        stored = db_session.get(AuditLogEntry, entry.id)
        assert stored.user_id == staff_user.id
        assert stored.ip_address == "10.1.2.3"
        assert stored.user_agent == "scanner/1.0"
        assert stored.subject_kind == "member"
        assert stored.payload == {"note": "hello"}
        assert stored.created_at is not None

    def test_explicit_actor_overrides_context(self, db_session, ctx, staff_user):
        with unit_of_work():
            entry = audit_service.append_audit_entry("TEST_ACTION", ctx=ctx, actor_id=staff_user.id)
        assert entry.user_id == staff_user.id
        assert entry.subject_kind is None

    def test_payload_made_json_safe(self, db_session, ctx):
        with unit_of_work():
            entry = append(
                "TEST_ACTION",
                ctx,
                points=Decimal("60.00"),
                at=datetime(2026, 1, 15, 12, 0, 0),
                nested={"values": (Decimal("1.5"), 2)},
            )

        db_session.expire_all()
        assert db_session.get(AuditLogEntry, entry.id).payload == {
            "points": "60.00",
            "at": "2026-01-15T12:00:00Z",
            "nested": {"values": ["1.5", 2]},
        }

    def test_to_dict(self, db_session, ctx):
        with unit_of_work():
            entry = append("TEST_ACTION", ctx, entity_id=7)
        data = entry.to_dict()
        assert data["action"] == "TEST_ACTION"
        assert data["subject_id"] == 7
        assert data["created_at"].endswith("Z")


class TestTransactionality:

    def test_rollback_discards_entries(self, db_session, ctx):
        with pytest.raises(RuntimeError):
            with unit_of_work():
                append("TEST_ACTION", ctx)
                raise RuntimeError("business step failed")

        assert db_session.query(AuditLogEntry).count() == 0

    def test_append_does_not_commit(self, db_session, ctx):
        append("TEST_ACTION", ctx)
        db_session.rollback()
        assert db_session.query(AuditLogEntry).count() == 0


class TestImmutability:

    @pytest.fixture
    def entry(self, db_session, ctx):
        with unit_of_work():
            return append("TEST_ACTION", ctx)

    def test_update_refused(self, db_session, entry):
        entry.action = "REWRITTEN"
        with pytest.raises(AuditImmutableError):
            db_session.commit()
        db_session.rollback()

        assert db_session.get(AuditLogEntry, entry.id).action == "TEST_ACTION"

    def test_delete_refused(self, db_session, entry):
        db_session.delete(entry)
        with pytest.raises(AuditImmutableError):
            db_session.commit()
        db_session.rollback()

        assert db_session.query(AuditLogEntry).count() == 1

    def test_service_exposes_no_mutators(self):
        public = {name for name in dir(audit_service) if not name.startswith("_")}
        assert not {n for n in public if n.startswith(("update", "delete", "remove", "edit"))}


class TestListing:

    def test_newest_first_and_filters(self, db_session, ctx, staff_user):
        staff_ctx = RequestContext(actor_id=staff_user.id)
        with unit_of_work():
            first = append("A", ctx, kind=EntityKind.MEMBER, entity_id=1)
            second = append("B", staff_ctx, kind=EntityKind.REWARD, entity_id=2)
            third = append("A", ctx, kind=EntityKind.MEMBER, entity_id=2)

        assert [e.id for e in audit_service.list_audit_entries()] == [third.id, second.id, first.id]
        assert [e.id for e in audit_service.list_audit_entries(action="A")] == [third.id, first.id]
        assert [e.id for e in audit_service.list_audit_entries(subject_kind=EntityKind.REWARD)] == [second.id]
        assert [e.id for e in audit_service.list_audit_entries(subject_kind=EntityKind.MEMBER, subject_id=2)] == [third.id]
        assert [e.id for e in audit_service.list_audit_entries(user_id=staff_user.id)] == [second.id]
        assert len(audit_service.list_audit_entries(limit=2)) == 2
