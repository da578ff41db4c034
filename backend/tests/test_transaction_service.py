"""
Transaction pipeline tests.

Verifies:
- A scan credits rule points, writes the transaction and its audit trail
- The 30-second duplicate guard (inclusive at 30 s, clear at 31 s)
- MEDIUM risk flags and continues; HIGH risk blocks and rolls back everything
- The cumulative risk score accumulates and clamps, while each call's level
  is computed from that call's delta only
- QR scans verify before touching the database
"""

import warnings
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path

import pytest

from loyalty.models import AuditLogEntry, FraudRiskScore, LoyaltyBalance, Transaction
from loyalty.services import audit_service, qr_service, transaction_service
from loyalty.services.transaction_service import TransactionRequest
from loyalty.time_utils import FrozenClock
from loyalty.validation import (
    ConflictError,
    FraudBlockError,
    NotFoundError,
    SecurityError,
    ValidationError,
)


def request_for(member, category, amount, action="PURCHASE", **extra):
    return TransactionRequest.from_dict({
        "member_id": member.id,
        "category_id": category.id,
        "action": action,
        "amount": amount,
        **extra,
    })


def audit_actions(db_session):
    return [e.action for e in db_session.query(AuditLogEntry).order_by(AuditLogEntry.id)]


class TestProcessTransaction:

    def test_credits_rule_points(self, db_session, member, category, multiplier_rule, ctx, clock, balance_of):
        tx = transaction_service.process_transaction(request_for(member, category, "600"), ctx, clock=clock)

        assert Decimal(tx.points_earned) == Decimal("60.00")
        assert tx.reference_no.startswith("TRX-")
        assert tx.created_at == clock.now()
        assert balance_of(member.id) == Decimal("60.00")

    def test_audit_trail(self, db_session, member, category, multiplier_rule, ctx, clock):
        tx = transaction_service.process_transaction(request_for(member, category, "600"), ctx, clock=clock)

        assert audit_actions(db_session) == [
            audit_service.MEMBER_CREATED,
            audit_service.FRAUD_EVALUATION,
            audit_service.TRANSACTION_CREATED,
        ]
        created = audit_service.list_audit_entries(action=audit_service.TRANSACTION_CREATED)[0]
        assert created.subject_kind == "transaction"
        assert created.subject_id == tx.id
        assert created.payload == {
            "amount": "600",
            "points": "60.00",
            "new_balance": "60.00",
            "risk_level": "LOW",
        }
        assert created.ip_address == "127.0.0.1"

    def test_no_rules_still_records_zero_points(self, db_session, member, category, ctx, clock, balance_of):
        tx = transaction_service.process_transaction(request_for(member, category, "600"), ctx, clock=clock)
        assert Decimal(tx.points_earned) == 0
        assert balance_of(member.id) == 0

    def test_balance_row_created_if_missing(self, db_session, member, category, multiplier_rule, ctx, clock, balance_of):
        db_session.query(LoyaltyBalance).filter_by(member_id=member.id).delete()
        db_session.commit()

        transaction_service.process_transaction(request_for(member, category, "600"), ctx, clock=clock)

        assert balance_of(member.id) == Decimal("60.00")

    def test_unique_reference_numbers(self, db_session, member, category, multiplier_rule, ctx, clock):
        refs = set()
        for amount in ("100", "200", "300"):
            refs.add(transaction_service.process_transaction(request_for(member, category, amount), ctx, clock=clock).reference_no)
            clock.advance(minutes=10)
        assert len(refs) == 3


class TestRejections:

    def test_unknown_member(self, db_session, category, ctx, clock):
        data = TransactionRequest(member_id=999, category_id=category.id, action="PURCHASE", amount=Decimal("10"))
        with pytest.raises(NotFoundError) as exc:
            transaction_service.process_transaction(data, ctx, clock=clock)
        assert exc.value.code == "MEMBER_NOT_FOUND"
        assert db_session.query(AuditLogEntry).count() == 0

    def test_unknown_category(self, db_session, member, ctx, clock):
        data = TransactionRequest(member_id=member.id, category_id=999, action="PURCHASE", amount=Decimal("10"))
        with pytest.raises(NotFoundError) as exc:
            transaction_service.process_transaction(data, ctx, clock=clock)
        assert exc.value.code == "CATEGORY_NOT_FOUND"

    def test_negative_amount(self, db_session, member, category, ctx, clock):
        with pytest.raises(ValidationError):
            transaction_service.process_transaction(request_for(member, category, "-1"), ctx, clock=clock)

    @pytest.mark.parametrize("payload", [
        {"category_id": 1, "action": "PURCHASE", "amount": "10"},
        {"member_id": True, "category_id": 1, "action": "PURCHASE", "amount": "10"},
        {"member_id": 1, "category_id": "1", "action": "PURCHASE", "amount": "10"},
        {"member_id": 1, "category_id": 1, "action": "PURCHASE", "amount": "ten"},
        {"member_id": 1, "category_id": 1, "action": "PURCHASE", "amount": "NaN"},
    ])
    def test_request_parsing(self, payload):
        with pytest.raises(ValidationError):
            TransactionRequest.from_dict(payload)


class TestDuplicateGuard:

    def test_identical_within_window_rejected(self, db_session, member, category, multiplier_rule, ctx, clock, balance_of):
        transaction_service.process_transaction(request_for(member, category, "600"), ctx, clock=clock)
        clock.advance(seconds=30)

        with pytest.raises(ConflictError) as exc:
            transaction_service.process_transaction(request_for(member, category, "600"), ctx, clock=clock)

        assert exc.value.code == "DUPLICATE_TRANSACTION"
        assert exc.value.message == "Duplicate transaction detected. Please wait."
        assert db_session.query(Transaction).count() == 1
        assert balance_of(member.id) == Decimal("60.00")

    def test_identical_after_window_accepted(self, db_session, member, category, multiplier_rule, ctx, clock, balance_of):
        transaction_service.process_transaction(request_for(member, category, "600"), ctx, clock=clock)
        clock.advance(seconds=31)

        transaction_service.process_transaction(request_for(member, category, "600"), ctx, clock=clock)

        assert db_session.query(Transaction).count() == 2
        assert balance_of(member.id) == Decimal("120.00")

    def test_different_amount_is_not_duplicate(self, db_session, member, category, multiplier_rule, ctx, clock):
        transaction_service.process_transaction(request_for(member, category, "600"), ctx, clock=clock)
        transaction_service.process_transaction(request_for(member, category, "601"), ctx, clock=clock)
        assert db_session.query(Transaction).count() == 2

    def test_other_member_is_not_duplicate(self, db_session, member, make_member, category, multiplier_rule, ctx, clock):
        other = make_member(name="Maria")
        transaction_service.process_transaction(request_for(member, category, "600"), ctx, clock=clock)
        transaction_service.process_transaction(request_for(other, category, "600"), ctx, clock=clock)
        assert db_session.query(Transaction).count() == 2


class TestRiskGate:

    def test_velocity_flags_third_scan(self, db_session, member, category, multiplier_rule, ctx, clock, balance_of):
        for amount in ("100", "200"):
            transaction_service.process_transaction(request_for(member, category, amount), ctx, clock=clock)
            clock.advance(minutes=1)

        third = transaction_service.process_transaction(
            request_for(member, category, "300", notes="Counter 2"), ctx, clock=clock
        )

        assert third.notes == "Counter 2 [RISK FLAG: MEDIUM - High velocity: 3 scans in last 5 mins]"
        assert audit_service.TRANSACTION_FLAGGED in audit_actions(db_session)
        assert balance_of(member.id) == Decimal("60.00")
        evaluation = audit_service.list_audit_entries(action=audit_service.FRAUD_EVALUATION)[0]
        assert evaluation.payload["score_delta"] == 20
        assert evaluation.payload["reasons"] == ["High velocity: 3 scans in last 5 mins"]

    def test_high_risk_blocks_and_rolls_back(self, db_session, member, category, make_rule, staff_user, make_transaction, ctx, balance_of):
        make_rule(rule_type="multiplier", value="1")
        clock = FrozenClock(datetime(2026, 1, 15, 23, 30))
        for hours in (1, 3, 6, 20):
            make_transaction(member, clock.now() - timedelta(hours=hours), amount=str(hours), created_by=staff_user.id)
        audit_before = db_session.query(AuditLogEntry).count()

        with pytest.raises(FraudBlockError) as exc:
            transaction_service.process_transaction(
                request_for(member, category, "600", created_by=staff_user.id), ctx, clock=clock
            )

        assert exc.value.code == "FRAUD_BLOCKED"
        assert exc.value.message.startswith("Transaction blocked due to high fraud risk: ")
        assert len(exc.value.reasons) == 3
        assert exc.value.to_dict()["reasons"] == exc.value.reasons
        # Whole unit rolled back: no transaction, credit, risk score or audit rows
        assert db_session.query(Transaction).count() == 4
        assert balance_of(member.id) == 0
        assert db_session.query(FraudRiskScore).count() == 0
        assert db_session.query(AuditLogEntry).count() == audit_before

    def test_block_is_logged(self, db_session, member, category, make_rule, staff_user, make_transaction, ctx, caplog):
        make_rule(rule_type="multiplier", value="1")
        clock = FrozenClock(datetime(2026, 1, 15, 23, 30))
        for hours in (1, 3, 6, 20):
            make_transaction(member, clock.now() - timedelta(hours=hours), amount=str(hours), created_by=staff_user.id)

        with pytest.raises(FraudBlockError):
            transaction_service.process_transaction(
                request_for(member, category, "600", created_by=staff_user.id), ctx, clock=clock
            )

        assert "Blocked transaction for member" in caplog.text


class TestRiskScore:

    def test_zero_delta_creates_nothing(self, db_session, member, category, multiplier_rule, ctx, clock):
        transaction_service.process_transaction(request_for(member, category, "600"), ctx, clock=clock)
        assert db_session.query(FraudRiskScore).count() == 0

    def test_deltas_accumulate(self, db_session, member, clock):
        transaction_service.apply_risk_delta(member.id, 15, clock=clock)
        transaction_service.apply_risk_delta(member.id, 40, clock=clock)
        db_session.commit()

        score = db_session.query(FraudRiskScore).filter_by(member_id=member.id).one()
        assert score.risk_score == 55
        assert score.last_evaluated_at == clock.now()

    def test_clamped_to_range(self, db_session, member, clock):
        transaction_service.apply_risk_delta(member.id, 95, clock=clock)
        transaction_service.apply_risk_delta(member.id, 40, clock=clock)
        db_session.commit()
        assert db_session.query(FraudRiskScore).filter_by(member_id=member.id).one().risk_score == 100

    def test_level_uses_call_delta_not_cumulative_score(self, db_session, member, category, make_rule, ctx, clock):
        make_rule(rule_type="multiplier", value="1")

        first = transaction_service.process_transaction(request_for(member, category, "600"), ctx, clock=clock)
        clock.advance(minutes=10)
        second = transaction_service.process_transaction(request_for(member, category, "700"), ctx, clock=clock)

        # Each call scores +15 (LOW); the persisted total of 30 would be MEDIUM
        score = db_session.query(FraudRiskScore).filter_by(member_id=member.id).one()
        assert score.risk_score == 30
        levels = [e.payload["risk_level"] for e in audit_service.list_audit_entries(action=audit_service.TRANSACTION_CREATED)]
        assert levels == ["LOW", "LOW"]
        assert "RISK FLAG" not in (first.notes or "")
        assert "RISK FLAG" not in (second.notes or "")


class TestProcessScan:

    def scan(self, payload, category, ctx, clock, amount="600"):
        return transaction_service.process_scan(
            payload,
            category_id=category.id,
            action="PURCHASE",
            amount=amount,
            notes=None,
            ctx=ctx,
            secret="scan-secret",
            clock=clock,
        )

    def test_valid_scan_credits_member(self, db_session, member, category, multiplier_rule, ctx, clock, balance_of):
        payload = qr_service.sign_payload(member.member_code, secret="scan-secret", clock=clock)
        tx = self.scan(payload, category, ctx, clock)
        assert tx.member_id == member.id
        assert balance_of(member.id) == Decimal("60.00")

    def test_tampered_qr_rejected_before_db(self, db_session, member, category, multiplier_rule, ctx, clock):
        payload = qr_service.sign_payload(member.member_code, secret="scan-secret", clock=clock)
        payload["member_id"] = "BMPC-999999"

        with pytest.raises(SecurityError) as exc:
            self.scan(payload, category, ctx, clock)

        assert exc.value.code == "INTEGRITY_FAILURE"
        assert db_session.query(Transaction).count() == 0

    def test_unknown_member_code(self, db_session, member, category, ctx, clock):
        payload = qr_service.sign_payload("BMPC-NOBODY", secret="scan-secret", clock=clock)
        with pytest.raises(NotFoundError) as exc:
            self.scan(payload, category, ctx, clock)
        assert exc.value.code == "MEMBER_NOT_FOUND"

    def test_inactive_member(self, db_session, make_member, category, ctx, clock):
        suspended = make_member(name="Suspended", status="suspended")
        payload = qr_service.sign_payload(suspended.member_code, secret="scan-secret", clock=clock)
        with pytest.raises(ConflictError) as exc:
            self.scan(payload, category, ctx, clock)
        assert exc.value.code == "MEMBER_INACTIVE"


class TestModuleSource:

    def test_compiles_without_warnings(self):
        source = Path(transaction_service.__file__).read_text(encoding="utf-8")
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            compile(source, transaction_service.__file__, "exec")
