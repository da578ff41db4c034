"""
HTTP API tests.

Verifies:
- Unauthenticated requests return 401
- Role checks: members cannot scan, staff cannot administer the catalog
- Member users only reach their own profile
- The scan -> redeem -> complete flow end to end
- Service errors map to their status codes and machine codes
"""

import pytest

from loyalty.models import Reward


def issue_qr(client, headers, member_id):
    response = client.get(f"/api/v1/members/{member_id}/qr", headers=headers)
    assert response.status_code == 200
    return response.json["qr_data"]


def scan(client, headers, qr_data, category_id, amount="600"):
    return client.post("/api/v1/scan", headers=headers, json={
        "qr_data": qr_data,
        "category_id": category_id,
        "action": "PURCHASE",
        "amount": amount,
    })


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/v1/auth/me"),
            ("POST", "/api/v1/auth/logout"),
            ("POST", "/api/v1/scan"),
            ("GET", "/api/v1/members/1"),
            ("GET", "/api/v1/members/1/qr"),
            ("GET", "/api/v1/members/1/points"),
            ("GET", "/api/v1/rewards"),
            ("POST", "/api/v1/redemptions"),
            ("GET", "/api/v1/redemptions"),
            ("GET", "/api/v1/categories"),
            ("GET", "/api/v1/audit-logs"),
        ],
    )
    def test_requires_token(self, client, db_session, method, path):
        response = client.open(path, method=method, json={})
        assert response.status_code == 401

    def test_invalid_token(self, client, db_session):
        response = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401
        assert response.json["error"] == "Invalid or expired token"


# =============================================================================
# LOGIN / LOGOUT
# =============================================================================


class TestAuthRoutes:

    def test_login_and_me(self, client, member_user):
        response = client.post("/api/v1/auth/login", json={"username": "juan", "password": "Password123!"})
        assert response.status_code == 200
        assert response.json["expires_at"].endswith("Z")

        me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {response.json['token']}"})
        assert me.json["user"]["role"] == "member"
        assert me.json["member"]["member_code"] == "BMPC-000123"

    def test_bad_credentials(self, client, staff_user):
        response = client.post("/api/v1/auth/login", json={"username": "staff", "password": "Wrong123!"})
        assert response.status_code == 401
        assert response.json["error"] == "Invalid credentials"

    def test_missing_fields(self, client, db_session):
        assert client.post("/api/v1/auth/login", json={"username": "staff"}).status_code == 400

    def test_logout_revokes_token(self, client, staff_headers):
        assert client.post("/api/v1/auth/logout", headers=staff_headers).status_code == 200
        assert client.get("/api/v1/auth/me", headers=staff_headers).status_code == 401


# =============================================================================
# ROLE CHECKS (403)
# =============================================================================


class TestRoleChecks:

    def test_member_cannot_scan(self, client, member_headers, member, category):
        response = scan(client, member_headers, {}, category.id)
        assert response.status_code == 403
        assert response.json["required_role"] == ["staff", "admin"]

    @pytest.mark.parametrize(
        "method,path",
        [
            ("POST", "/api/v1/rewards"),
            ("PATCH", "/api/v1/rewards/1"),
            ("DELETE", "/api/v1/rewards/1"),
            ("POST", "/api/v1/categories"),
            ("POST", "/api/v1/point-rules"),
            ("GET", "/api/v1/audit-logs"),
        ],
    )
    def test_staff_denied_admin_operations(self, client, staff_headers, method, path):
        response = client.open(path, method=method, headers=staff_headers, json={})
        assert response.status_code == 403

    def test_member_sees_only_own_profile(self, client, member_headers, member, make_member):
        other = make_member(name="Maria")
        assert client.get(f"/api/v1/members/{member.id}", headers=member_headers).status_code == 200
        assert client.get(f"/api/v1/members/{other.id}", headers=member_headers).status_code == 403
        assert client.get(f"/api/v1/members/{other.id}/qr", headers=member_headers).status_code == 403
        assert client.get(f"/api/v1/members/{other.id}/points", headers=member_headers).status_code == 403

    def test_member_cannot_complete_redemption(self, client, member_headers):
        response = client.patch("/api/v1/redemptions/1", headers=member_headers, json={"status": "completed"})
        assert response.status_code == 403


# =============================================================================
# END-TO-END FLOW
# =============================================================================


class TestScanRedeemComplete:

    def test_full_flow(self, client, db_session, member, category, multiplier_rule, reward,
                       staff_headers, member_headers, admin_headers):
        # Member shows a QR; staff scans a 600 purchase
        qr_data = issue_qr(client, member_headers, member.id)
        response = scan(client, staff_headers, qr_data, category.id)

        assert response.status_code == 201
        assert response.json["points_earned"] == "60.00"
        assert response.json["balance"] == "60.00"
        assert response.json["transaction"]["reference_no"].startswith("TRX-")

        # Member redeems a 50-point reward
        response = client.post("/api/v1/redemptions", headers=member_headers, json={"reward_id": reward.id})

        assert response.status_code == 201
        assert response.json["balance"] == "10.00"
        assert response.json["redemption"]["status"] == "pending"
        redemption_id = response.json["redemption"]["id"]
        db_session.expire_all()
        assert db_session.get(Reward, reward.id).stock == 99

        # Staff hands it over
        response = client.patch(
            f"/api/v1/redemptions/{redemption_id}", headers=staff_headers, json={"status": "completed"}
        )
        assert response.status_code == 200
        assert response.json["redemption"]["status"] == "completed"

        again = client.patch(
            f"/api/v1/redemptions/{redemption_id}", headers=staff_headers, json={"status": "completed"}
        )
        assert again.status_code == 409
        assert again.json["code"] == "ALREADY_COMPLETED"

        # Balance and history as seen by the member
        points = client.get(f"/api/v1/members/{member.id}/points", headers=member_headers)
        assert points.json["balance"] == "10.00"
        history = client.get(f"/api/v1/members/{member.id}/transactions", headers=member_headers)
        assert len(history.json["transactions"]) == 1

        # Admin reads the trail
        logs = client.get("/api/v1/audit-logs", headers=admin_headers)
        actions = [e["action"] for e in logs.json["audit_logs"]]
        for expected in ("TRANSACTION_CREATED", "FRAUD_EVALUATION", "REDEMPTION_REQUEST", "REDEMPTION_COMPLETED"):
            assert expected in actions

    def test_tampered_qr(self, client, member, category, multiplier_rule, staff_headers, member_headers):
        qr_data = issue_qr(client, member_headers, member.id)
        qr_data["member_id"] = "BMPC-999999"

        response = scan(client, staff_headers, qr_data, category.id)

        assert response.status_code == 400
        assert response.json["code"] == "INTEGRITY_FAILURE"

    def test_duplicate_scan(self, client, member, category, multiplier_rule, staff_headers):
        qr_data = issue_qr(client, staff_headers, member.id)
        assert scan(client, staff_headers, qr_data, category.id).status_code == 201

        response = scan(client, staff_headers, qr_data, category.id)

        assert response.status_code == 409
        assert response.json["code"] == "DUPLICATE_TRANSACTION"

    def test_scan_missing_fields(self, client, staff_headers):
        response = client.post("/api/v1/scan", headers=staff_headers, json={"action": "PURCHASE"})
        assert response.status_code == 400
        assert "qr_data" in response.json["error"]

    def test_redeem_insufficient_balance(self, client, member, reward, member_headers):
        response = client.post("/api/v1/redemptions", headers=member_headers, json={"reward_id": reward.id})
        assert response.status_code == 409
        assert response.json["code"] == "INSUFFICIENT_BALANCE"

    def test_staff_redeems_on_behalf(self, client, member, reward, staff_headers, set_balance):
        set_balance(member.id, "60")
        assert client.post("/api/v1/redemptions", headers=staff_headers, json={"reward_id": reward.id}).status_code == 400

        response = client.post(
            "/api/v1/redemptions", headers=staff_headers, json={"reward_id": reward.id, "member_id": member.id}
        )
        assert response.status_code == 201


# =============================================================================
# CATALOG & MEMBERS
# =============================================================================


class TestAdminRoutes:

    def test_reward_lifecycle(self, client, admin_headers, member_headers):
        created = client.post("/api/v1/rewards", headers=admin_headers, json={
            "name": "Umbrella", "points_required": "120", "stock": 3,
        })
        assert created.status_code == 201
        reward_id = created.json["reward"]["id"]

        listed = client.get("/api/v1/rewards?search=umbr", headers=member_headers)
        assert [r["id"] for r in listed.json["rewards"]] == [reward_id]

        patched = client.patch(f"/api/v1/rewards/{reward_id}", headers=admin_headers, json={"stock": 0})
        assert patched.json["reward"]["stock"] == 0
        assert client.get("/api/v1/rewards", headers=member_headers).json["rewards"] == []

        deleted = client.delete(f"/api/v1/rewards/{reward_id}", headers=admin_headers)
        assert deleted.json["result"] == "deleted"
        assert client.get(f"/api/v1/rewards/{reward_id}", headers=member_headers).status_code == 404

    def test_reward_validation(self, client, admin_headers):
        response = client.post("/api/v1/rewards", headers=admin_headers, json={"name": "Mug", "points_required": "-1"})
        assert response.status_code == 400

    def test_category_and_rule(self, client, admin_headers, staff_headers):
        category = client.post("/api/v1/categories", headers=admin_headers, json={"name": "Loan Payment"})
        assert category.status_code == 201
        assert category.json["category"]["slug"] == "loan-payment"

        rule = client.post("/api/v1/point-rules", headers=admin_headers, json={
            "category_id": category.json["category"]["id"],
            "action": "PAYMENT",
            "rule_type": "fixed",
            "value": "5",
        })
        assert rule.status_code == 201

        listed = client.get("/api/v1/point-rules?action=PAYMENT", headers=staff_headers)
        assert len(listed.json["point_rules"]) == 1

    def test_member_create_and_lookup(self, client, staff_headers):
        created = client.post("/api/v1/members", headers=staff_headers, json={"name": "Ana Reyes", "member_code": "BMPC-000777"})
        assert created.status_code == 201

        found = client.get("/api/v1/members/lookup?code=BMPC-000777", headers=staff_headers)
        assert found.json["member"]["name"] == "Ana Reyes"
        assert client.get("/api/v1/members/lookup?code=NOPE", headers=staff_headers).status_code == 404

    def test_audit_log_filter_validation(self, client, admin_headers):
        response = client.get("/api/v1/audit-logs?subject_kind=planet", headers=admin_headers)
        assert response.status_code == 400


class TestHealth:

    def test_healthy(self, client, db_session):
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json["status"] == "healthy"
        assert response.json["checks"]["qr_secret"]["details"]["secret"] == "configured"
