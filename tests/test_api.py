"""Tests for the HTTP surface: status mapping, override endpoints and entity routes."""
from datetime import timedelta

from fastapi.testclient import TestClient

from kennel.database import get_db
from kennel.errors import GENERIC_TOKEN_ERROR
from kennel.main import create_app
from kennel.models.audit import AuditLog
from kennel.models.enums import AuditAction

from conftest import auth


def issue_body(recipient, entity_id="b1", minutes=15, scope="POLICY_BYPASS"):
    return {
        "issuedToUserId": recipient.id,
        "scope": scope,
        "entityType": "booking",
        "entityId": entity_id,
        "reason": "Approved by manager",
        "expiresInMinutes": minutes,
    }


class TestIdentity:
    def test_missing_identity_is_401(self, client):
        response = client.get("/api/me")

        assert response.status_code == 401
        assert response.json()["code"] == "unauthorized"

    def test_unknown_user_is_401(self, client):
        response = client.get("/api/me", headers={"X-User-Id": "nobody"})

        assert response.status_code == 401

    def test_inactive_user_is_401(self, client, db_session, customer):
        customer.is_active = False
        db_session.commit()

        assert client.get("/api/me", headers=auth(customer)).status_code == 401

    def test_me_returns_role_home(self, client, staff):
        response = client.get("/api/me", headers=auth(staff))

        assert response.status_code == 200
        assert response.json() == {"userId": staff.id, "role": "STAFF", "home": "/staff/overview"}


class TestOverrideEndpoints:
    def test_issue_then_consume_then_reuse(self, client, admin, staff):
        issued = client.post("/api/overrides/issue", json=issue_body(staff), headers=auth(admin))
        assert issued.status_code == 200
        token = issued.json()["token"]
        assert issued.json()["scope"] == "POLICY_BYPASS"
        assert issued.json()["entityId"] == "b1"

        consumed = client.post("/api/overrides/consume", json={"token": token}, headers=auth(staff))
        assert consumed.status_code == 200
        body = consumed.json()
        assert body["success"] is True
        assert body["overrideSessionId"].startswith("override_")
        assert body["entityType"] == "booking"

        reused = client.post("/api/overrides/consume", json={"token": token}, headers=auth(staff))
        assert reused.status_code == 400
        assert reused.json()["code"] == "token_invalid"
        assert reused.json()["error"] == GENERIC_TOKEN_ERROR

    def test_expired_token_reports_generic_error(self, client, admin, staff, clock):
        issued = client.post("/api/overrides/issue", json=issue_body(staff, minutes=1), headers=auth(admin))
        clock.advance(minutes=2)

        response = client.post("/api/overrides/consume", json={"token": issued.json()["token"]}, headers=auth(staff))

        assert response.status_code == 400
        assert response.json()["error"] == GENERIC_TOKEN_ERROR

    def test_wrong_recipient_is_403(self, client, admin, staff, customer):
        token = client.post("/api/overrides/issue", json=issue_body(staff), headers=auth(admin)).json()["token"]

        response = client.post("/api/overrides/consume", json={"token": token}, headers=auth(customer))

        assert response.status_code == 403
        assert response.json()["code"] == "forbidden"

    def test_staff_cannot_issue(self, client, staff, customer):
        response = client.post("/api/overrides/issue", json=issue_body(customer), headers=auth(staff))

        assert response.status_code == 403

    def test_stale_mfa_is_403_mfa_required(self, client, admin, staff, clock):
        clock.advance(minutes=10)

        response = client.post("/api/overrides/issue", json=issue_body(staff), headers=auth(admin))

        assert response.status_code == 403
        assert response.json()["code"] == "mfa_required"

    def test_expiry_over_limit_is_400(self, client, admin, staff):
        response = client.post("/api/overrides/issue", json=issue_body(staff, minutes=60), headers=auth(admin))

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"
        assert response.json()["details"]["fields"][0]["field"] == "expiresInMinutes"

    def test_unknown_scope_is_400(self, client, admin, staff):
        response = client.post("/api/overrides/issue", json=issue_body(staff, scope="GOD_MODE"), headers=auth(admin))

        assert response.status_code == 400

    def test_unknown_recipient_is_404(self, client, admin, staff):
        body = issue_body(staff)
        body["issuedToUserId"] = "nobody"

        response = client.post("/api/overrides/issue", json=body, headers=auth(admin))

        assert response.status_code == 404

    def test_list_and_revoke(self, client, admin, staff):
        client.post("/api/overrides/issue", json=issue_body(staff), headers=auth(admin))

        listing = client.get("/api/overrides", headers=auth(admin))
        assert listing.status_code == 200
        [item] = listing.json()
        assert item["state"] == "ISSUED"
        assert item["issuedToUserId"] == staff.id

        revoked = client.post(f"/api/overrides/{item['id']}/revoke", json={"reason": "Mistake"}, headers=auth(admin))
        assert revoked.status_code == 200
        assert revoked.json()["state"] == "REVOKED"

        issued_only = client.get("/api/overrides", params={"state": "ISSUED"}, headers=auth(admin))
        assert issued_only.json() == []

    def test_customer_cannot_list_tokens(self, client, customer):
        assert client.get("/api/overrides", headers=auth(customer)).status_code == 403


class TestEntityRoutes:
    def test_customer_lists_own_pets(self, client, customer, pets):
        response = client.get("/api/pets", params={"limit": 1}, headers=auth(customer))

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert body["total_pages"] == 2
        assert len(body["items"]) == 1

    def test_out_of_scope_pet_is_404(self, client, customer, pets):
        response = client.get(f"/api/pets/{pets[2].id}", headers=auth(customer))

        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    def test_unknown_filter_is_400(self, client, staff, pets):
        response = client.get("/api/pets", params={"colour": "black"}, headers=auth(staff))

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    def test_customer_creates_pet(self, client, db_session, customer):
        response = client.post("/api/pets", json={"name": "Rex", "medical_notes": "Hip dysplasia"},
                               headers=auth(customer))

        assert response.status_code == 201
        assert response.json()["owner_id"] == customer.id
        log = db_session.query(AuditLog).filter(AuditLog.action == AuditAction.CREATE).one()
        assert "Hip dysplasia" not in str(log.meta)

    def test_invalid_body_is_400_with_fields(self, client, customer):
        response = client.post("/api/pets", json={"weight": -1}, headers=auth(customer))

        assert response.status_code == 400
        fields = {item["field"] for item in response.json()["details"]["fields"]}
        assert "name" in fields

    def test_customer_cannot_create_kennel(self, client, customer):
        response = client.post("/api/kennels", json={"name": "Suite", "size": "large", "price": 90},
                               headers=auth(customer))

        assert response.status_code == 403
        assert response.json()["code"] == "forbidden"

    def test_privileged_mutation_needs_recent_mfa(self, client, db_session, owner, clock):
        owner.mfa_verified_at = clock.now - timedelta(hours=13)
        db_session.commit()

        response = client.post("/api/kennels", json={"name": "Suite", "size": "large", "price": 90},
                               headers=auth(owner))

        assert response.status_code == 403
        assert response.json()["code"] == "mfa_required"

    def test_admin_creates_kennel_with_recent_mfa(self, client, admin, clock):
        clock.advance(hours=2)

        response = client.post("/api/kennels", json={"name": "Suite", "size": "large", "price": 90},
                               headers=auth(admin))

        assert response.status_code == 201
        assert response.json()["size"] == "large"

    def test_staff_booking_edit_with_override_header(self, client, admin, staff, customer, pets, kennel):
        booking = client.post("/api/bookings", json={
            "pet_id": pets[0].id,
            "kennel_id": kennel.id,
            "start_date": "2026-04-01T00:00:00",
            "end_date": "2026-04-04T00:00:00",
            "price": 135.0,
        }, headers=auth(customer))
        assert booking.status_code == 201
        booking_id = booking.json()["id"]

        denied = client.patch(f"/api/bookings/{booking_id}", json={"notes": "Late pickup"}, headers=auth(staff))
        assert denied.status_code == 403
        assert denied.json()["details"]["overrideScope"] == "POLICY_BYPASS"

        token = client.post("/api/overrides/issue", json=issue_body(staff, entity_id=booking_id),
                            headers=auth(admin)).json()["token"]
        allowed = client.patch(f"/api/bookings/{booking_id}", json={"notes": "Late pickup"},
                               headers={**auth(staff), "X-Override-Token": token})
        assert allowed.status_code == 200
        assert allowed.json()["notes"] == "Late pickup"

        replay = client.patch(f"/api/bookings/{booking_id}", json={"notes": "Again"},
                              headers={**auth(staff), "X-Override-Token": token})
        assert replay.status_code == 400
        assert replay.json()["code"] == "token_invalid"

    def test_admin_pet_create_without_owner_is_400(self, client, db_session, admin):
        response = client.post("/api/pets", json={"name": "Rex"}, headers=auth(admin))

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"
        assert response.json()["details"]["fields"] == [{"field": "owner_id", "message": "Field required"}]
        assert db_session.query(AuditLog).count() == 0

    def test_null_price_on_kennel_is_400(self, client, db_session, admin, kennel):
        response = client.patch(f"/api/kennels/{kennel.id}", json={"price": None}, headers=auth(admin))

        assert response.status_code == 400
        assert response.json()["details"]["fields"][0]["field"] == "price"
        assert db_session.query(AuditLog).count() == 0

    def test_booking_start_moved_past_end_is_400(self, client, db_session, admin, customer, pets, kennel):
        created = client.post("/api/bookings", json={
            "pet_id": pets[0].id,
            "kennel_id": kennel.id,
            "start_date": "2026-04-01T00:00:00",
            "end_date": "2026-04-03T00:00:00",
            "price": 90.0,
        }, headers=auth(customer))
        booking_id = created.json()["id"]

        response = client.patch(f"/api/bookings/{booking_id}", json={"start_date": "2026-05-01T00:00:00"},
                                headers=auth(admin))

        assert response.status_code == 400
        assert response.json()["details"]["fields"][0]["field"] == "start_date"
        stored = client.get(f"/api/bookings/{booking_id}", headers=auth(admin)).json()
        assert stored["start_date"].startswith("2026-04-01")
        assert db_session.query(AuditLog).filter(AuditLog.action == AuditAction.UPDATE).count() == 0

    def test_delete_returns_id(self, client, customer, pets):
        pet_id = pets[1].id

        response = client.delete(f"/api/pets/{pet_id}", headers=auth(customer))

        assert response.status_code == 200
        assert response.json() == {"id": pet_id}


class TestAppSettings:
    """Routes read the settings the app was built with."""

    def test_app_settings_reach_the_routes(self, settings, clock, session_factory, db_session, owner):
        relaxed = settings.model_copy(update={"MFA_ENFORCE_PRIVILEGED": False})
        app = create_app(settings=relaxed, clock=clock)

        def override_get_db():
            db = session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        owner.mfa_verified_at = clock.now - timedelta(hours=13)
        db_session.commit()

        response = TestClient(app).post("/api/kennels", json={"name": "Suite", "size": "large", "price": 90},
                                        headers=auth(owner))

        assert response.status_code == 201
        assert app.state.settings is relaxed


class TestOperationalEndpoints:
    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_readiness_checks_database(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["database"] == "ok"

    def test_metrics_exposes_override_counters(self, client, admin, staff):
        client.post("/api/overrides/issue", json=issue_body(staff), headers=auth(admin))

        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert 'kennel_overrides_issued_total{scope="POLICY_BYPASS"} 1.0' in response.text
