"""
בדיקות API להזמנות: /api/bookings

מכסה:
- צורת תשובה אחידה {"ok": true, "booking": ...} ו-{"ok": false, "error": ...}
- 404 להזמנה שלא קיימת, 403 להזמנה של מדריך אחר, לכל פעולה
- 409 INVALID_BOOKING_TRANSITION
- עריכת פרטים: confirmed -> modified עם שורת audit אחת, עריכה חוזרת בלי שורות נוספות
- שערי מדריך: onboarding, פיילוט
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from app.core.feature_gates import FeatureGates, get_feature_gates
from app.db.models.audit_log import AuditLog
from app.db.models.booking import BookingStatus
from app.db.models.booking_audit import BookingAudit
from app.main import app
from tests.helpers import auth_headers, tomorrow_at

ACTIONS = ["submit", "accept", "reject", "modify", "cancel"]


async def _booking_audit_rows(db_session, booking_id: int) -> int:
    result = await db_session.execute(
        select(func.count(BookingAudit.id)).where(BookingAudit.booking_id == booking_id)
    )
    return int(result.scalar_one())


class TestCreateAndRead:
    @pytest.mark.integration
    async def test_create_booking_starts_in_draft(self, test_client, instructor_factory):
        instructor = await instructor_factory()

        response = await test_client.post(
            "/api/bookings",
            json={
                "start_time": tomorrow_at(9).isoformat(),
                "end_time": tomorrow_at(11).isoformat(),
                "customer_name": "Giulia",
                "meeting_point": "Piazza Centrale",
            },
            headers=auth_headers(instructor.id),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["ok"] is True
        assert body["booking"]["status"] == "draft"
        assert body["booking"]["instructor_id"] == instructor.id

    @pytest.mark.integration
    async def test_create_with_submit_goes_to_pending(self, test_client, db_session, instructor_factory):
        instructor = await instructor_factory()

        response = await test_client.post(
            "/api/bookings",
            json={
                "start_time": tomorrow_at(9).isoformat(),
                "end_time": tomorrow_at(11).isoformat(),
                "submit": True,
            },
            headers=auth_headers(instructor.id),
        )

        assert response.status_code == 201
        booking = response.json()["booking"]
        assert booking["status"] == "pending"
        assert await _booking_audit_rows(db_session, booking["id"]) == 1

    @pytest.mark.integration
    async def test_create_rejects_inverted_time_range(self, test_client, instructor_factory):
        instructor = await instructor_factory()

        response = await test_client.post(
            "/api/bookings",
            json={
                "start_time": tomorrow_at(11).isoformat(),
                "end_time": tomorrow_at(9).isoformat(),
            },
            headers=auth_headers(instructor.id),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_TIME_RANGE"

    @pytest.mark.integration
    async def test_missing_token_is_unauthorized(self, test_client):
        response = await test_client.get("/api/bookings/1")

        assert response.status_code == 401
        assert response.json()["ok"] is False

    @pytest.mark.integration
    async def test_unknown_instructor_is_not_found(self, test_client):
        response = await test_client.get("/api/bookings/1", headers=auth_headers(424242))

        assert response.status_code == 404

    @pytest.mark.integration
    async def test_onboarding_required(self, test_client, instructor_factory):
        instructor = await instructor_factory(onboarding_completed=False)

        response = await test_client.get("/api/bookings/1", headers=auth_headers(instructor.id))

        assert response.status_code == 403
        assert response.json()["error"] == "ONBOARDING_REQUIRED"

    @pytest.mark.integration
    async def test_lifecycle_endpoint(self, test_client, instructor_factory, booking_factory):
        instructor = await instructor_factory()
        booking = await booking_factory(instructor.id, status=BookingStatus.DRAFT)
        headers = auth_headers(instructor.id)
        await test_client.post(f"/api/bookings/{booking.id}/submit", headers=headers)

        response = await test_client.get(f"/api/bookings/{booking.id}/lifecycle", headers=headers)

        assert response.status_code == 200
        events = response.json()["events"]
        assert [e["to_state"] for e in events] == ["draft", "pending"]

    @pytest.mark.integration
    async def test_list_since_accepts_utc_suffix(self, test_client, instructor_factory, booking_factory):
        instructor = await instructor_factory()
        booking = await booking_factory(instructor.id)
        since = (datetime.utcnow() - timedelta(minutes=5)).replace(microsecond=0).isoformat() + "Z"

        response = await test_client.get(
            "/api/bookings", params={"since": since}, headers=auth_headers(instructor.id)
        )

        assert response.status_code == 200
        assert [b["id"] for b in response.json()["bookings"]] == [booking.id]

    @pytest.mark.integration
    async def test_create_with_aware_times(self, test_client, instructor_factory):
        instructor = await instructor_factory()

        response = await test_client.post(
            "/api/bookings",
            json={
                "start_time": tomorrow_at(9).isoformat() + "Z",
                "end_time": tomorrow_at(11).isoformat() + "Z",
            },
            headers=auth_headers(instructor.id),
        )

        assert response.status_code == 201
        assert response.json()["booking"]["start_time"] == tomorrow_at(9).isoformat()


class TestOwnership:
    @pytest.mark.integration
    @pytest.mark.parametrize("action", ACTIONS)
    async def test_nonexistent_booking_is_not_found(self, test_client, instructor_factory, action):
        instructor = await instructor_factory()

        response = await test_client.post(f"/api/bookings/999999/{action}", headers=auth_headers(instructor.id))

        assert response.status_code == 404
        assert response.json() == {
            "ok": False,
            "error": "NOT_FOUND",
            "message": "Booking not found: 999999",
            "details": {"resource": "Booking", "identifier": "999999"},
        }

    @pytest.mark.integration
    @pytest.mark.parametrize("action", ACTIONS)
    async def test_other_instructors_booking_is_forbidden(
        self, test_client, db_session, instructor_factory, booking_factory, action
    ):
        owner = await instructor_factory(name="Owner")
        intruder = await instructor_factory(name="Intruder")
        booking = await booking_factory(owner.id, status=BookingStatus.PENDING)

        response = await test_client.post(f"/api/bookings/{booking.id}/{action}", headers=auth_headers(intruder.id))

        assert response.status_code == 403
        assert response.json()["error"] == "FORBIDDEN"
        await db_session.refresh(booking)
        assert booking.status == BookingStatus.PENDING

    @pytest.mark.integration
    async def test_patch_of_other_instructors_booking_is_forbidden(
        self, test_client, instructor_factory, booking_factory
    ):
        owner = await instructor_factory(name="Owner")
        intruder = await instructor_factory(name="Intruder")
        booking = await booking_factory(owner.id, status=BookingStatus.CONFIRMED)

        response = await test_client.patch(
            f"/api/bookings/{booking.id}", json={"notes": "x"}, headers=auth_headers(intruder.id)
        )

        assert response.status_code == 403


class TestActions:
    @pytest.mark.integration
    async def test_accept_pending(self, test_client, instructor_factory, booking_factory):
        instructor = await instructor_factory()
        booking = await booking_factory(instructor.id, status=BookingStatus.PENDING)

        response = await test_client.post(f"/api/bookings/{booking.id}/accept", headers=auth_headers(instructor.id))

        assert response.status_code == 200
        assert response.json() == {"ok": True, "booking": response.json()["booking"]}
        assert response.json()["booking"]["status"] == "confirmed"

    @pytest.mark.integration
    async def test_invalid_transition_is_conflict(self, test_client, db_session, instructor_factory, booking_factory):
        instructor = await instructor_factory()
        booking = await booking_factory(instructor.id, status=BookingStatus.DRAFT)

        response = await test_client.post(f"/api/bookings/{booking.id}/cancel", headers=auth_headers(instructor.id))

        assert response.status_code == 409
        body = response.json()
        assert body["ok"] is False
        assert body["error"] == "INVALID_BOOKING_TRANSITION"
        assert body["details"]["current_state"] == "draft"
        assert body["details"]["target_state"] == "cancelled"
        assert await _booking_audit_rows(db_session, booking.id) == 0

    @pytest.mark.integration
    async def test_modify_with_details(self, test_client, instructor_factory, booking_factory):
        instructor = await instructor_factory()
        booking = await booking_factory(instructor.id, status=BookingStatus.CONFIRMED)

        response = await test_client.post(
            f"/api/bookings/{booking.id}/modify",
            json={"meeting_point": "Rifugio Alto"},
            headers=auth_headers(instructor.id),
        )

        assert response.status_code == 200
        assert response.json()["booking"]["status"] == "modified"
        assert response.json()["booking"]["meeting_point"] == "Rifugio Alto"

    @pytest.mark.integration
    async def test_status_patch_uses_state_machine(self, test_client, instructor_factory, booking_factory):
        instructor = await instructor_factory()
        booking = await booking_factory(instructor.id, status=BookingStatus.PENDING)
        headers = auth_headers(instructor.id)

        ok = await test_client.patch(f"/api/bookings/{booking.id}/status", json={"status": "declined"}, headers=headers)
        again = await test_client.patch(f"/api/bookings/{booking.id}/status", json={"status": "pending"}, headers=headers)

        assert ok.status_code == 200
        assert ok.json()["booking"]["status"] == "declined"
        assert again.status_code == 409

    @pytest.mark.integration
    async def test_invalid_payload_shape(self, test_client, instructor_factory, booking_factory):
        instructor = await instructor_factory()
        booking = await booking_factory(instructor.id, status=BookingStatus.PENDING)

        response = await test_client.patch(
            f"/api/bookings/{booking.id}/status", json={"status": "teleported"}, headers=auth_headers(instructor.id)
        )

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_PAYLOAD"


class TestDetailEdits:
    @pytest.mark.integration
    async def test_editing_confirmed_moves_to_modified_once(
        self, test_client, db_session, instructor_factory, booking_factory
    ):
        instructor = await instructor_factory()
        booking = await booking_factory(instructor.id, status=BookingStatus.CONFIRMED)
        headers = auth_headers(instructor.id)

        first = await test_client.patch(f"/api/bookings/{booking.id}", json={"notes": "bring helmet"}, headers=headers)

        assert first.status_code == 200
        assert first.json()["booking"]["status"] == "modified"
        assert first.json()["booking"]["notes"] == "bring helmet"
        assert await _booking_audit_rows(db_session, booking.id) == 1

        second = await test_client.patch(f"/api/bookings/{booking.id}", json={"notes": "bring goggles"}, headers=headers)

        assert second.status_code == 200
        assert second.json()["booking"]["status"] == "modified"
        assert second.json()["booking"]["notes"] == "bring goggles"
        assert await _booking_audit_rows(db_session, booking.id) == 1

    @pytest.mark.integration
    async def test_editing_pending_keeps_status(self, test_client, db_session, instructor_factory, booking_factory):
        instructor = await instructor_factory()
        booking = await booking_factory(instructor.id, status=BookingStatus.PENDING)

        response = await test_client.patch(
            f"/api/bookings/{booking.id}",
            json={"end_time": (booking.start_time + timedelta(hours=3)).isoformat()},
            headers=auth_headers(instructor.id),
        )

        assert response.status_code == 200
        assert response.json()["booking"]["status"] == "pending"
        assert await _booking_audit_rows(db_session, booking.id) == 0

    @pytest.mark.integration
    async def test_end_time_with_utc_suffix(self, test_client, instructor_factory, booking_factory):
        instructor = await instructor_factory()
        booking = await booking_factory(instructor.id, status=BookingStatus.CONFIRMED)

        response = await test_client.patch(
            f"/api/bookings/{booking.id}",
            json={"end_time": tomorrow_at(13).isoformat() + "Z"},
            headers=auth_headers(instructor.id),
        )

        assert response.status_code == 200
        assert response.json()["booking"]["status"] == "modified"
        assert response.json()["booking"]["end_time"] == tomorrow_at(13).isoformat()

    @pytest.mark.integration
    async def test_offset_times_are_converted_to_utc(self, test_client, instructor_factory, booking_factory):
        instructor = await instructor_factory()
        booking = await booking_factory(instructor.id, status=BookingStatus.PENDING)

        response = await test_client.patch(
            f"/api/bookings/{booking.id}",
            json={"end_time": tomorrow_at(14).isoformat() + "+02:00"},
            headers=auth_headers(instructor.id),
        )

        assert response.status_code == 200
        assert response.json()["booking"]["end_time"] == tomorrow_at(12).isoformat()

    @pytest.mark.integration
    @pytest.mark.parametrize("status", [BookingStatus.DECLINED, BookingStatus.CANCELLED])
    async def test_editing_terminal_booking_is_conflict(self, test_client, instructor_factory, booking_factory, status):
        instructor = await instructor_factory()
        booking = await booking_factory(instructor.id, status=status)

        response = await test_client.patch(
            f"/api/bookings/{booking.id}", json={"notes": "late"}, headers=auth_headers(instructor.id)
        )

        assert response.status_code == 409

    @pytest.mark.integration
    async def test_empty_patch_is_invalid(self, test_client, instructor_factory, booking_factory):
        instructor = await instructor_factory()
        booking = await booking_factory(instructor.id, status=BookingStatus.CONFIRMED)

        response = await test_client.patch(f"/api/bookings/{booking.id}", json={}, headers=auth_headers(instructor.id))

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_PAYLOAD"


class TestPilotGate:
    @pytest.fixture
    def restrict_pilot(self):
        """מגביל את הפיילוט למדריך אחד אחרי שנוצר"""
        def _restrict(instructor_id: int) -> None:
            gates = FeatureGates(pilot_instructor_ids=frozenset({instructor_id}))
            app.dependency_overrides[get_feature_gates] = lambda: gates
        return _restrict

    @pytest.mark.integration
    async def test_create_outside_pilot_is_payment_required(self, test_client, instructor_factory, restrict_pilot):
        pilot = await instructor_factory(name="Pilot")
        outsider = await instructor_factory(name="Outsider")
        restrict_pilot(pilot.id)

        response = await test_client.post(
            "/api/bookings",
            json={"start_time": tomorrow_at(9).isoformat(), "end_time": tomorrow_at(11).isoformat()},
            headers=auth_headers(outsider.id),
        )

        assert response.status_code == 402
        assert response.json()["error"] == "PILOT_ONLY"

    @pytest.mark.integration
    async def test_accept_is_not_pilot_gated(self, test_client, instructor_factory, booking_factory, restrict_pilot):
        pilot = await instructor_factory(name="Pilot")
        outsider = await instructor_factory(name="Outsider")
        restrict_pilot(pilot.id)
        booking = await booking_factory(outsider.id, status=BookingStatus.PENDING)

        response = await test_client.post(f"/api/bookings/{booking.id}/accept", headers=auth_headers(outsider.id))

        assert response.status_code == 200


class TestEvidence:
    @pytest.mark.integration
    async def test_status_change_is_logged(self, test_client, db_session, instructor_factory, booking_factory):
        instructor = await instructor_factory()
        booking = await booking_factory(instructor.id, status=BookingStatus.PENDING)

        await test_client.post(f"/api/bookings/{booking.id}/accept", headers=auth_headers(instructor.id))

        rows = (
            await db_session.execute(
                select(AuditLog).where(AuditLog.action == "booking_status_changed", AuditLog.entity_id == str(booking.id))
            )
        ).scalars().all()
        assert len(rows) == 1
        assert rows[0].payload == {"from": "pending", "to": "confirmed"}
        assert rows[0].actor_id == str(instructor.id)
