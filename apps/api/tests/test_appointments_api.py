"""Tests for the staff appointments API."""

from datetime import datetime, timedelta, timezone

import pytest

from scheduling_core.db.enums import AppointmentStatus


def _future_iso(days: int = 3, hour: int = 15) -> str:
    start = (datetime.now(timezone.utc) + timedelta(days=days)).replace(
        hour=hour, minute=0, second=0, microsecond=0
    )
    return start.isoformat().replace("+00:00", "Z")


@pytest.mark.asyncio
async def test_requires_bearer_session(client):
    response = await client.get("/appointments")
    assert response.status_code == 401

    response = await client.get("/appointments", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid session"


@pytest.mark.asyncio
async def test_create_appointment_sends_confirmation_with_action_links(authed_client, fake_transport):
    response = await authed_client.post(
        "/appointments",
        json={
            "title": "Intro call",
            "scheduled_at": _future_iso(),
            "duration": 45,
            "meeting_type": "video",
            "meeting_link": "https://meet.example.com/abc",
            "attendee_name": "Jane Doe",
            "attendee_email": "Jane@Example.com",
        },
    )

    assert response.status_code == 201, response.text
    body = response.json()
    assert body["status"] == "scheduled"
    assert body["attendee_email"] == "jane@example.com"
    assert body["meeting"] == {"kind": "video", "meeting_link": "https://meet.example.com/abc"}

    sent = fake_transport.sent("send_confirmation")
    assert len(sent) == 1
    assert sent[0]["email"] == "jane@example.com"
    assert set(sent[0]["action_urls"]) == {"confirm", "cancel", "reschedule"}
    assert sent[0]["branding"].business_name == "Test Clinic"


@pytest.mark.asyncio
async def test_create_without_confirmation_sends_nothing(authed_client, fake_transport):
    response = await authed_client.post(
        "/appointments",
        json={
            "title": "Intro call",
            "scheduled_at": _future_iso(),
            "attendee_email": "jane@example.com",
            "send_confirmation": False,
        },
    )
    assert response.status_code == 201
    assert fake_transport.calls == []


@pytest.mark.asyncio
async def test_confirmation_failure_does_not_fail_booking(authed_client, fake_transport):
    fake_transport.crash.add("send_confirmation")

    response = await authed_client.post(
        "/appointments",
        json={"title": "Intro call", "scheduled_at": _future_iso(), "attendee_email": "jane@example.com"},
    )

    assert response.status_code == 201


@pytest.mark.asyncio
async def test_create_validation_and_conflict(authed_client):
    response = await authed_client.post("/appointments", json={"scheduled_at": _future_iso()})
    assert response.status_code == 400
    assert response.json()["detail"] == "title is required"

    past = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
    response = await authed_client.post("/appointments", json={"title": "Late", "scheduled_at": past})
    assert response.status_code == 400
    assert response.json()["detail"] == "scheduled_at must be in the future"

    start = _future_iso()
    first = await authed_client.post("/appointments", json={"title": "First", "scheduled_at": start})
    assert first.status_code == 201

    clash = await authed_client.post("/appointments", json={"title": "Second", "scheduled_at": start})
    assert clash.status_code == 409
    detail = clash.json()["detail"]
    assert detail["conflicting_appointment_id"] == first.json()["id"]
    assert detail["message"] == "This time slot conflicts with an existing appointment"


@pytest.mark.asyncio
async def test_list_and_get_are_org_scoped(authed_client, db, make_appointment):
    from scheduling_core.db.models import Organization

    mine = make_appointment()
    other_org = Organization(name="Elsewhere", slug="elsewhere", settings={})
    db.add(other_org)
    db.commit()
    theirs = make_appointment(org=other_org)

    listed = await authed_client.get("/appointments")
    assert listed.status_code == 200
    assert [a["id"] for a in listed.json()] == [str(mine.id)]

    assert (await authed_client.get(f"/appointments/{mine.id}")).status_code == 200
    assert (await authed_client.get(f"/appointments/{theirs.id}")).status_code == 404


@pytest.mark.asyncio
async def test_list_filters_by_status(authed_client, make_appointment):
    make_appointment()
    cancelled = make_appointment(
        scheduled_at=datetime.now(timezone.utc) + timedelta(days=5),
        status=AppointmentStatus.CANCELLED.value,
    )

    response = await authed_client.get("/appointments", params={"status": "cancelled"})

    assert response.status_code == 200
    assert [a["id"] for a in response.json()] == [str(cancelled.id)]


@pytest.mark.asyncio
async def test_complete_endpoint(authed_client, db, make_appointment):
    appt = make_appointment(status=AppointmentStatus.CONFIRMED.value)

    response = await authed_client.post(f"/appointments/{appt.id}/complete")
    assert response.status_code == 200
    assert response.json()["status"] == "completed"

    again = await authed_client.post(f"/appointments/{appt.id}/complete")
    assert again.status_code == 409
    assert again.json()["detail"] == "Appointment is already completed"


@pytest.mark.asyncio
async def test_business_hours_status_uses_default_when_unset(authed_client):
    response = await authed_client.get("/appointments/business-hours")

    assert response.status_code == 200
    body = response.json()
    assert body["timezone"] == "America/New_York"
    assert body["prompt"].startswith("Business Hours (America/New_York):")
    assert isinstance(body["is_open"], bool)


@pytest.mark.asyncio
async def test_business_hours_status_uses_org_config(authed_client, db, test_org):
    test_org.business_hours = {
        "timezone": "Europe/London",
        "schedule": {"monday": {"start": "08:00", "end": "12:00"}},
    }
    db.commit()

    response = await authed_client.get("/appointments/business-hours")

    body = response.json()
    assert body["timezone"] == "Europe/London"
    assert "  Monday: 8:00 AM - 12:00 PM" in body["prompt"]
    assert "  Tuesday: Closed" in body["prompt"]


@pytest.mark.asyncio
async def test_available_slots_endpoint(authed_client):
    response = await authed_client.get("/appointments/available-slots", params={"date": "2030-06-01"})
    assert response.status_code == 200
    assert response.json() == {
        "date": "2030-06-01",
        "slots": [],
        "available": False,
        "message": "Closed on this day",
    }

    monday = await authed_client.get(
        "/appointments/available-slots", params={"date": "2030-06-03", "duration": 60}
    )
    body = monday.json()
    assert body["available"] is True
    assert len(body["slots"]) > 0

    bad = await authed_client.get("/appointments/available-slots", params={"date": "June 3"})
    assert bad.status_code == 400


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
