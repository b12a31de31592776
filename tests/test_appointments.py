"""Tests for appointment endpoints."""

from datetime import date, time
from uuid import uuid4

import pytest
from httpx import AsyncClient


def booking_data(doctor_id, at: str = "10:00:00", on: str = "2024-01-10") -> dict:
    return {
        "doctor_id": str(doctor_id),
        "appointment_date": on,
        "appointment_time": at,
        "consultation_type": "IN_PERSON",
        "patient_name": "Asha Rao",
        "reason_for_visit": "Follow-up",
    }


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    """Test health check endpoint."""
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient) -> None:
    """Test the logging middleware returns the caller's request ID."""
    response = await client.get("/api/v1/ping", headers={"X-Request-ID": "req-123"})
    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "req-123"
    assert "X-Process-Time" in response.headers


@pytest.mark.asyncio
async def test_create_appointment(
    client: AsyncClient,
    availability,
    patient,
    patient_headers: dict,
) -> None:
    """Test booking a free slot."""
    response = await client.post(
        "/api/v1/appointments/",
        json=booking_data(availability),
        headers=patient_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "PENDING"
    assert data["patient_id"] == str(patient.id)
    assert data["appointment_time"] == "10:00:00"
    assert data["queue_token"] is None
    assert "id" in data


@pytest.mark.asyncio
async def test_create_appointment_slot_taken(
    client: AsyncClient,
    availability,
    patient_headers: dict,
    other_patient_headers: dict,
) -> None:
    """Test the second booking of a slot is a conflict."""
    first = await client.post(
        "/api/v1/appointments/",
        json=booking_data(availability),
        headers=patient_headers,
    )
    assert first.status_code == 201

    second = await client.post(
        "/api/v1/appointments/",
        json=booking_data(availability),
        headers=other_patient_headers,
    )
    assert second.status_code == 409
    body = second.json()
    assert body["error"] == "SlotConflict"
    assert body["message"] == "Slot is already booked"
    assert body["path"].endswith("/api/v1/appointments/")


@pytest.mark.asyncio
async def test_create_appointment_slot_not_offered(
    client: AsyncClient,
    availability,
    patient_headers: dict,
) -> None:
    """Test booking outside the doctor's hours."""
    response = await client.post(
        "/api/v1/appointments/",
        json=booking_data(availability, at="18:00:00"),
        headers=patient_headers,
    )
    assert response.status_code == 422
    assert response.json()["error"] == "SlotUnavailable"


@pytest.mark.asyncio
async def test_invalid_appointment_data(client: AsyncClient, patient_headers: dict) -> None:
    """Test validation errors carry details."""
    response = await client.post(
        "/api/v1/appointments/",
        json={"doctor_id": "not-a-uuid"},
        headers=patient_headers,
    )
    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "ValidationError"
    assert len(body["details"]) >= 1


@pytest.mark.asyncio
async def test_unauthorized_access(client: AsyncClient) -> None:
    """Test requests without actor headers are rejected."""
    response = await client.get("/api/v1/appointments/")
    assert response.status_code == 401
    assert response.json()["message"] == "Missing actor identity"


@pytest.mark.asyncio
async def test_malformed_actor_headers(client: AsyncClient) -> None:
    """Test malformed identity headers."""
    response = await client.get(
        "/api/v1/appointments/",
        headers={"X-Actor-Id": "abc", "X-Actor-Role": "PATIENT"},
    )
    assert response.status_code == 401

    response = await client.get(
        "/api/v1/appointments/",
        headers={"X-Actor-Id": str(uuid4()), "X-Actor-Role": "JANITOR"},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_list_appointments(
    client: AsyncClient,
    book,
    patient,
    other_patient,
    patient_headers: dict,
    staff_headers: dict,
) -> None:
    """Test listing is scoped to the caller."""
    await book(patient, time(9, 0))
    await book(other_patient, time(9, 30), confirmed=True)

    mine = await client.get("/api/v1/appointments/", headers=patient_headers)
    assert mine.status_code == 200
    assert mine.json()["total"] == 1

    confirmed = await client.get(
        "/api/v1/appointments/",
        params={"status": "CONFIRMED", "date": "2024-01-10"},
        headers=staff_headers,
    )
    assert confirmed.status_code == 200
    data = confirmed.json()
    assert data["total"] == 1
    assert data["items"][0]["patient_id"] == str(other_patient.id)


@pytest.mark.asyncio
async def test_get_appointment(
    client: AsyncClient,
    book,
    patient,
    other_patient_headers: dict,
    patient_headers: dict,
) -> None:
    """Test reading an appointment and access control."""
    appointment = await book(patient, time(9, 0))

    response = await client.get(f"/api/v1/appointments/{appointment.id}", headers=patient_headers)
    assert response.status_code == 200
    assert response.json()["id"] == str(appointment.id)

    response = await client.get(
        f"/api/v1/appointments/{appointment.id}",
        headers=other_patient_headers,
    )
    assert response.status_code == 403

    response = await client.get(f"/api/v1/appointments/{uuid4()}", headers=patient_headers)
    assert response.status_code == 404
    assert response.json()["error"] == "NotFoundException"


@pytest.mark.asyncio
async def test_confirm_today_joins_queue(
    client: AsyncClient,
    book,
    patient,
    availability,
    staff_headers: dict,
) -> None:
    """Test confirming today's appointment issues a queue token."""
    appointment = await book(patient, time(9, 0))

    response = await client.patch(
        f"/api/v1/appointments/{appointment.id}/status",
        json={"status": "CONFIRMED", "expected_status": "PENDING"},
        headers=staff_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "CONFIRMED"
    assert data["queue_token"] == 1

    queue = await client.get(f"/api/v1/queues/{availability}/2024-01-10", headers=staff_headers)
    assert queue.json()["waiting_count"] == 1


@pytest.mark.asyncio
async def test_confirm_future_appointment_stays_out_of_queue(
    client: AsyncClient,
    book,
    patient,
    staff_headers: dict,
) -> None:
    """Test confirming a later appointment leaves queues alone."""
    appointment = await book(patient, time(9, 0), on=date(2024, 1, 11))

    response = await client.patch(
        f"/api/v1/appointments/{appointment.id}/status",
        json={"status": "CONFIRMED"},
        headers=staff_headers,
    )
    assert response.status_code == 200
    assert response.json()["queue_token"] is None


@pytest.mark.asyncio
async def test_cancel_withdraws_from_queue(
    client: AsyncClient,
    book,
    patient,
    availability,
    patient_headers: dict,
    staff_headers: dict,
) -> None:
    """Test cancelling a waiting appointment skips its token."""
    appointment = await book(patient, time(9, 0))
    await client.patch(
        f"/api/v1/appointments/{appointment.id}/status",
        json={"status": "CONFIRMED"},
        headers=staff_headers,
    )

    response = await client.patch(
        f"/api/v1/appointments/{appointment.id}/status",
        json={"status": "CANCELLED"},
        headers=patient_headers,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "CANCELLED"

    queue = (
        await client.get(f"/api/v1/queues/{availability}/2024-01-10", headers=staff_headers)
    ).json()
    assert queue["waiting_count"] == 0
    assert queue["stats"]["skipped"] == 1


@pytest.mark.asyncio
async def test_update_appointment_status_rejected(
    client: AsyncClient,
    book,
    patient,
    patient_headers: dict,
    staff_headers: dict,
) -> None:
    """Test lifecycle and concurrency errors map to HTTP statuses."""
    appointment = await book(patient, time(9, 0))

    forbidden = await client.patch(
        f"/api/v1/appointments/{appointment.id}/status",
        json={"status": "CONFIRMED"},
        headers=patient_headers,
    )
    assert forbidden.status_code == 403

    invalid = await client.patch(
        f"/api/v1/appointments/{appointment.id}/status",
        json={"status": "COMPLETED"},
        headers=staff_headers,
    )
    assert invalid.status_code == 409
    assert invalid.json()["error"] == "InvalidTransition"

    stale = await client.patch(
        f"/api/v1/appointments/{appointment.id}/status",
        json={"status": "CANCELLED", "expected_status": "CONFIRMED"},
        headers=staff_headers,
    )
    assert stale.status_code == 409
    assert stale.json()["error"] == "StaleState"


@pytest.mark.asyncio
async def test_reschedule_appointment(
    client: AsyncClient,
    book,
    patient,
    availability,
    patient_headers: dict,
) -> None:
    """Test moving an appointment frees its old slot."""
    appointment = await book(patient, time(9, 0))

    response = await client.post(
        f"/api/v1/appointments/{appointment.id}/reschedule",
        json={"appointment_date": "2024-01-11", "appointment_time": "10:30"},
        headers=patient_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["appointment_date"] == "2024-01-11"
    assert data["appointment_time"] == "10:30:00"

    slots = await client.get(
        f"/api/v1/doctors/{availability}/slots",
        params={"date": "2024-01-10"},
        headers=patient_headers,
    )
    assert "09:00:00" in [slot["start_time"] for slot in slots.json()["slots"]]


@pytest.mark.asyncio
async def test_missed_sweep(
    client: AsyncClient,
    book,
    patient,
    patient_headers: dict,
    staff_headers: dict,
) -> None:
    """Test only staff can run the missed sweep."""
    appointment = await book(patient, time(9, 0), confirmed=True)

    forbidden = await client.post(
        "/api/v1/appointments/missed-sweep", json={}, headers=patient_headers
    )
    assert forbidden.status_code == 403

    response = await client.post(
        "/api/v1/appointments/missed-sweep",
        json={"before_date": "2024-01-11"},
        headers=staff_headers,
    )
    assert response.status_code == 200
    assert response.json()["marked"] == [str(appointment.id)]
