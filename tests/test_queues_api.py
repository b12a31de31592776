"""Tests for queue and slot endpoints."""

from datetime import time

import pytest
from httpx import AsyncClient

DAY = "2024-01-10"


@pytest.fixture
def queue_url(availability) -> str:
    return f"/api/v1/queues/{availability}/{DAY}"


@pytest.mark.asyncio
async def test_list_free_slots(client: AsyncClient, availability, book, patient, patient_headers: dict) -> None:
    """Test free slot listing omits booked slots."""
    await book(patient, time(9, 30))

    response = await client.get(
        f"/api/v1/doctors/{availability}/slots",
        params={"date": DAY},
        headers=patient_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["date"] == DAY
    assert data["consultation_type"] == "IN_PERSON"
    starts = [slot["start_time"] for slot in data["slots"]]
    assert starts[:2] == ["09:00:00", "10:00:00"]
    assert data["slots"][0]["end_time"] == "09:30:00"


@pytest.mark.asyncio
async def test_list_free_slots_requires_date(client: AsyncClient, availability, patient_headers: dict) -> None:
    response = await client.get(f"/api/v1/doctors/{availability}/slots", headers=patient_headers)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_patient_joins_queue(
    client: AsyncClient,
    book,
    patient,
    patient_headers: dict,
) -> None:
    """Test a patient enqueues their confirmed appointment, idempotently."""
    appointment = await book(patient, time(9, 0), confirmed=True)

    first = await client.post(
        "/api/v1/queues/entries",
        json={"appointment_id": str(appointment.id)},
        headers=patient_headers,
    )
    assert first.status_code == 200
    assert first.json()["token"] == 1
    assert first.json()["state"] == "WAITING"

    again = await client.post(
        "/api/v1/queues/entries",
        json={"appointment_id": str(appointment.id)},
        headers=patient_headers,
    )
    assert again.json()["id"] == first.json()["id"]

    priority = await client.post(
        "/api/v1/queues/entries",
        json={"appointment_id": str(appointment.id), "priority": True},
        headers=patient_headers,
    )
    assert priority.status_code == 403


@pytest.mark.asyncio
async def test_doctor_runs_the_queue(
    client: AsyncClient,
    book,
    patient,
    other_patient,
    queue_url: str,
    doctor_headers: dict,
    patient_headers: dict,
) -> None:
    """Test activate, call-next, recall, skip and position over HTTP."""
    first = await book(patient, time(9, 0), confirmed=True)
    second = await book(other_patient, time(9, 30), confirmed=True)

    activated = await client.post(f"{queue_url}/activate", headers=doctor_headers)
    assert activated.status_code == 200
    assert [entry["token"] for entry in activated.json()] == [1, 2]

    position = await client.get(
        f"/api/v1/queues/appointments/{first.id}/position", headers=patient_headers
    )
    assert position.status_code == 200
    assert position.json()["patients_ahead"] == 0
    assert position.json()["is_your_turn"] is False

    called = await client.post(f"{queue_url}/call-next", headers=doctor_headers)
    assert called.status_code == 200
    assert called.json()["current_serving_token"] == 1
    assert called.json()["entry"]["appointment_id"] == str(first.id)

    recalled = await client.post(f"{queue_url}/recall", headers=doctor_headers)
    assert recalled.json()["current_serving_token"] == 1

    skipped = await client.post(f"{queue_url}/entries/2/skip", headers=doctor_headers)
    assert skipped.status_code == 200
    assert skipped.json()["entry"]["state"] == "SKIPPED"
    assert skipped.json()["entry"]["appointment_id"] == str(second.id)

    empty = await client.post(f"{queue_url}/call-next", headers=doctor_headers)
    assert empty.status_code == 409
    assert empty.json()["error"] == "QueueEmpty"

    snapshot = (await client.get(queue_url, headers=patient_headers)).json()
    assert snapshot["current_serving_token"] == 1
    assert snapshot["stats"] == {"total": 2, "waiting": 0, "serving": 1, "done": 0, "skipped": 1}


@pytest.mark.asyncio
async def test_pause_and_resume(
    client: AsyncClient,
    book,
    patient,
    queue_url: str,
    staff_headers: dict,
) -> None:
    """Test a paused queue refuses call-next."""
    appointment = await book(patient, time(9, 0), confirmed=True)
    await client.post(
        "/api/v1/queues/entries",
        json={"appointment_id": str(appointment.id)},
        headers=staff_headers,
    )

    paused = await client.post(f"{queue_url}/pause", headers=staff_headers)
    assert paused.json()["is_paused"] is True

    refused = await client.post(f"{queue_url}/call-next", headers=staff_headers)
    assert refused.status_code == 409
    assert refused.json()["error"] == "QueuePaused"

    resumed = await client.post(f"{queue_url}/resume", headers=staff_headers)
    assert resumed.json()["is_paused"] is False

    called = await client.post(f"{queue_url}/call-next", headers=staff_headers)
    assert called.status_code == 200


@pytest.mark.asyncio
async def test_patient_cannot_control_queue(client: AsyncClient, queue_url: str, patient_headers: dict) -> None:
    for action in ("call-next", "recall", "pause", "resume", "activate", "entries/1/skip"):
        response = await client.post(f"{queue_url}/{action}", headers=patient_headers)
        assert response.status_code == 403, action


@pytest.mark.asyncio
async def test_unknown_token(client: AsyncClient, book, patient, queue_url: str, staff_headers: dict) -> None:
    appointment = await book(patient, time(9, 0), confirmed=True)
    await client.post(
        "/api/v1/queues/entries",
        json={"appointment_id": str(appointment.id)},
        headers=staff_headers,
    )

    response = await client.post(f"{queue_url}/entries/9/skip", headers=staff_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_queue_dates(
    client: AsyncClient,
    book,
    patient,
    availability,
    staff_headers: dict,
) -> None:
    """Test listing the days a doctor's queue was opened."""
    empty = await client.get(f"/api/v1/queues/{availability}/dates", headers=staff_headers)
    assert empty.json()["dates"] == []

    appointment = await book(patient, time(9, 0), confirmed=True)
    await client.post(
        "/api/v1/queues/entries",
        json={"appointment_id": str(appointment.id)},
        headers=staff_headers,
    )

    response = await client.get(f"/api/v1/queues/{availability}/dates", headers=staff_headers)
    assert response.status_code == 200
    assert response.json()["dates"] == [DAY]


@pytest.mark.asyncio
async def test_completing_served_appointment_closes_entry(
    client: AsyncClient,
    book,
    patient,
    queue_url: str,
    doctor_headers: dict,
) -> None:
    """Test completing the patient being served marks their token done."""
    appointment = await book(patient, time(9, 0), confirmed=True)
    await client.post(f"{queue_url}/activate", headers=doctor_headers)
    await client.post(f"{queue_url}/call-next", headers=doctor_headers)

    completed = await client.patch(
        f"/api/v1/appointments/{appointment.id}/status",
        json={"status": "COMPLETED"},
        headers=doctor_headers,
    )
    assert completed.status_code == 200
    assert completed.json()["status"] == "COMPLETED"

    snapshot = (await client.get(queue_url, headers=doctor_headers)).json()
    assert snapshot["stats"]["done"] == 1
    assert snapshot["stats"]["serving"] == 0

    recalled = await client.post(f"{queue_url}/recall", headers=doctor_headers)
    assert recalled.status_code == 409
    assert recalled.json()["error"] == "QueueEmpty"
