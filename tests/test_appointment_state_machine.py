"""Tests for appointment lifecycle transitions."""

from datetime import date, time, timedelta
from uuid import uuid4

import pytest

from clinicflow.core.events import SessionChannel, appointment_topic
from clinicflow.core.exceptions import (
    ForbiddenException,
    InvalidTransition,
    NotFoundException,
    StaleState,
)
from clinicflow.schemas.actors import Actor, ActorRole
from clinicflow.schemas.appointments import AppointmentFilters, AppointmentStatus
from clinicflow.services.appointment_service import (
    TRANSITIONS,
    AppointmentService,
    check_transition,
)

TODAY = date(2024, 1, 10)

S = AppointmentStatus


@pytest.fixture
def service(db_session, publisher, clock) -> AppointmentService:
    return AppointmentService(db_session, publisher, clock)


@pytest.mark.asyncio
async def test_confirm_then_complete_then_confirm_again(service, book, patient, staff, doctor):
    appointment = await book(patient, time(10, 0))
    assert appointment.status == S.PENDING

    confirmed = await service.transition(staff, appointment.id, S.CONFIRMED)
    assert confirmed.status == S.CONFIRMED

    completed = await service.transition(doctor, appointment.id, S.COMPLETED)
    assert completed.status == S.COMPLETED

    with pytest.raises(InvalidTransition):
        await service.transition(staff, appointment.id, S.CONFIRMED)


@pytest.mark.parametrize("terminal", [S.COMPLETED, S.CANCELLED, S.MISSED])
@pytest.mark.parametrize("target", list(S))
def test_terminal_states_accept_nothing(terminal, target):
    actor = Actor(id=uuid4(), role=ActorRole.STAFF)
    row = {"patient_id": uuid4(), "doctor_id": uuid4()}

    with pytest.raises(InvalidTransition):
        check_transition(actor, row, terminal, target)


def test_transition_table_only_leaves_live_states():
    assert {source for source, _ in TRANSITIONS} == {S.PENDING, S.CONFIRMED}
    assert all(source != target for source, target in TRANSITIONS)


@pytest.mark.asyncio
async def test_same_state_is_invalid(service, book, patient, staff):
    appointment = await book(patient, time(10, 0))

    with pytest.raises(InvalidTransition):
        await service.transition(staff, appointment.id, S.PENDING)


@pytest.mark.asyncio
async def test_pending_cannot_complete(service, book, patient, doctor):
    appointment = await book(patient, time(10, 0))

    with pytest.raises(InvalidTransition):
        await service.transition(doctor, appointment.id, S.COMPLETED)


@pytest.mark.asyncio
async def test_patient_cannot_confirm(service, book, patient):
    appointment = await book(patient, time(10, 0))

    with pytest.raises(ForbiddenException):
        await service.transition(patient, appointment.id, S.CONFIRMED)


@pytest.mark.asyncio
async def test_patient_cancels_own_appointment(service, book, patient):
    appointment = await book(patient, time(10, 0))

    cancelled = await service.transition(patient, appointment.id, S.CANCELLED)

    assert cancelled.status == S.CANCELLED
    assert cancelled.cancelled_at is not None


@pytest.mark.asyncio
async def test_patient_cannot_cancel_someone_elses(service, book, patient, other_patient):
    appointment = await book(patient, time(10, 0))

    with pytest.raises(ForbiddenException):
        await service.transition(other_patient, appointment.id, S.CANCELLED)


@pytest.mark.asyncio
async def test_doctor_only_acts_on_own_appointments(service, book, patient):
    appointment = await book(patient, time(10, 0))
    stranger = Actor(id=uuid4(), role=ActorRole.DOCTOR)

    with pytest.raises(ForbiddenException):
        await service.transition(stranger, appointment.id, S.CONFIRMED)


@pytest.mark.asyncio
async def test_doctor_cannot_mark_missed(service, book, patient, doctor):
    appointment = await book(patient, time(10, 0), confirmed=True)

    with pytest.raises(ForbiddenException):
        await service.transition(doctor, appointment.id, S.MISSED)


@pytest.mark.asyncio
async def test_expected_status_mismatch_is_stale(service, book, patient, staff):
    appointment = await book(patient, time(10, 0), confirmed=True)

    with pytest.raises(StaleState):
        await service.transition(staff, appointment.id, S.COMPLETED, expected=S.PENDING)

    row = await service.store.require(appointment.id)
    assert row["status"] == S.CONFIRMED.value


@pytest.mark.asyncio
async def test_lost_compare_and_swap_is_stale(service, book, patient, staff, monkeypatch):
    appointment = await book(patient, time(10, 0))

    async def moved_on(*args):
        return None

    monkeypatch.setattr(service.store, "compare_and_set_status", moved_on)

    with pytest.raises(StaleState):
        await service.transition(staff, appointment.id, S.CONFIRMED)


@pytest.mark.asyncio
async def test_unknown_appointment(service, staff):
    with pytest.raises(NotFoundException):
        await service.transition(staff, uuid4(), S.CONFIRMED)


@pytest.mark.asyncio
async def test_transition_publishes_status_changed(service, book, patient, staff, broadcaster, mock_redis):
    appointment = await book(patient, time(10, 0), name="Ravi Kumar")
    channel = SessionChannel()
    broadcaster.subscribe(appointment_topic(appointment.id), channel)

    await service.transition(staff, appointment.id, S.CONFIRMED)

    message = await channel.get()
    assert message["seq"] == 2
    event = message["event"]
    assert event["type"] == "AppointmentStatusChanged"
    assert event["oldStatus"] == "PENDING"
    assert event["newStatus"] == "CONFIRMED"
    assert event["status"] == "CONFIRMED"
    assert event["patientName"] == "Ravi Kumar"
    assert event["actorRole"] == "STAFF"
    assert event["token"] is None
    assert "updatedAt" in event
    assert mock_redis.xadd.call_args.args[1]["type"] == "AppointmentStatusChanged"


@pytest.mark.asyncio
async def test_failed_transition_publishes_nothing(service, book, patient, broadcaster):
    appointment = await book(patient, time(10, 0))

    with pytest.raises(ForbiddenException):
        await service.transition(patient, appointment.id, S.CONFIRMED)

    assert broadcaster.last_seq(appointment_topic(appointment.id)) == 1


# Reads


@pytest.mark.asyncio
async def test_get_appointment_access(service, book, patient, other_patient, doctor, staff):
    appointment = await book(patient, time(10, 0))

    for actor in (patient, doctor, staff):
        assert (await service.get_appointment(actor, appointment.id)).id == appointment.id

    with pytest.raises(ForbiddenException):
        await service.get_appointment(other_patient, appointment.id)


@pytest.mark.asyncio
async def test_list_appointments_scoped_to_patient(service, book, patient, other_patient, staff):
    await book(patient, time(9, 0))
    await book(other_patient, time(9, 30))

    mine = await service.list_appointments(patient, AppointmentFilters(patient_id=other_patient.id))
    everyone = await service.list_appointments(staff, AppointmentFilters())

    assert mine.total == 1
    assert mine.items[0].patient_id == patient.id
    assert everyone.total == 2


# Missed sweep


@pytest.mark.asyncio
async def test_mark_missed_sweeps_confirmed_past_appointments(service, book, patient, other_patient, clock):
    confirmed = await book(patient, time(9, 0), confirmed=True)
    pending = await book(other_patient, time(9, 30))

    clock.advance(days=1)
    result = await service.mark_missed()

    assert result.marked == [confirmed.id]
    assert result.skipped == 0
    assert (await service.store.require(confirmed.id))["status"] == S.MISSED.value
    assert (await service.store.require(pending.id))["status"] == S.PENDING.value


@pytest.mark.asyncio
async def test_mark_missed_leaves_today_alone(service, book, patient):
    await book(patient, time(9, 0), confirmed=True)

    result = await service.mark_missed()

    assert result.marked == []


@pytest.mark.asyncio
async def test_mark_missed_with_explicit_cutoff(service, book, patient):
    appointment = await book(patient, time(9, 0), confirmed=True)

    result = await service.mark_missed(TODAY + timedelta(days=1))

    assert result.marked == [appointment.id]
