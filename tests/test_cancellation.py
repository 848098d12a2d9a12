#!/usr/bin/env python3
"""
Tests for patient self-service cancellation by token.
"""

import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio

from clinic_booking.core.errors import (
    AlreadyCancelled,
    DeadlineExceeded,
    InvalidToken,
    InvalidTransition,
    PastAppointment,
)
from clinic_booking.schemas.booking import AppointmentStatus

from conftest import BOOKING_DAY, local_dt


@pytest_asyncio.fixture
async def appt(book, practice):
    """Check-up on BOOKING_DAY 09:00-09:30, deadline the day before at 09:00."""
    return await book(practice.becker(9), practice.checkup)


class TestCancellationDeadline:

    @pytest.mark.essential
    async def test_one_second_before_deadline_succeeds(self, booking_service, appt, practice):
        deadline = local_dt(BOOKING_DAY, 9) - timedelta(hours=24)
        assert appt.cancellation_deadline == deadline

        cancelled = await booking_service.cancel_by_token(appt.cancel_token, now=deadline - timedelta(seconds=1))

        assert cancelled.status == AppointmentStatus.CANCELLED
        assert all(practice.is_available(*cancelled.slots))

    @pytest.mark.essential
    async def test_exactly_at_deadline_is_rejected(self, booking_service, appt, practice):
        with pytest.raises(DeadlineExceeded) as exc:
            await booking_service.cancel_by_token(appt.cancel_token, now=appt.cancellation_deadline)

        assert exc.value.details["deadline"] == appt.cancellation_deadline.isoformat()
        stored = await practice.store.get_appointment(appt.id)
        assert stored.status == AppointmentStatus.CONFIRMED
        assert not any(practice.is_available(*stored.slots))

    async def test_inside_deadline_window_is_rejected(self, booking_service, appt):
        with pytest.raises(DeadlineExceeded):
            await booking_service.cancel_by_token(appt.cancel_token, now=local_dt(BOOKING_DAY, 8, 59, 59))

    @pytest.mark.parametrize("hour,minute", [(9, 0), (9, 15), (14, 0)])
    async def test_started_or_past_appointment(self, booking_service, appt, hour, minute):
        with pytest.raises(PastAppointment):
            await booking_service.cancel_by_token(appt.cancel_token, now=local_dt(BOOKING_DAY, hour, minute))

    async def test_service_clock_used_when_no_time_given(self, booking_service, appt, clock):
        clock.set(local_dt(BOOKING_DAY, 7))
        with pytest.raises(DeadlineExceeded):
            await booking_service.cancel_by_token(appt.cancel_token)

        clock.set(local_dt(BOOKING_DAY - timedelta(days=3), 12))
        cancelled = await booking_service.cancel_by_token(appt.cancel_token)
        assert cancelled.status == AppointmentStatus.CANCELLED

    async def test_deadline_moves_with_reschedule(self, booking_service, appt, practice):
        moved = await booking_service.reschedule(appt.id, practice.becker(11).id)
        old_deadline = appt.cancellation_deadline

        # Past the old deadline, still before the new one
        now = old_deadline + timedelta(hours=1)
        cancelled = await booking_service.cancel_by_token(moved.cancel_token, now=now)
        assert cancelled.status == AppointmentStatus.CANCELLED


class TestCancelByToken:

    @pytest.mark.essential
    async def test_cancel_releases_slots_and_notifies(self, booking_service, appt, practice, sink):
        cancelled = await booking_service.cancel_by_token(appt.cancel_token)

        assert cancelled.id == appt.id
        assert practice.is_available(practice.becker(9), practice.becker(9, 10), practice.becker(9, 20)) == [True] * 3
        events = sink.of_kind("cancelled_by_patient")
        assert len(events) == 1
        assert events[0].appointment_id == appt.id
        assert events[0].cancel_token == appt.cancel_token

    @pytest.mark.essential
    async def test_second_cancel_is_already_cancelled(self, booking_service, appt, sink):
        await booking_service.cancel_by_token(appt.cancel_token)

        with pytest.raises(AlreadyCancelled):
            await booking_service.cancel_by_token(appt.cancel_token)

        assert len(sink.of_kind("cancelled_by_patient")) == 1

    async def test_released_slots_can_be_rebooked(self, booking_service, book, appt, practice):
        await booking_service.cancel_by_token(appt.cancel_token)
        again = await book(practice.becker(9), practice.checkup)
        assert again.slot_ids == appt.slot_ids
        assert again.cancel_token != appt.cancel_token

    async def test_concurrent_cancels_have_one_winner(self, booking_service, appt, sink):
        results = await asyncio.gather(
            booking_service.cancel_by_token(appt.cancel_token),
            booking_service.cancel_by_token(appt.cancel_token),
            return_exceptions=True,
        )
        assert sum(not isinstance(r, Exception) for r in results) == 1
        assert any(isinstance(r, AlreadyCancelled) for r in results)
        assert len(sink.of_kind("cancelled_by_patient")) == 1

    @pytest.mark.parametrize("token", ["", "   ", "not-a-real-token"])
    async def test_invalid_token(self, booking_service, appt, token):
        with pytest.raises(InvalidToken) as exc:
            await booking_service.cancel_by_token(token)
        assert exc.value.error_key == "cancel.invalidToken"

    async def test_token_with_surrounding_whitespace(self, booking_service, appt):
        cancelled = await booking_service.cancel_by_token(f"  {appt.cancel_token}\n")
        assert cancelled.status == AppointmentStatus.CANCELLED

    async def test_completed_appointment_cannot_be_cancelled(self, booking_service, appt):
        await booking_service.set_status(appt.id, "completed")
        with pytest.raises(InvalidTransition):
            await booking_service.cancel_by_token(appt.cancel_token)

    async def test_practice_cancel_then_patient_cancel(self, booking_service, appt, sink):
        await booking_service.set_status(appt.id, "cancelled")
        with pytest.raises(AlreadyCancelled):
            await booking_service.cancel_by_token(appt.cancel_token)
        assert sink.kinds() == ["created", "cancelled_by_practice"]


class TestCancellationPreview:

    async def test_preview_of_cancellable_appointment(self, booking_service, appt):
        preview = await booking_service.preview_by_token(appt.cancel_token)
        assert preview.cancellable is True
        assert preview.reason is None
        assert preview.appointment.id == appt.id

    async def test_preview_does_not_cancel(self, booking_service, appt, practice):
        await booking_service.preview_by_token(appt.cancel_token)
        stored = await practice.store.get_appointment(appt.id)
        assert stored.status == AppointmentStatus.CONFIRMED

    async def test_preview_after_deadline(self, booking_service, appt):
        preview = await booking_service.preview_by_token(appt.cancel_token, now=appt.cancellation_deadline)
        assert preview.cancellable is False
        assert preview.reason == "cancel.deadline"

    async def test_preview_of_cancelled_appointment(self, booking_service, appt):
        await booking_service.cancel_by_token(appt.cancel_token)
        preview = await booking_service.preview_by_token(appt.cancel_token)
        assert preview.cancellable is False
        assert preview.reason == "cancel.alreadyCancelled"

    async def test_preview_of_past_appointment(self, booking_service, appt):
        preview = await booking_service.preview_by_token(appt.cancel_token, now=local_dt(BOOKING_DAY, 10))
        assert preview.reason == "cancel.pastAppointment"

    async def test_preview_with_unknown_token(self, booking_service):
        with pytest.raises(InvalidToken):
            await booking_service.preview_by_token("nope")
