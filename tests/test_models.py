"""
Tests for entity rules: status transitions, blocks, clients and notes.
"""

from datetime import date, datetime

import pytest

from barbershop.auth import PasslibPinHasher, is_valid_pin
from barbershop.errors import ConflictError, ValidationError
from barbershop.models import Appointment, BlockedInterval, Client, ClientNote, normalize_time
from barbershop.schemas import (
    AppointmentCreate,
    AppointmentStatus,
    InboundEvent,
    WorkingHours,
    sanitize_phone,
)

from conftest import BOGOTA, NOW


def appointment(status=AppointmentStatus.pending):
    return Appointment(
        customer_phone="573001112233",
        customer_name="Juan",
        staff_id="barber_alex",
        service="haircut",
        starts_at=NOW,
        status=status.value,
    )


class TestAppointmentStatus:
    def test_pending_to_confirmed_to_completed(self):
        appt = appointment()

        appt.confirm()
        assert appt.status == AppointmentStatus.confirmed
        appt.complete()
        assert appt.status == AppointmentStatus.completed
        assert appt.is_terminal

    def test_confirm_only_from_pending(self):
        with pytest.raises(ConflictError):
            appointment(AppointmentStatus.confirmed).confirm()

    def test_no_way_out_of_terminal_states(self):
        with pytest.raises(ConflictError):
            appointment(AppointmentStatus.cancelled).complete()
        with pytest.raises(ConflictError):
            appointment(AppointmentStatus.completed).cancel()
        with pytest.raises(ConflictError):
            appointment(AppointmentStatus.cancelled).cancel()

    def test_short_id_and_window(self):
        appt = appointment()

        assert appt.short_id == appt.id[:8]
        assert (appt.ends_at - appt.starts_at).total_seconds() == 3600


class TestBlockedInterval:
    def test_one_hour_block(self):
        block = BlockedInterval.one_hour("barber_alex", "9:00", day=date(2030, 1, 17))

        assert (block.start_time, block.end_time) == ("09:00", "10:00")
        assert block.covers(datetime(2030, 1, 17, 9, 0, tzinfo=BOGOTA))
        assert not block.covers(datetime(2030, 1, 17, 10, 0, tzinfo=BOGOTA))
        assert not block.covers(datetime(2030, 1, 18, 9, 0, tzinfo=BOGOTA))

    def test_recurring_block_ignores_the_date(self):
        block = BlockedInterval.one_hour("barber_alex", "12:00", day=date(2030, 1, 17), recurring=True)

        assert block.date is None
        assert block.covers(datetime(2031, 6, 2, 12, 0, tzinfo=BOGOTA))

    def test_invalid_blocks(self):
        with pytest.raises(ValidationError):
            BlockedInterval.build("barber_alex", "14:00", "13:00", day=date(2030, 1, 17))
        with pytest.raises(ValidationError):
            BlockedInterval.build("barber_alex", "13:00", "14:00")
        with pytest.raises(ValidationError):
            BlockedInterval.one_hour("barber_alex", "23:30", day=date(2030, 1, 17))

    def test_time_format(self):
        assert normalize_time(" 7:05 ") == "07:05"
        with pytest.raises(ValidationError):
            normalize_time("7pm")


class TestClientAndNotes:
    def test_client_upsert_counters(self):
        client = Client(phone="573001112233", name="x")

        client.record_booking("  juan   perez ", NOW)
        client.record_booking("juan perez", NOW)

        assert client.name == "Juan Perez"
        assert client.total_appointments == 2
        assert client.last_appointment_at == NOW

    def test_note_strips_control_characters(self):
        note = ClientNote.compose("573001112233", "barber_alex", "line\x00one\x07")

        assert note.content == "lineone"

    def test_note_preview(self):
        note = ClientNote.compose("573001112233", "barber_alex", "a" * 60)

        assert note.preview == "a" * 47 + "..."


class TestInputRules:
    def test_phone_sanitizing(self):
        assert sanitize_phone("+57 (300) 111-2233") == "+573001112233"
        assert sanitize_phone("300 111 2233") == "3001112233"

    def test_booking_request_validation(self):
        with pytest.raises(ValueError):
            AppointmentCreate(
                customer_phone="123",
                customer_name="Juan",
                staff_id="barber_alex",
                service="haircut",
                starts_at=NOW,
            )
        with pytest.raises(ValueError):
            AppointmentCreate(
                customer_phone="573001112233",
                customer_name="Juan",
                staff_id="barber_alex",
                service="haircut",
                starts_at=NOW.replace(tzinfo=None),
            )

    def test_inbound_identity_must_be_a_phone_number(self):
        event = InboundEvent(identity="+57 300 111 2233", kind="text", payload="hola")

        assert event.identity == "+573001112233"
        with pytest.raises(ValueError):
            InboundEvent(identity="12345", kind="text", payload="hola")
        with pytest.raises(ValueError):
            InboundEvent(identity="1" * 16, kind="selection", payload="menu_book")

    def test_working_hours(self):
        with pytest.raises(ValueError):
            WorkingHours(start_hour=17, end_hour=9)
        assert WorkingHours(start_hour=9, end_hour=12).contains_hour(11)
        assert not WorkingHours(start_hour=9, end_hour=12).contains_hour(12)

    def test_pin_hashing(self):
        hasher = PasslibPinHasher()
        hashed = hasher.hash("2468")

        assert hashed != "2468"
        assert hasher.verify("2468", hashed)
        assert not hasher.verify("1357", hashed)
        assert not hasher.verify("2468", "not-a-hash")
        assert not is_valid_pin("12")
