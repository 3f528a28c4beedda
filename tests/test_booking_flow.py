"""
Tests for the customer chat: main menu, booking dialogue and self-service.
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from barbershop.errors import InfrastructureError, SlotUnavailableError
from barbershop.flows.booking_flow import BookingStep, ConversationSession
from barbershop.models import Staff

from conftest import NOW, button_ids, row_ids

CUSTOMER = "573001112233"
FRIEND = "573009998877"
TOMORROW = NOW.date() + timedelta(days=1)


async def walk_to_times(send, identity=CUSTOMER, staff="staff_barber_alex", day=TOMORROW):
    await send(identity, "hola")
    await send(identity, "menu_book", kind="selection")
    await send(identity, "Juan Perez")
    await send(identity, staff, kind="selection")
    await send(identity, "svc_haircut", kind="selection")
    await send(identity, f"date_{day.isoformat()}", kind="selection")


class TestMainMenu:
    """Greeting and top-level routing."""

    @pytest.mark.asyncio
    async def test_first_message_gets_the_welcome_menu(self, send, messenger):
        await send(CUSTOMER, "whatever")

        kind, prompt = messenger.last(CUSTOMER)
        assert kind == "buttons"
        assert "Welcome to *Test Barbers*" in prompt.body
        assert button_ids(prompt) == ["menu_book", "menu_mine", "menu_other"]

    @pytest.mark.asyncio
    async def test_unknown_text_after_welcome_shows_the_menu_again(self, send, messenger):
        await send(CUSTOMER, "hola")
        await send(CUSTOMER, "what can you do?")

        kind, prompt = messenger.last(CUSTOMER)
        assert kind == "buttons"
        assert "Welcome" not in prompt.body
        assert "What would you like to do?" in prompt.body

    @pytest.mark.asyncio
    async def test_no_active_appointment(self, send, messenger):
        await send(CUSTOMER, "hi")
        await send(CUSTOMER, "2")

        kind, prompt = messenger.last(CUSTOMER)
        assert prompt.body == "You have no upcoming appointment."
        assert button_ids(prompt) == ["menu_book"]

    @pytest.mark.asyncio
    async def test_view_and_cancel_own_appointment(self, send, messenger, book, service):
        appointment = await book(CUSTOMER, 10, day=TOMORROW)
        await send(CUSTOMER, "hi")
        await send(CUSTOMER, "mis citas")

        kind, prompt = messenger.last(CUSTOMER)
        assert appointment.short_id in prompt.body
        assert button_ids(prompt) == [f"menu_cancel_{appointment.short_id}"]

        await send(CUSTOMER, f"menu_cancel_{appointment.short_id}", kind="selection")

        assert "*Appointment cancelled*" in messenger.texts_to(CUSTOMER)[-1]
        assert await service.booking.active_for(CUSTOMER) is None

    @pytest.mark.asyncio
    async def test_cancel_with_a_wrong_code(self, send, messenger, book, service):
        await book(CUSTOMER, 10, day=TOMORROW)
        await send(CUSTOMER, "hi")
        await send(CUSTOMER, "cancel ffff0000")

        assert messenger.texts_to(CUSTOMER)[-1] == "No appointment of yours matches the code ffff0000."
        assert await service.booking.active_for(CUSTOMER) is not None

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_answered_with_an_apology(self, send, messenger, service):
        service.booking_flow.start = AsyncMock(side_effect=RuntimeError("boom"))
        await send(CUSTOMER, "hi")
        await send(CUSTOMER, "1")

        assert messenger.texts_to(CUSTOMER)[-1] == "Something went wrong. Please try again."


class TestBookingDialogue:
    """Step-by-step booking."""

    @pytest.mark.asyncio
    async def test_happy_path_books_and_confirms(self, send, messenger, service, clock):
        await send(CUSTOMER, "hola")
        await send(CUSTOMER, "1")
        assert "Please write your *full name*" in messenger.texts_to(CUSTOMER)[-1]

        await send(CUSTOMER, "  Juan   Perez ")
        kind, prompt = messenger.last(CUSTOMER)
        assert kind == "list"
        assert row_ids(prompt) == ["staff_barber_alex", "staff_barber_sam"]

        await send(CUSTOMER, "staff_barber_alex", kind="selection")
        kind, prompt = messenger.last(CUSTOMER)
        assert button_ids(prompt) == ["svc_haircut", "svc_beard", "svc_both"]

        await send(CUSTOMER, "svc_beard", kind="selection")
        kind, prompt = messenger.last(CUSTOMER)
        ids = row_ids(prompt)
        assert len(ids) == 7
        assert ids[0] == "date_2030-01-16"
        assert prompt.sections[0].rows[0].description == "6 free"

        await send(CUSTOMER, f"date_{TOMORROW.isoformat()}", kind="selection")
        kind, prompt = messenger.last(CUSTOMER)
        assert row_ids(prompt) == [f"time_{hour:02d}:00" for hour in range(9, 17)]

        await send(CUSTOMER, "time_10:00", kind="selection")

        confirmation = messenger.texts_to(CUSTOMER)[-1]
        assert confirmation.startswith("*Appointment booked*")
        assert "Name: Juan Perez" in confirmation
        assert "Service: Beard trim" in confirmation

        appointment = await service.booking.active_for(CUSTOMER)
        assert appointment.starts_at == clock.at(TOMORROW, 10)
        assert appointment.service == "beard"
        assert CUSTOMER not in service.sessions

        client = await service.clients.get(CUSTOMER)
        assert client.name == "Juan Perez"
        assert client.total_appointments == 1

    @pytest.mark.asyncio
    async def test_undelivered_confirmation_keeps_the_booking(self, send, messenger, service, clock):
        await walk_to_times(send)
        messenger.send_text.side_effect = InfrastructureError()

        await send(CUSTOMER, "time_10:00", kind="selection")

        appointment = await service.booking.active_for(CUSTOMER)
        assert appointment.starts_at == clock.at(TOMORROW, 10)
        assert CUSTOMER not in service.sessions
        assert messenger.send_text.await_args.args[1].startswith("*Appointment booked*")

    @pytest.mark.asyncio
    async def test_short_name_is_asked_again(self, send, messenger, service):
        await send(CUSTOMER, "hola")
        await send(CUSTOMER, "1")
        await send(CUSTOMER, "J")

        assert messenger.texts_to(CUSTOMER)[-1] == "Please write a name between 2 and 100 characters."
        assert service.sessions.get(CUSTOMER).step == BookingStep.name

    @pytest.mark.asyncio
    async def test_bad_staff_choice_resends_the_list(self, send, messenger, service):
        await send(CUSTOMER, "hola")
        await send(CUSTOMER, "1")
        await send(CUSTOMER, "Juan Perez")
        await send(CUSTOMER, "the tall one")

        kind, prompt = messenger.last(CUSTOMER)
        assert kind == "list"
        assert prompt.body.startswith("Please pick a barber from the list.")
        assert service.sessions.get(CUSTOMER).step == BookingStep.staff

    @pytest.mark.asyncio
    async def test_full_day_is_rejected(self, send, messenger, service):
        await send(CUSTOMER, "hola")
        await send(CUSTOMER, "1")
        await send(CUSTOMER, "Juan Perez")
        await send(CUSTOMER, "staff_barber_alex", kind="selection")
        await send(CUSTOMER, "svc_haircut", kind="selection")
        await send(CUSTOMER, f"date_full_{TOMORROW.isoformat()}", kind="selection")

        kind, prompt = messenger.last(CUSTOMER)
        assert prompt.body.startswith("That day is fully booked.")
        assert service.sessions.get(CUSTOMER).step == BookingStep.date

    @pytest.mark.asyncio
    async def test_date_outside_the_window_is_rejected(self, send, messenger, service):
        await send(CUSTOMER, "hola")
        await send(CUSTOMER, "1")
        await send(CUSTOMER, "Juan Perez")
        await send(CUSTOMER, "staff_barber_alex", kind="selection")
        await send(CUSTOMER, "svc_haircut", kind="selection")
        await send(CUSTOMER, "date_2030-03-01", kind="selection")

        kind, prompt = messenger.last(CUSTOMER)
        assert prompt.body.startswith("Please pick a date from the list.")

    @pytest.mark.asyncio
    async def test_slot_taken_meanwhile_refreshes_the_times(self, send, messenger, service, book):
        await walk_to_times(send)
        await book("573005550000", 10, day=TOMORROW)

        await send(CUSTOMER, "time_10:00", kind="selection")

        kind, prompt = messenger.last(CUSTOMER)
        assert kind == "list"
        assert prompt.body.startswith("10:00 is already taken.")
        assert "time_10:00" not in row_ids(prompt)
        assert service.sessions.get(CUSTOMER).step == BookingStep.time
        assert await service.booking.active_for(CUSTOMER) is None

    @pytest.mark.asyncio
    async def test_lost_race_at_commit_refreshes_the_times(self, send, messenger, service):
        await walk_to_times(send)
        service.booking.book = AsyncMock(side_effect=SlotUnavailableError())

        await send(CUSTOMER, "time_11:00", kind="selection")

        kind, prompt = messenger.last(CUSTOMER)
        assert prompt.body.startswith("11:00 is already taken.")
        assert isinstance(service.sessions.get(CUSTOMER), ConversationSession)

    @pytest.mark.asyncio
    async def test_long_days_are_paginated(self, send, messenger, service):
        await service.staff.add(Staff(id="barber_lee", alias="lee", name="Lee Park", start_hour=8, end_hour=20))
        await walk_to_times(send, staff="staff_barber_lee")

        kind, prompt = messenger.last(CUSTOMER)
        ids = row_ids(prompt)
        assert len(ids) == 10
        assert ids[:9] == [f"time_{hour:02d}:00" for hour in range(8, 17)]
        assert ids[-1] == "time_more"

        await send(CUSTOMER, "time_more", kind="selection")

        kind, prompt = messenger.last(CUSTOMER)
        assert row_ids(prompt) == ["time_17:00", "time_18:00", "time_19:00"]

    @pytest.mark.asyncio
    async def test_menu_word_abandons_the_flow(self, send, messenger, service):
        await send(CUSTOMER, "hola")
        await send(CUSTOMER, "1")
        await send(CUSTOMER, "Juan Perez")
        await send(CUSTOMER, "MENU")

        kind, prompt = messenger.last(CUSTOMER)
        assert button_ids(prompt) == ["menu_book", "menu_mine", "menu_other"]
        assert CUSTOMER not in service.sessions

    @pytest.mark.asyncio
    async def test_active_appointment_blocks_a_second_booking(self, send, messenger, book, service):
        await book(CUSTOMER, 15, day=TOMORROW)
        await send(CUSTOMER, "hi")
        await send(CUSTOMER, "agendar")

        assert messenger.texts_to(CUSTOMER)[-1] == "There is already an active appointment for this number"
        assert CUSTOMER not in service.sessions


class TestBookForSomeoneElse:
    """Booking on behalf of another phone number."""

    @pytest.mark.asyncio
    async def test_books_for_the_target_and_tells_both(self, send, messenger, service, clock):
        await send(CUSTOMER, "hi")
        await send(CUSTOMER, "menu_other", kind="selection")
        await send(CUSTOMER, "call my brother")
        assert messenger.texts_to(CUSTOMER)[-1].startswith("That does not look like a phone number")

        await send(CUSTOMER, FRIEND)
        assert "the customer's *full name*" in messenger.texts_to(CUSTOMER)[-1]

        await send(CUSTOMER, "Pedro Perez")
        await send(CUSTOMER, "staff_barber_sam", kind="selection")
        await send(CUSTOMER, "svc_both", kind="selection")
        await send(CUSTOMER, f"date_{TOMORROW.isoformat()}", kind="selection")
        await send(CUSTOMER, "time_18:00", kind="selection")

        assert messenger.texts_to(FRIEND)[-1].startswith("*Appointment booked*")
        assert messenger.texts_to(CUSTOMER)[-1].startswith(f"*Appointment booked for {FRIEND}*")

        appointment = await service.booking.active_for(FRIEND)
        assert appointment.starts_at == clock.at(TOMORROW, 18)
        assert await service.booking.active_for(CUSTOMER) is None

    @pytest.mark.asyncio
    async def test_requester_is_told_even_when_the_target_is_unreachable(
        self, send, messenger, service
    ):
        deliver = messenger.send_text.side_effect

        def reject_friend(to, body):
            if to == FRIEND:
                raise InfrastructureError()
            return deliver(to, body)

        messenger.send_text.side_effect = reject_friend
        await send(CUSTOMER, "hi")
        await send(CUSTOMER, "3")
        await send(CUSTOMER, FRIEND)
        await send(CUSTOMER, "Pedro Perez")
        await send(CUSTOMER, "staff_barber_sam", kind="selection")
        await send(CUSTOMER, "svc_haircut", kind="selection")
        await send(CUSTOMER, f"date_{TOMORROW.isoformat()}", kind="selection")
        await send(CUSTOMER, "time_12:00", kind="selection")

        assert messenger.texts_to(CUSTOMER)[-1].startswith(f"*Appointment booked for {FRIEND}*")
        assert messenger.texts_to(FRIEND) == []
        assert (await service.booking.active_for(FRIEND)) is not None
        assert CUSTOMER not in service.sessions

    @pytest.mark.asyncio
    async def test_target_with_an_active_appointment_is_refused(self, send, messenger, book, service):
        await book(FRIEND, 12, day=TOMORROW)
        await send(CUSTOMER, "hi")
        await send(CUSTOMER, "3")
        await send(CUSTOMER, FRIEND)

        assert "already has an active appointment" in messenger.texts_to(CUSTOMER)[-1]
        assert CUSTOMER not in service.sessions
