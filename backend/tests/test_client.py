"""Tests for the async client components against the app in-process.

Requests go through ``httpx.ASGITransport``; the transport records every
request so tests can assert that local validation never reaches the network.
"""
import ast
import json
from pathlib import Path

import httpx
import pytest

import eventpass.client
from eventpass.client.api import EventPassClient
from eventpass.client.checkin import CheckInProcessor, parse_payload
from eventpass.client.errors import (
    AlreadyCheckedInError,
    AlreadyRegisteredError,
    CapacityExceededError,
    ErrorCode,
    InvalidTicketQRError,
    MalformedQRError,
    NetworkError,
    NotOwnedError,
    UserAction,
    ValidationError,
    WrongEventError,
    error_from_response,
)
from eventpass.client.notifications import Notification, NotificationBus, NotificationLevel
from eventpass.client.registration import RegistrationOrchestrator
from eventpass.client.resolver import RecurrenceResolver, group_by_month
from eventpass.client.tickets import TicketWallet
from tests.conftest import create_recurring_event, create_test_event, create_test_user, register


class TestErrorTaxonomy:
    """Error codes, retry policy and response mapping."""

    def test_retry_policy(self):
        assert ErrorCode.NETWORK.retryable is True
        assert ErrorCode.ALREADY_CHECKED_IN.retryable is False
        assert ErrorCode.ALREADY_CHECKED_IN.user_action is UserAction.CONTACT_ORGANIZER
        assert ErrorCode.WRONG_EVENT.user_action is UserAction.GO_BACK
        assert ErrorCode.PAYMENT_TIMEOUT.user_action is UserAction.RETRY

    def test_capacity_response(self):
        response = httpx.Response(409, json={"detail": {
            "code": "CAPACITY_EXCEEDED", "message": "Event is full", "attendeeCount": 3, "maxAttendees": 3,
        }})
        error = error_from_response(response)
        assert isinstance(error, CapacityExceededError)
        assert error.attendee_count == 3
        assert error.max_attendees == 3
        assert str(error) == "CAPACITY_EXCEEDED: Event is full"

    def test_already_checked_in_response(self):
        response = httpx.Response(409, json={"detail": {
            "code": "ALREADY_CHECKED_IN",
            "message": "Ticket has already been checked in",
            "ticketId": "t1",
            "checkedInAt": "2030-01-07T18:05:00+00:00",
            "userData": {"userId": "u1", "displayName": "Thandi"},
        }})
        error = error_from_response(response)
        assert isinstance(error, AlreadyCheckedInError)
        assert error.ticket_id == "t1"
        assert error.checked_in_at.hour == 18
        assert error.user_data.display_name == "Thandi"

    def test_request_validation_response(self):
        response = httpx.Response(422, json={"detail": [{"msg": "field required"}]})
        assert isinstance(error_from_response(response), ValidationError)

    def test_unparsable_response(self):
        error = error_from_response(httpx.Response(500, text="<html>oops</html>"))
        assert isinstance(error, NetworkError)
        assert error.status_code == 500

    def test_unknown_code(self):
        error = error_from_response(httpx.Response(418, json={"detail": {"code": "TEAPOT", "message": "no"}}))
        assert error.code is ErrorCode.NETWORK

    @pytest.mark.asyncio
    async def test_transport_error_becomes_network(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with EventPassClient("u1", base_url="http://api", transport=httpx.MockTransport(handler)) as api:
            with pytest.raises(NetworkError):
                await api.get_event("e1")

    @pytest.mark.asyncio
    async def test_malformed_success_body(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="not json"))
        async with EventPassClient("u1", base_url="http://api", transport=transport) as api:
            with pytest.raises(NetworkError):
                await api.get_event("e1")


class TestNotificationBus:
    def test_publish_and_unsubscribe(self):
        bus = NotificationBus()
        received = []
        unsubscribe = bus.subscribe(received.append)
        bus.success("Done")
        unsubscribe()
        bus.info("Ignored")
        assert received == [Notification(NotificationLevel.SUCCESS, "Done")]

    def test_failing_listener_does_not_break_publisher(self):
        bus = NotificationBus()
        received = []

        def broken(notification):
            raise RuntimeError("boom")

        bus.subscribe(broken)
        bus.subscribe(received.append)
        bus.report("Check-in failed", WrongEventError())
        assert received[0].level is NotificationLevel.ERROR
        assert received[0].code is ErrorCode.WRONG_EVENT


class TestResolver:
    @pytest.mark.asyncio
    async def test_window_and_load_more(self, client, make_api):
        organizer = create_test_user(client)
        event_id = create_recurring_event(client, organizer["userId"])["event"]["eventId"]
        async with make_api(organizer["userId"]) as api:
            resolver = RecurrenceResolver(api, event_id, page_size=4)
            page = await resolver.get_instances()
            assert len(page.instances) == 4
            assert resolver.has_more is True

            await resolver.load_more()
            assert resolver.limit == 8
            assert len(resolver.instances) == 8
            assert resolver.instances[:4] == page.instances
            assert [label for label, _ in group_by_month(resolver.instances)] == ["January 2030"]

    @pytest.mark.asyncio
    async def test_lookup_outside_window(self, client, make_api):
        organizer = create_test_user(client)
        event_id = create_recurring_event(client, organizer["userId"])["event"]["eventId"]
        async with make_api(organizer["userId"]) as api:
            resolver = RecurrenceResolver(api, event_id, page_size=2)
            await resolver.get_instances()
            instance = await resolver.lookup(f"{event_id}_2030-03-06")
            assert instance is not None
            assert instance.day_of_week == "Wednesday"
            assert await resolver.lookup(f"{event_id}_2030-03-05") is None
            assert await resolver.lookup("garbage") is None


class TestRegistrationOrchestrator:
    @pytest.mark.asyncio
    async def test_free_registration(self, client, make_api):
        organizer = create_test_user(client)
        attendee = create_test_user(client, name="Attendee")
        event_id = create_test_event(client, organizer["userId"])["event"]["eventId"]
        bus = NotificationBus()
        received = []
        bus.subscribe(received.append)

        async with make_api(attendee["userId"]) as api:
            orchestrator = RegistrationOrchestrator(api, event_id, bus=bus)
            outcome = await orchestrator.register()

        assert outcome.payment_required is False
        assert outcome.registration.status.value == "registered"
        assert orchestrator.detail.event.current_attendees == 1
        assert orchestrator.detail.user_registration.ticket_id == outcome.registration.ticket_id
        assert received[-1].level is NotificationLevel.SUCCESS

    @pytest.mark.asyncio
    async def test_paid_registration_hands_over_payment(self, client, make_api):
        organizer = create_test_user(client)
        attendee = create_test_user(client, name="Attendee")
        event_id = create_test_event(client, organizer["userId"], eventType="paid", ticketPrice=80)["event"]["eventId"]
        async with make_api(attendee["userId"]) as api:
            orchestrator = RegistrationOrchestrator(api, event_id)
            outcome = await orchestrator.register()
        assert outcome.payment_required is True
        assert outcome.payment_reference
        assert outcome.payment_url.endswith(outcome.payment_reference)
        assert orchestrator.detail.event.current_attendees == 0

    @pytest.mark.asyncio
    async def test_recurring_requires_instance_locally(self, client, make_api):
        organizer = create_test_user(client)
        attendee = create_test_user(client, name="Attendee")
        event_id = create_recurring_event(client, organizer["userId"])["event"]["eventId"]
        api = make_api(attendee["userId"])
        async with api:
            orchestrator = RegistrationOrchestrator(api, event_id)
            await orchestrator.load()
            sent = len(api._transport.requests)
            with pytest.raises(ValidationError):
                await orchestrator.register()
            assert len(api._transport.requests) == sent

    @pytest.mark.asyncio
    async def test_capacity_checked_before_network(self, client, make_api):
        organizer = create_test_user(client)
        first = create_test_user(client, name="First")
        second = create_test_user(client, name="Second")
        event_id = create_recurring_event(client, organizer["userId"], maxAttendees=1)["event"]["eventId"]
        monday = f"{event_id}_2030-01-07"
        register(client, event_id, first["userId"], monday)

        api = make_api(second["userId"])
        async with api:
            orchestrator = RegistrationOrchestrator(api, event_id)
            await orchestrator.load()
            sent = len(api._transport.requests)
            with pytest.raises(CapacityExceededError) as exc_info:
                await orchestrator.register(monday)
            assert len(api._transport.requests) == sent
            assert exc_info.value.attendee_count == 1
            assert orchestrator.resolver.find(monday).attendee_count == 1

            outcome = await orchestrator.register(f"{event_id}_2030-01-09")
            assert outcome.registration.instance_id == f"{event_id}_2030-01-09"
            assert orchestrator.resolver.find(f"{event_id}_2030-01-09").attendee_count == 1

    @pytest.mark.asyncio
    async def test_already_registered_locally(self, client, make_api):
        organizer = create_test_user(client)
        attendee = create_test_user(client, name="Attendee")
        event_id = create_test_event(client, organizer["userId"])["event"]["eventId"]
        async with make_api(attendee["userId"]) as api:
            orchestrator = RegistrationOrchestrator(api, event_id)
            await orchestrator.register()
            with pytest.raises(AlreadyRegisteredError):
                await orchestrator.register()

    @pytest.mark.asyncio
    async def test_unregister(self, client, make_api):
        organizer = create_test_user(client)
        attendee = create_test_user(client, name="Attendee")
        event_id = create_test_event(client, organizer["userId"])["event"]["eventId"]
        async with make_api(attendee["userId"]) as api:
            orchestrator = RegistrationOrchestrator(api, event_id)
            await orchestrator.register()
            response = await orchestrator.unregister()
        assert response.was_pending_payment is False
        assert orchestrator.detail.event.current_attendees == 0
        assert orchestrator.active_registrations() == []

    @pytest.mark.asyncio
    async def test_unregister_after_check_in_is_final(self, client, make_api):
        organizer = create_test_user(client)
        attendee = create_test_user(client, name="Attendee")
        event_id = create_test_event(client, organizer["userId"])["event"]["eventId"]
        async with make_api(attendee["userId"]) as api, make_api(organizer["userId"]) as organizer_api:
            orchestrator = RegistrationOrchestrator(api, event_id)
            await orchestrator.register()
            wallet = TicketWallet(api)
            await wallet.load(event_id)
            payload = await wallet.issue_qr(wallet.tickets[0].ticket_id)
            await CheckInProcessor(organizer_api).check_in(payload.encode(), event_id)

            await orchestrator.load()
            with pytest.raises(AlreadyCheckedInError) as exc_info:
                await orchestrator.unregister()
        assert exc_info.value.retryable is False
        assert exc_info.value.user_action is UserAction.CONTACT_ORGANIZER


class TestTicketWallet:
    @pytest.mark.asyncio
    async def test_issue_qr(self, client, make_api):
        organizer = create_test_user(client)
        attendee = create_test_user(client, name="Attendee")
        event_id = create_test_event(client, organizer["userId"])["event"]["eventId"]
        ticket_id = register(client, event_id, attendee["userId"]).json()["registration"]["ticketId"]

        async with make_api(attendee["userId"]) as api:
            wallet = TicketWallet(api)
            await wallet.load()
            payload = await wallet.issue_qr(ticket_id)
            first_token = payload.verification_token
            refreshed = await wallet.refresh_qr()

        assert payload.is_structurally_valid()
        assert payload.event_id == event_id
        assert payload.timestamp > 0
        assert refreshed.verification_token != first_token
        assert wallet.qr == refreshed
        encoded = json.loads(refreshed.encode())
        assert set(encoded) == {"eventId", "userId", "ticketId", "verificationToken", "timestamp", "type", "version"}

    @pytest.mark.asyncio
    async def test_not_owned_never_reaches_server(self, client, make_api):
        organizer = create_test_user(client)
        attendee = create_test_user(client, name="Attendee")
        event_id = create_test_event(client, organizer["userId"])["event"]["eventId"]
        ticket_id = register(client, event_id, attendee["userId"]).json()["registration"]["ticketId"]

        api = make_api(organizer["userId"])
        async with api:
            wallet = TicketWallet(api)
            with pytest.raises(NotOwnedError):
                await wallet.issue_qr(ticket_id)
        assert all(not path.endswith("/qr") for _, path in api._transport.requests)

    @pytest.mark.asyncio
    async def test_switching_tickets_clears_qr(self, client, make_api):
        organizer = create_test_user(client)
        attendee = create_test_user(client, name="Attendee")
        event_id = create_recurring_event(client, organizer["userId"])["event"]["eventId"]
        first = register(client, event_id, attendee["userId"], f"{event_id}_2030-01-07").json()["registration"]
        second = register(client, event_id, attendee["userId"], f"{event_id}_2030-01-09").json()["registration"]

        async with make_api(attendee["userId"]) as api:
            wallet = TicketWallet(api)
            await wallet.load(event_id)
            await wallet.issue_qr(first["ticketId"])
            assert wallet.qr is not None
            wallet.select(second["ticketId"])
            assert wallet.qr is None
            assert wallet.selected_ticket_id == second["ticketId"]


class TestCheckInProcessor:
    def test_parse_malformed(self):
        with pytest.raises(MalformedQRError):
            parse_payload("not json")
        with pytest.raises(MalformedQRError):
            parse_payload("[1, 2]")
        with pytest.raises(MalformedQRError):
            parse_payload({"eventId": 42})

    def test_parse_missing_fields(self):
        with pytest.raises(InvalidTicketQRError):
            parse_payload({"eventId": "e", "userId": "u", "ticketId": "t", "type": "event_checkin"})
        with pytest.raises(InvalidTicketQRError):
            parse_payload({"eventId": "e", "userId": "u", "ticketId": "t", "verificationToken": "v"})

    @pytest.mark.asyncio
    async def test_round_trip_exactly_once(self, client, make_api):
        organizer = create_test_user(client, name="Organizer")
        attendee = create_test_user(client, name="Attendee")
        event_id = create_test_event(client, organizer["userId"])["event"]["eventId"]
        ticket_id = register(client, event_id, attendee["userId"]).json()["registration"]["ticketId"]

        async with make_api(attendee["userId"]) as api, make_api(organizer["userId"]) as organizer_api:
            payload = await TicketWallet(api).issue_qr(ticket_id)
            processor = CheckInProcessor(organizer_api)
            first = await processor.check_in(payload.encode(), event_id)
            second = await processor.check_in(payload.encode(), event_id)
            stats = await organizer_api.checkin_stats(event_id)

        assert first.already_checked_in is False
        assert first.user_data.display_name == "Attendee"
        assert second.already_checked_in is True
        assert second.checked_in_at == first.checked_in_at
        assert second.ticket_id == ticket_id
        assert stats.checked_in_count == 1

    @pytest.mark.asyncio
    async def test_wrong_event_is_local(self, client, make_api):
        organizer = create_test_user(client)
        attendee = create_test_user(client, name="Attendee")
        event_id = create_test_event(client, organizer["userId"])["event"]["eventId"]
        other_event_id = create_test_event(client, organizer["userId"], title="Other")["event"]["eventId"]
        ticket_id = register(client, event_id, attendee["userId"]).json()["registration"]["ticketId"]

        async with make_api(attendee["userId"]) as api:
            payload = await TicketWallet(api).issue_qr(ticket_id)
        organizer_api = make_api(organizer["userId"])
        async with organizer_api:
            with pytest.raises(WrongEventError):
                await CheckInProcessor(organizer_api).check_in(payload.encode(), other_event_id)
        assert organizer_api._transport.requests == []

    @pytest.mark.asyncio
    async def test_tampered_token_rejected(self, client, make_api):
        organizer = create_test_user(client)
        attendee = create_test_user(client, name="Attendee")
        event_id = create_test_event(client, organizer["userId"])["event"]["eventId"]
        ticket_id = register(client, event_id, attendee["userId"]).json()["registration"]["ticketId"]

        async with make_api(attendee["userId"]) as api, make_api(organizer["userId"]) as organizer_api:
            payload = await TicketWallet(api).issue_qr(ticket_id)
            tampered = payload.model_copy(update={"verification_token": "0" * 64})
            with pytest.raises(InvalidTicketQRError):
                await CheckInProcessor(organizer_api).check_in(tampered.encode(), event_id)


class TestClientBoundary:
    """The client package only depends on shared schemas and enums."""

    SERVER_MODULES = ("eventpass.services", "eventpass.routers", "eventpass.database", "eventpass.main")

    def _imports(self, path: Path) -> set[str]:
        modules = set()
        for node in ast.walk(ast.parse(path.read_text())):
            if isinstance(node, ast.ImportFrom) and node.module:
                modules.add(node.module)
            elif isinstance(node, ast.Import):
                modules.update(alias.name for alias in node.names)
        return modules

    def test_no_server_imports(self):
        package_dir = Path(eventpass.client.__file__).parent
        offending = {
            f"{path.name}: {module}"
            for path in package_dir.glob("*.py")
            for module in self._imports(path)
            if module.startswith(self.SERVER_MODULES)
        }
        assert offending == set()
