"""Real-time event publishing and push notifications."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest
import respx
from httpx import Response
from redis.exceptions import ConnectionError as RedisConnectionError

from cabcore.domain.entities import Booking
from cabcore.domain.enums import BookingStatus
from cabcore.infrastructure import events
from cabcore.infrastructure.events import BookingEventPublisher
from cabcore.infrastructure.notifications import PushNotifier

PUSH_URL = "https://push.test/send"


def make_booking(driver_id=None) -> Booking:
    return Booking(
        id=7,
        booking_code="CBTEST0001",
        user_id=1,
        status=BookingStatus.ASSIGNED if driver_id else BookingStatus.CONFIRMED,
        driver_id=driver_id,
    )


@pytest.fixture
def redis():
    client = AsyncMock()
    client.publish = AsyncMock(return_value=1)
    return client


@pytest.fixture
def publisher(redis) -> BookingEventPublisher:
    async def factory():
        return redis

    return BookingEventPublisher(factory, prefix="cab")


class TestPublisher:
    def test_channels_for_user_only(self, publisher):
        assert publisher.channels_for(make_booking()) == ["cab:user:1"]

    def test_channels_include_driver(self, publisher):
        assert publisher.channels_for(make_booking(driver_id=4)) == [
            "cab:user:1",
            "cab:driver:4",
        ]

    async def test_publish_json_payload(self, publisher, redis):
        sent = await publisher.publish(
            events.BOOKING_CANCELLED, make_booking(driver_id=4), {"charge": 221}
        )

        assert sent == 2
        channels = [call.args[0] for call in redis.publish.await_args_list]
        assert channels == ["cab:user:1", "cab:driver:4"]
        payload = json.loads(redis.publish.await_args_list[0].args[1])
        assert payload["event"] == "booking.cancelled"
        assert payload["booking_code"] == "CBTEST0001"
        assert payload["status"] == "ASSIGNED"
        assert payload["driver_id"] == 4
        assert payload["charge"] == 221
        assert "at" in payload

    async def test_redis_failure_is_swallowed(self, publisher, redis):
        redis.publish = AsyncMock(side_effect=RedisConnectionError("down"))
        sent = await publisher.publish(events.BOOKING_CREATED, make_booking())
        assert sent == 0


class TestPushNotifier:
    async def test_no_token_skips(self):
        notifier = PushNotifier(PUSH_URL, "server-key")
        async with respx.mock:
            route = respx.post(PUSH_URL).mock(return_value=Response(200))
            assert await notifier.send(None, "Title", "Body") is False
        assert not route.called

    async def test_no_server_key_skips(self):
        notifier = PushNotifier(PUSH_URL, None)
        async with respx.mock:
            route = respx.post(PUSH_URL).mock(return_value=Response(200))
            assert await notifier.send("tok", "Title", "Body") is False
        assert not route.called

    async def test_sends_message(self):
        notifier = PushNotifier(PUSH_URL, "server-key")
        async with respx.mock:
            route = respx.post(PUSH_URL).mock(return_value=Response(200, json={"success": 1}))
            ok = await notifier.send(
                "tok-asha", "Booking confirmed", "Confirmed.", {"booking_id": 7}
            )

        assert ok is True
        request = route.calls.last.request
        assert request.headers["Authorization"] == "key=server-key"
        body = json.loads(request.content)
        assert body["to"] == "tok-asha"
        assert body["notification"] == {"title": "Booking confirmed", "body": "Confirmed."}
        assert body["data"] == {"booking_id": "7"}

    async def test_provider_rejection_returns_false(self):
        notifier = PushNotifier(PUSH_URL, "server-key")
        async with respx.mock:
            respx.post(PUSH_URL).mock(return_value=Response(401))
            assert await notifier.send("tok", "Title", "Body") is False

    async def test_transport_error_returns_false(self):
        notifier = PushNotifier(PUSH_URL, "server-key")
        async with respx.mock:
            respx.post(PUSH_URL).mock(side_effect=httpx.ConnectError("refused"))
            assert await notifier.send("tok", "Title", "Body") is False
