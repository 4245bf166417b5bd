"""End-to-end tests for PubSubClient over a fake websocket."""

import asyncio

import pytest

from pubsub_feed.client import PubSubClient
from pubsub_feed.config import PubSubConfig
from pubsub_feed.exceptions import ConfigurationError, ConnectError, PubSubError, TopicValidationError
from pubsub_feed.session import ConnectionState
from pubsub_feed.subscriptions import SubscriptionState

from tests.fixtures import CHANNEL_ID, FakeConnector, MockPayloads, fast_config, wait_until


BITS_WIRE = f"channel-bits-events-v2.{CHANNEL_ID}"


class TestClient:

    @pytest.mark.asyncio
    async def test_bits_scenario(self):
        connector = FakeConnector()
        client = PubSubClient(fast_config(), connector=connector)
        received = []
        client.on_event("bits:*", received.append)

        async with client:
            handle = client.listen(f"bits:{CHANNEL_ID}")
            assert await handle.wait(timeout=1) == SubscriptionState.ACKED

            connector.latest.message(BITS_WIRE, MockPayloads.bits(username="alice", total_bits_used=1500))
            await wait_until(lambda: received)

        assert received[0].username == "alice"
        assert received[0].total_bits_used == 1500
        assert received[0].topic.key == f"bits:{CHANNEL_ID}"

    @pytest.mark.asyncio
    async def test_bare_capability_uses_configured_channel(self):
        client = PubSubClient(fast_config(), connector=FakeConnector())

        assert client.resolve("bits").wire == BITS_WIRE
        assert client.resolve("whispers").wire == f"whispers.{CHANNEL_ID}"
        assert client.resolve("moderator").wire == f"chat_moderator_actions.{CHANNEL_ID}.{CHANNEL_ID}"

    @pytest.mark.asyncio
    async def test_invalid_topic(self):
        client = PubSubClient(fast_config(), connector=FakeConnector())

        with pytest.raises(TopicValidationError):
            client.listen("bits:streamer")

    @pytest.mark.asyncio
    async def test_connect_requires_auth_token(self):
        config = fast_config(auth_token=None)
        client = PubSubClient(config, connector=FakeConnector())

        with pytest.raises(ConfigurationError):
            await client.connect()
        assert not client.dispatcher.is_running

    @pytest.mark.asyncio
    async def test_connect_without_retry_raises(self):
        client = PubSubClient(fast_config(), connector=FakeConnector(fail_times=1))
        try:
            with pytest.raises(ConnectError):
                await client.connect(retry=False)
        finally:
            await client.disconnect()

    @pytest.mark.asyncio
    async def test_first_connect_retries_in_background(self):
        connector = FakeConnector(fail_times=2)
        client = PubSubClient(fast_config(), connector=connector)
        handle = client.listen("raid")
        try:
            assert await client.connect() is False
            assert await handle.wait(timeout=2) == SubscriptionState.ACKED
            assert connector.attempts == 3
        finally:
            await client.disconnect()

    @pytest.mark.asyncio
    async def test_listen_all(self):
        connector = FakeConnector()
        client = PubSubClient(fast_config(), connector=connector)

        async with client:
            handles = client.listen_all()
            for handle in handles.values():
                await handle.wait(timeout=1)

            assert len(handles) == 12
            assert len(connector.latest.listened_topics()) == 12

    @pytest.mark.asyncio
    async def test_listen_all_requires_channel(self):
        client = PubSubClient(PubSubConfig(auth_token="tok"), connector=FakeConnector())

        with pytest.raises(PubSubError):
            client.listen_all()

    @pytest.mark.asyncio
    async def test_events_flow_again_after_reconnect(self):
        connector = FakeConnector()
        client = PubSubClient(fast_config(), connector=connector)
        states = []
        received = []
        client.on_state_change(lambda state, session: states.append(state))
        client.on_event("raid:*", received.append)

        async with client:
            handle = client.listen("raid")
            await handle.wait(timeout=1)

            first_socket = connector.latest
            first_socket.drop()
            await wait_until(lambda: connector.latest is not first_socket and client.is_connected)
            await handle.wait(timeout=1)

            connector.latest.message(f"raid.{CHANNEL_ID}", MockPayloads.raid())
            await wait_until(lambda: received)

        assert states.count(ConnectionState.CONNECTED) == 2
        assert states[-1] == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_subscription_failure_listener(self):
        connector = FakeConnector(reject_topics={f"whispers.{CHANNEL_ID}"})
        client = PubSubClient(fast_config(), connector=connector)
        failures = []
        client.on_subscription_failure(failures.append)

        async with client:
            handle = client.listen("whispers")
            with pytest.raises(PubSubError):
                await handle.wait(timeout=1)

        assert failures[0].error == "ERR_BADAUTH"

    @pytest.mark.asyncio
    async def test_remove_handler(self):
        connector = FakeConnector()
        client = PubSubClient(fast_config(), connector=connector)
        received = []
        registration = client.on_event("raid:*", received.append)
        assert client.remove_handler(registration)

        async with client:
            await client.listen("raid").wait(timeout=1)
            connector.latest.message(f"raid.{CHANNEL_ID}", MockPayloads.raid())
            await client.dispatcher.join()
            await asyncio.sleep(0.05)

        assert received == []

    @pytest.mark.asyncio
    async def test_status(self):
        client = PubSubClient(fast_config(), connector=FakeConnector())

        async with client:
            await client.listen("bits").wait(timeout=1)
            status = client.get_status()

        assert status["transport"]["state"] == "connected"
        assert status["subscriptions"]["states"] == {BITS_WIRE: "acked"}
        assert status["dispatcher"]["running"] is True

    @pytest.mark.asyncio
    async def test_sync_handler_can_listen_to_more_topics(self):
        connector = FakeConnector()
        client = PubSubClient(fast_config(), connector=connector)
        handles = []
        client.on_event("raid:*", lambda event: handles.append(client.listen("bits")))

        async with client:
            await client.listen("raid").wait(timeout=1)
            connector.latest.message(f"raid.{CHANNEL_ID}", MockPayloads.raid())
            await wait_until(lambda: handles)

            assert await handles[0].wait(timeout=1) == SubscriptionState.ACKED
            assert connector.latest.listened_topics() == [f"raid.{CHANNEL_ID}", BITS_WIRE]
            assert client.subscriptions.get_status()["pending_requests"] == 0
            assert client.dispatcher.handler_failures == 0


def test_client_built_outside_event_loop():
    connector = FakeConnector()
    client = PubSubClient(fast_config(), connector=connector)
    handle = client.listen("bits")

    async def run():
        async with client:
            return await handle.wait(timeout=1)

    assert asyncio.run(run()) == SubscriptionState.ACKED
    assert connector.latest.closed
