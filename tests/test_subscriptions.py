"""Tests for LISTEN/UNLISTEN handling and acknowledgement tracking."""

import asyncio
from dataclasses import replace

import pytest

from pubsub_feed.events.catalog import default_registry
from pubsub_feed.exceptions import SubscriptionRejected, SubscriptionTimeout
from pubsub_feed.session import TransportSession
from pubsub_feed.subscriptions import Subscription, SubscriptionManager, SubscriptionState

from tests.fixtures import AUTH_TOKEN, FakeConnector, FakeWebSocket, fast_config, wait_until


REGISTRY = default_registry()
BITS = REGISTRY.resolve("bits", "123456")
RAID = REGISTRY.resolve("raid", "123456")
WHISPERS = REGISTRY.resolve("whispers", "123456")


def make_manager(connector, **overrides):
    config = fast_config()
    transport = TransportSession(config.session, connector=connector)
    manager = SubscriptionManager(
        transport, auth_token=AUTH_TOKEN, config=replace(config.subscriptions, **overrides)
    )
    transport.add_state_listener(manager.on_state_change)
    transport.add_frame_listener(manager.on_frame)
    return transport, manager


class TestSubscription:

    def test_legal_transitions(self):
        subscription = Subscription(topic=BITS)
        subscription.advance(SubscriptionState.ACKED)
        subscription.advance(SubscriptionState.UNSUBSCRIBED)
        assert subscription.state == SubscriptionState.UNSUBSCRIBED

    def test_acked_cannot_fail(self):
        subscription = Subscription(topic=BITS, state=SubscriptionState.ACKED)
        with pytest.raises(ValueError, match="Illegal subscription transition"):
            subscription.advance(SubscriptionState.FAILED)

    def test_unsubscribed_is_terminal(self):
        subscription = Subscription(topic=BITS, state=SubscriptionState.UNSUBSCRIBED)
        with pytest.raises(ValueError):
            subscription.advance(SubscriptionState.PENDING)


class TestListen:

    @pytest.mark.asyncio
    async def test_listen_before_connect_is_sent_on_connect(self):
        connector = FakeConnector()
        transport, manager = make_manager(connector)
        try:
            handle = manager.listen(BITS)
            assert handle.state == SubscriptionState.PENDING

            await transport.connect()
            assert await handle.wait(timeout=1) == SubscriptionState.ACKED

            listen = connector.latest.sent_of_type("LISTEN")
            assert len(listen) == 1
            assert listen[0]["data"] == {"topics": [BITS.wire], "auth_token": AUTH_TOKEN}
        finally:
            await transport.disconnect()

    @pytest.mark.asyncio
    async def test_listen_while_connected(self):
        connector = FakeConnector()
        transport, manager = make_manager(connector)
        try:
            await transport.connect()
            handle = manager.listen(RAID)

            assert await handle.wait(timeout=1) == SubscriptionState.ACKED
            assert manager.state_of(RAID) == SubscriptionState.ACKED
        finally:
            await transport.disconnect()

    @pytest.mark.asyncio
    async def test_listen_is_idempotent(self):
        connector = FakeConnector(auto_ack=False)
        transport, manager = make_manager(connector)
        try:
            await transport.connect()
            first = manager.listen(BITS)
            second = manager.listen(BITS)
            await wait_until(lambda: connector.latest.sent_of_type("LISTEN"))

            socket = connector.latest
            socket.respond(socket.sent_of_type("LISTEN")[0]["nonce"])
            await first.wait(timeout=1)
            third = manager.listen(BITS)
            await asyncio.sleep(0.05)

            assert first is second is third
            assert len(socket.sent_of_type("LISTEN")) == 1
            assert third.state == SubscriptionState.ACKED
        finally:
            await transport.disconnect()

    @pytest.mark.asyncio
    async def test_rejection_marks_failed(self):
        connector = FakeConnector(reject_topics={WHISPERS.wire})
        transport, manager = make_manager(connector)
        failures = []
        manager.add_failure_listener(failures.append)
        try:
            await transport.connect()
            handle = manager.listen(WHISPERS)

            with pytest.raises(SubscriptionRejected) as exc_info:
                await handle.wait(timeout=1)

            assert exc_info.value.error == "ERR_BADAUTH"
            assert exc_info.value.topic == WHISPERS.wire
            assert handle.state == SubscriptionState.FAILED
            assert [f.topic for f in failures] == [WHISPERS.wire]
        finally:
            await transport.disconnect()

    @pytest.mark.asyncio
    async def test_failure_listener_errors_are_isolated(self):
        connector = FakeConnector(reject_topics={WHISPERS.wire})
        transport, manager = make_manager(connector)
        seen = []

        def broken(error):
            raise RuntimeError("listener bug")

        manager.add_failure_listener(broken)
        manager.add_failure_listener(seen.append)
        try:
            await transport.connect()
            handle = manager.listen(WHISPERS)
            with pytest.raises(SubscriptionRejected):
                await handle.wait(timeout=1)
            assert len(seen) == 1
        finally:
            await transport.disconnect()

    @pytest.mark.asyncio
    async def test_ack_timeout_retries_then_fails(self):
        connector = FakeConnector(auto_ack=False)
        transport, manager = make_manager(connector, ack_timeout=0.05, ack_retries=1)
        try:
            await transport.connect()
            handle = manager.listen(BITS)

            with pytest.raises(SubscriptionTimeout):
                await handle.wait(timeout=1)

            listens = connector.latest.sent_of_type("LISTEN")
            assert len(listens) == 2
            assert listens[0]["nonce"] != listens[1]["nonce"]
            assert handle.state == SubscriptionState.FAILED
        finally:
            await transport.disconnect()

    @pytest.mark.asyncio
    async def test_ack_on_retry_succeeds(self):
        connector = FakeConnector(auto_ack=False)
        transport, manager = make_manager(connector, ack_timeout=0.05, ack_retries=1)
        try:
            await transport.connect()
            handle = manager.listen(BITS)
            socket = connector.latest
            await wait_until(lambda: len(socket.sent_of_type("LISTEN")) == 2)

            first, second = socket.sent_of_type("LISTEN")
            # a late answer to the superseded request is ignored
            socket.respond(first["nonce"], "ERR_SERVER")
            socket.respond(second["nonce"])

            assert await handle.wait(timeout=1) == SubscriptionState.ACKED
        finally:
            await transport.disconnect()

    @pytest.mark.asyncio
    async def test_no_retries_fails_after_first_timeout(self):
        connector = FakeConnector(auto_ack=False)
        transport, manager = make_manager(connector, ack_timeout=0.05, ack_retries=0)
        try:
            await transport.connect()
            handle = manager.listen(BITS)

            with pytest.raises(SubscriptionTimeout):
                await handle.wait(timeout=1)
            assert len(connector.latest.sent_of_type("LISTEN")) == 1
        finally:
            await transport.disconnect()

    @pytest.mark.asyncio
    async def test_explicit_listen_retries_failed_topic(self):
        connector = FakeConnector(reject_topics={WHISPERS.wire})
        transport, manager = make_manager(connector)
        try:
            await transport.connect()
            handle = manager.listen(WHISPERS)
            with pytest.raises(SubscriptionRejected):
                await handle.wait(timeout=1)

            connector.latest.reject_topics.clear()
            retried = manager.listen(WHISPERS)

            assert retried is handle
            assert await retried.wait(timeout=1) == SubscriptionState.ACKED
        finally:
            await transport.disconnect()

    @pytest.mark.asyncio
    async def test_batches_are_bounded(self):
        connector = FakeConnector()
        transport, manager = make_manager(connector, max_topics_per_request=2)
        try:
            handles = [manager.listen(t) for t in (BITS, RAID, WHISPERS)]
            await transport.connect()
            for handle in handles:
                await handle.wait(timeout=1)

            sizes = [len(f["data"]["topics"]) for f in connector.latest.sent_of_type("LISTEN")]
            assert sizes == [2, 1]
        finally:
            await transport.disconnect()


class TestReconnect:

    @pytest.mark.asyncio
    async def test_acked_topics_resent_once_after_drop(self):
        connector = FakeConnector()
        transport, manager = make_manager(connector)
        try:
            await transport.connect()
            handles = [manager.listen(t) for t in (BITS, RAID, WHISPERS)]
            for handle in handles:
                await handle.wait(timeout=1)

            old_session = transport.session
            connector.latest.drop()
            await wait_until(lambda: transport.is_connected and transport.session is not old_session)
            for handle in handles:
                await handle.wait(timeout=1)
            await asyncio.sleep(0.05)

            new_socket = connector.latest
            assert sorted(new_socket.listened_topics()) == sorted([BITS.wire, RAID.wire, WHISPERS.wire])
            assert all(h.state == SubscriptionState.ACKED for h in handles)
            assert all(h._subscription.session_id == transport.session.session_id for h in handles)
        finally:
            await transport.disconnect()

    @pytest.mark.asyncio
    async def test_failed_topics_are_not_retried_on_reconnect(self):
        connector = FakeConnector(reject_topics={WHISPERS.wire})
        transport, manager = make_manager(connector)
        try:
            await transport.connect()
            good = manager.listen(BITS)
            bad = manager.listen(WHISPERS)
            await good.wait(timeout=1)
            with pytest.raises(SubscriptionRejected):
                await bad.wait(timeout=1)

            old_session = transport.session
            connector.latest.drop()
            await wait_until(lambda: transport.is_connected and transport.session is not old_session)
            await good.wait(timeout=1)

            assert connector.latest.listened_topics() == [BITS.wire]
            assert bad.state == SubscriptionState.FAILED
        finally:
            await transport.disconnect()

    @pytest.mark.asyncio
    async def test_pending_requests_are_reissued_on_new_session(self):
        first_socket = FakeWebSocket(auto_ack=False)
        connector = FakeConnector(sockets=[first_socket])
        transport, manager = make_manager(connector)
        try:
            await transport.connect()
            handle = manager.listen(RAID)
            await wait_until(lambda: first_socket.sent_of_type("LISTEN"))
            stale_nonce = first_socket.sent_of_type("LISTEN")[0]["nonce"]

            first_socket.drop()
            assert await handle.wait(timeout=1) == SubscriptionState.ACKED
            assert connector.latest.listened_topics() == [RAID.wire]
            assert connector.latest.sent_of_type("LISTEN")[0]["nonce"] != stale_nonce
        finally:
            await transport.disconnect()


class TestUnlisten:

    @pytest.mark.asyncio
    async def test_unlisten_acked_topic(self):
        connector = FakeConnector()
        transport, manager = make_manager(connector)
        try:
            await transport.connect()
            handle = manager.listen(BITS)
            await handle.wait(timeout=1)

            assert handle.unlisten() is True
            await wait_until(lambda: connector.latest.sent_of_type("UNLISTEN"))

            assert connector.latest.sent_of_type("UNLISTEN")[0]["data"]["topics"] == [BITS.wire]
            assert handle.state == SubscriptionState.UNSUBSCRIBED
            assert not manager.is_desired(BITS)
        finally:
            await transport.disconnect()

    @pytest.mark.asyncio
    async def test_unlisten_unknown_topic(self):
        _, manager = make_manager(FakeConnector())
        assert manager.unlisten(BITS) is False

    @pytest.mark.asyncio
    async def test_unlisten_while_disconnected_sends_nothing(self):
        connector = FakeConnector()
        transport, manager = make_manager(connector)
        handle = manager.listen(BITS)

        assert manager.unlisten(BITS) is True
        assert handle.state == SubscriptionState.UNSUBSCRIBED

        try:
            await transport.connect()
            await asyncio.sleep(0.05)
            assert connector.latest.sent == []
        finally:
            await transport.disconnect()

    @pytest.mark.asyncio
    async def test_status(self):
        connector = FakeConnector()
        transport, manager = make_manager(connector)
        try:
            await transport.connect()
            await manager.listen(BITS).wait(timeout=1)

            status = manager.get_status()
            assert status["desired"] == 1
            assert status["states"] == {BITS.wire: "acked"}
            assert status["pending_requests"] == 0
        finally:
            await transport.disconnect()
