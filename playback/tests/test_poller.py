"""
Tests for the now-playing poller/subscriber
"""

import asyncio

from desky.connector import SessionConnector
from desky.errors import TransientError
from desky.models import SessionPhase
from desky.poller import PlaybackPoller

from conftest import FakeTransport, make_state, settle


def build(fast_timings, **transport_kwargs):
    transport = FakeTransport(**transport_kwargs)
    connector = SessionConnector(transport, fast_timings)
    poller = PlaybackPoller(connector, interval_s=fast_timings.poll_interval_s)
    return transport, connector, poller


class TestPolling:
    """Interval polling when the transport has no push subscription"""

    def test_polls_while_connected(self, fast_timings):
        async def scenario():
            transport, connector, poller = build(fast_timings)
            transport.current = make_state("First")

            connector.connect("token")
            await settle()
            assert poller.running
            assert poller.track.title == "First"

            transport.current = make_state("Second")
            await asyncio.sleep(0.1)
            assert poller.track.title == "Second"
            assert transport.get_state_calls >= 2

            connector.disconnect()

        asyncio.run(scenario())

    def test_stops_when_session_leaves_connected(self, fast_timings):
        async def scenario():
            transport, connector, poller = build(fast_timings)
            transport.current = make_state()
            connector.connect("token")
            await asyncio.sleep(0.05)
            assert poller.track is not None

            connector.disconnect()
            calls = transport.get_state_calls
            await asyncio.sleep(0.1)

            assert poller.track is None
            assert not poller.running
            assert not poller.poll_pending
            assert transport.get_state_calls == calls

        asyncio.run(scenario())

    def test_track_is_none_unless_connected(self, fast_timings):
        async def scenario():
            transport, connector, poller = build(fast_timings, fail_times=1)
            transport.current = make_state()
            violations = []

            def check(state):
                if state.phase is not SessionPhase.CONNECTED and poller.track is not None:
                    violations.append(state)

            connector.state_changed.connect(check)
            poller.track_changed.connect(lambda _: check(connector.state))

            connector.connect("token")
            await asyncio.sleep(0.1)
            assert poller.track is not None
            transport.drop()
            await settle()
            connector.connect("token")
            await asyncio.sleep(0.05)
            connector.disconnect()
            await settle()

            assert violations == []
            assert poller.track is None

        asyncio.run(scenario())

    def test_late_response_after_disconnect_is_dropped(self, fast_timings):
        async def scenario():
            transport, connector, poller = build(fast_timings)
            transport.current = make_state()
            transport.state_gate = asyncio.Event()
            seen = []
            poller.track_changed.connect(seen.append)

            connector.connect("token")
            await settle()
            connector.disconnect()
            transport.state_gate.set()
            await settle()

            assert poller.track is None
            assert all(track is None for track in seen)

        asyncio.run(scenario())

    def test_request_errors_keep_polling(self, fast_timings):
        async def scenario():
            transport, connector, poller = build(fast_timings)
            errors = []
            poller.errors.connect(errors.append)

            async def failing_state():
                transport.get_state_calls += 1
                raise TransientError("timeout")

            transport.get_state = failing_state
            connector.connect("token")
            await asyncio.sleep(0.1)

            assert errors and isinstance(errors[0], TransientError)
            assert poller.running
            assert transport.get_state_calls >= 2
            connector.disconnect()

        asyncio.run(scenario())


class TestSubscription:
    """Push subscription and manual refresh"""

    def test_subscribes_when_supported(self, fast_timings):
        async def scenario():
            transport, connector, poller = build(fast_timings, supports_subscription=True)
            connector.connect("token")
            await settle()

            assert poller.subscribed
            assert len(transport.subscribers) == 1
            assert not poller.poll_pending

            transport.push(make_state("Pushed"))
            assert poller.track.title == "Pushed"

            connector.disconnect()
            assert transport.subscribers == []
            assert poller.track is None

        asyncio.run(scenario())

    def test_manual_refresh_does_not_disturb_subscription(self, fast_timings):
        async def scenario():
            transport, connector, poller = build(fast_timings, supports_subscription=True)
            connector.connect("token")
            await settle()
            transport.push(make_state("Pushed"))

            updates = []
            poller.track_changed.connect(updates.append)
            transport.current = make_state("Manual")
            calls = transport.get_state_calls

            track = await poller.refresh()

            assert track.title == "Manual"
            assert [t.title for t in updates] == ["Manual"]
            assert transport.get_state_calls == calls + 1
            assert poller.subscribed
            assert len(transport.subscribers) == 1

            transport.push(make_state("Next push"))
            assert poller.track.title == "Next push"

        asyncio.run(scenario())

    def test_refresh_when_disconnected(self, fast_timings):
        async def scenario():
            transport, connector, poller = build(fast_timings)
            assert await poller.refresh() is None
            assert transport.get_state_calls == 0

        asyncio.run(scenario())

    def test_nothing_playing_clears_track(self, fast_timings):
        async def scenario():
            transport, connector, poller = build(fast_timings, supports_subscription=True)
            connector.connect("token")
            await settle()
            transport.push(make_state())
            assert poller.track is not None

            transport.push(None)
            assert poller.track is None
            assert connector.is_connected

        asyncio.run(scenario())
