"""
Tests for the session connector state machine
"""

import asyncio

import pytest

from desky.connector import SessionConnector
from desky.errors import TerminalError
from desky.models import SessionPhase, SessionState

from conftest import FakeTransport, INFINITE, settle


def record_phases(connector):
    phases = []
    connector.state_changed.connect(lambda state: phases.append(state.phase))
    return phases


def record_timers(loop):
    """Wrap loop.call_later to track TimerSlot callbacks (not asyncio.sleep)"""
    records = []
    original = loop.call_later

    def recording(delay, callback, *args, **kwargs):
        if not getattr(callback, "__qualname__", "").startswith("TimerSlot."):
            return original(delay, callback, *args, **kwargs)
        entry = {"fired": False}

        def wrapped(*a):
            entry["fired"] = True
            return callback(*a)

        entry["handle"] = original(delay, wrapped, *args, **kwargs)
        records.append(entry)
        return entry["handle"]

    loop.call_later = recording
    return records


def live_timers(records):
    return sum(1 for e in records if not e["fired"] and not e["handle"].cancelled())


class TestConnect:
    """Happy path and input handling"""

    def test_connect_success(self, fast_timings):
        async def scenario():
            transport = FakeTransport()
            connector = SessionConnector(transport, fast_timings)
            phases = record_phases(connector)

            assert connector.connect("token-1") is True
            await settle()

            assert phases == [SessionPhase.CONNECTING, SessionPhase.CONNECTED]
            assert connector.is_connected
            assert transport.connect_calls == ["token-1"]
            assert connector.last_connected_at is not None

        asyncio.run(scenario())

    def test_connect_without_token_stays_disconnected(self, fast_timings):
        async def scenario():
            transport = FakeTransport()
            connector = SessionConnector(transport, fast_timings)

            assert connector.connect("") is False
            assert connector.connect(None) is False
            await settle()

            assert connector.state == SessionState.disconnected()
            assert transport.connect_calls == []

        asyncio.run(scenario())

    def test_recovers_after_one_failure(self, fast_timings):
        async def scenario():
            transport = FakeTransport(fail_times=1)
            connector = SessionConnector(transport, fast_timings)
            phases = record_phases(connector)

            connector.connect("token")
            await asyncio.sleep(0.1)

            assert phases == [
                SessionPhase.CONNECTING, SessionPhase.RETRYING,
                SessionPhase.CONNECTING, SessionPhase.CONNECTED,
            ]
            assert len(transport.connect_calls) == 2
            assert not connector.retry_pending

        asyncio.run(scenario())


class TestRetryBudget:
    """Bounded retries and single pending retry timer"""

    def test_gives_up_after_max_attempts(self, fast_timings):
        async def scenario():
            transport = FakeTransport(fail_times=INFINITE)
            connector = SessionConnector(transport, fast_timings)
            phases = record_phases(connector)

            connector.connect("token")
            await asyncio.sleep(0.3)

            assert len(transport.connect_calls) == fast_timings.max_connection_retries
            assert connector.state.phase is SessionPhase.ERROR
            assert "3 attempts" in connector.state.message
            assert phases == [
                SessionPhase.CONNECTING, SessionPhase.RETRYING,
                SessionPhase.CONNECTING, SessionPhase.RETRYING,
                SessionPhase.CONNECTING, SessionPhase.ERROR,
            ]
            assert not connector.retry_pending

        asyncio.run(scenario())

    def test_error_is_terminal_until_new_connect(self, fast_timings):
        async def scenario():
            transport = FakeTransport(fail_times=3)
            connector = SessionConnector(transport, fast_timings)

            connector.connect("token")
            await asyncio.sleep(0.3)
            assert connector.state.phase is SessionPhase.ERROR

            await asyncio.sleep(0.1)
            assert len(transport.connect_calls) == 3

            connector.connect("token")
            await settle()
            assert connector.is_connected
            assert len(transport.connect_calls) == 4

        asyncio.run(scenario())

    def test_at_most_one_retry_timer_pending(self, fast_timings):
        async def scenario():
            records = record_timers(asyncio.get_running_loop())
            transport = FakeTransport(fail_times=INFINITE)
            connector = SessionConnector(transport, fast_timings)
            observed = []
            connector.state_changed.connect(lambda state: observed.append(live_timers(records)))

            connector.connect("token")
            await settle()
            # Re-entering while a retry is pending must replace the timer
            connector.connect("token")
            await settle()
            connector.connect("token")
            await asyncio.sleep(0.3)

            assert observed and max(observed) <= 1
            assert live_timers(records) == 0
            assert connector.state.phase is SessionPhase.ERROR

        asyncio.run(scenario())

    def test_connect_cancels_pending_retry(self, fast_timings):
        async def scenario():
            transport = FakeTransport(fail_times=1)
            timings = fast_timings.model_copy(update={"retry_base_delay_s": 5.0, "retry_max_delay_s": 5.0})
            connector = SessionConnector(transport, timings)

            connector.connect("token")
            await settle()
            assert connector.state.phase is SessionPhase.RETRYING
            first_handle = connector.retry_timer.handle
            assert first_handle is not None

            connector.connect("token")
            assert first_handle.cancelled()
            assert connector.attempts == 1
            await settle()
            assert connector.is_connected
            assert not connector.retry_pending

        asyncio.run(scenario())

    def test_terminal_failure_skips_retries(self, fast_timings):
        async def scenario():
            transport = FakeTransport(fail_times=INFINITE,
                                      error_factory=lambda: TerminalError("token rejected"))
            connector = SessionConnector(transport, fast_timings)
            phases = record_phases(connector)

            connector.connect("token")
            await asyncio.sleep(0.1)

            assert phases == [SessionPhase.CONNECTING, SessionPhase.ERROR]
            assert connector.state.message == "token rejected"
            assert len(transport.connect_calls) == 1

        asyncio.run(scenario())

    def test_raw_exception_is_converted(self, fast_timings):
        async def scenario():
            transport = FakeTransport(fail_times=INFINITE, error_factory=lambda: ConnectionError("reset"))
            connector = SessionConnector(transport, fast_timings)

            connector.connect("token")
            await asyncio.sleep(0.3)

            assert connector.state.phase is SessionPhase.ERROR
            assert len(transport.connect_calls) == 3

        asyncio.run(scenario())


class TestDisconnect:
    """Explicit and unexpected disconnects"""

    def test_disconnect_from_connected(self, fast_timings):
        async def scenario():
            transport = FakeTransport()
            connector = SessionConnector(transport, fast_timings)
            connector.connect("token")
            await settle()

            connector.disconnect()

            assert connector.state.phase is SessionPhase.DISCONNECTED
            assert transport.disconnect_calls == 1
            assert connector.last_disconnect_unexpected is False

        asyncio.run(scenario())

    def test_disconnect_while_retrying_cancels_timer(self, fast_timings):
        async def scenario():
            transport = FakeTransport(fail_times=INFINITE)
            connector = SessionConnector(transport, fast_timings)
            connector.connect("token")
            await settle()
            assert connector.retry_pending

            connector.disconnect()
            await asyncio.sleep(0.1)

            assert not connector.retry_pending
            assert connector.state.phase is SessionPhase.DISCONNECTED
            assert len(transport.connect_calls) == 1

        asyncio.run(scenario())

    def test_superseded_attempt_is_ignored(self, fast_timings):
        async def scenario():
            transport = FakeTransport()
            transport.connect_gate = asyncio.Event()
            connector = SessionConnector(transport, fast_timings)

            connector.connect("token")
            await settle()
            connector.disconnect()
            transport.connect_gate.set()
            await settle()

            assert connector.state.phase is SessionPhase.DISCONNECTED

        asyncio.run(scenario())

    def test_transport_drop_marks_unexpected(self, fast_timings):
        async def scenario():
            transport = FakeTransport()
            connector = SessionConnector(transport, fast_timings)
            connector.connect("token")
            await settle()

            transport.drop("remote closed")

            assert connector.state.phase is SessionPhase.DISCONNECTED
            assert connector.last_disconnect_unexpected is True

        asyncio.run(scenario())

    def test_transport_drop_ignored_when_not_connected(self, fast_timings):
        transport = FakeTransport()
        connector = SessionConnector(transport, fast_timings)

        transport.drop()

        assert connector.state.phase is SessionPhase.DISCONNECTED
        assert connector.last_disconnect_unexpected is False


@pytest.mark.parametrize("attempt,expected", [(1, 2.0), (2, 4.0), (3, 8.0), (4, 10.0)])
def test_retry_delay_backoff(attempt, expected):
    from desky.config import Timings
    assert Timings().retry_delay(attempt) == expected
