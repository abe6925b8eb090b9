"""
Tests for the comms channel listener and its reconnect backoff.

The websocket is replaced by an in-memory fake so no server is needed.
"""

import json

import pytest
from unittest.mock import AsyncMock, Mock, patch

from core.errors import TransportError
from core.models.config import SyncConfig
from core.transport.comms import DEPLOY_TOPIC, FlowsChangeListener, ReconnectBackoff


def _deploy_frame(revision):
    return json.dumps([{"topic": DEPLOY_TOPIC, "data": {"revision": revision}}])


class FakeWebSocket:
    """Replays a fixed list of frames and records what was sent"""

    def __init__(self, frames):
        self.frames = list(frames)
        self.sent = []
        self.closed = False

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            yield frame


class FakeConnect:
    """Async context manager standing in for ``websockets.connect(...)``"""

    def __init__(self, websocket):
        self.websocket = websocket

    async def __aenter__(self):
        return self.websocket

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class TestReconnectBackoff:

    def test_delays_double_up_to_the_cap(self):
        backoff = ReconnectBackoff()

        delays = [backoff.next_delay() for _ in range(7)]

        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]
        assert backoff.attempt == 7

    def test_reset_restarts_at_initial_delay(self):
        backoff = ReconnectBackoff()
        backoff.next_delay()
        backoff.next_delay()

        backoff.reset()

        assert backoff.next_delay() == 1.0

    def test_jitter_stays_within_bounds(self):
        backoff = ReconnectBackoff(jitter=True)

        for attempt in range(6):
            base = min(2.0 ** attempt, 30.0)
            assert base <= backoff.get_delay(attempt) <= base * 1.2


class TestCommsUrl:

    @pytest.mark.parametrize("node_red_url,expected", [
        ("http://localhost:1880", "ws://localhost:1880/comms"),
        ("https://nr.example.com/", "wss://nr.example.com/comms"),
        ("https://nr.example.com/admin", "wss://nr.example.com/admin/comms"),
    ])
    def test_comms_url(self, node_red_url, expected):
        listener = FlowsChangeListener(node_red_url, Mock())

        assert listener.comms_url == expected

    def test_self_signed_context_only_for_wss(self):
        secure = FlowsChangeListener("https://nr.local", Mock(), allow_self_signed_certificates=True)
        plain = FlowsChangeListener("http://nr.local", Mock(), allow_self_signed_certificates=True)

        assert secure._ssl_context() is not None
        assert plain._ssl_context() is None

    def test_from_config(self, temp_dir):
        config = SyncConfig(
            node_red_url="https://nr.local",
            bearer_token="secret",
            source_path=temp_dir / "src",
            config_dir=temp_dir,
            reconnect_base_delay_s=0.5,
            reconnect_max_delay_s=4.0
        )

        listener = FlowsChangeListener.from_config(config, Mock())

        assert listener.bearer_token == "secret"
        assert listener.backoff.initial_delay == 0.5
        assert listener.backoff.max_delay == 4.0


class TestHandleMessage:

    @pytest.mark.asyncio
    async def test_deploy_notification_reports_revision(self):
        callback = Mock()
        listener = FlowsChangeListener("http://nr.local", callback)

        revisions = await listener.handle_message(_deploy_frame("abc"))

        assert revisions == ["abc"]
        callback.assert_called_once_with("abc")
        assert listener.last_change.revision == "abc"

        status = listener.get_status()
        assert status["notifications_received"] == 1
        assert status["last_change_at"] == listener.last_change.received_at.isoformat()

    @pytest.mark.asyncio
    async def test_single_object_and_bytes_frames(self):
        callback = Mock()
        listener = FlowsChangeListener("http://nr.local", callback)
        frame = json.dumps({"topic": DEPLOY_TOPIC, "data": {"revision": 7}}).encode("utf-8")

        assert await listener.handle_message(frame) == ["7"]

    @pytest.mark.asyncio
    async def test_async_callback_is_awaited(self):
        callback = AsyncMock()
        listener = FlowsChangeListener("http://nr.local", callback)

        await listener.handle_message(_deploy_frame("r1"))

        callback.assert_awaited_once_with("r1")

    @pytest.mark.asyncio
    async def test_unrelated_frames_are_ignored(self):
        callback = Mock()
        listener = FlowsChangeListener("http://nr.local", callback)

        frames = [
            "not json",
            json.dumps([{"topic": "status/abc", "data": {"text": "ok"}}]),
            json.dumps([{"topic": DEPLOY_TOPIC, "data": {"state": "stop"}}]),
            json.dumps([{"topic": DEPLOY_TOPIC, "data": "rev"}]),
            json.dumps(42),
        ]
        for frame in frames:
            assert await listener.handle_message(frame) == []

        callback.assert_not_called()

    @pytest.mark.asyncio
    async def test_multiple_events_in_one_frame(self):
        callback = Mock()
        listener = FlowsChangeListener("http://nr.local", callback)
        frame = json.dumps([
            {"topic": DEPLOY_TOPIC, "data": {"revision": "a"}},
            {"topic": "debug", "data": {"msg": "x"}},
            {"topic": DEPLOY_TOPIC, "data": {"revision": "b"}},
        ])

        assert await listener.handle_message(frame) == ["a", "b"]
        assert callback.call_count == 2

    @pytest.mark.asyncio
    async def test_auth_ok_subscribes(self):
        listener = FlowsChangeListener("http://nr.local", Mock(), bearer_token="secret")
        websocket = FakeWebSocket([])

        await listener.handle_message(json.dumps({"auth": "ok"}), websocket)

        assert websocket.sent == [{"subscribe": DEPLOY_TOPIC}]

    @pytest.mark.asyncio
    async def test_auth_failure_raises(self):
        listener = FlowsChangeListener("http://nr.local", Mock(), bearer_token="wrong")

        with pytest.raises(TransportError):
            await listener.handle_message(json.dumps({"auth": "fail"}), FakeWebSocket([]))


class TestRun:

    @pytest.mark.asyncio
    async def test_failed_connections_back_off_until_stopped(self):
        listener = FlowsChangeListener(
            "http://nr.local", Mock(), backoff=ReconnectBackoff(initial_delay=0.01, max_delay=0.02)
        )
        attempts = []

        def refuse(url, **kwargs):
            attempts.append(url)
            if len(attempts) == 3:
                listener._stop_event.set()
            raise OSError("Connection refused")

        with patch("core.transport.comms.websockets.connect", side_effect=refuse):
            await listener.run()

        assert attempts == ["ws://nr.local/comms"] * 3
        assert listener.backoff.attempt == 2
        assert not listener.is_connected

    @pytest.mark.asyncio
    async def test_connection_subscribes_and_resets_backoff(self):
        websocket = FakeWebSocket([_deploy_frame("r9")])
        backoff = ReconnectBackoff(initial_delay=0.01)
        backoff.attempt = 4
        received = []

        async def on_revision(revision):
            received.append(revision)
            await listener.stop()

        listener = FlowsChangeListener("http://nr.local", on_revision, backoff=backoff)

        with patch("core.transport.comms.websockets.connect", return_value=FakeConnect(websocket)):
            await listener.run()

        assert websocket.sent == [{"subscribe": DEPLOY_TOPIC}]
        assert received == ["r9"]
        assert backoff.attempt == 0
        assert listener.get_status()["connection_count"] == 1

    @pytest.mark.asyncio
    async def test_token_is_sent_before_subscribing(self):
        websocket = FakeWebSocket([json.dumps({"auth": "ok"}), _deploy_frame("r1")])

        async def on_revision(revision):
            await listener.stop()

        listener = FlowsChangeListener("http://nr.local", on_revision, bearer_token="secret")

        with patch("core.transport.comms.websockets.connect", return_value=FakeConnect(websocket)):
            await listener.run()

        assert websocket.sent == [{"auth": "secret"}, {"subscribe": DEPLOY_TOPIC}]
