"""
Node-RED comms channel listener.

Keeps a websocket open to ``/comms`` and reports the revision of every
deploy notification. The connection is re-established with exponential
backoff until the listener is stopped.
"""

import asyncio
import inspect
import json
import logging
import random
import ssl
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Union

import websockets
from websockets.exceptions import WebSocketException

from ..errors import TransportError
from ..models.config import SyncConfig
from ..sync.events import RemoteChange

logger = logging.getLogger(__name__)

DEPLOY_TOPIC = "notification/runtime-deploy"

RevisionCallback = Callable[[str], Union[None, Awaitable[None]]]


class ReconnectBackoff:
    """Exponential reconnect delay, reset after every successful connection"""

    def __init__(
        self,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_factor: float = 2.0,
        jitter: bool = False
    ):
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self.attempt = 0

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for given attempt number"""
        delay = self.initial_delay * (self.backoff_factor ** attempt)
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay += delay * 0.2 * random.random()

        return delay

    def next_delay(self) -> float:
        """Delay before the next attempt; every call counts as one more failure"""
        delay = self.get_delay(self.attempt)
        self.attempt += 1
        return delay

    def reset(self) -> None:
        self.attempt = 0


class FlowsChangeListener:
    """
    Listens for flow deploy notifications on the Node-RED comms websocket.

    When a bearer token is configured the token is sent first and topics are
    subscribed only once the server acknowledged it.
    """

    def __init__(
        self,
        node_red_url: str,
        on_revision: RevisionCallback,
        bearer_token: Optional[str] = None,
        allow_self_signed_certificates: bool = False,
        topics: Iterable[str] = (DEPLOY_TOPIC,),
        backoff: Optional[ReconnectBackoff] = None
    ):
        self.node_red_url = node_red_url.rstrip('/')
        self.on_revision = on_revision
        self.bearer_token = bearer_token
        self.allow_self_signed_certificates = allow_self_signed_certificates
        self.topics = list(topics)
        self.backoff = backoff or ReconnectBackoff()

        self._stop_event = asyncio.Event()
        self._websocket: Optional[Any] = None
        self._connected = False
        self._connection_count = 0
        self._notifications_received = 0
        self.last_change: Optional[RemoteChange] = None

    @classmethod
    def from_config(cls, config: SyncConfig, on_revision: RevisionCallback) -> "FlowsChangeListener":
        return cls(
            node_red_url=config.node_red_url,
            on_revision=on_revision,
            bearer_token=config.bearer_token,
            allow_self_signed_certificates=config.allow_self_signed_certificates,
            backoff=ReconnectBackoff(
                initial_delay=config.reconnect_base_delay_s,
                max_delay=config.reconnect_max_delay_s
            )
        )

    @property
    def comms_url(self) -> str:
        """http(s) base URL rewritten to the ws(s) comms endpoint"""
        if self.node_red_url.startswith("https://"):
            base = "wss://" + self.node_red_url[len("https://"):]
        elif self.node_red_url.startswith("http://"):
            base = "ws://" + self.node_red_url[len("http://"):]
        else:
            base = self.node_red_url
        return f"{base}/comms"

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _ssl_context(self) -> Optional[ssl.SSLContext]:
        if not self.comms_url.startswith("wss://") or not self.allow_self_signed_certificates:
            return None
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        return context

    async def run(self) -> None:
        """Connect and listen until ``stop`` is called, reconnecting on any failure"""
        self._stop_event.clear()

        while not self._stop_event.is_set():
            try:
                await self._listen_once()
                logger.info("Comms channel closed")
            except (OSError, asyncio.TimeoutError, WebSocketException, TransportError) as e:
                logger.warning(f"Comms channel error: {e}")

            if self._stop_event.is_set():
                break

            delay = self.backoff.next_delay()
            logger.info(f"Reconnecting to {self.comms_url} in {delay:.1f}s")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    async def _listen_once(self) -> None:
        ssl_context = self._ssl_context()
        connect_kwargs = {"ssl": ssl_context} if ssl_context else {}

        async with websockets.connect(self.comms_url, **connect_kwargs) as websocket:
            self._websocket = websocket
            self._connected = True
            self._connection_count += 1
            self.backoff.reset()
            logger.info(f"Connected to {self.comms_url}")

            try:
                if self.bearer_token:
                    await websocket.send(json.dumps({"auth": self.bearer_token}))
                else:
                    await self._subscribe(websocket)

                async for raw in websocket:
                    await self.handle_message(raw, websocket)
            finally:
                self._connected = False
                self._websocket = None

    async def _subscribe(self, websocket: Any) -> None:
        for topic in self.topics:
            await websocket.send(json.dumps({"subscribe": topic}))
        logger.debug(f"Subscribed to {', '.join(self.topics)}")

    async def handle_message(self, raw: Union[str, bytes], websocket: Optional[Any] = None) -> List[str]:
        """
        Process one frame received on the comms channel.

        Args:
            raw: Frame payload
            websocket: Connection to answer an auth acknowledgement on

        Returns:
            Revisions reported to the callback

        Raises:
            TransportError: The server rejected the bearer token
        """
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")

        try:
            message = json.loads(raw)
        except ValueError:
            logger.debug(f"Ignoring non-JSON comms frame: {raw[:200]}")
            return []

        if isinstance(message, dict) and "auth" in message:
            if message["auth"] != "ok":
                raise TransportError(f"Comms authentication failed: {message['auth']}")
            logger.info("Comms authentication accepted")
            if websocket is not None:
                await self._subscribe(websocket)
            return []

        events = message if isinstance(message, list) else [message]
        revisions = []

        for event in events:
            if not isinstance(event, dict) or event.get("topic") not in self.topics:
                continue

            data = event.get("data")
            revision = data.get("revision") if isinstance(data, dict) else None
            if not revision:
                continue

            change = RemoteChange(revision=str(revision), topic=event["topic"])
            self.last_change = change
            self._notifications_received += 1
            revisions.append(change.revision)
            logger.debug(f"Received {change}")

            result = self.on_revision(change.revision)
            if inspect.isawaitable(result):
                await result

        return revisions

    async def stop(self) -> None:
        self._stop_event.set()
        if self._websocket is not None:
            await self._websocket.close()

    def get_status(self) -> dict:
        return {
            "comms_url": self.comms_url,
            "connected": self._connected,
            "connection_count": self._connection_count,
            "notifications_received": self._notifications_received,
            "last_change": str(self.last_change) if self.last_change else None,
            "last_change_at": self.last_change.received_at.isoformat() if self.last_change else None,
            "reconnect_attempt": self.backoff.attempt
        }
